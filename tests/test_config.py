"""Tests for the sunjax.config module."""

import jax.numpy as jnp
import pytest

from sunjax.config import get_dtype, get_unit_roundoff, set_dtype
from sunjax.tolerances import Tolerances, error_weights


@pytest.fixture(autouse=True)
def reset_dtype():
    """Restore the float64 default after each test."""
    yield
    set_dtype(jnp.float64)


class TestGetSetDtype:
    def test_default_dtype(self):
        assert get_dtype() == jnp.float64

    def test_set_float32(self):
        set_dtype(jnp.float32)
        assert get_dtype() == jnp.float32

    def test_roundtrip(self):
        for dtype in (jnp.float32, jnp.float64):
            set_dtype(dtype)
            assert get_dtype() == dtype

    def test_invalid_dtype_raises(self):
        with pytest.raises(ValueError, match="Unsupported dtype"):
            set_dtype(jnp.int32)

    def test_half_precision_rejected(self):
        with pytest.raises(ValueError, match="Unsupported dtype"):
            set_dtype(jnp.float16)


class TestUnitRoundoff:
    def test_float64(self):
        assert get_unit_roundoff() == pytest.approx(2.220446049250313e-16)

    def test_float32(self):
        set_dtype(jnp.float32)
        assert get_unit_roundoff() == pytest.approx(1.1920929e-07)


class TestDtypePropagation:
    def test_weights_follow_dtype(self):
        """Error weights are produced in the configured dtype."""
        set_dtype(jnp.float32)
        w = error_weights(Tolerances(1e-3, 1e-6), jnp.array([1.0, 2.0]))
        assert w.dtype == jnp.float32

    def test_weights_float64(self):
        w = error_weights(Tolerances(1e-3, 1e-6), jnp.array([1.0, 2.0]))
        assert w.dtype == jnp.float64

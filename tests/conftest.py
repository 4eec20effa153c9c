import jax.numpy as jnp
import pytest

from sunjax.config import set_dtype


@pytest.fixture(autouse=True)
def _ensure_float64():
    """Run every test in float64.

    Tests that switch to float32 (test_config.py) would otherwise leak their
    dtype into the solver tests, whose tolerances assume double precision.
    """
    set_dtype(jnp.float64)

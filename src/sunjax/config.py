"""Module-wide floating-point precision configuration.

Provides ``set_dtype`` and ``get_dtype`` to control the float dtype used for
state vectors, derivatives and output matrices throughout sunjax.  The
default is ``jnp.float64``: relative tolerances of ``1e-6`` and absolute
tolerances of ``1e-9`` are meaningless in single precision.  Selecting
``jnp.float64`` enables JAX's 64-bit mode (``jax_enable_x64``), which is
done once at import time for the default.

Buffers handed to native right-hand sides are always ``double`` regardless
of this setting (see :mod:`sunjax._foreign`).
"""

from __future__ import annotations

import jax
import jax.numpy as jnp

_VALID_DTYPES = (jnp.float32, jnp.float64)

jax.config.update("jax_enable_x64", True)
_dtype = jnp.float64


def set_dtype(dtype) -> None:
    """Set the module-wide float dtype for sunjax.

    If *dtype* is ``jnp.float64``, JAX's 64-bit mode is (re-)enabled via
    ``jax.config.update("jax_enable_x64", True)``.

    Args:
        dtype: One of ``jnp.float32`` or ``jnp.float64``.

    Raises:
        ValueError: If *dtype* is not a supported float type.
    """
    global _dtype
    if dtype not in _VALID_DTYPES:
        raise ValueError(
            f"Unsupported dtype {dtype}. Must be one of: "
            f"jnp.float32, jnp.float64"
        )
    if dtype == jnp.float64:
        jax.config.update("jax_enable_x64", True)
    _dtype = dtype


def get_dtype():
    """Return the current module-wide float dtype.

    Returns:
        The active float dtype (default ``jnp.float64``).
    """
    return _dtype


def get_unit_roundoff() -> float:
    """Return the machine epsilon of the configured float dtype.

    Used by the stepping kernels for the round-off step-size floor and the
    finite-difference Jacobian increment, and by the event engine for the
    root-bracketing tolerance.

    - ``float32``: ~1.19e-7
    - ``float64``: ~2.22e-16

    Returns:
        float: Unit roundoff of the active dtype.
    """
    return float(jnp.finfo(_dtype).eps)

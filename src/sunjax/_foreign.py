"""Buffer layout and vector/matrix adapters for the native boundary.

Native right-hand sides see state vectors through a fixed C layout that
mirrors the content block of a SUNDIALS serial ``N_Vector``::

    struct SunVectorContent {
        int64_t  length;    /* offset SUN_CONTENT_LENGTH_OFFSET */
        int32_t  own_data;
        double  *data;      /* offset SUN_CONTENT_DATA_OFFSET */
    };

Two Python wrappers sit on top of it:

- :class:`SunVector` owns its buffer.  The content block points straight
  into a numpy array, so wrapping an existing contiguous ``float64`` array is
  zero-copy.
- :class:`BorrowedVector` wraps a content block owned by someone else
  (typically the pointer a native callback receives).  Its numpy view is only
  valid for the duration of the call that lent it.

Lifetime rule at the boundary: the driver owns the state buffer between
steps; during a right-hand-side evaluation the native function borrows the
input buffer read-only and the output buffer writable.
"""

from __future__ import annotations

import ctypes
from collections.abc import Sequence

import jax.numpy as jnp
import numpy as np
from jax import Array
from jax.typing import ArrayLike

from sunjax.config import get_dtype

SunIndexType = ctypes.c_int64
SunRealType = ctypes.c_double


class SunVectorContent(ctypes.Structure):
    """C layout of a solver-visible vector."""

    _fields_ = [
        ("length", SunIndexType),
        ("own_data", ctypes.c_int32),
        ("data", ctypes.POINTER(SunRealType)),
    ]


SUN_CONTENT_LENGTH_OFFSET: int = SunVectorContent.length.offset
SUN_CONTENT_DATA_OFFSET: int = SunVectorContent.data.offset


class SunVector:
    """Owned vector exposed to native code through :class:`SunVectorContent`.

    Args:
        values: Initial contents.  A contiguous ``float64`` numpy array is
            used in place; anything else is copied into a new buffer.

    Examples:
        ```python
        import numpy as np
        from sunjax._foreign import SunVector
        v = SunVector(np.array([1.0, 2.0]))
        v.content.length
        ```
    """

    def __init__(self, values: ArrayLike):
        self._buffer = np.ascontiguousarray(values, dtype=np.float64)
        if self._buffer.ndim != 1:
            raise ValueError(f"SunVector requires a 1-D buffer, got shape {self._buffer.shape}")
        self.content = SunVectorContent(
            len(self._buffer),
            0,
            self._buffer.ctypes.data_as(ctypes.POINTER(SunRealType)),
        )

    @classmethod
    def zeros(cls, length: int) -> SunVector:
        """Allocate a zero-filled vector of the given length."""
        return cls(np.zeros(length, dtype=np.float64))

    def pointer(self):
        """Return a ``SunVectorContent *`` suitable for a native call."""
        return ctypes.pointer(self.content)

    def as_numpy(self) -> np.ndarray:
        """Return the backing buffer without copying."""
        return self._buffer

    def to_array(self) -> Array:
        """Copy the contents into a JAX array of the configured dtype."""
        return jnp.array(self._buffer, dtype=get_dtype())

    def __len__(self) -> int:
        return len(self._buffer)


class BorrowedVector:
    """Non-owning view over a :class:`SunVectorContent` block.

    Args:
        content: A ``SunVectorContent`` instance or a pointer to one, as
            received by a native callback.
    """

    def __init__(self, content):
        if isinstance(content, SunVectorContent):
            self.content = content
        else:
            self.content = content.contents

    def as_numpy(self) -> np.ndarray:
        """Return a zero-copy numpy view of the borrowed memory.

        The view must not outlive the call that lent the buffer.
        """
        length = int(self.content.length)
        if length == 0:
            return np.zeros(0, dtype=np.float64)
        return np.ctypeslib.as_array(self.content.data, shape=(length,))

    def to_array(self) -> Array:
        """Copy the borrowed memory into an owned JAX array."""
        return jnp.array(self.as_numpy(), dtype=get_dtype())

    def __len__(self) -> int:
        return int(self.content.length)


def as_state_vector(values: ArrayLike, dimension: int | None = None) -> Array:
    """Convert a callable's output into a 1-D state-sized JAX array.

    Args:
        values: Vector-like value.
        dimension: Expected length, or ``None`` to skip the check.

    Returns:
        jax.Array: 1-D array of the configured dtype.

    Raises:
        ValueError: If the value is not 1-D or has the wrong length.
    """
    arr = jnp.asarray(values, dtype=get_dtype())
    if arr.ndim != 1:
        raise ValueError(f"Expected a 1-D vector, got shape {arr.shape}")
    if dimension is not None and arr.shape[0] != dimension:
        raise ValueError(f"Expected a vector of length {dimension}, got length {arr.shape[0]}")
    return arr


def as_dense_matrix(values: ArrayLike, dimension: int) -> Array:
    """Convert a callable's output into a dense ``(n, n)`` JAX matrix.

    Args:
        values: Matrix-like value (row-major indexing, ``m[i, j]`` is
            ``d f_i / d y_j``).
        dimension: State dimension ``n``.

    Returns:
        jax.Array: Square matrix of the configured dtype.

    Raises:
        ValueError: If the value is not ``(n, n)``.
    """
    mat = jnp.asarray(values, dtype=get_dtype())
    if mat.shape != (dimension, dimension):
        raise ValueError(
            f"Expected a ({dimension}, {dimension}) matrix, got shape {mat.shape}"
        )
    return mat


def stack_rows(rows: Sequence[ArrayLike], width: int) -> Array:
    """Stack output rows into a ``(len(rows), width)`` matrix.

    An empty sequence produces a ``(0, width)`` matrix rather than failing.
    """
    if not rows:
        return jnp.zeros((0, width), dtype=get_dtype())
    return jnp.stack([jnp.asarray(r, dtype=get_dtype()) for r in rows])

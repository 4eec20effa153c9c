"""Right-hand-side and Jacobian dispatch.

The derivative function of an :class:`~sunjax.OdeProblem` comes in two
flavours sharing one invocation contract ``rhs(t, y) -> dy/dt``:

- :class:`OdeRhsPython` wraps an in-process callable.
- :class:`OdeRhsNative` wraps a ctypes function pointer with the fixed
  signature :data:`OdeRhsCType` plus an opaque user-data pointer.

Stepping kernels never call either directly; they go through
:class:`RhsDispatcher`, which counts evaluations, checks the dimension and
maps failures onto the recoverable/fatal convention:

========================  ================================================
Outcome                   Result
========================  ================================================
success / status ``0``    derivative array
``RecoverableRhsError`` /  :class:`~sunjax.errors.RecoverableRhsError`
status ``> 0``            (kernel retries with a smaller step)
other exception /         :class:`~sunjax.errors.CallbackError` (fatal)
status ``< 0``
========================  ================================================
"""

from __future__ import annotations

import ctypes
from abc import ABC, abstractmethod
from collections.abc import Callable

import numpy as np
from jax import Array
from jax.typing import ArrayLike

from sunjax._foreign import (
    SunVector,
    SunVectorContent,
    as_dense_matrix,
    as_state_vector,
)
from sunjax.errors import CallbackError, ErrorCode, RecoverableRhsError

OdeRhsCType = ctypes.CFUNCTYPE(
    ctypes.c_int,
    ctypes.c_double,
    ctypes.POINTER(SunVectorContent),
    ctypes.POINTER(SunVectorContent),
    ctypes.c_void_p,
)
"""ctypes prototype of a native right-hand side.

``int rhs(double t, SunVectorContent *y, SunVectorContent *ydot, void *user_data)``
returning ``0`` on success, a positive value for a recoverable failure and a
negative value for a fatal one.
"""


class OdeRhs(ABC):
    """Invocation contract shared by both right-hand-side variants."""

    @abstractmethod
    def __call__(self, t: float, y: Array) -> ArrayLike:
        """Evaluate the derivative at ``(t, y)``."""


class OdeRhsPython(OdeRhs):
    """Right-hand side backed by an in-process callable ``fn(t, y)``.

    Args:
        fn: Derivative function.  May raise
            :class:`~sunjax.errors.RecoverableRhsError` to request a retry.

    Examples:
        ```python
        import jax.numpy as jnp
        from sunjax.rhs import OdeRhsPython
        rhs = OdeRhsPython(lambda t, y: -y)
        rhs(0.0, jnp.array([1.0]))
        ```
    """

    def __init__(self, fn: Callable[[float, Array], ArrayLike]):
        if not callable(fn):
            raise TypeError(f"Right-hand side must be callable, got {type(fn).__name__}")
        self.fn = fn

    def __call__(self, t: float, y: Array) -> ArrayLike:
        return self.fn(t, y)

    def __repr__(self):
        return f"OdeRhsPython({getattr(self.fn, '__name__', self.fn)!r})"


class OdeRhsNative(OdeRhs):
    """Right-hand side backed by a native function pointer.

    The state is marshalled into a :class:`~sunjax._foreign.SunVector`
    (zero-copy for contiguous ``float64`` input) and the derivative is read
    back from a second one.

    Args:
        fn_ptr: Function pointer of type :data:`OdeRhsCType`.
        user_data: Opaque pointer forwarded unchanged.  The caller must keep
            whatever it points to alive for the whole solve.
    """

    def __init__(self, fn_ptr, user_data=None):
        if not isinstance(fn_ptr, OdeRhsCType):
            fn_ptr = ctypes.cast(fn_ptr, OdeRhsCType)
        self.fn_ptr = fn_ptr
        self.user_data = user_data

    def __call__(self, t: float, y: Array) -> ArrayLike:
        state_in = SunVector(np.asarray(y, dtype=np.float64))
        deriv_out = SunVector.zeros(len(state_in))
        status = self.fn_ptr(
            float(t), state_in.pointer(), deriv_out.pointer(), self.user_data
        )
        if status > 0:
            raise RecoverableRhsError(f"Native right-hand side returned status {status}")
        if status < 0:
            raise CallbackError(
                f"Native right-hand side returned fatal status {status}",
                code=ErrorCode.RHS_FAILURE,
            )
        return deriv_out.to_array()

    def __repr__(self):
        return f"OdeRhsNative({self.fn_ptr!r}, user_data={self.user_data!r})"


def as_ode_rhs(rhs) -> OdeRhs:
    """Coerce *rhs* into an :class:`OdeRhs`.

    :class:`OdeRhs` instances pass through, ctypes function pointers become
    :class:`OdeRhsNative` (without user data) and plain callables become
    :class:`OdeRhsPython`.
    """
    if isinstance(rhs, OdeRhs):
        return rhs
    if isinstance(rhs, ctypes._CFuncPtr):
        return OdeRhsNative(rhs)
    return OdeRhsPython(rhs)


class RhsDispatcher:
    """Counted, validated access to an :class:`OdeRhs`.

    Args:
        rhs: Right-hand side to dispatch to.
        dimension: State dimension.
    """

    def __init__(self, rhs: OdeRhs, dimension: int):
        self.rhs = rhs
        self.dimension = dimension
        self.num_evals = 0

    def __call__(self, t: float, y: Array) -> Array:
        """Evaluate the derivative, returning a JAX array of length ``dimension``."""
        self.num_evals += 1
        try:
            deriv = self.rhs(t, y)
        except (RecoverableRhsError, CallbackError):
            raise
        except Exception as exc:
            raise CallbackError(f"Right-hand side raised at t={float(t)!r}: {exc!r}") from exc
        try:
            return as_state_vector(deriv, self.dimension)
        except (TypeError, ValueError) as exc:
            raise CallbackError(f"Right-hand side returned an invalid derivative: {exc}") from exc


class JacobianDispatcher:
    """Counted, validated access to an optional Jacobian ``jac(t, y) -> (n, n)``."""

    def __init__(self, jacobian: Callable[[float, Array], ArrayLike], dimension: int):
        self.jacobian = jacobian
        self.dimension = dimension
        self.num_evals = 0

    def __call__(self, t: float, y: Array) -> Array:
        self.num_evals += 1
        try:
            jac = self.jacobian(t, y)
        except RecoverableRhsError:
            raise
        except Exception as exc:
            raise CallbackError(f"Jacobian raised at t={float(t)!r}: {exc!r}") from exc
        try:
            return as_dense_matrix(jac, self.dimension)
        except (TypeError, ValueError) as exc:
            raise CallbackError(f"Jacobian returned an invalid matrix: {exc}") from exc

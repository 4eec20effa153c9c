"""
sunjax is an adaptive ODE initial-value-problem engine with zero-crossing events, implemented in JAX.
"""

from .config import set_dtype, get_dtype, get_unit_roundoff

from .errors import (
    ErrorCode,
    SunjaxError,
    ConfigurationError,
    RecoverableRhsError,
    CallbackError,
)

from .tolerances import (
    Tolerances,
    error_weights,
    wrms_norm,
)

from .rhs import (
    OdeRhs,
    OdeRhsPython,
    OdeRhsNative,
    OdeRhsCType,
)

from ._foreign import (
    SunVector,
    BorrowedVector,
    SunVectorContent,
)

from .events import (
    CrossingDirection,
    EventSpec,
)

from .diagnostics import (
    SundialsDiagnostics,
    empty_diagnostics,
)

from ._types import (
    OdeProblem,
    ODEMethod,
    ODEOpts,
    EventInfo,
    SundialsSolution,
    ErrorDiagnostics,
)

from .solver import solve

__all__ = [
    "set_dtype",
    "get_dtype",
    "get_unit_roundoff",
    "ErrorCode",
    "SunjaxError",
    "ConfigurationError",
    "RecoverableRhsError",
    "CallbackError",
    "Tolerances",
    "error_weights",
    "wrms_norm",
    "OdeRhs",
    "OdeRhsPython",
    "OdeRhsNative",
    "OdeRhsCType",
    "SunVector",
    "BorrowedVector",
    "SunVectorContent",
    "CrossingDirection",
    "EventSpec",
    "SundialsDiagnostics",
    "empty_diagnostics",
    "OdeProblem",
    "ODEMethod",
    "ODEOpts",
    "EventInfo",
    "SundialsSolution",
    "ErrorDiagnostics",
    "solve",
]

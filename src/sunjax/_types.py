"""Problem, option and result types.

- :class:`OdeProblem`: the initial-value problem, validated on construction.
- :class:`ODEOpts` / :class:`ODEMethod`: solver configuration.
- :class:`SundialsSolution`: successful result.
- :class:`ErrorDiagnostics`: failure result with the partial trajectory.

Problems and options are immutable and consumed read-only by
:func:`sunjax.solve`; results own their arrays.
"""

from __future__ import annotations

import enum
import math
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import NamedTuple

import numpy as np
from jax import Array
from jax.typing import ArrayLike

from sunjax.diagnostics import SundialsDiagnostics
from sunjax.errors import ConfigurationError, ErrorCode
from sunjax.events import EventSpec
from sunjax.rhs import OdeRhs, as_ode_rhs
from sunjax.tolerances import Tolerances


@dataclass(frozen=True, eq=False)
class OdeProblem:
    """A complete initial-value problem.

    The solve starts at ``sol_times[0]`` from ``init_cond`` and reports the
    state at every requested time; recorded events add extra rows.

    Args:
        rhs: Right-hand side, an :class:`~sunjax.rhs.OdeRhs` or a plain
            callable ``f(t, y) -> dy/dt``.
        init_cond: Initial state vector.
        sol_times: Strictly increasing requested solution times.
        tolerances: Error-control tolerances.
        events: Monitored events, in declaration order.
        max_events: Maximum number of recorded events; recording more is a
            failure.
        jacobian: Optional ``jac(t, y) -> (n, n)`` used by implicit methods.

    Raises:
        ConfigurationError: If the problem is inconsistent.

    Examples:
        ```python
        import jax.numpy as jnp
        from sunjax import OdeProblem, Tolerances
        problem = OdeProblem(
            rhs=lambda t, y: -y,
            init_cond=jnp.array([1.0]),
            sol_times=jnp.array([0.0, 1.0, 2.0]),
            tolerances=Tolerances(1e-6, 1e-9),
        )
        ```
    """

    rhs: OdeRhs | Callable[[float, Array], ArrayLike]
    init_cond: ArrayLike
    sol_times: ArrayLike
    tolerances: Tolerances = field(default_factory=Tolerances)
    events: Sequence[EventSpec] = ()
    max_events: int = 100
    jacobian: Callable[[float, Array], ArrayLike] | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "rhs", as_ode_rhs(self.rhs))
        object.__setattr__(self, "events", tuple(self.events))

        init_cond = np.asarray(self.init_cond, dtype=np.float64)
        if init_cond.ndim != 1 or init_cond.size == 0:
            raise ConfigurationError(
                f"init_cond must be a non-empty 1-D vector, got shape {init_cond.shape}"
            )
        if not np.all(np.isfinite(init_cond)):
            raise ConfigurationError("init_cond must be finite")

        sol_times = np.asarray(self.sol_times, dtype=np.float64)
        if sol_times.ndim != 1 or sol_times.size == 0:
            raise ConfigurationError(
                f"sol_times must be a non-empty 1-D vector, got shape {sol_times.shape}"
            )
        if not np.all(np.isfinite(sol_times)):
            raise ConfigurationError("sol_times must be finite")
        if np.any(np.diff(sol_times) <= 0.0):
            raise ConfigurationError("sol_times must be strictly increasing")
        object.__setattr__(self, "sol_times", sol_times)
        object.__setattr__(self, "init_cond", init_cond)

        if not isinstance(self.tolerances, Tolerances):
            raise ConfigurationError(
                f"tolerances must be a Tolerances instance, got {type(self.tolerances).__name__}"
            )
        self.tolerances.validate_dimension(self.dimension)

        if isinstance(self.max_events, bool) or not isinstance(self.max_events, int) or self.max_events < 0:
            raise ConfigurationError(f"max_events must be a non-negative int, got {self.max_events!r}")
        for index, event in enumerate(self.events):
            if not isinstance(event, EventSpec):
                raise ConfigurationError(
                    f"events[{index}] must be an EventSpec, got {type(event).__name__}"
                )
        if self.jacobian is not None and not callable(self.jacobian):
            raise ConfigurationError("jacobian must be callable or None")

    @property
    def dimension(self) -> int:
        """State dimension."""
        return int(self.init_cond.shape[0])


class ODEMethod(enum.Enum):
    """Stepping method selector."""

    DP54 = "dp54"
    """Explicit Dormand-Prince 5(4), for non-stiff problems."""
    SDIRK2 = "sdirk2"
    """Implicit SDIRK of order 2 with Newton iteration, for stiff problems."""


@dataclass(frozen=True)
class ODEOpts:
    """Solver options.

    Args:
        max_num_steps: Maximum number of kernel steps between two
            consecutive requested output times.
        min_step: Floor on the step size. The kernel never steps shorter
            except onto a requested time, and a failed attempt at the floor
            ends the solve with ``STEP_TOO_SMALL``. ``0.0`` leaves only the
            round-off floor.
        max_fail: Maximum consecutive failed attempts within one step.
        method: Stepping method.
        init_step: Initial step size. By default the kernel estimates it as
            the solution :math:`h` of
            :math:`\\|\\frac{h^2\\ddot{y}}{2}\\| = 1`, where :math:`\\ddot{y}`
            is an estimated value of the second derivative of the solution
            at :math:`t_0`.
        max_step: Maximum step size.
        event_samples: Interior dense-output samples scanned per step when
            looking for event crossings.

    Raises:
        ConfigurationError: If an option is out of range.
    """

    max_num_steps: int = 10000
    min_step: float = 0.0
    max_fail: int = 10
    method: ODEMethod = ODEMethod.DP54
    init_step: float | None = None
    max_step: float = math.inf
    event_samples: int = 0

    def __post_init__(self) -> None:
        if self.max_num_steps < 1:
            raise ConfigurationError(f"max_num_steps must be >= 1, got {self.max_num_steps}")
        if not self.min_step >= 0.0:
            raise ConfigurationError(f"min_step must be >= 0, got {self.min_step}")
        if self.max_fail < 1:
            raise ConfigurationError(f"max_fail must be >= 1, got {self.max_fail}")
        if not isinstance(self.method, ODEMethod):
            raise ConfigurationError(f"method must be an ODEMethod, got {self.method!r}")
        if self.init_step is not None and not (math.isfinite(self.init_step) and self.init_step > 0.0):
            raise ConfigurationError(f"init_step must be positive, got {self.init_step}")
        if not self.max_step > self.min_step:
            raise ConfigurationError(
                f"max_step ({self.max_step}) must be greater than min_step ({self.min_step})"
            )
        if self.event_samples < 0:
            raise ConfigurationError(f"event_samples must be >= 0, got {self.event_samples}")


class EventInfo(NamedTuple):
    """One recorded event occurrence.

    Attributes:
        time: Event time.
        index: Index of the event in ``OdeProblem.events``.
        stop_solver: Whether the event ended the solve.
    """

    time: float
    index: int
    stop_solver: bool


class SundialsSolution(NamedTuple):
    """Successful solve.

    Attributes:
        actual_time_grid: Time of every output row, non-decreasing. Recorded
            events appear twice: once with the state before the update and
            once after.
        solution_matrix: States, one row per entry of ``actual_time_grid``
            and one column per state component.
        diagnostics: Solver counters.
        event_info: Recorded events, in the order they occurred.
    """

    actual_time_grid: Array
    solution_matrix: Array
    diagnostics: SundialsDiagnostics
    event_info: tuple[EventInfo, ...] = ()


class ErrorDiagnostics(NamedTuple):
    """Failed solve.

    Attributes:
        error_code: Failure category.
        error_estimates: Local error estimate of the last step attempt;
            either empty or of state dimension.
        var_weights: Error weights ``1 / (atol_i + |y_i| * rtol)`` in use at
            the failure; either empty or of state dimension.
        partial_results: Everything computed before the failure, with time
            as the first column followed by the state components.
        diagnostics: Solver counters at the failure, including
            ``max_events_reached``.
    """

    error_code: ErrorCode
    error_estimates: Array
    var_weights: Array
    partial_results: Array
    diagnostics: SundialsDiagnostics

"""Integration driver.

:func:`solve` runs one initial-value problem to completion on the calling
thread. The loop, per accepted kernel step:

1. Ask the kernel for the next step towards the next requested time; the
   kernel stops on it exactly, so every requested row is a kernel solution.
2. Let the :class:`~sunjax.events.EventEngine` look for crossings inside it.
3. Emit the requested time once the step reaches it. Dense output is only
   used to locate events and the state at them.
4. On an event: check the recorded-event budget, emit the pre- and
   post-update rows for recorded events, then either stop (successfully) or
   restart the kernel from the updated state.

Rows are only ever appended. Any fatal condition ends the solve with an
:class:`~sunjax.ErrorDiagnostics` carrying everything computed so far; only
configuration errors are raised.
"""

from __future__ import annotations

import logging

import jax.numpy as jnp
from jax import Array

from sunjax._foreign import as_state_vector, stack_rows
from sunjax._types import (
    ErrorDiagnostics,
    EventInfo,
    ODEMethod,
    ODEOpts,
    OdeProblem,
    SundialsSolution,
)
from sunjax.config import get_dtype
from sunjax.diagnostics import DiagnosticsCollector
from sunjax.errors import CallbackError, ConfigurationError, ErrorCode, KernelFailure
from sunjax.events import EventEngine, EventHit
from sunjax.integrators import AdaptiveConfig, DP54Kernel, SDIRK2Kernel, StepKernel
from sunjax.rhs import JacobianDispatcher, RhsDispatcher
from sunjax.tolerances import error_weights, weights_are_valid

logger = logging.getLogger(__name__)

_KERNELS: dict[ODEMethod, type[StepKernel]] = {
    ODEMethod.DP54: DP54Kernel,
    ODEMethod.SDIRK2: SDIRK2Kernel,
}


def solve(problem: OdeProblem, opts: ODEOpts | None = None) -> SundialsSolution | ErrorDiagnostics:
    """Solve an initial-value problem.

    Args:
        problem: The problem to solve.
        opts: Solver options. Uses default :class:`ODEOpts` if ``None``.

    Returns:
        SundialsSolution | ErrorDiagnostics: Exactly one of the two; callers
        branch with ``isinstance``.

    Raises:
        ConfigurationError: If the problem cannot be started (for example the
            initial error weights are not finite).

    Examples:
        ```python
        import jax.numpy as jnp
        from sunjax import OdeProblem, SundialsSolution, Tolerances, solve
        problem = OdeProblem(
            rhs=lambda t, y: -y,
            init_cond=jnp.array([1.0]),
            sol_times=jnp.array([0.0, 1.0, 2.0]),
            tolerances=Tolerances(1e-6, 1e-9),
        )
        result = solve(problem)
        isinstance(result, SundialsSolution)
        result.solution_matrix[:, 0]  # ~[1, exp(-1), exp(-2)]
        ```
    """
    if opts is None:
        opts = ODEOpts()
    if not isinstance(problem, OdeProblem):
        raise ConfigurationError(f"problem must be an OdeProblem, got {type(problem).__name__}")
    if not isinstance(opts, ODEOpts):
        raise ConfigurationError(f"opts must be an ODEOpts, got {type(opts).__name__}")
    return _Driver(problem, opts).run()


class _Driver:
    """State of one solve. Owns the output buffers and the diagnostics."""

    def __init__(self, problem: OdeProblem, opts: ODEOpts):
        self.problem = problem
        self.opts = opts
        self.dimension = problem.dimension
        self.times = [float(t) for t in problem.sol_times]
        self.y0 = as_state_vector(problem.init_cond, self.dimension)

        if not weights_are_valid(error_weights(problem.tolerances, self.y0)):
            raise ConfigurationError(
                "Initial error weights are not finite and positive; use a positive "
                "absolute tolerance for components that start at zero"
            )

        self.rhs = RhsDispatcher(problem.rhs, self.dimension)
        self.jacobian = (
            JacobianDispatcher(problem.jacobian, self.dimension)
            if problem.jacobian is not None
            else None
        )
        config = AdaptiveConfig(
            min_step=opts.min_step,
            max_step=opts.max_step,
            max_fail=opts.max_fail,
            init_step=opts.init_step,
        )
        self.kernel = _KERNELS[opts.method](self.rhs, problem.tolerances, config, self.jacobian)
        self.engine = EventEngine(problem.events, self.dimension, opts.event_samples)
        self.collector = DiagnosticsCollector()

        self.grid: list[float] = []
        self.rows: list[Array] = []
        self.event_info: list[EventInfo] = []
        self.num_recorded = 0
        self.next_out = 1

    # ---- entry point -------------------------------------------------------

    def run(self) -> SundialsSolution | ErrorDiagnostics:
        try:
            self._integrate()
        except KernelFailure as failure:
            return self._failure(failure.code, failure.error_estimates, failure.weights, str(failure))
        except CallbackError as exc:
            return self._failure(
                exc.code, self.kernel.last_error_estimates, self.kernel.last_weights, str(exc)
            )
        self.collector.absorb(self.kernel.counters)
        return SundialsSolution(
            actual_time_grid=jnp.asarray(self.grid, dtype=get_dtype()),
            solution_matrix=stack_rows(self.rows, self.dimension),
            diagnostics=self.collector.freeze(),
            event_info=tuple(self.event_info),
        )

    # ---- main loop ---------------------------------------------------------

    def _integrate(self) -> None:
        times = self.times
        t0 = times[0]
        self._emit(t0, self.y0)
        if len(times) == 1:
            return

        logger.debug(
            "Solving %d-dimensional problem with %s on [%r, %r], %d event(s)",
            self.dimension, self.kernel.name, t0, times[-1], len(self.engine),
        )
        self.engine.reset(t0, self.y0)
        self.kernel.reinit(t0, self.y0, times[1])
        self.collector.absorb(self.kernel.counters)

        steps_since_output = 0
        while self.next_out < len(times):
            if steps_since_output >= self.opts.max_num_steps:
                raise KernelFailure(
                    f"Reached max_num_steps={self.opts.max_num_steps} before "
                    f"t={times[self.next_out]!r} (currently at t={self.kernel.t!r})",
                    code=ErrorCode.TOO_MUCH_WORK,
                    t=self.kernel.t,
                    error_estimates=self.kernel.last_error_estimates,
                    weights=self.kernel.last_weights,
                )
            step = self.kernel.step(times[self.next_out])
            steps_since_output += 1
            self.collector.absorb(self.kernel.counters)

            hit = self.engine.locate(step)
            t_out = times[self.next_out]
            t_reached = step.t_new if hit is None else hit.time
            if t_reached >= t_out:
                self._emit(t_out, step.interpolate(t_out))
                self.next_out += 1
                steps_since_output = 0

            if hit is not None and self._handle_events(hit):
                return

    def _handle_events(self, hit: EventHit) -> bool:
        """Apply the events in *hit*; return ``True`` if the solve must stop."""
        events = self.problem.events
        recorded = [i for i in hit.indices if events[i].record]
        if self.num_recorded + len(recorded) > self.problem.max_events:
            self.collector.mark_max_events_reached()
            raise KernelFailure(
                f"Recording event(s) {recorded} at t={hit.time!r} exceeds "
                f"max_events={self.problem.max_events}",
                code=ErrorCode.MAX_EVENTS_REACHED,
                t=hit.time,
                error_estimates=self.kernel.last_error_estimates,
                weights=self.kernel.last_weights,
            )

        y_after = self.engine.apply_updates(hit)
        stop = any(events[i].stop_solver for i in hit.indices)
        if recorded:
            self._emit(hit.time, hit.state)
            self._emit(hit.time, y_after)
            self.num_recorded += len(recorded)
            self.event_info.extend(
                EventInfo(time=hit.time, index=i, stop_solver=events[i].stop_solver)
                for i in recorded
            )
        logger.debug(
            "Applied event(s) %s at t=%r (recorded %d/%d)%s",
            hit.indices, hit.time, self.num_recorded, self.problem.max_events,
            ", stopping" if stop else "",
        )
        if stop:
            return True
        if self.next_out < len(self.times):
            self.engine.reset(hit.time, y_after, fired=hit.indices)
            self.kernel.reinit(hit.time, y_after, self.times[self.next_out])
            self.collector.absorb(self.kernel.counters)
        return False

    # ---- output ------------------------------------------------------------

    def _emit(self, t: float, y: Array) -> None:
        self.grid.append(t)
        self.rows.append(y)

    def _failure(
        self, code: ErrorCode, error_estimates: Array, weights: Array, message: str
    ) -> ErrorDiagnostics:
        self.collector.absorb(self.kernel.counters)
        partial = jnp.column_stack(
            [jnp.asarray(self.grid, dtype=get_dtype()), stack_rows(self.rows, self.dimension)]
        )
        logger.warning(
            "Solve failed with %s after %d output row(s): %s",
            ErrorCode(code).name, len(self.grid), message,
        )
        return ErrorDiagnostics(
            error_code=ErrorCode(code),
            error_estimates=jnp.asarray(error_estimates, dtype=get_dtype()),
            var_weights=jnp.asarray(weights, dtype=get_dtype()),
            partial_results=partial,
            diagnostics=self.collector.freeze(),
        )

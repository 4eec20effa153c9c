"""Common stepping-kernel machinery.

:class:`StepKernel` owns the accept/reject loop shared by every method:

1. Compute error weights at the step start and reject non-finite weights.
2. Ask the concrete method for a :class:`~sunjax.integrators._types.Trial`.
3. Apply the WRMS error test; on rejection shrink the step and retry.
4. Give up with :class:`~sunjax.errors.KernelFailure` after ``max_fail``
   consecutive failures, on a failure at ``min_step``, or at the round-off
   floor.

Step sizes are clamped to ``[min_step, max_step]``; only the final step onto
``t_stop`` may be shorter than ``min_step``.

Recoverable right-hand-side failures and Newton non-convergence both retry
with a quarter of the step size and count as nonlinear convergence failures.
Concrete methods implement :meth:`StepKernel._attempt` only.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod

import jax.numpy as jnp
from jax import Array

from sunjax._foreign import as_state_vector
from sunjax.config import get_dtype, get_unit_roundoff
from sunjax.diagnostics import KernelCounters
from sunjax.errors import ErrorCode, KernelFailure, RecoverableRhsError
from sunjax.integrators._adaptive import compute_next_step_size, estimate_initial_step
from sunjax.integrators._types import AdaptiveConfig, KernelStep, Trial
from sunjax.rhs import JacobianDispatcher, RhsDispatcher
from sunjax.tolerances import Tolerances, error_weights, weights_are_valid, wrms_norm

_FAILURE_SHRINK = 0.25


class ConvergenceFailure(Exception):
    """Raised by implicit methods when the Newton iteration does not converge."""


class StepKernel(ABC):
    """Single-step adaptive integrator with dense output.

    Args:
        rhs: Counted right-hand side.
        tolerances: Error-control tolerances.
        config: Step-size control parameters.
        jacobian: Optional counted Jacobian. Explicit methods ignore it.

    Notes:
        Counters are never reset, not even by :meth:`reinit`, so the
        integration driver can absorb them after every call.
    """

    name: str = "kernel"
    order: int = 1
    implicit: bool = False

    def __init__(
        self,
        rhs: RhsDispatcher,
        tolerances: Tolerances,
        config: AdaptiveConfig | None = None,
        jacobian: JacobianDispatcher | None = None,
    ):
        self.rhs = rhs
        self.tolerances = tolerances
        self.config = config if config is not None else AdaptiveConfig()
        self.jacobian = jacobian
        self.dimension = rhs.dimension
        self.counters = KernelCounters()
        self.t: float | None = None
        self.y: Array | None = None
        self.f: Array | None = None
        self.h: float | None = None
        self._last_error = jnp.zeros(0, dtype=get_dtype())
        self._last_weights = jnp.zeros(0, dtype=get_dtype())

    # ---- introspection ---------------------------------------------------

    @property
    def last_error_estimates(self) -> Array:
        """Local error estimate of the latest attempt (empty before any step)."""
        return self._last_error

    @property
    def last_weights(self) -> Array:
        """Error weights of the latest attempt (empty before any step)."""
        return self._last_weights

    def __repr__(self):
        return f"{self.__class__.__name__}(t={self.t}, h={self.h})"

    # ---- lifecycle -------------------------------------------------------

    def reinit(self, t: float, y: Array, t_out: float) -> None:
        """(Re-)start the kernel from ``(t, y)``.

        Args:
            t: Restart time.
            y: Restart state.
            t_out: Next time the solution is needed; bounds the estimated
                initial step.

        Raises:
            KernelFailure: If the weights are invalid or the right-hand side
                fails at the restart point.
        """
        self.t = float(t)
        self.y = as_state_vector(y, self.dimension)
        weights = self._weights(self.t, self.y)
        try:
            self.f = self.rhs(self.t, self.y)
            if self.config.init_step is not None:
                self.h = float(self.config.init_step)
            else:
                self.h = estimate_initial_step(
                    self.rhs, self.t, self.y, self.f, weights, t_out, get_unit_roundoff()
                )
        except RecoverableRhsError as exc:
            raise self._failure(
                f"Right-hand side failed at the initial point t={self.t}: {exc}",
                ErrorCode.RHS_FAILURE,
            ) from exc
        finally:
            self._sync_rhs_counters()
        self._on_reinit()

    def step(self, t_stop: float) -> KernelStep:
        """Take one accepted step towards ``t_stop`` without passing it.

        Args:
            t_stop: Time the kernel must not step past.

        Returns:
            KernelStep: The accepted step with its dense output.

        Raises:
            KernelFailure: If no acceptable step can be found.
        """
        if self.t is None:
            raise RuntimeError("StepKernel.step called before reinit")
        t, y, f = self.t, self.y, self.f
        cfg = self.config
        remaining = t_stop - t
        if remaining <= 0.0:
            raise ValueError(f"t_stop={t_stop} is not ahead of the current time {t}")

        uround = get_unit_roundoff()
        if remaining <= 16.0 * uround * max(abs(t), abs(t_stop)):
            # Round-off sized gap, left by an event located just before t_stop
            self.t = t_stop
            return KernelStep(
                t_old=t, y_old=y, f_old=f, t_new=t_stop, y_new=y, f_new=f, error_norm=0.0
            )

        weights = self._weights(t, y)
        self._last_weights = weights
        h = self._bounded(self.h, remaining, t_stop)

        fails = 0
        self._begin_step()
        try:
            while True:
                last = h >= remaining
                if h <= 16.0 * uround * max(abs(t), abs(t_stop)):
                    raise self._failure(
                        f"Step size {h:g} at t={t} is below the round-off floor",
                        ErrorCode.STEP_TOO_SMALL,
                    )

                self.counters.num_step_attempts += 1
                try:
                    trial = self._attempt(t, y, f, h, weights)
                except RecoverableRhsError as exc:
                    self.counters.num_nonlin_solv_conv_fails += 1
                    self._check_floor(h, t, "Right-hand side failed", exc)
                    fails += 1
                    if fails >= cfg.max_fail:
                        raise self._failure(
                            f"Right-hand side failed repeatedly at t={t}: {exc}",
                            ErrorCode.RHS_FAILURE,
                        ) from exc
                    h = self._bounded(h * _FAILURE_SHRINK, remaining, t_stop)
                    continue
                except ConvergenceFailure as exc:
                    self._check_floor(h, t, "Newton iteration failed to converge", exc)
                    fails += 1
                    if fails >= cfg.max_fail:
                        raise self._failure(
                            f"Newton iteration failed to converge at t={t}: {exc}",
                            ErrorCode.CONV_FAILURE,
                        ) from exc
                    h = self._bounded(h * _FAILURE_SHRINK, remaining, t_stop)
                    continue

                err = wrms_norm(trial.error_vector, weights)
                self._last_error = trial.error_vector
                if not math.isfinite(err) or err > 1.0:
                    self.counters.num_err_test_fails += 1
                    self._check_floor(h, t, f"Error test failed (norm {err:g})")
                    fails += 1
                    if fails >= cfg.max_fail:
                        raise self._failure(
                            f"Error test failed {fails} times at t={t} (norm {err:g})",
                            ErrorCode.ERR_TEST_FAILURE,
                        )
                    h = self._bounded(
                        compute_next_step_size(
                            err, h, self.order, cfg.safety_factor, cfg.min_scale_factor, 1.0
                        ),
                        remaining,
                        t_stop,
                    )
                    continue

                t_new = t_stop if last else t + h
                self.counters.num_steps += 1
                self.t, self.y, self.f = t_new, trial.y_new, trial.f_new
                self.h = min(
                    compute_next_step_size(
                        err, h, self.order, cfg.safety_factor,
                        cfg.min_scale_factor, cfg.max_scale_factor,
                    ),
                    cfg.max_step,
                )
                return KernelStep(
                    t_old=t,
                    y_old=y,
                    f_old=f,
                    t_new=t_new,
                    y_new=trial.y_new,
                    f_new=trial.f_new,
                    error_norm=err,
                    dense=trial.dense,
                )
        finally:
            self._sync_rhs_counters()

    # ---- hooks for concrete methods ----------------------------------------

    @abstractmethod
    def _attempt(self, t: float, y: Array, f: Array, h: float, weights: Array) -> Trial:
        """Compute one trial step of size ``h`` from ``(t, y)`` with ``f = f(t, y)``."""

    def _begin_step(self) -> None:
        """Called once before the attempts of each step."""

    def _on_reinit(self) -> None:
        """Called after every (re-)initialisation."""

    # ---- helpers -----------------------------------------------------------

    def _weights(self, t: float, y: Array) -> Array:
        weights = error_weights(self.tolerances, y)
        if not weights_are_valid(weights):
            self._last_weights = weights
            raise self._failure(
                f"Error weights at t={t} are not finite and positive; "
                f"an absolute tolerance of zero requires a non-zero state component",
                ErrorCode.BAD_ERROR_WEIGHTS,
            )
        return weights

    def _bounded(self, h: float, remaining: float, t_stop: float) -> float:
        """Clamp *h* to ``[min_step, max_step]`` and to the distance left."""
        cfg = self.config
        h = min(max(h, cfg.min_step), cfg.max_step)
        if h >= remaining or remaining - h <= 100.0 * get_unit_roundoff() * abs(t_stop):
            return remaining
        return h

    def _check_floor(
        self, h: float, t: float, reason: str, cause: Exception | None = None
    ) -> None:
        if h <= self.config.min_step:
            raise self._failure(
                f"{reason} at t={t} with the step already at min_step={self.config.min_step:g}",
                ErrorCode.STEP_TOO_SMALL,
            ) from cause

    def _sync_rhs_counters(self) -> None:
        own_evals = self.rhs.num_evals - self.counters.num_dls_rhs_evals
        if self.implicit:
            self.counters.num_rhs_evals_fi = own_evals
        else:
            self.counters.num_rhs_evals_fe = own_evals
        if self.jacobian is not None:
            self.counters.num_jac_evals = self.jacobian.num_evals

    def _failure(self, message: str, code: ErrorCode) -> KernelFailure:
        return KernelFailure(
            f"{self.name}: {message}",
            code=code,
            t=self.t,
            error_estimates=self._last_error,
            weights=self._last_weights,
        )

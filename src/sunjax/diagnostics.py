"""Solver step and iteration counters.

:class:`SundialsDiagnostics` is the immutable snapshot attached to every
result.  :class:`DiagnosticsCollector` is the mutable accumulator the
integration driver owns for the duration of one solve; it absorbs the
stepping kernel's counters after each kernel call and is frozen into a
snapshot when the solve ends.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import NamedTuple


class SundialsDiagnostics(NamedTuple):
    """Counters describing the work done by one solve.

    All counters are non-negative and never decrease during a solve. Several
    of them stay zero on ordinary solves:

    - With the explicit ``DP54`` method, ``num_rhs_evals_fi``,
      ``num_lin_solv_setups``, ``num_nonlin_solv_iters``, ``num_jac_evals``
      and ``num_dls_rhs_evals`` are always zero, and
      ``num_nonlin_solv_conv_fails`` only counts recoverable right-hand-side
      failures.
    - With ``SDIRK2``, ``num_rhs_evals_fe`` is always zero, and either
      ``num_jac_evals`` or ``num_dls_rhs_evals`` is, depending on whether a
      Jacobian was supplied.
    - ``num_err_test_fails`` is zero whenever no step is rejected, which is
      common on smooth problems with either method.

    Attributes:
        num_steps: Accepted steps.
        num_step_attempts: Accepted plus rejected step attempts.
        num_rhs_evals_fe: Right-hand-side evaluations by explicit methods.
        num_rhs_evals_fi: Right-hand-side evaluations by implicit methods,
            excluding those spent on difference-quotient Jacobians.
        num_lin_solv_setups: Newton-matrix factorizations.
        num_err_test_fails: Local error test failures.
        num_nonlin_solv_iters: Newton iterations.
        num_nonlin_solv_conv_fails: Newton convergence failures, including
            recoverable right-hand-side failures.
        num_jac_evals: Calls to the user-supplied Jacobian.
        num_dls_rhs_evals: Right-hand-side evaluations spent on
            difference-quotient Jacobian approximations.
        max_events_reached: Whether the solve stopped because the recorded
            event budget was exhausted.
    """

    num_steps: int = 0
    num_step_attempts: int = 0
    num_rhs_evals_fe: int = 0
    num_rhs_evals_fi: int = 0
    num_lin_solv_setups: int = 0
    num_err_test_fails: int = 0
    num_nonlin_solv_iters: int = 0
    num_nonlin_solv_conv_fails: int = 0
    num_jac_evals: int = 0
    num_dls_rhs_evals: int = 0
    max_events_reached: bool = False


def empty_diagnostics() -> SundialsDiagnostics:
    """Return the all-zero diagnostics value."""
    return SundialsDiagnostics()


@dataclass
class KernelCounters:
    """Live counters maintained by a stepping kernel.

    Kernels keep counting across re-initialisation after events, so the
    values are monotonic for the whole solve.
    """

    num_steps: int = 0
    num_step_attempts: int = 0
    num_rhs_evals_fe: int = 0
    num_rhs_evals_fi: int = 0
    num_lin_solv_setups: int = 0
    num_err_test_fails: int = 0
    num_nonlin_solv_iters: int = 0
    num_nonlin_solv_conv_fails: int = 0
    num_jac_evals: int = 0
    num_dls_rhs_evals: int = 0


_COUNTER_NAMES = tuple(f.name for f in fields(KernelCounters))


class DiagnosticsCollector:
    """Mutable diagnostics accumulator owned by the integration driver."""

    def __init__(self):
        self._counts = dict.fromkeys(_COUNTER_NAMES, 0)
        self.max_events_reached = False

    def absorb(self, counters: KernelCounters) -> None:
        """Take over the kernel's counters after a kernel call.

        Raises:
            ValueError: If a counter went backwards.
        """
        for name in _COUNTER_NAMES:
            value = getattr(counters, name)
            if value < self._counts[name]:
                raise ValueError(
                    f"Diagnostics counter {name} decreased from {self._counts[name]} to {value}"
                )
            self._counts[name] = value

    def mark_max_events_reached(self) -> None:
        self.max_events_reached = True

    def freeze(self) -> SundialsDiagnostics:
        """Return an immutable snapshot of the current counters."""
        return SundialsDiagnostics(
            max_events_reached=self.max_events_reached, **self._counts
        )

"""Exception hierarchy and failure codes.

Only :class:`ConfigurationError` ever escapes :func:`sunjax.solve`; every
other condition below is converted by the integration driver into an
:class:`~sunjax.ErrorDiagnostics` result carrying an :class:`ErrorCode`.

- :class:`ConfigurationError`: invalid problem or options, rejected before
  stepping starts.
- :class:`RecoverableRhsError`: a right-hand side asks the kernel to retry
  with a smaller step.
- :class:`CallbackError`: a user callable failed fatally.
- :class:`KernelFailure`: the stepping kernel gave up.
"""

from __future__ import annotations

import enum

from jax import Array


class ErrorCode(enum.IntEnum):
    """Numeric failure code reported in :class:`~sunjax.ErrorDiagnostics`.

    ``GENERIC_FAILURE`` keeps the historical value ``1``; the remaining codes
    distinguish the failure categories so callers do not have to dig through
    the diagnostics to tell them apart.
    """

    GENERIC_FAILURE = 1
    TOO_MUCH_WORK = 2
    ERR_TEST_FAILURE = 3
    CONV_FAILURE = 4
    STEP_TOO_SMALL = 5
    RHS_FAILURE = 6
    CALLBACK_FAILURE = 7
    MAX_EVENTS_REACHED = 8
    BAD_ERROR_WEIGHTS = 9


class SunjaxError(Exception):
    """Base class for all sunjax errors."""


class ConfigurationError(SunjaxError, ValueError):
    """The problem or solver options are inconsistent."""


class RecoverableRhsError(SunjaxError):
    """Raised by a right-hand side to signal a transient evaluation failure.

    The stepping kernel reacts by retrying the step with a smaller step size,
    bounded by ``ODEOpts.max_fail``.  Native right-hand sides signal the same
    condition by returning a positive status.
    """


class CallbackError(SunjaxError):
    """A user-supplied callable failed in a way that aborts the solve.

    Args:
        message: Human-readable description.
        code: Failure code reported in the error result.
    """

    def __init__(self, message: str, code: ErrorCode = ErrorCode.CALLBACK_FAILURE):
        super().__init__(message)
        self.code = code


class KernelFailure(SunjaxError):
    """The stepping kernel could not complete a step.

    Args:
        message: Human-readable description.
        code: Failure code reported in the error result.
        t: Time at which the kernel gave up.
        error_estimates: Last local error estimate (possibly empty).
        weights: Error weights in use at the failure (possibly empty).
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode,
        t: float,
        error_estimates: Array,
        weights: Array,
    ):
        super().__init__(message)
        self.code = code
        self.t = t
        self.error_estimates = error_estimates
        self.weights = weights

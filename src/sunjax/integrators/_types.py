"""Type definitions for the stepping kernels.

Provides the core data types shared by all kernel implementations:

- :class:`KernelStep`: Output of every accepted step, containing both step
  endpoints, the derivatives there, and a dense-output interpolant used for
  event location and refinement.
- :class:`AdaptiveConfig`: Step-size control parameters, assembled by the
  integration driver from :class:`~sunjax.ODEOpts`.
- :class:`Trial`: Result of a single step attempt, before the error test.

All three are :class:`~typing.NamedTuple` instances.
"""

from __future__ import annotations

import math
from typing import NamedTuple

from jax import Array


class KernelStep(NamedTuple):
    """Result of one accepted kernel step over ``[t_old, t_new]``.

    Attributes:
        t_old: Time at the start of the step.
        y_old: State at ``t_old``.
        f_old: Derivative at ``(t_old, y_old)``.
        t_new: Time at the end of the step.
        y_new: State at ``t_new``.
        f_new: Derivative at ``(t_new, y_new)``.
        error_norm: WRMS norm of the local error estimate (<= 1.0).
        dense: Quartic correction of a continuous extension, or ``None`` for
            plain cubic Hermite interpolation.
    """

    t_old: float
    y_old: Array
    f_old: Array
    t_new: float
    y_new: Array
    f_new: Array
    error_norm: float
    dense: Array | None = None

    @property
    def h(self) -> float:
        """Step size actually taken."""
        return self.t_new - self.t_old

    def interpolate(self, t: float) -> Array:
        """Evaluate the dense-output interpolant at ``t``.

        Uses the cubic Hermite polynomial matching value and derivative at
        both endpoints, plus the ``dense`` correction when the kernel
        provides one (the Dormand-Prince continuous extension, fourth-order
        accurate). The endpoints are reproduced exactly either way.

        .. math::

            y(t_0 + s h) = h_{00} y_0 + h_{10} h f_0 + h_{01} y_1 + h_{11} h f_1
                + s^2 (1 - s)^2 d

        Args:
            t: Time inside ``[t_old, t_new]``.

        Returns:
            jax.Array: Interpolated state.
        """
        if t == self.t_new:
            return self.y_new
        if t == self.t_old:
            return self.y_old
        h = self.h
        s = (t - self.t_old) / h
        s2 = s * s
        s3 = s2 * s
        h00 = 2.0 * s3 - 3.0 * s2 + 1.0
        h10 = s3 - 2.0 * s2 + s
        h01 = -2.0 * s3 + 3.0 * s2
        h11 = s3 - s2
        y = (
            h00 * self.y_old
            + (h10 * h) * self.f_old
            + h01 * self.y_new
            + (h11 * h) * self.f_new
        )
        if self.dense is not None:
            y = y + (s2 * (1.0 - s) ** 2) * self.dense
        return y


class Trial(NamedTuple):
    """Result of one step attempt, before the local error test.

    Attributes:
        y_new: Proposed state at ``t + h``.
        f_new: Derivative at the proposed state.
        error_vector: Local error estimate (high- minus low-order solution).
        dense: Continuous-extension correction passed on to
            :class:`KernelStep`, if the method has one.
    """

    y_new: Array
    f_new: Array
    error_vector: Array
    dense: Array | None = None


class AdaptiveConfig(NamedTuple):
    """Configuration for adaptive step-size control.

    Attributes:
        safety_factor: Multiplicative safety factor applied to step-size
            predictions. Values < 1.0 produce conservative step sizes.
        min_scale_factor: Minimum allowed ratio ``h_next / h``.
        max_scale_factor: Maximum allowed ratio ``h_next / h`` after an
            accepted step.
        min_step: Floor on the step size. Predicted and shrunk steps are
            raised to it; a failed attempt at the floor is a fatal
            ``STEP_TOO_SMALL`` failure. The final step onto ``t_stop`` may be
            shorter.
        max_step: Maximum step size.
        max_fail: Consecutive failed attempts allowed within one step.
        init_step: First step size after (re-)initialisation, or ``None``
            to estimate it.
    """

    safety_factor: float = 0.9
    min_scale_factor: float = 0.2
    max_scale_factor: float = 10.0
    min_step: float = 0.0
    max_step: float = math.inf
    max_fail: int = 10
    init_step: float | None = None

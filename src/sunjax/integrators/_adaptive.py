"""Adaptive step-size control utilities.

Provides the step-size update and the initial-step heuristic shared by every
kernel. The error control follows the usual embedded-method approach:

1. Compute the WRMS norm of the local error estimate with
   :func:`~sunjax.tolerances.wrms_norm`.
2. Accept the step if the norm is <= 1.0.
3. Predict the next step size from the norm and the estimator order.
"""

from __future__ import annotations

import math
from collections.abc import Callable

from jax import Array

from sunjax.tolerances import wrms_norm


def compute_next_step_size(
    error: float,
    h: float,
    order: float,
    safety_factor: float,
    min_scale_factor: float,
    max_scale_factor: float,
) -> float:
    """Compute the next step size based on the current error estimate.

    Uses the standard optimal step-size formula:

    .. math::

        h_{\\text{next}} = h \\cdot S \\cdot
            \\left(\\frac{1}{\\text{error}}\\right)^{1/(p+1)}

    where *S* is the safety factor and *p* is the order of the error
    estimator. The scale factor is clamped to
    ``[min_scale_factor, max_scale_factor]``; a zero error grows the step by
    ``max_scale_factor`` and a non-finite error shrinks it by
    ``min_scale_factor``.

    Args:
        error: WRMS error norm of the last attempt.
        h: Step size of the last attempt.
        order: Order of the error estimator.
        safety_factor: Multiplicative safety factor (typically 0.9).
        min_scale_factor: Minimum allowed ratio ``h_next / h``.
        max_scale_factor: Maximum allowed ratio ``h_next / h``.

    Returns:
        float: Suggested next step size.
    """
    if not math.isfinite(error):
        return h * min_scale_factor
    if error <= 0.0:
        return h * max_scale_factor
    scale = safety_factor * (1.0 / error) ** (1.0 / (order + 1.0))
    scale = min(max(scale, min_scale_factor), max_scale_factor)
    return h * scale


def estimate_initial_step(
    rhs: Callable[[float, Array], Array],
    t0: float,
    y0: Array,
    f0: Array,
    weights: Array,
    t_out: float,
    unit_roundoff: float,
) -> float:
    """Estimate the first step size after (re-)initialisation.

    Solves :math:`\\|h^2 \\ddot{y} / 2\\|_{\\text{WRMS}} = 1` for *h*, with
    :math:`\\ddot{y}` estimated by the difference quotient
    ``(f(t0 + h, y0 + h f0) - f0) / h`` and refined for up to four
    iterations. The result is bounded below by a round-off floor and above
    by a tenth of the distance to ``t_out``.

    Args:
        rhs: Counted right-hand side.
        t0: Initial time.
        y0: Initial state.
        f0: Derivative at ``(t0, y0)``.
        weights: Error weights at ``y0``.
        t_out: Next time the solution is needed; must be > ``t0``.
        unit_roundoff: Machine epsilon of the working dtype.

    Returns:
        float: Positive initial step size.
    """
    tdist = t_out - t0
    hub = 0.1 * tdist
    hlb = 100.0 * unit_roundoff * max(abs(t0), abs(t_out))
    if hub <= hlb:
        return tdist

    h = math.sqrt(hlb * hub)
    for _ in range(4):
        y1 = y0 + h * f0
        f1 = rhs(t0 + h, y1)
        ydd_norm = wrms_norm((f1 - f0) / h, weights)
        if ydd_norm * hub * hub > 2.0:
            h_new = math.sqrt(2.0 / ydd_norm)
        else:
            h_new = math.sqrt(h * hub)
        ratio = h_new / h
        h = h_new
        if 0.5 < ratio < 2.0:
            break

    return min(max(0.5 * h, hlb), hub)

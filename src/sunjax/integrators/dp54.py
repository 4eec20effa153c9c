"""Dormand-Prince 5(4) explicit kernel (DP54).

Implements the Dormand-Prince embedded Runge-Kutta method with a 5th-order
solution for propagation and a 4th-order solution for error estimation. The
method uses 7 stages per step.

The Dormand-Prince method has the First-Same-As-Last (FSAL) property: the
7th stage of step *n* is the derivative at the accepted state, which is both
the 1st stage of step *n+1* and the end-point derivative of the dense-output
interpolant. The kernel caches it, so an accepted step costs 6 new
right-hand-side evaluations.

The Butcher tableau coefficients are the standard Dormand-Prince values:

- Nodes (c): [0, 1/5, 3/10, 4/5, 8/9, 1, 1]
- 5th-order weights (b_high): [35/384, 0, 500/1113, 125/192, -2187/6784, 11/84, 0]
- 4th-order weights (b_low): [5179/57600, 0, 7571/16695, 393/640, -92097/339200,
  187/2100, 1/40]

Dense output uses the Dormand-Prince continuous extension, a quartic built
from the same stages, so event location is fourth-order accurate inside a
step.
"""

from __future__ import annotations

from jax import Array

from sunjax.integrators._kernel import StepKernel
from sunjax.integrators._types import Trial

# Nodes
_C = (0.0, 1.0 / 5.0, 3.0 / 10.0, 4.0 / 5.0, 8.0 / 9.0, 1.0, 1.0)

# Coupling coefficients (lower-triangular rows)
_A1 = (1.0 / 5.0,)
_A2 = (3.0 / 40.0, 9.0 / 40.0)
_A3 = (44.0 / 45.0, -56.0 / 15.0, 32.0 / 9.0)
_A4 = (19372.0 / 6561.0, -25360.0 / 2187.0, 64448.0 / 6561.0, -212.0 / 729.0)
_A5 = (9017.0 / 3168.0, -355.0 / 33.0, 46732.0 / 5247.0, 49.0 / 176.0, -5103.0 / 18656.0)

# 5th-order weights (primary solution); also the last coupling row
_B_HIGH = (35.0 / 384.0, 0.0, 500.0 / 1113.0, 125.0 / 192.0, -2187.0 / 6784.0, 11.0 / 84.0, 0.0)

# 4th-order weights (error estimation)
_B_LOW = (
    5179.0 / 57600.0,
    0.0,
    7571.0 / 16695.0,
    393.0 / 640.0,
    -92097.0 / 339200.0,
    187.0 / 2100.0,
    1.0 / 40.0,
)

# b_high - b_low, so the error estimate needs no second solution vector
_E = tuple(bh - bl for bh, bl in zip(_B_HIGH, _B_LOW))

# Continuous-extension weights; _D[1] is zero
_D = (
    -12715105075.0 / 11282082432.0,
    0.0,
    87487479700.0 / 32700410799.0,
    -10690763975.0 / 1880347072.0,
    701980252875.0 / 199316789632.0,
    -1453857185.0 / 822651844.0,
    69997945.0 / 29380423.0,
)


class DP54Kernel(StepKernel):
    """Explicit adaptive Dormand-Prince 5(4) kernel.

    Suited to non-stiff problems. Ignores any Jacobian. All right-hand-side
    evaluations are reported as ``num_rhs_evals_fe``.

    Examples:
        ```python
        import jax.numpy as jnp
        from sunjax.integrators import DP54Kernel
        from sunjax.rhs import OdeRhsPython, RhsDispatcher
        from sunjax.tolerances import Tolerances
        rhs = RhsDispatcher(OdeRhsPython(lambda t, y: -y), 1)
        kernel = DP54Kernel(rhs, Tolerances(1e-6, 1e-9))
        kernel.reinit(0.0, jnp.array([1.0]), 1.0)
        step = kernel.step(1.0)
        step.y_new  # ~exp(-step.t_new)
        ```
    """

    name = "DP54"
    order = 4

    def _attempt(self, t: float, y: Array, f: Array, h: float, weights: Array) -> Trial:
        """Compute one DP54 trial step with step size h."""
        f_eval = self.rhs
        k0 = f
        k1 = f_eval(t + _C[1] * h, y + h * _A1[0] * k0)
        k2 = f_eval(t + _C[2] * h, y + h * (_A2[0] * k0 + _A2[1] * k1))
        k3 = f_eval(t + _C[3] * h, y + h * (_A3[0] * k0 + _A3[1] * k1 + _A3[2] * k2))
        k4 = f_eval(
            t + _C[4] * h,
            y + h * (_A4[0] * k0 + _A4[1] * k1 + _A4[2] * k2 + _A4[3] * k3),
        )
        k5 = f_eval(
            t + _C[5] * h,
            y + h * (_A5[0] * k0 + _A5[1] * k1 + _A5[2] * k2 + _A5[3] * k3 + _A5[4] * k4),
        )

        # 5th-order solution; _B_HIGH[1] and _B_HIGH[6] are zero
        y_new = y + h * (
            _B_HIGH[0] * k0
            + _B_HIGH[2] * k2
            + _B_HIGH[3] * k3
            + _B_HIGH[4] * k4
            + _B_HIGH[5] * k5
        )
        k6 = f_eval(t + _C[6] * h, y_new)

        error_vector = h * (
            _E[0] * k0
            + _E[2] * k2
            + _E[3] * k3
            + _E[4] * k4
            + _E[5] * k5
            + _E[6] * k6
        )
        dense = h * (
            _D[0] * k0
            + _D[2] * k2
            + _D[3] * k3
            + _D[4] * k4
            + _D[5] * k5
            + _D[6] * k6
        )
        return Trial(y_new=y_new, f_new=k6, error_vector=error_vector, dense=dense)

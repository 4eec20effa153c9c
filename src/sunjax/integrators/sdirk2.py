"""Two-stage singly diagonally implicit Runge-Kutta kernel (SDIRK2).

Alexander's L-stable, stiffly accurate SDIRK method of order 2:

.. math::

    \\begin{array}{c|cc}
    \\gamma & \\gamma     &        \\\\
    1       & 1 - \\gamma & \\gamma \\\\
    \\hline
            & 1 - \\gamma & \\gamma
    \\end{array}
    \\qquad \\gamma = 1 - \\tfrac{1}{\\sqrt{2}}

The embedded first-order solution uses weights ``(1, 0)``, giving the error
estimate ``h * gamma * (k2 - k1)``. Each stage equation

.. math::

    Y_i = y_n + h \\sum_{j<i} a_{ij} k_j + h \\gamma f(t_n + c_i h, Y_i)

is solved by a simplified Newton iteration with the iteration matrix
``M = I - h * gamma * J``. ``M`` is factored once per attempt with
:func:`jax.scipy.linalg.lu_factor` (one linear-solver setup); ``J`` is
evaluated once per step, from the user Jacobian when supplied and otherwise
by forward differences.

Because the method is stiffly accurate, the accepted state is the second
stage and its derivative ``k2`` doubles as the dense-output end-point slope.
"""

from __future__ import annotations

import math

import jax.numpy as jnp
import jax.scipy.linalg as jsl
from jax import Array

from sunjax.config import get_dtype, get_unit_roundoff
from sunjax.integrators._kernel import ConvergenceFailure, StepKernel
from sunjax.integrators._types import Trial
from sunjax.tolerances import wrms_norm

_GAMMA = 1.0 - 1.0 / math.sqrt(2.0)

_NEWTON_MAX_ITERS = 4
_NEWTON_TOL = 0.05
_NEWTON_DIVERGENCE = 2.0


class SDIRK2Kernel(StepKernel):
    """Implicit adaptive SDIRK2 kernel for stiff problems.

    Right-hand-side evaluations are reported as ``num_rhs_evals_fi``, except
    those spent on difference-quotient Jacobians (``num_dls_rhs_evals``).
    """

    name = "SDIRK2"
    order = 1
    implicit = True

    def _begin_step(self) -> None:
        self._jac = None

    def _on_reinit(self) -> None:
        self._jac = None

    def _attempt(self, t: float, y: Array, f: Array, h: float, weights: Array) -> Trial:
        if self._jac is None:
            self._jac = self._evaluate_jacobian(t, y, f, weights)
        hg = h * _GAMMA
        n = self.dimension
        lu = jsl.lu_factor(jnp.eye(n, dtype=get_dtype()) - hg * self._jac)
        self.counters.num_lin_solv_setups += 1

        # Stage 1 at t + gamma*h, predicted by an explicit Euler step
        base1 = y
        z1, k1 = self._solve_stage(t + _GAMMA * h, base1, y + hg * f, hg, lu, weights)

        # Stage 2 at t + h, predicted by extrapolating with k1
        base2 = y + (h * (1.0 - _GAMMA)) * k1
        z2, k2 = self._solve_stage(t + h, base2, base2 + hg * k1, hg, lu, weights)

        return Trial(y_new=z2, f_new=k2, error_vector=hg * (k2 - k1))

    def _solve_stage(self, t_stage, base, z, hg, lu, weights):
        """Newton iteration for ``z = base + hg * f(t_stage, z)``.

        Returns:
            tuple: Converged stage value and its derivative ``(z - base) / hg``.

        Raises:
            ConvergenceFailure: After ``_NEWTON_MAX_ITERS`` iterations or on
                divergence.
        """
        previous = math.inf
        for _ in range(_NEWTON_MAX_ITERS):
            residual = z - base - hg * self.rhs(t_stage, z)
            delta = jsl.lu_solve(lu, -residual)
            z = z + delta
            self.counters.num_nonlin_solv_iters += 1
            norm = wrms_norm(delta, weights)
            if norm <= _NEWTON_TOL:
                return z, (z - base) / hg
            if not math.isfinite(norm) or norm > _NEWTON_DIVERGENCE * previous:
                break
            previous = norm
        self.counters.num_nonlin_solv_conv_fails += 1
        raise ConvergenceFailure(
            f"stage at t={t_stage} not converged after {_NEWTON_MAX_ITERS} iterations"
        )

    def _evaluate_jacobian(self, t: float, y: Array, f: Array, weights: Array) -> Array:
        if self.jacobian is not None:
            return self.jacobian(t, y)

        # Forward differences, one column per component
        srur = math.sqrt(get_unit_roundoff())
        columns = []
        for j in range(self.dimension):
            inc = srur * max(abs(float(y[j])), 1.0 / float(weights[j]))
            y_pert = y.at[j].add(inc)
            self.counters.num_dls_rhs_evals += 1
            columns.append((self.rhs(t, y_pert) - f) / inc)
        return jnp.stack(columns, axis=1)

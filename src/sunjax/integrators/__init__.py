"""Stepping kernels driven by :func:`sunjax.solve`.

Each kernel advances the solution by one adaptive step at a time and
provides dense output over the step just taken:

- :class:`DP54Kernel` -- explicit Dormand-Prince 5(4), for non-stiff problems
- :class:`SDIRK2Kernel` -- implicit, L-stable SDIRK of order 2 with a Newton
  iteration, for stiff problems; uses the problem's Jacobian when given

All kernels share one interface::

    kernel.reinit(t0, y0, t_out)
    step = kernel.step(t_stop)   # KernelStep
    step.interpolate(t)          # dense output on [step.t_old, step.t_new]

and raise :class:`~sunjax.errors.KernelFailure` when they give up.
"""

from sunjax.integrators._kernel import StepKernel
from sunjax.integrators._types import AdaptiveConfig, KernelStep, Trial
from sunjax.integrators.dp54 import DP54Kernel
from sunjax.integrators.sdirk2 import SDIRK2Kernel

__all__ = [
    "AdaptiveConfig",
    "KernelStep",
    "StepKernel",
    "Trial",
    "DP54Kernel",
    "SDIRK2Kernel",
]

"""Error-control tolerances and per-component error weights.

The kernels accept a step when the weighted root-mean-square norm of the
local error estimate is at most one:

.. math::

    w_i = \\frac{1}{\\text{atol}_i + \\text{rtol} \\, |y_i|}, \\qquad
    \\|e\\|_{\\text{WRMS}} = \\sqrt{\\frac{1}{n} \\sum_i (e_i w_i)^2}

The weights are also reported verbatim in
:attr:`~sunjax.ErrorDiagnostics.var_weights` when a solve fails, so callers
can see which component drove the rejection.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

import jax.numpy as jnp
import numpy as np
from jax import Array
from jax.typing import ArrayLike

from sunjax.config import get_dtype
from sunjax.errors import ConfigurationError


@dataclass(frozen=True)
class Tolerances:
    """Relative and absolute error tolerances.

    Args:
        rel_tolerance: Scalar relative tolerance, strictly positive.
        abs_tolerances: Either one scalar applied to every component, or a
            tuple with one non-negative tolerance per state component.

    Examples:
        ```python
        from sunjax import Tolerances
        tol = Tolerances(rel_tolerance=1e-6, abs_tolerances=1e-9)
        per_component = Tolerances(1e-6, (1e-9, 1e-3))
        ```
    """

    rel_tolerance: float = 1e-6
    abs_tolerances: float | tuple[float, ...] = 1e-9

    def __post_init__(self) -> None:
        rtol = _as_float("rel_tolerance", self.rel_tolerance)
        if not (math.isfinite(rtol) and rtol > 0.0):
            raise ConfigurationError(
                f"rel_tolerance must be a positive finite number, got {self.rel_tolerance!r}"
            )
        object.__setattr__(self, "rel_tolerance", rtol)

        ndim = _ndim("abs_tolerances", self.abs_tolerances)
        if ndim == 0:
            values = (_as_float("abs_tolerances", self.abs_tolerances),)
            object.__setattr__(self, "abs_tolerances", values[0])
        elif ndim == 1:
            # Freeze sequences and arrays into a tuple so the instance stays hashable.
            values = tuple(_as_float("abs_tolerances", a) for a in self.abs_tolerances)
            if not values:
                raise ConfigurationError("abs_tolerances vector must not be empty")
            object.__setattr__(self, "abs_tolerances", values)
        else:
            raise ConfigurationError(
                f"abs_tolerances must be a scalar or a vector, got {ndim} dimensions"
            )
        for atol in values:
            if not (math.isfinite(atol) and atol >= 0.0):
                raise ConfigurationError(
                    f"abs_tolerances must be non-negative finite numbers, got {atol!r}"
                )

    @property
    def is_scalar(self) -> bool:
        """Whether a single absolute tolerance applies to every component."""
        return not isinstance(self.abs_tolerances, tuple)

    def validate_dimension(self, dimension: int) -> None:
        """Check that a per-component tolerance vector matches the state size.

        Raises:
            ConfigurationError: If the vector length differs from *dimension*.
        """
        if not self.is_scalar and len(self.abs_tolerances) != dimension:
            raise ConfigurationError(
                f"abs_tolerances has {len(self.abs_tolerances)} entries but the "
                f"state has dimension {dimension}"
            )

    def abs_vector(self, dimension: int) -> Array:
        """Return the absolute tolerances expanded to one entry per component."""
        self.validate_dimension(dimension)
        if self.is_scalar:
            return jnp.full((dimension,), float(self.abs_tolerances), dtype=get_dtype())
        return jnp.asarray(self.abs_tolerances, dtype=get_dtype())


def error_weights(tolerances: Tolerances, state: ArrayLike) -> Array:
    """Compute the per-component error weights ``1 / (atol_i + |y_i| * rtol)``.

    Args:
        tolerances: Error-control configuration.
        state: Current state vector.

    Returns:
        jax.Array: Weight vector of the same length as *state*.  Components
        with ``atol_i == 0`` and ``y_i == 0`` yield ``inf``; callers decide
        whether that is a configuration error or a stepping failure.

    Examples:
        ```python
        import jax.numpy as jnp
        from sunjax.tolerances import Tolerances, error_weights
        error_weights(Tolerances(1e-3, 1e-6), jnp.array([2.0]))  # 1/(1e-6 + 2e-3)
        ```
    """
    state = jnp.asarray(state, dtype=get_dtype())
    atol = tolerances.abs_vector(state.shape[0])
    return 1.0 / (atol + jnp.abs(state) * tolerances.rel_tolerance)


def weights_are_valid(weights: ArrayLike) -> bool:
    """Return ``True`` when every weight is finite and strictly positive."""
    weights = jnp.asarray(weights)
    return bool(jnp.all(jnp.isfinite(weights) & (weights > 0.0)))


def wrms_norm(vector: ArrayLike, weights: ArrayLike) -> float:
    """Weighted root-mean-square norm used by the error and Newton tests.

    Args:
        vector: Error or correction vector.
        weights: Error weights from :func:`error_weights`.

    Returns:
        float: ``sqrt(mean((v * w)^2))``; ``0.0`` for an empty vector.
    """
    vector = jnp.asarray(vector, dtype=get_dtype())
    if vector.size == 0:
        return 0.0
    weights = jnp.asarray(weights, dtype=get_dtype())
    return float(jnp.sqrt(jnp.mean((vector * weights) ** 2)))


def _as_float(name: str, value) -> float:
    if isinstance(value, (str, bytes)):
        raise ConfigurationError(f"{name} must be numeric, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{name} must be numeric, got {value!r}") from exc


def _ndim(name: str, value) -> int:
    try:
        return np.ndim(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{name} must be a scalar or a vector, got {value!r}") from exc

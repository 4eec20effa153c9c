"""Zero-crossing events: detection, refinement and state updates.

An event is a scalar condition ``g(t, y)`` whose sign change, in the
requested :class:`CrossingDirection`, triggers a state update. For every
accepted kernel step ``[t_old, t_new]`` the :class:`EventEngine`:

1. **Scans** each condition at the step end (and at optional interior
   dense-output samples) against its value at the step start.
2. **Refines** each candidate with the Illinois variant of regula falsi on
   the kernel's dense output, until the bracket is narrower than
   ``100 * eps * (|t_new| + |h|)``. The right end of the bracket is used as
   the event time, so the crossing has already happened there.
3. **Tie-breaks**: the earliest crossing wins; every event whose bracket ends
   within the refinement tolerance of it fires simultaneously, and updates
   are applied in declaration order.

After a restart, events that just fired and events whose condition is
exactly zero are *masked*: their baseline is taken slightly inside the next
step, so neither the crossing just handled nor a root sitting exactly on the
restart point is reported again.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import NamedTuple

import numpy as np
from jax import Array
from jax.typing import ArrayLike

from sunjax._foreign import as_state_vector
from sunjax.config import get_unit_roundoff
from sunjax.errors import CallbackError
from sunjax.integrators._types import KernelStep

logger = logging.getLogger(__name__)

# Fraction of the first step after a restart at which masked conditions take their baseline.
_RESTART_OFFSET = 1e-6
_MAX_REFINE_ITERS = 100


class CrossingDirection(enum.Enum):
    """Which sign transitions of an event condition count as a trigger."""

    UPWARDS = "upwards"
    """Negative to non-negative."""
    DOWNWARDS = "downwards"
    """Positive to non-positive."""
    ANY_DIRECTION = "any"
    """Either of the above."""


@dataclass(frozen=True, eq=False)
class EventSpec:
    """One monitored scalar condition.

    Args:
        condition: ``g(t, y) -> float`` whose zero crossing is the event.
        direction: Sign transition that triggers the event.
        update: ``u(t, y) -> y_new`` applied at the event; must preserve the
            state dimension. ``None`` leaves the state unchanged.
        stop_solver: End the solve (successfully) at the event time.
        record: Add the event to the output and count it against
            ``OdeProblem.max_events``. Unrecorded events still change the
            trajectory; they are useful to tell the solver about
            discontinuities of the right-hand side.

    Examples:
        ```python
        from sunjax import CrossingDirection, EventSpec
        bounce = EventSpec(
            condition=lambda t, y: y[0],
            direction=CrossingDirection.DOWNWARDS,
            update=lambda t, y: y.at[1].multiply(-0.9),
            record=True,
        )
        ```
    """

    condition: Callable[[float, Array], float]
    direction: CrossingDirection = CrossingDirection.ANY_DIRECTION
    update: Callable[[float, Array], ArrayLike] | None = None
    stop_solver: bool = False
    record: bool = False

    def __post_init__(self) -> None:
        if not callable(self.condition):
            raise TypeError("EventSpec.condition must be callable")
        if self.update is not None and not callable(self.update):
            raise TypeError("EventSpec.update must be callable or None")
        if not isinstance(self.direction, CrossingDirection):
            raise TypeError(
                f"EventSpec.direction must be a CrossingDirection, got {self.direction!r}"
            )


class EventHit(NamedTuple):
    """Events located within one kernel step.

    Attributes:
        time: Event time.
        state: State at ``time`` before any update is applied.
        indices: Indices of the events firing at ``time``, in declaration
            order.
    """

    time: float
    state: Array
    indices: tuple[int, ...]


def direction_allows(g0: float, g1: float, direction: CrossingDirection) -> bool:
    """Return True if the transition ``g0 -> g1`` is a crossing in *direction*.

    A zero end value counts as reached; a zero start value never triggers
    (the engine masks such conditions instead).
    """
    upward = g0 < 0.0 <= g1
    downward = g0 > 0.0 >= g1
    if direction is CrossingDirection.UPWARDS:
        return upward
    if direction is CrossingDirection.DOWNWARDS:
        return downward
    return upward or downward


def refine_crossing(
    g: Callable[[float], float],
    ta: float,
    ga: float,
    tb: float,
    gb: float,
    tol: float,
    max_iter: int = _MAX_REFINE_ITERS,
) -> tuple[float, float]:
    """Shrink a bracket ``[ta, tb]`` around a sign change of ``g``.

    Uses the Illinois method: secant steps, with the function value at a
    retained end point halved whenever the same end is kept twice in a row.

    Args:
        g: Scalar function of time.
        ta: Left end, where ``g`` has not crossed yet (``ga != 0``).
        ga: ``g(ta)``.
        tb: Right end, where ``g`` has crossed or is zero.
        gb: ``g(tb)``.
        tol: Target bracket width.
        max_iter: Iteration cap.

    Returns:
        tuple: Final ``(ta, tb)``; the crossing lies in ``(ta, tb]``.
    """
    left_positive = ga > 0.0

    def crossed(value: float) -> bool:
        return value == 0.0 or (value > 0.0) != left_positive

    side = 0
    for _ in range(max_iter):
        width = tb - ta
        if width <= tol:
            break
        tm = tb - gb * width / (gb - ga)
        # Stay strictly inside the bracket so every iteration shrinks it.
        guard = 0.5 * tol
        tm = min(max(tm, ta + guard), tb - guard)
        gm = g(tm)
        if crossed(gm):
            tb, gb = tm, gm
            if side == 1:
                ga *= 0.5
            side = 1
        else:
            ta, ga = tm, gm
            if side == -1:
                gb *= 0.5
            side = -1
    return ta, tb


class EventEngine:
    """Per-solve event bookkeeping.

    Args:
        events: Event specifications, in declaration order.
        dimension: State dimension, used to validate updates.
        interior_samples: Dense-output samples per step scanned in addition
            to the step end, to catch pairs of crossings inside one step.
    """

    def __init__(self, events: Sequence[EventSpec], dimension: int, interior_samples: int = 0):
        self.events = tuple(events)
        self.dimension = dimension
        self.interior_samples = interior_samples
        self._t_base: float | None = None
        self._g_base: list[float] = []
        self._masked: set[int] = set()

    def __len__(self) -> int:
        return len(self.events)

    # ---- callable wrappers -------------------------------------------------

    def condition(self, index: int, t: float, y: Array) -> float:
        """Evaluate condition *index* as a Python float."""
        try:
            value = self.events[index].condition(t, y)
        except Exception as exc:
            raise CallbackError(f"Condition of event {index} raised at t={t!r}: {exc!r}") from exc
        try:
            return float(np.asarray(value, dtype=np.float64).reshape(()))
        except (TypeError, ValueError) as exc:
            raise CallbackError(
                f"Condition of event {index} must return a scalar, got {value!r}"
            ) from exc

    def apply_updates(self, hit: EventHit) -> Array:
        """Apply the updates of every event in *hit*, in declaration order."""
        y = hit.state
        for index in hit.indices:
            update = self.events[index].update
            if update is None:
                continue
            try:
                new_y = update(hit.time, y)
            except Exception as exc:
                raise CallbackError(
                    f"Update of event {index} raised at t={hit.time!r}: {exc!r}"
                ) from exc
            try:
                y = as_state_vector(new_y, self.dimension)
            except (TypeError, ValueError) as exc:
                raise CallbackError(f"Update of event {index} returned an invalid state: {exc}") from exc
        return y

    # ---- state machine -----------------------------------------------------

    def reset(self, t: float, y: Array, fired: Sequence[int] = ()) -> None:
        """Take new baseline condition values at a (re-)start point.

        Args:
            t: Start or restart time.
            y: State at ``t`` (after any event update).
            fired: Events that just fired at ``t``; they are masked.
        """
        self._t_base = t
        self._g_base = [self.condition(i, t, y) for i in range(len(self.events))]
        self._masked = set(fired) | {i for i, g in enumerate(self._g_base) if g == 0.0}
        if self._masked:
            logger.debug("Masking events %s at t=%r", sorted(self._masked), t)

    def locate(self, step: KernelStep) -> EventHit | None:
        """Find the earliest event(s) within an accepted kernel step.

        When nothing fires, the baseline advances to the step end. When an
        :class:`EventHit` is returned, the caller must :meth:`reset` the
        engine at the event time before scanning the next step.

        Args:
            step: The step just accepted by the kernel; must start where the
                previous scan ended.

        Returns:
            EventHit or None.
        """
        if not self.events:
            return None

        t0, t1, h = step.t_old, step.t_new, step.h
        tol = 100.0 * get_unit_roundoff() * (abs(t1) + abs(h))
        samples = [t0 + h * (k / (self.interior_samples + 1)) for k in range(1, self.interior_samples + 1)]
        states = {t: step.interpolate(t) for t in samples}
        states[t1] = step.y_new
        sample_times = samples + [t1]

        # g_end is only consulted when nothing fires, so its entries line up
        # with the events in that case.
        g_end = []
        brackets = []
        for i, event in enumerate(self.events):
            ta, ga = t0, self._g_base[i]
            if i in self._masked:
                t_masked = t0 + max(tol, _RESTART_OFFSET * h)
                if t_masked >= t1:
                    g_end.append(self.condition(i, t1, step.y_new))
                    continue
                ta, ga = t_masked, self.condition(i, t_masked, step.interpolate(t_masked))
            for tb in sample_times:
                if tb <= ta:
                    continue
                gb = self.condition(i, tb, states[tb])
                if direction_allows(ga, gb, event.direction):
                    brackets.append((i, ta, ga, tb, gb))
                    break
                ta, ga = tb, gb
            else:
                g_end.append(ga)

        if not brackets:
            self._t_base = t1
            self._g_base = g_end
            self._masked = set()
            return None

        ends = {}
        for i, ta, ga, tb, gb in brackets:
            _, ends[i] = refine_crossing(
                lambda t, i=i: self.condition(i, t, step.interpolate(t)), ta, ga, tb, gb, tol
            )
        first = min(ends.values())
        fired = tuple(sorted(i for i, end in ends.items() if end <= first + tol))
        t_event = max(ends[i] for i in fired)
        logger.debug("Events %s located at t=%r", fired, t_event)
        return EventHit(time=t_event, state=step.interpolate(t_event), indices=fired)

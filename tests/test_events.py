"""Tests for the sunjax.events module."""

import math

import jax.numpy as jnp
import pytest

from sunjax.errors import CallbackError
from sunjax.events import (
    CrossingDirection,
    EventEngine,
    EventHit,
    EventSpec,
    direction_allows,
    refine_crossing,
)
from sunjax.integrators import KernelStep


def _linear_step(t0, t1, y0, slope):
    """KernelStep for y' = slope, which the Hermite interpolant reproduces exactly."""
    f = jnp.array([slope])
    y0 = jnp.array([y0])
    return KernelStep(t0, y0, f, t1, y0 + slope * (t1 - t0), f, 0.0)


# ──────────────────────────────────────────────
# Direction filter
# ──────────────────────────────────────────────

class TestDirectionFilter:
    @pytest.mark.parametrize(
        "g0, g1, direction, expected",
        [
            (-1.0, 1.0, CrossingDirection.UPWARDS, True),
            (-1.0, 1.0, CrossingDirection.DOWNWARDS, False),
            (1.0, -1.0, CrossingDirection.DOWNWARDS, True),
            (1.0, -1.0, CrossingDirection.UPWARDS, False),
            (1.0, -1.0, CrossingDirection.ANY_DIRECTION, True),
            (-1.0, 0.0, CrossingDirection.UPWARDS, True),
            (1.0, 0.0, CrossingDirection.DOWNWARDS, True),
            (0.0, 1.0, CrossingDirection.UPWARDS, False),
            (1.0, 2.0, CrossingDirection.ANY_DIRECTION, False),
        ],
    )
    def test_transitions(self, g0, g1, direction, expected):
        assert direction_allows(g0, g1, direction) is expected


class TestRefineCrossing:
    def test_linear(self):
        ta, tb = refine_crossing(lambda t: t - 0.3, 0.0, -0.3, 1.0, 0.7, 1e-12)
        assert ta < 0.3 <= tb
        assert tb - ta <= 1e-12

    def test_nonlinear(self):
        """Illinois converges on a strongly curved function."""
        root = math.log(2.0)
        ta, tb = refine_crossing(
            lambda t: math.exp(t) - 2.0, 0.0, -1.0, 2.0, math.exp(2.0) - 2.0, 1e-12
        )
        assert tb == pytest.approx(root, abs=1e-11)
        assert ta < root <= tb + 1e-15

    def test_downward(self):
        ta, tb = refine_crossing(lambda t: 1.0 - t, 0.0, 1.0, 3.0, -2.0, 1e-12)
        assert tb == pytest.approx(1.0, abs=1e-11)

    def test_right_end_stays_crossed(self):
        g = lambda t: t**3 - 0.001  # noqa: E731
        ta, tb = refine_crossing(g, 0.0, g(0.0), 1.0, g(1.0), 1e-12)
        assert g(tb) >= 0.0
        assert g(ta) < 0.0


# ──────────────────────────────────────────────
# EventSpec
# ──────────────────────────────────────────────

class TestEventSpec:
    def test_defaults(self):
        spec = EventSpec(condition=lambda t, y: y[0])
        assert spec.direction is CrossingDirection.ANY_DIRECTION
        assert spec.update is None
        assert spec.stop_solver is False
        assert spec.record is False

    def test_condition_not_callable(self):
        with pytest.raises(TypeError, match="condition"):
            EventSpec(condition=1.0)

    def test_bad_direction(self):
        with pytest.raises(TypeError, match="CrossingDirection"):
            EventSpec(condition=lambda t, y: y[0], direction="up")


# ──────────────────────────────────────────────
# EventEngine
# ──────────────────────────────────────────────

class TestEventEngine:
    def test_no_events(self):
        engine = EventEngine([], 1)
        engine.reset(0.0, jnp.array([0.0]))
        assert engine.locate(_linear_step(0.0, 1.0, 0.0, 1.0)) is None

    def test_locates_crossing(self):
        engine = EventEngine([EventSpec(lambda t, y: y[0] - 0.25)], 1)
        engine.reset(0.0, jnp.array([0.0]))
        hit = engine.locate(_linear_step(0.0, 1.0, 0.0, 1.0))
        assert hit.indices == (0,)
        assert hit.time == pytest.approx(0.25, abs=1e-12)
        assert float(hit.state[0]) == pytest.approx(0.25, abs=1e-12)

    def test_direction_respected(self):
        spec = EventSpec(lambda t, y: y[0] - 0.25, direction=CrossingDirection.DOWNWARDS)
        engine = EventEngine([spec], 1)
        engine.reset(0.0, jnp.array([0.0]))
        assert engine.locate(_linear_step(0.0, 1.0, 0.0, 1.0)) is None

    def test_baseline_advances(self):
        """A crossing spread over two steps is found in the second one."""
        engine = EventEngine([EventSpec(lambda t, y: y[0] - 1.5)], 1)
        engine.reset(0.0, jnp.array([0.0]))
        assert engine.locate(_linear_step(0.0, 1.0, 0.0, 1.0)) is None
        hit = engine.locate(_linear_step(1.0, 2.0, 1.0, 1.0))
        assert hit.time == pytest.approx(1.5, abs=1e-12)

    def test_earliest_wins(self):
        events = [
            EventSpec(lambda t, y: y[0] - 0.75),
            EventSpec(lambda t, y: y[0] - 0.25),
        ]
        engine = EventEngine(events, 1)
        engine.reset(0.0, jnp.array([0.0]))
        hit = engine.locate(_linear_step(0.0, 1.0, 0.0, 1.0))
        assert hit.indices == (1,)

    def test_simultaneous_in_declaration_order(self):
        events = [
            EventSpec(lambda t, y: t - 0.5),
            EventSpec(lambda t, y: y[0] - 0.5),
        ]
        engine = EventEngine(events, 1)
        engine.reset(0.0, jnp.array([0.0]))
        hit = engine.locate(_linear_step(0.0, 1.0, 0.0, 1.0))
        assert hit.indices == (0, 1)

    def test_updates_compose(self):
        events = [
            EventSpec(lambda t, y: y[0], update=lambda t, y: y + 10.0),
            EventSpec(lambda t, y: y[0], update=lambda t, y: 2.0 * y),
        ]
        engine = EventEngine(events, 1)
        hit = EventHit(time=1.0, state=jnp.array([1.0]), indices=(0, 1))
        assert float(engine.apply_updates(hit)[0]) == pytest.approx(22.0)
        hit = EventHit(time=1.0, state=jnp.array([1.0]), indices=(1,))
        assert float(engine.apply_updates(hit)[0]) == pytest.approx(2.0)

    def test_update_wrong_dimension(self):
        engine = EventEngine([EventSpec(lambda t, y: y[0], update=lambda t, y: jnp.zeros(2))], 1)
        hit = EventHit(time=0.0, state=jnp.array([1.0]), indices=(0,))
        with pytest.raises(CallbackError, match="invalid state"):
            engine.apply_updates(hit)

    def test_condition_must_be_scalar(self):
        engine = EventEngine([EventSpec(lambda t, y: y)], 2)
        with pytest.raises(CallbackError, match="scalar"):
            engine.reset(0.0, jnp.array([1.0, 2.0]))

    def test_condition_exception(self):
        def broken(t, y):
            raise KeyError("missing")

        engine = EventEngine([EventSpec(broken)], 1)
        with pytest.raises(CallbackError, match="missing"):
            engine.reset(0.0, jnp.array([1.0]))

    def test_fired_event_masked_after_restart(self):
        """An event that just fired is not reported again at the restart point."""
        engine = EventEngine([EventSpec(lambda t, y: y[0] - 0.5)], 1)
        engine.reset(0.5, jnp.array([0.5]), fired=(0,))
        assert engine.locate(_linear_step(0.5, 1.0, 0.5, 1.0)) is None

    def test_zero_condition_masked_at_start(self):
        engine = EventEngine([EventSpec(lambda t, y: y[0])], 1)
        engine.reset(0.0, jnp.array([0.0]))
        assert engine.locate(_linear_step(0.0, 1.0, 0.0, -1.0)) is None

    def test_masked_event_can_fire_later_in_step(self):
        """Masking only covers the restart point, not the rest of the step."""
        engine = EventEngine([EventSpec(lambda t, y: y[0] * (y[0] - 0.5))], 1)
        engine.reset(0.0, jnp.array([0.0]))
        hit = engine.locate(_linear_step(0.0, 1.0, 0.0, -1.0))
        assert hit is None
        engine.reset(0.0, jnp.array([0.0]))
        hit = engine.locate(_linear_step(0.0, 1.0, 0.0, 1.0))
        assert hit is not None
        assert hit.time == pytest.approx(0.5, abs=1e-12)

    def test_interior_samples_catch_double_crossing(self):
        """g = (y - 0.3)(y - 0.6) is positive at both ends of the step."""
        spec = EventSpec(lambda t, y: (y[0] - 0.3) * (y[0] - 0.6))
        blind = EventEngine([spec], 1)
        blind.reset(0.0, jnp.array([0.0]))
        assert blind.locate(_linear_step(0.0, 1.0, 0.0, 1.0)) is None

        sampled = EventEngine([spec], 1, interior_samples=3)
        sampled.reset(0.0, jnp.array([0.0]))
        hit = sampled.locate(_linear_step(0.0, 1.0, 0.0, 1.0))
        assert hit.time == pytest.approx(0.3, abs=1e-12)

"""Tests for the collision, state-change and constraint event detectors."""

import asyncio
import math

import pytest

from physim.event_detector import (CollisionDetector, CustomConstraintDetector,
                                   EquilibriumDetector, EventDetector, EventDetectorBase,
                                   InstabilityDetector, StateChangeDetector, interpolate_state,
                                   locate_crossing)
from physim.formula_engine import margin_expression
from physim.ir_types import IRConstraint, IRObject, IRSystem, PhysicsIR
from physim.simulation_state import Event, EventSeverity, EventType, SimulationState


def state(step_index=1, time=None, derivatives=None, **variables):
    return SimulationState(time=step_index * 0.1 if time is None else time,
                           variables=dict(variables), derivatives=dict(derivatives or {}),
                           step_index=step_index)


def ir_with(objects=(), constraints=()):
    return PhysicsIR(system=IRSystem(objects=list(objects), constraints=list(constraints)))


def detect(detector, old, new, ir):
    return asyncio.run(detector.detect(old, new, ir))


class TestCollisions:
    ir = ir_with(objects=[IRObject("a"), IRObject("b")])

    def test_contact_onset_fires(self):
        events = detect(CollisionDetector(), state(1, a_x=0.0, b_x=2.0),
                        state(2, a_x=0.5, b_x=1.2), self.ir)
        assert len(events) == 1
        assert events[0].type == EventType.COLLISION
        assert events[0].parameters["object1"] == "a"
        assert events[0].parameters["distance"] == pytest.approx(0.7)

    def test_continued_contact_is_silent(self):
        events = detect(CollisionDetector(), state(2, a_x=0.5, b_x=1.2),
                        state(3, a_x=0.6, b_x=1.1), self.ir)
        assert events == []

    def test_overlap_at_start_fires_once(self):
        events = detect(CollisionDetector(), state(0, a_x=0.0, b_x=0.5),
                        state(1, a_x=0.0, b_x=0.5), self.ir)
        assert len(events) == 1

    def test_radius_property_sets_contact_distance(self):
        ir = ir_with(objects=[IRObject("a", properties={"radius": 0.1}),
                              IRObject("b", properties={"radius": 0.1})])
        events = detect(CollisionDetector(), state(1, a_x=0.0, b_x=2.0),
                        state(2, a_x=0.5, b_x=1.2), ir)
        assert events == []

    def test_boundary_crossing_uses_object_scope(self):
        ir = ir_with(objects=[IRObject("a"), IRObject("b")],
                     constraints=[IRConstraint("boundary", "x >= 0")])
        events = detect(CollisionDetector(), state(1, a_x=0.5, b_x=10.0),
                        state(2, a_x=-0.1, b_x=10.0), ir)
        assert [e.type for e in events] == [EventType.BOUNDARY_CROSSING]
        assert events[0].parameters["object"] == "a"


class TestStateChanges:
    ir = ir_with()

    def test_velocity_reversal(self):
        events = detect(StateChangeDetector(), state(1, v=1.0), state(2, v=-1.0), self.ir)
        assert len(events) == 1
        assert events[0].parameters["change"] == "velocity_reversal"
        assert events[0].parameters["cosine"] == pytest.approx(-1.0)

    def test_slow_reversal_is_ignored(self):
        assert detect(StateChangeDetector(), state(1, v=0.05), state(2, v=-0.05), self.ir) == []

    def test_energy_jump(self):
        events = detect(StateChangeDetector(), state(1, v=1.0), state(2, v=2.0), self.ir)
        assert [e.parameters["change"] for e in events] == ["energy_jump"]
        assert events[0].severity == EventSeverity.WARNING
        assert events[0].parameters["energy_change"] == pytest.approx(1.5)

    def test_acceleration_jump(self):
        events = detect(StateChangeDetector(), state(1, derivatives={"v": 0.0}, v=0.0),
                        state(2, derivatives={"v": -9.8}, v=0.0), self.ir)
        assert [e.parameters["change"] for e in events] == ["acceleration_jump"]


class TestCustomConstraints:
    def test_high_priority_violation_is_critical(self):
        ir = ir_with(constraints=[IRConstraint("physical", "x <= 1", priority="high")])
        events = detect(CustomConstraintDetector(), state(1, x=0.5), state(2, x=1.5), ir)
        assert len(events) == 1
        assert events[0].severity == EventSeverity.CRITICAL
        assert events[0].parameters["residual"] == 0.0

    def test_violation_reported_at_onset_only(self):
        ir = ir_with(constraints=[IRConstraint("physical", "x <= 1")])
        assert detect(CustomConstraintDetector(), state(2, x=1.5), state(3, x=1.6), ir) == []

    def test_equation_residual_beyond_tolerance(self):
        constraint = IRConstraint("physical", "x + y = 1", tolerance=0.01)
        ir = ir_with(constraints=[constraint])
        events = detect(CustomConstraintDetector(), state(1, x=0.5, y=0.5),
                        state(2, x=0.5, y=0.7), ir)
        assert len(events) == 1
        assert events[0].severity == EventSeverity.WARNING
        assert events[0].parameters["residual"] == pytest.approx(0.2)

    def test_violation_helper(self):
        detector = CustomConstraintDetector()
        constraint = IRConstraint("physical", "x + y = 1", tolerance=0.01)
        assert detector.violation(constraint, {"x": 0.5, "y": 0.5}) is None
        assert detector.violation(constraint, {"x": 0.5}) is None

    def test_speed_threshold(self):
        events = detect(CustomConstraintDetector(), state(1, v=9.0), state(2, v=11.0), ir_with())
        assert len(events) == 1
        assert "high speed" in events[0].description
        assert events[0].parameters["threshold"] == 10.0


class TestCrossingLocalisation:
    def test_contact_time_inside_the_step(self):
        ir = ir_with(objects=[IRObject("a"), IRObject("b")])
        events = detect(CollisionDetector(), state(1, a_x=0.0, b_x=2.0),
                        state(2, a_x=0.5, b_x=1.2), ir)
        # distance 2 - 1.3f reaches the unit contact distance at f = 1/1.3
        assert events[0].time == pytest.approx(0.1 + 0.1 / 1.3, abs=1e-8)

    def test_boundary_crossing_time(self):
        ir = ir_with(constraints=[IRConstraint("boundary", "x >= 0")])
        events = detect(CollisionDetector(), state(1, x=0.5), state(2, x=-0.1), ir)
        assert events[0].time == pytest.approx(0.1 + 0.1 * 0.5 / 0.6, abs=1e-8)

    def test_reversed_inequality_margin(self):
        ir = ir_with(constraints=[IRConstraint("boundary", "x < 2")])
        events = detect(CollisionDetector(), state(1, x=1.0), state(2, x=3.0), ir)
        assert events[0].time == pytest.approx(0.15, abs=1e-8)

    def test_speed_threshold_time(self):
        events = detect(CustomConstraintDetector(), state(1, v=9.0), state(2, v=11.0), ir_with())
        assert events[0].time == pytest.approx(0.15, abs=1e-8)

    def test_equation_constraint_time(self):
        ir = ir_with(constraints=[IRConstraint("physical", "x + y = 1", tolerance=0.01)])
        events = detect(CustomConstraintDetector(), state(1, x=0.5, y=0.5),
                        state(2, x=0.6, y=0.5), ir)
        assert events[0].time == pytest.approx(0.11, abs=1e-8)

    def test_equilibrium_time(self):
        events = detect(EquilibriumDetector(), state(1, v=0.5), state(2, v=0.001), ir_with())
        assert events[0].time == pytest.approx(0.1 + 0.1 * 0.49 / 0.499, abs=1e-8)

    def test_no_sign_change_keeps_step_end(self):
        assert locate_crossing(state(1, x=1.0), state(2, x=2.0),
                               lambda s: s.variables["x"]) == pytest.approx(0.2)

    def test_interpolated_state(self):
        middle = interpolate_state(state(1, x=1.0, v=2.0), state(2, x=3.0, v=2.0), 0.25)
        assert middle.time == pytest.approx(0.125)
        assert middle.variables == pytest.approx({"x": 1.5, "v": 2.0})

    def test_margin_expression(self):
        assert margin_expression("h >= 0") == "(h) - (0)"
        assert margin_expression("x < L") == "(L) - (x)"
        assert margin_expression("0 < x < 1") is None
        assert margin_expression("x = 1") is None


class TestOptionalDetectors:
    def test_equilibrium(self):
        events = detect(EquilibriumDetector(), state(1, v=0.5), state(2, v=0.001), ir_with())
        assert events[0].parameters["change"] == "equilibrium"

    def test_non_finite_values_are_critical(self):
        events = detect(InstabilityDetector(), state(1, x=1.0), state(2, x=math.inf), ir_with())
        assert events[0].severity == EventSeverity.CRITICAL
        assert events[0].parameters["variables"] == ["x"]


class BrokenDetector(EventDetectorBase):
    name = "broken"

    async def detect(self, old_state, new_state, ir):
        raise RuntimeError("boom")


class TestComposite:
    def test_default_detectors(self):
        assert EventDetector().get_detectors() == ["collision", "state_change", "custom"]

    def test_add_and_remove(self):
        detector = EventDetector()
        detector.add_detector(EquilibriumDetector())
        assert "equilibrium" in detector.get_detectors()
        assert detector.remove_detector("collision")
        assert not detector.remove_detector("collision")
        assert detector.get_detectors() == ["state_change", "custom", "equilibrium"]

    def test_failing_detector_does_not_stop_the_others(self):
        detector = EventDetector([BrokenDetector(), CustomConstraintDetector()])
        events = asyncio.run(detector.detect_events(state(1, v=9.0), state(2, v=11.0), ir_with()))
        assert len(events) == 1
        assert detector.failures == 1

    def test_events_sorted_by_time(self):
        class Stamped(EventDetectorBase):
            name = "stamped"

            def __init__(self, times):
                super().__init__()
                self.times = times

            async def detect(self, old_state, new_state, ir):
                return [Event(EventType.CUSTOM, t, "stamp") for t in self.times]

        detector = EventDetector([Stamped([0.3, 0.1]), Stamped([0.2])])
        events = asyncio.run(detector.detect_events(state(1), state(2), ir_with()))
        assert [e.time for e in events] == [0.1, 0.2, 0.3]

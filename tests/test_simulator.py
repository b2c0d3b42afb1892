"""Tests for the numerical simulator."""

import math

import numpy as np
import pytest

from conftest import convert, free_fall_model, make_result, single_module_ir
from physim.config import SimulationConfig
from physim.integration_engine import IntegrationEngine, RK4Solver
from physim.physics_validator import PhysicsValidator
from physim.simulation_state import EventType
from physim.simulator import NumericalSimulator, stability_score


def run(ir, **config):
    return NumericalSimulator().run_sync(ir, SimulationConfig(**config))


class TestFreeFall:
    def test_final_speed_matches_analytic(self, free_fall_ir):
        result = run(free_fall_ir, method="rk4", time_step=0.01, duration=3.0)
        assert result.success
        expected = math.sqrt(2 * 9.8 * 20)
        assert result.final_state.variables["v"] == pytest.approx(expected, rel=0.05)

    def test_run_stops_once_landed(self, free_fall_ir):
        result = run(free_fall_ir, method="rk4", time_step=0.01, duration=3.0)
        metrics = result.metrics
        assert metrics["terminated_reason"] == "converged"
        assert metrics["converged"]
        assert metrics["convergence_iterations"] == metrics["total_steps"]
        assert result.final_state.time == pytest.approx(2.04, abs=0.02)

    def test_run_to_duration_without_convergence_stop(self, free_fall_ir):
        result = run(free_fall_ir, time_step=0.01, duration=3.0, stop_on_convergence=False)
        assert result.metrics["terminated_reason"] == "duration"
        assert result.final_state.time == pytest.approx(3.0)
        assert result.metrics["convergence_iterations"] == 0

    def test_ground_crossing_event(self):
        model = free_fall_model()
        model["system"]["constraints"] = [{"type": "boundary", "expression": "h >= 0"}]
        ir = convert(model).ir
        result = run(ir, time_step=0.01, duration=3.0)
        crossings = [e for e in result.events if e.type == EventType.BOUNDARY_CROSSING]
        assert len(crossings) == 1
        # stamped at the landing time, not at the end of the step
        assert crossings[0].time == pytest.approx(math.sqrt(2 * 20 / 9.8), abs=1e-3)
        assert crossings[0].time < result.final_state.time

    def test_speed_threshold_event(self, free_fall_ir):
        result = run(free_fall_ir, time_step=0.01, duration=3.0)
        speed_events = [e for e in result.events
                        if e.type == EventType.CUSTOM and "high speed" in e.description]
        assert len(speed_events) == 1
        assert speed_events[0].time == pytest.approx(10 / 9.8, abs=1e-6)

    def test_events_are_time_ordered(self, free_fall_ir):
        result = run(free_fall_ir, time_step=0.01, duration=3.0)
        times = [e.time for e in result.events]
        assert times == sorted(times)
        assert result.metrics["event_count"] == len(result.events)

    def test_event_detection_can_be_disabled(self, free_fall_ir):
        result = run(free_fall_ir, time_step=0.01, duration=3.0, enable_event_detection=False)
        assert result.events == []


class TestOscillator:
    def test_initial_state_applies_initial_conditions(self, oscillator_ir):
        state = NumericalSimulator().initialize_state(oscillator_ir)
        assert state.variables["x"] == pytest.approx(0.1)
        assert state.variables["v"] == 0.0
        assert state.time == 0.0

    def test_rk4_energy_drift_below_one_percent(self, oscillator_ir):
        result = run(oscillator_ir, method="rk4", time_step=0.01, duration=10.0)
        assert result.success
        energy = result.series("energy")
        assert energy[0] == pytest.approx(0.5)
        drift = np.max(np.abs(energy - energy[0])) / abs(energy[0])
        assert drift < 0.01
        assert result.metrics["energy_conservation"] > 0.99

    def test_time_is_non_decreasing(self, oscillator_ir):
        result = run(oscillator_ir, method="rk4", time_step=0.01, duration=2.0)
        assert np.all(np.diff(result.times()) >= 0)
        assert result.times()[-1] == pytest.approx(2.0)

    def test_adaptive_run(self, oscillator_ir):
        result = run(oscillator_ir, method="adaptive", time_step=0.01, duration=1.0)
        assert result.success
        assert result.metrics["method"] == "adaptive"
        assert np.all(np.diff(result.times()) > 0)
        assert result.metrics["max_step_size"] <= 0.01 + 1e-12

    def test_euler_drifts_more_than_rk4(self, oscillator_ir):
        euler = run(oscillator_ir, method="euler", time_step=0.01, duration=2.0)
        rk4 = run(oscillator_ir, method="rk4", time_step=0.01, duration=2.0)
        assert euler.metrics["energy_conservation"] < rk4.metrics["energy_conservation"]

    def test_metrics_and_monitor_summary(self, oscillator_ir):
        simulator = NumericalSimulator()
        result = simulator.run_sync(oscillator_ir, SimulationConfig(time_step=0.01, duration=1.0))
        metrics = result.metrics
        assert metrics["total_steps"] == 100
        assert metrics["average_step_size"] == pytest.approx(0.01)
        assert metrics["convergence_rate"] == 1.0
        assert 0.0 < metrics["stability_score"] <= 1.0
        assert "monitor" in metrics
        assert simulator.monitor is not None
        assert len(simulator.monitor.get_history()) == 100

    @pytest.mark.parametrize("time_step, duration", [(0.008, 20.0), (0.002, 30.0), (0.005, 30.0)])
    def test_accumulated_time_leaves_no_sliver_step(self, oscillator_ir, time_step, duration):
        result = run(oscillator_ir, method="rk4", time_step=time_step, duration=duration)
        metrics = result.metrics
        assert metrics["min_step_size"] == pytest.approx(time_step, rel=1e-6)
        assert metrics["total_steps"] == round(duration / time_step)
        assert metrics["terminated_reason"] == "duration"
        assert not metrics["converged"]
        assert result.times()[-1] == pytest.approx(duration)
        report = PhysicsValidator().validate(result)
        assert not any("Minimum step size" in e for e in report.errors)

    def test_max_iterations_stops_run(self, oscillator_ir):
        result = run(oscillator_ir, time_step=0.01, duration=1.0, max_iterations=5)
        assert result.metrics["terminated_reason"] == "max_iterations"
        assert len(result.time_series) == 6
        assert any("Maximum iterations" in w for w in result.warnings)


class TestTimeStepping:
    def test_short_closing_step_is_not_convergence(self):
        ir = single_module_ir("dx/dt = 0")
        result = run(ir, time_step=0.01, duration=0.005)
        assert result.metrics["total_steps"] == 1
        assert result.metrics["terminated_reason"] == "duration"
        assert not result.final_state.convergence.is_converged

    def test_full_step_with_no_change_converges(self):
        ir = single_module_ir("dx/dt = 0")
        result = run(ir, time_step=0.01, duration=1.0)
        assert result.metrics["terminated_reason"] == "converged"
        assert result.metrics["total_steps"] == 1

    def test_remainder_below_floor_is_absorbed(self):
        ir = single_module_ir("dx/dt = 1")
        result = run(ir, time_step=0.01, duration=0.01 + 1e-12, min_time_step=1e-10)
        assert result.metrics["total_steps"] == 1
        assert result.metrics["min_step_size"] == pytest.approx(0.01)
        assert result.times()[-1] == pytest.approx(0.01 + 1e-12, abs=1e-15)


class TestGracefulDegradation:
    def test_unknown_identifier_reads_as_zero(self):
        ir = single_module_ir("dx/dt = unknown_rate")
        result = run(ir, time_step=0.01, duration=1.0)
        assert result.success
        assert result.final_state.variables["x"] == 1.0
        assert any("unknown_rate" in w for w in result.warnings)

    def test_unsupported_function_reads_as_zero(self):
        ir = single_module_ir("dx/dt = mystery(x)")
        with pytest.warns(UserWarning):
            result = run(ir, time_step=0.01, duration=1.0)
        assert result.success
        assert result.final_state.variables["x"] == 1.0
        assert any("mystery" in w for w in result.warnings)

    def test_step_size_collapse_stops_early(self):
        ir = single_module_ir("dx/dt = -1e12*x")
        with pytest.warns(UserWarning, match="Step size fell below"):
            result = run(ir, method="euler", time_step=0.01, duration=1.0)
        assert result.success
        assert result.metrics["terminated_reason"] == "unstable"
        assert len(result.time_series) == 1
        assert any("Step size fell below" in w for w in result.warnings)

    def test_exception_keeps_partial_series(self, oscillator_ir):
        class FlakySolver(RK4Solver):
            def step(self, state, dt, system):
                if self.stats["steps"] >= 2:
                    raise RuntimeError("solver blew up")
                return super().step(state, dt, system)

        class FlakyEngine(IntegrationEngine):
            def create_solver(self, method, tolerance=1e-6, min_step=1e-10, max_step=1.0):
                return FlakySolver()

        simulator = NumericalSimulator(integration_engine=FlakyEngine())
        result = simulator.run_sync(oscillator_ir, SimulationConfig(time_step=0.01, duration=1.0))
        assert not result.success
        assert result.errors[0].startswith("Simulation failed")
        assert len(result.time_series) == 3

    def test_invalid_ir_fails_without_raising(self):
        result = NumericalSimulator().run_sync(None, SimulationConfig(duration=1.0))
        assert not result.success
        assert result.errors


class TestStabilityScore:
    def test_smooth_series_scores_high(self, smooth_result):
        assert stability_score(smooth_result) > 0.9

    def test_zigzag_series_scores_low(self):
        times = np.arange(50) * 0.1
        zigzag = np.where(np.arange(50) % 2 == 0, 1.0, -1.0)
        assert stability_score(make_result(times, x=zigzag)) < 0.4

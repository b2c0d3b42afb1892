"""Tests for the rolling state monitor and its anomaly checks."""

import numpy as np
import pytest

from physim.config import MonitorConfig
from physim.simulation_state import SimulationState
from physim.state_monitor import StateMonitor


def quiet_monitor(**overrides):
    return StateMonitor(MonitorConfig.from_dict(overrides, enable_performance_tracking=False))


def feed(monitor, values, energies=None, dt=0.01):
    anomalies = []
    for i, value in enumerate(values):
        state = SimulationState(time=i * dt, variables={"x": float(value)}, step_index=i)
        energy = None if energies is None else float(energies[i])
        anomalies.append(monitor.update(state, step_time=0.001, energy=energy))
    return anomalies


class TestHistory:
    def test_history_is_bounded(self):
        monitor = quiet_monitor(max_history_size=5)
        feed(monitor, range(10))
        history = monitor.get_history()
        assert len(history) == 5
        assert history[0].state.variables["x"] == 5.0
        assert monitor.get_current_state().variables["x"] == 9.0

    def test_history_holds_copies(self):
        monitor = quiet_monitor()
        state = SimulationState(variables={"x": 1.0})
        monitor.update(state)
        state.variables["x"] = 2.0
        assert monitor.get_history()[0].state.variables["x"] == 1.0

    def test_performance_tracking(self):
        monitor = StateMonitor()
        feed(monitor, [1.0, 1.0, 1.0])
        performance = monitor.get_performance_history()
        assert len(performance) == 3
        assert performance[-1].memory_usage > 0
        assert 0.0 <= performance[-1].cpu_usage <= 1.0

    def test_clear_history(self):
        monitor = quiet_monitor()
        feed(monitor, range(5))
        monitor.clear_history()
        assert monitor.get_history() == []
        assert monitor.get_current_state() is None
        assert monitor.step_count == 0

    def test_update_config_keeps_newest_entries(self):
        monitor = quiet_monitor()
        feed(monitor, range(10))
        monitor.update_config(max_history_size=3)
        assert monitor.config.max_history_size == 3
        assert [e.state.variables["x"] for e in monitor.get_history()] == [7.0, 8.0, 9.0]
        assert monitor.config.enable_performance_tracking is False


class TestAnomalies:
    def test_steady_state_has_no_anomalies(self):
        monitor = quiet_monitor()
        assert all(a is None for a in feed(monitor, [1.0] * 30, energies=[1.0] * 30))
        assert monitor.get_anomaly_history() == []

    def test_linear_growth_is_divergence(self):
        monitor = quiet_monitor()
        anomalies = feed(monitor, [10.0 * i for i in range(10)])
        assert anomalies[-1].anomaly_type == "divergence"
        assert anomalies[-1].severity == "high"
        assert anomalies[-1].parameters["variable"] == "x"

    def test_non_finite_value_is_critical(self):
        monitor = quiet_monitor()
        anomalies = feed(monitor, [1.0] * 9 + [np.inf])
        assert anomalies[-1].anomaly_type == "divergence"
        assert anomalies[-1].severity == "critical"
        assert "non-finite" in anomalies[-1].description

    def test_alternating_values_are_oscillation(self):
        monitor = quiet_monitor()
        anomalies = feed(monitor, [(-1.0) ** i for i in range(20)])
        assert all(a is None for a in anomalies[:19])
        assert anomalies[-1].anomaly_type == "oscillation"
        assert anomalies[-1].parameters["amplitude"] == pytest.approx(1.0)

    def test_energy_loss_is_a_leak(self):
        monitor = quiet_monitor()
        energies = 1.0 - 0.01 * np.arange(10)
        anomalies = feed(monitor, [1.0] * 10, energies=energies)
        assert anomalies[-1].anomaly_type == "energy_leak"
        assert anomalies[-1].parameters["relative_loss"] == pytest.approx(0.09)

    def test_detection_can_be_disabled(self):
        monitor = quiet_monitor(enable_anomaly_detection=False)
        assert all(a is None for a in feed(monitor, [10.0 * i for i in range(20)]))


class TestReports:
    def test_reports_at_interval(self):
        monitor = quiet_monitor(report_interval=5)
        feed(monitor, [1.0] * 10)
        assert len(monitor.reports) == 2
        assert monitor.get_latest_report().step == 10

    def test_report_summarises_history(self):
        monitor = quiet_monitor()
        energies = 1.0 - 0.01 * np.arange(10)
        feed(monitor, [1.0] * 10, energies=energies)
        report = monitor.generate_report()
        assert report.total_steps == 10
        assert report.anomaly_count == 1
        assert report.stability_trend == "stable"
        assert report.energy_conservation == pytest.approx(0.91)
        assert report.momentum_conservation == 1.0
        assert any("Energy is leaking" in r for r in report.recommendations)

    def test_empty_monitor_report(self):
        report = quiet_monitor().generate_report()
        assert report.total_steps == 0
        assert report.average_step_time == 0.0
        assert report.energy_conservation == 1.0

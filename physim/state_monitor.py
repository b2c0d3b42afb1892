# -*- coding: utf-8 -*-
"""
State Monitor
Keeps a bounded rolling history of simulation states with per-step performance
metrics, flags statistical anomalies (divergence, oscillation, instability,
energy leak) and produces periodic summary reports.
"""

import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional

import numpy as np
import psutil
from scipy import stats

from .config import MonitorConfig
from .logging_utils import get_logger
from .simulation_state import Event, SimulationState, clone_state, conservation_ratio

logger = get_logger(__name__)

ANOMALY_SEVERITY_ORDER = {'low': 1, 'medium': 2, 'high': 3, 'critical': 4}

SLOW_STEP_TIME = 0.1   # seconds

# ===============================================================================
# Records
# ===============================================================================

@dataclass
class PerformanceMetrics:
    step_time: float = 0.0
    memory_usage: float = 0.0        # MB
    cpu_usage: float = 0.0           # fraction of the frame budget
    event_count: int = 0
    convergence_rate: float = 0.0
    stability_score: float = 1.0


@dataclass
class HistoryEntry:
    timestamp: float
    state: SimulationState
    events: List[Event]
    performance: PerformanceMetrics
    energy: Optional[float] = None
    momentum: Optional[float] = None


@dataclass
class AnomalyReport:
    anomaly_type: str                # divergence | oscillation | instability | energy_leak
    severity: str
    description: str
    time: float = 0.0
    step: int = 0
    confidence: float = 0.0
    parameters: Dict[str, Any] = field(default_factory=dict)


@dataclass
class MonitorReport:
    timestamp: float
    step: int
    total_steps: int
    average_step_time: float
    total_events: int
    anomaly_count: int
    stability_trend: str             # improving | stable | degrading
    energy_conservation: float
    momentum_conservation: float
    recommendations: List[str] = field(default_factory=list)


def _trend(values) -> float:
    """Least-squares slope per sample"""
    values = np.asarray(values, dtype=float)
    if values.size < 2 or np.ptp(values) == 0:
        return 0.0
    return float(stats.linregress(np.arange(values.size), values).slope)

# ===============================================================================
# Monitor
# ===============================================================================

class StateMonitor:
    """Rolling state history with performance tracking and anomaly detection"""

    def __init__(self, config: Optional[MonitorConfig] = None):
        self.config = config or MonitorConfig()
        self._process = psutil.Process()
        self._reset()

    def _reset(self):
        size = self.config.max_history_size
        self.history: Deque[HistoryEntry] = deque(maxlen=size)
        self.performance_history: Deque[PerformanceMetrics] = deque(maxlen=size)
        self.anomaly_history: Deque[AnomalyReport] = deque(maxlen=size)
        self.reports: List[MonitorReport] = []
        self.current_state: Optional[SimulationState] = None
        self.step_count = 0
        self._initial_energy: Optional[float] = None
        self._initial_momentum: Optional[float] = None

    # -------------------------------------------------------------------------
    # Updates
    # -------------------------------------------------------------------------

    def update(self, state: SimulationState, step_time: float = 0.0,
               energy: Optional[float] = None, momentum: Optional[float] = None
               ) -> Optional[AnomalyReport]:
        """Record one step; returns the most severe anomaly found for it, if any"""
        snapshot = clone_state(state)
        performance = self._performance_metrics(snapshot, step_time)
        self.history.append(HistoryEntry(time.time(), snapshot, list(snapshot.events),
                                         performance, energy, momentum))
        self.performance_history.append(performance)
        self.current_state = snapshot
        self.step_count += 1
        if self._initial_energy is None and energy is not None:
            self._initial_energy = energy
        if self._initial_momentum is None and momentum is not None:
            self._initial_momentum = momentum

        anomaly = None
        if self.config.enable_anomaly_detection:
            anomaly = self.detect_anomalies(snapshot)
            if anomaly is not None:
                self.anomaly_history.append(anomaly)
                logger.debug(f"Anomaly at t={snapshot.time:.4f}: {anomaly.description}")

        if self.config.report_interval > 0 and self.step_count % self.config.report_interval == 0:
            self.reports.append(self.generate_report())
        return anomaly

    def _performance_metrics(self, state: SimulationState, step_time: float) -> PerformanceMetrics:
        if not self.config.enable_performance_tracking:
            return PerformanceMetrics(step_time=step_time, event_count=len(state.events),
                                      convergence_rate=state.convergence.convergence_rate)
        return PerformanceMetrics(
            step_time=step_time,
            memory_usage=self._memory_usage(),
            cpu_usage=self._cpu_usage(step_time),
            event_count=len(state.events),
            convergence_rate=state.convergence.convergence_rate,
            stability_score=self._stability_score(step_time),
        )

    def _memory_usage(self) -> float:
        return self._process.memory_info().rss / (1024 * 1024)

    def _cpu_usage(self, step_time: float) -> float:
        """Average of the recent step times against the frame budget"""
        recent = [p.step_time for p in list(self.performance_history)[-9:]] + [step_time]
        return float(min(np.mean(recent) / self.config.target_frame_time, 1.0))

    def _stability_score(self, step_time: float) -> float:
        """1 - coefficient of variation of the recent step times"""
        if len(self.performance_history) < 2:
            return 1.0
        window = max(self.config.stability_window - 1, 1)
        recent = np.array([p.step_time for p in list(self.performance_history)[-window:]]
                          + [step_time])
        mean = recent.mean()
        if mean <= 0:
            return 1.0
        return float(max(0.0, 1.0 - recent.std() / mean))

    # -------------------------------------------------------------------------
    # Anomalies
    # -------------------------------------------------------------------------

    def detect_anomalies(self, state: SimulationState) -> Optional[AnomalyReport]:
        """Run every check and keep the single most severe hit"""
        found = [a for a in (self._detect_divergence(state), self._detect_oscillation(state),
                             self._detect_instability(state), self._detect_energy_leak(state))
                 if a is not None]
        if not found:
            return None
        return max(found, key=lambda a: (ANOMALY_SEVERITY_ORDER.get(a.severity, 0), a.confidence))

    def _recent_values(self, variable: str, count: int) -> np.ndarray:
        entries = list(self.history)[-count:]
        return np.array([e.state.variables.get(variable, 0.0) for e in entries], dtype=float)

    def _detect_divergence(self, state: SimulationState) -> Optional[AnomalyReport]:
        window = self.config.divergence_window
        if len(self.history) < window:
            return None
        for variable in state.variables:
            values = self._recent_values(variable, window)
            if not np.all(np.isfinite(values)):
                return AnomalyReport('divergence', 'critical',
                                     f"Variable {variable} became non-finite",
                                     state.time, state.step_index, 1.0, {'variable': variable})
            relative = abs(_trend(values)) / (float(np.mean(np.abs(values))) + 1.0)
            if relative > self.config.anomaly_threshold:
                return AnomalyReport(
                    'divergence', 'critical' if relative > 0.5 else 'high',
                    f"Variable {variable} is diverging with trend {relative:.4f}",
                    state.time, state.step_index, min(relative, 1.0),
                    {'variable': variable, 'trend': relative})
        return None

    def _detect_oscillation(self, state: SimulationState) -> Optional[AnomalyReport]:
        window = self.config.oscillation_window
        if len(self.history) < window:
            return None
        for variable in state.variables:
            values = self._recent_values(variable, window)
            differences = np.diff(values)
            signs = np.sign(differences[differences != 0])
            if signs.size < 2:
                continue
            extrema = int(np.count_nonzero(signs[1:] != signs[:-1]))
            score = extrema / (values.size - 2)
            if score > self.config.oscillation_threshold:
                return AnomalyReport(
                    'oscillation', 'high' if score > 0.7 else 'medium',
                    f"Variable {variable} is oscillating with score {score:.4f}",
                    state.time, state.step_index, float(score),
                    {'variable': variable, 'oscillation_score': score,
                     'amplitude': float(np.ptp(values) / 2)})
        return None

    def _detect_instability(self, state: SimulationState) -> Optional[AnomalyReport]:
        window = self.config.stability_window
        if len(self.performance_history) < window:
            return None
        scores = [p.stability_score for p in list(self.performance_history)[-window:]]
        average = float(np.mean(scores))
        if average < self.config.instability_threshold:
            return AnomalyReport(
                'instability', 'critical' if average < 0.2 else 'high',
                f"System is unstable with average stability score {average:.4f}",
                state.time, state.step_index, 1.0 - average,
                {'average_stability': average, 'stability_scores': scores})
        return None

    def _detect_energy_leak(self, state: SimulationState) -> Optional[AnomalyReport]:
        window = self.config.divergence_window
        entries = [e for e in list(self.history)[-window:] if e.energy is not None]
        if len(entries) < window:
            return None
        energies = np.array([e.energy for e in entries], dtype=float)
        reference = abs(energies[0])
        if reference < 1e-12:
            return None
        loss = -_trend(energies) * (energies.size - 1) / reference
        if loss > self.config.energy_leak_threshold:
            return AnomalyReport(
                'energy_leak', 'high' if loss > 0.1 else 'medium',
                f"Energy is leaking with relative loss {loss:.4f}",
                state.time, state.step_index, min(loss, 1.0),
                {'relative_loss': loss, 'initial_energy': float(energies[0]),
                 'final_energy': float(energies[-1])})
        return None

    # -------------------------------------------------------------------------
    # Reports
    # -------------------------------------------------------------------------

    def stability_trend(self) -> str:
        if len(self.performance_history) < 10:
            return 'stable'
        slope = _trend([p.stability_score for p in list(self.performance_history)[-10:]])
        if slope > 0.01:
            return 'improving'
        if slope < -0.01:
            return 'degrading'
        return 'stable'

    def energy_conservation(self) -> float:
        latest = self.history[-1].energy if self.history else None
        if self._initial_energy is None or latest is None:
            return 1.0
        return conservation_ratio(self._initial_energy, latest)

    def momentum_conservation(self) -> float:
        latest = self.history[-1].momentum if self.history else None
        if self._initial_momentum is None or latest is None:
            return 1.0
        return conservation_ratio(self._initial_momentum, latest)

    def generate_recommendations(self) -> List[str]:
        recommendations = []
        recent = list(self.anomaly_history)[-5:]
        if any(a.severity == 'critical' for a in recent):
            recommendations.append("Critical anomalies detected - consider reducing time step or changing solver")
        if any(a.anomaly_type == 'energy_leak' for a in recent):
            recommendations.append("Energy is leaking - use rk4 or a smaller time step")
        if self.performance_history:
            average = float(np.mean([p.step_time for p in self.performance_history]))
            if average > SLOW_STEP_TIME:
                recommendations.append("Simulation is running slowly - consider a larger time step")
        if self.stability_trend() == 'degrading':
            recommendations.append("System stability is degrading - check for numerical issues")
        return recommendations

    def generate_report(self) -> MonitorReport:
        step_times = [p.step_time for p in self.performance_history]
        report = MonitorReport(
            timestamp=time.time(),
            step=self.step_count,
            total_steps=len(self.history),
            average_step_time=float(np.mean(step_times)) if step_times else 0.0,
            total_events=sum(len(e.events) for e in self.history),
            anomaly_count=len(self.anomaly_history),
            stability_trend=self.stability_trend(),
            energy_conservation=self.energy_conservation(),
            momentum_conservation=self.momentum_conservation(),
            recommendations=self.generate_recommendations(),
        )
        logger.debug(f"Monitor report at step {report.step}: {report.anomaly_count} anomalies, "
                     f"trend {report.stability_trend}")
        return report

    # -------------------------------------------------------------------------
    # Accessors
    # -------------------------------------------------------------------------

    def get_current_state(self) -> Optional[SimulationState]:
        return self.current_state

    def get_history(self) -> List[HistoryEntry]:
        return list(self.history)

    def get_performance_history(self) -> List[PerformanceMetrics]:
        return list(self.performance_history)

    def get_anomaly_history(self) -> List[AnomalyReport]:
        return list(self.anomaly_history)

    def get_latest_report(self) -> Optional[MonitorReport]:
        return self.reports[-1] if self.reports else None

    def clear_history(self):
        self._reset()

    def update_config(self, **changes):
        """Apply config changes; a new history size keeps the newest entries"""
        old_size = self.config.max_history_size
        self.config = MonitorConfig.from_dict(self.config.to_dict(), **changes)
        if self.config.max_history_size != old_size:
            size = self.config.max_history_size
            self.history = deque(self.history, maxlen=size)
            self.performance_history = deque(self.performance_history, maxlen=size)
            self.anomaly_history = deque(self.anomaly_history, maxlen=size)

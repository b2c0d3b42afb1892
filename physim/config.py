# -*- coding: utf-8 -*-
"""
Configuration objects and tunable constant tables.

Every stage takes a dataclass config with documented defaults; `from_dict`
accepts snake_case or camelCase keys and ignores anything it does not know.
"""

import dataclasses
import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

# ===============================================================================
# Constant Tables
# ===============================================================================

PHYSICS_CHECK_WEIGHTS: Dict[str, float] = {
    'conservation': 0.30,
    'constraints': 0.25,
    'stability': 0.20,
    'dimensional': 0.15,
    'causality': 0.10,
}

RESULT_CHECK_WEIGHTS: Dict[str, float] = {
    'completeness': 0.25,
    'quality': 0.25,
    'anomalies': 0.20,
    'performance': 0.15,
    'output': 0.15,
}

# Anomaly severity tiers: deviation ratio (in standard deviations) below which a tier applies
SEVERITY_LEVELS: Dict[str, float] = {
    'low': 2.0,
    'medium': 3.0,
    'high': 5.0,
    'critical': float('inf'),
}

SUPPORTED_METHODS = ('euler', 'rk4', 'adaptive')

_CAMEL = re.compile(r'(?<!^)(?=[A-Z])')


def _snake(key: str) -> str:
    return _CAMEL.sub('_', key).lower()


class _FromDictMixin:
    """Shared `from_dict` for the config dataclasses"""

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]] = None, **overrides):
        names = {f.name for f in dataclasses.fields(cls)}
        values = {}
        for key, value in {**(data or {}), **overrides}.items():
            name = key if key in names else _snake(key)
            if name in names and value is not None:
                values[name] = value
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)

# ===============================================================================
# Stage Configurations
# ===============================================================================

@dataclass
class SimulationConfig(_FromDictMixin):
    """Run settings for the numerical simulator"""
    method: str = 'rk4'
    time_step: float = 0.01
    duration: float = 10.0
    tolerance: float = 1e-6
    max_iterations: int = 100000
    adaptive_step_size: bool = False
    parallel_processing: bool = False       # reserved
    min_time_step: float = 1e-10
    max_time_step: float = 1.0
    enable_event_detection: bool = True
    enable_monitoring: bool = True
    stop_on_convergence: bool = True
    yield_interval: int = 200               # steps between cooperative yields

    def __post_init__(self):
        self.method = str(self.method).lower()
        if self.method not in SUPPORTED_METHODS:
            raise ValueError(f"Unknown solver '{self.method}'. Available: {', '.join(SUPPORTED_METHODS)}")
        if self.time_step <= 0 or self.duration <= 0:
            raise ValueError("time_step and duration must be positive")

    @classmethod
    def from_ir(cls, ir, **overrides) -> 'SimulationConfig':
        """Derive run settings from an IR's simulation section"""
        sim = ir.simulation
        method = sim.method if sim.method in SUPPORTED_METHODS else 'rk4'
        values = dict(method=method, time_step=sim.time_step, duration=sim.duration,
                      tolerance=sim.tolerance, max_iterations=sim.max_iterations,
                      adaptive_step_size=sim.adaptive_step_size or method == 'adaptive')
        values.update(overrides)
        return cls.from_dict(values)

    @classmethod
    def high_accuracy(cls, **overrides) -> 'SimulationConfig':
        return cls.from_dict(dict(method='adaptive', time_step=0.001, tolerance=1e-9,
                                  adaptive_step_size=True), **overrides)


@dataclass
class MonitorConfig(_FromDictMixin):
    """State monitor settings"""
    max_history_size: int = 1000
    enable_performance_tracking: bool = True
    enable_anomaly_detection: bool = True
    report_interval: int = 100              # steps between summary reports
    target_frame_time: float = 1.0 / 60.0   # 60 Hz budget
    anomaly_threshold: float = 0.1          # relative trend per sample for divergence
    oscillation_threshold: float = 0.5      # fraction of samples that are local extrema
    instability_threshold: float = 0.5
    energy_leak_threshold: float = 0.05     # relative energy loss over the trend window
    divergence_window: int = 10
    oscillation_window: int = 20
    stability_window: int = 5


@dataclass
class IRBuilderConfig(_FromDictMixin):
    """IR builder settings"""
    enable_cache: bool = True
    cache_size: int = 100
    max_modules: int = 8
    detection_thresholds: Dict[str, float] = field(default_factory=dict)  # per ModuleType value
    default_method: str = 'rk4'
    default_time_step: float = 0.01
    default_duration: float = 10.0
    default_tolerance: float = 1e-6
    default_max_iterations: int = 100000
    complexity_threshold: float = 0.8
    check_dimensions: bool = True


@dataclass
class PhysicsValidatorConfig(_FromDictMixin):
    """Physics validator settings"""
    enable_conservation: bool = True
    enable_constraints: bool = True
    enable_stability: bool = True
    enable_dimensional: bool = True
    enable_causality: bool = True
    energy_threshold: float = 0.01
    momentum_threshold: float = 0.01
    angular_momentum_threshold: float = 0.01
    max_velocity: float = 3e8
    max_acceleration: float = 1e6
    max_position: float = 1e6
    min_time_step: float = 1e-10
    convergence_threshold: float = 1e-6
    oscillation_threshold: float = 1e-4
    max_convergence_failure_ratio: float = 0.10
    max_oscillation_ratio: float = 0.05
    success_threshold: float = 0.8


@dataclass
class ResultValidatorConfig(_FromDictMixin):
    """Result validator settings"""
    min_score: float = 0.8
    min_data_points: int = 10
    max_abs_value: float = 1e12
    max_gap_factor: float = 5.0             # gap vs median time step
    outlier_iqr_factor: float = 1.5
    max_outlier_ratio: float = 0.05
    noise_threshold: float = 0.1
    smoothness_threshold: float = 0.5
    max_processing_time: float = 60.0       # seconds
    max_memory_mb: float = 512.0
    max_cpu_utilization: float = 0.9
    required_metadata: tuple = ('metrics',)

# ===============================================================================
# Environment
# ===============================================================================

@dataclass
class PhysimSettings:
    simulation: SimulationConfig = field(default_factory=SimulationConfig)
    ir_builder: IRBuilderConfig = field(default_factory=IRBuilderConfig)


_ENV_KEYS = {
    'PHYSIM_SOLVER': ('simulation', 'method', str),
    'PHYSIM_TIME_STEP': ('simulation', 'time_step', float),
    'PHYSIM_DURATION': ('simulation', 'duration', float),
    'PHYSIM_TOLERANCE': ('simulation', 'tolerance', float),
    'PHYSIM_MAX_ITERATIONS': ('simulation', 'max_iterations', int),
    'PHYSIM_CACHE_SIZE': ('ir_builder', 'cache_size', int),
}


def load_config_from_env(environ: Optional[Dict[str, str]] = None) -> PhysimSettings:
    """Build settings from PHYSIM_* environment variables; malformed values raise ValueError"""
    environ = os.environ if environ is None else environ
    sections: Dict[str, Dict[str, Any]] = {'simulation': {}, 'ir_builder': {}}
    for key, (section, name, cast) in _ENV_KEYS.items():
        raw = environ.get(key)
        if raw is None or raw.strip() == '':
            continue
        try:
            sections[section][name] = cast(raw.strip())
        except ValueError as e:
            raise ValueError(f"Invalid value for {key}: {raw!r}") from e
    return PhysimSettings(
        simulation=SimulationConfig.from_dict(sections['simulation']),
        ir_builder=IRBuilderConfig.from_dict(sections['ir_builder']),
    )

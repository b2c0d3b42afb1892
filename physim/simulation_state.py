# -*- coding: utf-8 -*-
"""
Simulation state, events, time-series snapshots and run results
"""

import itertools
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from .ir_types import to_plain

# ===============================================================================
# Events
# ===============================================================================

class EventType(Enum):
    COLLISION = "collision"
    BOUNDARY_CROSSING = "boundary_crossing"
    STATE_CHANGE = "state_change"
    CUSTOM = "custom"


class EventSeverity(Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


_event_ids = itertools.count(1)


@dataclass(frozen=True)
class Event:
    """An immutable, timestamped fact detected during a run"""
    type: EventType
    time: float
    description: str
    parameters: Dict[str, Any] = field(default_factory=dict)
    severity: EventSeverity = EventSeverity.INFO
    id: str = field(default_factory=lambda: f"evt_{next(_event_ids)}")

    def to_dict(self) -> Dict[str, Any]:
        return to_plain(self)

# ===============================================================================
# State
# ===============================================================================

@dataclass
class ConvergenceInfo:
    is_converged: bool = False
    residual: float = math.inf
    tolerance: float = 1e-6
    convergence_rate: float = 0.0


@dataclass
class SimulationState:
    time: float = 0.0
    variables: Dict[str, float] = field(default_factory=dict)
    derivatives: Dict[str, float] = field(default_factory=dict)
    events: List[Event] = field(default_factory=list)
    convergence: ConvergenceInfo = field(default_factory=ConvergenceInfo)
    step_index: int = 0

    def clone(self) -> 'SimulationState':
        return clone_state(self)


def clone_state(state: SimulationState) -> SimulationState:
    """Independent copy; events are immutable and shared"""
    return SimulationState(
        time=state.time,
        variables=dict(state.variables),
        derivatives=dict(state.derivatives),
        events=list(state.events),
        convergence=ConvergenceInfo(**vars(state.convergence)),
        step_index=state.step_index,
    )

# ===============================================================================
# Object Kinematics
# ===============================================================================

_AXES = ('x', 'y', 'z')


def _prefix(object_name: Optional[str]) -> str:
    return f"{object_name}_" if object_name else ''


def _vector(values: Dict[str, float], names) -> Optional[np.ndarray]:
    if not any(name in values for name in names):
        return None
    return np.array([float(values.get(name, 0.0)) for name in names])


def object_position(state: SimulationState, object_name: Optional[str] = None) -> np.ndarray:
    p = _prefix(object_name)
    vec = _vector(state.variables, [f"{p}{axis}" for axis in _AXES])
    return vec if vec is not None else np.zeros(3)


def object_velocity(state: SimulationState, object_name: Optional[str] = None) -> np.ndarray:
    """Velocity from v{x,y,z} components, or a scalar `v` along x"""
    p = _prefix(object_name)
    vec = _vector(state.variables, [f"{p}v{axis}" for axis in _AXES])
    if vec is not None:
        return vec
    if f"{p}v" in state.variables:
        return np.array([float(state.variables[f"{p}v"]), 0.0, 0.0])
    return np.zeros(3)


def object_acceleration(state: SimulationState, object_name: Optional[str] = None) -> np.ndarray:
    """Acceleration from a{x,y,z} variables, else from the velocity derivatives"""
    p = _prefix(object_name)
    vec = _vector(state.variables, [f"{p}a{axis}" for axis in _AXES])
    if vec is not None:
        return vec
    vec = _vector(state.derivatives, [f"{p}v{axis}" for axis in _AXES])
    if vec is not None:
        return vec
    if f"{p}v" in state.derivatives:
        return np.array([float(state.derivatives[f"{p}v"]), 0.0, 0.0])
    if f"{p}a" in state.variables:
        return np.array([float(state.variables[f"{p}a"]), 0.0, 0.0])
    return np.zeros(3)


def object_names(ir) -> List[Optional[str]]:
    """Object names of the IR, or a single unnamed pseudo-object"""
    names = [obj.name for obj in ir.system.objects] if ir is not None else []
    return names or [None]

# ===============================================================================
# Results
# ===============================================================================

@dataclass
class TimeSeriesSnapshot:
    time: float
    variables: Dict[str, float]
    derivatives: Dict[str, float]
    energy: float = 0.0
    momentum: float = 0.0
    angular_momentum: float = 0.0


@dataclass
class SimulationResult:
    success: bool = False
    time_series: List[TimeSeriesSnapshot] = field(default_factory=list)
    events: List[Event] = field(default_factory=list)
    final_state: Optional[SimulationState] = None
    metrics: Dict[str, Any] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    computation_time: float = 0.0

    def times(self) -> np.ndarray:
        return np.array([s.time for s in self.time_series])

    def series(self, name: str) -> np.ndarray:
        """Values of one variable (or 'energy'/'momentum'/'angular_momentum') over time"""
        if name in ('energy', 'momentum', 'angular_momentum'):
            return np.array([getattr(s, name) for s in self.time_series])
        return np.array([s.variables.get(name, np.nan) for s in self.time_series])

    def variable_names(self) -> List[str]:
        names: Dict[str, None] = {}
        for snapshot in self.time_series:
            names.update(dict.fromkeys(snapshot.variables))
        return list(names)

    def to_dict(self) -> Dict[str, Any]:
        return to_plain(self)


def conservation_ratio(initial: float, final: float) -> float:
    """1 - |final - initial| / |initial|, clamped to [0, 1]; a zero start counts as conserved"""
    if abs(initial) < 1e-12:
        return 1.0
    return float(min(1.0, max(0.0, 1.0 - abs(final - initial) / abs(initial))))


def relative_deviations(values: np.ndarray) -> Tuple[float, float]:
    """(final relative change, max relative deviation) against the first value

    Absolute deviations are used when the initial value is zero.
    """
    if values.size == 0:
        return 0.0, 0.0
    reference = values[0]
    scale = abs(reference) if abs(reference) > 1e-12 else 1.0
    deviations = np.abs(values - reference) / scale
    return float(deviations[-1]), float(np.nanmax(deviations))

# -*- coding: utf-8 -*-
"""
Event Detection
Independent detectors compare the previous and the new simulation state and
report collisions, boundary crossings, state changes and constraint breaches.
The composite runs every installed detector and returns the events by time.
"""

import math
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

import numpy as np
from scipy.optimize import brentq

from .formula_engine import FormulaEngine, margin_expression, residual_expression
from .ir_types import IRConstraint, PhysicsIR
from .logging_utils import get_logger
from .observables import ObservableCalculator
from .simulation_state import (Event, EventSeverity, EventType, SimulationState,
                               object_acceleration, object_names, object_position,
                               object_velocity)

logger = get_logger(__name__)

REVERSAL_MIN_SPEED = 0.1
ACCELERATION_JUMP = 0.1
ENERGY_JUMP = 0.1
ENERGY_FLOOR = 0.1
SPEED_LIMIT = 10.0
EQUILIBRIUM_SPEED = 0.01
INSTABILITY_ACCELERATION = 100.0
LOCATE_TOLERANCE = 1e-10         # fraction of the step


def _object_scope(state: SimulationState, object_name: Optional[str]) -> Dict[str, float]:
    """State variables with the object's prefixed names also visible unprefixed"""
    scope = dict(state.variables)
    if object_name:
        prefix = f"{object_name}_"
        for symbol, value in state.variables.items():
            if symbol.startswith(prefix):
                scope[symbol[len(prefix):]] = value
    return scope


def _vector(values: np.ndarray) -> List[float]:
    return [float(v) for v in values]


def _distance(state: SimulationState, first: str, second: str) -> float:
    return float(np.linalg.norm(object_position(state, first) - object_position(state, second)))


def _speed(state: SimulationState, object_name: Optional[str]) -> float:
    return float(np.linalg.norm(object_velocity(state, object_name)))

# ===============================================================================
# Crossing Localisation
# ===============================================================================

def interpolate_state(old_state: SimulationState, new_state: SimulationState,
                      fraction: float) -> SimulationState:
    """Linear blend of two consecutive states, fraction 0 at the old one"""
    def blend(old: Dict[str, float], new: Dict[str, float]) -> Dict[str, float]:
        return {k: old.get(k, v) + fraction * (v - old.get(k, v)) for k, v in new.items()}

    return SimulationState(
        time=old_state.time + fraction * (new_state.time - old_state.time),
        variables=blend(old_state.variables, new_state.variables),
        derivatives=blend(old_state.derivatives, new_state.derivatives),
        step_index=new_state.step_index,
    )


def locate_crossing(old_state: SimulationState, new_state: SimulationState,
                    signed: Callable[[SimulationState], float]) -> float:
    """Time inside the step at which `signed` changes sign

    The root is found with Brent's method on the interpolated state. Without a
    finite sign change over the step the end of the step is returned.
    """
    span = new_state.time - old_state.time
    if span <= 0:
        return new_state.time

    def along_step(fraction: float) -> float:
        return float(signed(interpolate_state(old_state, new_state, fraction)))

    start, end = along_step(0.0), along_step(1.0)
    if not (math.isfinite(start) and math.isfinite(end)) or start * end > 0:
        return new_state.time
    fraction = brentq(along_step, 0.0, 1.0, xtol=LOCATE_TOLERANCE)
    return old_state.time + fraction * span

# ===============================================================================
# Detector Interface
# ===============================================================================

class EventDetectorBase(ABC):
    """One independent event source"""

    name = 'base'

    def __init__(self, engine: Optional[FormulaEngine] = None):
        self.engine = engine or FormulaEngine(warn_missing_symbols=False)

    @abstractmethod
    async def detect(self, old_state: SimulationState, new_state: SimulationState,
                     ir: PhysicsIR) -> List[Event]:
        pass

    def _holds(self, expression: str, scope: Dict[str, float]) -> Optional[bool]:
        """Truth of a condition, or None when it references symbols the scope lacks"""
        variables = self.engine.extract_variables(expression)
        if not variables or not variables.issubset(scope):
            return None
        return self.engine.evaluate_condition(expression, scope)

    def _condition_margin(self, expression: str, object_name: Optional[str] = None
                          ) -> Callable[[SimulationState], float]:
        """Signed function of a state, positive while the condition holds

        Single inequalities use their margin; any other condition reads as +1/-1.
        """
        margin = margin_expression(expression)

        def signed(state: SimulationState) -> float:
            scope = _object_scope(state, object_name)
            if margin is not None:
                return self.engine.evaluate(margin, scope)
            return 1.0 if self._holds(expression, scope) else -1.0
        return signed

# ===============================================================================
# Collision
# ===============================================================================

class CollisionDetector(EventDetectorBase):
    """Object-pair contact and boundary constraint crossings"""

    name = 'collision'

    async def detect(self, old_state, new_state, ir):
        events = self._object_collisions(old_state, new_state, ir)
        events.extend(self._boundary_crossings(old_state, new_state, ir))
        return events

    def _object_collisions(self, old_state, new_state, ir) -> List[Event]:
        events = []
        objects = ir.system.objects
        for i, first in enumerate(objects):
            for second in objects[i + 1:]:
                contact = first.radius + second.radius
                new_distance = _distance(new_state, first.name, second.name)
                if new_distance > contact:
                    continue
                old_distance = _distance(old_state, first.name, second.name)
                # Report contact onset only
                if old_distance <= contact and old_state.step_index > 0:
                    continue
                contact_time = locate_crossing(
                    old_state, new_state,
                    lambda s, a=first.name, b=second.name, c=contact: _distance(s, a, b) - c)
                events.append(Event(
                    type=EventType.COLLISION,
                    time=contact_time,
                    description=f"Collision between {first.name} and {second.name}",
                    parameters={
                        'object1': first.name,
                        'object2': second.name,
                        'distance': new_distance,
                        'contact_distance': contact,
                        'position1': _vector(object_position(new_state, first.name)),
                        'position2': _vector(object_position(new_state, second.name)),
                        'velocity1': _vector(object_velocity(new_state, first.name)),
                        'velocity2': _vector(object_velocity(new_state, second.name)),
                    },
                    severity=EventSeverity.WARNING,
                ))
        return events

    def _boundary_crossings(self, old_state, new_state, ir) -> List[Event]:
        events = []
        boundaries = [c for c in ir.system.constraints if c.type == 'boundary']
        if not boundaries:
            return events
        for name in object_names(ir):
            old_scope = _object_scope(old_state, name)
            new_scope = _object_scope(new_state, name)
            for constraint in boundaries:
                before = self._holds(constraint.expression, old_scope)
                after = self._holds(constraint.expression, new_scope)
                if before is None or after is None or not before or after:
                    continue
                label = name or 'system'
                events.append(Event(
                    type=EventType.BOUNDARY_CROSSING,
                    time=locate_crossing(old_state, new_state,
                                         self._condition_margin(constraint.expression, name)),
                    description=f"{label} crossed boundary '{constraint.expression}'",
                    parameters={
                        'object': label,
                        'boundary': constraint.expression,
                        'position': _vector(object_position(new_state, name)),
                        'velocity': _vector(object_velocity(new_state, name)),
                    },
                    severity=EventSeverity.WARNING,
                ))
        return events

# ===============================================================================
# State Change
# ===============================================================================

class StateChangeDetector(EventDetectorBase):
    """Velocity reversals, acceleration jumps and total-energy jumps"""

    name = 'state_change'

    def __init__(self, engine: Optional[FormulaEngine] = None):
        super().__init__(engine)
        self._observables: Dict[int, ObservableCalculator] = {}

    def _calculator(self, ir: PhysicsIR) -> ObservableCalculator:
        key = id(ir)
        if key not in self._observables:
            self._observables = {key: ObservableCalculator(ir, self.engine)}
        return self._observables[key]

    async def detect(self, old_state, new_state, ir):
        events = []
        for name in object_names(ir):
            label = name or 'system'
            old_v, new_v = object_velocity(old_state, name), object_velocity(new_state, name)
            old_speed, new_speed = float(np.linalg.norm(old_v)), float(np.linalg.norm(new_v))
            if old_speed > REVERSAL_MIN_SPEED and new_speed > REVERSAL_MIN_SPEED:
                cosine = float(np.dot(old_v, new_v)) / (old_speed * new_speed)
                if cosine < 0:
                    events.append(Event(
                        type=EventType.STATE_CHANGE,
                        time=new_state.time,
                        description=f"{label} reversed direction",
                        parameters={'object': label, 'change': 'velocity_reversal',
                                    'old_velocity': _vector(old_v), 'new_velocity': _vector(new_v),
                                    'cosine': cosine},
                    ))

            old_a = float(np.linalg.norm(object_acceleration(old_state, name)))
            new_a = float(np.linalg.norm(object_acceleration(new_state, name)))
            if abs(new_a - old_a) > ACCELERATION_JUMP:
                events.append(Event(
                    type=EventType.STATE_CHANGE,
                    time=new_state.time,
                    description=f"{label} acceleration changed significantly",
                    parameters={'object': label, 'change': 'acceleration_jump',
                                'old_acceleration': old_a, 'new_acceleration': new_a},
                ))

        calculator = self._calculator(ir)
        old_energy = calculator.compute(old_state)[0]
        new_energy = calculator.compute(new_state)[0]
        change = abs(new_energy - old_energy)
        if change > ENERGY_JUMP and abs(old_energy) > ENERGY_FLOOR:
            events.append(Event(
                type=EventType.STATE_CHANGE,
                time=new_state.time,
                description="System energy changed significantly",
                parameters={'change': 'energy_jump', 'old_energy': old_energy,
                            'new_energy': new_energy, 'energy_change': new_energy - old_energy,
                            'relative_change': change / abs(old_energy)},
                severity=EventSeverity.WARNING,
            ))
        return events

# ===============================================================================
# Custom Constraints and Thresholds
# ===============================================================================

class CustomConstraintDetector(EventDetectorBase):
    """Physical constraint violations and speed threshold breaches"""

    name = 'custom'

    def __init__(self, engine: Optional[FormulaEngine] = None, speed_limit: float = SPEED_LIMIT):
        super().__init__(engine)
        self.speed_limit = speed_limit

    def violation(self, constraint: IRConstraint, scope: Dict[str, float]) -> Optional[float]:
        """Residual of a violated constraint, 0.0 for a false inequality, None when satisfied"""
        residual = residual_expression(constraint.expression)
        if residual is not None:
            variables = self.engine.extract_variables(residual)
            if not variables or not variables.issubset(scope):
                return None
            value = self.engine.evaluate(residual, scope)
            return value if abs(value) > constraint.tolerance else None
        holds = self._holds(constraint.expression, scope)
        return 0.0 if holds is False else None

    def _constraint_margin(self, constraint: IRConstraint) -> Callable[[SimulationState], float]:
        residual = residual_expression(constraint.expression)
        if residual is None:
            return self._condition_margin(constraint.expression)
        return lambda state: constraint.tolerance - abs(self.engine.evaluate(residual, state.variables))

    async def detect(self, old_state, new_state, ir):
        events = []
        for constraint in ir.system.constraints:
            if constraint.type != 'physical':
                continue
            residual = self.violation(constraint, new_state.variables)
            if residual is None or self.violation(constraint, old_state.variables) is not None:
                continue
            events.append(Event(
                type=EventType.CUSTOM,
                time=locate_crossing(old_state, new_state, self._constraint_margin(constraint)),
                description=f"Constraint violated: {constraint.expression}",
                parameters={'constraint': constraint.expression, 'residual': residual,
                            'tolerance': constraint.tolerance, 'priority': constraint.priority},
                severity=EventSeverity.CRITICAL if constraint.priority in ('high', 'important')
                else EventSeverity.WARNING,
            ))

        for name in object_names(ir):
            old_speed, new_speed = _speed(old_state, name), _speed(new_state, name)
            if new_speed > self.speed_limit >= old_speed:
                label = name or 'system'
                events.append(Event(
                    type=EventType.CUSTOM,
                    time=locate_crossing(old_state, new_state,
                                         lambda s, n=name: self.speed_limit - _speed(s, n)),
                    description=f"{label} reached high speed",
                    parameters={'object': label, 'speed': new_speed, 'threshold': self.speed_limit},
                ))
        return events

# ===============================================================================
# Optional Detectors
# ===============================================================================

class EquilibriumDetector(EventDetectorBase):
    """Object coming to rest after moving"""

    name = 'equilibrium'

    async def detect(self, old_state, new_state, ir):
        events = []
        for name in object_names(ir):
            old_speed, new_speed = _speed(old_state, name), _speed(new_state, name)
            if new_speed < EQUILIBRIUM_SPEED <= old_speed:
                label = name or 'system'
                events.append(Event(
                    type=EventType.STATE_CHANGE,
                    time=locate_crossing(old_state, new_state,
                                         lambda s, n=name: _speed(s, n) - EQUILIBRIUM_SPEED),
                    description=f"{label} reached equilibrium",
                    parameters={'object': label, 'change': 'equilibrium', 'speed': new_speed},
                ))
        return events


class InstabilityDetector(EventDetectorBase):
    """Very large accelerations or non-finite variables"""

    name = 'instability'

    def __init__(self, engine: Optional[FormulaEngine] = None,
                 max_acceleration: float = INSTABILITY_ACCELERATION):
        super().__init__(engine)
        self.max_acceleration = max_acceleration

    async def detect(self, old_state, new_state, ir):
        events = []
        bad = sorted(s for s, v in new_state.variables.items() if not math.isfinite(v))
        if bad:
            events.append(Event(
                type=EventType.CUSTOM,
                time=new_state.time,
                description=f"Non-finite values in {', '.join(bad)}",
                parameters={'instability': 'non_finite', 'variables': bad},
                severity=EventSeverity.CRITICAL,
            ))
        for name in object_names(ir):
            acceleration = float(np.linalg.norm(object_acceleration(new_state, name)))
            if acceleration > self.max_acceleration:
                label = name or 'system'
                events.append(Event(
                    type=EventType.CUSTOM,
                    time=new_state.time,
                    description=f"{label} shows numerical instability",
                    parameters={'object': label, 'instability': 'high_acceleration',
                                'acceleration': acceleration},
                    severity=EventSeverity.WARNING,
                ))
        return events

# ===============================================================================
# Composite
# ===============================================================================

class EventDetector:
    """Runs every installed detector; one failing detector does not stop the others"""

    def __init__(self, detectors: Optional[List[EventDetectorBase]] = None):
        if detectors is None:
            engine = FormulaEngine(warn_missing_symbols=False)
            detectors = [CollisionDetector(engine), StateChangeDetector(engine),
                         CustomConstraintDetector(engine)]
        self.detectors: List[EventDetectorBase] = list(detectors)
        self.failures = 0

    def add_detector(self, detector: EventDetectorBase):
        self.detectors.append(detector)

    def remove_detector(self, name: str) -> bool:
        before = len(self.detectors)
        self.detectors = [d for d in self.detectors if d.name != name]
        return len(self.detectors) != before

    def get_detectors(self) -> List[str]:
        return [d.name for d in self.detectors]

    async def detect_events(self, old_state: SimulationState, new_state: SimulationState,
                            ir: PhysicsIR) -> List[Event]:
        events: List[Event] = []
        for detector in self.detectors:
            try:
                events.extend(await detector.detect(old_state, new_state, ir))
            except Exception as e:
                self.failures += 1
                logger.warning(f"Event detector '{detector.name}' failed: {e}")
        events.sort(key=lambda event: event.time)
        return events

# -*- coding: utf-8 -*-
"""
Conserved-quantity observables (energy, momentum, angular momentum) for a state.
"""

from typing import Dict, Optional, Tuple

import numpy as np

from .formula_engine import FormulaEngine
from .ir_types import PhysicsIR
from .simulation_state import (SimulationState, object_names, object_position,
                               object_velocity)

OBSERVABLE_QUANTITIES = ('energy', 'momentum', 'angular_momentum')


class ObservableCalculator:
    """Evaluates module conservation-law expressions, with kinetic fallbacks"""

    def __init__(self, ir: Optional[PhysicsIR], engine: Optional[FormulaEngine] = None):
        self.ir = ir
        self.engine = engine or FormulaEngine()
        self.expressions: Dict[str, str] = {}
        if ir is not None:
            for law in ir.system.conservation_laws:
                if law.quantity in OBSERVABLE_QUANTITIES and law.expression:
                    self.expressions.setdefault(law.quantity, law.expression)
        self._masses = self._object_masses()

    def _object_masses(self) -> Dict[Optional[str], float]:
        masses: Dict[Optional[str], float] = {}
        if self.ir is not None:
            for obj in self.ir.system.objects:
                masses[obj.name] = float(obj.mass)
        return masses

    def _mass(self, name: Optional[str], variables: Dict[str, float]) -> float:
        if name in self._masses:
            return self._masses[name]
        return float(variables.get('m', 1.0))

    def compute(self, state: SimulationState) -> Tuple[float, float, float]:
        """(energy, momentum, angular momentum) of a state"""
        variables = state.variables
        names = object_names(self.ir)

        if 'energy' in self.expressions:
            energy = self.engine.evaluate(self.expressions['energy'], variables)
        else:
            energy = sum(0.5 * self._mass(n, variables) * float(np.dot(v, v))
                         for n, v in ((n, object_velocity(state, n)) for n in names))

        if 'momentum' in self.expressions:
            momentum = self.engine.evaluate(self.expressions['momentum'], variables)
        else:
            total = sum((self._mass(n, variables) * object_velocity(state, n) for n in names),
                        np.zeros(3))
            momentum = float(np.linalg.norm(total))

        if 'angular_momentum' in self.expressions:
            angular = self.engine.evaluate(self.expressions['angular_momentum'], variables)
        elif self.ir is not None and self.ir.system.objects:
            total = sum((self._mass(n, variables) * np.cross(object_position(state, n),
                                                             object_velocity(state, n))
                         for n in names), np.zeros(3))
            angular = float(np.linalg.norm(total))
        else:
            angular = 0.0

        return float(energy), float(momentum), float(angular)

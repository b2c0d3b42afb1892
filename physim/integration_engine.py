# -*- coding: utf-8 -*-
"""
Integration Engine
Compiles the IR's equations into a first-order system and implements the
pluggable solvers (Euler, RK4, adaptive step doubling) with automatic
method recommendation.
"""

import warnings
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from .formula_engine import FormulaEngine, extract_variables
from .ir_types import ParameterRole, PhysicsIR
from .logging_utils import get_logger
from .simulation_state import SimulationState, clone_state

logger = get_logger(__name__)

TIME_SYMBOL = 't'

# ===============================================================================
# Equation System
# ===============================================================================

class EquationSystem:
    """First-order view of the IR equations

    `derivatives` maps each state symbol to the expression of its time
    derivative; an order-2 equation on x with states (x, v) contributes
    x -> 'v' and v -> rhs. `algebraic` lists (target, rhs) pairs refreshed
    after every stage.
    """

    def __init__(self, derivatives: 'OrderedDict[str, str]',
                 algebraic: Optional[List[Tuple[str, str]]] = None,
                 engine: Optional[FormulaEngine] = None):
        self.derivatives = derivatives
        self.states: List[str] = list(derivatives)
        self.algebraic = algebraic or []
        self.engine = engine or FormulaEngine()
        self.evaluations = 0

    @classmethod
    def from_ir(cls, ir: PhysicsIR, engine: Optional[FormulaEngine] = None
                ) -> Tuple['EquationSystem', List[str]]:
        """Build the system from modules in execution order; returns (system, warnings)"""
        messages: List[str] = []
        derivatives: 'OrderedDict[str, str]' = OrderedDict()
        owners: Dict[str, str] = {}

        for module in ir.system.modules:
            for equation in module.differential_equations:
                states = equation.state_variables
                exprs = list(states[1:]) + [equation.rhs]
                for state, expr in zip(states, exprs):
                    if state in derivatives:
                        if derivatives[state] != expr:
                            messages.append(
                                f"Derivative of '{state}' already defined by {owners[state]}; "
                                f"ignoring {equation.id}")
                        continue
                    derivatives[state] = expr
                    owners[state] = equation.id

        fixed = {p.symbol for p in ir.system.parameters
                 if p.role in (ParameterRole.GIVEN, ParameterRole.CONSTANT)}
        algebraic: List[Tuple[str, str]] = []
        seen = set()
        for module in ir.system.modules:
            for equation in module.algebraic_equations:
                target = equation.target
                if (not target or target in derivatives or target == TIME_SYMBOL
                        or target in fixed or target in seen):
                    continue
                seen.add(target)
                algebraic.append((target, equation.rhs))

        return cls(derivatives, algebraic, engine), messages

    @property
    def size(self) -> int:
        return len(self.states)

    def state_vector(self, variables: Dict[str, float]) -> np.ndarray:
        return np.array([float(variables.get(s, 0.0)) for s in self.states], dtype=float)

    def assign(self, variables: Dict[str, float], vector: np.ndarray):
        for symbol, value in zip(self.states, vector):
            variables[symbol] = float(value)

    def apply_algebraic(self, variables: Dict[str, float]):
        for target, rhs in self.algebraic:
            variables[target] = self.engine.evaluate(rhs, variables)

    def scope(self, t: float, y: np.ndarray, base: Dict[str, float]) -> Dict[str, float]:
        """Symbol table for evaluating the system at (t, y)"""
        scope = dict(base)
        self.assign(scope, y)
        scope[TIME_SYMBOL] = t
        self.apply_algebraic(scope)
        return scope

    def evaluate(self, t: float, y: np.ndarray, base: Dict[str, float]) -> np.ndarray:
        """Derivative vector at (t, y); failing expressions contribute 0"""
        scope = self.scope(t, y, base)
        self.evaluations += 1
        return np.array([self.engine.evaluate(self.derivatives[s], scope) for s in self.states],
                        dtype=float)

    def build_state(self, previous: SimulationState, y_new: np.ndarray, t_new: float) -> SimulationState:
        """New state at t_new with algebraic targets and derivatives refreshed"""
        state = clone_state(previous)
        state.events = []
        state.time = t_new
        state.step_index = previous.step_index + 1
        state.variables = self.scope(t_new, y_new, previous.variables)
        values = self.evaluate(t_new, y_new, state.variables)
        state.derivatives = dict(zip(self.states, values.tolist()))
        return state

    def has_discontinuities(self) -> bool:
        markers = ('>', '<', 'step(', 'heaviside(', 'sign(', 'abs(')
        return any(any(m in expr for m in markers) for expr in self.derivatives.values())

    def dependencies(self) -> Dict[str, List[str]]:
        return {s: sorted(extract_variables(expr)) for s, expr in self.derivatives.items()}

# ===============================================================================
# Solvers
# ===============================================================================

class Solver(ABC):
    """Abstract base class for integration methods"""

    name = 'base'

    def __init__(self):
        self.stats = {'steps': 0, 'derivative_evaluations': 0}

    @abstractmethod
    def advance(self, y: np.ndarray, t: float, dt: float, system: EquationSystem,
                base: Dict[str, float]) -> np.ndarray:
        """State vector after one step of size dt"""
        pass

    def step(self, state: SimulationState, dt: float, system: EquationSystem) -> SimulationState:
        y = system.state_vector(state.variables)
        y_new = self.advance(y, state.time, dt, system, state.variables)
        self.stats['steps'] += 1
        return system.build_state(state, y_new, state.time + dt)

    @abstractmethod
    def is_stable(self, state: SimulationState, dt: float) -> bool:
        pass

    @abstractmethod
    def get_optimal_step_size(self, state: SimulationState) -> float:
        pass

    @staticmethod
    def _max_rate(state: SimulationState) -> float:
        rates = [abs(v) for v in state.derivatives.values() if np.isfinite(v)]
        return max(rates) if rates else 0.0


class EulerSolver(Solver):
    """Simple explicit Euler integration"""

    name = 'euler'

    def advance(self, y, t, dt, system, base):
        self.stats['derivative_evaluations'] += 1
        return y + dt * system.evaluate(t, y, base)

    def is_stable(self, state, dt):
        return dt * self._max_rate(state) < 1.0

    def get_optimal_step_size(self, state):
        rate = self._max_rate(state)
        if rate <= 0:
            return 0.01
        return float(np.clip(0.1 / rate, 1e-4, 0.01))


class RK4Solver(Solver):
    """Runge-Kutta 4th order integration"""

    name = 'rk4'

    def advance(self, y, t, dt, system, base):
        # RK4 stages
        k1 = dt * system.evaluate(t, y, base)
        k2 = dt * system.evaluate(t + dt / 2, y + k1 / 2, base)
        k3 = dt * system.evaluate(t + dt / 2, y + k2 / 2, base)
        k4 = dt * system.evaluate(t + dt, y + k3, base)
        self.stats['derivative_evaluations'] += 4
        return y + (k1 + 2 * k2 + 2 * k3 + k4) / 6

    def is_stable(self, state, dt):
        return True

    def get_optimal_step_size(self, state):
        return 0.1


class AdaptiveSolver(Solver):
    """Step-doubling error control around a base solver"""

    name = 'adaptive'

    def __init__(self, base: Optional[Solver] = None, tolerance: float = 1e-6,
                 min_step: float = 1e-10, max_step: float = 1.0):
        super().__init__()
        self.base = base or RK4Solver()
        self.tolerance = tolerance
        self.min_step = min_step
        self.max_step = max_step
        self.next_step: Optional[float] = None
        self.stats.update({'step_adjustments': 0, 'last_error': 0.0})

    def advance(self, y, t, dt, system, base):
        evaluations = self.base.stats['derivative_evaluations']
        full = self.base.advance(y, t, dt, system, base)
        half = self.base.advance(y, t, dt / 2, system, base)
        refined = self.base.advance(half, t + dt / 2, dt / 2, system, base)
        self.stats['derivative_evaluations'] += self.base.stats['derivative_evaluations'] - evaluations

        error = float(np.max(np.abs(refined - full))) if y.size else 0.0
        self.stats['last_error'] = error
        if error > 2 * self.tolerance:
            self.next_step = dt * 0.8
        elif error < 0.5 * self.tolerance:
            self.next_step = dt * 1.2
        else:
            self.next_step = dt
        if self.next_step != dt:
            self.stats['step_adjustments'] += 1
        self.next_step = float(np.clip(self.next_step, self.min_step, self.max_step))
        return refined

    def step(self, state, dt, system):
        dt = min(dt, self.base.get_optimal_step_size(state))
        return super().step(state, dt, system)

    def is_stable(self, state, dt):
        return self.base.is_stable(state, dt)

    def get_optimal_step_size(self, state):
        optimal = self.base.get_optimal_step_size(state)
        if self.next_step is not None:
            optimal = min(optimal, self.next_step)
        return float(np.clip(optimal, self.min_step, self.max_step))

# ===============================================================================
# System Analysis
# ===============================================================================

@dataclass
class SystemCharacteristics:
    """Container for equation-system analysis results"""
    num_states: int = 0
    is_stiff: bool = False
    stiffness_ratio: float = 1.0
    spectral_radius: float = 0.0
    has_discontinuities: bool = False
    has_fast_dynamics: bool = False


class SystemAnalyzer:
    """Analyzes an equation system to recommend an integration method"""

    @staticmethod
    def jacobian(system: EquationSystem, variables: Dict[str, float], t: float = 0.0) -> np.ndarray:
        """Forward-difference Jacobian of the derivative vector"""
        y0 = system.state_vector(variables)
        n = y0.size
        jac = np.zeros((n, n))
        if n == 0:
            return jac
        f0 = system.evaluate(t, y0, variables)
        for j in range(n):
            epsilon = 1e-8 * max(1.0, abs(y0[j]))
            y_pert = y0.copy()
            y_pert[j] += epsilon
            jac[:, j] = (system.evaluate(t, y_pert, variables) - f0) / epsilon
        return jac

    @staticmethod
    def analyze(system: EquationSystem, variables: Dict[str, float]) -> SystemCharacteristics:
        chars = SystemCharacteristics(num_states=system.size,
                                      has_discontinuities=system.has_discontinuities())
        if system.size == 0:
            return chars

        jac = SystemAnalyzer.jacobian(system, variables)
        if not np.all(np.isfinite(jac)):
            return chars
        eigenvalues = np.linalg.eigvals(jac)
        magnitudes = np.abs(eigenvalues)
        chars.spectral_radius = float(magnitudes.max()) if magnitudes.size else 0.0

        decay_rates = np.abs(eigenvalues.real)
        nonzero = decay_rates[decay_rates > 1e-12]
        if nonzero.size > 1:
            chars.stiffness_ratio = float(nonzero.max() / nonzero.min())
        chars.is_stiff = chars.stiffness_ratio > 1000
        chars.has_fast_dynamics = chars.spectral_radius > 100
        return chars

    @staticmethod
    def recommend(system: EquationSystem, variables: Dict[str, float],
                  base_time_step: float = 0.01) -> Tuple[str, Dict[str, Any]]:
        """Recommend a solver and a time step"""
        chars = SystemAnalyzer.analyze(system, variables)
        dt = base_time_step
        if chars.spectral_radius > 0:
            dt = min(dt, 1.0 / chars.spectral_radius)

        if chars.is_stiff or chars.has_fast_dynamics:
            method = 'adaptive'
        elif chars.has_discontinuities:
            method = 'rk4'
            dt = min(dt, base_time_step / 2)
        else:
            method = 'rk4'

        return method, {
            'time_step': dt,
            'stiffness_ratio': chars.stiffness_ratio,
            'is_stiff': chars.is_stiff,
            'spectral_radius': chars.spectral_radius,
            'has_discontinuities': chars.has_discontinuities,
            'num_states': chars.num_states,
        }

# ===============================================================================
# Engine
# ===============================================================================

class IntegrationEngine:
    """Registry of solvers keyed by method name"""

    def __init__(self):
        self.methods = {
            'euler': EulerSolver,
            'rk4': RK4Solver,
            'adaptive': AdaptiveSolver,
        }
        self.integration_stats: Dict[str, Dict[str, Any]] = {}

    def get_available_methods(self) -> List[str]:
        return list(self.methods.keys())

    def register(self, name: str, solver_class):
        self.methods[name] = solver_class

    def create_solver(self, method: str, tolerance: float = 1e-6,
                      min_step: float = 1e-10, max_step: float = 1.0) -> Solver:
        if method not in self.methods:
            available = ', '.join(self.get_available_methods())
            raise ValueError(f"Unknown integration method '{method}'. Available: {available}")
        solver_class = self.methods[method]
        logger.debug(f"Creating {method} solver (tolerance={tolerance})")
        if issubclass(solver_class, AdaptiveSolver):
            return solver_class(tolerance=tolerance, min_step=min_step, max_step=max_step)
        return solver_class()

    def record_run(self, solver: Solver, runtime: float, success: bool):
        self.integration_stats[solver.name] = {
            'last_runtime': runtime,
            'last_success': success,
            'last_steps': solver.stats['steps'],
            'last_nfev': solver.stats['derivative_evaluations'],
            'efficiency': solver.stats['derivative_evaluations'] / max(1e-9, runtime),
        }
        if not success:
            warnings.warn(f"Integration with {solver.name} did not complete successfully")

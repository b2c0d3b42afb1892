"""Tests for the equation system and the Euler, RK4 and adaptive solvers."""

import math
from collections import OrderedDict

import numpy as np
import pytest

from physim.integration_engine import (AdaptiveSolver, EquationSystem, EulerSolver,
                                       IntegrationEngine, RK4Solver, SystemAnalyzer)
from physim.simulation_state import SimulationState


def decay_system():
    return EquationSystem(OrderedDict([("y", "-y")]))


def initial_state(system, **variables):
    state = SimulationState(time=0.0, variables=dict(variables))
    y = system.state_vector(state.variables)
    state.derivatives = dict(zip(system.states, system.evaluate(0.0, y, state.variables).tolist()))
    return state


def integrate(solver, system, state, dt, steps):
    for _ in range(steps):
        state = solver.step(state, dt, system)
    return state


class TestEquationSystem:
    def test_from_ir_expands_second_order(self, oscillator_ir):
        system, messages = EquationSystem.from_ir(oscillator_ir)
        assert system.states == ["x", "v"]
        assert system.derivatives["x"] == "v"
        assert "x" in system.derivatives["v"]
        assert messages == []

    def test_algebraic_targets_refresh(self, oscillator_ir):
        system, _ = EquationSystem.from_ir(oscillator_ir)
        targets = [target for target, _ in system.algebraic]
        assert "omega" in targets
        assert "x" not in targets

    def test_time_is_never_an_algebraic_target(self, free_fall_ir):
        system, _ = EquationSystem.from_ir(free_fall_ir)
        assert "t" not in [target for target, _ in system.algebraic]
        assert system.states == ["h", "v"]

    def test_build_state_advances_time(self):
        system = decay_system()
        state = initial_state(system, y=1.0)
        new_state = system.build_state(state, np.array([0.5]), 0.1)
        assert new_state.time == 0.1
        assert new_state.step_index == 1
        assert new_state.derivatives["y"] == pytest.approx(-0.5)
        assert state.variables["y"] == 1.0


class TestSolvers:
    def test_euler_first_order_accuracy(self):
        system = decay_system()
        final = integrate(EulerSolver(), system, initial_state(system, y=1.0), 0.01, 100)
        assert final.variables["y"] == pytest.approx(math.exp(-1), rel=1e-2)

    def test_rk4_fourth_order_accuracy(self):
        system = decay_system()
        final = integrate(RK4Solver(), system, initial_state(system, y=1.0), 0.1, 10)
        assert final.variables["y"] == pytest.approx(math.exp(-1), rel=1e-5)

    def test_rk4_beats_euler(self):
        system = decay_system()
        euler = integrate(EulerSolver(), system, initial_state(system, y=1.0), 0.1, 10)
        rk4 = integrate(RK4Solver(), system, initial_state(system, y=1.0), 0.1, 10)
        exact = math.exp(-1)
        assert abs(rk4.variables["y"] - exact) < abs(euler.variables["y"] - exact)

    def test_euler_stability_limit(self):
        system = EquationSystem(OrderedDict([("y", "-100*y")]))
        state = initial_state(system, y=1.0)
        solver = EulerSolver()
        assert not solver.is_stable(state, 0.1)
        assert solver.is_stable(state, 0.001)

    def test_adaptive_adjusts_step(self):
        system = decay_system()
        solver = AdaptiveSolver(tolerance=1e-10)
        state = initial_state(system, y=1.0)
        state = solver.step(state, 0.1, system)
        assert solver.stats["step_adjustments"] >= 1
        assert solver.get_optimal_step_size(state) < 0.1

    def test_adaptive_respects_bounds(self):
        solver = AdaptiveSolver(tolerance=1.0, min_step=1e-3, max_step=0.05)
        system = decay_system()
        state = initial_state(system, y=1.0)
        for _ in range(20):
            state = solver.step(state, solver.get_optimal_step_size(state), system)
        assert solver.get_optimal_step_size(state) <= 0.05

    def test_failing_derivative_contributes_zero(self):
        system = EquationSystem(OrderedDict([("y", "bogus(y)")]))
        state = initial_state(system, y=2.0)
        final = integrate(RK4Solver(), system, state, 0.1, 5)
        assert final.variables["y"] == 2.0


class TestEngine:
    def test_available_methods(self):
        assert IntegrationEngine().get_available_methods() == ["euler", "rk4", "adaptive"]

    def test_unknown_method_raises(self):
        with pytest.raises(ValueError, match="Unknown integration method"):
            IntegrationEngine().create_solver("verlet")

    def test_adaptive_receives_tolerance(self):
        solver = IntegrationEngine().create_solver("adaptive", tolerance=1e-8, max_step=0.5)
        assert isinstance(solver, AdaptiveSolver)
        assert solver.tolerance == 1e-8
        assert solver.max_step == 0.5


class TestSystemAnalyzer:
    def test_stiff_system_recommends_adaptive(self):
        system = EquationSystem(OrderedDict([("a", "-1*a"), ("b", "-5000*b")]))
        method, details = SystemAnalyzer.recommend(system, {"a": 1.0, "b": 1.0})
        assert details["is_stiff"]
        assert method == "adaptive"

    def test_discontinuity_halves_step(self, free_fall_ir):
        system, _ = EquationSystem.from_ir(free_fall_ir)
        variables = {p.symbol: p.numeric_value for p in free_fall_ir.system.parameters}
        method, details = SystemAnalyzer.recommend(system, variables, 0.01)
        assert method == "rk4"
        assert details["has_discontinuities"]
        assert details["time_step"] <= 0.005

"""Shared fixtures: declarative models, converted IRs and synthetic results."""

import asyncio

import numpy as np
import pytest

from physim.ir_builder import IRBuilder
from physim.ir_types import (Equation, IRSystem, Module, Parameter, ParameterRole,
                             PhysicalQuantity, PhysicsIR)
from physim.simulation_state import SimulationResult, TimeSeriesSnapshot


def free_fall_model() -> dict:
    return {
        "metadata": {
            "id": "dropped_ball",
            "title": "Dropped ball",
            "problemText": "A ball is dropped from a height of 20 m and falls under gravity",
        },
        "system": {
            "type": "free_fall",
            "parameters": {
                "h": {"value": 20, "unit": "m"},
                "g": {"value": 9.8, "unit": "m/s^2", "role": "constant"},
                "v": {"unit": "m/s", "role": "unknown"},
                "t": {"unit": "s", "role": "unknown"},
            },
        },
        "simulation": {"duration": 3.0, "timeStep": 0.01, "solver": "rk4"},
    }


def oscillator_model() -> dict:
    return {
        "metadata": {
            "id": "spring_mass",
            "problemText": "A 0.5 kg mass attached to a spring oscillates with "
                           "amplitude 0.1 m. Find the period.",
        },
        "system": {
            "type": "oscillation",
            "parameters": {
                "k": {"value": 100, "unit": "N/m"},
                "m": {"value": 0.5, "unit": "kg"},
                "A": {"value": 0.1, "unit": "m"},
                "x": {"unit": "m", "role": "unknown"},
                "v": {"unit": "m/s", "role": "unknown"},
            },
        },
        "simulation": {"duration": 10.0, "timeStep": 0.01, "solver": "rk4"},
    }


def convert(model: dict, builder: IRBuilder = None):
    builder = builder or IRBuilder()
    return asyncio.run(builder.convert(model))


def quantity(value: float, unit: str = "", dimension: str = "1") -> PhysicalQuantity:
    return PhysicalQuantity(float(value), unit, dimension)


def single_module_ir(equation: str, symbol: str = "x", value: float = 1.0) -> PhysicsIR:
    """IR with one generic module driving `symbol` by `equation`"""
    parameter = Parameter(symbol, quantity(value, "m", "L"), ParameterRole.GIVEN)
    module = Module(id="custom", type="generic", parameters=(parameter,),
                    equations=(Equation.from_string("custom_ode0", equation),))
    return PhysicsIR(system=IRSystem(type="generic", modules=[module], parameters=[parameter]))


def make_result(times, **series) -> SimulationResult:
    """SimulationResult built from raw arrays, one snapshot per time"""
    result = SimulationResult(success=True, metrics={"total_steps": len(times) - 1})
    energy = series.pop("energy", None)
    for i, t in enumerate(times):
        variables = {name: float(values[i]) for name, values in series.items()}
        result.time_series.append(TimeSeriesSnapshot(
            time=float(t), variables=variables, derivatives={},
            energy=float(energy[i]) if energy is not None else 0.0))
    result.computation_time = 0.01
    return result


@pytest.fixture
def builder():
    return IRBuilder()


@pytest.fixture
def free_fall_ir():
    result = convert(free_fall_model())
    assert result.success, result.errors
    return result.ir


@pytest.fixture
def oscillator_ir():
    result = convert(oscillator_model())
    assert result.success, result.errors
    return result.ir


@pytest.fixture
def smooth_result():
    times = np.linspace(0.0, 10.0, 201)
    return make_result(times, x=np.sin(times), v=np.cos(times),
                       energy=np.full(times.size, 0.5))

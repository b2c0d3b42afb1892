# -*- coding: utf-8 -*-
"""
physim - physics word-problem core: IR construction, numerical simulation,
event detection, state monitoring and validation.
"""

from .config import (IRBuilderConfig, MonitorConfig, PhysicsValidatorConfig,
                     ResultValidatorConfig, SimulationConfig, load_config_from_env)
from .dimensions import PHYSICS_CONSTANTS, Dimension, DimensionCalculator
from .event_detector import (CollisionDetector, CustomConstraintDetector, EquilibriumDetector,
                             EventDetector, EventDetectorBase, InstabilityDetector,
                             StateChangeDetector)
from .exceptions import (CyclicDependencyError, ExpressionError, PhysimError,
                         UnsupportedEquationOrder)
from .formula_engine import FormulaEngine
from .ir_builder import ConversionResult, IRBuilder, compute_execution_order, validate_ir
from .ir_types import Equation, Module, Parameter, ParameterRole, PhysicalQuantity, PhysicsIR
from .module_library import ModuleType, create_module
from .physics_validator import PhysicsValidator
from .result_validator import ResultValidator
from .simulation_state import Event, EventType, SimulationResult, SimulationState
from .simulator import NumericalSimulator
from .state_monitor import StateMonitor
from .validation_types import ValidationReport

__version__ = '0.1.0'

__all__ = [
    'CollisionDetector', 'ConversionResult', 'CustomConstraintDetector', 'CyclicDependencyError',
    'Dimension', 'DimensionCalculator', 'Equation', 'EquilibriumDetector', 'Event',
    'EventDetector', 'EventDetectorBase', 'EventType', 'ExpressionError', 'FormulaEngine',
    'IRBuilder', 'IRBuilderConfig', 'InstabilityDetector', 'Module', 'ModuleType',
    'MonitorConfig', 'NumericalSimulator', 'PHYSICS_CONSTANTS', 'Parameter', 'ParameterRole',
    'PhysicalQuantity', 'PhysicsIR', 'PhysicsValidator', 'PhysicsValidatorConfig', 'PhysimError',
    'ResultValidator', 'ResultValidatorConfig', 'SimulationConfig', 'SimulationResult',
    'SimulationState', 'StateChangeDetector', 'StateMonitor', 'UnsupportedEquationOrder',
    'ValidationReport', 'compute_execution_order', 'create_module', 'load_config_from_env',
    'validate_ir',
]

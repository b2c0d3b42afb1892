# -*- coding: utf-8 -*-
"""
IR data model: quantities, parameters, equations, modules and the full
physics IR produced by the builder and consumed by the simulator and validators.
"""

import ast
import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .exceptions import UnsupportedEquationOrder
from .formula_engine import extract_variables, normalize_expression, split_equation

MAX_EQUATION_ORDER = 2

# ===============================================================================
# Enums
# ===============================================================================

class ParameterRole(Enum):
    GIVEN = "given"
    UNKNOWN = "unknown"
    CONSTANT = "constant"
    DERIVED = "derived"

    @classmethod
    def parse(cls, value: Any) -> 'ParameterRole':
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.GIVEN


class EquationKind(Enum):
    ALGEBRAIC = "algebraic"
    DIFFERENTIAL = "differential"


class ComplexityTier(Enum):
    BASIC = "basic"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


# ===============================================================================
# Quantities and Parameters
# ===============================================================================

@dataclass(frozen=True)
class PhysicalQuantity:
    value: float
    unit: str = ''
    dimension: str = '1'


@dataclass(frozen=True)
class Parameter:
    symbol: str
    value: PhysicalQuantity
    role: ParameterRole = ParameterRole.GIVEN
    description: str = ''
    dependencies: Tuple[str, ...] = ()

    @property
    def numeric_value(self) -> float:
        return self.value.value

    @property
    def is_known(self) -> bool:
        return self.role in (ParameterRole.GIVEN, ParameterRole.CONSTANT)


# ===============================================================================
# Equations
# ===============================================================================

def _references(node: ast.AST, symbols) -> bool:
    return any(isinstance(n, ast.Name) and n.id in symbols for n in ast.walk(node))


def classify_linearity(rhs: str, state_symbols) -> str:
    """'linear' when the right-hand side is linear in the given state symbols"""
    try:
        tree = ast.parse(normalize_expression(rhs), mode='eval')
    except SyntaxError:
        return 'unknown'
    for node in ast.walk(tree):
        if isinstance(node, ast.Call) and _references(node, state_symbols):
            return 'nonlinear'
        if isinstance(node, ast.BinOp):
            if isinstance(node.op, ast.Pow) and _references(node, state_symbols):
                return 'nonlinear'
            if isinstance(node.op, ast.Mult) and _references(node.left, state_symbols) \
                    and _references(node.right, state_symbols):
                return 'nonlinear'
            if isinstance(node.op, ast.Div) and _references(node.right, state_symbols):
                return 'nonlinear'
    return 'linear'


@dataclass(frozen=True)
class Equation:
    """A named equation; differential ones carry the state symbols they drive

    For an order-n differential equation on x, `state_variables` lists x and
    its first n-1 derivatives, e.g. ('x', 'v') for d2x/dt2.
    """
    id: str
    kind: EquationKind
    expression: str
    variables: Tuple[str, ...] = ()
    order: int = 0
    linearity: str = 'linear'
    target: Optional[str] = None
    rhs: str = ''
    state_variables: Tuple[str, ...] = ()

    def __post_init__(self):
        if self.kind == EquationKind.DIFFERENTIAL and self.order > MAX_EQUATION_ORDER:
            raise UnsupportedEquationOrder(self.id, self.order, MAX_EQUATION_ORDER)

    @classmethod
    def from_string(cls, equation_id: str, text: str,
                    state_variables: Optional[Tuple[str, ...]] = None) -> 'Equation':
        parts = split_equation(text)
        variables = set(extract_variables(parts.rhs))
        if parts.target:
            variables.add(parts.target)

        if parts.order > 0:
            states = tuple(state_variables) if state_variables else ()
            if not states:
                states = (parts.target,) if parts.order == 1 else \
                    (parts.target,) + tuple(f"{parts.target}_dot{'' if i == 1 else i}"
                                            for i in range(1, parts.order))
            return cls(
                id=equation_id,
                kind=EquationKind.DIFFERENTIAL,
                expression=text,
                variables=tuple(sorted(variables | set(states))),
                order=parts.order,
                linearity=classify_linearity(parts.rhs, set(states)),
                target=parts.target,
                rhs=parts.rhs,
                state_variables=states,
            )

        return cls(
            id=equation_id,
            kind=EquationKind.ALGEBRAIC,
            expression=text,
            variables=tuple(sorted(variables)),
            order=0,
            linearity=classify_linearity(parts.rhs, variables - {parts.target}),
            target=parts.target,
            rhs=parts.rhs,
        )

    @property
    def is_differential(self) -> bool:
        return self.kind == EquationKind.DIFFERENTIAL


@dataclass(frozen=True)
class ConservationLaw:
    """A quantity the module expects to be conserved, with an expression for it"""
    quantity: str
    expression: str = ''
    description: str = ''
    tolerance: float = 0.01
    module_id: str = ''


@dataclass(frozen=True)
class ModuleDomain:
    spatial_dimensions: int = 1
    temporal_behavior: str = 'dynamic'   # 'static' | 'dynamic' | 'periodic'
    scale: str = 'macroscopic'           # 'microscopic' | 'macroscopic' | 'astronomical'


# ===============================================================================
# Modules
# ===============================================================================

@dataclass(frozen=True)
class Module:
    """Immutable bundle of parameters, equations and laws for one sub-domain"""
    id: str
    type: str
    name: str = ''
    description: str = ''
    parameters: Tuple[Parameter, ...] = ()
    equations: Tuple[Equation, ...] = ()
    dependencies: Tuple[str, ...] = ()
    outputs: Tuple[str, ...] = ()
    conservation_laws: Tuple[ConservationLaw, ...] = ()
    assumptions: Tuple[str, ...] = ()
    limitations: Tuple[str, ...] = ()
    complexity: ComplexityTier = ComplexityTier.BASIC
    domain: ModuleDomain = field(default_factory=ModuleDomain)
    initial_conditions: Tuple[Tuple[str, str], ...] = ()
    score: float = 0.0

    def get_parameter(self, symbol: str) -> Optional[Parameter]:
        for parameter in self.parameters:
            if parameter.symbol == symbol:
                return parameter
        return None

    @property
    def differential_equations(self) -> List[Equation]:
        return [eq for eq in self.equations if eq.is_differential]

    @property
    def algebraic_equations(self) -> List[Equation]:
        return [eq for eq in self.equations if not eq.is_differential]


# ===============================================================================
# System Description
# ===============================================================================

@dataclass
class IRObject:
    name: str
    type: str = 'particle'
    mass: float = 1.0
    position: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    velocity: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    properties: Dict[str, Any] = field(default_factory=dict)

    @property
    def radius(self) -> float:
        return float(self.properties.get('radius', 0.5))


@dataclass
class IRConstraint:
    type: str                    # 'boundary' | 'physical' | 'initial' | ...
    expression: str
    tolerance: float = 0.01
    priority: str = 'medium'
    description: str = ''


@dataclass
class IRMetadata:
    id: str = 'physics_problem'
    title: str = ''
    description: str = ''
    system_type: str = 'generic'
    version: str = '1.0.0'
    created_at: float = 0.0
    source: str = 'declarative_model'
    difficulty: str = 'unknown'
    topics: List[str] = field(default_factory=list)


@dataclass
class IRSystem:
    type: str = 'generic'
    modules: List[Module] = field(default_factory=list)
    objects: List[IRObject] = field(default_factory=list)
    parameters: List[Parameter] = field(default_factory=list)
    constraints: List[IRConstraint] = field(default_factory=list)
    conservation_laws: List[ConservationLaw] = field(default_factory=list)
    symmetries: List[str] = field(default_factory=list)
    environment: Dict[str, Any] = field(default_factory=dict)
    boundary_conditions: List[str] = field(default_factory=list)
    initial_conditions: Dict[str, str] = field(default_factory=dict)

    def get_parameter(self, symbol: str) -> Optional[Parameter]:
        for parameter in self.parameters:
            if parameter.symbol == symbol:
                return parameter
        return None

    def get_module(self, module_id: str) -> Optional[Module]:
        for module in self.modules:
            if module.id == module_id:
                return module
        return None


@dataclass
class IRSimulation:
    method: str = 'rk4'
    time_step: float = 0.01
    duration: float = 10.0
    tolerance: float = 1e-6
    max_iterations: int = 100000
    adaptive_step_size: bool = False
    precision: str = 'double'


@dataclass
class IROutput:
    variables: List[str] = field(default_factory=list)
    plots: List[Dict[str, Any]] = field(default_factory=list)
    format: str = 'time_series'
    sampling_interval: Optional[float] = None


@dataclass
class IROptimization:
    execution_order: List[str] = field(default_factory=list)
    dependency_graph: Dict[str, List[str]] = field(default_factory=dict)
    parallel_modules: List[List[str]] = field(default_factory=list)
    precomputed_constants: Dict[str, float] = field(default_factory=dict)
    cached_derivatives: Dict[str, str] = field(default_factory=dict)
    numerical_stability: Dict[str, Any] = field(default_factory=dict)
    complexity_score: float = 0.0
    performance: Dict[str, Any] = field(default_factory=dict)


@dataclass
class IRValidationSummary:
    structure_valid: bool = True
    dimensional_consistency: bool = True
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    checks: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PhysicsIR:
    metadata: IRMetadata = field(default_factory=IRMetadata)
    system: IRSystem = field(default_factory=IRSystem)
    simulation: IRSimulation = field(default_factory=IRSimulation)
    output: IROutput = field(default_factory=IROutput)
    optimization: IROptimization = field(default_factory=IROptimization)
    validation: IRValidationSummary = field(default_factory=IRValidationSummary)
    physics_interpretation: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return to_plain(self)


def to_plain(value: Any) -> Any:
    """Recursively convert dataclasses, enums and tuples into JSON-friendly values"""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_plain(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(k): to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_plain(v) for v in value]
    return value

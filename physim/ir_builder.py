# -*- coding: utf-8 -*-
"""
IR Builder
Lowers a declarative problem model into the physics IR: parameter conversion,
module detection against the template library, parameter completion and
merging, dependency ordering, optimization hints and structural validation.
"""

import asyncio
import copy
import hashlib
import json
import math
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

import networkx as nx
from pydantic import ValidationError

from .config import IRBuilderConfig, SUPPORTED_METHODS
from .dimensions import DimensionCalculator
from .exceptions import CyclicDependencyError, UnsupportedEquationOrder
from .formula_engine import FormulaEngine, extract_variables
from .integration_engine import EquationSystem, SystemAnalyzer
from .ir_types import (MAX_EQUATION_ORDER, ComplexityTier, ConservationLaw, IRConstraint,
                       IRMetadata, IRObject, IROptimization, IROutput, IRSimulation, IRSystem,
                       IRValidationSummary, Module, Parameter, ParameterRole, PhysicalQuantity,
                       PhysicsIR, to_plain)
from .logging_utils import get_logger
from .module_library import (SYMMETRY_TABLE, TEMPLATES, TYPE_PRIORITY, ModuleTemplate, ModuleType,
                             ProblemProfile, create_generic_module, create_module, match_templates)
from .schema import (ConstraintSpec, DeclarativeModel, ObjectSpec, OutputSpec, ParameterSpec,
                     ProblemMetadata, SimulationSpec, SystemSpec, parameter_items)

logger = get_logger(__name__)

_SOLVER_ALIASES = {
    'euler': 'euler',
    'rk4': 'rk4', 'runge_kutta': 'rk4', 'runge-kutta': 'rk4', 'rk45': 'rk4', 'verlet': 'rk4',
    'adaptive': 'adaptive', 'adaptive_rk': 'adaptive', 'rkf45': 'adaptive', 'dopri5': 'adaptive',
}

_TIER_WEIGHT = {ComplexityTier.BASIC: 0.0, ComplexityTier.INTERMEDIATE: 0.5, ComplexityTier.ADVANCED: 1.0}

# ===============================================================================
# Ordering
# ===============================================================================

def _priority(module: Module) -> int:
    module_type = ModuleType.parse(module.type)
    return TYPE_PRIORITY.get(module_type, len(TYPE_PRIORITY)) if module_type else len(TYPE_PRIORITY)


def dependency_graph(modules: Iterable[Module]) -> nx.DiGraph:
    """Edges point from a dependency to its dependent; absent dependencies are skipped"""
    modules = list(modules)
    graph = nx.DiGraph()
    ids = {m.id for m in modules}
    for module in modules:
        graph.add_node(module.id, priority=_priority(module))
    for module in modules:
        for dependency in module.dependencies:
            if dependency in ids:
                graph.add_edge(dependency, module.id)
    return graph


def compute_execution_order(modules: Iterable[Module]) -> List[str]:
    """Topological order of module ids, ties broken by type priority then id

    Raises CyclicDependencyError naming a module on the cycle.
    """
    graph = dependency_graph(modules)
    try:
        cycle = nx.find_cycle(graph)
    except nx.NetworkXNoCycle:
        cycle = None
    if cycle:
        path = [edge[0] for edge in cycle]
        raise CyclicDependencyError(path[0], path + [path[0]])
    return list(nx.lexicographical_topological_sort(
        graph, key=lambda node: (graph.nodes[node]['priority'], node)))


def parallel_groups(modules: Iterable[Module]) -> List[List[str]]:
    """Modules that can run together: one list per topological generation"""
    graph = dependency_graph(modules)
    return [sorted(generation, key=lambda n: (graph.nodes[n]['priority'], n))
            for generation in nx.topological_generations(graph)]

# ===============================================================================
# Parameters
# ===============================================================================

def convert_parameter(spec: ParameterSpec) -> Tuple[Parameter, List[str]]:
    """Declared parameter -> Parameter with its dimension resolved from the unit"""
    messages = []
    role = ParameterRole.parse(spec.role)
    value = spec.value
    if value is None:
        if role in (ParameterRole.GIVEN, ParameterRole.CONSTANT):
            messages.append(f"Parameter '{spec.symbol}' is {role.value} but has no value; treating as unknown")
            role = ParameterRole.UNKNOWN
        value = 0.0

    dimension, _, known = DimensionCalculator.parse_unit(spec.unit)
    if spec.dimension:
        dimension_string = DimensionCalculator.to_string(DimensionCalculator.parse(spec.dimension))
    else:
        dimension_string = DimensionCalculator.to_string(dimension)
        if spec.unit and not known:
            messages.append(f"Unknown unit '{spec.unit}' for '{spec.symbol}'; assuming dimensionless")

    parameter = Parameter(
        symbol=spec.symbol,
        value=PhysicalQuantity(float(value), spec.unit, dimension_string),
        role=role,
        description=spec.description,
        dependencies=tuple(spec.dependencies),
    )
    return parameter, messages


def merge_parameters(base: Dict[str, Parameter], modules: Iterable[Module]) -> 'OrderedDict[str, Parameter]':
    """Union module parameters into the system set

    On a collision the value already held is kept; role, description and
    dependencies come from the module, except that a `given` role stays given.
    """
    merged: 'OrderedDict[str, Parameter]' = OrderedDict(base)
    for module in modules:
        for parameter in module.parameters:
            existing = merged.get(parameter.symbol)
            if existing is None:
                merged[parameter.symbol] = parameter
                continue
            if existing is parameter:
                continue
            role = existing.role if existing.role == ParameterRole.GIVEN else parameter.role
            merged[parameter.symbol] = Parameter(
                symbol=existing.symbol,
                value=existing.value,
                role=role,
                description=parameter.description or existing.description,
                dependencies=parameter.dependencies or existing.dependencies,
            )
    return merged


def precompute_values(parameters: Dict[str, Parameter], modules: Iterable[Module],
                      engine: FormulaEngine) -> Dict[str, float]:
    """Evaluate algebraic equations whose inputs are all known, to a fixed point"""
    known = {s: p.numeric_value for s, p in parameters.items() if p.is_known}
    candidates = [(eq.target, eq.rhs) for module in modules
                  for eq in module.algebraic_equations if eq.target]
    results: Dict[str, float] = {}
    changed = True
    while changed:
        changed = False
        for target, rhs in candidates:
            if target in known:
                continue
            if not extract_variables(rhs) <= set(known):
                continue
            value = engine.evaluate(rhs, known, default=math.nan)
            if math.isfinite(value):
                known[target] = value
                results[target] = value
                changed = True
    return results

# ===============================================================================
# Fallback Sections
# ===============================================================================

def fallback_metadata(system_type: str = 'generic') -> IRMetadata:
    return IRMetadata(id='physics_problem', title='Untitled physics problem',
                      system_type=system_type, created_at=time.time(), source='fallback')


def fallback_system() -> IRSystem:
    return IRSystem(type='generic')


def fallback_simulation(config: IRBuilderConfig) -> IRSimulation:
    return IRSimulation(method=config.default_method, time_step=config.default_time_step,
                        duration=config.default_duration, tolerance=config.default_tolerance,
                        max_iterations=config.default_max_iterations)


def fallback_output() -> IROutput:
    return IROutput(variables=[], plots=[], format='time_series')


def fallback_optimization() -> IROptimization:
    return IROptimization()

# ===============================================================================
# Validation
# ===============================================================================

def _symbol_dimensions(parameters: Iterable[Parameter]):
    dims = {}
    for parameter in parameters:
        if not parameter.value.unit:
            continue
        dimension, _, known = DimensionCalculator.parse_unit(parameter.value.unit)
        if known:
            dims[parameter.symbol] = DimensionCalculator.parse(parameter.value.dimension)
    return dims


def validate_ir(ir: PhysicsIR) -> IRValidationSummary:
    """Structural and dimensional checks; dimensional problems are warnings only"""
    summary = IRValidationSummary()
    errors, warnings_ = summary.errors, summary.warnings

    if not ir.metadata.id:
        errors.append("metadata.id is empty")
    if not ir.system.modules:
        errors.append("system has no modules")
    if ir.simulation.time_step <= 0 or ir.simulation.duration <= 0:
        errors.append("simulation time_step and duration must be positive")

    symbols = [p.symbol for p in ir.system.parameters]
    duplicates = sorted({s for s in symbols if symbols.count(s) > 1})
    if duplicates:
        errors.append(f"duplicate parameter symbols: {', '.join(duplicates)}")

    module_ids = {m.id for m in ir.system.modules}
    for module in ir.system.modules:
        for dependency in module.dependencies:
            if dependency not in module_ids:
                warnings_.append(f"Module '{module.id}' depends on '{dependency}' which is not present; "
                                 f"dependency ignored")
        for equation in module.differential_equations:
            if equation.order > MAX_EQUATION_ORDER:
                errors.append(f"Equation {equation.id} has order {equation.order} > {MAX_EQUATION_ORDER}")

    dims = _symbol_dimensions(ir.system.parameters)
    checked = inconsistent = 0
    for module in ir.system.modules:
        for equation in module.algebraic_equations:
            if equation.target not in dims:
                continue
            outcome = DimensionCalculator.check_equation(dims[equation.target], equation.rhs, dims)
            if outcome['checked']:
                checked += 1
            if not outcome['consistent']:
                inconsistent += 1
                warnings_.append(f"Dimensional mismatch in {equation.id} ({equation.expression}): "
                                 f"{'; '.join(outcome['mismatches'])}")

    summary.dimensional_consistency = inconsistent == 0
    summary.structure_valid = not errors
    summary.checks = {
        'modules': len(ir.system.modules),
        'parameters': len(symbols),
        'equations_checked': checked,
        'dimensional_mismatches': inconsistent,
    }
    return summary

# ===============================================================================
# Conversion Result
# ===============================================================================

@dataclass
class ConversionResult:
    success: bool
    ir: Optional[PhysicsIR] = None
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    conversion_time: float = 0.0
    from_cache: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'ir': self.ir.to_dict() if self.ir is not None else None,
            'errors': list(self.errors),
            'warnings': list(self.warnings),
            'conversion_time': self.conversion_time,
            'from_cache': self.from_cache,
        }

# ===============================================================================
# Builder
# ===============================================================================

class IRBuilder:
    """Converts declarative models into physics IR, caching identical inputs"""

    def __init__(self, config: Optional[IRBuilderConfig] = None,
                 templates: Optional[Tuple[ModuleTemplate, ...]] = None,
                 engine: Optional[FormulaEngine] = None):
        self.config = config or IRBuilderConfig()
        self.templates = tuple(templates) if templates is not None else TEMPLATES
        self.engine = engine or FormulaEngine()
        self._cache: 'OrderedDict[str, Tuple[PhysicsIR, List[str], List[str]]]' = OrderedDict()
        self.metrics = {
            'total_conversions': 0,
            'successful_conversions': 0,
            'failed_conversions': 0,
            'cache_hits': 0,
            'cache_misses': 0,
            'total_conversion_time': 0.0,
        }

    # ---- public API -------------------------------------------------------------

    async def convert(self, model: Any, options: Optional[Dict[str, Any]] = None) -> ConversionResult:
        """Build the IR for `model` (a DeclarativeModel or plain mapping); never raises"""
        start_time = time.perf_counter()
        self.metrics['total_conversions'] += 1
        messages: List[str] = []
        errors: List[str] = []
        ir: Optional[PhysicsIR] = None

        try:
            parsed = self._parse_model(model, messages)
            key = self.cache_key(parsed, options)
            cached = self._cache_get(key)
            if cached is not None:
                ir, cached_warnings, cached_errors = cached
                return self._finish(ConversionResult(True, ir, cached_errors, cached_warnings,
                                                     from_cache=True), start_time)

            logger.info("Converting declarative model to IR")
            ir = PhysicsIR()
            await self._build(parsed, options or {}, ir, messages, errors)
            ir.validation = validate_ir(ir)
            errors.extend(e for e in ir.validation.errors if e not in errors)
            messages.extend(w for w in ir.validation.warnings if w not in messages)
            messages.extend(w for w in self.engine.drain_warnings() if w not in messages)

            self._cache_put(key, ir, messages, errors)
            logger.info(f"IR ready: {len(ir.system.modules)} module(s), "
                        f"order {ir.optimization.execution_order}")
            return self._finish(ConversionResult(True, copy.deepcopy(ir), errors, messages), start_time)

        except CyclicDependencyError as e:
            logger.error(str(e))
            errors.append(str(e))
        except Exception as e:
            logger.exception("IR conversion failed")
            errors.append(f"IR conversion failed: {type(e).__name__}: {e}")

        self.metrics['failed_conversions'] += 1
        return self._finish(ConversionResult(False, ir, errors, messages), start_time)

    def convert_sync(self, model: Any, options: Optional[Dict[str, Any]] = None) -> ConversionResult:
        return asyncio.run(self.convert(model, options))

    def get_metrics(self) -> Dict[str, Any]:
        lookups = self.metrics['cache_hits'] + self.metrics['cache_misses']
        total = self.metrics['total_conversions']
        return {
            **self.metrics,
            'cache_size': len(self._cache),
            'cache_hit_rate': self.metrics['cache_hits'] / max(1, lookups),
            'average_conversion_time': self.metrics['total_conversion_time'] / max(1, total),
        }

    def clear_cache(self):
        self._cache.clear()

    # ---- cache ------------------------------------------------------------------

    @staticmethod
    def cache_key(model: DeclarativeModel, options: Optional[Dict[str, Any]] = None) -> str:
        """Stable hash of the normalised input"""
        normalized = {
            'model': model.model_dump(mode='json', exclude_none=True),
            'options': options or {},
        }
        payload = json.dumps(normalized, sort_keys=True, default=str)
        return hashlib.sha256(payload.encode('utf-8')).hexdigest()

    def _cache_get(self, key: str):
        if not self.config.enable_cache:
            return None
        if key in self._cache:
            self._cache.move_to_end(key)
            self.metrics['cache_hits'] += 1
            ir, messages, errors = self._cache[key]
            return copy.deepcopy(ir), list(messages), list(errors)
        self.metrics['cache_misses'] += 1
        return None

    def _cache_put(self, key: str, ir: PhysicsIR, messages: List[str], errors: List[str]):
        if not self.config.enable_cache:
            return
        self._cache[key] = (copy.deepcopy(ir), list(messages), list(errors))
        self._cache.move_to_end(key)
        while len(self._cache) > self.config.cache_size:
            self._cache.popitem(last=False)

    def _finish(self, result: ConversionResult, start_time: float) -> ConversionResult:
        result.conversion_time = time.perf_counter() - start_time
        self.metrics['total_conversion_time'] += result.conversion_time
        if result.success:
            self.metrics['successful_conversions'] += 1
        return result

    # ---- input ------------------------------------------------------------------

    @staticmethod
    def _parse_model(model: Any, messages: List[str]) -> DeclarativeModel:
        """Validate each section on its own so one bad section does not sink the rest"""
        if isinstance(model, DeclarativeModel):
            return model
        data = model if isinstance(model, dict) else {}
        if not isinstance(model, dict):
            messages.append(f"Unsupported model type {type(model).__name__}; using fallback sections")

        sections = {}
        for name, schema in (('metadata', ProblemMetadata), ('system', SystemSpec),
                             ('simulation', SimulationSpec), ('output', OutputSpec)):
            raw = data.get(name)
            if raw is None:
                continue
            try:
                sections[name] = schema.model_validate(raw)
            except ValidationError as e:
                if name == 'system' and isinstance(raw, dict):
                    salvaged = IRBuilder._salvage_system(raw, messages)
                    if salvaged is not None:
                        sections[name] = salvaged
                        continue
                messages.append(f"Invalid '{name}' section ({e.error_count()} error(s)); using fallback")
        return DeclarativeModel(**sections)

    @staticmethod
    def _salvage_system(raw: Dict[str, Any], messages: List[str]) -> Optional[SystemSpec]:
        """Drop only the malformed parameters, objects and constraints of a system section"""
        data = dict(raw)
        for field, schema, label, key in (('parameters', ParameterSpec, 'parameter', 'symbol'),
                                          ('objects', ObjectSpec, 'object', 'id'),
                                          ('constraints', ConstraintSpec, 'constraint', 'expression')):
            items = parameter_items(data.get(field)) if field == 'parameters' else data.get(field)
            if not isinstance(items, list):
                continue
            kept = []
            for index, item in enumerate(items):
                try:
                    kept.append(schema.model_validate(item))
                except ValidationError as e:
                    name = item.get(key, index) if isinstance(item, dict) else index
                    messages.append(f"Invalid {label} '{name}' dropped ({e.error_count()} error(s))")
            data[field] = kept
        try:
            return SystemSpec.model_validate(data)
        except ValidationError:
            return None

    # ---- build steps --------------------------------------------------------------

    async def _build(self, model: DeclarativeModel, options: Dict[str, Any], ir: PhysicsIR,
                     messages: List[str], errors: List[str]):
        system_spec = model.system
        if system_spec is None:
            messages.append("system section missing; using fallback system")
            system_spec = SystemSpec()
        system_type = options.get('system_type') or system_spec.type or 'generic'

        # Metadata
        if model.metadata is None:
            messages.append("metadata section missing; using fallback metadata")
            ir.metadata = fallback_metadata(system_type)
        else:
            meta = model.metadata
            ir.metadata = IRMetadata(
                id=meta.id or 'physics_problem',
                title=meta.title,
                description=meta.description or meta.problem_text,
                system_type=system_type,
                created_at=time.time(),
                difficulty=meta.difficulty,
                topics=list(meta.topics),
            )

        # Parameters
        problem_parameters: 'OrderedDict[str, Parameter]' = OrderedDict()
        for spec in system_spec.parameters:
            parameter, notes = convert_parameter(spec)
            messages.extend(notes)
            if parameter.symbol in problem_parameters:
                messages.append(f"Parameter '{parameter.symbol}' declared twice; keeping the last value")
            problem_parameters[parameter.symbol] = parameter

        # Module detection
        profile = ProblemProfile(
            symbols=frozenset(problem_parameters),
            system_type=system_type,
            text=self._problem_text(model, system_spec),
        )
        modules = self._detect_modules(profile, problem_parameters, messages, errors)
        await asyncio.sleep(0)

        # Ordering (raises CyclicDependencyError)
        order = compute_execution_order(modules)
        by_id = {m.id: m for m in modules}
        modules = [by_id[module_id] for module_id in order]

        parameters = merge_parameters(problem_parameters, modules)
        precomputed = precompute_values(parameters, modules, self.engine)
        for symbol, value in precomputed.items():
            parameter = parameters.get(symbol)
            if parameter is not None and parameter.role == ParameterRole.DERIVED:
                parameters[symbol] = Parameter(
                    symbol, PhysicalQuantity(value, parameter.value.unit, parameter.value.dimension),
                    parameter.role, parameter.description, parameter.dependencies)

        ir.system = self._build_system(system_spec, system_type, modules, parameters)
        ir.simulation = self._build_simulation(model.simulation, options, messages)
        ir.output = self._build_output(model.output, ir.system)
        ir.optimization = self._build_optimization(ir, modules, parameters, precomputed)

        if ir.optimization.complexity_score > self.config.complexity_threshold:
            ir.simulation.time_step /= 2
            ir.simulation.tolerance *= 0.1
            messages.append(f"Complex system (score {ir.optimization.complexity_score:.2f}); "
                            f"time step halved and tolerance tightened")

        ir.physics_interpretation = self._interpret(ir, modules, parameters, precomputed)

    @staticmethod
    def _problem_text(model: DeclarativeModel, system_spec: SystemSpec) -> str:
        parts: List[str] = []
        if model.metadata is not None:
            meta = model.metadata
            parts.extend([meta.title, meta.description, meta.problem_text, ' '.join(meta.topics)])
        parts.append(system_spec.type.replace('_', ' '))
        parts.extend(p.description for p in system_spec.parameters)
        parts.extend(f"{o.name} {o.type}" for o in system_spec.objects)
        parts.extend(c.description for c in system_spec.constraints)
        return ' '.join(p for p in parts if p)

    def _detect_modules(self, profile: ProblemProfile, problem_parameters: Dict[str, Parameter],
                        messages: List[str], errors: List[str]) -> List[Module]:
        matches = match_templates(profile, self.templates)
        overrides = self.config.detection_thresholds
        selected = []
        for match in matches:
            threshold = overrides.get(match.template.module_type.value, match.threshold)
            if match.score >= threshold:
                selected.append(match)
        selected = selected[:self.config.max_modules]

        modules: List[Module] = []
        for match in selected:
            try:
                modules.append(create_module(match.template, problem_parameters, match.score))
                logger.debug(f"Selected module {match.template.id} (score {match.score:.3f})")
            except UnsupportedEquationOrder as e:
                errors.append(str(e))

        if not modules:
            messages.append("No physics module matched the problem; using the generic fallback module")
            modules.append(create_generic_module(problem_parameters))
        return modules

    def _build_system(self, spec: SystemSpec, system_type: str, modules: List[Module],
                      parameters: Dict[str, Parameter]) -> IRSystem:
        default_mass = parameters['m'].numeric_value if 'm' in parameters else 1.0
        objects = []
        for obj in spec.objects:
            position = tuple((list(obj.position or []) + [0.0, 0.0, 0.0])[:3])
            velocity = tuple((list(obj.velocity or []) + [0.0, 0.0, 0.0])[:3])
            objects.append(IRObject(
                name=obj.name, type=obj.type,
                mass=float(obj.mass) if obj.mass is not None else default_mass,
                position=position, velocity=velocity, properties=dict(obj.properties)))

        constraints = [IRConstraint(type=c.type, expression=c.expression, tolerance=c.tolerance,
                                    priority=c.priority, description=c.description)
                       for c in spec.constraints]

        laws: List[ConservationLaw] = []
        seen = set()
        for module in modules:
            for law in module.conservation_laws:
                key = (law.quantity, law.expression)
                if key not in seen:
                    seen.add(key)
                    laws.append(law)

        symmetries: List[str] = []
        module_types = [ModuleType.parse(m.type) for m in modules]
        system_enum = ModuleType.parse(system_type)
        for module_type in [system_enum] + module_types:
            for symmetry in SYMMETRY_TABLE.get(module_type, ()):
                if symmetry not in symmetries:
                    symmetries.append(symmetry)

        initial_conditions: Dict[str, str] = {}
        for module in modules:
            for symbol, expression in module.initial_conditions:
                parameter = parameters.get(symbol)
                if parameter is not None and parameter.role == ParameterRole.GIVEN:
                    continue
                initial_conditions.setdefault(symbol, expression)

        environment = dict(spec.environment)
        if 'g' in parameters:
            environment.setdefault('gravity', parameters['g'].numeric_value)

        return IRSystem(
            type=system_type,
            modules=list(modules),
            objects=objects,
            parameters=list(parameters.values()),
            constraints=constraints,
            conservation_laws=laws,
            symmetries=symmetries,
            environment=environment,
            boundary_conditions=[c.expression for c in constraints if c.type == 'boundary'],
            initial_conditions=initial_conditions,
        )

    def _build_simulation(self, spec: Optional[SimulationSpec], options: Dict[str, Any],
                          messages: List[str]) -> IRSimulation:
        simulation = fallback_simulation(self.config)
        if spec is None:
            messages.append("simulation section missing; using fallback simulation settings")
            return simulation

        if spec.solver:
            method = _SOLVER_ALIASES.get(spec.solver.lower())
            if method is None:
                messages.append(f"Unknown solver '{spec.solver}'; using {simulation.method}")
            else:
                simulation.method = method
        if spec.duration and spec.duration > 0:
            simulation.duration = float(spec.duration)
        if spec.time_step and spec.time_step > 0:
            simulation.time_step = float(spec.time_step)
        if spec.tolerance and spec.tolerance > 0:
            simulation.tolerance = float(spec.tolerance)
        if spec.max_iterations and spec.max_iterations > 0:
            simulation.max_iterations = int(spec.max_iterations)
        if spec.precision:
            simulation.precision = spec.precision
        simulation.adaptive_step_size = bool(spec.adaptive_step_size) or simulation.method == 'adaptive'

        method = options.get('method')
        if method in SUPPORTED_METHODS:
            simulation.method = method
        return simulation

    @staticmethod
    def _build_output(spec: Optional[OutputSpec], system: IRSystem) -> IROutput:
        output = fallback_output()
        states = [s for m in system.modules for eq in m.differential_equations for s in eq.state_variables]
        defaults = [p.symbol for p in system.parameters if p.role == ParameterRole.UNKNOWN]
        if spec is not None and spec.variables:
            output.variables = list(spec.variables)
        else:
            output.variables = list(OrderedDict.fromkeys(defaults + states))
        if spec is not None:
            output.plots = [p if isinstance(p, dict) else {'type': 'time_series', 'variable': p}
                            for p in spec.plots]
            output.format = spec.format
        return output

    def _build_optimization(self, ir: PhysicsIR, modules: List[Module],
                            parameters: Dict[str, Parameter], precomputed: Dict[str, float]) -> IROptimization:
        graph = dependency_graph(modules)
        system, notes = EquationSystem.from_ir(ir, self.engine)
        variables = {s: p.numeric_value for s, p in parameters.items()}
        for symbol, expression in ir.system.initial_conditions.items():
            variables[symbol] = self.engine.evaluate(expression, variables)
        method, stability = SystemAnalyzer.recommend(system, variables, ir.simulation.time_step)

        states = system.size
        equations = sum(len(m.equations) for m in modules)
        nonlinear = sum(1 for m in modules for eq in m.equations if eq.linearity == 'nonlinear')
        tier = max((_TIER_WEIGHT[m.complexity] for m in modules), default=0.0)
        complexity = (0.25 * min(1.0, len(modules) / 5)
                      + 0.25 * min(1.0, states / 8)
                      + 0.20 * min(1.0, equations / 20)
                      + 0.15 * (nonlinear / equations if equations else 0.0)
                      + 0.15 * tier)

        derived = {s: v for s, v in precomputed.items()
                   if s in parameters and parameters[s].role == ParameterRole.DERIVED}
        return IROptimization(
            execution_order=[m.id for m in modules],
            dependency_graph={node: sorted(graph.successors(node)) for node in graph.nodes},
            parallel_modules=parallel_groups(modules),
            precomputed_constants=derived,
            cached_derivatives=dict(system.derivatives),
            numerical_stability={
                'recommended_solver': method,
                'suggested_time_step': stability['time_step'],
                'stiffness_ratio': stability['stiffness_ratio'],
                'is_stiff': stability['is_stiff'],
                'spectral_radius': stability['spectral_radius'],
                'has_discontinuities': stability['has_discontinuities'],
                'notes': notes,
            },
            complexity_score=round(min(1.0, complexity), 4),
            performance={
                'state_variables': states,
                'algebraic_equations': len(system.algebraic),
                'estimated_steps': int(math.ceil(ir.simulation.duration / ir.simulation.time_step)),
            },
        )

    @staticmethod
    def _interpret(ir: PhysicsIR, modules: List[Module], parameters: Dict[str, Parameter],
                   precomputed: Dict[str, float]) -> Dict[str, Any]:
        types = {ModuleType.parse(m.type) for m in modules}
        if ModuleType.KINEMATICS in types and ModuleType.MOMENTUM in types:
            physics_type = 'complex_kinematics'
        elif ModuleType.OSCILLATION in types:
            physics_type = 'oscillatory_system'
        elif types & {ModuleType.WAVE, ModuleType.ACOUSTICS}:
            physics_type = 'wave_system'
        elif types & {ModuleType.ELECTROMAGNETIC, ModuleType.BASIC_ELECTRICITY}:
            physics_type = 'electromagnetic_system'
        elif types & {ModuleType.THERMAL, ModuleType.PHASE_CHANGE}:
            physics_type = 'thermodynamic_system'
        elif types & {ModuleType.FLUID, ModuleType.PRESSURE}:
            physics_type = 'fluid_system'
        elif ModuleType.MODERN in types:
            physics_type = 'quantum_system'
        else:
            physics_type = 'general_physics'

        dominant = max(modules, key=lambda m: m.score)
        unknowns = [s for s, p in parameters.items() if p.role == ParameterRole.UNKNOWN]
        return {
            'physics_type': physics_type,
            'dominant_domain': dominant.type,
            'module_types': sorted({m.type for m in modules}),
            'key_quantities': unknowns,
            'analytical_estimates': {s: v for s, v in precomputed.items() if s in unknowns},
            'conserved_quantities': sorted({law.quantity for law in ir.system.conservation_laws}),
            'assumptions': list(OrderedDict.fromkeys(a for m in modules for a in m.assumptions)),
            'module_scores': {m.id: m.score for m in modules},
        }


def ir_summary(ir: PhysicsIR) -> Dict[str, Any]:
    """Compact, JSON-friendly overview of an IR"""
    return {
        'id': ir.metadata.id,
        'system_type': ir.system.type,
        'modules': [m.id for m in ir.system.modules],
        'parameters': {p.symbol: p.numeric_value for p in ir.system.parameters},
        'simulation': to_plain(ir.simulation),
        'valid': ir.validation.structure_valid,
    }

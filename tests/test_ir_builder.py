"""Tests for IR construction: module detection, ordering, merging and caching."""

import asyncio

import pytest

from conftest import convert, free_fall_model, oscillator_model, quantity
from physim.config import IRBuilderConfig
from physim.exceptions import CyclicDependencyError, UnsupportedEquationOrder
from physim.ir_builder import (IRBuilder, compute_execution_order, ir_summary, merge_parameters,
                               parallel_groups, validate_ir)
from physim.ir_types import Equation, Module, Parameter, ParameterRole, PhysicsIR
from physim.module_library import (ModuleTemplate, ModuleType, ParameterTemplate, ProblemProfile,
                                   TEMPLATE_INDEX, create_module, score_template)


class TestModuleDetection:
    def test_free_fall_selected(self, free_fall_ir):
        module_ids = [m.id for m in free_fall_ir.system.modules]
        assert module_ids == ["free_fall"]
        assert free_fall_ir.physics_interpretation["dominant_domain"] == "kinematics"

    def test_free_fall_scores_full_marks(self):
        profile = ProblemProfile(
            symbols=frozenset({"h", "g", "v", "t"}),
            system_type="free_fall",
            text="A ball is dropped from a height of 20 m and falls under gravity",
        )
        match = score_template(TEMPLATE_INDEX["free_fall"], profile)
        assert match.score == pytest.approx(1.0)
        assert match.selected

    def test_missing_dependency_is_a_warning(self):
        result = convert(free_fall_model())
        assert any("kinematics_linear" in w for w in result.warnings)

    def test_oscillator_selected(self, oscillator_ir):
        assert [m.id for m in oscillator_ir.system.modules] == ["oscillation"]
        assert oscillator_ir.system.initial_conditions == {"x": "A"}
        assert oscillator_ir.physics_interpretation["physics_type"] == "oscillatory_system"

    def test_unmatched_problem_falls_back_to_generic(self):
        model = {"system": {"type": "mystery", "parameters": {"zeta": 3.0, "omega_q": {"value": 1, "unit": "s"}}}}
        result = convert(model)
        assert result.success
        assert [m.id for m in result.ir.system.modules] == ["generic"]
        assert result.ir.system.modules[0].type == ModuleType.GENERIC.value
        assert any("generic fallback" in w for w in result.warnings)

    def test_threshold_override(self):
        model = oscillator_model()
        builder = IRBuilder(IRBuilderConfig(detection_thresholds={"oscillation": 0.95}))
        result = convert(model, builder)
        assert "oscillation" not in [m.id for m in result.ir.system.modules]


class TestFallbacks:
    def test_missing_sections_use_fallbacks(self):
        result = convert({})
        assert result.success
        assert result.ir.metadata.source == "fallback"
        assert result.ir.simulation.method == "rk4"
        assert any("metadata section missing" in w for w in result.warnings)
        assert any("simulation section missing" in w for w in result.warnings)

    def test_non_mapping_input(self):
        result = convert("not a model")
        assert result.success
        assert result.ir.system.modules

    def test_invalid_section_is_replaced(self):
        model = free_fall_model()
        model["simulation"] = {"duration": "forever"}
        result = convert(model)
        assert result.success
        assert any("Invalid 'simulation' section" in w for w in result.warnings)
        assert result.ir.simulation.duration == 10.0

    def test_malformed_parameter_drops_only_itself(self):
        model = free_fall_model()
        model["system"]["parameters"]["g"] = {"value": "abc", "unit": "m/s^2"}
        result = convert(model)
        assert result.success
        assert any("Invalid parameter 'g' dropped" in w for w in result.warnings)
        assert result.ir.system.type == "free_fall"
        assert not any("Invalid 'system' section" in w for w in result.warnings)
        assert result.ir.system.get_parameter("h").numeric_value == 20.0
        assert result.ir.system.get_parameter("h").role == ParameterRole.GIVEN

    def test_malformed_object_and_constraint_are_dropped(self):
        model = free_fall_model()
        model["system"]["objects"] = [{"id": "ball", "mass": 1.0}, {"id": "rock", "mass": "heavy"}]
        model["system"]["constraints"] = [{"expression": "h >= 0", "tolerance": "loose"},
                                          {"type": "boundary", "expression": "h >= 0"}]
        result = convert(model)
        assert [obj.name for obj in result.ir.system.objects] == ["ball"]
        assert len(result.ir.system.constraints) == 1
        assert any("Invalid object 'rock' dropped" in w for w in result.warnings)
        assert any("Invalid constraint 'h >= 0' dropped" in w for w in result.warnings)

    def test_unknown_solver_keeps_default(self):
        model = free_fall_model()
        model["simulation"]["solver"] = "leapfrog"
        result = convert(model)
        assert result.ir.simulation.method == "rk4"
        assert any("leapfrog" in w for w in result.warnings)


def _module(module_id, module_type="kinematics", dependencies=()):
    return Module(id=module_id, type=module_type, dependencies=tuple(dependencies))


class TestExecutionOrder:
    def test_chain_order(self):
        modules = [_module("c", dependencies=["b"]), _module("a"), _module("b", dependencies=["a"])]
        assert compute_execution_order(modules) == ["a", "b", "c"]

    def test_cycle_raises(self):
        modules = [_module("a", dependencies=["b"]), _module("b", dependencies=["a"])]
        with pytest.raises(CyclicDependencyError) as excinfo:
            compute_execution_order(modules)
        assert excinfo.value.module_id in ("a", "b")
        assert str(excinfo.value).startswith("CyclicDependency")

    def test_type_priority_breaks_ties(self):
        modules = [_module("z_thermal", "thermal"), _module("y_dynamics", "dynamics"),
                   _module("x_kinematics", "kinematics")]
        assert compute_execution_order(modules) == ["x_kinematics", "y_dynamics", "z_thermal"]

    def test_absent_dependencies_are_ignored(self):
        assert compute_execution_order([_module("a", dependencies=["missing"])]) == ["a"]

    def test_parallel_groups(self):
        modules = [_module("a"), _module("b"), _module("c", dependencies=["a", "b"])]
        assert parallel_groups(modules) == [["a", "b"], ["c"]]

    def test_cycle_through_builder_is_a_named_error(self):
        templates = (
            ModuleTemplate("alpha", ModuleType.KINEMATICS, "Alpha", ("alpha", "loop"), (),
                           (ParameterTemplate("q", 1.0, "m"),), dependencies=("beta",)),
            ModuleTemplate("beta", ModuleType.KINEMATICS, "Beta", ("beta", "loop"), (),
                           (ParameterTemplate("q", 1.0, "m"),), dependencies=("alpha",)),
        )
        model = {"metadata": {"problemText": "alpha beta loop"},
                 "system": {"type": "kinematics", "parameters": {"q": {"value": 2, "unit": "m"}}}}
        result = convert(model, IRBuilder(templates=templates))
        assert not result.success
        assert result.errors[0].startswith("CyclicDependency")
        assert "alpha" in result.errors[0] or "beta" in result.errors[0]


class TestParameters:
    def test_given_value_is_not_overwritten(self, free_fall_ir):
        h = free_fall_ir.system.get_parameter("h")
        assert h.numeric_value == 20.0
        assert h.role == ParameterRole.GIVEN

    def test_defaults_fill_missing_parameters(self, free_fall_ir):
        m = free_fall_ir.system.get_parameter("m")
        assert m.numeric_value == 1.0
        assert m.value.dimension == "M"

    def test_merge_keeps_existing_value_and_given_role(self):
        given_v = Parameter("v", quantity(5.0, "m/s", "LT^-1"), ParameterRole.GIVEN)
        module = create_module(TEMPLATE_INDEX["newton_dynamics"], {}, 0.9)
        merged = merge_parameters({"v": given_v}, [module])
        assert merged["v"].numeric_value == 5.0
        assert merged["v"].role == ParameterRole.GIVEN
        assert merged["F"].numeric_value == 10.0

    def test_derived_values_are_precomputed(self, oscillator_ir):
        omega = oscillator_ir.system.get_parameter("omega")
        assert omega.numeric_value == pytest.approx((100 / 0.5) ** 0.5)
        assert oscillator_ir.optimization.precomputed_constants["T"] == pytest.approx(
            2 * 3.141592653589793 * (0.5 / 100) ** 0.5)

    def test_given_without_value_becomes_unknown(self):
        model = {"system": {"type": "mystery", "parameters": [{"symbol": "q", "role": "given"}]}}
        result = convert(model)
        assert result.ir.system.get_parameter("q").role == ParameterRole.UNKNOWN
        assert any("has no value" in w for w in result.warnings)


class TestCache:
    def test_second_conversion_hits_cache(self, builder):
        first = asyncio.run(builder.convert(free_fall_model()))
        second = asyncio.run(builder.convert(free_fall_model()))
        assert not first.from_cache
        assert second.from_cache
        metrics = builder.get_metrics()
        assert metrics["cache_hits"] == 1
        assert metrics["cache_misses"] == 1
        assert metrics["cache_hit_rate"] == pytest.approx(0.5)
        assert metrics["total_conversions"] == 2

    def test_cached_ir_is_isolated_from_callers(self, builder):
        first = asyncio.run(builder.convert(free_fall_model()))
        first.ir.metadata.id = "mutated"
        second = asyncio.run(builder.convert(free_fall_model()))
        assert second.ir.metadata.id == "dropped_ball"

    def test_least_recently_used_entry_is_evicted(self):
        builder = IRBuilder(IRBuilderConfig(cache_size=2))
        models = []
        for height in (10, 20, 30):
            model = free_fall_model()
            model["system"]["parameters"]["h"]["value"] = height
            models.append(model)
        asyncio.run(builder.convert(models[0]))
        asyncio.run(builder.convert(models[1]))
        asyncio.run(builder.convert(models[0]))      # refresh
        asyncio.run(builder.convert(models[2]))      # evicts models[1]
        assert asyncio.run(builder.convert(models[0])).from_cache
        assert not asyncio.run(builder.convert(models[1])).from_cache
        assert builder.get_metrics()["cache_size"] == 2

    def test_cache_hit_keeps_errors_and_warnings(self):
        templates = (
            ModuleTemplate("alpha", ModuleType.KINEMATICS, "Alpha", ("alpha", "loop"), (),
                           (ParameterTemplate("q", 1.0, "m"),)),
            ModuleTemplate("beta", ModuleType.KINEMATICS, "Beta", ("beta", "loop"), (),
                           (ParameterTemplate("q", 1.0, "m"),), equations=("d3q/dt3 = 1",)),
        )
        model = {"metadata": {"problemText": "alpha beta loop"},
                 "system": {"type": "kinematics", "parameters": {"q": {"value": 2, "unit": "m"}}}}
        builder = IRBuilder(templates=templates)
        first = convert(model, builder)
        second = convert(model, builder)
        assert first.success and first.errors
        assert second.from_cache
        assert second.errors == first.errors
        assert second.warnings == first.warnings

    def test_cached_messages_are_isolated_from_callers(self, builder):
        first = asyncio.run(builder.convert(free_fall_model()))
        first.warnings.append("caller note")
        second = asyncio.run(builder.convert(free_fall_model()))
        assert "caller note" not in second.warnings

    def test_clear_cache(self, builder):
        asyncio.run(builder.convert(free_fall_model()))
        builder.clear_cache()
        assert builder.get_metrics()["cache_size"] == 0
        assert not asyncio.run(builder.convert(free_fall_model())).from_cache

    def test_cache_disabled(self):
        builder = IRBuilder(IRBuilderConfig(enable_cache=False))
        builder.convert_sync(free_fall_model())
        assert not builder.convert_sync(free_fall_model()).from_cache

    def test_options_change_the_key(self, builder):
        asyncio.run(builder.convert(free_fall_model()))
        result = asyncio.run(builder.convert(free_fall_model(), {"method": "euler"}))
        assert not result.from_cache
        assert result.ir.simulation.method == "euler"


class TestValidation:
    def test_order_above_two_is_rejected(self):
        with pytest.raises(UnsupportedEquationOrder):
            Equation.from_string("jerk", "d3x/dt3 = 1")

    def test_free_fall_ir_is_consistent(self, free_fall_ir):
        assert free_fall_ir.validation.structure_valid
        assert free_fall_ir.validation.dimensional_consistency

    def test_empty_ir_reports_errors(self):
        summary = validate_ir(PhysicsIR())
        assert "system has no modules" in summary.errors
        assert not summary.structure_valid

    def test_ir_serialises(self, free_fall_ir):
        plain = free_fall_ir.to_dict()
        assert plain["system"]["modules"][0]["id"] == "free_fall"
        assert plain["system"]["parameters"][0]["role"] in ("given", "constant", "unknown", "derived")

    def test_summary(self, free_fall_ir):
        summary = ir_summary(free_fall_ir)
        assert summary["modules"] == ["free_fall"]
        assert summary["parameters"]["h"] == 20.0
        assert summary["valid"]

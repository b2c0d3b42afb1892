"""Tests for the AST-based formula engine and equation splitting."""

import math

import pytest

from physim.formula_engine import (FormulaEngine, normalize_expression, residual_expression,
                                   split_equation)


@pytest.fixture
def engine():
    return FormulaEngine()


class TestEvaluate:
    def test_arithmetic_and_functions(self, engine):
        assert engine.evaluate("2*x**2 + sqrt(y)", {"x": 3, "y": 16}) == pytest.approx(22.0)
        assert engine.evaluate("sin(pi/2)") == pytest.approx(1.0)

    def test_comparisons_give_zero_or_one(self, engine):
        assert engine.evaluate("g*(h > 0)", {"g": 9.8, "h": 1.0}) == pytest.approx(9.8)
        assert engine.evaluate("g*(h > 0)", {"g": 9.8, "h": -1.0}) == 0.0
        assert engine.evaluate_condition("0 <= x <= 1", {"x": 0.5})

    def test_missing_symbol_reads_as_zero_with_warning(self, engine):
        assert engine.evaluate("a + unknown_rate", {"a": 2.0}) == 2.0
        messages = engine.drain_warnings()
        assert any("unknown_rate" in m for m in messages)
        assert engine.drain_warnings() == []

    def test_failure_returns_default(self, engine):
        with pytest.warns(UserWarning):
            assert engine.evaluate("1/0") == 0.0
        with pytest.warns(UserWarning):
            assert math.isnan(engine.evaluate("1/x", {"x": 0.0}, default=math.nan))
        assert engine.get_statistics()["failed_evaluations"] == 2

    def test_unsupported_syntax_never_raises(self, engine):
        with pytest.warns(UserWarning):
            assert engine.evaluate("__import__('os')") == 0.0
        with pytest.warns(UserWarning):
            assert engine.evaluate("x = = 2") == 0.0

    def test_repeated_failure_warns_once(self, engine):
        with pytest.warns(UserWarning):
            engine.evaluate("foo(1)")
        engine.evaluate("foo(1)")
        assert len(engine.drain_warnings()) == 1

    def test_parse_cache_hits(self, engine):
        for _ in range(3):
            engine.evaluate("x + 1", {"x": 1})
        stats = engine.get_statistics()["cache"]
        assert stats["cache_misses"] == 1
        assert stats["cache_hits"] == 2


class TestNotation:
    def test_normalize_math_notation(self):
        assert normalize_expression("x² + √y") == "x**2 + sqrt(y)"
        assert normalize_expression("2·π·r") == "2*pi*r"

    def test_extract_variables_excludes_functions(self, engine):
        assert engine.extract_variables("sqrt(2*h/g) + pi") == {"h", "g"}


class TestSplitEquation:
    def test_first_order(self):
        parts = split_equation("dx/dt = v")
        assert (parts.target, parts.order, parts.rhs) == ("x", 1, "v")

    def test_second_order(self):
        parts = split_equation("d2x/dt2 = -(k/m)*x")
        assert parts.target == "x"
        assert parts.order == 2

    def test_superscript_order(self):
        assert split_equation("d²x/dt² = -x").order == 2

    def test_algebraic(self):
        parts = split_equation("v = g*t")
        assert (parts.target, parts.order, parts.rhs) == ("v", 0, "g*t")

    def test_comparison_is_not_assignment(self):
        parts = split_equation("h >= 0")
        assert parts.target is None
        assert parts.rhs == "h >= 0"

    def test_compound_lhs_has_no_target(self):
        parts = split_equation("v**2 = 2*g*h")
        assert parts.target is None
        assert parts.rhs == "2*g*h"

    def test_residual_expression(self):
        assert residual_expression("x + y = 1") == "(x + y) - (1)"
        assert residual_expression("x <= 1") is None

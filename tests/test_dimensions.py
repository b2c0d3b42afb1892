"""Tests for the dimension calculator and constants table."""

import math

import pytest

from physim.dimensions import (PHYSICS_CONSTANTS, Dimension, DimensionCalculator,
                               constant_defaults)

DIMENSION_STRINGS = [
    "1", "L", "T^-1", "LT^-2", "MLT^-2", "ML^2T^-2", "ML^-1T^-2",
    "L^-2M^-1T^4I^2", "ML^2T^-2Θ^-1N^-1", "L^3M^-1T^-2", "J",
]


class TestParseAndFormat:
    @pytest.mark.parametrize("text", DIMENSION_STRINGS)
    def test_round_trip_is_stable(self, text):
        canonical = DimensionCalculator.to_string(DimensionCalculator.parse(text))
        again = DimensionCalculator.to_string(DimensionCalculator.parse(canonical))
        assert again == canonical

    def test_parse_exponents(self):
        assert DimensionCalculator.parse("ML^2T^-2") == Dimension(L=2, M=1, T=-2)

    def test_repeated_symbols_accumulate(self):
        assert DimensionCalculator.parse("LL") == Dimension(L=2)

    def test_dimensionless_formats_as_one(self):
        assert DimensionCalculator.to_string(Dimension()) == "1"
        assert DimensionCalculator.parse("1").is_dimensionless

    def test_canonical_symbol_order(self):
        assert DimensionCalculator.to_string(DimensionCalculator.parse("T^-2ML")) == "LMT^-2"


class TestArithmetic:
    def test_multiply_and_divide(self):
        velocity = DimensionCalculator.parse("LT^-1")
        time = DimensionCalculator.parse("T")
        assert DimensionCalculator.multiply(velocity, time) == Dimension(L=1)
        assert DimensionCalculator.divide(velocity, time) == DimensionCalculator.parse("LT^-2")

    def test_root_requires_even_exponents(self):
        assert Dimension(L=2, T=-2).root(2) == Dimension(L=1, T=-1)
        assert Dimension(L=1).root(2) is None


class TestUnits:
    def test_simple_unit(self):
        dimension, scale, known = DimensionCalculator.parse_unit("N")
        assert known
        assert scale == pytest.approx(1.0)
        assert DimensionCalculator.to_string(dimension) == "LMT^-2"

    def test_compound_unit_with_scale(self):
        dimension, scale, known = DimensionCalculator.parse_unit("km/h")
        assert known
        assert dimension == Dimension(L=1, T=-1)
        assert scale == pytest.approx(1000 / 3600)

    def test_parenthesised_denominator(self):
        dimension, _, known = DimensionCalculator.parse_unit("m^3/(kg*s^2)")
        assert known
        assert dimension == DimensionCalculator.parse(PHYSICS_CONSTANTS["G"].dimension)

    def test_unknown_unit_is_dimensionless(self):
        dimension, scale, known = DimensionCalculator.parse_unit("zorkmid")
        assert not known
        assert dimension.is_dimensionless
        assert scale == 1.0

    def test_prefixed_units(self):
        dimension, scale, known = DimensionCalculator.parse_unit("mN")
        assert known
        assert dimension == Dimension(L=1, M=1, T=-2)
        assert scale == pytest.approx(1e-3)
        assert DimensionCalculator.parse_unit("µs")[1] == pytest.approx(1e-6)

    def test_non_si_length(self):
        dimension, scale, known = DimensionCalculator.parse_unit("furlong")
        assert known
        assert dimension == Dimension(L=1)
        assert scale == pytest.approx(201.168)

    def test_unicode_notation(self):
        assert DimensionCalculator.unit_to_dimension("m/s²") == "LT^-2"
        dimension, scale, known = DimensionCalculator.parse_unit("°")
        assert known
        assert dimension.is_dimensionless
        assert scale == pytest.approx(math.pi / 180)

    def test_partly_unknown_compound_is_unknown(self):
        assert not DimensionCalculator.parse_unit("kg/blarg")[2]
        assert DimensionCalculator.parse_unit("")[2]

    def test_dimension_to_unit(self):
        assert DimensionCalculator.dimension_to_unit("LT^-2") == "m/s^2"
        assert DimensionCalculator.unit_to_dimension("J") == "L^2MT^-2"


class TestExpressionDimensions:
    dims = {
        "g": DimensionCalculator.parse("LT^-2"),
        "t": DimensionCalculator.parse("T"),
        "h": DimensionCalculator.parse("L"),
    }

    def test_consistent_equation(self):
        outcome = DimensionCalculator.check_equation(DimensionCalculator.parse("LT^-1"), "g*t", self.dims)
        assert outcome["checked"]
        assert outcome["consistent"]

    def test_sqrt_of_square(self):
        outcome = DimensionCalculator.check_equation(DimensionCalculator.parse("T"), "sqrt(2*h/g)", self.dims)
        assert outcome["consistent"]

    def test_adding_unlike_terms_is_reported(self):
        outcome = DimensionCalculator.check_equation(None, "g + t", self.dims)
        assert not outcome["consistent"]
        assert "adding" in outcome["mismatches"][0]

    def test_unknown_symbol_leaves_result_unchecked(self):
        outcome = DimensionCalculator.check_equation(DimensionCalculator.parse("L"), "h*q", self.dims)
        assert not outcome["checked"]
        assert outcome["consistent"]


class TestConstants:
    def test_constant_dimensions_match_units(self):
        for constant in PHYSICS_CONSTANTS.values():
            from_unit, _, known = DimensionCalculator.parse_unit(constant.unit)
            if known:
                assert from_unit == DimensionCalculator.parse(constant.dimension), constant.symbol

    def test_defaults_table(self):
        defaults = constant_defaults()
        assert defaults["c"] == 299792458.0
        assert defaults["g"] == pytest.approx(9.80665)

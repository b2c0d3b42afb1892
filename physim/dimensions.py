# -*- coding: utf-8 -*-
"""
Dimension Calculator
Parses, combines and propagates physical dimensions over the seven SI base
quantities, plus a table of universal constants used to seed default values.
"""

import ast
import re
from dataclasses import dataclass
from functools import lru_cache
from tokenize import TokenError
from typing import Dict, List, Optional, Tuple

from pint import UnitRegistry
from pint.errors import PintError

from .formula_engine import normalize_expression

# ===============================================================================
# Dimension Value Type
# ===============================================================================

# Symbol order used by to_string
DIMENSION_SYMBOLS = ('L', 'M', 'T', 'I', 'Θ', 'N', 'J')

_TOKEN_PATTERN = re.compile(r'([A-Za-zΘ])(\^[+-]?\d+)?')


@dataclass(frozen=True)
class Dimension:
    """Exponents of length, mass, time, current, temperature, amount, luminosity"""
    L: int = 0
    M: int = 0
    T: int = 0
    I: int = 0
    Theta: int = 0
    N: int = 0
    J: int = 0

    def as_tuple(self) -> Tuple[int, ...]:
        return (self.L, self.M, self.T, self.I, self.Theta, self.N, self.J)

    @classmethod
    def from_tuple(cls, values) -> 'Dimension':
        return cls(*[int(v) for v in values])

    def multiply(self, other: 'Dimension') -> 'Dimension':
        return Dimension.from_tuple(a + b for a, b in zip(self.as_tuple(), other.as_tuple()))

    def divide(self, other: 'Dimension') -> 'Dimension':
        return Dimension.from_tuple(a - b for a, b in zip(self.as_tuple(), other.as_tuple()))

    def power(self, exponent: int) -> 'Dimension':
        return Dimension.from_tuple(a * exponent for a in self.as_tuple())

    def root(self, n: int) -> Optional['Dimension']:
        """n-th root, or None when an exponent is not divisible by n"""
        values = self.as_tuple()
        if any(v % n for v in values):
            return None
        return Dimension.from_tuple(v // n for v in values)

    @property
    def is_dimensionless(self) -> bool:
        return not any(self.as_tuple())

    def __str__(self) -> str:
        return DimensionCalculator.to_string(self)


DIMENSIONLESS = Dimension()

# ===============================================================================
# Units
# ===============================================================================

_UREG = UnitRegistry(autoconvert_offset_to_baseunit=True)

# pint dimension name -> Dimension field order
_PINT_DIMENSIONS = ('[length]', '[mass]', '[time]', '[current]', '[temperature]',
                    '[substance]', '[luminosity]')

# Notation pint does not read on its own
_UNIT_ALIASES = {'°': 'degree', 'Ω': 'ohm'}

_UNIT_ERRORS = (PintError, AttributeError, SyntaxError, TokenError, TypeError, ValueError)


@lru_cache(maxsize=512)
def _resolve_unit(text: str) -> Tuple[Dimension, float, bool]:
    if text in ('', '1'):
        return DIMENSIONLESS, 1.0, True
    for alias, name in _UNIT_ALIASES.items():
        text = text.replace(alias, name)
    try:
        quantity = _UREG.Quantity(1.0, normalize_expression(text))
        scale = float(quantity.to_base_units().magnitude)
    except _UNIT_ERRORS:
        return DIMENSIONLESS, 1.0, False

    dimensionality = quantity.dimensionality
    if any(name not in _PINT_DIMENSIONS for name in dimensionality):
        return DIMENSIONLESS, 1.0, False
    exponents = [dimensionality.get(name, 0) for name in _PINT_DIMENSIONS]
    if any(float(e) != int(e) for e in exponents):
        return DIMENSIONLESS, 1.0, False
    return Dimension.from_tuple(exponents), scale, True


# Canonical unit for a dimension string
DIMENSION_UNITS: Dict[str, str] = {
    '1': '', 'L': 'm', 'M': 'kg', 'T': 's', 'I': 'A', 'Θ': 'K', 'N': 'mol',
    'LT^-1': 'm/s', 'LT^-2': 'm/s^2', 'MLT^-2': 'N', 'ML^2T^-2': 'J',
    'ML^2T^-3': 'W', 'ML^-1T^-2': 'Pa', 'T^-1': 'Hz', 'MLT^-1': 'kg*m/s',
    'MT^-2': 'N/m', 'IT': 'C', 'ML^2T^-3I^-1': 'V', 'MLT^-3I^-1': 'V/m',
    'MT^-2I^-1': 'T', 'ML^2T^-3I^-2': 'Ω', 'L^-2M^-1T^4I^2': 'F',
    'ML^2T^-2I^-2': 'H', 'ML^2T^-2I^-1': 'Wb', 'ML^2T^-1': 'J*s',
}

# ===============================================================================
# Constants Table
# ===============================================================================

@dataclass(frozen=True)
class PhysicalConstant:
    symbol: str
    name: str
    value: float
    unit: str
    dimension: str


PHYSICS_CONSTANTS: Dict[str, PhysicalConstant] = {
    const.symbol: const for const in [
        PhysicalConstant('c', 'speed of light in vacuum', 299792458.0, 'm/s', 'LT^-1'),
        PhysicalConstant('h', 'Planck constant', 6.62607015e-34, 'J*s', 'ML^2T^-1'),
        PhysicalConstant('hbar', 'reduced Planck constant', 1.054571817e-34, 'J*s', 'ML^2T^-1'),
        PhysicalConstant('k_B', 'Boltzmann constant', 1.380649e-23, 'J/K', 'ML^2T^-2Θ^-1'),
        PhysicalConstant('e', 'elementary charge', 1.602176634e-19, 'C', 'IT'),
        PhysicalConstant('m_e', 'electron mass', 9.1093837015e-31, 'kg', 'M'),
        PhysicalConstant('m_p', 'proton mass', 1.67262192369e-27, 'kg', 'M'),
        PhysicalConstant('G', 'gravitational constant', 6.67430e-11, 'm^3/(kg*s^2)', 'L^3M^-1T^-2'),
        PhysicalConstant('epsilon_0', 'vacuum permittivity', 8.8541878128e-12, 'F/m', 'I^2T^4M^-1L^-3'),
        PhysicalConstant('mu_0', 'vacuum permeability', 1.25663706212e-6, 'H/m', 'MLI^-2T^-2'),
        PhysicalConstant('g', 'standard gravity', 9.80665, 'm/s^2', 'LT^-2'),
        PhysicalConstant('R', 'molar gas constant', 8.314462618, 'J/(mol*K)', 'ML^2T^-2Θ^-1N^-1'),
        PhysicalConstant('N_A', 'Avogadro constant', 6.02214076e23, '1/mol', 'N^-1'),
        PhysicalConstant('sigma', 'Stefan-Boltzmann constant', 5.670374419e-8, 'W/(m^2*K^4)', 'MT^-3Θ^-4'),
        PhysicalConstant('atm', 'standard atmosphere', 101325.0, 'Pa', 'ML^-1T^-2'),
        PhysicalConstant('u', 'atomic mass unit', 1.66053906660e-27, 'kg', 'M'),
    ]
}

# ===============================================================================
# Dimension Calculator
# ===============================================================================

class DimensionCalculator:
    """Stateless operations on dimension strings, units and expressions"""

    @staticmethod
    def parse(dimension_string: str) -> Dimension:
        """Parse tokens like L^2T^-1; unknown letters are ignored"""
        exponents = dict.fromkeys(DIMENSION_SYMBOLS, 0)
        for letter, exponent in _TOKEN_PATTERN.findall(dimension_string or ''):
            if letter not in exponents:
                continue
            exponents[letter] += int(exponent[1:]) if exponent else 1
        return Dimension.from_tuple(exponents[s] for s in DIMENSION_SYMBOLS)

    @staticmethod
    def to_string(dimension: Dimension) -> str:
        parts = []
        for symbol, exponent in zip(DIMENSION_SYMBOLS, dimension.as_tuple()):
            if exponent == 0:
                continue
            parts.append(symbol if exponent == 1 else f"{symbol}^{exponent}")
        return ''.join(parts) if parts else '1'

    @staticmethod
    def multiply(a: Dimension, b: Dimension) -> Dimension:
        return a.multiply(b)

    @staticmethod
    def divide(a: Dimension, b: Dimension) -> Dimension:
        return a.divide(b)

    @staticmethod
    def parse_unit(unit: Optional[str]) -> Tuple[Dimension, float, bool]:
        """Resolve a unit string to (dimension, scale to SI, known)

        Lookup goes through pint, so prefixes and compound units such as
        'km/h' or 'm^3/(kg*s^2)' resolve. Unknown units leave the result
        dimensionless with scale 1 and known=False.
        """
        return _resolve_unit((unit or '').strip())

    @staticmethod
    def unit_to_dimension(unit: Optional[str]) -> str:
        dimension, _, _ = DimensionCalculator.parse_unit(unit)
        return DimensionCalculator.to_string(dimension)

    @staticmethod
    def dimension_to_unit(dimension_string: str) -> str:
        key = DimensionCalculator.to_string(DimensionCalculator.parse(dimension_string))
        return DIMENSION_UNITS.get(key, '')

    @staticmethod
    def infer_expression_dimension(expression: str,
                                   symbol_dimensions: Dict[str, Dimension]
                                   ) -> Tuple[Optional[Dimension], List[str]]:
        """Propagate dimensions through an arithmetic expression

        Returns (dimension or None when it cannot be determined, mismatch messages).
        Symbols missing from `symbol_dimensions` make the result unknown rather
        than wrong.
        """
        mismatches: List[str] = []
        try:
            tree = ast.parse(normalize_expression(expression), mode='eval')
        except SyntaxError:
            return None, [f"Cannot parse '{expression}'"]
        result = _DimensionWalker(symbol_dimensions, mismatches).visit(tree.body)
        return result, mismatches

    @staticmethod
    def check_equation(lhs_dimension: Optional[Dimension], rhs_expression: str,
                       symbol_dimensions: Dict[str, Dimension]) -> Dict[str, object]:
        """Compare the dimension of an equation's sides"""
        rhs_dimension, mismatches = DimensionCalculator.infer_expression_dimension(
            rhs_expression, symbol_dimensions)
        checked = lhs_dimension is not None and rhs_dimension is not None
        consistent = not mismatches and (not checked or lhs_dimension == rhs_dimension)
        if checked and lhs_dimension != rhs_dimension:
            mismatches.append(
                f"left side is {DimensionCalculator.to_string(lhs_dimension)}, "
                f"right side is {DimensionCalculator.to_string(rhs_dimension)}")
        return {'checked': checked, 'consistent': consistent, 'mismatches': mismatches}


class _DimensionWalker:
    """AST walk used by infer_expression_dimension"""

    _DIMENSIONLESS_FUNCS = {'sin', 'cos', 'tan', 'asin', 'acos', 'atan', 'exp', 'log',
                            'ln', 'log10', 'step', 'heaviside', 'sign'}
    _SAME_FUNCS = {'abs', 'min', 'max'}

    def __init__(self, symbol_dimensions: Dict[str, Dimension], mismatches: List[str]):
        self.symbol_dimensions = symbol_dimensions
        self.mismatches = mismatches

    def visit(self, node: ast.AST) -> Optional[Dimension]:
        if isinstance(node, ast.Constant):
            return DIMENSIONLESS
        if isinstance(node, ast.Name):
            if node.id in ('pi', 'e') and node.id not in self.symbol_dimensions:
                return DIMENSIONLESS
            return self.symbol_dimensions.get(node.id)
        if isinstance(node, ast.UnaryOp):
            return self.visit(node.operand)
        if isinstance(node, ast.BinOp):
            return self._visit_binop(node)
        if isinstance(node, ast.Call) and isinstance(node.func, ast.Name):
            args = [self.visit(arg) for arg in node.args]
            name = node.func.id
            if name in self._DIMENSIONLESS_FUNCS:
                return DIMENSIONLESS
            if name == 'sqrt' and args:
                return args[0].root(2) if args[0] is not None else None
            if name in self._SAME_FUNCS and args:
                return args[0]
        if isinstance(node, ast.Compare):
            return DIMENSIONLESS
        return None

    def _visit_binop(self, node: ast.BinOp) -> Optional[Dimension]:
        left = self.visit(node.left)
        if isinstance(node.op, ast.Pow):
            exponent = node.right
            if isinstance(exponent, ast.UnaryOp) and isinstance(exponent.op, ast.USub) \
                    and isinstance(exponent.operand, ast.Constant):
                value = -exponent.operand.value
            elif isinstance(exponent, ast.Constant):
                value = exponent.value
            else:
                return None
            if left is None or not isinstance(value, (int, float)):
                return None
            if float(value).is_integer():
                return left.power(int(value))
            if float(value * 2).is_integer() and value > 0:
                half = left.root(2)
                return half.power(int(value * 2)) if half is not None else None
            return None

        right = self.visit(node.right)
        if left is None or right is None:
            return None
        if isinstance(node.op, ast.Mult):
            return left.multiply(right)
        if isinstance(node.op, ast.Div):
            return left.divide(right)
        if isinstance(node.op, (ast.Add, ast.Sub)):
            if left != right:
                self.mismatches.append(
                    f"adding {DimensionCalculator.to_string(left)} to {DimensionCalculator.to_string(right)}")
            return left
        return None


def constant_defaults() -> Dict[str, float]:
    """Symbol -> value for every tabulated constant"""
    return {symbol: const.value for symbol, const in PHYSICS_CONSTANTS.items()}

# -*- coding: utf-8 -*-
"""
Formula Evaluation Engine
Evaluates opaque equation strings numerically by walking their syntax tree
against a symbol table. Evaluation never raises: unknown symbols read as 0 and
any failure yields the default value plus a recorded warning.
"""

import ast
import hashlib
import math
import operator
import re
import time
import warnings
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Set

from .exceptions import ExpressionError

# ===============================================================================
# Normalisation and Equation Splitting
# ===============================================================================

_SUPERSCRIPTS = str.maketrans('⁰¹²³⁴⁵⁶⁷⁸⁹⁻', '0123456789-')
_SUPERSCRIPT_RUN = re.compile(r'([⁻]?[⁰¹²³⁴⁵⁶⁷⁸⁹]+)')
_SQRT_PAREN = re.compile(r'√\s*\(')
_SQRT_TOKEN = re.compile(r'√\s*([A-Za-z_][A-Za-z_0-9]*|\d+(?:\.\d+)?)')

# dx/dt, d2x/dt2, d^2x/dt^2 (after superscripts were normalised)
_DERIVATIVE_LHS = re.compile(
    r'^d(?:\^?(?P<order>\d+))?\s*(?P<target>[A-Za-z_][A-Za-z_0-9]*)\s*/\s*dt(?:\^?(?P<order2>\d+))?$'
)

# A lone "=" separates lhs from rhs; "==", "<=", ">=" and "!=" are comparisons
_ASSIGNMENT = re.compile(r'(?<![<>!=])=(?!=)')
_COMPARISON = re.compile(r'(<=|>=|<|>)')


def normalize_expression(expression: str) -> str:
    """Rewrite common math notation into Python arithmetic syntax"""
    text = str(expression).strip()
    text = _SUPERSCRIPT_RUN.sub(lambda m: '**' + m.group(1).translate(_SUPERSCRIPTS), text)
    text = _SQRT_PAREN.sub('sqrt(', text)
    text = _SQRT_TOKEN.sub(r'sqrt(\1)', text)
    return (text.replace('^', '**')
                .replace('×', '*')
                .replace('·', '*')
                .replace('÷', '/')
                .replace('π', 'pi')
                .replace('−', '-'))


@dataclass(frozen=True)
class EquationParts:
    """An equation split into its target, derivative order and right-hand side"""
    target: Optional[str]
    order: int
    rhs: str


def split_equation(equation: str) -> EquationParts:
    """Split 'lhs = rhs' into target/order/rhs

    'dx/dt = v' gives order 1, 'd2x/dt2 = -k*x/m' order 2, 'x = v*t' order 0.
    A string without '=' is treated as a bare right-hand side.
    """
    text = normalize_expression(equation)
    assignment = _ASSIGNMENT.search(text)
    if assignment is None:
        return EquationParts(None, 0, text)

    lhs, rhs = text[:assignment.start()].strip(), text[assignment.end():].strip()
    compact = lhs.replace('**', '').replace(' ', '')
    match = _DERIVATIVE_LHS.match(compact)
    if match:
        order = int(match.group('order') or match.group('order2') or 1)
        return EquationParts(match.group('target'), order, rhs)
    if re.fullmatch(r'[A-Za-z_][A-Za-z_0-9]*', lhs):
        return EquationParts(lhs, 0, rhs)
    return EquationParts(None, 0, rhs)


def residual_expression(equation: str) -> Optional[str]:
    """'lhs = rhs' as '(lhs) - (rhs)'; None for expressions without a lone '='"""
    text = normalize_expression(equation)
    assignment = _ASSIGNMENT.search(text)
    if assignment is None:
        return None
    return f"({text[:assignment.start()].strip()}) - ({text[assignment.end():].strip()})"


def margin_expression(condition: str) -> Optional[str]:
    """Signed margin of a single inequality, positive while it holds

    'h >= 0' becomes '(h) - (0)' and 'x < L' becomes '(L) - (x)'. Compound or
    chained conditions return None.
    """
    parts = [part.strip() for part in _COMPARISON.split(normalize_expression(condition))]
    if len(parts) != 3 or not parts[0] or not parts[2]:
        return None
    lhs, operator, rhs = parts
    if operator.startswith('>'):
        return f"({lhs}) - ({rhs})"
    return f"({rhs}) - ({lhs})"


# ===============================================================================
# Allowed Functions and Operators
# ===============================================================================

def _step(value: float) -> float:
    return 1.0 if value > 0 else 0.0


def _sign(value: float) -> float:
    return float((value > 0) - (value < 0))


MATH_FUNCTIONS: Dict[str, Callable[..., float]] = {
    'sqrt': math.sqrt, 'sin': math.sin, 'cos': math.cos, 'tan': math.tan,
    'asin': math.asin, 'acos': math.acos, 'atan': math.atan,
    'exp': math.exp, 'log': math.log, 'ln': math.log, 'log10': math.log10,
    'abs': abs, 'min': min, 'max': max,
    'sign': _sign, 'step': _step, 'heaviside': _step,
}

MATH_CONSTANTS: Dict[str, float] = {'pi': math.pi, 'e': math.e}

_BINARY_OPERATORS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Pow: operator.pow,
    ast.Mod: operator.mod,
}

_UNARY_OPERATORS = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
    ast.Not: lambda v: float(not v),
}

_COMPARE_OPERATORS = {
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
}

# ===============================================================================
# Expression Validator
# ===============================================================================

class ExpressionValidator:
    """Checks an expression only uses supported syntax"""

    def __init__(self):
        self.allowed_names = set(MATH_FUNCTIONS) | set(MATH_CONSTANTS)
        self.allowed_nodes = (
            ast.Expression, ast.Constant, ast.Name, ast.Load, ast.BinOp, ast.UnaryOp,
            ast.Call, ast.Compare, ast.BoolOp, ast.IfExp, ast.And, ast.Or,
            *_BINARY_OPERATORS, *_UNARY_OPERATORS, *_COMPARE_OPERATORS,
        )

    def validate_expression(self, expression: str) -> Dict[str, Any]:
        """Validate expression syntax without evaluating it"""
        validation_result = {
            'valid': True,
            'errors': [],
            'warnings': [],
            'dependencies': set(),
            'complexity_score': 0
        }

        try:
            tree = ast.parse(normalize_expression(expression), mode='eval')
            for node in ast.walk(tree):
                if not isinstance(node, self.allowed_nodes):
                    validation_result['valid'] = False
                    validation_result['errors'].append(f"Unsupported syntax: {type(node).__name__}")
                elif isinstance(node, ast.Call):
                    if not isinstance(node.func, ast.Name) or node.func.id not in MATH_FUNCTIONS:
                        validation_result['valid'] = False
                        validation_result['errors'].append(f"Unsupported function: {ast.dump(node.func)}")
            validation_result['dependencies'] = self._extract_dependencies(tree)
            validation_result['complexity_score'] = self._calculate_complexity(tree)
        except SyntaxError as e:
            validation_result['valid'] = False
            validation_result['errors'].append(f"Syntax error: {e.msg}")

        return validation_result

    def _extract_dependencies(self, node: ast.AST) -> Set[str]:
        """Names referenced in the expression, excluding functions and constants"""
        dependencies = set()
        for child in ast.walk(node):
            if isinstance(child, ast.Name) and isinstance(child.ctx, ast.Load):
                if child.id not in self.allowed_names:
                    dependencies.add(child.id)
        return dependencies

    def _calculate_complexity(self, node: ast.AST) -> int:
        complexity = 0
        for child in ast.walk(node):
            if isinstance(child, ast.Call):
                complexity += 2
            elif isinstance(child, (ast.BinOp, ast.UnaryOp, ast.BoolOp, ast.Compare)):
                complexity += 1
            elif isinstance(child, ast.IfExp):
                complexity += 3
        return complexity


# ===============================================================================
# Parsed Expression Cache
# ===============================================================================

class ExpressionCache:
    """Bounded LRU cache of parsed expression trees"""

    def __init__(self, max_size: int = 1000):
        self.max_size = max_size
        self._trees: 'OrderedDict[str, Any]' = OrderedDict()
        self.stats = {
            'total_parses': 0,
            'cache_hits': 0,
            'cache_misses': 0,
            'parse_time': 0.0
        }

    @staticmethod
    def make_key(expression: str) -> str:
        return hashlib.md5(expression.encode('utf-8')).hexdigest()

    def get_tree(self, expression: str) -> ast.Expression:
        """Return the parsed tree, parsing on a miss; SyntaxError propagates"""
        key = self.make_key(expression)
        if key in self._trees:
            self._trees.move_to_end(key)
            self.stats['cache_hits'] += 1
            return self._trees[key]

        self.stats['cache_misses'] += 1
        self.stats['total_parses'] += 1
        start_time = time.perf_counter()
        tree = ast.parse(expression, mode='eval')
        self.stats['parse_time'] += time.perf_counter() - start_time

        self._trees[key] = tree
        if len(self._trees) > self.max_size:
            self._trees.popitem(last=False)
        return tree

    def get_stats(self) -> Dict[str, Any]:
        lookups = self.stats['cache_hits'] + self.stats['cache_misses']
        return {
            **self.stats,
            'cache_size': len(self._trees),
            'cache_hit_rate': self.stats['cache_hits'] / max(1, lookups),
            'avg_parse_time': self.stats['parse_time'] / max(1, self.stats['total_parses'])
        }

    def clear(self):
        self._trees.clear()


# ===============================================================================
# Main Formula Engine
# ===============================================================================

class FormulaEngine:
    """Evaluates arithmetic expressions against a symbol table"""

    def __init__(self, max_cache_size: int = 1000, warn_missing_symbols: bool = True):
        self.cache = ExpressionCache(max_cache_size)
        self.validator = ExpressionValidator()
        self.warn_missing_symbols = warn_missing_symbols

        self.evaluation_stats = {
            'total_evaluations': 0,
            'successful_evaluations': 0,
            'failed_evaluations': 0,
            'missing_symbols': 0,
            'total_evaluation_time': 0.0,
            'errors': []
        }
        # Messages not yet collected by a caller, de-duplicated
        self._pending_warnings: 'OrderedDict[str, None]' = OrderedDict()

    def evaluate(self, expression: str, symbols: Optional[Mapping[str, float]] = None,
                 default: float = 0.0) -> float:
        """Evaluate `expression`; any failure returns `default` and records a warning"""
        start_time = time.perf_counter()
        self.evaluation_stats['total_evaluations'] += 1
        symbols = symbols if symbols is not None else {}
        text = normalize_expression(expression)

        try:
            if not text:
                raise ExpressionError(expression, "empty expression")
            tree = self.cache.get_tree(text)
            missing: List[str] = []
            result = float(self._eval_node(tree.body, symbols, missing))
            if not math.isfinite(result):
                raise ExpressionError(expression, f"non-finite result {result}")
            if missing and self.warn_missing_symbols:
                self.evaluation_stats['missing_symbols'] += len(missing)
                names = ', '.join(sorted(set(missing)))
                self._record_warning(f"Unknown symbol(s) {names} in '{expression}' treated as 0")
            self.evaluation_stats['successful_evaluations'] += 1
            return result
        except (ExpressionError, SyntaxError, ArithmeticError, ValueError, TypeError, RecursionError) as e:
            self._record_failure(expression, e)
            return default
        finally:
            self.evaluation_stats['total_evaluation_time'] += time.perf_counter() - start_time

    def evaluate_many(self, expressions: Mapping[str, str],
                      symbols: Optional[Mapping[str, float]] = None) -> Dict[str, float]:
        """Evaluate a name -> expression mapping against one symbol table"""
        return {name: self.evaluate(expr, symbols) for name, expr in expressions.items()}

    def evaluate_condition(self, expression: str, symbols: Optional[Mapping[str, float]] = None) -> bool:
        return bool(self.evaluate(expression, symbols))

    def _eval_node(self, node: ast.AST, symbols: Mapping[str, float], missing: List[str]) -> float:
        if isinstance(node, ast.Constant):
            if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
                raise ExpressionError(repr(node.value), "only numeric literals are supported")
            return node.value

        if isinstance(node, ast.Name):
            if node.id in symbols:
                value = symbols[node.id]
                return float(value) if value is not None else 0.0
            if node.id in MATH_CONSTANTS:
                return MATH_CONSTANTS[node.id]
            missing.append(node.id)
            return 0.0

        if isinstance(node, ast.BinOp):
            op = _BINARY_OPERATORS.get(type(node.op))
            if op is None:
                raise ExpressionError(ast.dump(node.op), "unsupported operator")
            left = self._eval_node(node.left, symbols, missing)
            right = self._eval_node(node.right, symbols, missing)
            if isinstance(node.op, ast.Pow) and abs(right) > 1e3:
                raise OverflowError("exponent too large")
            return op(left, right)

        if isinstance(node, ast.UnaryOp):
            op = _UNARY_OPERATORS.get(type(node.op))
            if op is None:
                raise ExpressionError(ast.dump(node.op), "unsupported operator")
            return op(self._eval_node(node.operand, symbols, missing))

        if isinstance(node, ast.Compare):
            left = self._eval_node(node.left, symbols, missing)
            for op_node, comparator in zip(node.ops, node.comparators):
                op = _COMPARE_OPERATORS.get(type(op_node))
                if op is None:
                    raise ExpressionError(ast.dump(op_node), "unsupported comparison")
                right = self._eval_node(comparator, symbols, missing)
                if not op(left, right):
                    return 0.0
                left = right
            return 1.0

        if isinstance(node, ast.BoolOp):
            values = [self._eval_node(v, symbols, missing) for v in node.values]
            if isinstance(node.op, ast.And):
                return float(all(values))
            return float(any(values))

        if isinstance(node, ast.IfExp):
            if self._eval_node(node.test, symbols, missing):
                return self._eval_node(node.body, symbols, missing)
            return self._eval_node(node.orelse, symbols, missing)

        if isinstance(node, ast.Call):
            if not isinstance(node.func, ast.Name) or node.func.id not in MATH_FUNCTIONS:
                raise ExpressionError(ast.dump(node.func), "unsupported function")
            if node.keywords:
                raise ExpressionError(node.func.id, "keyword arguments are not supported")
            args = [self._eval_node(arg, symbols, missing) for arg in node.args]
            return MATH_FUNCTIONS[node.func.id](*args)

        raise ExpressionError(type(node).__name__, "unsupported syntax")

    def _record_warning(self, message: str):
        if message not in self._pending_warnings:
            self._pending_warnings[message] = None

    def _record_failure(self, expression: str, error: Exception):
        self.evaluation_stats['failed_evaluations'] += 1
        reason = error.error if isinstance(error, ExpressionError) else f"{type(error).__name__}: {error}"
        self.evaluation_stats['errors'].append({
            'expression': expression,
            'error': reason,
            'timestamp': time.time()
        })
        # Keep only last 100 errors
        if len(self.evaluation_stats['errors']) > 100:
            self.evaluation_stats['errors'] = self.evaluation_stats['errors'][-100:]

        message = f"Expression '{expression}' could not be evaluated ({reason}); using 0"
        if message not in self._pending_warnings:
            warnings.warn(message)
        self._record_warning(message)

    def drain_warnings(self) -> List[str]:
        """Return and clear the warnings recorded since the last call"""
        messages = list(self._pending_warnings)
        self._pending_warnings.clear()
        return messages

    def validate_expression(self, expression: str) -> Dict[str, Any]:
        return self.validator.validate_expression(expression)

    def extract_variables(self, expression: str) -> Set[str]:
        """Symbols an expression depends on; empty when it cannot be parsed"""
        try:
            tree = self.cache.get_tree(normalize_expression(expression))
        except SyntaxError:
            return set()
        return self.validator._extract_dependencies(tree)

    def get_statistics(self) -> Dict[str, Any]:
        total = self.evaluation_stats['total_evaluations']
        return {
            'total_evaluations': total,
            'successful_evaluations': self.evaluation_stats['successful_evaluations'],
            'failed_evaluations': self.evaluation_stats['failed_evaluations'],
            'missing_symbols': self.evaluation_stats['missing_symbols'],
            'success_rate': self.evaluation_stats['successful_evaluations'] / max(1, total),
            'avg_evaluation_time': self.evaluation_stats['total_evaluation_time'] / max(1, total),
            'recent_errors': self.evaluation_stats['errors'][-10:],
            'cache': self.cache.get_stats()
        }


_default_engine = FormulaEngine()


def extract_variables(expression: str) -> Set[str]:
    """Module-level shortcut used where no engine instance is at hand"""
    return _default_engine.extract_variables(expression)

# -*- coding: utf-8 -*-
"""
Exception classes shared by the IR builder, formula engine and simulator
"""

from typing import List, Optional


class PhysimError(Exception):
    """Base class for all physim errors"""
    pass


class CyclicDependencyError(PhysimError):
    """Module dependencies contain a cycle"""
    def __init__(self, module_id: str, cycle: Optional[List[str]] = None):
        self.module_id = module_id
        self.cycle = list(cycle or [])
        path = " -> ".join(self.cycle) if self.cycle else module_id
        super().__init__(f"CyclicDependency: module '{module_id}' is part of a dependency cycle ({path})")


class UnsupportedEquationOrder(PhysimError):
    """Differential equation order above the supported maximum"""
    def __init__(self, equation_id: str, order: int, max_order: int):
        self.equation_id = equation_id
        self.order = order
        self.max_order = max_order
        super().__init__(
            f"Equation '{equation_id}' has order {order}; at most order {max_order} is supported"
        )


class ExpressionError(PhysimError):
    """Expression could not be evaluated"""
    def __init__(self, expression: str, error: str):
        self.expression = expression
        self.error = error
        super().__init__(f"Expression evaluation failed: '{expression}' - {error}")

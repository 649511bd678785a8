"""Restricted numeric expression evaluator for custom service formulas.

A formula is parsed with the ast module and evaluated by walking a whitelist
of node types. Nothing is ever compiled or executed as Python code. Only
numeric literals, the variables in FORMULA_VARIABLES, arithmetic operators and
the functions in FORMULA_FUNCTIONS are accepted.

Example:
    total_cost * unit_base / total_base + 100
    max(unit_area * 12.5, 500)
"""

import ast
import operator
from decimal import Decimal, DecimalException, InvalidOperation
from typing import Callable

from settlement.core.errors import FormulaError

FORMULA_VARIABLES = frozenset(
    {
        "unit_base",
        "total_base",
        "total_cost",
        "unit_price",
        "unit_area",
        "unit_share",
        "unit_occupancy",
    }
)

MAX_FORMULA_LENGTH = 500
MAX_EXPONENT = 100
# Largest magnitude a unit cost column (Numeric(12, 2)) can hold
MAX_RESULT = Decimal("1e10")

_BINARY_OPERATORS: dict[type, Callable[[Decimal, Decimal], Decimal]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}

_UNARY_OPERATORS: dict[type, Callable[[Decimal], Decimal]] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}


def _round(value: Decimal, places: Decimal = Decimal(0)) -> Decimal:
    return round(value, int(places))


FORMULA_FUNCTIONS: dict[str, Callable[..., Decimal]] = {
    "min": min,
    "max": max,
    "abs": abs,
    "round": _round,
}


def parse_formula(formula: str | None) -> ast.Expression:
    """Parse and validate a formula without evaluating it.

    Raises:
        FormulaError: Empty, too long, not an expression, or uses anything
            outside the whitelist
    """
    if not formula or not formula.strip():
        raise FormulaError("Formula is empty", formula)
    if len(formula) > MAX_FORMULA_LENGTH:
        raise FormulaError(f"Formula is longer than {MAX_FORMULA_LENGTH} characters", formula)

    try:
        tree = ast.parse(formula.strip(), mode="eval")
    except SyntaxError as exc:
        raise FormulaError(f"Formula syntax error: {exc.msg}", formula) from exc

    for node in ast.walk(tree):
        _check_node(node, formula)
    return tree


def _check_node(node: ast.AST, formula: str) -> None:
    if isinstance(node, (ast.Expression, ast.Load)):
        return
    if isinstance(node, ast.Constant):
        if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
            raise FormulaError(f"Unsupported literal {node.value!r}", formula)
        return
    if isinstance(node, ast.Name):
        if node.id not in FORMULA_VARIABLES and node.id not in FORMULA_FUNCTIONS:
            raise FormulaError(f"Unknown identifier '{node.id}'", formula)
        return
    if isinstance(node, ast.BinOp):
        if type(node.op) not in _BINARY_OPERATORS:
            raise FormulaError(f"Operator {type(node.op).__name__} is not allowed", formula)
        return
    if isinstance(node, ast.UnaryOp):
        if type(node.op) not in _UNARY_OPERATORS:
            raise FormulaError(f"Operator {type(node.op).__name__} is not allowed", formula)
        return
    if isinstance(node, ast.Call):
        if not isinstance(node.func, ast.Name) or node.func.id not in FORMULA_FUNCTIONS:
            raise FormulaError("Only min, max, abs and round may be called", formula)
        if node.keywords:
            raise FormulaError("Keyword arguments are not allowed", formula)
        if not node.args:
            raise FormulaError(f"{node.func.id}() needs at least one argument", formula)
        return
    if isinstance(node, (ast.operator, ast.unaryop)):
        return
    raise FormulaError(f"Expression element {type(node).__name__} is not allowed", formula)


def evaluate_formula(formula: str, variables: dict[str, Decimal]) -> Decimal:
    """Evaluate a formula against the closed variable set.

    Args:
        formula: Expression text
        variables: Values for (a subset of) FORMULA_VARIABLES

    Returns:
        Finite Decimal result

    Raises:
        FormulaError: Invalid formula, unknown identifier, division by zero
            or a result that is not finite or too large to store
    """
    tree = parse_formula(formula)
    try:
        result = _evaluate(tree.body, variables, formula)
    except FormulaError:
        raise
    except ZeroDivisionError as exc:
        raise FormulaError("Division by zero", formula) from exc
    except (DecimalException, ArithmeticError, ValueError, TypeError) as exc:
        raise FormulaError(f"Formula could not be evaluated: {exc}", formula) from exc

    if not result.is_finite():
        raise FormulaError("Formula result is not finite", formula)
    if abs(result) >= MAX_RESULT:
        raise FormulaError(f"Formula result {result:.6E} is too large", formula)
    return result


def _evaluate(node: ast.AST, variables: dict[str, Decimal], formula: str) -> Decimal:
    if isinstance(node, ast.Constant):
        return Decimal(str(node.value))

    if isinstance(node, ast.Name):
        if node.id not in variables:
            raise FormulaError(f"Unknown identifier '{node.id}'", formula)
        return Decimal(variables[node.id])

    if isinstance(node, ast.UnaryOp):
        return _UNARY_OPERATORS[type(node.op)](_evaluate(node.operand, variables, formula))

    if isinstance(node, ast.BinOp):
        left = _evaluate(node.left, variables, formula)
        right = _evaluate(node.right, variables, formula)
        if isinstance(node.op, ast.Pow) and abs(right) > MAX_EXPONENT:
            raise FormulaError(f"Exponent larger than {MAX_EXPONENT}", formula)
        if isinstance(node.op, (ast.Div, ast.FloorDiv, ast.Mod)) and right == 0:
            raise FormulaError("Division by zero", formula)
        try:
            return _BINARY_OPERATORS[type(node.op)](left, right)
        except InvalidOperation as exc:
            raise FormulaError(f"Invalid arithmetic in formula: {exc}", formula) from exc

    if isinstance(node, ast.Call):
        args = [_evaluate(arg, variables, formula) for arg in node.args]
        return Decimal(FORMULA_FUNCTIONS[node.func.id](*args))

    raise FormulaError(f"Expression element {type(node).__name__} is not allowed", formula)

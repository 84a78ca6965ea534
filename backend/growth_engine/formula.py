"""
Safe arithmetic for calculation KPIs.

Formulas reference the KPI's own response fields with `{field}` placeholders,
e.g. ``{net_new_arr} / {net_burn}``. The expression is parsed with `ast` and
walked node by node; only numbers, the four arithmetic operators, unary sign
and parentheses are accepted. Nothing is compiled or executed.
"""

import ast
import math
import operator
import re
from typing import Any, Dict, List, Mapping

from growth_engine.errors import FormulaError

_PLACEHOLDER = re.compile(r"\{\s*([^{}]+?)\s*\}")

_BIN_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
}
_UNARY_OPS = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}


def formula_fields(formula: str) -> List[str]:
    """Field names referenced by a formula, in order of first appearance."""
    seen: List[str] = []
    for name in _PLACEHOLDER.findall(formula or ""):
        if name not in seen:
            seen.append(name)
    return seen


def _as_number(name: str, value: Any) -> float:
    if isinstance(value, bool) or value is None:
        raise FormulaError(f"Field '{name}' has no numeric value")
    if isinstance(value, str):
        try:
            value = float(value.replace(",", "").strip())
        except ValueError:
            raise FormulaError(f"Field '{name}' is not numeric: {value!r}")
    if not isinstance(value, (int, float)) or not math.isfinite(value):
        raise FormulaError(f"Field '{name}' is not a finite number")
    return float(value)


def _evaluate(node: ast.AST, env: Dict[str, float]) -> float:
    if isinstance(node, ast.Expression):
        return _evaluate(node.body, env)
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)) and not isinstance(node.value, bool):
        return float(node.value)
    if isinstance(node, ast.Name):
        if node.id not in env:
            raise FormulaError(f"Unresolved name in formula: {node.id}")
        return env[node.id]
    if isinstance(node, ast.BinOp) and type(node.op) in _BIN_OPS:
        left = _evaluate(node.left, env)
        right = _evaluate(node.right, env)
        if isinstance(node.op, ast.Div) and right == 0:
            raise FormulaError("Division by zero")
        return _BIN_OPS[type(node.op)](left, right)
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
        return _UNARY_OPS[type(node.op)](_evaluate(node.operand, env))
    raise FormulaError(f"Unsupported expression component: {type(node).__name__}")


def evaluate_formula(formula: str, fields: Mapping[str, Any]) -> float:
    """Evaluate `formula` against `fields`.

    Raises:
        FormulaError: empty or malformed formula, unresolved placeholder,
            non-numeric field, division by zero or non-finite result.
    """
    if not formula or not formula.strip():
        raise FormulaError("Empty formula")

    env: Dict[str, float] = {}
    aliases: Dict[str, str] = {}

    def _substitute(match: re.Match) -> str:
        name = match.group(1)
        if name not in aliases:
            if name not in fields:
                raise FormulaError(f"Unresolved field in formula: {name}")
            alias = f"_f{len(aliases)}"
            aliases[name] = alias
            env[alias] = _as_number(name, fields[name])
        return aliases[name]

    expression = _PLACEHOLDER.sub(_substitute, formula)
    try:
        tree = ast.parse(expression.strip(), mode="eval")
    except SyntaxError as e:
        raise FormulaError(f"Malformed formula {formula!r}: {e.msg}")

    result = _evaluate(tree, env)
    if not math.isfinite(result):
        raise FormulaError(f"Formula produced a non-finite value: {formula!r}")
    return result

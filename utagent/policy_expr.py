"""Restricted boolean expressions for governance conditions.

Conditions are written as Python expressions over the tool's arguments::

    path.startswith('src/test/') and not path.endswith('.sh')
    command in ['mvn test', 'gradle test']

Only a small subset of the language is accepted. The expression is parsed
with :mod:`ast` and walked node by node; attribute access is limited to a
fixed set of string methods, so no arbitrary code can run.
"""

from __future__ import annotations

import ast
import logging
import operator
import re
from typing import Any, Callable, Mapping

from utagent.errors import PolicyExpressionError

logger = logging.getLogger(__name__)

_COMPARE_OPS: dict[type, Callable[[Any, Any], bool]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
}

_STRING_METHODS: dict[str, Callable[..., Any]] = {
    "startswith": str.startswith,
    "endswith": str.endswith,
    "lower": str.lower,
    "upper": str.upper,
    "strip": str.strip,
    "lstrip": str.lstrip,
    "rstrip": str.rstrip,
    # camelCase spellings used by existing policy files
    "startsWith": str.startswith,
    "endsWith": str.endswith,
    "contains": lambda s, sub: sub in s,
    "matches": lambda s, pattern: re.search(pattern, s) is not None,
}


def compile_condition(source: str) -> ast.Expression:
    """Parse and validate a condition; raises PolicyExpressionError on bad syntax."""
    try:
        tree = ast.parse(source.strip(), mode="eval")
    except SyntaxError as exc:
        raise PolicyExpressionError(f"Invalid condition {source!r}: {exc.msg}", original=exc) from exc
    for node in ast.walk(tree):
        _check_node(node, source)
    return tree


def _check_node(node: ast.AST, source: str) -> None:
    allowed = (
        ast.Expression,
        ast.BoolOp,
        ast.And,
        ast.Or,
        ast.UnaryOp,
        ast.Not,
        ast.Compare,
        ast.Constant,
        ast.Name,
        ast.Load,
        ast.List,
        ast.Tuple,
        ast.Set,
        ast.Call,
        ast.Attribute,
        *_COMPARE_OPS,
    )
    if not isinstance(node, allowed):
        raise PolicyExpressionError(f"Unsupported syntax {type(node).__name__} in condition {source!r}")
    if isinstance(node, ast.UnaryOp) and not isinstance(node.op, ast.Not):
        raise PolicyExpressionError(f"Unsupported operator in condition {source!r}")
    if isinstance(node, ast.Call):
        if not isinstance(node.func, ast.Attribute) or node.keywords:
            raise PolicyExpressionError(f"Only string method calls are allowed in condition {source!r}")
    if isinstance(node, ast.Attribute) and node.attr not in _STRING_METHODS:
        raise PolicyExpressionError(f"Unsupported method {node.attr!r} in condition {source!r}")


def evaluate(source: str | ast.Expression, scope: Mapping[str, Any]) -> bool:
    """Evaluate a condition against ``scope``.

    Names missing from scope and runtime errors make the condition false;
    syntax outside the supported subset raises PolicyExpressionError.
    """
    tree = compile_condition(source) if isinstance(source, str) else source
    try:
        return bool(_eval(tree.body, scope))
    except Exception as exc:
        logger.warning("POLICY_CONDITION_ERROR %s: %s", type(exc).__name__, exc)
        return False


def _eval(node: ast.AST, scope: Mapping[str, Any]) -> Any:
    if isinstance(node, ast.Constant):
        return node.value
    if isinstance(node, ast.Name):
        if node.id in ("true", "True"):
            return True
        if node.id in ("false", "False"):
            return False
        if node.id in ("null", "None"):
            return None
        if node.id not in scope:
            raise NameError(f"unknown name {node.id!r}")
        return scope[node.id]
    if isinstance(node, ast.BoolOp):
        if isinstance(node.op, ast.And):
            return all(_eval(v, scope) for v in node.values)
        return any(_eval(v, scope) for v in node.values)
    if isinstance(node, ast.UnaryOp):
        return not _eval(node.operand, scope)
    if isinstance(node, ast.Compare):
        left = _eval(node.left, scope)
        for op, comparator in zip(node.ops, node.comparators):
            right = _eval(comparator, scope)
            if not _COMPARE_OPS[type(op)](left, right):
                return False
            left = right
        return True
    if isinstance(node, (ast.List, ast.Tuple)):
        return [_eval(e, scope) for e in node.elts]
    if isinstance(node, ast.Set):
        return {_eval(e, scope) for e in node.elts}
    if isinstance(node, ast.Call):
        func = node.func
        assert isinstance(func, ast.Attribute)
        target = _eval(func.value, scope)
        if not isinstance(target, str):
            raise TypeError(f"{func.attr}() needs a string, got {type(target).__name__}")
        args = [_eval(a, scope) for a in node.args]
        if func.attr in ("startswith", "endswith", "startsWith", "endsWith") and args:
            if isinstance(args[0], list):
                args[0] = tuple(args[0])
        return _STRING_METHODS[func.attr](target, *args)
    raise PolicyExpressionError(f"Unsupported syntax {type(node).__name__}")

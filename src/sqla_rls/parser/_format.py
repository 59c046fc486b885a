"""Render expression trees back to canonical policy text."""

from __future__ import annotations

from sqla_rls.exceptions import UnsupportedExpressionError
from sqla_rls.parser._ast import (
    And,
    ArrayLiteral,
    Case,
    ColumnRef,
    Comparison,
    Exists,
    FunctionCall,
    Literal,
    Node,
    Not,
    Or,
    SessionSetting,
    Subquery,
)

__all__ = ["format_expression"]


def _precedence(node: Node) -> int:
    if isinstance(node, Or):
        return 1
    if isinstance(node, And):
        return 2
    if isinstance(node, Not):
        return 3
    if isinstance(node, Comparison):
        return 4
    return 5


def _wrap(node: Node, parent: int) -> str:
    text = format_expression(node)
    return f"({text})" if _precedence(node) <= parent and _precedence(node) < 5 else text


def format_expression(node: Node) -> str:
    """Return canonical SQL-like text for *node*.

    Parsing the result yields an equal tree (type casts excepted, since
    they are discarded by the tokenizer).

    Example::

        format_expression(parse("a = 1 OR (b AND c)", "Post"))
        # 'a = 1 OR b AND c'
    """
    if isinstance(node, Or):
        return " OR ".join(_wrap(op, 1) for op in node.operands)
    if isinstance(node, And):
        return " AND ".join(_wrap(op, 2) for op in node.operands)
    if isinstance(node, Not):
        return f"NOT {_wrap(node.operand, 3)}"
    if isinstance(node, Comparison):
        left = _wrap(node.left, 4)
        if node.operator in ("IS", "IS NOT"):
            return f"{left} {node.operator} NULL"
        if node.operator in ("IN", "NOT IN"):
            if isinstance(node.right, ArrayLiteral):
                items = ", ".join(format_expression(i) for i in node.right.items)
                return f"{left} {node.operator} ({items})"
            if isinstance(node.right, Subquery):
                return f"{left} {node.operator} ({node.right.raw_text})"
            quantifier = "= ANY" if node.operator == "IN" else "<> ALL"
            return f"{left} {quantifier} ({format_expression(node.right)})"
        return f"{left} {node.operator} {_wrap(node.right, 4)}"
    if isinstance(node, Case):
        parts = ["CASE"]
        if node.discriminant is not None:
            parts.append(format_expression(node.discriminant))
        for value, result in node.branches:
            parts.append(f"WHEN {format_expression(value)} THEN {format_expression(result)}")
        if node.otherwise is not None:
            parts.append(f"ELSE {format_expression(node.otherwise)}")
        parts.append("END")
        return " ".join(parts)
    if isinstance(node, Exists):
        return f"EXISTS ({node.raw_condition})"
    if isinstance(node, Subquery):
        return f"({node.raw_text})"
    if isinstance(node, FunctionCall):
        if not node.args and "." not in node.name and node.name in (
            "current_user",
            "session_user",
            "current_role",
        ):
            return node.name
        return f"{node.name}({', '.join(format_expression(a) for a in node.args)})"
    if isinstance(node, ColumnRef):
        return f"{node.entity}.{node.name}" if node.entity else node.name
    if isinstance(node, SessionSetting):
        return f"current_setting({_quote(node.key)})"
    if isinstance(node, Literal):
        if node.kind == "string":
            return _quote(str(node.value))
        if node.kind == "null":
            return "NULL"
        if node.kind == "boolean":
            return "true" if node.value else "false"
        return str(node.value)
    if isinstance(node, ArrayLiteral):
        return f"ARRAY[{', '.join(format_expression(i) for i in node.items)}]"
    raise UnsupportedExpressionError(f"Cannot format node: {type(node).__name__}")


def _quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"

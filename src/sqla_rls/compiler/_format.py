"""Readable text for compiled predicates and filters."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from sqla_rls.compiler._filters import (
    BlockAll,
    Conditional,
    FieldCompare,
    FieldEquals,
    FieldIn,
    FieldIsNull,
    FieldLike,
    FilterAnd,
    FilterNot,
    FilterOr,
    FilterUnresolved,
    PassAll,
    RelationIs,
    RelationSome,
    Unfilterable,
)
from sqla_rls.compiler._ir import (
    ActorField,
    AnyRelated,
    CaseWhen,
    Compare,
    IsNull,
    Membership,
    PredicateAnd,
    PredicateConst,
    PredicateNot,
    PredicateOr,
    RecordField,
    RoleCondition,
    Unresolved,
    Value,
    ValueSet,
)
from sqla_rls.exceptions import UnsupportedExpressionError

__all__ = ["format_filter", "format_predicate", "format_value"]

_PREDICATE_OPERATORS = {"=": "==", "!=": "!="}


def format_value(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    if isinstance(value, str):
        escaped = value.replace("'", "''")
        return f"'{escaped}'"
    return repr(value)


def _operand(operand: Any, row: str) -> str:
    if isinstance(operand, RecordField):
        return ".".join((row, *operand.path))
    if isinstance(operand, ActorField):
        return ".".join(("actor", *operand.path))
    if isinstance(operand, Value):
        return format_value(operand.value)
    if isinstance(operand, ValueSet):
        return "{" + ", ".join(format_value(v) for v in operand.values) + "}"
    raise UnsupportedExpressionError(f"Unsupported operand type: {type(operand).__name__}")


def _grouped(expr: Any, row: str) -> str:
    text = _predicate(expr, row)
    if isinstance(expr, (PredicateAnd, PredicateOr, CaseWhen)):
        return f"({text})"
    return text


def _predicate(expr: Any, row: str) -> str:
    if isinstance(expr, PredicateConst):
        return "true" if expr.value else "false"
    if isinstance(expr, PredicateAnd):
        return " && ".join(
            f"({_predicate(op, row)})" if isinstance(op, PredicateOr) else _predicate(op, row)
            for op in expr.operands
        )
    if isinstance(expr, PredicateOr):
        return " || ".join(_predicate(op, row) for op in expr.operands)
    if isinstance(expr, PredicateNot):
        return f"!{_grouped(expr.operand, row)}"
    if isinstance(expr, RoleCondition):
        return _predicate(expr.condition, row)
    if isinstance(expr, Compare):
        op = _PREDICATE_OPERATORS.get(expr.op, expr.op)
        return f"{_operand(expr.left, row)} {op} {_operand(expr.right, row)}"
    if isinstance(expr, Membership):
        symbol = "∉" if expr.negated else "∈"
        return f"{_operand(expr.operand, row)} {symbol} {_operand(expr.values, row)}"
    if isinstance(expr, IsNull):
        return f"{_operand(expr.operand, row)} {'!=' if expr.negated else '=='} null"
    if isinstance(expr, AnyRelated):
        return f"some({row}.{expr.relation}, {_predicate(expr.condition, 'related')})"
    if isinstance(expr, CaseWhen):
        parts = ["case"]
        if expr.discriminant is not None:
            parts.append(_operand(expr.discriminant, row))
            for key, result in expr.branches:
                parts.append(f"when {_operand(key, row)} then {_grouped(result, row)}")
        else:
            for condition, result in expr.branches:
                parts.append(f"when {_grouped(condition, row)} then {_grouped(result, row)}")
        parts.append(f"else {_grouped(expr.otherwise, row)} end")
        return " ".join(parts)
    if isinstance(expr, Unresolved):
        return f"unresolved[{expr.text}] -> {'allow' if expr.default else 'deny'}"
    raise UnsupportedExpressionError(f"Unsupported predicate type: {type(expr).__name__}")


def format_predicate(expr: Any) -> str:
    """Render a ``PredicateExpr`` in boolean-expression notation.

    Example::

        format_predicate(compiled.expr)
        # "actor.role ∈ {'admin', 'mod'} || record.owner_id == actor.id"
    """
    return _predicate(expr, "record")


def _filter_grouped(expr: Any) -> str:
    text = format_filter(expr)
    if isinstance(expr, (FilterAnd, FilterOr, Conditional)):
        return f"({text})"
    return text


def format_filter(expr: Any) -> str:
    """Render a ``FilterExpr`` (or ``Unfilterable``) as readable text.

    Example::

        format_filter(compiled.expr)
        # "IF actor.role ∈ {'admin', 'mod'} THEN PASS ELSE owner_id = actor.id"
    """
    if isinstance(expr, PassAll):
        return "PASS"
    if isinstance(expr, BlockAll):
        return "BLOCK"
    if isinstance(expr, FilterAnd):
        return " AND ".join(_filter_grouped(op) for op in expr.operands)
    if isinstance(expr, FilterOr):
        return " OR ".join(
            f"({format_filter(op)})" if isinstance(op, (FilterAnd, Conditional)) else format_filter(op)
            for op in expr.operands
        )
    if isinstance(expr, FilterNot):
        return f"NOT {_filter_grouped(expr.operand)}"
    if isinstance(expr, FieldEquals):
        return f"{expr.field} = {_operand(expr.value, 'record')}"
    if isinstance(expr, FieldCompare):
        return f"{expr.field} {expr.op} {_operand(expr.value, 'record')}"
    if isinstance(expr, FieldIn):
        return f"{expr.field} IN {_operand(expr.values, 'record')}"
    if isinstance(expr, FieldIsNull):
        return f"{expr.field} IS NULL"
    if isinstance(expr, FieldLike):
        keyword = "ILIKE" if expr.case_insensitive else "LIKE"
        return f"{expr.field} {keyword} {_operand(expr.pattern, 'record')}"
    if isinstance(expr, RelationSome):
        return f"{expr.relation} SOME ({format_filter(expr.condition)})"
    if isinstance(expr, RelationIs):
        return f"{expr.relation} IS ({format_filter(expr.condition)})"
    if isinstance(expr, Conditional):
        return (
            f"IF {format_predicate(expr.when)} THEN {_filter_grouped(expr.then)} "
            f"ELSE {_filter_grouped(expr.otherwise)}"
        )
    if isinstance(expr, FilterUnresolved):
        return f"UNRESOLVED[{expr.text}] -> {'PASS' if expr.default else 'BLOCK'}"
    if isinstance(expr, Unfilterable):
        return f"ROLE CHECK {format_predicate(expr.condition)}"
    raise UnsupportedExpressionError(f"Unsupported filter type: {type(expr).__name__}")

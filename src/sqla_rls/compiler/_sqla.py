"""Render filters as SQLAlchemy WHERE criteria.

Relation hops become EXISTS subqueries via ``has()`` (to-one) and
``any()`` (to-many), so the result is usable directly in
``select(Model).where(...)``.
"""

from __future__ import annotations

import operator
from typing import Any

from sqlalchemy import Boolean, ColumnElement, and_, cast, false, not_, null, or_, true
from sqlalchemy.inspection import inspect as sa_inspect
from sqlalchemy.orm import Mapper, RelationshipProperty

from sqla_rls.compiler._filter import bind_filter
from sqla_rls.compiler._filters import (
    BlockAll,
    FieldCompare,
    FieldEquals,
    FieldIn,
    FieldIsNull,
    FieldLike,
    FilterAnd,
    FilterExpr,
    FilterNot,
    FilterOr,
    FilterUnresolved,
    PassAll,
    RelationIs,
    RelationSome,
    Unfilterable,
)
from sqla_rls.compiler._ir import Value, ValueSet
from sqla_rls.config._config import CompilerConfig
from sqla_rls.exceptions import SchemaResolutionError, UnsupportedExpressionError

__all__ = ["to_sqlalchemy"]

_OPERATOR_MAP: dict[str, Any] = {
    "=": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


def _unknown() -> ColumnElement[bool]:
    # SQL NULL as a boolean: excluded from results, and NOT keeps it NULL.
    return cast(null(), Boolean)


def _column(model: type, field: str) -> Any:
    mapper: Mapper[Any] = sa_inspect(model)
    if field not in mapper.all_orm_descriptors or field in mapper.relationships:
        raise SchemaResolutionError(
            entity=model.__name__,
            field=field,
            message=f"{model.__name__} has no column attribute '{field}'",
        )
    return getattr(model, field)


def _value(operand: Any) -> Any:
    if isinstance(operand, Value):
        return operand.value
    if isinstance(operand, ValueSet):
        return list(operand.values)
    raise UnsupportedExpressionError(
        f"Unbound operand {operand!r}; bind the filter to an actor first"
    )


def _relation(model: type, name: str) -> tuple[Any, RelationshipProperty[Any]]:
    mapper: Mapper[Any] = sa_inspect(model)
    if name not in mapper.relationships:
        raise SchemaResolutionError(
            entity=model.__name__,
            field=name,
            message=f"{model.__name__} has no relationship '{name}'",
        )
    return getattr(model, name), mapper.relationships[name]


def _render(expr: FilterExpr, model: type) -> ColumnElement[bool]:
    if isinstance(expr, PassAll):
        return true()
    if isinstance(expr, BlockAll):
        return false()
    if isinstance(expr, FilterAnd):
        return and_(*(_render(op, model) for op in expr.operands))
    if isinstance(expr, FilterOr):
        return or_(*(_render(op, model) for op in expr.operands))
    if isinstance(expr, FilterNot):
        return not_(_render(expr.operand, model))
    if isinstance(expr, (FieldEquals, FieldCompare)):
        value = _value(expr.value)
        if value is None:
            return _unknown()
        op = "=" if isinstance(expr, FieldEquals) else expr.op
        return _OPERATOR_MAP[op](_column(model, expr.field), value)
    if isinstance(expr, FieldIn):
        return _column(model, expr.field).in_(_value(expr.values))
    if isinstance(expr, FieldIsNull):
        return _column(model, expr.field).is_(None)
    if isinstance(expr, FieldLike):
        pattern = _value(expr.pattern)
        if pattern is None:
            return _unknown()
        column = _column(model, expr.field)
        return column.ilike(pattern) if expr.case_insensitive else column.like(pattern)
    if isinstance(expr, (RelationSome, RelationIs)):
        attr, prop = _relation(model, expr.relation)
        inner = _render(expr.condition, prop.mapper.class_)
        if prop.uselist:
            return attr.any(inner)
        return attr.has(inner)
    if isinstance(expr, FilterUnresolved):
        return true() if expr.default else false()
    raise UnsupportedExpressionError(f"Unsupported filter type: {type(expr).__name__}")


def to_sqlalchemy(
    expr: FilterExpr | Unfilterable,
    model: type,
    actor: Any = None,
    config: CompilerConfig | None = None,
) -> ColumnElement[bool]:
    """Render a filter as a SQLAlchemy boolean expression for *model*.

    The filter is bound to *actor* first, so ``Conditional`` nodes and
    actor references are resolved before rendering.

    Args:
        expr: A compiled or already-bound filter.
        model: The mapped class the filter applies to.
        actor: The acting principal.
        config: Used while binding; the global config when omitted.

    Returns:
        A ``ColumnElement[bool]`` suitable for ``Select.where()``.

    Raises:
        SchemaResolutionError: If a field or relation is not mapped on
            the model it is rendered against.

    Example::

        stmt = select(Post).where(to_sqlalchemy(compiled.expr, Post, current_user))
    """
    return _render(bind_filter(expr, actor, config), model)

"""Filter IR — the data-narrowing expression of a predicate.

A filter selects the rows an actor may see.  It never depends on the
actor except through ``ActorField`` operands and ``Conditional`` nodes,
both of which :func:`~sqla_rls.compiler.bind_filter` resolves once the
actor is known.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from sqla_rls.compiler._ir import ActorField, Operand, PredicateExpr

__all__ = [
    "BlockAll",
    "Conditional",
    "FieldCompare",
    "FieldEquals",
    "FieldIn",
    "FieldIsNull",
    "FieldLike",
    "FilterAnd",
    "FilterExpr",
    "FilterNot",
    "FilterOr",
    "FilterUnresolved",
    "PassAll",
    "RelationIs",
    "RelationSome",
    "Unfilterable",
    "depends_on_actor",
    "filter_all_of",
    "filter_any_of",
    "filter_negate",
]


@dataclass(frozen=True, slots=True)
class PassAll:
    """Matches every row."""


@dataclass(frozen=True, slots=True)
class BlockAll:
    """Matches no row."""


@dataclass(frozen=True, slots=True)
class FilterAnd:
    operands: tuple[FilterExpr, ...]


@dataclass(frozen=True, slots=True)
class FilterOr:
    operands: tuple[FilterExpr, ...]


@dataclass(frozen=True, slots=True)
class FilterNot:
    operand: FilterExpr


@dataclass(frozen=True, slots=True)
class FieldEquals:
    field: str
    value: Operand


@dataclass(frozen=True, slots=True)
class FieldCompare:
    """``field <op> value`` for ``!=`` and the orderings."""

    field: str
    op: str
    value: Operand


@dataclass(frozen=True, slots=True)
class FieldIn:
    field: str
    values: Operand


@dataclass(frozen=True, slots=True)
class FieldIsNull:
    field: str


@dataclass(frozen=True, slots=True)
class FieldLike:
    field: str
    pattern: Operand
    case_insensitive: bool = False


@dataclass(frozen=True, slots=True)
class RelationSome:
    """Some row reached through to-many *relation* matches *condition*.

    For junction traversal *join_fields* holds the junction's composite
    key, own key first.
    """

    relation: str
    condition: FilterExpr
    join_fields: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class RelationIs:
    """The row reached through to-one *relation* matches *condition*."""

    relation: str
    condition: FilterExpr


@dataclass(frozen=True, slots=True)
class Conditional:
    """Choose *then* when the actor satisfies *when*, else *otherwise*.

    *when* is a role condition; it is decided per actor, not per row.
    """

    when: PredicateExpr
    then: FilterExpr
    otherwise: FilterExpr


@dataclass(frozen=True, slots=True)
class FilterUnresolved:
    """Stand-in for a construct with no filter form; acts as pass/block per *default*."""

    kind: str
    text: str
    default: bool
    related_entity: str | None = None


@dataclass(frozen=True, slots=True)
class Unfilterable:
    """Marker for a sub-expression with no data-narrowing meaning.

    Produced for pure role checks.  It is not itself a filter; the
    enclosing construct decides what it becomes.
    """

    condition: PredicateExpr


FilterExpr = Union[
    PassAll,
    BlockAll,
    FilterAnd,
    FilterOr,
    FilterNot,
    FieldEquals,
    FieldCompare,
    FieldIn,
    FieldIsNull,
    FieldLike,
    RelationSome,
    RelationIs,
    Conditional,
    FilterUnresolved,
]


def filter_all_of(items: list[FilterExpr]) -> FilterExpr:
    flat: list[FilterExpr] = []
    for item in items:
        if isinstance(item, BlockAll):
            return BlockAll()
        if isinstance(item, PassAll):
            continue
        if isinstance(item, FilterAnd):
            flat.extend(item.operands)
        else:
            flat.append(item)
    if not flat:
        return PassAll()
    if len(flat) == 1:
        return flat[0]
    return FilterAnd(tuple(flat))


def filter_any_of(items: list[FilterExpr]) -> FilterExpr:
    flat: list[FilterExpr] = []
    for item in items:
        if isinstance(item, PassAll):
            return PassAll()
        if isinstance(item, BlockAll):
            continue
        if isinstance(item, FilterOr):
            flat.extend(item.operands)
        else:
            flat.append(item)
    if not flat:
        return BlockAll()
    if len(flat) == 1:
        return flat[0]
    return FilterOr(tuple(flat))


def filter_negate(item: FilterExpr) -> FilterExpr:
    if isinstance(item, PassAll):
        return BlockAll()
    if isinstance(item, BlockAll):
        return PassAll()
    if isinstance(item, FilterUnresolved):
        return FilterUnresolved(item.kind, f"NOT {item.text}", item.default, item.related_entity)
    if isinstance(item, FilterNot):
        return item.operand
    return FilterNot(item)


def depends_on_actor(expr: FilterExpr | Unfilterable) -> bool:
    """Whether binding *expr* to an actor could change it."""
    if isinstance(expr, (Conditional, Unfilterable)):
        return True
    if isinstance(expr, (FilterAnd, FilterOr)):
        return any(depends_on_actor(op) for op in expr.operands)
    if isinstance(expr, FilterNot):
        return depends_on_actor(expr.operand)
    if isinstance(expr, (FieldEquals, FieldCompare)):
        return isinstance(expr.value, ActorField)
    if isinstance(expr, FieldIn):
        return isinstance(expr.values, ActorField)
    if isinstance(expr, FieldLike):
        return isinstance(expr.pattern, ActorField)
    if isinstance(expr, (RelationSome, RelationIs)):
        return depends_on_actor(expr.condition)
    return False

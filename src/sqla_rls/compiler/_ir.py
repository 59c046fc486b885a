"""Predicate IR — the boolean expression evaluated in memory against one record.

Operands name where a value comes from: a field of the record under
check (``RecordField``), a field of the acting principal (``ActorField``),
a constant (``Value``) or a constant set (``ValueSet``).  Paths are tuples
of attribute names and are navigated safely: a missing link yields null.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union

__all__ = [
    "ActorField",
    "AnyRelated",
    "CaseWhen",
    "Compare",
    "IsNull",
    "Membership",
    "Operand",
    "PredicateAnd",
    "PredicateConst",
    "PredicateExpr",
    "PredicateNot",
    "PredicateOr",
    "RecordField",
    "RoleCondition",
    "Unresolved",
    "Value",
    "ValueSet",
    "all_of",
    "any_of",
    "disjuncts",
    "is_role_only",
    "negate",
    "orient",
    "references_actor",
    "references_record",
]


@dataclass(frozen=True, slots=True)
class RecordField:
    path: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class ActorField:
    """A principal attribute, resolved from a context provider.

    ``source`` keeps the provider name (``get_current_user_id``) for
    explanations.
    """

    path: tuple[str, ...]
    source: str = ""


@dataclass(frozen=True, slots=True)
class Value:
    value: Any


@dataclass(frozen=True, slots=True)
class ValueSet:
    values: tuple[Any, ...]


Operand = Union[RecordField, ActorField, Value, ValueSet]


@dataclass(frozen=True, slots=True)
class PredicateConst:
    value: bool


@dataclass(frozen=True, slots=True)
class PredicateAnd:
    operands: tuple[PredicateExpr, ...]


@dataclass(frozen=True, slots=True)
class PredicateOr:
    operands: tuple[PredicateExpr, ...]


@dataclass(frozen=True, slots=True)
class PredicateNot:
    operand: PredicateExpr


@dataclass(frozen=True, slots=True)
class Compare:
    """``left <op> right``; *op* is ``=``, ``!=``, an ordering or a LIKE form."""

    op: str
    left: Operand
    right: Operand


@dataclass(frozen=True, slots=True)
class Membership:
    """``operand [NOT] IN values``; *values* is a ``ValueSet`` or a list-valued field."""

    operand: Operand
    values: Operand
    negated: bool = False


@dataclass(frozen=True, slots=True)
class IsNull:
    operand: Operand
    negated: bool = False


@dataclass(frozen=True, slots=True)
class AnyRelated:
    """True when some row reached through to-many *relation* satisfies *condition*.

    *condition* is evaluated with the related row as the record.  For
    junction traversal *join_fields* holds the composite key, own key
    first.
    """

    relation: str
    condition: PredicateExpr
    join_fields: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class CaseWhen:
    """First-match branch selection.

    With a *discriminant*, each branch key is an operand compared for
    equality; without one, each key is a condition.  No match selects
    *otherwise*.
    """

    discriminant: Operand | None
    branches: tuple[tuple[Any, PredicateExpr], ...]
    otherwise: PredicateExpr


@dataclass(frozen=True, slots=True)
class RoleCondition:
    """A condition over the actor alone (typically a role check)."""

    condition: PredicateExpr


@dataclass(frozen=True, slots=True)
class Unresolved:
    """A construct the compiler cannot translate; evaluates to *default*."""

    kind: str
    text: str
    default: bool
    related_entity: str | None = None


PredicateExpr = Union[
    PredicateConst,
    PredicateAnd,
    PredicateOr,
    PredicateNot,
    Compare,
    Membership,
    IsNull,
    AnyRelated,
    CaseWhen,
    RoleCondition,
    Unresolved,
]

TRUE = PredicateConst(True)
FALSE = PredicateConst(False)


def all_of(items: list[PredicateExpr] | tuple[PredicateExpr, ...]) -> PredicateExpr:
    """Conjoin *items*, flattening nested ANDs and folding constants."""
    flat: list[PredicateExpr] = []
    for item in items:
        if item == FALSE:
            return FALSE
        if item == TRUE:
            continue
        if isinstance(item, PredicateAnd):
            flat.extend(item.operands)
        else:
            flat.append(item)
    if not flat:
        return TRUE
    if len(flat) == 1:
        return flat[0]
    return PredicateAnd(tuple(flat))


def any_of(items: list[PredicateExpr] | tuple[PredicateExpr, ...]) -> PredicateExpr:
    """Disjoin *items*, flattening nested ORs and folding constants."""
    flat: list[PredicateExpr] = []
    for item in items:
        if item == TRUE:
            return TRUE
        if item == FALSE:
            continue
        if isinstance(item, PredicateOr):
            flat.extend(item.operands)
        else:
            flat.append(item)
    if not flat:
        return FALSE
    if len(flat) == 1:
        return flat[0]
    return PredicateOr(tuple(flat))


def negate(item: PredicateExpr) -> PredicateExpr:
    if isinstance(item, PredicateConst):
        return PredicateConst(not item.value)
    if isinstance(item, Unresolved):
        # Negating an untranslated construct keeps its default.
        return Unresolved(item.kind, f"NOT {item.text}", item.default, item.related_entity)
    if isinstance(item, PredicateNot):
        return item.operand
    return PredicateNot(item)


def disjuncts(expr: PredicateExpr) -> tuple[PredicateExpr, ...]:
    """Top-level OR branches of *expr* (the expression itself if not an OR)."""
    if isinstance(expr, PredicateOr):
        return expr.operands
    return (expr,)


def _operands(expr: Any) -> list[Any]:
    if isinstance(expr, (PredicateAnd, PredicateOr)):
        return list(expr.operands)
    if isinstance(expr, PredicateNot):
        return [expr.operand]
    if isinstance(expr, (RoleCondition, AnyRelated)):
        return [expr.condition]
    if isinstance(expr, Compare):
        return [expr.left, expr.right]
    if isinstance(expr, Membership):
        return [expr.operand, expr.values]
    if isinstance(expr, IsNull):
        return [expr.operand]
    if isinstance(expr, CaseWhen):
        found: list[Any] = [] if expr.discriminant is None else [expr.discriminant]
        for key, result in expr.branches:
            found.extend((key, result))
        found.append(expr.otherwise)
        return found
    return []


def references_record(expr: Any) -> bool:
    """Whether *expr* reads the record under check.

    ``Unresolved`` counts as a record reference: it stands for a data
    condition the compiler could not translate.
    """
    if isinstance(expr, (RecordField, AnyRelated, Unresolved)):
        return True
    return any(references_record(child) for child in _operands(expr))


def references_actor(expr: Any) -> bool:
    if isinstance(expr, ActorField):
        return True
    return any(references_actor(child) for child in _operands(expr))


def is_role_only(expr: PredicateExpr) -> bool:
    """Whether *expr* depends on the actor and never on the record."""
    return references_actor(expr) and not references_record(expr)


_FLIPPED = {"=": "=", "!=": "!=", "<": ">", ">": "<", "<=": ">=", ">=": "<="}


def orient(compare: Compare) -> Compare:
    """Put the record side of *compare* on the left when the operator allows it."""
    if isinstance(compare.left, RecordField) or not isinstance(compare.right, RecordField):
        return compare
    flipped = _FLIPPED.get(compare.op)
    if flipped is None:
        return compare
    return Compare(flipped, compare.right, compare.left)

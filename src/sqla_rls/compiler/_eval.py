"""In-memory evaluation of predicates and filters against one record.

Follows SQL three-valued logic: a comparison involving null is unknown,
unknown propagates through ``AND``/``OR``/``NOT`` the SQL way, and the
final answer treats unknown as "no access".  Records and actors may be
mappings, plain objects or mapped ORM instances; attribute paths are
navigated safely, a missing link yielding null.
"""

from __future__ import annotations

import logging
import operator
import re
from collections.abc import Iterable, Mapping
from typing import Any

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm.state import InstanceState

from sqla_rls._types import RecordLike
from sqla_rls.compiler._filters import (
    BlockAll,
    Conditional,
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
from sqla_rls.compiler._ir import (
    ActorField,
    AnyRelated,
    CaseWhen,
    Compare,
    IsNull,
    Membership,
    Operand,
    PredicateAnd,
    PredicateConst,
    PredicateExpr,
    PredicateNot,
    PredicateOr,
    RecordField,
    RoleCondition,
    Unresolved,
    Value,
    ValueSet,
)
from sqla_rls.config._config import CompilerConfig, get_global_config
from sqla_rls.exceptions import UnloadedRelationshipError, UnsupportedExpressionError

__all__ = ["evaluate", "evaluate_filter", "resolve_path"]

logger = logging.getLogger("sqla_rls.eval")

_OPERATOR_MAP: dict[str, Any] = {
    "=": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}

# (case_insensitive, negated) per LIKE operator.
_LIKE_OPERATORS: dict[str, tuple[bool, bool]] = {
    "LIKE": (False, False),
    "ILIKE": (True, False),
    "NOT LIKE": (False, True),
    "NOT ILIKE": (True, True),
}


def _sql_like_match(value: Any, pattern: Any, *, case_sensitive: bool = True) -> bool | None:
    """Match a value against a SQL LIKE pattern; unknown when either side is null.

    Converts SQL wildcards (``%`` → ``.*``, ``_`` → ``.``) to a Python
    regex and performs a full-string match.
    """
    if value is None or pattern is None:
        return None
    if not isinstance(value, str) or not isinstance(pattern, str):
        return False
    # Replace SQL wildcards BEFORE escaping so they aren't escaped away.
    _ph_pct = "\x00PCT\x00"
    _ph_usc = "\x00USC\x00"
    temp = pattern.replace("%", _ph_pct).replace("_", _ph_usc)
    regex = re.escape(temp).replace(_ph_pct, ".*").replace(_ph_usc, ".")
    flags = 0 if case_sensitive else re.IGNORECASE
    return re.fullmatch(regex, value, flags | re.DOTALL) is not None


# ---------------------------------------------------------------------------
# Value access
# ---------------------------------------------------------------------------


def _get(obj: Any, name: str, config: CompilerConfig) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(name)
    state = sa_inspect(obj, raiseerr=False)
    if isinstance(state, InstanceState) and name in state.mapper.relationships:
        if state.has_identity and name in state.unloaded:
            return _handle_unloaded_relationship(type(obj).__name__, name, config)
    return getattr(obj, name, None)


def _handle_unloaded_relationship(model_name: str, rel_name: str, config: CompilerConfig) -> None:
    """Handle an unloaded relationship per configuration; the value reads as null."""
    mode = config.on_unloaded_relationship

    if mode == "raise":
        raise UnloadedRelationshipError(model=model_name, relationship=rel_name)
    if mode == "warn":
        logger.warning(
            "Relationship '%s' on %s is not loaded; treating it as empty.",
            rel_name,
            model_name,
        )
    return None


def resolve_path(obj: Any, path: tuple[str, ...], config: CompilerConfig | None = None) -> Any:
    """Follow *path* from *obj*; null as soon as a link is missing."""
    cfg = config if config is not None else get_global_config()
    current = obj
    for name in path:
        if current is None:
            return None
        current = _get(current, name, cfg)
    return current


def _operand(operand: Operand, record: RecordLike, actor: Any, config: CompilerConfig) -> Any:
    if isinstance(operand, Value):
        return operand.value
    if isinstance(operand, ValueSet):
        return operand.values
    if isinstance(operand, RecordField):
        return resolve_path(record, operand.path, config)
    if isinstance(operand, ActorField):
        return resolve_path(actor, operand.path, config)
    raise UnsupportedExpressionError(f"Unsupported operand type: {type(operand).__name__}")


def _items(value: Any) -> list[Any] | None:
    if value is None:
        return None
    if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
        return [value]
    return list(value)


# ---------------------------------------------------------------------------
# Three-valued primitives
# ---------------------------------------------------------------------------


def _and(values: Iterable[bool | None]) -> bool | None:
    unknown = False
    for value in values:
        if value is False:
            return False
        if value is None:
            unknown = True
    return None if unknown else True


def _or(values: Iterable[bool | None]) -> bool | None:
    unknown = False
    for value in values:
        if value is True:
            return True
        if value is None:
            unknown = True
    return None if unknown else False


def _not(value: bool | None) -> bool | None:
    return None if value is None else not value


def _compare(op: str, left: Any, right: Any) -> bool | None:
    if op in _LIKE_OPERATORS:
        case_insensitive, negated = _LIKE_OPERATORS[op]
        matched = _sql_like_match(left, right, case_sensitive=not case_insensitive)
        return _not(matched) if negated else matched
    if left is None or right is None:
        return None
    py_op = _OPERATOR_MAP.get(op)
    if py_op is None:
        raise UnsupportedExpressionError(f"Unsupported comparison operator: {op}")
    try:
        return bool(py_op(left, right))
    except TypeError:
        # Incompatible types (e.g., str vs int) -- treat as non-match
        return False


def _member(value: Any, values: Any) -> bool | None:
    items = _items(values)
    if value is None or items is None:
        return None
    if value in items:
        return True
    if any(item is None for item in items):
        return None
    return False


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------


def _eval(expr: PredicateExpr, record: RecordLike, actor: Any, config: CompilerConfig) -> bool | None:
    if isinstance(expr, PredicateConst):
        return expr.value
    if isinstance(expr, PredicateAnd):
        return _and(_eval(op, record, actor, config) for op in expr.operands)
    if isinstance(expr, PredicateOr):
        return _or(_eval(op, record, actor, config) for op in expr.operands)
    if isinstance(expr, PredicateNot):
        return _not(_eval(expr.operand, record, actor, config))
    if isinstance(expr, RoleCondition):
        return _eval(expr.condition, record, actor, config)
    if isinstance(expr, Compare):
        return _compare(
            expr.op,
            _operand(expr.left, record, actor, config),
            _operand(expr.right, record, actor, config),
        )
    if isinstance(expr, Membership):
        found = _member(
            _operand(expr.operand, record, actor, config),
            _operand(expr.values, record, actor, config),
        )
        return _not(found) if expr.negated else found
    if isinstance(expr, IsNull):
        is_null = _operand(expr.operand, record, actor, config) is None
        return not is_null if expr.negated else is_null
    if isinstance(expr, AnyRelated):
        # EXISTS is two-valued: some related row must satisfy the condition.
        related = _items(resolve_path(record, (expr.relation,), config)) or []
        return any(_eval(expr.condition, row, actor, config) is True for row in related)
    if isinstance(expr, CaseWhen):
        return _eval_case(expr, record, actor, config)
    if isinstance(expr, Unresolved):
        return expr.default
    raise UnsupportedExpressionError(f"Unsupported predicate type: {type(expr).__name__}")


def _eval_case(expr: CaseWhen, record: RecordLike, actor: Any, config: CompilerConfig) -> bool | None:
    if expr.discriminant is None:
        for condition, result in expr.branches:
            if _eval(condition, record, actor, config) is True:
                return _eval(result, record, actor, config)
        return _eval(expr.otherwise, record, actor, config)

    subject = _operand(expr.discriminant, record, actor, config)
    for key, result in expr.branches:
        if _compare("=", subject, _operand(key, record, actor, config)) is True:
            return _eval(result, record, actor, config)
    return _eval(expr.otherwise, record, actor, config)


def evaluate(
    expr: PredicateExpr,
    record: RecordLike,
    actor: Any,
    config: CompilerConfig | None = None,
) -> bool:
    """Evaluate a compiled predicate for one record and actor.

    Args:
        expr: A ``PredicateExpr`` (``CompiledPredicate.expr``).
        record: The row under check; ``None`` for actor-only conditions.
        actor: The acting principal.
        config: Controls unloaded-relationship handling; the global
            config when omitted.

    Returns:
        ``True`` only when the predicate is true; false and unknown both
        deny.

    Raises:
        UnloadedRelationshipError: If a relationship is not loaded and
            ``on_unloaded_relationship`` is ``"raise"``.
        UnsupportedExpressionError: If the expression contains unknown nodes.
    """
    cfg = config if config is not None else get_global_config()
    return _eval(expr, record, actor, cfg) is True


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------


def _eval_filter(expr: Any, record: RecordLike, actor: Any, config: CompilerConfig) -> bool | None:
    if isinstance(expr, PassAll):
        return True
    if isinstance(expr, BlockAll):
        return False
    if isinstance(expr, FilterAnd):
        return _and(_eval_filter(op, record, actor, config) for op in expr.operands)
    if isinstance(expr, FilterOr):
        return _or(_eval_filter(op, record, actor, config) for op in expr.operands)
    if isinstance(expr, FilterNot):
        return _not(_eval_filter(expr.operand, record, actor, config))
    if isinstance(expr, FieldEquals):
        return _compare(
            "=",
            resolve_path(record, (expr.field,), config),
            _operand(expr.value, record, actor, config),
        )
    if isinstance(expr, FieldCompare):
        return _compare(
            expr.op,
            resolve_path(record, (expr.field,), config),
            _operand(expr.value, record, actor, config),
        )
    if isinstance(expr, FieldIn):
        return _member(
            resolve_path(record, (expr.field,), config),
            _operand(expr.values, record, actor, config),
        )
    if isinstance(expr, FieldIsNull):
        return resolve_path(record, (expr.field,), config) is None
    if isinstance(expr, FieldLike):
        return _sql_like_match(
            resolve_path(record, (expr.field,), config),
            _operand(expr.pattern, record, actor, config),
            case_sensitive=not expr.case_insensitive,
        )
    if isinstance(expr, RelationSome):
        related = _items(resolve_path(record, (expr.relation,), config)) or []
        return any(_eval_filter(expr.condition, row, actor, config) is True for row in related)
    if isinstance(expr, RelationIs):
        related = resolve_path(record, (expr.relation,), config)
        if related is None:
            return False
        return _eval_filter(expr.condition, related, actor, config) is True
    if isinstance(expr, Conditional):
        branch = expr.then if _eval(expr.when, None, actor, config) is True else expr.otherwise
        return _eval_filter(branch, record, actor, config)
    if isinstance(expr, FilterUnresolved):
        return expr.default
    if isinstance(expr, Unfilterable):
        return _eval(expr.condition, None, actor, config) is True
    raise UnsupportedExpressionError(f"Unsupported filter type: {type(expr).__name__}")


def evaluate_filter(
    expr: FilterExpr | Unfilterable,
    record: RecordLike,
    actor: Any,
    config: CompilerConfig | None = None,
) -> bool:
    """Whether *record* passes filter *expr* for *actor*.

    The in-memory counterpart of rendering the filter to SQL and checking
    whether the row comes back.
    """
    cfg = config if config is not None else get_global_config()
    return _eval_filter(expr, record, actor, cfg) is True

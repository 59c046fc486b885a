"""Filter backend: translate a policy AST into a data-narrowing filter.

The policy is first compiled to a predicate, then lowered node by node.
Conditions over the actor alone have no per-row meaning; they become
``Unfilterable`` markers that the enclosing construct resolves:

* under ``OR`` they turn into a ``Conditional`` (pass everything when the
  role condition holds, otherwise the data branches);
* under a top-level ``AND`` they are kept as ``CompiledFilter.role_checks``
  and enforced when the filter is bound to an actor;
* under a nested ``AND`` they become a ``Conditional`` that applies the
  sibling conditions when the role condition holds and blocks otherwise.

Both ``AND`` cases are reported as a ``role_split`` diagnostic.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from sqla_rls._types import Operation
from sqla_rls.compiler._diagnostics import Diagnostic
from sqla_rls.compiler._eval import _items, evaluate, resolve_path
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
    filter_all_of,
    filter_any_of,
    filter_negate,
)
from sqla_rls.compiler._format import format_predicate
from sqla_rls.compiler._ir import (
    ActorField,
    AnyRelated,
    CaseWhen,
    Compare,
    IsNull,
    Membership,
    Operand,
    PredicateAnd,
    PredicateExpr,
    PredicateNot,
    PredicateOr,
    RecordField,
    RoleCondition,
    Unresolved,
    Value,
    ValueSet,
    all_of,
    any_of,
    is_role_only,
    negate,
    orient,
    references_actor,
    references_record,
)
from sqla_rls.compiler._predicate import PredicateCompiler
from sqla_rls.compiler._scope import CompileScope
from sqla_rls.config._config import CompilerConfig, get_global_config
from sqla_rls.context._mapping import ContextMapping
from sqla_rls.exceptions import UnsupportedExpressionError
from sqla_rls.parser._ast import Node
from sqla_rls.schema._graph import SchemaGraph

__all__ = ["CompiledFilter", "bind_filter", "compile_filter"]

_LIKE = {"LIKE": (False, False), "ILIKE": (True, False), "NOT LIKE": (False, True), "NOT ILIKE": (True, True)}


@dataclass(frozen=True, slots=True)
class CompiledFilter:
    """Output of :func:`compile_filter`.

    Attributes:
        expr: The filter, or ``Unfilterable`` when the whole policy is a
            role check.
        diagnostics: Findings recorded while compiling.
        role_checks: Role conditions removed from top-level ``AND``
            positions; all must hold for the actor or nothing is visible.
    """

    expr: FilterExpr | Unfilterable
    diagnostics: tuple[Diagnostic, ...] = ()
    role_checks: tuple[PredicateExpr, ...] = ()

    def for_actor(self, actor: Any, config: CompilerConfig | None = None) -> FilterExpr:
        """Enforce the role checks and bind the filter to *actor*.

        Example::

            flt = compiled.for_actor(current_user)
            session.scalars(select(Post).where(to_sqlalchemy(flt, Post)))
        """
        for check in self.role_checks:
            if not evaluate(check, None, actor, config):
                return BlockAll()
        return bind_filter(self.expr, actor, config)


def _strip(condition: PredicateExpr) -> PredicateExpr:
    while isinstance(condition, RoleCondition):
        condition = condition.condition
    return condition


def _data(lowered: FilterExpr | Unfilterable) -> FilterExpr:
    """Exact filter form of a lowered node, turning a role marker into a Conditional."""
    if isinstance(lowered, Unfilterable):
        return Conditional(lowered.condition, PassAll(), BlockAll())
    return lowered


def _at(path: tuple[str, ...], leaf: Callable[[str], FilterExpr]) -> FilterExpr:
    result = leaf(path[-1])
    for relation in reversed(path[:-1]):
        result = RelationIs(relation, result)
    return result


def _null_at(path: tuple[str, ...]) -> FilterExpr:
    # A missing to-one link reads as null, so it satisfies IS NULL.
    if len(path) == 1:
        return FieldIsNull(path[0])
    return filter_any_of(
        [
            filter_negate(RelationIs(path[0], PassAll())),
            RelationIs(path[0], _null_at(path[1:])),
        ]
    )


class FilterLowering:
    """Lower a ``PredicateExpr`` into a ``FilterExpr``."""

    def __init__(self, scope: CompileScope) -> None:
        self.scope = scope
        self.role_checks: list[PredicateExpr] = []

    def lower(self, expr: PredicateExpr, *, top: bool = False) -> FilterExpr | Unfilterable:
        if is_role_only(expr):
            return Unfilterable(_strip(expr))
        if not references_record(expr) and not references_actor(expr):
            return PassAll() if evaluate(expr, None, None, self.scope.config) else BlockAll()
        if isinstance(expr, PredicateAnd):
            return self._and(expr, top)
        if isinstance(expr, PredicateOr):
            return self._or(expr)
        if isinstance(expr, PredicateNot):
            inner = self.lower(expr.operand)
            if isinstance(inner, Unfilterable):
                return Unfilterable(negate(inner.condition))
            return filter_negate(inner)
        if isinstance(expr, RoleCondition):
            return self.lower(expr.condition, top=top)
        if isinstance(expr, Unresolved):
            return FilterUnresolved(expr.kind, expr.text, expr.default, expr.related_entity)
        if isinstance(expr, Compare):
            return self._compare(orient(expr))
        if isinstance(expr, Membership):
            return self._membership(expr)
        if isinstance(expr, IsNull):
            if not isinstance(expr.operand, RecordField):
                return self._inexpressible(expr)
            is_null = _null_at(expr.operand.path)
            return filter_negate(is_null) if expr.negated else is_null
        if isinstance(expr, AnyRelated):
            return RelationSome(expr.relation, _data(self.lower(expr.condition)), expr.join_fields)
        if isinstance(expr, CaseWhen):
            return self._case(expr)
        raise UnsupportedExpressionError(f"Unsupported predicate type: {type(expr).__name__}")

    def _inexpressible(self, expr: PredicateExpr) -> FilterUnresolved:
        text = format_predicate(expr)
        default = self.scope.config.fail_open
        self.scope.note(
            "unresolved_construct",
            text,
            f"No row filter form for this comparison; filtered as {'allow' if default else 'deny'}",
        )
        return FilterUnresolved("comparison", text, default)

    def _or(self, expr: PredicateOr) -> FilterExpr | Unfilterable:
        parts = [self.lower(op) for op in expr.operands]
        roles = [p.condition for p in parts if isinstance(p, Unfilterable)]
        data = [p for p in parts if not isinstance(p, Unfilterable)]
        if not roles:
            return filter_any_of(data)
        if not data:
            return Unfilterable(any_of(roles))
        self.scope.note(
            "role_split",
            format_predicate(expr),
            "Role branches split from data branches; the row filter is conditional on the actor",
        )
        return Conditional(any_of(roles), PassAll(), filter_any_of(data))

    def _and(self, expr: PredicateAnd, top: bool) -> FilterExpr | Unfilterable:
        parts = [self.lower(op, top=top) for op in expr.operands]
        roles = [p.condition for p in parts if isinstance(p, Unfilterable)]
        data = [p for p in parts if not isinstance(p, Unfilterable)]
        if not data:
            return Unfilterable(all_of(roles))
        if not roles:
            return filter_all_of(data)
        if top:
            self.role_checks.extend(roles)
            self.scope.note(
                "role_split",
                format_predicate(all_of(roles)),
                "Role condition removed from the row filter; enforced as a runtime role check",
            )
            return filter_all_of(data)
        # Nested: the data conditions apply only to actors passing the role check.
        self.scope.note(
            "role_split",
            format_predicate(all_of(roles)),
            "Role condition nested in the row filter; the filter is conditional on the actor",
        )
        return Conditional(all_of(roles), filter_all_of(data), BlockAll())

    def _compare(self, expr: Compare) -> FilterExpr:
        left, right = expr.left, expr.right
        if not isinstance(left, RecordField) or not isinstance(right, (ActorField, Value)):
            return self._inexpressible(expr)
        op = expr.op
        if op == "=":
            return _at(left.path, lambda field: FieldEquals(field, right))
        if op in _LIKE:
            case_insensitive, negated = _LIKE[op]

            def like(field: str) -> FilterExpr:
                matched = FieldLike(field, right, case_insensitive)
                return FilterNot(matched) if negated else matched

            return _at(left.path, like)
        return _at(left.path, lambda field: FieldCompare(field, op, right))

    def _membership(self, expr: Membership) -> FilterExpr:
        operand, values = expr.operand, expr.values
        if not isinstance(operand, RecordField) or not isinstance(values, (ValueSet, ActorField)):
            return self._inexpressible(expr)

        def member(field: str) -> FilterExpr:
            found = FieldIn(field, values)
            return FilterNot(found) if expr.negated else found

        return _at(operand.path, member)

    def _case(self, expr: CaseWhen) -> FilterExpr | Unfilterable:
        whens: list[PredicateExpr] = []
        for key, _ in expr.branches:
            if expr.discriminant is None:
                whens.append(key)
            else:
                whens.append(orient(Compare("=", expr.discriminant, key)))
        results = [result for _, result in expr.branches]

        if all(is_role_only(when) for when in whens):
            chained = _data(self.lower(expr.otherwise))
            for when, result in reversed(list(zip(whens, results))):
                chained = Conditional(_strip(when), _data(self.lower(result)), chained)
            self.scope.note(
                "role_split",
                format_predicate(expr),
                "CASE over actor values compiled to a conditional row filter",
            )
            return chained

        # First match wins: each arm excludes rows matched by earlier arms.
        arms: list[FilterExpr] = []
        excluded: list[FilterExpr] = []
        for when, result in zip(whens, results):
            matched = _data(self.lower(when))
            arms.append(filter_all_of([*excluded, matched, _data(self.lower(result))]))
            excluded.append(self._unmatched(when, matched))
        arms.append(filter_all_of([*excluded, _data(self.lower(expr.otherwise))]))
        return filter_any_of(arms)

    def _unmatched(self, when: PredicateExpr, matched: FilterExpr) -> FilterExpr:
        if isinstance(when, Compare) and isinstance(when.left, RecordField):
            # A null discriminant matches no arm and falls through.
            return filter_any_of([filter_negate(matched), _null_at(when.left.path)])
        return filter_negate(matched)


def compile_filter(
    ast: Node,
    mapping: ContextMapping,
    graph: SchemaGraph,
    entity: str,
    *,
    operation: Operation = "select",
    config: CompilerConfig | None = None,
) -> CompiledFilter:
    """Compile a parsed policy into a data-narrowing filter.

    Takes the same arguments as :func:`compile_predicate`.  Diagnostics
    include those the predicate backend reports for the same policy.

    Raises:
        SchemaResolutionError: If a referenced field cannot be located.

    Example::

        compiled = compile_filter(
            parse("get_current_user_role() IN ('admin','mod') OR owner_id = get_current_user_id()",
                  "Post"),
            ContextMapping(), graph, "Post",
        )
        compiled.expr
        # Conditional(when=Membership(ActorField(('role',)), ...), then=PassAll(),
        #             otherwise=FieldEquals('owner_id', ActorField(('id',))))
    """
    scope = CompileScope(
        mapping=mapping,
        graph=graph,
        entity=entity,
        operation=operation,
        config=config if config is not None else get_global_config(),
    )
    predicate = PredicateCompiler(scope).compile(ast)
    lowering = FilterLowering(scope)
    expr = lowering.lower(predicate, top=True)
    return CompiledFilter(
        expr=expr,
        diagnostics=tuple(scope.diagnostics),
        role_checks=tuple(lowering.role_checks),
    )


# ---------------------------------------------------------------------------
# Binding
# ---------------------------------------------------------------------------


def _bind_operand(operand: Operand, actor: Any, config: CompilerConfig) -> Operand:
    if isinstance(operand, ActorField):
        return Value(resolve_path(actor, operand.path, config))
    return operand


def _bind(expr: Any, actor: Any, config: CompilerConfig) -> FilterExpr:
    if isinstance(expr, Unfilterable):
        return PassAll() if evaluate(expr.condition, None, actor, config) else BlockAll()
    if isinstance(expr, Conditional):
        chosen = expr.then if evaluate(expr.when, None, actor, config) else expr.otherwise
        return _bind(chosen, actor, config)
    if isinstance(expr, FilterAnd):
        return filter_all_of([_bind(op, actor, config) for op in expr.operands])
    if isinstance(expr, FilterOr):
        return filter_any_of([_bind(op, actor, config) for op in expr.operands])
    if isinstance(expr, FilterNot):
        return filter_negate(_bind(expr.operand, actor, config))
    if isinstance(expr, FieldEquals):
        return FieldEquals(expr.field, _bind_operand(expr.value, actor, config))
    if isinstance(expr, FieldCompare):
        return FieldCompare(expr.field, expr.op, _bind_operand(expr.value, actor, config))
    if isinstance(expr, FieldLike):
        return FieldLike(expr.field, _bind_operand(expr.pattern, actor, config), expr.case_insensitive)
    if isinstance(expr, FieldIn):
        if isinstance(expr.values, ActorField):
            items = _items(resolve_path(actor, expr.values.path, config))
            # A null actor value behaves like IN (NULL).
            return FieldIn(expr.field, ValueSet(tuple(items) if items is not None else (None,)))
        return expr
    if isinstance(expr, RelationSome):
        return RelationSome(expr.relation, _bind(expr.condition, actor, config), expr.join_fields)
    if isinstance(expr, RelationIs):
        return RelationIs(expr.relation, _bind(expr.condition, actor, config))
    if isinstance(expr, (PassAll, BlockAll, FieldIsNull, FilterUnresolved)):
        return expr
    raise UnsupportedExpressionError(f"Unsupported filter type: {type(expr).__name__}")


def bind_filter(
    expr: FilterExpr | Unfilterable,
    actor: Any,
    config: CompilerConfig | None = None,
) -> FilterExpr:
    """Resolve every actor reference in *expr* for one actor.

    ``Conditional`` nodes pick a branch, ``ActorField`` operands become
    ``Value`` operands, and an ``Unfilterable`` role check becomes
    ``PassAll`` or ``BlockAll``.  The result depends on rows only.
    """
    cfg = config if config is not None else get_global_config()
    return _bind(expr, actor, cfg)

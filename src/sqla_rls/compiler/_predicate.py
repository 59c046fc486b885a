"""Predicate backend: translate a policy AST into an in-memory predicate."""

from __future__ import annotations

from dataclasses import dataclass

from sqla_rls._types import Operation
from sqla_rls.compiler._diagnostics import Diagnostic
from sqla_rls.compiler._ir import (
    FALSE,
    ActorField,
    AnyRelated,
    CaseWhen,
    Compare,
    IsNull,
    Membership,
    Operand,
    PredicateConst,
    PredicateExpr,
    RecordField,
    RoleCondition,
    Unresolved,
    Value,
    ValueSet,
    all_of,
    any_of,
    disjuncts,
    is_role_only,
    negate,
    orient,
)
from sqla_rls.compiler._scope import CompileScope
from sqla_rls.config._config import CompilerConfig, get_global_config
from sqla_rls.context._mapping import ContextMapping
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
from sqla_rls.parser._format import format_expression
from sqla_rls.schema._graph import SchemaGraph
from sqla_rls.schema._resolver import Direct, ViaJunction, ViaRelation

__all__ = ["CompiledPredicate", "compile_predicate"]


@dataclass(frozen=True, slots=True)
class CompiledPredicate:
    """Output of :func:`compile_predicate`.

    Attributes:
        expr: The predicate expression.
        diagnostics: Findings recorded while compiling.
        grants_by_role: Whether some top-level OR branch depends on the
            actor alone, i.e. access can be granted by role regardless
            of the row.
    """

    expr: PredicateExpr
    diagnostics: tuple[Diagnostic, ...] = ()
    grants_by_role: bool = False


@dataclass(frozen=True, slots=True)
class _Side:
    """A translated comparison operand and the to-many hop needed to reach it."""

    operand: Operand
    relation: str | None = None
    join_fields: tuple[str, ...] = ()


class PredicateCompiler:
    """Recursive translation of AST nodes into ``PredicateExpr``."""

    def __init__(self, scope: CompileScope) -> None:
        self.scope = scope

    def compile(self, node: Node) -> PredicateExpr:
        if isinstance(node, Or):
            return any_of([self.compile(operand) for operand in node.operands])
        if isinstance(node, And):
            return all_of([self.compile(operand) for operand in node.operands])
        if isinstance(node, Not):
            if isinstance(node.operand, Exists):
                return self._unresolved(node, "exists", node.operand.source_entity)
            if isinstance(node.operand, Subquery):
                return self._unresolved(node, "subquery", node.operand.source_entity)
            return negate(self.compile(node.operand))
        result = self._condition(node)
        if is_role_only(result):
            return RoleCondition(result)
        return result

    def _condition(self, node: Node) -> PredicateExpr:
        if isinstance(node, Literal):
            if node.kind == "boolean":
                return PredicateConst(bool(node.value))
            if node.kind == "null":
                return FALSE
            return self._unresolved(node, "expression")
        if isinstance(node, Comparison):
            return self._comparison(node)
        if isinstance(node, Case):
            return self._case(node)
        if isinstance(node, Exists):
            return self._unresolved(node, "exists", node.source_entity)
        if isinstance(node, Subquery):
            return self._unresolved(node, "subquery", node.source_entity)
        if isinstance(node, FunctionCall) and node.args:
            return self._unresolved(node, "function")
        if isinstance(node, (ColumnRef, FunctionCall, SessionSetting)):
            # A bare boolean column or provider.
            side = self._side(node)
            if side is None:
                return self._unresolved(node, "expression")
            return self._through(side, Compare("=", side.operand, Value(True)))
        return self._unresolved(node, "expression")

    def _unresolved(self, node: Node, kind: str, related_entity: str | None = None) -> Unresolved:
        text, default = self.scope.unresolved(node, kind, related_entity)
        return Unresolved(kind, text, default, related_entity)

    def _side(self, node: Node, *, actor_first: bool = False) -> _Side | None:
        if isinstance(node, Literal):
            return _Side(Value(node.value))
        if isinstance(node, ArrayLiteral):
            if all(isinstance(item, Literal) for item in node.items):
                return _Side(ValueSet(tuple(item.value for item in node.items)))  # type: ignore[union-attr]
            return None
        if isinstance(node, FunctionCall):
            if node.args:
                return None
            return _Side(self.scope.actor_field(node.name, format_expression(node)))
        if isinstance(node, SessionSetting):
            return _Side(self.scope.actor_field(node.key, format_expression(node)))
        if not isinstance(node, ColumnRef):
            return None

        located = self.scope.locate(node, actor_first=actor_first)
        if isinstance(located, ActorField):
            return _Side(located)
        if isinstance(located, Direct):
            return _Side(RecordField((located.field,)))
        if isinstance(located, ViaRelation):
            if located.cardinality == "one":
                return _Side(RecordField((located.relation, located.field)))
            return _Side(RecordField((located.field,)), located.relation)
        if isinstance(located, ViaJunction):
            return _Side(
                RecordField((located.related_field,)), located.relation, located.join_fields
            )
        return None

    @staticmethod
    def _through(side: _Side, condition: PredicateExpr) -> PredicateExpr:
        if side.relation is None:
            return condition
        return AnyRelated(side.relation, condition, side.join_fields)

    def _comparison(self, node: Comparison) -> PredicateExpr:
        op = node.operator
        if op in ("IS", "IS NOT"):
            side = self._side(node.left)
            if side is None:
                return self._unresolved(node, "comparison")
            return self._through(side, IsNull(side.operand, negated=op == "IS NOT"))

        if op in ("IN", "NOT IN"):
            return self._membership(node)

        left = self._side(node.left)
        right = self._side(node.right)
        if left is None or right is None:
            return self._unresolved(node, "comparison")
        if left.relation is not None and right.relation is not None:
            return self._unresolved(node, "comparison")
        hop = left if left.relation is not None else right
        other = right if hop is left else left
        if hop.relation is not None and isinstance(other.operand, RecordField):
            # The related row cannot see fields of the outer row.
            return self._unresolved(node, "comparison")
        compare = orient(Compare(op, left.operand, right.operand))
        return self._through(hop, compare)

    def _membership(self, node: Comparison) -> PredicateExpr:
        negated = node.operator == "NOT IN"
        right = node.right
        if isinstance(right, Subquery):
            return self._unresolved(node, "subquery", right.source_entity)
        if isinstance(right, ArrayLiteral) and not all(isinstance(i, Literal) for i in right.items):
            branches = [self.compile(Comparison("=", node.left, item)) for item in right.items]
            matched = any_of(branches)
            return negate(matched) if negated else matched

        left = self._side(node.left)
        values = self._side(right)
        if left is None or values is None or values.relation is not None:
            return self._unresolved(node, "comparison")
        if left.relation is not None and isinstance(values.operand, RecordField):
            return self._unresolved(node, "comparison")
        return self._through(left, Membership(left.operand, values.operand, negated))

    def _case(self, node: Case) -> PredicateExpr:
        discriminant: Operand | None = None
        keys: list[Operand] = []
        if node.discriminant is not None:
            # A CASE discriminant names an actor value when a provider matches.
            side = self._side(node.discriminant, actor_first=True)
            if side is None or side.relation is not None:
                return self._unresolved(node, "case")
            discriminant = side.operand
            for key, _ in node.branches:
                key_side = self._side(key)
                if key_side is None or key_side.relation is not None:
                    return self._unresolved(node, "case")
                keys.append(key_side.operand)

        branches: list[tuple[object, PredicateExpr]] = []
        for index, (key, result) in enumerate(node.branches):
            branch_key = keys[index] if discriminant is not None else self.compile(key)
            branches.append((branch_key, self.compile(result)))
        otherwise = FALSE if node.otherwise is None else self.compile(node.otherwise)
        return CaseWhen(discriminant, tuple(branches), otherwise)


def compile_predicate(
    ast: Node,
    mapping: ContextMapping,
    graph: SchemaGraph,
    entity: str,
    *,
    operation: Operation = "select",
    config: CompilerConfig | None = None,
) -> CompiledPredicate:
    """Compile a parsed policy into an in-memory predicate.

    Args:
        ast: Parsed policy expression.
        mapping: Resolves context providers to principal fields.
        graph: Schema the policy's field references resolve against.
        entity: Entity the policy protects.
        operation: Operation the policy gates; recorded on diagnostics.
        config: Compiler options; the global config when omitted.

    Raises:
        SchemaResolutionError: If a referenced field cannot be located.

    Example::

        compiled = compile_predicate(parse("owner_id = current_user_id()", "Post"),
                                     ContextMapping(), graph, "Post")
        evaluate(compiled.expr, post, user)
    """
    scope = CompileScope(
        mapping=mapping,
        graph=graph,
        entity=entity,
        operation=operation,
        config=config if config is not None else get_global_config(),
    )
    expr = PredicateCompiler(scope).compile(ast)
    return CompiledPredicate(
        expr=expr,
        diagnostics=tuple(scope.diagnostics),
        grants_by_role=any(is_role_only(branch) for branch in disjuncts(expr)),
    )

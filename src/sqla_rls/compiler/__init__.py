"""Compiler backends: in-memory predicates and data-narrowing filters."""

from sqla_rls.compiler._diagnostics import Diagnostic, dedupe
from sqla_rls.compiler._eval import evaluate, evaluate_filter
from sqla_rls.compiler._filter import CompiledFilter, bind_filter, compile_filter
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
from sqla_rls.compiler._format import format_filter, format_predicate
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
from sqla_rls.compiler._predicate import CompiledPredicate, compile_predicate
from sqla_rls.compiler._sqla import to_sqlalchemy

__all__ = [
    "ActorField",
    "AnyRelated",
    "BlockAll",
    "CaseWhen",
    "Compare",
    "CompiledFilter",
    "CompiledPredicate",
    "Conditional",
    "Diagnostic",
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
    "IsNull",
    "Membership",
    "Operand",
    "PassAll",
    "PredicateAnd",
    "PredicateConst",
    "PredicateExpr",
    "PredicateNot",
    "PredicateOr",
    "RecordField",
    "RelationIs",
    "RelationSome",
    "RoleCondition",
    "Unfilterable",
    "Unresolved",
    "Value",
    "ValueSet",
    "bind_filter",
    "compile_filter",
    "compile_predicate",
    "dedupe",
    "evaluate",
    "evaluate_filter",
    "format_filter",
    "format_predicate",
    "to_sqlalchemy",
]

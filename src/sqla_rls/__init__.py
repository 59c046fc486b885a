"""sqla-rls — compile row-level security policies for SQLAlchemy applications.

Parses database row-level security policy expressions and compiles each
into two forms: an in-memory predicate for single-record checks and a
row filter rendered as a SQLAlchemy WHERE clause.

Example::

    from sqla_rls import ContextMapping, PolicyRegistry, compile_policies, graph_from_models

    registry = PolicyRegistry()
    registry.register("Post", "owner_or_staff", command="select",
                      using="get_current_user_role() IN ('admin', 'mod') "
                            "OR owner_id = get_current_user_id()")
    result = compile_policies(registry, ContextMapping(), graph_from_models(Base))

    stmt = select(Post).where(result.get("Post", "select").where(Post, current_user))
"""

from importlib.metadata import PackageNotFoundError, version

from sqla_rls._checks import authorize, can
from sqla_rls.compiler import (
    CompiledFilter,
    CompiledPredicate,
    Diagnostic,
    bind_filter,
    compile_filter,
    compile_predicate,
    evaluate,
    to_sqlalchemy,
)
from sqla_rls.config._config import CompilerConfig, configure
from sqla_rls.context import ContextMapping, FieldPath, discover_mappings
from sqla_rls.exceptions import (
    AccessDenied,
    NoPolicyError,
    PolicyCompilationError,
    PolicySyntaxError,
    RLSError,
    SchemaResolutionError,
)
from sqla_rls.explain import PolicyExplanation, explain_policy
from sqla_rls.parser import parse
from sqla_rls.policy import BuildResult, CompiledPolicy, PolicyRegistry, PolicySource, compile_policies
from sqla_rls.schema import RelationshipResolver, SchemaGraph, graph_from_models

try:
    __version__ = version("sqla-rls")
except PackageNotFoundError:
    __version__ = "dev"

__all__ = [
    "__version__",
    "AccessDenied",
    "BuildResult",
    "CompiledFilter",
    "CompiledPolicy",
    "CompiledPredicate",
    "CompilerConfig",
    "ContextMapping",
    "Diagnostic",
    "FieldPath",
    "NoPolicyError",
    "PolicyCompilationError",
    "PolicyExplanation",
    "PolicyRegistry",
    "PolicySource",
    "PolicySyntaxError",
    "RLSError",
    "RelationshipResolver",
    "SchemaGraph",
    "SchemaResolutionError",
    "authorize",
    "bind_filter",
    "can",
    "compile_filter",
    "compile_policies",
    "compile_predicate",
    "configure",
    "discover_mappings",
    "evaluate",
    "explain_policy",
    "graph_from_models",
    "parse",
    "to_sqlalchemy",
]

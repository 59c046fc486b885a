"""explain_policy() — describe how a compiled (entity, operation) is enforced."""

from __future__ import annotations

from typing import Any

from sqla_rls.compiler._filters import depends_on_actor
from sqla_rls.compiler._format import format_filter, format_predicate
from sqla_rls.compiler._sqla import to_sqlalchemy
from sqla_rls.explain._models import PolicyExplanation
from sqla_rls.parser._format import format_expression
from sqla_rls.policy._base import CompiledPolicy

__all__ = ["explain_policy"]


def _compile_sql(expr: object) -> str:
    """Compile a SQLAlchemy expression to SQL with literal binds."""
    return str(expr.compile(compile_kwargs={"literal_binds": True}))  # type: ignore[union-attr]


def explain_policy(
    compiled: CompiledPolicy,
    model: type | None = None,
    actor: Any = None,
) -> PolicyExplanation:
    """Explain a compiled policy.

    Args:
        compiled: An entry of ``BuildResult``.
        model: Mapped class; when given, the filter SQL is included.
        actor: When given, the SQL is rendered for this actor.  Without
            one, SQL is only rendered for filters that do not depend on
            the actor.

    Returns:
        A ``PolicyExplanation``; ``str()`` gives a readable report.

    Example::

        print(explain_policy(result.get("Post", "select"), Post))
    """
    filter_sql: str | None = None
    if model is not None:
        if actor is not None:
            filter_sql = _compile_sql(to_sqlalchemy(compiled.filter_for(actor), model))
        elif not compiled.filter.role_checks and not depends_on_actor(compiled.filter.expr):
            filter_sql = _compile_sql(to_sqlalchemy(compiled.filter.expr, model))

    return PolicyExplanation(
        entity=compiled.entity,
        operation=compiled.operation,
        policies=compiled.policies,
        expression=format_expression(compiled.ast),
        predicate=format_predicate(compiled.predicate.expr),
        filter=format_filter(compiled.filter.expr),
        role_checks=tuple(format_predicate(check) for check in compiled.filter.role_checks),
        grants_by_role=compiled.grants_by_role,
        deny_by_default=compiled.deny_by_default,
        diagnostics=compiled.diagnostics,
        filter_sql=filter_sql,
    )

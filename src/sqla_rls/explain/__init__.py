"""Explanations of compiled policies."""

from sqla_rls.compiler._format import format_filter, format_predicate
from sqla_rls.explain._models import PolicyExplanation
from sqla_rls.explain._policy import explain_policy

__all__ = ["PolicyExplanation", "explain_policy", "format_filter", "format_predicate"]

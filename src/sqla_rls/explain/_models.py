"""Data models for policy explanations."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqla_rls.compiler._diagnostics import Diagnostic

__all__ = ["PolicyExplanation"]


@dataclass(frozen=True, slots=True)
class PolicyExplanation:
    """How one (entity, operation) is enforced.

    Attributes:
        entity: Entity name.
        operation: The gated operation.
        policies: Names of the contributing policy sources.
        expression: Canonical text of the combined policy expression.
        predicate: Rendered in-memory predicate.
        filter: Rendered row filter.
        role_checks: Rendered role conditions enforced at bind time.
        grants_by_role: Whether a role alone can grant access.
        deny_by_default: True if no policy covers the operation.
        diagnostics: Diagnostics of both backends.
        filter_sql: SQL for the filter with the actor unresolved, when a
            model was given and the filter has no actor dependence.
    """

    entity: str
    operation: str
    policies: tuple[str, ...]
    expression: str
    predicate: str
    filter: str
    role_checks: tuple[str, ...]
    grants_by_role: bool
    deny_by_default: bool
    diagnostics: tuple[Diagnostic, ...]
    filter_sql: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serializable dictionary."""
        return {
            "entity": self.entity,
            "operation": self.operation,
            "policies": list(self.policies),
            "expression": self.expression,
            "predicate": self.predicate,
            "filter": self.filter,
            "role_checks": list(self.role_checks),
            "grants_by_role": self.grants_by_role,
            "deny_by_default": self.deny_by_default,
            "diagnostics": [d.to_dict() for d in self.diagnostics],
            "filter_sql": self.filter_sql,
        }

    def __str__(self) -> str:
        """Return a human-readable multi-line explanation."""
        lines: list[str] = [f"Policy Explanation for {self.entity}.{self.operation}"]
        if self.deny_by_default:
            lines.append("  DENY BY DEFAULT (no policies registered)")
            return "\n".join(lines)
        lines.append(f"  Policies: {', '.join(self.policies)}")
        lines.append(f"  Expression: {self.expression}")
        lines.append(f"  Predicate: {self.predicate}")
        lines.append(f"  Filter: {self.filter}")
        for check in self.role_checks:
            lines.append(f"  Role check: {check}")
        if self.grants_by_role:
            lines.append("  Access can be granted by role alone")
        if self.filter_sql is not None:
            lines.append(f"  SQL: {self.filter_sql}")
        if self.diagnostics:
            lines.append(f"  Diagnostics ({len(self.diagnostics)}):")
            for diagnostic in self.diagnostics:
                lines.append(f"    - [{diagnostic.category}] {diagnostic.message}")
                lines.append(f"      {diagnostic.expression}")
        return "\n".join(lines)

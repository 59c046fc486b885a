"""Diagnostics — non-fatal findings recorded while compiling a predicate."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqla_rls._types import DiagnosticCategory

__all__ = ["Diagnostic", "dedupe"]


@dataclass(frozen=True, slots=True)
class Diagnostic:
    """One finding about one predicate.

    Attributes:
        entity: Entity the predicate belongs to.
        operation: Operation the predicate gates.
        category: ``"low_confidence_mapping"``, ``"unresolved_construct"``
            or ``"role_split"``.
        expression: Text of the offending sub-expression.
        message: Human-readable explanation.
        related_entity: Entity named by the construct (e.g. the ``FROM``
            target of an ``EXISTS``), if any.
        policy: Policy name, filled in by the build driver.
    """

    entity: str
    operation: str
    category: DiagnosticCategory
    expression: str
    message: str
    related_entity: str | None = None
    policy: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serializable dictionary."""
        return {
            "entity": self.entity,
            "operation": self.operation,
            "category": self.category,
            "expression": self.expression,
            "message": self.message,
            "related_entity": self.related_entity,
            "policy": self.policy,
        }

    def __str__(self) -> str:
        where = f"{self.entity}.{self.operation}"
        if self.policy:
            where = f"{where} ({self.policy})"
        return f"[{self.category}] {where}: {self.message} -- {self.expression}"


def dedupe(diagnostics: list[Diagnostic] | tuple[Diagnostic, ...]) -> tuple[Diagnostic, ...]:
    """Drop repeated diagnostics, keeping first-seen order."""
    return tuple(dict.fromkeys(diagnostics))

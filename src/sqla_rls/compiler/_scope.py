"""Per-predicate compile state shared by both backends."""

from __future__ import annotations

import logging

from sqla_rls._types import DiagnosticCategory, Operation
from sqla_rls.compiler._diagnostics import Diagnostic
from sqla_rls.compiler._ir import ActorField
from sqla_rls.config._config import CompilerConfig
from sqla_rls.context._mapping import ContextMapping
from sqla_rls.exceptions import SchemaResolutionError
from sqla_rls.parser._ast import ColumnRef, Node
from sqla_rls.parser._format import format_expression
from sqla_rls.schema._graph import Entity, SchemaGraph
from sqla_rls.schema._resolver import Direct, Location, NotFound, RelationshipResolver

__all__ = ["CompileScope"]

logger = logging.getLogger("sqla_rls.compiler")

_CONSTRUCTS = {
    "exists": "EXISTS subquery",
    "subquery": "subquery",
    "function": "function call with arguments",
    "comparison": "comparison",
    "case": "CASE expression",
    "expression": "expression",
}


class CompileScope:
    """Everything a compiler needs to translate one predicate.

    Holds the entity and operation being compiled, the schema and context
    lookups, and the diagnostics collected so far.  Diagnostics are kept
    in first-seen order without repeats.
    """

    __slots__ = (
        "config",
        "diagnostics",
        "entity",
        "graph",
        "mapping",
        "operation",
        "principal",
        "resolver",
    )

    def __init__(
        self,
        *,
        mapping: ContextMapping,
        graph: SchemaGraph,
        entity: str,
        operation: Operation,
        config: CompilerConfig,
    ) -> None:
        self.mapping = mapping
        self.graph = graph
        self.entity: Entity = graph.entity(entity)
        self.operation = operation
        self.config = config
        self.resolver = RelationshipResolver(graph)
        self.principal: Entity | None = graph.find_principal(config.principal_entity)
        self.diagnostics: list[Diagnostic] = []

    def note(
        self,
        category: DiagnosticCategory,
        expression: str,
        message: str,
        related_entity: str | None = None,
    ) -> None:
        diagnostic = Diagnostic(
            entity=self.entity.name,
            operation=self.operation,
            category=category,
            expression=expression,
            message=message,
            related_entity=related_entity,
        )
        if diagnostic not in self.diagnostics:
            logger.debug("%s", diagnostic)
            self.diagnostics.append(diagnostic)

    def unresolved(self, node: Node, kind: str, related_entity: str | None = None) -> tuple[str, bool]:
        """Record an untranslatable construct; return its text and compiled default."""
        text = format_expression(node)
        default = self.config.fail_open
        message = f"Cannot translate {_CONSTRUCTS.get(kind, kind)}; compiled as {'allow' if default else 'deny'}"
        if related_entity:
            message = f"{message} (references {related_entity})"
        self.note("unresolved_construct", text, message, related_entity)
        return text, default

    def actor_field(self, name: str, text: str) -> ActorField:
        """Resolve context provider *name* to a principal field."""
        path = self.mapping.resolve(name)
        if path.low_confidence:
            self.note(
                "low_confidence_mapping",
                text,
                f"No known mapping for context provider {name!r}; guessed principal field {path}",
            )
        return ActorField(self._refine(path.parts), source=name)

    def locate(self, ref: ColumnRef, *, actor_first: bool = False) -> Location | ActorField:
        """Find *ref* on the entity, or fall back to a context provider of that name.

        With *actor_first*, an unqualified name that is not a column of the
        entity itself resolves to a confidently mapped provider before any
        relation is searched.

        Raises:
            SchemaResolutionError: If neither the schema nor a confident
                context mapping knows the name.
        """
        located = self.resolver.locate(self.entity.name, ref.name, ref.entity)
        if isinstance(located, Direct):
            return located
        if ref.entity is None and (actor_first or isinstance(located, NotFound)):
            path = self.mapping.resolve(ref.name)
            if not path.low_confidence:
                return ActorField(self._refine(path.parts), source=ref.name)
        if not isinstance(located, NotFound):
            return located
        name = f"{ref.entity}.{ref.name}" if ref.entity else ref.name
        raise SchemaResolutionError(
            entity=self.entity.name,
            field=name,
            message=f"Field '{name}' is not reachable from entity {self.entity.name}",
        )

    def _refine(self, parts: tuple[str, ...]) -> tuple[str, ...]:
        # <principal>_id names the principal's own key; <X>_id may name a
        # relation X of the principal.
        principal = self.principal
        if principal is None or len(parts) != 1:
            return parts
        leaf = parts[0]
        if principal.has_scalar(leaf) or not leaf.endswith("_id"):
            return parts
        own = principal.name.lower()
        if leaf in (f"{own}_id", f"{own.rstrip('s')}_id"):
            return principal.primary_key[:1]
        relation = principal.relation(leaf[: -len("_id")])
        if relation is not None:
            target = self.graph.target(relation)
            return (relation.name, target.primary_key[0])
        return parts


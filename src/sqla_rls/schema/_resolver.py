"""Relationship resolver — locate a field on an entity or one relation away."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from sqla_rls._types import Cardinality
from sqla_rls.exceptions import SchemaResolutionError
from sqla_rls.schema._graph import Entity, Relation, SchemaGraph, foreign_key_name

__all__ = [
    "Direct",
    "Location",
    "NotFound",
    "RelationshipResolver",
    "ViaJunction",
    "ViaRelation",
    "order_join_fields",
]


@dataclass(frozen=True, slots=True)
class Direct:
    """The field is a column of the entity itself."""

    field: str


@dataclass(frozen=True, slots=True)
class ViaRelation:
    """The field lives on the target of a one-hop relation."""

    relation: str
    cardinality: Cardinality
    field: str
    target: str


@dataclass(frozen=True, slots=True)
class ViaJunction:
    """The field is a composite-key member of a junction entity.

    ``join_fields`` lists the junction key with the current entity's own
    foreign key first.
    """

    relation: str
    join_fields: tuple[str, ...]
    field: str
    target: str
    target_field: str = ""

    @property
    def related_field(self) -> str:
        """Field to read on related rows (differs from ``field`` for secondary joins)."""
        return self.target_field or self.field

    @property
    def composite_key(self) -> str:
        """Compound key name in join order, e.g. ``teacher_id_course_id``."""
        return "_".join(self.join_fields)


@dataclass(frozen=True, slots=True)
class NotFound:
    entity: str
    field: str


Location = Union[Direct, ViaRelation, ViaJunction, NotFound]


def order_join_fields(fields: tuple[str, ...], entity: Entity, junction: Entity) -> tuple[str, ...]:
    """Move the key member that points back at *entity* to the front.

    The member is the one whose ``references`` names *entity*, falling back
    to the ``<entity>_id`` naming convention.  Other members keep their
    declared order.
    """
    own: str | None = None
    for name in fields:
        found = junction.field(name)
        if found is not None and found.references and found.references.lower() == entity.name.lower():
            own = name
            break
    if own is None and foreign_key_name(entity.name) in fields:
        own = foreign_key_name(entity.name)
    if own is None:
        return fields
    return (own, *[f for f in fields if f != own])


class RelationshipResolver:
    """Resolve field references against a ``SchemaGraph``.

    Example::

        resolver = RelationshipResolver(graph)
        resolver.locate("Course", "teacher_id")
        # ViaJunction(relation='teachers', join_fields=('course_id', 'teacher_id'), ...)
    """

    __slots__ = ("_graph",)

    def __init__(self, graph: SchemaGraph) -> None:
        self._graph = graph

    @property
    def graph(self) -> SchemaGraph:
        return self._graph

    def locate(self, entity: str, field: str, qualifier: str | None = None) -> Location:
        """Find where *field* lives relative to *entity*.

        Checks, in order: a direct column; a composite-key member of a
        junction reached through a to-many relation; a column of any
        one-hop relation target.  With *qualifier* (``teachers.id``), only
        relations targeting that entity (or named like it) are considered.

        Raises:
            SchemaResolutionError: If *entity* itself is not in the graph.
        """
        source = self._graph.entity(entity)

        if qualifier is not None and qualifier.lower() != source.name.lower():
            return self._locate_qualified(source, field, qualifier)

        if source.has_scalar(field):
            return Direct(field)

        for relation in source.relations:
            target = self._graph.target(relation)
            located = self._via_junction(source, relation, target, field)
            if located is not None:
                return located

        for relation in source.relations:
            target = self._graph.target(relation)
            if target.has_scalar(field):
                return ViaRelation(relation.name, relation.cardinality, field, target.name)

        return NotFound(source.name, field)

    def require(self, entity: str, field: str, qualifier: str | None = None) -> Location:
        """Like :meth:`locate` but raises ``SchemaResolutionError`` instead of ``NotFound``."""
        located = self.locate(entity, field, qualifier)
        if isinstance(located, NotFound):
            name = f"{qualifier}.{field}" if qualifier else field
            raise SchemaResolutionError(
                entity=entity,
                field=name,
                message=f"Field '{name}' is not reachable from entity {entity}",
            )
        return located

    def _via_junction(
        self, source: Entity, relation: Relation, target: Entity, field: str
    ) -> ViaJunction | None:
        if relation.cardinality != "many":
            return None
        if relation.join_fields:
            key = relation.join_fields
        elif target.is_junction:
            key = target.primary_key
        else:
            return None
        if field not in key:
            return None
        target_field = field
        if not target.has_scalar(field) and len(target.primary_key) == 1:
            # Secondary join: the key member references the target's primary key.
            target_field = target.primary_key[0]
        return ViaJunction(
            relation=relation.name,
            join_fields=order_join_fields(tuple(key), source, target),
            field=field,
            target=target.name,
            target_field=target_field,
        )

    def _locate_qualified(self, source: Entity, field: str, qualifier: str) -> Location:
        wanted = qualifier.lower()
        for relation in source.relations:
            target = self._graph.target(relation)
            if wanted not in (target.name.lower(), relation.name.lower()):
                continue
            located = self._via_junction(source, relation, target, field)
            if located is not None:
                return located
            if target.has_scalar(field):
                return ViaRelation(relation.name, relation.cardinality, field, target.name)
        return NotFound(source.name, f"{qualifier}.{field}")

"""Schema graph — entities, fields and relations the compilers resolve against."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

from sqla_rls._types import Cardinality, FieldKind
from sqla_rls.exceptions import SchemaResolutionError

__all__ = ["Entity", "Field", "Relation", "SchemaGraph", "foreign_key_name"]


def foreign_key_name(entity: str) -> str:
    """Conventional foreign-key column for *entity* (``Teacher`` -> ``teacher_id``)."""
    return f"{entity.lower()}_id"


@dataclass(frozen=True, slots=True)
class Field:
    """A field of an entity.

    Attributes:
        name: Column/attribute name.
        kind: ``"scalar"`` or ``"relation"``.
        nullable: Whether the column admits NULL.
        references: Entity referenced when the field is a foreign key.
    """

    name: str
    kind: FieldKind = "scalar"
    nullable: bool = True
    references: str | None = None


@dataclass(frozen=True, slots=True)
class Relation:
    """A navigable relation from one entity to another.

    Attributes:
        name: Relation attribute name (``author``, ``enrollments``).
        target: Target entity name.
        cardinality: ``"one"`` (to-one) or ``"many"`` (to-many).
        foreign_key: Owning-side foreign-key column, when known.
        join_fields: Composite key of a junction target, when declared.
    """

    name: str
    target: str
    cardinality: Cardinality = "one"
    foreign_key: str | None = None
    join_fields: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class Entity:
    name: str
    fields: tuple[Field, ...] = ()
    relations: tuple[Relation, ...] = ()
    primary_key: tuple[str, ...] = ("id",)

    def field(self, name: str) -> Field | None:
        return next((f for f in self.fields if f.name == name), None)

    def has_scalar(self, name: str) -> bool:
        found = self.field(name)
        return found is not None and found.kind == "scalar"

    def relation(self, name: str) -> Relation | None:
        return next((r for r in self.relations if r.name == name), None)

    @property
    def key_members(self) -> tuple[str, ...]:
        """Primary-key columns that are foreign keys."""
        members: list[str] = []
        for name in self.primary_key:
            found = self.field(name)
            if (found is not None and found.references) or name.endswith("_id"):
                members.append(name)
        return tuple(members)

    @property
    def is_junction(self) -> bool:
        """Whether the primary key spans two or more foreign keys."""
        return len(self.primary_key) >= 2 and len(self.key_members) >= 2


class SchemaGraph:
    """Immutable set of entities, validated on construction.

    Every relation must target an entity present in the graph; an
    unresolved target raises ``SchemaResolutionError``.

    Example::

        graph = SchemaGraph.from_dict({
            "Post": {
                "fields": [{"name": "id"}, {"name": "owner_id"}],
                "relations": [{"name": "owner", "target": "User"}],
            },
            "User": {"fields": [{"name": "id"}, {"name": "role"}]},
        })
        graph.entity("post").name  # 'Post'
    """

    __slots__ = ("_entities", "_folded")

    def __init__(self, entities: Iterable[Entity]) -> None:
        table = {e.name: e for e in entities}
        self._entities: Mapping[str, Entity] = MappingProxyType(table)
        self._folded: Mapping[str, Entity] = MappingProxyType(
            {name.lower(): e for name, e in table.items()}
        )
        for entity in table.values():
            for relation in entity.relations:
                if self.get(relation.target) is None:
                    raise SchemaResolutionError(
                        entity=entity.name,
                        field=relation.name,
                        message=(
                            f"Relation {entity.name}.{relation.name} targets unknown "
                            f"entity {relation.target!r}"
                        ),
                    )

    def get(self, name: str) -> Entity | None:
        """Look up an entity by exact, then case-insensitive, name."""
        found = self._entities.get(name)
        if found is None:
            found = self._folded.get(name.lower())
        return found

    def entity(self, name: str) -> Entity:
        found = self.get(name)
        if found is None:
            raise SchemaResolutionError(
                entity=name, field=name, message=f"Unknown entity {name!r}"
            )
        return found

    def target(self, relation: Relation) -> Entity:
        return self.entity(relation.target)

    def find_principal(self, preferred: str | None = None) -> Entity | None:
        """Return the acting-principal entity (*preferred*, else ``User``/``users``)."""
        if preferred is not None:
            return self.entity(preferred)
        candidates = [e for e in self._entities.values() if e.name.lower() in ("user", "users")]
        return candidates[0] if len(candidates) == 1 else None

    @property
    def entities(self) -> Mapping[str, Entity]:
        return self._entities

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.get(name) is not None

    def __iter__(self):
        return iter(self._entities.values())

    def __len__(self) -> int:
        return len(self._entities)

    @classmethod
    def from_dict(cls, data: Mapping[str, Mapping[str, Any]]) -> SchemaGraph:
        """Build a graph from ``{entity: {fields: [...], relations: [...], primary_key: [...]}}``.

        Field entries are ``{name, kind?, nullable?, references?}``; relation
        entries are ``{name, target, cardinality?, foreign_key?, join_fields?}``.
        """
        entities: list[Entity] = []
        for name, definition in data.items():
            fields = tuple(
                Field(
                    name=f["name"],
                    kind=f.get("kind", "scalar"),
                    nullable=f.get("nullable", True),
                    references=f.get("references"),
                )
                for f in definition.get("fields", ())
            )
            relations = tuple(
                Relation(
                    name=r["name"],
                    target=r["target"],
                    cardinality=r.get("cardinality", "one"),
                    foreign_key=r.get("foreign_key"),
                    join_fields=tuple(r.get("join_fields", ())),
                )
                for r in definition.get("relations", ())
            )
            entities.append(
                Entity(
                    name=name,
                    fields=fields,
                    relations=relations,
                    primary_key=tuple(definition.get("primary_key", ("id",))),
                )
            )
        return cls(entities)

    def __repr__(self) -> str:
        return f"SchemaGraph({sorted(self._entities)!r})"

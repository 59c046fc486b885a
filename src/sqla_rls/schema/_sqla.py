"""Build a ``SchemaGraph`` from SQLAlchemy declarative mappings."""

from __future__ import annotations

from typing import Any

from sqlalchemy import Table
from sqlalchemy.orm import DeclarativeBase, Mapper, RelationshipDirection, RelationshipProperty

from sqla_rls.schema._graph import Entity, Field, Relation, SchemaGraph

__all__ = ["graph_from_models"]


def graph_from_models(base: type[DeclarativeBase]) -> SchemaGraph:
    """Introspect every mapped class of *base* into a ``SchemaGraph``.

    Entities are named after the mapped classes.  Many-to-one relations
    carry their local foreign key; many-to-many relations through a
    ``secondary`` table carry the secondary table's key as
    ``join_fields``, ordered with the column pointing back at the owning
    class first.

    Example::

        graph = graph_from_models(Base)
        graph.entity("Post").relation("tags").join_fields
        # ('post_id', 'tag_id')
    """
    mappers: list[Mapper[Any]] = sorted(
        base.registry.mappers, key=lambda m: m.class_.__name__
    )
    by_table: dict[str, str] = {}
    for mapper in mappers:
        table = mapper.local_table
        if isinstance(table, Table):
            by_table[table.name] = mapper.class_.__name__

    return SchemaGraph(_entity(mapper, by_table) for mapper in mappers)


def _entity(mapper: Mapper[Any], by_table: dict[str, str]) -> Entity:
    fields: list[Field] = []
    for prop in mapper.column_attrs:
        column = prop.columns[0]
        references: str | None = None
        for fk in column.foreign_keys:
            references = by_table.get(fk.column.table.name)
            break
        fields.append(
            Field(
                name=prop.key,
                kind="scalar",
                nullable=bool(column.nullable),
                references=references,
            )
        )

    relations: list[Relation] = []
    for prop in mapper.relationships:
        fields.append(Field(name=prop.key, kind="relation"))
        relations.append(_relation(mapper, prop))

    primary_key = tuple(
        mapper.get_property_by_column(col).key for col in mapper.primary_key
    )
    return Entity(
        name=mapper.class_.__name__,
        fields=tuple(fields),
        relations=tuple(relations),
        primary_key=primary_key,
    )


def _relation(mapper: Mapper[Any], prop: RelationshipProperty[Any]) -> Relation:
    target = prop.mapper.class_.__name__
    cardinality = "many" if prop.uselist else "one"

    foreign_key: str | None = None
    if prop.direction is RelationshipDirection.MANYTOONE:
        for local, _remote in prop.local_remote_pairs or ():
            foreign_key = local.key
            break

    join_fields: tuple[str, ...] = ()
    secondary = prop.secondary
    if isinstance(secondary, Table):
        own_table = mapper.local_table
        ordered: list[str] = []
        for column in list(secondary.primary_key.columns) or list(secondary.columns):
            points_home = any(fk.column.table is own_table for fk in column.foreign_keys)
            if points_home:
                ordered.insert(0, column.key)
            else:
                ordered.append(column.key)
        join_fields = tuple(ordered)

    return Relation(
        name=prop.key,
        target=target,
        cardinality=cardinality,
        foreign_key=foreign_key,
        join_fields=join_fields,
    )

"""Schema graph and relationship resolution."""

from sqla_rls.schema._graph import Entity, Field, Relation, SchemaGraph, foreign_key_name
from sqla_rls.schema._resolver import (
    Direct,
    Location,
    NotFound,
    RelationshipResolver,
    ViaJunction,
    ViaRelation,
    order_join_fields,
)
from sqla_rls.schema._sqla import graph_from_models

__all__ = [
    "Direct",
    "Entity",
    "Field",
    "Location",
    "NotFound",
    "Relation",
    "RelationshipResolver",
    "SchemaGraph",
    "ViaJunction",
    "ViaRelation",
    "foreign_key_name",
    "graph_from_models",
    "order_join_fields",
]

"""Shared type aliases for sqla-rls."""

from __future__ import annotations

from typing import Any, Literal

__all__ = [
    "Cardinality",
    "Command",
    "Confidence",
    "DiagnosticCategory",
    "FieldKind",
    "LiteralKind",
    "OnCompileError",
    "OnMissingPolicy",
    "OnUnloadedRelationship",
    "OnUnresolved",
    "OPERATIONS",
    "Operation",
    "RecordLike",
]

# Access operations a predicate can gate.
Operation = Literal["select", "insert", "update", "delete"]

# Policy commands; "all" expands to every operation.
Command = Literal["select", "insert", "update", "delete", "all"]

OPERATIONS: tuple[Operation, ...] = ("select", "insert", "update", "delete")

# Provenance of a context mapping, most to least trustworthy.
Confidence = Literal["introspected", "builtin", "inferred", "fallback"]

Cardinality = Literal["one", "many"]

FieldKind = Literal["scalar", "relation"]

LiteralKind = Literal["string", "integer", "decimal", "boolean", "null"]

DiagnosticCategory = Literal["low_confidence_mapping", "unresolved_construct", "role_split"]

# Valid values for CompilerConfig.on_unresolved.
OnUnresolved = Literal["allow", "deny"]

# Valid values for CompilerConfig.on_missing_policy.
OnMissingPolicy = Literal["deny", "raise"]

# Valid values for CompilerConfig.on_compile_error.
OnCompileError = Literal["collect", "raise"]

# Valid values for CompilerConfig.on_unloaded_relationship.
OnUnloadedRelationship = Literal["deny", "raise", "warn"]

# Records and actors may be mappings, plain objects or mapped ORM instances.
RecordLike = Any

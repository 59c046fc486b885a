"""Context mapping — resolve context providers to principal field paths."""

from sqla_rls.context._discovery import (
    ProviderDefinition,
    analyze_provider,
    discover_mappings,
    referenced_providers,
)
from sqla_rls.context._mapping import BUILTIN_CONVENTIONS, ContextMapping, FieldPath

__all__ = [
    "BUILTIN_CONVENTIONS",
    "ContextMapping",
    "FieldPath",
    "ProviderDefinition",
    "analyze_provider",
    "discover_mappings",
    "referenced_providers",
]

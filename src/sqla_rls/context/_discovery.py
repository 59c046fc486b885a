"""Provider introspection — infer mappings from context-provider source text.

The build layer fetches function definitions (e.g. from ``pg_proc``) and
hands them over as plain text; nothing here performs I/O.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass

from sqla_rls.context._mapping import ContextMapping, FieldPath
from sqla_rls.parser._ast import FunctionCall, Node, SessionSetting, walk

__all__ = ["ProviderDefinition", "analyze_provider", "discover_mappings", "referenced_providers"]

logger = logging.getLogger("sqla_rls.context")

_SESSION_READ = re.compile(r"current_setting\s*\(\s*'([^']+)'", re.IGNORECASE)
_LOOKUP = re.compile(
    r"SELECT\s+(?:(?P<alias>\w+)\.)?(?P<column>\w+)\s+(?:INTO\s+\w+\s+)?FROM\s+\"?(?:\w+\.)?(?P<table>\w+)\"?",
    re.IGNORECASE,
)


@dataclass(frozen=True, slots=True)
class ProviderDefinition:
    """Source of a context-provider function as fetched by the build layer.

    Attributes:
        name: Function name, optionally schema-qualified.
        source: Function body text.
        return_type: Declared return type (``integer``, ``text``, ...).
    """

    name: str
    source: str
    return_type: str = ""


def _singular(table: str) -> str:
    if table.endswith("s") and not table.endswith("ss"):
        return table[:-1]
    return table


def analyze_provider(
    definition: ProviderDefinition,
    *,
    principal_tables: Iterable[str] = ("user", "users"),
    mapping: ContextMapping | None = None,
) -> FieldPath | None:
    """Infer which principal field a provider function returns.

    Recognised shapes, in order:

    * a lookup ``SELECT <col> [INTO v] FROM <table>``: a principal table
      yields ``<col>``; another table's ``id`` yields ``<table>_id``
      (singularised); any other column yields ``<col>``;
    * a body that only reads one session setting maps like that setting;
    * name heuristics (``*role*`` -> ``role``, ``*_id`` patterns).

    Returns:
        An ``"introspected"`` path for body-derived results, an
        ``"inferred"`` path for name heuristics, or None when nothing
        could be learned.

    Example::

        analyze_provider(ProviderDefinition(
            "get_current_student_id",
            "SELECT s.id INTO sid FROM students s WHERE s.user_id = "
            "current_setting('app.current_user_id')::int; RETURN sid;",
            "integer",
        ))
        # FieldPath(('student_id',), 'introspected', 'get_current_student_id')
    """
    body = definition.source or ""
    principals = {t.lower() for t in principal_tables}

    lookup = _LOOKUP.search(body)
    if lookup:
        column = lookup.group("column")
        table = lookup.group("table").lower()
        if table in principals:
            field = column
        elif column.lower() == "id":
            field = f"{_singular(table)}_id"
        else:
            field = column
        return FieldPath((field,), "introspected", definition.name)

    keys = sorted(set(_SESSION_READ.findall(body)))
    if len(keys) == 1:
        resolved = (mapping or ContextMapping()).resolve(keys[0])
        if not resolved.low_confidence:
            return FieldPath(resolved.parts, "introspected", definition.name)

    name = definition.name.rsplit(".", 1)[-1].lower()
    if "role" in name:
        return FieldPath(("role",), "inferred", definition.name)
    inferred = (mapping or ContextMapping()).resolve(name)
    if inferred.confidence == "inferred":
        return FieldPath(inferred.parts, "inferred", definition.name)

    logger.debug("Could not analyze context provider %r", definition.name)
    return None


def discover_mappings(
    definitions: Iterable[ProviderDefinition],
    *,
    principal_tables: Iterable[str] = ("user", "users"),
    mapping: ContextMapping | None = None,
) -> dict[str, FieldPath]:
    """Analyze every definition and return the mappings that could be inferred.

    The result is suitable for ``ContextMapping(...)`` or
    ``ContextMapping.with_discovered(...)``.
    """
    tables = tuple(principal_tables)
    discovered: dict[str, FieldPath] = {}
    for definition in definitions:
        path = analyze_provider(definition, principal_tables=tables, mapping=mapping)
        if path is not None:
            discovered[definition.name] = path
    return discovered


def referenced_providers(node: Node) -> tuple[str, ...]:
    """Names of context providers referenced by a parsed policy, in first-use order.

    Function calls with arguments are included; session settings are
    reported by key.
    """
    seen: dict[str, None] = {}
    for child in walk(node):
        if isinstance(child, FunctionCall):
            seen.setdefault(child.name, None)
        elif isinstance(child, SessionSetting):
            seen.setdefault(child.key, None)
    return tuple(seen)

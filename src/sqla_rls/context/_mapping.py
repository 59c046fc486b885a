"""Context mapping — translate context providers into principal field paths.

A context provider is a function (``get_current_user_id()``) or session
setting (``current_setting('app.current_user_id')``) a policy uses to
learn something about the acting principal.  ``ContextMapping.resolve``
turns its name into a ``FieldPath`` on the principal, never failing:
unknown names degrade to a labeled low-confidence guess.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

from sqla_rls._types import Confidence

__all__ = ["BUILTIN_CONVENTIONS", "ContextMapping", "FieldPath"]

logger = logging.getLogger("sqla_rls.context")

_CONFIDENCES: set[str] = {"introspected", "builtin", "inferred", "fallback"}


@dataclass(frozen=True, slots=True)
class FieldPath:
    """A field on the acting principal, possibly through relations.

    Attributes:
        parts: Path segments, e.g. ``("student", "id")``.
        confidence: Provenance of the mapping.
        source: The provider name that produced this path.

    Example::

        path = FieldPath.parse("student.id", confidence="inferred")
        str(path)  # 'student.id'
    """

    parts: tuple[str, ...]
    confidence: Confidence = "builtin"
    source: str = ""

    def __post_init__(self) -> None:
        if not self.parts or not all(self.parts):
            raise ValueError(f"FieldPath needs non-empty segments, got {self.parts!r}")
        if self.confidence not in _CONFIDENCES:
            raise ValueError(
                f"confidence must be one of {_CONFIDENCES!r}, got {self.confidence!r}"
            )

    @classmethod
    def parse(cls, dotted: str, *, confidence: Confidence = "builtin", source: str = "") -> FieldPath:
        return cls(tuple(dotted.split(".")), confidence, source)

    @property
    def low_confidence(self) -> bool:
        """True when the path is a literal-name guess."""
        return self.confidence == "fallback"

    @property
    def leaf(self) -> str:
        return self.parts[-1]

    def __str__(self) -> str:
        return ".".join(self.parts)


# Well-known provider names.  Session keys live in the same table: they
# always contain a namespace dot, which function names rarely do.
BUILTIN_CONVENTIONS: Mapping[str, str] = MappingProxyType(
    {
        # user id
        "get_current_user_id": "id",
        "current_user_id": "id",
        "current_user": "id",
        "session_user": "id",
        "auth.uid": "id",
        "auth.user_id": "id",
        "app.current_user_id": "id",
        "app.user_id": "id",
        "jwt.claims.sub": "id",
        "request.jwt.claims.sub": "id",
        "request.jwt.claim.sub": "id",
        # role
        "role": "role",
        "get_current_user_role": "role",
        "current_user_role": "role",
        "current_role": "role",
        "auth.role": "role",
        "app.current_role": "role",
        "app.current_user_role": "role",
        "jwt.claims.role": "role",
        "request.jwt.claim.role": "role",
        "request.jwt.claims.role": "role",
        # tenant
        "get_current_tenant_id": "tenant_id",
        "current_tenant_id": "tenant_id",
        "current_tenant": "tenant_id",
        "app.current_tenant": "tenant_id",
        "app.current_tenant_id": "tenant_id",
        "app.tenant_id": "tenant_id",
        "jwt.claims.tenant_id": "tenant_id",
        # organization
        "get_current_org_id": "org_id",
        "current_org_id": "org_id",
        "current_organization_id": "org_id",
        "app.org_id": "org_id",
        "app.organization_id": "org_id",
        "app.current_org_id": "org_id",
    }
)

# Checked in order; the first match wins.
_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"^get_current_(?P<x>\w+)_id$"), "{x}_id"),
    (re.compile(r"^get_(?P<x>\w+)_id_for_user$"), "{x}_id"),
    (re.compile(r"^get_current_(?P<x>\w+)$"), "{x}"),
    (re.compile(r"^current_(?P<x>\w+)$"), "{x}"),
    (re.compile(r"^[\w.]+\.current_(?P<x>\w+)$"), "{x}"),
)

_SCHEMA_PREFIXES = ("public.", "pg_catalog.")


def _normalize(name: str) -> str:
    return name.strip().lower()


def _candidates(name: str) -> list[str]:
    key = _normalize(name)
    names = [key]
    for prefix in _SCHEMA_PREFIXES:
        if key.startswith(prefix):
            names.append(key[len(prefix) :])
    return names


def _as_path(value: str | FieldPath, confidence: Confidence, source: str) -> FieldPath:
    if isinstance(value, FieldPath):
        return value
    return FieldPath.parse(value, confidence=confidence, source=source)


class ContextMapping:
    """Immutable lookup from provider names to principal field paths.

    Resolution order:

    1. exact match among discovered (introspected/overridden) mappings;
    2. exact match among built-in conventions;
    3. pattern inference (``get_current_<X>_id`` -> ``<X>_id``,
       ``current_<X>`` -> ``<X>``, ``<ns>.current_<X>`` -> ``<X>``);
    4. literal fallback: the last dotted segment of the name, labeled
       ``"fallback"``.

    Example::

        mapping = ContextMapping({"get_my_team": "team_id"})
        mapping.resolve("get_my_team")            # team_id (introspected)
        mapping.resolve("get_current_student_id") # student_id (inferred)
        mapping.resolve("mystery").low_confidence # True
    """

    __slots__ = ("_builtins", "_discovered")

    def __init__(
        self,
        discovered: Mapping[str, str | FieldPath] | None = None,
        *,
        builtins: Mapping[str, str] | None = None,
    ) -> None:
        self._discovered: Mapping[str, FieldPath] = MappingProxyType(
            {
                _normalize(name): _as_path(value, "introspected", name)
                for name, value in (discovered or {}).items()
            }
        )
        table = BUILTIN_CONVENTIONS if builtins is None else builtins
        self._builtins: Mapping[str, FieldPath] = MappingProxyType(
            {
                _normalize(name): FieldPath.parse(value, confidence="builtin", source=name)
                for name, value in table.items()
            }
        )

    def resolve(self, name: str) -> FieldPath:
        """Resolve a provider name to a principal field path.  Never raises."""
        candidates = _candidates(name)
        for key in candidates:
            if key in self._discovered:
                return self._discovered[key]
        for key in candidates:
            if key in self._builtins:
                return self._builtins[key]
        for key in candidates:
            for pattern, template in _PATTERNS:
                match = pattern.match(key)
                if match:
                    return FieldPath.parse(
                        template.format(x=match.group("x")), confidence="inferred", source=name
                    )

        guess = candidates[-1].rsplit(".", 1)[-1]
        logger.debug("No mapping for context provider %r; guessing principal field %r", name, guess)
        return FieldPath((guess,), "fallback", name)

    def with_discovered(self, overrides: Mapping[str, str | FieldPath]) -> ContextMapping:
        """Return a new mapping with *overrides* layered over the discovered table."""
        merged: dict[str, str | FieldPath] = dict(self._discovered)
        merged.update({_normalize(k): v for k, v in overrides.items()})
        return ContextMapping(
            merged, builtins={name: str(path) for name, path in self._builtins.items()}
        )

    @property
    def discovered(self) -> Mapping[str, FieldPath]:
        return self._discovered

    @property
    def builtins(self) -> Mapping[str, FieldPath]:
        return self._builtins

    def to_dict(self) -> dict[str, Any]:
        """Return an editable, JSON-serializable override table."""
        return {
            "discovered": {
                name: {"path": str(path), "confidence": path.confidence}
                for name, path in sorted(self._discovered.items())
            },
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ContextMapping:
        """Build a mapping from a table produced by :meth:`to_dict`.

        Entries may be plain dotted strings or ``{"path", "confidence"}``
        objects.
        """
        entries: dict[str, str | FieldPath] = {}
        for name, entry in dict(data.get("discovered", {})).items():
            if isinstance(entry, str):
                entries[name] = entry
            else:
                entries[name] = FieldPath.parse(
                    entry["path"],
                    confidence=entry.get("confidence", "introspected"),
                    source=name,
                )
        return cls(entries)

    def __repr__(self) -> str:
        return f"ContextMapping(discovered={len(self._discovered)}, builtins={len(self._builtins)})"

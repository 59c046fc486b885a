"""PolicyRegistry — stores policy sources per entity."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from sqla_rls._types import Command, Operation
from sqla_rls.policy._base import PolicySource

__all__ = ["PolicyRegistry", "get_default_registry"]


class PolicyRegistry:
    """Registry that maps entities to their policy sources.

    Sources keep registration order.  Thread-safe for reads after
    startup; append-only during registration.

    Example::

        registry = PolicyRegistry()
        registry.register("Post", "owner_read", command="select",
                          using="owner_id = get_current_user_id()")
        registry.lookup("Post", "select")
    """

    def __init__(self) -> None:
        self._sources: dict[str, list[PolicySource]] = {}

    def register(
        self,
        entity: str,
        name: str,
        *,
        command: Command = "all",
        using: str | None = None,
        with_check: str | None = None,
        permissive: bool = True,
    ) -> PolicySource:
        """Register a policy on *entity* and return its source record.

        Args:
            entity: Entity (table) the policy protects.
            name: Policy name, unique per entity.
            command: ``"select"``, ``"insert"``, ``"update"``, ``"delete"``
                or ``"all"``.
            using: Condition on existing rows.
            with_check: Condition on new rows; falls back to *using*.
            permissive: ``False`` for a restrictive policy.

        Raises:
            ValueError: If *entity* already has a policy named *name*, or
                *command* is not valid.

        Example::

            registry.register(
                "Post", "admins_all",
                using="get_current_user_role() = 'admin'",
            )
        """
        return self.add(
            PolicySource(
                name=name,
                entity=entity,
                command=command,
                using=using,
                with_check=with_check,
                permissive=permissive,
            )
        )

    def add(self, source: PolicySource) -> PolicySource:
        """Register an already-built ``PolicySource``."""
        existing = self._sources.setdefault(source.entity, [])
        if any(s.name == source.name for s in existing):
            raise ValueError(f"Policy {source.name!r} is already registered on {source.entity}")
        existing.append(source)
        return source

    def lookup(self, entity: str, operation: Operation) -> list[PolicySource]:
        """Return the sources on *entity* that apply to *operation*.

        Returns a copy so callers cannot mutate the registry state.
        """
        return [s for s in self._sources.get(entity, []) if operation in s.operations]

    def has_policy(self, entity: str, operation: Operation) -> bool:
        return bool(self.lookup(entity, operation))

    def sources(self, entity: str) -> list[PolicySource]:
        return list(self._sources.get(entity, []))

    def entities(self) -> list[str]:
        """Policed entities, sorted by name."""
        return sorted(name for name, sources in self._sources.items() if sources)

    def clear(self) -> None:
        """Remove all registered policies.

        Primarily useful in test teardown.
        """
        self._sources.clear()

    def __len__(self) -> int:
        return sum(len(sources) for sources in self._sources.values())

    @classmethod
    def from_rows(cls, rows: Iterable[Mapping[str, Any]]) -> PolicyRegistry:
        """Build a registry from ``pg_policies``-shaped rows.

        Each row carries ``tablename``, ``policyname``, ``cmd``
        (``SELECT``/``ALL``/...), ``qual``, ``with_check`` and
        ``permissive`` (``PERMISSIVE``/``RESTRICTIVE``).  Rows that were
        already fetched are accepted as-is; nothing is queried.

        Example::

            rows = connection.execute(text("SELECT * FROM pg_policies")).mappings()
            registry = PolicyRegistry.from_rows(rows)
        """
        registry = cls()
        for row in rows:
            permissive = row.get("permissive", "PERMISSIVE")
            if isinstance(permissive, str):
                permissive = permissive.upper() != "RESTRICTIVE"
            registry.register(
                row["tablename"],
                row["policyname"],
                command=str(row.get("cmd") or "ALL").lower(),  # type: ignore[arg-type]
                using=row.get("qual"),
                with_check=row.get("with_check"),
                permissive=bool(permissive),
            )
        return registry


# Module-level default registry (singleton).
_default_registry = PolicyRegistry()


def get_default_registry() -> PolicyRegistry:
    """Return the global default (singleton) policy registry.

    Used by ``compile_policies`` when no registry is passed.

    Example::

        registry = get_default_registry()
        registry.clear()  # reset between tests
    """
    return _default_registry

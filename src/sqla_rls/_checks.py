"""Point checks — can() and authorize() for single records."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from sqla_rls._types import Operation, RecordLike
from sqla_rls.config._config import CompilerConfig
from sqla_rls.exceptions import AccessDenied
from sqla_rls.policy._base import BuildResult

__all__ = ["authorize", "can"]

logger = logging.getLogger("sqla_rls.checks")


def _entity_name(record: RecordLike, entity: str | None) -> str:
    if entity is not None:
        return entity
    if isinstance(record, Mapping):
        raise ValueError("entity is required when the record is a mapping")
    return type(record).__name__


def can(
    actor: Any,
    operation: Operation,
    record: RecordLike,
    result: BuildResult,
    entity: str | None = None,
    *,
    config: CompilerConfig | None = None,
) -> bool:
    """Check if *actor* may perform *operation* on a single record.

    Evaluates the compiled predicate in memory; the database is never
    touched.  An (entity, operation) without a compiled entry (not
    policed, or its policies failed to compile) is denied.

    Args:
        actor: The acting principal.
        operation: ``"select"``, ``"insert"``, ``"update"`` or ``"delete"``.
        record: A mapped instance, plain object or mapping.
        result: Output of ``compile_policies``.
        entity: Entity name; defaults to the record's class name.
        config: Controls unloaded-relationship handling.

    Returns:
        ``True`` if access is granted, ``False`` if denied.

    Example::

        post = session.get(Post, 1)
        if can(current_user, "select", post, result):
            return post
    """
    name = _entity_name(record, entity)
    compiled = result.get(name, operation)
    if compiled is None:
        logger.debug("No compiled policy for (%s, %r); denying", name, operation)
        return False
    return compiled.check(record, actor, config)


def authorize(
    actor: Any,
    operation: Operation,
    record: RecordLike,
    result: BuildResult,
    entity: str | None = None,
    *,
    config: CompilerConfig | None = None,
    message: str | None = None,
) -> None:
    """Assert that *actor* may perform *operation* on *record*.

    Raises :class:`~sqla_rls.exceptions.AccessDenied` when access is
    denied.  Returns ``None`` on success.

    Raises:
        AccessDenied: If the actor is not authorized.

    Example::

        authorize(current_user, "update", post, result)  # raises if denied
    """
    if not can(actor, operation, record, result, entity, config=config):
        raise AccessDenied(
            actor=actor,
            operation=operation,
            entity=_entity_name(record, entity),
            message=message,
        )

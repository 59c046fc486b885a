"""Audit logging for policy compilation."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from sqla_rls.compiler._diagnostics import Diagnostic
from sqla_rls.compiler._format import format_filter, format_predicate

if TYPE_CHECKING:
    from sqla_rls.policy._base import CompiledPolicy

__all__ = ["log_compilation", "log_diagnostics", "log_missing_policy"]

logger = logging.getLogger("sqla_rls")

_DIAGNOSTIC_LEVELS = {
    "unresolved_construct": logging.WARNING,
    "low_confidence_mapping": logging.WARNING,
    "role_split": logging.INFO,
}


def log_compilation(compiled: CompiledPolicy) -> None:
    """Log one compiled (entity, operation).

    Logging levels:
    - INFO: Summary (entity, operation, policy count)
    - DEBUG: Detailed (rendered predicate and filter)

    Example::

        log_compilation(result.get("Post", "select"))
    """
    logger.info(
        "Compiled %s.%s from %d policy(ies), %d diagnostic(s)",
        compiled.entity,
        compiled.operation,
        len(compiled.policies),
        len(compiled.diagnostics),
    )
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(
            "%s.%s predicate: %s; filter: %s",
            compiled.entity,
            compiled.operation,
            format_predicate(compiled.predicate.expr),
            format_filter(compiled.filter.expr),
        )


def log_missing_policy(*, entity: str, operation: str) -> None:
    logger.warning(
        "No policy registered for (%s, %r); deny-by-default applied",
        entity,
        operation,
    )


def log_diagnostics(diagnostics: Iterable[Diagnostic]) -> None:
    """Log each diagnostic to a category-specific sub-logger.

    Each category gets its own logger under
    ``sqla_rls.diagnostics.<category>`` so operators can enable or
    silence them individually.
    """
    for diagnostic in diagnostics:
        category_logger = logging.getLogger(f"sqla_rls.diagnostics.{diagnostic.category}")
        category_logger.log(
            _DIAGNOSTIC_LEVELS.get(diagnostic.category, logging.INFO),
            "%s.%s policy=%s: %s -- %s",
            diagnostic.entity,
            diagnostic.operation,
            diagnostic.policy or "<unknown>",
            diagnostic.message,
            diagnostic.expression[:200],
        )

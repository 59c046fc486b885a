"""Layered configuration for sqla-rls."""

from __future__ import annotations

from dataclasses import dataclass

from sqla_rls._types import (
    OnCompileError,
    OnMissingPolicy,
    OnUnloadedRelationship,
    OnUnresolved,
)

__all__ = [
    "CompilerConfig",
    "configure",
    "get_global_config",
    "_reset_global_config",
    "_set_global_config",
]

_VALID_UNRESOLVED: set[str] = {"allow", "deny"}
_VALID_MISSING_POLICY: set[str] = {"deny", "raise"}
_VALID_COMPILE_ERROR: set[str] = {"collect", "raise"}
_VALID_UNLOADED_RELATIONSHIP: set[str] = {"deny", "raise", "warn"}


@dataclass(frozen=True, slots=True)
class CompilerConfig:
    """Compiler configuration with merge semantics (global -> call).

    Attributes:
        on_unresolved: What unresolved constructs (``EXISTS``, opaque
            subqueries, unknown functions) compile to.  ``"allow"`` keeps
            the fail-open default; ``"deny"`` compiles them to ``false``.
            Both emit an ``unresolved_construct`` diagnostic.
        on_missing_policy: Behavior when a policed entity has no policy
            for an operation.  ``"deny"`` compiles to ``false``,
            ``"raise"`` raises ``NoPolicyError``.
        on_compile_error: ``"collect"`` records per-policy failures in the
            build result; ``"raise"`` raises ``PolicyCompilationError``.
        on_unloaded_relationship: Evaluator behavior when an ORM
            relationship is not loaded.
        principal_entity: Name of the acting-principal entity.  Detected
            as ``User``/``users`` when left unset.
        log_compilation: Log every compiled (entity, operation).
        max_workers: Thread fan-out for ``compile_policies``.

    Example::

        config = CompilerConfig(on_unresolved="deny")
        merged = config.merge(principal_entity="Account")
    """

    on_unresolved: OnUnresolved = "allow"
    on_missing_policy: OnMissingPolicy = "deny"
    on_compile_error: OnCompileError = "collect"
    on_unloaded_relationship: OnUnloadedRelationship = "deny"
    principal_entity: str | None = None
    log_compilation: bool = False
    max_workers: int | None = None

    def __post_init__(self) -> None:
        if self.on_unresolved not in _VALID_UNRESOLVED:
            raise ValueError(
                f"on_unresolved must be one of {_VALID_UNRESOLVED!r}, got {self.on_unresolved!r}"
            )
        if self.on_missing_policy not in _VALID_MISSING_POLICY:
            raise ValueError(
                f"on_missing_policy must be one of {_VALID_MISSING_POLICY!r}, "
                f"got {self.on_missing_policy!r}"
            )
        if self.on_compile_error not in _VALID_COMPILE_ERROR:
            raise ValueError(
                f"on_compile_error must be one of {_VALID_COMPILE_ERROR!r}, "
                f"got {self.on_compile_error!r}"
            )
        if self.on_unloaded_relationship not in _VALID_UNLOADED_RELATIONSHIP:
            raise ValueError(
                f"on_unloaded_relationship must be one of "
                f"{_VALID_UNLOADED_RELATIONSHIP!r}, "
                f"got {self.on_unloaded_relationship!r}"
            )
        if self.max_workers is not None and self.max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {self.max_workers!r}")

    @property
    def fail_open(self) -> bool:
        """Whether unresolved constructs default to allowing access."""
        return self.on_unresolved == "allow"

    def merge(
        self,
        *,
        on_unresolved: OnUnresolved | None = None,
        on_missing_policy: OnMissingPolicy | None = None,
        on_compile_error: OnCompileError | None = None,
        on_unloaded_relationship: OnUnloadedRelationship | None = None,
        principal_entity: str | None = None,
        log_compilation: bool | None = None,
        max_workers: int | None = None,
    ) -> CompilerConfig:
        """Return a new config with non-None overrides applied.

        Example::

            base = CompilerConfig()
            strict = base.merge(on_compile_error="raise")
        """
        return CompilerConfig(
            on_unresolved=on_unresolved if on_unresolved is not None else self.on_unresolved,
            on_missing_policy=(
                on_missing_policy if on_missing_policy is not None else self.on_missing_policy
            ),
            on_compile_error=(
                on_compile_error if on_compile_error is not None else self.on_compile_error
            ),
            on_unloaded_relationship=(
                on_unloaded_relationship
                if on_unloaded_relationship is not None
                else self.on_unloaded_relationship
            ),
            principal_entity=(
                principal_entity if principal_entity is not None else self.principal_entity
            ),
            log_compilation=(
                log_compilation if log_compilation is not None else self.log_compilation
            ),
            max_workers=max_workers if max_workers is not None else self.max_workers,
        )


# ---------------------------------------------------------------------------
# Global configuration singleton
# ---------------------------------------------------------------------------

_global_config = CompilerConfig()


def get_global_config() -> CompilerConfig:
    """Return the current global configuration."""
    return _global_config


def configure(
    *,
    on_unresolved: OnUnresolved | None = None,
    on_missing_policy: OnMissingPolicy | None = None,
    on_compile_error: OnCompileError | None = None,
    on_unloaded_relationship: OnUnloadedRelationship | None = None,
    principal_entity: str | None = None,
    log_compilation: bool | None = None,
    max_workers: int | None = None,
) -> CompilerConfig:
    """Update the global configuration by merging overrides.

    Only non-None values are applied. Returns the new global config.

    Example::

        configure(on_compile_error="raise")
        # compile_policies() now stops at the first broken policy
    """
    global _global_config
    _global_config = _global_config.merge(
        on_unresolved=on_unresolved,
        on_missing_policy=on_missing_policy,
        on_compile_error=on_compile_error,
        on_unloaded_relationship=on_unloaded_relationship,
        principal_entity=principal_entity,
        log_compilation=log_compilation,
        max_workers=max_workers,
    )
    return _global_config


def _set_global_config(cfg: CompilerConfig) -> None:
    """Replace global config with an exact snapshot. For testing only."""
    global _global_config
    _global_config = cfg


def _reset_global_config() -> None:
    """Reset global config to defaults. For testing only."""
    global _global_config
    _global_config = CompilerConfig()

"""Policy sources and compiled results."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from sqlalchemy import ColumnElement

from sqla_rls._types import OPERATIONS, Command, Operation
from sqla_rls.compiler._diagnostics import Diagnostic
from sqla_rls.compiler._eval import evaluate
from sqla_rls.compiler._filter import CompiledFilter
from sqla_rls.compiler._filters import FilterExpr
from sqla_rls.compiler._format import format_filter, format_predicate
from sqla_rls.compiler._predicate import CompiledPredicate
from sqla_rls.compiler._sqla import to_sqlalchemy
from sqla_rls.config._config import CompilerConfig
from sqla_rls.exceptions import RLSError
from sqla_rls.parser._ast import Node

__all__ = ["BuildResult", "CompiledPolicy", "PolicyFailure", "PolicySource"]

_VALID_COMMANDS: set[str] = {"select", "insert", "update", "delete", "all"}


@dataclass(frozen=True, slots=True)
class PolicySource:
    """One row-level policy as declared on an entity.

    Attributes:
        name: Policy name, unique per entity.
        entity: Entity (table) the policy protects.
        command: Operation it applies to; ``"all"`` covers every operation.
        using: Condition on existing rows (``select``/``update``/``delete``).
        with_check: Condition on new rows (``insert``); ``using`` is
            used when absent.
        permissive: Permissive policies are OR-combined; restrictive ones
            are AND-combined onto them.
    """

    name: str
    entity: str
    command: Command = "all"
    using: str | None = None
    with_check: str | None = None
    permissive: bool = True

    def __post_init__(self) -> None:
        if self.command not in _VALID_COMMANDS:
            raise ValueError(f"command must be one of {_VALID_COMMANDS!r}, got {self.command!r}")

    @property
    def operations(self) -> tuple[Operation, ...]:
        if self.command == "all":
            return OPERATIONS
        return (self.command,)

    def text_for(self, operation: Operation) -> str:
        """Policy text gating *operation*; empty text means unconditional."""
        if operation == "insert" and self.with_check is not None:
            return self.with_check
        return self.using or ""


@dataclass(frozen=True, slots=True)
class CompiledPolicy:
    """Both compiled forms of the combined policies for one (entity, operation).

    Attributes:
        entity: Entity name as declared in the schema graph.
        operation: The gated operation.
        policies: Names of the contributing policy sources.
        ast: The combined policy expression.
        predicate: In-memory predicate backend output.
        filter: Data-narrowing filter backend output.
        diagnostics: Diagnostics of both backends, without repeats.
        deny_by_default: True when no policy covers the operation.
    """

    entity: str
    operation: Operation
    policies: tuple[str, ...]
    ast: Node
    predicate: CompiledPredicate
    filter: CompiledFilter
    diagnostics: tuple[Diagnostic, ...] = ()
    deny_by_default: bool = False

    @property
    def grants_by_role(self) -> bool:
        return self.predicate.grants_by_role

    def check(self, record: Any, actor: Any, config: CompilerConfig | None = None) -> bool:
        """Evaluate the predicate for one record."""
        return evaluate(self.predicate.expr, record, actor, config)

    def filter_for(self, actor: Any, config: CompilerConfig | None = None) -> FilterExpr:
        """The filter bound to *actor*, role checks applied."""
        return self.filter.for_actor(actor, config)

    def where(
        self, model: type, actor: Any, config: CompilerConfig | None = None
    ) -> ColumnElement[bool]:
        """SQLAlchemy WHERE criteria selecting the rows *actor* may access.

        Example::

            stmt = select(Post).where(result.get("Post", "select").where(Post, user))
        """
        return to_sqlalchemy(self.filter_for(actor, config), model, actor, config)


@dataclass(frozen=True, slots=True)
class PolicyFailure:
    """A policy that could not be compiled.

    Attributes:
        entity: Entity the policy belongs to.
        operation: Operation being compiled.
        policy: Name of the offending policy source.
        error: The ``PolicySyntaxError`` or ``SchemaResolutionError``.
    """

    entity: str
    operation: Operation
    policy: str
    error: RLSError

    @property
    def message(self) -> str:
        return str(self.error)

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serializable dictionary."""
        return {
            "entity": self.entity,
            "operation": self.operation,
            "policy": self.policy,
            "error": type(self.error).__name__,
            "message": self.message,
        }


@dataclass(frozen=True)
class BuildResult:
    """Everything ``compile_policies`` produced.

    ``compiled`` is keyed by ``(entity, operation)`` in a deterministic
    order: entities by name, operations in select/insert/update/delete
    order.
    """

    compiled: Mapping[tuple[str, Operation], CompiledPolicy] = field(
        default_factory=lambda: MappingProxyType({})
    )
    failures: tuple[PolicyFailure, ...] = ()

    @property
    def diagnostics(self) -> tuple[Diagnostic, ...]:
        return tuple(d for compiled in self.compiled.values() for d in compiled.diagnostics)

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def entities(self) -> tuple[str, ...]:
        return tuple(dict.fromkeys(entity for entity, _ in self.compiled))

    def get(self, entity: str, operation: Operation) -> CompiledPolicy | None:
        found = self.compiled.get((entity, operation))
        if found is None:
            folded = entity.lower()
            for (name, op), compiled in self.compiled.items():
                if op == operation and name.lower() == folded:
                    return compiled
        return found

    def __getitem__(self, key: tuple[str, Operation]) -> CompiledPolicy:
        found = self.get(*key)
        if found is None:
            raise KeyError(key)
        return found

    def __iter__(self) -> Iterator[CompiledPolicy]:
        return iter(self.compiled.values())

    def __len__(self) -> int:
        return len(self.compiled)

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serializable summary."""
        return {
            "compiled": [
                {
                    "entity": c.entity,
                    "operation": c.operation,
                    "policies": list(c.policies),
                    "predicate": format_predicate(c.predicate.expr),
                    "filter": format_filter(c.filter.expr),
                    "grants_by_role": c.grants_by_role,
                    "deny_by_default": c.deny_by_default,
                }
                for c in self.compiled.values()
            ],
            "failures": [f.to_dict() for f in self.failures],
            "diagnostics": [d.to_dict() for d in self.diagnostics],
        }

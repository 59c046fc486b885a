"""Build driver — compile every policed (entity, operation) into both backends."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from types import MappingProxyType

from sqla_rls._audit import log_compilation, log_diagnostics, log_missing_policy
from sqla_rls._types import OPERATIONS, Operation
from sqla_rls.compiler._diagnostics import dedupe
from sqla_rls.compiler._filter import CompiledFilter, compile_filter
from sqla_rls.compiler._filters import BlockAll
from sqla_rls.compiler._ir import FALSE
from sqla_rls.compiler._predicate import CompiledPredicate, compile_predicate
from sqla_rls.config._config import CompilerConfig, get_global_config
from sqla_rls.context._mapping import ContextMapping
from sqla_rls.exceptions import (
    NoPolicyError,
    PolicyCompilationError,
    PolicySyntaxError,
    SchemaResolutionError,
)
from sqla_rls.parser._ast import And, Literal, Node, Or
from sqla_rls.parser._parser import parse
from sqla_rls.policy._base import BuildResult, CompiledPolicy, PolicyFailure, PolicySource
from sqla_rls.policy._registry import PolicyRegistry, get_default_registry
from sqla_rls.schema._graph import SchemaGraph

__all__ = ["combine_policies", "compile_policies"]

logger = logging.getLogger("sqla_rls.build")

_DENY = Literal("boolean", False)


@dataclass(frozen=True, slots=True)
class _Outcome:
    compiled: CompiledPolicy | None
    failures: tuple[PolicyFailure, ...] = ()


def combine_policies(permissive: list[Node], restrictive: list[Node]) -> Node:
    """OR the permissive expressions, then AND each restrictive one onto them.

    With no permissive expression nothing is granted.
    """
    if not permissive:
        return _DENY
    combined = permissive[0] if len(permissive) == 1 else Or(tuple(permissive))
    if restrictive:
        return And((combined, *restrictive))
    return combined


def _denied(entity: str, operation: Operation) -> CompiledPolicy:
    return CompiledPolicy(
        entity=entity,
        operation=operation,
        policies=(),
        ast=_DENY,
        predicate=CompiledPredicate(FALSE),
        filter=CompiledFilter(BlockAll()),
        deny_by_default=True,
    )


def _fail(failure: PolicyFailure, config: CompilerConfig) -> _Outcome:
    if config.on_compile_error == "raise":
        raise PolicyCompilationError(
            entity=failure.entity,
            operation=failure.operation,
            policy=failure.policy,
            message=failure.message,
        ) from failure.error
    logger.error(
        "Policy %r on %s.%s failed to compile: %s",
        failure.policy,
        failure.entity,
        failure.operation,
        failure.message,
    )
    return _Outcome(None, (failure,))


def _culprit(
    parsed: list[tuple[PolicySource, Node]],
    entity: str,
    operation: Operation,
    mapping: ContextMapping,
    graph: SchemaGraph,
    config: CompilerConfig,
) -> str:
    """Name the source whose expression fails on its own."""
    for source, ast in parsed:
        try:
            compile_predicate(ast, mapping, graph, entity, operation=operation, config=config)
        except SchemaResolutionError:
            return source.name
    return ", ".join(source.name for source, _ in parsed)


def _compile_one(
    registry: PolicyRegistry,
    registered_entity: str,
    operation: Operation,
    mapping: ContextMapping,
    graph: SchemaGraph,
    config: CompilerConfig,
) -> _Outcome:
    sources = registry.lookup(registered_entity, operation)
    entity = registered_entity
    try:
        entity = graph.entity(registered_entity).name
    except SchemaResolutionError as exc:
        names = ", ".join(s.name for s in registry.sources(registered_entity))
        return _fail(PolicyFailure(registered_entity, operation, names, exc), config)

    if not sources:
        if config.on_missing_policy == "raise":
            raise NoPolicyError(entity=entity, operation=operation)
        log_missing_policy(entity=entity, operation=operation)
        return _Outcome(_denied(entity, operation))

    parsed: list[tuple[PolicySource, Node]] = []
    for source in sources:
        try:
            parsed.append((source, parse(source.text_for(operation), entity)))
        except PolicySyntaxError as exc:
            return _fail(PolicyFailure(entity, operation, source.name, exc), config)

    ast = combine_policies(
        [node for source, node in parsed if source.permissive],
        [node for source, node in parsed if not source.permissive],
    )
    try:
        predicate = compile_predicate(ast, mapping, graph, entity, operation=operation, config=config)
        row_filter = compile_filter(ast, mapping, graph, entity, operation=operation, config=config)
    except SchemaResolutionError as exc:
        culprit = _culprit(parsed, entity, operation, mapping, graph, config)
        return _fail(PolicyFailure(entity, operation, culprit, exc), config)

    names = tuple(source.name for source, _ in parsed)
    diagnostics = tuple(
        replace(d, policy=", ".join(names))
        for d in dedupe(predicate.diagnostics + row_filter.diagnostics)
    )
    compiled = CompiledPolicy(
        entity=entity,
        operation=operation,
        policies=names,
        ast=ast,
        predicate=predicate,
        filter=row_filter,
        diagnostics=diagnostics,
    )
    if config.log_compilation:
        log_compilation(compiled)
    log_diagnostics(diagnostics)
    return _Outcome(compiled)


def compile_policies(
    registry: PolicyRegistry | None,
    mapping: ContextMapping,
    graph: SchemaGraph,
    config: CompilerConfig | None = None,
) -> BuildResult:
    """Compile every policed (entity, operation) into a predicate and a filter.

    For each entity with at least one policy and each operation:
    ``select``/``update``/``delete`` compile the ``USING`` text, ``insert``
    the ``WITH CHECK`` text (falling back to ``USING``).  Permissive
    policies are OR-combined and restrictive ones AND-combined onto them.
    An operation no policy covers is denied.

    Failures are isolated per (entity, operation): a broken policy is
    recorded in ``BuildResult.failures`` and its siblings still compile.
    An operation whose policies failed has no compiled entry, so point
    checks against it deny.

    Args:
        registry: Policy sources; the default registry when ``None``.
        mapping: Resolves context providers to principal fields.
        graph: Schema the policies resolve against.
        config: Compiler options; the global config when omitted.

    Raises:
        PolicyCompilationError: With ``on_compile_error="raise"``, for the
            first failure in build order.
        NoPolicyError: With ``on_missing_policy="raise"``.

    Example::

        result = compile_policies(registry, ContextMapping(), graph)
        post_select = result.get("Post", "select")
        post_select.check(post, user)
    """
    cfg = config if config is not None else get_global_config()
    target_registry = registry if registry is not None else get_default_registry()
    tasks = [(entity, op) for entity in target_registry.entities() for op in OPERATIONS]

    def run(task: tuple[str, Operation]) -> _Outcome:
        return _compile_one(target_registry, task[0], task[1], mapping, graph, cfg)

    if cfg.max_workers is not None and cfg.max_workers > 1:
        with ThreadPoolExecutor(max_workers=cfg.max_workers) as executor:
            outcomes = list(executor.map(run, tasks))
    else:
        outcomes = [run(task) for task in tasks]

    compiled: dict[tuple[str, Operation], CompiledPolicy] = {}
    failures: list[PolicyFailure] = []
    for outcome in outcomes:
        if outcome.compiled is not None:
            compiled[(outcome.compiled.entity, outcome.compiled.operation)] = outcome.compiled
        failures.extend(outcome.failures)

    logger.info(
        "Compiled %d (entity, operation) pair(s) for %d entit(ies); %d failure(s)",
        len(compiled),
        len(target_registry.entities()),
        len(failures),
    )
    return BuildResult(compiled=MappingProxyType(compiled), failures=tuple(failures))

"""Exception hierarchy for sqla-rls."""

from __future__ import annotations

__all__ = [
    "AccessDenied",
    "NoPolicyError",
    "PolicyCompilationError",
    "PolicySyntaxError",
    "RLSError",
    "SchemaResolutionError",
    "UnloadedRelationshipError",
    "UnsupportedExpressionError",
]


class RLSError(Exception):
    """Base exception for all sqla-rls errors."""


class PolicySyntaxError(RLSError):
    """Policy text is malformed.

    Fatal for the affected predicate only.

    Attributes:
        position: Zero-based character offset where parsing failed.
        expected: Description of what the parser expected at ``position``.
        found: The offending token text (empty at end of input).
        text: The full policy text.

    Example::

        try:
            parse("owner_id = (1", "Post")
        except PolicySyntaxError as exc:
            print(exc.position, exc.expected)  # 13 ')'
    """

    def __init__(
        self,
        *,
        position: int,
        expected: str,
        found: str = "",
        text: str = "",
    ) -> None:
        self.position = position
        self.expected = expected
        self.found = found
        self.text = text
        got = f"found {found!r}" if found else "reached end of input"
        super().__init__(f"Syntax error at position {position}: expected {expected}, {got}")


class SchemaResolutionError(RLSError):
    """A referenced entity, field or relation cannot be resolved in the schema graph.

    Attributes:
        entity: The entity the lookup started from.
        field: The field or relation name that could not be resolved.
    """

    def __init__(self, *, entity: str, field: str, message: str | None = None) -> None:
        self.entity = entity
        self.field = field
        if message is None:
            message = f"Cannot resolve '{field}' from entity {entity}"
        super().__init__(message)


class PolicyCompilationError(RLSError):
    """A single policy failed to compile.

    Wraps the underlying ``PolicySyntaxError`` or ``SchemaResolutionError``
    (available as ``__cause__``) when the build driver is configured with
    ``on_compile_error="raise"``.

    Attributes:
        entity: The entity the policy belongs to.
        operation: The operation being compiled.
        policy: The policy name.
    """

    def __init__(self, *, entity: str, operation: str, policy: str, message: str) -> None:
        self.entity = entity
        self.operation = operation
        self.policy = policy
        super().__init__(f"{entity}.{operation} policy {policy!r}: {message}")


class NoPolicyError(RLSError):
    """A policed entity has no policy for an operation.

    Raised when configured with ``on_missing_policy="raise"`` instead of the
    default deny behavior.
    """

    def __init__(self, *, entity: str, operation: str) -> None:
        self.entity = entity
        self.operation = operation
        super().__init__(f"No policy registered for ({entity}, {operation!r})")


class AccessDenied(RLSError):  # noqa: N818
    """Actor is not allowed to perform the operation on the record.

    Example::

        try:
            authorize(user, "delete", post, result)
        except AccessDenied as exc:
            print(f"{exc.actor} cannot {exc.operation} {exc.entity}")
    """

    def __init__(
        self,
        *,
        actor: object,
        operation: str,
        entity: str,
        message: str | None = None,
    ) -> None:
        self.actor = actor
        self.operation = operation
        self.entity = entity
        if message is None:
            message = f"Actor {actor!r} is not allowed to {operation} {entity}"
        super().__init__(message)


class UnloadedRelationshipError(RLSError):
    """Relationship was not loaded and cannot be evaluated in-memory.

    Raised when ``on_unloaded_relationship`` is set to ``"raise"`` and the
    predicate evaluator reaches a relationship that has not been eagerly
    loaded on an ORM instance.
    """

    def __init__(self, *, model: str, relationship: str) -> None:
        self.model = model
        self.relationship = relationship
        super().__init__(
            f"Relationship '{relationship}' on {model} is not loaded. "
            f"Either eagerly load it or set on_unloaded_relationship='deny'."
        )


class UnsupportedExpressionError(RLSError):
    """A predicate or filter node type is not supported by the evaluator or renderer."""

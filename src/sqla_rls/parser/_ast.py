"""Expression tree produced by the policy parser.

All nodes are frozen dataclasses holding tuples, so a parsed tree is
immutable and can be shared freely between the two compiler backends and
across threads.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Union

from sqla_rls._types import LiteralKind

__all__ = [
    "And",
    "ArrayLiteral",
    "Case",
    "ColumnRef",
    "Comparison",
    "Exists",
    "FunctionCall",
    "Literal",
    "Node",
    "Not",
    "Or",
    "SessionSetting",
    "Subquery",
    "TRUE",
    "walk",
]


@dataclass(frozen=True, slots=True)
class Or:
    operands: tuple[Node, ...]


@dataclass(frozen=True, slots=True)
class And:
    operands: tuple[Node, ...]


@dataclass(frozen=True, slots=True)
class Not:
    operand: Node


@dataclass(frozen=True, slots=True)
class Comparison:
    """Binary comparison.

    ``operator`` is one of ``=``, ``!=``, ``<``, ``>``, ``<=``, ``>=``,
    ``IN``, ``NOT IN``, ``IS``, ``IS NOT``, ``LIKE``, ``ILIKE``,
    ``NOT LIKE``, ``NOT ILIKE``.  ``<>`` is normalised to ``!=`` and
    ``= ANY (...)`` to ``IN``.  ``IS``/``IS NOT`` always have a null
    literal on the right.
    """

    operator: str
    left: Node
    right: Node


@dataclass(frozen=True, slots=True)
class Case:
    """``CASE`` expression with ordered, first-match-wins branches.

    A simple ``CASE x WHEN v THEN r`` has ``discriminant=x``; a searched
    ``CASE WHEN cond THEN r`` has ``discriminant=None`` and each branch
    value is a boolean condition.
    """

    discriminant: Node | None
    branches: tuple[tuple[Node, Node], ...]
    otherwise: Node | None = None


@dataclass(frozen=True, slots=True)
class Exists:
    """Opaque ``EXISTS (...)`` subquery, kept verbatim."""

    source_entity: str | None
    raw_condition: str


@dataclass(frozen=True, slots=True)
class Subquery:
    """Opaque parenthesised ``SELECT`` outside ``EXISTS``, kept verbatim."""

    source_entity: str | None
    raw_text: str


@dataclass(frozen=True, slots=True)
class FunctionCall:
    name: str
    args: tuple[Node, ...] = ()


@dataclass(frozen=True, slots=True)
class ColumnRef:
    """Column reference; ``entity=None`` means the policy's own row."""

    name: str
    entity: str | None = None


@dataclass(frozen=True, slots=True)
class SessionSetting:
    """``current_setting('<key>')`` read."""

    key: str


@dataclass(frozen=True, slots=True)
class Literal:
    kind: LiteralKind
    value: str | int | Decimal | bool | None


@dataclass(frozen=True, slots=True)
class ArrayLiteral:
    items: tuple[Node, ...]


Node = Union[
    Or,
    And,
    Not,
    Comparison,
    Case,
    Exists,
    Subquery,
    FunctionCall,
    ColumnRef,
    SessionSetting,
    Literal,
    ArrayLiteral,
]

# Empty policy text parses to this node.
TRUE = Literal("boolean", True)


def walk(node: Node):
    """Yield *node* and all of its descendants, depth-first, in source order."""
    yield node
    if isinstance(node, (Or, And)):
        for operand in node.operands:
            yield from walk(operand)
    elif isinstance(node, Not):
        yield from walk(node.operand)
    elif isinstance(node, Comparison):
        yield from walk(node.left)
        yield from walk(node.right)
    elif isinstance(node, Case):
        if node.discriminant is not None:
            yield from walk(node.discriminant)
        for value, result in node.branches:
            yield from walk(value)
            yield from walk(result)
        if node.otherwise is not None:
            yield from walk(node.otherwise)
    elif isinstance(node, FunctionCall):
        for arg in node.args:
            yield from walk(arg)
    elif isinstance(node, ArrayLiteral):
        for item in node.items:
            yield from walk(item)

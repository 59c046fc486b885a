"""Parser — tokenizes policy text and builds an immutable expression tree."""

from sqla_rls.parser._ast import (
    And,
    ArrayLiteral,
    Case,
    ColumnRef,
    Comparison,
    Exists,
    FunctionCall,
    Literal,
    Node,
    Not,
    Or,
    SessionSetting,
    Subquery,
    walk,
)
from sqla_rls.parser._format import format_expression
from sqla_rls.parser._parser import parse
from sqla_rls.parser._tokens import Token, tokenize

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
    "Token",
    "format_expression",
    "parse",
    "tokenize",
    "walk",
]

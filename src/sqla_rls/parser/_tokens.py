"""Tokenizer for policy expressions.

Type casts (``::type``) are dropped here, before structural parsing, so
the grammar never sees them.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Literal

from sqla_rls.exceptions import PolicySyntaxError

__all__ = ["Token", "TokenKind", "tokenize"]

TokenKind = Literal[
    "ident",
    "quoted_ident",
    "string",
    "number",
    "op",
    "lparen",
    "rparen",
    "lbracket",
    "rbracket",
    "comma",
    "dot",
    "eof",
]

_PUNCTUATION: dict[str, TokenKind] = {
    "(": "lparen",
    ")": "rparen",
    "[": "lbracket",
    "]": "rbracket",
    ",": "comma",
    ".": "dot",
}

_OPERATOR_CHARS = set("=<>!+-*/%|&~^@#?")

# Longest first; anything matched here that is not a comparison is rejected
# by the parser as an unknown operator.
_OPERATORS = ("->>", "#>>", "<=", ">=", "<>", "!=", "||", "->", "#>", "~~", "!~", "@>", "<@", "&&")

# Type names made of several words, keyed by their first word.
_MULTIWORD_TYPES: dict[str, tuple[tuple[str, ...], ...]] = {
    "character": (("varying",),),
    "bit": (("varying",),),
    "double": (("precision",),),
    "timestamp": (("with", "time", "zone"), ("without", "time", "zone")),
    "time": (("with", "time", "zone"), ("without", "time", "zone")),
}


@dataclass(frozen=True, slots=True)
class Token:
    """A lexical unit and its source span ``[start, end)``."""

    kind: TokenKind
    value: str | int | Decimal
    start: int
    end: int

    def keyword(self) -> str | None:
        """Upper-cased identifier text, or None for anything else."""
        if self.kind == "ident":
            return str(self.value).upper()
        return None


def tokenize(text: str) -> list[Token]:
    """Split *text* into tokens, dropping whitespace, comments and casts.

    Raises:
        PolicySyntaxError: On unterminated strings/identifiers, stray
            characters or a cast without a type name.

    Example::

        [t.value for t in tokenize("id = (x)::int")]
        # ['id', '=', '(', 'x', ')', '']
    """
    tokens: list[Token] = []
    pos = 0
    length = len(text)
    while pos < length:
        ch = text[pos]
        if ch.isspace():
            pos += 1
            continue
        if text.startswith("--", pos):
            newline = text.find("\n", pos)
            pos = length if newline == -1 else newline + 1
            continue
        if text.startswith("/*", pos):
            close = text.find("*/", pos + 2)
            if close == -1:
                raise PolicySyntaxError(position=pos, expected="'*/'", text=text)
            pos = close + 2
            continue
        if text.startswith("::", pos):
            pos = _skip_type(text, pos + 2)
            continue
        if ch == "'":
            value, end = _read_string(text, pos)
            tokens.append(Token("string", value, pos, end))
            pos = end
            continue
        if ch == '"':
            value, end = _read_quoted_ident(text, pos)
            tokens.append(Token("quoted_ident", value, pos, end))
            pos = end
            continue
        if ch.isdigit():
            value, end = _read_number(text, pos)
            tokens.append(Token("number", value, pos, end))
            pos = end
            continue
        if ch.isalpha() or ch == "_":
            end = _ident_end(text, pos)
            tokens.append(Token("ident", text[pos:end], pos, end))
            pos = end
            continue
        if ch in _PUNCTUATION:
            tokens.append(Token(_PUNCTUATION[ch], ch, pos, pos + 1))
            pos += 1
            continue
        if ch in _OPERATOR_CHARS:
            op = next((o for o in _OPERATORS if text.startswith(o, pos)), ch)
            tokens.append(Token("op", op, pos, pos + len(op)))
            pos += len(op)
            continue
        raise PolicySyntaxError(position=pos, expected="a token", found=ch, text=text)
    tokens.append(Token("eof", "", length, length))
    return tokens


def _ident_end(text: str, pos: int) -> int:
    end = pos
    while end < len(text) and (text[end].isalnum() or text[end] in "_$"):
        end += 1
    return end


def _read_string(text: str, pos: int) -> tuple[str, int]:
    chunks: list[str] = []
    i = pos + 1
    while i < len(text):
        if text[i] == "'":
            if text.startswith("''", i):
                chunks.append("'")
                i += 2
                continue
            return "".join(chunks), i + 1
        chunks.append(text[i])
        i += 1
    raise PolicySyntaxError(position=len(text), expected="closing quote", text=text)


def _read_quoted_ident(text: str, pos: int) -> tuple[str, int]:
    chunks: list[str] = []
    i = pos + 1
    while i < len(text):
        if text[i] == '"':
            if text.startswith('""', i):
                chunks.append('"')
                i += 2
                continue
            return "".join(chunks), i + 1
        chunks.append(text[i])
        i += 1
    raise PolicySyntaxError(position=len(text), expected="closing double quote", text=text)


def _read_number(text: str, pos: int) -> tuple[int | Decimal, int]:
    end = pos
    while end < len(text) and text[end].isdigit():
        end += 1
    is_decimal = False
    if end + 1 < len(text) and text[end] == "." and text[end + 1].isdigit():
        is_decimal = True
        end += 1
        while end < len(text) and text[end].isdigit():
            end += 1
    if end < len(text) and text[end] in "eE":
        exp = end + 1
        if exp < len(text) and text[exp] in "+-":
            exp += 1
        if exp < len(text) and text[exp].isdigit():
            is_decimal = True
            end = exp
            while end < len(text) and text[end].isdigit():
                end += 1
    raw = text[pos:end]
    return (Decimal(raw) if is_decimal else int(raw)), end


def _skip_space(text: str, pos: int) -> int:
    while pos < len(text) and text[pos].isspace():
        pos += 1
    return pos


def _skip_type_word(text: str, pos: int) -> tuple[str, int]:
    """Consume one (possibly quoted or schema-qualified) type word."""
    start = pos
    if pos < len(text) and text[pos] == '"':
        _, pos = _read_quoted_ident(text, pos)
    elif pos < len(text) and (text[pos].isalpha() or text[pos] == "_"):
        pos = _ident_end(text, pos)
    else:
        raise PolicySyntaxError(
            position=pos, expected="type name after '::'", found=text[pos : pos + 1], text=text
        )
    word = text[start:pos].strip('"').lower()
    if pos < len(text) and text[pos] == ".":
        return _skip_type_word(text, pos + 1)
    return word, pos


def _skip_modifiers(text: str, pos: int) -> int:
    """Consume ``(n[, m])`` length/precision modifiers."""
    probe = _skip_space(text, pos)
    if probe < len(text) and text[probe] == "(":
        close = text.find(")", probe)
        if close == -1:
            raise PolicySyntaxError(position=len(text), expected="')'", text=text)
        return close + 1
    return pos


def _skip_type(text: str, pos: int) -> int:
    """Skip the type name that follows ``::`` and return the new position."""
    word, pos = _skip_type_word(text, _skip_space(text, pos))
    pos = _skip_modifiers(text, pos)
    for phrase in _MULTIWORD_TYPES.get(word, ()):
        probe = pos
        matched = True
        for part in phrase:
            probe = _skip_space(text, probe)
            end = _ident_end(text, probe)
            if text[probe:end].lower() != part:
                matched = False
                break
            probe = end
        if matched:
            pos = _skip_modifiers(text, probe)
            break
    # Array suffixes: ``[]`` or ``[n]``.
    while True:
        probe = _skip_space(text, pos)
        if probe < len(text) and text[probe] == "[":
            close = text.find("]", probe)
            if close == -1:
                raise PolicySyntaxError(position=len(text), expected="']'", text=text)
            inner = text[probe + 1 : close].strip()
            if inner and not inner.isdigit():
                break
            pos = close + 1
            continue
        break
    return pos

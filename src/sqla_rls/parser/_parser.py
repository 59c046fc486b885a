"""Recursive-descent parser for row-level security predicates.

Precedence, lowest to highest: ``OR`` < ``AND`` < ``NOT`` < comparison <
primary.  ``EXISTS`` and other subqueries are captured verbatim rather
than parsed.
"""

from __future__ import annotations

from sqla_rls.exceptions import PolicySyntaxError
from sqla_rls.parser._ast import (
    TRUE,
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
)
from sqla_rls.parser._tokens import Token, tokenize

__all__ = ["parse"]

_COMPARISON_OPS: dict[str, str] = {
    "=": "=",
    "!=": "!=",
    "<>": "!=",
    "<": "<",
    ">": ">",
    "<=": "<=",
    ">=": ">=",
}

_RESERVED = frozenset(
    {
        "ALL",
        "AND",
        "ANY",
        "ARRAY",
        "AS",
        "CASE",
        "CAST",
        "ELSE",
        "END",
        "EXISTS",
        "FALSE",
        "FROM",
        "ILIKE",
        "IN",
        "IS",
        "LIKE",
        "NOT",
        "NULL",
        "OR",
        "SELECT",
        "SOME",
        "THEN",
        "TRUE",
        "WHEN",
        "WHERE",
    }
)

# SQL keywords that read like columns but are zero-argument functions.
_NILADIC_FUNCTIONS = frozenset({"current_user", "session_user", "current_role"})

_NULL = Literal("null", None)


def parse(text: str, entity_name: str) -> Node:
    """Parse policy *text* written against *entity_name* into an expression tree.

    Empty or whitespace-only text is shorthand for ``true``.

    Args:
        text: The predicate source, e.g. a ``USING`` clause.
        entity_name: The entity the policy is attached to.  Column
            references qualified with this name are normalised to
            unqualified references.

    Returns:
        The root ``Node`` of an immutable expression tree.

    Raises:
        PolicySyntaxError: On malformed input, with the failing position.

    Example::

        parse("a AND b OR c", "Post")
        # Or((And((ColumnRef('a'), ColumnRef('b'))), ColumnRef('c')))
    """
    if not text or not text.strip():
        return TRUE
    return _Parser(text, entity_name).parse()


class _Parser:
    def __init__(self, text: str, entity_name: str) -> None:
        self._text = text
        self._entity = entity_name
        self._tokens = tokenize(text)
        self._pos = 0

    # -- token helpers -------------------------------------------------------

    @property
    def _tok(self) -> Token:
        return self._tokens[self._pos]

    def _peek(self, offset: int = 1) -> Token:
        index = min(self._pos + offset, len(self._tokens) - 1)
        return self._tokens[index]

    def _advance(self) -> Token:
        tok = self._tokens[self._pos]
        if tok.kind != "eof":
            self._pos += 1
        return tok

    def _at_keyword(self, *words: str) -> bool:
        return self._tok.keyword() in words

    def _error(self, expected: str, tok: Token | None = None) -> PolicySyntaxError:
        tok = tok or self._tok
        found = "" if tok.kind == "eof" else self._text[tok.start : tok.end]
        return PolicySyntaxError(position=tok.start, expected=expected, found=found, text=self._text)

    def _expect(self, kind: str, expected: str) -> Token:
        if self._tok.kind != kind:
            raise self._error(expected)
        return self._advance()

    def _expect_keyword(self, word: str) -> Token:
        if not self._at_keyword(word):
            raise self._error(word)
        return self._advance()

    # -- grammar -------------------------------------------------------------

    def parse(self) -> Node:
        node = self._or()
        if self._tok.kind == "rparen":
            raise self._error("end of input (unbalanced ')')")
        if self._tok.kind == "op":
            raise self._error("a comparison operator")
        if self._tok.kind != "eof":
            raise self._error("end of input")
        return node

    def _or(self) -> Node:
        operands = [self._and()]
        while self._at_keyword("OR"):
            self._advance()
            operands.append(self._and())
        return operands[0] if len(operands) == 1 else Or(tuple(operands))

    def _and(self) -> Node:
        operands = [self._not()]
        while self._at_keyword("AND"):
            self._advance()
            operands.append(self._not())
        return operands[0] if len(operands) == 1 else And(tuple(operands))

    def _not(self) -> Node:
        if self._at_keyword("NOT"):
            self._advance()
            return Not(self._not())
        return self._comparison()

    def _comparison(self) -> Node:
        left = self._primary()
        tok = self._tok

        if tok.kind == "op":
            op = _COMPARISON_OPS.get(str(tok.value))
            if op is None:
                raise self._error("a comparison operator")
            self._advance()
            if self._at_keyword("ANY", "SOME"):
                self._advance()
                if op != "=":
                    raise self._error("'=' before ANY", tok)
                return Comparison("IN", left, self._quantified_operand())
            if self._at_keyword("ALL"):
                self._advance()
                if op != "!=":
                    raise self._error("'<>' or '!=' before ALL", tok)
                return Comparison("NOT IN", left, self._quantified_operand())
            return Comparison(op, left, self._primary())

        negated = False
        if self._at_keyword("NOT") and self._peek().keyword() in ("IN", "LIKE", "ILIKE"):
            self._advance()
            negated = True
        elif self._at_keyword("NOT"):
            raise self._error("IN, LIKE or ILIKE after NOT", self._peek())

        if self._at_keyword("IN"):
            self._advance()
            return Comparison("NOT IN" if negated else "IN", left, self._in_list())
        if self._at_keyword("LIKE", "ILIKE"):
            word = str(self._advance().keyword())
            return Comparison(f"NOT {word}" if negated else word, left, self._primary())
        if self._at_keyword("IS"):
            self._advance()
            op = "IS"
            if self._at_keyword("NOT"):
                self._advance()
                op = "IS NOT"
            self._expect_keyword("NULL")
            return Comparison(op, left, _NULL)
        return left

    def _quantified_operand(self) -> Node:
        """Operand of ``= ANY (...)`` / ``<> ALL (...)``."""
        self._expect("lparen", "'(' after ANY/ALL")
        if self._at_keyword("SELECT"):
            return self._subquery_body()
        node = self._or()
        self._expect("rparen", "')'")
        return node

    def _in_list(self) -> Node:
        self._expect("lparen", "'(' after IN")
        if self._at_keyword("SELECT"):
            return self._subquery_body()
        items = [self._or()]
        while self._tok.kind == "comma":
            self._advance()
            items.append(self._or())
        self._expect("rparen", "')' or ','")
        return ArrayLiteral(tuple(items))

    def _primary(self) -> Node:
        tok = self._tok

        if tok.kind == "lparen":
            self._advance()
            if self._at_keyword("SELECT"):
                return self._subquery_body()
            node = self._or()
            self._expect("rparen", "')'")
            return node

        if tok.kind == "string":
            self._advance()
            return Literal("string", str(tok.value))

        if tok.kind == "number":
            self._advance()
            return _number(tok.value)

        if tok.kind == "op" and tok.value == "-" and self._peek().kind == "number":
            self._advance()
            return _number(-self._advance().value)  # type: ignore[operator]

        if tok.kind == "quoted_ident":
            return self._name()

        word = tok.keyword()
        if word is None:
            raise self._error("an expression")
        if word == "TRUE":
            self._advance()
            return Literal("boolean", True)
        if word == "FALSE":
            self._advance()
            return Literal("boolean", False)
        if word == "NULL":
            self._advance()
            return _NULL
        if word == "EXISTS":
            self._advance()
            return self._exists()
        if word == "CASE":
            self._advance()
            return self._case()
        if word == "CAST" and self._peek().kind == "lparen":
            self._advance()
            return self._cast()
        if word == "ARRAY":
            self._advance()
            return self._array()
        if word in _RESERVED:
            raise self._error("an expression")
        return self._name()

    def _name(self) -> Node:
        """Column reference or function call, possibly dotted."""
        parts = [self._ident()]
        while self._tok.kind == "dot":
            self._advance()
            parts.append(self._ident())

        if self._tok.kind == "lparen":
            self._advance()
            return self._call(".".join(parts))

        if len(parts) == 1 and parts[0].lower() in _NILADIC_FUNCTIONS:
            return FunctionCall(parts[0].lower())

        name = parts[-1]
        entity = parts[-2] if len(parts) > 1 else None
        if entity is not None and entity.lower() == self._entity.lower():
            entity = None
        return ColumnRef(name, entity)

    def _ident(self) -> str:
        tok = self._tok
        if tok.kind == "quoted_ident":
            self._advance()
            return str(tok.value)
        if tok.kind == "ident" and tok.keyword() not in _RESERVED:
            self._advance()
            return str(tok.value)
        raise self._error("an identifier")

    def _call(self, name: str) -> Node:
        args: list[Node] = []
        if self._tok.kind != "rparen":
            args.append(self._or())
            while self._tok.kind == "comma":
                self._advance()
                args.append(self._or())
        self._expect("rparen", "')' or ','")

        if (
            name.lower() in ("current_setting", "pg_catalog.current_setting")
            and args
            and isinstance(args[0], Literal)
            and args[0].kind == "string"
        ):
            return SessionSetting(str(args[0].value))
        return FunctionCall(name, tuple(args))

    def _array(self) -> Node:
        self._expect("lbracket", "'[' after ARRAY")
        items: list[Node] = []
        if self._tok.kind != "rbracket":
            items.append(self._or())
            while self._tok.kind == "comma":
                self._advance()
                items.append(self._or())
        self._expect("rbracket", "']' or ','")
        return ArrayLiteral(tuple(items))

    def _cast(self) -> Node:
        self._expect("lparen", "'('")
        node = self._or()
        as_tok = self._expect_keyword("AS")
        depth = 0
        while True:
            tok = self._tok
            if tok.kind == "eof":
                raise self._error("')' closing CAST")
            if tok.kind == "lparen":
                depth += 1
            elif tok.kind == "rparen":
                if depth == 0:
                    break
                depth -= 1
            self._advance()
        if self._tokens[self._pos - 1] is as_tok:
            raise self._error("type name after AS")
        self._advance()
        return node

    def _case(self) -> Node:
        discriminant: Node | None = None
        if not self._at_keyword("WHEN"):
            discriminant = self._or()
        if not self._at_keyword("WHEN"):
            raise self._error("WHEN")

        branches: list[tuple[Node, Node]] = []
        while self._at_keyword("WHEN"):
            self._advance()
            value = self._or()
            self._expect_keyword("THEN")
            branches.append((value, self._or()))

        otherwise: Node | None = None
        if self._at_keyword("ELSE"):
            self._advance()
            otherwise = self._or()
        if not self._at_keyword("END"):
            raise self._error("END" if otherwise is not None else "WHEN, ELSE or END")
        self._advance()
        return Case(discriminant, tuple(branches), otherwise)

    # -- opaque subqueries ---------------------------------------------------

    def _capture(self) -> tuple[str, str | None]:
        """Consume tokens up to the ``)`` matching an already-consumed ``(``.

        Returns the verbatim inner text and the entity named by the first
        ``FROM`` at the top nesting level, if any.
        """
        start = self._tok.start
        depth = 0
        source: str | None = None
        while True:
            tok = self._tok
            if tok.kind == "eof":
                raise self._error("')' closing subquery")
            if tok.kind == "lparen":
                depth += 1
            elif tok.kind == "rparen":
                if depth == 0:
                    break
                depth -= 1
            elif source is None and depth == 0 and tok.keyword() == "FROM":
                source = self._from_target()
                continue
            self._advance()
        end = self._tok.start
        self._advance()
        return self._text[start:end].strip(), source

    def _from_target(self) -> str | None:
        self._advance()
        parts: list[str] = []
        while self._tok.kind in ("ident", "quoted_ident"):
            parts.append(str(self._advance().value))
            if self._tok.kind != "dot":
                break
            self._advance()
        return parts[-1] if parts else None

    def _exists(self) -> Node:
        self._expect("lparen", "'(' after EXISTS")
        raw, source = self._capture()
        if not raw:
            raise self._error("a subquery inside EXISTS")
        return Exists(source, raw)

    def _subquery_body(self) -> Node:
        raw, source = self._capture()
        return Subquery(source, raw)


def _number(value: object) -> Literal:
    if isinstance(value, int):
        return Literal("integer", value)
    return Literal("decimal", value)  # type: ignore[arg-type]

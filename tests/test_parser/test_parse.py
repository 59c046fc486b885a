"""Tests for parser/_parser.py — building expression trees from policy text."""

from __future__ import annotations

from decimal import Decimal

import pytest

from sqla_rls.exceptions import PolicySyntaxError
from sqla_rls.parser import (
    And,
    ArrayLiteral,
    Case,
    ColumnRef,
    Comparison,
    Exists,
    FunctionCall,
    Literal,
    Not,
    Or,
    SessionSetting,
    Subquery,
    parse,
    walk,
)

NULL = Literal("null", None)


def _p(text: str):
    return parse(text, "Post")


# ---------------------------------------------------------------------------
# Precedence and boolean structure
# ---------------------------------------------------------------------------


class TestPrecedence:
    """OR < AND < NOT < comparison < primary."""

    def test_and_binds_tighter_than_or(self):
        assert _p("a AND b OR c") == Or((And((ColumnRef("a"), ColumnRef("b"))), ColumnRef("c")))

    def test_parentheses_override(self):
        assert _p("a AND (b OR c)") == And((ColumnRef("a"), Or((ColumnRef("b"), ColumnRef("c")))))

    def test_chains_are_flat(self):
        node = _p("a OR b OR c")
        assert isinstance(node, Or)
        assert len(node.operands) == 3

    def test_not_binds_tighter_than_and(self):
        assert _p("NOT a AND b") == And((Not(ColumnRef("a")), ColumnRef("b")))

    def test_double_negation_kept(self):
        assert _p("NOT NOT a") == Not(Not(ColumnRef("a")))

    def test_keywords_case_insensitive(self):
        assert _p("a and b or not c") == _p("a AND b OR NOT c")

    def test_empty_text_is_true(self):
        assert parse("", "Post") == Literal("boolean", True)
        assert parse("   \n", "Post") == Literal("boolean", True)


# ---------------------------------------------------------------------------
# Comparisons
# ---------------------------------------------------------------------------


class TestComparisons:
    """Binary, membership, null and pattern comparisons."""

    @pytest.mark.parametrize("op", ["=", "!=", "<", ">", "<=", ">="])
    def test_binary_operators(self, op):
        assert _p(f"a {op} 1") == Comparison(op, ColumnRef("a"), Literal("integer", 1))

    def test_diamond_normalised(self):
        assert _p("a <> 1").operator == "!="

    def test_in_list(self):
        assert _p("status IN ('a', 'b')") == Comparison(
            "IN",
            ColumnRef("status"),
            ArrayLiteral((Literal("string", "a"), Literal("string", "b"))),
        )

    def test_not_in_list(self):
        assert _p("status NOT IN ('a')").operator == "NOT IN"

    def test_any_array_becomes_in(self):
        node = _p("id = ANY (ARRAY[1, 2])")
        assert node == Comparison(
            "IN",
            ColumnRef("id"),
            ArrayLiteral((Literal("integer", 1), Literal("integer", 2))),
        )

    def test_some_is_any(self):
        assert _p("id = SOME (ids)") == Comparison("IN", ColumnRef("id"), ColumnRef("ids"))

    def test_all_becomes_not_in(self):
        assert _p("id <> ALL (blocked)") == Comparison(
            "NOT IN", ColumnRef("id"), ColumnRef("blocked")
        )

    def test_any_requires_equality(self):
        with pytest.raises(PolicySyntaxError, match="'=' before ANY"):
            _p("id < ANY (ids)")

    def test_all_requires_inequality(self):
        with pytest.raises(PolicySyntaxError, match="before ALL"):
            _p("id = ALL (ids)")

    def test_is_null(self):
        assert _p("owner_id IS NULL") == Comparison("IS", ColumnRef("owner_id"), NULL)

    def test_is_not_null(self):
        assert _p("owner_id IS NOT NULL") == Comparison("IS NOT", ColumnRef("owner_id"), NULL)

    def test_like_and_not_ilike(self):
        assert _p("title LIKE 'a%'").operator == "LIKE"
        assert _p("title NOT ILIKE 'a%'").operator == "NOT ILIKE"

    def test_in_subquery(self):
        node = _p("org_id IN (SELECT org_id FROM memberships WHERE user_id = auth.uid())")
        assert node == Comparison(
            "IN",
            ColumnRef("org_id"),
            Subquery("memberships", "SELECT org_id FROM memberships WHERE user_id = auth.uid()"),
        )


# ---------------------------------------------------------------------------
# Primaries
# ---------------------------------------------------------------------------


class TestPrimaries:
    """Literals, names, calls, CASE, CAST and opaque subqueries."""

    def test_literals(self):
        assert _p("'x'") == Literal("string", "x")
        assert _p("42") == Literal("integer", 42)
        assert _p("-5") == Literal("integer", -5)
        assert _p("1.5") == Literal("decimal", Decimal("1.5"))
        assert _p("TRUE") == Literal("boolean", True)
        assert _p("false") == Literal("boolean", False)
        assert _p("NULL") == NULL

    def test_self_qualified_reference_is_unqualified(self):
        assert _p("Post.owner_id") == ColumnRef("owner_id")
        assert _p("post.owner_id") == ColumnRef("owner_id")

    def test_foreign_qualified_reference_keeps_entity(self):
        assert _p("users.role") == ColumnRef("role", "users")

    def test_schema_qualified_reference(self):
        assert _p("public.users.role") == ColumnRef("role", "users")

    def test_quoted_identifier(self):
        assert _p('"Owner Id" = 1').left == ColumnRef("Owner Id")

    def test_function_call(self):
        assert _p("auth.uid()") == FunctionCall("auth.uid", ())
        assert _p("f(a, 'b')") == FunctionCall("f", (ColumnRef("a"), Literal("string", "b")))

    @pytest.mark.parametrize("name", ["current_user", "session_user", "CURRENT_ROLE"])
    def test_niladic_functions(self, name):
        assert _p(name) == FunctionCall(name.lower())

    def test_current_setting(self):
        assert _p("current_setting('app.tenant_id')") == SessionSetting("app.tenant_id")
        assert _p("current_setting('app.tenant_id', true)::uuid") == SessionSetting(
            "app.tenant_id"
        )

    def test_current_setting_with_non_literal_key(self):
        node = _p("current_setting(k)")
        assert isinstance(node, FunctionCall)

    def test_cast_function_discards_type(self):
        assert _p("CAST(owner_id AS integer) = 1").left == ColumnRef("owner_id")

    def test_cast_with_parameterised_type(self):
        assert _p("CAST(a AS numeric(10, 2))") == ColumnRef("a")

    def test_array_constructor(self):
        assert _p("ARRAY[]") == ArrayLiteral(())

    def test_simple_case(self):
        node = _p("CASE role WHEN 'admin' THEN true ELSE false END")
        assert node == Case(
            ColumnRef("role"),
            ((Literal("string", "admin"), Literal("boolean", True)),),
            Literal("boolean", False),
        )

    def test_searched_case(self):
        node = _p("CASE WHEN a THEN b WHEN c THEN d END")
        assert isinstance(node, Case)
        assert node.discriminant is None
        assert len(node.branches) == 2
        assert node.otherwise is None

    def test_exists_is_opaque(self):
        node = _p("EXISTS (SELECT 1 FROM memberships m WHERE m.user_id = auth.uid())")
        assert node == Exists(
            "memberships", "SELECT 1 FROM memberships m WHERE m.user_id = auth.uid()"
        )

    def test_exists_with_nested_parentheses(self):
        node = _p("EXISTS (SELECT 1 FROM (SELECT id FROM teams) t) AND a")
        assert isinstance(node, And)
        assert node.operands[0] == Exists(None, "SELECT 1 FROM (SELECT id FROM teams) t")
        assert node.operands[1] == ColumnRef("a")


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class TestSyntaxErrors:
    """Malformed input reports position, expectation and offending token."""

    def test_unclosed_parenthesis(self):
        with pytest.raises(PolicySyntaxError) as exc_info:
            _p("owner_id = (1")
        assert exc_info.value.position == 13
        assert exc_info.value.expected == "')'"
        assert exc_info.value.found == ""

    def test_unbalanced_close(self):
        with pytest.raises(PolicySyntaxError) as exc_info:
            _p("a = 1)")
        assert exc_info.value.position == 5
        assert exc_info.value.found == ")"
        assert "unbalanced" in exc_info.value.expected

    def test_unknown_operator(self):
        with pytest.raises(PolicySyntaxError, match="a comparison operator"):
            _p("a + 1")

    def test_trailing_operator_after_comparison(self):
        with pytest.raises(PolicySyntaxError, match="a comparison operator"):
            _p("a = 1 || b")

    def test_missing_right_operand(self):
        with pytest.raises(PolicySyntaxError, match="an expression"):
            _p("a = ")

    def test_reserved_word_as_operand(self):
        with pytest.raises(PolicySyntaxError, match="an expression"):
            _p("AND a")

    def test_stray_not(self):
        with pytest.raises(PolicySyntaxError, match="IN, LIKE or ILIKE after NOT"):
            _p("a NOT b")

    def test_is_requires_null(self):
        with pytest.raises(PolicySyntaxError, match="NULL"):
            _p("a IS 1")

    def test_unterminated_case(self):
        with pytest.raises(PolicySyntaxError, match="WHEN, ELSE or END"):
            _p("CASE WHEN a THEN b")

    def test_case_without_when(self):
        with pytest.raises(PolicySyntaxError, match="WHEN"):
            _p("CASE a END")

    def test_empty_exists(self):
        with pytest.raises(PolicySyntaxError, match="a subquery inside EXISTS"):
            _p("EXISTS ()")

    def test_unclosed_subquery(self):
        with pytest.raises(PolicySyntaxError, match="closing subquery"):
            _p("EXISTS (SELECT 1")

    def test_garbage_after_expression(self):
        with pytest.raises(PolicySyntaxError, match="end of input"):
            _p("a b")

    def test_message_mentions_found_token(self):
        with pytest.raises(PolicySyntaxError, match=r"found '\)'"):
            _p("a = 1)")


class TestWalk:
    """walk() visits every node depth-first in source order."""

    def test_visits_all_nodes(self):
        node = _p("a = 1 AND NOT b IN (2, 3)")
        kinds = [type(n).__name__ for n in walk(node)]
        assert kinds == [
            "And",
            "Comparison",
            "ColumnRef",
            "Literal",
            "Not",
            "Comparison",
            "ColumnRef",
            "ArrayLiteral",
            "Literal",
            "Literal",
        ]

    def test_case_children(self):
        node = _p("CASE x WHEN 1 THEN y ELSE z END")
        names = [n.name for n in walk(node) if isinstance(n, ColumnRef)]
        assert names == ["x", "y", "z"]

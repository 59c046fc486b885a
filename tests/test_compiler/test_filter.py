"""Tests for compiler/_filter.py — lowering policies to row filters."""

from __future__ import annotations

import pytest

from sqla_rls.compiler import (
    ActorField,
    BlockAll,
    Compare,
    Conditional,
    FieldCompare,
    FieldEquals,
    FieldIn,
    FieldIsNull,
    FieldLike,
    FilterAnd,
    FilterNot,
    FilterOr,
    FilterUnresolved,
    Membership,
    PassAll,
    RelationIs,
    RelationSome,
    Unfilterable,
    Value,
    ValueSet,
    bind_filter,
    compile_filter,
    evaluate_filter,
)
from sqla_rls.config import CompilerConfig
from sqla_rls.parser import parse
from tests.conftest import MockActor

USER_ID = ActorField(("id",), "get_current_user_id")
USER_ROLE = ActorField(("role",), "get_current_user_role")
OWNER = FieldEquals("owner_id", USER_ID)


@pytest.fixture()
def compile_(graph, mapping):
    def _compile(text, entity="Post", **kwargs):
        return compile_filter(parse(text, entity), mapping, graph, entity, **kwargs)

    return _compile


# ---------------------------------------------------------------------------
# Data conditions
# ---------------------------------------------------------------------------


class TestDataFilters:
    """Conditions over record fields map to field filters."""

    def test_owner(self, compile_):
        compiled = compile_("owner_id = get_current_user_id()")
        assert compiled.expr == OWNER
        assert compiled.diagnostics == ()
        assert compiled.role_checks == ()

    def test_or_of_fields(self, compile_):
        assert compile_("is_published OR status = 'draft'").expr == FilterOr(
            (FieldEquals("is_published", Value(True)), FieldEquals("status", Value("draft")))
        )

    def test_and_of_fields(self, compile_):
        assert compile_("is_published AND id > 3").expr == FilterAnd(
            (FieldEquals("is_published", Value(True)), FieldCompare("id", ">", Value(3)))
        )

    def test_in_list(self, compile_):
        assert compile_("status IN ('a', 'b')").expr == FieldIn("status", ValueSet(("a", "b")))

    def test_not_in_list(self, compile_):
        assert compile_("status NOT IN ('a')").expr == FilterNot(FieldIn("status", ValueSet(("a",))))

    def test_like_forms(self, compile_):
        assert compile_("title ILIKE 'a%'").expr == FieldLike("title", Value("a%"), True)
        assert compile_("title NOT LIKE 'a%'").expr == FilterNot(FieldLike("title", Value("a%")))

    def test_not(self, compile_):
        assert compile_("NOT is_published").expr == FilterNot(FieldEquals("is_published", Value(True)))

    def test_null_tests(self, compile_):
        assert compile_("owner_id IS NULL").expr == FieldIsNull("owner_id")
        assert compile_("owner_id IS NOT NULL").expr == FilterNot(FieldIsNull("owner_id"))

    def test_constants(self, compile_):
        assert compile_("true").expr == PassAll()
        assert compile_("").expr == PassAll()
        assert compile_("false").expr == BlockAll()
        assert compile_("1 = 1").expr == PassAll()
        assert compile_("1 = NULL").expr == BlockAll()

    def test_actor_list_membership(self, compile_):
        assert compile_("org_id = ANY (get_current_org_ids())").expr == FieldIn(
            "org_id", ActorField(("org_ids",), "get_current_org_ids")
        )


class TestRelationFilters:
    """Relation paths become RelationIs/RelationSome."""

    def test_to_one(self, compile_):
        assert compile_("role = 'admin'").expr == RelationIs(
            "owner", FieldEquals("role", Value("admin"))
        )

    def test_to_one_null_test_includes_missing_link(self, compile_):
        assert compile_("role IS NULL").expr == FilterOr(
            (
                FilterNot(RelationIs("owner", PassAll())),
                RelationIs("owner", FieldIsNull("role")),
            )
        )

    def test_secondary_junction(self, compile_):
        assert compile_("tag_id IN (1, 2)").expr == RelationSome(
            "tags", FieldIn("id", ValueSet((1, 2))), ("post_id", "tag_id")
        )

    def test_junction_entity(self, compile_):
        compiled = compile_("teacher_id = get_current_teacher_id()", entity="Course")
        assert compiled.expr == RelationSome(
            "teachers",
            FieldEquals("teacher_id", ActorField(("teacher", "id"), "get_current_teacher_id")),
            ("course_id", "teacher_id"),
        )


# ---------------------------------------------------------------------------
# Role conditions
# ---------------------------------------------------------------------------


class TestRoleSplitting:
    """Role conditions are separated from data conditions."""

    POLICY = "get_current_user_role() IN ('admin', 'mod') OR owner_id = get_current_user_id()"

    def test_role_or_data_becomes_conditional(self, compile_):
        compiled = compile_(self.POLICY)
        assert compiled.expr == Conditional(
            Membership(USER_ROLE, ValueSet(("admin", "mod"))), PassAll(), OWNER
        )
        (diag,) = compiled.diagnostics
        assert diag.category == "role_split"

    def test_conditional_binds_per_actor(self, compile_):
        compiled = compile_(self.POLICY)
        assert compiled.for_actor(MockActor(id=1, role="admin")) == PassAll()
        assert compiled.for_actor(MockActor(id=7, role="viewer")) == FieldEquals(
            "owner_id", Value(7)
        )

    def test_pure_role_policy(self, compile_):
        compiled = compile_("get_current_user_role() = 'admin'")
        assert compiled.expr == Unfilterable(
            Compare("=", USER_ROLE, Value("admin"))
        )
        assert compiled.for_actor(MockActor(id=1, role="admin")) == PassAll()
        assert compiled.for_actor(MockActor(id=1)) == BlockAll()

    def test_top_level_role_conjunct_becomes_role_check(self, compile_):
        compiled = compile_("get_current_user_role() = 'editor' AND owner_id = get_current_user_id()")
        assert compiled.expr == OWNER
        assert compiled.role_checks == (Compare("=", USER_ROLE, Value("editor")),)
        assert compiled.diagnostics[0].category == "role_split"
        assert "runtime role check" in compiled.diagnostics[0].message
        assert compiled.for_actor(MockActor(id=1, role="viewer")) == BlockAll()
        assert compiled.for_actor(MockActor(id=1, role="editor")) == FieldEquals("owner_id", Value(1))

    def test_nested_role_conjunct_becomes_conditional(self, compile_):
        compiled = compile_(
            "is_published OR (get_current_user_role() = 'editor' AND status = 'draft')"
        )
        assert compiled.expr == FilterOr(
            (
                FieldEquals("is_published", Value(True)),
                Conditional(
                    Compare("=", USER_ROLE, Value("editor")),
                    FieldEquals("status", Value("draft")),
                    BlockAll(),
                ),
            )
        )
        assert compiled.role_checks == ()
        assert "conditional on the actor" in compiled.diagnostics[0].message

    def test_nested_role_conjunct_binds_per_actor(self, compile_):
        compiled = compile_(
            "is_published OR (get_current_user_role() = 'editor' AND status = 'draft')"
        )
        assert compiled.for_actor(MockActor(id=1, role="editor")) == FilterOr(
            (FieldEquals("is_published", Value(True)), FieldEquals("status", Value("draft")))
        )
        assert compiled.for_actor(MockActor(id=1, role="viewer")) == FieldEquals(
            "is_published", Value(True)
        )

    def test_negated_role_check(self, compile_):
        compiled = compile_("NOT (get_current_user_role() = 'banned') AND is_published")
        assert compiled.for_actor(MockActor(id=1, role="banned")) == BlockAll()
        assert compiled.for_actor(MockActor(id=1)) == FieldEquals("is_published", Value(True))

    def test_role_only_or(self, compile_):
        compiled = compile_("get_current_user_role() = 'a' OR get_current_user_role() = 'b'")
        assert isinstance(compiled.expr, Unfilterable)
        assert compiled.diagnostics == ()


# ---------------------------------------------------------------------------
# CASE
# ---------------------------------------------------------------------------


class TestCaseFilters:
    """CASE over actor values chains Conditionals; CASE over data is an ordered OR."""

    def test_case_on_actor(self, compile_):
        compiled = compile_(
            "CASE role WHEN 'admin' THEN true WHEN 'teacher' THEN visibility = 'public' "
            "ELSE false END",
            entity="Course",
        )
        role = ActorField(("role",), "role")
        assert compiled.expr == Conditional(
            Compare("=", role, Value("admin")),
            PassAll(),
            Conditional(
                Compare("=", role, Value("teacher")),
                FieldEquals("visibility", Value("public")),
                BlockAll(),
            ),
        )
        assert compiled.diagnostics[0].category == "role_split"
        assert compiled.for_actor(MockActor(id=1, role="teacher")) == FieldEquals(
            "visibility", Value("public")
        )

    def test_case_role_on_entity_with_related_role(self, compile_):
        compiled = compile_(
            "CASE role WHEN 'admin' THEN true WHEN 'guest' THEN false "
            "ELSE owner_id = get_current_user_id() END"
        )
        assert compiled.for_actor(MockActor(id=4, role="admin")) == PassAll()
        assert compiled.for_actor(MockActor(id=4, role="guest")) == BlockAll()
        assert compiled.for_actor(MockActor(id=4, role="viewer")) == FieldEquals("owner_id", Value(4))

    @pytest.mark.parametrize(
        ("record", "expected"),
        [
            ({"status": "published", "owner_id": 2}, True),
            ({"status": "draft", "owner_id": 1}, True),
            ({"status": "draft", "owner_id": 2}, False),
            ({"status": "archived", "owner_id": 1}, False),
            ({"status": None, "owner_id": 1}, False),
        ],
    )
    def test_case_on_data_first_match_wins(self, compile_, record, expected):
        compiled = compile_(
            "CASE status WHEN 'published' THEN true "
            "WHEN 'draft' THEN owner_id = get_current_user_id() ELSE false END"
        )
        assert evaluate_filter(compiled.expr, record, MockActor(id=1)) is expected

    def test_case_else_branch_reached_with_null(self, compile_):
        compiled = compile_("CASE status WHEN 'draft' THEN false ELSE true END")
        assert evaluate_filter(compiled.expr, {"status": None}, None)
        assert evaluate_filter(compiled.expr, {"status": "published"}, None)
        assert not evaluate_filter(compiled.expr, {"status": "draft"}, None)


# ---------------------------------------------------------------------------
# Unresolved constructs
# ---------------------------------------------------------------------------


class TestUnresolvedFilters:
    """Constructs without a filter form pass or block per configuration."""

    def test_exists(self, compile_):
        compiled = compile_("EXISTS (SELECT 1 FROM memberships WHERE user_id = auth.uid())")
        assert compiled.expr == FilterUnresolved(
            "exists", "EXISTS (SELECT 1 FROM memberships WHERE user_id = auth.uid())", True, "memberships"
        )
        assert compiled.diagnostics[0].category == "unresolved_construct"

    def test_exists_deny(self, compile_):
        compiled = compile_(
            "EXISTS (SELECT 1 FROM memberships)", config=CompilerConfig(on_unresolved="deny")
        )
        assert compiled.expr.default is False

    def test_not_exists_keeps_default(self, compile_):
        compiled = compile_("NOT EXISTS (SELECT 1 FROM memberships WHERE user_id = auth.uid())")
        assert compiled.expr == FilterUnresolved(
            "exists",
            "NOT EXISTS (SELECT 1 FROM memberships WHERE user_id = auth.uid())",
            True,
            "memberships",
        )
        denied = compile_(
            "NOT EXISTS (SELECT 1 FROM memberships)", config=CompilerConfig(on_unresolved="deny")
        )
        assert denied.expr.default is False

    def test_record_to_record_comparison(self, compile_):
        compiled = compile_("owner_id = org_id")
        assert isinstance(compiled.expr, FilterUnresolved)
        assert compiled.expr.text == "record.owner_id == record.org_id"
        assert compiled.diagnostics[0].message == (
            "No row filter form for this comparison; filtered as allow"
        )

    def test_actor_null_test_is_role_check(self, compile_):
        compiled = compile_("get_current_org_id() IS NULL OR is_published")
        assert isinstance(compiled.expr, Conditional)


# ---------------------------------------------------------------------------
# Binding
# ---------------------------------------------------------------------------


class TestBindFilter:
    """bind_filter() resolves actor references."""

    def test_actor_field_becomes_value(self):
        assert bind_filter(OWNER, MockActor(id=3)) == FieldEquals("owner_id", Value(3))

    def test_nested_relation(self):
        expr = RelationSome("tags", FieldLike("label", ActorField(("name",))))
        assert bind_filter(expr, {"name": "py%"}) == RelationSome(
            "tags", FieldLike("label", Value("py%"))
        )

    def test_actor_list(self):
        expr = FieldIn("org_id", ActorField(("org_ids",)))
        assert bind_filter(expr, {"org_ids": [1, 2]}) == FieldIn("org_id", ValueSet((1, 2)))

    def test_null_actor_list(self):
        expr = FieldIn("org_id", ActorField(("org_ids",)))
        assert bind_filter(expr, {"org_ids": None}) == FieldIn("org_id", ValueSet((None,)))

    def test_conditional_collapses(self):
        expr = FilterAnd(
            (
                FieldIsNull("owner_id"),
                Conditional(Compare("=", USER_ROLE, Value("admin")), PassAll(), BlockAll()),
            )
        )
        assert bind_filter(expr, MockActor(id=1, role="admin")) == FieldIsNull("owner_id")
        assert bind_filter(expr, MockActor(id=1)) == BlockAll()

    def test_unfilterable_root(self):
        check = Unfilterable(Compare("=", USER_ROLE, Value("admin")))
        assert bind_filter(check, MockActor(id=1, role="admin")) == PassAll()

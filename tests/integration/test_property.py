"""Hypothesis property tests for sqla-rls compilation invariants."""

from __future__ import annotations

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st
from sqlalchemy import Boolean, ForeignKey, Integer, String, create_engine, select
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    relationship,
    sessionmaker,
)

from sqla_rls.compiler import compile_filter, compile_predicate, evaluate, to_sqlalchemy
from sqla_rls.context import ContextMapping
from sqla_rls.parser import Literal, format_expression, parse
from sqla_rls.schema import graph_from_models
from tests.conftest import MockActor

# ---------------------------------------------------------------------------
# Isolated models for property tests (avoids conftest coupling)
# ---------------------------------------------------------------------------


class PropBase(DeclarativeBase):
    pass


class PropUser(PropBase):
    __tablename__ = "prop_users"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100))


class PropPost(PropBase):
    __tablename__ = "prop_posts"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_published: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    author_id: Mapped[int | None] = mapped_column(ForeignKey("prop_users.id"), nullable=True)

    author: Mapped[PropUser | None] = relationship("PropUser")


GRAPH = graph_from_models(PropBase)
MAPPING = ContextMapping()

POLICIES = [
    "is_published OR author_id = get_current_user_id()",
    "NOT (author_id = get_current_user_id())",
    "score > 5 AND is_published",
    "status IN ('draft', 'review') OR author_id IS NULL",
    "status NOT IN ('archived')",
    "get_current_user_role() = 'admin' OR author_id = get_current_user_id()",
    "get_current_user_role() = 'editor' AND score >= 3",
    "CASE status WHEN 'draft' THEN author_id = get_current_user_id() ELSE true END",
    "CASE WHEN score > 10 THEN true WHEN is_published THEN score > 0 ELSE false END",
    "NOT (is_published AND score < 2)",
    "(get_current_user_role() = 'admin' AND author_id = get_current_user_id()) OR is_published",
]


def _make_engine_and_session():
    """Create a fresh in-memory SQLite engine and session."""
    engine = create_engine("sqlite:///:memory:", echo=False)
    PropBase.metadata.create_all(engine)
    factory = sessionmaker(bind=engine)
    return engine, factory()


row_strategy = st.fixed_dictionaries(
    {
        "status": st.none() | st.sampled_from(["draft", "review", "archived", "published"]),
        "score": st.none() | st.integers(min_value=-2, max_value=12),
        "is_published": st.none() | st.booleans(),
        "author_id": st.none() | st.integers(min_value=1, max_value=3),
    }
)


class TestBackendsAgree:
    """A row passes the filter exactly when the predicate accepts it."""

    @given(
        policy=st.sampled_from(POLICIES),
        rows=st.lists(row_strategy, min_size=1, max_size=6),
        actor_id=st.integers(min_value=1, max_value=3),
        role=st.sampled_from(["admin", "editor", "viewer"]),
    )
    @settings(max_examples=100, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    def test_filter_matches_predicate(self, policy, rows, actor_id, role):
        engine, session = _make_engine_and_session()
        try:
            session.add_all([PropUser(id=i, name=f"u{i}") for i in (1, 2, 3)])
            posts = [PropPost(id=i, **row) for i, row in enumerate(rows, start=1)]
            session.add_all(posts)
            session.commit()

            ast = parse(policy, "PropPost")
            predicate = compile_predicate(ast, MAPPING, GRAPH, "PropPost")
            row_filter = compile_filter(ast, MAPPING, GRAPH, "PropPost")
            actor = MockActor(id=actor_id, role=role)

            clause = to_sqlalchemy(row_filter.for_actor(actor), PropPost, actor)
            returned = set(session.scalars(select(PropPost.id).where(clause)).all())
            expected = {post.id for post in posts if evaluate(predicate.expr, post, actor)}
            assert returned == expected
        finally:
            session.close()
            engine.dispose()


# ---------------------------------------------------------------------------
# Parser invariants
# ---------------------------------------------------------------------------

quoted_text = st.text(
    alphabet=st.characters(whitelist_categories=("L", "N", "P", "Zs")), max_size=12
)

atom = st.sampled_from(
    [
        "is_published",
        "owner_id = get_current_user_id()",
        "status = 'draft'",
        "id > -3",
        "title LIKE 'a%'",
        "owner_id IS NULL",
        "id IN (1, 2)",
        "current_setting('app.org') = org_id",
    ]
)

expression = st.recursive(
    atom,
    lambda children: st.one_of(
        st.tuples(children, children).map(lambda p: f"{p[0]} AND {p[1]}"),
        st.tuples(children, children).map(lambda p: f"({p[0]}) OR ({p[1]})"),
        children.map(lambda c: f"NOT ({c})"),
    ),
    max_leaves=8,
)


class TestParserProperties:
    """Formatting and re-parsing preserve the tree."""

    @given(text=expression)
    @settings(max_examples=200)
    def test_format_reparse(self, text):
        tree = parse(text, "Post")
        assert parse(format_expression(tree), "Post") == tree

    @given(text=expression)
    @settings(max_examples=50)
    def test_parse_is_deterministic(self, text):
        assert parse(text, "Post") == parse(text, "Post")

    @given(value=quoted_text)
    def test_string_literal_round_trip(self, value):
        quoted = "'" + value.replace("'", "''") + "'"
        tree = parse(f"title = {quoted}", "Post")
        assert tree.right == Literal("string", value)
        assert parse(format_expression(tree), "Post") == tree

    @given(value=st.integers(min_value=0, max_value=10**12))
    def test_integer_literal_round_trip(self, value):
        tree = parse(f"id = {value}", "Post")
        assert tree.right == Literal("integer", value)

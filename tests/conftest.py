"""Shared test fixtures for sqla-rls tests."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pytest
from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, Table, create_engine
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    Session,
    mapped_column,
    relationship,
    sessionmaker,
)

from sqla_rls.config._config import _reset_global_config
from sqla_rls.context import ContextMapping
from sqla_rls.schema import SchemaGraph, graph_from_models

# ---------------------------------------------------------------------------
# Test models
# ---------------------------------------------------------------------------


class Base(DeclarativeBase):
    pass


post_tags = Table(
    "post_tags",
    Base.metadata,
    Column("post_id", Integer, ForeignKey("posts.id"), primary_key=True),
    Column("tag_id", Integer, ForeignKey("tags.id"), primary_key=True),
)


class Organization(Base):
    __tablename__ = "organizations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(100))


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100))
    role: Mapped[str] = mapped_column(String(50), default="viewer")
    org_id: Mapped[int | None] = mapped_column(ForeignKey("organizations.id"), nullable=True)

    organization: Mapped[Organization | None] = relationship("Organization")
    teacher: Mapped[Teacher | None] = relationship("Teacher", uselist=False, viewonly=True)


class Post(Base):
    __tablename__ = "posts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(200))
    status: Mapped[str] = mapped_column(String(20), default="draft")
    is_published: Mapped[bool] = mapped_column(Boolean, default=False)
    owner_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    org_id: Mapped[int | None] = mapped_column(ForeignKey("organizations.id"), nullable=True)

    owner: Mapped[User | None] = relationship("User")
    tags: Mapped[list[Tag]] = relationship("Tag", secondary=post_tags)


class Tag(Base):
    __tablename__ = "tags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    label: Mapped[str] = mapped_column(String(50))


class Teacher(Base):
    __tablename__ = "teachers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)

    course_links: Mapped[list[CourseTeacher]] = relationship(
        "CourseTeacher", back_populates="teacher"
    )


class Course(Base):
    __tablename__ = "courses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(200))
    visibility: Mapped[str] = mapped_column(String(20), default="private")

    teachers: Mapped[list[CourseTeacher]] = relationship("CourseTeacher", back_populates="course")


class CourseTeacher(Base):
    __tablename__ = "course_teachers"

    course_id: Mapped[int] = mapped_column(ForeignKey("courses.id"), primary_key=True)
    teacher_id: Mapped[int] = mapped_column(ForeignKey("teachers.id"), primary_key=True)

    course: Mapped[Course] = relationship("Course", back_populates="teachers")
    teacher: Mapped[Teacher] = relationship("Teacher", back_populates="course_links")


# ---------------------------------------------------------------------------
# MockActor: the acting principal
# ---------------------------------------------------------------------------


@dataclass
class MockActor:
    """Test actor shaped like a ``User`` row."""

    id: int | str | None
    role: str | None = "viewer"
    org_id: int | None = None
    teacher: Any = None
    groups: list[Any] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_config():
    """Reset the global config after every test."""
    yield
    _reset_global_config()


@pytest.fixture()
def graph() -> SchemaGraph:
    """Schema graph built from the test models."""
    return graph_from_models(Base)


@pytest.fixture()
def mapping() -> ContextMapping:
    """Context mapping with the built-in conventions only."""
    return ContextMapping()


@pytest.fixture()
def engine():
    """Create an in-memory SQLite engine with all tables."""
    eng = create_engine("sqlite:///:memory:", echo=False)
    Base.metadata.create_all(eng)
    return eng


@pytest.fixture()
def session(engine):
    """Provide a transactional session that rolls back after each test."""
    factory = sessionmaker(bind=engine)
    sess = factory()
    try:
        yield sess
    finally:
        sess.rollback()
        sess.close()


@pytest.fixture()
def sample_data(session: Session) -> dict[str, list]:
    """Seed the database with sample data for testing."""
    org = Organization(id=1, title="Acme Corp")
    session.add(org)

    alice = User(id=1, name="Alice", role="admin", org_id=1)
    bob = User(id=2, name="Bob", role="editor", org_id=1)
    charlie = User(id=3, name="Charlie", role="viewer", org_id=None)
    session.add_all([alice, bob, charlie])

    tag_public = Tag(id=1, label="python")
    tag_private = Tag(id=2, label="internal")
    session.add_all([tag_public, tag_private])

    post1 = Post(id=1, title="Public Post", status="published", is_published=True, owner_id=1, org_id=1)
    post2 = Post(id=2, title="Draft Post", status="draft", is_published=False, owner_id=1, org_id=1)
    post3 = Post(id=3, title="Bob's Post", status="published", is_published=True, owner_id=2)
    post4 = Post(id=4, title="Orphan", status="draft", is_published=False, owner_id=None)
    post1.tags.append(tag_public)
    post2.tags.append(tag_private)
    session.add_all([post1, post2, post3, post4])

    teacher = Teacher(id=10, user_id=2)
    session.add(teacher)
    math = Course(id=1, title="Math", visibility="public")
    art = Course(id=2, title="Art", visibility="private")
    session.add_all([math, art])
    session.flush()
    session.add(CourseTeacher(course_id=2, teacher_id=10))

    session.flush()
    return {
        "users": [alice, bob, charlie],
        "posts": [post1, post2, post3, post4],
        "tags": [tag_public, tag_private],
        "organizations": [org],
        "teachers": [teacher],
        "courses": [math, art],
    }

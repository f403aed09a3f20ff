"""Tests for the live-record context blocks."""
from __future__ import annotations

from datetime import date

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from app.models.workspace import Client, Project, Task
from app.services.context_sources import (
    CONTEXT_SOURCES,
    ContextRegistry,
    ContextSource,
    matching_sources,
    render_projects,
)


@pytest.fixture
def session():
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session
    engine.dispose()


def names(sources) -> list[str]:
    return [source.name for source in sources]


class TestMatching:
    def test_listing_keyword_required(self):
        assert matching_sources("what is a project?") == []

    def test_tables_in_fixed_order(self):
        assert names(matching_sources("Show clients and their tasks and projects")) == [
            "projects",
            "tasks",
            "clients",
        ]

    def test_case_insensitive(self):
        assert names(matching_sources("LIST ALL PROJECTS")) == ["projects"]

    def test_substring_match(self):
        # "all" inside "call" is enough to trigger a listing
        assert names(matching_sources("call the client")) == ["clients"]


class TestRendering:
    def test_project_block(self):
        project = Project(
            id=3,
            owner_id="u",
            name="Rebrand",
            client_name="Acme",
            status="active",
            priority="high",
            due_date=date(2026, 3, 1),
            progress=25,
            budget=1500.5,
            description="Logo refresh",
        )
        assert render_projects([project]) == (
            "1. Rebrand (ID: 3)\n"
            "   - Client: Acme\n"
            "   - Status: active\n"
            "   - Priority: high\n"
            "   - Due Date: 2026-03-01\n"
            "   - Progress: 25%\n"
            "   - Budget: $1500.5\n"
            "   - Description: Logo refresh"
        )

    def test_project_placeholders(self):
        project = Project(id=1, owner_id="u", name="Bare", status="planning", priority="low")
        block = render_projects([project])
        assert "   - Client: N/A" in block
        assert "   - Due Date: N/A" in block
        assert "   - Progress: 0%" in block
        assert "   - Budget: $0" in block
        assert "   - Description: No description" in block


class TestRegistry:
    def test_blocks_for_owner_only(self, session):
        session.add(Task(owner_id="u", title="Write brief", status="todo", priority="high"))
        session.add(Task(owner_id="other", title="Hidden", status="todo"))
        session.add(Client(owner_id="u", name="Acme", status="active", business_type="Retail"))
        session.commit()

        context = ContextRegistry(session).build_context("u", "show tasks and clients")

        assert context == (
            "\n\nCURRENT TASKS IN DATABASE:\n"
            "1. Write brief (Status: todo, Priority: high, Due: N/A)"
            "\n\nCURRENT CLIENTS IN DATABASE:\n"
            "1. Acme (Status: active, Priority: N/A, Type: Retail)"
        )

    def test_empty_table(self, session):
        context = ContextRegistry(session).build_context("u", "list projects")
        assert context == "\n\nCURRENT PROJECTS IN DATABASE: No projects found."

    def test_task_limit(self, session):
        for n in range(25):
            session.add(Task(owner_id="u", title=f"t{n}"))
        session.commit()

        context = ContextRegistry(session).build_context("u", "list tasks")
        assert context.count("(Status:") == 20

    def test_failed_fetch_becomes_note(self, session):
        def broken(session, owner_id, limit):
            raise OperationalError("SELECT", {}, Exception("no such table"))

        sources = [
            ContextSource("projects", ("project",), broken, render_projects, limit=5),
            *CONTEXT_SOURCES[1:],
        ]
        registry = ContextRegistry(session, sources)

        context = registry.build_context("u", "list projects and tasks")

        assert context == (
            "\n\nNote: Unable to fetch projects from database."
            "\n\nCURRENT TASKS IN DATABASE: No tasks found."
        )

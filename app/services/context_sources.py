"""Live records injected into the assistant's system prompt.

When a message asks to list or show projects, tasks or clients, a bounded
page of the caller's records is rendered into a literal text block that is
appended to the system prompt. The set of sources is fixed by
CONTEXT_SOURCES; each source is fetched independently and a failing fetch
degrades to a "Note: Unable to fetch ..." line.
"""
from dataclasses import dataclass
import logging
from typing import Any, Callable, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from app.models.workspace import Client, Project, Task

logger = logging.getLogger(__name__)

LISTING_KEYWORDS = ("list", "show", "all", "current")


def list_projects(session: Session, owner_id: str, limit: int) -> list[Project]:
    statement = (
        select(Project)
        .where(Project.owner_id == owner_id)
        .order_by(Project.id)
        .limit(limit)
    )
    return list(session.exec(statement).all())


def list_tasks(session: Session, owner_id: str, limit: int) -> list[Task]:
    statement = (
        select(Task)
        .where(Task.owner_id == owner_id)
        .order_by(Task.id)
        .limit(limit)
    )
    return list(session.exec(statement).all())


def list_clients(session: Session, owner_id: str, limit: int) -> list[Client]:
    statement = (
        select(Client)
        .where(Client.owner_id == owner_id)
        .order_by(Client.id)
        .limit(limit)
    )
    return list(session.exec(statement).all())


def _or_na(value: Any) -> Any:
    return value if value not in (None, "") else "N/A"


def _number(value: Any) -> Any:
    if value is None:
        return 0
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def render_projects(projects: Sequence[Project]) -> str:
    entries = [
        f"{idx}. {p.name} (ID: {p.id})\n"
        f"   - Client: {_or_na(p.client_name)}\n"
        f"   - Status: {p.status}\n"
        f"   - Priority: {p.priority}\n"
        f"   - Due Date: {_or_na(p.due_date)}\n"
        f"   - Progress: {_number(p.progress)}%\n"
        f"   - Budget: ${_number(p.budget)}\n"
        f"   - Description: {p.description or 'No description'}"
        for idx, p in enumerate(projects, start=1)
    ]
    return "\n\n".join(entries)


def render_tasks(tasks: Sequence[Task]) -> str:
    return "\n".join(
        f"{idx}. {t.title} (Status: {t.status}, Priority: {_or_na(t.priority)}, Due: {_or_na(t.due_date)})"
        for idx, t in enumerate(tasks, start=1)
    )


def render_clients(clients: Sequence[Client]) -> str:
    return "\n".join(
        f"{idx}. {c.name} (Status: {c.status}, Priority: {_or_na(c.priority)}, Type: {_or_na(c.business_type)})"
        for idx, c in enumerate(clients, start=1)
    )


@dataclass(frozen=True)
class ContextSource:
    """One kind of record the assistant can be shown."""

    name: str
    keywords: tuple[str, ...]
    fetch: Callable[[Session, str, int], Sequence[Any]]
    render: Callable[[Sequence[Any]], str]
    limit: int

    @property
    def heading(self) -> str:
        return f"CURRENT {self.name.upper()} IN DATABASE"

    def matches(self, message_lower: str) -> bool:
        return any(keyword in message_lower for keyword in self.keywords)


CONTEXT_SOURCES: tuple[ContextSource, ...] = (
    ContextSource("projects", ("project",), list_projects, render_projects, limit=50),
    ContextSource("tasks", ("task",), list_tasks, render_tasks, limit=20),
    ContextSource("clients", ("client",), list_clients, render_clients, limit=50),
)


def matching_sources(
    message: str, sources: Sequence[ContextSource] = CONTEXT_SOURCES
) -> list[ContextSource]:
    """Sources requested by a listing-style message, in table order."""
    message_lower = message.lower()
    if not any(keyword in message_lower for keyword in LISTING_KEYWORDS):
        return []
    return [source for source in sources if source.matches(message_lower)]


class ContextRegistry:
    """
    Renders live context for a message.

    Bound to one database session, like the rest of the per-request helpers.
    """

    def __init__(self, session: Session, sources: Sequence[ContextSource] = CONTEXT_SOURCES):
        self.session = session
        self.sources = tuple(sources)

    def render_source(self, source: ContextSource, owner_id: str) -> str:
        try:
            records = source.fetch(self.session, owner_id, source.limit)
        except Exception as e:
            # Degrades to a note in the prompt
            logger.error(f"Error fetching {source.name}: {e}")
            if isinstance(e, SQLAlchemyError):
                self.session.rollback()
            return f"\n\nNote: Unable to fetch {source.name} from database."

        if not records:
            return f"\n\n{source.heading}: No {source.name} found."
        return f"\n\n{source.heading}:\n{source.render(records)}"

    def build_context(self, owner_id: str, message: str) -> str:
        """Concatenate the blocks of every source the message asks for."""
        return "".join(
            self.render_source(source, owner_id)
            for source in matching_sources(message, self.sources)
        )

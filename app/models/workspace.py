"""Back-office records the chat assistant can quote.

The relay only reads these tables; they are maintained by the CRUD side of
the application.
"""
from datetime import date
from typing import Optional

from sqlmodel import Field, SQLModel


class Project(SQLModel, table=True):
    __tablename__ = "projects"

    id: Optional[int] = Field(default=None, primary_key=True)
    owner_id: str = Field(index=True, nullable=False)
    name: str
    client_name: Optional[str] = None
    status: str = Field(default="planning", max_length=50)
    priority: str = Field(default="medium", max_length=50)
    due_date: Optional[date] = None
    progress: Optional[int] = None
    budget: Optional[float] = None
    description: Optional[str] = None


class Task(SQLModel, table=True):
    __tablename__ = "tasks"

    id: Optional[int] = Field(default=None, primary_key=True)
    owner_id: str = Field(index=True, nullable=False)
    title: str
    status: str = Field(default="todo", max_length=50)
    priority: Optional[str] = Field(default=None, max_length=50)
    due_date: Optional[date] = None


class Client(SQLModel, table=True):
    __tablename__ = "clients"

    id: Optional[int] = Field(default=None, primary_key=True)
    owner_id: str = Field(index=True, nullable=False)
    name: str
    status: str = Field(default="active", max_length=50)
    priority: Optional[str] = Field(default=None, max_length=50)
    business_type: Optional[str] = None

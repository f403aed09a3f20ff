"""Database engine and schema bootstrap."""
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """Create the SQLAlchemy engine for the relational store."""
    connect_args = {}
    if database_url.startswith("sqlite"):
        # Store calls run in the threadpool
        connect_args["check_same_thread"] = False
    return create_engine(database_url, echo=echo, connect_args=connect_args, pool_pre_ping=True)


def init_db(engine: Engine) -> None:
    """Create missing tables."""
    # Register table models on SQLModel.metadata
    from app.models import conversation, workspace  # noqa: F401

    SQLModel.metadata.create_all(engine)

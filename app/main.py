"""FastAPI application entry point for the agency chat relay.

Run with ``uvicorn app.main:create_app --factory``.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.routes.chat import router as chat_router
from app.config import Settings, get_settings
from app.core.errors import register_exception_handlers
from app.core.logging import configure_logging
from app.database import create_db_engine, init_db
from app.services.chat_store import ConversationStore
from app.services.upstream import CompletionProvider

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the application.

    Settings are loaded once here; a missing credential raises
    pydantic.ValidationError and the server does not start.
    """
    settings = settings or get_settings()
    configure_logging(settings.LOG_LEVEL, settings.secrets())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Wire the shared collaborators."""
        engine = create_db_engine(settings.DATABASE_URL)
        init_db(engine)
        logger.info("Database initialized")

        app.state.store = ConversationStore(engine)
        app.state.provider = CompletionProvider.from_settings(settings)
        try:
            yield
        finally:
            await app.state.provider.aclose()
            engine.dispose()

    app = FastAPI(
        title="Agency Chat Relay",
        description="Streaming AI assistant for the agency back-office",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    def health_check():
        """Health check endpoint."""
        return {"status": "ok"}

    app.include_router(chat_router)
    register_exception_handlers(app)
    return app

"""Error types and FastAPI exception handlers.

Every failure before the event stream opens is raised as ChatAPIError and
rendered as a JSON body of the form
``{"error": ..., "details": ..., "code": ..., "hint": ...}``
with absent fields omitted.
"""
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ChatAPIError(Exception):
    """A request-level failure with a status code and a client-facing payload."""

    def __init__(
        self,
        status_code: int,
        error: str,
        *,
        details: Optional[str] = None,
        code: Optional[str] = None,
        hint: Optional[str] = None,
    ):
        super().__init__(error)
        self.status_code = status_code
        self.error = error
        self.details = details
        self.code = code
        self.hint = hint

    def to_payload(self) -> dict[str, str]:
        payload = {"error": self.error}
        for key in ("details", "code", "hint"):
            value = getattr(self, key)
            if value is not None:
                payload[key] = value
        return payload


class StoreError(Exception):
    """Database failure surfaced by the conversation store.

    Carries the driver message, an optional hint and an error code. The SQL
    text and its parameters are not kept.
    """

    def __init__(self, message: str, *, hint: Optional[str] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.code = code

    @classmethod
    def from_exception(cls, exc: Exception) -> "StoreError":
        orig = getattr(exc, "orig", None)
        diag = getattr(orig, "diag", None)
        message = str(orig if orig is not None else exc).strip() or exc.__class__.__name__
        return cls(
            message.splitlines()[0],
            hint=getattr(diag, "message_hint", None),
            code=getattr(orig, "pgcode", None) or getattr(exc, "code", None),
        )

    def to_api_error(self, error: str) -> ChatAPIError:
        details = self.message + (f" Hint: {self.hint}" if self.hint else "")
        return ChatAPIError(
            500,
            error,
            details=details,
            code=self.code or "UNKNOWN",
            hint=self.hint,
        )


class UpstreamError(Exception):
    """The completion provider refused or failed before streaming began."""

    def __init__(self, status_code: Optional[int], body: str):
        super().__init__(f"Upstream returned {status_code}: {body}")
        self.status_code = status_code
        self.body = body


def register_exception_handlers(app: FastAPI) -> None:
    """Attach JSON error rendering to the application."""

    @app.exception_handler(ChatAPIError)
    async def chat_api_error_handler(request: Request, exc: ChatAPIError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Hide internal error details from clients."""
        logger.exception("Unhandled exception: %s", exc)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error"},
        )

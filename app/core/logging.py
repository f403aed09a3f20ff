"""Logging setup for the chat relay.

Standard library logging with one stream handler on the root logger and a
filter that scrubs configured secrets and bearer tokens from every record.
"""
import logging
import re
from typing import Iterable

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

REDACTED = "[REDACTED]"

BEARER_PATTERN = re.compile(r"(Bearer\s+)[A-Za-z0-9._~+/=-]+", re.IGNORECASE)


class SecretRedactionFilter(logging.Filter):
    """Replace known secrets and bearer tokens with a placeholder."""

    def __init__(self, secrets: Iterable[str] = ()):
        super().__init__()
        self.secrets = [secret for secret in secrets if secret]

    def redact(self, text: str) -> str:
        for secret in self.secrets:
            text = text.replace(secret, REDACTED)
        return BEARER_PATTERN.sub(rf"\g<1>{REDACTED}", text)

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = self.redact(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def configure_logging(level: str = "INFO", secrets: Iterable[str] = ()) -> None:
    """Install the root handler. Safe to call more than once."""
    root = logging.getLogger()
    root.setLevel(level.upper())

    handler = next(
        (h for h in root.handlers if getattr(h, "_chat_relay", False)),
        None,
    )
    if handler is None:
        handler = logging.StreamHandler()
        handler._chat_relay = True
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)

    for existing in list(handler.filters):
        if isinstance(existing, SecretRedactionFilter):
            handler.removeFilter(existing)
    handler.addFilter(SecretRedactionFilter(secrets))

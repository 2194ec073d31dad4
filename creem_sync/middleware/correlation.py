"""Correlation ID middleware for request tracing.

Every request gets an X-Request-ID (echoed if the caller sent one) that the
logging pipeline attaches to each entry, so one Creem delivery can be followed
from signature check to commit.
"""

import uuid

from asgi_correlation_id import CorrelationIdMiddleware
from asgi_correlation_id.context import correlation_id
from fastapi import FastAPI

REQUEST_ID_HEADER = "X-Request-ID"


def setup_correlation_middleware(app: FastAPI) -> None:
    app.add_middleware(
        CorrelationIdMiddleware,
        header_name=REQUEST_ID_HEADER,
        generator=lambda: str(uuid.uuid4()),
        validator=None,  # Accept any format
    )


def get_correlation_id() -> str | None:
    """Current request's correlation ID, or None outside a request."""
    try:
        return correlation_id.get()
    except LookupError:
        return None


__all__ = ["REQUEST_ID_HEADER", "get_correlation_id", "setup_correlation_middleware"]

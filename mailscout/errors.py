"""Typed error taxonomy shared by every hop of the chat pipeline.

Each error carries a stable machine-readable ``kind``, the HTTP status the
boundary should answer with, a human message and optional structured
``details``. ``details`` must never contain credentials.
"""
from __future__ import annotations

from typing import Any


class AppError(Exception):
    """Base class for every error allowed to leave the orchestrator."""

    status_code: int = 500
    kind: str = "AppError"
    retryable: bool = True

    def __init__(self, message: str, details: Any | None = None):
        super().__init__(message)
        self.message = message
        self.details = details

    @property
    def retry_after(self) -> int | None:
        return None

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "type": self.kind,
            "message": self.message,
            "status": self.status_code,
        }
        if self.details is not None:
            body["details"] = self.details
        if self.retry_after is not None:
            body["retryAfter"] = self.retry_after
        return body

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, status={self.status_code})"


class ValidationError(AppError):
    """Client-correctable input problem."""

    status_code = 400
    kind = "ValidationError"
    retryable = False


class NotFoundError(AppError):
    status_code = 404
    kind = "NotFoundError"
    retryable = False


class ExternalAPIError(AppError):
    """The scraping provider failed or answered with an unusable payload."""

    status_code = 502
    kind = "ExternalAPIError"


class ClassifierError(AppError):
    """The language model failed or answered with an unusable payload."""

    status_code = 502
    kind = "ClassifierError"


class RateLimitError(AppError):
    status_code = 429
    kind = "RateLimitError"

    def __init__(
        self,
        message: str,
        details: Any | None = None,
        *,
        retry_after: int | None = None,
    ):
        super().__init__(message, details)
        self._retry_after = retry_after

    @property
    def retry_after(self) -> int | None:
        return self._retry_after


class InternalError(AppError):
    """Generic wrapper for failures nothing else could classify."""

    status_code = 500
    kind = "InternalError"
    retryable = False


def parse_retry_after(value: str | None) -> int | None:
    """Parse a ``Retry-After`` header given in seconds."""
    if not value:
        return None
    try:
        seconds = int(float(value.strip()))
    except ValueError:
        return None
    return max(seconds, 0)

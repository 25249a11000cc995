from __future__ import annotations

from typing import Optional


class LlamaTermError(Exception):
    """Base class for errors raised by the backend."""


class ValidationError(LlamaTermError):
    """Raised when caller-supplied input is missing or malformed."""

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field


class NotFoundError(LlamaTermError):
    """Raised when a requested record does not exist."""


class StorageError(LlamaTermError):
    """Raised when the on-disk stores cannot be read or written."""


class UpstreamRelayFailure(LlamaTermError):
    """
    Raised by the LLM client when the endpoint is unreachable, answers with an
    error status, or returns a body that is not JSON.

    The relay engine converts it into assistant message content; it never
    reaches an HTTP client.
    """

"""
Custom exception classes for the chat stream library.

This module defines the hierarchy of exceptions raised while talking to model
backends, normalizing streamed chunks, persisting messages and binding tools,
plus the helpers that fold arbitrary exceptions into the small closed set of
error kinds reported to callers.
"""

import asyncio
from typing import Literal

ErrorKind = Literal["timeout", "invalid_api_key", "connection_error", "unknown"]


class ChatStreamError(Exception):
    """Base exception for all errors raised by the library."""

    pass


class BackendError(ChatStreamError):
    """Base exception for failures reported by a model backend adapter."""

    pass


class BackendConnectionError(BackendError):
    """Raised when the backend cannot be reached."""

    pass


class InvalidCredentialsError(BackendError):
    """Raised when the backend rejects the supplied credentials."""

    pass


class BackendTimeoutError(BackendError):
    """Raised when the backend does not answer in time."""

    pass


class EmptyStreamError(BackendError):
    """Raised when a stream finished without producing any content."""

    pass


class AdapterNotInitializedError(BackendError):
    """Raised when an adapter is used before ``initialize`` was called."""

    pass


UNSUPPORTED_BACKEND_MESSAGE = "Unsupported backend: {backend_id}"


class UnsupportedBackendError(ChatStreamError):
    """Describes a backend id that has no registered adapter."""

    def __init__(self, backend_id: str):
        self.backend_id = backend_id
        super().__init__(UNSUPPORTED_BACKEND_MESSAGE.format(backend_id=backend_id))


class PersistenceError(ChatStreamError):
    """Raised for I/O failures of the message store."""

    pass


class ChunkParseError(ChatStreamError):
    """Raised when a chunk or a stored serialized field has an unexpected shape."""

    pass


class InvalidStatusTransitionError(ChatStreamError):
    """Raised when a message status would regress from a terminal value."""

    pass


class LLMToolError(ChatStreamError):
    """Base exception for all tool-related errors."""

    pass


class ToolRegistrationError(LLMToolError):
    """Raised when there is an error registering a tool."""

    pass


class ToolNotFoundError(LLMToolError):
    """Raised when a requested tool is not found in the registry."""

    pass


class ToolValidationError(LLMToolError):
    """Raised when tool parameters or definition are invalid."""

    pass


_CREDENTIAL_HINTS = ("api key", "api_key", "apikey", "unauthorized", "401", "authentication")
_TIMEOUT_HINTS = ("timeout", "timed out")
_CONNECTION_HINTS = ("econnrefused", "connect", "fetch", "network", "unreachable", "dns")


def classify_error(exc: BaseException) -> ErrorKind:
    """Map an exception to one of the closed error kinds.

    Typed library exceptions are matched first, then the exception text is scanned
    for well known hints, as vendor SDKs raise many unrelated exception types.

    Args:
        exc: The exception to classify.

    Returns:
        One of ``timeout``, ``invalid_api_key``, ``connection_error`` or ``unknown``.
    """
    if isinstance(exc, (BackendTimeoutError, asyncio.TimeoutError, TimeoutError)):
        return "timeout"
    if isinstance(exc, InvalidCredentialsError):
        return "invalid_api_key"
    if isinstance(exc, (BackendConnectionError, ConnectionError)):
        return "connection_error"

    text = f"{type(exc).__name__} {exc}".lower()
    if any(hint in text for hint in _CREDENTIAL_HINTS):
        return "invalid_api_key"
    if any(hint in text for hint in _TIMEOUT_HINTS):
        return "timeout"
    if any(hint in text for hint in _CONNECTION_HINTS):
        return "connection_error"
    return "unknown"


_KIND_MESSAGES = {
    "timeout": "The model did not respond in time. Please try again.",
    "invalid_api_key": "The API key was rejected. Please check the backend credentials.",
    "connection_error": "Could not connect to the model backend. Please check your network connection.",
}


def describe_error(exc: BaseException) -> str:
    """Build a human-readable sentence for a failed turn.

    Args:
        exc: The exception that ended the turn.

    Returns:
        A message suitable for a terminal assistant message.
    """
    if isinstance(exc, (UnsupportedBackendError, EmptyStreamError)):
        return str(exc)
    kind = classify_error(exc)
    if kind in _KIND_MESSAGES:
        return _KIND_MESSAGES[kind]
    detail = str(exc) or type(exc).__name__
    return f"Failed to generate a response: {detail}"

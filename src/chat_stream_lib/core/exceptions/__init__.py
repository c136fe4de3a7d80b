"""Export the exception hierarchy and error classification helpers."""

from .exceptions import (
    ErrorKind,
    ChatStreamError,
    BackendError,
    BackendConnectionError,
    InvalidCredentialsError,
    BackendTimeoutError,
    EmptyStreamError,
    AdapterNotInitializedError,
    UNSUPPORTED_BACKEND_MESSAGE,
    UnsupportedBackendError,
    PersistenceError,
    ChunkParseError,
    InvalidStatusTransitionError,
    LLMToolError,
    ToolRegistrationError,
    ToolNotFoundError,
    ToolValidationError,
    classify_error,
    describe_error,
)

__all__ = [
    "ErrorKind",
    "ChatStreamError",
    "BackendError",
    "BackendConnectionError",
    "InvalidCredentialsError",
    "BackendTimeoutError",
    "EmptyStreamError",
    "AdapterNotInitializedError",
    "UNSUPPORTED_BACKEND_MESSAGE",
    "UnsupportedBackendError",
    "PersistenceError",
    "ChunkParseError",
    "InvalidStatusTransitionError",
    "LLMToolError",
    "ToolRegistrationError",
    "ToolNotFoundError",
    "ToolValidationError",
    "classify_error",
    "describe_error",
]

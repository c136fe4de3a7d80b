"""Public exports for the provider-agnostic core of the library."""

from .base import ModelAdapter, BackendConfig, ModelTestResult, ModelTestError, CancellationToken
from .config import StreamSettings
from .exceptions import (
    ChatStreamError,
    BackendError,
    BackendConnectionError,
    InvalidCredentialsError,
    BackendTimeoutError,
    EmptyStreamError,
    AdapterNotInitializedError,
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
from .logger import get_logger, setup_logging
from .messages import (
    BaseMessage,
    UserMessage,
    AssistantMessage,
    SystemMessage,
    Message,
    MessageExtras,
    TokenUsage,
    ChunkAccumulator,
    to_history,
    generate_message_id,
    next_timestamp,
)
from .normalizer import NormalizedChunk, normalize_chunk, fold_chunks, aggregate_usage, enhance_system_prompt
from .stream import StreamOrchestrator, StreamState, UiThrottle, WriteDebouncer
from .tools import ToolDefinition, ToolRegistry, bucket_tool_calls

__all__ = [
    "ModelAdapter",
    "BackendConfig",
    "ModelTestResult",
    "ModelTestError",
    "CancellationToken",
    "StreamSettings",
    "ChatStreamError",
    "BackendError",
    "BackendConnectionError",
    "InvalidCredentialsError",
    "BackendTimeoutError",
    "EmptyStreamError",
    "AdapterNotInitializedError",
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
    "get_logger",
    "setup_logging",
    "BaseMessage",
    "UserMessage",
    "AssistantMessage",
    "SystemMessage",
    "Message",
    "MessageExtras",
    "TokenUsage",
    "ChunkAccumulator",
    "to_history",
    "generate_message_id",
    "next_timestamp",
    "NormalizedChunk",
    "normalize_chunk",
    "fold_chunks",
    "aggregate_usage",
    "enhance_system_prompt",
    "StreamOrchestrator",
    "StreamState",
    "UiThrottle",
    "WriteDebouncer",
    "ToolDefinition",
    "ToolRegistry",
    "bucket_tool_calls",
]

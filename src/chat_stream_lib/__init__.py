"""Chat Stream Library - streaming chat replies from pluggable model backends into a durable conversation."""

from .core import (
    ModelAdapter,
    BackendConfig,
    ModelTestResult,
    CancellationToken,
    StreamSettings,
    Message,
    TokenUsage,
    StreamOrchestrator,
    StreamState,
    normalize_chunk,
    fold_chunks,
    get_logger,
    setup_logging,
)
from .backends import BackendRegistry, OpenAIAdapter, DeepSeekAdapter, GroqAdapter, GeminiAdapter
from .storage import MessageStore, WriteResult
from .conversation import ConversationView, SyncReport, ChatSession

__all__ = [
    "ModelAdapter",
    "BackendConfig",
    "ModelTestResult",
    "CancellationToken",
    "StreamSettings",
    "Message",
    "TokenUsage",
    "StreamOrchestrator",
    "StreamState",
    "normalize_chunk",
    "fold_chunks",
    "get_logger",
    "setup_logging",
    "BackendRegistry",
    "OpenAIAdapter",
    "DeepSeekAdapter",
    "GroqAdapter",
    "GeminiAdapter",
    "MessageStore",
    "WriteResult",
    "ConversationView",
    "SyncReport",
    "ChatSession",
]

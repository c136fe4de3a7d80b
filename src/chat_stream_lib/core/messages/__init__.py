"""Message models, history conversion and id helpers."""

from .models import (
    Role,
    ContentType,
    MessageStatus,
    VALID_ROLES,
    VALID_CONTENT_TYPES,
    VALID_STATUSES,
    TERMINAL_STATUSES,
    BaseMessage,
    SystemMessage,
    UserMessage,
    AssistantMessage,
    TokenUsage,
    ChunkAccumulator,
    MessageExtras,
    Message,
    to_history,
)
from .ids import generate_message_id, next_timestamp

__all__ = [
    "Role",
    "ContentType",
    "MessageStatus",
    "VALID_ROLES",
    "VALID_CONTENT_TYPES",
    "VALID_STATUSES",
    "TERMINAL_STATUSES",
    "BaseMessage",
    "SystemMessage",
    "UserMessage",
    "AssistantMessage",
    "TokenUsage",
    "ChunkAccumulator",
    "MessageExtras",
    "Message",
    "to_history",
    "generate_message_id",
    "next_timestamp",
]

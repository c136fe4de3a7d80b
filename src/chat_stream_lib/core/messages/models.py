"""Message models for chat history and for the persisted conversation."""

from abc import ABC
from typing import Optional, List, Any, Dict, Literal, Sequence

from pydantic import BaseModel, Field

from ..exceptions import InvalidStatusTransitionError

Role = Literal["user", "assistant", "system"]
ContentType = Literal["plain", "markdown"]
MessageStatus = Literal["sending", "streaming", "sent", "error"]

VALID_ROLES = ("user", "assistant", "system")
VALID_CONTENT_TYPES = ("plain", "markdown")
VALID_STATUSES = ("sending", "streaming", "sent", "error")
TERMINAL_STATUSES = ("sent", "error")
_STATUS_RANK = {"sending": 0, "streaming": 1, "sent": 2, "error": 2}


class BaseMessage(ABC, BaseModel):
    """Base model for messages exchanged with an LLM.

    Attributes:
        author: Role associated with the message.
        content: Text payload of the message.
    """

    author: str
    content: str


class SystemMessage(BaseMessage):
    """Message authored by the system to steer behavior."""

    author: str = "system"


class UserMessage(BaseMessage):
    """Message authored by an end user."""

    author: str = "user"


class AssistantMessage(BaseMessage):
    """Message authored by the assistant, optionally containing tool calls."""

    author: str = "assistant"
    tool_calls: Optional[List[Any]] = None


class TokenUsage(BaseModel):
    """Token counters reported by a backend for one turn."""

    total_tokens: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0

    def merge_max(self, other: Optional["TokenUsage"]) -> "TokenUsage":
        """Combine two usages keeping the maximum of each counter.

        Args:
            other: Usage seen later in the stream, may be None.

        Returns:
            A new TokenUsage with the per-counter maximum.
        """
        if other is None:
            return self.model_copy()
        return TokenUsage(
            total_tokens=max(self.total_tokens, other.total_tokens),
            prompt_tokens=max(self.prompt_tokens, other.prompt_tokens),
            completion_tokens=max(self.completion_tokens, other.completion_tokens),
        )

    @property
    def is_empty(self) -> bool:
        return self.total_tokens == 0 and self.prompt_tokens == 0 and self.completion_tokens == 0


class ChunkAccumulator(BaseModel):
    """Content and thinking text threaded through successive normalizer calls."""

    content: str = ""
    thinking_content: str = ""


class MessageExtras(BaseModel):
    """Optional fields written alongside a message update.

    A field left as None is not touched in the store.
    """

    token_usage: Optional[TokenUsage] = None
    tool_calls: Optional[List[Dict[str, Any]]] = None
    invalid_tool_calls: Optional[List[Dict[str, Any]]] = None
    thinking_content: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    def is_empty(self) -> bool:
        return all(getattr(self, name) is None for name in type(self).model_fields)


class Message(BaseModel):
    """A single message of a conversation as shown to the user and stored durably.

    Attributes:
        id: Client generated id, unique within the store.
        conversation_id: Conversation the message belongs to.
        role: Author of the message.
        content: Visible text. Only grows while the message is streaming.
        content_type: How the content should be rendered.
        message_type: Free-form category, ``normal`` for regular chat turns.
        thinking_content: Intermediate reasoning text exposed by the backend.
        status: Lifecycle state. Never leaves a terminal state once reached.
        token_usage: Token counters of the turn that produced the message.
        tool_calls: Tool calls requested by the backend.
        invalid_tool_calls: Tool calls the backend produced but that could not be parsed.
        error: Human-readable error for failed turns.
        metadata: Additional bookkeeping, e.g. whether the stream was stopped manually.
        timestamp: Creation time in milliseconds, used as ordering key.
    """

    id: str
    conversation_id: str
    role: Role
    content: str = ""
    content_type: ContentType = "plain"
    message_type: str = "normal"
    thinking_content: Optional[str] = None
    status: MessageStatus = "sending"
    token_usage: Optional[TokenUsage] = None
    tool_calls: Optional[List[Dict[str, Any]]] = None
    invalid_tool_calls: Optional[List[Dict[str, Any]]] = None
    error: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    timestamp: int = Field(ge=0)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def advance(self, status: MessageStatus) -> "Message":
        """Move the message to a new status in place.

        Args:
            status: The target status.

        Returns:
            The message itself.

        Raises:
            InvalidStatusTransitionError: If the transition would regress the status.
        """
        if status == self.status:
            return self
        if self.is_terminal or _STATUS_RANK[status] < _STATUS_RANK[self.status]:
            raise InvalidStatusTransitionError(f"Message '{self.id}' cannot move from '{self.status}' to '{status}'.")
        self.status = status
        return self

    def extras(self) -> MessageExtras:
        """Collect the optional fields of this message for a store update."""
        return MessageExtras(
            token_usage=self.token_usage,
            tool_calls=self.tool_calls,
            invalid_tool_calls=self.invalid_tool_calls,
            thinking_content=self.thinking_content or None,
            metadata=self.metadata,
        )


def to_history(messages: Sequence[Message], system_prompt: Optional[str] = None) -> List[BaseMessage]:
    """Convert stored messages into provider-agnostic chat history.

    Messages are ordered by timestamp. Failed turns and empty messages are not sent back
    to the backend. The system prompt is prepended unless the history already carries one.

    Args:
        messages: Messages of the conversation.
        system_prompt: Optional system instruction.

    Returns:
        A list of BaseMessage objects.
    """
    history: List[BaseMessage] = []
    for msg in sorted(messages, key=lambda m: m.timestamp):
        if msg.status == "error" or not msg.content:
            continue
        if msg.role == "user":
            history.append(UserMessage(content=msg.content))
        elif msg.role == "assistant":
            history.append(AssistantMessage(content=msg.content, tool_calls=msg.tool_calls))
        else:
            history.append(SystemMessage(content=msg.content))

    if system_prompt and not any(isinstance(m, SystemMessage) for m in history):
        history.insert(0, SystemMessage(content=system_prompt))
    return history

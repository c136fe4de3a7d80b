"""Core abstractions for model backend adapters."""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Callable, Coroutine, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from .cancellation import CancellationToken
from ..exceptions import AdapterNotInitializedError, EmptyStreamError, ErrorKind, LLMToolError, classify_error
from ..logger import get_logger
from ..messages import AssistantMessage, BaseMessage, SystemMessage, UserMessage
from ..normalizer import normalize_chunk
from ..tools import ToolCallRecord, ToolRegistry

logger = get_logger(__name__)

T = TypeVar("T")

CONTINUE_PROMPT = "Please continue."


class BackendConfig(BaseModel):
    """Per-send configuration of a model backend.

    Attributes:
        vendor: Backend id as known to the BackendRegistry.
        api_key: Credentials. Adapters fall back to the vendor's usual environment variable.
        model_name: Identifier of the model to use.
        base_url: Optional endpoint override for OpenAI compatible vendors.
        temperature: Sampling temperature, vendor default when None.
        top_p: Nucleus sampling, vendor default when None.
        max_tokens: Upper bound of generated tokens, vendor default when None.
        stream: Whether the reply should be streamed.
        system_prompt: System instruction prepended to the history.
        tools: Tools to declare to the backend (definitions, callables or schema mappings).
        chain_of_thought: Level of chain-of-thought instructions added to the system prompt.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    vendor: str
    model_name: str
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    max_tokens: Optional[int] = None
    stream: bool = True
    system_prompt: str = ""
    tools: List[Any] = Field(default_factory=list)
    chain_of_thought: int = Field(default=0, ge=0, le=3)


class ModelTestError(BaseModel):
    """Classified failure of a connectivity test."""

    code: ErrorKind
    message: str


class ModelTestResult(BaseModel):
    """Outcome of ``ModelAdapter.test_model``."""

    success: bool
    error: Optional[ModelTestError] = None


class ModelAdapter(ABC):
    """Abstract base class for backend adapters.

    An adapter wraps the call, stream and test operations of one vendor behind a
    uniform contract. Streams yield raw, vendor shaped chunks; interpreting them is
    left to the chunk normalizer.
    """

    vendor: str = ""
    probe_message: str = "Hello"

    def __init__(self, max_retries: int = 3, base_retry_delay: float = 1.0, test_timeout: float = 10.0):
        self.max_retries = max_retries
        self.base_retry_delay = base_retry_delay
        self.test_timeout = test_timeout
        self.config: Optional[BackendConfig] = None
        self.registry: Optional[ToolRegistry] = self._create_registry()
        self._tools_enabled = False
        self._last_tool_calls: List[ToolCallRecord] = []

    def initialize(self, config: BackendConfig) -> None:
        """Prepare a session for the given configuration.

        Binding tools is optional: if it fails the error is logged and the adapter
        continues without tool support.

        Args:
            config: Configuration of this send.
        """
        self.config = config
        self._tools_enabled = False
        self._last_tool_calls = []
        self._setup_client(config)

        if config.tools and self.registry is not None:
            self.registry.clear()
            try:
                self.registry.register_all(config.tools)
                self._tools_enabled = bool(self.registry.tools)
            except (LLMToolError, TypeError, ValueError) as e:
                logger.warning(f"Binding tools to '{config.model_name}' failed, continuing without tools: {e}")
                self.registry.clear()
        logger.info(
            f"Initialized {type(self).__name__} with model='{config.model_name}', tools={self._tools_enabled}"
        )

    def supports_tool_calling(self) -> bool:
        return self._tools_enabled

    @property
    def last_tool_calls(self) -> List[ToolCallRecord]:
        """Tool calls seen in the most recent ``chat`` or ``stream`` call."""
        return list(self._last_tool_calls)

    @property
    def model_name(self) -> str:
        return self.config.model_name if self.config else ""

    async def chat(self, history: List[BaseMessage]) -> str:
        """
        Requests a complete reply in one call.

        Args:
            history: The conversation history including the latest user message.

        Returns:
            The reply text.
        """
        self._require_config()
        self._last_tool_calls = []
        messages = self.prepare_history(history)
        return await self._execute_with_retry(self._chat_impl, messages)

    async def stream(
        self, history: List[BaseMessage], cancel_token: Optional[CancellationToken] = None
    ) -> AsyncIterator[Any]:
        """
        Streams the reply as raw chunks.

        Args:
            history: The conversation history including the latest user message.
            cancel_token: Token of the consumer. When it is cancelled an empty stream is not an error.

        Yields:
            Vendor shaped chunks.

        Raises:
            EmptyStreamError: If the stream ended without any content and was not cancelled.
        """
        self._require_config()
        self._last_tool_calls = []
        messages = self.prepare_history(history)

        produced = False
        async for chunk in self._stream_impl(messages):
            if not produced:
                normalized = normalize_chunk(chunk)
                produced = bool(normalized.content or normalized.thinking_content)
            yield chunk

        if not produced and not self._last_tool_calls:
            if cancel_token is not None and cancel_token.cancelled:
                logger.debug("Stream ended without content after cancellation.")
                return
            raise EmptyStreamError(f"Model '{self.model_name}' returned an empty stream.")

    async def test_model(self) -> ModelTestResult:
        """Send a probe message and race it against the test timeout.

        Returns:
            ``success=True`` or the classified failure.
        """
        try:
            self._require_config()
            await asyncio.wait_for(self._chat_impl([UserMessage(content=self.probe_message)]), self.test_timeout)
        except Exception as e:
            kind = classify_error(e)
            logger.warning(f"Connectivity test for '{self.model_name}' failed ({kind}): {e}")
            return ModelTestResult(success=False, error=ModelTestError(code=kind, message=str(e) or kind))
        return ModelTestResult(success=True)

    def prepare_history(self, history: List[BaseMessage]) -> List[BaseMessage]:
        """Prepend the system prompt and apply backend specific message rules."""
        messages = list(history)
        config = self._require_config()
        if config.system_prompt and not any(isinstance(m, SystemMessage) for m in messages):
            messages.insert(0, SystemMessage(content=config.system_prompt))
        return self.process_messages_for_reasoner(messages)

    def process_messages_for_reasoner(self, history: List[BaseMessage]) -> List[BaseMessage]:
        """Enforce strictly alternating turns for reasoner models.

        Reasoner models reject two consecutive messages of the same role and a
        conversation ending with an assistant message. Other models get the history unchanged.

        Args:
            history: The prepared history.

        Returns:
            The possibly patched history.
        """
        if "reasoner" not in self.model_name.lower():
            return history

        result: List[BaseMessage] = []
        for msg in history:
            previous = result[-1] if result else None
            if isinstance(msg, UserMessage) and isinstance(previous, UserMessage):
                result.append(AssistantMessage(content=""))
            elif isinstance(msg, AssistantMessage) and isinstance(previous, AssistantMessage):
                result.append(UserMessage(content=CONTINUE_PROMPT))
            result.append(msg)

        if result and isinstance(result[-1], AssistantMessage):
            result.append(UserMessage(content=CONTINUE_PROMPT))
        return result

    async def _execute_with_retry(self, func: Callable[..., Coroutine[Any, Any, T]], *args: Any, **kwargs: Any) -> T:
        """
        Executes a coroutine function with exponential backoff.

        Rejected credentials are not retried.

        Args:
            func: The asynchronous function to execute.
            *args: Positional arguments for the function.
            **kwargs: Keyword arguments for the function.

        Returns:
            The result of the function call.

        Raises:
            Exception: The last encountered exception if all retries fail.
        """
        delay = self.base_retry_delay
        for attempt in range(self.max_retries + 1):
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                if attempt == self.max_retries or classify_error(e) == "invalid_api_key":
                    raise
                logger.warning(f"API Error (Retry: {attempt + 1}/{self.max_retries}): {e}. Waiting {delay}s...")
                await asyncio.sleep(delay)
                delay *= 2

        msg = f"Failed to get response after {self.max_retries} retries."
        logger.error(msg)
        raise TimeoutError(msg)

    def _require_config(self) -> BackendConfig:
        if self.config is None:
            raise AdapterNotInitializedError(f"{type(self).__name__} used before initialize().")
        return self.config

    def _create_registry(self) -> Optional[ToolRegistry]:
        """Return the tool registry of this backend, None when tools are unsupported."""
        return None

    @abstractmethod
    def _setup_client(self, config: BackendConfig) -> None:
        pass

    @abstractmethod
    async def _chat_impl(self, messages: List[BaseMessage]) -> str:
        pass

    @abstractmethod
    def _stream_impl(self, messages: List[BaseMessage]) -> AsyncIterator[Any]:
        pass

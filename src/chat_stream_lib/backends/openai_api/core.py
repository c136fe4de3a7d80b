import os
from typing import Any, AsyncIterator, Dict, List, Optional

import openai
from openai import AsyncOpenAI
from openai.types.chat import ChatCompletionChunk

from chat_stream_lib.core.base import BackendConfig, ModelAdapter
from chat_stream_lib.core.exceptions import (
    AdapterNotInitializedError,
    BackendConnectionError,
    BackendTimeoutError,
    InvalidCredentialsError,
)
from chat_stream_lib.core.logger import get_logger
from chat_stream_lib.core.messages import AssistantMessage, BaseMessage, SystemMessage, UserMessage
from chat_stream_lib.core.normalizer import REASONING_KEYS
from chat_stream_lib.core.tools import ToolCallAccumulator, parse_tool_call
from .registry import OpenAIToolRegistry

logger = get_logger(__name__)


class OpenAIAdapter(ModelAdapter):
    """
    Adapter for OpenAI's chat completions API.

    Streamed chunks are handed out as plain dictionaries in the shape of the
    choice delta, extended with the usage that OpenAI reports on the last chunk.
    Tool call fragments are assembled while streaming and exposed through
    ``last_tool_calls`` once the stream is done.
    """

    vendor = "openai"
    api_key_env = "OPENAI_API_KEY"
    default_base_url: Optional[str] = None
    default_temperature: Optional[float] = None
    default_top_p: Optional[float] = None

    def __init__(self, client: Optional[AsyncOpenAI] = None, **kwargs: Any):
        """
        Initializes the adapter.

        Args:
            client: An optional preconfigured AsyncOpenAI client. Without one a client
                is built from the BackendConfig on ``initialize``.
            **kwargs: Retry and timeout settings passed to ModelAdapter.
        """
        super().__init__(**kwargs)
        self._injected_client = client
        self.client: Optional[AsyncOpenAI] = client

    def _create_registry(self) -> OpenAIToolRegistry:
        return OpenAIToolRegistry()

    def _setup_client(self, config: BackendConfig) -> None:
        if self._injected_client is not None:
            self.client = self._injected_client
            return
        api_key = config.api_key or os.getenv(self.api_key_env)
        if not api_key:
            raise InvalidCredentialsError(f"No API key configured for '{self.vendor}' (set {self.api_key_env}).")
        self.client = AsyncOpenAI(api_key=api_key, base_url=config.base_url or self.default_base_url)

    def _request_kwargs(self, messages: List[BaseMessage]) -> Dict[str, Any]:
        config = self._require_config()
        kwargs: Dict[str, Any] = {
            "model": config.model_name,
            "messages": self._convert_history(messages),
        }
        temperature = config.temperature if config.temperature is not None else self.default_temperature
        top_p = config.top_p if config.top_p is not None else self.default_top_p
        if temperature is not None:
            kwargs["temperature"] = temperature
        if top_p is not None:
            kwargs["top_p"] = top_p
        if config.max_tokens is not None:
            kwargs["max_tokens"] = config.max_tokens
        if self._tools_enabled and self.registry is not None:
            kwargs["tools"] = self.registry.tool_object
        return kwargs

    async def _chat_impl(self, messages: List[BaseMessage]) -> str:
        try:
            response = await self._client().chat.completions.create(**self._request_kwargs(messages))
        except openai.APIError as e:
            raise self._translate_error(e)

        if not response.choices:
            logger.debug("Response has no choices.")
            return ""

        message = response.choices[0].message
        if message.tool_calls:
            self._last_tool_calls = [
                parse_tool_call(tc.id, tc.function.name, tc.function.arguments)
                for tc in message.tool_calls
                if getattr(tc, "function", None) is not None
            ]

        text = message.content or ""
        reasoning = getattr(message, "reasoning_content", None)
        if isinstance(reasoning, str) and reasoning:
            # Keep the reasoning recoverable by the normalizer's marker split.
            return f"<think>{reasoning}</think>{text}"
        return text

    async def _stream_impl(self, messages: List[BaseMessage]) -> AsyncIterator[Any]:
        kwargs = self._request_kwargs(messages)
        kwargs["stream"] = True
        kwargs["stream_options"] = {"include_usage": True}

        fragments = ToolCallAccumulator()
        try:
            stream = await self._client().chat.completions.create(**kwargs)
            async for chunk in stream:
                self._collect_tool_fragments(chunk, fragments)
                yield self._chunk_to_dict(chunk)
        except openai.APIError as e:
            raise self._translate_error(e)
        finally:
            if fragments:
                self._last_tool_calls = fragments.finalize()

    @staticmethod
    def _collect_tool_fragments(chunk: ChatCompletionChunk, fragments: ToolCallAccumulator) -> None:
        if not chunk.choices:
            return
        for tc in chunk.choices[0].delta.tool_calls or []:
            function = tc.function
            fragments.feed(
                tc.index,
                call_id=tc.id,
                name=function.name if function else None,
                arguments_delta=function.arguments if function else None,
            )

    @staticmethod
    def _chunk_to_dict(chunk: ChatCompletionChunk) -> Dict[str, Any]:
        """Flatten an SDK chunk into the delta dictionary plus usage."""
        data: Dict[str, Any] = {}
        if chunk.choices:
            choice = chunk.choices[0]
            delta = choice.delta
            data = delta.model_dump(exclude_none=True)
            # OpenAI compatible vendors send reasoning as an extra delta field
            for key in REASONING_KEYS:
                value = getattr(delta, key, None)
                if isinstance(value, str):
                    data[key] = value
            if choice.finish_reason:
                data["finish_reason"] = choice.finish_reason
        if chunk.usage is not None:
            data["usage"] = chunk.usage.model_dump(exclude_none=True)
        return data

    def _client(self) -> AsyncOpenAI:
        self._require_config()
        if self.client is None:
            raise AdapterNotInitializedError(f"{type(self).__name__} has no client.")
        return self.client

    @staticmethod
    def _translate_error(error: openai.APIError) -> Exception:
        """Map SDK errors to the library's backend errors, leaving others untouched."""
        if isinstance(error, openai.AuthenticationError):
            translated: Exception = InvalidCredentialsError(str(error))
        elif isinstance(error, openai.APITimeoutError):
            translated = BackendTimeoutError(str(error))
        elif isinstance(error, openai.APIConnectionError):
            translated = BackendConnectionError(str(error))
        else:
            return error
        translated.__cause__ = error
        return translated

    @staticmethod
    def _convert_history(history: List[BaseMessage]) -> List[Dict[str, Any]]:
        """
        Converts generic BaseMessage history to OpenAI message dictionaries.

        Args:
            history: List of BaseMessage objects.

        Returns:
            List of OpenAI message dictionaries.
        """
        openai_history: List[Dict[str, Any]] = []
        for msg in history:
            if isinstance(msg, SystemMessage):
                openai_history.append({"role": "system", "content": msg.content})
            elif isinstance(msg, AssistantMessage):
                openai_history.append({"role": "assistant", "content": msg.content})
            elif isinstance(msg, UserMessage):
                openai_history.append({"role": "user", "content": msg.content})
            else:
                logger.debug(f"Sending message with author '{msg.author}' as user message.")
                openai_history.append({"role": "user", "content": msg.content})
        return openai_history

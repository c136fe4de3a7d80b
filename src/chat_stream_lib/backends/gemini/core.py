import os
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from google import genai
from google.genai import errors, types
from google.genai.client import AsyncClient

from chat_stream_lib.core.base import BackendConfig, ModelAdapter
from chat_stream_lib.core.exceptions import AdapterNotInitializedError, InvalidCredentialsError
from chat_stream_lib.core.logger import get_logger
from chat_stream_lib.core.messages import AssistantMessage, BaseMessage, SystemMessage, generate_message_id
from chat_stream_lib.core.tools import ToolCallRecord, parse_tool_call
from .registry import GeminiToolRegistry

logger = get_logger(__name__)


class GeminiAdapter(ModelAdapter):
    """
    Adapter for Google's Gemini models through the google-genai async client.

    Streamed responses are converted to dictionaries with ``content``, ``thinking``
    (text of thought parts) and ``usage_metadata``. Function calls are recorded
    as tool calls.
    """

    vendor = "gemini"
    api_key_envs = ("GOOGLE_API_KEY", "GEMINI_API_KEY")

    def __init__(self, aclient: Optional[AsyncClient] = None, **kwargs: Any):
        """
        Initializes the adapter.

        Args:
            aclient: An optional preconfigured Google GenAI async client.
            **kwargs: Retry and timeout settings passed to ModelAdapter.
        """
        super().__init__(**kwargs)
        self._injected_client = aclient
        self.client: Optional[AsyncClient] = aclient

    def _create_registry(self) -> GeminiToolRegistry:
        return GeminiToolRegistry()

    def _setup_client(self, config: BackendConfig) -> None:
        if self._injected_client is not None:
            self.client = self._injected_client
            return
        api_key = config.api_key or next((os.getenv(env) for env in self.api_key_envs if os.getenv(env)), None)
        if not api_key:
            raise InvalidCredentialsError("No API key configured for 'gemini' (set GOOGLE_API_KEY).")
        self.client = genai.Client(api_key=api_key).aio

    def _generation_config(self, system_instruction: Optional[str]) -> types.GenerateContentConfig:
        config = self._require_config()
        tools: Optional[List[Any]] = None
        if self._tools_enabled and self.registry is not None and self.registry.tool_object is not None:
            tools = [self.registry.tool_object]
        return types.GenerateContentConfig(
            system_instruction=system_instruction,
            temperature=config.temperature,
            top_p=config.top_p,
            max_output_tokens=config.max_tokens,
            tools=tools,
        )

    async def _chat_impl(self, messages: List[BaseMessage]) -> str:
        system_instruction, contents = self._convert_history(messages)
        try:
            response = await self._client().models.generate_content(
                model=self.model_name,
                contents=contents,  # type: ignore[arg-type]
                config=self._generation_config(system_instruction),
            )
        except errors.ClientError as e:
            raise self._translate_error(e)

        content, thinking, calls = self._split_parts(response)
        if calls:
            self._last_tool_calls = calls
        if thinking:
            return f"<think>{thinking}</think>{content}"
        return content

    async def _stream_impl(self, messages: List[BaseMessage]) -> AsyncIterator[Any]:
        system_instruction, contents = self._convert_history(messages)
        calls: List[ToolCallRecord] = []
        try:
            stream = await self._client().models.generate_content_stream(
                model=self.model_name,
                contents=contents,  # type: ignore[arg-type]
                config=self._generation_config(system_instruction),
            )
            async for response in stream:
                content, thinking, chunk_calls = self._split_parts(response)
                calls.extend(chunk_calls)
                data: Dict[str, Any] = {"content": content}
                if thinking:
                    data["thinking"] = thinking
                if response.usage_metadata is not None:
                    data["usage_metadata"] = response.usage_metadata.model_dump(exclude_none=True)
                yield data
        except errors.ClientError as e:
            raise self._translate_error(e)
        finally:
            if calls:
                self._last_tool_calls = calls

    @staticmethod
    def _split_parts(response: types.GenerateContentResponse) -> Tuple[str, str, List[ToolCallRecord]]:
        """Separate answer text, thought text and function calls of the first candidate."""
        content, thinking = "", ""
        calls: List[ToolCallRecord] = []
        if not response.candidates:
            return content, thinking, calls
        candidate_content = response.candidates[0].content
        for part in (candidate_content.parts if candidate_content else None) or []:
            if part.function_call is not None:
                call = part.function_call
                calls.append(parse_tool_call(call.id or generate_message_id("call"), call.name or "", call.args or {}))
            elif part.text:
                if part.thought:
                    thinking += part.text
                else:
                    content += part.text
        return content, thinking, calls

    def _client(self) -> AsyncClient:
        self._require_config()
        if self.client is None:
            raise AdapterNotInitializedError(f"{type(self).__name__} has no client.")
        return self.client

    @staticmethod
    def _translate_error(error: errors.ClientError) -> Exception:
        message = str(error)
        if error.code in (401, 403) or "api key" in message.lower():
            translated = InvalidCredentialsError(message)
            translated.__cause__ = error
            return translated
        return error

    @staticmethod
    def _convert_history(history: List[BaseMessage]) -> Tuple[Optional[str], List[types.Content]]:
        """
        Converts generic history to Gemini contents.

        System messages are merged into the system instruction, assistant messages
        become ``model`` turns.

        Args:
            history: List of BaseMessage objects.

        Returns:
            The system instruction and the list of contents.
        """
        system_parts: List[str] = []
        contents: List[types.Content] = []
        for msg in history:
            if isinstance(msg, SystemMessage):
                system_parts.append(msg.content)
                continue
            role = "model" if isinstance(msg, AssistantMessage) else "user"
            contents.append(types.Content(role=role, parts=[types.Part(text=msg.content)]))
        return ("\n\n".join(system_parts) or None), contents

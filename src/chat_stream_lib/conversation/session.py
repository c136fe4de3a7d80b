"""Send, retry and stop flow of a conversation."""

import asyncio
from typing import List, Optional, Set

from chat_stream_lib.backends import BackendRegistry, unsupported_backend_message
from chat_stream_lib.core.base import BackendConfig, CancellationToken, ModelAdapter, ModelTestError, ModelTestResult
from chat_stream_lib.core.config import StreamSettings
from chat_stream_lib.core.exceptions import ChatStreamError, classify_error, describe_error
from chat_stream_lib.core.logger import get_logger
from chat_stream_lib.core.messages import BaseMessage, Message, generate_message_id, next_timestamp, to_history
from chat_stream_lib.core.normalizer import enhance_system_prompt, normalize_chunk
from chat_stream_lib.core.stream import StreamOrchestrator, UpdateCallback, deliver_update
from chat_stream_lib.core.tools import bucket_tool_calls
from chat_stream_lib.storage import MessageStore
from .reconciler import ConversationView

logger = get_logger(__name__)


class ChatSession:
    """
    Glues the conversation view, the backend registry and the stream orchestrator
    together for one conversation.

    Every turn ends with a terminal assistant message: ``sent`` when the backend
    answered or the user stopped the reply, ``error`` with a readable explanation
    otherwise. Failures are never raised to the caller.
    """

    def __init__(
        self,
        store: MessageStore,
        conversation_id: str,
        registry: Optional[BackendRegistry] = None,
        settings: Optional[StreamSettings] = None,
        view: Optional[ConversationView] = None,
    ):
        """
        Args:
            store: The message store.
            conversation_id: Id of the conversation.
            registry: Registry handing out adapters. Defaults to the built-in backends.
            settings: Shared stream, pagination and history settings.
            view: Existing view of the conversation. A new one is created if omitted.
        """
        self.store = store
        self.conversation_id = conversation_id
        self.registry = registry or BackendRegistry()
        self.settings = settings or StreamSettings()
        self.view = view or ConversationView(store, conversation_id, self.settings)

        self._orchestrator: Optional[StreamOrchestrator] = None
        self._cancel_token: Optional[CancellationToken] = None
        self._stop_requested = False
        self._generating = False
        self._callback_tasks: Set[asyncio.Task] = set()
        self._echo_handle: Optional[asyncio.TimerHandle] = None

    @property
    def is_generating(self) -> bool:
        return self._generating

    def stop(self) -> None:
        """Stop the reply that is currently generated. Has no effect when idle."""
        if not self._generating:
            return
        self._stop_requested = True
        if self._orchestrator is not None:
            self._orchestrator.stop()
        elif self._cancel_token is not None:
            self._cancel_token.cancel()

    async def send_message(
        self, text: str, config: BackendConfig, on_update: Optional[UpdateCallback] = None
    ) -> Message:
        """
        Send a user turn and produce the assistant's reply.

        Args:
            text: The user's message.
            config: Backend configuration of this send.
            on_update: UI callback receiving ``[user_message, assistant_message]`` snapshots.

        Returns:
            The terminal assistant message.
        """
        user_message = Message(
            id=generate_message_id("user"),
            conversation_id=self.conversation_id,
            role="user",
            content=text,
            status="sent",
            timestamp=next_timestamp(),
        )
        return await self._respond(user_message, config, on_update)

    async def retry(
        self, message_id: str, config: BackendConfig, on_update: Optional[UpdateCallback] = None
    ) -> Message:
        """
        Answer a user message again.

        ``message_id`` may name the user message or an assistant reply; in the latter
        case the reply is deleted and the user message preceding it is resubmitted unchanged.

        Args:
            message_id: Id of the message to retry.
            config: Backend configuration of this send.
            on_update: UI callback.

        Returns:
            The new terminal assistant message.

        Raises:
            ChatStreamError: If the message or its user message is not part of the view.
        """
        messages = self.view.messages
        index = next((i for i, m in enumerate(messages) if m.id == message_id), None)
        if index is None:
            raise ChatStreamError(f"Message '{message_id}' is not part of conversation '{self.conversation_id}'.")

        target = messages[index]
        if target.role == "user":
            user_message = target
        else:
            user_message = next((m for m in reversed(messages[:index]) if m.role == "user"), None)
            if user_message is None:
                raise ChatStreamError(f"No user message precedes message '{message_id}'.")
            await self.view.remove_messages([target.id])

        logger.info(f"Retrying user message '{user_message.id}'.")
        return await self._respond(user_message, config, on_update)

    async def test_backend(self, config: BackendConfig) -> ModelTestResult:
        """Check that a backend is reachable with the given configuration."""
        adapter = self.registry.get_adapter(config.vendor)
        if adapter is None:
            message = unsupported_backend_message(config.vendor)
            return ModelTestResult(success=False, error=ModelTestError(code="unknown", message=message))
        adapter.test_timeout = self.settings.test_timeout
        try:
            adapter.initialize(config)
        except ChatStreamError as e:
            logger.warning(f"Could not initialize backend '{config.vendor}': {e}")
            return ModelTestResult(success=False, error=ModelTestError(code=classify_error(e), message=str(e)))
        return await adapter.test_model()

    async def _respond(
        self, user_message: Message, config: BackendConfig, on_update: Optional[UpdateCallback]
    ) -> Message:
        if self._generating:
            logger.warning("A reply is already being generated for this conversation.")

        assistant = Message(
            id=generate_message_id("assistant"),
            conversation_id=self.conversation_id,
            role="assistant",
            content_type="markdown",
            status="sending",
            timestamp=next_timestamp(),
        )
        self.view.add_message(user_message)
        self.view.add_message(assistant)
        for message in (user_message, assistant):
            result = await self.store.add_message(message)
            if not result.success:
                logger.warning(f"Could not persist message '{message.id}': {result.error}")

        adapter = self.registry.get_adapter(config.vendor)
        if adapter is None:
            return await self._fail(user_message, assistant, unsupported_backend_message(config.vendor), on_update)

        self._generating = True
        self._stop_requested = False
        self._cancel_token = CancellationToken()
        try:
            prepared = config.model_copy(
                update={"system_prompt": enhance_system_prompt(config.system_prompt, config.chain_of_thought)}
            )
            adapter.initialize(prepared)
            history = self._build_history(user_message)
            if config.stream:
                self._orchestrator = StreamOrchestrator(self.store, on_update, self.settings)
                final = await self._orchestrator.run(adapter, history, user_message, assistant, self._cancel_token)
            else:
                final = await self._chat_once(adapter, history, user_message, assistant, on_update)
        except Exception as e:
            logger.error(f"Generating a reply with '{config.vendor}' failed: {e}")
            final = await self._fail(user_message, assistant, describe_error(e), on_update)
        finally:
            self._generating = False
            self._orchestrator = None
            self._cancel_token = None

        self.view.add_message(final)
        return final

    def _build_history(self, user_message: Message) -> List[BaseMessage]:
        earlier = [
            m
            for m in self.view.messages
            if m.timestamp < user_message.timestamp and m.id != user_message.id and m.status != "error"
        ]
        limit = self.settings.max_context_messages
        context = earlier[-limit:] if limit else []
        return to_history([*context, user_message])

    async def _chat_once(
        self,
        adapter: ModelAdapter,
        history: List[BaseMessage],
        user_message: Message,
        assistant: Message,
        on_update: Optional[UpdateCallback],
    ) -> Message:
        """Non-streaming turn: one blocking call, then a single final write."""
        snapshot = assistant.model_copy()
        snapshot.content = self.settings.placeholder_text
        deliver_update(on_update, [user_message.model_copy(), snapshot], self._callback_tasks)

        assistant.advance("streaming")
        text = await adapter.chat(history)
        state = normalize_chunk({"content": text})
        assistant.content = state.content
        assistant.thinking_content = state.thinking_content or None

        tool_calls, invalid_tool_calls = bucket_tool_calls(adapter.last_tool_calls)
        assistant.tool_calls = tool_calls or None
        assistant.invalid_tool_calls = invalid_tool_calls or None
        if self._stop_requested:
            assistant.metadata = {**(assistant.metadata or {}), "stopped_manually": True}
        assistant.advance("sent")

        result = await self.store.update_message(assistant.id, assistant.content, "sent", "markdown", assistant.extras())
        if not result.success:
            logger.warning(f"Final write of message '{assistant.id}' failed: {result.error}")
        self._deliver_final(on_update, [user_message.model_copy(), assistant.model_copy(deep=True)])
        return assistant

    async def _fail(
        self,
        user_message: Message,
        assistant: Message,
        error_text: str,
        on_update: Optional[UpdateCallback],
    ) -> Message:
        if not assistant.content:
            assistant.content = error_text
        assistant.error = error_text
        if not assistant.is_terminal:
            assistant.advance("error")

        result = await self.store.update_message(
            assistant.id, assistant.content, assistant.status, assistant.content_type, assistant.extras(), error=error_text
        )
        if not result.success:
            logger.warning(f"Could not persist failed message '{assistant.id}': {result.error}")
        self.view.add_message(assistant)
        self._deliver_final(on_update, [user_message.model_copy(), assistant.model_copy(deep=True)])
        return assistant

    def _deliver_final(self, on_update: Optional[UpdateCallback], messages: List[Message]) -> None:
        deliver_update(on_update, messages, self._callback_tasks)
        if on_update is not None:
            self._echo_handle = asyncio.get_running_loop().call_later(
                self.settings.final_echo_delay, deliver_update, on_update, messages, self._callback_tasks
            )

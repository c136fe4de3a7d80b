"""Drives one streamed reply from an adapter into the UI and the message store."""

import asyncio
import inspect
from contextlib import aclosing
from enum import Enum
from typing import Any, Callable, List, Optional, Protocol, Set

from .scheduler import UiThrottle, WriteDebouncer
from ..base import CancellationToken, ModelAdapter
from ..config import StreamSettings
from ..exceptions import ChatStreamError
from ..logger import get_logger
from ..messages import BaseMessage, Message, MessageExtras, TokenUsage
from ..normalizer import aggregate_usage, normalize_chunk
from ..tools import bucket_tool_calls

logger = get_logger(__name__)

UpdateCallback = Callable[[List[Message]], Any]


class MessageWriter(Protocol):
    """The part of the message store the orchestrator writes to."""

    async def update_message(
        self,
        message_id: str,
        content: str,
        status: str,
        content_type: str,
        extras: Optional[MessageExtras] = None,
        error: Optional[str] = None,
    ) -> Any: ...


class StreamState(str, Enum):
    INIT = "init"
    STREAMING = "streaming"
    COMPLETED = "completed"
    STOPPED = "stopped"
    FAILED = "failed"


class StreamOrchestrator:
    """
    Runs a single streamed turn.

    Chunks are folded through the chunk normalizer into the assistant message. UI
    updates are throttled, store writes are debounced and only armed after enough
    text accumulated. Whatever way the loop ends, the message gets exactly one final
    store write carrying the usage aggregated over all chunks and the tool calls
    reported by the adapter.
    """

    def __init__(
        self,
        store: Optional[MessageWriter] = None,
        on_update: Optional[UpdateCallback] = None,
        settings: Optional[StreamSettings] = None,
    ):
        """
        Initializes the orchestrator.

        Args:
            store: Store receiving progress and final writes. Without a store the turn is kept in memory only.
            on_update: UI callback invoked with ``[user_message, assistant_message]`` snapshots.
            settings: Throttle, debounce and placeholder settings.
        """
        self.store = store
        self.on_update = on_update
        self.settings = settings or StreamSettings()

        self.state = StreamState.INIT
        self.stopped_manually = False
        self.chunks: List[Any] = []
        self.current_message: Optional[Message] = None
        self.token_usage: Optional[TokenUsage] = None

        self._user_message: Optional[Message] = None
        self._cancel_token: Optional[CancellationToken] = None
        self._written_content = 0
        self._written_thinking = 0
        self._echo_handle: Optional[asyncio.TimerHandle] = None
        self._callback_tasks: Set[asyncio.Task] = set()

    def stop(self) -> None:
        """Request a manual stop. The stream ends after the current chunk."""
        self.stopped_manually = True
        if self._cancel_token is not None:
            self._cancel_token.cancel()

    @property
    def cancelled(self) -> bool:
        return self._cancel_token is not None and self._cancel_token.cancelled

    async def run(
        self,
        adapter: ModelAdapter,
        history: List[BaseMessage],
        user_message: Message,
        assistant_message: Message,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Message:
        """
        Streams the reply into ``assistant_message``.

        Args:
            adapter: An initialized backend adapter.
            history: Prompt history ending with the user's turn.
            user_message: The user's message, passed along to the UI callback.
            assistant_message: The placeholder message that receives the reply.
            cancel_token: Token polled after every chunk. A new one is created if omitted.

        Returns:
            The finalized assistant message with status ``sent``.

        Raises:
            ChatStreamError: If the orchestrator was already used.
            Exception: Any transport failure that was not caused by cancellation.
        """
        if self.state is not StreamState.INIT:
            raise ChatStreamError("A StreamOrchestrator runs exactly one stream.")

        token = cancel_token or CancellationToken()
        self._cancel_token = token
        if self.stopped_manually:
            token.cancel()

        self._user_message = user_message
        self.current_message = assistant_message
        assistant_message.advance("streaming")
        self.state = StreamState.STREAMING
        self._deliver(self._snapshot(placeholder=True))

        throttle = UiThrottle(self._push_ui, self.settings.ui_interval)
        debouncer = WriteDebouncer(self._write_progress, self.settings.store_debounce)
        content = assistant_message.content
        thinking = assistant_message.thinking_content or ""
        usage: Optional[TokenUsage] = None

        try:
            async with aclosing(adapter.stream(history, token)) as stream:
                async for chunk in stream:
                    self.chunks.append(chunk)
                    state = normalize_chunk(chunk, content, thinking, usage)
                    grew = state.content != content or state.thinking_content != thinking
                    content, thinking, usage = state.content, state.thinking_content, state.token_usage
                    assistant_message.content = content
                    assistant_message.thinking_content = thinking or None

                    if token.cancelled:
                        logger.info(f"Stream for message '{assistant_message.id}' cancelled.")
                        break
                    if not grew:
                        continue

                    throttle.request()
                    if (
                        len(content) - self._written_content > self.settings.store_growth_threshold
                        or len(thinking) - self._written_thinking > self.settings.store_growth_threshold
                    ):
                        self._written_content = len(content)
                        self._written_thinking = len(thinking)
                        debouncer.schedule()
                    await asyncio.sleep(0)
        except Exception as e:
            throttle.cancel()
            await debouncer.aclose()
            if not token.cancelled:
                self.state = StreamState.FAILED
                logger.error(f"Stream for message '{assistant_message.id}' failed: {e}")
                raise
            logger.info(f"Ignoring stream error after cancellation: {e}")

        throttle.cancel()
        await debouncer.aclose()
        self.token_usage = usage
        return await self._finalize(adapter, assistant_message)

    async def _finalize(self, adapter: ModelAdapter, message: Message) -> Message:
        usage = aggregate_usage(self.chunks)
        if usage is not None and usage.total_tokens == 0:
            usage = None
        tool_calls, invalid_tool_calls = bucket_tool_calls(adapter.last_tool_calls)

        message.token_usage = usage
        message.tool_calls = tool_calls or None
        message.invalid_tool_calls = invalid_tool_calls or None
        if self.stopped_manually:
            message.metadata = {**(message.metadata or {}), "stopped_manually": True}
        message.content_type = "markdown"
        message.advance("sent")
        self.state = StreamState.STOPPED if self.cancelled else StreamState.COMPLETED

        if self.store is not None:
            result = await self.store.update_message(message.id, message.content, "sent", "markdown", message.extras())
            if not getattr(result, "success", True):
                logger.warning(f"Final write of message '{message.id}' failed: {getattr(result, 'error', None)}")

        logger.info(
            f"Stream for message '{message.id}' finished as {self.state.value} "
            f"({len(self.chunks)} chunks, {len(message.content)} chars)."
        )
        final = self._snapshot()
        self._deliver(final)
        self._echo_handle = asyncio.get_running_loop().call_later(
            self.settings.final_echo_delay, self._deliver, final
        )
        return message

    def cancel_echo(self) -> None:
        if self._echo_handle is not None:
            self._echo_handle.cancel()
            self._echo_handle = None

    async def _write_progress(self) -> None:
        message = self.current_message
        if self.store is None or message is None:
            return
        logger.debug(f"Saving progress of message '{message.id}' ({len(message.content)} chars).")
        await self.store.update_message(
            message.id,
            message.content,
            "streaming",
            "markdown",
            MessageExtras(thinking_content=message.thinking_content),
        )

    def _push_ui(self) -> None:
        self._deliver(self._snapshot())

    def _snapshot(self, placeholder: bool = False) -> List[Message]:
        messages: List[Message] = []
        if self._user_message is not None:
            messages.append(self._user_message.model_copy())
        if self.current_message is not None:
            assistant = self.current_message.model_copy(deep=True)
            if placeholder and not assistant.content:
                assistant.content = self.settings.placeholder_text
            messages.append(assistant)
        return messages

    def _deliver(self, messages: List[Message]) -> None:
        deliver_update(self.on_update, messages, self._callback_tasks)


def deliver_update(callback: Optional[UpdateCallback], messages: List[Message], pending: Set[asyncio.Task]) -> None:
    """Invoke a UI callback, scheduling it as a task when it returns an awaitable.

    Args:
        callback: The UI callback, may be None.
        messages: The ``[user_message, assistant_message]`` snapshot.
        pending: Set holding references to scheduled callback tasks.
    """
    if callback is None:
        return
    try:
        result = callback(messages)
    except Exception:
        logger.exception("UI update callback failed.")
        return
    if inspect.isawaitable(result):
        task = asyncio.ensure_future(result)
        pending.add(task)
        task.add_done_callback(pending.discard)
        task.add_done_callback(_log_callback_failure)


def _log_callback_failure(task: "asyncio.Future[Any]") -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error(f"UI update callback failed: {error}")

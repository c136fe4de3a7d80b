import asyncio
from typing import Any, List, Optional

import pytest

from chat_stream_lib.core.config import StreamSettings
from chat_stream_lib.core.exceptions import ChatStreamError, EmptyStreamError
from chat_stream_lib.core.messages import Message, MessageExtras, TokenUsage, UserMessage
from chat_stream_lib.core.stream import StreamOrchestrator, StreamState
from chat_stream_lib.storage import WriteResult

HISTORY = [UserMessage(content="Hi")]


class RecordingStore:
    """Message writer that remembers every update."""

    def __init__(self) -> None:
        self.writes: List[Any] = []

    async def update_message(
        self,
        message_id: str,
        content: str,
        status: str,
        content_type: str,
        extras: Optional[MessageExtras] = None,
        error: Optional[str] = None,
    ) -> WriteResult:
        self.writes.append((status, content, extras))
        return WriteResult(success=True)

    @property
    def statuses(self) -> List[str]:
        return [w[0] for w in self.writes]


@pytest.fixture
def turn(make_message):
    user = make_message("u1", content="Hi", status="sent")
    assistant = make_message("a1", role="assistant", content="")
    return user, assistant


async def seed_turn(store, turn):
    for message in turn:
        await store.add_message(message)


class TestStreaming:
    @pytest.mark.asyncio
    async def test_stream_is_folded_and_finalized(self, make_adapter, store, turn, fast_settings):
        await seed_turn(store, turn)
        adapter = make_adapter(chunks=[{"content": "Hello"}, {"content": " world"}])
        orchestrator = StreamOrchestrator(store=store, settings=fast_settings)

        message = await orchestrator.run(adapter, HISTORY, *turn)

        assert message is turn[1]
        assert message.content == "Hello world"
        assert message.thinking_content is None
        assert message.status == "sent"
        assert message.content_type == "markdown"
        assert orchestrator.state is StreamState.COMPLETED

        stored = await store.get_message("a1")
        assert stored.content == "Hello world"
        assert stored.status == "sent"
        assert stored.content_type == "markdown"

    @pytest.mark.asyncio
    async def test_reasoning_and_usage_are_stored(self, make_adapter, store, turn, fast_settings):
        await seed_turn(store, turn)
        adapter = make_adapter(
            chunks=[
                {"content": "", "additional_kwargs": {"reasoning_content": "step1"}},
                {"content": "42"},
                {"content": "", "usage": {"prompt_tokens": 4, "completion_tokens": 2, "total_tokens": 6}},
            ]
        )
        orchestrator = StreamOrchestrator(store=store, settings=fast_settings)

        message = await orchestrator.run(adapter, HISTORY, *turn)

        assert message.content == "42"
        assert message.thinking_content == "step1"
        assert message.token_usage == TokenUsage(total_tokens=6, prompt_tokens=4, completion_tokens=2)
        stored = await store.get_message("a1")
        assert stored.thinking_content == "step1"
        assert stored.token_usage.total_tokens == 6

    @pytest.mark.asyncio
    async def test_zero_usage_is_omitted(self, make_adapter, turn, fast_settings):
        adapter = make_adapter(chunks=[{"content": "a", "usage": {"total_tokens": 0}}])

        message = await StreamOrchestrator(settings=fast_settings).run(adapter, HISTORY, *turn)

        assert message.token_usage is None

    @pytest.mark.asyncio
    async def test_tool_calls_are_bucketed(self, make_adapter, store, turn, fast_settings):
        await seed_turn(store, turn)
        valid = {"id": "call_1", "name": "search", "args": {"q": "x"}, "type": "tool_call"}
        invalid = {"id": "call_2", "name": "search", "args": "{", "type": "tool_call", "error": "Invalid JSON arguments"}
        adapter = make_adapter(chunks=[{"content": "Let me look."}], tool_calls=[valid, invalid, dict(valid)])

        message = await StreamOrchestrator(store=store, settings=fast_settings).run(adapter, HISTORY, *turn)

        assert message.tool_calls == [valid]
        assert message.invalid_tool_calls == [invalid]
        stored = await store.get_message("a1")
        assert stored.tool_calls == [valid]
        assert stored.invalid_tool_calls == [invalid]

    @pytest.mark.asyncio
    async def test_orchestrator_runs_once(self, make_adapter, turn, fast_settings, make_message):
        orchestrator = StreamOrchestrator(settings=fast_settings)
        await orchestrator.run(make_adapter(chunks=["a"]), HISTORY, *turn)

        with pytest.raises(ChatStreamError):
            await orchestrator.run(
                make_adapter(chunks=["b"]), HISTORY, turn[0], make_message("a2", role="assistant", content="")
            )


class TestUiUpdates:
    @pytest.mark.asyncio
    async def test_placeholder_final_and_echo(self, make_adapter, turn, fast_settings):
        updates: List[List[Message]] = []
        adapter = make_adapter(chunks=[{"content": "Hello"}])
        orchestrator = StreamOrchestrator(on_update=updates.append, settings=fast_settings)

        await orchestrator.run(adapter, HISTORY, *turn)
        delivered = len(updates)
        await asyncio.sleep(fast_settings.final_echo_delay * 3)

        first_user, first_assistant = updates[0]
        assert first_user.id == "u1"
        assert first_assistant.content == "Thinking..."
        assert updates[delivered - 1][1].content == "Hello"
        assert updates[delivered - 1][1].status == "sent"
        assert len(updates) == delivered + 1
        assert updates[-1][1].content == "Hello"

    @pytest.mark.asyncio
    async def test_updates_are_throttled(self, make_adapter, turn):
        updates: List[List[Message]] = []
        settings = StreamSettings(ui_interval=10, final_echo_delay=10, store_debounce=10)
        adapter = make_adapter(chunks=[{"content": "x"}] * 100)
        orchestrator = StreamOrchestrator(on_update=updates.append, settings=settings)

        await orchestrator.run(adapter, HISTORY, *turn)
        orchestrator.cancel_echo()

        # placeholder, first chunk, final state
        assert len(updates) == 3
        assert updates[1][1].content == "x"
        assert updates[2][1].content == "x" * 100

    @pytest.mark.asyncio
    async def test_snapshots_do_not_alias_the_message(self, make_adapter, turn, fast_settings):
        updates: List[List[Message]] = []
        adapter = make_adapter(chunks=[{"content": "a"}])
        orchestrator = StreamOrchestrator(on_update=updates.append, settings=fast_settings)

        message = await orchestrator.run(adapter, HISTORY, *turn)
        orchestrator.cancel_echo()

        assert all(update[1] is not message for update in updates)
        assert message.content == "a"

    @pytest.mark.asyncio
    async def test_async_and_failing_callbacks(self, make_adapter, turn, fast_settings):
        seen: List[str] = []

        async def on_update(messages: List[Message]) -> None:
            seen.append(messages[1].content)
            if len(seen) == 1:
                raise RuntimeError("render failed")

        adapter = make_adapter(chunks=[{"content": "ok"}])
        orchestrator = StreamOrchestrator(on_update=on_update, settings=fast_settings)

        message = await orchestrator.run(adapter, HISTORY, *turn)
        await asyncio.sleep(0.01)
        orchestrator.cancel_echo()

        assert message.status == "sent"
        assert seen[0] == "Thinking..."
        assert seen[-1] == "ok"


class TestPersistence:
    @pytest.mark.asyncio
    async def test_progress_writes_then_single_final_write(self, make_adapter, turn):
        store = RecordingStore()
        settings = StreamSettings(store_debounce=0.02, store_growth_threshold=10, ui_interval=0.01, final_echo_delay=0.01)
        adapter = make_adapter(chunks=[{"content": "0123456789ab"}] * 4, delay=0.06)

        message = await StreamOrchestrator(store=store, settings=settings).run(adapter, HISTORY, *turn)

        assert "streaming" in store.statuses
        assert store.statuses.count("sent") == 1
        assert store.statuses[-1] == "sent"
        assert store.writes[-1][1] == message.content
        for status, content, _ in store.writes[:-1]:
            assert message.content.startswith(content)

    @pytest.mark.asyncio
    async def test_steady_stream_still_saves_progress(self, make_adapter, turn):
        store = RecordingStore()
        settings = StreamSettings(store_debounce=0.05, store_growth_threshold=20, ui_interval=0.01, final_echo_delay=0.01)
        # Chunks arrive faster than the debounce delay
        adapter = make_adapter(chunks=[{"content": "0123456789"}] * 20, delay=0.02)

        message = await StreamOrchestrator(store=store, settings=settings).run(adapter, HISTORY, *turn)

        progress = [content for status, content, _ in store.writes if status == "streaming"]
        assert progress
        assert len(progress) < 20
        assert all(len(content) < len(message.content) for content in progress)
        assert store.statuses[-1] == "sent"

    @pytest.mark.asyncio
    async def test_small_growth_does_not_write(self, make_adapter, turn):
        store = RecordingStore()
        settings = StreamSettings(store_debounce=0.01, store_growth_threshold=10, final_echo_delay=0.01)
        adapter = make_adapter(chunks=[{"content": "a"}] * 5, delay=0.03)

        await StreamOrchestrator(store=store, settings=settings).run(adapter, HISTORY, *turn)

        assert store.statuses == ["sent"]


class TestStopping:
    @pytest.mark.asyncio
    async def test_manual_stop_keeps_partial_content(self, make_adapter, store, turn, fast_settings):
        await seed_turn(store, turn)
        orchestrator = StreamOrchestrator(store=store, settings=fast_settings)
        adapter = make_adapter(
            chunks=[{"content": c} for c in ["one ", "two ", "three ", "four ", "five"]],
            on_chunk=lambda index: orchestrator.stop() if index == 2 else None,
        )

        message = await orchestrator.run(adapter, HISTORY, *turn)

        assert message.content == "one two three "
        assert message.status == "sent"
        assert message.metadata == {"stopped_manually": True}
        assert orchestrator.state is StreamState.STOPPED
        assert len(orchestrator.chunks) == 3

        stored = await store.get_message("a1")
        assert stored.content == "one two three "
        assert stored.metadata == {"stopped_manually": True}

    @pytest.mark.asyncio
    async def test_stop_before_first_chunk(self, make_adapter, turn, fast_settings):
        orchestrator = StreamOrchestrator(settings=fast_settings)
        orchestrator.stop()

        message = await orchestrator.run(make_adapter(chunks=[]), HISTORY, *turn)

        assert message.content == ""
        assert message.status == "sent"
        assert orchestrator.cancelled


class TestFailures:
    @pytest.mark.asyncio
    async def test_transport_failure_propagates(self, make_adapter, turn):
        store = RecordingStore()
        adapter = make_adapter(chunks=[{"content": "a"}, {"content": "b"}, {"content": "c"}], error=RuntimeError("reset"), error_after=2)
        orchestrator = StreamOrchestrator(store=store, settings=StreamSettings(final_echo_delay=0.01))

        with pytest.raises(RuntimeError, match="reset"):
            await orchestrator.run(adapter, HISTORY, *turn)

        assert orchestrator.state is StreamState.FAILED
        assert "sent" not in store.statuses
        assert turn[1].content == "ab"

    @pytest.mark.asyncio
    async def test_empty_stream_propagates(self, make_adapter, turn, fast_settings):
        with pytest.raises(EmptyStreamError):
            await StreamOrchestrator(settings=fast_settings).run(make_adapter(chunks=[]), HISTORY, *turn)

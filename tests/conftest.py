import asyncio
from typing import Any, AsyncIterator, List, Optional

import pytest
import pytest_asyncio
from dotenv import load_dotenv, find_dotenv

from chat_stream_lib.core.base import ModelAdapter, BackendConfig
from chat_stream_lib.core.config import StreamSettings
from chat_stream_lib.core.messages import BaseMessage, Message, next_timestamp
from chat_stream_lib.storage import MessageStore

# Load environment variables from .env file, if one exists
env_file = find_dotenv(usecwd=True)
if env_file:
    load_dotenv(env_file)


class FakeAdapter(ModelAdapter):
    """Adapter replaying scripted chunks, used instead of a real backend."""

    vendor = "fake"

    def __init__(
        self,
        chunks: Optional[List[Any]] = None,
        reply: str = "",
        error: Optional[Exception] = None,
        error_after: Optional[int] = None,
        delay: float = 0.0,
        tool_calls: Optional[List[Any]] = None,
        on_chunk: Any = None,
    ):
        super().__init__(max_retries=0, base_retry_delay=0.0)
        self.chunks = chunks or []
        self.reply = reply
        self.error = error
        self.error_after = error_after
        self.delay = delay
        self.tool_calls = tool_calls
        self.on_chunk = on_chunk
        self.received: List[BaseMessage] = []

    def _setup_client(self, config: BackendConfig) -> None:
        pass

    async def _chat_impl(self, messages: List[BaseMessage]) -> str:
        self.received = messages
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if self.tool_calls:
            self._last_tool_calls = list(self.tool_calls)
        return self.reply

    async def _stream_impl(self, messages: List[BaseMessage]) -> AsyncIterator[Any]:
        self.received = messages
        for index, chunk in enumerate(self.chunks):
            if self.error is not None and self.error_after == index:
                raise self.error
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.on_chunk is not None:
                self.on_chunk(index)
            yield chunk
        if self.error is not None and (self.error_after is None or self.error_after >= len(self.chunks)):
            raise self.error
        if self.tool_calls:
            self._last_tool_calls = list(self.tool_calls)


@pytest.fixture
def fake_config() -> BackendConfig:
    return BackendConfig(vendor="fake", model_name="fake-model", api_key="dummy_key")


@pytest.fixture
def new_adapter():
    """Factory for uninitialized fake adapters, e.g. to hand out from a BackendRegistry."""
    return FakeAdapter


@pytest.fixture
def make_adapter(fake_config: BackendConfig):
    def factory(**kwargs: Any) -> FakeAdapter:
        adapter = FakeAdapter(**kwargs)
        adapter.initialize(fake_config)
        return adapter

    return factory


@pytest.fixture
def fast_settings() -> StreamSettings:
    return StreamSettings(
        ui_interval=0.05,
        store_debounce=0.05,
        store_growth_threshold=10,
        final_echo_delay=0.05,
        load_cooldown=0.0,
    )


@pytest_asyncio.fixture
async def store(tmp_path) -> AsyncIterator[MessageStore]:
    message_store = MessageStore(tmp_path / "messages.db")
    await message_store.initialize()
    yield message_store
    await message_store.close()


@pytest.fixture
def make_message():
    def factory(
        message_id: str,
        role: str = "user",
        content: str = "hello",
        conversation_id: str = "conv-1",
        timestamp: Optional[int] = None,
        **kwargs: Any,
    ) -> Message:
        return Message(
            id=message_id,
            conversation_id=conversation_id,
            role=role,
            content=content,
            timestamp=timestamp if timestamp is not None else next_timestamp(),
            **kwargs,
        )

    return factory

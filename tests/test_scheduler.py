import asyncio

import pytest

from chat_stream_lib.core.base import CancellationToken
from chat_stream_lib.core.stream.scheduler import UiThrottle, WriteDebouncer


class TestUiThrottle:
    @pytest.mark.asyncio
    async def test_first_request_is_delivered_at_once(self):
        calls = []
        throttle = UiThrottle(lambda: calls.append(1), interval=10)

        throttle.request()

        assert calls == [1]
        assert not throttle.pending

    @pytest.mark.asyncio
    async def test_burst_is_coalesced_into_one_trailing_delivery(self):
        calls = []
        throttle = UiThrottle(lambda: calls.append(1), interval=0.05)

        for _ in range(10):
            throttle.request()
        assert len(calls) == 1
        assert throttle.pending

        await asyncio.sleep(0.15)

        assert len(calls) == 2
        assert throttle.deliveries == 2
        assert not throttle.pending

    @pytest.mark.asyncio
    async def test_cancel_drops_pending_delivery(self):
        calls = []
        throttle = UiThrottle(lambda: calls.append(1), interval=0.05)
        throttle.request()
        throttle.request()

        throttle.cancel()
        await asyncio.sleep(0.1)

        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_flush_delivers_pending_update(self):
        calls = []
        throttle = UiThrottle(lambda: calls.append(1), interval=10)
        throttle.request()
        throttle.request()

        throttle.flush()
        throttle.flush()

        assert len(calls) == 2


class TestWriteDebouncer:
    @pytest.mark.asyncio
    async def test_only_the_last_request_of_a_burst_writes(self):
        writes = []

        async def write():
            writes.append(1)

        debouncer = WriteDebouncer(write, delay=0.05)
        for _ in range(5):
            debouncer.schedule()
            await asyncio.sleep(0.01)
        assert debouncer.pending

        await asyncio.sleep(0.15)

        assert writes == [1]
        assert debouncer.writes == 1
        assert not debouncer.pending

    @pytest.mark.asyncio
    async def test_aclose_cancels_pending_write(self):
        writes = []

        async def write():
            writes.append(1)

        debouncer = WriteDebouncer(write, delay=0.05)
        debouncer.schedule()
        await debouncer.aclose()
        await asyncio.sleep(0.1)

        assert writes == []

    @pytest.mark.asyncio
    async def test_aclose_waits_for_running_write(self):
        finished = []

        async def write():
            await asyncio.sleep(0.05)
            finished.append(1)

        debouncer = WriteDebouncer(write, delay=0.01)
        debouncer.schedule()
        await asyncio.sleep(0.03)

        await debouncer.aclose()

        assert finished == [1]

    @pytest.mark.asyncio
    async def test_failed_write_is_logged(self, caplog):
        async def write():
            raise RuntimeError("disk full")

        debouncer = WriteDebouncer(write, delay=0.01)
        debouncer.schedule()
        await asyncio.sleep(0.05)
        await debouncer.aclose()

        assert debouncer.writes == 1
        assert "disk full" in caplog.text


def test_cancellation_token():
    token = CancellationToken()
    assert not token.cancelled

    token.cancel()
    token.cancel()

    assert token.cancelled
    assert "cancelled=True" in repr(token)

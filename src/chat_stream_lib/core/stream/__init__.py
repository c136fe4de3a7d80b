"""Stream orchestration and the timers it relies on."""

from .scheduler import UiThrottle, WriteDebouncer
from .orchestrator import StreamOrchestrator, StreamState, MessageWriter, UpdateCallback, deliver_update
from ..base.cancellation import CancellationToken

__all__ = [
    "UiThrottle",
    "WriteDebouncer",
    "StreamOrchestrator",
    "StreamState",
    "MessageWriter",
    "UpdateCallback",
    "deliver_update",
    "CancellationToken",
]

"""Id and timestamp helpers for client generated messages."""

import threading
import time
import uuid

_lock = threading.Lock()
_last_timestamp = 0


def next_timestamp() -> int:
    """Return the current time in milliseconds, strictly increasing within the process."""
    global _last_timestamp
    with _lock:
        now = int(time.time() * 1000)
        if now <= _last_timestamp:
            now = _last_timestamp + 1
        _last_timestamp = now
        return now


def generate_message_id(prefix: str = "msg") -> str:
    """Generate a unique message id of the form ``<prefix>_<milliseconds>_<random>``.

    Args:
        prefix: Leading part of the id, typically the role.

    Returns:
        The new id.
    """
    return f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"

"""Tool call records collected from backend responses."""

import json
from typing import Any, Dict, List, Optional, Tuple

from ..exceptions import ChunkParseError
from ..logger import get_logger

logger = get_logger(__name__)

ToolCallRecord = Dict[str, Any]


class ToolCallAccumulator:
    """Assembles complete tool calls from streamed fragments.

    Fragments carry an index, and optionally an id, a name and a piece of the
    JSON encoded arguments.
    """

    def __init__(self) -> None:
        self._pending: Dict[int, Dict[str, str]] = {}

    def feed(
        self,
        index: int,
        call_id: Optional[str] = None,
        name: Optional[str] = None,
        arguments_delta: Optional[str] = None,
    ) -> None:
        call = self._pending.setdefault(index, {"id": "", "name": "", "arguments": ""})
        if call_id:
            call["id"] = call_id
        if name:
            call["name"] = name
        if arguments_delta:
            call["arguments"] += arguments_delta

    def finalize(self) -> List[ToolCallRecord]:
        """Return the assembled calls in index order."""
        return [parse_tool_call(c["id"], c["name"], c["arguments"]) for _, c in sorted(self._pending.items())]

    def __bool__(self) -> bool:
        return bool(self._pending)


def parse_tool_call(call_id: str, name: str, arguments: Any) -> ToolCallRecord:
    """Build a tool call record, marking it with an ``error`` when the arguments do not decode.

    Args:
        call_id: Id assigned by the backend.
        name: Name of the requested tool.
        arguments: JSON text or an already decoded mapping.

    Returns:
        The tool call record.
    """
    record: ToolCallRecord = {"id": call_id, "name": name, "args": {}, "type": "tool_call"}
    if isinstance(arguments, dict):
        record["args"] = arguments
        return record
    if not arguments:
        return record
    try:
        record["args"] = decode_arguments(arguments)
    except ChunkParseError as e:
        logger.warning(f"Tool call '{name}' has invalid arguments: {e}")
        record["args"] = arguments
        record["error"] = str(e)
    return record


def decode_arguments(arguments: str) -> Dict[str, Any]:
    """Decode the JSON arguments of a tool call.

    Raises:
        ChunkParseError: If the text is not a JSON object.
    """
    try:
        decoded = json.loads(arguments)
    except (TypeError, ValueError) as e:
        raise ChunkParseError(f"Invalid JSON arguments: {e}") from e
    if not isinstance(decoded, dict):
        raise ChunkParseError("Tool call arguments must be a JSON object.")
    return decoded


def _dedupe_key(call: Any) -> str:
    if isinstance(call, dict) and call.get("id"):
        return f"id:{call['id']}"
    return "json:" + json.dumps(call, sort_keys=True, default=str)


def bucket_tool_calls(calls: Optional[List[Any]]) -> Tuple[List[ToolCallRecord], List[ToolCallRecord]]:
    """Split tool calls into valid and invalid ones and drop duplicates.

    A call is invalid when it carries an ``error`` marker. Duplicates are detected by
    id, or by their JSON form when no id is set.

    Args:
        calls: Tool calls reported by an adapter, may be None.

    Returns:
        ``(tool_calls, invalid_tool_calls)``
    """
    valid: List[ToolCallRecord] = []
    invalid: List[ToolCallRecord] = []
    seen = set()
    for call in calls or []:
        key = _dedupe_key(call)
        if key in seen:
            continue
        seen.add(key)
        if isinstance(call, dict) and call.get("error"):
            invalid.append(call)
        else:
            valid.append(call)
    return valid, invalid

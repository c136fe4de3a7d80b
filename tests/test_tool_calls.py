import pytest

from chat_stream_lib.core.exceptions import ChunkParseError
from chat_stream_lib.core.tools import ToolCallAccumulator, bucket_tool_calls, parse_tool_call
from chat_stream_lib.core.tools.tool_calls import decode_arguments


def test_accumulator_assembles_fragments_in_index_order():
    acc = ToolCallAccumulator()
    assert not acc

    acc.feed(1, call_id="call_b", name="search", arguments_delta='{"q": ')
    acc.feed(0, call_id="call_a", name="get_time", arguments_delta="{}")
    acc.feed(1, arguments_delta='"cats"}')

    calls = acc.finalize()

    assert acc
    assert calls == [
        {"id": "call_a", "name": "get_time", "args": {}, "type": "tool_call"},
        {"id": "call_b", "name": "search", "args": {"q": "cats"}, "type": "tool_call"},
    ]


def test_truncated_arguments_are_marked_invalid():
    call = parse_tool_call("call_1", "search", '{"q": "ca')

    assert call["args"] == '{"q": "ca'
    assert "Invalid JSON arguments" in call["error"]


def test_parse_accepts_decoded_and_empty_arguments():
    assert parse_tool_call("c", "n", {"a": 1})["args"] == {"a": 1}
    assert parse_tool_call("c", "n", "")["args"] == {}


def test_decode_arguments_requires_an_object():
    with pytest.raises(ChunkParseError, match="JSON object"):
        decode_arguments("[1, 2]")


def test_bucket_splits_and_dedupes():
    good = {"id": "call_1", "name": "a", "args": {}, "type": "tool_call"}
    bad = {"id": "call_2", "name": "b", "args": "{", "type": "tool_call", "error": "Invalid JSON arguments"}
    anonymous = {"name": "c", "args": {"x": 1}}

    valid, invalid = bucket_tool_calls([good, bad, dict(good), anonymous, {"args": {"x": 1}, "name": "c"}])

    assert valid == [good, anonymous]
    assert invalid == [bad]


def test_bucket_handles_none():
    assert bucket_tool_calls(None) == ([], [])

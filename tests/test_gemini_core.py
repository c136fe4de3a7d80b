from typing import Any, Dict, List
from unittest.mock import AsyncMock, MagicMock

import pytest
from google.genai import errors, types

from chat_stream_lib.backends.gemini import GeminiAdapter
from chat_stream_lib.core.base import BackendConfig
from chat_stream_lib.core.exceptions import AdapterNotInitializedError, InvalidCredentialsError
from chat_stream_lib.core.messages import AssistantMessage, SystemMessage, UserMessage
from chat_stream_lib.core.normalizer import fold_chunks


@pytest.fixture
def mock_aclient() -> Any:
    aclient = MagicMock()
    aclient.models = MagicMock()
    aclient.models.generate_content = AsyncMock()
    aclient.models.generate_content_stream = AsyncMock()
    return aclient


def make_response(parts: List[Dict[str, Any]], usage: Dict[str, int] = None) -> types.GenerateContentResponse:
    data: Dict[str, Any] = {"candidates": [{"content": {"role": "model", "parts": parts}}]}
    if usage is not None:
        data["usage_metadata"] = usage
    return types.GenerateContentResponse.model_validate(data)


def stream_of(responses: List[types.GenerateContentResponse]):
    async def generator():
        for response in responses:
            yield response

    return generator()


def make_adapter(aclient: Any, **config: Any) -> GeminiAdapter:
    adapter = GeminiAdapter(aclient=aclient, max_retries=0)
    adapter.initialize(BackendConfig(vendor="gemini", model_name="gemini-2.5-flash", **config))
    return adapter


def test_missing_api_key(monkeypatch):
    monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)

    with pytest.raises(InvalidCredentialsError):
        GeminiAdapter().initialize(BackendConfig(vendor="gemini", model_name="gemini-2.5-flash"))


@pytest.mark.asyncio
async def test_missing_client_is_reported(mock_aclient):
    adapter = make_adapter(mock_aclient)
    adapter.client = None

    with pytest.raises(AdapterNotInitializedError):
        await adapter.chat([UserMessage(content="Hello")])

@pytest.mark.asyncio
async def test_chat_returns_text_and_thoughts(mock_aclient):
    mock_aclient.models.generate_content.return_value = make_response(
        [{"text": "Counting.", "thought": True}, {"text": "Three."}]
    )
    adapter = make_adapter(mock_aclient, system_prompt="Be brief.", temperature=0.1)

    text = await adapter.chat([UserMessage(content="How many?")])

    assert text == "<think>Counting.</think>Three."
    kwargs = mock_aclient.models.generate_content.call_args.kwargs
    assert kwargs["model"] == "gemini-2.5-flash"
    assert kwargs["config"].system_instruction == "Be brief."
    assert kwargs["config"].temperature == 0.1
    assert kwargs["contents"][0].role == "user"


@pytest.mark.asyncio
async def test_stream_yields_content_thinking_and_usage(mock_aclient):
    mock_aclient.models.generate_content_stream.return_value = stream_of(
        [
            make_response([{"text": "Hmm", "thought": True}]),
            make_response([{"text": "Hello"}]),
            make_response(
                [{"text": " there"}],
                usage={"prompt_token_count": 3, "candidates_token_count": 4, "total_token_count": 7},
            ),
        ]
    )
    adapter = make_adapter(mock_aclient)

    chunks = [chunk async for chunk in adapter.stream([UserMessage(content="Hi")])]

    assert chunks[0] == {"content": "", "thinking": "Hmm"}
    assert chunks[1] == {"content": "Hello"}
    assert chunks[2]["usage_metadata"]["total_token_count"] == 7

    folded = fold_chunks(chunks)
    assert folded.content == "Hello there"
    assert folded.thinking_content == "Hmm"
    assert folded.token_usage.total_tokens == 7
    assert folded.token_usage.completion_tokens == 4


@pytest.mark.asyncio
async def test_function_calls_are_recorded(mock_aclient):
    mock_aclient.models.generate_content_stream.return_value = stream_of(
        [make_response([{"function_call": {"id": "fc_1", "name": "weather", "args": {"city": "Berlin"}}}])]
    )
    adapter = make_adapter(mock_aclient, tools=[{"name": "weather", "description": "Get the weather."}])

    async for _ in adapter.stream([UserMessage(content="Weather?")]):
        pass

    assert adapter.supports_tool_calling()
    assert adapter.last_tool_calls == [{"id": "fc_1", "name": "weather", "args": {"city": "Berlin"}, "type": "tool_call"}]
    config = mock_aclient.models.generate_content_stream.call_args.kwargs["config"]
    assert config.tools[0].function_declarations[0].name == "weather"


@pytest.mark.asyncio
async def test_rejected_key_is_translated(mock_aclient):
    mock_aclient.models.generate_content.side_effect = errors.ClientError(
        400, {"error": {"code": 400, "message": "API key not valid. Please pass a valid API key.", "status": "INVALID_ARGUMENT"}}
    )
    adapter = make_adapter(mock_aclient)

    with pytest.raises(InvalidCredentialsError):
        await adapter.chat([UserMessage(content="Hello")])


@pytest.mark.asyncio
async def test_other_client_errors_pass_through(mock_aclient):
    mock_aclient.models.generate_content.side_effect = errors.ClientError(
        429, {"error": {"code": 429, "message": "Resource exhausted.", "status": "RESOURCE_EXHAUSTED"}}
    )
    adapter = make_adapter(mock_aclient)

    with pytest.raises(errors.ClientError):
        await adapter.chat([UserMessage(content="Hello")])


def test_convert_history():
    history = [
        SystemMessage(content="First."),
        UserMessage(content="Hi"),
        AssistantMessage(content="Hello"),
        SystemMessage(content="Second."),
    ]

    system_instruction, contents = GeminiAdapter._convert_history(history)

    assert system_instruction == "First.\n\nSecond."
    assert [c.role for c in contents] == ["user", "model"]
    assert contents[1].parts[0].text == "Hello"

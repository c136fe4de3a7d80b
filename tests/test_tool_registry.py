from typing import Annotated, Optional

import pytest
from google.genai import types
from pydantic import Field

from chat_stream_lib.backends.gemini import GeminiToolRegistry
from chat_stream_lib.backends.openai_api import OpenAIToolRegistry
from chat_stream_lib.core.exceptions import ToolNotFoundError, ToolRegistrationError, ToolValidationError
from chat_stream_lib.core.tools import ToolDefinition


def get_weather(
    city: Annotated[str, Field(description="Name of the city")],
    unit: Annotated[Optional[str], Field(description="celsius or fahrenheit")] = None,
) -> str:
    """Look up the current weather for a city."""
    return f"Sunny in {city}"


class TestToolRegistration:
    """Tests for declaring tools on a backend registry."""

    def test_register_callable_derives_schema(self):
        registry = OpenAIToolRegistry()
        registry.register(get_weather)

        tool = registry.tools["get_weather"]
        assert tool.description == "Look up the current weather for a city."
        assert tool.parameters["type"] == "object"
        assert tool.parameters["required"] == ["city"]
        assert tool.parameters["properties"]["city"]["description"] == "Name of the city"
        assert tool.parameters["properties"]["unit"]["type"] == "string"
        assert tool.parameters["additionalProperties"] is False

    def test_register_with_explicit_schema(self):
        registry = OpenAIToolRegistry()
        registry.register(
            "search",
            description="Search the web.",
            parameters={"title": "S", "type": "object", "properties": {"q": {"type": "string"}}},
        )

        tool = registry.tools["search"]
        assert tool.func is None
        assert "title" not in tool.parameters
        assert tool.parameters["properties"]["q"] == {"type": "string"}

    def test_register_name_and_func(self):
        registry = OpenAIToolRegistry()
        registry.register("weather", func=get_weather)

        assert registry.tools["weather"].func is get_weather

    def test_register_definition_and_decorator(self):
        registry = OpenAIToolRegistry()
        registry.register(ToolDefinition(name="ping", description="Ping the server."))

        @registry.tool
        def echo(text: Annotated[str, Field(description="Text to echo")]) -> str:
            """Echo the text back."""
            return text

        assert set(registry.tools) == {"ping", "echo"}
        assert echo("x") == "x"

    def test_duplicate_registration_fails(self):
        registry = OpenAIToolRegistry()
        registry.register(get_weather)

        with pytest.raises(ToolRegistrationError, match="already registered"):
            registry.register(get_weather)

    def test_missing_description_fails(self):
        registry = OpenAIToolRegistry()
        with pytest.raises(ToolRegistrationError):
            registry.register("nameless", parameters={"type": "object"})

    def test_missing_docstring_fails(self):
        def undocumented(x: Annotated[int, Field(description="x")]) -> int:
            return x

        with pytest.raises(ToolValidationError, match="missing docstring"):
            OpenAIToolRegistry().register(undocumented)

    def test_missing_parameter_description_fails(self):
        def bare(x: int) -> int:
            """Does things."""
            return x

        with pytest.raises(ToolValidationError, match="missing a description"):
            OpenAIToolRegistry().register(bare)

    def test_annotation_without_description_fails(self):
        def vague(x: Annotated[int, Field(ge=0)]) -> int:
            """Does things."""
            return x

        with pytest.raises(ToolValidationError, match="Parameter 'x' of tool 'vague'"):
            OpenAIToolRegistry().register(vague)

    def test_register_all_accepts_mappings(self):
        registry = OpenAIToolRegistry()
        registry.register_all(
            [
                {"type": "function", "function": {"name": "a", "description": "Tool A", "parameters": {"type": "object"}}},
                {"name": "b", "description": "Tool B"},
                get_weather,
            ]
        )

        assert set(registry.tools) == {"a", "b", "get_weather"}

    def test_register_all_rejects_nameless_spec(self):
        with pytest.raises(ToolRegistrationError, match="without a name"):
            OpenAIToolRegistry().register_all([{"description": "no name"}])

    def test_unregister_and_clear(self):
        registry = OpenAIToolRegistry()
        registry.register(get_weather)
        registry.unregister("get_weather")

        with pytest.raises(ToolNotFoundError):
            registry.unregister("get_weather")

        registry.register(get_weather)
        registry.clear()
        assert registry.tools == {}


class TestToolObjects:
    def test_openai_tool_object(self):
        registry = OpenAIToolRegistry()
        assert registry.tool_object is None

        registry.register(get_weather)
        registry.register(ToolDefinition(name="ping", description="Ping the server."))
        tools = registry.tool_object

        assert tools[0]["type"] == "function"
        assert tools[0]["function"]["name"] == "get_weather"
        assert tools[1]["function"]["parameters"] == {"type": "object", "properties": {}}

    def test_gemini_tool_object(self):
        registry = GeminiToolRegistry()
        assert registry.tool_object is None

        registry.register(ToolDefinition(name="ping", description="Ping the server."))
        tool = registry.tool_object

        assert isinstance(tool, types.Tool)
        assert [d.name for d in tool.function_declarations] == ["ping"]

    def test_gemini_strips_additional_properties(self):
        registry = GeminiToolRegistry()
        stripped = registry._strip_additional_properties(
            {"type": "object", "additionalProperties": False, "properties": {"a": {"additionalProperties": False}}}
        )

        assert stripped == {"type": "object", "properties": {"a": {}}}

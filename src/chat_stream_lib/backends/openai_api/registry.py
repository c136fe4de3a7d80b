"""Adapt generic tool definitions into OpenAI function tool declarations."""

from typing import Any, Dict, List

from chat_stream_lib.core.tools import ToolRegistry


class OpenAIToolRegistry(ToolRegistry):
    """
    A specialized ToolRegistry for OpenAI and OpenAI compatible backends.

    Produces the ``tools`` argument of the chat completions API.
    """

    @property
    def tool_object(self) -> List[Dict[str, Any]] | None:
        """
        Generates a list of tool definitions suitable for the OpenAI API
        based on the registered tools.

        Returns:
            A list of tool dictionaries, or None if no tools are registered.
        """
        if not self.tools:
            return None

        tools_list = []
        for tool in self.tools.values():
            function_def: Dict[str, Any] = {
                "name": tool.name,
                "description": tool.description,
                # OpenAI expects a parameters schema even for tools without arguments
                "parameters": tool.parameters or {"type": "object", "properties": {}},
            }
            tools_list.append({"type": "function", "function": function_def})
        return tools_list

"""Adapt generic tool definitions into Gemini-compatible function declaration structures."""

from typing import Any

from google.genai import types

from chat_stream_lib.core.tools import ToolRegistry


class GeminiToolRegistry(ToolRegistry):
    """
    A specialized ToolRegistry for Google Gemini models.

    Builds the ``types.Tool`` object that is passed in the generation config.
    """

    @property
    def tool_object(self) -> types.Tool | None:
        """
        Generates a `types.Tool` object suitable for the Gemini API
        based on the registered tools.

        Returns:
            A `types.Tool` object containing all registered function declarations,
            or None if no tools are registered.
        """
        if not self.tools:
            return None

        declarations = []
        for tool in self.tools.values():
            if tool.parameters:
                # Gemini does not support 'additionalProperties' in the schema
                clean_params = self._strip_additional_properties(tool.parameters)
                declarations.append(
                    types.FunctionDeclaration(name=tool.name, description=tool.description, parameters=clean_params)
                )
            else:
                declarations.append(types.FunctionDeclaration(name=tool.name, description=tool.description))

        return types.Tool(function_declarations=declarations)

    def _strip_additional_properties(self, schema: Any) -> Any:
        """Recursively removes 'additionalProperties' from the schema."""
        if isinstance(schema, list):
            return [self._strip_additional_properties(item) for item in schema]
        if not isinstance(schema, dict):
            return schema
        return {
            key: self._strip_additional_properties(value)
            for key, value in schema.items()
            if key != "additionalProperties"
        }

"""Tool definition model shared by all backend tool registries."""

from typing import Optional, Any, Callable, Type

from pydantic import BaseModel


class ToolDefinition(BaseModel):
    """
    Represents the definition of a tool that can be bound to a model backend.

    Attributes:
        name: The unique name of the tool.
        description: A brief description of what the tool does.
        func: The callable Python function that implements the tool's logic.
        parameters: A JSON schema defining the input parameters of the tool.
        args_model: Optional Pydantic model used for validating and coercing arguments.
    """

    name: str
    description: str
    func: Optional[Callable] = None
    parameters: Optional[Any] = None
    args_model: Optional[Type[BaseModel]] = None

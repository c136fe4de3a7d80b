"""Tool registry abstraction shared by backend specific registries."""

import inspect
from abc import abstractmethod, ABC
from typing import Annotated, Callable, Dict, Any, Iterable, Mapping, Union, Optional, cast, get_args, get_origin

import jsonref  # type: ignore
from pydantic import Field, create_model
from pydantic.fields import FieldInfo

from .models import ToolDefinition
from .schema_validator import SchemaValidator
from ..exceptions import ToolNotFoundError, ToolRegistrationError, ToolValidationError
from ..logger import get_logger

logger = get_logger(__name__)

ToolSpec = Union[ToolDefinition, Callable, Mapping[str, Any]]


class ToolRegistry(ABC):
    """
    Holds the tool declarations that an adapter binds to its backend.

    Tools are only declared to the backend. Calls requested by the model are
    recorded on the assistant message, they are not executed here.
    """

    def __init__(self) -> None:
        """Initialize the ToolRegistry."""
        self.tools: Dict[str, ToolDefinition] = {}

    def register(
        self,
        name_or_tool: Union[str, ToolDefinition, Callable],
        description: Optional[str] = None,
        func: Optional[Callable] = None,
        parameters: Optional[Any] = None,
    ) -> None:
        """
        Register a new tool.

        A tool can be given as a `ToolDefinition`, as a callable whose signature and
        docstring describe it, or as a name together with a description and either a
        JSON schema or a function to derive one from.

        Args:
            name_or_tool: Either a `ToolDefinition` object, the name of the tool (str), or a Callable.
            description: A brief description of what the tool does.
            func: The callable implementing the tool, used to derive the schema when no parameters are given.
            parameters: A JSON schema defining the tool's input parameters.

        Raises:
            ToolRegistrationError: If required arguments are missing or the tool already exists.
        """
        if isinstance(name_or_tool, ToolDefinition):
            tool = name_or_tool
        elif callable(name_or_tool):
            tool = self._generate_tool_definition(name_or_tool, description=description)
        elif parameters is not None or func is None:
            if description is None:
                raise ToolRegistrationError(f"Tool '{name_or_tool}' needs a description.")
            tool = ToolDefinition(
                name=name_or_tool,
                description=description,
                func=func,
                parameters=SchemaValidator.sanitize_schema(parameters) if parameters is not None else None,
            )
        else:
            tool = self._generate_tool_definition(func, name=name_or_tool, description=description)

        if tool.name in self.tools:
            msg = f"Tool '{tool.name}' is already registered."
            logger.error(msg)
            raise ToolRegistrationError(msg)

        self.tools[tool.name] = tool
        logger.info(f"Successfully registered tool: '{tool.name}'")

    def register_all(self, specs: Iterable[ToolSpec]) -> None:
        """Register several tools at once.

        Mappings are read as ``{"name", "description", "parameters"}``; OpenAI style
        ``{"type": "function", "function": {...}}`` entries are unwrapped first.

        Args:
            specs: Tool definitions, callables or mappings.

        Raises:
            ToolRegistrationError: If a spec cannot be registered.
        """
        for spec in specs:
            if isinstance(spec, Mapping):
                body = spec.get("function", spec)
                name = body.get("name")
                if not isinstance(name, str) or not name:
                    raise ToolRegistrationError(f"Tool spec without a name: {dict(spec)}")
                self.register(name, description=body.get("description") or name, parameters=body.get("parameters"))
            else:
                self.register(spec)

    def unregister(self, tool_name: str) -> None:
        """Unregister a tool from the registry.

        Args:
            tool_name: The name of the tool to remove.

        Raises:
            ToolNotFoundError: If the tool does not exist in the registry.
        """
        if tool_name in self.tools:
            del self.tools[tool_name]
            logger.info(f"Successfully unregistered tool: '{tool_name}'")
        else:
            raise ToolNotFoundError(f"Tool '{tool_name}' not found in the registry.")

    def clear(self) -> None:
        self.tools.clear()

    def tool(self, func: Callable) -> Callable:
        """A decorator to turn a function into a tool.

        Args:
            func: The function to decorate.

        Returns:
            The original function, after registering it as a tool.
        """
        self.register(func)
        return func

    @property
    @abstractmethod
    def tool_object(self) -> Any:
        """Constructs the tool declaration specific to the backend.

        Returns:
            The backend specific tool representation, or None without tools.
        """
        pass

    def _generate_tool_definition(
        self, func: Callable, name: Optional[str] = None, description: Optional[str] = None
    ) -> ToolDefinition:
        """Generate a ToolDefinition from a callable function.

        Args:
            func: The function to generate a definition for.
            name: Optional name override for the tool.
            description: Optional description override for the tool.

        Returns:
            A ToolDefinition object containing the tool's metadata and schema.

        Raises:
            ToolValidationError: If the function is missing a docstring or parameter descriptions.
        """
        tool_name = name or func.__name__
        if description is None:
            description = self._get_docstring_from_func(func, tool_name)

        signature = inspect.signature(func)
        fields = self._build_fields(signature, tool_name)

        # create_model expects **field_definitions: Any
        dynamic_params_model = create_model(f"{tool_name}Params", **cast(Dict[str, Any], fields))
        raw_schema = dynamic_params_model.model_json_schema()
        SchemaValidator.assert_no_recursive_refs(raw_schema)

        # proxies=False returns plain dicts instead of JsonRef objects
        parameters_schema = jsonref.replace_refs(raw_schema, proxies=False)
        parameters_schema = SchemaValidator.sanitize_schema(parameters_schema)

        return ToolDefinition(
            name=tool_name,
            description=description,
            func=func,
            parameters=parameters_schema,
            args_model=dynamic_params_model,
        )

    @staticmethod
    def _get_docstring_from_func(func: Callable, tool_name: str) -> str:
        doc = inspect.getdoc(func)
        if not doc:
            msg = f"Tool '{tool_name}' missing docstring. Models need a description of what the tool does."
            logger.error(msg)
            raise ToolValidationError(msg)
        return doc

    @staticmethod
    def _build_fields(signature: inspect.Signature, tool_name: str) -> Dict[str, Any]:
        """Turn the parameters of a tool function into ``create_model`` field definitions.

        Every parameter must be annotated as ``Annotated[<type>, Field(description=...)]``.

        Raises:
            ToolValidationError: If a parameter has no description.
        """
        fields: Dict[str, Any] = {}
        for param_name, param in signature.parameters.items():
            if param_name == "self":
                continue
            description = _parameter_description(param.annotation)
            if description is None:
                msg = (
                    f"Parameter '{param_name}' of tool '{tool_name}' is missing a description. "
                    f"Declare it as {param_name}: Annotated[Type, Field(description='...')]."
                )
                logger.error(msg)
                raise ToolValidationError(msg)
            default = ... if param.default is inspect.Parameter.empty else param.default
            fields[param_name] = (param.annotation, Field(default=default, description=description))
        return fields


def _parameter_description(annotation: Any) -> Optional[str]:
    if get_origin(annotation) is not Annotated:
        return None
    for extra in get_args(annotation)[1:]:
        if isinstance(extra, FieldInfo) and extra.description:
            return extra.description
    return None

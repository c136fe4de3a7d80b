from .models import ToolDefinition
from .registry import ToolRegistry, ToolSpec
from .schema_validator import SchemaValidator
from .tool_calls import ToolCallAccumulator, ToolCallRecord, parse_tool_call, bucket_tool_calls

__all__ = [
    "ToolDefinition",
    "ToolRegistry",
    "ToolSpec",
    "SchemaValidator",
    "ToolCallAccumulator",
    "ToolCallRecord",
    "parse_tool_call",
    "bucket_tool_calls",
]

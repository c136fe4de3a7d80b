"""Validation and cleanup of tool parameter schemas."""

from typing import Any, Dict, Set

from ..exceptions import ToolValidationError
from ..logger import get_logger

logger = get_logger(__name__)


class SchemaValidator:
    """
    Helper class for validating and sanitizing JSON schemas for model tools.
    """

    @staticmethod
    def assert_no_recursive_refs(schema: Dict[str, Any]) -> None:
        """
        Walks the schema and its local definitions looking for reference cycles.

        Args:
            schema: The JSON schema to check.

        Raises:
            ToolValidationError: If a recursive reference is found.
        """
        defs = schema.get("$defs", {}) or schema.get("definitions", {})

        def check(node: Any, path: Set[str]) -> None:
            if isinstance(node, dict):
                ref = node.get("$ref")
                if isinstance(ref, str):
                    if ref in path:
                        msg = f"Recursive structure detected: {ref}. Recursive structures are not allowed in tool inputs."
                        logger.error(msg)
                        raise ToolValidationError(msg)
                    def_name = ref.rsplit("/", 1)[-1]
                    if ref.startswith("#") and def_name in defs:
                        check(defs[def_name], path | {ref})
                    return
                for value in node.values():
                    check(value, path)
            elif isinstance(node, list):
                for item in node:
                    check(item, path)

        check(schema, set())

    @staticmethod
    def sanitize_schema(schema: Any) -> Any:
        """
        Cleans up the schema for the backends.

        Metadata keys are dropped, ``Optional`` unions collapse to their single
        non-null member and objects default to ``additionalProperties: false``.

        Args:
            schema: The JSON schema to sanitize.

        Returns:
            The sanitized schema.
        """
        if not isinstance(schema, dict):
            return schema

        cleaned = {k: v for k, v in schema.items() if k not in ("$defs", "$schema", "$id", "title", "definitions")}

        any_of = cleaned.get("anyOf")
        if isinstance(any_of, list):
            non_null = [x for x in any_of if not (isinstance(x, dict) and x.get("type") == "null")]
            if len(non_null) == 1 and isinstance(non_null[0], dict):
                merged = dict(non_null[0])
                for key in ("description", "default"):
                    if key in cleaned:
                        merged[key] = cleaned[key]
                return SchemaValidator.sanitize_schema(merged)

        if cleaned.get("type") == "object":
            cleaned.setdefault("additionalProperties", False)

        for key, value in cleaned.items():
            if isinstance(value, dict):
                cleaned[key] = SchemaValidator.sanitize_schema(value)
            elif isinstance(value, list):
                cleaned[key] = [SchemaValidator.sanitize_schema(item) for item in value]
        return cleaned

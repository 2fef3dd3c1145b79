"""
Tool capability interface and JSON-schema parameter validation.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

_TYPE_CHECKS = {
    "string": lambda v: isinstance(v, str),
    "integer": lambda v: isinstance(v, int) and not isinstance(v, bool),
    "number": lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
    "boolean": lambda v: isinstance(v, bool),
    "array": lambda v: isinstance(v, list),
    "object": lambda v: isinstance(v, dict),
}


@dataclass(frozen=True)
class ToolContext:
    """Routing for the turn being processed: where replies should go."""

    channel: str
    chat_id: str


class Tool(ABC):
    """
    A capability the model can call.

    Subclasses provide name, description, a JSON schema for parameters and
    an async execute(). Execution returns text; raising is allowed and is
    reported back to the model by the registry.
    """

    # Tools that need the current channel/chat_id set this to True; the
    # registry then passes the turn's ToolContext as the `context` keyword.
    context_aware = False

    @property
    @abstractmethod
    def name(self) -> str: ...

    @property
    @abstractmethod
    def description(self) -> str: ...

    @property
    @abstractmethod
    def parameters(self) -> dict[str, Any]: ...

    @abstractmethod
    async def execute(self, **kwargs: Any) -> str: ...

    def validate_params(self, params: dict[str, Any]) -> list[str]:
        """Check params against the schema. Returns a list of error messages."""
        schema = self.parameters or {}
        if schema.get("type", "object") != "object":
            return [f"schema for {self.name} must be object type"]
        return validate_value(params, schema, "")

    def to_schema(self) -> dict[str, Any]:
        """OpenAI function-calling definition."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


def validate_value(value: Any, schema: dict[str, Any], path: str) -> list[str]:
    """
    Recursively validate value against a (subset of) JSON schema.

    Supports type, minLength/maxLength, minimum/maximum, enum, required,
    properties and items. Keys not described by the schema are ignored.
    """
    label = path or "parameter"
    schema_type = schema.get("type", "object")
    check = _TYPE_CHECKS.get(schema_type)
    if check is not None and not check(value):
        return [f"{label} should be {schema_type}"]

    errors: list[str] = []
    if schema_type == "string":
        if "minLength" in schema and len(value) < schema["minLength"]:
            errors.append(f"{label} must be at least {schema['minLength']} chars")
        if "maxLength" in schema and len(value) > schema["maxLength"]:
            errors.append(f"{label} must be at most {schema['maxLength']} chars")
    elif schema_type in ("integer", "number"):
        if "minimum" in schema and value < schema["minimum"]:
            errors.append(f"{label} must be >= {schema['minimum']}")
        if "maximum" in schema and value > schema["maximum"]:
            errors.append(f"{label} must be <= {schema['maximum']}")
    elif schema_type == "array":
        item_schema = schema.get("items")
        if item_schema:
            for idx, item in enumerate(value):
                errors.extend(validate_value(item, item_schema, f"{path}[{idx}]"))
    elif schema_type == "object":
        properties = schema.get("properties") or {}
        for key in schema.get("required") or []:
            if key not in value:
                errors.append(f"missing required {f'{path}.{key}' if path else key}")
        for key, item in value.items():
            if key in properties:
                child = f"{path}.{key}" if path else key
                errors.extend(validate_value(item, properties[key], child))

    if "enum" in schema and value not in schema["enum"]:
        errors.append(f"{label} must be one of {schema['enum']}")

    return errors

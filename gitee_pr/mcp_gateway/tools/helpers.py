"""Helper functions for Gitee PR gateway tools."""

import json
from typing import Any

from mcp.types import CallToolResult, TextContent, Tool

from gitee_pr.core.errors import ValidationError
from gitee_pr.mcp_gateway.instances import InstanceRegistry


def tool_descriptor(
    name: str,
    description: str,
    properties: dict[str, Any],
    required: list[str] | None = None,
) -> dict[str, Any]:
    """Wire form of one ``tools/list`` entry."""
    input_schema: dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        input_schema["required"] = required
    tool = Tool(name=name, description=description, inputSchema=input_schema)
    return tool.model_dump(by_alias=True, exclude_none=True)


def tool_result(
    payload: dict[str, Any],
    text: str | None = None,
    is_error: bool = False,
) -> dict[str, Any]:
    """Wrap a tool payload as ``{content: [text], structuredContent, isError}``."""
    if text is None:
        text = json.dumps(payload, ensure_ascii=False, indent=2)
    result = CallToolResult(content=[TextContent(type="text", text=text)], isError=is_error)
    wire = result.model_dump(by_alias=True, exclude_none=True)
    # Attached after dumping so null fields inside the payload survive.
    wire["structuredContent"] = payload
    return wire


def with_project(description: str, project_name: str | None) -> str:
    if project_name:
        return f"[{project_name}] {description}"
    return description


def repo_property(registry: InstanceRegistry) -> tuple[dict[str, Any], list[str]]:
    """Schema for the ``repo`` argument and the names it makes required.

    The argument is only required when more than one repository is configured.
    """
    keys = registry.keys()
    if registry.is_multi_instance:
        description = f"Repository name, required. Available values: {', '.join(keys)}"
        required = ["repo"]
    else:
        description = "Repository name (optional, only one repository is configured)"
        required = []
    schema: dict[str, Any] = {"type": "string", "description": description}
    if keys:
        schema["enum"] = keys
    return {"repo": schema}, required


def int_argument(
    arguments: dict[str, Any],
    name: str,
    default: int,
    minimum: int,
    maximum: int | None = None,
) -> int:
    """Read an integer argument, rejecting bools, fractions and out-of-range values."""
    value = arguments.get(name)
    if value is None:
        return default
    if isinstance(value, bool):
        raise ValidationError(f"Invalid {name} parameter. Must be an integer")
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if not isinstance(value, int):
        raise ValidationError(f"Invalid {name} parameter. Must be an integer")
    if value < minimum or (maximum is not None and value > maximum):
        bounds = f">= {minimum}" if maximum is None else f"between {minimum} and {maximum}"
        raise ValidationError(f"Invalid {name} parameter. Must be {bounds}")
    return value

"""
Tool Schema Normalization
Repairs tool input schemas that declare `properties` but omit `type`.

Some MCP servers publish tools like:

    {"name": "create_checkout",
     "inputSchema": {"properties": {"product_id": {"type": "string"}}}}

Strict clients reject these because an object schema must say so. The
functions here insert `"type": "object"` in front of such schemas and leave
everything else exactly as the server sent it.
"""

from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from .errors import MalformedToolError


def default_input_schema() -> Dict[str, Any]:
    return {"type": "object", "properties": {}}


class ToolDescriptor(BaseModel):
    """
    MCP tool with an open set of passthrough fields.

    Unknown keys (annotations, outputSchema, vendor extensions) are kept as
    pydantic extras so they survive the round trip in their original order.
    """

    model_config = ConfigDict(extra="allow")

    name: str
    description: Optional[str] = None
    input_schema: Dict[str, Any] = Field(alias="inputSchema", default_factory=default_input_schema)

    def to_wire(self) -> Dict[str, Any]:
        """Dump using MCP field names; an absent description stays absent."""
        return self.model_dump(by_alias=True, exclude_unset=True)


def schema_needs_normalization(schema: Any) -> bool:
    """True when `schema` has properties but no type."""
    if not isinstance(schema, Mapping):
        return False
    return schema.get("type") is None and "properties" in schema


def normalize_input_schema(schema: Dict[str, Any]) -> Dict[str, Any]:
    """
    Add `type: "object"` to an incomplete schema.

    Schemas that already have a type, and schemas without properties, are
    returned as-is. Otherwise a new dict is built with `type` as the first
    key followed by the original keys in their original order.
    """
    if not schema_needs_normalization(schema):
        return schema

    normalized: Dict[str, Any] = {"type": "object"}
    normalized.update((k, v) for k, v in schema.items() if k != "type")
    return normalized


def normalize_tool(tool: Any) -> ToolDescriptor:
    if not isinstance(tool, Mapping):
        raise MalformedToolError(f"Invalid tool: expected object, got {type(tool).__name__}")

    name = tool.get("name")
    if not isinstance(name, str):
        raise MalformedToolError("Invalid tool: missing or invalid 'name' field")

    if "inputSchema" in tool:
        schema = tool["inputSchema"]
        if not isinstance(schema, Mapping):
            raise MalformedToolError(f"Invalid tool '{name}': inputSchema must be an object")
        input_schema = normalize_input_schema(dict(schema))
    else:
        input_schema = default_input_schema()

    fields: Dict[str, Any] = {"name": name}
    description = tool.get("description")
    if isinstance(description, str):
        fields["description"] = description
    fields["inputSchema"] = input_schema

    extras = {k: v for k, v in tool.items() if k not in ("name", "description", "inputSchema")}
    return ToolDescriptor(**fields, **extras)


def normalize_tools(tools: Any) -> List[ToolDescriptor]:
    """Normalize every tool in order; anything but a list yields []."""
    if not isinstance(tools, list):
        return []
    return [normalize_tool(tool) for tool in tools]


def normalize_tools_list_response(response: Any) -> Any:
    """
    Normalize the tools of a `tools/list` JSON-RPC response.

    Error responses and results without a `tools` list are returned
    unchanged. Otherwise the response and its result are shallow-copied and
    only `result.tools` is replaced.
    """
    if not isinstance(response, Mapping):
        return response

    if "error" in response:
        return response

    result = response.get("result")
    if not isinstance(result, Mapping):
        return response

    tools = result.get("tools")
    if not isinstance(tools, list):
        return response

    normalized = dict(response)
    normalized["result"] = {
        **result,
        "tools": [tool.to_wire() for tool in normalize_tools(tools)],
    }
    return normalized

"""Converters between MCP protocol types and mcpilot types."""

from typing import Any

from mcp import types

from ..llm.base import ToolDefinition

EMPTY_SCHEMA: dict[str, Any] = {"type": "object", "properties": {}}


def mcp_tool_to_definition(tool: types.Tool) -> ToolDefinition:
    """Convert a discovered MCP tool to a ToolDefinition.

    Args:
        tool: Tool as returned by ``list_tools``

    Returns:
        ToolDefinition advertised to the model
    """
    schema = dict(tool.inputSchema) if tool.inputSchema else dict(EMPTY_SCHEMA)
    schema.setdefault("type", "object")
    return ToolDefinition(
        name=tool.name,
        description=tool.description or "",
        parameters=schema,
    )


def flatten_content(blocks: list[Any]) -> str:
    """Flatten MCP content blocks to plain text.

    Text blocks are concatenated in order. Embedded text resources contribute
    their text; every other block becomes a short bracketed placeholder.
    """
    parts: list[str] = []
    for block in blocks:
        kind = getattr(block, "type", None)
        if kind == "text":
            parts.append(block.text)
        elif kind == "image":
            parts.append(f"[Image: {block.mimeType}]")
        elif kind == "audio":
            parts.append(f"[Audio: {block.mimeType}]")
        elif kind == "resource":
            resource = block.resource
            text = getattr(resource, "text", None)
            if text is not None:
                parts.append(text)
            else:
                parts.append(f"[Resource: {resource.uri}]")
        elif kind == "resource_link":
            parts.append(f"[Resource: {block.uri}]")
        else:
            parts.append(f"[{kind or 'unknown'} content]")
    return "".join(parts)

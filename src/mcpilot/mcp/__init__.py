"""MCP (Model Context Protocol) tool-execution transport."""

from mcpilot.mcp.client import MCPClient
from mcpilot.mcp.converters import flatten_content, mcp_tool_to_definition

__all__ = [
    "MCPClient",
    "flatten_content",
    "mcp_tool_to_definition",
]

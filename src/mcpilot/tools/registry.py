"""
Tool registry: resolves tool names to local handlers or remote MCP calls.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Union

import structlog

from ..llm.base import ToolDefinition
from ..mcp.converters import flatten_content
from .base import Tool, ToolResult

if TYPE_CHECKING:
    from ..mcp.client import MCPClient

logger = structlog.get_logger()


@dataclass
class LocalTool:
    """A tool implemented in-process."""

    tool: Tool

    @property
    def name(self) -> str:
        return self.tool.name

    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.tool.name,
            description=self.tool.description,
            parameters=self.tool.get_parameters_schema(),
        )


@dataclass
class RemoteTool:
    """A tool served by the MCP server."""

    spec: ToolDefinition

    @property
    def name(self) -> str:
        return self.spec.name

    def definition(self) -> ToolDefinition:
        return self.spec


ToolEntry = Union[LocalTool, RemoteTool]


class ToolRegistry:
    """Registry for local and remote tools.

    All tools live in one name-keyed mapping. Remote tools are added from
    discovery first; a local tool registered later under the same name
    replaces the remote entry.
    """

    def __init__(self, mcp_client: "MCPClient | None" = None):
        self.mcp_client = mcp_client
        self._tools: dict[str, ToolEntry] = {}

    def register_remote(self, definitions: list[ToolDefinition]) -> None:
        """Register tools discovered on the MCP server.

        Names already held by a local tool keep the local tool.
        """
        for definition in definitions:
            if isinstance(self._tools.get(definition.name), LocalTool):
                logger.debug("Local tool shadows remote tool", tool_name=definition.name)
                continue
            self._tools[definition.name] = RemoteTool(definition)
        logger.info("Remote tools registered", count=len(definitions))

    def register(self, tool: Tool) -> None:
        """Register a local tool."""
        existing = self._tools.get(tool.name)
        if isinstance(existing, RemoteTool):
            logger.debug("Local tool shadows remote tool", tool_name=tool.name)
        self._tools[tool.name] = LocalTool(tool)
        logger.info("Tool registered", tool_name=tool.name)

    def unregister(self, name: str) -> None:
        """Unregister a tool."""
        if name in self._tools:
            del self._tools[name]
            logger.info("Tool unregistered", tool_name=name)

    def resolve(self, name: str) -> ToolEntry | None:
        """Get the entry a tool name dispatches to."""
        return self._tools.get(name)

    def list_tools(self) -> list[str]:
        """List all registered tool names."""
        return list(self._tools.keys())

    def get_definitions(self) -> list[ToolDefinition]:
        """Tool definitions advertised to the model, in registration order."""
        return [entry.definition() for entry in self._tools.values()]

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    async def execute(self, name: str, arguments: dict[str, Any]) -> ToolResult:
        """Execute a tool by name.

        Tool failures come back as unsuccessful results. Transport failures
        from the MCP server (``ToolTransportError``) propagate.
        """
        entry = self.resolve(name)

        if isinstance(entry, LocalTool):
            try:
                logger.debug("Executing local tool", tool_name=name, arguments=arguments)
                result = await entry.tool.execute(**arguments)
            except Exception as e:
                logger.error("Tool execution error", tool_name=name, error=str(e))
                return ToolResult(success=False, error=str(e))
            logger.debug("Tool executed", tool_name=name, success=result.success)
            return result

        if entry is None and self.mcp_client is None:
            return ToolResult(success=False, error=f"Tool '{name}' not found")

        if self.mcp_client is None:
            return ToolResult(success=False, error=f"Tool '{name}' is not connected")

        # Unknown names still go to the server, which reports them as tool errors
        logger.debug("Calling remote tool", tool_name=name, arguments=arguments)
        result = await self.mcp_client.call_tool(name, arguments)
        output = flatten_content(result.content)
        if result.isError:
            return ToolResult(success=False, output=output, error=output)
        return ToolResult(success=True, output=output)

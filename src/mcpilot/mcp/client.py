"""MCP client for the tool-execution server subprocess."""

import os
import sys
from contextlib import AsyncExitStack
from typing import Any

import anyio
import structlog
from mcp import ClientSession, StdioServerParameters, types
from mcp.client.stdio import stdio_client
from mcp.shared.exceptions import McpError

from .. import __version__
from ..config import MCPConfig
from ..errors import ToolTransportError
from ..llm.base import ToolDefinition
from .converters import mcp_tool_to_definition

logger = structlog.get_logger()

_CONNECTION_ERRORS = (anyio.ClosedResourceError, anyio.BrokenResourceError, OSError)


class MCPClient:
    """Connection to the tool server over stdio.

    The server runs as a subprocess; ``connect`` starts it and performs the
    MCP handshake, ``close`` tears both down.
    """

    def __init__(self, config: MCPConfig, show_server_log: bool = False):
        """Initialize connection config.

        Args:
            config: Server command, arguments and environment
            show_server_log: Pass the server's stderr through instead of discarding it
        """
        self.config = config
        self.show_server_log = show_server_log
        self.instructions = ""
        self.server_name = ""
        self._session: ClientSession | None = None
        self._stack: AsyncExitStack | None = None

    @property
    def connected(self) -> bool:
        return self._session is not None

    def server_parameters(self) -> StdioServerParameters:
        return StdioServerParameters(
            command=self.config.command,
            args=self.config.build_args(),
            env=self.config.env or None,
        )

    async def connect(self) -> str:
        """Start the server and initialize the session.

        Returns:
            The server's instructions text (may be empty)
        """
        if self._session is not None:
            return self.instructions

        params = self.server_parameters()
        logger.info("Starting MCP server", command=params.command, args=params.args)

        stack = AsyncExitStack()
        try:
            errlog = sys.stderr if self.show_server_log else stack.enter_context(open(os.devnull, "w"))
            read_stream, write_stream = await stack.enter_async_context(
                stdio_client(params, errlog=errlog)
            )
            session = await stack.enter_async_context(
                ClientSession(
                    read_stream,
                    write_stream,
                    client_info=types.Implementation(name="mcpilot", version=__version__),
                )
            )
            result = await session.initialize()
        except BaseException as e:
            await stack.aclose()
            if isinstance(e, (McpError, *_CONNECTION_ERRORS)):
                raise ToolTransportError(f"MCP initialization failed: {e}") from e
            raise

        self._stack = stack
        self._session = session
        self.instructions = result.instructions or ""
        self.server_name = result.serverInfo.name if result.serverInfo else ""

        logger.info("MCP session initialized", server=self.server_name)
        return self.instructions

    async def list_tools(self) -> list[ToolDefinition]:
        """List all tools the server offers."""
        session = self._require_session()
        try:
            response = await session.list_tools()
        except (McpError, *_CONNECTION_ERRORS) as e:
            raise ToolTransportError(f"failed to list tools: {e}") from e

        definitions = [mcp_tool_to_definition(tool) for tool in response.tools]
        logger.info("Discovered MCP tools", count=len(definitions))
        return definitions

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> types.CallToolResult:
        """Invoke a tool on the server.

        A tool that runs and fails comes back as a result with ``isError``
        set; only protocol or connection failures raise.
        """
        session = self._require_session()
        try:
            return await session.call_tool(name, arguments)
        except McpError as e:
            raise ToolTransportError(f"MCP tool call {name} failed: {e}", tool_name=name) from e
        except _CONNECTION_ERRORS as e:
            raise ToolTransportError(
                f"lost connection to MCP server while calling {name}: {e!r}", tool_name=name
            ) from e

    async def close(self) -> None:
        """Shut down the session and the server process."""
        stack, self._stack = self._stack, None
        self._session = None
        if stack is not None:
            await stack.aclose()
            logger.info("MCP server stopped")

    def _require_session(self) -> ClientSession:
        if self._session is None:
            raise ToolTransportError("Not connected to MCP server")
        return self._session

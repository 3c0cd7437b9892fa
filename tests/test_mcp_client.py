"""
Tests for the MCP client and content conversion.
"""

from unittest.mock import AsyncMock, MagicMock

import anyio
import pytest
from mcp import types
from mcp.shared.exceptions import McpError

from mcpilot.config import MCPConfig
from mcpilot.errors import ToolTransportError
from mcpilot.mcp.client import MCPClient
from mcpilot.mcp.converters import flatten_content, mcp_tool_to_definition


def connected_client(session: MagicMock) -> MCPClient:
    client = MCPClient(MCPConfig())
    client._session = session
    return client


def test_mcp_tool_to_definition():
    tool = types.Tool(
        name="find_symbol",
        description="Find a symbol",
        inputSchema={"type": "object", "properties": {"name": {"type": "string"}}},
    )

    definition = mcp_tool_to_definition(tool)

    assert definition.name == "find_symbol"
    assert definition.description == "Find a symbol"
    assert definition.parameters["properties"]["name"] == {"type": "string"}


def test_mcp_tool_to_definition_empty_schema():
    tool = types.Tool(name="ping", inputSchema={})

    definition = mcp_tool_to_definition(tool)

    assert definition.description == ""
    assert definition.parameters == {"type": "object", "properties": {}}


def test_flatten_content_text_blocks_concatenate():
    blocks = [
        types.TextContent(type="text", text="first "),
        types.TextContent(type="text", text="second"),
    ]

    assert flatten_content(blocks) == "first second"


def test_flatten_content_placeholders():
    blocks = [
        types.TextContent(type="text", text="see: "),
        types.ImageContent(type="image", data="aGVsbG8=", mimeType="image/png"),
        types.EmbeddedResource(
            type="resource",
            resource=types.TextResourceContents(uri="file:///a.txt", text="inline text"),
        ),
        types.EmbeddedResource(
            type="resource",
            resource=types.BlobResourceContents(uri="file:///b.bin", blob="AAAA"),
        ),
    ]

    assert flatten_content(blocks) == "see: [Image: image/png]inline text[Resource: file:///b.bin]"


def test_flatten_content_empty():
    assert flatten_content([]) == ""


def test_server_parameters_use_built_args():
    client = MCPClient(MCPConfig(command="serena", args=["start"], project_path="/p", env={"A": "1"}))

    params = client.server_parameters()

    assert params.command == "serena"
    assert params.args[0] == "start"
    assert params.args[-2:] == ["--project", "/p"]
    assert params.env == {"A": "1"}


@pytest.mark.asyncio
async def test_list_tools():
    session = MagicMock()
    session.list_tools = AsyncMock(return_value=types.ListToolsResult(tools=[
        types.Tool(name="a", description="A", inputSchema={"type": "object"}),
        types.Tool(name="b", description="B", inputSchema={"type": "object"}),
    ]))
    client = connected_client(session)

    definitions = await client.list_tools()

    assert [d.name for d in definitions] == ["a", "b"]


@pytest.mark.asyncio
async def test_call_tool_returns_error_results():
    result = types.CallToolResult(content=[types.TextContent(type="text", text="bad")], isError=True)
    session = MagicMock()
    session.call_tool = AsyncMock(return_value=result)
    client = connected_client(session)

    assert await client.call_tool("a", {"x": 1}) is result
    session.call_tool.assert_awaited_once_with("a", {"x": 1})


@pytest.mark.asyncio
async def test_call_tool_protocol_failure_raises_transport_error():
    session = MagicMock()
    session.call_tool = AsyncMock(
        side_effect=McpError(types.ErrorData(code=types.INTERNAL_ERROR, message="server crashed"))
    )
    client = connected_client(session)

    with pytest.raises(ToolTransportError) as exc_info:
        await client.call_tool("a", {})

    assert exc_info.value.tool_name == "a"


@pytest.mark.asyncio
async def test_call_tool_closed_stream_raises_transport_error():
    session = MagicMock()
    session.call_tool = AsyncMock(side_effect=anyio.ClosedResourceError())
    client = connected_client(session)

    with pytest.raises(ToolTransportError):
        await client.call_tool("a", {})


@pytest.mark.asyncio
async def test_requires_connection():
    client = MCPClient(MCPConfig())

    assert client.connected is False
    with pytest.raises(ToolTransportError):
        await client.list_tools()


@pytest.mark.asyncio
async def test_close_is_idempotent():
    client = MCPClient(MCPConfig())

    await client.close()
    await client.close()

    assert client.connected is False

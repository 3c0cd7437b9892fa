"""
Tests for tools module.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from mcp import types

from mcpilot.errors import ToolTransportError
from mcpilot.llm.base import ToolDefinition
from mcpilot.tools.base import Tool, ToolParameter, ToolResult
from mcpilot.tools.registry import LocalTool, RemoteTool, ToolRegistry


def make_tool(name: str = "echo", handler=None) -> Tool:
    async def echo(text: str = "", **_) -> ToolResult:
        return ToolResult(success=True, output=f"local:{text}")

    return Tool(
        name=name,
        description="Echo the input",
        parameters=[ToolParameter(name="text", param_type="string", description="Text to echo")],
        handler=handler or echo,
    )


def remote_definition(name: str) -> ToolDefinition:
    return ToolDefinition(name=name, description=f"remote {name}", parameters={"type": "object", "properties": {}})


def mcp_result(text: str, is_error: bool = False) -> types.CallToolResult:
    return types.CallToolResult(content=[types.TextContent(type="text", text=text)], isError=is_error)


def test_tool_result_success():
    """Test successful tool result."""
    result = ToolResult(success=True, output="Test output", data={"key": "value"})

    assert result.success is True
    assert result.to_content() == "Test output"
    assert result.error is None


def test_tool_result_failure():
    """Test failed tool result."""
    result = ToolResult(success=False, output="", error="Something went wrong")

    assert result.success is False
    assert result.to_content() == "Error: Something went wrong"


def test_tool_parameters_schema():
    tool = Tool(
        name="search",
        description="Search",
        parameters=[
            ToolParameter(name="query", param_type="string", description="Query"),
            ToolParameter(name="limit", param_type="integer", description="Limit", required=False, default=5),
        ],
        handler=AsyncMock(),
    )

    schema = tool.get_parameters_schema()

    assert schema["type"] == "object"
    assert schema["required"] == ["query"]
    assert schema["properties"]["limit"]["default"] == 5


def test_remote_tools_in_registration_order():
    registry = ToolRegistry()
    registry.register_remote([remote_definition("b"), remote_definition("a")])

    assert registry.list_tools() == ["b", "a"]
    assert isinstance(registry.resolve("a"), RemoteTool)
    assert len(registry) == 2


def test_local_tool_shadows_remote_registered_earlier():
    registry = ToolRegistry()
    registry.register_remote([remote_definition("echo")])
    registry.register(make_tool("echo"))

    assert isinstance(registry.resolve("echo"), LocalTool)
    assert [d.name for d in registry.get_definitions()] == ["echo"]
    assert registry.get_definitions()[0].description == "Echo the input"


def test_local_tool_shadows_remote_registered_later():
    registry = ToolRegistry()
    registry.register(make_tool("echo"))
    registry.register_remote([remote_definition("echo"), remote_definition("other")])

    assert isinstance(registry.resolve("echo"), LocalTool)
    assert isinstance(registry.resolve("other"), RemoteTool)


def test_unregister():
    registry = ToolRegistry()
    registry.register(make_tool("echo"))
    registry.unregister("echo")

    assert "echo" not in registry


@pytest.mark.asyncio
async def test_execute_local_tool_never_reaches_server():
    client = MagicMock()
    client.call_tool = AsyncMock()
    registry = ToolRegistry(client)
    registry.register_remote([remote_definition("echo")])
    registry.register(make_tool("echo"))

    result = await registry.execute("echo", {"text": "hi"})

    assert result.success is True
    assert result.output == "local:hi"
    client.call_tool.assert_not_called()


@pytest.mark.asyncio
async def test_execute_local_tool_exception_becomes_error_result():
    async def broken(**_):
        raise RuntimeError("disk on fire")

    registry = ToolRegistry()
    registry.register(make_tool("broken", handler=broken))

    result = await registry.execute("broken", {})

    assert result.success is False
    assert result.to_content() == "Error: disk on fire"


@pytest.mark.asyncio
async def test_execute_remote_tool():
    client = MagicMock()
    client.call_tool = AsyncMock(return_value=mcp_result("file contents"))
    registry = ToolRegistry(client)
    registry.register_remote([remote_definition("read_file")])

    result = await registry.execute("read_file", {"path": "a.py"})

    client.call_tool.assert_awaited_once_with("read_file", {"path": "a.py"})
    assert result.success is True
    assert result.to_content() == "file contents"


@pytest.mark.asyncio
async def test_execute_remote_error_is_prefixed():
    client = MagicMock()
    client.call_tool = AsyncMock(return_value=mcp_result("no such file", is_error=True))
    registry = ToolRegistry(client)
    registry.register_remote([remote_definition("read_file")])

    result = await registry.execute("read_file", {})

    assert result.success is False
    assert result.to_content() == "Error: no such file"


@pytest.mark.asyncio
async def test_execute_remote_transport_error_propagates():
    client = MagicMock()
    client.call_tool = AsyncMock(side_effect=ToolTransportError("pipe closed", tool_name="read_file"))
    registry = ToolRegistry(client)
    registry.register_remote([remote_definition("read_file")])

    with pytest.raises(ToolTransportError):
        await registry.execute("read_file", {})


@pytest.mark.asyncio
async def test_execute_unknown_tool_without_server():
    registry = ToolRegistry()

    result = await registry.execute("missing", {})

    assert result.success is False
    assert "not found" in result.to_content()

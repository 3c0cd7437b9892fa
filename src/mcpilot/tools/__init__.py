"""
Tools module: local tools and the dispatch registry.
"""

from .base import Tool, ToolParameter, ToolResult
from .registry import LocalTool, RemoteTool, ToolRegistry
from .archive_search import ARCHIVE_SEARCH_TOOL_NAME, create_archive_search_tool

__all__ = [
    "Tool",
    "ToolParameter",
    "ToolResult",
    "LocalTool",
    "RemoteTool",
    "ToolRegistry",
    "ARCHIVE_SEARCH_TOOL_NAME",
    "create_archive_search_tool",
]

"""
session_search - look up details in the compacted session archive.
"""

from typing import TYPE_CHECKING, Any

from .base import Tool, ToolParameter, ToolResult

if TYPE_CHECKING:
    from ..agent.session import SessionManager

ARCHIVE_SEARCH_TOOL_NAME = "session_search"
DEFAULT_MAX_RESULTS = 10


def _coerce_max_results(value: Any) -> int:
    """Accept int, float or numeric string; anything else means the default."""
    if isinstance(value, bool):
        return DEFAULT_MAX_RESULTS
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return DEFAULT_MAX_RESULTS
    return DEFAULT_MAX_RESULTS


def create_archive_search_tool(sessions: "SessionManager") -> Tool:
    """Build the session_search tool bound to the active session's archive."""

    async def session_search(query: str = "", max_results: Any = DEFAULT_MAX_RESULTS, **_: Any) -> ToolResult:
        output = sessions.search_archive(str(query), _coerce_max_results(max_results))
        return ToolResult(success=True, output=output)

    return Tool(
        name=ARCHIVE_SEARCH_TOOL_NAME,
        description="Searches the compacted session archive for a query and returns matching lines.",
        parameters=[
            ToolParameter(
                name="query",
                param_type="string",
                description="Substring to search for in the session archive.",
                required=True,
            ),
            ToolParameter(
                name="max_results",
                param_type="integer",
                description="Maximum number of matching lines to return.",
                required=False,
            ),
        ],
        handler=session_search,
    )

"""
Progress events from the agent loop to the presentation layer.

Events flow one way. Handlers run synchronously on the loop, so they
must be quick; anything slow (a spinner, a redraw) belongs on the
presentation side. A handler that raises is logged and ignored.
"""

from dataclasses import dataclass
from typing import Callable

import structlog

logger = structlog.get_logger()

ARGS_PREVIEW_CHARS = 160
RESULT_PREVIEW_CHARS = 200


def truncate(text: str, max_len: int) -> str:
    if len(text) <= max_len:
        return text
    return text[:max_len] + "..."


def preview(text: str, max_len: int) -> str:
    """Single-line, truncated rendering for status displays."""
    one_line = text.strip().replace("\r", " ").replace("\n", " ")
    return truncate(one_line, max_len)


@dataclass
class AgentEvents:
    """Optional callbacks for observing a turn."""

    on_status: Callable[[str], None] | None = None
    on_tool_start: Callable[[str, str], None] | None = None
    on_tool_end: Callable[[str, str, bool], None] | None = None

    def status(self, message: str) -> None:
        self._emit(self.on_status, message)

    def tool_start(self, name: str, arguments: str) -> None:
        self._emit(self.on_tool_start, name, preview(arguments, ARGS_PREVIEW_CHARS))

    def tool_end(self, name: str, result: str, is_error: bool) -> None:
        self._emit(self.on_tool_end, name, preview(result, RESULT_PREVIEW_CHARS), is_error)

    @staticmethod
    def _emit(handler: Callable[..., None] | None, *args: object) -> None:
        if handler is None:
            return
        try:
            handler(*args)
        except Exception:
            logger.warning("Event handler failed", handler=getattr(handler, "__name__", repr(handler)), exc_info=True)

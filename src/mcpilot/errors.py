"""
Exception hierarchy for mcpilot.

Transport and malformed-input errors abort the current turn. Policy errors
are reported to the immediate caller before any state is touched.
Protocol-level tool failures never show up here: they are encoded as tool
result content so the model can react to them.
"""


class AgentError(Exception):
    """Base class for all mcpilot errors."""


class ConfigurationError(AgentError):
    """Settings are missing or invalid."""


class TransportError(AgentError):
    """Failure reaching the completion endpoint or the tool server."""


class CompletionError(TransportError):
    """The completion endpoint failed, timed out, or returned nothing usable."""

    def __init__(self, message: str, model: str | None = None):
        super().__init__(message)
        self.model = model


class ToolTransportError(TransportError):
    """The tool-execution session failed for reasons unrelated to the tool itself."""

    def __init__(self, message: str, tool_name: str | None = None):
        super().__init__(message)
        self.tool_name = tool_name


class MalformedToolCallError(AgentError):
    """Tool-call arguments could not be parsed into a JSON object."""

    def __init__(self, tool_name: str, arguments: str, reason: str):
        super().__init__(f"Failed to parse arguments for tool '{tool_name}': {reason}")
        self.tool_name = tool_name
        self.arguments = arguments


class TurnCancelledError(AgentError):
    """The user aborted the completion call of a turn."""


class PolicyError(AgentError):
    """A request was refused by policy; no state was changed."""


class NotEnoughHistoryError(PolicyError):
    """Compaction was requested without enough older history to summarize."""


class ActiveSessionError(PolicyError):
    """The requested operation is not allowed on the active session."""


class SessionNotFoundError(PolicyError):
    """No stored session matches the requested name."""


class InvalidSessionNameError(PolicyError):
    """A session command was issued without a usable name."""


class UnknownModelError(PolicyError):
    """The requested model is not in the configured model list."""


class SessionStoreError(AgentError):
    """A session file exists but cannot be read or parsed."""

"""
Base classes for LLM providers.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Literal

from ..errors import MalformedToolCallError


@dataclass
class ToolDefinition:
    """Definition of a tool that the LLM can use."""

    name: str
    description: str
    parameters: dict[str, Any]


@dataclass
class ToolCall:
    """A tool call made by the LLM.

    ``arguments`` is kept exactly as the endpoint sent it (JSON text), so
    history replays byte-for-byte. Use :meth:`parse_arguments` to decode.
    """

    id: str
    name: str
    arguments: str = ""

    def parse_arguments(self) -> dict[str, Any]:
        """Decode the JSON arguments; empty text means no arguments."""
        if not self.arguments.strip():
            return {}
        try:
            parsed = json.loads(self.arguments)
        except json.JSONDecodeError as e:
            raise MalformedToolCallError(self.name, self.arguments, str(e)) from e
        if parsed is None:
            return {}
        if not isinstance(parsed, dict):
            raise MalformedToolCallError(
                self.name, self.arguments, f"expected a JSON object, got {type(parsed).__name__}"
            )
        return parsed


@dataclass
class LLMMessage:
    """A message in the conversation."""

    role: Literal["user", "assistant", "system", "tool"]
    content: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: str | None = None
    name: str | None = None


@dataclass(frozen=True)
class ToolChoice:
    """Tool-choice directive sent with a completion request."""

    mode: Literal["auto", "none", "tool"] = "auto"
    tool_name: str | None = None

    @classmethod
    def auto(cls) -> "ToolChoice":
        return cls("auto")

    @classmethod
    def none(cls) -> "ToolChoice":
        return cls("none")

    @classmethod
    def require(cls, tool_name: str) -> "ToolChoice":
        return cls("tool", tool_name)


@dataclass
class LLMResponse:
    """Response from an LLM."""

    content: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0
    model: str = ""
    stop_reason: str | None = None
    raw_response: Any = None


class BaseLLM(ABC):
    """Base class for LLM providers."""

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.max_tokens = max_tokens
        self.temperature = temperature

    def set_model(self, model: str) -> None:
        """Switch the default model used for requests."""
        self.model = model

    @abstractmethod
    async def generate(
        self,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None = None,
        tool_choice: ToolChoice | None = None,
        model: str | None = None,
    ) -> LLMResponse:
        """Generate a response from the LLM.

        ``messages`` carries the system prompt as its first element.
        ``tool_choice`` is only sent when ``tools`` is non-empty and
        defaults to auto. ``model`` overrides :attr:`model` for one call.
        """
        pass

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Get the provider name."""
        pass

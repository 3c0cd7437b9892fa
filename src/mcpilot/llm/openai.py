"""
OpenAI-compatible LLM provider (also works with OpenRouter, Chutes and similar gateways).
"""

from typing import Any

import openai
import structlog

from .. import __version__
from ..errors import CompletionError
from .base import BaseLLM, LLMMessage, LLMResponse, ToolCall, ToolChoice, ToolDefinition

logger = structlog.get_logger()

USER_AGENT = f"mcpilot/{__version__}"


def format_api_error(error: Exception) -> str:
    """Render an OpenAI SDK error as a single actionable line."""
    if isinstance(error, openai.APIStatusError):
        parts = [f"status {error.status_code}"]
        body = error.body if isinstance(error.body, dict) else {}
        detail = body.get("error", body) if isinstance(body, dict) else {}
        if not isinstance(detail, dict):
            detail = {}
        message = detail.get("message") or error.message
        if message:
            parts.append(str(message))
        for key in ("type", "param", "code"):
            value = detail.get(key)
            if value:
                parts.append(f"{key}={value}")
        return ", ".join(parts)
    if isinstance(error, openai.APIConnectionError):
        return f"connection error: {error}"
    return str(error) or "unknown error"


class OpenAILLM(BaseLLM):
    """OpenAI chat-completions provider."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        base_url: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ):
        super().__init__(api_key, model, base_url, max_tokens, temperature)
        self.client = openai.AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            default_headers={"User-Agent": USER_AGENT},
        )

    @property
    def provider_name(self) -> str:
        return "openai"

    def _convert_messages(self, messages: list[LLMMessage]) -> list[dict[str, Any]]:
        """Convert LLMMessages to OpenAI format."""
        converted = []

        for msg in messages:
            if msg.role == "tool":
                converted.append({
                    "role": "tool",
                    "tool_call_id": msg.tool_call_id,
                    "content": msg.content,
                })
            elif msg.role == "assistant" and msg.tool_calls:
                tool_calls = [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {
                            "name": tc.name,
                            "arguments": tc.arguments,
                        },
                    }
                    for tc in msg.tool_calls
                ]
                converted.append({
                    "role": "assistant",
                    "content": msg.content or None,
                    "tool_calls": tool_calls,
                })
            else:
                converted.append({
                    "role": msg.role,
                    "content": msg.content,
                })

        return converted

    def _convert_tools(self, tools: list[ToolDefinition]) -> list[dict[str, Any]]:
        """Convert ToolDefinitions to OpenAI format."""
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters,
                },
            }
            for tool in tools
        ]

    @staticmethod
    def _convert_tool_choice(choice: ToolChoice) -> str | dict[str, Any]:
        if choice.mode == "tool" and choice.tool_name:
            return {"type": "function", "function": {"name": choice.tool_name}}
        if choice.mode == "none":
            return "none"
        return "auto"

    async def generate(
        self,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None = None,
        tool_choice: ToolChoice | None = None,
        model: str | None = None,
    ) -> LLMResponse:
        """Generate a chat completion."""
        model = model or self.model

        kwargs: dict[str, Any] = {
            "model": model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "messages": self._convert_messages(messages),
        }

        if tools:
            kwargs["tools"] = self._convert_tools(tools)
            kwargs["tool_choice"] = self._convert_tool_choice(tool_choice or ToolChoice.auto())

        try:
            response = await self.client.chat.completions.create(**kwargs)
        except openai.APIError as e:
            logger.error("OpenAI API error", model=model, error=str(e))
            raise CompletionError(
                f"chat completion failed for model {model!r}: {format_api_error(e)}",
                model=model,
            ) from e

        if not response.choices:
            raise CompletionError("no response from LLM", model=model)

        choice = response.choices[0]
        message = choice.message

        tool_calls = [
            ToolCall(
                id=tc.id,
                name=tc.function.name,
                arguments=tc.function.arguments or "",
            )
            for tc in message.tool_calls or []
        ]

        return LLMResponse(
            content=message.content or "",
            tool_calls=tool_calls,
            input_tokens=response.usage.prompt_tokens if response.usage else 0,
            output_tokens=response.usage.completion_tokens if response.usage else 0,
            model=response.model,
            stop_reason=choice.finish_reason,
            raw_response=response,
        )

"""
LLM module: completion-endpoint transport.

Providers:
- OpenAI-compatible chat completions (OpenAI, Chutes, OpenRouter)
- Anthropic Claude (native SDK)
"""

from .base import BaseLLM, LLMMessage, LLMResponse, ToolCall, ToolChoice, ToolDefinition
from .anthropic import AnthropicLLM
from .openai import OpenAILLM
from .factory import create_llm

__all__ = [
    "BaseLLM",
    "LLMMessage",
    "LLMResponse",
    "ToolCall",
    "ToolChoice",
    "ToolDefinition",
    "AnthropicLLM",
    "OpenAILLM",
    "create_llm",
]

"""
LLM factory for creating provider instances.

Supports: OpenAI-compatible endpoints (OpenAI, Chutes, OpenRouter) and Anthropic Claude.
"""

from ..config import LLMConfig, Settings
from ..errors import ConfigurationError
from .base import BaseLLM
from .anthropic import AnthropicLLM
from .openai import OpenAILLM


def create_llm(config: LLMConfig | None = None, settings: Settings | None = None) -> BaseLLM:
    """Create an LLM instance based on configuration.

    Provider routing:
    - openai -> OpenAILLM (any OpenAI-compatible base URL)
    - openrouter -> OpenAILLM (OpenRouter endpoint)
    - anthropic -> AnthropicLLM (native Anthropic SDK)
    """
    if config is None:
        if settings is None:
            from ..config import get_settings
            settings = get_settings()
        config = settings.get_llm_config()

    if not config.api_key:
        raise ConfigurationError("LLM API key is required")

    provider = config.provider

    if provider == "anthropic":
        return AnthropicLLM(
            api_key=config.api_key,
            model=config.model,
            base_url=config.base_url,
            max_tokens=config.max_tokens,
            temperature=config.temperature,
        )
    elif provider == "openai":
        return OpenAILLM(
            api_key=config.api_key,
            model=config.model,
            base_url=config.base_url,
            max_tokens=config.max_tokens,
            temperature=config.temperature,
        )
    elif provider == "openrouter":
        return OpenAILLM(
            api_key=config.api_key,
            model=config.model,
            base_url=config.base_url or "https://openrouter.ai/api/v1",
            max_tokens=config.max_tokens,
            temperature=config.temperature,
        )
    else:
        raise ConfigurationError(f"Unknown LLM provider: {provider}")

"""
Tests for configuration module.
"""

import os
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from mcpilot.config import (
    DEFAULT_MCP_ARGS,
    DEFAULT_MODELS,
    MCPConfig,
    Settings,
    mask_secret,
    normalize_context,
)
from mcpilot.errors import ConfigurationError


def make_settings(**env: str) -> Settings:
    with patch.dict(os.environ, env, clear=True):
        return Settings(_env_file=None)


def test_settings_default_values():
    """Test that settings have sensible defaults."""
    settings = make_settings()

    assert settings.llm_provider == "openai"
    assert settings.llm_base_url == "https://llm.chutes.ai/v1"
    assert settings.llm_model == "zai-org/GLM-4.7-TEE"
    assert settings.llm_compaction_model == "Qwen/Qwen3-VL-235B-A22B-Instruct"
    assert settings.mcp_command == "uvx"
    assert settings.mcp_args == DEFAULT_MCP_ARGS
    assert settings.available_models == DEFAULT_MODELS
    assert settings.context_budget_tokens == 200_000
    assert settings.compaction_threshold == 0.9
    assert settings.compaction_keep_recent == 6
    assert settings.auto_compact is True
    assert settings.tool_choice_keywords == {}


def test_settings_from_env():
    """Test loading settings from environment variables."""
    settings = make_settings(
        LLM_API_KEY="sk-test-key-123456",
        LLM_MODEL="moonshotai/Kimi-K2-Instruct-0905",
        MCP_PROJECT_PATH="/work/project",
        TOOL_TIMEOUT_SECONDS="30",
        AUTO_COMPACT="false",
    )

    assert settings.llm_api_key == "sk-test-key-123456"
    assert settings.llm_model == "moonshotai/Kimi-K2-Instruct-0905"
    assert settings.mcp_project_path == "/work/project"
    assert settings.tool_timeout_seconds == 30
    assert settings.auto_compact is False


def test_chutes_aliases():
    """Test the CHUTES_* environment aliases."""
    settings = make_settings(
        CHUTES_API_KEY="chutes-key-abcdef",
        CHUTES_MODEL="deepseek-ai/DeepSeek-V3.2-TEE",
        CHUTES_COMPACTION_MODEL="small-model",
    )

    assert settings.llm_api_key == "chutes-key-abcdef"
    assert settings.llm_model == "deepseek-ai/DeepSeek-V3.2-TEE"
    assert settings.get_llm_config().compaction_model == "small-model"


def test_json_list_and_map_fields():
    """Test complex fields parsed from JSON env values."""
    settings = make_settings(
        AVAILABLE_MODELS='["a/model", "b/model"]',
        TOOL_CHOICE_KEYWORDS='{"find symbol": "find_symbol"}',
    )

    assert settings.available_models == ["a/model", "b/model"]
    assert settings.tool_choice_keywords == {"find symbol": "find_symbol"}


def test_invalid_compaction_threshold():
    """Test that an out-of-range threshold is rejected."""
    with pytest.raises(ValidationError):
        make_settings(COMPACTION_THRESHOLD="1.5")


def test_invalid_keep_recent():
    with pytest.raises(ValidationError):
        make_settings(COMPACTION_KEEP_RECENT="0")


def test_get_llm_config():
    """Test getting LLM configuration."""
    settings = make_settings(LLM_API_KEY="key-1234567890")

    config = settings.get_llm_config()

    assert config.provider == "openai"
    assert config.api_key == "key-1234567890"
    assert config.base_url == "https://llm.chutes.ai/v1"
    assert config.timeout_seconds == 300


def test_get_llm_config_compaction_model_falls_back():
    settings = make_settings(LLM_COMPACTION_MODEL="")

    assert settings.get_llm_config().compaction_model == settings.llm_model


def test_get_llm_config_anthropic_drops_gateway_url():
    settings = make_settings(LLM_PROVIDER="anthropic")

    assert settings.get_llm_config().base_url is None


def test_get_llm_config_openrouter_url():
    settings = make_settings(LLM_PROVIDER="openrouter")

    assert settings.get_llm_config().base_url == "https://openrouter.ai/api/v1"


def test_validate_for_run_requires_key():
    settings = make_settings()

    with pytest.raises(ConfigurationError):
        settings.validate_for_run()

    make_settings(LLM_API_KEY="x").validate_for_run()


def test_normalize_context():
    assert normalize_context("Claude Desktop") == "desktop-app"
    assert normalize_context("desktop") == "desktop-app"
    assert normalize_context(" IDE Assistant ") == "ide-assistant"
    assert normalize_context("") == ""


def test_mcp_build_args_appends_flags():
    config = MCPConfig(context="claude-desktop", project_path="/work/project")

    args = config.build_args()

    assert args[:len(DEFAULT_MCP_ARGS)] == DEFAULT_MCP_ARGS
    assert args[args.index("--context") + 1] == "desktop-app"
    assert args[args.index("--enable-web-dashboard") + 1] == "false"
    assert args[args.index("--enable-gui-log-window") + 1] == "false"
    assert args[-2:] == ["--project", "/work/project"]


def test_mcp_build_args_keeps_explicit_flags():
    config = MCPConfig(
        args=["serve", "--enable-web-dashboard", "true"],
        enable_gui_log_window=True,
    )

    args = config.build_args()

    assert args.count("--enable-web-dashboard") == 1
    assert args[args.index("--enable-web-dashboard") + 1] == "true"
    assert args[args.index("--enable-gui-log-window") + 1] == "true"
    assert "--context" not in args
    assert "--project" not in args


def test_mask_secret():
    assert mask_secret("") == ""
    assert mask_secret("short") == "********"
    assert mask_secret("12345678") == "********"
    assert mask_secret("abcd1234567890wxyz") == "abcd...wxyz"


def test_project_sessions_dir(tmp_path: Path):
    project = tmp_path / "My Project!"
    project.mkdir()
    settings = make_settings(SESSIONS_DIR=str(tmp_path / "sessions"))

    path = settings.project_sessions_dir(str(project))

    assert path == tmp_path / "sessions" / "my-project"

"""
Configuration management for mcpilot

Uses pydantic-settings for environment variable parsing and validation.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError

DEFAULT_MODELS = [
    "deepseek-ai/DeepSeek-V3.2-Speciale-TEE",
    "MiniMaxAI/MiniMax-M2.1-TEE",
    "Qwen/Qwen3-Coder-480B-A35B-Instruct-FP8-TEE",
    "moonshotai/Kimi-K2-Thinking-TEE",
    "moonshotai/Kimi-K2-Instruct-0905",
    "deepseek-ai/DeepSeek-V3.2-TEE",
    "zai-org/GLM-4.7-TEE",
]

DEFAULT_MCP_ARGS = [
    "--from", "git+https://github.com/oraios/serena",
    "serena", "start-mcp-server",
]

_DESKTOP_CONTEXT_ALIASES = {"claude-desktop", "desktop", "desktop-app", "claude-desktop-app"}


class LLMConfig(BaseModel):
    """Configuration for the completion endpoint."""

    provider: Literal["openai", "anthropic", "openrouter"] = "openai"
    model: str = "zai-org/GLM-4.7-TEE"
    compaction_model: str = ""
    api_key: str = ""
    base_url: str | None = None
    max_tokens: int = 4096
    temperature: float = 0.7
    timeout_seconds: float = 0


class MCPConfig(BaseModel):
    """Configuration for the tool-execution server process."""

    command: str = "uvx"
    args: list[str] = Field(default_factory=lambda: list(DEFAULT_MCP_ARGS))
    env: dict[str, str] = Field(default_factory=dict)
    project_path: str = ""
    context: str = ""
    enable_web_dashboard: bool = False
    enable_gui_log_window: bool = False
    tool_timeout_seconds: float = 0

    def build_args(self) -> list[str]:
        """Full argument list for the server command."""
        args = list(self.args) if self.args else list(DEFAULT_MCP_ARGS)

        context = normalize_context(self.context)
        if context:
            args += ["--context", context]

        args = _append_bool_flag(args, "--enable-web-dashboard", self.enable_web_dashboard)
        args = _append_bool_flag(args, "--enable-gui-log-window", self.enable_gui_log_window)

        if self.project_path:
            args += ["--project", self.project_path]

        return args


def normalize_context(value: str) -> str:
    """Normalize the server context name (e.g. "Claude Desktop" -> "desktop-app")."""
    normalized = value.strip().lower().replace(" ", "-")
    if normalized in _DESKTOP_CONTEXT_ALIASES:
        return "desktop-app"
    return normalized


def _append_bool_flag(args: list[str], flag: str, value: bool) -> list[str]:
    if flag in args:
        return args
    return args + [flag, "true" if value else "false"]


def mask_secret(value: str) -> str:
    """Mask an API key for display."""
    if not value:
        return ""
    if len(value) <= 8:
        return "********"
    return value[:4] + "..." + value[-4:]


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
    )

    # Application
    app_name: str = "mcpilot"
    debug: bool = False
    log_level: str = "INFO"

    # Completion endpoint
    llm_provider: Literal["openai", "anthropic", "openrouter"] = "openai"
    llm_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("llm_api_key", "chutes_api_key"),
        description="API key for the completion endpoint",
    )
    llm_base_url: str = Field(
        default="https://llm.chutes.ai/v1",
        validation_alias=AliasChoices("llm_base_url", "chutes_base_url"),
    )
    llm_model: str = Field(
        default="zai-org/GLM-4.7-TEE",
        validation_alias=AliasChoices("llm_model", "chutes_model"),
    )
    llm_compaction_model: str = Field(
        default="Qwen/Qwen3-VL-235B-A22B-Instruct",
        validation_alias=AliasChoices("llm_compaction_model", "chutes_compaction_model"),
    )
    max_tokens: int = 4096
    temperature: float = 0.7
    llm_timeout_seconds: float = Field(default=300, description="Completion call timeout, <=0 disables")

    # Tool server (MCP over stdio)
    mcp_command: str = "uvx"
    mcp_args: list[str] = Field(default_factory=lambda: list(DEFAULT_MCP_ARGS))
    mcp_env: dict[str, str] = Field(default_factory=dict)
    mcp_project_path: str = ""
    mcp_context: str = "claude-desktop"
    mcp_enable_web_dashboard: bool = False
    mcp_enable_gui_log_window: bool = False
    tool_timeout_seconds: float = Field(default=120, description="Tool call timeout, <=0 disables")

    # Sessions
    sessions_dir: str = Field(default="~/.mcpilot/sessions", description="Root directory for session files")

    # Models offered by /model
    available_models: list[str] = Field(default_factory=lambda: list(DEFAULT_MODELS))

    # Compaction
    context_budget_tokens: int = 200_000
    compaction_threshold: float = 0.9
    compaction_keep_recent: int = 6
    auto_compact: bool = True

    # Keyword -> tool name; empty means the model always decides
    tool_choice_keywords: dict[str, str] = Field(default_factory=dict)

    @field_validator("compaction_threshold")
    @classmethod
    def check_threshold(cls, v: float) -> float:
        if not 0 < v <= 1:
            raise ValueError("compaction_threshold must be in (0, 1]")
        return v

    @field_validator("compaction_keep_recent")
    @classmethod
    def check_keep_recent(cls, v: int) -> int:
        if v < 1:
            raise ValueError("compaction_keep_recent must be at least 1")
        return v

    def get_llm_config(self) -> LLMConfig:
        """Get completion endpoint configuration."""
        base_url = self.llm_base_url or None
        if self.llm_provider == "anthropic" and base_url == "https://llm.chutes.ai/v1":
            base_url = None
        elif self.llm_provider == "openrouter" and base_url == "https://llm.chutes.ai/v1":
            base_url = "https://openrouter.ai/api/v1"

        return LLMConfig(
            provider=self.llm_provider,
            model=self.llm_model,
            compaction_model=self.llm_compaction_model or self.llm_model,
            api_key=self.llm_api_key,
            base_url=base_url,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            timeout_seconds=self.llm_timeout_seconds,
        )

    def get_mcp_config(self) -> MCPConfig:
        """Get tool server configuration."""
        return MCPConfig(
            command=self.mcp_command,
            args=self.mcp_args,
            env=self.mcp_env,
            project_path=self.mcp_project_path,
            context=self.mcp_context,
            enable_web_dashboard=self.mcp_enable_web_dashboard,
            enable_gui_log_window=self.mcp_enable_gui_log_window,
            tool_timeout_seconds=self.tool_timeout_seconds,
        )

    def project_sessions_dir(self, project_path: str | None = None) -> Path:
        """Session directory for a project: <sessions_dir>/<project slug>."""
        from .agent.session import sanitize_session_name

        project = Path(project_path or self.mcp_project_path or ".").expanduser().resolve()
        return Path(self.sessions_dir).expanduser() / sanitize_session_name(project.name)

    def validate_for_run(self) -> None:
        """Raise ConfigurationError if the settings cannot drive a session."""
        if not self.llm_api_key:
            raise ConfigurationError(
                "LLM API key is required (set LLM_API_KEY or add it to .env)"
            )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

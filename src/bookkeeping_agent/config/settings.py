"""Configuration settings for the bookkeeping agent."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class FlatSettings(BaseSettings):
    """Flat settings for simple environment variable configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Bookkeeping backend
    backend_api_url: str = Field(
        default="http://localhost:3001", validation_alias="BOOKKEEPING_API_URL"
    )
    backend_api_key: SecretStr = Field(..., validation_alias="BOOKKEEPING_API_KEY")
    backend_timeout: float = Field(default=30.0, validation_alias="BOOKKEEPING_TIMEOUT")
    backend_max_retries: int = Field(default=3, validation_alias="BOOKKEEPING_MAX_RETRIES")

    # LLM provider and keys
    llm_provider: Literal["claude", "openai"] = Field(
        default="claude", validation_alias="LLM_PROVIDER"
    )
    anthropic_api_key: SecretStr = Field(..., validation_alias="ANTHROPIC_API_KEY")
    openai_api_key: SecretStr = Field(
        default=SecretStr(""), validation_alias="OPENAI_API_KEY"
    )
    claude_model: str = Field(default="claude-haiku-4-5", validation_alias="CLAUDE_MODEL")
    gpt_model: str = Field(default="gpt-4o", validation_alias="GPT_MODEL")
    llm_max_tokens: int = Field(default=4096, validation_alias="LLM_MAX_TOKENS")
    llm_temperature: float = Field(default=0.2, validation_alias="LLM_TEMPERATURE")

    # Bookkeeping defaults
    default_currency: str = Field(default="MYR", validation_alias="DEFAULT_CURRENCY")

    # Memory store
    database_path: str = Field(
        default="bookkeeping_agent.db", validation_alias="AGENT_DATABASE_PATH"
    )
    context_max_chars: int = Field(default=4000, validation_alias="AGENT_CONTEXT_MAX_CHARS")

    # Agent loop and tool limits
    agent_max_steps: int = Field(default=10, validation_alias="AGENT_MAX_STEPS")
    agent_history_limit: int = Field(default=8, validation_alias="AGENT_HISTORY_LIMIT")
    tool_timeout_seconds: float = Field(default=10.0, validation_alias="TOOL_TIMEOUT_SECONDS")
    max_tool_calls_per_request: int = Field(
        default=10, validation_alias="MAX_TOOL_CALLS_PER_REQUEST"
    )

    # Memory lifecycle
    unused_memory_days: int = Field(default=180, validation_alias="UNUSED_MEMORY_DAYS")
    low_confidence_threshold: float = Field(
        default=0.3, validation_alias="LOW_CONFIDENCE_THRESHOLD"
    )
    low_confidence_age_days: int = Field(default=90, validation_alias="LOW_CONFIDENCE_AGE_DAYS")
    inactive_session_days: int = Field(default=30, validation_alias="INACTIVE_SESSION_DAYS")
    archived_session_retention_days: int = Field(
        default=365, validation_alias="ARCHIVED_SESSION_RETENTION_DAYS"
    )
    agent_audit_log_retention_days: int = Field(
        default=365, validation_alias="AGENT_AUDIT_LOG_RETENTION_DAYS"
    )
    cleanup_interval_seconds: float = Field(
        default=86400.0, validation_alias="CLEANUP_INTERVAL_SECONDS"
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", validation_alias="LOG_LEVEL"
    )
    log_format: Literal["json", "console"] = Field(
        default="console", validation_alias="LOG_FORMAT"
    )


@lru_cache
def get_settings() -> FlatSettings:
    """Get cached settings instance."""
    return FlatSettings()

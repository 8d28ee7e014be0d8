"""Application configuration using environment variables."""

from functools import lru_cache
from pathlib import Path

from pydantic import AliasChoices, AnyHttpUrl, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the project root once so that `.env` is discovered regardless of CWD
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    """Load configuration from environment variables and `.env`."""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    upstream_base_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl("http://localhost:3000"),
        validation_alias=AliasChoices(
            "OPENWEBUI_URL",
            "NEXT_PUBLIC_OPENWEBUI_URL",
            "upstream_base_url",
        ),
    )
    upstream_api_key: SecretStr = Field(
        default=SecretStr(""),
        validation_alias=AliasChoices(
            "OPENWEBUI_API_KEY",
            "NEXT_PUBLIC_OPENWEBUI_API_KEY",
            "upstream_api_key",
        ),
    )
    default_model: str = Field(
        default="gpt-4o-mini",
        validation_alias=AliasChoices(
            "DEFAULT_MODEL",
            "NEXT_PUBLIC_DEFAULT_MODEL",
            "default_model",
        ),
    )

    chat_completions_path: str = Field(
        default="/api/chat/completions",
        validation_alias=AliasChoices("CHAT_COMPLETIONS_PATH", "chat_completions_path"),
    )
    files_path: str = Field(
        default="/api/v1/files/",
        validation_alias=AliasChoices("FILES_PATH", "files_path"),
    )
    tool_servers_path: str = Field(
        default="/api/v1/tools",
        validation_alias=AliasChoices("TOOL_SERVERS_PATH", "tool_servers_path"),
    )
    models_path: str = Field(
        default="/api/models",
        validation_alias=AliasChoices("MODELS_PATH", "models_path"),
    )

    request_timeout: float = Field(
        default=60.0,
        validation_alias=AliasChoices("UPSTREAM_TIMEOUT", "request_timeout"),
        ge=1,
    )

    attachments_max_size_bytes: int = Field(
        default=20 * 1024 * 1024,
        ge=1,
        validation_alias=AliasChoices(
            "ATTACHMENTS_MAX_SIZE_BYTES",
            "attachments_max_size_bytes",
        ),
    )

    # Tool server discovery tuning; the defaults mirror observed backend behaviour
    tool_discovery_attempts: int = Field(
        default=3,
        ge=1,
        validation_alias=AliasChoices(
            "TOOL_DISCOVERY_ATTEMPTS",
            "tool_discovery_attempts",
        ),
    )
    tool_discovery_backoff_seconds: float = Field(
        default=1.0,
        ge=0,
        validation_alias=AliasChoices(
            "TOOL_DISCOVERY_BACKOFF_SECONDS",
            "tool_discovery_backoff_seconds",
        ),
    )
    tool_discovery_wait_seconds: float = Field(
        default=5.0,
        ge=0,
        validation_alias=AliasChoices(
            "TOOL_DISCOVERY_WAIT_SECONDS",
            "tool_discovery_wait_seconds",
        ),
    )

    default_session_id: str = Field(
        default="default",
        min_length=1,
        validation_alias=AliasChoices("DEFAULT_SESSION_ID", "default_session_id"),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached `Settings` instance."""

    return Settings()  # pyright: ignore[reportCallIssue]


__all__ = ["Settings", "get_settings"]

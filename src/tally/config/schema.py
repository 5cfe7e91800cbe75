"""Pydantic models for tally configuration."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ProviderConfig(BaseModel):
    """Configuration for a single reasoning-engine provider."""

    enabled: bool = True
    kind: str = "openai"  # "openai" (any OpenAI-compatible API) or "anthropic"
    api_key: str | None = None
    api_key_env: str | None = None
    base_url: str | None = None
    models: list[str] = Field(default_factory=list)


class DatabaseConfig(BaseModel):
    """Database connection settings."""

    url: str = "sqlite+aiosqlite:///~/.local/share/tally/tally.db"
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: float = 30.0
    pool_recycle: int = 3600


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    file: str = ""
    structured: bool = False


class AssistantConfig(BaseModel):
    """Conversation orchestrator settings."""

    model: str = "deepseek:deepseek-chat"
    max_tool_rounds: int = Field(default=5, ge=1)
    engine_timeout: float = Field(default=60.0, gt=0)
    stream_idle_timeout: float = Field(default=30.0, gt=0)
    max_retries: int = Field(default=2, ge=0)
    history_turns: int = Field(default=5, ge=0)
    temperature: float = 0.1
    max_tokens: int = 2000
    parallel_reads: bool = True
    max_message_length: int = Field(default=1000, ge=1)


class ReceiptsConfig(BaseModel):
    """Receipt parsing settings."""

    model: str = ""  # empty = assistant.model
    categorize_items: bool = True
    max_concurrency: int = Field(default=5, ge=1)


class ApiConfig(BaseModel):
    """REST API server settings."""

    host: str = "127.0.0.1"
    port: int = 8080
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000"])


class AuthConfig(BaseModel):
    """Token issuance settings."""

    jwt_secret: str = ""
    token_expiry_hours: int = 24
    registration_enabled: bool = True


class TallyConfig(BaseModel):
    """Top-level configuration for tally."""

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    providers: dict[str, ProviderConfig] = Field(
        default_factory=lambda: {
            "deepseek": ProviderConfig(
                kind="openai",
                api_key_env="DEEPSEEK_API_KEY",
                base_url="https://api.deepseek.com/v1",
                models=["deepseek-chat"],
            ),
            "openai": ProviderConfig(kind="openai", api_key_env="OPENAI_API_KEY"),
            "anthropic": ProviderConfig(
                kind="anthropic", api_key_env="ANTHROPIC_API_KEY"
            ),
        }
    )
    assistant: AssistantConfig = Field(default_factory=AssistantConfig)
    receipts: ReceiptsConfig = Field(default_factory=ReceiptsConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

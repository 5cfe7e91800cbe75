"""Configuration loading and validation."""

from tally.config.loader import load_config
from tally.config.schema import (
    ApiConfig,
    AssistantConfig,
    AuthConfig,
    DatabaseConfig,
    LoggingConfig,
    ProviderConfig,
    ReceiptsConfig,
    TallyConfig,
)

__all__ = [
    "ApiConfig",
    "AssistantConfig",
    "AuthConfig",
    "DatabaseConfig",
    "LoggingConfig",
    "ProviderConfig",
    "ReceiptsConfig",
    "TallyConfig",
    "load_config",
]

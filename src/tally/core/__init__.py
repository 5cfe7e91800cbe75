"""Core types, errors, and shared utilities."""

from tally.core.errors import (
    ConfigError,
    ContextAssemblyError,
    MalformedResponseError,
    ModelNotFoundError,
    NotFoundError,
    ProviderAuthError,
    ProviderError,
    ProviderOverloadedError,
    ProviderRateLimitError,
    ProviderTimeoutError,
    ResolutionAmbiguityError,
    StorageError,
    TallyError,
    ToolExecutionFailure,
    UpstreamError,
    ValidationError,
)
from tally.core.retry import RetryPolicy, is_retryable, retry_with_backoff

__all__ = [
    "ConfigError",
    "ContextAssemblyError",
    "MalformedResponseError",
    "ModelNotFoundError",
    "NotFoundError",
    "ProviderAuthError",
    "ProviderError",
    "ProviderOverloadedError",
    "ProviderRateLimitError",
    "ProviderTimeoutError",
    "ResolutionAmbiguityError",
    "RetryPolicy",
    "StorageError",
    "TallyError",
    "ToolExecutionFailure",
    "UpstreamError",
    "ValidationError",
    "is_retryable",
    "retry_with_backoff",
]

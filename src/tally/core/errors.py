"""Exception hierarchy for tally.

Every module imports from here. The hierarchy is:

    TallyError
    ├── ValidationError
    ├── NotFoundError(suggestions)
    ├── ResolutionAmbiguityError(candidates)
    ├── ContextAssemblyError
    ├── ToolExecutionFailure(tool_name, cause)
    ├── ConfigError
    └── UpstreamError
        ├── StorageError
        ├── MalformedResponseError
        └── ProviderError(provider_id)
            ├── ProviderAuthError
            ├── ProviderRateLimitError(retry_after)
            ├── ProviderTimeoutError
            ├── ProviderOverloadedError
            └── ModelNotFoundError

``public_message`` is the only text that may be shown to a client or fed
back to the reasoning engine.  Upstream errors keep SDK and driver detail
in ``str(exc)`` for logs and expose a generic message instead.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tally.tools.base import ToolResult


class TallyError(Exception):
    """Base exception for all tally errors."""

    retryable: bool = False

    @property
    def public_message(self) -> str:
        """Human-readable message safe to show outside the process."""
        return str(self)


# ─── Input / Resolution Errors ────────────────────────────────


class ValidationError(TallyError):
    """Bad or missing input."""


class NotFoundError(TallyError):
    """Referenced entity does not exist for this user."""

    def __init__(self, message: str, suggestions: list[str] | None = None) -> None:
        self.suggestions = list(suggestions or [])
        super().__init__(message)

    @property
    def public_message(self) -> str:
        msg = str(self)
        if self.suggestions:
            msg += f" Closest matches: {', '.join(self.suggestions)}."
        return msg


class ResolutionAmbiguityError(TallyError):
    """A name-based lookup matched zero or several candidates."""

    def __init__(self, message: str, candidates: list[str]) -> None:
        self.candidates = list(candidates)
        super().__init__(message)

    @property
    def public_message(self) -> str:
        if not self.candidates:
            return str(self)
        return f"{self} Candidates: {', '.join(self.candidates)}."


class ContextAssemblyError(TallyError):
    """The financial snapshot for a turn could not be built."""


class ToolExecutionFailure(TallyError):
    """A tool call failed; carried back to the engine as a failed result."""

    def __init__(self, tool_name: str, cause: Exception) -> None:
        self.tool_name = tool_name
        self.cause = cause
        super().__init__(f"[{tool_name}] {cause}")

    @property
    def public_message(self) -> str:
        if isinstance(self.cause, TallyError):
            return self.cause.public_message
        return f"The {self.tool_name} action failed due to an internal error."

    def to_result(self) -> ToolResult:
        """Downgrade the failure into a conversational fact."""
        from tally.tools.base import ToolResult

        return ToolResult(success=False, message=self.public_message)


# ─── Configuration Errors ─────────────────────────────────────


class ConfigError(TallyError):
    """Invalid configuration."""


# ─── Upstream Errors ──────────────────────────────────────────


class UpstreamError(TallyError):
    """Reasoning engine or store unreachable, failed or too slow."""

    retryable = True

    @property
    def public_message(self) -> str:
        return "A backing service is unavailable right now. Please try again."


class StorageError(UpstreamError):
    """Database or history layer error."""

    @property
    def public_message(self) -> str:
        return "Your financial data could not be reached. Please try again."


class MalformedResponseError(UpstreamError):
    """The reasoning engine returned a shape we cannot decode."""

    @property
    def public_message(self) -> str:
        return "The assistant returned an unreadable response. Please try again."


class ProviderError(UpstreamError):
    """Base for provider-related errors."""

    def __init__(self, provider_id: str, message: str) -> None:
        self.provider_id = provider_id
        super().__init__(f"[{provider_id}] {message}")

    @property
    def public_message(self) -> str:
        return "The assistant is unavailable right now. Please try again."


class ProviderAuthError(ProviderError):
    """Invalid or missing API key."""

    retryable = False


class ProviderRateLimitError(ProviderError):
    """Rate limit exceeded. Includes retry_after if available."""

    def __init__(self, provider_id: str, retry_after: float | None = None) -> None:
        self.retry_after = retry_after
        msg = "Rate limited"
        if retry_after is not None:
            msg += f" (retry after {retry_after}s)"
        super().__init__(provider_id, msg)

    @property
    def public_message(self) -> str:
        return "The assistant is receiving too many requests. Please try again shortly."


class ProviderTimeoutError(ProviderError):
    """Model call timed out."""

    @property
    def public_message(self) -> str:
        return "The assistant took too long to respond. Please try again."


class ProviderOverloadedError(ProviderError):
    """Provider is overloaded (529, 503)."""


class ModelNotFoundError(ProviderError):
    """Requested model not available from this provider."""

    retryable = False

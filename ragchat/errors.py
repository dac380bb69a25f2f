"""
Error taxonomy shared by every layer of the chat service.

Configuration problems are fatal to the operation that hit them and are never
retried.  Provider errors are split into the transient kind (retried by the
gateway), quota exhaustion (surfaced with a flag) and malformed responses.
"""
from __future__ import annotations


class RAGChatError(Exception):
    """Base class for all errors raised by ragchat."""


# --- Configuration ------------------------------------------------------------

class ConfigurationError(RAGChatError):
    """Invalid settings, e.g. chunk overlap >= chunk size or unknown provider."""


class OutOfRange(ConfigurationError):
    """A tunable was set outside its allowed range."""


class MissingCredential(ConfigurationError):
    """No API key is configured for the active LLM provider."""

    def __init__(self, provider: str) -> None:
        super().__init__(
            f"API key is required for provider '{provider}'. "
            f"Set {provider.upper()}_API_KEY environment variable."
        )
        self.provider = provider


class CorpusError(ConfigurationError):
    """The document corpus could not be read or has schema errors."""


# --- Data ---------------------------------------------------------------------

class DimensionMismatch(RAGChatError):
    """Two vectors that must be compared have different lengths."""

    def __init__(self, left: int, right: int) -> None:
        super().__init__(f"Vectors must have the same dimensions ({left} != {right})")
        self.left = left
        self.right = right


class SessionNotFound(RAGChatError):
    """The session id is unknown or the session has expired."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session {session_id} not found or expired")
        self.session_id = session_id


# --- LLM providers ------------------------------------------------------------

class ProviderError(RAGChatError):
    """Base class for failures talking to an LLM provider."""


class TransientProviderError(ProviderError):
    """Timeout, network failure or non-success status. Retried."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class QuotaExceeded(TransientProviderError):
    """The provider reported an exhausted quota or rate limit (HTTP 429). Retried like any
    other non-success status; `ExhaustedRetries.quota_exceeded` reports it afterwards."""

    def __init__(self, message: str, status_code: int | None = 429) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProviderResponseError(ProviderError):
    """The provider answered with a shape its parser does not understand."""


class ExhaustedRetries(ProviderError):
    """Every attempt failed; wraps the last underlying error."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"LLM API failed after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error

    @property
    def quota_exceeded(self) -> bool:
        return isinstance(self.last_error, QuotaExceeded)

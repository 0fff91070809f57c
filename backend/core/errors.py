"""
Error types for tooltip generation.
"""
from typing import Optional


class TermListError(ValueError):
    """Raised when a caller hands the scheduler a malformed term list."""
    pass


class GenerationError(Exception):
    """Base error for a failed call to the generation service."""

    def __init__(
        self,
        message: str,
        provider: str = "ollama",
        request_type: str = "tooltip",
        original_error: Optional[Exception] = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.provider = provider
        self.request_type = request_type
        self.original_error = original_error
        self.retryable = retryable


class RateLimitError(GenerationError):
    """The service rejected the request with HTTP 429."""

    def __init__(self, provider: str = "ollama", retry_after: Optional[float] = None):
        super().__init__(
            f"Rate limit exceeded for {provider}",
            provider=provider,
            request_type="rate-limit",
            retryable=True,
        )
        self.retry_after = retry_after


class GenerationTimeoutError(GenerationError):
    """The request did not finish within the client timeout."""

    def __init__(self, provider: str, timeout: float, original_error: Optional[Exception] = None):
        super().__init__(
            f"Request timed out after {timeout}s for {provider}",
            provider=provider,
            request_type="timeout",
            original_error=original_error,
            retryable=True,
        )


class ServiceUnavailableError(GenerationError):
    """Connection refused, 5xx, or any other transport-level failure."""

    def __init__(self, provider: str, detail: str, original_error: Optional[Exception] = None):
        super().__init__(
            f"{provider} unavailable: {detail}",
            provider=provider,
            request_type="transport",
            original_error=original_error,
            retryable=True,
        )


class ResponseParseError(GenerationError):
    """The service answered, but not with a usable tooltip payload."""

    def __init__(self, provider: str, detail: str, original_error: Optional[Exception] = None):
        super().__init__(
            f"Failed to parse response from {provider}: {detail}",
            provider=provider,
            request_type="parse-error",
            original_error=original_error,
        )

from typing import Any


class AdoError(Exception):
    """Base exception for Azure DevOps failures, carrying a code and context for logging."""

    error_code = "ADO_ERROR"
    default_message = "Azure DevOps request failed"

    def __init__(
        self,
        message: str | None = None,
        context: dict[str, Any] | None = None,
        original_exception: Exception | None = None,
    ):
        """
        Args:
            message: Human-readable error message. Falls back to the class default.
            context: Extra details (url, status code, offending config value, ...).
            original_exception: The lower-level exception being wrapped, if any.
        """
        super().__init__(message or self.default_message)
        self.context = context or {}
        self.original_exception = original_exception


class AdoAuthenticationError(AdoError):
    """No usable credential, or the organization rejected the one we sent."""

    error_code = "ADO_AUTH_FAILED"
    default_message = "Authentication failed"


class AdoRateLimitError(AdoError):
    """Azure DevOps answered 429."""

    error_code = "ADO_RATE_LIMIT"
    default_message = "API rate limit exceeded"

    def __init__(
        self,
        message: str | None = None,
        retry_after: int | None = None,
        context: dict[str, Any] | None = None,
        original_exception: Exception | None = None,
    ):
        context = context or {}
        if retry_after:
            context["retry_after"] = retry_after
        super().__init__(message, context=context, original_exception=original_exception)
        self.retry_after = retry_after


class AdoTimeoutError(AdoError):
    error_code = "ADO_TIMEOUT"
    default_message = "Request timed out"

    def __init__(
        self,
        message: str | None = None,
        timeout_seconds: int | None = None,
        context: dict[str, Any] | None = None,
        original_exception: Exception | None = None,
    ):
        context = context or {}
        if timeout_seconds:
            context["timeout_seconds"] = timeout_seconds
        super().__init__(message, context=context, original_exception=original_exception)
        self.timeout_seconds = timeout_seconds


class AdoNetworkError(AdoError):
    error_code = "ADO_NETWORK_ERROR"
    default_message = "Network error occurred"


class AdoConfigurationError(AdoError):
    error_code = "ADO_CONFIG_ERROR"
    default_message = "Configuration error"


def error_code(error: BaseException) -> str:
    """The AdoError code, or the exception class name for anything else."""
    return error.error_code if isinstance(error, AdoError) else type(error).__name__

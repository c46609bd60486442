"""
Provider error taxonomy for the assistant bridge.

Every failure coming out of the OpenAI SDK is classified into one of these so
callers can tell "the assistant or thread is gone" apart from transient
trouble without inspecting SDK exception types.
"""
from typing import Optional

import openai
from fastapi import status

from aiwidget.exceptions import AppException


class ProviderError(AppException):
    """External LLM call failed."""

    retryable = False

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_502_BAD_GATEWAY,
        error_code: str = "provider_error",
        provider_status: Optional[int] = None,
    ):
        super().__init__(
            error_code=error_code,
            message=message,
            status_code=status_code,
            details={"provider_status": provider_status} if provider_status else {},
        )
        self.provider_status = provider_status


class ProviderAuthError(ProviderError):
    def __init__(self, message: str = "Provider rejected the API key", provider_status: Optional[int] = 401):
        super().__init__(message, status.HTTP_400_BAD_REQUEST, "provider_auth_error", provider_status)


class ProviderNotFound(ProviderError):
    """Assistant or thread no longer exists upstream. Never retried."""

    def __init__(self, message: str = "Provider resource not found"):
        super().__init__(message, status.HTTP_404_NOT_FOUND, "provider_not_found", 404)


class ProviderRateLimited(ProviderError):
    retryable = True

    def __init__(self, message: str = "Provider rate limit exceeded"):
        super().__init__(message, status.HTTP_429_TOO_MANY_REQUESTS, "provider_rate_limited", 429)


class ProviderUnavailable(ProviderError):
    retryable = True

    def __init__(self, message: str = "Provider unavailable", provider_status: Optional[int] = None):
        super().__init__(message, status.HTTP_503_SERVICE_UNAVAILABLE, "provider_unavailable", provider_status)


class RunTimeout(ProviderError):
    retryable = True

    def __init__(self, timeout_seconds: float):
        super().__init__(
            f"Run timeout ({timeout_seconds:g}s)",
            status.HTTP_504_GATEWAY_TIMEOUT,
            "run_timeout",
        )
        self.timeout_seconds = timeout_seconds


class RunFailedStatus(ProviderError):
    """Run reached failed, cancelled or expired."""

    def __init__(self, run_status: str, detail: Optional[str] = None):
        message = f"Run ended with status: {run_status}"
        if detail:
            message += f" ({detail})"
        super().__init__(message, status.HTTP_502_BAD_GATEWAY, "run_failed")
        self.run_status = run_status


def classify_provider_error(exc: BaseException) -> ProviderError:
    """Map an SDK or transport exception onto the provider taxonomy."""
    if isinstance(exc, ProviderError):
        return exc
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return ProviderAuthError(str(exc), provider_status=getattr(exc, "status_code", 401))
    if isinstance(exc, openai.NotFoundError):
        return ProviderNotFound(str(exc))
    if isinstance(exc, openai.RateLimitError):
        return ProviderRateLimited(str(exc))
    if isinstance(exc, openai.APIConnectionError):
        # APITimeoutError is a subclass
        return ProviderUnavailable(str(exc) or "Connection to provider failed")
    if isinstance(exc, openai.APIStatusError):
        if exc.status_code >= 500:
            return ProviderUnavailable(str(exc), provider_status=exc.status_code)
        return ProviderError(str(exc), provider_status=exc.status_code)
    return ProviderError(str(exc) or exc.__class__.__name__)

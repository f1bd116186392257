"""Exception taxonomy and provider error classification."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from talon.core.types import ErrorCategory

if TYPE_CHECKING:
    from talon.ai.router import ProviderAttempt


class TalonError(Exception):
    """Base class for every error raised by the runtime."""

    code = "TALON_ERROR"


class ConfigError(TalonError):
    code = "CONFIG_ERROR"


# --- Provider errors -------------------------------------------------------


class ProviderError(TalonError):
    """A single provider call failed.

    Recovered by the router's fallback chain; never shown to the user directly.
    """

    code = "PROVIDER_ERROR"
    category = ErrorCategory.UNKNOWN

    def __init__(self, message: str, *, provider_id: str = "", status_code: int | None = None):
        super().__init__(message)
        self.provider_id = provider_id
        self.status_code = status_code


class ProviderAuthError(ProviderError):
    code = "PROVIDER_AUTH"
    category = ErrorCategory.AUTH


class ProviderBillingError(ProviderError):
    code = "PROVIDER_BILLING"
    category = ErrorCategory.BILLING


class ProviderRateLimitError(ProviderError):
    code = "PROVIDER_RATE_LIMIT"
    category = ErrorCategory.RATE_LIMIT


class ProviderTimeoutError(ProviderError):
    code = "PROVIDER_TIMEOUT"
    category = ErrorCategory.TIMEOUT


class ProviderNetworkError(ProviderError):
    code = "PROVIDER_NETWORK"
    category = ErrorCategory.NETWORK


class ProviderUnknownError(ProviderError):
    code = "PROVIDER_UNKNOWN"
    category = ErrorCategory.UNKNOWN


_CATEGORY_TO_ERROR: dict[ErrorCategory, type[ProviderError]] = {
    ErrorCategory.AUTH: ProviderAuthError,
    ErrorCategory.BILLING: ProviderBillingError,
    ErrorCategory.RATE_LIMIT: ProviderRateLimitError,
    ErrorCategory.TIMEOUT: ProviderTimeoutError,
    ErrorCategory.NETWORK: ProviderNetworkError,
    ErrorCategory.UNKNOWN: ProviderUnknownError,
}


class AllProvidersExhaustedError(TalonError):
    """Every eligible route failed for one provider call."""

    code = "ALL_PROVIDERS_EXHAUSTED"

    def __init__(self, attempts: list[ProviderAttempt], message: str | None = None):
        self.attempts = attempts
        if message is None:
            tried = ", ".join(f"{a.route.key}={a.category}" for a in attempts if not a.success)
            message = f"All provider routes failed ({tried or 'no eligible routes'})"
        super().__init__(message)

    @property
    def category(self) -> ErrorCategory:
        failed = [a for a in self.attempts if not a.success and a.category]
        if not failed:
            return ErrorCategory.UNKNOWN
        return failed[-1].category

    @property
    def recoverable(self) -> bool:
        return self.category not in (ErrorCategory.AUTH, ErrorCategory.BILLING)


# --- Tool errors -----------------------------------------------------------


class ToolError(TalonError):
    code = "TOOL_ERROR"

    def __init__(self, tool_name: str, message: str):
        super().__init__(f"[{tool_name}] {message}")
        self.tool_name = tool_name


class ToolUnknownError(ToolError):
    code = "UNKNOWN_TOOL"

    def __init__(self, tool_name: str):
        super().__init__(tool_name, f"Unknown tool '{tool_name}'")


class ToolValidationError(ToolError):
    code = "INVALID_ARGUMENTS"


class ToolExecutionError(ToolError):
    """Tool invocation failed outside the normalized envelope path."""

    code = "TOOL_EXECUTION"


# --- Loop / context errors -------------------------------------------------


class ContextOverflowError(TalonError):
    code = "CONTEXT_OVERFLOW"


class MaxIterationsExceededError(TalonError):
    code = "MAX_ITERATIONS"

    def __init__(self, limit: int):
        super().__init__(f"Tool loop stopped after {limit} iterations")
        self.limit = limit


# --- Storage errors --------------------------------------------------------


class SessionStoreError(TalonError):
    code = "SESSION_STORE"


class SessionNotFoundError(SessionStoreError):
    code = "SESSION_NOT_FOUND"

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


# --- Classification --------------------------------------------------------

_BILLING_MARKERS = ("billing", "credit balance", "insufficient_quota", "quota", "payment")
_AUTH_MARKERS = ("api key", "api_key", "unauthorized", "authentication", "permission")
_RATE_MARKERS = ("rate limit", "rate_limit", "too many requests", "overloaded")
_NETWORK_MARKERS = ("connection", "network", "dns", "unreachable", "reset by peer")


def classify_error(exc: BaseException) -> ErrorCategory:
    """Map an arbitrary exception raised by a provider call to an error category.

    Looks at typed provider errors first, then HTTP status codes, then message text.
    """
    if isinstance(exc, ProviderError):
        return exc.category
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return ErrorCategory.TIMEOUT

    name = type(exc).__name__.lower()
    message = str(exc).lower()
    status = _status_code(exc)

    if status == 402 or any(m in message for m in _BILLING_MARKERS):
        return ErrorCategory.BILLING
    if status in (401, 403) or "authentication" in name or "permission" in name:
        return ErrorCategory.AUTH
    if status in (429, 529) or "ratelimit" in name:
        return ErrorCategory.RATE_LIMIT
    if status == 408 or "timeout" in name:
        return ErrorCategory.TIMEOUT
    if "connection" in name or (status is not None and status >= 500):
        return ErrorCategory.NETWORK
    if isinstance(exc, (ConnectionError, OSError)):
        return ErrorCategory.NETWORK

    if any(m in message for m in _AUTH_MARKERS):
        return ErrorCategory.AUTH
    if any(m in message for m in _RATE_MARKERS):
        return ErrorCategory.RATE_LIMIT
    if "timed out" in message or "timeout" in message:
        return ErrorCategory.TIMEOUT
    if any(m in message for m in _NETWORK_MARKERS):
        return ErrorCategory.NETWORK
    return ErrorCategory.UNKNOWN


def to_provider_error(exc: BaseException, provider_id: str = "") -> ProviderError:
    """Wrap *exc* in the typed provider error for its category."""
    if isinstance(exc, ProviderError):
        return exc
    category = classify_error(exc)
    error_cls = _CATEGORY_TO_ERROR[category]
    message = str(exc) or type(exc).__name__
    return error_cls(message, provider_id=provider_id, status_code=_status_code(exc))


def _status_code(exc: BaseException) -> int | None:
    status: Any = getattr(exc, "status_code", None)
    if status is None:
        response = getattr(exc, "response", None)
        status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None

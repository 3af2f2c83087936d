"""LLM provider error taxonomy."""

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from saimilar.models.schemas import UsageStats

# Text markers of rate-limit / quota responses; HTTP 429 is checked by status code
QUOTA_SIGNATURES = ("resource_exhausted", "quota", "rate limit", "rate_limit", "too many requests")


class ProviderError(Exception):
    """Base class for failures talking to an LLM provider."""

    def __init__(self, message: str, *, model_key: str | None = None) -> None:
        super().__init__(message)
        self.model_key = model_key


class ProviderCallError(ProviderError):
    """The transport failed, or the provider answered with a non-success status."""

    def __init__(
        self,
        message: str,
        *,
        model_key: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, model_key=model_key)
        self.status_code = status_code


class QuotaExceededError(ProviderCallError):
    """The provider reported a rate or quota limit."""


class ResponseParseError(ProviderError):
    """Strict JSON was requested but the cleaned payload did not parse.

    The call itself succeeded and was billed, so its usage is kept.
    """

    def __init__(
        self,
        message: str,
        *,
        model_key: str | None = None,
        raw_text: str = "",
        usage: "UsageStats | None" = None,
    ) -> None:
        super().__init__(message, model_key=model_key)
        self.raw_text = raw_text
        self.usage = usage


def has_quota_signature(text: str) -> bool:
    lowered = text.lower()
    return any(signature in lowered for signature in QUOTA_SIGNATURES)


def is_quota_body(error: Any) -> bool:
    """Vendor error object (``{"code": 429, ...}`` or plain text) that reports a quota limit."""
    if isinstance(error, dict) and error.get("code") == 429:
        return True
    return has_quota_signature(str(error))


def is_quota_error(exc: BaseException) -> bool:
    """True for QuotaExceededError, an HTTP 429, or an error text carrying a quota marker."""
    if isinstance(exc, QuotaExceededError):
        return True
    if isinstance(exc, ResponseParseError):
        return False
    if isinstance(exc, ProviderCallError) and exc.status_code == 429:
        return True
    return has_quota_signature(str(exc))

"""LLM provider adapters."""

from saimilar.services.providers.base import (
    ChatMessage,
    ProviderAdapter,
    ProviderRequest,
    ProviderResponse,
    clean_response_text,
    sanitize_messages,
)
from saimilar.services.providers.catalog import (
    DEFAULT_MODEL_KEY,
    MODEL_CATALOG,
    ModelSpec,
    available_models,
    display_name,
    resolve_model,
)
from saimilar.services.providers.errors import (
    ProviderCallError,
    ProviderError,
    QuotaExceededError,
    ResponseParseError,
    is_quota_error,
)
from saimilar.services.providers.registry import PROVIDER_ADAPTERS, ProviderRegistry
from saimilar.services.providers.usage import UsageLog, compute_cost, usage_log

__all__ = [
    "ChatMessage",
    "ProviderAdapter",
    "ProviderRequest",
    "ProviderResponse",
    "clean_response_text",
    "sanitize_messages",
    "DEFAULT_MODEL_KEY",
    "MODEL_CATALOG",
    "ModelSpec",
    "available_models",
    "display_name",
    "resolve_model",
    "ProviderCallError",
    "ProviderError",
    "QuotaExceededError",
    "ResponseParseError",
    "is_quota_error",
    "PROVIDER_ADAPTERS",
    "ProviderRegistry",
    "UsageLog",
    "compute_cost",
    "usage_log",
]

"""Perplexity adapter (OpenAI-style chat/completions)."""

from typing import Any

import httpx

from saimilar.config import get_settings
from saimilar.services.providers.base import (
    ChatMessage,
    ParsedBody,
    PreparedCall,
    ProviderAdapter,
    ProviderRequest,
)
from saimilar.services.providers.catalog import PROVIDER_PERPLEXITY, ModelSpec
from saimilar.services.providers.errors import ProviderCallError, QuotaExceededError, is_quota_body
from saimilar.services.providers.usage import UsageLog, usage_log

settings = get_settings()


class PerplexityAdapter(ProviderAdapter):
    provider = PROVIDER_PERPLEXITY

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        api_key: str | None = None,
        base_url: str | None = None,
        usage_sink: UsageLog | None = usage_log,
    ) -> None:
        super().__init__(client=client, usage_sink=usage_sink)
        self.api_key = settings.perplexity_api_key if api_key is None else api_key
        self.base_url = (base_url or settings.perplexity_base_url).rstrip("/")

    def _ensure_configured(self, spec: ModelSpec) -> None:
        if not self.api_key:
            raise ProviderCallError(
                "Server configuration error: PERPLEXITY_API_KEY missing", model_key=spec.key
            )

    def _prepare(self, spec: ModelSpec, request: ProviderRequest, messages: list[ChatMessage]) -> PreparedCall:
        return PreparedCall(
            url=f"{self.base_url}/chat/completions",
            payload={
                "model": spec.wire_model_id,
                "messages": [{"role": m.role, "content": m.content} for m in messages],
                "temperature": request.temperature,
                "max_tokens": request.max_tokens,
            },
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        )

    def _parse_body(self, spec: ModelSpec, body: dict[str, Any]) -> ParsedBody:
        error = body.get("error")
        if error:
            message = f"Perplexity API Error: {error}"
            if is_quota_body(error):
                raise QuotaExceededError(message, model_key=spec.key)
            raise ProviderCallError(message, model_key=spec.key)

        choices = body.get("choices") or []
        text = ((choices[0].get("message") or {}).get("content") or "") if choices else ""

        usage = body.get("usage") or {}
        return ParsedBody(
            text=text,
            input_tokens=usage.get("prompt_tokens") or 0,
            output_tokens=usage.get("completion_tokens") or 0,
            total_tokens=usage.get("total_tokens"),
        )

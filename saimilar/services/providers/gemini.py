"""Google Gemini adapter (generateContent REST API)."""

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
from saimilar.services.providers.catalog import PROVIDER_GEMINI, ModelSpec
from saimilar.services.providers.errors import ProviderCallError, QuotaExceededError, is_quota_body
from saimilar.services.providers.usage import UsageLog, usage_log

settings = get_settings()


class GeminiAdapter(ProviderAdapter):
    provider = PROVIDER_GEMINI

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        api_key: str | None = None,
        base_url: str | None = None,
        usage_sink: UsageLog | None = usage_log,
    ) -> None:
        super().__init__(client=client, usage_sink=usage_sink)
        self.api_key = settings.gemini_api_key if api_key is None else api_key
        self.base_url = (base_url or settings.gemini_base_url).rstrip("/")

    def _ensure_configured(self, spec: ModelSpec) -> None:
        if not self.api_key:
            raise ProviderCallError("Server configuration error: Gemini key missing", model_key=spec.key)

    def _prepare(self, spec: ModelSpec, request: ProviderRequest, messages: list[ChatMessage]) -> PreparedCall:
        system = messages[0] if messages and messages[0].role == "system" else None
        conversation = messages[1:] if system else messages

        generation_config: dict[str, Any] = {
            "temperature": request.temperature,
            "maxOutputTokens": request.max_tokens,
        }
        if request.want_json:
            generation_config["responseMimeType"] = "application/json"

        payload: dict[str, Any] = {
            "contents": [
                {
                    # Gemini calls the assistant side "model"
                    "role": "model" if m.role == "assistant" else "user",
                    "parts": [{"text": m.content}],
                }
                for m in conversation
            ],
            "generationConfig": generation_config,
        }
        if system:
            payload["systemInstruction"] = {"parts": [{"text": system.content}]}

        return PreparedCall(
            url=f"{self.base_url}/models/{spec.wire_model_id}:generateContent",
            payload=payload,
            headers={"Content-Type": "application/json"},
            params={"key": self.api_key},
        )

    def _parse_body(self, spec: ModelSpec, body: dict[str, Any]) -> ParsedBody:
        error = body.get("error")
        if error:
            message = f"Gemini API Error: {error}"
            if is_quota_body(error):
                raise QuotaExceededError(message, model_key=spec.key)
            raise ProviderCallError(message, model_key=spec.key)

        block_reason = (body.get("promptFeedback") or {}).get("blockReason")
        if block_reason:
            raise ProviderCallError(f"Gemini blocked the prompt: {block_reason}", model_key=spec.key)

        candidates = body.get("candidates") or []
        parts = (candidates[0].get("content") or {}).get("parts", []) if candidates else []
        text = "".join(part.get("text", "") for part in parts)

        usage = body.get("usageMetadata") or {}
        return ParsedBody(
            text=text,
            input_tokens=usage.get("promptTokenCount") or 0,
            output_tokens=usage.get("candidatesTokenCount") or 0,
            total_tokens=usage.get("totalTokenCount"),
        )

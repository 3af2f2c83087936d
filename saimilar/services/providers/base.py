"""Uniform call contract over heterogeneous LLM vendors.

Every adapter turns ``ProviderRequest`` into ``ProviderResponse`` (cleaned
text, parsed JSON when requested, usage with cost). Vendors only differ in how
the HTTP call is shaped and how the body is read back.
"""

import json
import logging
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx

from saimilar.constants import LLM_MAX_TOKENS, LLM_TEMPERATURE, QUERY_EXCERPT_LENGTH
from saimilar.models.schemas import UsageStats
from saimilar.services.providers.catalog import DEFAULT_MODEL_KEY, ModelSpec, resolve_model
from saimilar.services.providers.errors import (
    ProviderCallError,
    QuotaExceededError,
    ResponseParseError,
    has_quota_signature,
)
from saimilar.services.providers.usage import UsageLog, compute_cost, usage_log
from saimilar.utils.http_client import get_llm_client

logger = logging.getLogger(__name__)

_FENCE_OPEN = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"\s*```$")


@dataclass(frozen=True)
class ChatMessage:
    role: str  # "system" | "user" | "assistant"
    content: str


@dataclass
class ProviderRequest:
    system_instruction: str
    messages: list[ChatMessage]
    want_json: bool = True
    model_key: str = DEFAULT_MODEL_KEY
    temperature: float = LLM_TEMPERATURE
    max_tokens: int = LLM_MAX_TOKENS
    query_excerpt: str = ""


@dataclass
class ProviderResponse:
    text: str
    usage: UsageStats
    data: dict[str, Any] | None = None


@dataclass
class PreparedCall:
    url: str
    payload: dict[str, Any]
    headers: dict[str, str] = field(default_factory=dict)
    params: dict[str, str] = field(default_factory=dict)


@dataclass
class ParsedBody:
    text: str
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int | None = None


def sanitize_messages(messages: list[ChatMessage]) -> list[ChatMessage]:
    """Shape a message list the way vendors accept it.

    The first system message stays first and is never merged. Empty messages
    are dropped, leading assistant messages are dropped, and consecutive
    messages with the same role are joined with a blank line.
    """
    system = next((m for m in messages if m.role == "system"), None)
    conversation = [
        m for m in messages if m.role != "system" and m.content and m.content.strip()
    ]

    while conversation and conversation[0].role == "assistant":
        conversation.pop(0)

    merged: list[ChatMessage] = []
    for message in conversation:
        if merged and merged[-1].role == message.role:
            merged[-1] = ChatMessage(message.role, f"{merged[-1].content}\n\n{message.content}")
        else:
            merged.append(message)

    return ([system] if system else []) + merged


def clean_response_text(text: str, want_json: bool) -> str:
    """Strip Markdown code fences; for JSON, keep the outermost brace span."""
    cleaned = _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", text.strip())).strip()
    if want_json:
        first, last = cleaned.find("{"), cleaned.rfind("}")
        if first != -1 and last > first:
            cleaned = cleaned[first : last + 1]
    return cleaned


class ProviderAdapter(ABC):
    """One LLM vendor behind ``invoke``."""

    provider: str = ""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        usage_sink: UsageLog | None = usage_log,
    ) -> None:
        self._client = client
        self._usage_sink = usage_sink

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client or get_llm_client()

    @abstractmethod
    def _prepare(self, spec: ModelSpec, request: ProviderRequest, messages: list[ChatMessage]) -> PreparedCall:
        """Build the vendor HTTP call from sanitized messages (system first, if any)."""

    @abstractmethod
    def _parse_body(self, spec: ModelSpec, body: dict[str, Any]) -> ParsedBody:
        """Read the text payload and token counts from a successful response body."""

    def _ensure_configured(self, spec: ModelSpec) -> None:
        """Raise ProviderCallError when credentials are missing."""

    async def invoke(self, request: ProviderRequest) -> ProviderResponse:
        spec = resolve_model(request.model_key)
        self._ensure_configured(spec)

        raw_messages = list(request.messages)
        if request.system_instruction:
            raw_messages.insert(0, ChatMessage("system", request.system_instruction))
        call = self._prepare(spec, request, sanitize_messages(raw_messages))

        started = time.perf_counter()
        try:
            response = await self.client.post(
                call.url,
                json=call.payload,
                headers=call.headers,
                params=call.params or None,
            )
        except httpx.HTTPError as e:
            raise ProviderCallError(
                f"{spec.display_name}: transport error: {e}", model_key=spec.key
            ) from e

        self._raise_for_status(spec, response)

        try:
            body = response.json()
        except ValueError as e:
            raise ProviderCallError(
                f"{spec.display_name}: response body is not JSON", model_key=spec.key
            ) from e

        parsed = self._parse_body(spec, body)
        elapsed_ms = int((time.perf_counter() - started) * 1000)

        usage = UsageStats(
            provider_model=spec.display_name,
            input_tokens=parsed.input_tokens,
            output_tokens=parsed.output_tokens,
            total_tokens=parsed.total_tokens or (parsed.input_tokens + parsed.output_tokens),
            cost_estimate=compute_cost(spec, parsed.input_tokens, parsed.output_tokens),
            wall_clock_ms=elapsed_ms,
            query_excerpt=request.query_excerpt[:QUERY_EXCERPT_LENGTH],
        )
        if self._usage_sink is not None:
            self._usage_sink.record(usage)
        logger.debug(
            f"{spec.display_name}: {usage.input_tokens}+{usage.output_tokens} tokens, "
            f"${usage.cost_estimate:.6f}, {elapsed_ms}ms"
        )

        if not parsed.text.strip():
            raise ProviderCallError(f"{spec.display_name}: empty response", model_key=spec.key)

        cleaned = clean_response_text(parsed.text, request.want_json)
        if not request.want_json:
            return ProviderResponse(text=cleaned, usage=usage)

        try:
            data = json.loads(cleaned)
        except json.JSONDecodeError as e:
            logger.warning(f"{spec.display_name}: JSON parse error, raw text: {parsed.text[:200]!r}")
            raise ResponseParseError(
                f"Failed to parse {spec.display_name} response JSON",
                model_key=spec.key,
                raw_text=parsed.text,
                usage=usage,
            ) from e
        if not isinstance(data, dict):
            raise ResponseParseError(
                f"{spec.display_name} returned JSON that is not an object",
                model_key=spec.key,
                raw_text=parsed.text,
                usage=usage,
            )

        return ProviderResponse(text=cleaned, usage=usage, data=data)

    def _raise_for_status(self, spec: ModelSpec, response: httpx.Response) -> None:
        if response.is_success:
            return

        detail = response.text[:500]
        message = f"{spec.display_name} API Error: {response.status_code} - {detail}"
        if response.status_code == 429 or has_quota_signature(detail):
            raise QuotaExceededError(message, model_key=spec.key, status_code=response.status_code)
        raise ProviderCallError(message, model_key=spec.key, status_code=response.status_code)

"""Spoiler-free AI summaries for the detail view."""

import json
import logging

from pydantic import ValidationError

from saimilar.i18n import t
from saimilar.models.schemas import MediaItem, MovieSummary
from saimilar.services.providers import ChatMessage, ProviderError, ProviderRegistry, ProviderRequest
from saimilar.services.providers.catalog import PROVIDER_GEMINI, PROVIDER_PERPLEXITY
from saimilar.utils.cache import CACHE_TTL_SUMMARY, cache

logger = logging.getLogger(__name__)

SUMMARY_MODEL_BY_PROVIDER = {
    PROVIDER_GEMINI: "gemini",
    PROVIDER_PERPLEXITY: "sonar",
}

SUMMARY_PROMPT = """TASK: Write a gripping, SPOILER-FREE summary for the title "{title}".
Data: {data}

RULES:
1. One sentence capturing the MAIN SENSATION.
2. 2-3 sentences on what happens (DIRECTION/ATMOSPHERE only, NO PLOT TWISTS).
3. Describe the TONE.
4. Suggest who it is for.
5. NO SPOILERS.
6. {language_instruction}

Respond ONLY with valid JSON:
{{
  "summary": "...",
  "tone": "...",
  "spoiler_risk": 0.0
}}"""


def summary_cache_key(media_id: int, language: str) -> str:
    return f"summary:{media_id}:{language}"


class SummaryService:
    def __init__(self, providers: ProviderRegistry) -> None:
        self.providers = providers

    async def generate(self, item: MediaItem, language: str = "ru", provider: str = PROVIDER_GEMINI) -> MovieSummary:
        """Cached summary, else a fresh one; never raises.

        Perplexity failures are retried once on Gemini. If nothing works the
        item's own overview is returned with tone "Unknown".
        """
        key = summary_cache_key(item.id, language)
        hit = await cache.get_model(key, MovieSummary)
        if hit is not None:
            return hit

        models = [SUMMARY_MODEL_BY_PROVIDER.get(provider, "gemini")]
        if models[0] != "gemini":
            models.append("gemini")

        for model_key in models:
            try:
                summary = await self._ask(item, language, model_key)
            except (ProviderError, ValidationError) as e:
                logger.warning(f"Summary for {item.id} with {model_key} failed: {e}")
                continue
            await cache.set(key, summary, ttl=CACHE_TTL_SUMMARY)
            return summary

        return MovieSummary(summary=item.overview or t("summary.unavailable", language))

    async def _ask(self, item: MediaItem, language: str, model_key: str) -> MovieSummary:
        prompt = SUMMARY_PROMPT.format(
            title=item.title,
            data=json.dumps(item.model_dump(mode="json", exclude_none=True), ensure_ascii=False),
            language_instruction=t("analyzer.summary_instruction", language),
        )
        response = await self.providers.invoke(
            ProviderRequest(
                system_instruction="",
                messages=[ChatMessage("user", prompt)],
                want_json=True,
                model_key=model_key,
                query_excerpt=f"summary: {item.title}",
            )
        )
        return MovieSummary.model_validate(response.data or {})

"""Turns a chat message plus recent history into a SearchIntent.

``run`` makes exactly one provider call and lets provider errors through.
``analyze`` wraps it with the fallback policy the chat flow relies on:

- quota / rate limit: degraded intent with ``is_fallback=True``, no retry
- other failure on a non-default model (no explicit override): one retry
  against the default model
- anything else: generic failure intent, still carrying usage if the call
  itself was paid for
"""

import logging
from collections.abc import Sequence

from pydantic import ValidationError

from saimilar.config import get_settings
from saimilar.constants import HISTORY_TURNS_FOR_ANALYSIS
from saimilar.i18n import t
from saimilar.models.schemas import (
    ConversationTurn,
    MediaType,
    QueryType,
    SearchIntent,
    UsageStats,
)
from saimilar.services.providers import (
    ChatMessage,
    ProviderError,
    ProviderRegistry,
    ProviderRequest,
    ResponseParseError,
    is_quota_error,
    resolve_model,
)

logger = logging.getLogger(__name__)
settings = get_settings()

SYSTEM_PROMPT = """
You are SAImilar, a world-class movie and TV curator.
You DO NOT just search for keywords. You understand the "vibe" and specific topics.

YOUR GOALS:

1. **Analyze the Request**:
- Is it a new topic? (e.g., "movies about space")
- Is it a refinement of the previous topic? (e.g., "make it scary", "add thriller", "remove old movies")
- **CRITICAL**: If it is a refinement, you MUST MERGE it with the previous topic found in the History.
- Do not lose the original context (e.g. if history was "shipwrecks" and user adds "thriller", look for "shipwreck thrillers").

2. **Determine Media Type**:
- 'movie': Live action movies. (Do NOT include TV series or Anime unless asked).
- 'tv': TV Series.
- 'anime': Japanese animation.
- **STRICT SEPARATION**: If user asks for "movies", do NOT suggest TV shows or Anime, and vice versa.

3. **Generate Recommendations**:
- **PRIMARY METHOD**: Generate a list of 5-10 SPECIFIC `recommended_titles` (in English or original title) that perfectly match the user's need.
- For "shipwrecks", examples: "Titanic", "Life of Pi", "Cast Away", "Triangle of Sadness", "The Perfect Storm".
- Do NOT just search for the word "shipwreck". Find films *about* it.
- Use TYPE_2_SPECIFIC_FILM only when the user names one title to find similar ones, and put that title in `similar_to_movie`.

4. **Output Format**:
- JSON only.

STRUCTURE:
{
  "query_type": "TYPE_1_DESCRIPTIVE" | "TYPE_2_SPECIFIC_FILM" | "TYPE_3_GENERAL",
  "media_type": "movie" | "tv" | "anime",
  "recommended_titles": ["Title 1", "Title 2", ...],
  "search_parameters": {
    "genres": [...],
    "similar_to_movie": "string (only if TYPE_2)",
    "mood": "string",
    "keywords": [...]
  },
  "chat_response": "Short friendly text in the requested language...",
  "suggested_filters": [
    { "category": "Genre", "label": "Label in Language", "value": "genre_keyword" }
  ]
}
"""

QUERY_TEMPLATE = """Current User Input: "{query}"

Instructions:
- Analyze the input in context of the conversation so far.
- If input is a filter click (e.g. "Applying filter: Thriller"), REFINE the previous recommendations.
- Generate specific 'recommended_titles'.
- Respond ONLY with valid JSON."""


def build_system_instruction(language: str) -> str:
    return f"{SYSTEM_PROMPT}\n{t('analyzer.language_instruction', language)}"


def history_to_messages(history: Sequence[ConversationTurn]) -> list[ChatMessage]:
    """Last few turns as role-tagged messages, oldest first."""
    recent = list(history)[-HISTORY_TURNS_FOR_ANALYSIS:]
    return [ChatMessage(turn.role.value, turn.text) for turn in recent]


def quota_fallback_intent(language: str) -> SearchIntent:
    return SearchIntent(
        query_type=QueryType.GENERAL,
        media_type=MediaType.MOVIE,
        reply_text=t("analyzer.quota_fallback", language),
        is_fallback=True,
    )


def failure_intent(language: str, usage: UsageStats | None = None) -> SearchIntent:
    return SearchIntent(
        query_type=QueryType.GENERAL,
        media_type=MediaType.MOVIE,
        reply_text=t("analyzer.failed", language),
        usage=usage,
    )


class QueryAnalyzer:
    """Stateless: every call gets its history and model explicitly."""

    def __init__(self, providers: ProviderRegistry, default_model: str | None = None) -> None:
        self.providers = providers
        self.default_model = resolve_model(default_model or settings.default_model).key

    def choose_model(self, active_model: str | None, override_model: str | None = None) -> str:
        return resolve_model(override_model or active_model or self.default_model).key

    async def run(
        self,
        query: str,
        history: Sequence[ConversationTurn],
        language: str,
        model_key: str,
    ) -> SearchIntent:
        """One provider call; raises ProviderError subclasses on failure."""
        request = ProviderRequest(
            system_instruction=build_system_instruction(language),
            messages=[
                *history_to_messages(history),
                ChatMessage("user", QUERY_TEMPLATE.format(query=query)),
            ],
            want_json=True,
            model_key=model_key,
            query_excerpt=query,
        )
        response = await self.providers.invoke(request)

        try:
            intent = SearchIntent.model_validate(response.data or {})
        except ValidationError as e:
            raise ResponseParseError(
                f"Analysis payload does not match the expected structure: {e.error_count()} errors",
                model_key=model_key,
                raw_text=response.text,
                usage=response.usage,
            ) from e

        intent.is_fallback = False
        intent.usage = response.usage
        return intent

    async def analyze(
        self,
        query: str,
        history: Sequence[ConversationTurn],
        language: str = "ru",
        active_model: str | None = None,
        override_model: str | None = None,
    ) -> SearchIntent:
        """Analyze with the fallback policy; never raises."""
        model_key = self.choose_model(active_model, override_model)

        try:
            return await self.run(query, history, language, model_key)
        except Exception as e:
            if is_quota_error(e):
                logger.warning(f"Quota exceeded on {model_key}, degrading to title search: {e}")
                return quota_fallback_intent(language)

            logger.error(f"Analysis with {model_key} failed: {e}")
            usage = getattr(e, "usage", None)
            can_fall_back = (
                override_model is None
                and model_key != self.default_model
                and isinstance(e, ProviderError)
            )
            if not can_fall_back:
                return failure_intent(language, usage)

        logger.info(f"Retrying analysis with default model {self.default_model}")
        try:
            return await self.run(query, history, language, self.default_model)
        except Exception as e:
            if is_quota_error(e):
                logger.warning(f"Quota exceeded on fallback model {self.default_model}: {e}")
                return quota_fallback_intent(language)
            logger.error(f"Fallback analysis with {self.default_model} failed: {e}")
            return failure_intent(language, getattr(e, "usage", None) or usage)

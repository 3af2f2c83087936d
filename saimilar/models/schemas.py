"""Pydantic models for conversation, search intent and result state.

SearchIntent accepts the snake_case JSON contract the LLM is instructed to
produce (``chat_response``, ``similar_to_movie``, ``mood`` ...) as well as the
field names used internally.
"""

import enum
import re
import uuid
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


def _now() -> datetime:
    return datetime.now(UTC)


class MediaType(str, enum.Enum):
    """Kind of media a search targets."""

    MOVIE = "movie"
    TV = "tv"
    ANIME = "anime"


_MEDIA_TYPE_ALIASES = {
    "movie": MediaType.MOVIE,
    "movies": MediaType.MOVIE,
    "film": MediaType.MOVIE,
    "films": MediaType.MOVIE,
    "tv": MediaType.TV,
    "series": MediaType.TV,
    "show": MediaType.TV,
    "shows": MediaType.TV,
    "tv show": MediaType.TV,
    "tv_show": MediaType.TV,
    "anime": MediaType.ANIME,
}


_QUERY_TYPE_PREFIX = re.compile(r"^TYPE_\d+_")


class QueryType(str, enum.Enum):
    """How the analyzer classified a request."""

    DESCRIPTIVE = "TYPE_1_DESCRIPTIVE"
    SPECIFIC_FILM = "TYPE_2_SPECIFIC_FILM"
    GENERAL = "TYPE_3_GENERAL"


class Role(str, enum.Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ViewMode(str, enum.Enum):
    """Which list the results panel is showing."""

    RECOMMENDATIONS = "recommendations"
    WISHLIST = "wishlist"
    WATCHED = "watched"


class SessionPhase(str, enum.Enum):
    IDLE = "idle"
    AWAITING = "awaiting"


class FilterOption(BaseModel):
    """A suggestion chip attached to an assistant turn."""

    category: str = ""
    label: str = ""
    value: str = ""
    selected: bool = False


class ConversationTurn(BaseModel):
    """One chat message."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    role: Role
    text: str
    suggested_filters: list[FilterOption] | None = None

    @classmethod
    def user(cls, text: str) -> "ConversationTurn":
        return cls(role=Role.USER, text=text)

    @classmethod
    def assistant(
        cls,
        text: str,
        suggested_filters: list[FilterOption] | None = None,
    ) -> "ConversationTurn":
        return cls(role=Role.ASSISTANT, text=text, suggested_filters=suggested_filters)


class GenreRef(BaseModel):
    id: int
    name: str


class MediaItem(BaseModel):
    """A TMDB movie or TV item, normalised to a single shape."""

    id: int
    title: str = ""
    overview: str | None = None
    poster_path: str | None = None
    backdrop_path: str | None = None
    release_date: str | None = None
    vote_average: float = 0.0
    genre_ids: list[int] = Field(default_factory=list)
    media_type: MediaType = MediaType.MOVIE
    original_language: str | None = None

    # Detail fields, only filled by a details lookup
    director: str | None = None
    cast: list[str] | None = None
    genres: list[GenreRef] | None = None
    runtime: int | None = None

    # Personal rating (1-10) copied from the watched overlay
    user_rating: int | None = None

    @field_validator("vote_average", mode="before")
    @classmethod
    def _default_vote(cls, v: Any) -> Any:
        return 0.0 if v is None else v

    @field_validator("genre_ids", mode="before")
    @classmethod
    def _default_genres(cls, v: Any) -> Any:
        return [] if v is None else v

    @property
    def year(self) -> int | None:
        """Release year parsed from release_date."""
        if not self.release_date:
            return None
        head = self.release_date.split("-")[0]
        return int(head) if head.isdigit() else None


class UsageStats(BaseModel):
    """Token usage and cost of one LLM call."""

    provider_model: str
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    cost_estimate: float = 0.0
    wall_clock_ms: int = 0
    query_excerpt: str = ""
    timestamp: datetime = Field(default_factory=_now)


def _as_str_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if isinstance(value, (list, tuple)):
        return [str(v).strip() for v in value if v is not None and str(v).strip()]
    raise ValueError(f"expected a string or a list of strings, got {type(value).__name__}")


class SearchParameters(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    genres: list[str] = Field(default_factory=list)
    mood_keywords: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("mood_keywords", "mood"),
    )
    similar_to_title: str | None = Field(
        default=None,
        validation_alias=AliasChoices("similar_to_title", "similar_to_movie"),
    )
    keywords: list[str] = Field(default_factory=list)

    @field_validator("genres", "mood_keywords", "keywords", mode="before")
    @classmethod
    def _coerce_list(cls, v: Any) -> list[str]:
        return _as_str_list(v)

    @field_validator("similar_to_title", mode="before")
    @classmethod
    def _blank_to_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v


class SearchIntent(BaseModel):
    """Structured reading of one user request, produced by the analyzer."""

    model_config = ConfigDict(populate_by_name=True)

    query_type: QueryType = QueryType.GENERAL
    media_type: MediaType = MediaType.MOVIE
    recommended_titles: list[str] = Field(default_factory=list)
    search_parameters: SearchParameters = Field(default_factory=SearchParameters)
    reply_text: str = Field(
        default="",
        validation_alias=AliasChoices("reply_text", "chat_response"),
    )
    suggested_filters: list[FilterOption] = Field(default_factory=list)
    is_fallback: bool = Field(
        default=False,
        validation_alias=AliasChoices("is_fallback", "isFallback"),
    )
    usage: UsageStats | None = None

    @field_validator("query_type", mode="before")
    @classmethod
    def _coerce_query_type(cls, v: Any) -> Any:
        if v is None or (isinstance(v, str) and not v.strip()):
            return QueryType.GENERAL
        if isinstance(v, str):
            upper = v.strip().upper()
            name = _QUERY_TYPE_PREFIX.sub("", upper)
            for member in QueryType:
                if upper == member.value or name == member.name:
                    return member
            return QueryType.GENERAL
        return v

    @field_validator("media_type", mode="before")
    @classmethod
    def _coerce_media_type(cls, v: Any) -> Any:
        if v is None:
            return MediaType.MOVIE
        if isinstance(v, str):
            return _MEDIA_TYPE_ALIASES.get(v.strip().lower(), v)
        return v

    @field_validator("recommended_titles", mode="before")
    @classmethod
    def _coerce_titles(cls, v: Any) -> list[str]:
        return _as_str_list(v)

    @field_validator("search_parameters", "suggested_filters", mode="before")
    @classmethod
    def _null_to_default(cls, v: Any, info) -> Any:
        if v is None:
            return {} if info.field_name == "search_parameters" else []
        return v

    @property
    def is_generic(self) -> bool:
        """A general request carrying no titles, genres or keywords."""
        params = self.search_parameters
        return (
            self.query_type == QueryType.GENERAL
            and not self.recommended_titles
            and not params.genres
            and not params.keywords
        )


class HistoryFrame(BaseModel):
    """Snapshot taken before a destructive replace of the result set."""

    results: list[MediaItem]
    conversation: list[ConversationTurn]
    query_label: str
    view_mode: ViewMode
    media_type: MediaType = MediaType.MOVIE


class TestRunLogEntry(BaseModel):
    """One model call made for side-by-side comparison."""

    __test__ = False  # not a pytest test class

    id: str
    timestamp: datetime = Field(default_factory=_now)
    model_key: str
    model_label: str
    query: str
    result: SearchIntent | None = None
    error: str | None = None
    usage: UsageStats | None = None
    wall_clock_ms: int | None = None

    @property
    def pending(self) -> bool:
        return self.result is None and self.error is None


class ResultFilters(BaseModel):
    """Presentation filters over the visible list."""

    min_rating: float = 0.0
    year_from: int | None = None
    show_watched: bool = True


class AppSettings(BaseModel):
    """Flat device settings, persisted on every change."""

    provider: Literal["gemini", "perplexity"] = "perplexity"
    active_model: str = "gpt4"
    theme: Literal["dark", "light"] = "dark"
    language: Literal["ru", "en"] = "ru"


class UserProfile(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    email: str | None = None
    role: str = "user"


class MovieSummary(BaseModel):
    summary: str
    tone: str = "Unknown"
    spoiler_risk: float = 0.0

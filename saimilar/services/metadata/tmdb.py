"""TMDB integration: the media lookups the chat flow resolves intents into.

Every public method returns an empty list / None when TMDB is unreachable or
answers with an error, so callers never have to handle transport failures.
"""

import logging
import random
from typing import Any

import httpx

from saimilar.config import get_settings
from saimilar.constants import (
    ANIME_ORIGINAL_LANGUAGE,
    MAX_CAST_MEMBERS,
    MAX_RESULTS_PER_LOOKUP,
    RANDOM_DISCOVER_MAX_PAGE,
    RANDOM_DISCOVER_MIN_AVERAGE,
    RANDOM_DISCOVER_MIN_VOTES,
    TMDB_API_BASE_URL,
    TMDB_GENRE_ANIMATION,
)
from saimilar.models.schemas import GenreRef, MediaItem, MediaType
from saimilar.utils.cache import CACHE_TTL_DETAILS, CACHE_TTL_KEYWORDS, cached
from saimilar.utils.http_client import get_tmdb_client
from saimilar.utils.retry import RetryConfig, retry_async

logger = logging.getLogger(__name__)
settings = get_settings()

TMDB_RETRY_CONFIG = RetryConfig(max_retries=2, base_delay=0.5)

# Genre names as the analyzer tends to produce them -> TMDB genre ids
GENRE_IDS: dict[str, int] = {
    "action": 28,
    "adventure": 12,
    "animation": 16,
    "comedy": 35,
    "crime": 80,
    "documentary": 99,
    "drama": 18,
    "family": 10751,
    "fantasy": 14,
    "history": 36,
    "horror": 27,
    "music": 10402,
    "mystery": 9648,
    "romance": 10749,
    "science fiction": 878,
    "sci-fi": 878,
    "tv movie": 10770,
    "thriller": 53,
    "war": 10752,
    "western": 37,
    "action & adventure": 10759,
    "sci-fi & fantasy": 10765,
}


def tmdb_language(language: str) -> str:
    return "ru-RU" if language == "ru" else "en-US"


def genre_id(name: str) -> int | None:
    return GENRE_IDS.get(name.strip().lower())


def endpoint_type(media_type: MediaType) -> str:
    """TMDB has no anime endpoints; anime lives under tv."""
    return "movie" if media_type == MediaType.MOVIE else "tv"


def normalize_result(item: dict[str, Any]) -> MediaItem:
    """Movie and TV payloads differ in title/date keys; fold them into MediaItem."""
    is_movie = "title" in item
    return MediaItem(
        id=item["id"],
        title=item.get("title") or item.get("name") or "",
        overview=item.get("overview"),
        poster_path=item.get("poster_path"),
        backdrop_path=item.get("backdrop_path"),
        release_date=item.get("release_date") or item.get("first_air_date"),
        vote_average=item.get("vote_average"),
        genre_ids=item.get("genre_ids") or [g["id"] for g in item.get("genres", []) if "id" in g],
        media_type=MediaType.MOVIE if is_movie else MediaType.TV,
        original_language=item.get("original_language"),
    )


def is_anime(item: MediaItem) -> bool:
    return TMDB_GENRE_ANIMATION in item.genre_ids and item.original_language == ANIME_ORIGINAL_LANGUAGE


class TMDBService:
    """Search / discover / similar / details against TMDB v3."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        api_key: str | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._client = client
        self.api_key = settings.tmdb_api_key if api_key is None else api_key
        self._rng = rng or random.Random()
        # Support both API key v3 and Bearer token
        if self.api_key and self.api_key.startswith("eyJ"):
            self.headers = {
                "Authorization": f"Bearer {self.api_key}",
                "Accept": "application/json",
            }
            self.use_api_key_param = False
        else:
            self.headers = {"Accept": "application/json"}
            self.use_api_key_param = True

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client or get_tmdb_client()

    def _add_api_key(self, params: dict[str, str]) -> dict[str, str]:
        if self.use_api_key_param:
            params["api_key"] = self.api_key
        return params

    async def _get(self, endpoint: str, params: dict[str, str], language: str) -> dict[str, Any] | None:
        """GET an endpoint; None on any transport or HTTP failure."""
        if not self.api_key:
            return None

        query = self._add_api_key(
            {"language": tmdb_language(language), "include_adult": "false", **params}
        )
        try:
            response = await retry_async(
                self.client.get,
                f"{TMDB_API_BASE_URL}{endpoint}",
                params=query,
                headers=self.headers,
                config=TMDB_RETRY_CONFIG,
                operation_name=f"TMDB {endpoint}",
            )
        except httpx.HTTPError as e:
            logger.warning(f"TMDB {endpoint} failed: {e}")
            return None

        if response is None or response.status_code != 200:
            if response is not None:
                logger.warning(f"TMDB {endpoint} returned {response.status_code}")
            return None

        try:
            return response.json()
        except ValueError:
            logger.warning(f"TMDB {endpoint} returned a non-JSON body")
            return None

    def _results(self, data: dict[str, Any] | None) -> list[MediaItem]:
        if not data:
            return []
        return [normalize_result(item) for item in data.get("results") or [] if "id" in item]

    async def search(self, query: str, media_type: MediaType, language: str = "ru") -> list[MediaItem]:
        """Text search by title, most relevant first."""
        data = await self._get(f"/search/{endpoint_type(media_type)}", {"query": query}, language)
        results = self._results(data)
        if media_type == MediaType.ANIME:
            results = [m for m in results if is_anime(m)]
        return results[:MAX_RESULTS_PER_LOOKUP]

    async def resolve_id_by_title(self, title: str, media_type: MediaType, language: str = "ru") -> int | None:
        results = await self.search(title, media_type, language)
        return results[0].id if results else None

    async def fetch_by_titles(self, titles: list[str], media_type: MediaType, language: str = "ru") -> list[MediaItem]:
        """Best match per title, in title order, without duplicate ids."""
        found: list[MediaItem] = []
        seen: set[int] = set()
        for title in titles:
            matches = await self.search(title, media_type, language)
            if matches and matches[0].id not in seen:
                seen.add(matches[0].id)
                found.append(matches[0])
        return found

    async def discover(
        self,
        genres: list[str],
        keywords: list[str],
        media_type: MediaType,
        language: str = "ru",
    ) -> list[MediaItem]:
        """Popular titles filtered by genre names and free-text keywords."""
        params = {"sort_by": "popularity.desc"}
        genre_ids: list[int] = []

        if media_type == MediaType.ANIME:
            genre_ids.append(TMDB_GENRE_ANIMATION)
            params["with_original_language"] = ANIME_ORIGINAL_LANGUAGE
        else:
            genre_ids.extend(gid for gid in (genre_id(g) for g in genres) if gid is not None)

        if genre_ids:
            params["with_genres"] = ",".join(str(gid) for gid in genre_ids)

        keyword_ids = []
        for keyword in keywords:
            kid = await self._keyword_id(keyword)
            if kid is not None:
                keyword_ids.append(kid)
        if keyword_ids:
            params["with_keywords"] = "|".join(str(kid) for kid in keyword_ids)

        data = await self._get(f"/discover/{endpoint_type(media_type)}", params, language)
        return self._results(data)[:MAX_RESULTS_PER_LOOKUP]

    @cached("tmdb:keyword", ttl=CACHE_TTL_KEYWORDS)
    async def _keyword_id(self, keyword: str) -> int | None:
        data = await self._get("/search/keyword", {"query": keyword}, "en")
        results = (data or {}).get("results") or []
        return results[0]["id"] if results else None

    async def similar_to(self, media_id: int, media_type: MediaType, language: str = "ru") -> list[MediaItem]:
        data = await self._get(f"/{endpoint_type(media_type)}/{media_id}/recommendations", {}, language)
        return self._results(data)[:MAX_RESULTS_PER_LOOKUP]

    async def details(self, media_id: int, media_type: MediaType, language: str = "ru") -> MediaItem | None:
        """Full item with director/creator, top cast, genres and runtime."""
        data = await self._fetch_details(media_id, endpoint_type(media_type), language)
        if not data or not data.get("id"):
            return None

        item = normalize_result(data)
        if media_type == MediaType.ANIME:
            item.media_type = MediaType.ANIME

        credits = data.get("credits") or {}
        director = next(
            (c.get("name") for c in credits.get("crew", []) if c.get("job") in ("Director", "Executive Producer")),
            None,
        )
        runtime = data.get("runtime")
        if not runtime and data.get("episode_run_time"):
            runtime = data["episode_run_time"][0]

        return item.model_copy(
            update={
                "director": director,
                "cast": [c["name"] for c in credits.get("cast", [])[:MAX_CAST_MEMBERS] if "name" in c],
                "genres": [GenreRef(id=g["id"], name=g["name"]) for g in data.get("genres", [])],
                "runtime": runtime,
            }
        )

    @cached("tmdb:details", ttl=CACHE_TTL_DETAILS)
    async def _fetch_details(self, media_id: int, kind: str, language: str) -> dict[str, Any] | None:
        return await self._get(f"/{kind}/{media_id}", {"append_to_response": "credits"}, language)

    async def random_discover(self, media_type: MediaType, language: str = "ru") -> list[MediaItem]:
        """A shuffled page of well-rated popular titles."""
        params = {
            "sort_by": "popularity.desc",
            "page": str(self._rng.randint(1, RANDOM_DISCOVER_MAX_PAGE)),
            "vote_count.gte": str(RANDOM_DISCOVER_MIN_VOTES),
            "vote_average.gte": str(RANDOM_DISCOVER_MIN_AVERAGE),
        }
        if media_type == MediaType.ANIME:
            params["with_genres"] = str(TMDB_GENRE_ANIMATION)
            params["with_original_language"] = ANIME_ORIGINAL_LANGUAGE

        data = await self._get(f"/discover/{endpoint_type(media_type)}", params, language)
        results = self._results(data)
        if media_type == MediaType.ANIME:
            results = [m for m in results if is_anime(m)]

        self._rng.shuffle(results)
        return results[:MAX_RESULTS_PER_LOOKUP]


tmdb_service = TMDBService()

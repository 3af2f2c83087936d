"""Conversation and result state for one chat session.

``submit`` drives a single user request through analysis, media lookup and
merging into the visible result set. Every operation that starts a new line
of work bumps ``generation``; a response that comes back for an older
generation is dropped without touching state, so rapid input or a back /
reset mid-flight can never leave a stale result set on screen.
"""

import enum
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Protocol

from saimilar.constants import GREETING_TURN_ID, RATING_MAX, RATING_MIN
from saimilar.i18n import t
from saimilar.models.schemas import (
    AppSettings,
    ConversationTurn,
    FilterOption,
    HistoryFrame,
    MediaItem,
    MediaType,
    QueryType,
    ResultFilters,
    Role,
    SearchIntent,
    SessionPhase,
    UserProfile,
    ViewMode,
)
from saimilar.services.analyzer import QueryAnalyzer
from saimilar.services.errors import AuthRequiredError, OverlayStoreError
from saimilar.services.harness import ParallelTestHarness
from saimilar.services.overlay import OverlayCollection, UserOverlay
from saimilar.services.providers import MODEL_CATALOG, resolve_model
from saimilar.services.session import SessionContext
from saimilar.services.settings_store import JsonSettingsStore

logger = logging.getLogger(__name__)

TYPE_FILTER_KEYS = ("movies", "tv", "anime", "cartoons")
RANDOM_HISTORY_LABEL = "Random"


class MediaLookup(Protocol):
    async def search(self, query: str, media_type: MediaType, language: str = ...) -> list[MediaItem]: ...

    async def fetch_by_titles(
        self, titles: list[str], media_type: MediaType, language: str = ...
    ) -> list[MediaItem]: ...

    async def resolve_id_by_title(self, title: str, media_type: MediaType, language: str = ...) -> int | None: ...

    async def similar_to(self, media_id: int, media_type: MediaType, language: str = ...) -> list[MediaItem]: ...

    async def discover(
        self, genres: list[str], keywords: list[str], media_type: MediaType, language: str = ...
    ) -> list[MediaItem]: ...

    async def details(self, media_id: int, media_type: MediaType, language: str = ...) -> MediaItem | None: ...

    async def random_discover(self, media_type: MediaType, language: str = ...) -> list[MediaItem]: ...


class OverlayStore(Protocol):
    async def get_wishlist(self, user_id: int) -> list[MediaItem]: ...

    async def add_to_wishlist(self, user_id: int, item: MediaItem) -> None: ...

    async def remove_from_wishlist(self, user_id: int, media_id: int) -> None: ...

    async def get_watched(self, user_id: int) -> list[MediaItem]: ...

    async def add_to_watched(self, user_id: int, item: MediaItem, rating: int = ...) -> None: ...

    async def remove_from_watched(self, user_id: int, media_id: int) -> None: ...

    async def upsert_rating(self, user_id: int, item: MediaItem, rating: int) -> None: ...


class LookupStrategy(str, enum.Enum):
    RANDOM_DISCOVERY = "random_discovery"
    TITLES = "titles"
    SIMILAR = "similar"
    DISCOVER = "discover"
    EMPTY = "empty"


@dataclass(frozen=True)
class LookupPlan:
    strategy: LookupStrategy
    media_type: MediaType
    titles: tuple[str, ...] = ()
    similar_to: str | None = None
    genres: tuple[str, ...] = ()
    keywords: tuple[str, ...] = ()


def resolve_lookup_plan(intent: SearchIntent, is_refinement: bool) -> LookupPlan:
    """Pick the first lookup strategy the intent qualifies for."""
    params = intent.search_parameters
    media_type = intent.media_type

    if intent.is_generic and not is_refinement:
        return LookupPlan(LookupStrategy.RANDOM_DISCOVERY, media_type)
    if intent.recommended_titles:
        return LookupPlan(LookupStrategy.TITLES, media_type, titles=tuple(intent.recommended_titles))
    if intent.query_type == QueryType.SPECIFIC_FILM and params.similar_to_title:
        return LookupPlan(LookupStrategy.SIMILAR, media_type, similar_to=params.similar_to_title)
    if params.genres or params.keywords:
        return LookupPlan(
            LookupStrategy.DISCOVER,
            media_type,
            genres=tuple(params.genres),
            keywords=tuple(params.keywords),
        )
    return LookupPlan(LookupStrategy.EMPTY, media_type)


def dedupe(items: Iterable[MediaItem], seen: set[int] | None = None) -> list[MediaItem]:
    """Drop items whose id was already seen, keeping first occurrences in order."""
    seen = set() if seen is None else seen
    unique = []
    for item in items:
        if item.id not in seen:
            seen.add(item.id)
            unique.append(item)
    return unique


def compose_query(text: str, current_results: list[MediaItem], is_refinement: bool) -> str:
    if is_refinement and current_results:
        titles = ", ".join(item.title for item in current_results)
        return f"{text}. IMPORTANT: Exclude these titles: {titles}"
    return text


class RecommendationOrchestrator:
    """Owns the conversation, result set and navigation history of one session."""

    def __init__(
        self,
        session: SessionContext,
        analyzer: QueryAnalyzer,
        media: MediaLookup,
        store: OverlayStore,
        harness: ParallelTestHarness | None = None,
        settings_store: JsonSettingsStore | None = None,
    ) -> None:
        self.session = session
        self.analyzer = analyzer
        self.media = media
        self.store = store
        self.harness = harness
        self.settings_store = settings_store

        self.overlay = UserOverlay()
        self.conversation: list[ConversationTurn] = [self._greeting()]
        self.results: list[MediaItem] = []
        self.result_media_type = MediaType.MOVIE
        self.history: list[HistoryFrame] = []
        self.view_mode = ViewMode.RECOMMENDATIONS
        self.filters = ResultFilters()
        self.selected_item: MediaItem | None = None
        self.last_intent: SearchIntent | None = None

        self.phase = SessionPhase.IDLE
        self.is_typing = False
        self.is_loading_results = False
        self.is_loading_more = False
        self.generation = 0

    @property
    def language(self) -> str:
        return self.session.language

    # -------------------------------------------------------------------------
    # Chat flow
    # -------------------------------------------------------------------------

    async def submit(self, text: str, is_refinement: bool = False) -> SearchIntent | None:
        """Run one user request end to end.

        Returns the intent that was applied, or None when the request was a
        no-op, failed, or was superseded by a newer operation.
        """
        text = text.strip()
        if not text:
            return None

        token = self._begin()
        language = self.language
        history_snapshot = list(self.conversation)

        if self.session.test_mode and self.session.test_models and self.harness:
            self.harness.launch(text, history_snapshot, language, self.session.test_models)

        if not is_refinement and self.results:
            self._push_history(self._last_user_text() or text)

        self.view_mode = ViewMode.RECOMMENDATIONS
        if not is_refinement:
            self.conversation = [*self.conversation, ConversationTurn.user(text)]
            # A new topic starts without rating and year filters
            self.filters = self.filters.model_copy(update={"min_rating": 0.0, "year_from": None})

        self.phase = SessionPhase.AWAITING
        self.is_typing = True
        if is_refinement:
            self.is_loading_more = True
        else:
            self.is_loading_results = True

        try:
            query = compose_query(text, self.results, is_refinement)
            model_key = self.analyzer.choose_model(self.session.active_model)
            intent = await self.analyzer.analyze(query, history_snapshot, language, active_model=model_key)
            if self.harness:
                self.harness.log_main(text, intent, model_key)

            if not self._is_current(token):
                logger.info(f"Discarding stale analysis for {text[:40]!r}")
                return None

            if intent.is_fallback:
                return await self._apply_quota_fallback(token, text, intent, is_refinement)

            plan = resolve_lookup_plan(intent, is_refinement)
            logger.debug(f"Lookup plan {plan.strategy.value} for {plan.media_type.value}")
            items = await self._execute_plan(plan)
            if not self._is_current(token):
                logger.info(f"Discarding stale results for {text[:40]!r}")
                return None

            self._publish(self._with_ratings(items), is_refinement, intent.media_type)
            self.last_intent = intent
            if not is_refinement:
                filters = [f.model_copy(update={"selected": False}) for f in intent.suggested_filters]
                self.conversation = [
                    *self.conversation,
                    ConversationTurn.assistant(intent.reply_text, filters),
                ]
            return intent

        except Exception as e:
            logger.error(f"Request {text[:40]!r} failed: {e}")
            if self._is_current(token) and not is_refinement:
                self.conversation = [
                    *self.conversation,
                    ConversationTurn.assistant(t("chat.error_connection", language)),
                ]
            return None

        finally:
            if self._is_current(token):
                self._settle()

    async def _apply_quota_fallback(
        self,
        token: int,
        text: str,
        intent: SearchIntent,
        is_refinement: bool,
    ) -> SearchIntent | None:
        if is_refinement:
            return None

        items = await self.media.search(text, MediaType.MOVIE, self.language)
        if not self._is_current(token):
            return None

        self._publish(self._with_ratings(items), False, MediaType.MOVIE)
        self.last_intent = intent
        self.conversation = [*self.conversation, ConversationTurn.assistant(intent.reply_text)]
        return intent

    async def _execute_plan(self, plan: LookupPlan) -> list[MediaItem]:
        language = self.language
        strategy = plan.strategy

        if strategy == LookupStrategy.RANDOM_DISCOVERY:
            return await self.media.random_discover(plan.media_type, language)

        if strategy == LookupStrategy.TITLES:
            return await self.media.fetch_by_titles(list(plan.titles), plan.media_type, language)

        if strategy == LookupStrategy.SIMILAR:
            media_id = await self.media.resolve_id_by_title(plan.similar_to, plan.media_type, language)
            if media_id is not None:
                return await self.media.similar_to(media_id, plan.media_type, language)
            return await self.media.search(plan.similar_to, plan.media_type, language)

        if strategy == LookupStrategy.DISCOVER:
            return await self.media.discover(list(plan.genres), list(plan.keywords), plan.media_type, language)

        return []

    def _publish(self, items: list[MediaItem], is_refinement: bool, media_type: MediaType) -> None:
        if is_refinement:
            additions = dedupe(items, {item.id for item in self.results})
            self.results = [*self.results, *additions]
            return

        self.results = dedupe(items)
        self.result_media_type = media_type
        self.selected_item = None

    async def load_more(self) -> SearchIntent | None:
        return await self.submit(t("chat.load_more_prompt", self.language), is_refinement=True)

    async def apply_filter(self, option: FilterOption) -> SearchIntent | None:
        if option.category == "Type":
            return await self.submit(option.value or option.label)
        return await self.submit(f"{t('chat.applying_filter', self.language)} {option.label}")

    async def find_similar(self, item: MediaItem) -> SearchIntent | None:
        return await self.submit(f'{t("chat.find_similar", self.language)}: "{item.title}"')

    async def random_pick(self) -> list[MediaItem]:
        token = self._begin()
        language = self.language

        if self.results:
            self._push_history(RANDOM_HISTORY_LABEL)
        self.view_mode = ViewMode.RECOMMENDATIONS
        self.phase = SessionPhase.AWAITING
        self.is_typing = True
        self.is_loading_results = True

        try:
            items = await self.media.random_discover(MediaType.MOVIE, language)
            if not self._is_current(token):
                return []

            self._publish(self._with_ratings(items), False, MediaType.MOVIE)
            self.conversation = [
                *self.conversation,
                ConversationTurn.user(t("chat.random", language)),
                ConversationTurn.assistant(t("chat.random_search", language)),
            ]
            return list(self.results)
        finally:
            if self._is_current(token):
                self._settle()

    # -------------------------------------------------------------------------
    # Navigation
    # -------------------------------------------------------------------------

    def go_back(self) -> bool:
        """Restore the previous result set; False when there is nothing to restore."""
        if not self.history:
            return False

        frame = self.history.pop()
        self.generation += 1
        self.results = list(frame.results)
        self.conversation = list(frame.conversation)
        self.view_mode = frame.view_mode
        self.result_media_type = frame.media_type
        self.selected_item = None
        self._settle()
        return True

    def reset(self) -> None:
        self.generation += 1
        self.conversation = [self._greeting()]
        self.results = []
        self.result_media_type = MediaType.MOVIE
        self.history = []
        self.filters = ResultFilters()
        self.view_mode = ViewMode.RECOMMENDATIONS
        self.selected_item = None
        self.last_intent = None
        self._settle()

    def set_view_mode(self, mode: ViewMode) -> None:
        self.view_mode = mode

    def set_filters(self, **changes: Any) -> ResultFilters:
        self.filters = ResultFilters.model_validate({**self.filters.model_dump(), **changes})
        return self.filters

    def visible_items(self, filters: ResultFilters | None = None) -> list[MediaItem]:
        """The list for the current view mode with presentation filters applied."""
        filters = filters or self.filters
        watched = self.overlay.optimistic(OverlayCollection.WATCHED)

        if self.view_mode == ViewMode.WISHLIST:
            source = list(self.overlay.optimistic(OverlayCollection.WISHLIST).values())
        elif self.view_mode == ViewMode.WATCHED:
            source = list(watched.values())
        else:
            source = self.results

        visible = []
        for item in source:
            if item.vote_average < filters.min_rating:
                continue
            if filters.year_from is not None and (item.year or 0) < filters.year_from:
                continue
            if (
                self.view_mode == ViewMode.RECOMMENDATIONS
                and not filters.show_watched
                and item.id in watched
            ):
                continue
            visible.append(item)
        return visible

    # -------------------------------------------------------------------------
    # Details
    # -------------------------------------------------------------------------

    async def open_details(self, item: MediaItem) -> MediaItem:
        media_type = item.media_type or self.result_media_type
        details = await self.media.details(item.id, media_type, self.language)
        selected = details or item

        rating = self.overlay.rating_for(item.id) or self._result_rating(item.id) or item.user_rating
        if rating:
            selected = selected.model_copy(update={"user_rating": rating})

        self.selected_item = selected
        return selected

    def close_details(self) -> None:
        self.selected_item = None

    # -------------------------------------------------------------------------
    # Personal lists
    # -------------------------------------------------------------------------

    async def refresh_overlays(self) -> None:
        """Load the signed-in user's lists into the overlay."""
        user_id = self.session.user_id
        if user_id is None:
            self.overlay.clear()
            return

        wishlist = await self.store.get_wishlist(user_id)
        watched = await self.store.get_watched(user_id)
        if self.session.user_id != user_id:
            return

        self.overlay.load(OverlayCollection.WISHLIST, wishlist)
        self.overlay.load(OverlayCollection.WATCHED, watched)

    async def rate(self, item: MediaItem, score: int) -> MediaItem:
        """Give an item a 1-10 score; it leaves the wishlist and lands in watched."""
        user_id = self._require_user("rate")
        if not RATING_MIN <= score <= RATING_MAX:
            raise ValueError(f"Rating must be between {RATING_MIN} and {RATING_MAX}, got {score}")

        base = self.overlay.get(OverlayCollection.WATCHED, item.id) or item
        record = base.model_copy(update={"user_rating": score})

        wishlist_token = None
        if self.overlay.contains(OverlayCollection.WISHLIST, item.id):
            wishlist_token = self.overlay.remove(OverlayCollection.WISHLIST, item.id)
        watched_token = self.overlay.put(OverlayCollection.WATCHED, record)

        if self.selected_item and self.selected_item.id == item.id:
            self.selected_item = self.selected_item.model_copy(update={"user_rating": score})
        self.results = [
            r.model_copy(update={"user_rating": score}) if r.id == item.id else r
            for r in self.results
        ]

        failures: list[tuple[str, Exception]] = []
        if wishlist_token is not None:
            try:
                await self.store.remove_from_wishlist(user_id, item.id)
            except Exception as e:
                self.overlay.rollback(wishlist_token)
                failures.append(("remove_from_wishlist", e))
            else:
                self.overlay.commit(wishlist_token)

        try:
            await self.store.upsert_rating(user_id, record, score)
        except Exception as e:
            self.overlay.rollback(watched_token)
            failures.append(("upsert_rating", e))
        else:
            self.overlay.commit(watched_token)

        if failures:
            logger.error(f"Rating {item.id} for user {user_id} partially failed: {failures}")
            raise OverlayStoreError(failures)
        return record

    async def toggle_wishlist(self, item: MediaItem) -> bool:
        """Add or remove; returns whether the item is now on the wishlist."""
        user_id = self._require_user("edit the wishlist")
        if self.overlay.contains(OverlayCollection.WISHLIST, item.id):
            token = self.overlay.remove(OverlayCollection.WISHLIST, item.id)
            await self._reconcile(token, "remove_from_wishlist", self.store.remove_from_wishlist(user_id, item.id))
            return False

        token = self.overlay.put(OverlayCollection.WISHLIST, item)
        await self._reconcile(token, "add_to_wishlist", self.store.add_to_wishlist(user_id, item))
        return True

    async def toggle_watched(self, item: MediaItem) -> bool:
        """Mark or unmark as watched; returns whether the item is now watched."""
        user_id = self._require_user("edit the watched list")
        if self.overlay.contains(OverlayCollection.WATCHED, item.id):
            token = self.overlay.remove(OverlayCollection.WATCHED, item.id)
            await self._reconcile(token, "remove_from_watched", self.store.remove_from_watched(user_id, item.id))
            return False

        token = self.overlay.put(OverlayCollection.WATCHED, item.model_copy(update={"user_rating": None}))
        await self._reconcile(token, "add_to_watched", self.store.add_to_watched(user_id, item))
        return True

    async def _reconcile(self, token: int, operation: str, write) -> None:
        try:
            await write
        except Exception as e:
            self.overlay.rollback(token)
            logger.error(f"{operation} failed: {e}")
            raise OverlayStoreError([(operation, e)]) from e
        self.overlay.commit(token)

    # -------------------------------------------------------------------------
    # Session
    # -------------------------------------------------------------------------

    def on_auth_change(self, profile: UserProfile | None) -> None:
        """Drop everything tied to the previous user before anything else runs."""
        self.session.profile = profile
        self.overlay.clear()
        self.reset()

    def set_active_model(self, model_key: str) -> AppSettings:
        spec = resolve_model(model_key)
        if spec.key != model_key:
            logger.warning(f"Unknown model {model_key!r}, using {spec.key}")
        self.session.settings = self.session.settings.model_copy(
            update={"active_model": spec.key, "provider": spec.provider}
        )
        self._persist_settings()
        self.generation += 1
        self.conversation = [self._greeting()]
        self._settle()
        return self.session.settings

    def update_settings(self, **changes: Any) -> AppSettings:
        merged = {**self.session.settings.model_dump(), **changes}
        self.session.settings = AppSettings.model_validate(merged)
        self._persist_settings()
        return self.session.settings

    def set_test_mode(self, enabled: bool, model_keys: list[str] | None = None) -> None:
        self.session.test_mode = enabled
        if model_keys is not None:
            self.session.test_models = [key for key in model_keys if key in MODEL_CATALOG]

    async def aclose(self) -> None:
        if self.harness:
            await self.harness.aclose()

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _greeting(self) -> ConversationTurn:
        language = self.session.language
        filters = [
            FilterOption(category="Type", label=t(f"types.{key}", language), value=t(f"types.{key}", language))
            for key in TYPE_FILTER_KEYS
        ]
        return ConversationTurn(
            id=GREETING_TURN_ID,
            role=Role.ASSISTANT,
            text=t("chat.welcome", language),
            suggested_filters=filters,
        )

    def _begin(self) -> int:
        self.generation += 1
        return self.generation

    def _is_current(self, token: int) -> bool:
        return token == self.generation

    def _settle(self) -> None:
        self.phase = SessionPhase.IDLE
        self.is_typing = False
        self.is_loading_results = False
        self.is_loading_more = False

    def _push_history(self, label: str) -> None:
        self.history.append(
            HistoryFrame(
                results=list(self.results),
                conversation=list(self.conversation),
                query_label=label,
                view_mode=self.view_mode,
                media_type=self.result_media_type,
            )
        )

    def _last_user_text(self) -> str | None:
        for turn in reversed(self.conversation):
            if turn.role == Role.USER:
                return turn.text
        return None

    def _with_ratings(self, items: list[MediaItem]) -> list[MediaItem]:
        rated = []
        for item in items:
            rating = self.overlay.rating_for(item.id)
            rated.append(item.model_copy(update={"user_rating": rating}) if rating else item)
        return rated

    def _result_rating(self, media_id: int) -> int | None:
        for item in self.results:
            if item.id == media_id and item.user_rating:
                return item.user_rating
        return None

    def _require_user(self, action: str) -> int:
        user_id = self.session.user_id
        if user_id is None:
            raise AuthRequiredError(action)
        return user_id

    def _persist_settings(self) -> None:
        if self.settings_store:
            self.settings_store.save(self.session.settings)

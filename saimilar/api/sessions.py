"""One orchestrator per browser session, keyed by an id kept in the session cookie."""

import logging
import time
import uuid
from collections import OrderedDict
from collections.abc import Callable
from typing import Annotated

from fastapi import Depends, Request

from saimilar.auth import get_optional_user
from saimilar.constants import CHAT_SESSION_IDLE_SECONDS, MAX_CHAT_SESSIONS
from saimilar.db.crud import SqlOverlayStore
from saimilar.models.schemas import UserProfile
from saimilar.models.user import User
from saimilar.services.analyzer import QueryAnalyzer
from saimilar.services.harness import ParallelTestHarness
from saimilar.services.metadata import tmdb_service
from saimilar.services.orchestrator import RecommendationOrchestrator
from saimilar.services.providers import ProviderRegistry
from saimilar.services.session import SessionContext
from saimilar.services.settings_store import JsonSettingsStore
from saimilar.services.summaries import SummaryService

logger = logging.getLogger(__name__)

SESSION_ID_KEY = "sid"

provider_registry = ProviderRegistry()
summary_service = SummaryService(provider_registry)


def build_orchestrator(session_id: str) -> RecommendationOrchestrator:
    settings_store = JsonSettingsStore.for_session(session_id)
    analyzer = QueryAnalyzer(provider_registry)
    return RecommendationOrchestrator(
        session=SessionContext(settings=settings_store.load()),
        analyzer=analyzer,
        media=tmdb_service,
        store=SqlOverlayStore(),
        harness=ParallelTestHarness(analyzer),
        settings_store=settings_store,
    )


class OrchestratorRegistry:
    """Live orchestrators by session id, least recently used first.

    Sessions idle for longer than ``idle_seconds`` are closed on the next
    lookup, and the least recently used one is closed when a new session would
    exceed ``max_sessions``. A returning browser gets a fresh orchestrator with
    its persisted settings.
    """

    def __init__(
        self,
        factory: Callable[[str], RecommendationOrchestrator] = build_orchestrator,
        idle_seconds: float = CHAT_SESSION_IDLE_SECONDS,
        max_sessions: int = MAX_CHAT_SESSIONS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._factory = factory
        self.idle_seconds = idle_seconds
        self.max_sessions = max_sessions
        self._clock = clock
        self._sessions: OrderedDict[str, RecommendationOrchestrator] = OrderedDict()
        self._last_seen: dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    async def get(self, session_id: str) -> RecommendationOrchestrator:
        now = self._clock()
        await self._evict_idle(now)

        orchestrator = self._sessions.get(session_id)
        if orchestrator is None:
            while len(self._sessions) >= self.max_sessions:
                oldest = next(iter(self._sessions))
                logger.info(f"Chat session limit reached, closing {oldest}")
                await self.drop(oldest)
            orchestrator = self._factory(session_id)
            self._sessions[session_id] = orchestrator
            logger.debug(f"Created chat session {session_id}")
        else:
            self._sessions.move_to_end(session_id)

        self._last_seen[session_id] = now
        return orchestrator

    async def _evict_idle(self, now: float) -> None:
        for session_id in list(self._sessions):
            if now - self._last_seen.get(session_id, now) < self.idle_seconds:
                break
            logger.debug(f"Closing idle chat session {session_id}")
            await self.drop(session_id)

    async def drop(self, session_id: str) -> None:
        orchestrator = self._sessions.pop(session_id, None)
        self._last_seen.pop(session_id, None)
        if orchestrator is not None:
            await orchestrator.aclose()

    async def aclose(self) -> None:
        for session_id in list(self._sessions):
            await self.drop(session_id)


orchestrators = OrchestratorRegistry()


def get_registry() -> OrchestratorRegistry:
    return orchestrators


async def get_orchestrator(
    request: Request,
    user: Annotated[User | None, Depends(get_optional_user)],
    registry: Annotated[OrchestratorRegistry, Depends(get_registry)],
) -> RecommendationOrchestrator:
    """The caller's orchestrator, resynchronised when the signed-in user changed."""
    session_id = request.session.get(SESSION_ID_KEY)
    if not session_id:
        session_id = uuid.uuid4().hex
        request.session[SESSION_ID_KEY] = session_id

    orchestrator = await registry.get(session_id)
    user_id = user.id if user else None
    if orchestrator.session.user_id != user_id:
        orchestrator.on_auth_change(UserProfile.model_validate(user) if user else None)
        await orchestrator.refresh_overlays()
    return orchestrator

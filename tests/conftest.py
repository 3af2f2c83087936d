"""Pytest configuration and fixtures."""

import os

os.environ.setdefault("APP_SECRET_KEY", "test-secret-key-with-at-least-32-characters")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from collections.abc import AsyncGenerator  # noqa: E402
from unittest.mock import AsyncMock, MagicMock  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from saimilar.api.sessions import OrchestratorRegistry, get_registry  # noqa: E402
from saimilar.auth.dependencies import get_current_user, get_optional_user  # noqa: E402
from saimilar.db.crud import SqlOverlayStore  # noqa: E402
from saimilar.db.database import get_db  # noqa: E402
from saimilar.main import app  # noqa: E402
from saimilar.models.base import Base  # noqa: E402
from saimilar.models.schemas import AppSettings, MediaItem, MediaType, SearchIntent  # noqa: E402
from saimilar.models.user import User  # noqa: E402
from saimilar.services.analyzer import QueryAnalyzer  # noqa: E402
from saimilar.services.harness import ParallelTestHarness  # noqa: E402
from saimilar.services.orchestrator import RecommendationOrchestrator  # noqa: E402
from saimilar.services.session import SessionContext  # noqa: E402
from saimilar.services.settings_store import JsonSettingsStore  # noqa: E402

# Test database URL (uses SQLite for testing)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# One shared connection so every session sees the same in-memory database
test_engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    poolclass=StaticPool,
)

test_session_maker = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


class FakeMediaLookup:
    """In-memory stand-in for the TMDB service that records every call."""

    def __init__(self) -> None:
        self.by_query: dict[str, list[MediaItem]] = {}
        self.similar: dict[int, list[MediaItem]] = {}
        self.discovered: list[MediaItem] = []
        self.random: list[MediaItem] = []
        self.detailed: dict[int, MediaItem] = {}
        self.calls: list[tuple] = []

    async def search(self, query: str, media_type: MediaType, language: str = "ru") -> list[MediaItem]:
        self.calls.append(("search", query, media_type))
        return list(self.by_query.get(query.lower(), []))

    async def fetch_by_titles(self, titles: list[str], media_type: MediaType, language: str = "ru") -> list[MediaItem]:
        self.calls.append(("fetch_by_titles", tuple(titles), media_type))
        found, seen = [], set()
        for title in titles:
            matches = self.by_query.get(title.lower(), [])
            if matches and matches[0].id not in seen:
                seen.add(matches[0].id)
                found.append(matches[0])
        return found

    async def resolve_id_by_title(self, title: str, media_type: MediaType, language: str = "ru") -> int | None:
        self.calls.append(("resolve_id_by_title", title, media_type))
        matches = self.by_query.get(title.lower(), [])
        return matches[0].id if matches else None

    async def similar_to(self, media_id: int, media_type: MediaType, language: str = "ru") -> list[MediaItem]:
        self.calls.append(("similar_to", media_id, media_type))
        return list(self.similar.get(media_id, []))

    async def discover(
        self, genres: list[str], keywords: list[str], media_type: MediaType, language: str = "ru"
    ) -> list[MediaItem]:
        self.calls.append(("discover", tuple(genres), tuple(keywords), media_type))
        return list(self.discovered)

    async def details(self, media_id: int, media_type: MediaType, language: str = "ru") -> MediaItem | None:
        self.calls.append(("details", media_id, media_type))
        return self.detailed.get(media_id)

    async def random_discover(self, media_type: MediaType, language: str = "ru") -> list[MediaItem]:
        self.calls.append(("random_discover", media_type))
        return list(self.random)

    def called(self, name: str) -> list[tuple]:
        return [call for call in self.calls if call[0] == name]


def make_item(media_id: int, title: str | None = None, **fields) -> MediaItem:
    return MediaItem(id=media_id, title=title or f"Title {media_id}", **fields)


@pytest.fixture
def item_factory():
    return make_item


@pytest.fixture
def media() -> FakeMediaLookup:
    return FakeMediaLookup()


@pytest.fixture
def analyzer() -> MagicMock:
    """QueryAnalyzer double; queue intents with ``analyzer.analyze.side_effect``."""
    mock = MagicMock(spec=QueryAnalyzer)
    mock.choose_model.side_effect = lambda active, override=None: override or active or "gemini"
    mock.analyze = AsyncMock(return_value=SearchIntent(reply_text="ok"))
    mock.run = AsyncMock(return_value=SearchIntent(reply_text="ok"))
    return mock


@pytest.fixture
def overlay_store() -> AsyncMock:
    store = AsyncMock(spec=SqlOverlayStore)
    store.get_wishlist.return_value = []
    store.get_watched.return_value = []
    return store


@pytest.fixture
def session_context() -> SessionContext:
    return SessionContext(settings=AppSettings(language="en", active_model="gemini"))


@pytest.fixture
def orchestrator(
    session_context: SessionContext,
    analyzer: MagicMock,
    media: FakeMediaLookup,
    overlay_store: AsyncMock,
) -> RecommendationOrchestrator:
    return RecommendationOrchestrator(
        session=session_context,
        analyzer=analyzer,
        media=media,
        store=overlay_store,
    )


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with test_session_maker() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def test_user(db_session: AsyncSession) -> User:
    """Create a test user for authenticated tests."""
    user = User(
        username="testuser",
        email="test@example.com",
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture
async def admin_user(db_session: AsyncSession) -> User:
    user = User(
        username="adminuser",
        email="admin@example.com",
        role="admin",
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest.fixture
def api_registry(tmp_path, analyzer: MagicMock, media: FakeMediaLookup) -> OrchestratorRegistry:
    """Session registry whose orchestrators use the test doubles and the test database."""

    def factory(session_id: str) -> RecommendationOrchestrator:
        settings_store = JsonSettingsStore.for_session(session_id, tmp_path)
        return RecommendationOrchestrator(
            session=SessionContext(settings=settings_store.load()),
            analyzer=analyzer,
            media=media,
            store=SqlOverlayStore(test_session_maker),
            harness=ParallelTestHarness(analyzer, delay=0),
            settings_store=settings_store,
        )

    return OrchestratorRegistry(factory)


def _client_for(api_registry: OrchestratorRegistry, db_session: AsyncSession, user: User | None) -> AsyncClient:
    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_registry] = lambda: api_registry
    if user is not None:
        app.dependency_overrides[get_current_user] = lambda: user
        app.dependency_overrides[get_optional_user] = lambda: user

    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession, api_registry: OrchestratorRegistry
) -> AsyncGenerator[AsyncClient, None]:
    """Create an unauthenticated test client."""
    async with _client_for(api_registry, db_session, None) as ac:
        yield ac

    await api_registry.aclose()
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def authenticated_client(
    db_session: AsyncSession, test_user: User, api_registry: OrchestratorRegistry
) -> AsyncGenerator[AsyncClient, None]:
    """Create an authenticated test client with a test user."""
    async with _client_for(api_registry, db_session, test_user) as ac:
        yield ac

    await api_registry.aclose()
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def admin_client(
    db_session: AsyncSession, admin_user: User, api_registry: OrchestratorRegistry
) -> AsyncGenerator[AsyncClient, None]:
    async with _client_for(api_registry, db_session, admin_user) as ac:
        yield ac

    await api_registry.aclose()
    app.dependency_overrides.clear()


@pytest.fixture
def sql_store(db_session: AsyncSession) -> SqlOverlayStore:
    """Overlay store on the test database (tables are created by db_session)."""
    return SqlOverlayStore(test_session_maker)

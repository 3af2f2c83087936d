"""Tests for spoiler-free summaries and settings persistence."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from saimilar.models.schemas import AppSettings, MediaItem, MovieSummary, UsageStats
from saimilar.services.providers import ProviderCallError, ProviderRegistry, ProviderResponse
from saimilar.services.settings_store import JsonSettingsStore
from saimilar.services.summaries import SummaryService, summary_cache_key


def _summary_response(summary: str) -> ProviderResponse:
    return ProviderResponse(
        text="{}",
        usage=UsageStats(provider_model="Test"),
        data={"summary": summary, "tone": "Tense", "spoiler_risk": 0.1},
    )


@pytest.fixture
def providers() -> MagicMock:
    registry = MagicMock(spec=ProviderRegistry)
    registry.invoke = AsyncMock()
    return registry


@pytest.fixture
def fake_cache():
    with patch("saimilar.services.summaries.cache") as mock_cache:
        mock_cache.get_model = AsyncMock(return_value=None)
        mock_cache.set = AsyncMock(return_value=True)
        yield mock_cache


ITEM = MediaItem(id=603, title="The Matrix", overview="A hacker learns the truth.")


class TestSummaryService:
    """Tests for SummaryService.generate."""

    @pytest.mark.asyncio
    async def test_cache_hit_skips_provider(self, providers, fake_cache):
        fake_cache.get_model.return_value = MovieSummary(summary="cached", tone="Cool", spoiler_risk=0)

        summary = await SummaryService(providers).generate(ITEM, "en")

        assert summary.summary == "cached"
        providers.invoke.assert_not_awaited()
        fake_cache.get_model.assert_awaited_once_with("summary:603:en", MovieSummary)

    @pytest.mark.asyncio
    async def test_perplexity_failure_falls_back_to_gemini(self, providers, fake_cache):
        providers.invoke.side_effect = [ProviderCallError("down", model_key="sonar"), _summary_response("Fresh")]

        summary = await SummaryService(providers).generate(ITEM, "ru", provider="perplexity")

        assert summary.summary == "Fresh"
        keys = [call.args[0].model_key for call in providers.invoke.await_args_list]
        assert keys == ["sonar", "gemini"]
        assert fake_cache.set.await_args.args[0] == summary_cache_key(603, "ru")

    @pytest.mark.asyncio
    async def test_total_failure_returns_overview(self, providers, fake_cache):
        providers.invoke.side_effect = ProviderCallError("down", model_key="gemini")

        summary = await SummaryService(providers).generate(ITEM, "en")

        assert summary.summary == "A hacker learns the truth."
        assert summary.tone == "Unknown"
        fake_cache.set.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_overview_uses_localized_placeholder(self, providers, fake_cache):
        providers.invoke.side_effect = ProviderCallError("down", model_key="gemini")

        summary = await SummaryService(providers).generate(MediaItem(id=1, title="X"), "en")

        assert summary.summary == "No summary available."


class TestJsonSettingsStore:
    def test_missing_file_gives_defaults(self, tmp_path):
        settings = JsonSettingsStore(tmp_path / "missing.json").load()

        assert settings.theme == "dark"
        assert settings.language == "ru"

    def test_save_then_load(self, tmp_path):
        store = JsonSettingsStore(tmp_path / "settings.json")

        store.save(AppSettings(language="en", theme="light", active_model="claude"))

        loaded = store.load()
        assert loaded.language == "en"
        assert loaded.theme == "light"
        assert loaded.active_model == "claude"

    def test_corrupt_file_gives_defaults(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text("{not json", encoding="utf-8")

        assert JsonSettingsStore(path).load().theme == "dark"

    def test_partial_file_is_merged_with_defaults(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text('{"theme": "light"}', encoding="utf-8")

        loaded = JsonSettingsStore(path).load()

        assert loaded.theme == "light"
        assert loaded.language == "ru"

    def test_save_creates_settings_directory(self, tmp_path):
        store = JsonSettingsStore.for_session("abc", tmp_path / "sessions")

        store.save(AppSettings(language="en"))

        assert (tmp_path / "sessions" / "abc.json").exists()

    def test_stored_credentials_are_not_loaded(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text('{"language": "en", "api_keys": {"gemini": "secret"}}', encoding="utf-8")

        loaded = JsonSettingsStore(path).load()

        assert loaded.language == "en"
        assert "api_keys" not in loaded.model_dump()

"""Tests for the chat session state machine."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from saimilar.models.schemas import (
    FilterOption,
    MediaType,
    QueryType,
    ResultFilters,
    Role,
    SearchIntent,
    SearchParameters,
    SessionPhase,
    UserProfile,
    ViewMode,
)
from saimilar.services.analyzer import QueryAnalyzer
from saimilar.services.errors import AuthRequiredError, OverlayStoreError
from saimilar.services.harness import ParallelTestHarness
from saimilar.services.orchestrator import (
    LookupStrategy,
    RecommendationOrchestrator,
    compose_query,
    dedupe,
    resolve_lookup_plan,
)
from saimilar.services.overlay import OverlayCollection
from saimilar.services.providers import ProviderRegistry, QuotaExceededError


def _titles_intent(*titles: str, reply: str = "Here you go", **fields) -> SearchIntent:
    return SearchIntent(
        query_type=QueryType.DESCRIPTIVE,
        recommended_titles=list(titles),
        reply_text=reply,
        **fields,
    )


def _sign_in(orchestrator: RecommendationOrchestrator, user_id: int = 1) -> None:
    orchestrator.on_auth_change(UserProfile(id=user_id, username="viewer"))


class TestLookupPlan:
    """Strategy precedence."""

    def test_generic_fresh_query_is_random(self):
        plan = resolve_lookup_plan(SearchIntent(query_type=QueryType.GENERAL), is_refinement=False)
        assert plan.strategy == LookupStrategy.RANDOM_DISCOVERY

    def test_generic_refinement_is_not_random(self):
        plan = resolve_lookup_plan(SearchIntent(query_type=QueryType.GENERAL), is_refinement=True)
        assert plan.strategy == LookupStrategy.EMPTY

    def test_titles_win_over_similar(self):
        intent = SearchIntent(
            query_type=QueryType.SPECIFIC_FILM,
            recommended_titles=["Heat"],
            search_parameters=SearchParameters(similar_to_title="Collateral"),
        )
        assert resolve_lookup_plan(intent, False).strategy == LookupStrategy.TITLES

    def test_similar_requires_specific_film(self):
        params = SearchParameters(similar_to_title="Collateral", genres=["crime"])
        specific = SearchIntent(query_type=QueryType.SPECIFIC_FILM, search_parameters=params)
        descriptive = SearchIntent(query_type=QueryType.DESCRIPTIVE, search_parameters=params)

        assert resolve_lookup_plan(specific, False).strategy == LookupStrategy.SIMILAR
        assert resolve_lookup_plan(descriptive, False).strategy == LookupStrategy.DISCOVER


class TestHelpers:
    def test_dedupe_is_idempotent(self, item_factory):
        items = [item_factory(1), item_factory(2), item_factory(1), item_factory(3)]

        once = dedupe(items)

        assert [i.id for i in once] == [1, 2, 3]
        assert dedupe(once) == once

    def test_refinement_query_lists_current_titles(self, item_factory):
        query = compose_query("more", [item_factory(1, "Alien"), item_factory(2, "Aliens")], True)
        assert query == "more. IMPORTANT: Exclude these titles: Alien, Aliens"

    def test_fresh_query_is_unchanged(self, item_factory):
        assert compose_query("space", [item_factory(1)], False) == "space"


class TestSubmit:
    """Tests for fresh submissions."""

    @pytest.mark.asyncio
    async def test_initial_state_has_greeting_with_type_chips(self, orchestrator):
        greeting = orchestrator.conversation[0]

        assert len(orchestrator.conversation) == 1
        assert greeting.id == "init"
        assert greeting.role == Role.ASSISTANT
        assert [f.category for f in greeting.suggested_filters] == ["Type"] * 4

    @pytest.mark.asyncio
    async def test_fresh_query_publishes_titles_in_order(self, orchestrator, analyzer, media, item_factory):
        media.by_query = {"titanic": [item_factory(597, "Titanic")], "cast away": [item_factory(8358, "Cast Away")]}
        filters = [FilterOption(category="Genre", label="Drama", value="drama", selected=True)]
        analyzer.analyze.return_value = _titles_intent("Titanic", "Nope", "Cast Away", suggested_filters=filters)

        intent = await orchestrator.submit("shipwrecks")

        assert intent is not None
        assert [i.id for i in orchestrator.results] == [597, 8358]
        assert [t.role for t in orchestrator.conversation] == [Role.ASSISTANT, Role.USER, Role.ASSISTANT]
        assert orchestrator.conversation[-1].text == "Here you go"
        assert orchestrator.conversation[-1].suggested_filters[0].selected is False
        assert orchestrator.phase == SessionPhase.IDLE
        assert not orchestrator.is_typing and not orchestrator.is_loading_results
        assert orchestrator.history == []

    @pytest.mark.asyncio
    async def test_blank_text_is_ignored(self, orchestrator, analyzer):
        assert await orchestrator.submit("   ") is None
        analyzer.analyze.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_history_snapshot_before_replacing_results(self, orchestrator, analyzer, media, item_factory):
        """A fresh query with results on screen pushes exactly one restorable frame."""
        media.by_query = {"alien": [item_factory(348, "Alien")], "heat": [item_factory(949, "Heat")]}
        analyzer.analyze.side_effect = [_titles_intent("Alien"), _titles_intent("Heat")]

        await orchestrator.submit("space horror")
        results_before = list(orchestrator.results)
        conversation_before = list(orchestrator.conversation)

        await orchestrator.submit("heist movies")

        assert len(orchestrator.history) == 1
        frame = orchestrator.history[0]
        assert frame.results == results_before
        assert frame.conversation == conversation_before
        assert frame.query_label == "space horror"
        assert [i.id for i in orchestrator.results] == [949]

        assert orchestrator.go_back() is True
        assert orchestrator.results == results_before
        assert orchestrator.conversation == conversation_before
        assert orchestrator.history == []

    @pytest.mark.asyncio
    async def test_back_restores_frames_last_in_first_out(self, orchestrator, analyzer, media, item_factory):
        """Each go_back restores the results, conversation and view mode of its own frame."""
        media.by_query = {
            "alien": [item_factory(348, "Alien")],
            "heat": [item_factory(949, "Heat")],
            "up": [item_factory(14160, "Up")],
        }
        analyzer.analyze.side_effect = [_titles_intent("Alien"), _titles_intent("Heat"), _titles_intent("Up")]

        await orchestrator.submit("space horror")
        first = (list(orchestrator.results), list(orchestrator.conversation))
        orchestrator.set_view_mode(ViewMode.WISHLIST)

        await orchestrator.submit("heist movies")
        second = (list(orchestrator.results), list(orchestrator.conversation))
        orchestrator.set_view_mode(ViewMode.WATCHED)

        await orchestrator.submit("pixar")
        assert orchestrator.view_mode == ViewMode.RECOMMENDATIONS
        assert len(orchestrator.history) == 2

        assert orchestrator.go_back() is True
        assert (orchestrator.results, orchestrator.conversation) == second
        assert orchestrator.view_mode == ViewMode.WATCHED

        assert orchestrator.go_back() is True
        assert (orchestrator.results, orchestrator.conversation) == first
        assert orchestrator.view_mode == ViewMode.WISHLIST
        assert [i.id for i in orchestrator.results] == [348]
        assert orchestrator.history == []

    @pytest.mark.asyncio
    async def test_new_topic_clears_rating_and_year_filters(self, orchestrator, analyzer, media, item_factory):
        media.by_query = {"jaws 2": [item_factory(579, "Jaws 2", vote_average=5.9, release_date="1978-06-16")]}
        analyzer.analyze.return_value = _titles_intent("Jaws 2")
        orchestrator.set_filters(min_rating=8, year_from=2000, show_watched=False)

        await orchestrator.submit("shark sequels")

        assert orchestrator.filters.min_rating == 0
        assert orchestrator.filters.year_from is None
        assert orchestrator.filters.show_watched is False
        assert [i.id for i in orchestrator.visible_items()] == [579]

    @pytest.mark.asyncio
    async def test_refinement_keeps_filters(self, orchestrator, analyzer, media, item_factory):
        media.by_query = {"alien": [item_factory(348, "Alien", vote_average=8.5)]}
        analyzer.analyze.return_value = _titles_intent("Alien")
        await orchestrator.submit("space horror")
        orchestrator.set_filters(min_rating=7)

        await orchestrator.load_more()

        assert orchestrator.filters.min_rating == 7

    @pytest.mark.asyncio
    async def test_fresh_query_with_no_matches_clears_results(self, orchestrator, analyzer, media, item_factory):
        media.by_query = {"alien": [item_factory(348, "Alien")]}
        analyzer.analyze.side_effect = [_titles_intent("Alien"), _titles_intent("Nothing Matches")]

        await orchestrator.submit("space horror")
        await orchestrator.submit("something obscure")

        assert orchestrator.results == []
        assert len(orchestrator.history) == 1

    @pytest.mark.asyncio
    async def test_generic_query_uses_random_discovery(self, orchestrator, analyzer, media, item_factory):
        media.random = [item_factory(i) for i in range(1, 11)]
        analyzer.analyze.return_value = SearchIntent(
            query_type=QueryType.GENERAL, media_type=MediaType.TV, reply_text="Some picks"
        )

        await orchestrator.submit("recommend something")

        assert media.called("random_discover") == [("random_discover", MediaType.TV)]
        assert len(orchestrator.results) == 10
        assert orchestrator.result_media_type == MediaType.TV

    @pytest.mark.asyncio
    async def test_similar_falls_back_to_text_search(self, orchestrator, analyzer, media, item_factory):
        analyzer.analyze.return_value = SearchIntent(
            query_type=QueryType.SPECIFIC_FILM,
            search_parameters=SearchParameters(similar_to_title="Obscure Film"),
        )
        media.by_query = {}

        await orchestrator.submit("like Obscure Film")

        assert media.called("resolve_id_by_title")
        assert media.called("search")[-1][1] == "Obscure Film"
        assert media.called("similar_to") == []

    @pytest.mark.asyncio
    async def test_similar_uses_recommendations(self, orchestrator, analyzer, media, item_factory):
        media.by_query = {"heat": [item_factory(949, "Heat")]}
        media.similar = {949: [item_factory(1, "Collateral"), item_factory(2, "Thief")]}
        analyzer.analyze.return_value = SearchIntent(
            query_type=QueryType.SPECIFIC_FILM,
            search_parameters=SearchParameters(similar_to_title="Heat"),
        )

        await orchestrator.submit("like Heat")

        assert [i.title for i in orchestrator.results] == ["Collateral", "Thief"]

    @pytest.mark.asyncio
    async def test_unexpected_failure_appends_one_error_turn(self, orchestrator, analyzer, media, item_factory):
        media.by_query = {"alien": [item_factory(348, "Alien")]}
        analyzer.analyze.side_effect = [_titles_intent("Alien"), RuntimeError("network down")]
        await orchestrator.submit("space horror")
        results_before = list(orchestrator.results)

        assert await orchestrator.submit("heists") is None

        assert orchestrator.results == results_before
        assert orchestrator.conversation[-2].text == "heists"
        assert orchestrator.conversation[-1].role == Role.ASSISTANT
        assert orchestrator.conversation[-1].text == "Connection trouble. Please try again."
        assert orchestrator.phase == SessionPhase.IDLE


class TestRefinement:
    """Tests for load-more style submissions."""

    @pytest.mark.asyncio
    async def test_refinement_only_appends_unseen(self, orchestrator, analyzer, media, item_factory):
        """Existing items keep their position; the result grows by the new ids only."""
        media.by_query = {
            "alien": [item_factory(348, "Alien")],
            "aliens": [item_factory(679, "Aliens")],
            "prometheus": [item_factory(70981, "Prometheus")],
        }
        analyzer.analyze.side_effect = [
            _titles_intent("Alien", "Aliens"),
            _titles_intent("Aliens", "Prometheus", "Alien"),
        ]
        await orchestrator.submit("space horror")
        conversation_before = list(orchestrator.conversation)

        await orchestrator.load_more()

        assert [i.id for i in orchestrator.results] == [348, 679, 70981]
        assert orchestrator.conversation == conversation_before
        assert orchestrator.history == []
        query = analyzer.analyze.await_args_list[-1].args[0]
        assert "IMPORTANT: Exclude these titles: Alien, Aliens" in query

    @pytest.mark.asyncio
    async def test_refinement_failure_is_silent(self, orchestrator, analyzer, media, item_factory):
        media.by_query = {"alien": [item_factory(348, "Alien")]}
        analyzer.analyze.side_effect = [_titles_intent("Alien"), RuntimeError("boom")]
        await orchestrator.submit("space horror")
        conversation_before = list(orchestrator.conversation)

        await orchestrator.load_more()

        assert orchestrator.conversation == conversation_before
        assert [i.id for i in orchestrator.results] == [348]
        assert not orchestrator.is_loading_more


class TestQuotaFallback:
    """Quota exhaustion degrades to a plain title search."""

    @pytest.mark.asyncio
    async def test_quota_fallback_scenario(self, session_context, media, overlay_store, item_factory):
        providers = MagicMock(spec=ProviderRegistry)
        providers.invoke = AsyncMock(side_effect=QuotaExceededError("429", model_key="gemini", status_code=429))
        orchestrator = RecommendationOrchestrator(
            session=session_context,
            analyzer=QueryAnalyzer(providers, default_model="gemini"),
            media=media,
            store=overlay_store,
        )
        media.by_query = {"inception": [item_factory(27205, "Inception")]}

        intent = await orchestrator.submit("Inception")

        assert intent.is_fallback
        assert media.called("search") == [("search", "Inception", MediaType.MOVIE)]
        assert [i.id for i in orchestrator.results] == [27205]
        assert "quota" in orchestrator.conversation[-1].text.lower()
        assert providers.invoke.await_count == 1

    @pytest.mark.asyncio
    async def test_quota_fallback_on_refinement_changes_nothing(self, orchestrator, analyzer, media, item_factory):
        media.by_query = {"alien": [item_factory(348, "Alien")]}
        analyzer.analyze.side_effect = [
            _titles_intent("Alien"),
            SearchIntent(reply_text="overloaded", is_fallback=True),
        ]
        await orchestrator.submit("space horror")
        conversation_before = list(orchestrator.conversation)

        await orchestrator.load_more()

        assert [i.id for i in orchestrator.results] == [348]
        assert orchestrator.conversation == conversation_before
        assert media.called("search") == []


class TestStaleResponses:
    """Responses for superseded operations are dropped."""

    @pytest.mark.asyncio
    async def test_reset_during_analysis_discards_response(self, orchestrator, analyzer, media, item_factory):
        media.by_query = {"alien": [item_factory(348, "Alien")]}
        gate = asyncio.Event()

        async def slow_analyze(*args, **kwargs):
            await gate.wait()
            return _titles_intent("Alien")

        analyzer.analyze.side_effect = slow_analyze
        task = asyncio.create_task(orchestrator.submit("space horror"))
        await asyncio.sleep(0)
        assert orchestrator.phase == SessionPhase.AWAITING

        orchestrator.reset()
        gate.set()
        assert await task is None

        assert orchestrator.results == []
        assert len(orchestrator.conversation) == 1
        assert orchestrator.phase == SessionPhase.IDLE

    @pytest.mark.asyncio
    async def test_newer_submit_wins(self, orchestrator, analyzer, media, item_factory):
        media.by_query = {"alien": [item_factory(348, "Alien")], "heat": [item_factory(949, "Heat")]}
        first_gate = asyncio.Event()

        async def analyze(query, *args, **kwargs):
            if query == "space horror":
                await first_gate.wait()
                return _titles_intent("Alien")
            return _titles_intent("Heat")

        analyzer.analyze.side_effect = analyze
        first = asyncio.create_task(orchestrator.submit("space horror"))
        await asyncio.sleep(0)
        await orchestrator.submit("heists")
        first_gate.set()
        await first

        assert [i.id for i in orchestrator.results] == [949]


class TestNavigation:
    @pytest.mark.asyncio
    async def test_go_back_on_empty_history_is_noop(self, orchestrator):
        conversation = list(orchestrator.conversation)

        assert orchestrator.go_back() is False
        assert orchestrator.conversation == conversation

    @pytest.mark.asyncio
    async def test_reset_restores_defaults(self, orchestrator, analyzer, media, item_factory):
        media.by_query = {"alien": [item_factory(348, "Alien")]}
        analyzer.analyze.return_value = _titles_intent("Alien")
        await orchestrator.submit("space horror")
        await orchestrator.submit("again")
        orchestrator.set_view_mode(ViewMode.WATCHED)
        orchestrator.set_filters(min_rating=7)

        orchestrator.reset()

        assert len(orchestrator.conversation) == 1
        assert orchestrator.results == []
        assert orchestrator.history == []
        assert orchestrator.filters == ResultFilters()
        assert orchestrator.view_mode == ViewMode.RECOMMENDATIONS
        assert orchestrator.selected_item is None

    @pytest.mark.asyncio
    async def test_random_pick_pushes_history(self, orchestrator, analyzer, media, item_factory):
        media.by_query = {"alien": [item_factory(348, "Alien")]}
        media.random = [item_factory(1), item_factory(2)]
        analyzer.analyze.return_value = _titles_intent("Alien")
        await orchestrator.submit("space horror")

        items = await orchestrator.random_pick()

        assert [i.id for i in items] == [1, 2]
        assert orchestrator.history[-1].query_label == "Random"
        assert orchestrator.conversation[-1].text == "I'm feeling lucky!"

    @pytest.mark.asyncio
    async def test_type_chip_submits_its_value(self, orchestrator, analyzer):
        await orchestrator.apply_filter(FilterOption(category="Type", label="Anime", value="Anime"))
        await orchestrator.apply_filter(FilterOption(category="Genre", label="Thriller", value="thriller"))

        queries = [call.args[0] for call in analyzer.analyze.await_args_list]
        assert queries == ["Anime", "Applying filter: Thriller"]

    @pytest.mark.asyncio
    async def test_find_similar_prompt(self, orchestrator, analyzer, item_factory):
        await orchestrator.find_similar(item_factory(949, "Heat"))

        assert analyzer.analyze.await_args.args[0] == 'Find Similar: "Heat"'


class TestPersonalLists:
    """Tests for rating, wishlist and watched toggles."""

    @pytest.mark.asyncio
    async def test_rate_requires_sign_in(self, orchestrator, overlay_store, item_factory):
        with pytest.raises(AuthRequiredError):
            await orchestrator.rate(item_factory(1), 8)

        overlay_store.upsert_rating.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rating_moves_item_from_wishlist_to_watched(
        self, orchestrator, analyzer, media, overlay_store, item_factory
    ):
        """The rating shows up in the list, the detail view and the watched overlay."""
        movie = item_factory(27205, "Inception")
        media.by_query = {"inception": [movie]}
        analyzer.analyze.return_value = _titles_intent("Inception")
        _sign_in(orchestrator)
        await orchestrator.submit("dream heists")
        await orchestrator.toggle_wishlist(movie)
        await orchestrator.open_details(movie)

        await orchestrator.rate(movie, 9)

        assert not orchestrator.overlay.contains(OverlayCollection.WISHLIST, 27205)
        assert orchestrator.overlay.get(OverlayCollection.WATCHED, 27205).user_rating == 9
        assert orchestrator.results[0].user_rating == 9
        assert orchestrator.selected_item.user_rating == 9
        overlay_store.remove_from_wishlist.assert_awaited_once_with(1, 27205)
        assert overlay_store.upsert_rating.await_args.args[2] == 9
        assert not orchestrator.overlay.has_pending

    @pytest.mark.asyncio
    async def test_rate_rejects_out_of_range(self, orchestrator, item_factory):
        _sign_in(orchestrator)
        with pytest.raises(ValueError):
            await orchestrator.rate(item_factory(1), 11)

    @pytest.mark.asyncio
    async def test_store_failure_rolls_back_overlay(self, orchestrator, overlay_store, item_factory):
        _sign_in(orchestrator)
        overlay_store.add_to_wishlist.side_effect = RuntimeError("db down")

        with pytest.raises(OverlayStoreError):
            await orchestrator.toggle_wishlist(item_factory(5))

        assert not orchestrator.overlay.contains(OverlayCollection.WISHLIST, 5)
        assert not orchestrator.overlay.has_pending

    @pytest.mark.asyncio
    async def test_partial_rate_failure_attempts_both_writes(self, orchestrator, overlay_store, item_factory):
        movie = item_factory(7)
        _sign_in(orchestrator)
        await orchestrator.toggle_wishlist(movie)
        overlay_store.remove_from_wishlist.side_effect = RuntimeError("db down")

        with pytest.raises(OverlayStoreError) as exc_info:
            await orchestrator.rate(movie, 6)

        assert [op for op, _ in exc_info.value.failures] == ["remove_from_wishlist"]
        overlay_store.upsert_rating.assert_awaited_once()
        assert orchestrator.overlay.contains(OverlayCollection.WISHLIST, 7)
        assert orchestrator.overlay.rating_for(7) == 6

    @pytest.mark.asyncio
    async def test_toggle_watched_round_trip(self, orchestrator, overlay_store, item_factory):
        _sign_in(orchestrator)
        movie = item_factory(3)

        assert await orchestrator.toggle_watched(movie) is True
        assert await orchestrator.toggle_watched(movie) is False

        overlay_store.add_to_watched.assert_awaited_once()
        overlay_store.remove_from_watched.assert_awaited_once_with(1, 3)

    @pytest.mark.asyncio
    async def test_new_results_pick_up_watched_ratings(
        self, orchestrator, analyzer, media, overlay_store, item_factory
    ):
        overlay_store.get_watched.return_value = [item_factory(348, "Alien", user_rating=10)]
        _sign_in(orchestrator)
        await orchestrator.refresh_overlays()
        media.by_query = {"alien": [item_factory(348, "Alien")]}
        analyzer.analyze.return_value = _titles_intent("Alien")

        await orchestrator.submit("space horror")

        assert orchestrator.results[0].user_rating == 10

    @pytest.mark.asyncio
    async def test_hide_watched_filter(self, orchestrator, analyzer, media, overlay_store, item_factory):
        media.by_query = {"alien": [item_factory(348, "Alien", vote_average=8.5)], "heat": [item_factory(949, "Heat", vote_average=6.0)]}
        analyzer.analyze.return_value = _titles_intent("Alien", "Heat")
        _sign_in(orchestrator)
        await orchestrator.submit("classics")
        await orchestrator.toggle_watched(orchestrator.results[0])

        visible = orchestrator.visible_items(ResultFilters(show_watched=False))
        rated = orchestrator.visible_items(ResultFilters(min_rating=7))

        assert [i.id for i in visible] == [949]
        assert [i.id for i in rated] == [348]
        assert len(orchestrator.results) == 2


class TestSessionChanges:
    @pytest.mark.asyncio
    async def test_sign_out_clears_session_state(self, orchestrator, analyzer, media, item_factory):
        media.by_query = {"alien": [item_factory(348, "Alien")]}
        analyzer.analyze.return_value = _titles_intent("Alien")
        _sign_in(orchestrator)
        await orchestrator.toggle_wishlist(item_factory(348, "Alien"))
        await orchestrator.submit("space horror")

        orchestrator.on_auth_change(None)

        assert orchestrator.results == []
        assert len(orchestrator.conversation) == 1
        assert orchestrator.overlay.optimistic(OverlayCollection.WISHLIST) == {}
        assert not orchestrator.session.is_authenticated

    @pytest.mark.asyncio
    async def test_model_change_restarts_conversation(self, orchestrator, analyzer, tmp_path):
        await orchestrator.submit("space horror")

        settings = orchestrator.set_active_model("claude")

        assert settings.active_model == "claude"
        assert settings.provider == "perplexity"
        assert len(orchestrator.conversation) == 1

    @pytest.mark.asyncio
    async def test_test_mode_runs_comparison_and_logs_main(self, session_context, analyzer, media, overlay_store):
        harness = ParallelTestHarness(analyzer, delay=0)
        orchestrator = RecommendationOrchestrator(
            session=session_context, analyzer=analyzer, media=media, store=overlay_store, harness=harness
        )
        orchestrator.set_test_mode(True, ["gpt4", "unknown", "sonar"])

        await orchestrator.submit("space horror")
        await asyncio.gather(*harness._tasks)

        labels = [entry.model_label for entry in harness.entries]
        assert orchestrator.session.test_models == ["gpt4", "sonar"]
        assert any(label.endswith("(Main)") for label in labels)
        assert sorted(call.args[3] for call in analyzer.run.await_args_list) == ["gpt4", "sonar"]

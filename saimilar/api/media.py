"""Detail view and AI summary endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends

from saimilar.api.sessions import get_orchestrator, summary_service
from saimilar.models.schemas import MediaItem, MediaType, MovieSummary
from saimilar.services.orchestrator import RecommendationOrchestrator

router = APIRouter()

Orchestrator = Annotated[RecommendationOrchestrator, Depends(get_orchestrator)]


def _known_item(orchestrator: RecommendationOrchestrator, media_type: MediaType, media_id: int) -> MediaItem:
    if orchestrator.selected_item and orchestrator.selected_item.id == media_id:
        return orchestrator.selected_item
    for item in orchestrator.results:
        if item.id == media_id:
            return item
    return MediaItem(id=media_id, media_type=media_type)


@router.get("/{media_type}/{media_id}", response_model=MediaItem)
async def open_details(media_type: MediaType, media_id: int, orchestrator: Orchestrator) -> MediaItem:
    """Open the detail view for an item; falls back to the list entry when TMDB is unavailable."""
    item = _known_item(orchestrator, media_type, media_id).model_copy(update={"media_type": media_type})
    return await orchestrator.open_details(item)


@router.delete("/details", status_code=204)
async def close_details(orchestrator: Orchestrator) -> None:
    orchestrator.close_details()


@router.get("/{media_type}/{media_id}/summary", response_model=MovieSummary)
async def get_summary(media_type: MediaType, media_id: int, orchestrator: Orchestrator) -> MovieSummary:
    item = _known_item(orchestrator, media_type, media_id)
    return await summary_service.generate(
        item,
        language=orchestrator.language,
        provider=orchestrator.session.settings.provider,
    )

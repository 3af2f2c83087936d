"""Wishlist, watched list and rating endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from saimilar.api.sessions import get_orchestrator
from saimilar.constants import RATING_MAX, RATING_MIN
from saimilar.models.schemas import MediaItem
from saimilar.services.orchestrator import RecommendationOrchestrator
from saimilar.services.overlay import OverlayCollection

router = APIRouter()

Orchestrator = Annotated[RecommendationOrchestrator, Depends(get_orchestrator)]


class ToggleResponse(BaseModel):
    media_id: int
    active: bool


class RateRequest(BaseModel):
    item: MediaItem
    score: int = Field(ge=RATING_MIN, le=RATING_MAX)


@router.get("/wishlist", response_model=list[MediaItem])
async def get_wishlist(orchestrator: Orchestrator) -> list[MediaItem]:
    return list(orchestrator.overlay.optimistic(OverlayCollection.WISHLIST).values())


@router.get("/watched", response_model=list[MediaItem])
async def get_watched(orchestrator: Orchestrator) -> list[MediaItem]:
    return list(orchestrator.overlay.optimistic(OverlayCollection.WATCHED).values())


@router.post("/wishlist/toggle", response_model=ToggleResponse)
async def toggle_wishlist(item: MediaItem, orchestrator: Orchestrator) -> ToggleResponse:
    active = await orchestrator.toggle_wishlist(item)
    return ToggleResponse(media_id=item.id, active=active)


@router.post("/watched/toggle", response_model=ToggleResponse)
async def toggle_watched(item: MediaItem, orchestrator: Orchestrator) -> ToggleResponse:
    active = await orchestrator.toggle_watched(item)
    return ToggleResponse(media_id=item.id, active=active)


@router.post("/rate", response_model=MediaItem)
async def rate(data: RateRequest, orchestrator: Orchestrator) -> MediaItem:
    """Rate 1-10; the item moves from the wishlist to the watched list."""
    return await orchestrator.rate(data.item, data.score)

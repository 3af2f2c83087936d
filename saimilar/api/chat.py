"""Chat API endpoints: messages, navigation and the visible result list."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from saimilar.api.sessions import get_orchestrator
from saimilar.models.schemas import (
    ConversationTurn,
    FilterOption,
    MediaItem,
    MediaType,
    ResultFilters,
    SessionPhase,
    ViewMode,
)
from saimilar.services.orchestrator import RecommendationOrchestrator

router = APIRouter()

Orchestrator = Annotated[RecommendationOrchestrator, Depends(get_orchestrator)]


class ChatState(BaseModel):
    """Everything the chat screen renders."""

    conversation: list[ConversationTurn]
    results: list[MediaItem]
    result_count: int
    result_media_type: MediaType
    view_mode: ViewMode
    filters: ResultFilters
    selected_item: MediaItem | None
    phase: SessionPhase
    is_typing: bool
    is_loading_results: bool
    is_loading_more: bool
    history: list[str]
    active_model: str
    language: str

    @classmethod
    def of(cls, orchestrator: RecommendationOrchestrator) -> "ChatState":
        return cls(
            conversation=orchestrator.conversation,
            results=orchestrator.visible_items(),
            result_count=len(orchestrator.results),
            result_media_type=orchestrator.result_media_type,
            view_mode=orchestrator.view_mode,
            filters=orchestrator.filters,
            selected_item=orchestrator.selected_item,
            phase=orchestrator.phase,
            is_typing=orchestrator.is_typing,
            is_loading_results=orchestrator.is_loading_results,
            is_loading_more=orchestrator.is_loading_more,
            history=[frame.query_label for frame in orchestrator.history],
            active_model=orchestrator.session.active_model,
            language=orchestrator.language,
        )


class MessageRequest(BaseModel):
    text: str = Field(min_length=1, max_length=2000)


class ViewRequest(BaseModel):
    mode: ViewMode


class ResultFiltersUpdate(BaseModel):
    min_rating: float | None = Field(default=None, ge=0, le=10)
    year_from: int | None = None
    show_watched: bool | None = None


@router.get("/state", response_model=ChatState)
async def get_state(orchestrator: Orchestrator) -> ChatState:
    return ChatState.of(orchestrator)


@router.post("/messages", response_model=ChatState)
async def send_message(data: MessageRequest, orchestrator: Orchestrator) -> ChatState:
    """Submit a new request; the response carries the updated conversation and results."""
    await orchestrator.submit(data.text)
    return ChatState.of(orchestrator)


@router.post("/load-more", response_model=ChatState)
async def load_more(orchestrator: Orchestrator) -> ChatState:
    if not orchestrator.results:
        raise HTTPException(status_code=409, detail="Nothing to extend yet")
    await orchestrator.load_more()
    return ChatState.of(orchestrator)


@router.post("/back", response_model=ChatState)
async def go_back(orchestrator: Orchestrator) -> ChatState:
    orchestrator.go_back()
    return ChatState.of(orchestrator)


@router.post("/reset", response_model=ChatState)
async def reset(orchestrator: Orchestrator) -> ChatState:
    orchestrator.reset()
    return ChatState.of(orchestrator)


@router.post("/random", response_model=ChatState)
async def random_pick(orchestrator: Orchestrator) -> ChatState:
    await orchestrator.random_pick()
    return ChatState.of(orchestrator)


@router.post("/filters", response_model=ChatState)
async def apply_filter(option: FilterOption, orchestrator: Orchestrator) -> ChatState:
    """Apply a suggestion chip from an assistant turn."""
    await orchestrator.apply_filter(option)
    return ChatState.of(orchestrator)


@router.post("/similar", response_model=ChatState)
async def find_similar(item: MediaItem, orchestrator: Orchestrator) -> ChatState:
    await orchestrator.find_similar(item)
    return ChatState.of(orchestrator)


@router.put("/view", response_model=ChatState)
async def set_view(data: ViewRequest, orchestrator: Orchestrator) -> ChatState:
    orchestrator.set_view_mode(data.mode)
    return ChatState.of(orchestrator)


@router.get("/results", response_model=list[MediaItem])
async def get_results(orchestrator: Orchestrator) -> list[MediaItem]:
    return orchestrator.visible_items()


@router.put("/results/filters", response_model=ChatState)
async def update_result_filters(data: ResultFiltersUpdate, orchestrator: Orchestrator) -> ChatState:
    changes = data.model_dump(exclude_unset=True)
    if "show_watched" in changes and changes["show_watched"] is None:
        del changes["show_watched"]
    orchestrator.set_filters(**changes)
    return ChatState.of(orchestrator)

"""Device settings endpoints."""

from typing import Annotated, Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from saimilar.api.sessions import get_orchestrator
from saimilar.models.schemas import AppSettings
from saimilar.services.orchestrator import RecommendationOrchestrator

router = APIRouter()

Orchestrator = Annotated[RecommendationOrchestrator, Depends(get_orchestrator)]


class SettingsUpdate(BaseModel):
    theme: Literal["dark", "light"] | None = None
    language: Literal["ru", "en"] | None = None


class ModelUpdate(BaseModel):
    model: str


@router.get("", response_model=AppSettings)
async def get_app_settings(orchestrator: Orchestrator) -> AppSettings:
    return orchestrator.session.settings


@router.patch("", response_model=AppSettings)
async def update_app_settings(data: SettingsUpdate, orchestrator: Orchestrator) -> AppSettings:
    return orchestrator.update_settings(**data.model_dump(exclude_none=True))


@router.put("/model", response_model=AppSettings)
async def set_model(data: ModelUpdate, orchestrator: Orchestrator) -> AppSettings:
    """Switch the active model; the conversation restarts from the greeting."""
    return orchestrator.set_active_model(data.model)

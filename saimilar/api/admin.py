"""Admin endpoints: model catalog, usage accounting and side-by-side test mode."""

from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from saimilar.api.sessions import get_orchestrator
from saimilar.auth import get_admin_user
from saimilar.models.schemas import TestRunLogEntry, UsageStats
from saimilar.models.user import User
from saimilar.services.orchestrator import RecommendationOrchestrator
from saimilar.services.providers import available_models, usage_log

router = APIRouter()

Orchestrator = Annotated[RecommendationOrchestrator, Depends(get_orchestrator)]
AdminUser = Annotated[User, Depends(get_admin_user)]


class ModelInfo(BaseModel):
    key: str
    provider: str
    display_name: str
    cost_per_million_input: float
    cost_per_million_output: float


class UsageReport(BaseModel):
    entries: list[UsageStats]
    total_cost: float
    total_tokens: int


class TestModeUpdate(BaseModel):
    __test__ = False

    enabled: bool
    models: list[str] | None = None


class TestModeState(BaseModel):
    __test__ = False

    enabled: bool
    models: list[str]
    running: bool


@router.get("/models", response_model=list[ModelInfo])
async def list_models() -> list[ModelInfo]:
    return [
        ModelInfo(
            key=spec.key,
            provider=spec.provider,
            display_name=spec.display_name,
            cost_per_million_input=spec.cost_per_million_input,
            cost_per_million_output=spec.cost_per_million_output,
        )
        for spec in available_models()
    ]


@router.get("/usage", response_model=UsageReport)
async def get_usage(user: AdminUser) -> UsageReport:
    entries = usage_log.entries()
    return UsageReport(
        entries=entries,
        total_cost=usage_log.total_cost(),
        total_tokens=sum(u.total_tokens for u in entries),
    )


@router.delete("/usage", status_code=204)
async def clear_usage(user: AdminUser) -> None:
    usage_log.clear()


def _test_mode_state(orchestrator: RecommendationOrchestrator) -> TestModeState:
    harness = orchestrator.harness
    return TestModeState(
        enabled=orchestrator.session.test_mode,
        models=orchestrator.session.test_models,
        running=bool(harness and harness.running),
    )


@router.get("/test-mode", response_model=TestModeState)
async def get_test_mode(user: AdminUser, orchestrator: Orchestrator) -> TestModeState:
    return _test_mode_state(orchestrator)


@router.put("/test-mode", response_model=TestModeState)
async def set_test_mode(data: TestModeUpdate, user: AdminUser, orchestrator: Orchestrator) -> TestModeState:
    """Enable comparison runs; unknown model keys are ignored."""
    orchestrator.set_test_mode(data.enabled, data.models)
    return _test_mode_state(orchestrator)


@router.get("/test-logs", response_model=list[TestRunLogEntry])
async def get_test_logs(user: AdminUser, orchestrator: Orchestrator) -> list[TestRunLogEntry]:
    if orchestrator.harness is None:
        return []
    return orchestrator.harness.entries


@router.delete("/test-logs", status_code=204)
async def clear_test_logs(user: AdminUser, orchestrator: Orchestrator) -> None:
    if orchestrator.harness is not None:
        orchestrator.harness.clear()

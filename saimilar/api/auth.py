"""Authentication API endpoints.

Sign-in is a plain username login that creates the account on first use;
the session cookie carries the user id.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from saimilar.api.sessions import get_orchestrator
from saimilar.auth import get_current_user
from saimilar.db import get_db
from saimilar.models.schemas import UserProfile
from saimilar.models.user import User
from saimilar.services.orchestrator import RecommendationOrchestrator

router = APIRouter()
logger = logging.getLogger(__name__)


class LoginRequest(BaseModel):
    username: str = Field(min_length=1, max_length=255)
    email: str | None = None


@router.post("/login", response_model=UserProfile)
async def login(
    data: LoginRequest,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> UserProfile:
    result = await db.execute(select(User).where(User.username == data.username))
    user = result.scalar_one_or_none()

    if not user:
        user = User(username=data.username, email=data.email)
        db.add(user)
        await db.commit()
        await db.refresh(user)
        logger.info(f"Created user {user.username}")

    request.session["user_id"] = user.id
    request.session["username"] = user.username
    return UserProfile.model_validate(user)


@router.post("/logout", status_code=204)
async def logout(
    request: Request,
    orchestrator: Annotated[RecommendationOrchestrator, Depends(get_orchestrator)],
) -> None:
    """Sign out; the chat session is reset so nothing of the previous user leaks."""
    request.session.pop("user_id", None)
    request.session.pop("username", None)
    orchestrator.on_auth_change(None)


@router.get("/me", response_model=UserProfile)
async def get_me(user: Annotated[User, Depends(get_current_user)]) -> UserProfile:
    return UserProfile.model_validate(user)

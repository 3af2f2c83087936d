"""Main API router."""

from fastapi import APIRouter

from saimilar.api.admin import router as admin_router
from saimilar.api.auth import router as auth_router
from saimilar.api.chat import router as chat_router
from saimilar.api.library import router as library_router
from saimilar.api.media import router as media_router
from saimilar.api.settings import router as settings_router

api_router = APIRouter(prefix="/api")

api_router.include_router(admin_router, prefix="/admin", tags=["admin"])
api_router.include_router(auth_router, prefix="/auth", tags=["auth"])
api_router.include_router(chat_router, prefix="/chat", tags=["chat"])
api_router.include_router(library_router, prefix="/library", tags=["library"])
api_router.include_router(media_router, prefix="/media", tags=["media"])
api_router.include_router(settings_router, prefix="/settings", tags=["settings"])

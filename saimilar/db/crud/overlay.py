"""Wishlist / watched persistence.

Every operation opens its own session and commits; failures propagate so the
orchestrator can reconcile its optimistic state.
"""

import logging

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from saimilar.db.database import async_session_maker
from saimilar.models.overlay import WatchedEntry, WishlistEntry
from saimilar.models.schemas import MediaItem, MediaType

logger = logging.getLogger(__name__)


def _entry_to_item(entry: WishlistEntry | WatchedEntry) -> MediaItem:
    rating = getattr(entry, "user_rating", 0)
    return MediaItem(
        id=entry.media_id,
        title=entry.title,
        poster_path=entry.poster_path,
        vote_average=entry.vote_average,
        release_date=entry.release_date,
        media_type=MediaType(entry.media_type),
        user_rating=rating or None,
    )


class SqlOverlayStore:
    """User overlay store backed by the wishlist_entries / watched_entries tables."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession] = async_session_maker) -> None:
        self._session_maker = session_maker

    async def get_wishlist(self, user_id: int) -> list[MediaItem]:
        async with self._session_maker() as db:
            result = await db.execute(
                select(WishlistEntry)
                .where(WishlistEntry.user_id == user_id)
                .order_by(WishlistEntry.added_at)
            )
            return [_entry_to_item(e) for e in result.scalars().all()]

    async def add_to_wishlist(self, user_id: int, item: MediaItem) -> None:
        async with self._session_maker() as db:
            existing = await db.scalar(
                select(WishlistEntry).where(
                    WishlistEntry.user_id == user_id,
                    WishlistEntry.media_id == item.id,
                )
            )
            if existing is None:
                db.add(
                    WishlistEntry(
                        user_id=user_id,
                        media_id=item.id,
                        media_type=item.media_type.value,
                        title=item.title,
                        poster_path=item.poster_path,
                        vote_average=item.vote_average,
                        release_date=item.release_date,
                    )
                )
                await db.commit()

    async def remove_from_wishlist(self, user_id: int, media_id: int) -> None:
        async with self._session_maker() as db:
            await db.execute(
                delete(WishlistEntry).where(
                    WishlistEntry.user_id == user_id,
                    WishlistEntry.media_id == media_id,
                )
            )
            await db.commit()

    async def get_watched(self, user_id: int) -> list[MediaItem]:
        async with self._session_maker() as db:
            result = await db.execute(
                select(WatchedEntry)
                .where(WatchedEntry.user_id == user_id)
                .order_by(WatchedEntry.watched_at)
            )
            return [_entry_to_item(e) for e in result.scalars().all()]

    async def add_to_watched(self, user_id: int, item: MediaItem, rating: int = 0) -> None:
        await self._upsert_watched(user_id, item, rating, keep_existing_rating=True)

    async def remove_from_watched(self, user_id: int, media_id: int) -> None:
        async with self._session_maker() as db:
            await db.execute(
                delete(WatchedEntry).where(
                    WatchedEntry.user_id == user_id,
                    WatchedEntry.media_id == media_id,
                )
            )
            await db.commit()

    async def upsert_rating(self, user_id: int, item: MediaItem, rating: int) -> None:
        """Set the rating, creating the watched entry when it does not exist yet."""
        await self._upsert_watched(user_id, item, rating, keep_existing_rating=False)

    async def _upsert_watched(
        self,
        user_id: int,
        item: MediaItem,
        rating: int,
        keep_existing_rating: bool,
    ) -> None:
        async with self._session_maker() as db:
            entry = await db.scalar(
                select(WatchedEntry).where(
                    WatchedEntry.user_id == user_id,
                    WatchedEntry.media_id == item.id,
                )
            )
            if entry is None:
                db.add(
                    WatchedEntry(
                        user_id=user_id,
                        media_id=item.id,
                        media_type=item.media_type.value,
                        title=item.title,
                        poster_path=item.poster_path,
                        vote_average=item.vote_average,
                        release_date=item.release_date,
                        user_rating=rating,
                    )
                )
            elif not (keep_existing_rating and entry.user_rating):
                entry.user_rating = rating
            await db.commit()
        logger.debug(f"Watched entry for user {user_id} / media {item.id} set to rating {rating}")

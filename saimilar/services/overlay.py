"""Optimistic, per-user wishlist / watched overlay.

Mutations are two-phase: ``put`` / ``remove`` record a pending change that is
visible in the optimistic view straight away and return a token; the caller
then ``commit``s the token once the store write succeeded or ``rollback``s it.
"""

import enum
import itertools
from dataclasses import dataclass

from saimilar.models.schemas import MediaItem


class OverlayCollection(str, enum.Enum):
    WISHLIST = "wishlist"
    WATCHED = "watched"


@dataclass(frozen=True)
class PendingMutation:
    collection: OverlayCollection
    media_id: int
    item: MediaItem | None  # None removes the entry


class UserOverlay:
    """Committed and optimistic views over the signed-in user's lists."""

    def __init__(self) -> None:
        self._committed: dict[OverlayCollection, dict[int, MediaItem]] = {
            collection: {} for collection in OverlayCollection
        }
        self._pending: dict[int, PendingMutation] = {}
        self._tokens = itertools.count(1)

    def load(self, collection: OverlayCollection, items: list[MediaItem]) -> None:
        self._committed[collection] = {item.id: item for item in items}

    def clear(self) -> None:
        """Forget everything, pending mutations included."""
        for collection in OverlayCollection:
            self._committed[collection] = {}
        self._pending.clear()

    @property
    def has_pending(self) -> bool:
        return bool(self._pending)

    def committed(self, collection: OverlayCollection) -> dict[int, MediaItem]:
        return dict(self._committed[collection])

    def optimistic(self, collection: OverlayCollection) -> dict[int, MediaItem]:
        view = dict(self._committed[collection])
        for mutation in self._pending.values():
            if mutation.collection == collection:
                _apply(view, mutation)
        return view

    def contains(self, collection: OverlayCollection, media_id: int) -> bool:
        return media_id in self.optimistic(collection)

    def get(self, collection: OverlayCollection, media_id: int) -> MediaItem | None:
        return self.optimistic(collection).get(media_id)

    def rating_for(self, media_id: int) -> int | None:
        """Personal rating from the watched list, None when unrated."""
        item = self.get(OverlayCollection.WATCHED, media_id)
        if item is None or not item.user_rating:
            return None
        return item.user_rating

    def put(self, collection: OverlayCollection, item: MediaItem) -> int:
        return self._record(PendingMutation(collection, item.id, item))

    def remove(self, collection: OverlayCollection, media_id: int) -> int:
        return self._record(PendingMutation(collection, media_id, None))

    def commit(self, token: int) -> None:
        # Tokens issued before a clear() are silently ignored
        mutation = self._pending.pop(token, None)
        if mutation is not None:
            _apply(self._committed[mutation.collection], mutation)

    def rollback(self, token: int) -> None:
        self._pending.pop(token, None)

    def _record(self, mutation: PendingMutation) -> int:
        token = next(self._tokens)
        self._pending[token] = mutation
        return token


def _apply(view: dict[int, MediaItem], mutation: PendingMutation) -> None:
    if mutation.item is None:
        view.pop(mutation.media_id, None)
    else:
        view[mutation.media_id] = mutation.item

"""Per-user wishlist and watched entries."""

from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from saimilar.models.base import Base, TimestampMixin, _utcnow


class WishlistEntry(Base, TimestampMixin):
    """A title the user wants to watch."""

    __tablename__ = "wishlist_entries"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    media_id: Mapped[int] = mapped_column(Integer, nullable=False)  # TMDB id
    media_type: Mapped[str] = mapped_column(String(10), default="movie")
    title: Mapped[str] = mapped_column(String(500), default="")
    poster_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    vote_average: Mapped[float] = mapped_column(Float, default=0.0)
    release_date: Mapped[str | None] = mapped_column(String(20), nullable=True)
    added_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    user = relationship("User", back_populates="wishlist")

    __table_args__ = (UniqueConstraint("user_id", "media_id", name="uq_wishlist_user_media"),)

    def __repr__(self) -> str:
        return f"<WishlistEntry(user_id={self.user_id}, media_id={self.media_id})>"


class WatchedEntry(Base, TimestampMixin):
    """A title the user has seen, optionally rated 1-10 (0 = unrated)."""

    __tablename__ = "watched_entries"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    media_id: Mapped[int] = mapped_column(Integer, nullable=False)
    media_type: Mapped[str] = mapped_column(String(10), default="movie")
    title: Mapped[str] = mapped_column(String(500), default="")
    poster_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    vote_average: Mapped[float] = mapped_column(Float, default=0.0)
    release_date: Mapped[str | None] = mapped_column(String(20), nullable=True)
    user_rating: Mapped[int] = mapped_column(Integer, default=0)
    watched_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    user = relationship("User", back_populates="watched")

    __table_args__ = (UniqueConstraint("user_id", "media_id", name="uq_watched_user_media"),)

    def __repr__(self) -> str:
        return f"<WatchedEntry(user_id={self.user_id}, media_id={self.media_id}, rating={self.user_rating})>"

"""User model."""

from typing import TYPE_CHECKING

from sqlalchemy import JSON, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from saimilar.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from saimilar.models.overlay import WatchedEntry, WishlistEntry


class User(Base, TimestampMixin):
    """Account that owns a wishlist and a watched list."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    username: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    # 'owner', 'admin', 'editor', 'viewer', 'user'
    role: Mapped[str] = mapped_column(String(20), default="user")
    settings: Mapped[dict] = mapped_column(JSON, default=dict)

    wishlist: Mapped[list["WishlistEntry"]] = relationship(
        "WishlistEntry",
        back_populates="user",
        cascade="all, delete-orphan",
        lazy="select",
    )
    watched: Mapped[list["WatchedEntry"]] = relationship(
        "WatchedEntry",
        back_populates="user",
        cascade="all, delete-orphan",
        lazy="select",
    )

    @property
    def has_admin_access(self) -> bool:
        return bool(self.role) and self.role != "user"

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username={self.username})>"

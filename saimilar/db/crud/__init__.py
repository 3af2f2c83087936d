"""CRUD operations module."""

from saimilar.db.crud.overlay import SqlOverlayStore

__all__ = ["SqlOverlayStore"]

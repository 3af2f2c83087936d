"""HTTP API."""

from saimilar.api.router import api_router

__all__ = ["api_router"]

"""Shared persistent httpx clients, one per upstream service group.

LLM calls can take close to a minute while TMDB answers in well under a
second, so each group gets its own timeout and connection pool.
"""

import httpx

from saimilar import __version__
from saimilar.constants import API_TIMEOUT_LLM, HTTPX_TIMEOUT

TMDB = "tmdb"
LLM = "llm"

_TIMEOUTS = {
    TMDB: HTTPX_TIMEOUT,
    LLM: API_TIMEOUT_LLM,
}

_POOL_LIMITS = httpx.Limits(
    max_connections=20,
    max_keepalive_connections=10,
    keepalive_expiry=30,
)

_clients: dict[str, httpx.AsyncClient] = {}


def get_client(group: str) -> httpx.AsyncClient:
    """Persistent client for a service group, created on first use."""
    client = _clients.get(group)
    if client is None or client.is_closed:
        client = httpx.AsyncClient(
            timeout=_TIMEOUTS[group],
            limits=_POOL_LIMITS,
            headers={"User-Agent": f"saimilar/{__version__}"},
        )
        _clients[group] = client
    return client


def get_tmdb_client() -> httpx.AsyncClient:
    return get_client(TMDB)


def get_llm_client() -> httpx.AsyncClient:
    """Client for Gemini and Perplexity calls."""
    return get_client(LLM)


async def close_all_clients() -> None:
    """Close every persistent client. Called on app shutdown."""
    while _clients:
        _, client = _clients.popitem()
        await client.aclose()

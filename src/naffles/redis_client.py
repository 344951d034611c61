"""Redis client for ledger broadcasts and the worker queue.

Services never reach for the module-level client themselves; they take a
``redis`` argument that may be None, in which case broadcasts are skipped.
The API lifespan and the worker startup hook own the client.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import redis.asyncio as redis

logger = logging.getLogger(__name__)

CHANNEL_JACKPOT_WON = "pubsub:jackpot_won"
CHANNEL_ACHIEVEMENT_UNLOCKED = "pubsub:achievement_unlocked"

_client: redis.Redis | None = None


async def init_redis(url: str, *, max_connections: int = 50) -> redis.Redis:
    """Create the shared client. Returns it so workers can keep it in their context."""
    global _client  # noqa: PLW0603
    _client = redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=max_connections,
    )
    return _client


async def close_redis() -> None:
    global _client  # noqa: PLW0603
    if _client:
        await _client.aclose()
        _client = None


def get_redis() -> redis.Redis:
    """The shared client (FastAPI dependency)."""
    if _client is None:
        msg = "Redis not initialized. Call init_redis() first."
        raise RuntimeError(msg)
    return _client


async def broadcast(client: object, channel: str, payload: dict[str, Any]) -> bool:
    """Publish a ledger notification. Returns False when nothing was sent.

    Broadcasts are best effort: the ledger change they announce is already
    committed, so a Redis failure is logged and reported, never raised.
    """
    if client is None:
        return False
    try:
        await client.publish(channel, json.dumps(payload, default=str))  # type: ignore[attr-defined]
    except Exception:
        logger.warning("Failed to publish %s broadcast", channel, exc_info=True)
        return False
    return True

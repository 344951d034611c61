"""Tests for ledger broadcasts over Redis pub/sub."""

import json

import pytest

from naffles.redis_client import CHANNEL_JACKPOT_WON, broadcast, get_redis


@pytest.mark.asyncio
async def test_broadcast_publishes_json(redis_client) -> None:
    """Payloads go out as JSON on the named channel."""
    sent = await broadcast(redis_client, CHANNEL_JACKPOT_WON, {"user_id": 7, "amount": 1000})
    assert sent is True
    channel, payload = redis_client.publish.await_args.args
    assert channel == "pubsub:jackpot_won"
    assert json.loads(payload) == {"user_id": 7, "amount": 1000}


@pytest.mark.asyncio
async def test_broadcast_without_client() -> None:
    """No client configured means nothing is sent and nothing fails."""
    assert await broadcast(None, CHANNEL_JACKPOT_WON, {"user_id": 7}) is False


@pytest.mark.asyncio
async def test_broadcast_failure_is_reported_not_raised(redis_client) -> None:
    """A Redis outage never propagates into the ledger operation."""
    redis_client.publish.side_effect = ConnectionError("redis down")
    assert await broadcast(redis_client, CHANNEL_JACKPOT_WON, {"user_id": 7}) is False


def test_get_redis_requires_init() -> None:
    """Using the shared client before startup is a programming error."""
    with pytest.raises(RuntimeError, match="not initialized"):
        get_redis()

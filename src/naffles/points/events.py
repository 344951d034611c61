"""Side-effect outbox for point awards.

An award writes a ``points_events`` row in the same DB transaction as its
ledger entry. Processing the event runs the side effects in order:

1. jackpot increment
2. achievement progress
3. leaderboard update (global scope only)
4. jackpot win roll

Each step runs in its own savepoint. A failing step is logged and recorded
on the event (``status='failed'``, ``last_error``) without undoing the
award or the other steps. Completed steps are remembered in the payload so
a retry only re-runs what failed.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from naffles.db.models import Community, PointsEvent
from naffles.points.achievement_service import check_achievements
from naffles.points.jackpot_service import check_jackpot_win, increment_jackpot
from naffles.points.leaderboard_service import update_leaderboards_for_award
from naffles.points.ledger import get_balance

logger = logging.getLogger(__name__)

EVENT_AWARD = "award"

STATUS_PENDING = "pending"
STATUS_PROCESSED = "processed"
STATUS_FAILED = "failed"

STEP_JACKPOT_INCREMENT = "jackpot_increment"
STEP_ACHIEVEMENTS = "achievements"
STEP_LEADERBOARDS = "leaderboards"
STEP_JACKPOT_WIN = "jackpot_win"


def enqueue_award_event(
    db: AsyncSession,
    *,
    user_id: int,
    activity: str,
    points: int,
    transaction_id: int,
    metadata: dict[str, Any] | None = None,
    community_id: int | None = None,
) -> PointsEvent:
    """Stage the side effects of an award. Caller commits."""
    event = PointsEvent(
        kind=EVENT_AWARD,
        user_id=user_id,
        community_id=community_id,
        payload={
            "activity": activity,
            "points": points,
            "transaction_id": transaction_id,
            "metadata": dict(metadata or {}),
            "completed_steps": [],
        },
        status=STATUS_PENDING,
        attempts=0,
        created_at=datetime.now(timezone.utc),
    )
    db.add(event)
    return event


def _jackpot_enabled(community: Community | None) -> bool:
    if community is None:
        return True
    return community.is_naffles_community and community.enable_jackpot


async def process_event(
    db: AsyncSession,
    redis: object,
    event: PointsEvent,
    *,
    rng: random.Random | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Run the side effects of one event and commit the outcome."""
    if now is None:
        now = datetime.now(timezone.utc)
    payload = dict(event.payload or {})
    activity: str = payload["activity"]
    points: int = payload["points"]
    metadata: dict[str, Any] = payload.get("metadata") or {}
    done: list[str] = list(payload.get("completed_steps") or [])

    community = await db.get(Community, event.community_id) if event.community_id else None
    user_id = event.user_id

    async def _jackpot_increment() -> Any:  # noqa: ANN401
        return await increment_jackpot(db, activity, now=now)

    async def _achievements() -> Any:  # noqa: ANN401
        return await check_achievements(
            db, redis, user_id, activity, points, metadata, community=community, now=now,
        )

    async def _leaderboards() -> Any:  # noqa: ANN401
        await update_leaderboards_for_award(db, user_id, activity, points, metadata, now=now)
        return True

    async def _jackpot_win() -> Any:  # noqa: ANN401
        balance = await get_balance(db, user_id, community.id if community else None)
        current = balance.balance if balance is not None else 0
        return await check_jackpot_win(db, redis, user_id, current, community=community, rng=rng, now=now)

    steps: list[tuple[str, Callable[[], Awaitable[Any]]]] = []
    if _jackpot_enabled(community):
        steps.append((STEP_JACKPOT_INCREMENT, _jackpot_increment))
    steps.append((STEP_ACHIEVEMENTS, _achievements))
    if community is None:
        steps.append((STEP_LEADERBOARDS, _leaderboards))
    if _jackpot_enabled(community):
        steps.append((STEP_JACKPOT_WIN, _jackpot_win))

    results: dict[str, Any] = {}
    errors: list[str] = []
    for name, step in steps:
        if name in done:
            continue
        try:
            async with db.begin_nested():
                results[name] = await step()
        except Exception as exc:
            logger.warning("Side effect %s failed for points event %s", name, event.id, exc_info=True)
            errors.append(f"{name}: {exc}")
        else:
            done.append(name)

    event.attempts += 1
    event.payload = {**payload, "completed_steps": done}
    if errors:
        event.status = STATUS_FAILED
        event.last_error = "; ".join(errors)
    else:
        event.status = STATUS_PROCESSED
        event.last_error = None
        event.processed_at = now
    await db.commit()

    results["status"] = event.status
    results["errors"] = errors
    return results


async def process_event_inline(
    db: AsyncSession,
    redis: object,
    event: PointsEvent,
    *,
    rng: random.Random | None = None,
) -> dict[str, Any] | None:
    """Process an event right after its award committed.

    The award is already durable, so a failure here is logged and the event
    stays in the outbox for the worker. Returns None in that case.
    """
    event_id = event.id
    try:
        return await process_event(db, redis, event, rng=rng)
    except Exception:
        logger.warning("Inline processing of points event %s failed, left for the worker", event_id, exc_info=True)
        await db.rollback()
        return None


async def process_pending_events(
    db: AsyncSession,
    redis: object,
    *,
    limit: int = 100,
    max_attempts: int = 5,
) -> int:
    """Process pending and failed events, oldest first. Returns events handled."""
    handled = 0
    seen: list[int] = []
    while handled < limit:
        conditions = [
            PointsEvent.status.in_([STATUS_PENDING, STATUS_FAILED]),
            PointsEvent.attempts < max_attempts,
        ]
        # one attempt per event per pass
        if seen:
            conditions.append(PointsEvent.id.notin_(seen))
        result = await db.execute(
            select(PointsEvent)
            .where(*conditions)
            .order_by(PointsEvent.id.asc())
            .limit(1)
            .with_for_update(skip_locked=True)
        )
        event = result.scalar_one_or_none()
        if event is None:
            break
        seen.append(event.id)
        await process_event(db, redis, event)
        handled += 1
    return handled

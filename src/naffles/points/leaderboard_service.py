"""Leaderboard materialization: per (user, category, period) entries.

Entries are bumped as activity happens and ranked by a full
sort-and-rewrite pass. Time-bounded periods accumulate; ``all_time``
entries hold an absolute value.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from naffles.config import get_settings
from naffles.db.models import LeaderboardEntry, PointsBalance, PointsTransaction, User
from naffles.exceptions import InvalidLeaderboardError, UserNotFoundError
from naffles.points.activities import TX_EARNED, is_gaming_activity
from naffles.points.ledger import get_balance
from naffles.points.period_utils import PERIODS, get_period_dates

logger = logging.getLogger(__name__)

CATEGORIES = ("points", "gaming_wins", "gaming_volume", "raffle_wins", "raffle_created", "referrals")


def validate_board(category: str, period: str) -> None:
    if category not in CATEGORIES:
        msg = f"Invalid category: {category}"
        raise InvalidLeaderboardError(msg)
    if period not in PERIODS:
        msg = f"Invalid period: {period}"
        raise InvalidLeaderboardError(msg)


def compute_change(rank: int | None, previous_rank: int | None) -> str:
    """Movement label relative to the previous ranking pass."""
    if previous_rank is None or rank is None:
        return "new"
    if rank < previous_rank:
        return "up"
    if rank > previous_rank:
        return "down"
    return "same"


def _period(period: str, now: datetime | None) -> tuple[datetime, datetime]:
    return get_period_dates(period, now, get_settings().local_timezone)


async def _find_entry(
    db: AsyncSession,
    user_id: int,
    category: str,
    period: str,
    period_start: datetime,
) -> LeaderboardEntry | None:
    result = await db.execute(
        select(LeaderboardEntry)
        .where(
            LeaderboardEntry.user_id == user_id,
            LeaderboardEntry.category == category,
            LeaderboardEntry.period == period,
            LeaderboardEntry.period_start == period_start,
        )
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def update_user_entry(
    db: AsyncSession,
    user_id: int,
    category: str,
    period: str,
    value: float,
    metadata: dict[str, Any] | None = None,
    *,
    increment: bool | None = None,
    now: datetime | None = None,
) -> LeaderboardEntry:
    """Create or update a user's entry for the current window of a board.

    By default ``all_time`` overwrites and other periods add ``value``;
    pass ``increment`` to force either behaviour.
    """
    validate_board(category, period)
    if now is None:
        now = datetime.now(timezone.utc)
    start, end = _period(period, now)
    if increment is None:
        increment = period != "all_time"

    entry = await _find_entry(db, user_id, category, period, start)
    if entry is None:
        user = await db.get(User, user_id)
        if user is None:
            msg = f"User {user_id} not found"
            raise UserNotFoundError(msg)
        entry = LeaderboardEntry(
            user_id=user_id,
            category=category,
            period=period,
            period_start=start,
            period_end=end,
            username=user.username,
            wallet_address=user.wallet_address,
            value=0,
            rank=None,
            previous_rank=None,
            change="new",
            entry_metadata={},
            updated_at=now,
        )
        try:
            async with db.begin_nested():
                db.add(entry)
        except IntegrityError:
            entry = await _find_entry(db, user_id, category, period, start)
            if entry is None:
                raise

    entry.value = (entry.value + value) if increment else value
    if metadata:
        entry.entry_metadata = {**(entry.entry_metadata or {}), **metadata}
    entry.updated_at = now
    await db.flush()
    return entry


async def update_leaderboards_for_award(
    db: AsyncSession,
    user_id: int,
    activity: str,
    points_awarded: int,
    metadata: dict[str, Any] | None = None,
    *,
    now: datetime | None = None,
) -> None:
    """Bump every board an award touches, then re-rank the all-time points board."""
    metadata = metadata or {}
    balance = await get_balance(db, user_id)
    won = bool(metadata.get("won"))

    for period in PERIODS:
        if balance is not None:
            value = balance.total_earned if period == "all_time" else points_awarded
            await update_user_entry(
                db, user_id, "points", period, value, {"points_earned": points_awarded}, now=now,
            )

        if is_gaming_activity(activity):
            wagered = float(metadata.get("bet_amount") or 0)
            won_amount = float(metadata.get("win_amount") or 0)
            await update_user_entry(
                db, user_id, "gaming_volume", period, wagered,
                {"total_wagered": wagered, "total_won": won_amount},
                increment=True, now=now,
            )
            if won:
                await update_user_entry(db, user_id, "gaming_wins", period, 1, increment=True, now=now)
        elif activity.startswith("raffle_"):
            if activity == "raffle_creation":
                await update_user_entry(db, user_id, "raffle_created", period, 1, increment=True, now=now)
            if won:
                await update_user_entry(db, user_id, "raffle_wins", period, 1, increment=True, now=now)
        elif activity == "referral_bonus":
            await update_user_entry(db, user_id, "referrals", period, 1, increment=True, now=now)

    await recalculate_ranks(db, "points", "all_time", now=now)


async def recalculate_ranks(
    db: AsyncSession,
    category: str,
    period: str,
    *,
    now: datetime | None = None,
) -> int:
    """Rewrite ranks for the current window of a board. Returns entries ranked."""
    validate_board(category, period)
    start, _ = _period(period, now)
    result = await db.execute(
        select(LeaderboardEntry)
        .where(
            LeaderboardEntry.category == category,
            LeaderboardEntry.period == period,
            LeaderboardEntry.period_start == start,
        )
        .order_by(LeaderboardEntry.value.desc(), LeaderboardEntry.id.asc())
        .with_for_update()
    )
    entries = list(result.scalars().all())

    for position, entry in enumerate(entries, start=1):
        entry.previous_rank = entry.rank
        entry.rank = position
        entry.change = compute_change(entry.rank, entry.previous_rank)

    await db.flush()
    return len(entries)


async def recalculate_all_ranks(db: AsyncSession, *, now: datetime | None = None) -> int:
    total = 0
    for category in CATEGORIES:
        for period in PERIODS:
            total += await recalculate_ranks(db, category, period, now=now)
    return total


def _entry_dict(entry: LeaderboardEntry) -> dict[str, Any]:
    return {
        "rank": entry.rank,
        "previous_rank": entry.previous_rank,
        "change": entry.change,
        "user_id": entry.user_id,
        "username": entry.username,
        "wallet_address": entry.wallet_address,
        "value": entry.value,
        "metadata": entry.entry_metadata or {},
    }


async def get_leaderboard(
    db: AsyncSession,
    category: str,
    period: str,
    *,
    limit: int | None = None,
    offset: int = 0,
    now: datetime | None = None,
) -> dict[str, Any]:
    validate_board(category, period)
    settings = get_settings()
    limit = settings.leaderboard_default_limit if limit is None else limit
    limit = max(1, min(limit, settings.leaderboard_max_limit))
    offset = max(offset, 0)
    start, end = _period(period, now)

    conditions = (
        LeaderboardEntry.category == category,
        LeaderboardEntry.period == period,
        LeaderboardEntry.period_start == start,
    )
    total = (await db.execute(
        select(func.count()).select_from(LeaderboardEntry).where(*conditions)
    )).scalar_one()
    result = await db.execute(
        select(LeaderboardEntry)
        .where(*conditions)
        .order_by(LeaderboardEntry.value.desc(), LeaderboardEntry.id.asc())
        .offset(offset)
        .limit(limit)
    )
    return {
        "category": category,
        "period": period,
        "period_start": start,
        "period_end": end,
        "total": total,
        "entries": [_entry_dict(e) for e in result.scalars().all()],
    }


async def get_user_position(
    db: AsyncSession,
    user_id: int,
    category: str,
    period: str,
    *,
    now: datetime | None = None,
) -> dict[str, Any] | None:
    """The user's entry plus up to two neighbours either side."""
    validate_board(category, period)
    start, _ = _period(period, now)
    result = await db.execute(
        select(LeaderboardEntry).where(
            LeaderboardEntry.user_id == user_id,
            LeaderboardEntry.category == category,
            LeaderboardEntry.period == period,
            LeaderboardEntry.period_start == start,
        )
    )
    entry = result.scalar_one_or_none()
    if entry is None:
        return None

    surrounding: list[LeaderboardEntry] = []
    if entry.rank is not None:
        around = await db.execute(
            select(LeaderboardEntry)
            .where(
                LeaderboardEntry.category == category,
                LeaderboardEntry.period == period,
                LeaderboardEntry.period_start == start,
                LeaderboardEntry.rank >= max(1, entry.rank - 2),
                LeaderboardEntry.rank <= entry.rank + 2,
            )
            .order_by(LeaderboardEntry.rank.asc())
        )
        surrounding = list(around.scalars().all())

    return {
        "user_entry": _entry_dict(entry),
        "surrounding": [{**_entry_dict(e), "is_current_user": e.user_id == user_id} for e in surrounding],
    }


async def get_user_rank(
    db: AsyncSession,
    user_id: int,
    category: str = "points",
    period: str = "all_time",
    *,
    now: datetime | None = None,
) -> int | None:
    position = await get_user_position(db, user_id, category, period, now=now)
    return position["user_entry"]["rank"] if position else None


async def rebuild_points_leaderboards(db: AsyncSession, *, now: datetime | None = None) -> dict[str, int]:
    """Recompute the points boards from the ledger itself.

    all_time comes from balances; the windowed periods sum ``earned``
    transactions inside the window.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    counts: dict[str, int] = {}

    balances = await db.execute(select(PointsBalance.user_id, PointsBalance.total_earned))
    rows = balances.all()
    for row in rows:
        await update_user_entry(db, row.user_id, "points", "all_time", row.total_earned, increment=False, now=now)
    counts["all_time"] = len(rows)

    for period in ("daily", "weekly", "monthly"):
        start, end = _period(period, now)
        sums = await db.execute(
            select(PointsTransaction.user_id, func.sum(PointsTransaction.amount).label("earned"))
            .where(
                PointsTransaction.type == TX_EARNED,
                PointsTransaction.created_at >= start,
                PointsTransaction.created_at < end,
            )
            .group_by(PointsTransaction.user_id)
        )
        period_rows = sums.all()
        for row in period_rows:
            await update_user_entry(db, row.user_id, "points", period, row.earned, increment=False, now=now)
        counts[period] = len(period_rows)

    for period in PERIODS:
        await recalculate_ranks(db, "points", period, now=now)

    logger.info("Points leaderboards rebuilt: %s", counts)
    return counts


async def get_leaderboard_stats(db: AsyncSession) -> dict[str, Any]:
    result = await db.execute(
        select(
            LeaderboardEntry.category,
            LeaderboardEntry.period,
            func.count().label("entry_count"),
            func.max(LeaderboardEntry.updated_at).label("last_updated"),
        ).group_by(LeaderboardEntry.category, LeaderboardEntry.period)
    )
    boards = [
        {
            "category": row.category,
            "period": row.period,
            "entry_count": row.entry_count,
            "last_updated": row.last_updated,
        }
        for row in result.all()
    ]
    return {"total_entries": sum(b["entry_count"] for b in boards), "leaderboards": boards}

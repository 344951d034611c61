"""Achievement progress tracking and catalogue management.

Progress per achievement type:
- count / special: +1 per qualifying activity
- amount: +points awarded
- streak: consecutive local calendar days (gap of one day extends, longer
  gaps restart at 1, same day leaves it unchanged)

Completion is one-way. Repeatable achievements pay out on every crossing
and restart their progress; ``is_completed`` stays set.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from naffles.config import get_settings
from naffles.db.models import Achievement, Community, User, UserAchievement
from naffles.exceptions import AchievementNotFoundError
from naffles.points.activities import TX_BONUS, describe_activity, requirement_activities
from naffles.points.ledger import credit
from naffles.points.period_utils import local_date
from naffles.redis_client import CHANNEL_ACHIEVEMENT_UNLOCKED, broadcast

logger = logging.getLogger(__name__)

CATEGORIES = frozenset({"gaming", "raffles", "social", "milestones", "special", "community"})
TYPES = frozenset({"count", "streak", "amount", "special"})
RARITIES = ("common", "uncommon", "rare", "epic", "legendary")
TIMEFRAMES = frozenset({"daily", "weekly", "monthly", "all_time"})

_UPDATABLE_FIELDS = frozenset({
    "name", "description", "category", "type", "requirement_activity", "threshold", "timeframe",
    "reward_points", "reward_badge", "reward_title", "reward_multiplier", "rarity", "icon",
    "is_active", "is_repeatable", "sort_order",
})


# ---------------------------------------------------------------------------
# Progress tracking
# ---------------------------------------------------------------------------


async def _get_or_create_user_achievement(
    db: AsyncSession,
    user_id: int,
    achievement: Achievement,
) -> UserAchievement:
    stmt = (
        select(UserAchievement)
        .where(
            UserAchievement.user_id == user_id,
            UserAchievement.achievement_id == achievement.id,
        )
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    ua = result.scalar_one_or_none()
    if ua is not None:
        return ua

    ua = UserAchievement(
        user_id=user_id,
        achievement_id=achievement.id,
        community_id=achievement.community_id,
        progress=0,
        is_completed=False,
        points_awarded=0,
        times_completed=0,
        current_streak=0,
        best_streak=0,
    )
    try:
        async with db.begin_nested():
            db.add(ua)
    except IntegrityError:
        result = await db.execute(stmt)
        return result.scalar_one()
    return ua


def _advance(ua: UserAchievement, achievement: Achievement, amount: int, now: datetime) -> None:
    """Move progress forward for one qualifying activity."""
    if achievement.type == "streak":
        tz = get_settings().local_timezone
        if ua.last_activity is None:
            ua.current_streak = 1
        else:
            days = (local_date(now, tz) - local_date(ua.last_activity, tz)).days
            if days == 1:
                ua.current_streak += 1
            elif days > 1:
                ua.current_streak = 1
            elif ua.current_streak == 0:
                ua.current_streak = 1
        ua.progress = ua.current_streak
        ua.best_streak = max(ua.best_streak, ua.current_streak)
    elif achievement.type == "amount":
        ua.progress += amount
    else:
        ua.progress += 1
    ua.last_activity = now


async def update_achievement_progress(
    db: AsyncSession,
    redis: object,
    user_id: int,
    achievement: Achievement,
    amount: int,
    *,
    community: Community | None = None,
    now: datetime | None = None,
) -> dict[str, Any] | None:
    """Advance one achievement for a user. Returns unlock details or None."""
    if now is None:
        now = datetime.now(timezone.utc)

    ua = await _get_or_create_user_achievement(db, user_id, achievement)
    if ua.is_completed and not achievement.is_repeatable:
        return None

    _advance(ua, achievement, amount, now)

    if ua.progress < achievement.threshold:
        await db.flush()
        return None

    ua.is_completed = True
    ua.completed_at = now
    ua.times_completed += 1
    ua.points_awarded += achievement.reward_points
    if achievement.is_repeatable:
        ua.progress = 0
        ua.current_streak = 0
    await db.flush()

    transaction_id = None
    if achievement.reward_points > 0:
        metadata = {"achievement_id": achievement.id, "achievement_name": achievement.name}
        _, tx = await credit(
            db,
            user_id,
            achievement.reward_points,
            tx_type=TX_BONUS,
            activity="achievement_unlock",
            community=community,
            metadata=metadata,
            description=describe_activity("achievement_unlock", metadata),
            is_reversible=False,
        )
        transaction_id = tx.id

    logger.info("User %s unlocked achievement %r (+%d)", user_id, achievement.name, achievement.reward_points)
    await _emit_achievement_unlocked(redis, user_id, achievement)

    return {
        "achievement_id": achievement.id,
        "achievement": achievement.name,
        "points_awarded": achievement.reward_points,
        "times_completed": ua.times_completed,
        "transaction_id": transaction_id,
    }


async def _emit_achievement_unlocked(redis: object, user_id: int, achievement: Achievement) -> None:
    await broadcast(redis, CHANNEL_ACHIEVEMENT_UNLOCKED, {
        "user_id": user_id,
        "achievement_id": achievement.id,
        "name": achievement.name,
        "rarity": achievement.rarity,
        "reward_points": achievement.reward_points,
        "community_id": achievement.community_id,
    })


async def check_achievements(
    db: AsyncSession,
    redis: object,
    user_id: int,
    activity: str,
    points_awarded: int,
    metadata: dict[str, Any] | None = None,
    *,
    community: Community | None = None,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    """Advance every active achievement the activity is relevant to."""
    keys = requirement_activities(activity, metadata, community=community is not None)
    stmt = select(Achievement).where(
        Achievement.is_active.is_(True),
        Achievement.requirement_activity.in_(keys),
    )
    if community is None:
        stmt = stmt.where(Achievement.community_id.is_(None))
    else:
        if not community.enable_achievements:
            return []
        stmt = stmt.where(Achievement.community_id == community.id)
    result = await db.execute(stmt.order_by(Achievement.sort_order.asc(), Achievement.id.asc()))
    achievements = list(result.scalars().all())

    unlocked: list[dict[str, Any]] = []
    for achievement in achievements:
        outcome = await update_achievement_progress(
            db, redis, user_id, achievement, points_awarded, community=community, now=now,
        )
        if outcome is not None:
            unlocked.append(outcome)
    return unlocked


# ---------------------------------------------------------------------------
# Catalogue
# ---------------------------------------------------------------------------


async def get_achievement(db: AsyncSession, achievement_id: int) -> Achievement:
    achievement = await db.get(Achievement, achievement_id)
    if achievement is None:
        msg = f"Achievement {achievement_id} not found"
        raise AchievementNotFoundError(msg)
    return achievement


async def get_all_achievements(
    db: AsyncSession,
    *,
    category: str | None = None,
    rarity: str | None = None,
    community_id: int | None = None,
) -> list[Achievement]:
    stmt = select(Achievement).where(Achievement.is_active.is_(True))
    if community_id is None:
        stmt = stmt.where(Achievement.community_id.is_(None))
    else:
        stmt = stmt.where(Achievement.community_id == community_id)
    if category:
        stmt = stmt.where(Achievement.category == category)
    if rarity:
        stmt = stmt.where(Achievement.rarity == rarity)
    result = await db.execute(stmt.order_by(Achievement.sort_order.asc(), Achievement.name.asc()))
    return list(result.scalars().all())


def _progress_percentage(ua: UserAchievement, achievement: Achievement) -> float:
    threshold = achievement.threshold
    if threshold <= 0:
        return 100.0 if ua.is_completed else 0.0
    if ua.is_completed and ua.progress == 0:
        return 100.0
    return min(ua.progress / threshold * 100, 100.0)


async def get_user_achievements(
    db: AsyncSession,
    user_id: int,
    *,
    include_progress: bool = False,
    limit: int | None = None,
) -> list[dict[str, Any]]:
    """Completed achievements (or all tracked ones with include_progress), newest first."""
    stmt = (
        select(UserAchievement, Achievement)
        .join(Achievement, Achievement.id == UserAchievement.achievement_id)
        .where(UserAchievement.user_id == user_id)
    )
    if not include_progress:
        stmt = stmt.where(UserAchievement.is_completed.is_(True))
    stmt = stmt.order_by(UserAchievement.completed_at.desc(), UserAchievement.id.asc())
    if limit:
        stmt = stmt.limit(limit)
    result = await db.execute(stmt)

    return [
        {
            "achievement_id": ua.achievement_id,
            "name": achievement.name,
            "category": achievement.category,
            "rarity": achievement.rarity,
            "progress": ua.progress,
            "threshold": achievement.threshold,
            "is_completed": ua.is_completed,
            "completed_at": ua.completed_at,
            "points_awarded": ua.points_awarded,
            "times_completed": ua.times_completed,
            "current_streak": ua.current_streak,
            "best_streak": ua.best_streak,
            "progress_percentage": _progress_percentage(ua, achievement),
        }
        for ua, achievement in result.tuples().all()
    ]


async def get_achievement_stats(db: AsyncSession, achievement_id: int) -> dict[str, Any]:
    """Completion statistics for one achievement."""
    await get_achievement(db, achievement_id)

    total_users = (await db.execute(
        select(func.count(func.distinct(UserAchievement.user_id)))
    )).scalar_one()
    completed_users = (await db.execute(
        select(func.count())
        .select_from(UserAchievement)
        .where(UserAchievement.achievement_id == achievement_id, UserAchievement.is_completed.is_(True))
    )).scalar_one()

    recent = await db.execute(
        select(UserAchievement.user_id, User.username, UserAchievement.completed_at)
        .join(User, User.id == UserAchievement.user_id)
        .where(UserAchievement.achievement_id == achievement_id, UserAchievement.is_completed.is_(True))
        .order_by(UserAchievement.completed_at.desc())
        .limit(10)
    )

    return {
        "total_users": total_users,
        "completed_users": completed_users,
        "completion_rate": (completed_users / total_users * 100) if total_users else 0.0,
        "recent_completions": [
            {"user_id": row.user_id, "username": row.username, "completed_at": row.completed_at}
            for row in recent.all()
        ],
    }


def _validate_fields(data: dict[str, Any]) -> None:
    if "category" in data and data["category"] not in CATEGORIES:
        msg = f"Invalid achievement category: {data['category']}"
        raise ValueError(msg)
    if "type" in data and data["type"] not in TYPES:
        msg = f"Invalid achievement type: {data['type']}"
        raise ValueError(msg)
    if "rarity" in data and data["rarity"] not in RARITIES:
        msg = f"Invalid achievement rarity: {data['rarity']}"
        raise ValueError(msg)
    if data.get("timeframe") and data["timeframe"] not in TIMEFRAMES:
        msg = f"Invalid achievement timeframe: {data['timeframe']}"
        raise ValueError(msg)
    if "threshold" in data and int(data["threshold"]) < 1:
        msg = "Achievement threshold must be at least 1"
        raise ValueError(msg)
    if "reward_points" in data and int(data["reward_points"]) < 0:
        msg = "Achievement reward points cannot be negative"
        raise ValueError(msg)


async def create_achievement(
    db: AsyncSession,
    data: dict[str, Any],
    *,
    created_by: int | None = None,
    community_id: int | None = None,
) -> Achievement:
    for required in ("name", "description", "category", "type", "requirement_activity", "threshold"):
        if data.get(required) in (None, ""):
            msg = f"Missing required achievement field: {required}"
            raise ValueError(msg)
    _validate_fields(data)

    fields = {k: v for k, v in data.items() if k in _UPDATABLE_FIELDS}
    fields.setdefault("reward_points", 0)
    fields.setdefault("rarity", "common")
    fields.setdefault("is_active", True)
    fields.setdefault("is_repeatable", False)
    fields.setdefault("sort_order", 0)
    fields.setdefault("reward_multiplier", 1.0)
    fields.setdefault("icon", "trophy")

    achievement = Achievement(community_id=community_id, created_by=created_by, **fields)
    db.add(achievement)
    await db.flush()
    return achievement


async def update_achievement(db: AsyncSession, achievement_id: int, updates: dict[str, Any]) -> Achievement:
    achievement = await get_achievement(db, achievement_id)
    filtered = {k: v for k, v in updates.items() if k in _UPDATABLE_FIELDS}
    _validate_fields(filtered)
    for key, value in filtered.items():
        setattr(achievement, key, value)
    achievement.updated_at = datetime.now(timezone.utc)
    await db.flush()
    return achievement


async def delete_achievement(db: AsyncSession, achievement_id: int) -> Achievement:
    """Soft delete: the definition stays for users who already earned it."""
    achievement = await get_achievement(db, achievement_id)
    achievement.is_active = False
    achievement.updated_at = datetime.now(timezone.utc)
    await db.flush()
    return achievement


async def get_achievement_leaderboard(db: AsyncSession, limit: int = 100) -> list[dict[str, Any]]:
    """Users ranked by completed achievements, then by points from achievements."""
    count_col = func.count(UserAchievement.id).label("achievement_count")
    points_col = func.coalesce(func.sum(UserAchievement.points_awarded), 0).label("total_points")
    result = await db.execute(
        select(
            UserAchievement.user_id,
            User.username,
            User.wallet_address,
            count_col,
            points_col,
            func.max(UserAchievement.completed_at).label("last_achievement"),
        )
        .join(User, User.id == UserAchievement.user_id)
        .where(UserAchievement.is_completed.is_(True))
        .group_by(UserAchievement.user_id, User.username, User.wallet_address)
        .order_by(count_col.desc(), points_col.desc())
        .limit(limit)
    )
    return [
        {
            "user_id": row.user_id,
            "username": row.username,
            "wallet_address": row.wallet_address,
            "achievement_count": row.achievement_count,
            "total_points": row.total_points,
            "last_achievement": row.last_achievement,
        }
        for row in result.all()
    ]


async def get_user_achievement_summary(db: AsyncSession, user_id: int) -> dict[str, Any]:
    total_achievements = (await db.execute(
        select(func.count())
        .select_from(Achievement)
        .where(Achievement.is_active.is_(True), Achievement.community_id.is_(None))
    )).scalar_one()

    result = await db.execute(
        select(UserAchievement, Achievement)
        .join(Achievement, Achievement.id == UserAchievement.achievement_id)
        .where(UserAchievement.user_id == user_id)
    )
    tracked = list(result.tuples().all())
    completed = [(ua, a) for ua, a in tracked if ua.is_completed]
    in_progress = [ua for ua, _ in tracked if not ua.is_completed and ua.progress > 0]

    by_category: dict[str, int] = {}
    for _, achievement in completed:
        by_category[achievement.category] = by_category.get(achievement.category, 0) + 1

    rarest = None
    rare_ranked = [a for _, a in completed if a.rarity in ("rare", "epic", "legendary")]
    if rare_ranked:
        best = max(rare_ranked, key=lambda a: RARITIES.index(a.rarity))
        rarest = {"achievement_id": best.id, "name": best.name, "rarity": best.rarity}

    return {
        "total_achievements": total_achievements,
        "completed": len(completed),
        "in_progress": len(in_progress),
        "completion_rate": (len(completed) / total_achievements * 100) if total_achievements else 0.0,
        "total_points_from_achievements": sum(ua.points_awarded for ua, _ in completed),
        "achievements_by_category": by_category,
        "rarest_achievement": rarest,
    }

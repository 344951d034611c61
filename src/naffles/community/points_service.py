"""Community-scoped points: the ledger operations run per community.

Every community has its own balances, activity points map, tiers and
achievements. Only the Naffles community feeds the jackpot.
"""

from __future__ import annotations

import logging
import math
import random
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from naffles.community.service import (
    ROLE_PERMISSIONS,
    can_user_manage_community,
    get_community,
    get_membership,
    get_or_create_naffles_community,
    require_membership,
)
from naffles.config import get_settings
from naffles.db.models import (
    Community,
    CommunityMember,
    CommunityPointsBalance,
    CommunityPointsTransaction,
    PointsBalance,
    PointsTransaction,
    User,
)
from naffles.exceptions import InsufficientPermissionsError, UnknownActivityError
from naffles.points import ledger
from naffles.points.activities import (
    ACTIVITY_DESCRIPTIONS,
    TX_ADMIN_DEDUCT,
    TX_EARNED,
    TX_SPENT,
    additional_multiplier,
    describe_activity,
    get_base_points,
    partner_bonus_type,
)
from naffles.points.events import enqueue_award_event, process_event_inline
from naffles.points.partner_tokens import get_partner_multiplier

logger = logging.getLogger(__name__)


def _describe(activity: str, metadata: dict[str, Any], points_name: str) -> str:
    if activity in ACTIVITY_DESCRIPTIONS or activity == "achievement_unlock":
        return describe_activity(activity, metadata)
    return f"Earned {points_name}"


def _has_jackpot(community: Community) -> bool:
    return community.is_naffles_community and community.enable_jackpot


def _transaction_dict(tx: CommunityPointsTransaction) -> dict[str, Any]:
    return {
        "id": tx.id,
        "type": tx.type,
        "activity": tx.activity,
        "amount": tx.amount,
        "balance_before": tx.balance_before,
        "balance_after": tx.balance_after,
        "multiplier": tx.multiplier,
        "description": tx.description,
        "points_name": tx.points_name,
        "is_system_wide": tx.is_system_wide,
        "is_reversible": tx.is_reversible,
        "reversed_at": tx.reversed_at,
        "created_at": tx.created_at,
    }


# ---------------------------------------------------------------------------
# Ledger operations
# ---------------------------------------------------------------------------


async def award_community_points(
    db: AsyncSession,
    redis: object,
    user_id: int,
    community_id: int,
    activity: str,
    metadata: dict[str, Any] | None = None,
    *,
    rng: random.Random | None = None,
    process_inline: bool | None = None,
) -> dict[str, Any]:
    """Award points for an activity inside one community.

    Base points come from the community's activity points map; an activity
    missing from it, or worth zero, is unknown to the community.
    """
    metadata = dict(metadata or {})
    community = await get_community(db, community_id, active_only=True, for_update=True)
    membership = await require_membership(db, user_id, community_id)

    base_points = get_base_points(activity, community.activity_points_map or {})
    if base_points <= 0:
        msg = f"Unknown activity for community: {activity}"
        raise UnknownActivityError(msg)

    partner_multiplier = await get_partner_multiplier(
        db, metadata.get("token_contract"), metadata.get("chain_id"), partner_bonus_type(activity),
    )
    multiplier = partner_multiplier * additional_multiplier(metadata)
    final_points = math.floor(base_points * multiplier)

    balance, tx = await ledger.credit(
        db,
        user_id,
        final_points,
        tx_type=TX_EARNED,
        activity=activity,
        community=community,
        base_amount=base_points,
        multiplier=multiplier,
        metadata=metadata,
        description=_describe(activity, metadata, community.points_name),
        is_reversible=True,
    )

    now = datetime.now(timezone.utc)
    community.total_points_issued += final_points
    community.total_activities += 1
    membership.last_activity = now

    event = enqueue_award_event(
        db,
        user_id=user_id,
        activity=activity,
        points=final_points,
        transaction_id=tx.id,
        metadata=metadata,
        community_id=community.id,
    )
    await db.commit()
    logger.info(
        "Awarded %d %s to user %s in community %s for %s",
        final_points, community.points_name, user_id, community.id, activity,
    )

    result: dict[str, Any] = {
        "points_awarded": final_points,
        "new_balance": balance.balance,
        "multiplier": multiplier,
        "transaction_id": tx.id,
        "event_id": event.id,
        "community_name": community.name,
        "points_name": community.points_name,
        "events": None,
    }

    if process_inline is None:
        process_inline = get_settings().process_side_effects_inline
    if process_inline:
        result["events"] = await process_event_inline(db, redis, event, rng=rng)
    return result


async def deduct_community_points(
    db: AsyncSession,
    user_id: int,
    community_id: int,
    amount: int,
    reason: str | None = None,
    admin_id: int | None = None,
) -> dict[str, Any]:
    """Deduct from an existing community balance. Raises InsufficientBalanceError."""
    community = await get_community(db, community_id)
    balance, tx = await ledger.debit(
        db,
        user_id,
        amount,
        tx_type=TX_ADMIN_DEDUCT if admin_id else TX_SPENT,
        activity="manual_deduction",
        community=community,
        metadata={"admin_id": admin_id, "reason": reason},
        description=reason or "Points deducted",
        is_reversible=bool(admin_id),
        admin_id=admin_id,
        create_if_missing=False,
    )
    await db.commit()
    return {
        "points_deducted": amount,
        "new_balance": balance.balance,
        "transaction_id": tx.id,
        "community_name": community.name,
        "points_name": community.points_name,
    }


async def reverse_community_transaction(
    db: AsyncSession,
    community_id: int,
    transaction_id: int,
    admin_id: int,
    reason: str,
) -> dict[str, Any]:
    community = await get_community(db, community_id)
    if not await can_user_manage_community(db, admin_id, community_id):
        msg = "Insufficient permissions to reverse transactions in this community"
        raise InsufficientPermissionsError(msg)

    compensating = await ledger.reverse_transaction(
        db, transaction_id, admin_id=admin_id, reason=reason, community=community,
    )
    await db.commit()
    return {
        "original_transaction_id": transaction_id,
        "reversal_transaction_id": compensating.id,
        "amount": compensating.amount,
        "new_balance": compensating.balance_after,
    }


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------


async def get_user_community_rank(db: AsyncSession, user_id: int, community_id: int) -> int | None:
    """1 + the number of members strictly ahead (total earned, then balance)."""
    balance = await ledger.get_balance(db, user_id, community_id)
    if balance is None:
        return None
    result = await db.execute(
        select(func.count())
        .select_from(CommunityPointsBalance)
        .where(
            CommunityPointsBalance.community_id == community_id,
            or_(
                CommunityPointsBalance.total_earned > balance.total_earned,
                and_(
                    CommunityPointsBalance.total_earned == balance.total_earned,
                    CommunityPointsBalance.balance > balance.balance,
                ),
            ),
        )
    )
    return result.scalar_one() + 1


async def get_user_community_points_info(db: AsyncSession, user_id: int, community_id: int) -> dict[str, Any]:
    community = await get_community(db, community_id)
    balance = await ledger.get_or_create_balance(db, user_id, community)
    await db.commit()

    history = await ledger.get_transaction_history(db, user_id, community_id=community_id, limit=10)
    rank = await get_user_community_rank(db, user_id, community_id)

    return {
        "community_id": community.id,
        "community_name": community.name,
        "points_name": community.points_name,
        "points_symbol": community.points_symbol,
        "balance": balance.balance,
        "total_earned": balance.total_earned,
        "total_spent": balance.total_spent,
        "tier": balance.tier,
        "tier_progress": balance.tier_progress,
        "rank": rank,
        "recent_transactions": [_transaction_dict(tx) for tx in history["transactions"]],
        "last_activity": balance.last_activity,
        "has_jackpot": _has_jackpot(community),
    }


async def get_user_all_community_points(db: AsyncSession, user_id: int) -> list[dict[str, Any]]:
    result = await db.execute(
        select(CommunityPointsBalance, Community)
        .join(Community, Community.id == CommunityPointsBalance.community_id)
        .where(CommunityPointsBalance.user_id == user_id, Community.is_active.is_(True))
        .order_by(Community.is_naffles_community.desc(), CommunityPointsBalance.total_earned.desc())
    )
    return [
        {
            "community_id": community.id,
            "community_name": community.name,
            "points_name": community.points_name,
            "points_symbol": community.points_symbol,
            "is_naffles_community": community.is_naffles_community,
            "balance": balance.balance,
            "total_earned": balance.total_earned,
            "tier": balance.tier,
        }
        for balance, community in result.tuples().all()
    ]


async def get_community_transaction_history(
    db: AsyncSession,
    user_id: int,
    community_id: int,
    **filters: Any,  # noqa: ANN401
) -> dict[str, Any]:
    history = await ledger.get_transaction_history(db, user_id, community_id=community_id, **filters)
    history["transactions"] = [_transaction_dict(tx) for tx in history["transactions"]]
    return history


async def get_community_leaderboard(db: AsyncSession, community_id: int, limit: int = 100) -> list[dict[str, Any]]:
    """Top balances by total earned, then current balance."""
    community = await get_community(db, community_id)
    if not community.enable_leaderboards:
        return []
    limit = max(1, min(limit, get_settings().leaderboard_max_limit))
    result = await db.execute(
        select(CommunityPointsBalance, User.username)
        .join(User, User.id == CommunityPointsBalance.user_id)
        .where(CommunityPointsBalance.community_id == community_id)
        .order_by(
            CommunityPointsBalance.total_earned.desc(),
            CommunityPointsBalance.balance.desc(),
            CommunityPointsBalance.id.asc(),
        )
        .limit(limit)
    )
    return [
        {
            "rank": position,
            "user_id": balance.user_id,
            "username": username,
            "balance": balance.balance,
            "total_earned": balance.total_earned,
            "tier": balance.tier,
        }
        for position, (balance, username) in enumerate(result.tuples().all(), start=1)
    ]


# ---------------------------------------------------------------------------
# Migration
# ---------------------------------------------------------------------------


async def _ensure_member(db: AsyncSession, user_id: int, community: Community) -> None:
    membership = await get_membership(db, user_id, community.id, active_only=False)
    if membership is None:
        db.add(CommunityMember(
            user_id=user_id,
            community_id=community.id,
            role="member",
            permissions=dict(ROLE_PERMISSIONS["member"]),
            is_active=True,
        ))
        community.member_count += 1
    elif not membership.is_active:
        membership.is_active = True
        community.member_count += 1


async def migrate_global_points_to_naffles(db: AsyncSession) -> dict[str, Any]:
    """Copy global balances and history into the Naffles community.

    Safe to re-run. A balance is copied only when the user has no Naffles
    community balance yet; a transaction is skipped when a copy with the same
    user, amount and timestamp already exists.
    """
    naffles = await get_or_create_naffles_community(db)
    stats = {
        "community_id": naffles.id,
        "balances_migrated": 0,
        "balances_skipped": 0,
        "transactions_migrated": 0,
        "transactions_skipped": 0,
    }

    balances = (await db.execute(select(PointsBalance).order_by(PointsBalance.user_id))).scalars().all()
    for source in balances:
        await _ensure_member(db, source.user_id, naffles)
        existing = await ledger.get_balance(db, source.user_id, naffles.id)
        if existing is not None:
            stats["balances_skipped"] += 1
        else:
            db.add(CommunityPointsBalance(
                user_id=source.user_id,
                community_id=naffles.id,
                balance=source.balance,
                total_earned=source.total_earned,
                total_spent=source.total_spent,
                tier=source.tier,
                tier_progress=source.tier_progress,
                last_activity=source.last_activity,
            ))
            stats["balances_migrated"] += 1

        copied = await db.execute(
            select(CommunityPointsTransaction.amount, CommunityPointsTransaction.created_at).where(
                CommunityPointsTransaction.user_id == source.user_id,
                CommunityPointsTransaction.community_id == naffles.id,
            )
        )
        seen = {(row.amount, row.created_at) for row in copied.all()}

        history = await db.execute(
            select(PointsTransaction)
            .where(PointsTransaction.user_id == source.user_id)
            .order_by(PointsTransaction.created_at.asc(), PointsTransaction.id.asc())
        )
        for tx in history.scalars().all():
            if (tx.amount, tx.created_at) in seen:
                stats["transactions_skipped"] += 1
                continue
            db.add(CommunityPointsTransaction(
                user_id=tx.user_id,
                community_id=naffles.id,
                type=tx.type,
                activity=tx.activity,
                amount=tx.amount,
                balance_before=tx.balance_before,
                balance_after=tx.balance_after,
                multiplier=tx.multiplier,
                base_amount=tx.base_amount,
                tx_metadata={**(tx.tx_metadata or {}), "migrated_from_transaction_id": tx.id},
                description=tx.description,
                points_name=naffles.points_name,
                is_naffles_community=True,
                is_system_wide=True,
                admin_id=tx.admin_id,
                is_reversible=False,
                reversed_at=tx.reversed_at,
                created_at=tx.created_at,
            ))
            stats["transactions_migrated"] += 1

        await db.flush()

    await db.commit()
    logger.info("Global points migrated to Naffles community: %s", stats)
    return stats

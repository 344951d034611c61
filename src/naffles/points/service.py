"""Points service: award, deduct and report on the global ledger.

Award and deduct are units of work: they commit. An award also stages its
side effects in the outbox (see ``naffles.points.events``) and, unless
disabled in settings, processes them straight after the commit.
"""

from __future__ import annotations

import logging
import math
import random
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from naffles.config import get_settings
from naffles.db.models import PointsTransaction, User
from naffles.exceptions import UserNotFoundError
from naffles.points import ledger
from naffles.points.achievement_service import get_user_achievements
from naffles.points.activities import (
    TX_ADMIN_AWARD,
    TX_ADMIN_DEDUCT,
    TX_EARNED,
    TX_SPENT,
    additional_multiplier,
    describe_activity,
    get_base_points,
    partner_bonus_type,
)
from naffles.points.events import enqueue_award_event, process_event_inline
from naffles.points.leaderboard_service import get_user_rank
from naffles.points.partner_tokens import get_partner_multiplier
from naffles.points.tiers import compute_tier

logger = logging.getLogger(__name__)


async def _require_user(db: AsyncSession, user_id: int) -> User:
    user = await db.get(User, user_id)
    if user is None:
        msg = f"User {user_id} not found"
        raise UserNotFoundError(msg)
    return user


def _transaction_dict(tx: PointsTransaction) -> dict[str, Any]:
    return {
        "id": tx.id,
        "type": tx.type,
        "activity": tx.activity,
        "amount": tx.amount,
        "balance_before": tx.balance_before,
        "balance_after": tx.balance_after,
        "multiplier": tx.multiplier,
        "description": tx.description,
        "is_reversible": tx.is_reversible,
        "reversed_at": tx.reversed_at,
        "created_at": tx.created_at,
    }


async def award_points(
    db: AsyncSession,
    redis: object,
    user_id: int,
    activity: str,
    metadata: dict[str, Any] | None = None,
    *,
    rng: random.Random | None = None,
    process_inline: bool | None = None,
) -> dict[str, Any]:
    """Award points for a platform activity.

    ``metadata`` may carry ``token_contract``/``chain_id`` for a partner
    multiplier and ``additional_multiplier``. Points are
    ``floor(base * partner * additional)``.

    Returns ``points_awarded``, ``new_balance``, ``multiplier``,
    ``transaction_id``, ``event_id`` and ``events`` (side-effect results, or
    None when the outbox is left to the worker).
    """
    metadata = dict(metadata or {})
    base_points = get_base_points(activity)
    await _require_user(db, user_id)

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
        base_amount=base_points,
        multiplier=multiplier,
        metadata=metadata,
        description=describe_activity(activity, metadata),
        is_reversible=True,
    )
    event = enqueue_award_event(
        db,
        user_id=user_id,
        activity=activity,
        points=final_points,
        transaction_id=tx.id,
        metadata=metadata,
    )
    await db.commit()
    logger.info("Awarded %d points to user %s for %s (x%.2f)", final_points, user_id, activity, multiplier)

    result: dict[str, Any] = {
        "points_awarded": final_points,
        "new_balance": balance.balance,
        "multiplier": multiplier,
        "transaction_id": tx.id,
        "event_id": event.id,
        "events": None,
    }

    if process_inline is None:
        process_inline = get_settings().process_side_effects_inline
    if process_inline:
        result["events"] = await process_event_inline(db, redis, event, rng=rng)
    return result


async def deduct_points(
    db: AsyncSession,
    user_id: int,
    amount: int,
    reason: str | None = None,
    admin_id: int | None = None,
) -> dict[str, Any]:
    """Spend points, or deduct them as an admin. Raises InsufficientBalanceError."""
    await _require_user(db, user_id)
    balance, tx = await ledger.debit(
        db,
        user_id,
        amount,
        tx_type=TX_ADMIN_DEDUCT if admin_id else TX_SPENT,
        activity="admin_manual",
        metadata={"reason": reason, "admin_id": admin_id},
        description=reason or "Points deducted",
        is_reversible=bool(admin_id),
        admin_id=admin_id,
    )
    await db.commit()
    logger.info("Deducted %d points from user %s", amount, user_id)
    return {"points_deducted": amount, "new_balance": balance.balance, "transaction_id": tx.id}


async def admin_award_points(
    db: AsyncSession,
    user_id: int,
    amount: int,
    reason: str,
    admin_id: int,
) -> dict[str, Any]:
    """Credit an arbitrary amount on an admin's behalf. No side effects run."""
    await _require_user(db, user_id)
    balance, tx = await ledger.credit(
        db,
        user_id,
        amount,
        tx_type=TX_ADMIN_AWARD,
        activity="admin_manual",
        metadata={"reason": reason, "admin_id": admin_id},
        description=reason,
        is_reversible=True,
        admin_id=admin_id,
    )
    await db.commit()
    return {"points_awarded": amount, "new_balance": balance.balance, "transaction_id": tx.id}


async def reverse_points_transaction(
    db: AsyncSession,
    transaction_id: int,
    admin_id: int,
    reason: str,
) -> dict[str, Any]:
    compensating = await ledger.reverse_transaction(db, transaction_id, admin_id=admin_id, reason=reason)
    await db.commit()
    return {
        "original_transaction_id": transaction_id,
        "reversal_transaction_id": compensating.id,
        "amount": compensating.amount,
        "new_balance": compensating.balance_after,
    }


async def get_user_points_info(db: AsyncSession, user_id: int) -> dict[str, Any]:
    """Balance, tier, rank, recent activity and recent achievements for a user."""
    await _require_user(db, user_id)
    balance = await ledger.get_or_create_balance(db, user_id)
    await db.commit()

    tier = compute_tier(balance.total_earned)
    rank = await get_user_rank(db, user_id)

    recent = await db.execute(
        select(PointsTransaction)
        .where(PointsTransaction.user_id == user_id)
        .order_by(PointsTransaction.created_at.desc(), PointsTransaction.id.desc())
        .limit(10)
    )
    achievements = await get_user_achievements(db, user_id, limit=5)

    return {
        "balance": balance.balance,
        "total_earned": balance.total_earned,
        "total_spent": balance.total_spent,
        "tier": tier["tier"],
        "tier_progress": tier["progress"],
        "next_tier": tier["next_tier"],
        "points_to_next_tier": tier["points_to_next"],
        "rank": rank,
        "recent_transactions": [_transaction_dict(tx) for tx in recent.scalars().all()],
        "achievements": achievements,
        "last_activity": balance.last_activity,
    }


async def get_transaction_history(db: AsyncSession, user_id: int, **filters: Any) -> dict[str, Any]:  # noqa: ANN401
    """Paginated global history; see ``ledger.get_transaction_history`` for filters."""
    history = await ledger.get_transaction_history(db, user_id, **filters)
    history["transactions"] = [_transaction_dict(tx) for tx in history["transactions"]]
    return history

"""Balance store and transaction log.

Every mutation follows the same discipline: lock the balance row
(``SELECT ... FOR UPDATE``), compute the new balance, append a transaction
snapshotting ``balance_before``/``balance_after``, update the aggregate
counters and recompute the tier, all inside the caller's DB transaction.

The same functions serve the global ledger and the community-scoped ledger;
passing a ``Community`` selects the community tables.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Union

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from naffles.db.models import (
    Community,
    CommunityPointsBalance,
    CommunityPointsTransaction,
    PointsBalance,
    PointsTransaction,
)
from naffles.exceptions import (
    AlreadyReversedError,
    InsufficientBalanceError,
    InvalidAmountError,
    NotReversibleError,
    TransactionNotFoundError,
)
from naffles.points.activities import TX_ADMIN_AWARD, TX_PENALTY
from naffles.points.tiers import apply_tier

logger = logging.getLogger(__name__)

Balance = Union[PointsBalance, CommunityPointsBalance]
Transaction = Union[PointsTransaction, CommunityPointsTransaction]


def _tiers_for(community: Community | None) -> list[dict[str, Any]] | None:
    if community is not None and community.custom_tiers:
        return community.custom_tiers
    return None


# ---------------------------------------------------------------------------
# Balance store
# ---------------------------------------------------------------------------


async def get_balance(
    db: AsyncSession,
    user_id: int,
    community_id: int | None = None,
    *,
    for_update: bool = False,
) -> Balance | None:
    """Fetch a balance row, optionally locking it for the rest of the transaction."""
    if community_id is None:
        stmt = select(PointsBalance).where(PointsBalance.user_id == user_id)
    else:
        stmt = select(CommunityPointsBalance).where(
            CommunityPointsBalance.user_id == user_id,
            CommunityPointsBalance.community_id == community_id,
        )
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_or_create_balance(
    db: AsyncSession,
    user_id: int,
    community: Community | None = None,
    *,
    for_update: bool = False,
) -> Balance:
    """Return the user's balance in scope, creating it if absent.

    Community balances start at the community's ``initial_balance``.
    Concurrent first-time creation is resolved by the unique constraint:
    the loser re-reads the winner's row.
    """
    community_id = community.id if community is not None else None
    balance = await get_balance(db, user_id, community_id, for_update=for_update)
    if balance is not None:
        return balance

    now = datetime.now(timezone.utc)
    if community is None:
        balance = PointsBalance(
            user_id=user_id,
            balance=0,
            total_earned=0,
            total_spent=0,
            last_activity=now,
        )
    else:
        balance = CommunityPointsBalance(
            user_id=user_id,
            community_id=community.id,
            balance=community.initial_balance or 0,
            total_earned=0,
            total_spent=0,
            last_activity=now,
        )
    apply_tier(balance, _tiers_for(community))

    try:
        async with db.begin_nested():
            db.add(balance)
    except IntegrityError:
        logger.debug("Balance for user %s created concurrently, re-reading", user_id)
        existing = await get_balance(db, user_id, community_id, for_update=for_update)
        if existing is None:
            raise
        return existing
    return balance


# ---------------------------------------------------------------------------
# Transaction log
# ---------------------------------------------------------------------------


def _new_transaction(
    balance: Balance,
    community: Community | None,
    **fields: Any,  # noqa: ANN401
) -> Transaction:
    if community is None:
        return PointsTransaction(user_id=balance.user_id, **fields)
    return CommunityPointsTransaction(
        user_id=balance.user_id,
        community_id=community.id,
        points_name=community.points_name,
        is_naffles_community=community.is_naffles_community,
        **fields,
    )


async def _record(
    db: AsyncSession,
    balance: Balance,
    community: Community | None,
    *,
    amount: int,
    tx_type: str,
    activity: str,
    base_amount: int | None,
    multiplier: float,
    metadata: dict[str, Any] | None,
    description: str | None,
    is_reversible: bool,
    admin_id: int | None,
    extra: dict[str, Any] | None = None,
) -> Transaction:
    """Append a transaction and move the balance by ``amount``."""
    now = datetime.now(timezone.utc)
    balance_before = balance.balance
    balance_after = balance_before + amount

    tx = _new_transaction(
        balance,
        community,
        type=tx_type,
        activity=activity,
        amount=amount,
        balance_before=balance_before,
        balance_after=balance_after,
        multiplier=multiplier,
        base_amount=amount if base_amount is None else base_amount,
        tx_metadata=dict(metadata or {}),
        description=description,
        is_reversible=is_reversible,
        admin_id=admin_id,
        created_at=now,
        **(extra or {}),
    )
    db.add(tx)

    balance.balance = balance_after
    balance.last_activity = now
    balance.updated_at = now
    await db.flush()
    return tx


async def credit(
    db: AsyncSession,
    user_id: int,
    amount: int,
    *,
    tx_type: str,
    activity: str,
    community: Community | None = None,
    base_amount: int | None = None,
    multiplier: float = 1.0,
    metadata: dict[str, Any] | None = None,
    description: str | None = None,
    is_reversible: bool = True,
    admin_id: int | None = None,
    extra: dict[str, Any] | None = None,
) -> tuple[Balance, Transaction]:
    """Add points to a balance and record the movement."""
    if amount < 0:
        msg = f"Credit amount must be non-negative, got {amount}"
        raise InvalidAmountError(msg)

    balance = await get_or_create_balance(db, user_id, community, for_update=True)
    balance.total_earned += amount
    apply_tier(balance, _tiers_for(community))
    tx = await _record(
        db, balance, community,
        amount=amount,
        tx_type=tx_type,
        activity=activity,
        base_amount=base_amount,
        multiplier=multiplier,
        metadata=metadata,
        description=description,
        is_reversible=is_reversible,
        admin_id=admin_id,
        extra=extra,
    )
    return balance, tx


async def debit(
    db: AsyncSession,
    user_id: int,
    amount: int,
    *,
    tx_type: str,
    activity: str,
    community: Community | None = None,
    metadata: dict[str, Any] | None = None,
    description: str | None = None,
    is_reversible: bool = False,
    admin_id: int | None = None,
    create_if_missing: bool = True,
) -> tuple[Balance, Transaction]:
    """Remove points from a balance; the balance may not go negative."""
    if amount <= 0:
        msg = f"Debit amount must be positive, got {amount}"
        raise InvalidAmountError(msg)

    if create_if_missing:
        balance = await get_or_create_balance(db, user_id, community, for_update=True)
    else:
        found = await get_balance(
            db, user_id, community.id if community is not None else None, for_update=True,
        )
        if found is None:
            msg = "User has no points balance in this community"
            raise InsufficientBalanceError(msg, balance=0, requested=amount)
        balance = found

    if balance.balance < amount:
        msg = f"Insufficient points balance: have {balance.balance}, need {amount}"
        raise InsufficientBalanceError(msg, balance=balance.balance, requested=amount)

    balance.total_spent += amount
    apply_tier(balance, _tiers_for(community))
    tx = await _record(
        db, balance, community,
        amount=-amount,
        tx_type=tx_type,
        activity=activity,
        base_amount=-amount,
        multiplier=1.0,
        metadata=metadata,
        description=description,
        is_reversible=is_reversible,
        admin_id=admin_id,
    )
    return balance, tx


async def reverse_transaction(
    db: AsyncSession,
    transaction_id: int,
    *,
    admin_id: int | None,
    reason: str,
    community: Community | None = None,
) -> Transaction:
    """Reverse a transaction by appending a compensating one.

    Positive originals are reversed with a ``penalty`` that also decrements
    ``total_earned``; negative originals with an ``admin_award`` that
    decrements ``total_spent``. Raises TransactionNotFoundError,
    NotReversibleError, AlreadyReversedError or InsufficientBalanceError.
    """
    model = PointsTransaction if community is None else CommunityPointsTransaction
    result = await db.execute(
        select(model)
        .where(model.id == transaction_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    original = result.scalar_one_or_none()
    if original is None or (community is not None and original.community_id != community.id):
        msg = f"Transaction {transaction_id} not found"
        raise TransactionNotFoundError(msg)
    if not original.is_reversible:
        msg = "Transaction is not reversible"
        raise NotReversibleError(msg)
    if original.reversed_at is not None or original.reversed_by_id is not None:
        msg = "Transaction already reversed"
        raise AlreadyReversedError(msg)

    balance = await get_or_create_balance(db, original.user_id, community, for_update=True)
    amount = -original.amount

    if amount < 0 and balance.balance + amount < 0:
        msg = f"Insufficient points balance to reverse: have {balance.balance}, need {-amount}"
        raise InsufficientBalanceError(msg, balance=balance.balance, requested=-amount)

    if original.amount >= 0:
        tx_type = TX_PENALTY
        balance.total_earned -= original.amount
    else:
        tx_type = TX_ADMIN_AWARD
        balance.total_spent = max(0, balance.total_spent + original.amount)
    apply_tier(balance, _tiers_for(community))

    compensating = await _record(
        db, balance, community,
        amount=amount,
        tx_type=tx_type,
        activity="admin_manual",
        base_amount=-original.base_amount,
        multiplier=1.0,
        metadata={
            "admin_id": admin_id,
            "reason": reason,
            "original_transaction_id": original.id,
        },
        description=f"Reversal: {reason}",
        is_reversible=False,
        admin_id=admin_id,
    )

    original.reversed_at = datetime.now(timezone.utc)
    original.reversed_by_id = compensating.id
    await db.flush()

    logger.info(
        "Reversed transaction %s for user %s (compensating %s, amount %d)",
        original.id, original.user_id, compensating.id, amount,
    )
    return compensating


async def get_transaction_history(
    db: AsyncSession,
    user_id: int,
    *,
    community_id: int | None = None,
    page: int = 1,
    limit: int = 20,
    tx_type: str | None = None,
    activity: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
) -> dict[str, Any]:
    """Paginated transaction history, newest first."""
    model = PointsTransaction if community_id is None else CommunityPointsTransaction
    page = max(page, 1)
    limit = max(1, min(limit, 100))

    conditions = [model.user_id == user_id]
    if community_id is not None:
        conditions.append(CommunityPointsTransaction.community_id == community_id)
    if tx_type:
        conditions.append(model.type == tx_type)
    if activity:
        conditions.append(model.activity == activity)
    if date_from:
        conditions.append(model.created_at >= date_from)
    if date_to:
        conditions.append(model.created_at <= date_to)

    total_result = await db.execute(select(func.count()).select_from(model).where(*conditions))
    total = total_result.scalar_one()

    result = await db.execute(
        select(model)
        .where(*conditions)
        .order_by(model.created_at.desc(), model.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    transactions = list(result.scalars().all())

    return {
        "transactions": transactions,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit,
        },
    }

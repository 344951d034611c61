"""Partner token multipliers.

Holding a partner's token boosts points for the activity buckets the
partner enabled (gaming, raffleTickets, raffleCreation, staking).
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from naffles.db.models import PartnerToken

logger = logging.getLogger(__name__)

MIN_MULTIPLIER = 1.0
MAX_MULTIPLIER = 10.0

DEFAULT_BONUS_ACTIVITIES: dict[str, bool] = {
    "gaming": True,
    "raffleTickets": True,
    "raffleCreation": False,
    "staking": False,
}


def is_currently_valid(token: PartnerToken, now: datetime | None = None) -> bool:
    if not token.is_active:
        return False
    if now is None:
        now = datetime.now(timezone.utc)
    if token.valid_from and now < token.valid_from:
        return False
    if token.valid_until and now > token.valid_until:
        return False
    return True


def multiplier_for_activity(token: PartnerToken, bonus_type: str, now: datetime | None = None) -> float:
    """Token multiplier for a bonus bucket, 1.0 if the token does not apply."""
    if not is_currently_valid(token, now):
        return 1.0
    if not (token.bonus_activities or {}).get(bonus_type):
        return 1.0
    return float(token.multiplier)


async def find_by_contract(db: AsyncSession, contract_address: str, chain_id: str) -> PartnerToken | None:
    """Active partner token by contract, matched case-insensitively."""
    result = await db.execute(
        select(PartnerToken).where(
            PartnerToken.contract_address == contract_address.lower(),
            PartnerToken.chain_id == str(chain_id),
            PartnerToken.is_active.is_(True),
        )
    )
    return result.scalar_one_or_none()


async def get_partner_multiplier(
    db: AsyncSession,
    token_contract: str | None,
    chain_id: str | None,
    bonus_type: str,
) -> float:
    if not token_contract or not chain_id:
        return 1.0
    token = await find_by_contract(db, token_contract, chain_id)
    if token is None:
        return 1.0
    return multiplier_for_activity(token, bonus_type)


async def create_partner_token(
    db: AsyncSession,
    *,
    name: str,
    symbol: str,
    contract_address: str,
    chain_id: str,
    multiplier: float = 1.5,
    partner_name: str | None = None,
    bonus_activities: dict[str, bool] | None = None,
    valid_from: datetime | None = None,
    valid_until: datetime | None = None,
) -> PartnerToken:
    if not MIN_MULTIPLIER <= multiplier <= MAX_MULTIPLIER:
        msg = f"Multiplier must be between {MIN_MULTIPLIER} and {MAX_MULTIPLIER}"
        raise ValueError(msg)

    token = PartnerToken(
        name=name,
        symbol=symbol,
        contract_address=contract_address.lower(),
        chain_id=str(chain_id),
        multiplier=multiplier,
        partner_name=partner_name or name,
        bonus_activities={**DEFAULT_BONUS_ACTIVITIES, **(bonus_activities or {})},
        is_active=True,
        valid_from=valid_from or datetime.now(timezone.utc),
        valid_until=valid_until,
    )
    db.add(token)
    await db.flush()
    logger.info("Partner token %s (%s) registered with x%.2f", symbol, token.contract_address, multiplier)
    return token


async def list_active_partner_tokens(db: AsyncSession) -> list[PartnerToken]:
    now = datetime.now(timezone.utc)
    result = await db.execute(
        select(PartnerToken)
        .where(
            PartnerToken.is_active.is_(True),
            or_(PartnerToken.valid_from.is_(None), PartnerToken.valid_from <= now),
            or_(PartnerToken.valid_until.is_(None), PartnerToken.valid_until >= now),
        )
        .order_by(PartnerToken.partner_name.asc())
    )
    return list(result.scalars().all())

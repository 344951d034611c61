"""Default achievement catalogue and partner tokens.

Seeding is idempotent: rows are matched by name (achievements) or by
contract and chain (partner tokens) and only missing ones are inserted.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from naffles.db.models import Achievement, Community, PartnerToken
from naffles.points.partner_tokens import create_partner_token

logger = logging.getLogger(__name__)


def _achievement(
    name: str,
    description: str,
    category: str,
    type_: str,
    requirement: str,
    threshold: int,
    points: int,
    badge: str,
    rarity: str,
    order: int,
    *,
    multiplier: float = 1.0,
    title: str | None = None,
) -> dict[str, Any]:
    return {
        "name": name,
        "description": description,
        "category": category,
        "type": type_,
        "requirement_activity": requirement,
        "threshold": threshold,
        "reward_points": points,
        "reward_badge": badge,
        "reward_title": title,
        "reward_multiplier": multiplier,
        "rarity": rarity,
        "sort_order": order,
    }


ACHIEVEMENT_SEED_DATA: list[dict[str, Any]] = [
    # Gaming
    _achievement("First Game", "Play your first game", "gaming", "count", "gaming_sessions", 1, 50,
                 "first-game", "common", 1),
    _achievement("Gaming Enthusiast", "Play 10 games", "gaming", "count", "gaming_sessions", 10, 200,
                 "gaming-enthusiast", "uncommon", 2),
    _achievement("Gaming Master", "Play 100 games", "gaming", "count", "gaming_sessions", 100, 1000,
                 "gaming-master", "rare", 3, multiplier=1.1),
    _achievement("Lucky Winner", "Win 5 games", "gaming", "count", "gaming_wins", 5, 300,
                 "lucky-winner", "uncommon", 4),
    _achievement("Winning Streak", "Win 25 games", "gaming", "count", "gaming_wins", 25, 1500,
                 "winning-streak", "epic", 5, multiplier=1.2),
    # Raffles
    _achievement("First Raffle", "Create your first raffle", "raffles", "count", "raffle_creation", 1, 100,
                 "first-raffle", "common", 10),
    _achievement("Raffle Creator", "Create 5 raffles", "raffles", "count", "raffle_creation", 5, 500,
                 "raffle-creator", "uncommon", 11),
    _achievement("Raffle Master", "Create 25 raffles", "raffles", "count", "raffle_creation", 25, 2500,
                 "raffle-master", "epic", 12, multiplier=1.15),
    _achievement("First Win", "Win your first raffle", "raffles", "count", "raffle_wins", 1, 200,
                 "first-win", "uncommon", 13),
    _achievement("Lucky Charm", "Win 5 raffles", "raffles", "count", "raffle_wins", 5, 1000,
                 "lucky-charm", "rare", 14, multiplier=1.1),
    _achievement("Ticket Collector", "Purchase 100 raffle tickets", "raffles", "count", "ticket_purchases", 100,
                 500, "ticket-collector", "uncommon", 15),
    # Social
    _achievement("Social Butterfly", "Complete 10 community tasks", "social", "count", "community_participation",
                 10, 300, "social-butterfly", "uncommon", 20),
    _achievement("Community Leader", "Complete 50 community tasks", "social", "count", "community_participation",
                 50, 1500, "community-leader", "rare", 21, multiplier=1.1),
    _achievement("Referral Champion", "Refer 10 users", "social", "count", "referrals", 10, 1000,
                 "referral-champion", "epic", 22, multiplier=1.2),
    # Milestones
    _achievement("Point Collector", "Earn 1,000 points", "milestones", "amount", "points_earned", 1000, 100,
                 "point-collector", "common", 30),
    _achievement("Point Hoarder", "Earn 10,000 points", "milestones", "amount", "points_earned", 10000, 1000,
                 "point-hoarder", "rare", 31, multiplier=1.1),
    _achievement("Point Legend", "Earn 100,000 points", "milestones", "amount", "points_earned", 100000, 10000,
                 "point-legend", "legendary", 32, multiplier=1.25),
    _achievement("Daily Dedication", "Login for 7 consecutive days", "milestones", "streak", "consecutive_days", 7,
                 350, "daily-dedication", "uncommon", 33),
    _achievement("Loyalty Master", "Login for 30 consecutive days", "milestones", "streak", "consecutive_days", 30,
                 1500, "loyalty-master", "epic", 34, multiplier=1.15),
    # Special
    _achievement("Early Adopter", "One of the first 1000 users", "special", "special", "special_event", 1, 500,
                 "early-adopter", "rare", 40, title="Early Adopter"),
    _achievement("Beta Tester", "Participated in beta testing", "special", "special", "special_event", 1, 1000,
                 "beta-tester", "epic", 41, title="Beta Tester"),
]

COMMUNITY_ACHIEVEMENT_SEED_DATA: list[dict[str, Any]] = [
    _achievement("Welcome!", "Join the community and earn your first points", "milestones", "count",
                 "community_participation", 1, 100, "welcome", "common", 1, title="Newcomer"),
    _achievement("Point Collector", "Earn your first 1,000 points", "milestones", "amount", "points_earned", 1000,
                 200, "collector", "uncommon", 2, title="Collector"),
    _achievement("Community Champion", "Complete 10 community tasks", "social", "count", "community_participation",
                 10, 500, "champion", "rare", 3, title="Champion"),
]

PARTNER_TOKEN_SEED_DATA: list[dict[str, Any]] = [
    {
        "name": "Ethereum", "symbol": "ETH", "chain_id": "1", "multiplier": 1.2,
        "contract_address": "0x0000000000000000000000000000000000000000",
        "partner_name": "Ethereum Foundation",
        "bonus_activities": {"gaming": True, "raffleTickets": True, "raffleCreation": False, "staking": True},
    },
    {
        "name": "Solana", "symbol": "SOL", "chain_id": "solana", "multiplier": 1.3,
        "contract_address": "So11111111111111111111111111111111111111112",
        "partner_name": "Solana Foundation",
        "bonus_activities": {"gaming": True, "raffleTickets": True, "raffleCreation": True, "staking": True},
    },
    {
        "name": "Polygon", "symbol": "MATIC", "chain_id": "137", "multiplier": 1.25,
        "contract_address": "0x0000000000000000000000000000000000001010",
        "partner_name": "Polygon Technology",
        "bonus_activities": {"gaming": True, "raffleTickets": True, "raffleCreation": False, "staking": False},
    },
    {
        "name": "Base ETH", "symbol": "ETH", "chain_id": "8453", "multiplier": 1.15,
        "contract_address": "0x0000000000000000000000000000000000000000",
        "partner_name": "Base Network",
        "bonus_activities": {"gaming": True, "raffleTickets": True, "raffleCreation": False, "staking": False},
    },
]


async def seed_default_achievements(db: AsyncSession) -> int:
    """Insert any missing platform achievements. Returns the number created."""
    result = await db.execute(select(Achievement.name).where(Achievement.community_id.is_(None)))
    existing = set(result.scalars().all())

    created = 0
    for data in ACHIEVEMENT_SEED_DATA:
        if data["name"] in existing:
            continue
        db.add(Achievement(**data, is_active=True, is_repeatable=False))
        created += 1

    await db.flush()
    if created:
        logger.info("Seeded %d default achievements", created)
    return created


async def create_default_community_achievements(db: AsyncSession, community: Community) -> list[Achievement]:
    """The starter achievements every new community gets."""
    achievements = [
        Achievement(
            **data,
            community_id=community.id,
            created_by=community.creator_id,
            is_active=True,
            is_repeatable=False,
        )
        for data in COMMUNITY_ACHIEVEMENT_SEED_DATA
    ]
    db.add_all(achievements)
    await db.flush()
    return achievements


async def seed_default_partner_tokens(db: AsyncSession) -> int:
    """Register the launch partner tokens that are not yet present."""
    created = 0
    for data in PARTNER_TOKEN_SEED_DATA:
        result = await db.execute(
            select(PartnerToken.id).where(
                PartnerToken.contract_address == data["contract_address"].lower(),
                PartnerToken.chain_id == data["chain_id"],
            )
        )
        if result.first() is not None:
            continue
        await create_partner_token(db, **data)
        created += 1
    return created

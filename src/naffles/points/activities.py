"""Activity award policy tables.

Maps activity keys to base points, descriptions, partner-token bonus
buckets, jackpot increment buckets and the achievement requirements each
activity advances.
"""

from __future__ import annotations

from typing import Any

from naffles.exceptions import UnknownActivityError

ACTIVITY_POINTS: dict[str, int] = {
    "raffle_creation": 50,
    "raffle_ticket_purchase": 1,
    "gaming_blackjack": 5,
    "gaming_coin_toss": 3,
    "gaming_rock_paper_scissors": 3,
    "gaming_crypto_slots": 8,
    "token_staking": 10,
    "referral_bonus": 25,
    "daily_login": 5,
    "community_task": 15,
}

# Activities a community earns on by default (no staking, no referrals)
DEFAULT_COMMUNITY_ACTIVITY_POINTS: dict[str, int] = {
    "raffle_creation": 50,
    "raffle_ticket_purchase": 1,
    "gaming_blackjack": 5,
    "gaming_coin_toss": 3,
    "gaming_rock_paper_scissors": 3,
    "gaming_crypto_slots": 8,
    "community_task": 15,
    "daily_login": 5,
}

ACTIVITY_DESCRIPTIONS: dict[str, str] = {
    "raffle_creation": "Created a raffle",
    "raffle_ticket_purchase": "Purchased raffle tickets",
    "gaming_blackjack": "Played Blackjack",
    "gaming_coin_toss": "Played Coin Toss",
    "gaming_rock_paper_scissors": "Played Rock Paper Scissors",
    "gaming_crypto_slots": "Played Crypto Slots",
    "token_staking": "Token staking reward",
    "referral_bonus": "Referral bonus",
    "daily_login": "Daily login bonus",
    "community_task": "Completed community task",
    "jackpot_win": "Jackpot winner!",
}

# ---- Transaction types ----

TX_EARNED = "earned"
TX_SPENT = "spent"
TX_BONUS = "bonus"
TX_PENALTY = "penalty"
TX_JACKPOT = "jackpot"
TX_ADMIN_AWARD = "admin_award"
TX_ADMIN_DEDUCT = "admin_deduct"
TX_ACHIEVEMENT = "achievement"

TRANSACTION_TYPES = frozenset({
    TX_EARNED, TX_SPENT, TX_BONUS, TX_PENALTY, TX_JACKPOT, TX_ADMIN_AWARD, TX_ADMIN_DEDUCT, TX_ACHIEVEMENT,
})

# ---- Achievement requirement mapping ----

_PLATFORM_REQUIREMENTS: dict[str, list[str]] = {
    "raffle_creation": ["raffle_creation"],
    "raffle_ticket_purchase": ["ticket_purchases"],
    "gaming_blackjack": ["gaming_sessions", "gaming_wins"],
    "gaming_coin_toss": ["gaming_sessions", "gaming_wins"],
    "gaming_rock_paper_scissors": ["gaming_sessions", "gaming_wins"],
    "gaming_crypto_slots": ["gaming_sessions", "gaming_wins"],
    "daily_login": ["consecutive_days"],
    "referral_bonus": ["referrals"],
    "community_task": ["community_participation"],
}

_COMMUNITY_REQUIREMENTS: dict[str, list[str]] = {
    "raffle_creation": ["raffle_creation", "community_participation"],
    "raffle_ticket_purchase": ["ticket_purchases", "community_participation"],
    "gaming_blackjack": ["gaming_sessions", "gaming_wins", "community_participation"],
    "gaming_coin_toss": ["gaming_sessions", "gaming_wins", "community_participation"],
    "gaming_rock_paper_scissors": ["gaming_sessions", "gaming_wins", "community_participation"],
    "gaming_crypto_slots": ["gaming_sessions", "gaming_wins", "community_participation"],
    "daily_login": ["consecutive_days", "community_participation"],
    "community_task": ["community_participation", "social_tasks"],
    "referral_bonus": ["referrals", "community_growth"],
}


def get_base_points(activity: str, points_map: dict[str, int] | None = None) -> int:
    """Look up base points for an activity, raising UnknownActivityError if absent."""
    table = ACTIVITY_POINTS if points_map is None else points_map
    if activity not in table:
        msg = f"Unknown activity: {activity}"
        raise UnknownActivityError(msg)
    return int(table[activity])


def describe_activity(activity: str, metadata: dict[str, Any] | None = None) -> str:
    """Human-readable transaction description for an activity."""
    if activity == "achievement_unlock":
        name = (metadata or {}).get("achievement_name", "")
        return f"Achievement unlocked: {name}"
    return ACTIVITY_DESCRIPTIONS.get(activity, "Points earned")


def partner_bonus_type(activity: str) -> str:
    """Partner-token bonus bucket an activity falls into."""
    if activity.startswith("gaming_"):
        return "gaming"
    if activity == "raffle_ticket_purchase":
        return "raffleTickets"
    if activity == "raffle_creation":
        return "raffleCreation"
    if activity == "token_staking":
        return "staking"
    return "gaming"


def additional_multiplier(metadata: dict[str, Any] | None) -> float:
    """Caller-supplied multiplier from award metadata; unset, null or zero means 1.0."""
    value = (metadata or {}).get("additional_multiplier")
    return float(value) if value else 1.0


def is_gaming_activity(activity: str) -> bool:
    return activity.startswith("gaming_")


def requirement_activities(activity: str, metadata: dict[str, Any] | None = None, *, community: bool = False) -> list[str]:
    """Achievement requirement keys advanced by an activity.

    Every earning activity also advances ``points_earned``. ``gaming_wins``
    only advances when the game result says the user won.
    """
    table = _COMMUNITY_REQUIREMENTS if community else _PLATFORM_REQUIREMENTS
    keys = list(table.get(activity, []))
    won = bool((metadata or {}).get("won"))
    if "gaming_wins" in keys and not won:
        keys.remove("gaming_wins")
    if activity.startswith("raffle_") and won:
        keys.append("raffle_wins")
    keys.append("points_earned")
    return keys

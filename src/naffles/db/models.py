"""ORM models for the points ledger.

Tables are created by the Alembic migrations under ``alembic/versions``;
the test suite builds them straight from this metadata.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from naffles.db.base import Base
from naffles.db.types import BigIntPK, JSONType, UTCDateTime, utcnow


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class User(Base):
    """Platform account, as far as the ledger needs to know about it."""

    __tablename__ = "users"
    __table_args__ = {"extend_existing": True}  # noqa: RUF012

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    wallet_address: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    twitter_username: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    discord_username: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    discord_discriminator: Mapped[str | None] = mapped_column(String(8), nullable=True)
    # user | naffles_admin | super_admin
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="user", server_default="user")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, server_default=func.now())


# ---------------------------------------------------------------------------
# Global points ledger
# ---------------------------------------------------------------------------


class PointsBalance(Base):
    """Maps to the 'points_balances' table: one aggregate row per user."""

    __tablename__ = "points_balances"
    __table_args__ = {"extend_existing": True}  # noqa: RUF012

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    total_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    total_spent: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    tier: Mapped[str] = mapped_column(String(16), nullable=False, default="bronze", server_default="bronze")
    tier_progress: Mapped[float] = mapped_column(Float, nullable=False, default=0.0, server_default="0")
    last_activity: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)


class PointsTransaction(Base):
    """Maps to the 'points_transactions' table: append-mostly movement log."""

    __tablename__ = "points_transactions"
    __table_args__ = (
        Index("ix_points_transactions_user_created", "user_id", "created_at"),
        Index("ix_points_transactions_type_created", "type", "created_at"),
        {"extend_existing": True},
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    activity: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_before: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    multiplier: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    base_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    tx_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSONType, default=dict)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    admin_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    is_reversible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    reversed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    reversed_by_id: Mapped[int | None] = mapped_column(ForeignKey("points_transactions.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, server_default=func.now())


class PartnerToken(Base):
    """Maps to the 'partner_tokens' table: bonus multipliers for partner assets."""

    __tablename__ = "partner_tokens"
    __table_args__ = (
        UniqueConstraint("contract_address", "chain_id"),
        {"extend_existing": True},
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(64), nullable=False)
    symbol: Mapped[str] = mapped_column(String(16), nullable=False)
    contract_address: Mapped[str] = mapped_column(String(64), nullable=False)
    chain_id: Mapped[str] = mapped_column(String(32), nullable=False)
    multiplier: Mapped[float] = mapped_column(Float, nullable=False, default=1.5)
    partner_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    # {"gaming": bool, "raffleTickets": bool, "raffleCreation": bool, "staking": bool}
    bonus_activities: Mapped[dict[str, bool]] = mapped_column(JSONType, default=dict)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    valid_from: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    valid_until: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, server_default=func.now())


# ---------------------------------------------------------------------------
# Jackpot (singleton row, id = 1)
# ---------------------------------------------------------------------------


class PointsJackpot(Base):
    """Maps to the 'points_jackpot' table."""

    __tablename__ = "points_jackpot"
    __table_args__ = {"extend_existing": True}  # noqa: RUF012

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    current_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=1000)
    base_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=1000)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    last_winner_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    last_win_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_win_date: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    total_winners: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_amount_won: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # --- Increment settings ---
    raffle_creation_increment: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    ticket_purchase_increment: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    game_play_increment: Mapped[int] = mapped_column(Integer, nullable=False, default=2)
    time_based_increment: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    last_time_increment: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    # --- Win conditions ---
    min_points_required: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    win_probability: Mapped[float] = mapped_column(Float, nullable=False, default=0.001)
    cooldown_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=86_400)
    max_wins_per_day: Mapped[int] = mapped_column(Integer, nullable=False, default=3)

    # --- Daily stats (reset at local midnight) ---
    stats_date: Mapped[str | None] = mapped_column(String(10), nullable=True)
    wins_today: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    increments_today: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    amount_added_today: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)


# ---------------------------------------------------------------------------
# Achievements
# ---------------------------------------------------------------------------


class Achievement(Base):
    """Maps to the 'achievements' table. ``community_id`` NULL = platform-wide."""

    __tablename__ = "achievements"
    __table_args__ = (
        Index("ix_achievements_activity_active", "requirement_activity", "is_active"),
        {"extend_existing": True},
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    community_id: Mapped[int | None] = mapped_column(
        ForeignKey("communities.id", ondelete="CASCADE"), nullable=True, index=True,
    )
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(16), nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    requirement_activity: Mapped[str] = mapped_column(String(64), nullable=False)
    threshold: Mapped[int] = mapped_column(Integer, nullable=False)
    timeframe: Mapped[str | None] = mapped_column(String(16), nullable=True)
    reward_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reward_badge: Mapped[str | None] = mapped_column(String(64), nullable=True)
    reward_title: Mapped[str | None] = mapped_column(String(64), nullable=True)
    reward_multiplier: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    rarity: Mapped[str] = mapped_column(String(16), nullable=False, default="common")
    icon: Mapped[str] = mapped_column(String(64), nullable=False, default="trophy")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_repeatable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)


class UserAchievement(Base):
    """Maps to the 'user_achievements' table: per-user progress against one achievement."""

    __tablename__ = "user_achievements"
    __table_args__ = (
        UniqueConstraint("user_id", "achievement_id"),
        {"extend_existing": True},
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    achievement_id: Mapped[int] = mapped_column(ForeignKey("achievements.id", ondelete="CASCADE"), nullable=False)
    community_id: Mapped[int | None] = mapped_column(ForeignKey("communities.id"), nullable=True)
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    points_awarded: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    times_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    best_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_activity: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, server_default=func.now())


# ---------------------------------------------------------------------------
# Leaderboards
# ---------------------------------------------------------------------------


class LeaderboardEntry(Base):
    """Maps to the 'leaderboard_entries' table."""

    __tablename__ = "leaderboard_entries"
    __table_args__ = (
        UniqueConstraint("user_id", "category", "period", "period_start"),
        Index("ix_leaderboard_entries_board", "category", "period", "period_start", "rank"),
        {"extend_existing": True},
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    period: Mapped[str] = mapped_column(String(16), nullable=False)
    period_start: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    period_end: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    username: Mapped[str] = mapped_column(String(64), nullable=False)
    wallet_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    value: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    rank: Mapped[int | None] = mapped_column(Integer, nullable=True)
    previous_rank: Mapped[int | None] = mapped_column(Integer, nullable=True)
    change: Mapped[str] = mapped_column(String(8), nullable=False, default="new")
    entry_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSONType, default=dict)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)


# ---------------------------------------------------------------------------
# Side-effect outbox
# ---------------------------------------------------------------------------


class PointsEvent(Base):
    """Maps to the 'points_events' table.

    Written in the same transaction as the ledger change it describes, then
    consumed by ``naffles.points.events``.
    """

    __tablename__ = "points_events"
    __table_args__ = (
        Index("ix_points_events_status_created", "status", "created_at"),
        {"extend_existing": True},
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    community_id: Mapped[int | None] = mapped_column(ForeignKey("communities.id"), nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    # pending | processed | failed
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, server_default=func.now())
    processed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


# ---------------------------------------------------------------------------
# Communities
# ---------------------------------------------------------------------------


class Community(Base):
    """Maps to the 'communities' table."""

    __tablename__ = "communities"
    __table_args__ = {"extend_existing": True}  # noqa: RUF012

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    slug: Mapped[str] = mapped_column(String(120), unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    # NULL for the system-created Naffles community
    creator_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    is_naffles_community: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # --- Points configuration ---
    points_name: Mapped[str] = mapped_column(String(50), nullable=False, default="Points")
    points_symbol: Mapped[str | None] = mapped_column(String(10), nullable=True)
    initial_balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    activity_points_map: Mapped[dict[str, int]] = mapped_column(JSONType, default=dict)
    enable_achievements: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    enable_leaderboards: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    custom_tiers: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, default=list)

    # --- Features ---
    enable_jackpot: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    enable_system_wide_earning: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    enable_gaming: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    enable_raffles: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    enable_marketplace: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    enable_social_tasks: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # --- Stats ---
    member_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_points_issued: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_activities: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)


class CommunityMember(Base):
    """Maps to the 'community_members' table."""

    __tablename__ = "community_members"
    __table_args__ = (
        UniqueConstraint("user_id", "community_id"),
        {"extend_existing": True},
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    community_id: Mapped[int] = mapped_column(ForeignKey("communities.id", ondelete="CASCADE"), nullable=False)
    # member | moderator | admin | creator
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="member")
    permissions: Mapped[dict[str, bool]] = mapped_column(JSONType, default=dict)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    joined_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    last_activity: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    def has_permission(self, permission: str) -> bool:
        if self.role in ("creator", "admin"):
            return True
        if self.role == "moderator":
            return permission in ("canModerateContent", "canViewAnalytics")
        return bool((self.permissions or {}).get(permission, False))


class CommunityPointsBalance(Base):
    """Maps to the 'community_points_balances' table."""

    __tablename__ = "community_points_balances"
    __table_args__ = (
        UniqueConstraint("user_id", "community_id"),
        Index("ix_community_points_balances_board", "community_id", "total_earned"),
        {"extend_existing": True},
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    community_id: Mapped[int] = mapped_column(ForeignKey("communities.id", ondelete="CASCADE"), nullable=False)
    balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_spent: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tier: Mapped[str] = mapped_column(String(32), nullable=False, default="bronze")
    tier_progress: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    last_activity: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)


class CommunityPointsTransaction(Base):
    """Maps to the 'community_points_transactions' table."""

    __tablename__ = "community_points_transactions"
    __table_args__ = (
        Index("ix_community_points_tx_user_created", "user_id", "community_id", "created_at"),
        Index("ix_community_points_tx_activity", "community_id", "activity"),
        {"extend_existing": True},
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    community_id: Mapped[int] = mapped_column(ForeignKey("communities.id", ondelete="CASCADE"), nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    activity: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_before: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    multiplier: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    base_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    tx_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSONType, default=dict)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    points_name: Mapped[str] = mapped_column(String(50), nullable=False, default="Points")
    is_naffles_community: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_system_wide: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    admin_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    is_reversible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    reversed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    reversed_by_id: Mapped[int | None] = mapped_column(
        ForeignKey("community_points_transactions.id"), nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, server_default=func.now())

"""Community management: creation, settings, membership and permissions.

The Naffles community is the one community with jackpot and system-wide
earning. User-created communities can never turn those features on.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from naffles.db.models import Community, CommunityMember, User
from naffles.exceptions import (
    AlreadyMemberError,
    CommunityNotFoundError,
    InsufficientPermissionsError,
    NotAMemberError,
    UserNotFoundError,
)
from naffles.points.activities import DEFAULT_COMMUNITY_ACTIVITY_POINTS
from naffles.points.ledger import get_or_create_balance
from naffles.points.seed import create_default_community_achievements

logger = logging.getLogger(__name__)

NAFFLES_SLUG = "naffles"
PLATFORM_ADMIN_ROLES = frozenset({"naffles_admin", "super_admin"})
MEMBER_ROLES = ("member", "moderator", "admin", "creator")

_ALL_PERMISSIONS = (
    "canManagePoints",
    "canManageAchievements",
    "canManageMembers",
    "canModerateContent",
    "canViewAnalytics",
)

ROLE_PERMISSIONS: dict[str, dict[str, bool]] = {
    "creator": dict.fromkeys(_ALL_PERMISSIONS, True),
    "admin": dict.fromkeys(_ALL_PERMISSIONS, True),
    "moderator": {
        **dict.fromkeys(_ALL_PERMISSIONS, False),
        "canModerateContent": True,
        "canViewAnalytics": True,
    },
    "member": dict.fromkeys(_ALL_PERMISSIONS, False),
}

# Naffles-exclusive features, forced off for every other community
_EXCLUSIVE_FEATURES = ("enable_jackpot", "enable_system_wide_earning")

_UPDATABLE_FIELDS = frozenset({
    "name", "description", "points_name", "points_symbol", "initial_balance", "activity_points_map",
    "enable_achievements", "enable_leaderboards", "custom_tiers",
    "enable_jackpot", "enable_system_wide_earning", "enable_gaming", "enable_raffles",
    "enable_marketplace", "enable_social_tasks", "is_public",
})


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]", "-", name.lower())
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


def _force_exclusive_features(community: Community) -> None:
    if not community.is_naffles_community:
        for feature in _EXCLUSIVE_FEATURES:
            setattr(community, feature, False)


async def get_community(
    db: AsyncSession,
    community_id: int,
    *,
    active_only: bool = False,
    for_update: bool = False,
) -> Community:
    stmt = select(Community).where(Community.id == community_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(stmt)
    community = result.scalar_one_or_none()
    if community is None or (active_only and not community.is_active):
        msg = f"Community {community_id} not found or inactive"
        raise CommunityNotFoundError(msg)
    return community


async def get_or_create_naffles_community(db: AsyncSession) -> Community:
    """The flagship community, created on first use."""
    stmt = select(Community).where(Community.is_naffles_community.is_(True)).order_by(Community.id).limit(1)
    result = await db.execute(stmt)
    community = result.scalar_one_or_none()
    if community is not None:
        return community

    community = Community(
        name="Naffles",
        slug=NAFFLES_SLUG,
        description="The flagship Naffles community with enhanced features and system-wide earning opportunities.",
        creator_id=None,
        is_naffles_community=True,
        points_name="Naffles Points",
        points_symbol="NP",
        initial_balance=0,
        activity_points_map=dict(DEFAULT_COMMUNITY_ACTIVITY_POINTS),
        enable_achievements=True,
        enable_leaderboards=True,
        custom_tiers=[],
        enable_jackpot=True,
        enable_system_wide_earning=True,
        enable_gaming=True,
        enable_raffles=True,
        enable_marketplace=True,
        enable_social_tasks=True,
        is_public=True,
        is_active=True,
    )
    try:
        async with db.begin_nested():
            db.add(community)
    except IntegrityError:
        result = await db.execute(stmt)
        return result.scalar_one()
    logger.info("Created Naffles community %s", community.id)
    return community


async def _unique_slug(db: AsyncSession, name: str) -> str:
    base = slugify(name) or "community"
    result = await db.execute(select(Community.slug).where(Community.slug.like(f"{base}%")))
    taken = set(result.scalars().all())
    slug, counter = base, 1
    while slug in taken:
        slug = f"{base}-{counter}"
        counter += 1
    return slug


async def create_community(db: AsyncSession, creator_id: int, data: dict[str, Any]) -> Community:
    """Create a user community with its creator as first member.

    The creator gets full permissions and a points balance, and the
    community starts with the default community achievements.
    """
    if not (data.get("name") or "").strip():
        msg = "Community name is required"
        raise ValueError(msg)
    if await db.get(User, creator_id) is None:
        msg = f"User {creator_id} not found"
        raise UserNotFoundError(msg)

    fields = {k: v for k, v in data.items() if k in _UPDATABLE_FIELDS}
    fields.setdefault("activity_points_map", dict(DEFAULT_COMMUNITY_ACTIVITY_POINTS))
    fields.setdefault("custom_tiers", [])

    community = Community(
        **fields,
        slug=await _unique_slug(db, data["name"]),
        creator_id=creator_id,
        is_naffles_community=False,
        member_count=1,
    )
    _force_exclusive_features(community)
    db.add(community)
    await db.flush()

    db.add(CommunityMember(
        user_id=creator_id,
        community_id=community.id,
        role="creator",
        permissions=dict(ROLE_PERMISSIONS["creator"]),
        is_active=True,
    ))
    await create_default_community_achievements(db, community)
    await get_or_create_balance(db, creator_id, community)
    await db.commit()

    logger.info("Community %s (%s) created by user %s", community.id, community.slug, creator_id)
    return community


async def update_community(
    db: AsyncSession,
    community_id: int,
    user_id: int,
    updates: dict[str, Any],
) -> Community:
    community = await get_community(db, community_id)
    if not await can_user_manage_community(db, user_id, community_id):
        msg = "Insufficient permissions to manage this community"
        raise InsufficientPermissionsError(msg)

    for key, value in updates.items():
        if key in _UPDATABLE_FIELDS:
            setattr(community, key, value)
    _force_exclusive_features(community)
    community.updated_at = datetime.now(timezone.utc)
    await db.commit()
    return community


# ---------------------------------------------------------------------------
# Membership
# ---------------------------------------------------------------------------


async def get_membership(
    db: AsyncSession,
    user_id: int,
    community_id: int,
    *,
    active_only: bool = True,
) -> CommunityMember | None:
    stmt = select(CommunityMember).where(
        CommunityMember.user_id == user_id,
        CommunityMember.community_id == community_id,
    )
    if active_only:
        stmt = stmt.where(CommunityMember.is_active.is_(True))
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def require_membership(db: AsyncSession, user_id: int, community_id: int) -> CommunityMember:
    membership = await get_membership(db, user_id, community_id)
    if membership is None:
        msg = "User is not a member of this community"
        raise NotAMemberError(msg)
    return membership


async def join_community(db: AsyncSession, user_id: int, community_id: int) -> CommunityMember:
    """Join, or rejoin after leaving. Raises AlreadyMemberError if active."""
    community = await get_community(db, community_id, active_only=True, for_update=True)
    if await db.get(User, user_id) is None:
        msg = f"User {user_id} not found"
        raise UserNotFoundError(msg)

    now = datetime.now(timezone.utc)
    membership = await get_membership(db, user_id, community_id, active_only=False)
    if membership is not None:
        if membership.is_active:
            msg = "User is already a member of this community"
            raise AlreadyMemberError(msg)
        membership.is_active = True
        membership.joined_at = now
    else:
        membership = CommunityMember(
            user_id=user_id,
            community_id=community_id,
            role="member",
            permissions=dict(ROLE_PERMISSIONS["member"]),
            is_active=True,
            joined_at=now,
            last_activity=now,
        )
        db.add(membership)

    await get_or_create_balance(db, user_id, community)
    community.member_count += 1
    await db.commit()
    return membership


async def leave_community(db: AsyncSession, user_id: int, community_id: int) -> None:
    membership = await require_membership(db, user_id, community_id)
    if membership.role == "creator":
        msg = "Community creator cannot leave their own community"
        raise InsufficientPermissionsError(msg)

    membership.is_active = False
    community = await db.get(Community, community_id)
    if community is not None:
        community.member_count = max(0, community.member_count - 1)
    await db.commit()


async def update_member_role(
    db: AsyncSession,
    community_id: int,
    target_user_id: int,
    new_role: str,
    admin_user_id: int,
) -> CommunityMember:
    if new_role not in ("member", "moderator", "admin"):
        msg = f"Invalid role: {new_role}"
        raise ValueError(msg)
    if not await can_user_manage_community(db, admin_user_id, community_id):
        msg = "Insufficient permissions to manage community members"
        raise InsufficientPermissionsError(msg)

    membership = await require_membership(db, target_user_id, community_id)
    if membership.role == "creator":
        msg = "Cannot change creator role"
        raise InsufficientPermissionsError(msg)

    membership.role = new_role
    membership.permissions = dict(ROLE_PERMISSIONS[new_role])
    await db.commit()
    return membership


async def get_user_communities(db: AsyncSession, user_id: int) -> list[dict[str, Any]]:
    result = await db.execute(
        select(CommunityMember, Community)
        .join(Community, Community.id == CommunityMember.community_id)
        .where(CommunityMember.user_id == user_id, CommunityMember.is_active.is_(True))
        .order_by(CommunityMember.joined_at.desc())
    )
    return [
        {
            "community_id": community.id,
            "name": community.name,
            "slug": community.slug,
            "is_naffles_community": community.is_naffles_community,
            "role": member.role,
            "permissions": member.permissions,
            "joined_at": member.joined_at,
        }
        for member, community in result.tuples().all()
    ]


# ---------------------------------------------------------------------------
# Permissions
# ---------------------------------------------------------------------------


async def is_platform_admin(db: AsyncSession, user_id: int) -> bool:
    user = await db.get(User, user_id)
    return user is not None and user.role in PLATFORM_ADMIN_ROLES


async def can_user_manage_community(db: AsyncSession, user_id: int, community_id: int) -> bool:
    """Platform admins, the creator and community admins may manage."""
    if await db.get(Community, community_id) is None:
        return False
    if await is_platform_admin(db, user_id):
        return True
    membership = await get_membership(db, user_id, community_id)
    return membership is not None and membership.role in ("creator", "admin")


async def can_user_view_analytics(db: AsyncSession, user_id: int, community_id: int) -> bool:
    membership = await get_membership(db, user_id, community_id)
    if membership is None:
        return await is_platform_admin(db, user_id)
    return membership.has_permission("canViewAnalytics")

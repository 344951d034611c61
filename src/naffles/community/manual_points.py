"""Manual point crediting by community admins, single or in bulk from CSV.

CSV columns are ``Type,Type Value,Points Value``. Type is one of
wallet_address, twitter_username or discord_username. Credits are
reversible ``admin_award`` transactions with activity ``manual_credit``,
which doubles as the audit trail.
"""

from __future__ import annotations

import csv
import io
import re
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from naffles.community.service import can_user_manage_community, get_community, get_membership
from naffles.db.models import CommunityPointsTransaction, User
from naffles.exceptions import InsufficientPermissionsError, PointsError, UserNotFoundError
from naffles.points import ledger
from naffles.points.activities import TX_ADMIN_AWARD
from naffles.points.period_utils import timeframe_start

logger = structlog.get_logger()

MANUAL_CREDIT_ACTIVITY = "manual_credit"
IDENTIFIER_TYPES = ("wallet_address", "twitter_username", "discord_username")

_EVM_ADDRESS = re.compile(r"^0x[a-fA-F0-9]{40}$")
_SOLANA_ADDRESS = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")
_TWITTER = re.compile(r"^[A-Za-z0-9_]{1,15}$")
_DISCORD_LEGACY = re.compile(r"^.{1,32}#[0-9]{4}$")
_DISCORD = re.compile(r"^[a-z0-9._]{2,32}$")
_INTEGER = re.compile(r"^[+-]?\d+$")

_SAMPLE_ROWS = [
    ("wallet_address", "0x1234567890123456789012345678901234567890", 100),
    ("wallet_address", "DsVmA5hWGAnP2FADTLJYstfXndxvGPgqzrpoC9kKz1Cy", 250),
    ("twitter_username", "@example_user", 50),
    ("twitter_username", "another_user", 75),
    ("discord_username", "user#1234", 150),
    ("discord_username", "community_member#5678", 200),
]


# ---------------------------------------------------------------------------
# CSV handling
# ---------------------------------------------------------------------------


def generate_sample_csv() -> str:
    """A template CSV with one example row per identifier format."""
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(["Type", "Type Value", "Points Value"])
    writer.writerows(_SAMPLE_ROWS)
    return buf.getvalue().rstrip("\n")


def _normalize_header(header: str) -> str:
    return re.sub(r"\s+", "_", header.strip().lower())


def parse_csv(content: str | bytes) -> list[dict[str, str]]:
    """Parse CSV text into dicts keyed by lower snake case headers."""
    if isinstance(content, bytes):
        content = content.decode("utf-8-sig")
    reader = csv.reader(io.StringIO(content))
    rows = list(reader)
    if not rows:
        return []
    headers = [_normalize_header(h) for h in rows[0]]
    return [
        dict(zip(headers, row))
        for row in rows[1:]
        if any(cell.strip() for cell in row)
    ]


def validate_identifier_format(identifier_type: str, value: str) -> str | None:
    """Return an error message for a malformed identifier, None if valid."""
    if identifier_type == "wallet_address":
        if value.startswith("0x"):
            if not _EVM_ADDRESS.match(value):
                return "Invalid Ethereum wallet address format"
        elif not _SOLANA_ADDRESS.match(value):
            return "Invalid Solana wallet address format"
        return None

    if identifier_type == "twitter_username":
        if not _TWITTER.match(value.removeprefix("@")):
            return "Invalid Twitter username format (1-15 characters, letters, numbers, underscore only)"
        return None

    if identifier_type == "discord_username":
        if "#" in value:
            if not _DISCORD_LEGACY.match(value):
                return "Invalid Discord username format (username#1234)"
        elif not _DISCORD.match(value):
            return "Invalid Discord username format (2-32 characters, lowercase letters, numbers, dots, underscores)"
        return None

    return "Unsupported identifier type"


def validate_csv_rows(rows: list[dict[str, str]]) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
    """Split parsed rows into valid credits and per-row errors.

    Row numbers count the header as row 1.
    """
    valid: list[dict[str, Any]] = []
    errors: list[dict[str, Any]] = []

    for index, row in enumerate(rows):
        row_number = index + 2
        id_type = (row.get("type") or "").strip().lower()
        id_value = (row.get("type_value") or "").strip()
        raw_points = (row.get("points_value") or "").strip()

        if not id_type or not id_value or not raw_points:
            error = "Missing required fields (Type, Type Value, or Points Value)"
        elif id_type not in IDENTIFIER_TYPES:
            error = f"Invalid identifier type. Must be one of: {', '.join(IDENTIFIER_TYPES)}"
        elif not _INTEGER.match(raw_points):
            error = "Points Value must be a valid number"
        else:
            error = validate_identifier_format(id_type, id_value)

        if error:
            errors.append({"row": row_number, "error": error, "data": row})
            continue
        valid.append({"type": id_type, "type_value": id_value, "points_value": int(raw_points), "row": row_number})

    return valid, errors


# ---------------------------------------------------------------------------
# Crediting
# ---------------------------------------------------------------------------


async def find_user_by_identifier(
    db: AsyncSession,
    identifier_type: str,
    value: str,
    community_id: int,
) -> User | None:
    """Resolve an identifier to a user who is an active member of the community."""
    if identifier_type == "wallet_address":
        stmt = select(User).where(func.lower(User.wallet_address) == value.lower())
    elif identifier_type == "twitter_username":
        stmt = select(User).where(func.lower(User.twitter_username) == value.removeprefix("@").lower())
    elif identifier_type == "discord_username":
        if "#" in value:
            username, _, discriminator = value.rpartition("#")
            stmt = select(User).where(
                User.discord_username == username,
                User.discord_discriminator == discriminator,
            )
        else:
            stmt = select(User).where(User.discord_username == value)
    else:
        return None

    result = await db.execute(stmt.where(User.is_active.is_(True)).limit(1))
    user = result.scalar_one_or_none()
    if user is None:
        return None
    if await get_membership(db, user.id, community_id) is None:
        return None
    return user


async def _require_manager(db: AsyncSession, admin_id: int, community_id: int) -> None:
    if not await can_user_manage_community(db, admin_id, community_id):
        msg = "Insufficient permissions to credit points in this community"
        raise InsufficientPermissionsError(msg)


async def credit_points_to_user(
    db: AsyncSession,
    user_id: int,
    community_id: int,
    points: int,
    reason: str | None,
    admin_id: int,
) -> dict[str, Any]:
    """Credit one user. Flushes; the caller commits."""
    community = await get_community(db, community_id, for_update=True)
    user = await db.get(User, user_id)
    if user is None:
        msg = f"User {user_id} not found"
        raise UserNotFoundError(msg)

    balance, tx = await ledger.credit(
        db,
        user_id,
        points,
        tx_type=TX_ADMIN_AWARD,
        activity=MANUAL_CREDIT_ACTIVITY,
        community=community,
        metadata={"admin_id": admin_id, "reason": reason, "method": MANUAL_CREDIT_ACTIVITY},
        description=reason or "Manual points credit by admin",
        is_reversible=True,
        admin_id=admin_id,
    )
    community.total_points_issued += points
    await db.flush()

    return {
        "points_awarded": points,
        "new_balance": balance.balance,
        "transaction_id": tx.id,
        "user": {"id": user.id, "username": user.username},
    }


async def process_bulk_points_crediting(
    db: AsyncSession,
    community_id: int,
    csv_content: str | bytes,
    admin_id: int,
    reason: str = "Bulk points credit",
) -> dict[str, Any]:
    """Credit every valid CSV row. Each row succeeds or fails on its own."""
    await get_community(db, community_id)
    await _require_manager(db, admin_id, community_id)

    parsed = parse_csv(csv_content)
    valid_rows, validation_errors = validate_csv_rows(parsed)

    successful: list[dict[str, Any]] = []
    failed: list[dict[str, Any]] = []
    summary = {"total_points_awarded": 0, "users_processed": 0, "users_not_found": 0, "errors": 0}

    for row in valid_rows:
        identifier = f"{row['type']}: {row['type_value']}"
        user = await find_user_by_identifier(db, row["type"], row["type_value"], community_id)
        if user is None:
            failed.append({
                "row": row["row"],
                "identifier": identifier,
                "points": row["points_value"],
                "error": "User not found or not a member of this community",
            })
            summary["users_not_found"] += 1
            continue

        try:
            async with db.begin_nested():
                credited = await credit_points_to_user(
                    db, user.id, community_id, row["points_value"], reason, admin_id,
                )
        except PointsError as exc:
            failed.append({
                "row": row["row"],
                "identifier": identifier,
                "points": row["points_value"],
                "error": str(exc),
            })
            summary["errors"] += 1
            continue

        successful.append({
            "row": row["row"],
            "identifier": identifier,
            "points": row["points_value"],
            "user": credited["user"],
            "new_balance": credited["new_balance"],
            "transaction_id": credited["transaction_id"],
        })
        summary["total_points_awarded"] += row["points_value"]
        summary["users_processed"] += 1

    await db.commit()
    logger.info(
        "bulk_points_credit",
        admin_id=admin_id,
        community_id=community_id,
        total_rows=len(parsed),
        valid_rows=len(valid_rows),
        successful=len(successful),
        failed=len(failed),
        total_points_awarded=summary["total_points_awarded"],
        reason=reason,
    )

    return {
        "total_processed": len(valid_rows),
        "successful": successful,
        "failed": failed,
        "validation_errors": validation_errors,
        "summary": summary,
    }


async def credit_points_to_user_by_identifier(
    db: AsyncSession,
    community_id: int,
    identifier_type: str,
    identifier_value: str,
    points: int,
    reason: str | None,
    admin_id: int,
) -> dict[str, Any]:
    await get_community(db, community_id)
    await _require_manager(db, admin_id, community_id)

    format_error = validate_identifier_format(identifier_type, identifier_value)
    if format_error:
        raise ValueError(format_error)

    user = await find_user_by_identifier(db, identifier_type, identifier_value, community_id)
    if user is None:
        msg = "User not found or not a member of this community"
        raise UserNotFoundError(msg)

    result = await credit_points_to_user(db, user.id, community_id, points, reason, admin_id)
    await db.commit()
    logger.info(
        "individual_points_credit",
        admin_id=admin_id,
        community_id=community_id,
        target_user_id=user.id,
        identifier_type=identifier_type,
        points=points,
        reason=reason,
    )
    return result


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


async def get_audit_history(
    db: AsyncSession,
    community_id: int,
    admin_id: int,
    *,
    page: int = 1,
    limit: int = 20,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    filter_admin_id: int | None = None,
) -> dict[str, Any]:
    """Manual credits in a community, newest first."""
    await _require_manager(db, admin_id, community_id)
    page = max(page, 1)
    limit = max(1, min(limit, 100))

    conditions = [
        CommunityPointsTransaction.community_id == community_id,
        CommunityPointsTransaction.type == TX_ADMIN_AWARD,
        CommunityPointsTransaction.activity == MANUAL_CREDIT_ACTIVITY,
    ]
    if date_from:
        conditions.append(CommunityPointsTransaction.created_at >= date_from)
    if date_to:
        conditions.append(CommunityPointsTransaction.created_at <= date_to)
    if filter_admin_id:
        conditions.append(CommunityPointsTransaction.admin_id == filter_admin_id)

    total = (await db.execute(
        select(func.count()).select_from(CommunityPointsTransaction).where(*conditions)
    )).scalar_one()
    result = await db.execute(
        select(CommunityPointsTransaction, User.username)
        .join(User, User.id == CommunityPointsTransaction.user_id)
        .where(*conditions)
        .order_by(CommunityPointsTransaction.created_at.desc(), CommunityPointsTransaction.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )

    return {
        "transactions": [
            {
                "id": tx.id,
                "user_id": tx.user_id,
                "username": username,
                "admin_id": tx.admin_id,
                "amount": tx.amount,
                "reason": (tx.tx_metadata or {}).get("reason"),
                "reversed_at": tx.reversed_at,
                "created_at": tx.created_at,
            }
            for tx, username in result.tuples().all()
        ],
        "pagination": {"page": page, "limit": limit, "total": total, "pages": (total + limit - 1) // limit},
    }


async def get_crediting_stats(
    db: AsyncSession,
    community_id: int,
    admin_id: int,
    timeframe: str = "30d",
    *,
    now: datetime | None = None,
) -> dict[str, int]:
    """Totals of manual credits within the last 7, 30 or 90 days."""
    await _require_manager(db, admin_id, community_id)
    if now is None:
        now = datetime.now(timezone.utc)
    since = timeframe_start(timeframe, now)

    result = await db.execute(
        select(
            func.count(CommunityPointsTransaction.id),
            func.coalesce(func.sum(CommunityPointsTransaction.amount), 0),
            func.count(distinct(CommunityPointsTransaction.user_id)),
            func.count(distinct(CommunityPointsTransaction.admin_id)),
        ).where(
            CommunityPointsTransaction.community_id == community_id,
            CommunityPointsTransaction.type == TX_ADMIN_AWARD,
            CommunityPointsTransaction.activity == MANUAL_CREDIT_ACTIVITY,
            CommunityPointsTransaction.created_at >= since,
        )
    )
    total_credits, total_points, unique_users, unique_admins = result.one()
    return {
        "total_credits": total_credits,
        "total_points_awarded": int(total_points),
        "unique_users_count": unique_users,
        "unique_admins_count": unique_admins,
    }

"""Domain errors raised by the points ledger.

Every error carries a stable ``code`` and the HTTP status the error handler
renders it with. Each also subclasses the builtin a caller would naturally
catch for the same condition.
"""

from __future__ import annotations


class PointsError(Exception):
    """Base class for ledger failures surfaced to callers."""

    code = "points_error"
    status_code = 400


class UnknownActivityError(PointsError, ValueError):
    code = "unknown_activity"


class InsufficientBalanceError(PointsError, ValueError):
    code = "insufficient_balance"

    def __init__(self, message: str, *, balance: int = 0, requested: int = 0) -> None:
        super().__init__(message)
        self.balance = balance
        self.requested = requested


class InvalidAmountError(PointsError, ValueError):
    code = "invalid_amount"


class UserNotFoundError(PointsError, LookupError):
    code = "user_not_found"
    status_code = 404


class CommunityNotFoundError(PointsError, LookupError):
    code = "community_not_found"
    status_code = 404


class NotAMemberError(PointsError, PermissionError):
    code = "not_a_member"
    status_code = 403


class AlreadyMemberError(PointsError, ValueError):
    code = "already_member"
    status_code = 409


class InsufficientPermissionsError(PointsError, PermissionError):
    code = "insufficient_permissions"
    status_code = 403


class TransactionNotFoundError(PointsError, LookupError):
    code = "transaction_not_found"
    status_code = 404


class NotReversibleError(PointsError, ValueError):
    code = "not_reversible"


class AlreadyReversedError(PointsError, ValueError):
    code = "already_reversed"
    status_code = 409


class AchievementNotFoundError(PointsError, LookupError):
    code = "achievement_not_found"
    status_code = 404


class InvalidLeaderboardError(PointsError, ValueError):
    code = "invalid_leaderboard"

"""Activity policy tables: base points, descriptions and requirement mapping."""

import pytest

from naffles.exceptions import UnknownActivityError
from naffles.points.activities import (
    describe_activity,
    get_base_points,
    is_gaming_activity,
    partner_bonus_type,
    requirement_activities,
)


class TestBasePoints:
    @pytest.mark.parametrize(
        ("activity", "points"),
        [
            ("raffle_creation", 50),
            ("raffle_ticket_purchase", 1),
            ("gaming_blackjack", 5),
            ("gaming_coin_toss", 3),
            ("gaming_rock_paper_scissors", 3),
            ("gaming_crypto_slots", 8),
            ("token_staking", 10),
            ("referral_bonus", 25),
            ("daily_login", 5),
            ("community_task", 15),
        ],
    )
    def test_platform_table(self, activity, points):
        """Platform activities carry their fixed base points."""
        assert get_base_points(activity) == points

    def test_unknown_activity_raises(self):
        """An activity missing from the table is rejected."""
        with pytest.raises(UnknownActivityError):
            get_base_points("teleportation")

    def test_unknown_activity_is_a_value_error(self):
        """UnknownActivityError can be caught as ValueError."""
        with pytest.raises(ValueError, match="Unknown activity"):
            get_base_points("teleportation")

    def test_custom_map(self):
        """A community points map replaces the platform table."""
        assert get_base_points("community_task", {"community_task": 40}) == 40
        with pytest.raises(UnknownActivityError):
            get_base_points("gaming_blackjack", {})


class TestDescriptions:
    def test_known_activity(self):
        """Known activities get their fixed description."""
        assert describe_activity("gaming_blackjack") == "Played Blackjack"

    def test_fallback(self):
        """Unknown activities fall back to a generic description."""
        assert describe_activity("something_new") == "Points earned"

    def test_achievement_unlock_names_achievement(self):
        """Unlock descriptions name the achievement."""
        text = describe_activity("achievement_unlock", {"achievement_name": "First Game"})
        assert text == "Achievement unlocked: First Game"


class TestBonusBuckets:
    @pytest.mark.parametrize(
        ("activity", "bucket"),
        [
            ("gaming_crypto_slots", "gaming"),
            ("raffle_ticket_purchase", "raffleTickets"),
            ("raffle_creation", "raffleCreation"),
            ("token_staking", "staking"),
            ("daily_login", "gaming"),
        ],
    )
    def test_partner_bonus_type(self, activity, bucket):
        """Each activity maps to its partner bonus bucket."""
        assert partner_bonus_type(activity) == bucket

    def test_gaming_prefix(self):
        """Any gaming_ activity counts as a game."""
        assert is_gaming_activity("gaming_coin_toss")
        assert not is_gaming_activity("raffle_creation")


class TestRequirementActivities:
    def test_every_activity_advances_points_earned(self):
        """Every earning activity advances points_earned."""
        assert "points_earned" in requirement_activities("daily_login")
        assert "points_earned" in requirement_activities("token_staking")

    def test_game_loss_does_not_count_as_win(self):
        """A lost game advances sessions but not wins."""
        keys = requirement_activities("gaming_blackjack", {"won": False})
        assert "gaming_sessions" in keys
        assert "gaming_wins" not in keys

    def test_game_win_counts(self):
        """A won game advances both sessions and wins."""
        keys = requirement_activities("gaming_blackjack", {"won": True})
        assert "gaming_wins" in keys

    def test_raffle_win(self):
        """A won raffle advances raffle wins."""
        keys = requirement_activities("raffle_ticket_purchase", {"won": True})
        assert "ticket_purchases" in keys
        assert "raffle_wins" in keys

    def test_community_scope_adds_participation(self):
        """Community awards also advance participation."""
        keys = requirement_activities("gaming_coin_toss", community=True)
        assert "community_participation" in keys
        assert "community_participation" not in requirement_activities("gaming_coin_toss")

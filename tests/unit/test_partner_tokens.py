"""Partner token multipliers."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from naffles.db.models import PartnerToken
from naffles.points.partner_tokens import (
    create_partner_token,
    get_partner_multiplier,
    is_currently_valid,
    list_active_partner_tokens,
    multiplier_for_activity,
)

NOW = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)
CONTRACT = "0xABCDEFabcdef0000000000000000000000000001"


def _token(**overrides) -> PartnerToken:
    fields = {
        "name": "Ape",
        "symbol": "APE",
        "contract_address": CONTRACT.lower(),
        "chain_id": "1",
        "multiplier": 2.0,
        "bonus_activities": {"gaming": True, "raffleCreation": False},
        "is_active": True,
        "valid_from": NOW - timedelta(days=1),
        "valid_until": None,
    }
    fields.update(overrides)
    return PartnerToken(**fields)


class TestValidity:
    def test_valid_window(self):
        """Tokens are valid only while active and inside their window."""
        assert is_currently_valid(_token(), NOW)
        assert not is_currently_valid(_token(is_active=False), NOW)
        assert not is_currently_valid(_token(valid_from=NOW + timedelta(hours=1)), NOW)
        assert not is_currently_valid(_token(valid_until=NOW - timedelta(hours=1)), NOW)

    def test_multiplier_per_bucket(self):
        """Multipliers apply only to enabled bonus buckets."""
        token = _token()
        assert multiplier_for_activity(token, "gaming", NOW) == 2.0
        assert multiplier_for_activity(token, "raffleCreation", NOW) == 1.0
        assert multiplier_for_activity(token, "staking", NOW) == 1.0
        assert multiplier_for_activity(_token(is_active=False), "gaming", NOW) == 1.0


class TestRegistry:
    @pytest.mark.asyncio
    async def test_create_and_lookup(self, db_session):
        """Registered tokens are found case-insensitively by contract and chain."""
        token = await create_partner_token(
            db_session, name="Ape", symbol="APE", contract_address=CONTRACT, chain_id=1, multiplier=2.5,
        )
        assert token.contract_address == CONTRACT.lower()
        assert token.chain_id == "1"
        assert token.partner_name == "Ape"
        assert token.bonus_activities == {
            "gaming": True, "raffleTickets": True, "raffleCreation": False, "staking": False,
        }

        assert await get_partner_multiplier(db_session, CONTRACT.upper().replace("0X", "0x"), "1", "gaming") == 2.5
        assert await get_partner_multiplier(db_session, CONTRACT, "1", "staking") == 1.0
        assert await get_partner_multiplier(db_session, CONTRACT, "137", "gaming") == 1.0
        assert await get_partner_multiplier(db_session, None, None, "gaming") == 1.0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("multiplier", [0.5, 10.5])
    async def test_multiplier_bounds(self, db_session, multiplier):
        """Multipliers outside 1.0 to 10.0 are rejected."""
        with pytest.raises(ValueError, match="Multiplier"):
            await create_partner_token(
                db_session, name="Bad", symbol="BAD", contract_address=CONTRACT, chain_id="1",
                multiplier=multiplier,
            )

    @pytest.mark.asyncio
    async def test_list_active(self, db_session):
        """Only currently valid tokens are listed, by partner name."""
        await create_partner_token(
            db_session, name="Live", symbol="LIV", contract_address="0x01", chain_id="1", partner_name="B Partner",
        )
        await create_partner_token(
            db_session, name="Early", symbol="EAR", contract_address="0x02", chain_id="1", partner_name="A Partner",
        )
        await create_partner_token(
            db_session, name="Expired", symbol="EXP", contract_address="0x03", chain_id="1",
            valid_until=datetime.now(timezone.utc) - timedelta(days=1),
        )
        tokens = await list_active_partner_tokens(db_session)
        assert [t.symbol for t in tokens] == ["EAR", "LIV"]

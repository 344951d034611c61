"""Points ledger tables.

Creates users, the global ledger (balances, transactions), partner tokens,
the jackpot singleton, communities with their own ledger, achievements,
leaderboards and the side-effect outbox.

Revision ID: 001_points_ledger
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_points_ledger"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Users ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id BIGSERIAL PRIMARY KEY,
            username VARCHAR(64) UNIQUE NOT NULL,
            wallet_address VARCHAR(64),
            twitter_username VARCHAR(32),
            discord_username VARCHAR(64),
            discord_discriminator VARCHAR(8),
            role VARCHAR(16) NOT NULL DEFAULT 'user',
            is_active BOOLEAN NOT NULL DEFAULT true,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_users_wallet_address ON users(wallet_address)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_users_twitter_username ON users(twitter_username)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_users_discord_username ON users(discord_username)")

    # --- Global balances ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS points_balances (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT UNIQUE NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            balance INTEGER NOT NULL DEFAULT 0,
            total_earned INTEGER NOT NULL DEFAULT 0,
            total_spent INTEGER NOT NULL DEFAULT 0,
            tier VARCHAR(16) NOT NULL DEFAULT 'bronze',
            tier_progress DOUBLE PRECISION NOT NULL DEFAULT 0,
            last_activity TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CHECK (balance >= 0)
        )
    """)

    # --- Global transactions ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS points_transactions (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            type VARCHAR(16) NOT NULL,
            activity VARCHAR(64) NOT NULL,
            amount INTEGER NOT NULL,
            balance_before INTEGER NOT NULL,
            balance_after INTEGER NOT NULL,
            multiplier DOUBLE PRECISION NOT NULL DEFAULT 1.0,
            base_amount INTEGER NOT NULL,
            metadata JSONB NOT NULL DEFAULT '{}',
            description TEXT,
            admin_id BIGINT REFERENCES users(id),
            is_reversible BOOLEAN NOT NULL DEFAULT true,
            reversed_at TIMESTAMPTZ,
            reversed_by_id BIGINT REFERENCES points_transactions(id),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_points_transactions_user_created
        ON points_transactions(user_id, created_at DESC)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_points_transactions_type_created
        ON points_transactions(type, created_at DESC)
    """)

    # --- Partner tokens ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS partner_tokens (
            id BIGSERIAL PRIMARY KEY,
            name VARCHAR(64) NOT NULL,
            symbol VARCHAR(16) NOT NULL,
            contract_address VARCHAR(64) NOT NULL,
            chain_id VARCHAR(32) NOT NULL,
            multiplier DOUBLE PRECISION NOT NULL DEFAULT 1.5,
            partner_name VARCHAR(128),
            bonus_activities JSONB NOT NULL DEFAULT '{}',
            is_active BOOLEAN NOT NULL DEFAULT true,
            valid_from TIMESTAMPTZ,
            valid_until TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            UNIQUE(contract_address, chain_id)
        )
    """)

    # --- Jackpot (singleton) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS points_jackpot (
            id INTEGER PRIMARY KEY CHECK (id = 1),
            current_amount INTEGER NOT NULL DEFAULT 1000,
            base_amount INTEGER NOT NULL DEFAULT 1000,
            is_active BOOLEAN NOT NULL DEFAULT true,
            last_winner_id BIGINT REFERENCES users(id),
            last_win_amount INTEGER NOT NULL DEFAULT 0,
            last_win_date TIMESTAMPTZ,
            total_winners INTEGER NOT NULL DEFAULT 0,
            total_amount_won INTEGER NOT NULL DEFAULT 0,
            raffle_creation_increment INTEGER NOT NULL DEFAULT 10,
            ticket_purchase_increment INTEGER NOT NULL DEFAULT 1,
            game_play_increment INTEGER NOT NULL DEFAULT 2,
            time_based_increment INTEGER NOT NULL DEFAULT 5,
            last_time_increment TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            min_points_required INTEGER NOT NULL DEFAULT 100,
            win_probability DOUBLE PRECISION NOT NULL DEFAULT 0.001,
            cooldown_seconds INTEGER NOT NULL DEFAULT 86400,
            max_wins_per_day INTEGER NOT NULL DEFAULT 3,
            stats_date VARCHAR(10),
            wins_today INTEGER NOT NULL DEFAULT 0,
            increments_today INTEGER NOT NULL DEFAULT 0,
            amount_added_today INTEGER NOT NULL DEFAULT 0,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)

    # --- Communities ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS communities (
            id BIGSERIAL PRIMARY KEY,
            name VARCHAR(100) NOT NULL,
            slug VARCHAR(120) UNIQUE NOT NULL,
            description TEXT,
            creator_id BIGINT REFERENCES users(id),
            is_naffles_community BOOLEAN NOT NULL DEFAULT false,
            points_name VARCHAR(50) NOT NULL DEFAULT 'Points',
            points_symbol VARCHAR(10),
            initial_balance INTEGER NOT NULL DEFAULT 0,
            activity_points_map JSONB NOT NULL DEFAULT '{}',
            enable_achievements BOOLEAN NOT NULL DEFAULT true,
            enable_leaderboards BOOLEAN NOT NULL DEFAULT true,
            custom_tiers JSONB NOT NULL DEFAULT '[]',
            enable_jackpot BOOLEAN NOT NULL DEFAULT false,
            enable_system_wide_earning BOOLEAN NOT NULL DEFAULT false,
            enable_gaming BOOLEAN NOT NULL DEFAULT true,
            enable_raffles BOOLEAN NOT NULL DEFAULT true,
            enable_marketplace BOOLEAN NOT NULL DEFAULT false,
            enable_social_tasks BOOLEAN NOT NULL DEFAULT true,
            is_public BOOLEAN NOT NULL DEFAULT true,
            is_active BOOLEAN NOT NULL DEFAULT true,
            member_count INTEGER NOT NULL DEFAULT 0,
            total_points_issued INTEGER NOT NULL DEFAULT 0,
            total_activities INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CHECK (is_naffles_community OR (NOT enable_jackpot AND NOT enable_system_wide_earning))
        )
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS community_members (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            community_id BIGINT NOT NULL REFERENCES communities(id) ON DELETE CASCADE,
            role VARCHAR(16) NOT NULL DEFAULT 'member',
            permissions JSONB NOT NULL DEFAULT '{}',
            is_active BOOLEAN NOT NULL DEFAULT true,
            joined_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            last_activity TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            UNIQUE(user_id, community_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_community_members_community
        ON community_members(community_id, is_active)
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS community_points_balances (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            community_id BIGINT NOT NULL REFERENCES communities(id) ON DELETE CASCADE,
            balance INTEGER NOT NULL DEFAULT 0,
            total_earned INTEGER NOT NULL DEFAULT 0,
            total_spent INTEGER NOT NULL DEFAULT 0,
            tier VARCHAR(32) NOT NULL DEFAULT 'bronze',
            tier_progress DOUBLE PRECISION NOT NULL DEFAULT 0,
            last_activity TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            UNIQUE(user_id, community_id),
            CHECK (balance >= 0)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_community_points_balances_board
        ON community_points_balances(community_id, total_earned DESC)
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS community_points_transactions (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            community_id BIGINT NOT NULL REFERENCES communities(id) ON DELETE CASCADE,
            type VARCHAR(16) NOT NULL,
            activity VARCHAR(64) NOT NULL,
            amount INTEGER NOT NULL,
            balance_before INTEGER NOT NULL,
            balance_after INTEGER NOT NULL,
            multiplier DOUBLE PRECISION NOT NULL DEFAULT 1.0,
            base_amount INTEGER NOT NULL,
            metadata JSONB NOT NULL DEFAULT '{}',
            description TEXT,
            points_name VARCHAR(50) NOT NULL DEFAULT 'Points',
            is_naffles_community BOOLEAN NOT NULL DEFAULT false,
            is_system_wide BOOLEAN NOT NULL DEFAULT false,
            admin_id BIGINT REFERENCES users(id),
            is_reversible BOOLEAN NOT NULL DEFAULT true,
            reversed_at TIMESTAMPTZ,
            reversed_by_id BIGINT REFERENCES community_points_transactions(id),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_community_points_tx_user_created
        ON community_points_transactions(user_id, community_id, created_at DESC)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_community_points_tx_activity
        ON community_points_transactions(community_id, activity)
    """)

    # --- Achievements ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS achievements (
            id BIGSERIAL PRIMARY KEY,
            community_id BIGINT REFERENCES communities(id) ON DELETE CASCADE,
            name VARCHAR(128) NOT NULL,
            description TEXT NOT NULL,
            category VARCHAR(16) NOT NULL,
            type VARCHAR(16) NOT NULL,
            requirement_activity VARCHAR(64) NOT NULL,
            threshold INTEGER NOT NULL,
            timeframe VARCHAR(16),
            reward_points INTEGER NOT NULL DEFAULT 0,
            reward_badge VARCHAR(64),
            reward_title VARCHAR(64),
            reward_multiplier DOUBLE PRECISION NOT NULL DEFAULT 1.0,
            rarity VARCHAR(16) NOT NULL DEFAULT 'common',
            icon VARCHAR(64) NOT NULL DEFAULT 'trophy',
            is_active BOOLEAN NOT NULL DEFAULT true,
            is_repeatable BOOLEAN NOT NULL DEFAULT false,
            sort_order INTEGER NOT NULL DEFAULT 0,
            created_by BIGINT REFERENCES users(id),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_achievements_community_id ON achievements(community_id)")
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_achievements_activity_active
        ON achievements(requirement_activity, is_active)
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS user_achievements (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            achievement_id BIGINT NOT NULL REFERENCES achievements(id) ON DELETE CASCADE,
            community_id BIGINT REFERENCES communities(id),
            progress INTEGER NOT NULL DEFAULT 0,
            is_completed BOOLEAN NOT NULL DEFAULT false,
            completed_at TIMESTAMPTZ,
            points_awarded INTEGER NOT NULL DEFAULT 0,
            times_completed INTEGER NOT NULL DEFAULT 0,
            current_streak INTEGER NOT NULL DEFAULT 0,
            best_streak INTEGER NOT NULL DEFAULT 0,
            last_activity TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            UNIQUE(user_id, achievement_id)
        )
    """)

    # --- Leaderboards ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS leaderboard_entries (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            category VARCHAR(32) NOT NULL,
            period VARCHAR(16) NOT NULL,
            period_start TIMESTAMPTZ NOT NULL,
            period_end TIMESTAMPTZ NOT NULL,
            username VARCHAR(64) NOT NULL,
            wallet_address VARCHAR(64),
            value DOUBLE PRECISION NOT NULL DEFAULT 0,
            rank INTEGER,
            previous_rank INTEGER,
            change VARCHAR(8) NOT NULL DEFAULT 'new',
            metadata JSONB NOT NULL DEFAULT '{}',
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            UNIQUE(user_id, category, period, period_start)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_leaderboard_entries_board
        ON leaderboard_entries(category, period, period_start, rank)
    """)

    # --- Side-effect outbox ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS points_events (
            id BIGSERIAL PRIMARY KEY,
            kind VARCHAR(32) NOT NULL,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            community_id BIGINT REFERENCES communities(id),
            payload JSONB NOT NULL DEFAULT '{}',
            status VARCHAR(16) NOT NULL DEFAULT 'pending',
            attempts INTEGER NOT NULL DEFAULT 0,
            last_error TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            processed_at TIMESTAMPTZ
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_points_events_status_created
        ON points_events(status, created_at)
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS points_events CASCADE")
    op.execute("DROP TABLE IF EXISTS leaderboard_entries CASCADE")
    op.execute("DROP TABLE IF EXISTS user_achievements CASCADE")
    op.execute("DROP TABLE IF EXISTS achievements CASCADE")
    op.execute("DROP TABLE IF EXISTS community_points_transactions CASCADE")
    op.execute("DROP TABLE IF EXISTS community_points_balances CASCADE")
    op.execute("DROP TABLE IF EXISTS community_members CASCADE")
    op.execute("DROP TABLE IF EXISTS communities CASCADE")
    op.execute("DROP TABLE IF EXISTS points_jackpot CASCADE")
    op.execute("DROP TABLE IF EXISTS partner_tokens CASCADE")
    op.execute("DROP TABLE IF EXISTS points_transactions CASCADE")
    op.execute("DROP TABLE IF EXISTS points_balances CASCADE")
    op.execute("DROP TABLE IF EXISTS users CASCADE")

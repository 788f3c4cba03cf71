"""Initial schema: profiles, challenges, submissions, badge_records.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Profiles ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS profiles (
            id VARCHAR(64) PRIMARY KEY,
            username VARCHAR(64),
            wallet_address VARCHAR(42),
            total_points INTEGER NOT NULL DEFAULT 0,
            badges_count INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_profiles_wallet_address
        ON profiles(wallet_address)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_profiles_wallet_lower
        ON profiles(LOWER(wallet_address))
    """)

    # --- Challenges ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS challenges (
            id VARCHAR(64) PRIMARY KEY,
            title VARCHAR(200) NOT NULL,
            description TEXT,
            category VARCHAR(64) NOT NULL,
            difficulty VARCHAR(16) NOT NULL
                CHECK (difficulty IN ('easy', 'medium', 'hard', 'expert')),
            points INTEGER NOT NULL CHECK (points >= 0),
            badge_name VARCHAR(200),
            badge_image_url TEXT,
            completions_count INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)

    # --- Submissions ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS submissions (
            id VARCHAR(64) PRIMARY KEY,
            user_id VARCHAR(64) NOT NULL,
            challenge_id VARCHAR(64) NOT NULL REFERENCES challenges(id),
            status VARCHAR(16) NOT NULL DEFAULT 'pending'
                CHECK (status IN ('pending', 'approved', 'rejected')),
            proof_media_url TEXT,
            caption TEXT,
            nft_mint_address VARCHAR(128),
            nft_metadata_uri TEXT,
            nft_tx_signature VARCHAR(128),
            minted_at TIMESTAMPTZ,
            rejection_reason TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_submissions_user_status
        ON submissions(user_id, status)
    """)

    # --- Badge Records ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS badge_records (
            id SERIAL PRIMARY KEY,
            user_id VARCHAR(64) NOT NULL,
            submission_id VARCHAR(64) NOT NULL REFERENCES submissions(id),
            challenge_id VARCHAR(64) NOT NULL REFERENCES challenges(id),
            wallet_address VARCHAR(42) NOT NULL,
            mint_address VARCHAR(128) NOT NULL,
            metadata_uri TEXT NOT NULL,
            tx_signature VARCHAR(128) NOT NULL,
            token_id VARCHAR(80) NOT NULL,
            proof_hash VARCHAR(66) NOT NULL,
            issued_at_ms BIGINT NOT NULL,
            minted_on_chain BOOLEAN NOT NULL DEFAULT false,
            mint_state VARCHAR(16) NOT NULL DEFAULT 'reserved'
                CHECK (mint_state IN ('reserved', 'degraded', 'minted')),
            name VARCHAR(200) NOT NULL,
            description TEXT,
            image_url TEXT,
            attributes JSONB NOT NULL DEFAULT '{}',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT badge_records_submission_id_key UNIQUE (submission_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_badge_records_user
        ON badge_records(user_id)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_badge_records_degraded
        ON badge_records(issued_at_ms) WHERE mint_state <> 'minted'
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS badge_records")
    op.execute("DROP TABLE IF EXISTS submissions")
    op.execute("DROP TABLE IF EXISTS challenges")
    op.execute("DROP TABLE IF EXISTS profiles")

"""Gamification baseline.

Creates the directory tables the service reads (users, user_categories,
user_category_assignments) when they do not exist yet, plus the gamification
settings, points ledger, challenges, submissions, comments and comment likes.

Revision ID: 001_gamification_baseline
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_gamification_baseline"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Directory (owned by the portal; created here only for standalone deployments) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id BIGSERIAL PRIMARY KEY,
            name VARCHAR(128) NOT NULL,
            email VARCHAR(320) UNIQUE,
            photo_url TEXT,
            role VARCHAR(16) NOT NULL DEFAULT 'user',
            is_active BOOLEAN NOT NULL DEFAULT true,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_categories (
            id BIGSERIAL PRIMARY KEY,
            name VARCHAR(128) NOT NULL,
            description TEXT,
            color VARCHAR(16),
            is_active BOOLEAN NOT NULL DEFAULT true,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_category_assignments (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            category_id BIGINT NOT NULL REFERENCES user_categories(id) ON DELETE CASCADE,
            assigned_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_user_category_assignment UNIQUE (user_id, category_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_category_assignments_category
        ON user_category_assignments(category_id)
    """)

    # --- Settings ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS gamification_settings (
            id BIGSERIAL PRIMARY KEY,
            cycle_start_date TIMESTAMPTZ,
            cycle_end_date TIMESTAMPTZ,
            annual_start_date TIMESTAMPTZ,
            annual_end_date TIMESTAMPTZ,
            general_category_id BIGINT REFERENCES user_categories(id) ON DELETE SET NULL,
            enabled_category_ids JSONB NOT NULL DEFAULT '[]',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)

    # --- Points ledger ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS gamification_points (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            points INTEGER NOT NULL,
            description VARCHAR(512) NOT NULL,
            type VARCHAR(32) NOT NULL DEFAULT 'manual',
            source_type VARCHAR(32),
            source_id BIGINT,
            submission_id BIGINT,
            created_by BIGINT REFERENCES users(id) ON DELETE SET NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_points_non_zero CHECK (points <> 0)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_points_user_created
        ON gamification_points(user_id, created_at)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_points_source
        ON gamification_points(source_type, source_id)
    """)

    # --- Challenges ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS gamification_challenges (
            id BIGSERIAL PRIMARY KEY,
            title VARCHAR(256) NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            detailed_description TEXT,
            image_url TEXT,
            points INTEGER NOT NULL DEFAULT 0,
            start_date TIMESTAMPTZ NOT NULL,
            end_date TIMESTAMPTZ NOT NULL,
            type VARCHAR(16) NOT NULL DEFAULT 'periodic',
            is_active BOOLEAN NOT NULL DEFAULT true,
            evaluation_type VARCHAR(16) NOT NULL DEFAULT 'none',
            evaluation_config JSONB,
            target_user_categories JSONB NOT NULL DEFAULT '[]',
            display_order INTEGER NOT NULL DEFAULT 0,
            created_by BIGINT REFERENCES users(id) ON DELETE SET NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_challenges_active_window
        ON gamification_challenges(is_active, start_date, end_date)
    """)

    # --- Submissions (one row per challenge/user pair) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS challenge_submissions (
            id BIGSERIAL PRIMARY KEY,
            challenge_id BIGINT NOT NULL REFERENCES gamification_challenges(id) ON DELETE CASCADE,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            status VARCHAR(16) NOT NULL DEFAULT 'pending',
            submission_type VARCHAR(16) NOT NULL,
            submission_data JSONB NOT NULL DEFAULT '{}',
            points INTEGER NOT NULL DEFAULT 0,
            admin_feedback TEXT,
            attempt_count INTEGER NOT NULL DEFAULT 1,
            reviewed_by BIGINT REFERENCES users(id) ON DELETE SET NULL,
            reviewed_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_submission_challenge_user UNIQUE (challenge_id, user_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_submissions_status
        ON challenge_submissions(status)
    """)

    # --- Comments + likes ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS challenge_comments (
            id BIGSERIAL PRIMARY KEY,
            challenge_id BIGINT NOT NULL REFERENCES gamification_challenges(id) ON DELETE CASCADE,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            content TEXT NOT NULL,
            parent_id BIGINT REFERENCES challenge_comments(id) ON DELETE CASCADE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_comments_challenge
        ON challenge_comments(challenge_id)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_comments_parent
        ON challenge_comments(parent_id)
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS challenge_comment_likes (
            id BIGSERIAL PRIMARY KEY,
            comment_id BIGINT NOT NULL REFERENCES challenge_comments(id) ON DELETE CASCADE,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_comment_like_user UNIQUE (user_id, comment_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_comment_likes_comment
        ON challenge_comment_likes(comment_id)
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS challenge_comment_likes CASCADE")
    op.execute("DROP TABLE IF EXISTS challenge_comments CASCADE")
    op.execute("DROP TABLE IF EXISTS challenge_submissions CASCADE")
    op.execute("DROP TABLE IF EXISTS gamification_challenges CASCADE")
    op.execute("DROP TABLE IF EXISTS gamification_points CASCADE")
    op.execute("DROP TABLE IF EXISTS gamification_settings CASCADE")
    # Directory tables are left in place: the portal owns them

"""ORM models for the gamification bounded context.

Users, categories and category assignments are owned by the portal directory;
this service only reads them (and manages assignments through the directory
endpoints). Challenges, submissions, comments and the points ledger are owned here.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from portal.db.base import Base, BigIntId, JSONType, utcnow

# ---------------------------------------------------------------------------
# Directory (read mostly)
# ---------------------------------------------------------------------------


class User(Base):
    """Portal user. Identity and role come from the portal directory."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True, unique=True)
    photo_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="user")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class UserCategory(Base):
    """Group of users used for challenge targeting and ranking eligibility."""

    __tablename__ = "user_categories"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    color: Mapped[str | None] = mapped_column(String(16), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class UserCategoryAssignment(Base):
    """Many-to-many link between users and categories."""

    __tablename__ = "user_category_assignments"
    __table_args__ = (
        UniqueConstraint("user_id", "category_id", name="uq_user_category_assignment"),
        Index("idx_category_assignments_category", "category_id"),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    category_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("user_categories.id", ondelete="CASCADE"), nullable=False
    )
    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


# ---------------------------------------------------------------------------
# Gamification: settings + ledger
# ---------------------------------------------------------------------------


class GamificationSettings(Base):
    """Single-row configuration: ranking windows and participating categories."""

    __tablename__ = "gamification_settings"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    cycle_start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cycle_end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    annual_start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    annual_end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    general_category_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("user_categories.id", ondelete="SET NULL"), nullable=True
    )
    enabled_category_ids: Mapped[list[int]] = mapped_column(JSONType, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class PointsEntry(Base):
    """Signed point transaction. Immutable; only admin correction deletes it.

    Entries awarded by a challenge carry ``source_type='challenge'`` and
    ``source_id=<challenge id>`` (plus the submission id) so retraction is an
    exact match rather than a description search.
    """

    __tablename__ = "gamification_points"
    __table_args__ = (
        CheckConstraint("points <> 0", name="ck_points_non_zero"),
        Index("idx_points_user_created", "user_id", "created_at"),
        Index("idx_points_source", "source_type", "source_id"),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    points: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(String(512), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False, default="manual")
    source_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    source_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    submission_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    created_by: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


# ---------------------------------------------------------------------------
# Gamification: challenges, submissions, comments
# ---------------------------------------------------------------------------


class Challenge(Base):
    """Time-boxed, point-valued activity with one evaluation modality."""

    __tablename__ = "gamification_challenges"
    __table_args__ = (
        Index("idx_challenges_active_window", "is_active", "start_date", "end_date"),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    detailed_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False, default="periodic")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    evaluation_type: Mapped[str] = mapped_column(String(16), nullable=False, default="none")
    evaluation_config: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    target_user_categories: Mapped[list[int]] = mapped_column(JSONType, nullable=False, default=list)
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_by: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class ChallengeSubmission(Base):
    """A user's attempt at a challenge. One row per (challenge, user); resubmission reuses it."""

    __tablename__ = "challenge_submissions"
    __table_args__ = (
        UniqueConstraint("challenge_id", "user_id", name="uq_submission_challenge_user"),
        Index("idx_submissions_status", "status"),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    challenge_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("gamification_challenges.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    submission_type: Mapped[str] = mapped_column(String(16), nullable=False)
    submission_data: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    admin_feedback: Mapped[str | None] = mapped_column(Text, nullable=True)
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    reviewed_by: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class ChallengeComment(Base):
    """Comment on a challenge. Replies point at a root comment (one level only)."""

    __tablename__ = "challenge_comments"
    __table_args__ = (
        Index("idx_comments_challenge", "challenge_id"),
        Index("idx_comments_parent", "parent_id"),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    challenge_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("gamification_challenges.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    parent_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("challenge_comments.id", ondelete="CASCADE"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class ChallengeCommentLike(Base):
    """One like per (user, comment)."""

    __tablename__ = "challenge_comment_likes"
    __table_args__ = (
        UniqueConstraint("user_id", "comment_id", name="uq_comment_like_user"),
        Index("idx_comment_likes_comment", "comment_id"),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    comment_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("challenge_comments.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

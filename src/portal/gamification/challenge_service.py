"""Challenge CRUD, listing visibility and protected deletion.

Forced deletion and "return submissions" run every database step inside one
transaction (retract points, delete submissions, delete comments, delete the
challenge). File cleanup against object storage cannot join that transaction:
the URLs are collected while the transaction runs and deleted after commit,
best-effort, with failures counted in the result.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from portal.auth.dependencies import Principal
from portal.db.base import as_utc, utcnow
from portal.db.models import (
    Challenge,
    ChallengeComment,
    ChallengeCommentLike,
    ChallengeSubmission,
    User,
)
from portal.errors import NotFoundError, ValidationError, field_error
from portal.gamification.eligibility import is_challenge_visible
from portal.gamification.evaluation import (
    derive_challenge_points,
    normalize_evaluation_config,
    submitted_file_urls,
)
from portal.gamification.points_service import retract_challenge_points
from portal.gamification.schemas import ChallengeCreate, ChallengeUpdate
from portal.gamification.storage import BaseStorageProvider, delete_stored_files, upload_prefix

logger = structlog.get_logger()


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}" if count == 1 else f"{count} {noun}s"


@dataclass
class DeletionBlocked:
    """Returned instead of deleting when submissions exist and deletion was not forced."""

    submission_count: int
    challenge_title: str


@dataclass
class RetractionResult:
    """Summary of a forced deletion or a submissions return."""

    challenge_deleted: bool
    submissions_removed: int = 0
    points_retracted: int = 0
    comments_removed: int = 0
    files_deleted: int = 0
    file_deletion_failures: int = 0
    pending_file_urls: list[str] = field(default_factory=list, repr=False)

    @property
    def message(self) -> str:
        verb = "deleted" if self.challenge_deleted else "returned"
        text = f"{_plural(self.submissions_removed, 'submission')} {verb}"
        if self.file_deletion_failures:
            text += f", {_plural(self.file_deletion_failures, 'file deletion')} failed"
        return text


def _validate_dates(start: datetime, end: datetime) -> None:
    if as_utc(start) >= as_utc(end):
        raise ValidationError(
            "startDate must be before endDate",
            errors=[field_error("startDate", "must be before endDate")],
        )


def is_open(challenge: Challenge, now: datetime | None = None) -> bool:
    """Active and inside its [start, end] window."""
    now = now or datetime.now(timezone.utc)
    return bool(challenge.is_active) and as_utc(challenge.start_date) <= now <= as_utc(challenge.end_date)


async def _creator_names(db: AsyncSession, challenges: list[Challenge]) -> dict[int, str]:
    ids = {c.created_by for c in challenges if c.created_by is not None}
    if not ids:
        return {}
    result = await db.execute(select(User.id, User.name).where(User.id.in_(ids)))
    return dict(result.all())


def challenge_to_dict(challenge: Challenge, creator_name: str | None = None) -> dict:
    return {
        "id": challenge.id,
        "title": challenge.title,
        "description": challenge.description,
        "detailed_description": challenge.detailed_description,
        "image_url": challenge.image_url,
        "points": challenge.points,
        "start_date": challenge.start_date,
        "end_date": challenge.end_date,
        "type": challenge.type,
        "is_active": challenge.is_active,
        "evaluation_type": challenge.evaluation_type,
        "evaluation_config": challenge.evaluation_config,
        "target_user_categories": challenge.target_user_categories or [],
        "display_order": challenge.display_order,
        "created_by": challenge.created_by,
        "creator_name": creator_name,
        "created_at": challenge.created_at,
        "updated_at": challenge.updated_at,
    }


# ---------------------------------------------------------------------------
# Read path
# ---------------------------------------------------------------------------


async def list_challenges(
    db: AsyncSession,
    principal: Principal,
    challenge_type: str = "all",
    admin_view: bool = False,
) -> list[dict]:
    """Challenges visible to the requester.

    The admin view (admins only) skips the active/date/category filters and is
    newest-first. Everyone else gets open challenges they may see, in display order;
    admins still see every category there.
    """
    query = select(Challenge)
    if challenge_type != "all":
        query = query.where(Challenge.type == challenge_type)

    if admin_view and principal.is_admin:
        result = await db.execute(query.order_by(Challenge.created_at.desc(), Challenge.id.desc()))
        challenges = list(result.scalars())
    else:
        now = datetime.now(timezone.utc)
        result = await db.execute(
            query.where(
                Challenge.is_active.is_(True),
                Challenge.start_date <= now,
                Challenge.end_date >= now,
            ).order_by(Challenge.display_order, Challenge.id)
        )
        challenges = [
            c
            for c in result.scalars()
            if is_challenge_visible(c, principal.category_ids, principal.is_admin)
        ]

    names = await _creator_names(db, challenges)
    return [challenge_to_dict(c, names.get(c.created_by)) for c in challenges]


async def get_challenge(db: AsyncSession, challenge_id: int) -> Challenge:
    challenge = await db.get(Challenge, challenge_id)
    if challenge is None:
        raise NotFoundError(f"Challenge {challenge_id} not found")
    return challenge


async def get_visible_challenge(db: AsyncSession, principal: Principal, challenge_id: int) -> dict:
    """One challenge, hidden (404) from users outside its target categories."""
    challenge = await get_challenge(db, challenge_id)
    if not is_challenge_visible(challenge, principal.category_ids, principal.is_admin):
        raise NotFoundError(f"Challenge {challenge_id} not found")
    names = await _creator_names(db, [challenge])
    return challenge_to_dict(challenge, names.get(challenge.created_by))


# ---------------------------------------------------------------------------
# Write path (admin)
# ---------------------------------------------------------------------------


async def create_challenge(db: AsyncSession, principal: Principal, data: ChallengeCreate) -> Challenge:
    """Create a challenge. File challenges derive their points from the requirements."""
    _validate_dates(data.start_date, data.end_date)
    config = normalize_evaluation_config(data.evaluation_type, data.evaluation_config)

    display_order = data.display_order
    if display_order is None:
        result = await db.execute(select(func.coalesce(func.max(Challenge.display_order), 0)))
        display_order = int(result.scalar_one()) + 1

    now = utcnow()
    challenge = Challenge(
        title=data.title,
        description=data.description,
        detailed_description=data.detailed_description,
        image_url=data.image_url,
        points=derive_challenge_points(data.evaluation_type, config, data.points),
        start_date=as_utc(data.start_date),
        end_date=as_utc(data.end_date),
        type=data.type,
        is_active=data.is_active,
        evaluation_type=data.evaluation_type,
        evaluation_config=config,
        target_user_categories=list(dict.fromkeys(data.target_user_categories)),
        display_order=display_order,
        created_by=principal.id,
        created_at=now,
        updated_at=now,
    )
    db.add(challenge)
    await db.commit()
    await db.refresh(challenge)
    logger.info("challenge_created", challenge_id=challenge.id, evaluation_type=challenge.evaluation_type)
    return challenge


async def update_challenge(db: AsyncSession, challenge_id: int, data: ChallengeUpdate) -> Challenge:
    """Apply a partial update; dates, config and derived points are re-checked on the merged result."""
    challenge = await get_challenge(db, challenge_id)
    changes = data.model_dump(exclude_unset=True)

    start = changes.get("start_date", challenge.start_date)
    end = changes.get("end_date", challenge.end_date)
    if start is None or end is None:
        raise ValidationError("startDate and endDate cannot be cleared")
    _validate_dates(start, end)

    evaluation_type = changes.get("evaluation_type") or challenge.evaluation_type
    if "evaluation_type" in changes or "evaluation_config" in changes:
        raw_config = data.evaluation_config if "evaluation_config" in changes else challenge.evaluation_config
        challenge.evaluation_config = normalize_evaluation_config(evaluation_type, raw_config)
        challenge.evaluation_type = evaluation_type

    for name in ("title", "description", "detailed_description", "image_url", "type", "is_active", "display_order"):
        if name in changes and (changes[name] is not None or name in ("detailed_description", "image_url")):
            setattr(challenge, name, changes[name])
    if "target_user_categories" in changes:
        challenge.target_user_categories = list(dict.fromkeys(changes["target_user_categories"] or []))
    challenge.start_date = as_utc(start)
    challenge.end_date = as_utc(end)

    points = changes.get("points")
    challenge.points = derive_challenge_points(
        challenge.evaluation_type,
        challenge.evaluation_config,
        points if points is not None else challenge.points,
    )
    challenge.updated_at = utcnow()

    await db.commit()
    await db.refresh(challenge)
    logger.info("challenge_updated", challenge_id=challenge.id, fields=sorted(changes))
    return challenge


async def reorder_challenges(db: AsyncSession, challenge_ids: list[int]) -> None:
    """Rewrite displayOrder to the position of each id in the list."""
    if len(set(challenge_ids)) != len(challenge_ids):
        raise ValidationError("challengeIds must not repeat", errors=[field_error("challengeIds", "duplicate ids")])
    result = await db.execute(select(Challenge).where(Challenge.id.in_(challenge_ids)))
    by_id = {c.id: c for c in result.scalars()}
    missing = [cid for cid in challenge_ids if cid not in by_id]
    if missing:
        raise NotFoundError(f"Challenges not found: {missing}")

    for index, challenge_id in enumerate(challenge_ids):
        by_id[challenge_id].display_order = index + 1
    await db.commit()
    logger.info("challenges_reordered", count=len(challenge_ids))


async def count_submissions(db: AsyncSession, challenge_id: int) -> tuple[int, str]:
    """(submission count, title) for the deletion confirmation dialog."""
    challenge = await get_challenge(db, challenge_id)
    result = await db.execute(
        select(func.count()).select_from(ChallengeSubmission).where(ChallengeSubmission.challenge_id == challenge_id)
    )
    return int(result.scalar_one()), challenge.title


# ---------------------------------------------------------------------------
# Protected deletion / return
# ---------------------------------------------------------------------------


async def _remove_submissions(
    db: AsyncSession,
    storage: BaseStorageProvider,
    challenge: Challenge,
    outcome: RetractionResult,
) -> None:
    """Retract points and delete every submission of a challenge (no commit).

    Only files under each submitter's own upload prefix are queued for deletion.
    """
    result = await db.execute(select(ChallengeSubmission).where(ChallengeSubmission.challenge_id == challenge.id))
    submissions = list(result.scalars())

    for submission in submissions:
        outcome.points_retracted += await retract_challenge_points(db, challenge.id, submission.user_id)
        prefix = upload_prefix(challenge.id, submission.user_id)
        for url in submitted_file_urls(submission.submission_type, submission.submission_data):
            if storage.owns(url, prefix):
                outcome.pending_file_urls.append(url)
            else:
                logger.info("storage_delete_skipped", url=url, reason="not_owned", prefix=prefix)

    await db.execute(delete(ChallengeSubmission).where(ChallengeSubmission.challenge_id == challenge.id))
    outcome.submissions_removed = len(submissions)


async def _remove_comments(db: AsyncSession, challenge_id: int) -> int:
    comment_ids = select(ChallengeComment.id).where(ChallengeComment.challenge_id == challenge_id)
    await db.execute(delete(ChallengeCommentLike).where(ChallengeCommentLike.comment_id.in_(comment_ids)))
    # Replies first: they reference their root comment
    replies = await db.execute(
        delete(ChallengeComment).where(
            ChallengeComment.challenge_id == challenge_id,
            ChallengeComment.parent_id.is_not(None),
        )
    )
    roots = await db.execute(delete(ChallengeComment).where(ChallengeComment.challenge_id == challenge_id))
    return (replies.rowcount or 0) + (roots.rowcount or 0)


async def _commit_then_cleanup(
    db: AsyncSession,
    storage: BaseStorageProvider,
    outcome: RetractionResult,
) -> RetractionResult:
    try:
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    outcome.files_deleted, outcome.file_deletion_failures = await delete_stored_files(
        storage, outcome.pending_file_urls
    )
    return outcome


async def delete_challenge(
    db: AsyncSession,
    storage: BaseStorageProvider,
    challenge_id: int,
    force: bool = False,
) -> DeletionBlocked | RetractionResult:
    """Delete a challenge, refusing (without error) when submissions exist unless forced."""
    challenge = await get_challenge(db, challenge_id)
    submission_count, title = await count_submissions(db, challenge_id)
    if submission_count and not force:
        logger.info("challenge_delete_blocked", challenge_id=challenge_id, submission_count=submission_count)
        return DeletionBlocked(submission_count=submission_count, challenge_title=title)

    outcome = RetractionResult(challenge_deleted=True)
    try:
        await _remove_submissions(db, storage, challenge, outcome)
        outcome.comments_removed = await _remove_comments(db, challenge_id)
        await db.delete(challenge)
        await db.flush()
    except Exception:
        await db.rollback()
        raise

    await _commit_then_cleanup(db, storage, outcome)
    logger.info(
        "challenge_force_deleted" if force else "challenge_deleted",
        challenge_id=challenge_id,
        submissions=outcome.submissions_removed,
        points_retracted=outcome.points_retracted,
        comments=outcome.comments_removed,
        files_deleted=outcome.files_deleted,
        file_failures=outcome.file_deletion_failures,
    )
    return outcome


async def return_submissions(
    db: AsyncSession,
    storage: BaseStorageProvider,
    challenge_id: int,
) -> RetractionResult:
    """Clear all submissions and retract their points, keeping the challenge (and its comments)."""
    challenge = await get_challenge(db, challenge_id)
    outcome = RetractionResult(challenge_deleted=False)
    try:
        await _remove_submissions(db, storage, challenge, outcome)
        challenge.updated_at = utcnow()
        await db.flush()
    except Exception:
        await db.rollback()
        raise

    await _commit_then_cleanup(db, storage, outcome)
    logger.info(
        "challenge_submissions_returned",
        challenge_id=challenge_id,
        submissions=outcome.submissions_removed,
        points_retracted=outcome.points_retracted,
        files_deleted=outcome.files_deleted,
        file_failures=outcome.file_deletion_failures,
    )
    return outcome

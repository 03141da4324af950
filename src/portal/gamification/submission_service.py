"""Submission lifecycle: submit, review and listing.

State progression: none -> pending -> approved | rejected, and rejected -> pending
on resubmission. A (challenge, user) pair owns at most one row; resubmission
overwrites the rejected row in place.
"""

from __future__ import annotations

from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from portal.auth.dependencies import Principal
from portal.db.base import utcnow
from portal.db.models import Challenge, ChallengeSubmission, User
from portal.errors import ConflictError, NotFoundError, ValidationError, field_error
from portal.gamification.challenge_service import get_challenge, is_open
from portal.gamification.eligibility import is_challenge_visible
from portal.gamification.evaluation import (
    check_upload,
    load_config,
    quiz_award,
    submitted_file_urls,
    validate_submission,
)
from portal.gamification.points_service import CHALLENGE_SOURCE, grant
from portal.gamification.schemas import GranularReviewRequest, SubmissionPayload
from portal.gamification.storage import BaseStorageProvider, delete_stored_files, get_storage, upload_prefix

logger = structlog.get_logger()

VALID_TRANSITIONS: dict[str, list[str]] = {
    "none": ["pending"],
    "pending": ["approved", "rejected"],
    "rejected": ["pending"],
    "approved": [],
}


def validate_transition(current_status: str, target_status: str) -> None:
    """Validate a state transition. Raises ConflictError if invalid."""
    valid = VALID_TRANSITIONS.get(current_status, [])
    if target_status not in valid:
        raise ConflictError(
            f"Invalid transition: {current_status} -> {target_status}. "
            f"Valid transitions: {valid}"
        )


def submission_to_dict(
    submission: ChallengeSubmission,
    user_name: str | None = None,
    challenge_title: str | None = None,
) -> dict:
    return {
        "id": submission.id,
        "challenge_id": submission.challenge_id,
        "user_id": submission.user_id,
        "status": submission.status,
        "submission_type": submission.submission_type,
        "submission_data": submission.submission_data or {},
        "points": submission.points,
        "admin_feedback": submission.admin_feedback,
        "attempt_count": submission.attempt_count,
        "reviewed_by": submission.reviewed_by,
        "reviewed_at": submission.reviewed_at,
        "created_at": submission.created_at,
        "updated_at": submission.updated_at,
        "user_name": user_name,
        "challenge_title": challenge_title,
    }


async def _find(db: AsyncSession, challenge_id: int, user_id: int) -> ChallengeSubmission | None:
    result = await db.execute(
        select(ChallengeSubmission).where(
            ChallengeSubmission.challenge_id == challenge_id,
            ChallengeSubmission.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


async def get_submission(db: AsyncSession, submission_id: int) -> ChallengeSubmission:
    submission = await db.get(ChallengeSubmission, submission_id)
    if submission is None:
        raise NotFoundError(f"Submission {submission_id} not found")
    return submission


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


async def submit(
    db: AsyncSession,
    principal: Principal,
    challenge_id: int,
    payload: SubmissionPayload | dict[str, Any],
    storage: BaseStorageProvider | None = None,
) -> ChallengeSubmission:
    """Submit (or resubmit after rejection) an attempt at a challenge.

    Checks run before any write: the challenge must be open and visible to the
    user, the existing row (if any) must be rejected, and the payload must match
    the evaluation config. Uploaded files must sit under the submitter's own
    upload prefix for this challenge. Files from a replaced rejected attempt
    that the new attempt no longer references are removed from storage after
    commit.
    """
    if storage is None:
        storage = get_storage()
    prefix = upload_prefix(challenge_id, principal.id)
    challenge = await get_challenge(db, challenge_id)
    if not is_open(challenge) or not is_challenge_visible(challenge, principal.category_ids, principal.is_admin):
        raise NotFoundError(f"Challenge {challenge_id} is not open for submissions")

    existing = await _find(db, challenge_id, principal.id)
    validate_transition(existing.status if existing else "none", "pending")

    attempt = existing.attempt_count + 1 if existing else 1
    data = validate_submission(challenge, payload, attempt, owns_upload=lambda url: storage.owns(url, prefix))
    now = utcnow()

    stale_urls: list[str] = []
    if existing is not None:
        kept = set(submitted_file_urls(challenge.evaluation_type, data))
        stale_urls = [
            url
            for url in submitted_file_urls(existing.submission_type, existing.submission_data)
            if url not in kept
        ]
        existing.status = "pending"
        existing.submission_type = challenge.evaluation_type
        existing.submission_data = data
        existing.points = 0
        existing.admin_feedback = None
        existing.attempt_count = attempt
        existing.reviewed_by = None
        existing.reviewed_at = None
        existing.updated_at = now
        submission = existing
    else:
        submission = ChallengeSubmission(
            challenge_id=challenge_id,
            user_id=principal.id,
            status="pending",
            submission_type=challenge.evaluation_type,
            submission_data=data,
            points=0,
            attempt_count=attempt,
            created_at=now,
            updated_at=now,
        )
        db.add(submission)

    try:
        await db.commit()
    except IntegrityError as e:
        # A concurrent submit for the same pair won the unique constraint
        await db.rollback()
        raise ConflictError("A submission for this challenge already exists") from e
    await db.refresh(submission)

    if stale_urls:
        await delete_stored_files(storage, stale_urls, prefix)

    logger.info(
        "submission_created" if attempt == 1 else "submission_resubmitted",
        submission_id=submission.id,
        challenge_id=challenge_id,
        user_id=principal.id,
        attempt=attempt,
    )
    return submission


async def upload_file(
    db: AsyncSession,
    principal: Principal,
    storage: BaseStorageProvider,
    challenge_id: int,
    requirement_id: str,
    filename: str,
    data: bytes,
    content_type: str | None = None,
) -> dict[str, Any]:
    """Store one file for a requirement of an open file challenge.

    Returns the file item to place in ``submissionData.file.files``. Nothing is
    written to the database; the submission itself references the URL.
    """
    challenge = await get_challenge(db, challenge_id)
    if not is_open(challenge) or not is_challenge_visible(challenge, principal.category_ids, principal.is_admin):
        raise NotFoundError(f"Challenge {challenge_id} is not open for submissions")
    if challenge.evaluation_type != "file":
        raise ValidationError("Uploads are only accepted by file challenges")

    check_upload(load_config(challenge), requirement_id, filename, len(data))
    url = await storage.store(
        data,
        filename=filename,
        prefix=upload_prefix(challenge_id, principal.id),
        content_type=content_type,
    )
    logger.info("submission_file_stored", challenge_id=challenge_id, user_id=principal.id, size=len(data))
    return {
        "requirement_id": requirement_id,
        "name": filename,
        "url": url,
        "size": len(data),
        "type": content_type,
    }


def _approved_award(challenge: Challenge, submission: ChallengeSubmission) -> int:
    if challenge.evaluation_type == "quiz":
        return quiz_award(challenge.points, load_config(challenge), submission.attempt_count)  # type: ignore[arg-type]
    return challenge.points


async def _finalize(
    db: AsyncSession,
    principal: Principal,
    challenge: Challenge,
    submission: ChallengeSubmission,
    status: str,
    award: int,
    feedback: str | None,
) -> ChallengeSubmission:
    """Apply a review decision and, on approval, write the ledger entry in the same transaction."""
    validate_transition(submission.status, status)
    if status == "approved" and award:
        await grant(
            db,
            submission.user_id,
            award,
            challenge.title,
            principal.id,
            entry_type="challenge",
            source_type=CHALLENGE_SOURCE,
            source_id=challenge.id,
            submission_id=submission.id,
        )

    now = utcnow()
    submission.status = status
    submission.points = award if status == "approved" else 0
    submission.admin_feedback = feedback
    submission.reviewed_by = principal.id
    submission.reviewed_at = now
    submission.updated_at = now

    try:
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    await db.refresh(submission)

    logger.info(
        "submission_reviewed",
        submission_id=submission.id,
        challenge_id=challenge.id,
        user_id=submission.user_id,
        status=status,
        points=submission.points,
        reviewer_id=principal.id,
    )
    return submission


async def review(
    db: AsyncSession,
    principal: Principal,
    submission_id: int,
    status: str,
    feedback: str | None = None,
) -> ChallengeSubmission:
    """Approve or reject a pending submission. Approval grants the challenge points."""
    submission = await get_submission(db, submission_id)
    challenge = await get_challenge(db, submission.challenge_id)
    award = _approved_award(challenge, submission) if status == "approved" else 0
    return await _finalize(db, principal, challenge, submission, status, award, feedback)


async def review_granular(
    db: AsyncSession,
    principal: Principal,
    submission_id: int,
    request: GranularReviewRequest,
) -> ChallengeSubmission:
    """Review a file submission requirement by requirement.

    Decisions accumulate across calls. Once no submitted requirement is pending the
    submission resolves: approved for the sum of approved requirement points, or
    rejected when none was approved.
    """
    submission = await get_submission(db, submission_id)
    challenge = await get_challenge(db, submission.challenge_id)
    if challenge.evaluation_type != "file":
        raise ValidationError("Granular review is only available for file challenges")
    if submission.status != "pending":
        raise ConflictError(f"Submission {submission_id} is already {submission.status}")

    requirements = {r.id: r for r in load_config(challenge).file_requirements}  # type: ignore[union-attr]
    unknown = [r.requirement_id for r in request.requirement_reviews if r.requirement_id not in requirements]
    if unknown:
        raise ValidationError(
            "Reviews reference unknown requirements",
            errors=[field_error("requirementReviews", f"unknown requirement ids: {unknown}")],
        )

    data = dict(submission.submission_data or {})
    files = (data.get("file") or {}).get("files") or []
    submitted = list(dict.fromkeys(f.get("requirementId") for f in files if f.get("requirementId") in requirements))

    decisions = {r["requirementId"]: r for r in data.get("requirementReviews", [])}
    for item in request.requirement_reviews:
        decisions[item.requirement_id] = item.model_dump(by_alias=True)
    data["requirementReviews"] = [decisions[rid] for rid in requirements if rid in decisions]
    # Reassign so the JSON column is flagged dirty
    submission.submission_data = data

    if any(decisions.get(rid, {}).get("status", "pending") == "pending" for rid in submitted):
        submission.admin_feedback = request.admin_feedback or submission.admin_feedback
        submission.updated_at = utcnow()
        await db.commit()
        await db.refresh(submission)
        logger.info("submission_partially_reviewed", submission_id=submission.id, reviewer_id=principal.id)
        return submission

    award = sum(requirements[rid].points for rid in submitted if decisions[rid]["status"] == "approved")
    approved_any = any(decisions[rid]["status"] == "approved" for rid in submitted)
    status = "approved" if approved_any else "rejected"
    return await _finalize(db, principal, challenge, submission, status, award, request.admin_feedback)


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------


def _listing_query():  # noqa: ANN202
    return (
        select(ChallengeSubmission, User.name, Challenge.title)
        .join(User, ChallengeSubmission.user_id == User.id)
        .join(Challenge, ChallengeSubmission.challenge_id == Challenge.id)
        .order_by(ChallengeSubmission.updated_at.desc(), ChallengeSubmission.id.desc())
    )


async def get_my_submission(db: AsyncSession, user_id: int, challenge_id: int) -> dict | None:
    submission = await _find(db, challenge_id, user_id)
    if submission is None:
        return None
    challenge = await get_challenge(db, challenge_id)
    return submission_to_dict(submission, challenge_title=challenge.title)


async def list_my_submissions(db: AsyncSession, user_id: int) -> list[dict]:
    result = await db.execute(_listing_query().where(ChallengeSubmission.user_id == user_id))
    return [submission_to_dict(s, name, title) for s, name, title in result.all()]


async def list_challenge_submissions(db: AsyncSession, challenge_id: int) -> list[dict]:
    await get_challenge(db, challenge_id)
    result = await db.execute(_listing_query().where(ChallengeSubmission.challenge_id == challenge_id))
    return [submission_to_dict(s, name, title) for s, name, title in result.all()]


async def list_all_submissions(db: AsyncSession, status: str | None = None) -> list[dict]:
    query = _listing_query()
    if status is not None:
        query = query.where(ChallengeSubmission.status == status)
    result = await db.execute(query)
    return [submission_to_dict(s, name, title) for s, name, title in result.all()]

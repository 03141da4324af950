"""Challenge and submission endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from fastapi.responses import JSONResponse
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from portal.auth.dependencies import Principal, get_current_user, require_admin
from portal.database import get_session
from portal.gamification import challenge_service, submission_service
from portal.gamification.challenge_service import DeletionBlocked, RetractionResult
from portal.gamification.ranking_service import invalidate_ranking_cache
from portal.gamification.schemas import (
    ChallengeCreate,
    ChallengeResponse,
    ChallengeUpdate,
    DeletionConfirmationResponse,
    GranularReviewRequest,
    ReorderRequest,
    RetractionSummaryResponse,
    ReviewRequest,
    SubmissionCountResponse,
    SubmissionResponse,
    SubmissionStatus,
    SubmitRequest,
    SuccessResponse,
    UploadedFileResponse,
)
from portal.gamification.storage import BaseStorageProvider, get_storage
from portal.redis_client import get_optional_redis

router = APIRouter(prefix="/api/gamification", tags=["Challenges"])


def _summary(outcome: RetractionResult) -> RetractionSummaryResponse:
    return RetractionSummaryResponse(
        challenge_deleted=outcome.challenge_deleted,
        submissions_removed=outcome.submissions_removed,
        points_retracted=outcome.points_retracted,
        comments_removed=outcome.comments_removed,
        files_deleted=outcome.files_deleted,
        file_deletion_failures=outcome.file_deletion_failures,
        message=outcome.message,
    )


# ── Challenges ──


@router.get("/challenges", response_model=list[ChallengeResponse])
async def list_challenges(
    challenge_type: str = Query("all", alias="type", pattern="^(all|periodic|annual)$"),
    admin_view: bool = Query(False, alias="admin"),
    user: Principal = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Open challenges visible to the requester, or every challenge for the admin view."""
    return await challenge_service.list_challenges(db, user, challenge_type, admin_view)


@router.put("/challenges/reorder", response_model=SuccessResponse)
async def reorder_challenges(
    body: ReorderRequest,
    _admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
):
    await challenge_service.reorder_challenges(db, body.challenge_ids)
    return SuccessResponse()


@router.get("/challenges/{challenge_id}", response_model=ChallengeResponse)
async def get_challenge(
    challenge_id: int,
    user: Principal = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    return await challenge_service.get_visible_challenge(db, user, challenge_id)


@router.post("/challenges", response_model=ChallengeResponse, status_code=201)
async def create_challenge(
    body: ChallengeCreate,
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
):
    challenge = await challenge_service.create_challenge(db, admin, body)
    return challenge_service.challenge_to_dict(challenge, admin.name)


@router.put("/challenges/{challenge_id}", response_model=ChallengeResponse)
async def update_challenge(
    challenge_id: int,
    body: ChallengeUpdate,
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
):
    await challenge_service.update_challenge(db, challenge_id, body)
    return await challenge_service.get_visible_challenge(db, admin, challenge_id)


@router.get("/challenges/{challenge_id}/submission-count", response_model=SubmissionCountResponse)
async def submission_count(
    challenge_id: int,
    _admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
):
    count, title = await challenge_service.count_submissions(db, challenge_id)
    return SubmissionCountResponse(submission_count=count, challenge_title=title)


@router.delete(
    "/challenges/{challenge_id}",
    response_model=RetractionSummaryResponse,
    responses={409: {"model": DeletionConfirmationResponse}},
)
async def delete_challenge(
    challenge_id: int,
    force_delete: bool = Query(False, alias="forceDelete"),
    _admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
    storage: BaseStorageProvider = Depends(get_storage),
    redis: Redis | None = Depends(get_optional_redis),
):
    """Delete a challenge.

    With submissions present and ``forceDelete`` unset, answers 409 with a
    confirmation body instead of deleting. Forced deletion retracts the points,
    removes submissions, comments and stored files, then the challenge.
    """
    outcome = await challenge_service.delete_challenge(db, storage, challenge_id, force=force_delete)
    if isinstance(outcome, DeletionBlocked):
        body = DeletionConfirmationResponse(
            submission_count=outcome.submission_count,
            challenge_title=outcome.challenge_title,
            message=(
                f"Challenge '{outcome.challenge_title}' has {outcome.submission_count} submissions. "
                "Return the submissions or force the deletion."
            ),
        )
        return JSONResponse(status_code=409, content=body.model_dump(by_alias=True))

    if outcome.points_retracted:
        await invalidate_ranking_cache(redis)
    return _summary(outcome)


@router.post("/challenges/{challenge_id}/return-submissions", response_model=RetractionSummaryResponse)
async def return_submissions(
    challenge_id: int,
    _admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
    storage: BaseStorageProvider = Depends(get_storage),
    redis: Redis | None = Depends(get_optional_redis),
):
    """Clear every submission and retract its points, keeping the challenge open."""
    outcome = await challenge_service.return_submissions(db, storage, challenge_id)
    if outcome.points_retracted:
        await invalidate_ranking_cache(redis)
    return _summary(outcome)


# ── Submissions ──


@router.post("/challenges/{challenge_id}/submit", response_model=SubmissionResponse, status_code=201)
async def submit(
    challenge_id: int,
    body: SubmitRequest,
    user: Principal = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    storage: BaseStorageProvider = Depends(get_storage),
):
    submission = await submission_service.submit(db, user, challenge_id, body.submission_data, storage)
    return submission_service.submission_to_dict(submission, user.name)


@router.post("/challenges/{challenge_id}/files", response_model=UploadedFileResponse, status_code=201)
async def upload_file(
    challenge_id: int,
    requirement_id: str = Form(..., alias="requirementId"),
    file: UploadFile = File(...),
    user: Principal = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    storage: BaseStorageProvider = Depends(get_storage),
):
    """Store a file for a requirement; reference the returned URL in the submission."""
    data = await file.read()
    return await submission_service.upload_file(
        db, user, storage, challenge_id, requirement_id, file.filename or "upload", data, file.content_type
    )


@router.get("/challenges/{challenge_id}/my-submission", response_model=SubmissionResponse | None)
async def my_submission(
    challenge_id: int,
    user: Principal = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """The requester's submission for a challenge, or null."""
    return await submission_service.get_my_submission(db, user.id, challenge_id)


@router.get("/my-submissions", response_model=list[SubmissionResponse])
async def my_submissions(
    user: Principal = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    return await submission_service.list_my_submissions(db, user.id)


@router.get("/challenges/{challenge_id}/submissions", response_model=list[SubmissionResponse])
async def challenge_submissions(
    challenge_id: int,
    _admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
):
    return await submission_service.list_challenge_submissions(db, challenge_id)


@router.get("/submissions/all", response_model=list[SubmissionResponse])
async def all_submissions(
    status: SubmissionStatus | None = Query(None),
    _admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
):
    return await submission_service.list_all_submissions(db, status)


@router.put("/submissions/{submission_id}/review", response_model=SubmissionResponse)
async def review_submission(
    submission_id: int,
    body: ReviewRequest,
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
    redis: Redis | None = Depends(get_optional_redis),
):
    """Approve (granting the challenge points) or reject a pending submission."""
    submission = await submission_service.review(db, admin, submission_id, body.status, body.admin_feedback)
    if submission.points:
        await invalidate_ranking_cache(redis)
    return submission_service.submission_to_dict(submission)


@router.put("/submissions/{submission_id}/review-granular", response_model=SubmissionResponse)
async def review_submission_granular(
    submission_id: int,
    body: GranularReviewRequest,
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
    redis: Redis | None = Depends(get_optional_redis),
):
    """Per-requirement review of a file submission."""
    submission = await submission_service.review_granular(db, admin, submission_id, body)
    if submission.points:
        await invalidate_ranking_cache(redis)
    return submission_service.submission_to_dict(submission)

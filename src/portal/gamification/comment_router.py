"""Challenge comment endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from portal.auth.dependencies import Principal, get_current_user
from portal.database import get_session
from portal.gamification import comment_service
from portal.gamification.schemas import CommentCreate, CommentResponse, LikeToggleResponse, SuccessResponse

router = APIRouter(prefix="/api/gamification", tags=["Challenge Comments"])


@router.get("/challenges/{challenge_id}/comments", response_model=list[CommentResponse])
async def list_comments(
    challenge_id: int,
    user: Principal = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Root comments with their replies."""
    return await comment_service.list_comments(db, user, challenge_id)


@router.post("/challenges/{challenge_id}/comments", response_model=CommentResponse, status_code=201)
async def post_comment(
    challenge_id: int,
    body: CommentCreate,
    user: Principal = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    return await comment_service.post_comment(db, user, challenge_id, body.content, body.parent_id)


@router.delete("/comments/{comment_id}", response_model=SuccessResponse)
async def delete_comment(
    comment_id: int,
    user: Principal = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    await comment_service.delete_comment(db, user, comment_id)
    return SuccessResponse()


@router.post("/comments/{comment_id}/like", response_model=LikeToggleResponse)
async def toggle_like(
    comment_id: int,
    user: Principal = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    liked, like_count = await comment_service.toggle_like(db, user, comment_id)
    return LikeToggleResponse(liked=liked, like_count=like_count)

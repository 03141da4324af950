"""Challenge comment threads: roots with one level of replies, plus likes."""

from __future__ import annotations

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from portal.auth.dependencies import Principal
from portal.db.base import utcnow
from portal.db.models import ChallengeComment, ChallengeCommentLike, User
from portal.errors import ForbiddenError, NotFoundError, ValidationError, field_error
from portal.gamification.challenge_service import get_challenge
from portal.gamification.eligibility import is_challenge_visible

logger = structlog.get_logger()


async def _visible_challenge(db: AsyncSession, principal: Principal, challenge_id: int) -> None:
    challenge = await get_challenge(db, challenge_id)
    if not is_challenge_visible(challenge, principal.category_ids, principal.is_admin):
        raise NotFoundError(f"Challenge {challenge_id} not found")


async def get_comment(db: AsyncSession, comment_id: int) -> ChallengeComment:
    comment = await db.get(ChallengeComment, comment_id)
    if comment is None:
        raise NotFoundError(f"Comment {comment_id} not found")
    return comment


async def _like_count(db: AsyncSession, comment_id: int) -> int:
    result = await db.execute(
        select(func.count()).select_from(ChallengeCommentLike).where(ChallengeCommentLike.comment_id == comment_id)
    )
    return int(result.scalar_one())


async def list_comments(db: AsyncSession, principal: Principal, challenge_id: int) -> list[dict]:
    """Root comments oldest first, each with its replies, like counts and the requester's like flag."""
    await _visible_challenge(db, principal, challenge_id)

    result = await db.execute(
        select(ChallengeComment, User.name, User.photo_url)
        .join(User, ChallengeComment.user_id == User.id)
        .where(ChallengeComment.challenge_id == challenge_id)
        .order_by(ChallengeComment.created_at, ChallengeComment.id)
    )
    rows = result.all()
    comment_ids = [comment.id for comment, _, _ in rows]

    like_counts: dict[int, int] = {}
    liked: set[int] = set()
    if comment_ids:
        counts = await db.execute(
            select(ChallengeCommentLike.comment_id, func.count())
            .where(ChallengeCommentLike.comment_id.in_(comment_ids))
            .group_by(ChallengeCommentLike.comment_id)
        )
        like_counts = dict(counts.all())
        mine = await db.execute(
            select(ChallengeCommentLike.comment_id).where(
                ChallengeCommentLike.comment_id.in_(comment_ids),
                ChallengeCommentLike.user_id == principal.id,
            )
        )
        liked = set(mine.scalars())

    roots: list[dict] = []
    by_id: dict[int, dict] = {}
    for comment, user_name, photo_url in rows:
        item = {
            "id": comment.id,
            "challenge_id": comment.challenge_id,
            "user_id": comment.user_id,
            "content": comment.content,
            "parent_id": comment.parent_id,
            "created_at": comment.created_at,
            "updated_at": comment.updated_at,
            "user_name": user_name,
            "user_photo_url": photo_url,
            "like_count": like_counts.get(comment.id, 0),
            "is_liked_by_user": comment.id in liked,
            "replies": [],
        }
        by_id[comment.id] = item
        if comment.parent_id is None:
            roots.append(item)

    for item in by_id.values():
        parent = by_id.get(item["parent_id"]) if item["parent_id"] is not None else None
        if parent is not None:
            parent["replies"].append(item)
    return roots


async def post_comment(
    db: AsyncSession,
    principal: Principal,
    challenge_id: int,
    content: str,
    parent_id: int | None = None,
) -> dict:
    """Post a root comment or a reply to a root comment."""
    await _visible_challenge(db, principal, challenge_id)

    if parent_id is not None:
        parent = await get_comment(db, parent_id)
        if parent.challenge_id != challenge_id:
            raise ValidationError(
                "Parent comment belongs to another challenge",
                errors=[field_error("parentId", "not a comment of this challenge")],
            )
        if parent.parent_id is not None:
            raise ValidationError(
                "Replies can only target a root comment",
                errors=[field_error("parentId", "cannot reply to a reply")],
            )

    now = utcnow()
    comment = ChallengeComment(
        challenge_id=challenge_id,
        user_id=principal.id,
        content=content,
        parent_id=parent_id,
        created_at=now,
        updated_at=now,
    )
    db.add(comment)
    await db.commit()
    await db.refresh(comment)
    logger.info("comment_posted", comment_id=comment.id, challenge_id=challenge_id, parent_id=parent_id)

    user = await db.get(User, principal.id)
    return {
        "id": comment.id,
        "challenge_id": comment.challenge_id,
        "user_id": comment.user_id,
        "content": comment.content,
        "parent_id": comment.parent_id,
        "created_at": comment.created_at,
        "updated_at": comment.updated_at,
        "user_name": principal.name,
        "user_photo_url": user.photo_url if user else None,
        "like_count": 0,
        "is_liked_by_user": False,
        "replies": [],
    }


async def toggle_like(db: AsyncSession, principal: Principal, comment_id: int) -> tuple[bool, int]:
    """Like the comment, or remove the like when present. Returns (liked, like_count)."""
    await get_comment(db, comment_id)
    result = await db.execute(
        delete(ChallengeCommentLike).where(
            ChallengeCommentLike.comment_id == comment_id,
            ChallengeCommentLike.user_id == principal.id,
        )
    )
    liked = not result.rowcount
    if liked:
        db.add(ChallengeCommentLike(comment_id=comment_id, user_id=principal.id))
    try:
        await db.commit()
    except IntegrityError:
        # A concurrent toggle already inserted the like
        await db.rollback()
    return liked, await _like_count(db, comment_id)


async def delete_comment(db: AsyncSession, principal: Principal, comment_id: int) -> None:
    """Delete a comment (author or admin). A root takes its replies and all likes with it."""
    comment = await get_comment(db, comment_id)
    if comment.user_id != principal.id and not principal.is_admin:
        raise ForbiddenError("Only the author or an admin can delete this comment")

    thread = select(ChallengeComment.id).where(
        (ChallengeComment.id == comment_id) | (ChallengeComment.parent_id == comment_id)
    )
    await db.execute(delete(ChallengeCommentLike).where(ChallengeCommentLike.comment_id.in_(thread)))
    await db.execute(delete(ChallengeComment).where(ChallengeComment.parent_id == comment_id))
    await db.execute(delete(ChallengeComment).where(ChallengeComment.id == comment_id))
    await db.commit()
    logger.info("comment_deleted", comment_id=comment_id, requester_id=principal.id)

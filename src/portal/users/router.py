"""Category assignment directory endpoints (admin)."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from portal.auth.dependencies import Principal, require_admin
from portal.database import get_session
from portal.gamification.ranking_service import invalidate_ranking_cache
from portal.redis_client import get_optional_redis
from portal.users import service
from portal.users.schemas import AssignmentRequest, CategoryUserItem, MessageResponse, UserCategoryItem

router = APIRouter(prefix="/api/user-category-assignments", tags=["User Categories"])


@router.get("/user/{user_id}", response_model=list[UserCategoryItem])
async def get_user_categories(
    user_id: int,
    _admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
):
    """Categories assigned to a user."""
    return await service.list_user_categories(db, user_id)


@router.get("/category/{category_id}", response_model=list[CategoryUserItem])
async def get_category_users(
    category_id: int,
    _admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
):
    """Users assigned to a category."""
    return await service.list_category_users(db, category_id)


@router.post("", response_model=MessageResponse)
async def assign_category(
    body: AssignmentRequest,
    _admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
    redis: Redis | None = Depends(get_optional_redis),
):
    await service.assign_category(db, body.user_id, body.category_id)
    # Category leaderboards depend on assignments
    await invalidate_ranking_cache(redis)
    return MessageResponse(message="Category assigned")


@router.delete("", response_model=MessageResponse)
async def remove_category(
    body: AssignmentRequest,
    _admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
    redis: Redis | None = Depends(get_optional_redis),
):
    await service.remove_category(db, body.user_id, body.category_id)
    await invalidate_ranking_cache(redis)
    return MessageResponse(message="Category removed")

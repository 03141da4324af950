"""Gamification API endpoints: settings, categories, points ledger and ranking."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from portal.auth.dependencies import Principal, get_current_user, require_admin
from portal.database import get_session
from portal.errors import NotFoundError
from portal.gamification import points_service, ranking_service, settings_service
from portal.gamification.schemas import (
    AdminPointsEntry,
    CategoryResponse,
    GamificationSettingsResponse,
    GamificationSettingsUpdate,
    PointsEntryResponse,
    PointsExtractResponse,
    PointsGrantRequest,
    RankingEntry,
    RankingWindow,
    SuccessResponse,
)
from portal.redis_client import get_optional_redis

router = APIRouter(prefix="/api/gamification", tags=["Gamification"])


# ── Settings ──


@router.get("/settings", response_model=GamificationSettingsResponse)
async def get_settings_row(
    _user: Principal = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Current ranking windows and participating categories."""
    settings = await settings_service.load_settings(db)
    if settings is None:
        raise NotFoundError("Gamification settings have not been configured")
    return settings


@router.put("/settings", response_model=GamificationSettingsResponse)
async def update_settings(
    body: GamificationSettingsUpdate,
    _admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
    redis: Redis | None = Depends(get_optional_redis),
):
    settings = await settings_service.upsert_settings(db, body)
    # Windows and eligibility both feed the cached leaderboards
    await ranking_service.invalidate_ranking_cache(redis)
    return settings


@router.get("/categories", response_model=list[CategoryResponse])
async def list_categories(
    _user: Principal = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Active categories enabled for gamification."""
    settings = await settings_service.load_settings(db)
    return await settings_service.enabled_categories(db, settings)


# ── Points ledger ──


@router.get("/points/extract", response_model=PointsExtractResponse)
async def points_extract(
    user: Principal = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """The requester's total and full history, newest first."""
    total = await points_service.total_for(db, user.id)
    history = await points_service.history(db, user.id)
    return PointsExtractResponse(total_points=total, history=history)


@router.get("/points", response_model=list[AdminPointsEntry])
async def list_points(
    user_id: int | None = Query(None, alias="userId"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    _admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
):
    return await points_service.list_entries(db, user_id=user_id, limit=limit, offset=offset)


@router.post("/points", response_model=PointsEntryResponse, status_code=201)
async def grant_points(
    body: PointsGrantRequest,
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
    redis: Redis | None = Depends(get_optional_redis),
):
    """Manual award (positive) or deduction (negative)."""
    entry = await points_service.grant(db, body.user_id, body.points, body.description, admin.id, body.type)
    await db.commit()
    await db.refresh(entry)
    await ranking_service.invalidate_ranking_cache(redis)
    return entry


@router.delete("/points/{entry_id}", response_model=SuccessResponse)
async def revoke_points(
    entry_id: int,
    _admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
    redis: Redis | None = Depends(get_optional_redis),
):
    await points_service.revoke(db, entry_id)
    await db.commit()
    await ranking_service.invalidate_ranking_cache(redis)
    return SuccessResponse()


# ── Ranking ──


@router.get("/ranking", response_model=list[RankingEntry])
async def ranking(
    window: RankingWindow = Query("all", alias="filter"),
    category_id: int | None = Query(None, alias="categoryId"),
    _user: Principal = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    redis: Redis | None = Depends(get_optional_redis),
):
    """Leaderboard for a time window, optionally scoped to one category."""
    settings = await settings_service.load_settings(db)
    return await ranking_service.get_ranking(db, settings, window, category_id, redis=redis)

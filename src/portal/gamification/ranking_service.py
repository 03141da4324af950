"""Leaderboards: eligible population x windowed ledger totals.

Results are cached in Redis for a short TTL when Redis is available; every
ledger mutation drops the cached leaderboards.
"""

from __future__ import annotations

import json

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from portal.config import get_settings
from portal.db.models import GamificationSettings, User, UserCategory
from portal.gamification.eligibility import resolve_eligible_user_ids
from portal.gamification.points_service import totals_for, window_for

logger = structlog.get_logger()

RANKING_CACHE_PREFIX = "ranking:"


def ranking_cache_key(window: str, category_id: int | None) -> str:
    return f"{RANKING_CACHE_PREFIX}{window}:{category_id if category_id is not None else 'default'}"


def sort_and_position(rows: list[dict]) -> list[dict]:
    """Order by points descending, then display name ascending; assign 1-based positions."""
    ordered = sorted(rows, key=lambda r: (-r["total_points"], r["user_name"].casefold(), r["user_id"]))
    for index, row in enumerate(ordered):
        row["position"] = index + 1
    return ordered


async def compute_ranking(
    db: AsyncSession,
    settings: GamificationSettings | None,
    window: str = "all",
    category_id: int | None = None,
) -> list[dict]:
    """Build the leaderboard straight from the database.

    Every eligible active user appears, including those with zero points.
    """
    eligible = await resolve_eligible_user_ids(db, settings, category_id)
    if not eligible:
        return []

    result = await db.execute(
        select(User).where(User.id.in_(eligible), User.is_active.is_(True))
    )
    users = list(result.scalars())
    totals = await totals_for(db, [u.id for u in users], window_for(settings, window))

    category_name = None
    if category_id is not None:
        category = await db.get(UserCategory, category_id)
        category_name = category.name if category else None

    rows = [
        {
            "user_id": u.id,
            "user_name": u.name,
            "user_email": u.email,
            "photo_url": u.photo_url,
            "total_points": totals.get(u.id, 0),
            "category_id": category_id if category_name is not None else None,
            "category_name": category_name,
        }
        for u in users
    ]
    return sort_and_position(rows)


async def get_ranking(
    db: AsyncSession,
    settings: GamificationSettings | None,
    window: str = "all",
    category_id: int | None = None,
    redis: Redis | None = None,
) -> list[dict]:
    """Leaderboard for a window and optional category, served from cache when possible."""
    if redis is None:
        return await compute_ranking(db, settings, window, category_id)

    cache_key = ranking_cache_key(window, category_id)
    try:
        cached = await redis.get(cache_key)
    except RedisError:
        logger.warning("ranking_cache_unavailable", key=cache_key, exc_info=True)
        return await compute_ranking(db, settings, window, category_id)
    if cached:
        return json.loads(cached)

    rows = await compute_ranking(db, settings, window, category_id)
    try:
        await redis.setex(cache_key, get_settings().ranking_cache_ttl_seconds, json.dumps(rows))
    except RedisError:
        logger.warning("ranking_cache_unavailable", key=cache_key, exc_info=True)
    return rows


async def invalidate_ranking_cache(redis: Redis | None) -> None:
    """Drop every cached leaderboard. Failures only cost freshness, so they are logged."""
    if redis is None:
        return
    try:
        keys = [key async for key in redis.scan_iter(match=f"{RANKING_CACHE_PREFIX}*")]
        if keys:
            await redis.delete(*keys)
    except RedisError:
        logger.warning("ranking_cache_invalidation_failed", exc_info=True)

"""Points ledger: append-only grants/deductions, windowed totals and history."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from portal.db.models import GamificationSettings, PointsEntry, User
from portal.errors import NotFoundError, ValidationError, field_error

logger = structlog.get_logger()

CHALLENGE_SOURCE = "challenge"


@dataclass(frozen=True)
class TimeWindow:
    """Inclusive [start, end] range on entry creation time."""

    start: datetime
    end: datetime


def window_for(settings: GamificationSettings | None, name: str) -> TimeWindow | None:
    """Resolve a named window from the settings. ``all`` (or unset dates) is unbounded."""
    if settings is None or name == "all":
        return None
    if name == "cycle" and settings.cycle_start_date and settings.cycle_end_date:
        return TimeWindow(settings.cycle_start_date, settings.cycle_end_date)
    if name == "annual" and settings.annual_start_date and settings.annual_end_date:
        return TimeWindow(settings.annual_start_date, settings.annual_end_date)
    if name not in ("cycle", "annual"):
        raise ValidationError(f"Unknown ranking window: {name}", errors=[field_error("filter", "unknown window")])
    return None


async def grant(
    db: AsyncSession,
    user_id: int,
    points: int,
    description: str,
    actor_id: int | None,
    entry_type: str = "manual",
    *,
    source_type: str | None = None,
    source_id: int | None = None,
    submission_id: int | None = None,
) -> PointsEntry:
    """Append a ledger entry. Negative points are deductions; zero is rejected.

    Flushes but does not commit, so callers can compose it into a larger transaction.
    """
    if points == 0:
        raise ValidationError("Points must be non-zero", errors=[field_error("points", "must be non-zero")])
    if await db.get(User, user_id) is None:
        raise ValidationError(f"User {user_id} does not exist", errors=[field_error("userId", "unknown user")])

    entry = PointsEntry(
        user_id=user_id,
        points=points,
        description=description,
        type=entry_type,
        source_type=source_type,
        source_id=source_id,
        submission_id=submission_id,
        created_by=actor_id,
    )
    db.add(entry)
    await db.flush()

    logger.info(
        "points_granted",
        entry_id=entry.id,
        user_id=user_id,
        points=points,
        type=entry_type,
        source_type=source_type,
        source_id=source_id,
        actor_id=actor_id,
    )
    return entry


async def revoke(db: AsyncSession, entry_id: int) -> None:
    """Hard-delete one entry (admin correction). No balance check."""
    entry = await db.get(PointsEntry, entry_id)
    if entry is None:
        raise NotFoundError(f"Points entry {entry_id} not found")
    await db.delete(entry)
    await db.flush()
    logger.info("points_revoked", entry_id=entry_id, user_id=entry.user_id, points=entry.points)


async def retract_challenge_points(db: AsyncSession, challenge_id: int, user_id: int) -> int:
    """Delete the entries a challenge awarded to a user. Returns how many were removed."""
    result = await db.execute(
        delete(PointsEntry).where(
            PointsEntry.source_type == CHALLENGE_SOURCE,
            PointsEntry.source_id == challenge_id,
            PointsEntry.user_id == user_id,
        )
    )
    removed = result.rowcount or 0
    if removed:
        logger.info("points_retracted", challenge_id=challenge_id, user_id=user_id, entries=removed)
    return removed


async def total_for(db: AsyncSession, user_id: int, window: TimeWindow | None = None) -> int:
    """Sum of a user's entries, optionally restricted to a window."""
    query = select(func.coalesce(func.sum(PointsEntry.points), 0)).where(PointsEntry.user_id == user_id)
    if window is not None:
        query = query.where(PointsEntry.created_at >= window.start, PointsEntry.created_at <= window.end)
    result = await db.execute(query)
    return int(result.scalar_one())


async def totals_for(db: AsyncSession, user_ids: list[int], window: TimeWindow | None = None) -> dict[int, int]:
    """Per-user sums for many users in one grouped query. Users without entries are absent."""
    if not user_ids:
        return {}
    query = (
        select(PointsEntry.user_id, func.sum(PointsEntry.points))
        .where(PointsEntry.user_id.in_(user_ids))
        .group_by(PointsEntry.user_id)
    )
    if window is not None:
        query = query.where(PointsEntry.created_at >= window.start, PointsEntry.created_at <= window.end)
    result = await db.execute(query)
    return {user_id: int(total or 0) for user_id, total in result.all()}


async def history(db: AsyncSession, user_id: int) -> list[dict]:
    """A user's entries, most recent first, with the actor's display name."""
    creator = aliased(User)
    result = await db.execute(
        select(PointsEntry, creator.name)
        .outerjoin(creator, PointsEntry.created_by == creator.id)
        .where(PointsEntry.user_id == user_id)
        .order_by(PointsEntry.created_at.desc(), PointsEntry.id.desc())
    )
    return [
        {
            "id": entry.id,
            "points": entry.points,
            "description": entry.description,
            "type": entry.type,
            "created_at": entry.created_at,
            "created_by": creator_name,
        }
        for entry, creator_name in result.all()
    ]


async def list_entries(
    db: AsyncSession,
    user_id: int | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[dict]:
    """All ledger entries newest first (admin), optionally for one user."""
    creator = aliased(User)
    query = (
        select(PointsEntry, User.name, User.email, creator.name)
        .join(User, PointsEntry.user_id == User.id)
        .outerjoin(creator, PointsEntry.created_by == creator.id)
        .order_by(PointsEntry.created_at.desc(), PointsEntry.id.desc())
        .limit(limit)
        .offset(offset)
    )
    if user_id is not None:
        query = query.where(PointsEntry.user_id == user_id)
    result = await db.execute(query)
    return [
        {
            "id": entry.id,
            "points": entry.points,
            "description": entry.description,
            "type": entry.type,
            "created_at": entry.created_at,
            "user_id": entry.user_id,
            "user_name": user_name,
            "user_email": user_email,
            "created_by": creator_name,
        }
        for entry, user_name, user_email, creator_name in result.all()
    ]

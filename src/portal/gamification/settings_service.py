"""Gamification settings: a single configuration row, loaded and upserted explicitly."""

from __future__ import annotations

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from portal.db.base import as_utc, utcnow
from portal.db.models import GamificationSettings, UserCategory
from portal.errors import ValidationError, field_error
from portal.gamification.schemas import GamificationSettingsUpdate

logger = structlog.get_logger()


async def load_settings(db: AsyncSession) -> GamificationSettings | None:
    """Return the settings row, or None when gamification was never configured."""
    result = await db.execute(select(GamificationSettings).order_by(GamificationSettings.id).limit(1))
    return result.scalar_one_or_none()


def _check_range(start, end, field: str) -> None:  # noqa: ANN001
    if start is not None and end is not None and as_utc(start) >= as_utc(end):
        raise ValidationError(
            f"{field} start must be before end",
            errors=[field_error(f"{field}StartDate", "must be before the end date")],
        )


async def upsert_settings(db: AsyncSession, data: GamificationSettingsUpdate) -> GamificationSettings:
    """Create the settings row or update the existing one."""
    _check_range(data.cycle_start_date, data.cycle_end_date, "cycle")
    _check_range(data.annual_start_date, data.annual_end_date, "annual")

    referenced = set(data.enabled_category_ids)
    if data.general_category_id is not None:
        referenced.add(data.general_category_id)
    if referenced:
        found = await db.execute(select(UserCategory.id).where(UserCategory.id.in_(referenced)))
        missing = referenced - set(found.scalars())
        if missing:
            raise ValidationError(
                "Unknown categories in settings",
                errors=[field_error("enabledCategoryIds", f"unknown category ids: {sorted(missing)}")],
            )

    # Ordered set: keep first occurrence
    enabled = list(dict.fromkeys(data.enabled_category_ids))

    settings = await load_settings(db)
    if settings is None:
        settings = GamificationSettings()
        db.add(settings)

    settings.cycle_start_date = as_utc(data.cycle_start_date)
    settings.cycle_end_date = as_utc(data.cycle_end_date)
    settings.annual_start_date = as_utc(data.annual_start_date)
    settings.annual_end_date = as_utc(data.annual_end_date)
    settings.general_category_id = data.general_category_id
    settings.enabled_category_ids = enabled
    settings.updated_at = utcnow()

    await db.commit()
    await db.refresh(settings)
    logger.info(
        "gamification_settings_updated",
        general_category_id=settings.general_category_id,
        enabled_category_ids=enabled,
    )
    return settings


async def enabled_categories(db: AsyncSession, settings: GamificationSettings | None) -> list[UserCategory]:
    """Active categories enabled for gamification, sorted by name."""
    if settings is None or not settings.enabled_category_ids:
        return []
    result = await db.execute(
        select(UserCategory)
        .where(
            UserCategory.is_active.is_(True),
            UserCategory.id.in_(settings.enabled_category_ids),
        )
        .order_by(UserCategory.name)
    )
    return list(result.scalars())

"""Who takes part in rankings, and which challenges a user may see."""

from __future__ import annotations

from collections.abc import Collection

from sqlalchemy.ext.asyncio import AsyncSession

from portal.db.models import Challenge, GamificationSettings
from portal.users.service import members_of, members_of_any


async def resolve_eligible_user_ids(
    db: AsyncSession,
    settings: GamificationSettings | None,
    explicit_category_id: int | None = None,
) -> set[int]:
    """Eligible population for a leaderboard.

    Precedence: explicit category, then the general category, then the union of
    enabled categories. No configuration means nobody is ranked.
    """
    if explicit_category_id is not None:
        return set(await members_of(db, explicit_category_id))
    if settings is None:
        return set()
    if settings.general_category_id is not None:
        return set(await members_of(db, settings.general_category_id))
    if settings.enabled_category_ids:
        return await members_of_any(db, settings.enabled_category_ids)
    return set()


def is_challenge_visible(challenge: Challenge, category_ids: Collection[int], is_admin: bool) -> bool:
    """Admins see everything; others need an untargeted challenge or a shared category."""
    if is_admin:
        return True
    targets = challenge.target_user_categories or []
    if not targets:
        return True
    return any(category_id in category_ids for category_id in targets)

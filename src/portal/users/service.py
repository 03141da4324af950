"""User/category directory: membership lookups and assignment management."""

from __future__ import annotations

from collections.abc import Iterable

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from portal.db.models import User, UserCategory, UserCategoryAssignment
from portal.errors import ConflictError, NotFoundError

logger = structlog.get_logger()


async def members_of(db: AsyncSession, category_id: int) -> list[int]:
    """User ids assigned to one category."""
    result = await db.execute(
        select(UserCategoryAssignment.user_id).where(UserCategoryAssignment.category_id == category_id)
    )
    return list(result.scalars())


async def members_of_any(db: AsyncSession, category_ids: Iterable[int]) -> set[int]:
    """De-duplicated union of the members of several categories."""
    ids = list(category_ids)
    if not ids:
        return set()
    result = await db.execute(
        select(UserCategoryAssignment.user_id).where(UserCategoryAssignment.category_id.in_(ids))
    )
    return set(result.scalars())


async def categories_of(db: AsyncSession, user_id: int) -> list[int]:
    """Category ids a user belongs to."""
    result = await db.execute(
        select(UserCategoryAssignment.category_id).where(UserCategoryAssignment.user_id == user_id)
    )
    return list(result.scalars())


async def list_user_categories(db: AsyncSession, user_id: int) -> list[dict]:
    """Categories of a user with assignment timestamps."""
    result = await db.execute(
        select(UserCategory, UserCategoryAssignment.assigned_at)
        .join(UserCategoryAssignment, UserCategoryAssignment.category_id == UserCategory.id)
        .where(UserCategoryAssignment.user_id == user_id)
        .order_by(UserCategory.name)
    )
    return [
        {
            "id": category.id,
            "name": category.name,
            "description": category.description,
            "color": category.color,
            "is_active": category.is_active,
            "assigned_at": assigned_at,
        }
        for category, assigned_at in result.all()
    ]


async def list_category_users(db: AsyncSession, category_id: int) -> list[dict]:
    """Users of a category with assignment timestamps."""
    result = await db.execute(
        select(User, UserCategoryAssignment.assigned_at)
        .join(UserCategoryAssignment, UserCategoryAssignment.user_id == User.id)
        .where(UserCategoryAssignment.category_id == category_id)
        .order_by(User.name)
    )
    return [
        {
            "id": user.id,
            "name": user.name,
            "email": user.email,
            "photo_url": user.photo_url,
            "role": user.role,
            "assigned_at": assigned_at,
        }
        for user, assigned_at in result.all()
    ]


async def assign_category(db: AsyncSession, user_id: int, category_id: int) -> UserCategoryAssignment:
    """Assign a category to a user. Raises ConflictError if already assigned."""
    if await db.get(User, user_id) is None:
        raise NotFoundError(f"User {user_id} not found")
    if await db.get(UserCategory, category_id) is None:
        raise NotFoundError(f"Category {category_id} not found")

    existing = await db.execute(
        select(UserCategoryAssignment).where(
            UserCategoryAssignment.user_id == user_id,
            UserCategoryAssignment.category_id == category_id,
        )
    )
    if existing.scalar_one_or_none() is not None:
        raise ConflictError("User already has this category")

    assignment = UserCategoryAssignment(user_id=user_id, category_id=category_id)
    db.add(assignment)
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise ConflictError("User already has this category") from e

    logger.info("category_assigned", user_id=user_id, category_id=category_id)
    return assignment


async def remove_category(db: AsyncSession, user_id: int, category_id: int) -> None:
    """Remove a category assignment. Raises NotFoundError if absent."""
    result = await db.execute(
        delete(UserCategoryAssignment).where(
            UserCategoryAssignment.user_id == user_id,
            UserCategoryAssignment.category_id == category_id,
        )
    )
    if result.rowcount == 0:
        raise NotFoundError("Assignment not found")
    await db.commit()
    logger.info("category_removed", user_id=user_id, category_id=category_id)

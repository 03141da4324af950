"""Pydantic models for the category assignment directory."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class AssignmentRequest(_CamelModel):
    user_id: int
    category_id: int


class UserCategoryItem(_CamelModel):
    id: int
    name: str
    description: str | None = None
    color: str | None = None
    is_active: bool
    assigned_at: datetime


class CategoryUserItem(_CamelModel):
    id: int
    name: str
    email: str | None = None
    photo_url: str | None = None
    role: str
    assigned_at: datetime


class MessageResponse(BaseModel):
    message: str

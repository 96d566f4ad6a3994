# src/zlog/schemas/post.py
"""Post and category schemas for the minimal CRUD surface."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class CategoryCreate(BaseModel):
    """Schema for creating a category."""

    name: str = Field(min_length=1)
    slug: str = Field(min_length=1)
    description: str | None = None
    is_public: bool = True


class CategoryResponse(BaseModel):
    """Schema for category information returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    slug: str
    description: str | None
    is_public: bool


class PostCreate(BaseModel):
    """Schema for writing a new post."""

    category_id: int | None = None
    title: str = Field(min_length=1)
    slug: str = Field(min_length=1)
    content: str
    excerpt: str | None = None
    cover_image: str | None = None
    cover_image_width: int | None = None
    cover_image_height: int | None = None
    status: Literal["draft", "published"] = "draft"


class PostUpdate(BaseModel):
    """Schema for partially updating a post."""

    category_id: int | None = None
    title: str | None = None
    slug: str | None = None
    content: str | None = None
    excerpt: str | None = None
    cover_image: str | None = None
    cover_image_width: int | None = None
    cover_image_height: int | None = None
    status: Literal["draft", "published"] | None = None


class PostResponse(BaseModel):
    """Schema for post information returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    category_id: int | None
    title: str
    slug: str
    content: str
    excerpt: str | None
    cover_image: str | None
    status: str
    created_at: datetime
    updated_at: datetime
    remote_uri: str | None = None
    remote_status: str | None = None
    remote_blog: dict[str, Any] | None = None

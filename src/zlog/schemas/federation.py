# src/zlog/schemas/federation.py
"""Pydantic schemas for the federation wire protocol.

Field names are camelCase on the wire so that instances running other
implementations of the protocol interoperate.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Self

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from zlog.db.time import as_utc

FederationEventType = Literal["post.created", "post.updated", "post.deleted"]


class WireModel(BaseModel):
    """Base for camelCase wire payloads that also accept snake_case input."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class FederationPost(WireModel):
    """Public snapshot of a post carried in webhook events."""

    id: str
    title: str
    slug: str
    content: str
    excerpt: str | None = None
    cover_image: str | None = None
    cover_image_width: int | None = None
    cover_image_height: int | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_post(cls, post: Any, **extra: Any) -> Self:
        """Build the wire snapshot of a stored post."""
        return cls(
            id=str(post.id),
            title=post.title,
            slug=post.slug,
            content=post.content,
            excerpt=post.excerpt,
            cover_image=post.cover_image,
            cover_image_width=post.cover_image_width,
            cover_image_height=post.cover_image_height,
            created_at=as_utc(post.created_at),
            updated_at=as_utc(post.updated_at),
            **extra,
        )

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_string(cls, value: object) -> object:
        return str(value) if isinstance(value, int) else value


class FederationEvent(WireModel):
    """Payload POSTed to subscriber callbacks; never persisted."""

    event: FederationEventType
    post: FederationPost
    category_id: str
    site_url: str

    @field_validator("category_id", mode="before")
    @classmethod
    def _category_as_string(cls, value: object) -> object:
        return str(value) if isinstance(value, int) else value


class RemotePostItem(FederationPost):
    """A post as listed by a remote category endpoint."""

    uri: str | None = None


class PostListing(WireModel):
    """Paginated category listing served to subscribing instances."""

    items: list[RemotePostItem]
    page: int
    per_page: int
    total: int
    has_more: bool


class BlogInfo(WireModel):
    """Public identity of an instance."""

    site_url: str
    display_name: str | None = None
    blog_title: str | None = None
    blog_description: str | None = None
    avatar_url: str | None = None


class CategoryInfo(WireModel):
    """Public category advertised to other instances."""

    id: str
    name: str
    slug: str
    description: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_string(cls, value: object) -> object:
        return str(value) if isinstance(value, int) else value


class SubscribeRequest(WireModel):
    """Request from a remote instance to receive events for a category."""

    category_id: str = Field(min_length=1)
    subscriber_url: str = Field(min_length=1)
    callback_url: str = Field(min_length=1)


class UnsubscribeRequest(WireModel):
    """Request from a remote instance to stop receiving events."""

    category_id: str = Field(min_length=1)
    subscriber_url: str = Field(min_length=1)


class SubscribeResponse(WireModel):
    """Result of a subscribe request."""

    id: int
    message: str

"""Admin schemas for managing federation subscriptions."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class RemoteSubscriptionCreate(BaseModel):
    """Schema for subscribing a local category to a remote one."""

    site_url: str = Field(min_length=1)
    remote_category_slug: str = Field(min_length=1)
    local_category_id: int


class RemoteSubscriptionResponse(BaseModel):
    """Schema for an outbound subscription returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    site_url: str
    remote_category_slug: str
    remote_category_id: str | None
    local_category_id: int
    last_synced_at: datetime | None
    consecutive_failure_count: int
    is_active: bool
    last_error: str | None


class SubscriberResponse(BaseModel):
    """Schema for an inbound subscriber returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    category_id: int
    subscriber_url: str
    callback_url: str
    is_active: bool
    created_at: datetime


class SyncResultResponse(BaseModel):
    """Outcome of a manual sync."""

    subscription_id: int
    outcome: str
    synced: int = 0
    deleted: int = 0

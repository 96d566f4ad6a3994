"""Upsert of remote posts into the local store.

Both ingestion paths (push events received on the webhook endpoint and the
pull reconciliation run by the sync worker) go through this module, so a
remote post is rewritten and keyed identically whichever path saw it first.
Upserts are keyed by ``remote_uri`` and are idempotent.
"""

from __future__ import annotations

import re
from collections.abc import Collection, Mapping
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from zlog.db.time import as_utc
from zlog.models import Post, RemoteSubscription
from zlog.models.post import (
    POST_STATUS_DELETED,
    POST_STATUS_PUBLISHED,
    REMOTE_STATUS_DELETED,
    REMOTE_STATUS_PUBLISHED,
    REMOTE_STATUS_UNREACHABLE,
)
from zlog.schemas.federation import FederationPost, RemotePostItem
from zlog.services.content_rewriter import rewrite_content, rewrite_url
from zlog.services.markdown import make_excerpt

_ORIGIN_RE = re.compile(r"^https?://[^/]+", re.IGNORECASE)


def remote_uri_for(post: FederationPost, site_url: str) -> str:
    """Return the de-duplication key of a remote post.

    The origin's advertised URI is re-anchored on the subscribed site URL so
    that an origin misreporting its own host still maps to one key.
    """
    site_url = site_url.rstrip("/")
    raw = getattr(post, "uri", None) or f"{site_url}/posts/{post.id}"
    if raw.startswith("/"):
        return site_url + raw
    return _ORIGIN_RE.sub(site_url, raw, count=1)


def _needs_update(existing: Post, updated_at: datetime, watermark: datetime | None) -> bool:
    if existing.remote_status != REMOTE_STATUS_PUBLISHED:
        return True
    if watermark is not None and updated_at > watermark:
        return True
    return as_utc(existing.remote_updated_at) != updated_at


def upsert_remote_post(
    db: Session,
    subscription: RemoteSubscription,
    item: FederationPost | RemotePostItem,
    *,
    blog_snapshot: Mapping[str, Any],
    fetched_at: datetime,
    watermark: datetime | None = None,
) -> bool:
    """Insert or refresh the local copy of a remote post.

    Returns:
        True if a row was written, False if the local copy was already current.
    """
    site_url = subscription.site_url
    remote_uri = remote_uri_for(item, site_url)
    updated_at = as_utc(item.updated_at)
    created_at = as_utc(item.created_at)

    post = db.execute(select(Post).where(Post.remote_uri == remote_uri)).scalars().first()
    if post is not None and not _needs_update(post, updated_at, as_utc(watermark)):
        return False

    content = rewrite_content(item.content, site_url)
    if post is None:
        post = Post(remote_uri=remote_uri, remote_subscription_id=subscription.id)
        db.add(post)

    post.category_id = subscription.local_category_id
    post.title = item.title
    post.slug = item.slug
    post.content = content
    post.excerpt = item.excerpt or make_excerpt(content)
    post.cover_image = rewrite_url(item.cover_image, site_url)
    post.cover_image_width = item.cover_image_width
    post.cover_image_height = item.cover_image_height
    post.status = POST_STATUS_PUBLISHED
    post.created_at = created_at
    post.updated_at = updated_at
    post.deleted_at = None
    post.remote_blog = dict(blog_snapshot)
    post.remote_status = REMOTE_STATUS_PUBLISHED
    post.remote_created_at = created_at
    post.remote_updated_at = updated_at
    post.fetched_at = fetched_at
    db.flush()
    return True


def mark_remote_deleted(db: Session, remote_uri: str, now: datetime) -> bool:
    """Soft delete the local copy of a remote post; return True if one changed."""
    post = db.execute(select(Post).where(Post.remote_uri == remote_uri)).scalars().first()
    if post is None or post.remote_status == REMOTE_STATUS_DELETED:
        return False
    _soft_delete(post, REMOTE_STATUS_DELETED, now)
    db.flush()
    return True


def mark_missing_deleted(
    db: Session,
    subscription: RemoteSubscription,
    seen_uris: Collection[str],
    now: datetime,
) -> int:
    """Soft delete published copies that a complete remote listing no longer has."""
    posts = db.execute(
        select(Post).where(
            Post.remote_subscription_id == subscription.id,
            Post.remote_status == REMOTE_STATUS_PUBLISHED,
        )
    ).scalars().all()
    removed = 0
    for post in posts:
        if post.remote_uri not in seen_uris:
            _soft_delete(post, REMOTE_STATUS_DELETED, now)
            removed += 1
    db.flush()
    return removed


def mark_unreachable(db: Session, subscription: RemoteSubscription, now: datetime) -> int:
    """Hide every published copy ingested through a revoked subscription."""
    posts = db.execute(
        select(Post).where(
            Post.remote_subscription_id == subscription.id,
            Post.remote_status == REMOTE_STATUS_PUBLISHED,
        )
    ).scalars().all()
    count = 0
    for post in posts:
        post.remote_status = REMOTE_STATUS_UNREACHABLE
        post.fetched_at = now
        count += 1
    db.flush()
    return count


def _soft_delete(post: Post, remote_status: str, now: datetime) -> None:
    post.remote_status = remote_status
    post.status = POST_STATUS_DELETED
    post.deleted_at = now
    post.fetched_at = now

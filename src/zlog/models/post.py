# src/zlog/models/post.py
"""SQLAlchemy models for posts and their federation provenance."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from zlog.db.session import Base
from zlog.db.time import utcnow

POST_STATUS_DRAFT = "draft"
POST_STATUS_PUBLISHED = "published"
POST_STATUS_DELETED = "deleted"

REMOTE_STATUS_PUBLISHED = "published"
REMOTE_STATUS_DELETED = "deleted"
REMOTE_STATUS_UNREACHABLE = "unreachable"


class Post(Base):
    """Blog post, either written locally or ingested from a remote instance.

    Locally authored posts have ``remote_uri = NULL``. Ingested posts are keyed
    by ``remote_uri`` and are owned by the sync pipeline, not the editor.
    """

    __tablename__ = "post"
    __table_args__ = (
        Index("idx_post_cat_status_created", "category_id", "status", "created_at"),
        Index("idx_post_remote_feed", "remote_status", "category_id", "remote_created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    category_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("category.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    title: Mapped[str] = mapped_column(Text, nullable=False)
    slug: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    # Markdown, possibly with inline HTML.
    content: Mapped[str] = mapped_column(Text, nullable=False)
    excerpt: Mapped[str | None] = mapped_column(Text, nullable=True)
    cover_image: Mapped[str | None] = mapped_column(Text, nullable=True)
    cover_image_width: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cover_image_height: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=POST_STATUS_DRAFT
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Provenance of ingested posts.
    remote_uri: Mapped[str | None] = mapped_column(Text, nullable=True, unique=True)
    remote_subscription_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("remote_subscription.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    # Snapshot of {siteUrl, displayName, blogTitle, avatarUrl} taken at ingestion.
    remote_blog: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    remote_status: Mapped[str | None] = mapped_column(String(16), nullable=True)
    remote_created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    remote_updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    fetched_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_remote(self) -> bool:
        return self.remote_uri is not None

"""SQLAlchemy models for federation subscriptions in both directions."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from zlog.db.session import Base
from zlog.db.time import utcnow

if TYPE_CHECKING:
    from .category import Category


class Subscriber(Base):
    """A remote instance subscribed to one of our categories (inbound).

    Rows are deactivated rather than deleted so delivery history is kept.
    """

    __tablename__ = "subscriber"
    __table_args__ = (
        Index("idx_subscriber_category_active", "category_id", "is_active"),
        Index("idx_subscriber_lookup", "category_id", "subscriber_url"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    category_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("category.id", ondelete="CASCADE"),
        nullable=False,
    )
    # Root URL of the subscribing instance.
    subscriber_url: Mapped[str] = mapped_column(Text, nullable=False)
    # Validated at creation; immutable afterwards.
    callback_url: Mapped[str] = mapped_column(Text, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    category: Mapped[Category] = relationship(back_populates="subscribers")

    @validates("callback_url")
    def _freeze_callback_url(self, _key: str, value: str) -> str:
        current = self.__dict__.get("callback_url")
        if current is not None and current != value:
            raise ValueError("callback_url is immutable; create a new subscriber instead")
        return value


class RemoteSubscription(Base):
    """This instance pulling posts from a remote category (outbound)."""

    __tablename__ = "remote_subscription"
    __table_args__ = (
        UniqueConstraint(
            "site_url",
            "remote_category_slug",
            "local_category_id",
            name="uq_remote_subscription_target",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    site_url: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    remote_category_slug: Mapped[str] = mapped_column(Text, nullable=False)
    # The remote's own identifier for the category; webhook events carry it.
    remote_category_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    local_category_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("category.id", ondelete="CASCADE"),
        nullable=False,
    )
    # Watermark: time of the last fetch whose reconciliation committed.
    last_synced_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    consecutive_failure_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    local_category: Mapped[Category] = relationship(back_populates="remote_subscriptions")


class RemoteBlog(Base):
    """Cached public info of a remote instance."""

    __tablename__ = "remote_blog"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    site_url: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    display_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    blog_title: Mapped[str | None] = mapped_column(Text, nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_fetched_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def snapshot(self) -> dict[str, str | None]:
        """Return the denormalized form stored on ingested posts."""
        return {
            "siteUrl": self.site_url,
            "displayName": self.display_name,
            "blogTitle": self.blog_title,
            "avatarUrl": self.avatar_url,
        }

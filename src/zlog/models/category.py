"""SQLAlchemy model for post categories."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from zlog.db.session import Base
from zlog.db.time import utcnow

if TYPE_CHECKING:
    from .federation import RemoteSubscription, Subscriber


class Category(Base):
    """A local category; the unit other instances subscribe to."""

    __tablename__ = "category"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    slug: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Private categories are not exposed through the federation endpoints.
    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    subscribers: Mapped[list[Subscriber]] = relationship(
        back_populates="category",
        cascade="all, delete-orphan",
    )
    remote_subscriptions: Mapped[list[RemoteSubscription]] = relationship(
        back_populates="local_category",
        cascade="all, delete-orphan",
    )

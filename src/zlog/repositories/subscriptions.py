"""Data access helpers for federation subscriptions.

``SubscriberRegistry`` owns both directions of the relationship:

- inbound ``Subscriber`` rows (remote instances watching our categories);
- outbound ``RemoteSubscription`` rows (categories we pull from elsewhere),
  together with the ``RemoteBlog`` cache they refer to.

The registry flushes but never commits; the caller owns the transaction.
"""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from zlog.db.time import utcnow
from zlog.models import RemoteBlog, RemoteSubscription, Subscriber
from zlog.schemas.federation import BlogInfo
from zlog.services.remote_url import ensure_remote_url

__all__ = ["SubscriberRegistry", "SUBSCRIBE_CREATED", "SUBSCRIBE_REACTIVATED",
           "SUBSCRIBE_REPLACED", "SUBSCRIBE_UNCHANGED"]

SUBSCRIBE_CREATED = "created"
SUBSCRIBE_REACTIVATED = "reactivated"
SUBSCRIBE_REPLACED = "replaced"
SUBSCRIBE_UNCHANGED = "unchanged"


class SubscriberRegistry:
    """Thin wrapper around database access for subscription entities."""

    def __init__(self, session: Session) -> None:
        """Initialize the registry with a SQLAlchemy session."""
        self.session = session

    # ------------------------------------------------------------------
    # Inbound subscribers
    # ------------------------------------------------------------------

    def subscribe(
        self,
        *,
        category_id: int,
        subscriber_url: str,
        callback_url: str,
        self_site_url: str | None,
    ) -> tuple[Subscriber, str]:
        """Register a remote instance for push events of a category.

        Both URLs must pass validation. The callback URL of an existing row
        is never changed: a different callback deactivates the old row and
        creates a new one.

        Returns:
            The active subscriber and one of the ``SUBSCRIBE_*`` outcomes.

        Raises:
            SecurityRejection: If either URL is unsafe to contact.
        """
        ensure_remote_url(subscriber_url, self_site_url)
        ensure_remote_url(callback_url, self_site_url)

        rows = self._subscriber_rows(category_id, subscriber_url)
        same_callback = next((row for row in rows if row.callback_url == callback_url), None)

        if same_callback is not None:
            outcome = SUBSCRIBE_UNCHANGED if same_callback.is_active else SUBSCRIBE_REACTIVATED
            for row in rows:
                row.is_active = row is same_callback
            self.session.flush()
            return same_callback, outcome

        replaced = any(row.is_active for row in rows)
        for row in rows:
            row.is_active = False

        subscriber = Subscriber(
            category_id=category_id,
            subscriber_url=subscriber_url,
            callback_url=callback_url,
            is_active=True,
        )
        self.session.add(subscriber)
        self.session.flush()
        return subscriber, SUBSCRIBE_REPLACED if replaced else SUBSCRIBE_CREATED

    def unsubscribe(self, *, category_id: int, subscriber_url: str) -> list[Subscriber]:
        """Deactivate every row of a subscriber; return the rows touched."""
        rows = [row for row in self._subscriber_rows(category_id, subscriber_url) if row.is_active]
        for row in rows:
            row.is_active = False
        self.session.flush()
        return rows

    def active_subscribers(self, category_id: int) -> list[Subscriber]:
        """Return the subscribers that should receive events for a category."""
        result = self.session.execute(
            select(Subscriber)
            .where(Subscriber.category_id == category_id, Subscriber.is_active.is_(True))
            .order_by(Subscriber.id)
        )
        return list(result.scalars())

    def is_revoked(self, category_id: int, subscriber_url: str) -> bool:
        """Return True when the subscriber is known for the category but inactive."""
        rows = self._subscriber_rows(category_id, subscriber_url)
        return bool(rows) and not any(row.is_active for row in rows)

    def list_subscribers(self) -> list[Subscriber]:
        """Return all inbound subscribers, newest first."""
        result = self.session.execute(select(Subscriber).order_by(Subscriber.id.desc()))
        return list(result.scalars())

    def _subscriber_rows(self, category_id: int, subscriber_url: str) -> list[Subscriber]:
        result = self.session.execute(
            select(Subscriber)
            .where(
                Subscriber.category_id == category_id,
                Subscriber.subscriber_url == subscriber_url,
            )
            .order_by(Subscriber.id)
        )
        return list(result.scalars())

    # ------------------------------------------------------------------
    # Outbound subscriptions
    # ------------------------------------------------------------------

    def create_subscription(
        self,
        *,
        site_url: str,
        remote_category_slug: str,
        local_category_id: int,
        remote_category_id: str | None,
        self_site_url: str | None,
    ) -> RemoteSubscription:
        """Insert an outbound subscription after validating the remote site URL."""
        ensure_remote_url(site_url, self_site_url)
        subscription = RemoteSubscription(
            site_url=site_url.rstrip("/"),
            remote_category_slug=remote_category_slug,
            remote_category_id=remote_category_id,
            local_category_id=local_category_id,
            consecutive_failure_count=0,
            is_active=True,
        )
        self.session.add(subscription)
        self.session.flush()
        return subscription

    def find_subscription(
        self,
        *,
        site_url: str,
        remote_category_slug: str,
        local_category_id: int,
    ) -> RemoteSubscription | None:
        """Return the subscription for an exact target, if any."""
        result = self.session.execute(
            select(RemoteSubscription).where(
                RemoteSubscription.site_url == site_url.rstrip("/"),
                RemoteSubscription.remote_category_slug == remote_category_slug,
                RemoteSubscription.local_category_id == local_category_id,
            )
        )
        return result.scalars().first()

    def subscriptions_for_remote_category(
        self, site_url: str, remote_category_id: str
    ) -> list[RemoteSubscription]:
        """Return active subscriptions pulling a given remote category."""
        result = self.session.execute(
            select(RemoteSubscription)
            .where(
                RemoteSubscription.site_url == site_url.rstrip("/"),
                RemoteSubscription.remote_category_id == remote_category_id,
                RemoteSubscription.is_active.is_(True),
            )
            .order_by(RemoteSubscription.id)
        )
        return list(result.scalars())

    def get_subscription(self, subscription_id: int) -> RemoteSubscription | None:
        """Return an outbound subscription by identifier."""
        return self.session.get(RemoteSubscription, subscription_id)

    def list_subscriptions(self) -> list[RemoteSubscription]:
        """Return all outbound subscriptions."""
        result = self.session.execute(select(RemoteSubscription).order_by(RemoteSubscription.id))
        return list(result.scalars())

    def active_subscriptions(self) -> list[RemoteSubscription]:
        """Return the subscriptions the sync worker should process."""
        result = self.session.execute(
            select(RemoteSubscription)
            .where(RemoteSubscription.is_active.is_(True))
            .order_by(RemoteSubscription.id)
        )
        return list(result.scalars())

    def record_sync_success(self, subscription: RemoteSubscription, synced_at: datetime) -> None:
        """Advance the watermark and clear the failure streak."""
        subscription.last_synced_at = synced_at
        subscription.consecutive_failure_count = 0
        subscription.last_error = None
        self.session.flush()

    def record_sync_failure(
        self,
        subscription: RemoteSubscription,
        error: str,
        *,
        threshold: int,
    ) -> bool:
        """Count a failed sync; deactivate once ``threshold`` is reached.

        Returns:
            True if this failure deactivated the subscription.
        """
        subscription.consecutive_failure_count += 1
        subscription.last_error = error
        deactivated = (
            subscription.is_active and subscription.consecutive_failure_count >= threshold
        )
        if deactivated:
            subscription.is_active = False
        self.session.flush()
        return deactivated

    def deactivate(self, subscription: RemoteSubscription, reason: str) -> None:
        """Stop syncing a subscription until it is explicitly reactivated."""
        subscription.is_active = False
        subscription.last_error = reason
        self.session.flush()

    def reactivate(self, subscription: RemoteSubscription) -> None:
        """Resume syncing a subscription with a fresh failure streak."""
        subscription.is_active = True
        subscription.consecutive_failure_count = 0
        subscription.last_error = None
        self.session.flush()

    # ------------------------------------------------------------------
    # Remote blog cache
    # ------------------------------------------------------------------

    def get_remote_blog(self, site_url: str) -> RemoteBlog | None:
        """Return the cached info of a remote instance."""
        result = self.session.execute(
            select(RemoteBlog).where(RemoteBlog.site_url == site_url.rstrip("/"))
        )
        return result.scalars().first()

    def upsert_remote_blog(self, site_url: str, info: BlogInfo | None = None) -> RemoteBlog:
        """Create or refresh the cached info of a remote instance."""
        blog = self.get_remote_blog(site_url)
        if blog is None:
            blog = RemoteBlog(site_url=site_url.rstrip("/"))
            self.session.add(blog)
        if info is not None:
            blog.display_name = info.display_name
            blog.blog_title = info.blog_title
            blog.avatar_url = info.avatar_url
            blog.last_fetched_at = utcnow()
        self.session.flush()
        return blog

"""Background pull reconciliation of remote category subscriptions.

This module provides the SyncWorker class. Push delivery (see
``zlog.services.dispatcher``) is best-effort, so every active
RemoteSubscription is periodically re-pulled to repair whatever was missed.

Per subscription, one cycle is strictly sequential:

- fetch the remote category listing (every page), after re-validating the
  remote site URL;
- reconcile: upsert new or changed posts keyed by ``remote_uri`` and soft
  delete local copies the remote no longer lists;
- advance the ``last_synced_at`` watermark to the fetch time, in the same
  commit as the reconciled posts.

Distinct subscriptions run concurrently, bounded by a semaphore. Fetch
failures accumulate in ``consecutive_failure_count``; reaching the threshold
deactivates the subscription until it is explicitly reactivated.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from zlog.core.errors import (
    InvalidInput,
    PermanentPeerFailure,
    SecurityRejection,
    SubscriptionRevoked,
    TransientNetworkFailure,
)
from zlog.core.settings import settings
from zlog.db.session import SessionLocal
from zlog.db.time import as_utc, utcnow
from zlog.models import RemoteSubscription
from zlog.repositories.subscriptions import SubscriberRegistry
from zlog.schemas.federation import BlogInfo, RemotePostItem
from zlog.services.federation_client import (
    REVOKED_ERROR_CODE,
    FederationClient,
    get_federation_client,
)
from zlog.services.ingest import (
    mark_missing_deleted,
    mark_unreachable,
    remote_uri_for,
    upsert_remote_post,
)
from zlog.services.notifier import (
    SUBSCRIPTION_DEACTIVATED,
    SUBSCRIPTION_REVOKED,
    Notifier,
    build_notifier,
)
from zlog.services.remote_url import ensure_remote_url
from zlog.services.scheduler import CancellationToken, IntervalTicker, Ticker

# Configure logger for this module
logger = logging.getLogger(__name__)

T = TypeVar("T")

SYNC_OK = "ok"
SYNC_FAILED = "failed"
SYNC_DEACTIVATED = "deactivated"
SYNC_REVOKED = "revoked"
SYNC_REJECTED = "rejected"
SYNC_SKIPPED = "skipped"

TRIGGER_COOLDOWN_SECONDS = 30.0
BLOG_INFO_MAX_AGE_SECONDS = 3600.0


@dataclass(frozen=True)
class SyncWorkerConfig:
    """Immutable configuration for the sync worker."""

    self_site_url: str
    interval_seconds: float
    initial_delay_seconds: float
    concurrency: int
    failure_threshold: int
    max_pages: int
    per_page: int
    stale_after_seconds: float


def load_sync_config() -> SyncWorkerConfig:
    """Build configuration object from global settings."""

    return SyncWorkerConfig(
        self_site_url=settings.site_url,
        interval_seconds=settings.sync_interval_seconds,
        initial_delay_seconds=float(settings.federation_sync_initial_delay_seconds),
        concurrency=max(1, settings.federation_sync_concurrency),
        failure_threshold=max(1, settings.federation_sync_failure_threshold),
        max_pages=max(1, settings.federation_sync_max_pages),
        per_page=50,
        stale_after_seconds=float(settings.federation_sync_stale_after_seconds),
    )


@dataclass(frozen=True)
class SubscriptionSnapshot:
    """Detached view of a RemoteSubscription handed between sessions."""

    id: int
    site_url: str
    remote_category_slug: str
    last_synced_at: datetime | None
    blog_fetched_at: datetime | None = None


@dataclass(frozen=True)
class SyncOutcome:
    """Result of one subscription's sync cycle."""

    subscription_id: int
    outcome: str
    synced: int = 0
    deleted: int = 0
    error: str | None = None


class SyncWorker:
    """Periodically pulls subscribed remote categories and reconciles them locally."""

    def __init__(
        self,
        client: FederationClient | None = None,
        db_session: Session | None = None,
        notifier: Notifier | None = None,
        config: SyncWorkerConfig | None = None,
        ticker: Ticker | None = None,
    ) -> None:
        """Initialize the sync worker.

        Args:
            client: Optional federation client. If None, uses the global client.
            db_session: Optional database session. If None, creates new sessions as needed.
            notifier: Sink for deactivation notices. If None, built from settings.
            config: Optional worker configuration. If None, loaded from settings.
            ticker: Optional ticker driving cycles. If None, an IntervalTicker is used.
        """
        self.client = client or get_federation_client()
        self.notifier = notifier or build_notifier()
        self.config = config or load_sync_config()
        self.ticker = ticker or IntervalTicker(
            self.config.interval_seconds, self.config.initial_delay_seconds
        )
        self._db_session = db_session
        self._db_lock = asyncio.Lock()
        self._semaphore = asyncio.Semaphore(self.config.concurrency)
        self._token = CancellationToken()
        self._task: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[Any]] = set()
        self._in_flight: set[int] = set()
        self._recently_triggered: dict[int, float] = {}

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the background synchronization loop."""

        if self._task is None or self._task.done():
            self._token = CancellationToken()
            self._task = asyncio.create_task(self._run())
            logger.info(
                "Background sync worker started (interval: %.0fs)", self.config.interval_seconds
            )

    async def stop(self) -> None:
        """Stop the loop and wait for the in-flight cycle to finish."""

        self._token.cancel()
        if self._task is not None:
            await self._task
            self._task = None
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    async def _run(self) -> None:
        while await self.ticker.tick(self._token):
            try:
                await self.run_cycle()
            except SQLAlchemyError as exc:
                logger.error("SyncWorker cycle failed on database error: %s", exc, exc_info=True)
            except Exception as exc:
                logger.error("SyncWorker cycle failed: %s", exc, exc_info=True)

    async def run_cycle(self) -> list[SyncOutcome]:
        """Sync every active subscription once, concurrently."""

        snapshots = await self._db(self._load_active)
        if not snapshots:
            return []

        logger.info("Starting sync for %d subscription(s)", len(snapshots))
        outcomes = await self._sync_many(snapshots)
        logger.info(
            "Sync complete: %d post(s) synced, %d removed",
            sum(o.synced for o in outcomes),
            sum(o.deleted for o in outcomes),
        )
        return outcomes

    async def sync_now(self, subscription_id: int) -> SyncOutcome | None:
        """Sync one subscription immediately; None if it does not exist."""

        snapshot = await self._db(self._load_one, subscription_id)
        if snapshot is None:
            return None
        return await self._sync_guarded(snapshot)

    async def trigger_stale(self) -> int:
        """Schedule background syncs for subscriptions not synced recently.

        A subscription triggered in the last 30 seconds is not triggered
        again. Returns the number of subscriptions scheduled.
        """

        now = time.monotonic()
        self._recently_triggered = {
            sub_id: at
            for sub_id, at in self._recently_triggered.items()
            if now - at < TRIGGER_COOLDOWN_SECONDS
        }

        threshold = self.config.stale_after_seconds
        current = utcnow()
        stale = [
            snap
            for snap in await self._db(self._load_active)
            if snap.id not in self._recently_triggered
            and (
                snap.last_synced_at is None
                or (current - snap.last_synced_at).total_seconds() > threshold
            )
        ]
        if not stale:
            return 0

        for snap in stale:
            self._recently_triggered[snap.id] = now
        task = asyncio.create_task(self._sync_many(stale))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return len(stale)

    async def _sync_many(self, snapshots: Iterable[SubscriptionSnapshot]) -> list[SyncOutcome]:
        pending = list(snapshots)
        results = await asyncio.gather(
            *(self._sync_guarded(s) for s in pending), return_exceptions=True
        )
        outcomes: list[SyncOutcome] = []
        for snapshot, result in zip(pending, results):
            if isinstance(result, SyncOutcome):
                outcomes.append(result)
            elif isinstance(result, Exception):
                logger.error(
                    "Subscription %s sync aborted: %s", snapshot.id, result, exc_info=result
                )
                outcomes.append(SyncOutcome(snapshot.id, SYNC_FAILED, error=str(result)))
            else:
                raise result
        return outcomes

    async def _sync_guarded(self, snapshot: SubscriptionSnapshot) -> SyncOutcome:
        async with self._semaphore:
            if snapshot.id in self._in_flight:
                return SyncOutcome(snapshot.id, SYNC_SKIPPED)
            self._in_flight.add(snapshot.id)
            try:
                return await self._sync_one(snapshot)
            finally:
                self._in_flight.discard(snapshot.id)

    async def _sync_one(self, snapshot: SubscriptionSnapshot) -> SyncOutcome:
        try:
            return await self._sync_attempt(snapshot)
        except Exception as exc:
            logger.error(
                "Unexpected error syncing subscription %s: %s", snapshot.id, exc, exc_info=True
            )
            return await self._record_failure(snapshot, exc)

    async def _sync_attempt(self, snapshot: SubscriptionSnapshot) -> SyncOutcome:
        fetched_at = utcnow()
        try:
            ensure_remote_url(snapshot.site_url, self.config.self_site_url)
            items, complete = await self._fetch_all(snapshot)
        except SecurityRejection as exc:
            logger.error(
                "Subscription %s target rejected (%s); deactivating", snapshot.id, exc.code
            )
            outcome = await self._db(self._apply_deactivation, snapshot, exc.code, False)
            await self._notify(SUBSCRIPTION_DEACTIVATED, snapshot, reason=exc.code)
            return outcome
        except SubscriptionRevoked:
            logger.warning("Subscription %s was revoked by %s", snapshot.id, snapshot.site_url)
            outcome = await self._db(
                self._apply_deactivation, snapshot, REVOKED_ERROR_CODE, True
            )
            await self._notify(SUBSCRIPTION_REVOKED, snapshot, reason=REVOKED_ERROR_CODE)
            return outcome
        except (TransientNetworkFailure, InvalidInput) as exc:
            logger.warning(
                "Subscription sync failed (%s/%s): %s",
                snapshot.site_url,
                snapshot.remote_category_slug,
                exc,
            )
            return await self._record_failure(snapshot, exc)

        info = await self._refresh_blog_info(snapshot)
        return await self._db(
            self._apply_success, snapshot, items, complete, fetched_at, info
        )

    async def _record_failure(
        self, snapshot: SubscriptionSnapshot, exc: Exception
    ) -> SyncOutcome:
        """Count a failed cycle; deactivate and notify once the threshold is reached."""

        outcome = await self._db(self._apply_failure, snapshot, str(exc) or type(exc).__name__)
        if outcome.outcome == SYNC_DEACTIVATED:
            failure = PermanentPeerFailure(
                f"{snapshot.site_url} failed {self.config.failure_threshold} syncs in a row"
            )
            await self._notify(
                SUBSCRIPTION_DEACTIVATED,
                snapshot,
                reason=str(failure),
                last_error=outcome.error,
            )
        return outcome

    async def _fetch_all(
        self, snapshot: SubscriptionSnapshot
    ) -> tuple[list[RemotePostItem], bool]:
        """Fetch every page of a listing; the flag says whether it was complete."""

        items: list[RemotePostItem] = []
        page = 1
        while True:
            listing = await self.client.fetch_category_page(
                snapshot.site_url,
                snapshot.remote_category_slug,
                page=page,
                per_page=self.config.per_page,
            )
            items.extend(listing.items)
            if not listing.has_more:
                return items, True
            if page >= self.config.max_pages:
                logger.warning(
                    "Listing for subscription %s truncated after %d pages", snapshot.id, page
                )
                return items, False
            page += 1

    async def _refresh_blog_info(self, snapshot: SubscriptionSnapshot) -> BlogInfo | None:
        """Fetch remote blog info when the cached copy is missing or old."""

        fetched = snapshot.blog_fetched_at
        if fetched is not None:
            age = (utcnow() - fetched).total_seconds()
            if age < BLOG_INFO_MAX_AGE_SECONDS:
                return None
        try:
            return await self.client.fetch_info(snapshot.site_url)
        except (TransientNetworkFailure, InvalidInput, SecurityRejection) as exc:
            logger.debug("Could not refresh blog info for %s: %s", snapshot.site_url, exc)
            return None

    async def _notify(self, event: str, snapshot: SubscriptionSnapshot, **context: Any) -> None:
        await self.notifier.notify(
            event,
            {
                "subscription_id": snapshot.id,
                "site_url": snapshot.site_url,
                "category": snapshot.remote_category_slug,
                **context,
            },
        )

    # ------------------------------------------------------------------
    # Database side; runs in a worker thread, one call at a time
    # ------------------------------------------------------------------

    async def _db(self, fn: Callable[..., T], *args: Any) -> T:
        async with self._db_lock:
            return await asyncio.to_thread(self._with_session, fn, *args)

    def _with_session(self, fn: Callable[..., T], *args: Any) -> T:
        if self._db_session is not None:
            # Use provided session
            return fn(self._db_session, *args)
        with SessionLocal() as db:
            return fn(db, *args)

    @staticmethod
    def _snapshot(db: Session, sub: RemoteSubscription) -> SubscriptionSnapshot:
        blog = SubscriberRegistry(db).get_remote_blog(sub.site_url)
        return SubscriptionSnapshot(
            id=sub.id,
            site_url=sub.site_url,
            remote_category_slug=sub.remote_category_slug,
            last_synced_at=as_utc(sub.last_synced_at),
            blog_fetched_at=as_utc(blog.last_fetched_at) if blog is not None else None,
        )

    def _load_active(self, db: Session) -> list[SubscriptionSnapshot]:
        return [self._snapshot(db, sub) for sub in SubscriberRegistry(db).active_subscriptions()]

    def _load_one(self, db: Session, subscription_id: int) -> SubscriptionSnapshot | None:
        sub = SubscriberRegistry(db).get_subscription(subscription_id)
        return self._snapshot(db, sub) if sub is not None else None

    def _apply_success(
        self,
        db: Session,
        snapshot: SubscriptionSnapshot,
        items: list[RemotePostItem],
        complete: bool,
        fetched_at: datetime,
        info: BlogInfo | None = None,
    ) -> SyncOutcome:
        registry = SubscriberRegistry(db)
        sub = registry.get_subscription(snapshot.id)
        if sub is None or not sub.is_active:
            return SyncOutcome(snapshot.id, SYNC_SKIPPED)

        try:
            blog = registry.upsert_remote_blog(sub.site_url, info)
            blog_snapshot = blog.snapshot()
            watermark = as_utc(sub.last_synced_at)

            synced = 0
            seen: set[str] = set()
            for item in items:
                seen.add(remote_uri_for(item, sub.site_url))
                if upsert_remote_post(
                    db,
                    sub,
                    item,
                    blog_snapshot=blog_snapshot,
                    fetched_at=fetched_at,
                    watermark=watermark,
                ):
                    synced += 1

            deleted = mark_missing_deleted(db, sub, seen, fetched_at) if complete else 0
            registry.record_sync_success(sub, fetched_at)
            db.commit()
        except Exception:
            db.rollback()
            raise

        if synced or deleted:
            logger.info(
                "Subscription %s synced: %d upserted, %d removed", snapshot.id, synced, deleted
            )
        return SyncOutcome(snapshot.id, SYNC_OK, synced=synced, deleted=deleted)

    def _apply_failure(
        self, db: Session, snapshot: SubscriptionSnapshot, error: str
    ) -> SyncOutcome:
        registry = SubscriberRegistry(db)
        sub = registry.get_subscription(snapshot.id)
        if sub is None:
            return SyncOutcome(snapshot.id, SYNC_SKIPPED, error=error)

        deactivated = registry.record_sync_failure(
            sub, error, threshold=self.config.failure_threshold
        )
        db.commit()
        if deactivated:
            logger.warning(
                "Subscription %s deactivated after %d consecutive failures",
                snapshot.id,
                sub.consecutive_failure_count,
            )
            return SyncOutcome(snapshot.id, SYNC_DEACTIVATED, error=error)
        return SyncOutcome(snapshot.id, SYNC_FAILED, error=error)

    def _apply_deactivation(
        self,
        db: Session,
        snapshot: SubscriptionSnapshot,
        reason: str,
        revoked: bool,
    ) -> SyncOutcome:
        registry = SubscriberRegistry(db)
        sub = registry.get_subscription(snapshot.id)
        if sub is None:
            return SyncOutcome(snapshot.id, SYNC_SKIPPED, error=reason)

        registry.deactivate(sub, reason)
        if revoked:
            mark_unreachable(db, sub, utcnow())
        db.commit()
        return SyncOutcome(snapshot.id, SYNC_REVOKED if revoked else SYNC_REJECTED, error=reason)

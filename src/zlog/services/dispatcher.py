"""Best-effort push delivery of post events to subscribed instances.

``WebhookDispatcher.dispatch`` is called from request handlers after a post
mutation has been committed. It only loads the active subscribers of the
category and puts one delivery per subscriber on a bounded queue; a pool of
sender tasks drains the queue. A slow or dead subscriber therefore ties up
one sender for at most the dispatch timeout and never delays the request or
the other subscribers.

Failed deliveries are logged and dropped. There is no retry: subscribers
repair missed events with their own pull reconciliation.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from zlog.core.errors import FederationError, SecurityRejection, TransientNetworkFailure
from zlog.core.settings import settings
from zlog.db.session import SessionLocal
from zlog.repositories.subscriptions import SubscriberRegistry
from zlog.schemas.federation import FederationEvent, FederationEventType, FederationPost
from zlog.services.federation_client import FederationClient, get_federation_client

logger = logging.getLogger(__name__)


@dataclass
class DispatchMetrics:
    """Counters describing the delivery pipeline."""

    enqueued: int = 0
    delivered: int = 0
    failed: int = 0
    rejected: int = 0
    dropped: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "enqueued": self.enqueued,
            "delivered": self.delivered,
            "failed": self.failed,
            "rejected": self.rejected,
            "dropped": self.dropped,
        }


@dataclass(frozen=True)
class DispatcherConfig:
    """Immutable configuration for the dispatcher."""

    site_url: str
    workers: int
    queue_size: int


def load_dispatcher_config() -> DispatcherConfig:
    """Build configuration object from global settings."""

    return DispatcherConfig(
        site_url=settings.site_url,
        workers=max(1, settings.federation_dispatch_workers),
        queue_size=max(1, settings.federation_dispatch_queue_size),
    )


@dataclass(frozen=True)
class Delivery:
    """One event addressed to one subscriber callback."""

    subscriber_id: int
    callback_url: str
    event: FederationEvent


def build_event(
    event: FederationEventType,
    post: Any,
    category_id: int | str,
    site_url: str,
) -> FederationEvent:
    """Build the wire payload announcing a change to ``post``."""
    return FederationEvent(
        event=event,
        post=FederationPost.from_post(post),
        category_id=str(category_id),
        site_url=site_url,
    )


class WebhookDispatcher:
    """Bounded queue plus sender pool delivering federation events."""

    def __init__(
        self,
        client: FederationClient | None = None,
        db_session: Session | None = None,
        config: DispatcherConfig | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            client: Optional federation client. If None, uses the global client.
            db_session: Optional database session used when ``dispatch`` is not
                given one. If None, a short-lived session is opened per call.
            config: Optional configuration. If None, loaded from settings.
        """
        self.client = client or get_federation_client()
        self.config = config or load_dispatcher_config()
        self.metrics = DispatchMetrics()
        self._db_session = db_session
        self._queue: asyncio.Queue[Delivery] = asyncio.Queue(maxsize=self.config.queue_size)
        self._senders: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._senders)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def start(self) -> None:
        """Start the sender pool."""

        if self.running:
            return
        self._senders = [
            asyncio.create_task(self._sender(), name=f"webhook-sender-{n}")
            for n in range(self.config.workers)
        ]
        logger.info("Webhook dispatcher started with %d sender(s)", self.config.workers)

    async def stop(self, drain_timeout: float = 5.0) -> None:
        """Give queued deliveries ``drain_timeout`` seconds, then cancel senders."""

        if self._senders:
            try:
                await asyncio.wait_for(self._queue.join(), timeout=drain_timeout)
            except TimeoutError:
                logger.warning(
                    "Dispatcher stopped with %d undelivered event(s)", self._queue.qsize()
                )
        for task in self._senders:
            task.cancel()
        await asyncio.gather(*self._senders, return_exceptions=True)
        self._senders = []

    async def join(self) -> None:
        """Wait until every queued delivery has been attempted."""
        await self._queue.join()

    def dispatch(
        self,
        event: FederationEventType,
        post: Any,
        category_id: int | None,
        db: Session | None = None,
    ) -> int:
        """Queue ``event`` for every active subscriber of the category.

        Never raises; returns the number of deliveries queued.
        """
        if category_id is None:
            return 0

        try:
            payload = build_event(event, post, category_id, self.config.site_url)
            callbacks = self._load_callbacks(category_id, db)
        except (SQLAlchemyError, ValueError) as exc:
            logger.error(
                "Could not prepare %s for post %s: %s", event, post.id, exc, exc_info=True
            )
            return 0

        queued = 0
        for subscriber_id, callback_url in callbacks:
            if self._submit(Delivery(subscriber_id, callback_url, payload)):
                queued += 1
        if queued:
            logger.debug("Queued %s for post %s to %d subscriber(s)", event, post.id, queued)
        return queued

    def get_metrics(self) -> dict[str, int]:
        return self.metrics.as_dict()

    def _load_callbacks(self, category_id: int, db: Session | None) -> list[tuple[int, str]]:
        session = db if db is not None else self._db_session
        if session is not None:
            return self._active_callbacks(session, category_id)
        with SessionLocal() as session:
            return self._active_callbacks(session, category_id)

    @staticmethod
    def _active_callbacks(db: Session, category_id: int) -> list[tuple[int, str]]:
        return [
            (subscriber.id, subscriber.callback_url)
            for subscriber in SubscriberRegistry(db).active_subscribers(category_id)
        ]

    def _submit(self, delivery: Delivery) -> bool:
        try:
            self._queue.put_nowait(delivery)
        except asyncio.QueueFull:
            self.metrics.dropped += 1
            logger.warning(
                "Dispatch queue full; dropping %s for subscriber %s",
                delivery.event.event,
                delivery.subscriber_id,
            )
            return False
        self.metrics.enqueued += 1
        return True

    async def _sender(self) -> None:
        while True:
            delivery = await self._queue.get()
            try:
                await self._deliver(delivery)
            except Exception as exc:
                # One subscriber's failure must never take a sender out of the pool.
                self.metrics.failed += 1
                logger.error(
                    "Could not deliver to subscriber %s: %s",
                    delivery.subscriber_id,
                    exc,
                    exc_info=True,
                )
            finally:
                self._queue.task_done()

    async def _deliver(self, delivery: Delivery) -> None:
        try:
            status_code = await self.client.deliver_event(delivery.callback_url, delivery.event)
        except SecurityRejection as exc:
            self.metrics.rejected += 1
            logger.warning(
                "Refusing delivery to subscriber %s: %s", delivery.subscriber_id, exc.code
            )
        except TransientNetworkFailure as exc:
            self.metrics.failed += 1
            logger.warning("Delivery to subscriber %s failed: %s", delivery.subscriber_id, exc)
        except FederationError as exc:
            self.metrics.failed += 1
            logger.warning(
                "Delivery to subscriber %s was refused: %s", delivery.subscriber_id, exc
            )
        else:
            self.metrics.delivered += 1
            logger.debug(
                "Delivered %s to subscriber %s (%s)",
                delivery.event.event,
                delivery.subscriber_id,
                status_code,
            )


@contextlib.asynccontextmanager
async def running_dispatcher(dispatcher: WebhookDispatcher, drain_timeout: float = 5.0):
    """Run ``dispatcher`` for the duration of the block."""
    await dispatcher.start()
    try:
        yield dispatcher
    finally:
        await dispatcher.stop(drain_timeout)

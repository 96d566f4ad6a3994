import asyncio
import json

import httpx
import pytest
from sqlalchemy.orm import Session

from zlog.models import Category, Subscriber
from zlog.services.dispatcher import DispatcherConfig, WebhookDispatcher, running_dispatcher
from tests.helpers import SELF_SITE_URL, make_federation_client


def _config(**overrides) -> DispatcherConfig:
    values = {"site_url": SELF_SITE_URL, "workers": 2, "queue_size": 100}
    values.update(overrides)
    return DispatcherConfig(**values)


def _add_subscriber(db: Session, category: Category, callback_url: str, **extra) -> Subscriber:
    subscriber = Subscriber(
        category_id=category.id,
        subscriber_url=callback_url.split("/hook")[0],
        callback_url=callback_url,
        is_active=extra.pop("is_active", True),
    )
    db.add(subscriber)
    db.flush()
    return subscriber


class RecordingSubscribers:
    """Callback endpoints; hosts named ``slow.*`` never answer in time."""

    def __init__(self) -> None:
        self.received: list[httpx.Request] = []
        self.fast_arrived = asyncio.Event()

    async def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.host.startswith("slow."):
            await asyncio.sleep(5)
        self.received.append(request)
        self.fast_arrived.set()
        return httpx.Response(200, json={"status": "applied"})


@pytest.mark.asyncio
async def test_slow_subscriber_does_not_delay_others(
    db_session: Session, category: Category, post_factory
):
    _add_subscriber(db_session, category, "https://slow.example/hook")
    _add_subscriber(db_session, category, "https://fast.example/hook")
    post = post_factory()
    subscribers = RecordingSubscribers()
    dispatcher = WebhookDispatcher(
        client=make_federation_client(subscribers.handler, dispatch_timeout_seconds=0.5),
        db_session=db_session,
        config=_config(),
    )

    async with running_dispatcher(dispatcher):
        assert dispatcher.dispatch("post.created", post, category.id) == 2
        await asyncio.wait_for(subscribers.fast_arrived.wait(), timeout=0.4)
        await dispatcher.join()

    assert [r.url.host for r in subscribers.received] == ["fast.example"]
    metrics = dispatcher.get_metrics()
    assert metrics["delivered"] == 1
    assert metrics["failed"] == 1
    assert not dispatcher.running


@pytest.mark.asyncio
async def test_event_payload_shape(db_session: Session, category: Category, post_factory):
    _add_subscriber(db_session, category, "https://fast.example/hook")
    post = post_factory(cover_image="https://blog.example.com/uploads/cover.png")
    subscribers = RecordingSubscribers()
    dispatcher = WebhookDispatcher(
        client=make_federation_client(subscribers.handler),
        db_session=db_session,
        config=_config(),
    )

    async with running_dispatcher(dispatcher):
        dispatcher.dispatch("post.updated", post, category.id)
        await dispatcher.join()

    (request,) = subscribers.received
    assert request.method == "POST"
    body = json.loads(request.content)
    assert body["event"] == "post.updated"
    assert body["categoryId"] == str(category.id)
    assert body["siteUrl"] == SELF_SITE_URL
    assert body["post"]["id"] == str(post.id)
    assert body["post"]["coverImage"] == "https://blog.example.com/uploads/cover.png"
    assert body["post"]["slug"] == post.slug


@pytest.mark.asyncio
async def test_inactive_subscribers_and_missing_category_are_skipped(
    db_session: Session, category: Category, post_factory
):
    _add_subscriber(db_session, category, "https://fast.example/hook", is_active=False)
    post = post_factory()
    dispatcher = WebhookDispatcher(
        client=make_federation_client(RecordingSubscribers().handler),
        db_session=db_session,
        config=_config(),
    )

    assert dispatcher.dispatch("post.created", post, category.id) == 0
    assert dispatcher.dispatch("post.created", post, None) == 0
    assert dispatcher.pending == 0


@pytest.mark.asyncio
async def test_full_queue_drops_deliveries(db_session: Session, category: Category, post_factory):
    _add_subscriber(db_session, category, "https://one.example/hook")
    _add_subscriber(db_session, category, "https://two.example/hook")
    post = post_factory()
    dispatcher = WebhookDispatcher(
        client=make_federation_client(RecordingSubscribers().handler),
        db_session=db_session,
        config=_config(queue_size=1),
    )

    assert dispatcher.dispatch("post.created", post, category.id) == 1

    assert dispatcher.pending == 1
    assert dispatcher.get_metrics()["dropped"] == 1


@pytest.mark.asyncio
async def test_unsafe_callback_is_rejected_before_sending(
    db_session: Session, category: Category, post_factory
):
    # Stored before validation existed; delivery must still refuse it.
    _add_subscriber(db_session, category, "http://10.0.0.5/hook")
    post = post_factory()
    subscribers = RecordingSubscribers()
    dispatcher = WebhookDispatcher(
        client=make_federation_client(subscribers.handler),
        db_session=db_session,
        config=_config(),
    )

    async with running_dispatcher(dispatcher):
        dispatcher.dispatch("post.deleted", post, category.id)
        await dispatcher.join()

    assert subscribers.received == []
    assert dispatcher.get_metrics()["rejected"] == 1


@pytest.mark.asyncio
async def test_broken_callback_does_not_stop_the_sender(
    db_session: Session, category: Category, post_factory
):
    _add_subscriber(db_session, category, "https://broken.example/hook")
    _add_subscriber(db_session, category, "https://fast.example/hook")
    post = post_factory()
    subscribers = RecordingSubscribers()

    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "broken.example":
            raise RuntimeError("connection pool corrupted")
        return await subscribers.handler(request)

    dispatcher = WebhookDispatcher(
        client=make_federation_client(handler),
        db_session=db_session,
        config=_config(workers=1),
    )

    async with running_dispatcher(dispatcher):
        assert dispatcher.dispatch("post.created", post, category.id) == 2
        await asyncio.wait_for(dispatcher.join(), timeout=2)
        assert dispatcher.running
        dispatcher.dispatch("post.updated", post, category.id)
        await asyncio.wait_for(dispatcher.join(), timeout=2)

    assert [r.url.host for r in subscribers.received] == ["fast.example", "fast.example"]
    metrics = dispatcher.get_metrics()
    assert metrics["delivered"] == 2
    assert metrics["failed"] == 2


@pytest.mark.asyncio
async def test_control_character_callback_is_refused(
    db_session: Session, category: Category, post_factory
):
    _add_subscriber(db_session, category, "https://evil\x01.example/hook")
    _add_subscriber(db_session, category, "https://fast.example/hook")
    post = post_factory()
    subscribers = RecordingSubscribers()
    dispatcher = WebhookDispatcher(
        client=make_federation_client(subscribers.handler),
        db_session=db_session,
        config=_config(workers=1),
    )

    async with running_dispatcher(dispatcher):
        dispatcher.dispatch("post.created", post, category.id)
        await asyncio.wait_for(dispatcher.join(), timeout=2)
        assert dispatcher.running

    assert [r.url.host for r in subscribers.received] == ["fast.example"]
    metrics = dispatcher.get_metrics()
    assert metrics["rejected"] == 1
    assert metrics["delivered"] == 1

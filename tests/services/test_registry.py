import pytest
from sqlalchemy.orm import Session

from zlog.core.errors import SecurityRejection
from zlog.models import Category, Subscriber
from zlog.repositories.subscriptions import (
    SUBSCRIBE_CREATED,
    SUBSCRIBE_REACTIVATED,
    SUBSCRIBE_REPLACED,
    SUBSCRIBE_UNCHANGED,
    SubscriberRegistry,
)
from zlog.services.remote_url import RejectionReason
from tests.helpers import REMOTE_SITE_URL, SELF_SITE_URL, utc

CALLBACK = f"{REMOTE_SITE_URL}/api/federation/webhook"


def _subscribe(registry: SubscriberRegistry, category: Category, callback: str = CALLBACK):
    return registry.subscribe(
        category_id=category.id,
        subscriber_url=REMOTE_SITE_URL,
        callback_url=callback,
        self_site_url=SELF_SITE_URL,
    )


def test_subscribe_creates_active_subscriber(db_session: Session, category: Category):
    registry = SubscriberRegistry(db_session)

    subscriber, outcome = _subscribe(registry, category)

    assert outcome == SUBSCRIBE_CREATED
    assert subscriber.is_active
    assert [s.id for s in registry.active_subscribers(category.id)] == [subscriber.id]


def test_resubscribe_with_same_callback_is_idempotent(db_session: Session, category: Category):
    registry = SubscriberRegistry(db_session)
    first, _ = _subscribe(registry, category)

    again, outcome = _subscribe(registry, category)

    assert outcome == SUBSCRIBE_UNCHANGED
    assert again.id == first.id
    assert db_session.query(Subscriber).count() == 1


def test_resubscribe_after_unsubscribe_reactivates(db_session: Session, category: Category):
    registry = SubscriberRegistry(db_session)
    first, _ = _subscribe(registry, category)
    registry.unsubscribe(category_id=category.id, subscriber_url=REMOTE_SITE_URL)
    assert registry.active_subscribers(category.id) == []
    assert registry.is_revoked(category.id, REMOTE_SITE_URL)

    again, outcome = _subscribe(registry, category)

    assert outcome == SUBSCRIBE_REACTIVATED
    assert again.id == first.id
    assert not registry.is_revoked(category.id, REMOTE_SITE_URL)


def test_new_callback_replaces_row_instead_of_mutating(db_session: Session, category: Category):
    registry = SubscriberRegistry(db_session)
    first, _ = _subscribe(registry, category)

    second, outcome = _subscribe(registry, category, "https://remote.example/hooks/v2")

    assert outcome == SUBSCRIBE_REPLACED
    assert second.id != first.id
    assert first.callback_url == CALLBACK
    assert not first.is_active
    assert [s.id for s in registry.active_subscribers(category.id)] == [second.id]


def test_callback_url_cannot_be_reassigned(db_session: Session, category: Category):
    subscriber, _ = _subscribe(SubscriberRegistry(db_session), category)

    with pytest.raises(ValueError):
        subscriber.callback_url = "https://attacker.example/hook"


@pytest.mark.parametrize(
    ("callback", "reason"),
    [
        ("http://127.0.0.1:9000/hook", RejectionReason.LOCALHOST_FORBIDDEN),
        ("http://10.1.2.3/hook", RejectionReason.PRIVATE_IP_FORBIDDEN),
        (
            "https://blog.example.com/api/federation/webhook",
            RejectionReason.SELF_SUBSCRIPTION_FORBIDDEN,
        ),
        ("file:///etc/passwd", RejectionReason.INVALID_PROTOCOL),
    ],
)
def test_unsafe_callbacks_are_rejected(db_session: Session, category: Category, callback, reason):
    registry = SubscriberRegistry(db_session)

    with pytest.raises(SecurityRejection) as exc_info:
        _subscribe(registry, category, callback)

    assert exc_info.value.reason is reason
    assert db_session.query(Subscriber).count() == 0


def test_is_revoked_is_false_for_unknown_subscriber(db_session: Session, category: Category):
    assert not SubscriberRegistry(db_session).is_revoked(category.id, "https://new.example")


def test_create_subscription_validates_site(db_session: Session, category: Category):
    registry = SubscriberRegistry(db_session)

    with pytest.raises(SecurityRejection) as exc_info:
        registry.create_subscription(
            site_url=SELF_SITE_URL,
            remote_category_slug="news",
            local_category_id=category.id,
            remote_category_id="7",
            self_site_url=SELF_SITE_URL,
        )
    assert exc_info.value.reason is RejectionReason.SELF_SUBSCRIPTION_FORBIDDEN

    subscription = registry.create_subscription(
        site_url=f"{REMOTE_SITE_URL}/",
        remote_category_slug="news",
        local_category_id=category.id,
        remote_category_id="7",
        self_site_url=SELF_SITE_URL,
    )
    assert subscription.site_url == REMOTE_SITE_URL
    assert subscription.is_active
    assert subscription.consecutive_failure_count == 0
    assert registry.subscriptions_for_remote_category(REMOTE_SITE_URL, "7") == [subscription]


def test_failure_threshold_deactivates(db_session: Session, subscription):
    registry = SubscriberRegistry(db_session)
    subscription.consecutive_failure_count = 8

    assert registry.record_sync_failure(subscription, "boom", threshold=10) is False
    assert subscription.is_active
    assert subscription.consecutive_failure_count == 9

    assert registry.record_sync_failure(subscription, "boom", threshold=10) is True
    assert not subscription.is_active
    assert subscription.consecutive_failure_count == 10
    assert subscription.last_error == "boom"
    assert registry.active_subscriptions() == []


def test_success_resets_failures_and_advances_watermark(db_session: Session, subscription):
    registry = SubscriberRegistry(db_session)
    subscription.consecutive_failure_count = 4
    subscription.last_error = "timeout"

    registry.record_sync_success(subscription, utc(2026, 5, 1, 12))

    assert subscription.consecutive_failure_count == 0
    assert subscription.last_error is None
    assert subscription.last_synced_at == utc(2026, 5, 1, 12)


def test_reactivate_clears_failure_streak(db_session: Session, subscription):
    registry = SubscriberRegistry(db_session)
    registry.deactivate(subscription, "ERR_SUBSCRIPTION_REVOKED")
    assert not subscription.is_active

    registry.reactivate(subscription)

    assert subscription.is_active
    assert subscription.consecutive_failure_count == 0
    assert subscription.last_error is None


def test_deleting_category_cascades_to_subscriptions(db_session: Session, category, subscription):
    registry = SubscriberRegistry(db_session)
    _subscribe(registry, category)
    db_session.commit()

    db_session.delete(category)
    db_session.commit()

    assert registry.list_subscribers() == []
    assert registry.list_subscriptions() == []

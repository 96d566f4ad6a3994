# tests/v1/test_federation.py
"""Tests for the instance-to-instance federation endpoints."""

import pytest
from fastapi import status

from zlog.models import Category, Post, Subscriber
from zlog.models.post import POST_STATUS_DRAFT, REMOTE_STATUS_DELETED
from zlog.repositories.subscriptions import SubscriberRegistry
from tests.helpers import REMOTE_SITE_URL, SELF_SITE_URL, utc

CALLBACK = f"{REMOTE_SITE_URL}/api/federation/webhook"


def _subscribe_body(category: Category, callback: str = CALLBACK) -> dict[str, str]:
    return {
        "categoryId": str(category.id),
        "subscriberUrl": REMOTE_SITE_URL,
        "callbackUrl": callback,
    }


def _event(event: str = "post.created", **post) -> dict:
    body = {
        "id": "41",
        "title": "Pushed post",
        "slug": "pushed-post",
        "content": "![x](/uploads/x.png) pushed",
        "createdAt": "2026-05-01T08:00:00Z",
        "updatedAt": "2026-05-01T08:00:00Z",
    }
    body.update(post)
    return {"event": event, "post": body, "categoryId": "7", "siteUrl": REMOTE_SITE_URL}


def test_info_describes_this_instance(client) -> None:
    """Test that the info endpoint advertises our site URL in camelCase."""
    response = client.get("/api/federation/info")
    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["siteUrl"] == SELF_SITE_URL
    assert "displayName" in data


def test_only_public_categories_are_listed(client, db_session, category) -> None:
    """Test that private categories are hidden from other instances."""
    db_session.add(Category(name="Diary", slug="diary", is_public=False))
    db_session.flush()

    response = client.get("/api/federation/categories")
    assert response.status_code == status.HTTP_200_OK
    assert response.json() == [
        {"id": str(category.id), "name": "Travel", "slug": "travel", "description": "Trips"}
    ]


def test_category_listing_is_paginated_newest_first(client, db_session, category, post_factory):
    """Test the paginated listing of local published posts."""
    posts = [post_factory() for _ in range(3)]
    post_factory(status=POST_STATUS_DRAFT)
    db_session.add(
        Post(
            category_id=category.id,
            title="Ingested",
            slug="ingested",
            content="copy",
            status="published",
            remote_uri="https://other.example/posts/1",
        )
    )
    db_session.flush()

    response = client.get("/api/federation/categories/travel/posts?per_page=2")
    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["total"] == 3
    assert data["hasMore"] is True
    assert [item["id"] for item in data["items"]] == [str(posts[2].id), str(posts[1].id)]
    assert data["items"][0]["uri"] == f"{SELF_SITE_URL}/posts/{posts[2].id}"

    response = client.get(f"/api/federation/categories/{category.id}/posts?page=2&per_page=2")
    data = response.json()
    assert [item["id"] for item in data["items"]] == [str(posts[0].id)]
    assert data["hasMore"] is False


def test_category_listing_since_filter(client, category, post_factory) -> None:
    """Test that ``since`` only returns posts updated afterwards."""
    post_factory(updated_at=utc(2026, 1, 1))
    recent = post_factory(updated_at=utc(2026, 6, 1))

    response = client.get(
        "/api/federation/categories/travel/posts", params={"since": "2026-03-01T00:00:00Z"}
    )
    assert [item["id"] for item in response.json()["items"]] == [str(recent.id)]


def test_unknown_or_private_category_is_not_found(client, db_session) -> None:
    """Test 404 for categories that are missing or private."""
    db_session.add(Category(name="Diary", slug="diary", is_public=False))
    db_session.flush()

    assert client.get("/api/federation/categories/diary/posts").status_code == 404
    assert client.get("/api/federation/categories/nope/posts").status_code == 404


def test_revoked_subscriber_gets_forbidden_listing(client, db_session, category) -> None:
    """Test that a revoked instance is told so when it polls."""
    registry = SubscriberRegistry(db_session)
    registry.subscribe(
        category_id=category.id,
        subscriber_url=REMOTE_SITE_URL,
        callback_url=CALLBACK,
        self_site_url=SELF_SITE_URL,
    )
    registry.unsubscribe(category_id=category.id, subscriber_url=REMOTE_SITE_URL)
    db_session.flush()

    response = client.get(
        "/api/federation/categories/travel/posts",
        headers={"X-Zlog-Subscriber-Url": REMOTE_SITE_URL},
    )
    assert response.status_code == status.HTTP_403_FORBIDDEN
    assert response.json()["detail"]["code"] == "ERR_SUBSCRIPTION_REVOKED"

    anonymous = client.get("/api/federation/categories/travel/posts")
    assert anonymous.status_code == status.HTTP_200_OK


def test_get_federated_post(client, post_factory) -> None:
    """Test fetching one published post in wire form."""
    post = post_factory()
    draft = post_factory(status=POST_STATUS_DRAFT)

    response = client.get(f"/api/federation/posts/{post.id}")
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["slug"] == post.slug
    assert client.get(f"/api/federation/posts/{draft.id}").status_code == 404


def test_subscribe_and_resubscribe(client, category) -> None:
    """Test that subscribing twice with the same callback is idempotent."""
    first = client.post("/api/federation/subscribe", json=_subscribe_body(category))
    assert first.status_code == status.HTTP_200_OK
    assert first.json()["message"] == "Subscribed"

    second = client.post("/api/federation/subscribe", json=_subscribe_body(category))
    assert second.json() == {"id": first.json()["id"], "message": "Already subscribed"}


def test_subscribe_rejects_unsafe_callbacks(client, category) -> None:
    """Test that internal callback URLs are refused with a reason code."""
    response = client.post(
        "/api/federation/subscribe",
        json=_subscribe_body(category, "http://192.168.1.10/hook"),
    )
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["detail"]["code"] == "ERR_PRIVATE_IP_FORBIDDEN"

    response = client.post(
        "/api/federation/subscribe",
        json=_subscribe_body(category, "http://localhost:8000/hook"),
    )
    assert response.json()["detail"]["code"] == "ERR_LOCALHOST_FORBIDDEN"


@pytest.mark.parametrize(
    "callback", ["https://evil\u0001.example/hook", "https://evil .example/hook"]
)
def test_subscribe_rejects_malformed_callbacks(client, db_session, category, callback) -> None:
    """Test that callbacks with control characters or spaces are never stored."""
    response = client.post("/api/federation/subscribe", json=_subscribe_body(category, callback))
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["detail"]["code"] == "ERR_INVALID_URL_FORMAT"
    assert db_session.query(Subscriber).count() == 0


def test_unsubscribe_then_resubscribe_reactivates(client, category) -> None:
    """Test the unsubscribe and reactivation round."""
    client.post("/api/federation/subscribe", json=_subscribe_body(category))

    response = client.post(
        "/api/federation/unsubscribe",
        json={"categoryId": str(category.id), "subscriberUrl": REMOTE_SITE_URL},
    )
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["deactivated"] == 1

    again = client.post("/api/federation/subscribe", json=_subscribe_body(category))
    assert again.json()["message"] == "Subscription reactivated"


def test_webhook_ingests_and_deletes(client, db_session, subscription) -> None:
    """Test that pushed events are applied to the local copy."""
    response = client.post("/api/federation/webhook", json=_event())
    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"status": "applied"}

    post = db_session.query(Post).filter(Post.remote_uri.is_not(None)).one()
    assert post.remote_uri == f"{REMOTE_SITE_URL}/posts/41"
    assert post.category_id == subscription.local_category_id
    assert post.content == "![x](https://remote.example/uploads/x.png) pushed"

    repeated = client.post("/api/federation/webhook", json=_event("post.updated"))
    assert repeated.json() == {"status": "unchanged"}

    deleted = client.post("/api/federation/webhook", json=_event("post.deleted"))
    assert deleted.json() == {"status": "applied"}
    db_session.refresh(post)
    assert post.remote_status == REMOTE_STATUS_DELETED


def test_webhook_without_subscription_is_not_found(client, subscription) -> None:
    """Test that events for categories we do not follow are refused."""
    body = _event()
    body["categoryId"] = "99"

    response = client.post("/api/federation/webhook", json=body)
    assert response.status_code == status.HTTP_404_NOT_FOUND
    assert response.json()["detail"]["code"] == "ERR_UNKNOWN_SUBSCRIPTION"


def test_webhook_from_internal_origin_is_rejected(client, subscription) -> None:
    """Test that events claiming an internal origin are refused."""
    body = _event()
    body["siteUrl"] = "http://127.0.0.1:3000"

    response = client.post("/api/federation/webhook", json=body)
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["detail"]["code"] == "ERR_LOCALHOST_FORBIDDEN"

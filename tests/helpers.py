# tests/helpers.py
"""Builders shared by the federation tests."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any

import httpx

from zlog.core.settings import settings
from zlog.services.federation_client import FederationClient, FederationClientConfig
from zlog.services.sync_worker import SyncWorkerConfig

SELF_SITE_URL = settings.site_url
REMOTE_SITE_URL = "https://remote.example"


def make_client_config(**overrides: Any) -> FederationClientConfig:
    """Return a client configuration with short test timeouts."""
    config = FederationClientConfig(
        self_site_url=SELF_SITE_URL,
        fetch_timeout_seconds=1.0,
        dispatch_timeout_seconds=0.5,
        user_agent="zlog-test",
    )
    return replace(config, **overrides)


def make_federation_client(handler: Callable[..., Any], **overrides: Any) -> FederationClient:
    """Return a FederationClient whose requests are answered by ``handler``."""
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return FederationClient(config=make_client_config(**overrides), http_client=http_client)


def make_sync_config(**overrides: Any) -> SyncWorkerConfig:
    """Return a sync worker configuration with the production defaults."""
    config = SyncWorkerConfig(
        self_site_url=SELF_SITE_URL,
        interval_seconds=60.0,
        initial_delay_seconds=0.0,
        concurrency=4,
        failure_threshold=10,
        max_pages=20,
        per_page=50,
        stale_after_seconds=180.0,
    )
    return replace(config, **overrides)


class FakeRemoteSite:
    """In-memory stand-in for the federation API of another instance."""

    def __init__(self, site_url: str = REMOTE_SITE_URL) -> None:
        self.site_url = site_url
        self.posts: list[dict[str, Any]] = []
        self.categories: list[dict[str, Any]] = [{"id": 7, "name": "News", "slug": "news"}]
        self.requests: list[httpx.Request] = []
        self.listing_status = 200
        self.revoked = False

    def add_post(
        self,
        post_id: int,
        *,
        content: str = "Remote body",
        updated_at: str = "2026-01-01T00:00:00Z",
        **extra: Any,
    ) -> dict[str, Any]:
        post = {
            "id": post_id,
            "title": f"Remote post {post_id}",
            "slug": f"remote-post-{post_id}",
            "content": content,
            "createdAt": "2026-01-01T00:00:00Z",
            "updatedAt": updated_at,
            "uri": f"{self.site_url}/posts/{post_id}",
        }
        post.update(extra)
        self.posts.append(post)
        return post

    def listing_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith("/posts")]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == "/api/federation/info":
            return httpx.Response(
                200,
                json={
                    "siteUrl": self.site_url,
                    "displayName": "Remote Writer",
                    "blogTitle": "Remote Blog",
                    "avatarUrl": "/img/avatar.png",
                },
            )
        if path == "/api/federation/categories":
            return httpx.Response(200, json=self.categories)
        if path in ("/api/federation/subscribe", "/api/federation/unsubscribe"):
            return httpx.Response(200, json={"id": 1, "message": "ok"})
        if path.startswith("/api/federation/categories/") and path.endswith("/posts"):
            if self.revoked:
                return httpx.Response(
                    403, json={"detail": {"code": "ERR_SUBSCRIPTION_REVOKED"}}
                )
            if self.listing_status != 200:
                return httpx.Response(self.listing_status, json={"detail": "unavailable"})
            page = int(request.url.params.get("page", "1"))
            per_page = int(request.url.params.get("per_page", "50"))
            start = (page - 1) * per_page
            return httpx.Response(
                200,
                json={
                    "items": self.posts[start:start + per_page],
                    "page": page,
                    "perPage": per_page,
                    "total": len(self.posts),
                    "hasMore": start + per_page < len(self.posts),
                },
            )
        return httpx.Response(404, json={"detail": "Not found"})

    def client(self, **overrides: Any) -> FederationClient:
        return make_federation_client(self.handler, **overrides)


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=UTC)

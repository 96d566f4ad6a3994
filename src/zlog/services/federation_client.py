"""HTTP client for talking to other zlog instances.

This module provides the FederationClient class that performs every
outbound federation request. It includes:

- URL validation of each target immediately before the request
- Explicit per-call timeouts (no unbounded waits)
- Mapping of transport failures onto the federation error taxonomy
- Request metrics for monitoring

Redirects are never followed: a public peer must not be able to bounce a
request onto an internal address.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import httpx
from pydantic import ValidationError

from zlog.core.errors import InvalidInput, SubscriptionRevoked, TransientNetworkFailure
from zlog.core.settings import settings
from zlog.schemas.federation import (
    BlogInfo,
    CategoryInfo,
    FederationEvent,
    PostListing,
    RemotePostItem,
)
from zlog.services.remote_url import ensure_remote_url

logger = logging.getLogger(__name__)

HTTP_FORBIDDEN = 403
REVOKED_ERROR_CODE = "ERR_SUBSCRIPTION_REVOKED"
SUBSCRIBER_HEADER = "X-Zlog-Subscriber-Url"


@dataclass
class FederationMetrics:
    """Counters for outbound federation requests."""

    request_count: int = 0
    success_count: int = 0
    error_count: int = 0
    error_counts_by_type: dict[str, int] = field(default_factory=lambda: defaultdict(int))

    def record(self, success: bool, error_type: str | None = None) -> None:
        """Record the outcome of one request."""
        self.request_count += 1
        if success:
            self.success_count += 1
        else:
            self.error_count += 1
            if error_type:
                self.error_counts_by_type[error_type] += 1


@dataclass(frozen=True)
class FederationClientConfig:
    """Immutable configuration for outbound federation requests."""

    self_site_url: str
    fetch_timeout_seconds: float
    dispatch_timeout_seconds: float
    user_agent: str


def load_client_config() -> FederationClientConfig:
    """Build configuration object from global settings."""

    return FederationClientConfig(
        self_site_url=settings.site_url,
        fetch_timeout_seconds=float(settings.federation_fetch_timeout_seconds),
        dispatch_timeout_seconds=float(settings.federation_dispatch_timeout_seconds),
        user_agent=f"{settings.app_name}-federation/{settings.app_version}",
    )


def _join(site_url: str, path: str) -> str:
    return site_url.rstrip("/") + path


class FederationClient:
    """HTTP client wrapper for instance-to-instance requests."""

    def __init__(
        self,
        config: FederationClientConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config or load_client_config()
        self._client = http_client
        self._client_lock = asyncio.Lock()
        self.metrics = FederationMetrics()

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    timeout=httpx.Timeout(self.config.fetch_timeout_seconds),
                    follow_redirects=False,
                    headers={"User-Agent": self.config.user_agent},
                )
        return self._client

    async def _request(
        self,
        method: str,
        url: str,
        *,
        timeout: float,
        json_data: Any | None = None,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        ensure_remote_url(url, self.config.self_site_url)
        client = await self._ensure_client()

        try:
            response = await asyncio.wait_for(
                client.request(
                    method,
                    url,
                    json=json_data,
                    params=params,
                    headers=headers,
                    timeout=timeout,
                ),
                timeout=timeout,
            )
        except (TimeoutError, httpx.TimeoutException) as exc:
            self.metrics.record(False, "timeout")
            raise TransientNetworkFailure(f"{method} {url} timed out after {timeout}s") from exc
        except httpx.HTTPError as exc:
            self.metrics.record(False, "network_error")
            raise TransientNetworkFailure(f"{method} {url} failed: {exc}") from exc
        except httpx.InvalidURL as exc:
            self.metrics.record(False, "invalid_url")
            raise TransientNetworkFailure(f"{method} {url} is not a usable URL: {exc}") from exc
        except httpx.StreamError as exc:
            self.metrics.record(False, "stream_error")
            raise TransientNetworkFailure(f"{method} {url} failed mid-stream: {exc}") from exc

        if response.status_code == HTTP_FORBIDDEN and _error_code(response) == REVOKED_ERROR_CODE:
            self.metrics.record(False, "revoked")
            raise SubscriptionRevoked(f"{url} revoked our subscription")
        if not response.is_success:
            self.metrics.record(False, f"http_{response.status_code}")
            raise TransientNetworkFailure(
                f"{method} {url} responded with {response.status_code}",
                status_code=response.status_code,
            )

        self.metrics.record(True)
        return response

    async def fetch_info(self, site_url: str) -> BlogInfo:
        """Fetch the public identity of a remote instance."""

        response = await self._request(
            "GET",
            _join(site_url, "/api/federation/info"),
            timeout=self.config.fetch_timeout_seconds,
        )
        body = _json(response)
        if isinstance(body, Mapping):
            body = {"siteUrl": site_url, **body}
        try:
            return BlogInfo.model_validate(body)
        except ValidationError as exc:
            raise InvalidInput(f"Malformed blog info from {site_url}: {exc}") from exc

    async def fetch_categories(self, site_url: str) -> list[CategoryInfo]:
        """Fetch the public categories of a remote instance."""

        response = await self._request(
            "GET",
            _join(site_url, "/api/federation/categories"),
            timeout=self.config.fetch_timeout_seconds,
        )
        body = _json(response)
        if not isinstance(body, list):
            raise InvalidInput(f"Malformed category list from {site_url}")
        try:
            return [CategoryInfo.model_validate(item) for item in body]
        except ValidationError as exc:
            raise InvalidInput(f"Malformed category list from {site_url}: {exc}") from exc

    async def fetch_category_page(
        self,
        site_url: str,
        category_ref: str,
        *,
        page: int = 1,
        per_page: int = 50,
    ) -> PostListing:
        """Fetch one page of a remote category's published posts.

        Peers answering with a bare JSON list (no pagination envelope) are
        treated as a single complete page. Items that fail validation are
        skipped with a warning rather than failing the page.
        """

        response = await self._request(
            "GET",
            _join(site_url, f"/api/federation/categories/{category_ref}/posts"),
            timeout=self.config.fetch_timeout_seconds,
            params={"page": page, "per_page": per_page},
            headers={SUBSCRIBER_HEADER: self.config.self_site_url},
        )
        body = _json(response)

        if isinstance(body, list):
            raw_items, envelope = body, {"page": 1, "perPage": len(body), "hasMore": False}
        elif isinstance(body, Mapping) and isinstance(body.get("items"), list):
            raw_items, envelope = body["items"], body
        else:
            raise InvalidInput(f"Malformed post listing from {site_url}")

        items: list[RemotePostItem] = []
        for raw in raw_items:
            try:
                items.append(RemotePostItem.model_validate(raw))
            except ValidationError as exc:
                logger.warning("Skipping malformed remote post from %s: %s", site_url, exc)

        return PostListing(
            items=items,
            page=int(envelope.get("page", page)),
            per_page=int(envelope.get("perPage", per_page)),
            total=int(envelope.get("total", len(raw_items))),
            has_more=bool(envelope.get("hasMore", False)),
        )

    async def register_subscriber(
        self,
        site_url: str,
        remote_category_id: str,
    ) -> None:
        """Ask a remote instance to push events for a category to us."""

        await self._request(
            "POST",
            _join(site_url, "/api/federation/subscribe"),
            timeout=self.config.fetch_timeout_seconds,
            json_data={
                "categoryId": remote_category_id,
                "subscriberUrl": self.config.self_site_url,
                "callbackUrl": _join(self.config.self_site_url, "/api/federation/webhook"),
            },
        )

    async def unregister_subscriber(self, site_url: str, remote_category_id: str) -> None:
        """Tell a remote instance to stop pushing events for a category to us."""

        await self._request(
            "POST",
            _join(site_url, "/api/federation/unsubscribe"),
            timeout=self.config.fetch_timeout_seconds,
            json_data={
                "categoryId": remote_category_id,
                "subscriberUrl": self.config.self_site_url,
            },
        )

    async def deliver_event(self, callback_url: str, event: FederationEvent) -> int:
        """POST a federation event to a subscriber callback; return the status code."""

        response = await self._request(
            "POST",
            callback_url,
            timeout=self.config.dispatch_timeout_seconds,
            json_data=event.model_dump(mode="json", by_alias=True),
            headers={"Content-Type": "application/json"},
        )
        return response.status_code

    def get_metrics(self) -> dict[str, Any]:
        """Return request metrics as a plain dictionary."""
        return {
            "request_count": self.metrics.request_count,
            "success_count": self.metrics.success_count,
            "error_count": self.metrics.error_count,
            "error_counts_by_type": dict(self.metrics.error_counts_by_type),
        }

    async def close(self) -> None:
        """Clean up underlying HTTP client resources."""

        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None


def _json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise InvalidInput(f"Invalid JSON from {response.request.url}") from exc


def _error_code(response: httpx.Response) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return None
    if not isinstance(body, Mapping):
        return None
    detail = body.get("detail")
    if isinstance(detail, Mapping):
        return detail.get("code")
    if isinstance(detail, str):
        return detail
    return body.get("error") or body.get("code")


class _FederationClientSingleton:
    """Singleton wrapper for FederationClient."""

    _instance: FederationClient | None = None

    @classmethod
    def get_instance(cls) -> FederationClient:
        """Get or create the singleton FederationClient instance."""
        if cls._instance is None:
            cls._instance = FederationClient()
        return cls._instance


def get_federation_client() -> FederationClient:
    """Return a singleton federation client instance."""
    return _FederationClientSingleton.get_instance()

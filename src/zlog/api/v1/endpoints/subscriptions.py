"""Admin endpoints managing federation subscriptions in both directions."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Response, status
from sqlalchemy.orm import Session

from zlog.core.errors import InvalidInput, SecurityRejection, TransientNetworkFailure
from zlog.core.settings import settings
from zlog.models import Category, RemoteSubscription, Subscriber
from zlog.repositories.subscriptions import SubscriberRegistry
from zlog.schemas.subscription import (
    RemoteSubscriptionCreate,
    RemoteSubscriptionResponse,
    SubscriberResponse,
    SyncResultResponse,
)
from zlog.services.notifier import SUBSCRIPTION_REACTIVATED
from zlog.services.remote_url import ensure_remote_url

from ..dependencies import (
    AdminDep,
    ClientDep,
    NotifierDep,
    SessionDep,
    SyncWorkerDep,
    security_error,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["subscriptions"], dependencies=[AdminDep])


def _get_subscription(db: Session, subscription_id: int) -> RemoteSubscription:
    subscription = SubscriberRegistry(db).get_subscription(subscription_id)
    if subscription is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Subscription not found",
        )
    return subscription


@router.get("/subscriptions", response_model=list[RemoteSubscriptionResponse])
async def list_subscriptions(db: SessionDep) -> list[RemoteSubscription]:
    """List the remote categories this instance pulls from."""
    return SubscriberRegistry(db).list_subscriptions()


@router.post(
    "/subscriptions",
    response_model=RemoteSubscriptionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_subscription(
    payload: RemoteSubscriptionCreate,
    db: SessionDep,
    client: ClientDep,
    worker: SyncWorkerDep,
) -> RemoteSubscription:
    """Subscribe a local category to a category of another instance.

    The remote site is validated, its category is resolved to the remote id,
    and the remote instance is asked to push events to our webhook. A failed
    push registration is logged only; the sync worker still pulls.
    """
    site_url = payload.site_url.rstrip("/")
    try:
        ensure_remote_url(site_url, settings.site_url)
    except SecurityRejection as exc:
        raise security_error(exc) from exc

    if db.get(Category, payload.local_category_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Local category not found",
        )

    registry = SubscriberRegistry(db)
    if registry.find_subscription(
        site_url=site_url,
        remote_category_slug=payload.remote_category_slug,
        local_category_id=payload.local_category_id,
    ):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Subscription already exists",
        )

    try:
        categories = await client.fetch_categories(site_url)
    except SecurityRejection as exc:
        raise security_error(exc) from exc
    except (TransientNetworkFailure, InvalidInput) as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"code": "ERR_REMOTE_UNREACHABLE", "message": str(exc)},
        ) from exc

    remote_category = next(
        (c for c in categories if c.slug == payload.remote_category_slug), None
    )
    if remote_category is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Remote category not found",
        )

    try:
        info = await client.fetch_info(site_url)
    except (TransientNetworkFailure, InvalidInput) as exc:
        logger.warning("Could not fetch blog info from %s: %s", site_url, exc)
        info = None

    subscription = registry.create_subscription(
        site_url=site_url,
        remote_category_slug=payload.remote_category_slug,
        local_category_id=payload.local_category_id,
        remote_category_id=remote_category.id,
        self_site_url=settings.site_url,
    )
    registry.upsert_remote_blog(site_url, info)
    db.commit()
    db.refresh(subscription)

    try:
        await client.register_subscriber(site_url, remote_category.id)
    except (TransientNetworkFailure, InvalidInput, SecurityRejection) as exc:
        logger.warning("Push registration with %s failed: %s", site_url, exc)

    if settings.federation_sync_enabled:
        await worker.trigger_stale()
    return subscription


@router.delete("/subscriptions/{subscription_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_subscription(
    subscription_id: int,
    db: SessionDep,
    client: ClientDep,
) -> Response:
    """Remove an outbound subscription; ingested posts stay as orphans."""
    subscription = _get_subscription(db, subscription_id)
    site_url = subscription.site_url
    remote_category_id = subscription.remote_category_id

    db.delete(subscription)
    db.commit()

    if remote_category_id:
        try:
            await client.unregister_subscriber(site_url, remote_category_id)
        except (TransientNetworkFailure, InvalidInput, SecurityRejection) as exc:
            logger.warning("Push unregistration with %s failed: %s", site_url, exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/subscriptions/{subscription_id}/sync", response_model=SyncResultResponse)
async def sync_subscription(
    subscription_id: int,
    db: SessionDep,
    worker: SyncWorkerDep,
) -> SyncResultResponse:
    """Pull one subscription immediately."""
    _get_subscription(db, subscription_id)
    outcome = await worker.sync_now(subscription_id)
    if outcome is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Subscription not found",
        )
    return SyncResultResponse(
        subscription_id=outcome.subscription_id,
        outcome=outcome.outcome,
        synced=outcome.synced,
        deleted=outcome.deleted,
    )


@router.post(
    "/subscriptions/{subscription_id}/reactivate",
    response_model=RemoteSubscriptionResponse,
)
async def reactivate_subscription(
    subscription_id: int,
    db: SessionDep,
    notifier: NotifierDep,
) -> RemoteSubscription:
    """Resume syncing a subscription deactivated after failures or revocation."""
    subscription = _get_subscription(db, subscription_id)
    SubscriberRegistry(db).reactivate(subscription)
    db.commit()
    db.refresh(subscription)

    await notifier.notify(
        SUBSCRIPTION_REACTIVATED,
        {
            "subscription_id": subscription.id,
            "site_url": subscription.site_url,
            "category": subscription.remote_category_slug,
        },
    )
    return subscription


@router.get("/subscribers", response_model=list[SubscriberResponse])
async def list_subscribers(db: SessionDep) -> list[Subscriber]:
    """List the remote instances subscribed to our categories."""
    return SubscriberRegistry(db).list_subscribers()


@router.post("/subscribers/{subscriber_id}/revoke", response_model=SubscriberResponse)
async def revoke_subscriber(subscriber_id: int, db: SessionDep) -> Subscriber:
    """Stop pushing to a subscriber; its next listing request gets a 403."""
    subscriber = db.get(Subscriber, subscriber_id)
    if subscriber is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Subscriber not found",
        )
    SubscriberRegistry(db).unsubscribe(
        category_id=subscriber.category_id,
        subscriber_url=subscriber.subscriber_url,
    )
    db.commit()
    db.refresh(subscriber)
    return subscriber

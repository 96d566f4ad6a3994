"""Federation wire endpoints exchanged between zlog instances."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Header, HTTPException, Query, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from zlog.core.errors import SecurityRejection
from zlog.core.settings import settings
from zlog.db.time import as_utc, utcnow
from zlog.models import Category, Post
from zlog.models.post import POST_STATUS_PUBLISHED
from zlog.repositories.subscriptions import (
    SUBSCRIBE_REACTIVATED,
    SUBSCRIBE_UNCHANGED,
    SubscriberRegistry,
)
from zlog.schemas.federation import (
    BlogInfo,
    CategoryInfo,
    FederationEvent,
    PostListing,
    RemotePostItem,
    SubscribeRequest,
    SubscribeResponse,
    UnsubscribeRequest,
)
from zlog.services.federation_client import REVOKED_ERROR_CODE, SUBSCRIBER_HEADER
from zlog.services.ingest import mark_remote_deleted, remote_uri_for, upsert_remote_post
from zlog.services.notifier import SUBSCRIBER_CREATED, SUBSCRIBER_REACTIVATED
from zlog.services.remote_url import ensure_remote_url

from ..dependencies import NotifierDep, SessionDep, security_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/federation", tags=["federation"])

MAX_PER_PAGE = 100


def _public_category(db: Session, ref: str) -> Category:
    """Resolve a public category by numeric id or slug."""
    query = db.query(Category).filter(Category.is_public.is_(True))
    if ref.isdigit():
        category = query.filter(Category.id == int(ref)).first()
    else:
        category = query.filter(Category.slug == ref).first()
    if category is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Category not found",
        )
    return category


def _listed(post: Post) -> RemotePostItem:
    return RemotePostItem.from_post(post, uri=f"{settings.site_url}/posts/{post.id}")


@router.get("/info", response_model=BlogInfo)
async def get_info() -> BlogInfo:
    """Return the public identity of this instance."""
    return BlogInfo(
        site_url=settings.site_url,
        display_name=settings.blog_display_name,
        blog_title=settings.blog_title,
        blog_description=settings.blog_description,
        avatar_url=settings.blog_avatar_url,
    )


@router.get("/categories", response_model=list[CategoryInfo])
async def list_categories(db: SessionDep) -> list[CategoryInfo]:
    """List the categories other instances may subscribe to."""
    categories = (
        db.query(Category).filter(Category.is_public.is_(True)).order_by(Category.id).all()
    )
    return [CategoryInfo.model_validate(category) for category in categories]


@router.get("/categories/{category_ref}/posts", response_model=PostListing)
async def list_category_posts(
    category_ref: str,
    db: SessionDep,
    page: Annotated[int, Query(ge=1)] = 1,
    per_page: Annotated[int, Query(ge=1, le=MAX_PER_PAGE)] = 50,
    since: datetime | None = None,
    subscriber_url: Annotated[str | None, Header(alias=SUBSCRIBER_HEADER)] = None,
) -> PostListing:
    """List the published local posts of a category, newest first.

    Instances whose subscription to the category was revoked get a 403 so
    they can stop polling and hide what they ingested.
    """
    category = _public_category(db, category_ref)

    if subscriber_url and SubscriberRegistry(db).is_revoked(category.id, subscriber_url):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": REVOKED_ERROR_CODE, "message": "Subscription revoked"},
        )

    conditions = [
        Post.category_id == category.id,
        Post.status == POST_STATUS_PUBLISHED,
        Post.remote_uri.is_(None),
    ]
    if since is not None:
        conditions.append(Post.updated_at > as_utc(since))

    total = db.execute(select(func.count()).select_from(Post).where(*conditions)).scalar_one()
    posts = db.execute(
        select(Post)
        .where(*conditions)
        .order_by(Post.created_at.desc(), Post.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
    ).scalars().all()

    return PostListing(
        items=[_listed(post) for post in posts],
        page=page,
        per_page=per_page,
        total=total,
        has_more=page * per_page < total,
    )


@router.get("/posts/{post_id}", response_model=RemotePostItem)
async def get_federated_post(post_id: int, db: SessionDep) -> RemotePostItem:
    """Return one published local post in wire form."""
    post = db.query(Post).filter(
        Post.id == post_id,
        Post.status == POST_STATUS_PUBLISHED,
        Post.remote_uri.is_(None),
    ).first()
    if post is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Post not found",
        )
    return _listed(post)


@router.post("/subscribe", response_model=SubscribeResponse)
async def subscribe(
    request: SubscribeRequest,
    db: SessionDep,
    notifier: NotifierDep,
) -> SubscribeResponse:
    """Register a remote instance for push events of one of our categories."""
    category = _public_category(db, request.category_id)
    registry = SubscriberRegistry(db)
    try:
        subscriber, outcome = registry.subscribe(
            category_id=category.id,
            subscriber_url=request.subscriber_url.rstrip("/"),
            callback_url=request.callback_url,
            self_site_url=settings.site_url,
        )
    except SecurityRejection as exc:
        db.rollback()
        raise security_error(exc) from exc
    db.commit()

    context = {
        "subscriber_url": subscriber.subscriber_url,
        "category": category.slug,
        "callback_url": subscriber.callback_url,
    }
    if outcome == SUBSCRIBE_REACTIVATED:
        await notifier.notify(SUBSCRIBER_REACTIVATED, context)
        message = "Subscription reactivated"
    elif outcome == SUBSCRIBE_UNCHANGED:
        message = "Already subscribed"
    else:
        await notifier.notify(SUBSCRIBER_CREATED, context)
        message = "Subscribed"

    logger.info(
        "Subscriber %s %s for category %s", subscriber.subscriber_url, outcome, category.slug
    )
    return SubscribeResponse(id=subscriber.id, message=message)


@router.post("/unsubscribe")
async def unsubscribe(request: UnsubscribeRequest, db: SessionDep) -> dict[str, object]:
    """Stop pushing events of a category to a remote instance."""
    category = _public_category(db, request.category_id)
    rows = SubscriberRegistry(db).unsubscribe(
        category_id=category.id,
        subscriber_url=request.subscriber_url.rstrip("/"),
    )
    db.commit()
    return {"message": "Unsubscribed", "deactivated": len(rows)}


@router.post("/webhook")
async def receive_event(event: FederationEvent, db: SessionDep) -> dict[str, str]:
    """Ingest a post event pushed by an instance we subscribe to."""
    site_url = event.site_url.rstrip("/")
    try:
        ensure_remote_url(site_url, settings.site_url)
    except SecurityRejection as exc:
        raise security_error(exc) from exc

    registry = SubscriberRegistry(db)
    subscriptions = registry.subscriptions_for_remote_category(site_url, event.category_id)
    if not subscriptions:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "ERR_UNKNOWN_SUBSCRIPTION", "message": "Not subscribed"},
        )
    subscription = subscriptions[0]
    now = utcnow()

    if event.event == "post.deleted":
        changed = mark_remote_deleted(db, remote_uri_for(event.post, site_url), now)
    else:
        blog = registry.get_remote_blog(site_url) or registry.upsert_remote_blog(site_url)
        changed = upsert_remote_post(
            db,
            subscription,
            event.post,
            blog_snapshot=blog.snapshot(),
            fetched_at=now,
        )
    db.commit()

    logger.info(
        "Received %s for post %s from %s (%s)",
        event.event,
        event.post.id,
        site_url,
        "applied" if changed else "unchanged",
    )
    return {"status": "applied" if changed else "unchanged"}

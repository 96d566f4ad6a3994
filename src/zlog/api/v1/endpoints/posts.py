"""Post endpoints for the zlog API.

Local post mutations announce themselves to subscribed instances through the
webhook dispatcher once committed. Posts ingested from other instances are
owned by the sync pipeline and cannot be edited or deleted here.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, HTTPException, Query, Response, status
from sqlalchemy.orm import Session

from zlog.core.settings import settings
from zlog.db.time import utcnow
from zlog.models import Category, Post
from zlog.models.post import POST_STATUS_DELETED, POST_STATUS_PUBLISHED, REMOTE_STATUS_PUBLISHED
from zlog.schemas.post import PostCreate, PostResponse, PostUpdate
from zlog.services.markdown import make_excerpt

from ..dependencies import AdminDep, DispatcherDep, SessionDep, SyncWorkerDep

logger = logging.getLogger(__name__)

router = APIRouter(tags=["posts"])

# Columns an update may not clear.
REQUIRED_FIELDS = frozenset({"title", "slug", "content", "status"})


def _get_local_post(db: Session, post_id: int) -> Post:
    """Load a post the editor may change.

    Raises:
        HTTPException: 404 if missing or deleted, 403 if ingested from a remote.
    """
    post = db.get(Post, post_id)
    if post is None or post.status == POST_STATUS_DELETED:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Post not found",
        )
    if post.is_remote:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Remote posts are managed by federation sync",
        )
    return post


def _check_category(db: Session, category_id: int | None) -> None:
    if category_id is not None and db.get(Category, category_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Category not found",
        )


@router.get("/posts/{post_id}", response_model=PostResponse)
async def get_post(post_id: int, db: SessionDep) -> Post:
    """Get a specific post by ID."""
    post = db.get(Post, post_id)
    if post is None or post.status != POST_STATUS_PUBLISHED:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Post not found",
        )
    return post


@router.post(
    "/posts",
    response_model=PostResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[AdminDep],
)
async def create_post(
    payload: PostCreate,
    db: SessionDep,
    dispatcher: DispatcherDep,
) -> Post:
    """Write a new local post; publishing it notifies subscribers."""
    _check_category(db, payload.category_id)

    post = Post(
        category_id=payload.category_id,
        title=payload.title,
        slug=payload.slug,
        content=payload.content,
        excerpt=payload.excerpt or make_excerpt(payload.content),
        cover_image=payload.cover_image,
        cover_image_width=payload.cover_image_width,
        cover_image_height=payload.cover_image_height,
        status=payload.status,
    )
    db.add(post)
    db.commit()
    db.refresh(post)

    if post.status == POST_STATUS_PUBLISHED:
        dispatcher.dispatch("post.created", post, post.category_id, db=db)
    return post


@router.patch("/posts/{post_id}", response_model=PostResponse, dependencies=[AdminDep])
async def update_post(
    post_id: int,
    payload: PostUpdate,
    db: SessionDep,
    dispatcher: DispatcherDep,
) -> Post:
    """Edit a local post and announce the change."""
    post = _get_local_post(db, post_id)
    changes = {
        field: value
        for field, value in payload.model_dump(exclude_unset=True).items()
        if value is not None or field not in REQUIRED_FIELDS
    }
    if "category_id" in changes:
        _check_category(db, changes["category_id"])

    was_published = post.status == POST_STATUS_PUBLISHED
    old_category_id = post.category_id

    for field, value in changes.items():
        setattr(post, field, value)
    if "content" in changes and "excerpt" not in changes:
        post.excerpt = make_excerpt(post.content)
    post.updated_at = utcnow()
    db.commit()
    db.refresh(post)

    is_published = post.status == POST_STATUS_PUBLISHED
    if was_published and old_category_id != post.category_id:
        dispatcher.dispatch("post.deleted", post, old_category_id, db=db)
        if is_published:
            dispatcher.dispatch("post.created", post, post.category_id, db=db)
    elif was_published and is_published:
        dispatcher.dispatch("post.updated", post, post.category_id, db=db)
    elif is_published:
        dispatcher.dispatch("post.created", post, post.category_id, db=db)
    elif was_published:
        dispatcher.dispatch("post.deleted", post, post.category_id, db=db)
    return post


@router.delete(
    "/posts/{post_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[AdminDep],
)
async def delete_post(
    post_id: int,
    db: SessionDep,
    dispatcher: DispatcherDep,
) -> Response:
    """Soft delete a local post and tell subscribers to drop their copies."""
    post = _get_local_post(db, post_id)
    was_published = post.status == POST_STATUS_PUBLISHED

    now = utcnow()
    post.status = POST_STATUS_DELETED
    post.deleted_at = now
    post.updated_at = now
    db.commit()
    db.refresh(post)

    if was_published:
        dispatcher.dispatch("post.deleted", post, post.category_id, db=db)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/remote-posts", response_model=list[PostResponse])
async def list_remote_posts(
    db: SessionDep,
    worker: SyncWorkerDep,
    category_id: int | None = None,
    page: Annotated[int, Query(ge=1)] = 1,
    per_page: Annotated[int, Query(ge=1, le=100)] = 20,
) -> list[Post]:
    """List posts ingested from subscribed instances, newest first.

    Listing also schedules a background sync of subscriptions that have not
    been pulled recently.
    """
    if settings.federation_sync_enabled:
        await worker.trigger_stale()

    query = db.query(Post).filter(
        Post.remote_uri.is_not(None),
        Post.remote_status == REMOTE_STATUS_PUBLISHED,
        Post.status == POST_STATUS_PUBLISHED,
    )
    if category_id is not None:
        query = query.filter(Post.category_id == category_id)

    return (
        query.order_by(Post.remote_created_at.desc(), Post.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )

"""Category endpoints for the zlog API."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Response, status

from zlog.models import Category
from zlog.schemas.post import CategoryCreate, CategoryResponse

from ..dependencies import AdminDep, SessionDep

router = APIRouter(prefix="/categories", tags=["categories"])


@router.get("/", response_model=list[CategoryResponse])
async def list_categories(db: SessionDep) -> list[Category]:
    """List all categories."""
    return db.query(Category).order_by(Category.id).all()


@router.post(
    "/",
    response_model=CategoryResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[AdminDep],
)
async def create_category(payload: CategoryCreate, db: SessionDep) -> Category:
    """Create a new category."""
    # Check if slug already exists
    existing = db.query(Category).filter(Category.slug == payload.slug).first()
    if existing:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Category slug already exists",
        )

    category = Category(
        name=payload.name,
        slug=payload.slug,
        description=payload.description,
        is_public=payload.is_public,
    )
    db.add(category)
    db.commit()
    db.refresh(category)
    return category


@router.delete(
    "/{category_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[AdminDep],
)
async def delete_category(category_id: int, db: SessionDep) -> Response:
    """Delete a category together with its subscribers and subscriptions."""
    category = db.get(Category, category_id)
    if category is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Category not found",
        )
    db.delete(category)
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)

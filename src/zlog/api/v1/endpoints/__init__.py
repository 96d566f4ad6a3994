# src/zlog/api/v1/endpoints/__init__.py
"""API endpoint modules for version 1."""

from .categories import router as categories_router
from .federation import router as federation_router
from .posts import router as posts_router
from .subscriptions import router as subscriptions_router

__all__ = [
    "categories_router",
    "federation_router",
    "posts_router",
    "subscriptions_router",
]

# src/zlog/api/v1/__init__.py
"""Version 1 API endpoints."""

from .endpoints import (
    categories_router,
    federation_router,
    posts_router,
    subscriptions_router,
)

__all__ = [
    "categories_router",
    "federation_router",
    "posts_router",
    "subscriptions_router",
]

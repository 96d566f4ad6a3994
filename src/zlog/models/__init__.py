# src/zlog/models/__init__.py
"""SQLAlchemy models for the zlog application."""

from .category import Category
from .federation import RemoteBlog, RemoteSubscription, Subscriber
from .post import Post

__all__ = [
    "Category",
    "Post",
    "RemoteBlog",
    "RemoteSubscription",
    "Subscriber",
]

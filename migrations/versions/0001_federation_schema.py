"""federation schema

Revision ID: 0001_federation_schema
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001_federation_schema"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create categories, posts and both directions of subscriptions."""
    op.create_table(
        "category",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("slug", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_public", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("slug"),
    )
    op.create_table(
        "remote_blog",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("site_url", sa.Text(), nullable=False),
        sa.Column("display_name", sa.Text(), nullable=True),
        sa.Column("blog_title", sa.Text(), nullable=True),
        sa.Column("avatar_url", sa.Text(), nullable=True),
        sa.Column("last_fetched_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("site_url"),
    )
    op.create_table(
        "subscriber",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("category_id", sa.Integer(), nullable=False),
        sa.Column("subscriber_url", sa.Text(), nullable=False),
        sa.Column("callback_url", sa.Text(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["category_id"], ["category.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_subscriber_category_active", "subscriber", ["category_id", "is_active"]
    )
    op.create_index("idx_subscriber_lookup", "subscriber", ["category_id", "subscriber_url"])
    op.create_table(
        "remote_subscription",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("site_url", sa.Text(), nullable=False),
        sa.Column("remote_category_slug", sa.Text(), nullable=False),
        sa.Column("remote_category_id", sa.Text(), nullable=True),
        sa.Column("local_category_id", sa.Integer(), nullable=False),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("consecutive_failure_count", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["local_category_id"], ["category.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "site_url",
            "remote_category_slug",
            "local_category_id",
            name="uq_remote_subscription_target",
        ),
    )
    op.create_index(
        op.f("ix_remote_subscription_site_url"), "remote_subscription", ["site_url"]
    )
    op.create_table(
        "post",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("category_id", sa.Integer(), nullable=True),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("slug", sa.Text(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("excerpt", sa.Text(), nullable=True),
        sa.Column("cover_image", sa.Text(), nullable=True),
        sa.Column("cover_image_width", sa.Integer(), nullable=True),
        sa.Column("cover_image_height", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("remote_uri", sa.Text(), nullable=True),
        sa.Column("remote_subscription_id", sa.Integer(), nullable=True),
        sa.Column("remote_blog", sa.JSON(), nullable=True),
        sa.Column("remote_status", sa.String(length=16), nullable=True),
        sa.Column("remote_created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("remote_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("fetched_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["category_id"], ["category.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(
            ["remote_subscription_id"], ["remote_subscription.id"], ondelete="SET NULL"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("remote_uri"),
    )
    op.create_index(op.f("ix_post_category_id"), "post", ["category_id"])
    op.create_index(op.f("ix_post_slug"), "post", ["slug"])
    op.create_index(op.f("ix_post_remote_subscription_id"), "post", ["remote_subscription_id"])
    op.create_index(
        "idx_post_cat_status_created", "post", ["category_id", "status", "created_at"]
    )
    op.create_index(
        "idx_post_remote_feed", "post", ["remote_status", "category_id", "remote_created_at"]
    )


def downgrade() -> None:
    """Drop every federation table."""
    op.drop_index("idx_post_remote_feed", table_name="post")
    op.drop_index("idx_post_cat_status_created", table_name="post")
    op.drop_index(op.f("ix_post_remote_subscription_id"), table_name="post")
    op.drop_index(op.f("ix_post_slug"), table_name="post")
    op.drop_index(op.f("ix_post_category_id"), table_name="post")
    op.drop_table("post")
    op.drop_index(op.f("ix_remote_subscription_site_url"), table_name="remote_subscription")
    op.drop_table("remote_subscription")
    op.drop_index("idx_subscriber_lookup", table_name="subscriber")
    op.drop_index("idx_subscriber_category_active", table_name="subscriber")
    op.drop_table("subscriber")
    op.drop_table("remote_blog")
    op.drop_table("category")

"""Create videos table.

This migration creates the videos table holding metadata for generated
videos owned by authenticated users. Anonymous generations are never
recorded here.

The videos table includes:
    - id: UUID primary key
    - file_id: Object store key (unique)
    - uri, download_uri: Object store locator and signed read URL
    - prompt, format, file_size, duration, model, status
    - user_id, author: Owner attribution
    - is_temporary, expires_at: Backing object lifetime
    - parent_id, chain_order: Position in an extension chain
    - created_at, updated_at: Timestamps
    - Index on user_id for history listings
    - Unique constraint on (parent_id, chain_order): no two clips share a
      position in a chain

Revision ID: 001_create_videos
Revises:
Create Date: 2026-10-17

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_create_videos"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create videos table with indexes."""
    op.create_table(
        "videos",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("file_id", sa.String(40), nullable=False),
        sa.Column("uri", sa.Text(), nullable=False),
        sa.Column("download_uri", sa.Text(), nullable=True),
        sa.Column("prompt", sa.Text(), nullable=False),
        sa.Column("format", sa.String(64), nullable=True),
        sa.Column("file_size", sa.Integer(), nullable=True),
        sa.Column("duration", sa.Integer(), nullable=True),
        sa.Column("model", sa.String(100), nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="processing"),
        sa.Column("user_id", sa.String(64), nullable=True),
        sa.Column("author", sa.String(64), nullable=True),
        sa.Column("is_temporary", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("parent_id", sa.String(40), nullable=True),
        sa.Column("chain_order", sa.Integer(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("file_id", name="uq_videos_file_id"),
        sa.UniqueConstraint("parent_id", "chain_order", name="uq_videos_parent_id_chain_order"),
    )

    op.create_index("ix_videos_user_id", "videos", ["user_id"])


def downgrade() -> None:
    """Drop videos table and its indexes."""
    op.drop_index("ix_videos_user_id", table_name="videos")
    op.drop_table("videos")

"""Initial schema: entries, entry state history, transients.

Revision ID: v001
Revises:
Create Date: 2026-10-18 00:00:00.000000

Runs against both SQLite (dev) and PostgreSQL (production) without changes.

To apply:
    cd backend/
    alembic upgrade head
"""
from __future__ import annotations
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "v001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── entries ─────────────────────────────────────────────────────────────
    op.create_table(
        "entries",
        sa.Column("entry_id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("form_id", sa.Integer(), nullable=False),
        sa.Column("state", sa.String(32), nullable=False, server_default="created"),
        sa.Column("group_id", sa.Integer(), nullable=True),
        sa.Column("order_id", sa.Integer(), nullable=True),
        sa.Column("removed_reason", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("in_cart_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("removed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expired_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_entries_form_id", "entries", ["form_id"])
    # Stale-cart scan: form_id + state, then in_cart_at range
    op.create_index("ix_entries_form_state", "entries", ["form_id", "state"])

    # ── entry_state_history ─────────────────────────────────────────────────
    op.create_table(
        "entry_state_history",
        sa.Column("history_id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "entry_id",
            sa.Integer(),
            sa.ForeignKey("entries.entry_id"),
            nullable=False,
        ),
        sa.Column("from_state", sa.String(32), nullable=False),
        sa.Column("to_state", sa.String(32), nullable=False),
        sa.Column("reason", sa.String(64), nullable=True),
        sa.Column("order_id", sa.Integer(), nullable=True),
        sa.Column("actor", sa.String(128), nullable=False, server_default="system"),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_entry_state_history_entry_id", "entry_state_history", ["entry_id"])

    # ── transients ──────────────────────────────────────────────────────────
    op.create_table(
        "transients",
        sa.Column("key", sa.String(191), primary_key=True),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    # Drop in reverse FK order
    op.drop_table("transients")
    op.drop_table("entry_state_history")
    op.drop_table("entries")

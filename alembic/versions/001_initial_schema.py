"""Initial schema - click events, system alerts, products and deals.

Revision ID: 001
Revises:
Create Date: 2026-01-15
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Products (owned by ingestion; read here for deal snapshots)
    op.create_table(
        "products",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("asin", sa.String(20), nullable=False, unique=True),
        sa.Column("title", sa.String(500)),
        sa.Column("product_url", sa.Text),
        sa.Column("category", sa.String(100)),
        sa.Column("category_override", sa.String(100)),
    )

    # Deals
    op.create_table(
        "deals",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("product_id", sa.String(64), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("status", sa.String(20), server_default="ACTIVE"),
        sa.Column("current_price_cents", sa.Integer, nullable=False),
        sa.Column("old_price_cents", sa.Integer),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_deals_product_id", "deals", ["product_id"])
    op.create_index("ix_deals_expires_at", "deals", ["expires_at"])

    # Click events (append-only; attribution is the encoded record)
    op.create_table(
        "click_events",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("kind", sa.String(30), nullable=False),
        sa.Column("href", sa.Text, nullable=False),
        sa.Column("asin", sa.String(20)),
        sa.Column("deal_id", sa.String(64)),
        sa.Column("attribution", sa.Text, nullable=False, server_default=""),
        sa.Column("user_agent", sa.Text),
    )
    op.create_index("ix_click_events_occurred_at", "click_events", ["occurred_at"])
    op.create_index("ix_click_events_deal_id", "click_events", ["deal_id"])

    # System alerts (governance rows are prefixed "gov:")
    op.create_table(
        "system_alerts",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("type", sa.String(30), nullable=False, server_default="SYSTEM"),
        sa.Column("severity", sa.String(10), nullable=False),
        sa.Column("noisy", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("resolved_at", sa.DateTime(timezone=True)),
    )
    op.create_index("ix_system_alerts_created_at", "system_alerts", ["created_at"])
    op.create_index("ix_system_alerts_message", "system_alerts", ["message"])


def downgrade() -> None:
    op.drop_table("system_alerts")
    op.drop_table("click_events")
    op.drop_table("deals")
    op.drop_table("products")

"""Initial schema: collections, market data, computed metrics and alerts.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

EVENT_TABLES = ("listing_events", "purchase_events")


def upgrade() -> None:
    # Collection metadata (never swept)
    op.create_table(
        "collections",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("slug", sa.String(255), nullable=True),
        sa.Column("source", sa.String(64), nullable=True),
        sa.Column("metadata", sa.JSON(none_as_null=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    # Market snapshots
    op.create_table(
        "market_snapshots",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("collection_id", sa.String(64), nullable=False),
        sa.Column("snapshot_id", sa.String(128), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("floor_price", sa.Numeric(38, 18), nullable=True),
        sa.Column("ceiling_price", sa.Numeric(38, 18), nullable=True),
        sa.Column("volume", sa.Numeric(38, 18), nullable=True),
        sa.Column("listed_count", sa.Integer(), nullable=True),
        sa.Column("sales_24h", sa.Integer(), nullable=True),
        sa.Column("raw_payload", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("collection_id", "snapshot_id", name="uq_market_snapshots_snapshot"),
    )
    op.create_index(
        "idx_market_snapshots_collection_ts", "market_snapshots", ["collection_id", "timestamp"]
    )
    op.create_index("idx_market_snapshots_ts", "market_snapshots", ["timestamp"])

    # Listing and purchase events share one layout
    for table in EVENT_TABLES:
        op.create_table(
            table,
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("collection_id", sa.String(64), nullable=False),
            sa.Column("event_id", sa.String(128), nullable=False),
            sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
            sa.Column("side", sa.String(8), nullable=True),
            sa.Column("price", sa.Numeric(38, 18), nullable=True),
            sa.Column("quantity", sa.Numeric(38, 18), nullable=True),
            sa.Column("seller", sa.String(128), nullable=True),
            sa.Column("buyer", sa.String(128), nullable=True),
            sa.Column("raw_payload", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("collection_id", "event_id", name=f"uq_{table}_event"),
        )
        op.create_index(f"idx_{table}_collection_ts", table, ["collection_id", "timestamp"])
        op.create_index(f"idx_{table}_ts", table, ["timestamp"])

    # Per-window metrics store (one row per collection and window)
    op.create_table(
        "computed_metrics",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("collection_id", sa.String(64), nullable=False),
        sa.Column("time_window", sa.String(8), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("price_change", sa.Float(), nullable=True),
        sa.Column("average_price", sa.Float(), nullable=True),
        sa.Column("median_price", sa.Float(), nullable=True),
        sa.Column("trade_volume", sa.Float(), nullable=False),
        sa.Column("buy_count", sa.Integer(), nullable=False),
        sa.Column("sell_count", sa.Integer(), nullable=False),
        sa.Column("liquidity_ratio", sa.Float(), nullable=True),
        sa.Column("event_count", sa.Integer(), nullable=False),
        sa.Column("listing_metrics", sa.JSON(), nullable=True),
        sa.Column("purchase_metrics", sa.JSON(), nullable=True),
        sa.Column("price_change_24h", sa.Float(), nullable=True),
        sa.Column("volume_change_24h", sa.Float(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("collection_id", "time_window", name="uq_computed_metrics_window"),
    )
    op.create_index("idx_computed_metrics_window", "computed_metrics", ["time_window"])
    op.create_index("idx_computed_metrics_ts", "computed_metrics", ["timestamp"])

    # Alert history (never swept)
    op.create_table(
        "alerts",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("collection_id", sa.String(64), nullable=False),
        sa.Column("alert_type", sa.String(32), nullable=False),
        sa.Column("severity", sa.String(16), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("triggered_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("resolved", sa.Boolean(), nullable=False),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_alerts_collection_ts", "alerts", ["collection_id", "triggered_at"])
    op.create_index("idx_alerts_triggered_at", "alerts", ["triggered_at"])
    op.create_index("idx_alerts_resolved", "alerts", ["resolved"])


def downgrade() -> None:
    op.drop_index("idx_alerts_resolved", table_name="alerts")
    op.drop_index("idx_alerts_triggered_at", table_name="alerts")
    op.drop_index("idx_alerts_collection_ts", table_name="alerts")
    op.drop_table("alerts")

    op.drop_index("idx_computed_metrics_ts", table_name="computed_metrics")
    op.drop_index("idx_computed_metrics_window", table_name="computed_metrics")
    op.drop_table("computed_metrics")

    for table in reversed(EVENT_TABLES):
        op.drop_index(f"idx_{table}_ts", table_name=table)
        op.drop_index(f"idx_{table}_collection_ts", table_name=table)
        op.drop_table(table)

    op.drop_index("idx_market_snapshots_ts", table_name="market_snapshots")
    op.drop_index("idx_market_snapshots_collection_ts", table_name="market_snapshots")
    op.drop_table("market_snapshots")

    op.drop_table("collections")

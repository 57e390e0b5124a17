"""live delivery tracking, product condition and price alerts

Revision ID: 8c2f4d6a1e57
Revises: 5e1a7c3b9d20
Create Date: 2026-10-18 14:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "8c2f4d6a1e57"
down_revision = "5e1a7c3b9d20"
branch_labels = None
depends_on = None


TRACKING_COLUMNS = (
    ("delivery_tracking_enabled", sa.Boolean(), {"nullable": False, "server_default": sa.text("false")}),
    ("delivery_current_latitude", sa.Float(), {"nullable": True}),
    ("delivery_current_longitude", sa.Float(), {"nullable": True}),
    ("delivery_location_updated_at", sa.DateTime(), {"nullable": True}),
    ("tracking_started_at", sa.DateTime(), {"nullable": True}),
    ("tracking_stopped_at", sa.DateTime(), {"nullable": True}),
)


def _table_exists(bind, table_name: str) -> bool:
    try:
        return sa.inspect(bind).has_table(table_name)
    except Exception:
        return False


def _column_exists(bind, table_name: str, column_name: str) -> bool:
    try:
        cols = sa.inspect(bind).get_columns(table_name)
        return any((c.get("name") or "") == column_name for c in cols)
    except Exception:
        return False


def _add_tracking_columns(bind):
    if not _table_exists(bind, "order_shipping_details"):
        return
    missing = [c for c in TRACKING_COLUMNS if not _column_exists(bind, "order_shipping_details", c[0])]
    if not missing:
        return
    with op.batch_alter_table("order_shipping_details") as batch:
        for name, type_, kwargs in missing:
            batch.add_column(sa.Column(name, type_, **kwargs))


def _add_condition_columns(bind):
    if not _table_exists(bind, "products"):
        return
    with op.batch_alter_table("products") as batch:
        if not _column_exists(bind, "products", "condition"):
            batch.add_column(sa.Column("condition", sa.String(length=16), nullable=False, server_default="new"))
        if not _column_exists(bind, "products", "condition_notes"):
            batch.add_column(sa.Column("condition_notes", sa.Text(), nullable=True))


def _create_price_alerts(bind):
    if _table_exists(bind, "price_alerts"):
        return
    op.create_table(
        "price_alerts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("target_price", sa.Float(), nullable=True),
        sa.Column("original_price", sa.Float(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("notified_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("user_id", "product_id", name="uq_price_alerts_user_product"),
    )
    op.create_index("ix_price_alerts_user_id", "price_alerts", ["user_id"])
    op.create_index("ix_price_alerts_product_id", "price_alerts", ["product_id"])
    op.create_index("ix_price_alerts_is_active", "price_alerts", ["is_active"])


def upgrade():
    bind = op.get_bind()
    _add_tracking_columns(bind)
    _add_condition_columns(bind)
    _create_price_alerts(bind)


def downgrade():
    op.drop_table("price_alerts")
    with op.batch_alter_table("products") as batch:
        batch.drop_column("condition_notes")
        batch.drop_column("condition")
    with op.batch_alter_table("order_shipping_details") as batch:
        for name, _type, _kwargs in reversed(TRACKING_COLUMNS):
            batch.drop_column(name)

"""initial marketplace schema: users, catalog, orders, escrow, payouts, notifications

Revision ID: 5e1a7c3b9d20
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "5e1a7c3b9d20"
down_revision = None
branch_labels = None
depends_on = None


def _table_exists(bind, table_name: str) -> bool:
    try:
        return sa.inspect(bind).has_table(table_name)
    except Exception:
        return False


def _created_at():
    return sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now())


def upgrade():
    bind = op.get_bind()

    if not _table_exists(bind, "users"):
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(length=120), nullable=False, server_default=""),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("phone", sa.String(length=32), nullable=True),
            sa.Column("password_hash", sa.String(length=255), nullable=False),
            sa.Column("role", sa.String(length=32), nullable=False, server_default="buyer"),
            sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            _created_at(),
        )
        op.create_index("ix_users_email", "users", ["email"], unique=True)
        op.create_index("ix_users_phone", "users", ["phone"], unique=True)

    if not _table_exists(bind, "vendor_profiles"):
        op.create_table(
            "vendor_profiles",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("store_name", sa.String(length=160), nullable=False, server_default=""),
            sa.Column("store_description", sa.Text(), nullable=True),
            sa.Column("payout_method", sa.String(length=16), nullable=False, server_default="mpesa"),
            sa.Column("mpesa_number", sa.String(length=20), nullable=True),
            sa.Column("bank_name", sa.String(length=120), nullable=True),
            sa.Column("bank_account_number", sa.String(length=64), nullable=True),
            sa.Column("bank_account_name", sa.String(length=120), nullable=True),
            sa.Column("intasend_wallet_id", sa.String(length=64), nullable=True),
            sa.Column("intasend_wallet_label", sa.String(length=120), nullable=True),
            _created_at(),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("ix_vendor_profiles_user_id", "vendor_profiles", ["user_id"], unique=True)
        op.create_index("ix_vendor_profiles_intasend_wallet_id", "vendor_profiles", ["intasend_wallet_id"])

    if not _table_exists(bind, "products"):
        op.create_table(
            "products",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("vendor_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("brand", sa.String(length=120), nullable=True),
            sa.Column("category", sa.String(length=80), nullable=True),
            sa.Column("price_ksh", sa.Float(), nullable=False, server_default="0"),
            sa.Column("stock", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("images_json", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
            _created_at(),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("ix_products_vendor_id", "products", ["vendor_id"])
        op.create_index("ix_products_category", "products", ["category"])
        op.create_index("ix_products_status", "products", ["status"])

    if not _table_exists(bind, "orders"):
        op.create_table(
            "orders",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("customer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("vendor_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("status", sa.String(length=40), nullable=False, server_default="pending_payment"),
            sa.Column("subtotal_ksh", sa.Float(), nullable=False, server_default="0"),
            sa.Column("shipping_fee_ksh", sa.Float(), nullable=False, server_default="0"),
            sa.Column("total_ksh", sa.Float(), nullable=False, server_default="0"),
            sa.Column("commission_rate", sa.Float(), nullable=False, server_default="0.10"),
            sa.Column("commission_amount", sa.Float(), nullable=False, server_default="0"),
            sa.Column("payout_amount", sa.Float(), nullable=True),
            sa.Column("buyer_confirmed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("vendor_confirmed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("accepted_at", sa.DateTime(), nullable=True),
            sa.Column("shipped_at", sa.DateTime(), nullable=True),
            sa.Column("arrived_at", sa.DateTime(), nullable=True),
            sa.Column("confirmed_at", sa.DateTime(), nullable=True),
            sa.Column("completed_at", sa.DateTime(), nullable=True),
            sa.Column("cancelled_at", sa.DateTime(), nullable=True),
            sa.Column("refunded_at", sa.DateTime(), nullable=True),
            sa.Column("auto_release_at", sa.DateTime(), nullable=True),
            sa.Column("vendor_notes", sa.Text(), nullable=True),
            sa.Column("delivery_otp", sa.String(length=6), nullable=True),
            sa.Column("otp_generated_at", sa.DateTime(), nullable=True),
            sa.Column("otp_verified_at", sa.DateTime(), nullable=True),
            sa.Column("otp_attempts", sa.Integer(), nullable=False, server_default="0"),
            _created_at(),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        for col in ("customer_id", "vendor_id", "status", "shipped_at", "auto_release_at", "created_at"):
            op.create_index(f"ix_orders_{col}", "orders", [col])

    if not _table_exists(bind, "order_items"):
        op.create_table(
            "order_items",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=False),
            sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=True),
            sa.Column("product_name", sa.String(length=200), nullable=False, server_default=""),
            sa.Column("product_snapshot", sa.Text(), nullable=True),
            sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("unit_price_ksh", sa.Float(), nullable=False, server_default="0"),
            sa.Column("size", sa.String(length=16), nullable=True),
        )
        op.create_index("ix_order_items_order_id", "order_items", ["order_id"])
        op.create_index("ix_order_items_product_id", "order_items", ["product_id"])

    if not _table_exists(bind, "order_shipping_details"):
        op.create_table(
            "order_shipping_details",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=False),
            sa.Column("recipient_name", sa.String(length=160), nullable=False, server_default=""),
            sa.Column("phone", sa.String(length=32), nullable=True),
            sa.Column("email", sa.String(length=255), nullable=True),
            sa.Column("address_line1", sa.String(length=255), nullable=True),
            sa.Column("address_line2", sa.String(length=255), nullable=True),
            sa.Column("city", sa.String(length=120), nullable=True),
            sa.Column("county", sa.String(length=120), nullable=True),
            sa.Column("postal_code", sa.String(length=24), nullable=True),
            sa.Column("country", sa.String(length=80), nullable=False, server_default="Kenya"),
            sa.Column("delivery_notes", sa.Text(), nullable=True),
            sa.Column("delivery_type", sa.String(length=16), nullable=False, server_default="delivery"),
            sa.Column("gps_latitude", sa.Float(), nullable=True),
            sa.Column("gps_longitude", sa.Float(), nullable=True),
            sa.Column("courier_name", sa.String(length=120), nullable=True),
            sa.Column("tracking_number", sa.String(length=120), nullable=True),
        )
        op.create_index("ix_order_shipping_details_order_id", "order_shipping_details", ["order_id"], unique=True)

    if not _table_exists(bind, "payments"):
        op.create_table(
            "payments",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=False),
            sa.Column("gateway", sa.String(length=16), nullable=False, server_default="mpesa"),
            sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
            sa.Column("amount_ksh", sa.Float(), nullable=False, server_default="0"),
            sa.Column("currency", sa.String(length=8), nullable=False, server_default="KES"),
            sa.Column("transaction_reference", sa.String(length=128), nullable=True),
            sa.Column("transaction_id", sa.String(length=128), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=True),
            sa.Column("captured_at", sa.DateTime(), nullable=True),
            sa.Column("refunded_at", sa.DateTime(), nullable=True),
            _created_at(),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        for col in ("order_id", "status", "transaction_reference", "transaction_id"):
            op.create_index(f"ix_payments_{col}", "payments", [col])

    if not _table_exists(bind, "escrow_transactions"):
        op.create_table(
            "escrow_transactions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=False),
            sa.Column("payment_id", sa.Integer(), sa.ForeignKey("payments.id"), nullable=True),
            sa.Column("status", sa.String(length=16), nullable=False, server_default="held"),
            sa.Column("held_amount", sa.Float(), nullable=False, server_default="0"),
            sa.Column("commission_amount", sa.Float(), nullable=False, server_default="0"),
            sa.Column("release_amount", sa.Float(), nullable=False, server_default="0"),
            sa.Column("held_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("released_at", sa.DateTime(), nullable=True),
            sa.Column("refunded_at", sa.DateTime(), nullable=True),
            sa.Column("withheld_at", sa.DateTime(), nullable=True),
            sa.Column("notes", sa.String(length=240), nullable=True),
        )
        op.create_index("ix_escrow_transactions_order_id", "escrow_transactions", ["order_id"], unique=True)
        op.create_index("ix_escrow_transactions_status", "escrow_transactions", ["status"])

    if not _table_exists(bind, "escrow_transitions"):
        op.create_table(
            "escrow_transitions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("escrow_id", sa.Integer(), sa.ForeignKey("escrow_transactions.id"), nullable=False),
            sa.Column("order_id", sa.Integer(), nullable=False),
            sa.Column("from_status", sa.String(length=16), nullable=False, server_default=""),
            sa.Column("to_status", sa.String(length=16), nullable=False),
            sa.Column("actor_type", sa.String(length=32), nullable=False, server_default="system"),
            sa.Column("actor_id", sa.Integer(), nullable=True),
            sa.Column("idempotency_key", sa.String(length=160), nullable=False),
            sa.Column("reason", sa.String(length=240), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=True),
            _created_at(),
            sa.UniqueConstraint("escrow_id", "idempotency_key", name="uq_escrow_transition_escrow_key"),
        )
        op.create_index("ix_escrow_transitions_escrow_id", "escrow_transitions", ["escrow_id"])
        op.create_index("ix_escrow_transitions_order_id", "escrow_transitions", ["order_id"])

    if not _table_exists(bind, "payouts"):
        op.create_table(
            "payouts",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("vendor_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=True),
            sa.Column("amount_ksh", sa.Float(), nullable=False, server_default="0"),
            sa.Column("method", sa.String(length=16), nullable=False, server_default="mpesa"),
            sa.Column("destination", sa.String(length=120), nullable=True),
            sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
            sa.Column("trigger_type", sa.String(length=16), nullable=False, server_default="automatic"),
            sa.Column("fee_paid_by", sa.String(length=16), nullable=False, server_default="platform"),
            sa.Column("transfer_fee_ksh", sa.Float(), nullable=False, server_default="0"),
            sa.Column("balance_before", sa.Float(), nullable=True),
            sa.Column("reference", sa.String(length=128), nullable=True),
            sa.Column("failure_reason", sa.String(length=240), nullable=True),
            _created_at(),
            sa.Column("processed_at", sa.DateTime(), nullable=True),
        )
        for col in ("vendor_id", "order_id", "status", "reference"):
            op.create_index(f"ix_payouts_{col}", "payouts", [col])

    if not _table_exists(bind, "vendor_balances"):
        op.create_table(
            "vendor_balances",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("vendor_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("pending_balance", sa.Float(), nullable=False, server_default="0"),
            sa.Column("total_earned", sa.Float(), nullable=False, server_default="0"),
            sa.Column("total_paid_out", sa.Float(), nullable=False, server_default="0"),
            sa.Column("last_payout_at", sa.DateTime(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("ix_vendor_balances_vendor_id", "vendor_balances", ["vendor_id"], unique=True)

    if not _table_exists(bind, "commission_ledger"):
        op.create_table(
            "commission_ledger",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=False),
            sa.Column("vendor_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("commission_rate", sa.Float(), nullable=False, server_default="0.10"),
            sa.Column("commission_amount", sa.Float(), nullable=False, server_default="0"),
            sa.Column("order_total", sa.Float(), nullable=False, server_default="0"),
            sa.Column("payout_amount", sa.Float(), nullable=False, server_default="0"),
            sa.Column("recorded_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("ix_commission_ledger_order_id", "commission_ledger", ["order_id"], unique=True)
        op.create_index("ix_commission_ledger_vendor_id", "commission_ledger", ["vendor_id"])
        op.create_index("ix_commission_ledger_recorded_at", "commission_ledger", ["recorded_at"])

    if not _table_exists(bind, "disputes"):
        op.create_table(
            "disputes",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=False),
            sa.Column("customer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("vendor_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("reason", sa.String(length=24), nullable=False, server_default="other"),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("evidence_json", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=24), nullable=False, server_default="open"),
            sa.Column("source", sa.String(length=16), nullable=False, server_default="buyer"),
            sa.Column("vendor_response", sa.Text(), nullable=True),
            sa.Column("vendor_responded_at", sa.DateTime(), nullable=True),
            sa.Column("resolution_notes", sa.Text(), nullable=True),
            sa.Column("resolved_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("resolved_at", sa.DateTime(), nullable=True),
            _created_at(),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        for col in ("order_id", "customer_id", "vendor_id", "status"):
            op.create_index(f"ix_disputes_{col}", "disputes", [col])

    if not _table_exists(bind, "vendor_ratings"):
        op.create_table(
            "vendor_ratings",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=False, unique=True),
            sa.Column("vendor_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("customer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("rating", sa.Integer(), nullable=False),
            sa.Column("review", sa.Text(), nullable=True),
            _created_at(),
        )
        op.create_index("ix_vendor_ratings_vendor_id", "vendor_ratings", ["vendor_id"])

    if not _table_exists(bind, "notifications"):
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("kind", sa.String(length=48), nullable=False, server_default="general"),
            sa.Column("title", sa.String(length=160), nullable=True),
            sa.Column("message", sa.Text(), nullable=False),
            sa.Column("link", sa.String(length=255), nullable=True),
            sa.Column("order_id", sa.Integer(), nullable=True),
            sa.Column("read_at", sa.DateTime(), nullable=True),
            _created_at(),
            sa.Column("meta", sa.Text(), nullable=True),
        )
        op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
        op.create_index("ix_notifications_order_id", "notifications", ["order_id"])

    if not _table_exists(bind, "notification_logs"):
        op.create_table(
            "notification_logs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("order_id", sa.Integer(), nullable=True),
            sa.Column("type", sa.String(length=16), nullable=False, server_default="email"),
            sa.Column("template", sa.String(length=48), nullable=False, server_default=""),
            sa.Column("recipient", sa.String(length=512), nullable=True),
            sa.Column("subject", sa.String(length=200), nullable=True),
            sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
            sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("provider_ref", sa.String(length=128), nullable=True),
            sa.Column("error", sa.Text(), nullable=True),
            _created_at(),
            sa.Column("sent_at", sa.DateTime(), nullable=True),
        )
        for col in ("user_id", "order_id", "status", "created_at"):
            op.create_index(f"ix_notification_logs_{col}", "notification_logs", [col])

    if not _table_exists(bind, "push_subscriptions"):
        op.create_table(
            "push_subscriptions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("endpoint", sa.String(length=1024), nullable=False, unique=True),
            sa.Column("p256dh", sa.String(length=255), nullable=False),
            sa.Column("auth", sa.String(length=255), nullable=False),
            sa.Column("user_agent", sa.String(length=255), nullable=True),
            _created_at(),
            sa.Column("last_used_at", sa.DateTime(), nullable=True),
        )
        op.create_index("ix_push_subscriptions_user_id", "push_subscriptions", ["user_id"])

    if not _table_exists(bind, "webhook_events"):
        op.create_table(
            "webhook_events",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("provider", sa.String(length=16), nullable=False),
            sa.Column("event_id", sa.String(length=128), nullable=False),
            sa.Column("event_type", sa.String(length=64), nullable=True),
            sa.Column("reference", sa.String(length=128), nullable=True),
            sa.Column("order_id", sa.Integer(), nullable=True),
            sa.Column("status", sa.String(length=16), nullable=False, server_default="received"),
            sa.Column("request_id", sa.String(length=64), nullable=True),
            sa.Column("payload_hash", sa.String(length=64), nullable=True),
            sa.Column("error", sa.Text(), nullable=True),
            _created_at(),
            sa.Column("processed_at", sa.DateTime(), nullable=True),
            sa.UniqueConstraint("provider", "event_id", name="uq_webhook_provider_event"),
        )
        op.create_index("ix_webhook_events_reference", "webhook_events", ["reference"])
        op.create_index("ix_webhook_events_order_id", "webhook_events", ["order_id"])

    if not _table_exists(bind, "idempotency_keys"):
        op.create_table(
            "idempotency_keys",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("key", sa.String(length=128), nullable=False),
            sa.Column("scope", sa.String(length=128), nullable=False, server_default=""),
            sa.Column("user_id", sa.Integer(), nullable=True),
            sa.Column("request_hash", sa.String(length=64), nullable=False, server_default=""),
            sa.Column("response_json", sa.Text(), nullable=True),
            sa.Column("response_code", sa.Integer(), nullable=False, server_default="200"),
            _created_at(),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.UniqueConstraint("scope", "key", name="uq_idempotency_scope_key"),
        )
        op.create_index("ix_idempotency_keys_key", "idempotency_keys", ["key"])

    if not _table_exists(bind, "job_runs"):
        op.create_table(
            "job_runs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("job_name", sa.String(length=64), nullable=False),
            sa.Column("ran_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("ok", sa.Boolean(), nullable=False, server_default=sa.text("true")),
            sa.Column("duration_ms", sa.Integer(), nullable=True),
            sa.Column("processed", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("result_json", sa.Text(), nullable=True),
            sa.Column("error", sa.Text(), nullable=True),
        )
        op.create_index("ix_job_runs_job_name", "job_runs", ["job_name"])
        op.create_index("ix_job_runs_ran_at", "job_runs", ["ran_at"])

    if not _table_exists(bind, "platform_events"):
        op.create_table(
            "platform_events",
            sa.Column("id", sa.Integer(), primary_key=True),
            _created_at(),
            sa.Column("event_type", sa.String(length=80), nullable=False),
            sa.Column("actor_user_id", sa.Integer(), nullable=True),
            sa.Column("order_id", sa.Integer(), nullable=True),
            sa.Column("request_id", sa.String(length=80), nullable=True),
            sa.Column("idempotency_key", sa.String(length=180), nullable=True, unique=True),
            sa.Column("severity", sa.String(length=16), nullable=False, server_default="INFO"),
            sa.Column("metadata_json", sa.Text(), nullable=True),
        )
        for col in ("created_at", "event_type", "actor_user_id", "order_id"):
            op.create_index(f"ix_platform_events_{col}", "platform_events", [col])

    if not _table_exists(bind, "platform_settings"):
        op.create_table(
            "platform_settings",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("integrations_mode", sa.String(length=16), nullable=False, server_default="disabled"),
            sa.Column("mpesa_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("paystack_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("stripe_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("intasend_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("email_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("push_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("auto_payouts_enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
            sa.Column("last_webhook_at", sa.DateTime(), nullable=True),
            sa.Column("updated_by", sa.Integer(), nullable=True),
            _created_at(),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )


def downgrade():
    for table in (
        "platform_settings",
        "platform_events",
        "job_runs",
        "idempotency_keys",
        "webhook_events",
        "push_subscriptions",
        "notification_logs",
        "notifications",
        "vendor_ratings",
        "disputes",
        "commission_ledger",
        "vendor_balances",
        "payouts",
        "escrow_transitions",
        "escrow_transactions",
        "payments",
        "order_shipping_details",
        "order_items",
        "orders",
        "products",
        "vendor_profiles",
        "users",
    ):
        op.drop_table(table)

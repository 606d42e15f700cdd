"""vtu core schema: wallets, transactions, catalog, daily data, spin, referrals

Revision ID: a7c1e9d2b4f0
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision = 'a7c1e9d2b4f0'
down_revision = None
branch_labels = None
depends_on = None


def _money(name, **kw):
    return sa.Column(name, sa.Numeric(14, 2), nullable=False, server_default="0", **kw)


def _tier_prices():
    return [_money("cost_price"), _money("user_price"), _money("agent_price"), _money("vendor_price")]


def upgrade():
    bind = op.get_bind()
    insp = inspect(bind)

    def _table_exists(name: str) -> bool:
        try:
            return insp.has_table(name)
        except Exception:
            return False

    if not _table_exists("users"):
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(120), nullable=False, server_default=""),
            sa.Column("email", sa.String(255), nullable=False),
            sa.Column("phone", sa.String(32), nullable=True),
            sa.Column("password_hash", sa.String(255), nullable=False, server_default=""),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("role", sa.String(32), nullable=False, server_default="user"),
            sa.Column("tier", sa.String(16), nullable=False, server_default="subscriber"),
            sa.Column("is_blocked", sa.Boolean(), nullable=False, server_default=sa.false()),
        )
        op.create_index("ix_users_email", "users", ["email"], unique=True)
        op.create_index("ix_users_phone", "users", ["phone"], unique=True)

    if not _table_exists("wallets"):
        op.create_table(
            "wallets",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            _money("balance"),
            _money("reserved_balance"),
            _money("reward_balance"),
            sa.Column("currency", sa.String(8), nullable=False, server_default="NGN"),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
        )
        op.create_index("ix_wallets_user_id", "wallets", ["user_id"], unique=True)

    if not _table_exists("vtu_transactions"):
        op.create_table(
            "vtu_transactions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("reference", sa.String(80), nullable=False),
            sa.Column("service", sa.String(32), nullable=False),
            sa.Column("description", sa.String(255), nullable=False, server_default=""),
            sa.Column("destination", sa.String(64), nullable=True),
            sa.Column("amount", sa.Numeric(14, 2), nullable=False),
            sa.Column("balance_before", sa.Numeric(14, 2), nullable=False),
            sa.Column("balance_after", sa.Numeric(14, 2), nullable=False),
            _money("profit"),
            sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
            sa.Column("provider", sa.String(64), nullable=True),
            sa.Column("provider_http_code", sa.Integer(), nullable=True),
            sa.Column("provider_response", sa.Text(), nullable=True),
            sa.Column("meta", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("finalized_at", sa.DateTime(), nullable=True),
        )
        op.create_index("ix_vtu_transactions_reference", "vtu_transactions", ["reference"], unique=True)
        op.create_index("ix_vtu_transactions_user_id", "vtu_transactions", ["user_id"])
        op.create_index("ix_vtu_transactions_service", "vtu_transactions", ["service"])
        op.create_index("ix_vtu_transactions_status", "vtu_transactions", ["status"])
        op.create_index("ix_vtu_transactions_created_at", "vtu_transactions", ["created_at"])

    if not _table_exists("data_plans"):
        op.create_table(
            "data_plans",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("plan_code", sa.String(40), nullable=False),
            sa.Column("network_id", sa.Integer(), nullable=False),
            sa.Column("plan_type", sa.String(16), nullable=False, server_default="sme"),
            sa.Column("name", sa.String(80), nullable=False),
            sa.Column("validity_days", sa.Integer(), nullable=False, server_default="30"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            *_tier_prices(),
        )
        op.create_index("ix_data_plans_plan_code", "data_plans", ["plan_code"], unique=True)
        op.create_index("ix_data_plans_network_id", "data_plans", ["network_id"])

    if not _table_exists("airtime_rates"):
        op.create_table(
            "airtime_rates",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("network_id", sa.Integer(), nullable=False),
            sa.Column("airtime_type", sa.String(16), nullable=False, server_default="vtu"),
            sa.Column("user_percent", sa.Numeric(6, 2), nullable=False, server_default="100"),
            sa.Column("agent_percent", sa.Numeric(6, 2), nullable=False, server_default="100"),
            sa.Column("vendor_percent", sa.Numeric(6, 2), nullable=False, server_default="100"),
            sa.Column("cost_percent", sa.Numeric(6, 2), nullable=False, server_default="100"),
            sa.UniqueConstraint("network_id", "airtime_type", name="uq_airtime_rates_network_type"),
        )

    if not _table_exists("cable_plans"):
        op.create_table(
            "cable_plans",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("provider_id", sa.Integer(), nullable=False),
            sa.Column("provider_name", sa.String(32), nullable=False),
            sa.Column("plan_code", sa.String(40), nullable=False, unique=True),
            sa.Column("name", sa.String(80), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            *_tier_prices(),
        )
        op.create_index("ix_cable_plans_provider_id", "cable_plans", ["provider_id"])

    if not _table_exists("electricity_discos"):
        op.create_table(
            "electricity_discos",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(80), nullable=False),
            sa.Column("abbreviation", sa.String(16), nullable=False),
            sa.Column("service_slug", sa.String(40), nullable=False),
            sa.Column("cost_percent", sa.Numeric(6, 2), nullable=False, server_default="100"),
            sa.Column("min_amount", sa.Numeric(14, 2), nullable=False, server_default="500"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        )

    if not _table_exists("exam_products"):
        op.create_table(
            "exam_products",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("code", sa.String(16), nullable=False, unique=True),
            sa.Column("name", sa.String(80), nullable=False),
            sa.Column("provider_exam_id", sa.String(16), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            *_tier_prices(),
        )

    if not _table_exists("pin_products"):
        op.create_table(
            "pin_products",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("kind", sa.String(16), nullable=False),
            sa.Column("network_id", sa.Integer(), nullable=False),
            sa.Column("product_code", sa.String(40), nullable=False),
            sa.Column("name", sa.String(80), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            *_tier_prices(),
            sa.UniqueConstraint("kind", "network_id", "product_code", name="uq_pin_products_kind_code"),
        )
        op.create_index("ix_pin_products_kind", "pin_products", ["kind"])

    if not _table_exists("issued_pins"):
        op.create_table(
            "issued_pins",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("transaction_reference", sa.String(80), nullable=False),
            sa.Column("kind", sa.String(16), nullable=False),
            sa.Column("pin", sa.String(120), nullable=False),
            sa.Column("serial", sa.String(120), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )
        op.create_index("ix_issued_pins_user_id", "issued_pins", ["user_id"])
        op.create_index("ix_issued_pins_transaction_reference", "issued_pins", ["transaction_reference"])

    if not _table_exists("daily_data_plans"):
        op.create_table(
            "daily_data_plans",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("reference", sa.String(80), nullable=False, unique=True),
            sa.Column("phone", sa.String(32), nullable=False),
            sa.Column("network_id", sa.Integer(), nullable=False),
            sa.Column("plan_code", sa.String(40), nullable=False),
            sa.Column("plan_type", sa.String(16), nullable=False, server_default="sme"),
            sa.Column("price_per_cycle", sa.Numeric(14, 2), nullable=False),
            sa.Column("total_cycles", sa.Integer(), nullable=False),
            sa.Column("remaining_cycles", sa.Integer(), nullable=False),
            sa.Column("next_delivery_at", sa.DateTime(), nullable=False),
            sa.Column("status", sa.String(16), nullable=False, server_default="active"),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
        )
        op.create_index("ix_daily_data_plans_user_id", "daily_data_plans", ["user_id"])
        op.create_index("ix_daily_data_plans_next_delivery_at", "daily_data_plans", ["next_delivery_at"])
        op.create_index("ix_daily_data_plans_status", "daily_data_plans", ["status"])

    if not _table_exists("delivery_logs"):
        op.create_table(
            "delivery_logs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("plan_id", sa.Integer(), sa.ForeignKey("daily_data_plans.id"), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("phone", sa.String(32), nullable=False),
            sa.Column("network_id", sa.Integer(), nullable=False),
            sa.Column("plan_code", sa.String(40), nullable=False),
            sa.Column("transaction_ref", sa.String(120), nullable=False),
            sa.Column("status", sa.String(16), nullable=False),
            sa.Column("http_code", sa.Integer(), nullable=True),
            sa.Column("provider_response", sa.Text(), nullable=True),
            sa.Column("error_message", sa.String(255), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )
        op.create_index("ix_delivery_logs_plan_id", "delivery_logs", ["plan_id"])
        op.create_index("ix_delivery_logs_user_id", "delivery_logs", ["user_id"])
        op.create_index("ix_delivery_logs_status", "delivery_logs", ["status"])
        op.create_index("ix_delivery_logs_created_at", "delivery_logs", ["created_at"])

    if not _table_exists("spin_rewards"):
        op.create_table(
            "spin_rewards",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("code", sa.String(32), nullable=False, unique=True),
            sa.Column("name", sa.String(80), nullable=False),
            sa.Column("reward_type", sa.String(16), nullable=False),
            _money("amount"),
            sa.Column("unit", sa.String(8), nullable=True),
            sa.Column("plan_code", sa.String(40), nullable=True),
            sa.Column("weight", sa.Numeric(7, 2), nullable=False, server_default="0"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        )

    if not _table_exists("spin_wins"):
        op.create_table(
            "spin_wins",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("reward_id", sa.Integer(), sa.ForeignKey("spin_rewards.id"), nullable=False),
            sa.Column("reward_type", sa.String(16), nullable=False),
            sa.Column("reward_name", sa.String(80), nullable=False, server_default=""),
            _money("amount"),
            sa.Column("unit", sa.String(8), nullable=True),
            sa.Column("plan_code", sa.String(40), nullable=True),
            sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
            sa.Column("meta", sa.Text(), nullable=True),
            sa.Column("spin_at", sa.DateTime(), nullable=False),
            sa.Column("delivered_at", sa.DateTime(), nullable=True),
        )
        op.create_index("ix_spin_wins_user_id", "spin_wins", ["user_id"])
        op.create_index("ix_spin_wins_status", "spin_wins", ["status"])
        op.create_index("ix_spin_wins_spin_at", "spin_wins", ["spin_at"])

    if not _table_exists("referrals"):
        op.create_table(
            "referrals",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("referrer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("referee_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            _money("reward_amount"),
            sa.Column("reward_claimed", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("claimed_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )
        op.create_index("ix_referrals_referrer_id", "referrals", ["referrer_id"])
        op.create_index("ix_referrals_referee_id", "referrals", ["referee_id"], unique=True)

    if not _table_exists("notifications"):
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("channel", sa.String(32), nullable=False, server_default="in_app"),
            sa.Column("event_type", sa.String(32), nullable=False, server_default="general"),
            sa.Column("title", sa.String(160), nullable=True),
            sa.Column("message", sa.Text(), nullable=False),
            sa.Column("status", sa.String(24), nullable=False, server_default="queued"),
            sa.Column("provider", sa.String(64), nullable=True),
            sa.Column("provider_ref", sa.String(120), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("sent_at", sa.DateTime(), nullable=True),
            sa.Column("meta", sa.Text(), nullable=True),
        )
        op.create_index("ix_notifications_user_id", "notifications", ["user_id"])

    if not _table_exists("audit_logs"):
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("actor_user_id", sa.Integer(), nullable=True),
            sa.Column("action", sa.String(64), nullable=False),
            sa.Column("target_type", sa.String(64), nullable=True),
            sa.Column("target_id", sa.Integer(), nullable=True),
            sa.Column("meta", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )
        op.create_index("ix_audit_logs_action", "audit_logs", ["action"])

    if not _table_exists("idempotency_keys"):
        op.create_table(
            "idempotency_keys",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("key", sa.String(128), nullable=False, unique=True),
            sa.Column("user_id", sa.Integer(), nullable=True),
            sa.Column("route", sa.String(128), nullable=False, server_default=""),
            sa.Column("request_hash", sa.String(64), nullable=False, server_default=""),
            sa.Column("response_json", sa.Text(), nullable=True),
            sa.Column("status_code", sa.Integer(), nullable=False, server_default="200"),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )


def downgrade():
    for table in (
        "idempotency_keys",
        "audit_logs",
        "notifications",
        "referrals",
        "spin_wins",
        "spin_rewards",
        "delivery_logs",
        "daily_data_plans",
        "issued_pins",
        "pin_products",
        "exam_products",
        "electricity_discos",
        "cable_plans",
        "airtime_rates",
        "data_plans",
        "vtu_transactions",
        "wallets",
        "users",
    ):
        op.drop_table(table)

"""initial schema

Revision ID: 0001_init
Revises: 
Create Date: 2026-10-17

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("telegram_id", sa.BigInteger(), nullable=False),
        sa.Column("telegram_username", sa.String(length=64), nullable=True),
        sa.Column("telegram_first_name", sa.String(length=128), nullable=True),
        sa.Column("telegram_last_name", sa.String(length=128), nullable=True),
        sa.Column("discord_id", sa.String(length=32), nullable=True),
        sa.Column("discord_username", sa.String(length=64), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("google_drive_email", sa.String(length=255), nullable=True),
        sa.Column("is_admin", sa.Boolean(), server_default=sa.text("false")),
        *_timestamps(),
    )
    op.create_index("ix_users_telegram_id", "users", ["telegram_id"], unique=True)
    op.create_index("ix_users_discord_id", "users", ["discord_id"])

    op.create_table(
        "tariffs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true")),
        sa.Column("is_archived", sa.Boolean(), server_default=sa.text("false")),
        sa.Column("is_custom", sa.Boolean(), server_default=sa.text("false")),
        sa.Column("sort_order", sa.Integer(), server_default="0"),
        *_timestamps(),
    )

    op.create_table(
        "tariff_prices",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("tariff_id", sa.Integer(), sa.ForeignKey("tariffs.id"), nullable=False),
        sa.Column("period_months", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(length=8), nullable=False, server_default="USD"),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true")),
        sa.UniqueConstraint("tariff_id", "period_months", name="uq_tariff_prices_period"),
    )
    op.create_index("ix_tariff_prices_tariff_id", "tariff_prices", ["tariff_id"])

    op.create_table(
        "user_available_tariffs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("tariff_id", sa.Integer(), sa.ForeignKey("tariffs.id"), nullable=False),
        sa.UniqueConstraint("user_id", "tariff_id", name="uq_user_available_tariff"),
    )
    op.create_index(
        "ix_user_available_tariffs_user_id", "user_available_tariffs", ["user_id"]
    )

    op.create_table(
        "subscription_tariff_settings",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column("days_after_expiry_switch", sa.Integer(), nullable=True),
        sa.Column(
            "actual_tariff_id", sa.Integer(), sa.ForeignKey("tariffs.id"), nullable=True
        ),
        sa.Column(
            "use_all_active_tariffs", sa.Boolean(), server_default=sa.text("false")
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("tariff_id", sa.Integer(), sa.ForeignKey("tariffs.id"), nullable=True),
        sa.Column(
            "tariff_price_id",
            sa.Integer(),
            sa.ForeignKey("tariff_prices.id"),
            nullable=True,
        ),
        sa.Column("period_months", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=8), nullable=False, server_default="USD"),
        sa.Column(
            "status",
            sa.Enum(
                "pending", "active", "expired", "cancelled", name="subscription_status"
            ),
            nullable=False,
        ),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_free", sa.Boolean(), server_default=sa.text("false")),
        sa.Column("discord_role_granted", sa.Boolean(), server_default=sa.text("false")),
        sa.Column("notion_access_granted", sa.Boolean(), server_default=sa.text("false")),
        sa.Column(
            "google_drive_access_granted", sa.Boolean(), server_default=sa.text("false")
        ),
        sa.Column("auto_renew", sa.Boolean(), server_default=sa.text("false")),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_subscriptions_user_id", "subscriptions", ["user_id"])
    op.create_index("ix_subscriptions_status", "subscriptions", ["status"])
    op.create_index("ix_subscriptions_end_date", "subscriptions", ["end_date"])

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "subscription_id",
            sa.Integer(),
            sa.ForeignKey("subscriptions.id"),
            nullable=False,
        ),
        sa.Column("provider", sa.String(length=64), nullable=False),
        sa.Column("external_id", sa.String(length=128), nullable=True, unique=True),
        sa.Column(
            "status",
            sa.Enum(
                "pending",
                "completed",
                "failed",
                "refunded",
                "cancelled",
                name="payment_status",
            ),
            nullable=False,
        ),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(length=8), nullable=False, server_default="USD"),
        sa.Column(
            "provider_data",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("error_message", sa.String(length=255), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_payments_user_id", "payments", ["user_id"])
    op.create_index("ix_payments_subscription_id", "payments", ["subscription_id"])

    op.create_table(
        "telegram_bot_texts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("key", sa.String(length=100), nullable=False, unique=True),
        sa.Column("section", sa.String(length=50), nullable=False, server_default="common"),
        sa.Column("value", sa.Text(), nullable=True),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.Column("sort_order", sa.Integer(), server_default="0"),
        sa.Column("notification_condition", postgresql.JSONB(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_telegram_bot_texts_section", "telegram_bot_texts", ["section"])

    op.create_table(
        "subscription_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column(
            "subscription_id",
            sa.Integer(),
            sa.ForeignKey("subscriptions.id"),
            nullable=True,
        ),
        sa.Column("action", sa.String(length=128), nullable=False),
        sa.Column(
            "details",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_subscription_logs_user_id", "subscription_logs", ["user_id"])
    op.create_index(
        "ix_subscription_logs_subscription_id", "subscription_logs", ["subscription_id"]
    )

    op.execute(
        "INSERT INTO subscription_tariff_settings "
        "(id, days_after_expiry_switch, use_all_active_tariffs, updated_at) "
        "VALUES ('default', 5, false, now())"
    )


def downgrade() -> None:
    op.drop_table("subscription_logs")
    op.drop_table("telegram_bot_texts")
    op.drop_table("payments")
    op.drop_table("subscriptions")
    op.drop_table("subscription_tariff_settings")
    op.drop_table("user_available_tariffs")
    op.drop_table("tariff_prices")
    op.drop_table("tariffs")
    op.drop_table("users")
    op.execute("DROP TYPE IF EXISTS payment_status")
    op.execute("DROP TYPE IF EXISTS subscription_status")

"""001 – subscriptions, platform settings and audit events

Revision ID: 001_gatekeeper_schema
Revises:
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "001_gatekeeper_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    conn = op.get_bind()
    inspector = sa.inspect(conn)

    if not inspector.has_table("subscriptions"):
        plan_tier = postgresql.ENUM(
            "starter", "growth", "pro", name="plantier", create_type=False
        )
        plan_tier.create(conn, checkfirst=True)

        op.create_table(
            "subscriptions",
            sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
            sa.Column("business_id", sa.String(64), nullable=False),
            sa.Column(
                "plan",
                sa.Enum("starter", "growth", "pro", name="plantier", create_type=False),
                nullable=False,
                server_default="starter",
            ),
            sa.Column("status", sa.String(40), nullable=False),
            sa.Column("stripe_customer_id", sa.String(255), nullable=True),
            sa.Column("stripe_subscription_id", sa.String(255), nullable=True),
            sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
            sa.Column(
                "cancel_at_period_end", sa.Boolean(), server_default=sa.text("false")
            ),
            sa.Column("ends_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("paid_until", sa.DateTime(timezone=True), nullable=True),
            sa.Column("last_event_at", sa.Integer(), nullable=True),
            sa.Column(
                "created_at",
                sa.DateTime(timezone=True),
                server_default=sa.func.now(),
            ),
            sa.UniqueConstraint("business_id", name="uq_subscriptions_business_id"),
        )
        op.create_index(
            "ix_subscriptions_stripe_subscription_id",
            "subscriptions",
            ["stripe_subscription_id"],
        )

    if not inspector.has_table("platform_settings"):
        op.create_table(
            "platform_settings",
            sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
            sa.Column("key", sa.String(120), nullable=False),
            sa.Column("value_text", sa.Text(), nullable=True),
            sa.Column("value_json", sa.JSON(), nullable=True),
            sa.Column(
                "created_at",
                sa.DateTime(timezone=True),
                server_default=sa.func.now(),
            ),
            sa.Column(
                "updated_at",
                sa.DateTime(timezone=True),
                server_default=sa.func.now(),
            ),
            sa.UniqueConstraint("key", name="uq_platform_settings_key"),
        )

    if not inspector.has_table("audit_events"):
        op.create_table(
            "audit_events",
            sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
            sa.Column(
                "occurred_at",
                sa.DateTime(timezone=True),
                server_default=sa.func.now(),
            ),
            sa.Column("actor_id", sa.String(120), nullable=True),
            sa.Column("action", sa.String(80), nullable=False),
            sa.Column("entity_type", sa.String(160), nullable=False),
            sa.Column("entity_id", sa.String(120), nullable=True),
            sa.Column("metadata", sa.JSON(), nullable=True),
        )
        op.create_index(
            "ix_audit_events_entity", "audit_events", ["entity_type", "entity_id"]
        )


def downgrade() -> None:
    op.drop_table("audit_events")
    op.drop_table("platform_settings")
    op.drop_table("subscriptions")
    op.execute("DROP TYPE IF EXISTS plantier")

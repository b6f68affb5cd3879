"""initial schema: tenants, users, plans, billing, rbac

Revision ID: 3c1f0a9d2b7e
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "3c1f0a9d2b7e"
down_revision = None
branch_labels = None
depends_on = None


def _uuid_pk() -> sa.Column:
    return sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True)


def _ts(name: str, nullable: bool = False, server_default: bool = True) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        server_default=sa.text("now()") if server_default else None,
        nullable=nullable,
    )


def _fk(name: str, target: str, ondelete: str = "CASCADE", nullable: bool = False) -> sa.Column:
    return sa.Column(
        name,
        postgresql.UUID(as_uuid=True),
        sa.ForeignKey(target, ondelete=ondelete),
        nullable=nullable,
    )


def upgrade() -> None:
    op.create_table(
        "tenants",
        _uuid_pk(),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("slug", sa.String(length=100), nullable=False),
        sa.Column("type", sa.String(length=20), nullable=False),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_index("ix_tenants_slug", "tenants", ["slug"], unique=True)

    op.create_table(
        "users",
        _uuid_pk(),
        _fk("tenant_id", "tenants.id"),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("avatar", sa.String(length=500), nullable=True),
        sa.Column("two_factor_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("two_factor_secret", sa.String(length=64), nullable=True),
        sa.Column(
            "two_factor_backup_codes",
            postgresql.ARRAY(sa.String()),
            nullable=False,
            server_default=sa.text("'{}'"),
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _ts("deleted_at", nullable=True, server_default=False),
        _ts("created_at"),
        _ts("updated_at"),
        sa.UniqueConstraint("tenant_id", "email", name="uq_users_tenant_email"),
    )
    op.create_index("ix_users_tenant_id", "users", ["tenant_id"])
    op.create_index("ix_users_email", "users", ["email"])

    op.create_table(
        "plans",
        _uuid_pk(),
        sa.Column("name", sa.String(length=50), nullable=False, unique=True),
        sa.Column("price", sa.Numeric(10, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="BRL"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("max_users", sa.Integer(), nullable=True),
        sa.Column("max_contacts", sa.Integer(), nullable=True),
        sa.Column("has_api", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("trial_duration_hours", sa.Integer(), nullable=True),
        sa.Column("billing_period_days", sa.Integer(), nullable=False, server_default=sa.text("30")),
        sa.Column("stripe_product_id", sa.String(length=100), nullable=True),
        sa.Column("stripe_price_id", sa.String(length=100), nullable=True, unique=True),
        _ts("created_at"),
        _ts("updated_at"),
    )

    op.create_table(
        "subscriptions",
        _uuid_pk(),
        _fk("tenant_id", "tenants.id"),
        _fk("plan_id", "plans.id", ondelete="RESTRICT"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="ACTIVE"),
        _ts("started_at"),
        _ts("expires_at", nullable=True, server_default=False),
        _ts("canceled_at", nullable=True, server_default=False),
        _ts("renewed_at", nullable=True, server_default=False),
        sa.Column("stripe_customer_id", sa.String(length=100), nullable=True),
        sa.Column("stripe_subscription_id", sa.String(length=100), nullable=True),
        _ts("created_at"),
        _ts("updated_at"),
        sa.UniqueConstraint("tenant_id", name="uq_subscriptions_tenant_id"),
    )
    op.create_index("ix_subscriptions_stripe_subscription_id", "subscriptions", ["stripe_subscription_id"])

    op.create_table(
        "subscription_history",
        _uuid_pk(),
        _fk("tenant_id", "tenants.id"),
        _fk("subscription_id", "subscriptions.id"),
        sa.Column("action", sa.String(length=20), nullable=False),
        sa.Column("previous_plan_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("previous_plan_name", sa.String(length=50), nullable=True),
        sa.Column("previous_plan_price", sa.Numeric(10, 2), nullable=True),
        _ts("previous_expires_at", nullable=True, server_default=False),
        sa.Column("new_plan_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("new_plan_name", sa.String(length=50), nullable=True),
        sa.Column("new_plan_price", sa.Numeric(10, 2), nullable=True),
        _ts("new_expires_at", nullable=True, server_default=False),
        sa.Column("reason", sa.String(length=255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("triggered_by", sa.String(length=50), nullable=True),
        _ts("created_at"),
    )
    op.create_index(
        "ix_subscription_history_tenant_created",
        "subscription_history",
        ["tenant_id", "created_at"],
    )

    op.create_table(
        "stripe_checkout_sessions",
        _uuid_pk(),
        sa.Column("session_id", sa.String(length=255), nullable=False),
        sa.Column("stripe_customer_id", sa.String(length=100), nullable=True),
        sa.Column("company_name", sa.String(length=200), nullable=False),
        sa.Column("contact_name", sa.String(length=200), nullable=False),
        sa.Column("contact_email", sa.String(length=320), nullable=False),
        sa.Column("domain", sa.String(length=100), nullable=True),
        _fk("plan_id", "plans.id"),
        sa.Column("plan_name", sa.String(length=50), nullable=False),
        sa.Column("success_token", sa.String(length=128), nullable=False, unique=True),
        _ts("expires_at", server_default=False),
        sa.Column("completed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _ts("completed_at", nullable=True, server_default=False),
        _ts("created_at"),
    )
    op.create_index(
        "ix_stripe_checkout_sessions_session_id", "stripe_checkout_sessions", ["session_id"], unique=True
    )
    op.create_index("ix_stripe_checkout_sessions_contact_email", "stripe_checkout_sessions", ["contact_email"])

    op.create_table(
        "password_resets",
        _uuid_pk(),
        _fk("user_id", "users.id"),
        sa.Column("token", sa.String(length=128), nullable=False),
        _ts("expires_at", server_default=False),
        _ts("used_at", nullable=True, server_default=False),
        _ts("created_at"),
    )
    op.create_index("ix_password_resets_user_id", "password_resets", ["user_id"])
    op.create_index("ix_password_resets_token", "password_resets", ["token"], unique=True)

    op.create_table(
        "email_logs",
        _uuid_pk(),
        _fk("tenant_id", "tenants.id"),
        sa.Column("type", sa.String(length=30), nullable=False),
        sa.Column("limit_type", sa.String(length=30), nullable=True),
        _ts("sent_at"),
    )
    op.create_index("ix_email_logs_tenant_type_sent", "email_logs", ["tenant_id", "type", "sent_at"])

    op.create_table(
        "roles",
        _uuid_pk(),
        sa.Column("name", sa.String(length=20), nullable=False, unique=True),
        sa.Column("description", sa.String(length=255), nullable=True),
        _ts("created_at"),
    )

    op.create_table(
        "permissions",
        _uuid_pk(),
        sa.Column("name", sa.String(length=100), nullable=False, unique=True),
        sa.Column("module", sa.String(length=50), nullable=False),
        sa.Column("action", sa.String(length=50), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=True),
        _ts("created_at"),
    )
    op.create_index("ix_permissions_module", "permissions", ["module"])

    op.create_table(
        "role_permissions",
        _uuid_pk(),
        _fk("role_id", "roles.id"),
        _fk("permission_id", "permissions.id"),
        sa.UniqueConstraint("role_id", "permission_id", name="uq_role_permissions_role_permission"),
    )

    op.create_table(
        "user_roles",
        _uuid_pk(),
        _fk("user_id", "users.id"),
        _fk("role_id", "roles.id"),
        _fk("tenant_id", "tenants.id"),
        sa.Column("assigned_by", postgresql.UUID(as_uuid=True), nullable=True),
        _ts("assigned_at"),
        _ts("expires_at", nullable=True, server_default=False),
        sa.UniqueConstraint("user_id", "role_id", "tenant_id", name="uq_user_roles_user_role_tenant"),
    )
    op.create_index("ix_user_roles_user_id", "user_roles", ["user_id"])
    op.create_index("ix_user_roles_tenant_id", "user_roles", ["tenant_id"])


def downgrade() -> None:
    op.drop_table("user_roles")
    op.drop_table("role_permissions")
    op.drop_table("permissions")
    op.drop_table("roles")
    op.drop_table("email_logs")
    op.drop_table("password_resets")
    op.drop_table("stripe_checkout_sessions")
    op.drop_table("subscription_history")
    op.drop_table("subscriptions")
    op.drop_table("plans")
    op.drop_table("users")
    op.drop_table("tenants")

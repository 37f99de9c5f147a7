"""init queue schema

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""

from __future__ import annotations

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "20261018_0001"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

DEPARTMENTS = ("personal", "fiscal", "accounting", "financial")
OPERATOR_PROFILES = ("admin", "supervisor", "operator")
SESSION_STATUSES = ("bot", "waiting", "service", "completed", "cancelled")
DIRECTIONS = ("inbound", "outbound")
MESSAGE_STATUSES = ("pending", "sent", "delivered", "read", "failed")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    department = sa.Enum(*DEPARTMENTS, name="department")
    operator_profile = sa.Enum(*OPERATOR_PROFILES, name="operator_profile")
    session_status = sa.Enum(*SESSION_STATUSES, name="session_status")
    session_direction = sa.Enum(*DIRECTIONS, name="session_direction")
    message_direction = sa.Enum(*DIRECTIONS, name="message_direction")
    message_status = sa.Enum(*MESSAGE_STATUSES, name="message_status")

    bind = op.get_bind()
    for enum_type in (
        department,
        operator_profile,
        session_status,
        session_direction,
        message_direction,
        message_status,
    ):
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "operators",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column(
            "department",
            sa.Enum(*DEPARTMENTS, name="department", create_type=False),
            nullable=True,
        ),
        sa.Column(
            "profile",
            sa.Enum(*OPERATOR_PROFILES, name="operator_profile", create_type=False),
            nullable=False,
            server_default=sa.text("'operator'"),
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email", name="uq_operators_email"),
    )
    op.create_index("ix_operators_department", "operators", ["department"], unique=False)

    op.create_table(
        "customers",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("address", sa.String(length=64), nullable=False),
        sa.Column("push_name", sa.String(length=255), nullable=True),
        sa.Column("is_group", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("address", name="uq_customers_address"),
    )

    op.create_table(
        "chat_sessions",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("session_key", sa.String(length=120), nullable=False),
        sa.Column("customer_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("customer_address", sa.String(length=64), nullable=False),
        sa.Column("instance", sa.String(length=120), nullable=False),
        sa.Column(
            "status",
            sa.Enum(*SESSION_STATUSES, name="session_status", create_type=False),
            nullable=False,
            server_default=sa.text("'bot'"),
        ),
        sa.Column(
            "direction",
            sa.Enum(*DIRECTIONS, name="session_direction", create_type=False),
            nullable=False,
            server_default=sa.text("'inbound'"),
        ),
        sa.Column(
            "department",
            sa.Enum(*DEPARTMENTS, name="department", create_type=False),
            nullable=True,
        ),
        sa.Column("requested_operator_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("assigned_operator_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("supervisor_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("bot_payload", sa.JSON(), nullable=True),
        sa.Column("metadata_json", sa.JSON(), nullable=True),
        sa.Column("bot_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["requested_operator_id"], ["operators.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["assigned_operator_id"], ["operators.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["supervisor_id"], ["operators.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("session_key", name="uq_chat_sessions_session_key"),
    )
    for column in (
        "customer_id",
        "customer_address",
        "status",
        "department",
        "requested_operator_id",
        "assigned_operator_id",
        "supervisor_id",
    ):
        op.create_index(f"ix_chat_sessions_{column}", "chat_sessions", [column], unique=False)
    op.create_index(
        "uq_chat_sessions_active_address",
        "chat_sessions",
        ["customer_address"],
        unique=True,
        postgresql_where=sa.text("status IN ('bot', 'waiting', 'service')"),
    )

    op.create_table(
        "messages",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("gateway_message_id", sa.String(length=255), nullable=False),
        sa.Column("session_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("address", sa.String(length=64), nullable=False),
        sa.Column("remote_jid", sa.String(length=120), nullable=False),
        sa.Column("instance", sa.String(length=120), nullable=False),
        sa.Column("from_me", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("push_name", sa.String(length=255), nullable=True),
        sa.Column(
            "message_type",
            sa.String(length=60),
            nullable=False,
            server_default=sa.text("'conversation'"),
        ),
        sa.Column(
            "direction",
            sa.Enum(*DIRECTIONS, name="message_direction", create_type=False),
            nullable=False,
        ),
        sa.Column(
            "status",
            sa.Enum(*MESSAGE_STATUSES, name="message_status", create_type=False),
            nullable=False,
            server_default=sa.text("'pending'"),
        ),
        sa.Column("content", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("message_timestamp", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["session_id"], ["chat_sessions.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("gateway_message_id", name="uq_messages_gateway_message_id"),
    )
    op.create_index("ix_messages_session_id", "messages", ["session_id"], unique=False)
    op.create_index("ix_messages_address", "messages", ["address"], unique=False)

    op.create_table(
        "tabulations",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("session_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("outcome_code", sa.String(length=80), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("tabulated_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["session_id"], ["chat_sessions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["tabulated_by"], ["operators.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_tabulations_session_id", "tabulations", ["session_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_tabulations_session_id", table_name="tabulations")
    op.drop_table("tabulations")

    op.drop_index("ix_messages_address", table_name="messages")
    op.drop_index("ix_messages_session_id", table_name="messages")
    op.drop_table("messages")

    op.drop_index("uq_chat_sessions_active_address", table_name="chat_sessions")
    for column in (
        "supervisor_id",
        "assigned_operator_id",
        "requested_operator_id",
        "department",
        "status",
        "customer_address",
        "customer_id",
    ):
        op.drop_index(f"ix_chat_sessions_{column}", table_name="chat_sessions")
    op.drop_table("chat_sessions")

    op.drop_table("customers")
    op.drop_index("ix_operators_department", table_name="operators")
    op.drop_table("operators")

    bind = op.get_bind()
    for name in (
        "message_status",
        "message_direction",
        "session_direction",
        "session_status",
        "operator_profile",
        "department",
    ):
        sa.Enum(name=name).drop(bind, checkfirst=True)

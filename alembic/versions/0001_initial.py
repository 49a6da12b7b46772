"""class lifecycle and credit ledger schema

Revision ID: 0001_initial
Revises: None
Create Date: 2026-10-19
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("display_name", sa.String(length=255), nullable=False),
        sa.Column("roles", JSON_TYPE, nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "profiles",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("is_trial", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("trial_completed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("converted_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "credit_balances",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("balance_half_credits", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.CheckConstraint("balance_half_credits >= 0", name="ck_credit_balance_non_negative"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_credit_balances_user_id", "credit_balances", ["user_id"], unique=True)

    op.create_table(
        "class_sessions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("student_id", sa.Integer(), nullable=False),
        sa.Column("teacher_id", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("time", sa.Time(), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False, server_default="60"),
        sa.Column("meeting_link", sa.String(length=1200), nullable=True),
        sa.Column("is_trial", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("price_half_credits", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="scheduled"),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("refund_issued", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by", sa.String(length=64), nullable=True),
        sa.Column("rescheduled_to_id", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("duration_minutes > 0", name="ck_class_session_duration_positive"),
        sa.CheckConstraint("price_half_credits >= 0", name="ck_class_session_price_non_negative"),
        sa.CheckConstraint("student_id <> teacher_id", name="ck_class_session_student_teacher_diff"),
        sa.CheckConstraint(
            "status in ('scheduled','in_progress','completed','cancelled','no_show','rescheduled')",
            name="ck_class_session_status",
        ),
        sa.ForeignKeyConstraint(["student_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["teacher_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["rescheduled_to_id"], ["class_sessions.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_class_sessions_status_date", "class_sessions", ["status", "date"], unique=False)
    op.create_index("ix_class_sessions_student_date", "class_sessions", ["student_id", "date"], unique=False)
    op.create_index("ix_class_sessions_teacher_date", "class_sessions", ["teacher_id", "date"], unique=False)

    op.create_table(
        "class_session_attendance",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("class_session_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["class_session_id"], ["class_sessions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("class_session_id", "user_id", name="uq_class_session_attendance_user"),
    )
    op.create_index(
        "ix_class_session_attendance_class_session_id",
        "class_session_attendance",
        ["class_session_id"],
        unique=False,
    )
    op.create_index("ix_class_session_attendance_user_id", "class_session_attendance", ["user_id"], unique=False)

    op.create_table(
        "credit_transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("amount_half_credits", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(length=12), nullable=False),
        sa.Column("reason", sa.String(length=500), nullable=False),
        sa.Column("performed_by", sa.String(length=64), nullable=False),
        sa.Column("balance_after_half_credits", sa.Integer(), nullable=False),
        sa.Column("class_session_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("type in ('add','deduct','refund')", name="ck_credit_transaction_type"),
        sa.CheckConstraint(
            "(type = 'deduct' AND amount_half_credits < 0) OR (type <> 'deduct' AND amount_half_credits > 0)",
            name="ck_credit_transaction_amount_sign",
        ),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["class_session_id"], ["class_sessions.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_credit_transactions_user_id", "credit_transactions", ["user_id"], unique=False)
    op.create_index(
        "ix_credit_transactions_class_session_id",
        "credit_transactions",
        ["class_session_id"],
        unique=False,
    )
    op.create_index(
        "ix_credit_transactions_user_created",
        "credit_transactions",
        ["user_id", "created_at"],
        unique=False,
    )

    op.create_table(
        "platform_settings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("key", sa.String(length=80), nullable=False),
        sa.Column("value", JSON_TYPE, nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("updated_by", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["updated_by"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_platform_settings_key", "platform_settings", ["key"], unique=True)


def downgrade() -> None:
    op.drop_index("ix_platform_settings_key", table_name="platform_settings")
    op.drop_table("platform_settings")
    op.drop_index("ix_credit_transactions_user_created", table_name="credit_transactions")
    op.drop_index("ix_credit_transactions_class_session_id", table_name="credit_transactions")
    op.drop_index("ix_credit_transactions_user_id", table_name="credit_transactions")
    op.drop_table("credit_transactions")
    op.drop_index("ix_class_session_attendance_user_id", table_name="class_session_attendance")
    op.drop_index("ix_class_session_attendance_class_session_id", table_name="class_session_attendance")
    op.drop_table("class_session_attendance")
    op.drop_index("ix_class_sessions_teacher_date", table_name="class_sessions")
    op.drop_index("ix_class_sessions_student_date", table_name="class_sessions")
    op.drop_index("ix_class_sessions_status_date", table_name="class_sessions")
    op.drop_table("class_sessions")
    op.drop_index("ix_credit_balances_user_id", table_name="credit_balances")
    op.drop_table("credit_balances")
    op.drop_table("profiles")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")

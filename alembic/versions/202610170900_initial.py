"""initial schema

Revision ID: 202610170900
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op


revision = "202610170900"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "sources",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "kind",
            sa.Enum("bank", "e-wallet", "cash", "other", name="sourcekind"),
            nullable=False,
        ),
        sa.Column("balance_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "opening_balance_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column(
            "status",
            sa.Enum("available", "locked", "unavailable", name="sourcestatus"),
            nullable=False,
        ),
        sa.Column("interest_rate", sa.Float()),
        sa.Column("interest_period", sa.String(length=40)),
        sa.Column(
            "transfer_latency",
            sa.String(length=60),
            nullable=False,
            server_default="Instant",
        ),
        sa.Column("version", sa.Integer(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_sources_user", "sources", ["user_id"])

    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "type", sa.Enum("income", "expense", name="transactiontype"), nullable=False
        ),
        sa.Column("color", sa.String(length=7)),
        *_timestamps(),
        sa.UniqueConstraint(
            "user_id", "type", "name", name="uq_category_user_type_name"
        ),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column(
            "type", sa.Enum("income", "expense", name="transactiontype"), nullable=False
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column(
            "source_id", sa.Integer(), sa.ForeignKey("sources.id"), nullable=False
        ),
        sa.Column(
            "provenance",
            sa.Enum(
                "manual", "prediction_confirmed", "ai_assisted", name="provenance"
            ),
            nullable=False,
        ),
        sa.Column("origin_event_id", sa.Integer()),
        sa.Column("version", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
    )
    op.create_index(
        "ix_transactions_user_date", "transactions", ["user_id", "date"]
    )
    op.create_index("ix_transactions_source", "transactions", ["source_id"])

    op.create_table(
        "calendar_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("title", sa.String(length=120), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column(
            "type",
            sa.Enum("income", "expense", "reminder", "prediction", name="eventtype"),
            nullable=False,
        ),
        sa.Column("amount_cents", sa.Integer()),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column(
            "is_recurring", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column(
            "frequency",
            sa.Enum(
                "daily",
                "weekly",
                "bi-weekly",
                "monthly",
                "quarterly",
                "yearly",
                name="frequency",
            ),
        ),
        sa.Column("recurrence_count", sa.Integer()),
        sa.Column("end_date", sa.Date()),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id")),
        sa.Column("source_id", sa.Integer(), sa.ForeignKey("sources.id")),
        sa.Column("prediction_confidence", sa.Float()),
        sa.Column("prediction_pattern", sa.String(length=120)),
        sa.Column("prediction_generator", sa.String(length=60)),
        sa.Column("prediction_generated_at", sa.DateTime()),
        *_timestamps(),
        sa.CheckConstraint(
            "NOT is_recurring OR frequency IS NOT NULL",
            name="ck_event_recurring_frequency",
        ),
        sa.CheckConstraint(
            "recurrence_count IS NULL OR recurrence_count > 0",
            name="ck_event_count_positive",
        ),
        sa.CheckConstraint(
            "amount_cents IS NULL OR amount_cents >= 0",
            name="ck_event_amount_positive",
        ),
        sqlite_autoincrement=True,
    )
    op.create_index(
        "ix_events_user_start", "calendar_events", ["user_id", "start_date"]
    )
    op.create_index(
        "ix_events_user_recurring", "calendar_events", ["user_id", "is_recurring"]
    )

    op.create_table(
        "prediction_resolutions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("event_id", sa.Integer(), nullable=False),
        sa.Column(
            "resolution",
            sa.Enum("accepted", "dismissed", "expired", name="resolution"),
            nullable=False,
        ),
        sa.Column(
            "transaction_id",
            sa.Integer(),
            sa.ForeignKey("transactions.id", ondelete="SET NULL"),
        ),
        sa.Column("title", sa.String(length=120)),
        sa.Column("amount_cents", sa.Integer()),
        sa.Column("resolved_at", sa.DateTime(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("event_id", name="uq_prediction_resolution_event"),
    )
    op.create_index(
        "ix_prediction_resolution_user",
        "prediction_resolutions",
        ["user_id", "resolved_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_prediction_resolution_user", table_name="prediction_resolutions")
    op.drop_table("prediction_resolutions")
    op.drop_index("ix_events_user_recurring", table_name="calendar_events")
    op.drop_index("ix_events_user_start", table_name="calendar_events")
    op.drop_table("calendar_events")
    op.drop_index("ix_transactions_source", table_name="transactions")
    op.drop_index("ix_transactions_user_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("categories")
    op.drop_index("ix_sources_user", table_name="sources")
    op.drop_table("sources")

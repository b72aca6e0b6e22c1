"""initial ledger schema

Revision ID: 202610190900
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None

transaction_type = sa.Enum("income", "expense", name="transactiontype")


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "accounts",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("budget_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "type",
            sa.Enum("cash", "checking", "savings", "credit_card", name="accounttype"),
            nullable=False,
        ),
        sa.Column(
            "category",
            sa.Enum(
                "personal", "business", "investment", "shared", name="accountcategory"
            ),
            nullable=False,
        ),
        sa.Column("balance_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "cleared_balance_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("is_archived", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("notes", sa.Text()),
        sa.Column("last_reconciled_at", sa.Date()),
        sa.Column("last_reconciled_cents", sa.Integer()),
        *_timestamps(),
    )
    op.create_index("ix_accounts_budget", "accounts", ["budget_id"])

    op.create_table(
        "category_groups",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("budget_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("emoji", sa.String(length=16)),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
    )
    op.create_index(
        "ix_category_groups_budget", "category_groups", ["budget_id", "position"]
    )

    op.create_table(
        "categories",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("budget_id", sa.String(length=64), nullable=False),
        sa.Column(
            "group_id",
            sa.String(length=36),
            sa.ForeignKey("category_groups.id"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("emoji", sa.String(length=16)),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("allocated_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("spent_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("target_type", sa.String(length=20)),
        sa.Column("target_amount_cents", sa.Integer()),
        sa.Column("target_due", sa.Date()),
        sa.Column("target_interval_type", sa.String(length=20)),
        sa.Column("target_interval_value", sa.Integer()),
        *_timestamps(),
        sa.CheckConstraint(
            "target_amount_cents IS NULL OR target_amount_cents >= 0",
            name="ck_category_target_amount_positive",
        ),
    )
    op.create_index(
        "ix_categories_budget_group",
        "categories",
        ["budget_id", "group_id", "position"],
    )

    op.create_table(
        "planned_transactions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("budget_id", sa.String(length=64), nullable=False),
        sa.Column("title", sa.String(length=120), nullable=False),
        sa.Column("type", transaction_type, nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "account_id",
            sa.String(length=36),
            sa.ForeignKey("accounts.id"),
            nullable=False,
        ),
        sa.Column("category_id", sa.String(length=36), sa.ForeignKey("categories.id")),
        sa.Column("note", sa.Text()),
        sa.Column(
            "mode",
            sa.Enum("automatic", "manual", name="plannedmode"),
            nullable=False,
        ),
        sa.Column("recurrence_type", sa.String(length=20), nullable=False),
        sa.Column("recurrence_interval", sa.Integer()),
        sa.Column(
            "recurrence_period",
            sa.Enum("day", "week", "month", "year", name="intervalunit"),
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("next_due_date", sa.Date(), nullable=False),
        sa.Column("last_processed_date", sa.Date()),
        *_timestamps(),
        sa.CheckConstraint(
            "recurrence_interval IS NULL OR recurrence_interval > 0",
            name="ck_planned_interval_positive",
        ),
        sa.CheckConstraint("amount_cents > 0", name="ck_planned_amount_positive"),
    )
    op.create_index(
        "ix_planned_budget_due",
        "planned_transactions",
        ["budget_id", "is_active", "next_due_date"],
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("budget_id", sa.String(length=64), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("payee", sa.String(length=200), nullable=False),
        sa.Column("type", transaction_type, nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "account_id",
            sa.String(length=36),
            sa.ForeignKey("accounts.id"),
            nullable=False,
        ),
        sa.Column("to_account_id", sa.String(length=36), sa.ForeignKey("accounts.id")),
        sa.Column("category_id", sa.String(length=36), sa.ForeignKey("categories.id")),
        sa.Column("note", sa.Text()),
        sa.Column("transfer_id", sa.String(length=36)),
        sa.Column("planned_id", sa.String(length=36)),
        sa.Column("occurrence_date", sa.Date()),
        *_timestamps(),
        sa.UniqueConstraint(
            "budget_id",
            "planned_id",
            "occurrence_date",
            name="uq_txn_planned_occurrence",
        ),
        sa.CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
    )
    op.create_index(
        "ix_transactions_budget_date", "transactions", ["budget_id", "date"]
    )
    op.create_index(
        "ix_transactions_budget_account_date",
        "transactions",
        ["budget_id", "account_id", "date"],
    )


def downgrade():
    op.drop_index("ix_transactions_budget_account_date", table_name="transactions")
    op.drop_index("ix_transactions_budget_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_planned_budget_due", table_name="planned_transactions")
    op.drop_table("planned_transactions")
    op.drop_index("ix_categories_budget_group", table_name="categories")
    op.drop_table("categories")
    op.drop_index("ix_category_groups_budget", table_name="category_groups")
    op.drop_table("category_groups")
    op.drop_index("ix_accounts_budget", table_name="accounts")
    op.drop_table("accounts")

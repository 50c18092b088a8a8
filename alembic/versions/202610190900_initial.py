"""accounts, conti, categories and transactions

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

TRANSACTION_TYPES = ("income", "expense", "transfer")
CONTO_TYPES = ("checking", "savings", "credit", "investment", "cash", "other")
FREQUENCIES = (
    "daily",
    "weekly",
    "biweekly",
    "monthly",
    "quarterly",
    "semiannually",
    "yearly",
)


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "conti",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("type", sa.Enum(*CONTO_TYPES, name="contotype"), nullable=False),
        sa.Column("initial_balance_cents", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("color", sa.String(length=9)),
        sa.Column("description", sa.Text()),
        *_timestamps(),
        sa.UniqueConstraint("account_id", "name", name="uq_conto_account_name"),
    )

    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("account_id", sa.Integer(), sa.ForeignKey("accounts.id")),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "type", sa.Enum(*TRANSACTION_TYPES, name="transactiontype"), nullable=False
        ),
        sa.Column("color", sa.String(length=7)),
        *_timestamps(),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("occurred_at", sa.DateTime(), nullable=False),
        sa.Column(
            "type", sa.Enum(*TRANSACTION_TYPES, name="transactiontype"), nullable=False
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("from_conto_id", sa.Integer(), sa.ForeignKey("conti.id")),
        sa.Column("to_conto_id", sa.Integer(), sa.ForeignKey("conti.id")),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id")),
        sa.Column("note", sa.Text()),
        sa.Column("deleted_at", sa.DateTime()),
        sa.Column("is_recurring", sa.Boolean(), nullable=False),
        sa.Column(
            "recurrence_frequency", sa.Enum(*FREQUENCIES, name="recurrencefrequency")
        ),
        sa.Column("recurrence_end_date", sa.Date()),
        sa.Column(
            "recurring_parent_id", sa.Integer(), sa.ForeignKey("transactions.id")
        ),
        sa.Column("occurrence_date", sa.Date()),
        *_timestamps(),
        sa.UniqueConstraint(
            "recurring_parent_id", "occurrence_date", name="uq_txn_parent_occurrence"
        ),
        sa.CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
        sa.CheckConstraint(
            "type != 'transfer' OR from_conto_id IS NULL "
            "OR to_conto_id IS NULL OR from_conto_id != to_conto_id",
            name="ck_transactions_transfer_distinct",
        ),
    )
    op.create_index("ix_transactions_occurred_at", "transactions", ["occurred_at"])
    op.create_index(
        "ix_transactions_from_conto_at",
        "transactions",
        ["from_conto_id", "occurred_at"],
    )
    op.create_index(
        "ix_transactions_to_conto_at", "transactions", ["to_conto_id", "occurred_at"]
    )


def downgrade():
    op.drop_index("ix_transactions_to_conto_at", table_name="transactions")
    op.drop_index("ix_transactions_from_conto_at", table_name="transactions")
    op.drop_index("ix_transactions_occurred_at", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("categories")
    op.drop_table("conti")
    op.drop_table("accounts")

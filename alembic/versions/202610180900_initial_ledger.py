"""initial ledger schema

Revision ID: 202610180900
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610180900"
down_revision = None
branch_labels = None
depends_on = None

AUTO_DEBIT_ROWS = "source = 'auto-debit'"


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "bank_accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("account_name", sa.String(length=120), nullable=False),
        sa.Column("bank_name", sa.String(length=120), nullable=False),
        sa.Column("account_type", sa.String(length=40), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("balance_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("notes", sa.Text()),
        *_timestamps(),
    )
    op.create_index("ix_bank_accounts_user", "bank_accounts", ["user_id"])

    op.create_table(
        "credit_cards",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("card_name", sa.String(length=120), nullable=False),
        sa.Column("bank_name", sa.String(length=120), nullable=False),
        sa.Column("credit_limit_cents", sa.Integer(), nullable=False),
        sa.Column(
            "used_amount_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("due_day", sa.Integer()),
        sa.Column("notes", sa.Text()),
        *_timestamps(),
        sa.CheckConstraint("credit_limit_cents >= 0", name="ck_card_limit_positive"),
    )
    op.create_index("ix_credit_cards_user", "credit_cards", ["user_id"])

    op.create_table(
        "loans",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("loan_type", sa.String(length=40), nullable=False),
        sa.Column("lender_name", sa.String(length=120), nullable=False),
        sa.Column("principal_cents", sa.Integer(), nullable=False),
        sa.Column("interest_rate", sa.Float(), nullable=False, server_default="0"),
        sa.Column("emi_amount_cents", sa.Integer(), nullable=False),
        sa.Column("outstanding_cents", sa.Integer(), nullable=False),
        sa.Column("auto_debit", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("emi_date", sa.Integer()),
        sa.Column(
            "linked_bank_account_id",
            sa.Integer(),
            sa.ForeignKey("bank_accounts.id", ondelete="SET NULL"),
        ),
        sa.Column("start_date", sa.Date()),
        sa.Column("end_date", sa.Date()),
        sa.Column("notes", sa.Text()),
        *_timestamps(),
        sa.CheckConstraint("emi_amount_cents > 0", name="ck_loan_emi_positive"),
        sa.CheckConstraint(
            "emi_date IS NULL OR (emi_date >= 1 AND emi_date <= 31)",
            name="ck_loan_emi_date_range",
        ),
    )
    op.create_index(
        "ix_loans_auto_debit_emi_date", "loans", ["auto_debit", "emi_date"]
    )

    op.create_table(
        "expenses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=False),
        sa.Column("merchant", sa.String(length=120)),
        sa.Column("notes", sa.Text()),
        sa.Column("source", sa.String(length=40), nullable=False),
        sa.Column("confidence", sa.Float()),
        sa.Column(
            "payment_method",
            sa.Enum(
                "cash", "debit_card", "credit_card", "bank", name="paymentmethod"
            ),
        ),
        sa.Column("account_id", sa.Integer(), sa.ForeignKey("bank_accounts.id")),
        sa.Column("credit_card_id", sa.Integer(), sa.ForeignKey("credit_cards.id")),
        sa.Column(
            "to_bank_account_id", sa.Integer(), sa.ForeignKey("bank_accounts.id")
        ),
        sa.Column("loan_id", sa.Integer(), sa.ForeignKey("loans.id")),
        sa.Column(
            "recurrence",
            sa.Enum("one-time", "monthly", name="recurrence"),
            nullable=False,
        ),
        sa.Column(
            "period_tag",
            sa.Enum("daily", "monthly", "yearly", name="periodtag"),
            nullable=False,
        ),
        sa.Column(
            "origin_expense_id",
            sa.Integer(),
            sa.ForeignKey("expenses.id", ondelete="SET NULL"),
        ),
        sa.Column("occurrence_period", sa.String(length=7)),
        *_timestamps(),
        sa.UniqueConstraint(
            "user_id",
            "origin_expense_id",
            "occurrence_period",
            name="uq_expense_template_period",
        ),
        sa.CheckConstraint("amount_cents > 0", name="ck_expenses_amount_positive"),
    )
    op.create_index("ix_expenses_user_date", "expenses", ["user_id", "date"])
    op.create_index(
        "ix_expenses_user_category_date",
        "expenses",
        ["user_id", "category", "date"],
    )
    op.create_index("ix_expenses_recurrence", "expenses", ["recurrence"])
    op.create_index(
        "uq_expense_loan_period",
        "expenses",
        ["user_id", "loan_id", "occurrence_period"],
        unique=True,
        sqlite_where=sa.text(AUTO_DEBIT_ROWS),
        postgresql_where=sa.text(AUTO_DEBIT_ROWS),
    )


def downgrade():
    op.drop_index("uq_expense_loan_period", table_name="expenses")
    op.drop_index("ix_expenses_recurrence", table_name="expenses")
    op.drop_index("ix_expenses_user_category_date", table_name="expenses")
    op.drop_index("ix_expenses_user_date", table_name="expenses")
    op.drop_table("expenses")
    op.drop_index("ix_loans_auto_debit_emi_date", table_name="loans")
    op.drop_table("loans")
    op.drop_index("ix_credit_cards_user", table_name="credit_cards")
    op.drop_table("credit_cards")
    op.drop_index("ix_bank_accounts_user", table_name="bank_accounts")
    op.drop_table("bank_accounts")

from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


def _values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class PaymentMethod(str, Enum):
    cash = "cash"
    debit_card = "debit_card"
    credit_card = "credit_card"
    bank = "bank"


PAYMENT_METHOD_ENUM = SAEnum(
    PaymentMethod, name="paymentmethod", values_callable=_values
)


class Recurrence(str, Enum):
    one_time = "one-time"
    monthly = "monthly"


RECURRENCE_ENUM = SAEnum(Recurrence, name="recurrence", values_callable=_values)


class PeriodTag(str, Enum):
    daily = "daily"
    monthly = "monthly"
    yearly = "yearly"


PERIOD_TAG_ENUM = SAEnum(PeriodTag, name="periodtag", values_callable=_values)


class ExpenseSource:
    manual = "manual"
    auto_recurring = "auto-recurring"
    auto_debit = "auto-debit"
    ai_parsed = "ai-parsed"


# Only auto-debits count toward a loan's once-a-month debit.
_AUTO_DEBIT_ROWS = f"source = '{ExpenseSource.auto_debit}'"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class BankAccount(Base, TimestampMixin):
    __tablename__ = "bank_accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    account_name: Mapped[str] = mapped_column(String(120), nullable=False)
    bank_name: Mapped[str] = mapped_column(String(120), nullable=False)
    account_type: Mapped[str] = mapped_column(String(40), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="AED")
    # No overdraft guard: the balance may go negative.
    balance_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (Index("ix_bank_accounts_user", "user_id"),)


class CreditCard(Base, TimestampMixin):
    __tablename__ = "credit_cards"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    card_name: Mapped[str] = mapped_column(String(120), nullable=False)
    bank_name: Mapped[str] = mapped_column(String(120), nullable=False)
    credit_limit_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    # Owed balance, not available credit.
    used_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    due_day: Mapped[Optional[int]] = mapped_column(Integer)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        CheckConstraint("credit_limit_cents >= 0", name="ck_card_limit_positive"),
        Index("ix_credit_cards_user", "user_id"),
    )


class Loan(Base, TimestampMixin):
    __tablename__ = "loans"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    loan_type: Mapped[str] = mapped_column(String(40), nullable=False)
    lender_name: Mapped[str] = mapped_column(String(120), nullable=False)
    principal_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    interest_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    emi_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    outstanding_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    auto_debit: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    emi_date: Mapped[Optional[int]] = mapped_column(Integer)
    linked_bank_account_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("bank_accounts.id", ondelete="SET NULL")
    )
    start_date: Mapped[Optional[date]] = mapped_column(Date)
    end_date: Mapped[Optional[date]] = mapped_column(Date)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    linked_bank_account: Mapped[Optional["BankAccount"]] = relationship(
        "BankAccount"
    )

    __table_args__ = (
        CheckConstraint("emi_amount_cents > 0", name="ck_loan_emi_positive"),
        CheckConstraint(
            "emi_date IS NULL OR (emi_date >= 1 AND emi_date <= 31)",
            name="ck_loan_emi_date_range",
        ),
        Index("ix_loans_auto_debit_emi_date", "auto_debit", "emi_date"),
    )


class Expense(Base, TimestampMixin):
    __tablename__ = "expenses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="AED")
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    merchant: Mapped[Optional[str]] = mapped_column(String(120))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    source: Mapped[str] = mapped_column(
        String(40), nullable=False, default=ExpenseSource.manual
    )
    confidence: Mapped[Optional[float]] = mapped_column(Float)

    payment_method: Mapped[Optional[PaymentMethod]] = mapped_column(
        PAYMENT_METHOD_ENUM
    )
    account_id: Mapped[Optional[int]] = mapped_column(ForeignKey("bank_accounts.id"))
    credit_card_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("credit_cards.id")
    )
    to_bank_account_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("bank_accounts.id")
    )
    loan_id: Mapped[Optional[int]] = mapped_column(ForeignKey("loans.id"))

    recurrence: Mapped[Recurrence] = mapped_column(
        RECURRENCE_ENUM, nullable=False, default=Recurrence.one_time
    )
    period_tag: Mapped[PeriodTag] = mapped_column(
        PERIOD_TAG_ENUM, nullable=False, default=PeriodTag.monthly
    )
    origin_expense_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("expenses.id", ondelete="SET NULL")
    )
    occurrence_period: Mapped[Optional[str]] = mapped_column(String(7))

    account: Mapped[Optional["BankAccount"]] = relationship(
        "BankAccount", foreign_keys=[account_id]
    )
    to_bank_account: Mapped[Optional["BankAccount"]] = relationship(
        "BankAccount", foreign_keys=[to_bank_account_id]
    )
    credit_card: Mapped[Optional["CreditCard"]] = relationship("CreditCard")
    loan: Mapped[Optional["Loan"]] = relationship("Loan")

    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "origin_expense_id",
            "occurrence_period",
            name="uq_expense_template_period",
        ),
        Index(
            "uq_expense_loan_period",
            "user_id",
            "loan_id",
            "occurrence_period",
            unique=True,
            sqlite_where=text(_AUTO_DEBIT_ROWS),
            postgresql_where=text(_AUTO_DEBIT_ROWS),
        ),
        Index("ix_expenses_user_date", "user_id", "date"),
        Index("ix_expenses_user_category_date", "user_id", "category", "date"),
        Index("ix_expenses_recurrence", "recurrence"),
        CheckConstraint("amount_cents > 0", name="ck_expenses_amount_positive"),
    )

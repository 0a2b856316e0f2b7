import datetime as dt
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from models import ExpenseSource, PaymentMethod, PeriodTag, Recurrence


def _coerce_date(value):
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, str) and "T" in value:
        return dt.datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    return value


def _upper_currency(value: Optional[str]) -> Optional[str]:
    return value.upper() if value else value


class ExpenseIn(BaseModel):
    date: dt.date
    amount_cents: int = Field(..., gt=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    category: str = Field(..., min_length=1, max_length=100)
    merchant: Optional[str] = Field(default=None, max_length=120)
    notes: Optional[str] = Field(default=None, max_length=500)
    source: str = Field(default=ExpenseSource.manual, min_length=1, max_length=40)
    confidence: Optional[float] = Field(default=None, ge=0, le=1)

    payment_method: Optional[PaymentMethod] = None
    account_id: Optional[int] = None
    credit_card_id: Optional[int] = None
    to_bank_account_id: Optional[int] = None
    loan_id: Optional[int] = None

    recurrence: Recurrence = Recurrence.one_time
    period_tag: PeriodTag = PeriodTag.monthly

    @field_validator("date", mode="before")
    @classmethod
    def parse_date(cls, value):
        return _coerce_date(value)

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, value: Optional[str]) -> Optional[str]:
        return _upper_currency(value)


class MaterializedExpenseIn(ExpenseIn):
    """Draft built by the daily jobs; carries the link that makes a run idempotent.

    Public create and confirm bodies use ``ExpenseIn``, which ignores these fields.
    """

    origin_expense_id: Optional[int] = None
    occurrence_period: str = Field(..., pattern=r"^\d{4}-\d{2}$")


# Fields a patch may not clear.
NON_NULLABLE_EXPENSE_FIELDS = (
    "date",
    "amount_cents",
    "currency",
    "category",
    "source",
    "recurrence",
    "period_tag",
)


class ExpensePatch(BaseModel):
    """Partial update; only fields the caller sets are merged."""

    model_config = ConfigDict(extra="forbid")

    date: Optional[dt.date] = None
    amount_cents: Optional[int] = Field(default=None, gt=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    merchant: Optional[str] = Field(default=None, max_length=120)
    notes: Optional[str] = Field(default=None, max_length=500)
    source: Optional[str] = Field(default=None, min_length=1, max_length=40)
    confidence: Optional[float] = Field(default=None, ge=0, le=1)

    payment_method: Optional[PaymentMethod] = None
    account_id: Optional[int] = None
    credit_card_id: Optional[int] = None
    to_bank_account_id: Optional[int] = None
    loan_id: Optional[int] = None

    recurrence: Optional[Recurrence] = None
    period_tag: Optional[PeriodTag] = None

    @field_validator("date", mode="before")
    @classmethod
    def parse_date(cls, value):
        return _coerce_date(value)

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, value: Optional[str]) -> Optional[str]:
        return _upper_currency(value)

    @model_validator(mode="after")
    def _required_fields_not_cleared(self) -> "ExpensePatch":
        for name in NON_NULLABLE_EXPENSE_FIELDS:
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be cleared")
        return self

    def changes(self) -> dict[str, object]:
        return self.model_dump(exclude_unset=True)


class ExpenseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    date: dt.date
    amount_cents: int
    currency: str
    category: str
    merchant: Optional[str]
    notes: Optional[str]
    source: str
    confidence: Optional[float]
    payment_method: Optional[PaymentMethod]
    account_id: Optional[int]
    credit_card_id: Optional[int]
    to_bank_account_id: Optional[int]
    loan_id: Optional[int]
    recurrence: Recurrence
    period_tag: PeriodTag
    origin_expense_id: Optional[int]
    occurrence_period: Optional[str]


class BankAccountIn(BaseModel):
    account_name: str = Field(..., min_length=1, max_length=120)
    bank_name: str = Field(..., min_length=1, max_length=120)
    account_type: str = Field(default="Savings", min_length=1, max_length=40)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    balance_cents: int = 0
    is_active: bool = True
    notes: Optional[str] = None

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, value: Optional[str]) -> Optional[str]:
        return _upper_currency(value)


class BankAccountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    account_name: str
    bank_name: str
    account_type: str
    currency: str
    balance_cents: int
    is_active: bool
    notes: Optional[str]


class CreditCardIn(BaseModel):
    card_name: str = Field(..., min_length=1, max_length=120)
    bank_name: str = Field(..., min_length=1, max_length=120)
    credit_limit_cents: int = Field(..., ge=0)
    used_amount_cents: int = Field(default=0, ge=0)
    due_day: Optional[int] = Field(default=None, ge=1, le=31)
    notes: Optional[str] = None


class CreditCardOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    card_name: str
    bank_name: str
    credit_limit_cents: int
    used_amount_cents: int
    due_day: Optional[int]
    notes: Optional[str]


class LoanIn(BaseModel):
    loan_type: str = Field(..., min_length=1, max_length=40)
    lender_name: str = Field(..., min_length=1, max_length=120)
    principal_cents: int = Field(..., ge=0)
    interest_rate: float = Field(default=0.0, ge=0)
    emi_amount_cents: int = Field(..., gt=0)
    outstanding_cents: int = Field(..., ge=0)
    auto_debit: bool = False
    emi_date: Optional[int] = Field(default=None, ge=1, le=31)
    linked_bank_account_id: Optional[int] = None
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    notes: Optional[str] = None

    @model_validator(mode="after")
    def _auto_debit_needs_emi_date(self) -> "LoanIn":
        if self.auto_debit and self.emi_date is None:
            raise ValueError("emi_date is required when auto_debit is enabled")
        return self


class LoanOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    loan_type: str
    lender_name: str
    principal_cents: int
    interest_rate: float
    emi_amount_cents: int
    outstanding_cents: int
    auto_debit: bool
    emi_date: Optional[int]
    linked_bank_account_id: Optional[int]
    start_date: Optional[dt.date]
    end_date: Optional[dt.date]
    notes: Optional[str]


DatePreset = Literal[
    "today",
    "this_week",
    "this_month",
    "last_3_months",
    "last_6_months",
    "last_12_months",
]


class ReportFilters(BaseModel):
    date_preset: Optional[DatePreset] = None
    date_from: Optional[dt.date] = None
    date_to: Optional[dt.date] = None
    categories: list[str] = Field(default_factory=list)
    payment_methods: list[PaymentMethod] = Field(default_factory=list)
    account_ids: list[int] = Field(default_factory=list)
    credit_card_ids: list[int] = Field(default_factory=list)

    @model_validator(mode="after")
    def _range_is_ordered(self) -> "ReportFilters":
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValueError("date_from must be on or before date_to")
        return self

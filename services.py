from __future__ import annotations

import logging
import warnings
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date
from typing import Iterator, Optional, Union

from pydantic import ValidationError as SchemaValidationError
from sqlalchemy import func, or_, select
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from config import get_settings
from errors import (
    IntegrityWarning,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from ledger import InstrumentLedger, compute_effect, format_effect, negate
from models import (
    BankAccount,
    CreditCard,
    Expense,
    ExpenseSource,
    Loan,
    PaymentMethod,
)
from periods import EPOCH, Period, month_key, resolve_period, shift_months
from schemas import (
    BankAccountIn,
    CreditCardIn,
    ExpenseIn,
    ExpensePatch,
    LoanIn,
    ReportFilters,
)


logger = logging.getLogger(__name__)


def get_current_user_id() -> int:
    return 1


def _validated(schema, data):
    if isinstance(data, schema):
        return data
    try:
        return schema.model_validate(data)
    except SchemaValidationError as exc:
        raise ValidationError(str(exc)) from exc


@dataclass
class ExpenseFilters:
    category: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None


class ExpenseService:
    """Ledger engine: expense writes together with the balances they imply.

    Every write runs in one transaction. The expense row changes and every
    instrument delta commit together or not at all. Updates reverse the old
    effect before applying the new one, so a record never leaves a stale
    effect behind when its amount or routing changes.
    """

    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id if user_id is not None else get_current_user_id()
        self.instruments = InstrumentLedger(session, self.user_id)

    @contextmanager
    def _atomic(self, action: str) -> Iterator[None]:
        try:
            yield
            self.session.commit()
        except PersistenceError as exc:
            self.session.rollback()
            logger.error(f"ledger_{action}: user={self.user_id} error={exc}")
            raise
        except OperationalError as exc:
            self.session.rollback()
            logger.error(f"ledger_{action}: user={self.user_id} retryable error={exc}")
            raise PersistenceError(
                f"Could not {action} expense: {exc.orig}", retryable=True
            ) from exc
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error(f"ledger_{action}: user={self.user_id} error={exc}")
            raise PersistenceError(f"Could not {action} expense: {exc}") from exc
        except Exception:
            self.session.rollback()
            raise

    def _get(self, expense_id: int, *, lock: bool = False) -> Expense:
        stmt = select(Expense).where(
            Expense.id == expense_id, Expense.user_id == self.user_id
        )
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        expense = self.session.scalar(stmt)
        if not expense:
            raise NotFoundError("Expense not found")
        return expense

    def get(self, expense_id: int) -> Expense:
        return self._get(expense_id)

    def list(
        self,
        period: Optional[Period] = None,
        filters: Optional[ExpenseFilters] = None,
        limit: int = 200,
        offset: int = 0,
    ) -> list[Expense]:
        filters = filters or ExpenseFilters()
        stmt = (
            select(Expense)
            .where(Expense.user_id == self.user_id)
            .order_by(Expense.date.desc(), Expense.id.desc())
            .offset(offset)
            .limit(limit)
        )
        if period:
            stmt = stmt.where(Expense.date.between(period.start, period.end))
        if filters.category:
            stmt = stmt.where(Expense.category == filters.category)
        if filters.payment_method:
            stmt = stmt.where(Expense.payment_method == filters.payment_method)
        return self.session.scalars(stmt).all()

    def create(self, data: Union[ExpenseIn, dict]) -> Expense:
        draft = _validated(ExpenseIn, data)
        values = draft.model_dump()
        values["currency"] = draft.currency or get_settings().default_currency
        with self._atomic("create"):
            expense = Expense(user_id=self.user_id, **values)
            self.session.add(expense)
            self.session.flush()
            effect = compute_effect(expense)
            self.instruments.apply(effect)
        if not effect:
            self._report_unrouted(expense)
        logger.info(
            f"ledger_create: user={self.user_id} expense={expense.id} "
            f"source={expense.source} effect={format_effect(effect)}"
        )
        return expense

    def update(self, expense_id: int, patch: Union[ExpensePatch, dict]) -> Expense:
        changes = _validated(ExpensePatch, patch).changes()
        with self._atomic("update"):
            expense = self._get(expense_id, lock=True)
            reversal = negate(compute_effect(expense))
            self.instruments.apply(reversal)
            for field, value in changes.items():
                setattr(expense, field, value)
            self.session.flush()
            effect = compute_effect(expense)
            self.instruments.apply(effect)
        if not effect:
            self._report_unrouted(expense)
        logger.info(
            f"ledger_update: user={self.user_id} expense={expense.id} "
            f"fields={sorted(changes)} reversed={format_effect(reversal)} "
            f"effect={format_effect(effect)}"
        )
        return expense

    def delete(self, expense_id: int) -> None:
        with self._atomic("delete"):
            expense = self._get(expense_id, lock=True)
            reversal = negate(compute_effect(expense))
            self.instruments.apply(reversal)
            self.session.delete(expense)
        logger.info(
            f"ledger_delete: user={self.user_id} expense={expense_id} "
            f"reversed={format_effect(reversal)}"
        )

    def confirm_drafts(self, drafts: list[Union[ExpenseIn, dict]]) -> list[Expense]:
        """Persist human-confirmed AI drafts, one ledger transaction each."""
        created: list[Expense] = []
        for data in drafts:
            draft = _validated(ExpenseIn, data)
            if draft.source == ExpenseSource.manual:
                draft = draft.model_copy(update={"source": ExpenseSource.ai_parsed})
            created.append(self.create(draft))
        return created

    def _report_unrouted(self, expense: Expense) -> None:
        method = expense.payment_method.value if expense.payment_method else None
        message = (
            f"expense {expense.id} routing matches no balance rule "
            f"(payment_method={method} account_id={expense.account_id} "
            f"credit_card_id={expense.credit_card_id} "
            f"to_bank_account_id={expense.to_bank_account_id} "
            f"loan_id={expense.loan_id}); stored with no balance effect"
        )
        logger.warning(f"ledger_unrouted: user={self.user_id} {message}")
        warnings.warn(IntegrityWarning(message, expense.id), stacklevel=3)


class _OwnedRecordService:
    model: type = None
    label: str = "Record"

    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id if user_id is not None else get_current_user_id()

    def get(self, record_id: int):
        record = self.session.get(self.model, record_id)
        if not record or record.user_id != self.user_id:
            raise NotFoundError(f"{self.label} not found")
        return record

    def list(self):
        stmt = (
            select(self.model)
            .where(self.model.user_id == self.user_id)
            .order_by(self.model.id)
        )
        return self.session.scalars(stmt).all()

    def _add(self, record):
        self.session.add(record)
        self.session.commit()
        self.session.refresh(record)
        return record


class BankAccountService(_OwnedRecordService):
    model = BankAccount
    label = "Bank account"

    def create(self, data: BankAccountIn) -> BankAccount:
        values = data.model_dump()
        values["currency"] = data.currency or get_settings().default_currency
        return self._add(BankAccount(user_id=self.user_id, **values))


class CreditCardService(_OwnedRecordService):
    model = CreditCard
    label = "Credit card"

    def create(self, data: CreditCardIn) -> CreditCard:
        return self._add(CreditCard(user_id=self.user_id, **data.model_dump()))


class LoanService(_OwnedRecordService):
    model = Loan
    label = "Loan"

    def create(self, data: LoanIn) -> Loan:
        if data.linked_bank_account_id is not None:
            BankAccountService(self.session, self.user_id).get(
                data.linked_bank_account_id
            )
        return self._add(Loan(user_id=self.user_id, **data.model_dump()))


class ReportService:
    """Read-only aggregation over the expense log."""

    TREND_MONTHS = 6

    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id if user_id is not None else get_current_user_id()

    def _totals(self, conditions: list) -> dict[str, object]:
        total, count = self.session.execute(
            select(
                func.coalesce(func.sum(Expense.amount_cents), 0),
                func.count(Expense.id),
            ).where(*conditions)
        ).one()

        by_category: dict[str, int] = {}
        rows = self.session.execute(
            select(Expense.category, func.sum(Expense.amount_cents).label("total"))
            .where(*conditions)
            .group_by(Expense.category)
            .order_by(func.sum(Expense.amount_cents).desc())
        ).all()
        for row in rows:
            by_category[row.category] = int(row.total or 0)

        by_payment_method: dict[str, int] = {}
        rows = self.session.execute(
            select(
                Expense.payment_method, func.sum(Expense.amount_cents).label("total")
            )
            .where(*conditions)
            .group_by(Expense.payment_method)
        ).all()
        for row in rows:
            # Unrouted expenses count as cash.
            key = row.payment_method.value if row.payment_method else "cash"
            by_payment_method[key] = by_payment_method.get(key, 0) + int(
                row.total or 0
            )

        return {
            "total_cents": int(total or 0),
            "count": int(count or 0),
            "by_category": by_category,
            "by_payment_method": by_payment_method,
        }

    def insights(self, today: Optional[date] = None) -> dict[str, object]:
        today = today or date.today()
        summary = self._totals([Expense.user_id == self.user_id])

        trend_start = shift_months(today.replace(day=1), -(self.TREND_MONTHS - 1))
        months = [month_key(shift_months(trend_start, i)) for i in range(self.TREND_MONTHS)]
        buckets = dict.fromkeys(months, 0)
        rows = self.session.execute(
            select(Expense.date, Expense.amount_cents).where(
                Expense.user_id == self.user_id,
                Expense.date.between(trend_start, today),
            )
        ).all()
        for row in rows:
            buckets[month_key(row.date)] += row.amount_cents
        summary["monthly_trend"] = [
            {"month": month, "amount_cents": amount} for month, amount in buckets.items()
        ]
        return summary

    def report(
        self, filters: ReportFilters, today: Optional[date] = None
    ) -> dict[str, object]:
        today = today or date.today()
        if filters.date_preset:
            period = resolve_period(filters.date_preset, None, None, today=today)
        elif filters.date_from or filters.date_to:
            period = Period(
                "custom", filters.date_from or EPOCH, filters.date_to or today
            )
        else:
            period = Period("all", EPOCH, today)

        conditions = [
            Expense.user_id == self.user_id,
            Expense.date.between(period.start, period.end),
        ]
        if filters.categories:
            conditions.append(Expense.category.in_(filters.categories))
        if filters.payment_methods:
            conditions.append(Expense.payment_method.in_(filters.payment_methods))
        instrument_filters = []
        if filters.account_ids:
            instrument_filters.append(Expense.account_id.in_(filters.account_ids))
        if filters.credit_card_ids:
            instrument_filters.append(
                Expense.credit_card_id.in_(filters.credit_card_ids)
            )
        if instrument_filters:
            conditions.append(or_(*instrument_filters))

        expenses = self.session.scalars(
            select(Expense)
            .where(*conditions)
            .order_by(Expense.date.desc(), Expense.id.desc())
        ).all()
        summary = self._totals(conditions)
        summary["date_range"] = {
            "from": period.start.isoformat(),
            "to": period.end.isoformat(),
        }
        return {"expenses": expenses, "summary": summary}

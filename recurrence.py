import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session

from config import get_settings
from errors import PersistenceError
from ledger import compute_effect, format_effect
from models import Expense, ExpenseSource, Loan, PaymentMethod, Recurrence
from periods import days_in_month, month_key
from schemas import MaterializedExpenseIn


logger = logging.getLogger(__name__)

LOAN_REPAYMENT_CATEGORY = "Loan Repayment"


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def due_day_in_month(day_of_month: int, year: int, month: int) -> int:
    """Billing day for ``month``; days past the month's end snap to its last day."""
    return min(day_of_month, days_in_month(year, month))


def is_due(day_of_month: int, today: date) -> bool:
    return today.day == due_day_in_month(day_of_month, today.year, today.month)


def loan_debit_note(loan: Loan) -> str:
    return f"Auto-Debit for Loan: {loan.lender_name} ({loan.loan_type})"


@dataclass
class JobReport:
    job: str
    run_date: date
    materialized: list[int] = field(default_factory=list)
    skipped: int = 0
    failed: list[int] = field(default_factory=list)

    def as_dict(self) -> dict[str, object]:
        return {
            "job": self.job,
            "run_date": self.run_date.isoformat(),
            "materialized": list(self.materialized),
            "skipped": self.skipped,
            "failed": list(self.failed),
        }


class _MaterializeJob:
    name = "job"

    def __init__(self, session: Session) -> None:
        self.session = session

    def _ledger(self, user_id: int):
        from services import ExpenseService

        return ExpenseService(self.session, user_id)

    def _materialize(
        self,
        report: JobReport,
        item_id: int,
        user_id: int,
        draft: MaterializedExpenseIn,
    ) -> None:
        effect = format_effect(compute_effect(draft))
        try:
            expense = self._ledger(user_id).create(draft)
        except PersistenceError as exc:
            if self._already_materialized(user_id, item_id, draft.occurrence_period):
                # Another runner won the race; the unique constraint held.
                logger.info(
                    f"{self.name}: id={item_id} period={draft.occurrence_period} "
                    "skipped=concurrent_duplicate"
                )
                report.skipped += 1
                return
            logger.error(
                f"{self.name}: id={item_id} user={user_id} effect={effect} "
                f"failed={exc}"
            )
            report.failed.append(item_id)
            return
        except Exception:
            logger.exception(
                f"{self.name}: id={item_id} user={user_id} effect={effect} failed"
            )
            report.failed.append(item_id)
            return
        report.materialized.append(expense.id)
        logger.info(
            f"{self.name}: id={item_id} period={draft.occurrence_period} "
            f"expense={expense.id} effect={effect}"
        )

    def _derive(self, report: JobReport, item_id: int, derive, item, today: date):
        try:
            return derive(item, today)
        except ValueError:
            logger.exception(f"{self.name}: id={item_id} could not derive draft")
            report.failed.append(item_id)
            return None

    def _already_materialized(
        self, user_id: int, item_id: int, period: Optional[str]
    ) -> bool:
        raise NotImplementedError


class RecurringExpenseJob(_MaterializeJob):
    """Turns monthly template expenses into this month's one-time instances.

    A template is an ordinary expense row with ``recurrence = monthly``.
    Instances are created one-time so they are never picked up as templates.
    """

    name = "recurring_expense_job"

    def templates(self) -> list[Expense]:
        stmt = (
            select(Expense)
            .where(Expense.recurrence == Recurrence.monthly)
            .order_by(Expense.id)
        )
        return self.session.scalars(stmt).all()

    def _already_materialized(
        self, user_id: int, item_id: int, period: Optional[str]
    ) -> bool:
        stmt = (
            select(Expense.id)
            .where(
                Expense.user_id == user_id,
                Expense.origin_expense_id == item_id,
                Expense.occurrence_period == period,
            )
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none() is not None

    @staticmethod
    def derive_instance(template: Expense, today: date) -> MaterializedExpenseIn:
        return MaterializedExpenseIn(
            date=today,
            amount_cents=template.amount_cents,
            currency=template.currency,
            category=template.category,
            merchant=template.merchant,
            notes=template.notes,
            source=ExpenseSource.auto_recurring,
            payment_method=template.payment_method,
            account_id=template.account_id,
            credit_card_id=template.credit_card_id,
            to_bank_account_id=template.to_bank_account_id,
            loan_id=template.loan_id,
            recurrence=Recurrence.one_time,
            period_tag=template.period_tag,
            origin_expense_id=template.id,
            occurrence_period=month_key(today),
        )

    def run(self, today: Optional[date] = None) -> JobReport:
        today = today or local_today()
        period = month_key(today)
        report = JobReport(self.name, today)
        due = [
            template
            for template in self.templates()
            if template.date <= today and is_due(template.date.day, today)
        ]
        for template in due:
            template_id, user_id = template.id, template.user_id
            if self._already_materialized(user_id, template_id, period):
                report.skipped += 1
                continue
            draft = self._derive(
                report, template_id, self.derive_instance, template, today
            )
            if draft is not None:
                self._materialize(report, template_id, user_id, draft)
        logger.info(
            f"{self.name}: date={today} due={len(due)} "
            f"materialized={len(report.materialized)} skipped={report.skipped} "
            f"failed={len(report.failed)}"
        )
        return report


class LoanAutoDebitJob(_MaterializeJob):
    """Debits each auto-debit loan's EMI from its linked account once a month.

    The debit is a bank expense tagged with the loan, so the same ledger
    effect lowers the account balance and the loan's outstanding amount.
    """

    name = "loan_auto_debit_job"

    def due_loans(self, today: date) -> list[Loan]:
        stmt = (
            select(Loan)
            .where(
                Loan.auto_debit.is_(True),
                Loan.outstanding_cents > 0,
                Loan.linked_bank_account_id.is_not(None),
                Loan.emi_date.is_not(None),
            )
            .order_by(Loan.id)
        )
        loans = self.session.scalars(stmt).all()
        return [loan for loan in loans if is_due(loan.emi_date, today)]

    def _already_materialized(
        self, user_id: int, item_id: int, period: Optional[str]
    ) -> bool:
        stmt = (
            select(Expense.id)
            .where(
                Expense.user_id == user_id,
                Expense.source == ExpenseSource.auto_debit,
                Expense.loan_id == item_id,
                Expense.occurrence_period == period,
            )
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none() is not None

    @staticmethod
    def derive_debit(loan: Loan, today: date) -> MaterializedExpenseIn:
        return MaterializedExpenseIn(
            date=today,
            amount_cents=loan.emi_amount_cents,
            category=LOAN_REPAYMENT_CATEGORY,
            merchant=loan.lender_name,
            notes=loan_debit_note(loan),
            source=ExpenseSource.auto_debit,
            confidence=1,
            payment_method=PaymentMethod.bank,
            account_id=loan.linked_bank_account_id,
            loan_id=loan.id,
            recurrence=Recurrence.one_time,
            occurrence_period=month_key(today),
        )

    def run(self, today: Optional[date] = None) -> JobReport:
        today = today or local_today()
        period = month_key(today)
        report = JobReport(self.name, today)
        due = self.due_loans(today)
        for loan in due:
            loan_id, user_id = loan.id, loan.user_id
            if self._already_materialized(user_id, loan_id, period):
                report.skipped += 1
                continue
            draft = self._derive(report, loan_id, self.derive_debit, loan, today)
            if draft is not None:
                self._materialize(report, loan_id, user_id, draft)
        logger.info(
            f"{self.name}: date={today} due={len(due)} "
            f"materialized={len(report.materialized)} skipped={report.skipped} "
            f"failed={len(report.failed)}"
        )
        return report


def run_daily_jobs(session: Session, today: Optional[date] = None) -> list[JobReport]:
    today = today or local_today()
    return [
        RecurringExpenseJob(session).run(today),
        LoanAutoDebitJob(session).run(today),
    ]

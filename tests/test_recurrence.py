from datetime import date

from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from database import Base
from models import BankAccount, CreditCard, Expense, ExpenseSource, Recurrence
from recurrence import RecurringExpenseJob, due_day_in_month, is_due
from services import ExpenseService


def _session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine, expire_on_commit=False)


def _wallet(session: Session, balance: int = 100000) -> BankAccount:
    wallet = BankAccount(
        user_id=1,
        account_name="Wallet",
        bank_name="Cash",
        account_type="Cash",
        currency="AED",
        balance_cents=balance,
    )
    session.add(wallet)
    session.commit()
    return wallet


def _template(session: Session, day: date, **routing) -> Expense:
    return ExpenseService(session).create(
        {
            "date": day,
            "amount_cents": 4000,
            "category": "Rent",
            "merchant": "Landlord",
            "recurrence": "monthly",
            **routing,
        }
    )


def _instances(session: Session, template_id: int) -> list[Expense]:
    return session.scalars(
        select(Expense).where(Expense.origin_expense_id == template_id)
    ).all()


def test_due_day_snaps_to_month_end():
    assert due_day_in_month(31, 2024, 2) == 29
    assert due_day_in_month(31, 2023, 2) == 28
    assert due_day_in_month(31, 2024, 4) == 30
    assert due_day_in_month(15, 2024, 2) == 15
    assert is_due(31, date(2024, 4, 30))
    assert not is_due(31, date(2024, 4, 29))


def test_recurring_job_materializes_once_per_month():
    session = _session()
    wallet = _wallet(session)
    template = _template(
        session, date(2024, 3, 15), payment_method="cash", account_id=wallet.id
    )

    report = RecurringExpenseJob(session).run(date(2024, 4, 15))
    instances = _instances(session, template.id)
    assert len(instances) == 1
    instance = instances[0]
    assert report.materialized == [instance.id]
    assert instance.source == ExpenseSource.auto_recurring
    assert instance.recurrence == Recurrence.one_time
    assert instance.occurrence_period == "2024-04"
    assert instance.date == date(2024, 4, 15)
    assert instance.merchant == "Landlord"

    again = RecurringExpenseJob(session).run(date(2024, 4, 15))
    assert again.materialized == []
    assert again.skipped == 1
    assert len(_instances(session, template.id)) == 1

    session.refresh(wallet)
    # Template and one instance.
    assert wallet.balance_cents == 100000 - 2 * 4000


def test_recurring_job_ignores_days_that_are_not_due():
    session = _session()
    _template(session, date(2024, 3, 15))

    report = RecurringExpenseJob(session).run(date(2024, 4, 14))
    assert report.materialized == []
    assert report.skipped == 0


def test_recurring_job_snaps_late_templates_to_short_months():
    session = _session()
    template = _template(session, date(2024, 1, 31))
    job = RecurringExpenseJob(session)

    assert job.run(date(2024, 2, 28)).materialized == []
    report = job.run(date(2024, 2, 29))
    assert len(report.materialized) == 1
    assert _instances(session, template.id)[0].occurrence_period == "2024-02"


def test_recurring_job_skips_templates_dated_in_the_future():
    session = _session()
    template = _template(session, date(2024, 5, 15))

    report = RecurringExpenseJob(session).run(date(2024, 4, 15))
    assert report.materialized == []
    assert _instances(session, template.id) == []


def test_instances_are_never_templates():
    session = _session()
    template = _template(session, date(2024, 3, 15))
    job = RecurringExpenseJob(session)

    job.run(date(2024, 4, 15))
    job.run(date(2024, 5, 15))
    assert [t.id for t in job.templates()] == [template.id]
    assert len(_instances(session, template.id)) == 2


def test_recurring_job_isolates_failures():
    session = _session()
    wallet = _wallet(session)
    card = CreditCard(
        user_id=1, card_name="Gold", bank_name="FAB", credit_limit_cents=500000
    )
    session.add(card)
    session.commit()

    broken = _template(
        session, date(2024, 3, 15), payment_method="credit_card", credit_card_id=card.id
    )
    healthy = _template(
        session, date(2024, 3, 15), payment_method="cash", account_id=wallet.id
    )
    session.delete(card)
    session.commit()

    report = RecurringExpenseJob(session).run(date(2024, 4, 15))
    assert report.failed == [broken.id]
    assert len(report.materialized) == 1
    assert _instances(session, broken.id) == []
    assert len(_instances(session, healthy.id)) == 1


def test_recurring_job_skips_instance_inserted_by_concurrent_run(monkeypatch):
    session = _session()
    wallet = _wallet(session)
    template = _template(
        session, date(2024, 3, 15), payment_method="cash", account_id=wallet.id
    )
    RecurringExpenseJob(session).run(date(2024, 4, 15))

    # The guard misses the existing instance once, as if another runner
    # inserted it between the check and the write.
    job = RecurringExpenseJob(session)
    checked = job._already_materialized
    calls = []

    def stale_guard(user_id, item_id, period):
        calls.append(period)
        return False if len(calls) == 1 else checked(user_id, item_id, period)

    monkeypatch.setattr(job, "_already_materialized", stale_guard)
    report = job.run(date(2024, 4, 15))

    assert report.materialized == []
    assert report.failed == []
    assert report.skipped == 1
    assert calls == ["2024-04", "2024-04"]
    assert len(_instances(session, template.id)) == 1
    session.refresh(wallet)
    assert wallet.balance_cents == 100000 - 2 * 4000

import logging
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from sqlalchemy.orm import Session

from database import SessionLocal
from errors import NotFoundError, PersistenceError, ValidationError
from models import PaymentMethod
from periods import resolve_period
from recurrence import local_today, run_daily_jobs
from scheduler import SchedulerManager
from schemas import (
    BankAccountIn,
    BankAccountOut,
    CreditCardIn,
    CreditCardOut,
    ExpenseIn,
    ExpenseOut,
    ExpensePatch,
    LoanIn,
    LoanOut,
    ReportFilters,
)
from services import (
    BankAccountService,
    CreditCardService,
    ExpenseFilters,
    ExpenseService,
    LoanService,
    ReportService,
)


logger = logging.getLogger(__name__)

app = FastAPI(title="Net-worth Ledger")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, PersistenceError):
        status = 503 if exc.retryable else 409
        return HTTPException(status_code=status, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def filters_from_request(request: Request) -> ExpenseFilters:
    method_param = request.query_params.get("payment_method")
    method = None
    if method_param:
        try:
            method = PaymentMethod(method_param)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
    return ExpenseFilters(
        category=request.query_params.get("category") or None,
        payment_method=method,
    )


@app.get("/api/expenses", response_model=list[ExpenseOut])
def list_expenses(request: Request, db: Session = Depends(get_db)):
    period = None
    if request.query_params.get("period"):
        try:
            period = resolve_period(
                request.query_params.get("period"),
                request.query_params.get("start"),
                request.query_params.get("end"),
            )
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
    return ExpenseService(db).list(period, filters_from_request(request))


@app.get("/api/expenses/insights")
def expense_insights(db: Session = Depends(get_db)):
    return ReportService(db).insights()


@app.post("/api/expenses/report")
def expense_report(filters: ReportFilters, db: Session = Depends(get_db)):
    data = ReportService(db).report(filters)
    return {
        "expenses": [
            ExpenseOut.model_validate(expense).model_dump(mode="json")
            for expense in data["expenses"]
        ],
        "summary": data["summary"],
    }


@app.post(
    "/api/expenses/confirm", response_model=list[ExpenseOut], status_code=201
)
def confirm_expenses(drafts: list[ExpenseIn], db: Session = Depends(get_db)):
    try:
        return ExpenseService(db).confirm_drafts(drafts)
    except (ValidationError, NotFoundError, PersistenceError) as exc:
        raise http_error(exc) from exc


@app.get("/api/expenses/{expense_id}", response_model=ExpenseOut)
def get_expense(expense_id: int, db: Session = Depends(get_db)):
    try:
        return ExpenseService(db).get(expense_id)
    except NotFoundError as exc:
        raise http_error(exc) from exc


@app.post("/api/expenses", response_model=ExpenseOut, status_code=201)
def create_expense(data: ExpenseIn, db: Session = Depends(get_db)):
    try:
        return ExpenseService(db).create(data)
    except (ValidationError, PersistenceError) as exc:
        raise http_error(exc) from exc


@app.put("/api/expenses/{expense_id}", response_model=ExpenseOut)
def update_expense(
    expense_id: int, patch: ExpensePatch, db: Session = Depends(get_db)
):
    try:
        return ExpenseService(db).update(expense_id, patch)
    except (ValidationError, NotFoundError, PersistenceError) as exc:
        raise http_error(exc) from exc


@app.delete("/api/expenses/{expense_id}", status_code=204)
def delete_expense(expense_id: int, db: Session = Depends(get_db)):
    try:
        ExpenseService(db).delete(expense_id)
    except (NotFoundError, PersistenceError) as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/bank-accounts", response_model=list[BankAccountOut])
def list_bank_accounts(db: Session = Depends(get_db)):
    return BankAccountService(db).list()


@app.post("/api/bank-accounts", response_model=BankAccountOut, status_code=201)
def create_bank_account(data: BankAccountIn, db: Session = Depends(get_db)):
    return BankAccountService(db).create(data)


@app.get("/api/bank-accounts/{account_id}", response_model=BankAccountOut)
def get_bank_account(account_id: int, db: Session = Depends(get_db)):
    try:
        return BankAccountService(db).get(account_id)
    except NotFoundError as exc:
        raise http_error(exc) from exc


@app.get("/api/credit-cards", response_model=list[CreditCardOut])
def list_credit_cards(db: Session = Depends(get_db)):
    return CreditCardService(db).list()


@app.post("/api/credit-cards", response_model=CreditCardOut, status_code=201)
def create_credit_card(data: CreditCardIn, db: Session = Depends(get_db)):
    return CreditCardService(db).create(data)


@app.get("/api/credit-cards/{card_id}", response_model=CreditCardOut)
def get_credit_card(card_id: int, db: Session = Depends(get_db)):
    try:
        return CreditCardService(db).get(card_id)
    except NotFoundError as exc:
        raise http_error(exc) from exc


@app.get("/api/loans", response_model=list[LoanOut])
def list_loans(db: Session = Depends(get_db)):
    return LoanService(db).list()


@app.post("/api/loans", response_model=LoanOut, status_code=201)
def create_loan(data: LoanIn, db: Session = Depends(get_db)):
    try:
        return LoanService(db).create(data)
    except NotFoundError as exc:
        raise http_error(exc) from exc


@app.get("/api/loans/{loan_id}", response_model=LoanOut)
def get_loan(loan_id: int, db: Session = Depends(get_db)):
    try:
        return LoanService(db).get(loan_id)
    except NotFoundError as exc:
        raise http_error(exc) from exc


@app.post("/api/scheduler/run")
def run_scheduler(run_date: Optional[date] = None, db: Session = Depends(get_db)):
    today = run_date or local_today()
    logger.info(f"scheduler_run: source=api date={today}")
    reports = run_daily_jobs(db, today)
    return {"reports": [report.as_dict() for report in reports]}

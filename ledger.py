"""Balance effects of expense records.

``compute_effect`` is the only place that knows how an expense's routing
fields translate into instrument deltas. Applying an expense and reversing it
both go through it: reversal is ``negate(compute_effect(old))``.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from errors import InstrumentNotFound
from models import BankAccount, CreditCard, Loan, PaymentMethod


logger = logging.getLogger(__name__)


class InstrumentKind(str, Enum):
    bank_account = "bank_account"
    credit_card = "credit_card"
    loan = "loan"


# kind -> (model, mutable balance column)
INSTRUMENT_COLUMNS = {
    InstrumentKind.bank_account: (BankAccount, "balance_cents"),
    InstrumentKind.credit_card: (CreditCard, "used_amount_cents"),
    InstrumentKind.loan: (Loan, "outstanding_cents"),
}


@dataclass(frozen=True)
class InstrumentDelta:
    kind: InstrumentKind
    instrument_id: int
    delta_cents: int

    def negated(self) -> "InstrumentDelta":
        return InstrumentDelta(self.kind, self.instrument_id, -self.delta_cents)

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.instrument_id}{self.delta_cents:+d}"


def _bank(instrument_id: int, delta: int) -> InstrumentDelta:
    return InstrumentDelta(InstrumentKind.bank_account, instrument_id, delta)


def compute_effect(record) -> list[InstrumentDelta]:
    """Return the deltas implied by ``record``.

    ``record`` is anything exposing the expense routing attributes
    (``payment_method``, ``account_id``, ``credit_card_id``,
    ``to_bank_account_id``, ``loan_id``, ``amount_cents``): an ``Expense`` row
    or a validated draft. An empty list means the routing matched no rule.
    """
    amount = int(record.amount_cents)
    method: Optional[PaymentMethod] = record.payment_method
    account_id = record.account_id
    card_id = record.credit_card_id
    to_account_id = record.to_bank_account_id
    loan_id = getattr(record, "loan_id", None)

    if method in (PaymentMethod.cash, PaymentMethod.debit_card) and account_id:
        return [_bank(account_id, -amount)]

    if method == PaymentMethod.credit_card and card_id:
        return [InstrumentDelta(InstrumentKind.credit_card, card_id, amount)]

    if method == PaymentMethod.bank and account_id:
        source = _bank(account_id, -amount)
        if to_account_id:
            return [source, _bank(to_account_id, amount)]
        if card_id:
            return [
                source,
                InstrumentDelta(InstrumentKind.credit_card, card_id, -amount),
            ]
        if loan_id:
            return [source, InstrumentDelta(InstrumentKind.loan, loan_id, -amount)]
        return [source]

    return []


def negate(deltas: Iterable[InstrumentDelta]) -> list[InstrumentDelta]:
    return [delta.negated() for delta in deltas]


def format_effect(deltas: Iterable[InstrumentDelta]) -> str:
    rendered = ", ".join(str(delta) for delta in deltas)
    return f"[{rendered}]"


class InstrumentLedger:
    """Applies deltas to instrument rows inside the caller's transaction.

    Each touched row is locked with ``SELECT ... FOR UPDATE`` and changed with
    an in-database increment, so concurrent writers serialize on the row and
    never overwrite each other's deltas. Commit and rollback belong to the
    caller.
    """

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def apply(self, deltas: Iterable[InstrumentDelta]) -> None:
        # Fixed lock order keeps two transactions touching the same pair of
        # instruments from deadlocking.
        ordered = sorted(deltas, key=lambda d: (d.kind.value, d.instrument_id))
        for delta in ordered:
            model, column = INSTRUMENT_COLUMNS[delta.kind]
            instrument = self.session.scalar(
                select(model)
                .where(model.id == delta.instrument_id, model.user_id == self.user_id)
                .with_for_update()
            )
            if instrument is None:
                raise InstrumentNotFound(delta.kind.value, delta.instrument_id)
            setattr(instrument, column, getattr(model, column) + delta.delta_cents)
            # Flush per delta: a second pending expression on the same row
            # would replace the first instead of adding to it.
            self.session.flush()
            logger.debug(f"ledger_apply: user={self.user_id} delta={delta}")

from typing import Optional


class ValidationError(ValueError):
    """Malformed input, rejected before any transaction starts."""


class NotFoundError(ValueError):
    """The referenced record does not exist or belongs to another user."""


class PersistenceError(RuntimeError):
    """The transaction was rolled back; nothing it touched was committed."""

    def __init__(self, message: str, *, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class InstrumentNotFound(PersistenceError):
    def __init__(self, kind: str, instrument_id: int) -> None:
        super().__init__(f"{kind} {instrument_id} not found")
        self.kind = kind
        self.instrument_id = instrument_id


class IntegrityWarning(UserWarning):
    """An expense whose routing matches no balance rule; stored with no effect."""

    def __init__(self, message: str, expense_id: Optional[int] = None) -> None:
        super().__init__(message)
        self.expense_id = expense_id

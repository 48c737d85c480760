"""Errors raised inside the ledger core.

Public operations never let these escape: they are turned into a failed
result carrying ``code`` so callers can branch without try/except.
"""

from decimal import Decimal


class LedgerError(Exception):
    code = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(LedgerError, ValueError):
    code = "validation"


class NotFoundError(LedgerError):
    code = "not_found"


class InsufficientStockError(LedgerError):
    code = "insufficient_stock"

    def __init__(self, product_id: str, product_name: str, available: Decimal, requested: Decimal):
        super().__init__(
            f"Insufficient stock for {product_name}: available {available}, requested {requested}"
        )
        self.product_id = product_id
        self.product_name = product_name
        self.available = available
        self.requested = requested

    @property
    def shortfall(self) -> Decimal:
        return self.requested - self.available


class PersistenceError(LedgerError):
    code = "persistence"

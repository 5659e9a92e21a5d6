# Overview: Error taxonomy shared by the reconciliation services and routes.

"""
Reconciliation errors.

Every error carries the HTTP status the route layer answers with, so routes
catch ReconciliationError once instead of mapping each subclass.

- ValidationError: malformed input (400)
- NotFoundError and subclasses: referenced row absent (404)
- AlreadyOpen / NotOpen / InvalidPaymentState: state violation (409)
- ConcurrentMatchConflict: lost a compare-and-set race after retrying (409)
"""


class ReconciliationError(Exception):
    """Base class for user-correctable reconciliation errors."""
    http_status = 400


class ValidationError(ReconciliationError, ValueError):
    """400-level input problem."""
    http_status = 400


class NotFoundError(ReconciliationError):
    """Referenced row does not exist."""
    http_status = 404


class SaleNotFound(NotFoundError):
    pass


class PaymentNotFound(NotFoundError):
    pass


class TransferNotFound(NotFoundError):
    pass


class CashPeriodNotFound(NotFoundError):
    pass


class OwnerNotFound(NotFoundError):
    """Raised when the ledger aggregator target is missing."""


class AlreadyOpen(ReconciliationError):
    """An open cash period already exists for the owner."""
    http_status = 409


class NotOpen(ReconciliationError):
    """The cash period is closed (or was never open)."""
    http_status = 409


class InvalidPaymentState(ReconciliationError):
    """Payment cannot make the requested transition."""
    http_status = 409


class ConcurrentMatchConflict(ReconciliationError):
    """Lost a compare-and-set race on a payment or transfer."""
    http_status = 409


class StoreConflict(Exception):
    """
    A guarded update matched no row, or collided with a unique constraint.

    Raised by the record store; services translate it into a domain error.
    """

    def __init__(self, table: str, filters: dict, detail: str | None = None):
        self.table = table
        self.filters = filters
        super().__init__(detail or f"Conditional update on {table} matched no row for {filters}")

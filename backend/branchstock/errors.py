# Overview: Error taxonomy shared by the stock services and the HTTP layer.

from __future__ import annotations


class StockError(Exception):
    """Base class for failures reported to callers of the stock services."""

    status_code = 400
    code = "stock_error"
    retryable = False

    def __init__(self, message: str, *, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code, "details": self.details}


class ValidationError(StockError):
    """400-level input problem (business invariant, not request shape)."""

    code = "validation_error"


class NotFoundError(StockError):
    """Referenced stock position (or reference record) does not exist."""

    status_code = 404
    code = "not_found"


class ConflictError(StockError):
    """Duplicate stock position or ledger key, or an illegal state transition."""

    status_code = 409
    code = "conflict"


class InsufficientStockError(StockError):
    """
    Requested decrease would drive the balance negative.

    Terminal: callers change the request instead of retrying.
    """

    status_code = 409
    code = "insufficient_stock"

    def __init__(self, current: int, requested: int, message: str | None = None):
        self.current = current
        self.requested = requested
        super().__init__(
            message or f"Insufficient stock: current={current}, requested={requested}",
            details={"current_quantity": current, "requested_quantity": requested},
        )


class SaleRejectedError(InsufficientStockError):
    """A sale could not be admitted because the branch does not hold enough units."""

    code = "sale_rejected"

    def __init__(self, current: int, requested: int):
        super().__init__(
            current,
            requested,
            message=f"Sale rejected: only {current} unit(s) available, {requested} requested",
        )


class TransientError(StockError):
    """
    Infrastructure failure during the atomic sequence (lock wait timeout,
    connection loss, serialization abort). Nothing was committed.
    """

    status_code = 503
    code = "transient_failure"
    retryable = True

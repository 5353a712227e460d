# Overview: Failure taxonomy for sale documents and the stock ledger.

from __future__ import annotations


class BillingError(Exception):
    """Base for every failure the billing core reports to its callers."""

    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": str(self), "details": self.details}


class ValidationError(BillingError):
    """400-level input problem, always naming the offending field."""

    def __init__(self, field: str, message: str, details: dict | None = None):
        details = dict(details or {})
        details.setdefault("field", field)
        super().__init__(message, details)
        self.field = field


class InvalidLineItem(ValidationError):
    """A line item failed its weight/rate/charge/quantity constraints."""


class InvalidDiscount(ValidationError):
    """Discount is negative or exceeds the subtotal."""


class InvalidExchangeInput(ValidationError):
    """Old-material weight or rate is out of range."""


class InsufficientStock(BillingError):
    """
    A deduction or adjustment would take a product's stock below zero.

    Raised both at the pre-check and at ledger-apply time (concurrent sale).
    """

    http_status = 409

    def __init__(self, product_id: int, available: int, required: int, product_name: str | None = None):
        super().__init__(
            f"Insufficient stock for product {product_id}: available {available}, required {required}",
            details={
                "product_id": product_id,
                "product_name": product_name,
                "available": available,
                "required": required,
            },
        )
        self.product_id = product_id
        self.available = available
        self.required = required


class PersistenceFailure(BillingError):
    """The unit of work could not commit. Retryable by the caller."""

    http_status = 503
    retryable = True

    def __init__(self, message: str = "Could not save changes, please retry", details: dict | None = None):
        details = dict(details or {})
        details.setdefault("retryable", True)
        super().__init__(message, details)


class TransactionTimeout(PersistenceFailure):
    """The persistence layer timed out waiting for a lock."""


class ReferentialConflict(BillingError):
    """Hard delete refused because other rows still reference the target."""

    http_status = 409


class NotFound(BillingError):
    """Requested row does not exist."""

    http_status = 404

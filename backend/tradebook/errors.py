# Overview: Typed engine errors; every failure carries a closed kind and structured details.

"""
Engine error hierarchy.

WHY: Callers (routes, CLI, tests) branch on the error KIND, never on message
text. Each exception carries:
- kind: a member of the closed ErrorKind enum
- message: human readable summary
- details: structured payload (offending item ids, amounts, limits)

All kinds are recoverable at the caller boundary. Validation and state errors
are raised before any mutation; the transaction boundary rolls back anything
else.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    NOT_FOUND = "NotFound"
    INVALID_STATE = "InvalidState"
    VALIDATION_FAILED = "ValidationFailed"
    INSUFFICIENT_STOCK = "InsufficientStock"
    CREDIT_LIMIT_EXCEEDED = "CreditLimitExceeded"
    RETURN_QUANTITY_EXCEEDED = "ReturnQuantityExceeded"


# HTTP status per kind, used by the API error handler
HTTP_STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INVALID_STATE: 409,
    ErrorKind.VALIDATION_FAILED: 400,
    ErrorKind.INSUFFICIENT_STOCK: 409,
    ErrorKind.CREDIT_LIMIT_EXCEEDED: 409,
    ErrorKind.RETURN_QUANTITY_EXCEEDED: 409,
}


class EngineError(Exception):
    """Base class for all engine errors."""

    kind: ErrorKind = ErrorKind.VALIDATION_FAILED

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    @property
    def http_status(self) -> int:
        return HTTP_STATUS_BY_KIND[self.kind]

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "details": self.details,
        }


class NotFoundError(EngineError):
    """Document, party, item, warehouse or account missing."""
    kind = ErrorKind.NOT_FOUND


class InvalidStateError(EngineError):
    """Transition not legal from the current status / payment status."""
    kind = ErrorKind.INVALID_STATE


class ValidationFailedError(EngineError):
    """Bad quantities, discounts, tax codes or missing required accounts."""
    kind = ErrorKind.VALIDATION_FAILED


class InsufficientStockError(EngineError):
    kind = ErrorKind.INSUFFICIENT_STOCK

    def __init__(self, shortfalls: list[dict], message: str = "Insufficient stock"):
        super().__init__(message, details={"items": shortfalls})
        self.shortfalls = shortfalls


class CreditLimitExceededError(EngineError):
    kind = ErrorKind.CREDIT_LIMIT_EXCEEDED

    def __init__(self, *, customer_id: int, amount_cents: int, limit_cents: int):
        super().__init__(
            "Invoice amount exceeds customer credit limit",
            details={
                "customer_id": customer_id,
                "amount_cents": amount_cents,
                "limit_cents": limit_cents,
            },
        )
        self.amount_cents = amount_cents
        self.limit_cents = limit_cents


class ReturnQuantityExceededError(EngineError):
    kind = ErrorKind.RETURN_QUANTITY_EXCEEDED

    def __init__(self, items: list[dict], message: str = "Return quantity exceeds returnable quantity"):
        super().__init__(message, details={"items": items})
        self.items = items

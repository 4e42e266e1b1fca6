"""
Typed errors raised by the inventory transaction engine.

Validation errors (InsufficientStock, BelowMinimumPrice, SameBranchTransfer,
InvalidRedemption, InvalidValue, NotFound) are raised before anything is
written. Errors raised inside a transaction (PersistenceFailure,
SkuAllocationFailed, BalanceConsistency, TransactionCancelled) always come
after a full rollback.

The engine never returns strings for failures; use user_message() to render
text for an operator.
"""

from __future__ import annotations


class InventoryEngineError(Exception):
    """Base class for engine errors. `details` is JSON-serializable."""

    kind = "engine_error"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.kind,
            "message": user_message(self),
            "details": self.details,
        }


class InvalidValue(InventoryEngineError, ValueError):
    """Input could not be turned into a valid value (money, quantity, SKU, ...)."""
    kind = "invalid_value"


class NotFound(InventoryEngineError):
    """Item, branch, customer or sale does not exist (or is soft-deleted)."""
    kind = "not_found"


class InsufficientStock(InventoryEngineError):
    kind = "insufficient_stock"


class BelowMinimumPrice(InventoryEngineError):
    kind = "below_minimum_price"


class SameBranchTransfer(InventoryEngineError):
    kind = "same_branch_transfer"


class InvalidRedemption(InventoryEngineError):
    kind = "invalid_redemption"


class BalanceConsistency(InventoryEngineError):
    """A loyalty balance would have gone negative; caller passed bad input."""
    kind = "balance_consistency"


class DuplicateSku(InventoryEngineError):
    """The store rejected an item because its SKU already exists in the branch."""
    kind = "duplicate_sku"


class SkuAllocationFailed(InventoryEngineError):
    kind = "sku_allocation_failed"


class PersistenceFailure(InventoryEngineError):
    """Wraps an underlying database error. The original is on __cause__."""
    kind = "persistence_failure"


class TransactionCancelled(InventoryEngineError):
    kind = "transaction_cancelled"


def user_message(error: InventoryEngineError) -> str:
    """Human-readable text for an engine error."""
    d = error.details
    if isinstance(error, InsufficientStock):
        if d.get("operation") == "transfer":
            return "Not enough stock in source branch"
        name = d.get("item_name")
        return f"Not enough stock for {name}" if name else "Not enough stock"
    if isinstance(error, BelowMinimumPrice):
        minimum = d.get("minimum_sell_price")
        if minimum is not None:
            return f"Cannot sell below minimum price of {minimum}"
        return "Cannot sell below minimum price"
    if isinstance(error, SameBranchTransfer):
        return "Cannot transfer to the same branch"
    if isinstance(error, InvalidRedemption):
        return "Redeemed points must not be negative"
    if isinstance(error, BalanceConsistency):
        return "Loyalty balance would become negative"
    if isinstance(error, SkuAllocationFailed):
        return "Could not allocate a SKU in the destination branch, please retry"
    if isinstance(error, DuplicateSku):
        return "SKU already exists in this branch"
    if isinstance(error, PersistenceFailure):
        return "The transaction could not be saved, please retry"
    if isinstance(error, TransactionCancelled):
        return "The transaction was cancelled before it completed"
    return str(error)


_HTTP_STATUS = {
    NotFound: 404,
    DuplicateSku: 409,
    TransactionCancelled: 408,
    PersistenceFailure: 503,
}


def http_status(error: InventoryEngineError) -> int:
    """HTTP status for an engine error; anything not listed is a 400."""
    for error_type, status in _HTTP_STATUS.items():
        if isinstance(error, error_type):
            return status
    return 400

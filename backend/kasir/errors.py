"""
Domain error taxonomy.

Every error carries a human-readable message and a details dict that routes
return verbatim next to the message.
"""
from __future__ import annotations

from .validation import ConflictError


class PosError(Exception):
    """Base class for recoverable point-of-sale errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InsufficientStock(PosError):
    """Requested quantity exceeds the catalog's current stock."""


class CartInvalid(PosError):
    def __init__(self, violations: list[str]):
        super().__init__("Cart failed validation", details={"violations": list(violations)})
        self.violations = list(violations)


class InsufficientPayment(PosError):
    """Cash tendered is below the checkout total."""


class ProductNotFound(PosError):
    pass


class CustomerNotFound(PosError):
    pass


class TransactionNotFound(PosError):
    pass


class KasbonNotFound(PosError):
    pass


class InvalidTransition(PosError, ConflictError):
    """A transaction status change that its current status does not allow."""


class DuplicateBarcode(PosError, ConflictError):
    """A different product already uses the barcode."""


class StorageFailure(PosError):
    """The durable store rejected a read or write."""


class VersionConflict(Exception):
    """A compare-and-set write lost against a concurrent writer."""

    def __init__(self, key: str, expected: int | None, actual: int | None):
        super().__init__(f"version conflict on {key}: expected {expected}, found {actual}")
        self.key = key
        self.expected = expected
        self.actual = actual


class SyncItemFailure(PosError):
    """One queued mutation could not be replayed remotely."""

    def __init__(self, item_id: str, message: str):
        super().__init__(message, details={"item_id": item_id})
        self.item_id = item_id

"""
Typed exceptions for the supplier order back-office.

Every error carries a machine-readable ``code`` so the CLI and the HTTP API
can report it without parsing messages:

    BackOfficeError
    +-- NotFound                 ORDER_NOT_FOUND / SKU_NOT_FOUND
    +-- ValidationError          VALIDATION_ERROR
    |   +-- QuantityExceedsOrdered
    +-- InvalidState             INVALID_STATE
    +-- ProductNotInOrder        PRODUCT_NOT_IN_ORDER
    +-- StaleLedgerEntry         STALE_LEDGER_ENTRY

All of them are raised before any mutation is applied.
"""
from typing import Optional


class BackOfficeError(Exception):
    code: str = "BACKOFFICE_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class NotFound(BackOfficeError):
    code = "ORDER_NOT_FOUND"

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        if code:
            self.code = code

    @classmethod
    def order(cls, order_id: str) -> "NotFound":
        return cls(f"Order not found: {order_id}")

    @classmethod
    def sku(cls, sku: str) -> "NotFound":
        return cls(f"SKU not found: {sku}", code="SKU_NOT_FOUND")


class ValidationError(BackOfficeError):
    """Malformed input. ``problems`` lists every individual issue found."""
    code = "VALIDATION_ERROR"

    def __init__(self, message: str, problems: Optional[list[str]] = None) -> None:
        super().__init__(message)
        self.problems = problems or [message]

    def to_dict(self) -> dict:
        return {**super().to_dict(), "problems": self.problems}


class QuantityExceedsOrdered(ValidationError):
    code = "QUANTITY_EXCEEDS_ORDERED"

    def __init__(self, sku: str, ordered: int, received: int, delta: int) -> None:
        super().__init__(
            f"Receiving {delta} x {sku} would exceed the ordered quantity "
            f"({received} already received of {ordered})"
        )
        self.sku = sku
        self.ordered = ordered
        self.received = received
        self.delta = delta


class InvalidState(BackOfficeError):
    code = "INVALID_STATE"

    def __init__(self, message: str, current=None, target=None) -> None:
        super().__init__(message)
        self.current = current
        self.target = target

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.current is not None:
            data["current_status"] = getattr(self.current, "value", self.current)
        if self.target is not None:
            data["target_status"] = getattr(self.target, "value", self.target)
        return data


class ProductNotInOrder(BackOfficeError):
    """The scanned SKU is not one of the order's lines."""
    code = "PRODUCT_NOT_IN_ORDER"

    def __init__(self, order_number: str, sku: str, suggestions: Optional[list[str]] = None) -> None:
        message = f"SKU {sku!r} is not part of order {order_number}"
        if suggestions:
            message += f" (did you mean: {', '.join(suggestions)}?)"
        super().__init__(message)
        self.sku = sku
        self.suggestions = suggestions or []

    def to_dict(self) -> dict:
        return {**super().to_dict(), "sku": self.sku, "suggestions": self.suggestions}


class StaleLedgerEntry(BackOfficeError):
    """A compare-and-swap write lost against a concurrent update of the same SKU."""
    code = "STALE_LEDGER_ENTRY"

    def __init__(self, sku: str, expected_version: int) -> None:
        super().__init__(f"Warehouse entry {sku} changed since version {expected_version}")
        self.sku = sku
        self.expected_version = expected_version

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class WarehouseItem(BaseModel):
    """
    Current stock for one SKU in the shared warehouse ledger.
    version is bumped on every write and used for compare-and-swap updates.
    """
    sku: str
    name: str
    quantity: int = 0
    price: float = 0.0
    category: Optional[str] = None
    product_type: Optional[str] = None
    brand: Optional[str] = None
    version: int = 0                        # 0 = not yet stored
    updated_at: Optional[datetime] = None


class StockHistoryEntry(BaseModel):
    """One append-only record of a warehouse mutation."""
    sku: str
    timestamp: datetime
    quantity: int                           # resulting quantity in the ledger
    price: float                            # resulting unit price in the ledger
    kind: str = "supplier-order"
    description: Optional[str] = None       # e.g. "Order ORD-20240115-0930 - Acme"
    order_id: Optional[str] = None
    order_number: Optional[str] = None
    quantity_received: Optional[int] = None


class PriceDecision(str, Enum):
    UPDATE_PRICE = "update_price"
    KEEP_PRICE = "keep_price"
    IGNORE = "ignore"


class PriceConflict(BaseModel):
    """
    A mismatch between the ledger price and the ordered price for a SKU,
    waiting on a human decision.
    """
    id: str
    order_id: str
    order_number: str
    sku: str
    name: Optional[str] = None
    old_price: float
    new_price: float
    quantity: int                           # units that would be added

    @property
    def change_pct(self) -> Optional[float]:
        if not self.old_price:
            return None
        return round((self.new_price - self.old_price) / self.old_price * 100, 1)

    @property
    def suggestion(self) -> str:
        pct = self.change_pct
        if pct is None:
            return "The current price is zero."
        if pct > 0:
            return f"New price is {pct:.1f}% higher than the current price."
        if pct < 0:
            return f"New price is {abs(pct):.1f}% lower than the current price."
        return "The price is unchanged."


class ReconciliationWarning(BaseModel):
    """Non-fatal problem found while reconciling; the run carries on."""
    sku: str
    message: str


class ReconciliationResult(BaseModel):
    """Outcome of one reconciliation run over an order's received items."""
    order_id: str
    updated: List[str] = Field(default_factory=list)    # existing SKUs merged
    created: List[str] = Field(default_factory=list)    # SKUs new to the ledger
    ignored: List[str] = Field(default_factory=list)    # conflicts resolved as IGNORE
    skipped: List[str] = Field(default_factory=list)    # SKUs not in the order
    pending: List[str] = Field(default_factory=list)    # abandoned on cancellation
    warnings: List[ReconciliationWarning] = Field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.updated or self.created)

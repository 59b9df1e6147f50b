from .supplier_order import (
    OrderStatus, OrderProduct, ReceivedItem, SupplierOrder,
    ReceiptProgress, PaymentProgress, OrderProgress, OrderSummary,
)
from .warehouse import (
    WarehouseItem, StockHistoryEntry, PriceDecision, PriceConflict,
    ReconciliationWarning, ReconciliationResult,
)

__all__ = [
    "OrderStatus", "OrderProduct", "ReceivedItem", "SupplierOrder",
    "ReceiptProgress", "PaymentProgress", "OrderProgress", "OrderSummary",
    "WarehouseItem", "StockHistoryEntry", "PriceDecision", "PriceConflict",
    "ReconciliationWarning", "ReconciliationResult",
]

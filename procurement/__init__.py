from .errors import (
    BackOfficeError, NotFound, ValidationError, QuantityExceedsOrdered,
    InvalidState, ProductNotInOrder, StaleLedgerEntry,
)
from .database import Database
from .stores import OrderStore, WarehouseLedger, StockHistory
from .intake import parse_order_csv, parse_price, order_template
from .lifecycle import OrderLifecycle
from .receiving import ReceivingLedger, derive_status, receipt_progress, payment_progress
from .decisions import FixedDecider, DecisionBroker
from .reconciliation import ReconciliationEngine
from .reports import summarize, filter_orders
from .backup import BackupService
from .processor import SupplierOrderProcessor

__all__ = [
    "BackOfficeError", "NotFound", "ValidationError", "QuantityExceedsOrdered",
    "InvalidState", "ProductNotInOrder", "StaleLedgerEntry",
    "Database", "OrderStore", "WarehouseLedger", "StockHistory",
    "parse_order_csv", "parse_price", "order_template",
    "OrderLifecycle", "ReceivingLedger", "derive_status",
    "receipt_progress", "payment_progress",
    "FixedDecider", "DecisionBroker", "ReconciliationEngine",
    "summarize", "filter_orders", "BackupService", "SupplierOrderProcessor",
]

"""
Supplier order processor.

SupplierOrderProcessor wires the stores, the lifecycle controller, the
receiving ledger and the reconciliation engine together.  It is the single
object the CLI and the dashboard API talk to:

  1. create_order() / create_order_from_csv()  -- DRAFT order from a form or sheet
  2. confirm() / mark_in_transit()             -- supplier accepted / shipped
  3. receive()                                 -- scan goods in; may reach RECEIVED
  4. close_partial()                           -- accept a short delivery
  5. reconcile()                               -- merge received goods into stock
  6. mark_paid()                               -- settle the supplier invoice

Merges into the warehouse happen on close-out, on full receipt (when
config.reconcile_on_full_receipt is set) or on request.  Price conflicts met
along the way are answered by a decider: the config default unless the
caller passes its own.
"""
import logging
from datetime import date, datetime
from pathlib import Path
from typing import Iterable, Optional, Union

from config import Config
from models.supplier_order import (
    OrderProduct,
    OrderProgress,
    OrderStatus,
    OrderSummary,
    SupplierOrder,
)
from models.warehouse import ReconciliationResult, StockHistoryEntry, WarehouseItem
from .backup import BackupService
from .database import Database, utcnow
from .decisions import FixedDecider, PriceDecider
from .errors import NotFound
from .intake import parse_order_csv
from .lifecycle import OrderLifecycle
from .receiving import ReceivingLedger, payment_progress, receipt_progress
from .reconciliation import ReconciliationEngine
from .reports import summarize
from .stores import OrderStore, StockHistory, WarehouseLedger

logger = logging.getLogger(__name__)


class SupplierOrderProcessor:
    """
    Facade over the supplier order engine.

    Args:
        config:  Settings; a default Config() when omitted.
        decide:  Decider for price conflicts when a call does not bring one.
        clock:   Source of "now" (UTC), injectable for tests.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        decide: Optional[PriceDecider] = None,
        clock=utcnow,
    ):
        self.config = config or Config()
        self.config.ensure_output_dir()

        self.db = Database(self.config.db_path)
        self.orders = OrderStore(self.db)
        self.warehouse = WarehouseLedger(self.db)
        self.history = StockHistory(self.db)

        self.decide = decide or FixedDecider(self.config.default_price_decision)
        self.engine = ReconciliationEngine(
            self.warehouse,
            self.history,
            self.orders,
            decide=self.decide,
            clock=clock,
            audit=self.db.log_audit,
        )
        self.lifecycle = OrderLifecycle(
            self.orders,
            reconcile=self.engine.reconcile,
            clock=clock,
            payment_terms_days=self.config.payment_terms_days,
            audit=self.db.log_audit,
        )
        self.receiving = ReceivingLedger(
            self.orders,
            clock=clock,
            suggestion_threshold=self.config.sku_suggestion_threshold,
            audit=self.db.log_audit,
        )
        self.backup_service = BackupService(self.config)

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def create_order(
        self,
        supplier: str,
        purchase_date: Union[date, str, None],
        products: Iterable[Union[OrderProduct, dict]],
        invoice_number: Optional[str] = None,
        payment_date: Union[date, str, None] = None,
    ) -> SupplierOrder:
        return self.lifecycle.create_order(
            supplier, purchase_date, products,
            invoice_number=invoice_number, payment_date=payment_date,
        )

    def create_order_from_csv(
        self,
        source: Union[str, Path],
        supplier: str,
        purchase_date: Union[date, str, None],
        invoice_number: Optional[str] = None,
    ) -> SupplierOrder:
        """Create a DRAFT order from an order sheet (path or CSV text)."""
        products = parse_order_csv(source, delimiter=self.config.csv_delimiter)
        return self.create_order(supplier, purchase_date, products, invoice_number=invoice_number)

    def get_order(self, order_id: str) -> SupplierOrder:
        order = self.orders.get(order_id)
        if order is None:
            raise NotFound.order(order_id)
        return order

    def list_orders(
        self,
        status: Optional[OrderStatus] = None,
        search: Optional[str] = None,
    ) -> list[SupplierOrder]:
        return self.orders.list(status=status, search=search)

    def confirm(self, order_id: str) -> SupplierOrder:
        return self.lifecycle.confirm(order_id)

    def mark_in_transit(self, order_id: str) -> SupplierOrder:
        return self.lifecycle.mark_in_transit(order_id)

    async def receive(
        self,
        order_id: str,
        sku: str,
        quantity: int = 1,
        decide: Optional[PriceDecider] = None,
    ) -> SupplierOrder:
        """
        Scan *quantity* units of *sku* in.

        The order that reaches RECEIVED with this scan is merged into the
        warehouse straight away when reconcile_on_full_receipt is on.
        """
        order = self.receiving.receive(order_id, sku, quantity)
        if order.status == OrderStatus.RECEIVED and self.config.reconcile_on_full_receipt:
            await self.engine.reconcile(order, decide=decide)
            order = self.get_order(order_id)
        return order

    async def close_partial(
        self,
        order_id: str,
        reason: Optional[str] = None,
        final: bool = False,
        decide: Optional[PriceDecider] = None,
    ) -> SupplierOrder:
        return await self.lifecycle.close_partial(order_id, reason=reason, final=final, decide=decide)

    def mark_paid(self, order_id: str, paid_at: Optional[datetime] = None) -> SupplierOrder:
        return self.lifecycle.mark_paid(order_id, paid_at=paid_at)

    def delete_order(self, order_id: str) -> None:
        self.lifecycle.delete_order(order_id)

    async def reconcile(
        self,
        order_id: str,
        decide: Optional[PriceDecider] = None,
        result: Optional[ReconciliationResult] = None,
    ) -> ReconciliationResult:
        """Merge whatever the order received since its last reconciliation."""
        order = self.get_order(order_id)
        return await self.engine.reconcile(order, decide=decide, result=result)

    def progress(self, order_id: str) -> OrderProgress:
        order = self.get_order(order_id)
        return OrderProgress(
            order_id=order.id,
            status=order.status,
            receipt=receipt_progress(order),
            payment=payment_progress(order),
        )

    # ------------------------------------------------------------------
    # Warehouse & reporting
    # ------------------------------------------------------------------

    def stock(self) -> list[WarehouseItem]:
        return self.warehouse.list()

    def stock_item(self, sku: str) -> WarehouseItem:
        item = self.warehouse.get(sku)
        if item is None:
            raise NotFound.sku(sku)
        return item

    def stock_history(self, sku: str) -> list[StockHistoryEntry]:
        return self.history.for_sku(sku)

    def audit_log(self, order_id: str) -> list[dict]:
        return self.db.get_audit_log(order_id)

    def summary(self, today: Optional[date] = None) -> OrderSummary:
        return summarize(self.orders.list(), today=today, due_days=self.config.due_soon_days)

    def check_setup(self) -> dict:
        """Report where state lives and whether it is reachable."""
        return {
            "database": {
                "path": str(self.config.db_path),
                "exists": Path(self.config.db_path).exists(),
                "orders": len(self.orders.list()),
                "stock_history_entries": self.history.count(),
            },
            "backups": {
                "path": str(self.backup_service.backup_dir),
                "count": len(self.backup_service.list_backups()),
            },
            "price_decision": self.config.default_price_decision,
        }

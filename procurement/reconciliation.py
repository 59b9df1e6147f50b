"""
Inventory reconciliation engine.

Folds an order's received items into the shared warehouse ledger, one SKU at
a time:

  - SKU already in stock at a different price (and the ordered price is set):
    ask the decision channel, then update the price and add the quantity,
    keep the price and add the quantity, or leave the item alone.
  - SKU already in stock otherwise: add the quantity, take the ordered price.
  - SKU not in stock yet: create it from the order line.

Every applied mutation is appended to the stock history.

Only the part of each receipt not merged before is applied: the order keeps a
per-SKU watermark (SupplierOrder.reconciled) which is saved after every SKU,
so reconciling twice never double counts and a run abandoned half way is
picked up by the next one.

The SKUs of a run are queued and processed strictly in order.  A price
conflict awaits the decider, suspending only this run.  A per-SKU lock keeps
two runs off the same ledger entry.  Under the lock the stored watermark is
read again, so a second run over the same order finds nothing left to merge.
Writes are compare-and-swap on the entry's version with a single re-read
(of both the entry and the watermark) on conflict.
"""
import asyncio
import logging
import uuid
from collections import defaultdict, deque
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from models.supplier_order import OrderProduct, SupplierOrder
from models.warehouse import (
    PriceConflict,
    PriceDecision,
    ReconciliationResult,
    ReconciliationWarning,
    StockHistoryEntry,
    WarehouseItem,
)
from .database import utcnow
from .decisions import PriceDecider
from .errors import StaleLedgerEntry
from .stores import OrderStore, StockHistory, WarehouseLedger

logger = logging.getLogger(__name__)

HISTORY_KIND = "supplier-order"


@dataclass
class _Step:
    sku: str
    delta: int          # units to add to the ledger, refreshed under the SKU lock
    received: int       # watermark once the step is done


def outstanding(order: SupplierOrder) -> dict[str, int]:
    """Received units per SKU not yet merged into the warehouse."""
    pending: dict[str, int] = {}
    for item in order.received_items:
        delta = item.quantity - order.reconciled.get(item.sku, 0)
        if delta > 0:
            pending[item.sku] = delta
    return pending


class ReconciliationEngine:
    """
    Merges received goods into the warehouse ledger.

    Usage:
        engine = ReconciliationEngine(ledger, history, store, FixedDecider("keep_price"))
        result = await engine.reconcile(order)
    """

    def __init__(
        self,
        ledger: WarehouseLedger,
        history: StockHistory,
        store: OrderStore,
        decide: PriceDecider,
        clock: Callable[[], datetime] = utcnow,
        audit: Optional[Callable[..., None]] = None,
    ) -> None:
        self.ledger = ledger
        self.history = history
        self.store = store
        self.decide = decide
        self.clock = clock
        self.audit = audit
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def reconcile(
        self,
        order: SupplierOrder,
        decide: Optional[PriceDecider] = None,
        result: Optional[ReconciliationResult] = None,
    ) -> ReconciliationResult:
        """
        Merge everything received on *order* since its last reconciliation.

        Args:
            order:   The order to reconcile.  Its watermark is updated in place.
            decide:  Decider for this run; defaults to the engine's own.
            result:  Result object to fill in.  Pass one in to see which SKUs
                     were left pending if the run gets cancelled.

        Cancelling the run while it waits for a decision keeps the SKUs
        already merged; the waiting SKU and the ones queued behind it are
        listed in result.pending and CancelledError is re-raised.
        """
        decide = decide or self.decide
        result = result or ReconciliationResult(order_id=order.id)

        steps: deque[_Step] = deque(
            _Step(sku=sku, delta=delta, received=order.reconciled.get(sku, 0) + delta)
            for sku, delta in outstanding(order).items()
        )
        if not steps:
            logger.debug("Nothing to reconcile for %s", order.order_number)
            return result

        logger.info("Reconciling %s: %d SKU(s)", order.order_number, len(steps))
        try:
            while steps:
                await self._process(order, steps[0], decide, result)
                steps.popleft()
        except asyncio.CancelledError:
            result.pending = [step.sku for step in steps]
            logger.warning(
                "Reconciliation of %s cancelled; %d SKU(s) left pending: %s",
                order.order_number, len(steps), ", ".join(result.pending),
            )
            raise

        logger.info(
            "Reconciled %s  updated=%d created=%d ignored=%d skipped=%d",
            order.order_number, len(result.updated), len(result.created),
            len(result.ignored), len(result.skipped),
        )
        if self.audit and (result.changed or result.ignored):
            self.audit(order.id, "reconciled", detail={
                "updated": result.updated,
                "created": result.created,
                "ignored": result.ignored,
            })
        return result

    # ------------------------------------------------------------------
    # One SKU
    # ------------------------------------------------------------------

    async def _process(
        self,
        order: SupplierOrder,
        step: _Step,
        decide: PriceDecider,
        result: ReconciliationResult,
    ) -> None:
        product = order.find_product(step.sku)
        if product is None:
            warning = ReconciliationWarning(
                sku=step.sku,
                message=f"SKU {step.sku} was received on {order.order_number} but is not one of its products",
            )
            logger.warning("%s; skipped", warning.message)
            result.warnings.append(warning)
            result.skipped.append(step.sku)
            return

        async with self._locks[product.sku]:
            decision: Optional[PriceDecision] = None
            for attempt in (1, 2):
                # Another run may have merged these units while we waited
                step.delta = self._unmerged(order, step)
                if step.delta <= 0:
                    logger.info("%s on %s already merged by another run", product.sku, order.order_number)
                    return
                existing = self.ledger.get(product.sku)
                if existing is not None and _price_conflict(existing, product):
                    if decision is None:
                        decision = await decide(self._conflict(order, product, existing, step))
                    if decision == PriceDecision.IGNORE:
                        logger.info("Price conflict on %s ignored; stock left unchanged", product.sku)
                        result.ignored.append(product.sku)
                        self._advance_watermark(order, product.sku, step.received)
                        return
                    item = _merged(existing, product, step.delta, decision == PriceDecision.UPDATE_PRICE)
                elif existing is not None:
                    item = _merged(existing, product, step.delta, product.price > 0)
                else:
                    item = _new_item(product, step.delta)

                try:
                    stored = self.ledger.upsert(item)
                    break
                except StaleLedgerEntry:
                    if attempt == 2:
                        raise
                    logger.warning("Warehouse entry %s changed underneath us; re-reading", product.sku)

            self.history.append(StockHistoryEntry(
                sku=stored.sku,
                timestamp=self.clock(),
                quantity=stored.quantity,
                price=stored.price,
                kind=HISTORY_KIND,
                description=f"Order {order.order_number} - {order.supplier}",
                order_id=order.id,
                order_number=order.order_number,
                quantity_received=step.delta,
            ))
            (result.created if existing is None else result.updated).append(stored.sku)
            logger.info(
                "Stock %s: +%d -> %d @ %.2f  (%s)",
                stored.sku, step.delta, stored.quantity, stored.price, order.order_number,
            )
            self._advance_watermark(order, product.sku, step.received)

    def _conflict(
        self,
        order: SupplierOrder,
        product: OrderProduct,
        existing: WarehouseItem,
        step: _Step,
    ) -> PriceConflict:
        conflict = PriceConflict(
            id=uuid.uuid4().hex,
            order_id=order.id,
            order_number=order.order_number,
            sku=product.sku,
            name=existing.name or product.name,
            old_price=existing.price,
            new_price=product.price,
            quantity=step.delta,
        )
        logger.info(
            "Price conflict on %s: stock %.2f vs ordered %.2f. %s",
            product.sku, existing.price, product.price, conflict.suggestion,
        )
        return conflict

    def _unmerged(self, order: SupplierOrder, step: _Step) -> int:
        """Units of the step still to merge, against the watermark as stored now."""
        stored = self.store.get(order.id)
        merged = order.reconciled.get(step.sku, 0)
        if stored is not None:
            merged = max(merged, stored.reconciled.get(step.sku, 0))
        if merged:
            order.reconciled[step.sku] = merged
        return step.received - merged

    def _advance_watermark(self, order: SupplierOrder, sku: str, received: int) -> None:
        """Record *received* units of *sku* as merged, on the stored order too."""
        order.reconciled[sku] = received
        stored = self.store.get(order.id)
        if stored is None:
            logger.warning("Order %s disappeared during reconciliation", order.order_number)
            return
        stored.reconciled[sku] = max(stored.reconciled.get(sku, 0), received)
        self.store.put(stored)


def _price_conflict(existing: WarehouseItem, product: OrderProduct) -> bool:
    return product.price > 0 and round(existing.price, 2) != round(product.price, 2)


def _merged(existing: WarehouseItem, product: OrderProduct, delta: int, take_price: bool) -> WarehouseItem:
    update = {"quantity": existing.quantity + delta}
    if take_price:
        update["price"] = product.price
    return existing.model_copy(update=update)


def _new_item(product: OrderProduct, delta: int) -> WarehouseItem:
    return WarehouseItem(
        sku=product.sku,
        name=product.name or product.sku,
        quantity=delta,
        price=product.price,
        category=product.category,
        product_type=product.product_type,
        brand=product.brand,
    )

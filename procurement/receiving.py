"""
Receiving ledger.

Accumulates per-SKU received quantities against an order's ordered
quantities and derives the order status from them.  This is the only
writer of SupplierOrder.received_items; it never lets a SKU's received
quantity exceed the ordered quantity.
"""
import logging
from datetime import datetime
from typing import Callable, Optional

from rapidfuzz import fuzz, process

from models.supplier_order import (
    OrderStatus,
    PaymentProgress,
    ReceiptProgress,
    ReceivedItem,
    SupplierOrder,
)
from .database import utcnow
from .errors import (
    InvalidState,
    NotFound,
    ProductNotInOrder,
    QuantityExceedsOrdered,
    ValidationError,
)
from .stores import OrderStore

logger = logging.getLogger(__name__)

# Goods can be scanned in while they are on their way or partially received
RECEIVABLE_STATUSES = {OrderStatus.IN_TRANSIT, OrderStatus.PARTIAL}

SKU_SUGGESTION_THRESHOLD = 70
MAX_SKU_SUGGESTIONS = 3


def derive_status(order: SupplierOrder) -> OrderStatus:
    """
    Status implied by the received totals.

    RECEIVED when every ordered unit has arrived, PARTIAL when some have,
    otherwise the current status is kept.
    """
    total_ordered = order.total_ordered
    total_received = sum(item.quantity for item in order.received_items)
    if total_ordered > 0 and total_received == total_ordered:
        return OrderStatus.RECEIVED
    if total_received > 0:
        return OrderStatus.PARTIAL
    return order.status


def receipt_progress(order: SupplierOrder) -> ReceiptProgress:
    total = order.total_ordered
    received = sum(item.quantity for item in order.received_items)
    return ReceiptProgress(
        received_units=received,
        total_units=total,
        percentage=_percentage(received, total),
    )


def payment_progress(order: SupplierOrder) -> PaymentProgress:
    """
    How much of the order has been paid.

    A PARTIAL order only owes the value of what was received; RECEIVED and
    PAID orders owe the full order value, and a PAID order has paid all of it.
    """
    if order.status == OrderStatus.PARTIAL:
        total_owed = order.received_value
    else:
        total_owed = round(order.total_value, 2)

    paid = total_owed if order.status == OrderStatus.PAID else 0.0
    return PaymentProgress(
        paid_amount=paid,
        total_owed=total_owed,
        percentage=_percentage(paid, total_owed),
    )


def suggest_skus(
    sku: str,
    order: SupplierOrder,
    threshold: int = SKU_SUGGESTION_THRESHOLD,
) -> list[str]:
    """Closest SKUs of the order to a mistyped / misscanned code."""
    choices = [p.sku for p in order.products]
    if not choices or not sku.strip():
        return []
    matches = process.extract(
        sku.strip().upper(),
        choices,
        scorer=fuzz.ratio,
        processor=str.upper,
        limit=MAX_SKU_SUGGESTIONS,
        score_cutoff=threshold,
    )
    return [choice for choice, _score, _idx in matches]


class ReceivingLedger:
    """
    Records goods received against supplier orders.

    Usage:
        ledger = ReceivingLedger(store)
        order = ledger.receive(order_id, "ABC123", 1)
    """

    def __init__(
        self,
        store: OrderStore,
        clock: Callable[[], datetime] = utcnow,
        suggestion_threshold: int = SKU_SUGGESTION_THRESHOLD,
        audit: Optional[Callable[..., None]] = None,
    ) -> None:
        self.store = store
        self.clock = clock
        self.suggestion_threshold = suggestion_threshold
        self.audit = audit

    def receive(self, order_id: str, sku: str, delta_quantity: int) -> SupplierOrder:
        """
        Add *delta_quantity* received units of *sku* to the order.

        Everything is validated before the order is touched; a rejected call
        leaves the stored order unchanged.
        """
        if isinstance(delta_quantity, bool) or not isinstance(delta_quantity, int):
            raise ValidationError(f"Quantity must be a whole number, got {delta_quantity!r}")
        if delta_quantity <= 0:
            raise ValidationError(f"Quantity must be positive, got {delta_quantity}")

        order = self.store.get(order_id)
        if order is None:
            raise NotFound.order(order_id)

        if order.status not in RECEIVABLE_STATUSES:
            raise InvalidState(
                f"Cannot receive goods for order {order.order_number} in status {order.status.value}",
                current=order.status,
            )

        product = order.find_product(sku)
        if product is None:
            raise ProductNotInOrder(
                order.order_number,
                sku,
                suggest_skus(sku, order, self.suggestion_threshold),
            )

        current = order.received_quantity(product.sku)
        new_quantity = current + delta_quantity
        if new_quantity > product.quantity:
            raise QuantityExceedsOrdered(product.sku, product.quantity, current, delta_quantity)

        now = self.clock()
        items = [i for i in order.received_items if i.sku.lower() != product.sku.lower()]
        if new_quantity > 0:
            items.append(ReceivedItem(sku=product.sku, quantity=new_quantity, received_at=now))

        order.received_items = items
        order.total_received = sum(i.quantity for i in items)
        order.total_spent = order.received_value
        previous_status = order.status
        order.status = derive_status(order)
        order.last_received_at = now

        self.store.put(order)
        logger.info(
            "Received %d x %s on %s (%d/%d)  status=%s",
            delta_quantity, product.sku, order.order_number,
            new_quantity, product.quantity, order.status.value,
        )
        if self.audit and order.status != previous_status:
            self.audit(order.id, order.status.value.lower(), detail={"from": previous_status.value})
        return order


def _percentage(part: float, whole: float) -> int:
    if whole <= 0:
        return 0
    return int(round(part / whole * 100))

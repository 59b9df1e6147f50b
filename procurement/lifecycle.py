"""
Order lifecycle controller.

Owns the supplier order state machine:

    DRAFT -> CONFIRMED -> IN_TRANSIT -> PARTIAL / RECEIVED -> PAID
                                        PARTIAL -> RECEIVED (manual close-out)

Receipt-driven moves (IN_TRANSIT -> PARTIAL / RECEIVED) are made by the
receiving ledger; everything else goes through this class.  Each operation
loads the order, validates the whole request, and only then writes it back.
"""
import logging
import uuid
from datetime import date, datetime, timedelta
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

from models.supplier_order import OrderProduct, OrderStatus, SupplierOrder
from .database import utcnow
from .errors import InvalidState, NotFound, ValidationError
from .intake import parse_price
from .stores import OrderStore

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.DRAFT:      {OrderStatus.CONFIRMED},
    OrderStatus.CONFIRMED:  {OrderStatus.IN_TRANSIT},
    OrderStatus.IN_TRANSIT: {OrderStatus.RECEIVED, OrderStatus.PARTIAL},
    OrderStatus.PARTIAL:    {OrderStatus.RECEIVED, OrderStatus.PAID},
    OrderStatus.RECEIVED:   {OrderStatus.PAID},
    OrderStatus.PAID:       set(),
}

# Orders whose goods are (at least partly) in the warehouse cannot be deleted
UNDELETABLE_STATUSES = {OrderStatus.RECEIVED, OrderStatus.PAID}

DEFAULT_PARTIAL_REASON = "Partial order - missing products"
DEFAULT_PAYMENT_TERMS_DAYS = 30


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


def generate_order_number(when: datetime) -> str:
    """ORD-YYYYMMDD-HHMM from the creation timestamp."""
    return when.strftime("ORD-%Y%m%d-%H%M")


class OrderLifecycle:
    """
    Validates and applies lifecycle transitions.

    Args:
        store:               Order store the orders live in.
        reconcile:           Coroutine function (order, decide=None) called after a
                             partial / final close-out to merge its receipts
                             into the warehouse.  None disables the merge.
        clock:               Source of "now" (UTC), injectable for tests.
        payment_terms_days:  Days after purchase a partial order is due.
        audit:               Callable(order_id, action, detail=...) for the
                             audit log.
    """

    def __init__(
        self,
        store: OrderStore,
        reconcile: Optional[Callable[..., Awaitable[Any]]] = None,
        clock: Callable[[], datetime] = utcnow,
        payment_terms_days: int = DEFAULT_PAYMENT_TERMS_DAYS,
        audit: Optional[Callable[..., None]] = None,
    ) -> None:
        self.store = store
        self.reconcile = reconcile
        self.clock = clock
        self.payment_terms_days = payment_terms_days
        self.audit = audit

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_order(
        self,
        supplier: str,
        purchase_date: Union[date, str, None],
        products: Iterable[Union[OrderProduct, dict]],
        invoice_number: Optional[str] = None,
        payment_date: Union[date, str, None] = None,
    ) -> SupplierOrder:
        """
        Create a DRAFT order.

        Every problem with the request is collected and raised as one
        ValidationError; nothing is stored unless the whole order is valid.
        """
        problems: list[str] = []

        supplier = (supplier or "").strip()
        if not supplier:
            problems.append("supplier is required")

        parsed_purchase = _parse_date(purchase_date, "purchase_date", problems, required=True)
        parsed_payment = _parse_date(payment_date, "payment_date", problems, required=False)

        lines = _validate_products(list(products or []), problems)

        if problems:
            raise ValidationError(
                f"Invalid order: {'; '.join(problems)}", problems=problems,
            )

        now = self.clock()
        order = SupplierOrder(
            id=uuid.uuid4().hex,
            order_number=self._unique_order_number(now),
            supplier=supplier,
            purchase_date=parsed_purchase,
            payment_date=parsed_payment,
            invoice_number=(invoice_number or "").strip() or None,
            products=lines,
            total_value=round(sum(p.line_total for p in lines), 2),
            status=OrderStatus.DRAFT,
            created_at=now,
        )
        self.store.put(order)
        logger.info(
            "Created %s for %s  %d line(s)  total=%.2f",
            order.order_number, supplier, len(lines), order.total_value,
        )
        self._audit(order.id, "created", {"order_number": order.order_number})
        return order

    def _unique_order_number(self, now: datetime) -> str:
        base = generate_order_number(now)
        candidate, suffix = base, 2
        while self.store.order_number_taken(candidate):
            candidate = f"{base}-{suffix}"
            suffix += 1
        return candidate

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def confirm(self, order_id: str) -> SupplierOrder:
        return self._transition(order_id, OrderStatus.CONFIRMED, "confirmed")

    def mark_in_transit(self, order_id: str) -> SupplierOrder:
        return self._transition(order_id, OrderStatus.IN_TRANSIT, "in_transit")

    def mark_paid(self, order_id: str, paid_at: Optional[datetime] = None) -> SupplierOrder:
        order = self._load(order_id)
        self._check(order, OrderStatus.PAID)
        order.status = OrderStatus.PAID
        order.paid_at = paid_at or self.clock()
        self.store.put(order)
        logger.info("Order %s marked paid", order.order_number)
        self._audit(order.id, "paid", {"paid_at": order.paid_at})
        return order

    async def close_partial(
        self,
        order_id: str,
        reason: Optional[str] = None,
        final: bool = False,
        decide: Optional[Callable[..., Awaitable[Any]]] = None,
    ) -> SupplierOrder:
        """
        Close out an order that will not be fully delivered.

        final=False puts an IN_TRANSIT / PARTIAL order in PARTIAL, records the
        reason and, the first time, sets the payment date to purchase date
        plus the payment terms.  final=True moves a PARTIAL order to RECEIVED.
        Either way the received goods are then reconciled into the warehouse,
        with *decide* answering price conflicts when given.
        """
        order = self._load(order_id)
        now = self.clock()

        if final:
            if order.status != OrderStatus.PARTIAL:
                raise InvalidState(
                    f"Only a PARTIAL order can be closed out; {order.order_number} is {order.status.value}",
                    current=order.status,
                    target=OrderStatus.RECEIVED,
                )
            order.status = OrderStatus.RECEIVED
            order.closed_at = now
            if reason:
                order.partial_reason = reason.strip()
            action = "closed"
        else:
            if order.status not in (OrderStatus.IN_TRANSIT, OrderStatus.PARTIAL):
                raise InvalidState(
                    f"Cannot close order {order.order_number} as partial from {order.status.value}",
                    current=order.status,
                    target=OrderStatus.PARTIAL,
                )
            order.status = OrderStatus.PARTIAL
            order.partial_reason = (reason or "").strip() or DEFAULT_PARTIAL_REASON
            if order.partial_closed_at is None:
                order.partial_closed_at = now
                order.payment_date = order.purchase_date + timedelta(days=self.payment_terms_days)
            action = "partial_closed"

        self.store.put(order)
        logger.info(
            "Order %s %s  reason=%r",
            order.order_number, action.replace("_", " "), order.partial_reason,
        )
        self._audit(order.id, action, {"reason": order.partial_reason})

        if self.reconcile is not None:
            await self.reconcile(order, decide=decide)
            # the merge advances the order's watermark
            order = self._load(order_id)
        return order

    def delete_order(self, order_id: str) -> None:
        order = self._load(order_id)
        if order.status in UNDELETABLE_STATUSES:
            raise InvalidState(
                f"Cannot delete order {order.order_number}: it is {order.status.value}",
                current=order.status,
            )
        if not self.store.delete(order_id):
            raise NotFound.order(order_id)
        logger.info("Deleted order %s", order.order_number)
        self._audit(order_id, "deleted", {"order_number": order.order_number})

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load(self, order_id: str) -> SupplierOrder:
        order = self.store.get(order_id)
        if order is None:
            raise NotFound.order(order_id)
        return order

    def _check(self, order: SupplierOrder, target: OrderStatus) -> None:
        if not can_transition(order.status, target):
            raise InvalidState(
                f"Order {order.order_number} cannot go from {order.status.value} to {target.value}",
                current=order.status,
                target=target,
            )

    def _transition(self, order_id: str, target: OrderStatus, action: str) -> SupplierOrder:
        order = self._load(order_id)
        self._check(order, target)
        previous = order.status
        order.status = target
        self.store.put(order)
        logger.info("Order %s: %s -> %s", order.order_number, previous.value, target.value)
        self._audit(order.id, action, {"from": previous.value})
        return order

    def _audit(self, order_id: str, action: str, detail: Optional[dict] = None) -> None:
        if self.audit:
            self.audit(order_id, action, detail=detail)


def _parse_date(value, field: str, problems: list[str], required: bool) -> Optional[date]:
    if value is None or value == "":
        if required:
            problems.append(f"{field} is required")
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError:
        problems.append(f"{field} is not a valid date (YYYY-MM-DD): {value!r}")
        return None


def _validate_products(raw: list, problems: list[str]) -> list[OrderProduct]:
    if not raw:
        problems.append("at least one product is required")
        return []

    lines: list[OrderProduct] = []
    seen: set[str] = set()

    for idx, item in enumerate(raw, start=1):
        data = item.model_dump() if isinstance(item, OrderProduct) else dict(item)
        sku = str(data.get("sku") or "").strip()
        if not sku:
            problems.append(f"product {idx}: SKU is required")
            continue

        key = sku.lower()
        if key in seen:
            problems.append(f"product {idx}: duplicate SKU {sku}")
            continue
        seen.add(key)

        quantity = data.get("quantity")
        if isinstance(quantity, str) and quantity.strip().lstrip("-").isdigit():
            quantity = int(quantity.strip())
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            problems.append(f"{sku}: quantity must be a positive whole number, got {quantity!r}")
            continue

        try:
            price = parse_price(data.get("price"))
        except ValueError:
            problems.append(f"{sku}: invalid price {data.get('price')!r}")
            continue
        if price < 0:
            problems.append(f"{sku}: price cannot be negative")
            continue

        lines.append(OrderProduct(
            sku=sku,
            quantity=quantity,
            price=price,
            name=data.get("name"),
            category=data.get("category"),
            product_type=data.get("product_type"),
            brand=data.get("brand"),
        ))
    return lines

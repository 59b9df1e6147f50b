"""
Summary figures and filters for the supplier order list.
"""
from datetime import date
from typing import Iterable, Optional, Union

from models.supplier_order import OrderStatus, OrderSummary, SupplierOrder

TO_PAY_STATUSES = {OrderStatus.PARTIAL, OrderStatus.RECEIVED}

SORT_FIELDS = ("purchase_date", "payment_date", "total_value", "supplier", "status")


def summarize(
    orders: Iterable[SupplierOrder],
    today: Optional[date] = None,
    due_days: int = 5,
) -> OrderSummary:
    """
    Headline figures for a set of orders.

    Paid / to-pay values count only what was actually received, at the
    ordered prices.  due_last_5_days counts orders whose payment date fell
    in the *due_days* days up to and including today.
    """
    today = today or date.today()
    summary = OrderSummary(by_status={s.value: 0 for s in OrderStatus})

    paid_value = to_pay_value = total_value = 0.0
    for order in orders:
        summary.total_orders += 1
        total_value += order.total_value
        summary.by_status[order.status.value] += 1

        if order.status == OrderStatus.PAID:
            paid_value += order.received_value
        elif order.status in TO_PAY_STATUSES:
            summary.to_pay += 1
            to_pay_value += order.received_value

        if order.payment_date and 0 <= (today - order.payment_date).days <= due_days:
            summary.due_last_5_days += 1

    summary.total_value = round(total_value, 2)
    summary.paid_value = round(paid_value, 2)
    summary.to_pay_value = round(to_pay_value, 2)
    return summary


def days_until_due(order: SupplierOrder, today: Optional[date] = None) -> Optional[int]:
    if order.payment_date is None:
        return None
    return (order.payment_date - (today or date.today())).days


def filter_orders(
    orders: Iterable[SupplierOrder],
    search: Optional[str] = None,
    status: Union[OrderStatus, str, None] = None,
    due_within_days: Optional[int] = None,
    only_to_receive: bool = False,
    min_value: Optional[float] = None,
    max_value: Optional[float] = None,
    today: Optional[date] = None,
) -> list[SupplierOrder]:
    """
    Apply the order list filters.

    Args:
        search:           Case-insensitive substring of the order number,
                          the supplier, or any SKU of the order.
        status:           Keep only orders in this status.
        due_within_days:  Keep orders whose payment is due in 0..N days.
        only_to_receive:  Keep orders with units still to arrive.
        min_value:        Minimum order total.
        max_value:        Maximum order total.
    """
    wanted_status = OrderStatus(status) if status else None
    needle = (search or "").strip().lower()
    result = []

    for order in orders:
        if needle and not (
            needle in order.order_number.lower()
            or needle in order.supplier.lower()
            or any(needle in p.sku.lower() for p in order.products)
        ):
            continue
        if wanted_status and order.status != wanted_status:
            continue
        if due_within_days is not None:
            days = days_until_due(order, today)
            if days is None or not 0 <= days <= due_within_days:
                continue
        if only_to_receive and order.total_received >= order.total_ordered:
            continue
        if min_value is not None and order.total_value < min_value:
            continue
        if max_value is not None and order.total_value > max_value:
            continue
        result.append(order)
    return result


def sort_orders(
    orders: Iterable[SupplierOrder],
    field: str = "purchase_date",
    descending: bool = True,
) -> list[SupplierOrder]:
    """Sort for display.  Orders without a payment date always sort last."""
    if field not in SORT_FIELDS:
        raise ValueError(f"Cannot sort by {field!r}; choose one of {', '.join(SORT_FIELDS)}")

    orders = list(orders)
    if field == "payment_date":
        dated = [o for o in orders if o.payment_date]
        undated = [o for o in orders if not o.payment_date]
        dated.sort(key=lambda o: o.payment_date, reverse=descending)
        return dated + undated

    keys = {
        "purchase_date": lambda o: o.purchase_date,
        "total_value":   lambda o: o.total_value,
        "supplier":      lambda o: o.supplier.lower(),
        "status":        lambda o: o.status.value,
    }
    return sorted(orders, key=keys[field], reverse=descending)

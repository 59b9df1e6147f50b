from datetime import date, datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class OrderStatus(str, Enum):
    DRAFT = "DRAFT"
    CONFIRMED = "CONFIRMED"
    IN_TRANSIT = "IN_TRANSIT"
    RECEIVED = "RECEIVED"
    PARTIAL = "PARTIAL"
    PAID = "PAID"


class OrderProduct(BaseModel):
    """
    One line of a supplier order.
    quantity and price are the ordered commitment and never change after creation.
    """
    sku: str
    quantity: int
    price: float                            # unit price, already normalised to a float
    name: Optional[str] = None
    category: Optional[str] = None          # free-text classification fields,
    product_type: Optional[str] = None      # copied to the warehouse on first receipt
    brand: Optional[str] = None

    @property
    def line_total(self) -> float:
        return self.quantity * self.price


class ReceivedItem(BaseModel):
    """Units received so far for one SKU of an order."""
    sku: str
    quantity: int
    received_at: datetime


class SupplierOrder(BaseModel):
    """
    A purchase commitment to an external goods supplier.

    Created once in DRAFT, then mutated in place by the lifecycle controller
    and the receiving ledger until it reaches PAID.
    """
    id: str
    order_number: str                       # ORD-YYYYMMDD-HHMM
    supplier: str
    purchase_date: date
    payment_date: Optional[date] = None
    invoice_number: Optional[str] = None

    products: List[OrderProduct] = Field(default_factory=list)
    received_items: List[ReceivedItem] = Field(default_factory=list)

    total_value: float = 0.0
    total_received: int = 0
    total_spent: float = 0.0
    status: OrderStatus = OrderStatus.DRAFT

    # Quantity per SKU already merged into the warehouse ledger
    reconciled: Dict[str, int] = Field(default_factory=dict)

    partial_reason: Optional[str] = None
    created_at: datetime
    last_received_at: Optional[datetime] = None
    partial_closed_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None

    # Shipment tracking, owned by the tracking collaborator
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None

    def find_product(self, sku: str) -> Optional[OrderProduct]:
        """Case-insensitive lookup of an order line by SKU."""
        wanted = sku.strip().lower()
        for product in self.products:
            if product.sku.lower() == wanted:
                return product
        return None

    def find_received(self, sku: str) -> Optional[ReceivedItem]:
        wanted = sku.strip().lower()
        for item in self.received_items:
            if item.sku.lower() == wanted:
                return item
        return None

    def received_quantity(self, sku: str) -> int:
        item = self.find_received(sku)
        return item.quantity if item else 0

    @property
    def total_ordered(self) -> int:
        return sum(p.quantity for p in self.products)

    @property
    def received_value(self) -> float:
        """Value of the received units at the ordered prices."""
        total = 0.0
        for item in self.received_items:
            product = self.find_product(item.sku)
            if product is not None:
                total += item.quantity * product.price
        return round(total, 2)


class ReceiptProgress(BaseModel):
    received_units: int
    total_units: int
    percentage: int


class PaymentProgress(BaseModel):
    paid_amount: float
    total_owed: float
    percentage: int


class OrderProgress(BaseModel):
    """Receipt and payment progress of one order, as shown on the order list."""
    order_id: str
    status: OrderStatus
    receipt: ReceiptProgress
    payment: PaymentProgress


class OrderSummary(BaseModel):
    """Headline figures for the supplier order list."""
    total_orders: int = 0
    total_value: float = 0.0
    by_status: Dict[str, int] = Field(default_factory=dict)
    to_pay: int = 0                         # PARTIAL + RECEIVED orders
    paid_value: float = 0.0                 # received value of PAID orders
    to_pay_value: float = 0.0               # received value of PARTIAL + RECEIVED orders
    due_last_5_days: int = 0                # payment date falls in the last few days

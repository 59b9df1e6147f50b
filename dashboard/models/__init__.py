"""
Pydantic models for dashboard API requests.
"""
from datetime import date, datetime
from typing import Optional, Union

from pydantic import BaseModel, Field


class ProductLine(BaseModel):
    sku: str
    quantity: int
    price: Union[float, str]   # "25,50" is accepted and normalised
    name: Optional[str] = None
    category: Optional[str] = None
    product_type: Optional[str] = None
    brand: Optional[str] = None


class OrderCreate(BaseModel):
    supplier: str
    purchase_date: date
    products: list[ProductLine]
    invoice_number: Optional[str] = None
    payment_date: Optional[date] = None


class OrderSheetCreate(BaseModel):
    supplier: str
    purchase_date: date
    csv: str                   # order sheet text, SKU;Quantità;Prezzo Unitario
    invoice_number: Optional[str] = None


class ReceiveRequest(BaseModel):
    sku: str
    quantity: int = Field(default=1, gt=0)
    decision: Optional[str] = None   # answer for price conflicts; None = ask via /api/price-conflicts


class ClosePartialRequest(BaseModel):
    reason: Optional[str] = None
    final: bool = False
    decision: Optional[str] = None


class PayRequest(BaseModel):
    paid_at: Optional[datetime] = None


class ReconcileRequest(BaseModel):
    decision: Optional[str] = None


class DecisionRequest(BaseModel):
    decision: str              # update_price | keep_price | ignore

"""
Store interfaces over the SQLite database.

  OrderStore       get / list / put / delete of full SupplierOrder objects
  WarehouseLedger  get / upsert / list of WarehouseItem, compare-and-swap per SKU
  StockHistory     append-only inventory audit trail

None of these apply business rules beyond identity lookup.
"""
from __future__ import annotations

import logging
import sqlite3
from typing import Optional

from models.supplier_order import OrderStatus, SupplierOrder
from models.warehouse import StockHistoryEntry, WarehouseItem
from .database import Database, utcnow
from .errors import StaleLedgerEntry

logger = logging.getLogger(__name__)


class OrderStore:
    """Persisted collection of supplier orders, stored as full JSON payloads."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def get(self, order_id: str) -> Optional[SupplierOrder]:
        with self.db.connect() as conn:
            row = conn.execute(
                "SELECT data FROM supplier_orders WHERE id=?", (order_id,)
            ).fetchone()
        return SupplierOrder.model_validate_json(row["data"]) if row else None

    def list(
        self,
        status: Optional[OrderStatus] = None,
        search: Optional[str] = None,
    ) -> list[SupplierOrder]:
        """
        Return orders newest purchase first.

        Args:
            status:  Filter by status, or None for all.
            search:  Case-insensitive substring match on order number,
                     supplier, or any SKU of the order.
        """
        clauses: list[str] = []
        params: list = []

        if status:
            clauses.append("status = ?")
            params.append(OrderStatus(status).value)
        if search:
            clauses.append("(order_number LIKE ? OR supplier LIKE ? OR skus LIKE ?)")
            like = f"%{search}%"
            params.extend([like, like, like])

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        with self.db.connect() as conn:
            rows = conn.execute(
                f"""SELECT data FROM supplier_orders {where}
                    ORDER BY purchase_date DESC, created_at DESC""",
                params,
            ).fetchall()
        return [SupplierOrder.model_validate_json(r["data"]) for r in rows]

    def put(self, order: SupplierOrder) -> SupplierOrder:
        """Insert or fully replace an order."""
        now = utcnow().isoformat()
        with self.db.connect() as conn:
            conn.execute(
                """
                INSERT INTO supplier_orders (
                    id, order_number, supplier, status,
                    purchase_date, payment_date, total_value, skus,
                    data, created_at, updated_at
                ) VALUES (
                    :id, :order_number, :supplier, :status,
                    :purchase_date, :payment_date, :total_value, :skus,
                    :data, :created_at, :updated_at
                )
                ON CONFLICT(id) DO UPDATE SET
                    order_number  = excluded.order_number,
                    supplier      = excluded.supplier,
                    status        = excluded.status,
                    purchase_date = excluded.purchase_date,
                    payment_date  = excluded.payment_date,
                    total_value   = excluded.total_value,
                    skus          = excluded.skus,
                    data          = excluded.data,
                    updated_at    = excluded.updated_at
                """,
                {
                    "id":            order.id,
                    "order_number":  order.order_number,
                    "supplier":      order.supplier,
                    "status":        order.status.value,
                    "purchase_date": order.purchase_date.isoformat(),
                    "payment_date":  order.payment_date.isoformat() if order.payment_date else None,
                    "total_value":   order.total_value,
                    "skus":          "|" + "|".join(p.sku for p in order.products) + "|",
                    "data":          order.model_dump_json(),
                    "created_at":    order.created_at.isoformat(),
                    "updated_at":    now,
                },
            )
        logger.debug("Order stored: %s  status=%s", order.order_number, order.status.value)
        return order

    def delete(self, order_id: str) -> bool:
        with self.db.connect() as conn:
            conn.execute("DELETE FROM supplier_orders WHERE id = ?", (order_id,))
            return conn.execute("SELECT changes()").fetchone()[0] > 0

    def order_number_taken(self, order_number: str) -> bool:
        with self.db.connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM supplier_orders WHERE order_number = ?", (order_number,)
            ).fetchone()
        return row is not None


class WarehouseLedger:
    """
    Keyed store of current stock, shared by every order.

    upsert() is a compare-and-swap on the item's version: an item read at
    version N can only be written back while the stored row is still at N.
    Items with version 0 are inserts.
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    def get(self, sku: str) -> Optional[WarehouseItem]:
        with self.db.connect() as conn:
            row = conn.execute(
                "SELECT * FROM warehouse_items WHERE sku = ?", (sku,)
            ).fetchone()
        return _row_to_item(row) if row else None

    def list(self) -> list[WarehouseItem]:
        with self.db.connect() as conn:
            rows = conn.execute("SELECT * FROM warehouse_items ORDER BY sku").fetchall()
        return [_row_to_item(r) for r in rows]

    def upsert(self, item: WarehouseItem) -> WarehouseItem:
        """
        Write *item* back to the ledger and return the stored copy.

        Raises StaleLedgerEntry if another writer got there first.
        """
        updated_at = utcnow()
        values = {
            "sku":          item.sku,
            "name":         item.name,
            "quantity":     item.quantity,
            "price":        item.price,
            "category":     item.category,
            "product_type": item.product_type,
            "brand":        item.brand,
            "version":      item.version,
            "updated_at":   updated_at.isoformat(),
        }
        with self.db.connect() as conn:
            if item.version == 0:
                try:
                    conn.execute(
                        """INSERT INTO warehouse_items (
                               sku, name, quantity, price, category, product_type, brand,
                               version, updated_at
                           ) VALUES (
                               :sku, :name, :quantity, :price, :category, :product_type, :brand,
                               1, :updated_at
                           )""",
                        values,
                    )
                except sqlite3.IntegrityError as exc:
                    if "UNIQUE" not in str(exc) and "PRIMARY KEY" not in str(exc):
                        raise
                    raise StaleLedgerEntry(item.sku, 0) from exc
            else:
                conn.execute(
                    """UPDATE warehouse_items SET
                           name = :name, quantity = :quantity, price = :price,
                           category = :category, product_type = :product_type, brand = :brand,
                           version = version + 1, updated_at = :updated_at
                       WHERE sku = :sku AND version = :version""",
                    values,
                )
                if conn.execute("SELECT changes()").fetchone()[0] == 0:
                    raise StaleLedgerEntry(item.sku, item.version)

        return item.model_copy(update={"version": item.version + 1, "updated_at": updated_at})


class StockHistory:
    """Append-only audit log of warehouse mutations."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def append(self, entry: StockHistoryEntry) -> None:
        with self.db.connect() as conn:
            conn.execute(
                """INSERT INTO stock_history (
                       sku, timestamp, quantity, price, kind, description,
                       order_id, order_number, quantity_received
                   ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    entry.sku,
                    entry.timestamp.isoformat(),
                    entry.quantity,
                    entry.price,
                    entry.kind,
                    entry.description,
                    entry.order_id,
                    entry.order_number,
                    entry.quantity_received,
                ),
            )

    def for_sku(self, sku: str) -> list[StockHistoryEntry]:
        """Return all entries for one SKU, oldest first."""
        with self.db.connect() as conn:
            rows = conn.execute(
                """SELECT sku, timestamp, quantity, price, kind, description,
                          order_id, order_number, quantity_received
                   FROM stock_history WHERE sku = ?
                   ORDER BY timestamp ASC, id ASC""",
                (sku,),
            ).fetchall()
        return [StockHistoryEntry.model_validate(dict(r)) for r in rows]

    def count(self) -> int:
        with self.db.connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM stock_history").fetchone()[0]


def _row_to_item(row: sqlite3.Row) -> WarehouseItem:
    return WarehouseItem.model_validate(dict(row))

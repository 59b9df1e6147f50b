"""
Integration tests for the SQLite database and the stores built on it.
"""
import json
from datetime import date, datetime, timezone

import pytest

from models.supplier_order import OrderProduct, OrderStatus, ReceivedItem, SupplierOrder
from models.warehouse import StockHistoryEntry, WarehouseItem
from procurement.database import Database
from procurement.errors import StaleLedgerEntry

NOW = datetime(2024, 1, 15, 9, 30, tzinfo=timezone.utc)


def _order(order_id="o1", number="ORD-20240115-0930", supplier="Acme Supplies",
           status=OrderStatus.DRAFT, purchase_date=date(2024, 1, 15), skus=("ABC123",)):
    return SupplierOrder(
        id=order_id,
        order_number=number,
        supplier=supplier,
        purchase_date=purchase_date,
        products=[OrderProduct(sku=s, quantity=2, price=3.5, brand="Acme") for s in skus],
        total_value=7.0 * len(skus),
        status=status,
        created_at=NOW,
    )


@pytest.mark.integration
class TestDatabase:
    """Integration tests for Database class."""

    def test_schema_created(self, test_db):
        with test_db.connect() as conn:
            tables = {r["name"] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
        assert {"supplier_orders", "warehouse_items", "stock_history", "audit_log"} <= tables

    def test_reopen_existing_file(self, test_config, test_db):
        test_db.log_audit("o1", "created")
        again = Database(test_config.db_path)
        assert len(again.get_audit_log("o1")) == 1

    def test_audit_log(self, test_db):
        test_db.log_audit("o1", "created", detail={"order_number": "ORD-1"})
        test_db.log_audit("o1", "confirmed", actor="operator")
        test_db.log_audit("o2", "created")

        entries = test_db.get_audit_log("o1")
        assert [e["action"] for e in entries] == ["created", "confirmed"]
        assert json.loads(entries[0]["detail"]) == {"order_number": "ORD-1"}
        assert entries[1]["actor"] == "operator"
        assert entries[1]["detail"] is None

        recent = test_db.get_recent_audit_log(limit=2)
        assert len(recent) == 2
        assert recent[0]["order_id"] == "o2"

    def test_failed_write_rolls_back(self, test_db):
        with pytest.raises(RuntimeError):
            with test_db.connect() as conn:
                conn.execute(
                    "INSERT INTO audit_log (order_id, timestamp, action) VALUES ('o1', 'now', 'x')"
                )
                raise RuntimeError("boom")
        assert test_db.get_audit_log("o1") == []


@pytest.mark.integration
class TestOrderStore:
    """Integration tests for OrderStore."""

    def test_round_trip_keeps_every_field(self, order_store):
        order = _order()
        order.received_items = [ReceivedItem(sku="ABC123", quantity=1, received_at=NOW)]
        order.reconciled = {"ABC123": 1}
        order.tracking_number = "1Z999"
        order_store.put(order)

        loaded = order_store.get("o1")
        assert loaded.model_dump() == order.model_dump()

    def test_put_replaces(self, order_store):
        order = order_store.put(_order())
        order.status = OrderStatus.CONFIRMED
        order_store.put(order)
        assert order_store.get("o1").status == OrderStatus.CONFIRMED
        assert len(order_store.list()) == 1

    def test_get_missing(self, order_store):
        assert order_store.get("nope") is None

    def test_list_filters(self, order_store):
        order_store.put(_order("o1", "ORD-1", "Acme Supplies", OrderStatus.DRAFT, date(2024, 1, 1)))
        order_store.put(_order("o2", "ORD-2", "Borealis", OrderStatus.PAID, date(2024, 2, 1),
                               skus=("MUG-01", "TT-02")))
        order_store.put(_order("o3", "ORD-3", "Acme Supplies", OrderStatus.PAID, date(2024, 3, 1)))

        assert [o.id for o in order_store.list()] == ["o3", "o2", "o1"]
        assert [o.id for o in order_store.list(status=OrderStatus.PAID)] == ["o3", "o2"]
        assert [o.id for o in order_store.list(search="acme")] == ["o3", "o1"]
        assert [o.id for o in order_store.list(search="TT-02")] == ["o2"]
        assert [o.id for o in order_store.list(status=OrderStatus.PAID, search="acme")] == ["o3"]

    def test_delete(self, order_store):
        order_store.put(_order())
        assert order_store.delete("o1") is True
        assert order_store.delete("o1") is False
        assert order_store.get("o1") is None

    def test_order_number_taken(self, order_store):
        order_store.put(_order())
        assert order_store.order_number_taken("ORD-20240115-0930")
        assert not order_store.order_number_taken("ORD-20240115-0931")


@pytest.mark.integration
class TestWarehouseLedger:
    """Integration tests for the compare-and-swap warehouse ledger."""

    def test_insert_then_update(self, warehouse):
        stored = warehouse.upsert(WarehouseItem(sku="A", name="Mug", quantity=3, price=4.0))
        assert stored.version == 1
        assert stored.updated_at is not None

        updated = warehouse.upsert(stored.model_copy(update={"quantity": 5}))
        assert updated.version == 2
        loaded = warehouse.get("A")
        assert (loaded.quantity, loaded.version) == (5, 2)

    def test_stale_update_rejected(self, warehouse):
        first = warehouse.upsert(WarehouseItem(sku="A", name="Mug", quantity=3, price=4.0))
        warehouse.upsert(first.model_copy(update={"quantity": 4}))
        with pytest.raises(StaleLedgerEntry):
            warehouse.upsert(first.model_copy(update={"quantity": 99}))
        assert warehouse.get("A").quantity == 4

    def test_duplicate_insert_rejected(self, warehouse):
        warehouse.upsert(WarehouseItem(sku="A", name="Mug", quantity=1, price=1.0))
        with pytest.raises(StaleLedgerEntry):
            warehouse.upsert(WarehouseItem(sku="A", name="Other", quantity=1, price=1.0))

    def test_list_sorted(self, warehouse):
        for sku in ("C", "A", "B"):
            warehouse.upsert(WarehouseItem(sku=sku, name=sku))
        assert [i.sku for i in warehouse.list()] == ["A", "B", "C"]


@pytest.mark.integration
class TestStockHistory:

    def test_append_only_in_order(self, stock_history):
        for qty in (1, 3):
            stock_history.append(StockHistoryEntry(
                sku="A", timestamp=NOW, quantity=qty, price=2.0,
                description="Order ORD-1 - Acme", order_id="o1", order_number="ORD-1",
                quantity_received=qty,
            ))
        stock_history.append(StockHistoryEntry(sku="B", timestamp=NOW, quantity=1, price=1.0))

        entries = stock_history.for_sku("A")
        assert [e.quantity for e in entries] == [1, 3]
        assert entries[0].kind == "supplier-order"
        assert stock_history.count() == 3

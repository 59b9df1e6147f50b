"""
Unit tests for the inventory reconciliation engine.
"""
import asyncio
from datetime import date, datetime, timezone

import pytest

from models.supplier_order import OrderProduct, OrderStatus, ReceivedItem, SupplierOrder
from models.warehouse import PriceDecision, ReconciliationResult, WarehouseItem
from procurement.decisions import DecisionBroker, FixedDecider
from procurement.reconciliation import ReconciliationEngine, outstanding
from procurement.stores import WarehouseLedger

NOW = datetime(2024, 1, 20, 8, 0, tzinfo=timezone.utc)


class RecordingDecider:
    """Answers every conflict with *decision* and remembers what it was asked."""

    def __init__(self, decision: PriceDecision):
        self.decision = decision
        self.conflicts = []

    async def __call__(self, conflict):
        self.conflicts.append(conflict)
        return self.decision


def _order(order_store, lines, received, number="ORD-20240120-0800", order_id="o1"):
    """Store a RECEIVED/PARTIAL order; lines are (sku, qty, price[, name])."""
    products = [OrderProduct(sku=l[0], quantity=l[1], price=l[2], name=l[3] if len(l) > 3 else None)
                for l in lines]
    order = SupplierOrder(
        id=order_id,
        order_number=number,
        supplier="Acme",
        purchase_date=date(2024, 1, 15),
        products=products,
        received_items=[ReceivedItem(sku=s, quantity=q, received_at=NOW) for s, q in received.items()],
        total_value=sum(p.line_total for p in products),
        status=OrderStatus.PARTIAL,
        created_at=NOW,
    )
    order_store.put(order)
    return order


def _stock(warehouse, sku, quantity, price, name="Stocked item"):
    return warehouse.upsert(WarehouseItem(sku=sku, name=name, quantity=quantity, price=price))


@pytest.fixture
def engine(warehouse, stock_history, order_store, clock):
    return ReconciliationEngine(
        warehouse, stock_history, order_store, decide=FixedDecider("keep_price"), clock=clock,
    )


@pytest.mark.unit
class TestPriceConflicts:
    """Ledger A @ 5, order A x3 @ 7."""

    @pytest.fixture
    def conflicted(self, warehouse, order_store):
        _stock(warehouse, "A", 2, 5.0)
        return _order(order_store, [("A", 3, 7.0)], {"A": 3})

    @pytest.mark.asyncio
    async def test_keep_price(self, engine, warehouse, stock_history, conflicted):
        decider = RecordingDecider(PriceDecision.KEEP_PRICE)
        result = await engine.reconcile(conflicted, decide=decider)

        assert len(decider.conflicts) == 1
        conflict = decider.conflicts[0]
        assert (conflict.sku, conflict.old_price, conflict.new_price, conflict.quantity) == ("A", 5.0, 7.0, 3)
        assert conflict.suggestion == "New price is 40.0% higher than the current price."

        item = warehouse.get("A")
        assert (item.quantity, item.price) == (5, 5.0)
        assert result.updated == ["A"]

        history = stock_history.for_sku("A")
        assert len(history) == 1
        assert history[0].quantity == 5
        assert history[0].price == 5.0
        assert history[0].kind == "supplier-order"
        assert history[0].description == "Order ORD-20240120-0800 - Acme"
        assert history[0].quantity_received == 3

    @pytest.mark.asyncio
    async def test_update_price(self, engine, warehouse, conflicted):
        await engine.reconcile(conflicted, decide=RecordingDecider(PriceDecision.UPDATE_PRICE))
        item = warehouse.get("A")
        assert (item.quantity, item.price) == (5, 7.0)

    @pytest.mark.asyncio
    async def test_ignore(self, engine, warehouse, stock_history, order_store, conflicted):
        decider = RecordingDecider(PriceDecision.IGNORE)
        result = await engine.reconcile(conflicted, decide=decider)

        item = warehouse.get("A")
        assert (item.quantity, item.price) == (2, 5.0)
        assert stock_history.for_sku("A") == []
        assert result.ignored == ["A"]
        assert not result.changed

        # The decision is final: a second run does not ask again
        again = await engine.reconcile(order_store.get(conflicted.id), decide=decider)
        assert len(decider.conflicts) == 1
        assert not again.ignored

    @pytest.mark.asyncio
    async def test_zero_ordered_price_is_not_a_conflict(self, engine, warehouse, order_store):
        _stock(warehouse, "A", 1, 5.0)
        order = _order(order_store, [("A", 2, 0.0)], {"A": 2})
        decider = RecordingDecider(PriceDecision.UPDATE_PRICE)
        await engine.reconcile(order, decide=decider)
        assert decider.conflicts == []
        item = warehouse.get("A")
        assert (item.quantity, item.price) == (3, 5.0)


@pytest.mark.unit
class TestMerging:
    """Non-conflicting merges, idempotence and bad records."""

    @pytest.mark.asyncio
    async def test_same_price_adds_quantity(self, engine, warehouse, order_store):
        _stock(warehouse, "A", 4, 7.0)
        order = _order(order_store, [("A", 3, 7.0)], {"A": 3})
        result = await engine.reconcile(order)
        assert warehouse.get("A").quantity == 7
        assert result.updated == ["A"]

    @pytest.mark.asyncio
    async def test_new_sku_created_from_order_line(self, engine, warehouse, stock_history, order_store):
        order = _order(order_store, [("NEW1", 4, 2.5, "Candle")], {"NEW1": 4})
        result = await engine.reconcile(order)
        item = warehouse.get("NEW1")
        assert (item.name, item.quantity, item.price) == ("Candle", 4, 2.5)
        assert result.created == ["NEW1"]
        assert len(stock_history.for_sku("NEW1")) == 1

    @pytest.mark.asyncio
    async def test_reconciling_twice_changes_nothing(self, engine, warehouse, stock_history, order_store):
        order = _order(order_store, [("A", 3, 1.0), ("B", 2, 1.0)], {"A": 3, "B": 1})
        await engine.reconcile(order)
        second = await engine.reconcile(order_store.get(order.id))

        assert not second.changed
        assert warehouse.get("A").quantity == 3
        assert warehouse.get("B").quantity == 1
        assert stock_history.count() == 2
        assert order_store.get(order.id).reconciled == {"A": 3, "B": 1}

    @pytest.mark.asyncio
    async def test_only_new_receipts_merged(self, engine, warehouse, order_store):
        order = _order(order_store, [("A", 5, 1.0)], {"A": 2})
        await engine.reconcile(order)

        stored = order_store.get(order.id)
        stored.received_items = [ReceivedItem(sku="A", quantity=5, received_at=NOW)]
        order_store.put(stored)
        assert outstanding(stored) == {"A": 3}

        await engine.reconcile(order_store.get(order.id))
        assert warehouse.get("A").quantity == 5

    @pytest.mark.asyncio
    async def test_unknown_sku_skipped_with_warning(self, engine, warehouse, order_store):
        order = _order(order_store, [("A", 1, 1.0)], {"GHOST": 2, "A": 1})
        result = await engine.reconcile(order)
        assert result.skipped == ["GHOST"]
        assert result.warnings[0].sku == "GHOST"
        assert warehouse.get("GHOST") is None
        assert warehouse.get("A").quantity == 1

    @pytest.mark.asyncio
    async def test_nothing_received_is_a_no_op(self, engine, warehouse, order_store):
        order = _order(order_store, [("A", 1, 1.0)], {})
        result = await engine.reconcile(order)
        assert result == ReconciliationResult(order_id=order.id)
        assert warehouse.list() == []

    @pytest.mark.asyncio
    async def test_audited_when_stock_changes(self, warehouse, stock_history, order_store, clock):
        calls = []
        engine = ReconciliationEngine(
            warehouse, stock_history, order_store, decide=FixedDecider("keep_price"), clock=clock,
            audit=lambda order_id, action, detail=None: calls.append((order_id, action, detail)),
        )
        order = _order(order_store, [("A", 1, 1.0)], {"A": 1})
        await engine.reconcile(order)
        await engine.reconcile(order_store.get(order.id))
        assert calls == [(order.id, "reconciled", {"updated": [], "created": ["A"], "ignored": []})]


@pytest.mark.unit
class TestSuspensionAndConcurrency:
    """Decisions that suspend the run, cancellation, locking and stale writes."""

    @pytest.mark.asyncio
    async def test_cancel_while_waiting_keeps_merged_skus(self, engine, warehouse, order_store):
        _stock(warehouse, "A", 1, 5.0)
        order = _order(order_store, [("B", 2, 1.0), ("A", 1, 9.0), ("C", 1, 1.0)],
                       {"B": 2, "A": 1, "C": 1})
        broker = DecisionBroker()
        result = ReconciliationResult(order_id=order.id)

        task = asyncio.create_task(engine.reconcile(order, decide=broker, result=result))
        conflict = await broker.wait_for_conflict(order.id)
        assert conflict.sku == "A"

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert result.updated == []
        assert result.created == ["B"]
        assert result.pending == ["A", "C"]
        assert broker.pending() == []
        assert warehouse.get("B").quantity == 2
        assert warehouse.get("C") is None
        assert outstanding(order_store.get(order.id)) == {"A": 1, "C": 1}

        # A later run picks up exactly the abandoned SKUs
        resumed = await engine.reconcile(order_store.get(order.id))
        assert resumed.updated == ["A"]
        assert resumed.created == ["C"]
        assert warehouse.get("B").quantity == 2
        assert warehouse.get("A").quantity == 2

    @pytest.mark.asyncio
    async def test_broker_resolution_resumes_run(self, engine, warehouse, order_store):
        _stock(warehouse, "A", 1, 5.0)
        order = _order(order_store, [("A", 1, 6.0)], {"A": 1})
        broker = DecisionBroker()

        task = asyncio.create_task(engine.reconcile(order, decide=broker))
        conflict = await broker.wait_for_conflict()
        broker.resolve(conflict.id, "update_price")
        result = await task

        assert result.updated == ["A"]
        assert warehouse.get("A").price == 6.0

    @pytest.mark.asyncio
    async def test_runs_on_same_sku_do_not_interleave(self, engine, warehouse, order_store):
        _stock(warehouse, "A", 10, 5.0)
        first = _order(order_store, [("A", 1, 6.0)], {"A": 1}, number="ORD-1", order_id="o1")
        second = _order(order_store, [("A", 2, 7.0)], {"A": 2}, number="ORD-2", order_id="o2")
        broker = DecisionBroker()

        t1 = asyncio.create_task(engine.reconcile(first, decide=broker))
        c1 = await broker.wait_for_conflict()
        t2 = asyncio.create_task(engine.reconcile(second, decide=broker))
        for _ in range(5):
            await asyncio.sleep(0)
        # the second run is parked on the SKU lock, not on a decision
        assert [c.order_id for c in broker.pending()] == ["o1"]

        broker.resolve(c1.id, PriceDecision.UPDATE_PRICE)
        await t1
        c2 = await broker.wait_for_conflict("o2")
        assert c2.old_price == 6.0
        broker.resolve(c2.id, PriceDecision.KEEP_PRICE)
        await t2

        item = warehouse.get("A")
        assert (item.quantity, item.price) == (13, 6.0)

    @pytest.mark.asyncio
    async def test_second_run_on_same_order_merges_nothing(self, engine, warehouse, stock_history, order_store):
        _stock(warehouse, "A", 10, 5.0)
        order = _order(order_store, [("A", 3, 7.0)], {"A": 3})
        broker = DecisionBroker()

        t1 = asyncio.create_task(engine.reconcile(order, decide=broker))
        c1 = await broker.wait_for_conflict(order.id)
        # same order, loaded before the first run has merged anything
        t2 = asyncio.create_task(engine.reconcile(order_store.get(order.id), decide=broker))
        for _ in range(5):
            await asyncio.sleep(0)
        assert [c.id for c in broker.pending()] == [c1.id]

        broker.resolve(c1.id, PriceDecision.KEEP_PRICE)
        first = await t1
        second = await t2

        assert first.updated == ["A"]
        assert (second.updated, second.created, second.ignored) == ([], [], [])
        assert broker.pending() == []
        assert warehouse.get("A").quantity == 13
        assert len(stock_history.for_sku("A")) == 1
        assert order_store.get(order.id).reconciled == {"A": 3}

    @pytest.mark.asyncio
    async def test_stale_write_rechecks_watermark(self, stock_history, order_store, test_db, clock):
        class RacingLedger(WarehouseLedger):
            """Another process merges the same order right before our first write."""
            raced = False

            def upsert(self, item):
                if not self.raced and item.version > 0:
                    self.raced = True
                    rival = WarehouseLedger(self.db)
                    current = rival.get(item.sku)
                    rival.upsert(current.model_copy(update={"quantity": current.quantity + 2}))
                    merged = order_store.get("o1")
                    merged.reconciled["A"] = 2
                    order_store.put(merged)
                return super().upsert(item)

        ledger = RacingLedger(test_db)
        _stock(ledger, "A", 1, 1.0)
        engine = ReconciliationEngine(ledger, stock_history, order_store,
                                      decide=FixedDecider("keep_price"), clock=clock)
        order = _order(order_store, [("A", 2, 1.0)], {"A": 2})

        result = await engine.reconcile(order)
        assert ledger.raced
        assert result.updated == []
        assert ledger.get("A").quantity == 3

    @pytest.mark.asyncio
    async def test_stale_write_retried_once(self, stock_history, order_store, test_db, clock):
        class RacingLedger(WarehouseLedger):
            """Lets another writer bump the entry right before our first write."""
            raced = False

            def upsert(self, item):
                if not self.raced and item.version > 0:
                    self.raced = True
                    rival = WarehouseLedger(self.db)
                    current = rival.get(item.sku)
                    rival.upsert(current.model_copy(update={"quantity": current.quantity + 100}))
                return super().upsert(item)

        ledger = RacingLedger(test_db)
        _stock(ledger, "A", 1, 1.0)
        engine = ReconciliationEngine(ledger, stock_history, order_store,
                                      decide=FixedDecider("keep_price"), clock=clock)
        order = _order(order_store, [("A", 2, 1.0)], {"A": 2})

        await engine.reconcile(order)
        assert ledger.raced
        assert ledger.get("A").quantity == 103

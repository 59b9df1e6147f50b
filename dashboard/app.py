"""
Supplier Order Back-Office — FastAPI backend.

JSON API over SupplierOrderProcessor for the back-office UI.

All state lives in a single SQLite database (output/backoffice.db).

Endpoints
---------
  GET    /api/health                          → liveness probe
  GET    /api/stats                           → order summary figures
  GET    /api/orders                          → list (?status= ?search= ?due_soon= ?to_receive=)
  POST   /api/orders                          → create a DRAFT order
  POST   /api/orders/import                   → create a DRAFT order from CSV text
  GET    /api/orders/{id}                     → one order
  DELETE /api/orders/{id}                     → delete (not RECEIVED / PAID)
  GET    /api/orders/{id}/progress            → receipt + payment progress
  GET    /api/orders/{id}/audit               → lifecycle audit trail
  POST   /api/orders/{id}/confirm             → DRAFT → CONFIRMED
  POST   /api/orders/{id}/transit             → CONFIRMED → IN_TRANSIT
  POST   /api/orders/{id}/receive             → scan goods in
  POST   /api/orders/{id}/close-partial       → accept a short delivery
  POST   /api/orders/{id}/pay                 → RECEIVED / PARTIAL → PAID
  POST   /api/orders/{id}/reconcile           → merge received goods into stock
  GET    /api/orders/{id}/reconcile           → state of the running merge
  DELETE /api/orders/{id}/reconcile           → abandon the running merge
  GET    /api/warehouse                       → current stock
  GET    /api/warehouse/{sku}                 → one stock item
  GET    /api/warehouse/{sku}/history         → stock history of one SKU
  GET    /api/price-conflicts                 → conflicts waiting for a decision
  POST   /api/price-conflicts/{id}            → answer a conflict
  GET    /api/audit                           → recent audit trail, all orders
  POST   /api/backup                          → create a backup archive

Price conflicts
---------------
receive, close-partial and reconcile may merge goods into the warehouse.
When the request carries a "decision" every conflict is answered with it.
Otherwise the merge runs as a background task: the call returns 202 with
the conflict it is waiting on, and each POST /api/price-conflicts/{id}
answers one conflict and returns the next one (202) or the final result.
"""
import asyncio
import logging
from typing import Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from config import Config
from models.supplier_order import OrderStatus
from models.warehouse import PriceConflict
from procurement.decisions import DecisionBroker, FixedDecider, PriceDecider
from procurement.errors import (
    BackOfficeError,
    InvalidState,
    NotFound,
    ProductNotInOrder,
    StaleLedgerEntry,
    ValidationError,
)
from procurement.processor import SupplierOrderProcessor
from procurement.reconciliation import outstanding
from procurement.reports import filter_orders

from .models import (
    ClosePartialRequest,
    DecisionRequest,
    OrderCreate,
    OrderSheetCreate,
    PayRequest,
    ReceiveRequest,
    ReconcileRequest,
)

logger = logging.getLogger(__name__)

# Most specific first
_STATUS_CODES: list[tuple[type, int]] = [
    (NotFound,          404),
    (ProductNotInOrder, 422),
    (ValidationError,   422),
    (InvalidState,      409),
    (StaleLedgerEntry,  409),
]

# ---------------------------------------------------------------------------
# Processor (lazy, so importing the app does not create the database)
# ---------------------------------------------------------------------------
_processor: Optional[SupplierOrderProcessor] = None
_broker = DecisionBroker()

# Merges suspended on a price conflict  {order_id: task}
_jobs: dict[str, asyncio.Task] = {}


def get_processor() -> SupplierOrderProcessor:
    global _processor
    if _processor is None:
        _processor = SupplierOrderProcessor(Config())
    return _processor


def reset_state() -> None:
    """Drop the processor and any running merges (settings reload, tests)."""
    global _processor, _broker
    for task in _jobs.values():
        if not task.done() and not task.get_loop().is_closed():
            task.cancel()
    _jobs.clear()
    _processor = None
    _broker = DecisionBroker()


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------
app = FastAPI(title="Supplier Order Back-Office", docs_url=None, redoc_url=None)


@app.exception_handler(BackOfficeError)
async def _backoffice_error(request, exc: BackOfficeError):
    status_code = next((code for cls, code in _STATUS_CODES if isinstance(exc, cls)), 400)
    return JSONResponse(status_code=status_code, content={"detail": exc.message, **exc.to_dict()})


# ── helpers ──────────────────────────────────────────────────────────────────

def _dump(obj):
    return obj.model_dump(mode="json") if isinstance(obj, BaseModel) else obj


def _conflict(conflict: PriceConflict) -> dict:
    return {
        **conflict.model_dump(mode="json"),
        "change_pct": conflict.change_pct,
        "suggestion": conflict.suggestion,
    }


def _decider(decision: Optional[str]) -> PriceDecider:
    return FixedDecider(decision) if decision else _broker


async def _start(order_id: str, coro):
    """Run a merging operation; come back with its result or its first conflict."""
    running = _jobs.get(order_id)
    if running is not None and not running.done():
        coro.close()
        raise HTTPException(409, "A warehouse merge is already waiting on a decision for this order")
    task = asyncio.create_task(coro)
    _jobs[order_id] = task
    return await _advance(order_id, task)


async def _advance(order_id: str, task: asyncio.Task):
    waiter = asyncio.create_task(_broker.wait_for_conflict(order_id))
    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()

    if task.done():
        _jobs.pop(order_id, None)
        return _dump(task.result())

    return JSONResponse(
        status_code=202,
        content={
            "status":    "awaiting_decision",
            "order_id":  order_id,
            "conflicts": [_conflict(c) for c in _broker.pending(order_id)],
        },
    )


# ── health & stats ───────────────────────────────────────────────────────────

@app.get("/api/health")
def health():
    processor = get_processor()
    return {
        "status":    "ok",
        "db_path":   str(processor.config.db_path),
        "db_exists": processor.config.db_path.exists(),
    }


@app.get("/api/stats")
def stats():
    return _dump(get_processor().summary())


# ── orders ───────────────────────────────────────────────────────────────────

@app.get("/api/orders")
def list_orders(
    status: Optional[OrderStatus] = Query(default=None),
    search: Optional[str] = Query(default=None),
    due_soon: bool = Query(default=False),
    to_receive: bool = Query(default=False),
):
    processor = get_processor()
    orders = processor.list_orders(status=status, search=search or None)
    if due_soon or to_receive:
        orders = filter_orders(
            orders,
            due_within_days=processor.config.due_soon_days if due_soon else None,
            only_to_receive=to_receive,
        )
    return [_dump(o) for o in orders]


@app.post("/api/orders", status_code=201)
def create_order(body: OrderCreate):
    order = get_processor().create_order(
        body.supplier,
        body.purchase_date,
        [p.model_dump() for p in body.products],
        invoice_number=body.invoice_number,
        payment_date=body.payment_date,
    )
    return _dump(order)


@app.post("/api/orders/import", status_code=201)
def import_order(body: OrderSheetCreate):
    order = get_processor().create_order_from_csv(
        body.csv, body.supplier, body.purchase_date, invoice_number=body.invoice_number,
    )
    return _dump(order)


@app.get("/api/orders/{order_id}")
def get_order(order_id: str):
    return _dump(get_processor().get_order(order_id))


@app.delete("/api/orders/{order_id}")
def delete_order(order_id: str):
    get_processor().delete_order(order_id)
    return {"id": order_id, "status": "deleted"}


@app.get("/api/orders/{order_id}/progress")
def order_progress(order_id: str):
    return _dump(get_processor().progress(order_id))


@app.get("/api/orders/{order_id}/audit")
def order_audit(order_id: str):
    processor = get_processor()
    processor.get_order(order_id)
    return processor.audit_log(order_id)


@app.post("/api/orders/{order_id}/confirm")
def confirm_order(order_id: str):
    return _dump(get_processor().confirm(order_id))


@app.post("/api/orders/{order_id}/transit")
def mark_in_transit(order_id: str):
    return _dump(get_processor().mark_in_transit(order_id))


@app.post("/api/orders/{order_id}/pay")
def mark_paid(order_id: str, body: Optional[PayRequest] = None):
    paid_at = body.paid_at if body else None
    return _dump(get_processor().mark_paid(order_id, paid_at=paid_at))


@app.post("/api/orders/{order_id}/receive")
async def receive(order_id: str, body: ReceiveRequest):
    decide = _decider(body.decision)
    return await _start(
        order_id,
        get_processor().receive(order_id, body.sku, body.quantity, decide=decide),
    )


@app.post("/api/orders/{order_id}/close-partial")
async def close_partial(order_id: str, body: Optional[ClosePartialRequest] = None):
    body = body or ClosePartialRequest()
    decide = _decider(body.decision)
    return await _start(
        order_id,
        get_processor().close_partial(order_id, reason=body.reason, final=body.final, decide=decide),
    )


# ── reconciliation ───────────────────────────────────────────────────────────

@app.post("/api/orders/{order_id}/reconcile")
async def reconcile(order_id: str, body: Optional[ReconcileRequest] = None):
    decide = _decider(body.decision if body else None)
    return await _start(order_id, get_processor().reconcile(order_id, decide=decide))


@app.get("/api/orders/{order_id}/reconcile")
def reconcile_state(order_id: str):
    order = get_processor().get_order(order_id)
    task = _jobs.get(order_id)
    return {
        "order_id":  order_id,
        "running":   task is not None and not task.done(),
        "conflicts": [_conflict(c) for c in _broker.pending(order_id)],
        "pending":   sorted(outstanding(order)),
    }


@app.delete("/api/orders/{order_id}/reconcile")
async def cancel_reconcile(order_id: str):
    """
    Abandon a merge waiting on a decision.

    SKUs merged so far stay merged; the rest are left for the next reconcile.
    """
    task = _jobs.pop(order_id, None)
    if task is None or task.done():
        raise HTTPException(404, f"No merge running for order {order_id}")
    task.cancel()
    await asyncio.wait({task})
    order = get_processor().get_order(order_id)
    logger.info("Merge for %s cancelled by operator", order.order_number)
    return {"order_id": order_id, "status": "cancelled", "pending": sorted(outstanding(order))}


# ── warehouse ────────────────────────────────────────────────────────────────

@app.get("/api/warehouse")
def warehouse():
    return [_dump(i) for i in get_processor().stock()]


@app.get("/api/warehouse/{sku}")
def warehouse_item(sku: str):
    return _dump(get_processor().stock_item(sku))


@app.get("/api/warehouse/{sku}/history")
def warehouse_history(sku: str):
    return [_dump(e) for e in get_processor().stock_history(sku)]


# ── price conflicts ──────────────────────────────────────────────────────────

@app.get("/api/price-conflicts")
def price_conflicts(order_id: Optional[str] = Query(default=None)):
    return [_conflict(c) for c in _broker.pending(order_id)]


@app.post("/api/price-conflicts/{conflict_id}")
async def resolve_conflict(conflict_id: str, body: DecisionRequest):
    conflict = _broker.resolve(conflict_id, body.decision)
    task = _jobs.get(conflict.order_id)
    if task is None:
        return {"status": "resolved", "conflict_id": conflict_id}
    return await _advance(conflict.order_id, task)


# ── maintenance ──────────────────────────────────────────────────────────────

@app.get("/api/audit")
def audit_trail(limit: int = Query(default=200, ge=1, le=1000), offset: int = Query(default=0, ge=0)):
    return get_processor().db.get_recent_audit_log(limit=limit, offset=offset)


@app.post("/api/backup")
def create_backup():
    processor = get_processor()
    zip_name = processor.backup_service.create_backup()
    return {"backup": zip_name, "backup_dir": str(processor.backup_service.backup_dir)}

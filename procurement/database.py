"""
SQLite persistence layer for the supplier order back-office.

A single database file (output/backoffice.db) holds:

  - supplier_orders   Full SupplierOrder payloads plus a few denormalised
                      columns for filtering / sorting
  - warehouse_items   Current stock per SKU (the warehouse ledger)
  - stock_history     Append-only log of every warehouse mutation
  - audit_log         Lifecycle actions taken on orders

Each write runs in its own transaction.  There is no cross-table transaction
between an order update and the warehouse merge that follows it: a crash in
between leaves the order RECEIVED / PARTIAL with its merge still pending,
which the next reconcile() picks up from the order's watermark.
"""
import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS supplier_orders (
    id              TEXT PRIMARY KEY,
    order_number    TEXT NOT NULL UNIQUE,
    supplier        TEXT NOT NULL,
    status          TEXT NOT NULL,

    -- Key fields (denormalised for fast filtering / sorting)
    purchase_date   TEXT NOT NULL,
    payment_date    TEXT,
    total_value     REAL NOT NULL DEFAULT 0,
    skus            TEXT NOT NULL DEFAULT '',   -- "|SKU1|SKU2|" for search

    -- Full SupplierOrder serialised as JSON
    data            TEXT NOT NULL,

    created_at      TEXT NOT NULL,
    updated_at      TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_orders_status        ON supplier_orders (status);
CREATE INDEX IF NOT EXISTS idx_orders_purchase_date ON supplier_orders (purchase_date DESC);
CREATE INDEX IF NOT EXISTS idx_orders_supplier      ON supplier_orders (supplier);

CREATE TABLE IF NOT EXISTS warehouse_items (
    sku           TEXT PRIMARY KEY,
    name          TEXT NOT NULL,
    quantity      INTEGER NOT NULL DEFAULT 0 CHECK (quantity >= 0),
    price         REAL    NOT NULL DEFAULT 0 CHECK (price >= 0),
    category      TEXT,
    product_type  TEXT,
    brand         TEXT,
    version       INTEGER NOT NULL DEFAULT 1,
    updated_at    TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS stock_history (
    id                 INTEGER PRIMARY KEY AUTOINCREMENT,
    sku                TEXT    NOT NULL,
    timestamp          TEXT    NOT NULL,   -- ISO-8601 UTC
    quantity           INTEGER NOT NULL,   -- resulting ledger quantity
    price              REAL    NOT NULL,   -- resulting ledger price
    kind               TEXT    NOT NULL,
    description        TEXT,
    order_id           TEXT,
    order_number       TEXT,
    quantity_received  INTEGER
);

CREATE INDEX IF NOT EXISTS idx_history_sku ON stock_history (sku, timestamp);

CREATE TABLE IF NOT EXISTS audit_log (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    order_id    TEXT    NOT NULL,
    timestamp   TEXT    NOT NULL,   -- ISO-8601 UTC
    action      TEXT    NOT NULL,   -- created | confirmed | in_transit | received |
                                    -- partial_closed | closed | paid | deleted | reconciled
    actor       TEXT    NOT NULL DEFAULT 'system',
    detail      TEXT                -- optional JSON blob with action-specific context
);

CREATE INDEX IF NOT EXISTS idx_audit_order     ON audit_log (order_id);
CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_log (timestamp DESC);
"""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Database:
    """Thin wrapper around an SQLite database file for back-office state."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    @contextmanager
    def connect(self):
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self.connect() as conn:
            conn.executescript(_SCHEMA)
        logger.debug("Database schema ready: %s", self.db_path)

    # ------------------------------------------------------------------
    # Audit log
    # ------------------------------------------------------------------

    def log_audit(
        self,
        order_id: str,
        action: str,
        actor: str = "system",
        detail: Optional[dict] = None,
    ) -> None:
        """Append one entry to the audit log."""
        with self.connect() as conn:
            conn.execute(
                """INSERT INTO audit_log (order_id, timestamp, action, actor, detail)
                   VALUES (?, ?, ?, ?, ?)""",
                (
                    order_id,
                    utcnow().isoformat(),
                    action,
                    actor,
                    json.dumps(detail, default=str) if detail is not None else None,
                ),
            )

    def get_audit_log(self, order_id: str) -> list[dict]:
        """Return all audit entries for one order, oldest first."""
        with self.connect() as conn:
            rows = conn.execute(
                """SELECT id, timestamp, action, actor, detail
                   FROM audit_log WHERE order_id = ?
                   ORDER BY timestamp ASC, id ASC""",
                (order_id,),
            ).fetchall()
        return [dict(r) for r in rows]

    def get_recent_audit_log(self, limit: int = 200, offset: int = 0) -> list[dict]:
        """Return recent audit entries across all orders, newest first."""
        with self.connect() as conn:
            rows = conn.execute(
                """SELECT id, order_id, timestamp, action, actor, detail
                   FROM audit_log
                   ORDER BY timestamp DESC, id DESC
                   LIMIT ? OFFSET ?""",
                (limit, offset),
            ).fetchall()
        return [dict(r) for r in rows]

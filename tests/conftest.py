"""
Pytest configuration and shared fixtures for the back-office test suite.
"""
import os
import shutil
import tempfile
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Generator

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
os.chdir(PROJECT_ROOT)


class FakeClock:
    """Deterministic UTC clock; every call moves time forward one second."""

    def __init__(self, start: datetime = datetime(2024, 1, 15, 9, 30, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + timedelta(seconds=1)
        return current

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for test files."""
    tmp_path = tempfile.mkdtemp(prefix="backoffice_test_")
    yield Path(tmp_path)
    shutil.rmtree(tmp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path, monkeypatch) -> "Config":
    """Provide a test configuration with isolated directories."""
    from config import Config

    # Keep the real config/backoffice_settings.json out of the tests
    monkeypatch.setenv("CONFIG_DIR", str(temp_dir / "config"))

    config = Config()
    config.db_path = temp_dir / "output" / "backoffice.db"
    config.backup_dir = temp_dir / "backups"
    config.default_price_decision = "keep_price"
    config.reconcile_on_full_receipt = True
    config.ensure_output_dir()
    return config


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def test_db(test_config) -> "Database":
    """Provide a test database instance."""
    from procurement.database import Database
    return Database(test_config.db_path)


@pytest.fixture
def order_store(test_db):
    from procurement.stores import OrderStore
    return OrderStore(test_db)


@pytest.fixture
def warehouse(test_db):
    from procurement.stores import WarehouseLedger
    return WarehouseLedger(test_db)


@pytest.fixture
def stock_history(test_db):
    from procurement.stores import StockHistory
    return StockHistory(test_db)


@pytest.fixture
def processor(test_config, clock):
    """A processor over the temp database, answering price conflicts with KEEP_PRICE."""
    from procurement.processor import SupplierOrderProcessor
    return SupplierOrderProcessor(test_config, clock=clock)


@pytest.fixture
def sample_products() -> list[dict]:
    return [
        {"sku": "ABC123", "quantity": 10, "price": "25.50", "name": "Blue mug", "brand": "Acme"},
        {"sku": "DEF456", "quantity": 5, "price": "15,75", "name": "Tea towel"},
    ]


@pytest.fixture
def sample_order_csv(temp_dir: Path) -> Path:
    """Create a sample order sheet in the standard template layout."""
    csv_path = temp_dir / "order.csv"
    content = """SKU;Quantità;Prezzo Unitario;Nome
ABC123;10;25.50;Blue mug

DEF456;5;15,75;Tea towel
"""
    csv_path.write_text(content, encoding="utf-8")
    return csv_path


@pytest.fixture
def in_transit_order(processor, sample_products):
    """An order that has been confirmed and shipped, nothing received yet."""
    order = processor.create_order("Acme Supplies", date(2024, 1, 15), sample_products)
    processor.confirm(order.id)
    return processor.mark_in_transit(order.id)


# Configure pytest markers
def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "api: API tests")

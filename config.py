"""
Central configuration for the supplier order back-office.

All paths, payment terms, and reconciliation settings are defined here.
Override via environment variables or by passing a Config instance directly.

Settings priority (highest wins):
  1. Environment variables
  2. config/backoffice_settings.json  (admin-editable, persisted)
  3. Hardcoded defaults in this file
"""
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

# Project root (directory containing this file)
PROJECT_ROOT = Path(__file__).parent

# Default data locations (relative to project root)
DEFAULT_OUTPUT_DIR = PROJECT_ROOT / "output"
DEFAULT_DB_PATH    = DEFAULT_OUTPUT_DIR / "backoffice.db"
DEFAULT_BACKUP_DIR = PROJECT_ROOT / "backups"
SETTINGS_FILENAME  = "backoffice_settings.json"


def config_dir() -> Path:
    return Path(os.getenv("CONFIG_DIR", str(PROJECT_ROOT / "config")))


@dataclass
class Config:
    # --- Storage ---
    db_path: Path = field(
        default_factory=lambda: Path(os.getenv("DB_PATH", str(DEFAULT_DB_PATH)))
    )
    backup_dir: Path = field(
        default_factory=lambda: Path(os.getenv("BACKUP_DIR", str(DEFAULT_BACKUP_DIR)))
    )

    # --- Payment terms ---
    payment_terms_days: int = 30      # payment_date = purchase_date + this, on partial close-out
    due_soon_days:      int = 5       # "due soon" window for the order list and summary

    # --- Order intake ---
    csv_delimiter: str = ";"
    sku_suggestion_threshold: int = 70  # Minimum rapidfuzz score for "did you mean" SKUs

    # --- Reconciliation ---
    # Answer to price conflicts when no operator is asked
    # (batch CLI runs, automatic merge on full receipt)
    default_price_decision: str = field(
        default_factory=lambda: os.getenv("PRICE_DECISION", "keep_price")
    )
    # Merge goods into the warehouse as soon as an order is fully received
    reconcile_on_full_receipt: bool = field(
        default_factory=lambda: os.getenv("RECONCILE_ON_FULL_RECEIPT", "true").lower() != "false"
    )

    # --- Backup settings ---
    backup_retention_count: int = field(
        default_factory=lambda: int(os.getenv("BACKUP_RETENTION_COUNT", "7"))
    )

    def __post_init__(self) -> None:
        """Overlay runtime-tunable settings from backoffice_settings.json if present."""
        settings_file = config_dir() / SETTINGS_FILENAME
        if not settings_file.exists():
            return
        _type_map: dict[str, type] = {
            "payment_terms_days":        int,
            "due_soon_days":             int,
            "csv_delimiter":             str,
            "sku_suggestion_threshold":  int,
            "default_price_decision":    str,
            "reconcile_on_full_receipt": bool,
            "backup_retention_count":    int,
        }
        try:
            with open(settings_file, encoding="utf-8") as f:
                overrides = {k: v for k, v in json.load(f).items() if not k.startswith("_")}
            for key, val in overrides.items():
                if key in _type_map and hasattr(self, key):
                    setattr(self, key, _type_map[key](val))
        except (OSError, ValueError) as exc:
            logger.warning("Failed to load %s: %s", SETTINGS_FILENAME, exc)

    def ensure_output_dir(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

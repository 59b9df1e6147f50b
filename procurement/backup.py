"""
Backup archives for the back-office.

Each archive holds a consistent snapshot of the SQLite database (orders,
warehouse ledger, stock history, audit log) plus the admin settings files.
Only the newest ``backup_retention_count`` archives are kept.
"""
import logging
import os
import sqlite3
import zipfile
from contextlib import closing
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional

from config import config_dir

logger = logging.getLogger(__name__)

BACKUP_PREFIX = "backoffice_backup_"


class BackupService:

    def __init__(self, config: Any) -> None:
        self.config = config
        self.backup_dir = Path(config.backup_dir)
        self.backup_dir.mkdir(parents=True, exist_ok=True)

    def create_backup(self) -> str:
        """
        Write a timestamped archive and rotate old ones. Returns the archive name.

        A half-written archive is removed before the error propagates.
        """
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        archive = self.backup_dir / f"{BACKUP_PREFIX}{stamp}.zip"
        logger.info("Backing up %s to %s", self.config.db_path, archive.name)

        try:
            with zipfile.ZipFile(archive, "w", zipfile.ZIP_DEFLATED) as zipf:
                self._add_database(zipf, stamp)
                self._add_settings(zipf)
        except (OSError, sqlite3.Error, zipfile.BadZipFile) as exc:
            logger.error("Backup %s failed: %s", archive.name, exc)
            archive.unlink(missing_ok=True)
            raise

        logger.info("Backup written: %s", archive.name)
        self.rotate_backups()
        return archive.name

    def _add_database(self, zipf: zipfile.ZipFile, stamp: str) -> None:
        db_path = Path(self.config.db_path)
        if not db_path.exists():
            logger.warning("No database at %s, archive will hold settings only", db_path)
            return
        # Consistent snapshot via the sqlite backup API
        snapshot = self.backup_dir / f"temp_{stamp}.db"
        try:
            with closing(sqlite3.connect(db_path)) as src, closing(sqlite3.connect(snapshot)) as dst:
                src.backup(dst)
            zipf.write(snapshot, arcname=f"output/{db_path.name}")
        finally:
            snapshot.unlink(missing_ok=True)

    @staticmethod
    def _add_settings(zipf: zipfile.ZipFile) -> None:
        for settings_file in sorted(config_dir().glob("*.json")):
            if settings_file.is_file():
                zipf.write(settings_file, arcname=f"config/{settings_file.name}")

    def rotate_backups(self) -> None:
        """Delete all but the newest ``backup_retention_count`` archives (0 keeps everything)."""
        keep = self.config.backup_retention_count
        if keep <= 0:
            return
        for stale in self.list_backups()[keep:]:
            try:
                stale.unlink()
                logger.info("Removed old backup %s", stale.name)
            except OSError as exc:
                logger.warning("Could not remove old backup %s: %s", stale.name, exc)

    def list_backups(self) -> List[Path]:
        """Archives, newest first."""
        # Names embed the timestamp, so they sort chronologically
        return sorted(self.backup_dir.glob(f"{BACKUP_PREFIX}*.zip"), reverse=True)

    def get_last_backup_time(self) -> Optional[datetime]:
        backups = self.list_backups()
        if not backups:
            return None
        return datetime.fromtimestamp(os.path.getmtime(backups[0]))

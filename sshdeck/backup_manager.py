"""
Backup manager for sshdeck
Keeps a pristine copy of the SSH config and a bounded set of rolling backups
"""

import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from .fs import FileSystem, LocalFileSystem

MAX_BACKUPS = 10
BACKUP_SUFFIX = "sshdeck.backup"
ORIGINAL_BACKUP_SUFFIX = ".original.backup"
TIMESTAMP_FORMAT = "%Y%m%d%H%M%S%f"


def _utcnow() -> datetime:
    # Local time can step backwards at DST changes and break name ordering
    return datetime.now(timezone.utc)


class BackupManager:
    """Creates backups beside the live config before every save.

    The pristine backup (``config.original.backup``) is written once, before
    sshdeck first modifies the file, and never touched again. Every save also
    writes ``config-<timestamp>-sshdeck.backup``; only the newest
    ``max_backups`` of those are kept.
    """

    def __init__(
        self,
        fs: Optional[FileSystem] = None,
        logger: Optional[logging.Logger] = None,
        max_backups: int = MAX_BACKUPS,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.fs = fs or LocalFileSystem()
        self.logger = logger or logging.getLogger(__name__)
        self.max_backups = max(1, int(max_backups))
        self.clock = clock or _utcnow

    @staticmethod
    def original_backup_path(path: str) -> str:
        return f"{path}{ORIGINAL_BACKUP_SUFFIX}"

    def _rolling_prefix(self, path: str) -> str:
        return f"{os.path.basename(path)}-"

    def _is_rolling_backup(self, path: str, name: str) -> bool:
        prefix = self._rolling_prefix(path)
        if not (name.startswith(prefix) and name.endswith(f"-{BACKUP_SUFFIX}")):
            return False
        stamp = name[len(prefix):-len(BACKUP_SUFFIX) - 1]
        return len(stamp) == 20 and stamp.isdigit()

    def list_backups(self, path: str) -> List[str]:
        """Return rolling backups for *path*, oldest first."""
        directory = os.path.dirname(path) or "."
        try:
            names = self.fs.listdir(directory)
        except OSError as e:
            self.logger.warning(f"Failed to list backups in {directory}: {e}")
            return []
        # Fixed-width timestamps sort chronologically as strings
        backups = sorted(name for name in names if self._is_rolling_backup(path, name))
        return [os.path.join(directory, name) for name in backups]

    def ensure_backups(self, path: str) -> None:
        """Back up *path* ahead of a save. Failures are logged, never raised."""
        try:
            if not self.fs.exists(path):
                return
            data = self.fs.read_bytes(path)
        except OSError as e:
            self.logger.warning(f"Could not read {path} for backup: {e}")
            return

        self._ensure_original_backup(path, data)
        if self._create_rolling_backup(path, data):
            self._prune(path)

    def _ensure_original_backup(self, path: str, data: bytes) -> None:
        original = self.original_backup_path(path)
        try:
            if self.fs.exists(original):
                return
            self.fs.write_bytes(original, data, 0o600)
            self.logger.info(f"Created original backup at {original}")
        except OSError as e:
            self.logger.warning(f"Failed to create original backup {original}: {e}")

    def _create_rolling_backup(self, path: str, data: bytes) -> Optional[str]:
        directory = os.path.dirname(path)
        stamp = self.clock()
        try:
            while True:
                name = f"{self._rolling_prefix(path)}{stamp.strftime(TIMESTAMP_FORMAT)}-{BACKUP_SUFFIX}"
                backup_path = os.path.join(directory, name)
                if not self.fs.exists(backup_path):
                    break
                stamp += timedelta(microseconds=1)
            self.fs.write_bytes(backup_path, data, 0o600)
            self.logger.debug(f"Created backup {backup_path}")
            return backup_path
        except OSError as e:
            self.logger.warning(f"Failed to create backup of {path}: {e}")
            return None

    def _prune(self, path: str) -> None:
        backups = self.list_backups(path)
        excess = len(backups) - self.max_backups
        for backup_path in backups[:max(0, excess)]:
            try:
                self.fs.remove(backup_path)
                self.logger.debug(f"Removed old backup {backup_path}")
            except OSError as e:
                self.logger.warning(f"Failed to remove old backup {backup_path}: {e}")


__all__ = ["BackupManager", "MAX_BACKUPS", "BACKUP_SUFFIX", "ORIGINAL_BACKUP_SUFFIX"]

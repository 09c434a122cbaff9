"""
Module for reading and atomically writing the JSON data files.
"""
import json
import logging
import os
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

from .exceptions import PersistenceFailed

logger = logging.getLogger(__name__)

BACKUPS_TO_KEEP = 10


class JsonFileStore:
    """Stores JSON documents in a data directory with locking and backups."""

    def __init__(self, data_dir: Path, backups_to_keep: int = BACKUPS_TO_KEEP):
        """Initialize the store.

        Args:
            data_dir: Directory holding the JSON files
            backups_to_keep: Number of backups retained per file
        """
        self.data_dir = Path(data_dir)
        self.backup_dir = self.data_dir / ".backups"
        self.backups_to_keep = backups_to_keep
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.backup_dir.mkdir(parents=True, exist_ok=True)

        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, filename: str) -> threading.RLock:
        with self._locks_guard:
            if filename not in self._locks:
                self._locks[filename] = threading.RLock()
            return self._locks[filename]

    @contextmanager
    def locked(self, filename: str) -> Iterator[None]:
        """Hold the file's lock across a read-modify-write cycle."""
        with self._lock_for(filename):
            yield

    def path(self, filename: str) -> Path:
        return self.data_dir / filename

    def exists(self, filename: str) -> bool:
        return self.path(filename).exists()

    def read_json(self, filename: str, default: Optional[Any] = None) -> Any:
        """Load a JSON document.

        Args:
            filename: Name of the file inside the data directory
            default: Returned when the file does not exist

        Returns:
            The decoded document
        """
        with self._lock_for(filename):
            file_path = self.path(filename)
            if not file_path.exists():
                return default
            try:
                with open(file_path, 'r') as f:
                    return json.load(f)
            except (OSError, ValueError) as e:
                raise PersistenceFailed(f"failed to read {filename}: {e}") from e

    def write_json(self, filename: str, data: Any) -> None:
        """Write a JSON document atomically, backing up the previous version.

        Args:
            filename: Name of the file inside the data directory
            data: JSON-serializable document
        """
        with self._lock_for(filename):
            file_path = self.path(filename)
            tmp_path = file_path.with_name(file_path.name + ".tmp")
            try:
                payload = json.dumps(data, indent=2)
                if file_path.exists():
                    self._create_backup(filename)
                tmp_path.write_text(payload)
                os.replace(tmp_path, file_path)
            except (OSError, TypeError, ValueError) as e:
                tmp_path.unlink(missing_ok=True)
                raise PersistenceFailed(f"failed to write {filename}: {e}") from e

            logger.debug(f"Saved {filename}")

    def _create_backup(self, filename: str) -> None:
        timestamp = datetime.now().strftime("%Y%m%d-%H%M%S-%f")
        backup_path = self.backup_dir / f"{filename}.{timestamp}.bak"
        backup_path.write_bytes(self.path(filename).read_bytes())
        self._cleanup_old_backups(filename)

    def _backups(self, filename: str) -> list:
        """Backups of a file, oldest first."""
        return sorted(self.backup_dir.glob(f"{filename}.*.bak"))

    def _cleanup_old_backups(self, filename: str) -> None:
        backups = self._backups(filename)
        for old in backups[:max(len(backups) - self.backups_to_keep, 0)]:
            try:
                old.unlink()
            except OSError as e:
                logger.warning(f"Could not remove old backup {old}: {e}")

    def rollback(self, filename: str) -> Path:
        """Restore the most recent backup of a file.

        Returns:
            Path of the backup that was restored
        """
        with self._lock_for(filename):
            backups = self._backups(filename)
            if not backups:
                raise PersistenceFailed(f"no backups found for {filename}")

            latest = backups[-1]
            try:
                self.path(filename).write_bytes(latest.read_bytes())
            except OSError as e:
                raise PersistenceFailed(f"failed to restore backup of {filename}: {e}") from e

            logger.info(f"Restored {filename} from {latest.name}")
            return latest

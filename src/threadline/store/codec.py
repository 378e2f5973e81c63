"""Whole-document JSON codec for the dataset file.

``load`` never raises: an unreadable or corrupted primary document falls back
to the backup (repairing the primary from it), then to an empty dataset.
``save`` always snapshots the current bytes to the backup before writing, and
raises ``StorageIOError`` if either step fails.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING

from threadline.errors import StorageIOError
from threadline.models import Dataset

if TYPE_CHECKING:
    from threadline.store.backup import BackupManager

logger = logging.getLogger(__name__)

# Raised by json.loads (ValueError, or RecursionError on pathologically deep
# nesting) and by record construction on missing/mistyped fields.
DECODE_ERRORS: tuple[type[Exception], ...] = (ValueError, TypeError, RecursionError)


def encode_dataset(dataset: Dataset) -> str:
    return json.dumps(dataset.to_dict(), indent=2, ensure_ascii=False)


def decode_dataset(text: str) -> Dataset:
    return Dataset.from_dict(json.loads(text))


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """Write via a sibling temp file + rename so readers never see a torn file."""
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class DocumentCodec:
    """Loads and saves the dataset file, going through the backup manager."""

    def __init__(self, backup: BackupManager) -> None:
        self.backup = backup

    @property
    def data_file(self) -> Path:
        return self.backup.data_file

    def _write(self, dataset: Dataset) -> None:
        atomic_write_bytes(self.data_file, encode_dataset(dataset).encode("utf-8"))

    def _ensure_data_file(self) -> None:
        self.data_file.parent.mkdir(parents=True, exist_ok=True)
        if not self.data_file.exists():
            self._write(Dataset())
            logger.info("Initialized empty data file at %s", self.data_file)

    # ── Load ──────────────────────────────────────────────────

    def load(self) -> Dataset:
        try:
            self._ensure_data_file()
            return decode_dataset(self.data_file.read_text(encoding="utf-8"))
        except (OSError, *DECODE_ERRORS) as e:
            logger.error("Failed to load data from %s: %s", self.data_file, e)
        return self._recover()

    def _recover(self) -> Dataset:
        logger.warning("Attempting to recover from backup %s", self.backup.backup_file)
        snapshot = self.backup.load_backup_snapshot()
        if snapshot is not None:
            try:
                self._write(snapshot)
            except OSError as e:
                logger.error("Failed to repair %s from backup: %s", self.data_file, e)
            else:
                logger.warning("Recovered %s from backup", self.data_file)
            return snapshot

        logger.error("All recovery attempts failed. Initializing with empty state.")
        empty = Dataset()
        try:
            self._write(empty)
        except OSError as e:
            logger.error("Failed to write empty state to %s: %s", self.data_file, e)
        return empty

    # ── Save ──────────────────────────────────────────────────

    def save(self, dataset: Dataset) -> None:
        """Back up the current file, then replace it with ``dataset``."""
        try:
            self.data_file.parent.mkdir(parents=True, exist_ok=True)
            self.backup.snapshot()
            self._write(dataset)
        except OSError as e:
            raise StorageIOError(self.data_file, str(e)) from e
        logger.debug(
            "Saved %d threads, %d containers, %d groups to %s",
            len(dataset.threads),
            len(dataset.containers),
            len(dataset.groups),
            self.data_file,
        )

"""One-generation backup of the dataset file.

The backup is a whole-file copy of the live document taken right before each
write, so it always holds the immediately prior snapshot. ``restore`` swaps
the two files; running it twice puts everything back (undo, then redo).
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from threadline.errors import StorageIOError
from threadline.models import Dataset, Thread
from threadline.store.base import BackupInfo
from threadline.store.codec import (
    DECODE_ERRORS,
    atomic_write_bytes,
    decode_dataset,
    encode_dataset,
)

logger = logging.getLogger(__name__)


@dataclass
class RestorePreview:
    """What ``restore`` would change, for a dry run."""

    backup_timestamp: datetime | None
    current_threads: int
    current_groups: int
    backup_threads: int
    backup_groups: int
    removed: list[Thread] = field(default_factory=list)
    restored: list[Thread] = field(default_factory=list)
    reverted: list[Thread] = field(default_factory=list)


class BackupManager:
    """Owns the backup file that sits next to the live data file."""

    def __init__(self, data_file: Path, backup_file: Path) -> None:
        self.data_file = data_file
        self.backup_file = backup_file

    # ── Snapshot (called by the codec before every write) ─────

    def snapshot(self) -> None:
        """Copy the current live bytes over the backup. No-op if there is no live file."""
        if not self.data_file.exists():
            return
        atomic_write_bytes(self.backup_file, self.data_file.read_bytes())
        logger.debug("Backed up %s -> %s", self.data_file, self.backup_file)

    # ── Inspection ────────────────────────────────────────────

    def get_backup_info(self) -> BackupInfo:
        """Existence, mtime and record counts of the backup."""
        if not self.backup_file.exists():
            return BackupInfo(exists=False)
        try:
            stat = self.backup_file.stat()
            raw = json.loads(self.backup_file.read_text(encoding="utf-8"))
            if not isinstance(raw, dict):
                raise ValueError("backup document is not a JSON object")
        except (OSError, *DECODE_ERRORS) as e:
            logger.error("Failed to parse backup file %s: %s", self.backup_file, e)
            return BackupInfo(exists=False)

        return BackupInfo(
            exists=True,
            timestamp=datetime.fromtimestamp(stat.st_mtime),
            thread_count=len(raw.get("threads") or []),
            container_count=len(raw.get("containers") or []),
            group_count=len(raw.get("groups") or []),
        )

    def load_backup_snapshot(self) -> Dataset | None:
        """Decode the backup, or None if it is absent or unreadable."""
        if not self.backup_file.exists():
            return None
        try:
            return decode_dataset(self.backup_file.read_text(encoding="utf-8"))
        except (OSError, *DECODE_ERRORS) as e:
            logger.error("Failed to parse backup file %s: %s", self.backup_file, e)
            return None

    def preview_restore(self, current: Dataset) -> RestorePreview | None:
        """Describe the thread-level changes a restore would make to ``current``."""
        backup = self.load_backup_snapshot()
        if backup is None:
            return None

        current_ids = {t.id for t in current.threads}
        backup_by_id = {t.id: t for t in backup.threads}
        info = self.get_backup_info()

        return RestorePreview(
            backup_timestamp=info.timestamp,
            current_threads=len(current.threads),
            current_groups=len(current.groups),
            backup_threads=len(backup.threads),
            backup_groups=len(backup.groups),
            removed=[t for t in current.threads if t.id not in backup_by_id],
            restored=[t for t in backup.threads if t.id not in current_ids],
            reverted=[
                t
                for t in current.threads
                if t.id in backup_by_id and backup_by_id[t.id].updated_at != t.updated_at
            ],
        )

    # ── Restore ───────────────────────────────────────────────

    def restore(self) -> bool:
        """Swap live and backup files.

        Returns False without touching anything if the backup is missing or
        does not decode. A second call swaps them back.

        The current live bytes go to the backup file first, then the old
        backup bytes to the live file. A crash between the two writes leaves
        the live data untouched but loses the snapshot being restored, since
        the backup then holds a copy of the live file.
        """
        if not self.backup_file.exists():
            logger.info("No backup to restore at %s", self.backup_file)
            return False

        try:
            backup_bytes = self.backup_file.read_bytes()
            decode_dataset(backup_bytes.decode("utf-8"))
        except (OSError, *DECODE_ERRORS) as e:
            logger.error("Backup file %s is not restorable: %s", self.backup_file, e)
            return False

        try:
            if self.data_file.exists():
                current_bytes = self.data_file.read_bytes()
            else:
                current_bytes = encode_dataset(Dataset()).encode("utf-8")
            atomic_write_bytes(self.backup_file, current_bytes)
            atomic_write_bytes(self.data_file, backup_bytes)
        except OSError as e:
            raise StorageIOError(self.data_file, str(e)) from e

        logger.info("Restored %s from backup", self.data_file)
        return True

"""Exceptions raised by threadline.

Ordinary lookups that find nothing are not errors: they return ``None`` or a
result value from ``threadline.results``. Only caller mistakes and failed
writes raise.
"""

from __future__ import annotations

from pathlib import Path


class ThreadlineError(Exception):
    """Base class for threadline exceptions."""


class ValidationError(ThreadlineError):
    """Caller-supplied value rejected by the command layer."""


class StorageIOError(ThreadlineError):
    """Persisting the dataset failed. The command must be aborted."""

    def __init__(self, path: Path, reason: str) -> None:
        super().__init__(f"Failed to write {path}: {reason}")
        self.path = path
        self.reason = reason

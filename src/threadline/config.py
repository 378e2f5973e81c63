"""Configuration loading from environment variables and threadline.toml."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

from threadline.store.repository import BACKUP_FILE_NAME, DATA_FILE_NAME

_DEFAULT_DATA_DIR = Path.home() / ".threads"
_CONFIG_FILENAME = "threadline.toml"


@dataclass
class StorageConfig:
    """Where the dataset and its backup live."""

    data_dir: Path = _DEFAULT_DATA_DIR
    data_file_name: str = DATA_FILE_NAME
    backup_file_name: str = BACKUP_FILE_NAME

    @property
    def data_file(self) -> Path:
        return self.data_dir / self.data_file_name

    @property
    def backup_file(self) -> Path:
        return self.data_dir / self.backup_file_name


@dataclass
class ThreadlineConfig:
    """Top-level threadline configuration."""

    storage: StorageConfig = field(default_factory=StorageConfig)
    log_level: str = "WARNING"


def load_config(config_path: Path | None = None) -> ThreadlineConfig:
    """Load configuration from environment variables and optional threadline.toml.

    Priority: environment variables > threadline.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        # Search current dir and ~/.threads/
        for candidate in [Path.cwd() / _CONFIG_FILENAME, _DEFAULT_DATA_DIR / _CONFIG_FILENAME]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    storage_data = file_data.get("storage", {})

    config = ThreadlineConfig(
        storage=StorageConfig(
            data_dir=Path(
                os.getenv("THREADLINE_DATA_DIR", storage_data.get("data_dir", str(_DEFAULT_DATA_DIR)))
            ).expanduser(),
            data_file_name=storage_data.get("data_file_name", DATA_FILE_NAME),
            backup_file_name=storage_data.get("backup_file_name", BACKUP_FILE_NAME),
        ),
        log_level=os.getenv("THREADLINE_LOG_LEVEL", file_data.get("log_level", "WARNING")),
    )
    return config

"""Tests for configuration loading."""

import pytest
from pathlib import Path

from threadline import config as config_module
from threadline.config import load_config

_ENV_KEYS = ["THREADLINE_DATA_DIR", "THREADLINE_LOG_LEVEL"]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture(autouse=True)
def home_dir(tmp_path: Path, monkeypatch) -> Path:
    """Keep the developer's own ~/.threads/threadline.toml out of the tests."""
    home = tmp_path / "home" / ".threads"
    monkeypatch.setattr(config_module, "_DEFAULT_DATA_DIR", home)
    return home


class TestConfig:
    def test_defaults(self, tmp_path: Path, monkeypatch, home_dir: Path):
        monkeypatch.chdir(tmp_path)

        config = load_config(tmp_path / "missing.toml")
        assert config.storage.data_dir == home_dir
        assert config.storage.data_file_name == "threads.json"
        assert config.storage.backup_file_name == "threads.backup.json"
        assert config.log_level == "WARNING"

    def test_env_override(self, tmp_path: Path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("THREADLINE_DATA_DIR", str(tmp_path / "data"))
        monkeypatch.setenv("THREADLINE_LOG_LEVEL", "DEBUG")

        config = load_config(tmp_path / "missing.toml")
        assert config.storage.data_dir == tmp_path / "data"
        assert config.storage.data_file == tmp_path / "data" / "threads.json"
        assert config.log_level == "DEBUG"

    def test_toml_file(self, tmp_path: Path, monkeypatch):
        monkeypatch.chdir(tmp_path)

        toml_path = tmp_path / "threadline.toml"
        toml_path.write_text(f"""
log_level = "INFO"

[storage]
data_dir = "{tmp_path / 'store'}"
data_file_name = "work.json"
backup_file_name = "work.backup.json"
""")
        config = load_config(toml_path)
        assert config.storage.data_dir == tmp_path / "store"
        assert config.storage.backup_file == tmp_path / "store" / "work.backup.json"
        assert config.log_level == "INFO"

    def test_env_overrides_toml(self, tmp_path: Path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("THREADLINE_DATA_DIR", str(tmp_path / "from-env"))

        toml_path = tmp_path / "threadline.toml"
        toml_path.write_text(f"""
[storage]
data_dir = "{tmp_path / 'from-file'}"
""")
        config = load_config(toml_path)
        assert config.storage.data_dir == tmp_path / "from-env"  # env wins

    def test_finds_toml_in_cwd(self, tmp_path: Path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        (tmp_path / "threadline.toml").write_text('log_level = "ERROR"\n')

        config = load_config()
        assert config.log_level == "ERROR"

    def test_finds_toml_in_data_dir(self, tmp_path: Path, monkeypatch, home_dir: Path):
        monkeypatch.chdir(tmp_path)
        home_dir.mkdir(parents=True)
        (home_dir / "threadline.toml").write_text('log_level = "DEBUG"\n')

        assert load_config().log_level == "DEBUG"

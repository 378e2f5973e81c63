"""Tests for the one-generation backup and swap restore."""

import pytest
from pathlib import Path

from threadline.errors import StorageIOError
from threadline.models import Group, Thread
from threadline.store import backup as backup_module
from threadline.store.repository import EntityRepository


@pytest.fixture
def repo(tmp_path: Path) -> EntityRepository:
    return EntityRepository.open(tmp_path)


class TestBackupInfo:
    def test_no_backup(self, repo: EntityRepository):
        info = repo.get_backup_info()
        assert not info.exists
        assert info.timestamp is None

    def test_counts_prior_snapshot(self, repo: EntityRepository):
        repo.add_thread(Thread.create("one"))
        repo.add_group(Group.create("g"))
        repo.add_thread(Thread.create("two"))

        info = repo.get_backup_info()
        assert info.exists
        assert info.timestamp is not None
        # Backup holds the state before the last write.
        assert info.thread_count == 1
        assert info.group_count == 1
        assert info.container_count == 0

    def test_unparsable_backup_reports_missing(self, repo: EntityRepository, tmp_path: Path):
        (tmp_path / "threads.backup.json").write_text("{oops")
        assert not repo.get_backup_info().exists
        assert repo.load_backup_snapshot() is None

    def test_deeply_nested_backup_reports_missing(self, repo: EntityRepository, tmp_path: Path):
        (tmp_path / "threads.backup.json").write_text("[" * 200000 + "]" * 200000)
        assert not repo.get_backup_info().exists
        assert repo.load_backup_snapshot() is None

    def test_paths(self, repo: EntityRepository, tmp_path: Path):
        assert repo.get_data_file_path() == tmp_path / "threads.json"
        assert repo.get_backup_file_path() == tmp_path / "threads.backup.json"


class TestRestore:
    def test_restore_reverts_last_write(self, repo: EntityRepository):
        repo.add_thread(Thread.create("keep"))
        repo.add_thread(Thread.create("oops"))

        assert repo.restore_from_backup()
        assert [t.name for t in repo.get_all_threads()] == ["keep"]

    def test_restore_twice_is_involution(self, repo: EntityRepository, tmp_path: Path):
        repo.add_thread(Thread.create("a"))
        t = repo.add_thread(Thread.create("b"))
        repo.update_thread(t.id, status="paused")
        before = (tmp_path / "threads.json").read_bytes()

        assert repo.restore_from_backup()
        assert repo.get_thread_by_id(t.id).status == "active"
        assert repo.restore_from_backup()
        assert (tmp_path / "threads.json").read_bytes() == before
        assert repo.get_thread_by_id(t.id).status == "paused"

    def test_missing_backup_returns_false(self, repo: EntityRepository):
        repo.load()
        assert repo.restore_from_backup() is False

    def test_corrupt_backup_leaves_files_untouched(self, repo: EntityRepository, tmp_path: Path):
        repo.add_thread(Thread.create("a"))
        (tmp_path / "threads.backup.json").write_text("nope")
        live = (tmp_path / "threads.json").read_bytes()

        assert repo.restore_from_backup() is False
        assert (tmp_path / "threads.json").read_bytes() == live
        assert (tmp_path / "threads.backup.json").read_text() == "nope"

    def test_interrupted_restore_keeps_live_data(self, repo: EntityRepository, tmp_path: Path, monkeypatch):
        repo.add_thread(Thread.create("old"))
        repo.add_thread(Thread.create("newest"))
        live = (tmp_path / "threads.json").read_bytes()

        real_write = backup_module.atomic_write_bytes
        calls = []

        def crash_on_second_write(path, data):
            calls.append(path)
            if len(calls) == 2:
                raise OSError("killed")
            real_write(path, data)

        monkeypatch.setattr(backup_module, "atomic_write_bytes", crash_on_second_write)
        with pytest.raises(StorageIOError):
            repo.restore_from_backup()
        assert (tmp_path / "threads.json").read_bytes() == live


class TestPreviewRestore:
    def test_reports_thread_changes(self, repo: EntityRepository):
        kept = repo.add_thread(Thread.create("kept"))
        gone = repo.add_thread(Thread.create("gone"))
        with repo.batch() as batch:
            batch.remove_thread(gone.id)
            batch.add(Thread.create("new"))
            batch.update_thread(kept.id, importance=1)

        preview = repo.preview_restore()
        assert preview is not None
        assert [t.name for t in preview.removed] == ["new"]
        assert [t.name for t in preview.restored] == ["gone"]
        assert [t.name for t in preview.reverted] == ["kept"]
        assert preview.current_threads == 2
        assert preview.backup_threads == 2

    def test_no_backup(self, repo: EntityRepository):
        assert repo.preview_restore() is None

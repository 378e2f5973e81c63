"""Tests for the Threadline command layer."""

import logging
import pytest
from datetime import datetime, timezone
from pathlib import Path

from threadline.config import StorageConfig, ThreadlineConfig
from threadline.core import Threadline, parse_tags, parse_when
from threadline.errors import ValidationError
from threadline.models import Container, parse_timestamp
from threadline.results import Ambiguous, ArchiveResult, BatchResult, CycleDetected, MergePlan, NotFound


@pytest.fixture
def config(tmp_path: Path) -> ThreadlineConfig:
    return ThreadlineConfig(storage=StorageConfig(data_dir=tmp_path / "data"))


@pytest.fixture
def app(config: ThreadlineConfig) -> Threadline:
    return Threadline.from_config(config)


class TestEndToEnd:
    def test_archive_refuses_then_cascades(self, app: Threadline):
        a = app.new_thread("A", importance=3, temperature="warm")
        b = app.spawn("A", "B")
        assert b.parent_id == a.id

        refused = app.archive("A")
        assert isinstance(refused, ArchiveResult)
        assert refused.refused
        assert app.repo.get_thread_by_id(b.id).status == "active"

        done = app.archive("A", cascade=True)
        assert not done.refused
        for thread_id in (a.id, b.id):
            stored = app.repo.get_thread_by_id(thread_id)
            assert stored.status == "archived"
            assert stored.temperature == "frozen"

    def test_undo_redo(self, app: Threadline):
        app.new_thread("A")
        app.new_thread("B")
        assert app.undo()
        assert [t.name for t in app.repo.get_all_threads()] == ["A"]
        assert app.undo()
        assert [t.name for t in app.repo.get_all_threads()] == ["A", "B"]

    def test_data_lands_in_configured_dir(self, app: Threadline, config: ThreadlineConfig):
        app.new_thread("A")
        assert config.storage.data_file.exists()


class TestCreation:
    def test_new_thread_validates(self, app: Threadline):
        with pytest.raises(ValidationError):
            app.new_thread("A", importance=9)
        with pytest.raises(ValidationError):
            app.new_thread("A", size="gigantic")
        with pytest.raises(ValidationError):
            app.new_thread("   ")

    def test_advisory_unique_names(self, app: Threadline):
        app.new_thread("Docs")
        with pytest.raises(ValidationError):
            app.new_thread("docs")
        # Uniqueness is per kind.
        assert isinstance(app.new_container("Docs"), Container)

    def test_new_thread_under_container_inherits_group(self, app: Threadline):
        g = app.new_group("Work")
        c = app.new_container("Inbox", group="Work")
        t = app.new_thread("Task", parent="Inbox", tags=["x, y", "x"])
        assert t.parent_id == c.id
        assert t.group_id == g.id
        assert t.tags == ["x", "y"]

    def test_unknown_parent_is_not_found(self, app: Threadline):
        assert isinstance(app.new_thread("T", parent="ghost"), NotFound)

    def test_spawn_inherits_importance_and_group(self, app: Threadline):
        app.new_group("G")
        parent = app.new_thread("P", importance=5, group="G")
        child = app.spawn("P", "C")
        assert child.importance == 5
        assert child.group_id == parent.group_id
        assert child.size == "small"
        assert child.temperature == "warm"


class TestSetProperty:
    def test_sets_scalars(self, app: Threadline):
        app.new_thread("T")
        assert app.set_property("T", "imp", "4").importance == 4
        assert app.set_property("T", "temp", "hot").temperature == "hot"
        assert app.set_property("T", "name", "Renamed").name == "Renamed"

    def test_invalid_values(self, app: Threadline):
        app.new_thread("T")
        with pytest.raises(ValidationError):
            app.set_property("T", "importance", "zero")
        with pytest.raises(ValidationError):
            app.set_property("T", "status", "done")
        with pytest.raises(ValidationError):
            app.set_property("T", "colour", "red")

    def test_container_rejects_thread_props(self, app: Threadline):
        app.new_container("Box")
        with pytest.raises(ValidationError):
            app.set_property("Box", "status", "paused")

    def test_off_lifecycle_status_warns(self, app: Threadline, caplog):
        app.new_thread("T", status="completed")
        with caplog.at_level(logging.WARNING, logger="threadline.core"):
            updated = app.set_property("T", "status", "active")
        assert updated.status == "active"
        assert "lifecycle" in caplog.text

    def test_parent_cycle_refused(self, app: Threadline):
        app.new_thread("A")
        app.spawn("A", "B")
        assert isinstance(app.set_property("A", "parent", "B"), CycleDetected)
        assert app.move("B", None).parent_id is None

    def test_ambiguous_identifier(self, app: Threadline):
        app.new_thread("Parser tests")
        app.new_thread("Parser docs")
        assert isinstance(app.set_property("parser", "size", "tiny"), Ambiguous)


class TestLogs:
    def test_progress_with_bump_and_backdate(self, app: Threadline):
        app.new_thread("T", temperature="cold")
        t = app.add_progress("T", "did it", at="2026-01-10T15:00:00", temperature="hot")
        assert t.temperature == "hot"
        assert t.progress[0].note == "did it"
        assert parse_timestamp(t.progress[0].timestamp).day == 10

    def test_empty_note_rejected(self, app: Threadline):
        app.new_thread("T")
        with pytest.raises(ValidationError):
            app.add_progress("T", "  ")

    def test_details_on_container(self, app: Threadline):
        app.new_container("Box")
        assert app.add_details("Box", "current state").details[-1].content == "current state"

    def test_tags(self, app: Threadline):
        app.new_thread("T")
        assert app.tag("T", ["a,b", "c"]).tags == ["a", "b", "c"]
        assert app.untag("T", ["b"]).tags == ["a", "c"]
        assert app.untag("T").tags == []


class TestDependenciesAndLinks:
    def test_dependency_upsert(self, app: Threadline):
        app.new_thread("A")
        b = app.new_thread("B")
        app.add_dependency("A", "B", why="needs API", what="endpoint")
        t = app.add_dependency("A", "B", why="changed")
        assert len(t.dependencies) == 1
        dep = t.dependencies[0]
        assert (dep.thread_id, dep.why, dep.what) == (b.id, "changed", "endpoint")

    def test_dependency_validation(self, app: Threadline):
        app.new_thread("A")
        app.new_thread("B")
        with pytest.raises(ValidationError):
            app.add_dependency("A", "A")
        with pytest.raises(ValidationError):
            app.remove_dependency("A", "B")

    def test_remove_dependency(self, app: Threadline):
        app.new_thread("A")
        app.new_thread("B")
        app.add_dependency("A", "B")
        assert app.remove_dependency("A", "B").dependencies == []

    def test_links(self, app: Threadline):
        app.new_thread("T")
        t = app.add_link("T", "https://example.com", label="site")
        assert t.links[0].type == "web"
        with pytest.raises(ValidationError):
            app.add_link("T", "https://example.com")
        with pytest.raises(ValidationError):
            app.add_link("T", "x", type="ftp")
        assert app.remove_link("T", "https://example.com").links == []


class TestPassThroughs:
    def test_clone_resolves_parent(self, app: Threadline):
        app.new_container("Dest")
        app.new_thread("Src")
        clones = app.clone("Src", "Copy", parent="Dest")
        assert clones[0].parent_id == app.repo.get_container_by_name("Dest").id

    def test_clone_rejects_taken_name(self, app: Threadline):
        app.new_thread("Src")
        with pytest.raises(ValidationError):
            app.clone("Src", "src")

    def test_merge_by_name(self, app: Threadline):
        app.new_thread("Old")
        app.new_thread("New")
        app.add_progress("Old", "history")
        plan = app.merge("Old", "New")
        assert isinstance(plan, MergePlan)
        assert [p.note for p in app.repo.get_thread_by_name("New").progress] == ["history"]

    def test_delete_group(self, app: Threadline):
        app.new_group("G")
        t = app.new_thread("T", group="G")
        result = app.delete_group("G")
        assert result.count == 1
        assert app.repo.get_thread_by_id(t.id).group_id is None

    def test_set_group_and_clear(self, app: Threadline):
        g = app.new_group("G")
        app.new_thread("T")
        assert app.set_group("T", "G").group_id == g.id
        assert app.set_group("T", "none").group_id is None

    def test_delete_with_move(self, app: Threadline):
        app.new_thread("A")
        app.spawn("A", "child")
        app.new_container("Shelf")
        result = app.delete("A", strategy="move", move_to="Shelf")
        assert [e.name for e in result.moved] == ["child"]

    def test_undo_preview(self, app: Threadline):
        app.new_thread("A")
        app.new_thread("B")
        preview = app.undo_preview()
        assert [t.name for t in preview.removed] == ["B"]
        assert app.undo_info().thread_count == 1

    def test_move_progress(self, app: Threadline):
        app.new_thread("From")
        app.new_thread("To")
        app.add_progress("From", "one")
        result = app.move_progress("From", "To", count=None)
        assert [p.note for p in result.destination.progress] == ["one"]


class TestHelpers:
    def test_parse_tags(self):
        assert parse_tags(["a, b", "b", " ", "c"]) == ["a", "b", "c"]
        assert parse_tags("x,y") == ["x", "y"]

    def test_parse_when_relative(self):
        now = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
        assert parse_when("yesterday", now).startswith("2026-03-09T12:00")
        assert parse_when("3 days ago", now).startswith("2026-03-07")
        assert parse_when("2026-01-02T03:04:05Z").startswith("2026-01-02T03:04:05")

    def test_parse_when_rejects_garbage(self):
        with pytest.raises(ValidationError):
            parse_when("sometime soon")


class TestEditProgress:
    @pytest.fixture
    def logged(self, app: Threadline):
        app.new_thread("T")
        app.add_progress("T", "first", at="2026-01-01T10:00:00")
        app.add_progress("T", "second", at="2026-01-02T10:00:00")
        return app

    def test_edit_note_by_index(self, logged: Threadline):
        result = logged.edit_progress("T", 1, note="first, reworded")
        assert result.action == "edit"
        assert result.position == 1
        assert [p.note for p in result.thread.progress] == ["first, reworded", "second"]

    def test_edit_time_of_last(self, logged: Threadline):
        result = logged.edit_progress("T", "last", at="2026-01-03T09:00:00Z")
        assert result.position == 2
        assert parse_timestamp(result.entry.timestamp).day == 3
        assert result.entry.note == "second"

    def test_delete(self, logged: Threadline):
        result = logged.edit_progress("T", "1", delete=True)
        assert result.action == "delete"
        assert result.entry.note == "first"
        assert [p.note for p in logged.repo.get_thread_by_name("T").progress] == ["second"]

    def test_show_writes_nothing(self, logged: Threadline, config: ThreadlineConfig):
        before = config.storage.data_file.read_bytes()
        result = logged.edit_progress("T", "last")
        assert result.action == "show"
        assert config.storage.data_file.read_bytes() == before

    def test_invalid_input(self, logged: Threadline):
        for index in (0, 3, "x"):
            with pytest.raises(ValidationError):
                logged.edit_progress("T", index, note="n")
        with pytest.raises(ValidationError):
            logged.edit_progress("T", 1, note="n", delete=True)
        with pytest.raises(ValidationError):
            logged.edit_progress("T", 1, at="whenever")

    def test_thread_without_progress(self, app: Threadline):
        app.new_thread("Empty")
        with pytest.raises(ValidationError):
            app.edit_progress("Empty", "last", note="n")
        assert isinstance(app.edit_progress("ghost", 1), NotFound)


class TestBatch:
    @pytest.fixture
    def project(self, app: Threadline):
        app.new_container("Project")
        app.new_thread("Design", parent="Project", importance=4)
        app.spawn("Design", "Mockups")
        app.new_thread("Build", parent="Project", importance=2)
        app.new_thread("Elsewhere", importance=5)
        return app

    def test_set_under_container(self, project: Threadline):
        result = project.batch(["set", "temp", "cold"], under="Project")
        assert isinstance(result, BatchResult)
        assert [t.name for t in result.changed] == ["Design", "Mockups", "Build"]
        assert project.repo.get_thread_by_name("Elsewhere").temperature == "warm"

    def test_tag_children_with_importance(self, project: Threadline):
        result = project.batch(["tag", "add", "q3,ui"], children="Project", importance="3+")
        assert [t.name for t in result.changed] == ["Design"]
        assert project.repo.get_thread_by_name("Design").tags == ["q3", "ui"]
        project.batch(["tag", "remove", "ui"], tag="q3")
        assert project.repo.get_thread_by_name("Design").tags == ["q3"]

    def test_archive_and_progress(self, project: Threadline):
        project.batch(["progress", "weekly", "sync"], under="Design")
        assert project.repo.get_thread_by_name("Mockups").progress[0].note == "weekly sync"
        project.batch(["archive"], importance="2-")
        build = project.repo.get_thread_by_name("Build")
        assert (build.status, build.temperature) == ("archived", "frozen")

    def test_single_undo_step(self, project: Threadline):
        project.batch(["set", "size", "huge"], under="Project")
        assert project.undo()
        assert {t.size for t in project.repo.get_all_threads()} == {"medium", "small"}

    def test_dry_run_without_action(self, project: Threadline):
        result = project.batch(status="active", dry_run=True)
        assert result.dry_run
        assert len(result.matched) == 4
        assert result.action == ""

    def test_validation(self, project: Threadline):
        with pytest.raises(ValidationError):
            project.batch(["archive"])
        with pytest.raises(ValidationError):
            project.batch([], status="active")
        with pytest.raises(ValidationError):
            project.batch(["set", "name", "x"], status="active")
        with pytest.raises(ValidationError):
            project.batch(["explode"], status="active")
        with pytest.raises(ValidationError):
            project.batch(["archive"], importance="7")

    def test_unknown_scope(self, project: Threadline):
        assert isinstance(project.batch(["archive"], under="ghost"), NotFound)

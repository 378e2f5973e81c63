"""Tests for EntityRepository CRUD, filters and batches."""

import pytest
from pathlib import Path

from threadline.models import Container, Group, Thread, parse_timestamp
from threadline.store.base import ContainerFilter, FileThreadStore, ThreadFilter, ThreadStore
from threadline.store.repository import EntityRepository


@pytest.fixture
def repo(tmp_path: Path) -> EntityRepository:
    return EntityRepository.open(tmp_path)


class TestProtocols:
    def test_satisfies_store_protocols(self, repo: EntityRepository):
        assert isinstance(repo, ThreadStore)
        assert isinstance(repo, FileThreadStore)


class TestThreadCrud:
    def test_add_and_get(self, repo: EntityRepository):
        t = repo.add_thread(Thread.create("Write Docs"))
        assert repo.get_thread_by_id(t.id) == t
        assert repo.get_thread_by_name("write docs") == t
        assert repo.get_thread_by_name("write") is None

    def test_update_stamps_and_preserves(self, repo: EntityRepository):
        t = repo.add_thread(Thread.create("A", description="desc", importance=4))
        updated = repo.update_thread(t.id, status="paused")

        assert updated.status == "paused"
        assert parse_timestamp(updated.updated_at) > parse_timestamp(t.updated_at)
        assert updated.description == "desc"
        assert updated.importance == 4
        assert updated.created_at == t.created_at
        assert repo.get_thread_by_id(t.id) == updated

    def test_rapid_updates_strictly_increase(self, repo: EntityRepository):
        t = repo.add_thread(Thread.create("A"))
        stamps = [t.updated_at]
        for i in range(5):
            stamps.append(repo.update_thread(t.id, importance=(i % 5) + 1).updated_at)
        parsed = [parse_timestamp(s) for s in stamps]
        assert parsed == sorted(set(parsed))

    def test_update_ignores_caller_updated_at(self, repo: EntityRepository):
        t = repo.add_thread(Thread.create("A"))
        updated = repo.update_thread(t.id, updated_at="2000-01-01T00:00:00+00:00")
        assert parse_timestamp(updated.updated_at) > parse_timestamp(t.updated_at)

    def test_update_rejects_immutable_fields(self, repo: EntityRepository):
        t = repo.add_thread(Thread.create("A"))
        with pytest.raises(ValueError):
            repo.update_thread(t.id, id="other")

    def test_update_missing_returns_none(self, repo: EntityRepository):
        assert repo.update_thread("nope", status="paused") is None

    def test_delete(self, repo: EntityRepository):
        t = repo.add_thread(Thread.create("A"))
        assert repo.delete_thread(t.id) is True
        assert repo.delete_thread(t.id) is False
        assert repo.get_all_threads() == []

    def test_add_does_not_enforce_unique_names(self, repo: EntityRepository):
        repo.add_thread(Thread.create("Same"))
        repo.add_thread(Thread.create("Same"))
        assert len(repo.get_all_threads()) == 2


class TestContainersAndGroups:
    def test_container_crud(self, repo: EntityRepository):
        c = repo.add_container(Container.create("Box"))
        assert repo.get_container_by_name("BOX") == c
        assert repo.update_container(c.id, description="d").description == "d"
        assert repo.delete_container(c.id)
        assert repo.get_container_by_id(c.id) is None

    def test_group_crud(self, repo: EntityRepository):
        g = repo.add_group(Group.create("Work"))
        assert repo.get_group_by_name("work") == g
        assert repo.update_group(g.id, name="Job").name == "Job"
        assert repo.delete_group(g.id)
        assert repo.get_all_groups() == []


class TestEntities:
    def test_polymorphic_accessors(self, repo: EntityRepository):
        t = repo.add_thread(Thread.create("T"))
        c = repo.add_container(Container.create("C", parent_id=t.id))
        assert repo.get_all_entities() == [t, c]
        assert repo.get_entity_by_id(c.id) == c
        assert repo.get_entity_by_name("t") == t
        assert repo.update_entity(c.id, parent_id=None).parent_id is None

    def test_thread_wins_name_lookup(self, repo: EntityRepository):
        repo.add_container(Container.create("Same"))
        t = repo.add_thread(Thread.create("Same"))
        assert repo.get_entity_by_name("same") == t


class TestFilters:
    @pytest.fixture
    def populated(self, repo: EntityRepository):
        root = repo.add_thread(Thread.create("Root", tags=["a"], importance=5))
        child = repo.add_thread(
            Thread.create("Child", parent_id=root.id, tags=["b"], description="fix the parser")
        )
        hot = repo.add_thread(Thread.create("Hot", temperature="hot", status="paused"))
        return root, child, hot

    def test_parent_none_means_root(self, repo: EntityRepository, populated):
        root, child, hot = populated
        assert repo.find_threads(ThreadFilter(parent_id=None)) == [root, hot]
        assert repo.find_threads(ThreadFilter(parent_id=root.id)) == [child]

    def test_unset_parent_matches_all(self, repo: EntityRepository, populated):
        assert len(repo.find_threads(ThreadFilter())) == 3

    def test_scalar_criteria(self, repo: EntityRepository, populated):
        root, child, hot = populated
        assert repo.find_threads(ThreadFilter(status="paused")) == [hot]
        assert repo.find_threads(ThreadFilter(temperature="hot")) == [hot]
        assert repo.find_threads(ThreadFilter(importance=5)) == [root]

    def test_tags_any_of(self, repo: EntityRepository, populated):
        root, child, hot = populated
        assert repo.find_threads(ThreadFilter(tags=["b", "zzz"])) == [child]
        assert repo.find_threads(ThreadFilter(tags=["a", "b"])) == [root, child]

    def test_search_covers_description(self, repo: EntityRepository, populated):
        root, child, hot = populated
        assert repo.find_threads(ThreadFilter(search="PARSER")) == [child]

    def test_container_filter(self, repo: EntityRepository):
        g = repo.add_group(Group.create("G"))
        grouped = repo.add_container(Container.create("In", group_id=g.id))
        loose = repo.add_container(Container.create("Out"))
        assert repo.find_containers(ContainerFilter(group_id=g.id)) == [grouped]
        assert repo.find_containers(ContainerFilter(group_id=None)) == [loose]


class TestBatch:
    def test_single_save_for_many_mutations(self, repo: EntityRepository):
        repo.add_thread(Thread.create("before"))
        with repo.batch() as batch:
            batch.add(Thread.create("one"))
            batch.add(Thread.create("two"))

        # One backup generation: undo removes both.
        assert repo.restore_from_backup()
        assert [t.name for t in repo.get_all_threads()] == ["before"]

    def test_clean_batch_does_not_write(self, repo: EntityRepository, tmp_path: Path):
        repo.add_thread(Thread.create("x"))
        before = (tmp_path / "threads.backup.json").read_bytes()
        with repo.batch() as batch:
            batch.update_thread("missing", name="y")
        assert (tmp_path / "threads.backup.json").read_bytes() == before

    def test_exception_discards_batch(self, repo: EntityRepository):
        with pytest.raises(RuntimeError):
            with repo.batch() as batch:
                batch.add(Thread.create("lost"))
                raise RuntimeError("abort")
        assert repo.get_all_threads() == []

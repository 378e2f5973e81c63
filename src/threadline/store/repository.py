"""Entity repository — CRUD over threads, containers and groups.

Every mutating call is a full load → mutate → save cycle against the JSON
document; there is no index and no cache. Multi-record operations use
``batch()`` so they cost one save (and leave one backup generation).

Single-writer: the repository assumes one process owns the data file for the
duration of an operation. Concurrent writers are last-writer-wins.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from threadline.models import (
    UNSET,
    Container,
    Dataset,
    Entity,
    Group,
    Record,
    Thread,
    next_timestamp,
)
from threadline.store.backup import BackupManager, RestorePreview
from threadline.store.base import BackupInfo, ContainerFilter, ThreadFilter
from threadline.store.codec import DocumentCodec

logger = logging.getLogger(__name__)

DATA_FILE_NAME = "threads.json"
BACKUP_FILE_NAME = "threads.backup.json"

_IMMUTABLE_FIELDS = frozenset({"id", "created_at"})


def _apply(record: Record, changes: dict[str, Any]) -> Record:
    """Shallow-merge ``changes`` onto ``record`` and stamp ``updated_at``."""
    frozen = _IMMUTABLE_FIELDS & changes.keys()
    if frozen:
        raise ValueError(f"Cannot change {', '.join(sorted(frozen))} of {record.id}")
    changes = {k: v for k, v in changes.items() if k != "updated_at"}
    return dataclasses.replace(record, **changes, updated_at=next_timestamp(record.updated_at))


def _find_index(records: list, record_id: str) -> int:
    for i, record in enumerate(records):
        if record.id == record_id:
            return i
    return -1


def _by_name(records: list, name: str):
    lower = name.lower()
    return next((r for r in records if r.name.lower() == lower), None)


def _matches_tree_fields(
    record: Entity,
    parent_id: Any,
    group_id: Any,
    tags: list[str],
    search: str | None,
) -> bool:
    if parent_id is not UNSET and record.parent_id != parent_id:
        return False
    if group_id is not UNSET and record.group_id != group_id:
        return False
    if tags and not set(tags) & set(record.tags or []):
        return False
    if search:
        needle = search.lower()
        if needle not in record.name.lower() and needle not in (record.description or "").lower():
            return False
    return True


class Batch:
    """Mutations against one loaded dataset, saved together when the batch exits."""

    def __init__(self, dataset: Dataset) -> None:
        self.dataset = dataset
        self.dirty = False

    def add(self, record: Record) -> Record:
        if isinstance(record, Thread):
            self.dataset.threads.append(record)
        elif isinstance(record, Container):
            self.dataset.containers.append(record)
        elif isinstance(record, Group):
            self.dataset.groups.append(record)
        else:
            raise TypeError(f"Cannot store {type(record).__name__}")
        self.dirty = True
        return record

    def _update(self, records: list, record_id: str, changes: dict[str, Any]):
        index = _find_index(records, record_id)
        if index == -1:
            return None
        records[index] = _apply(records[index], changes)
        self.dirty = True
        return records[index]

    def update_thread(self, thread_id: str, **changes: Any) -> Thread | None:
        return self._update(self.dataset.threads, thread_id, changes)

    def update_container(self, container_id: str, **changes: Any) -> Container | None:
        return self._update(self.dataset.containers, container_id, changes)

    def update_group(self, group_id: str, **changes: Any) -> Group | None:
        return self._update(self.dataset.groups, group_id, changes)

    def update_entity(self, entity_id: str, **changes: Any) -> Entity | None:
        updated = self.update_thread(entity_id, **changes)
        if updated is None:
            updated = self.update_container(entity_id, **changes)
        return updated

    def _remove(self, records: list, record_id: str):
        index = _find_index(records, record_id)
        if index == -1:
            return None
        self.dirty = True
        return records.pop(index)

    def remove_thread(self, thread_id: str) -> Thread | None:
        return self._remove(self.dataset.threads, thread_id)

    def remove_container(self, container_id: str) -> Container | None:
        return self._remove(self.dataset.containers, container_id)

    def remove_entity(self, entity_id: str) -> Entity | None:
        removed = self.remove_thread(entity_id)
        if removed is None:
            removed = self.remove_container(entity_id)
        return removed

    def remove_group(self, group_id: str) -> Group | None:
        return self._remove(self.dataset.groups, group_id)


class EntityRepository:
    """File-backed store of threads, containers and groups."""

    def __init__(self, codec: DocumentCodec) -> None:
        self._codec = codec

    @classmethod
    def open(
        cls,
        data_dir: Path,
        data_file_name: str = DATA_FILE_NAME,
        backup_file_name: str = BACKUP_FILE_NAME,
    ) -> EntityRepository:
        backup = BackupManager(data_dir / data_file_name, data_dir / backup_file_name)
        return cls(DocumentCodec(backup))

    @property
    def backup(self) -> BackupManager:
        return self._codec.backup

    def load(self) -> Dataset:
        return self._codec.load()

    @contextmanager
    def batch(self) -> Iterator[Batch]:
        """Load once, yield a ``Batch``; save once on clean exit if anything changed."""
        batch = Batch(self._codec.load())
        yield batch
        if batch.dirty:
            self._codec.save(batch.dataset)

    # ── Threads ───────────────────────────────────────────────

    def get_all_threads(self) -> list[Thread]:
        return self.load().threads

    def get_thread_by_id(self, thread_id: str) -> Thread | None:
        return next((t for t in self.get_all_threads() if t.id == thread_id), None)

    def get_thread_by_name(self, name: str) -> Thread | None:
        return _by_name(self.get_all_threads(), name)

    def find_threads(self, criteria: ThreadFilter) -> list[Thread]:
        def keep(t: Thread) -> bool:
            if criteria.status is not None and t.status != criteria.status:
                return False
            if criteria.temperature is not None and t.temperature != criteria.temperature:
                return False
            if criteria.size is not None and t.size != criteria.size:
                return False
            if criteria.importance is not None and t.importance != criteria.importance:
                return False
            return _matches_tree_fields(
                t, criteria.parent_id, criteria.group_id, criteria.tags, criteria.search
            )

        return [t for t in self.get_all_threads() if keep(t)]

    def add_thread(self, thread: Thread) -> Thread:
        with self.batch() as batch:
            batch.add(thread)
        logger.info("Added thread %s (%s)", thread.name, thread.id)
        return thread

    def update_thread(self, thread_id: str, **changes: Any) -> Thread | None:
        with self.batch() as batch:
            return batch.update_thread(thread_id, **changes)

    def delete_thread(self, thread_id: str) -> bool:
        with self.batch() as batch:
            removed = batch.remove_thread(thread_id)
        if removed is not None:
            logger.info("Deleted thread %s (%s)", removed.name, thread_id)
        return removed is not None

    # ── Containers ────────────────────────────────────────────

    def get_all_containers(self) -> list[Container]:
        return self.load().containers

    def get_container_by_id(self, container_id: str) -> Container | None:
        return next((c for c in self.get_all_containers() if c.id == container_id), None)

    def get_container_by_name(self, name: str) -> Container | None:
        return _by_name(self.get_all_containers(), name)

    def find_containers(self, criteria: ContainerFilter) -> list[Container]:
        return [
            c
            for c in self.get_all_containers()
            if _matches_tree_fields(
                c, criteria.parent_id, criteria.group_id, criteria.tags, criteria.search
            )
        ]

    def add_container(self, container: Container) -> Container:
        with self.batch() as batch:
            batch.add(container)
        logger.info("Added container %s (%s)", container.name, container.id)
        return container

    def update_container(self, container_id: str, **changes: Any) -> Container | None:
        with self.batch() as batch:
            return batch.update_container(container_id, **changes)

    def delete_container(self, container_id: str) -> bool:
        with self.batch() as batch:
            removed = batch.remove_container(container_id)
        if removed is not None:
            logger.info("Deleted container %s (%s)", removed.name, container_id)
        return removed is not None

    # ── Groups ────────────────────────────────────────────────

    def get_all_groups(self) -> list[Group]:
        return self.load().groups

    def get_group_by_id(self, group_id: str) -> Group | None:
        return next((g for g in self.get_all_groups() if g.id == group_id), None)

    def get_group_by_name(self, name: str) -> Group | None:
        return _by_name(self.get_all_groups(), name)

    def add_group(self, group: Group) -> Group:
        with self.batch() as batch:
            batch.add(group)
        logger.info("Added group %s (%s)", group.name, group.id)
        return group

    def update_group(self, group_id: str, **changes: Any) -> Group | None:
        with self.batch() as batch:
            return batch.update_group(group_id, **changes)

    def delete_group(self, group_id: str) -> bool:
        with self.batch() as batch:
            removed = batch.remove_group(group_id)
        return removed is not None

    # ── Entities (threads ∪ containers) ──────────────────────

    def get_all_entities(self) -> list[Entity]:
        return self.load().entities

    def get_entity_by_id(self, entity_id: str) -> Entity | None:
        return self.load().find_entity(entity_id)

    def get_entity_by_name(self, name: str) -> Entity | None:
        data = self.load()
        return _by_name(data.threads, name) or _by_name(data.containers, name)

    def update_entity(self, entity_id: str, **changes: Any) -> Entity | None:
        with self.batch() as batch:
            return batch.update_entity(entity_id, **changes)

    # ── Backup ────────────────────────────────────────────────

    def get_backup_info(self) -> BackupInfo:
        return self.backup.get_backup_info()

    def load_backup_snapshot(self) -> Dataset | None:
        return self.backup.load_backup_snapshot()

    def preview_restore(self) -> RestorePreview | None:
        return self.backup.preview_restore(self.load())

    def restore_from_backup(self) -> bool:
        return self.backup.restore()

    def get_data_file_path(self) -> Path:
        return self.backup.data_file

    def get_backup_file_path(self) -> Path:
        return self.backup.backup_file

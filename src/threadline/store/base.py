"""Store protocols and shared types."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from threadline.models import UNSET, Container, Dataset, Entity, Group, Thread


@dataclass
class ThreadFilter:
    """Criteria for ``find_threads``. Unset fields match anything.

    ``parent_id=None`` / ``group_id=None`` select root / ungrouped threads.
    """

    status: str | None = None
    temperature: str | None = None
    size: str | None = None
    importance: int | None = None
    parent_id: Any = UNSET
    group_id: Any = UNSET
    tags: list[str] = field(default_factory=list)
    search: str | None = None


@dataclass
class ContainerFilter:
    parent_id: Any = UNSET
    group_id: Any = UNSET
    tags: list[str] = field(default_factory=list)
    search: str | None = None


@dataclass
class BackupInfo:
    """Backup metadata, read without building model objects."""

    exists: bool
    timestamp: datetime | None = None
    thread_count: int = 0
    container_count: int = 0
    group_count: int = 0


@runtime_checkable
class ThreadStore(Protocol):
    """Operations every synchronous store exposes to collaborators."""

    def get_all_threads(self) -> list[Thread]: ...
    def get_thread_by_id(self, thread_id: str) -> Thread | None: ...
    def get_thread_by_name(self, name: str) -> Thread | None: ...
    def find_threads(self, criteria: ThreadFilter) -> list[Thread]: ...
    def add_thread(self, thread: Thread) -> Thread: ...
    def update_thread(self, thread_id: str, **changes: Any) -> Thread | None: ...
    def delete_thread(self, thread_id: str) -> bool: ...

    def get_all_containers(self) -> list[Container]: ...
    def get_container_by_id(self, container_id: str) -> Container | None: ...
    def get_container_by_name(self, name: str) -> Container | None: ...
    def find_containers(self, criteria: ContainerFilter) -> list[Container]: ...
    def add_container(self, container: Container) -> Container: ...
    def update_container(self, container_id: str, **changes: Any) -> Container | None: ...
    def delete_container(self, container_id: str) -> bool: ...

    def get_all_groups(self) -> list[Group]: ...
    def get_group_by_id(self, group_id: str) -> Group | None: ...
    def get_group_by_name(self, name: str) -> Group | None: ...
    def add_group(self, group: Group) -> Group: ...
    def update_group(self, group_id: str, **changes: Any) -> Group | None: ...
    def delete_group(self, group_id: str) -> bool: ...

    def get_all_entities(self) -> list[Entity]: ...
    def get_entity_by_id(self, entity_id: str) -> Entity | None: ...
    def get_entity_by_name(self, name: str) -> Entity | None: ...


@runtime_checkable
class FileThreadStore(ThreadStore, Protocol):
    """File-backed store with a one-generation backup."""

    def get_backup_info(self) -> BackupInfo: ...
    def load_backup_snapshot(self) -> Dataset | None: ...
    def restore_from_backup(self) -> bool: ...
    def get_data_file_path(self) -> Path: ...
    def get_backup_file_path(self) -> Path: ...


@runtime_checkable
class AsyncThreadStore(Protocol):
    """Deferred-result counterpart of ``ThreadStore`` for remote backends.

    Same operation names and filter contracts; no swap-restore guarantee.
    """

    async def get_all_threads(self) -> list[Thread]: ...
    async def get_thread_by_id(self, thread_id: str) -> Thread | None: ...
    async def get_thread_by_name(self, name: str) -> Thread | None: ...
    async def find_threads(self, criteria: ThreadFilter) -> list[Thread]: ...
    async def add_thread(self, thread: Thread) -> Thread: ...
    async def update_thread(self, thread_id: str, **changes: Any) -> Thread | None: ...
    async def delete_thread(self, thread_id: str) -> bool: ...

    async def get_all_containers(self) -> list[Container]: ...
    async def get_container_by_id(self, container_id: str) -> Container | None: ...
    async def get_container_by_name(self, name: str) -> Container | None: ...
    async def find_containers(self, criteria: ContainerFilter) -> list[Container]: ...
    async def add_container(self, container: Container) -> Container: ...
    async def update_container(self, container_id: str, **changes: Any) -> Container | None: ...
    async def delete_container(self, container_id: str) -> bool: ...

    async def get_all_groups(self) -> list[Group]: ...
    async def get_group_by_id(self, group_id: str) -> Group | None: ...
    async def get_group_by_name(self, name: str) -> Group | None: ...
    async def add_group(self, group: Group) -> Group: ...
    async def update_group(self, group_id: str, **changes: Any) -> Group | None: ...
    async def delete_group(self, group_id: str) -> bool: ...

    async def get_all_entities(self) -> list[Entity]: ...
    async def get_entity_by_id(self, entity_id: str) -> Entity | None: ...
    async def get_entity_by_name(self, name: str) -> Entity | None: ...

"""Async facade over a synchronous store.

Gives callers the deferred-result contract a network backend would have
(``AsyncThreadStore``) while running against the local JSON store. Each call
runs in the default executor; calls are serialized so the underlying
load-mutate-save cycles never interleave.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Callable
from typing import Any, TypeVar

from threadline.models import Container, Entity, Group, Thread
from threadline.resolver import ResolveKind, match_identifier
from threadline.results import Resolution
from threadline.store.base import ContainerFilter, ThreadFilter, ThreadStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AsyncEntityRepository:
    """``AsyncThreadStore`` implementation wrapping any ``ThreadStore``.

    Backup/restore is intentionally not exposed: remote backends rely on
    server-side durability instead.
    """

    def __init__(self, store: ThreadStore) -> None:
        self._store = store
        self._lock = asyncio.Lock()

    async def _call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        loop = asyncio.get_running_loop()
        async with self._lock:
            return await loop.run_in_executor(None, functools.partial(fn, *args, **kwargs))

    # ── Threads ───────────────────────────────────────────────

    async def get_all_threads(self) -> list[Thread]:
        return await self._call(self._store.get_all_threads)

    async def get_thread_by_id(self, thread_id: str) -> Thread | None:
        return await self._call(self._store.get_thread_by_id, thread_id)

    async def get_thread_by_name(self, name: str) -> Thread | None:
        return await self._call(self._store.get_thread_by_name, name)

    async def find_threads(self, criteria: ThreadFilter) -> list[Thread]:
        return await self._call(self._store.find_threads, criteria)

    async def add_thread(self, thread: Thread) -> Thread:
        return await self._call(self._store.add_thread, thread)

    async def update_thread(self, thread_id: str, **changes: Any) -> Thread | None:
        return await self._call(self._store.update_thread, thread_id, **changes)

    async def delete_thread(self, thread_id: str) -> bool:
        return await self._call(self._store.delete_thread, thread_id)

    # ── Containers ────────────────────────────────────────────

    async def get_all_containers(self) -> list[Container]:
        return await self._call(self._store.get_all_containers)

    async def get_container_by_id(self, container_id: str) -> Container | None:
        return await self._call(self._store.get_container_by_id, container_id)

    async def get_container_by_name(self, name: str) -> Container | None:
        return await self._call(self._store.get_container_by_name, name)

    async def find_containers(self, criteria: ContainerFilter) -> list[Container]:
        return await self._call(self._store.find_containers, criteria)

    async def add_container(self, container: Container) -> Container:
        return await self._call(self._store.add_container, container)

    async def update_container(self, container_id: str, **changes: Any) -> Container | None:
        return await self._call(self._store.update_container, container_id, **changes)

    async def delete_container(self, container_id: str) -> bool:
        return await self._call(self._store.delete_container, container_id)

    # ── Groups ────────────────────────────────────────────────

    async def get_all_groups(self) -> list[Group]:
        return await self._call(self._store.get_all_groups)

    async def get_group_by_id(self, group_id: str) -> Group | None:
        return await self._call(self._store.get_group_by_id, group_id)

    async def get_group_by_name(self, name: str) -> Group | None:
        return await self._call(self._store.get_group_by_name, name)

    async def add_group(self, group: Group) -> Group:
        return await self._call(self._store.add_group, group)

    async def update_group(self, group_id: str, **changes: Any) -> Group | None:
        return await self._call(self._store.update_group, group_id, **changes)

    async def delete_group(self, group_id: str) -> bool:
        return await self._call(self._store.delete_group, group_id)

    # ── Entities ──────────────────────────────────────────────

    async def get_all_entities(self) -> list[Entity]:
        return await self._call(self._store.get_all_entities)

    async def get_entity_by_id(self, entity_id: str) -> Entity | None:
        return await self._call(self._store.get_entity_by_id, entity_id)

    async def get_entity_by_name(self, name: str) -> Entity | None:
        return await self._call(self._store.get_entity_by_name, name)

    # ── Resolution ────────────────────────────────────────────

    async def resolve(self, kind: ResolveKind, query: str) -> Resolution:
        """Same four-stage cascade as ``IdentifierResolver.resolve``."""
        fetch = {
            "thread": self.get_all_threads,
            "container": self.get_all_containers,
            "group": self.get_all_groups,
            "entity": self.get_all_entities,
        }[kind]
        return match_identifier(await fetch(), query)

"""Threadline command layer.

Responsibilities:
1. Resolve user-supplied names/ids through the IdentifierResolver
2. Validate caller input (enums, importance range, advisory name uniqueness)
3. Delegate to the repository or to HierarchyOperations
4. Hand result values back; NotFound / Ambiguous are returned, not raised

Every public method is one load-mutate-save cycle against the store.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any

from threadline.config import ThreadlineConfig
from threadline.errors import ValidationError
from threadline.hierarchy import ARCHIVED_STATE, DELETE_STRATEGIES, BatchCriteria, HierarchyOperations
from threadline.models import (
    IMPORTANCE_RANGE,
    LINK_TYPES,
    SIZES,
    STATUSES,
    TEMPERATURES,
    UNSET,
    Container,
    Dependency,
    DetailsEntry,
    Entity,
    Group,
    Link,
    ProgressEntry,
    Thread,
    can_transition,
    now_iso,
)
from threadline.resolver import IdentifierResolver, ResolveKind
from threadline.results import (
    Ambiguous,
    ArchiveResult,
    BatchResult,
    CycleDetected,
    DeleteResult,
    Found,
    GroupDeleteResult,
    MergePlan,
    MoveResult,
    NotFound,
    ProgressEditResult,
    Resolution,
)
from threadline.store.backup import RestorePreview
from threadline.store.base import BackupInfo
from threadline.store.repository import EntityRepository

logger = logging.getLogger(__name__)

Miss = NotFound | Ambiguous
_MISSES = (NotFound, Ambiguous)

_PROPERTY_ALIASES = {"temp": "temperature", "imp": "importance", "desc": "description"}
_THREAD_ONLY = frozenset({"status", "temperature", "size", "importance"})
_SETTABLE = frozenset({"name", "description", "parent", *_THREAD_ONLY})
_CLEAR_WORDS = frozenset({"", "none", "null"})
_DAYS_AGO = re.compile(r"^(\d+)\s*days?\s*ago$")


# ── Input helpers ─────────────────────────────────────────


def parse_tags(values: list[str] | tuple[str, ...] | str) -> list[str]:
    """Split space- or comma-separated tag arguments, dropping blanks and repeats."""
    if isinstance(values, str):
        values = [values]
    tags: list[str] = []
    for value in values:
        for part in value.split(","):
            part = part.strip()
            if part and part not in tags:
                tags.append(part)
    return tags


def parse_when(value: str | datetime, now: datetime | None = None) -> str:
    """Turn ``--at`` input into an ISO timestamp.

    Accepts a datetime, an ISO-8601 string, ``now``, ``yesterday`` or
    ``N days ago``. Naive values are taken as UTC.
    """
    now = now or datetime.now(timezone.utc)
    if isinstance(value, datetime):
        parsed = value
    else:
        text = value.strip().lower()
        days = _DAYS_AGO.match(text)
        if text == "now":
            parsed = now
        elif text == "yesterday":
            parsed = now - timedelta(days=1)
        elif days:
            parsed = now - timedelta(days=int(days.group(1)))
        else:
            try:
                parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
            except ValueError:
                raise ValidationError(f"Invalid date/time: {value!r}") from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _check_choice(label: str, value: str, choices: tuple[str, ...]) -> str:
    if value not in choices:
        raise ValidationError(f"Invalid {label} {value!r}. Valid: {', '.join(choices)}")
    return value


def _check_importance(value: int | str) -> int:
    try:
        importance = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Importance must be a number, got {value!r}") from None
    if importance not in IMPORTANCE_RANGE:
        raise ValidationError(f"Importance must be between 1 and 5, got {importance}")
    return importance


def _check_name(name: str) -> str:
    name = name.strip()
    if not name:
        raise ValidationError("Name must not be empty")
    return name


def _progress_position(index: int | str, size: int) -> int:
    """0-based position for a 1-based ``index`` or ``"last"``."""
    if isinstance(index, str) and index.strip().lower() == "last":
        return size - 1
    try:
        position = int(index) - 1
    except (TypeError, ValueError):
        position = -1
    if not 0 <= position < size:
        raise ValidationError(f'Invalid index {index!r}. Use 1-{size} or "last"')
    return position


_BATCH_USAGE = "tag add|remove <tags>, set <property> <value>, archive, progress <note>"
_BATCH_SETTABLE = {"status": STATUSES, "temperature": TEMPERATURES, "size": SIZES}


def _batch_action(words: list[str]) -> tuple[str, Callable[[Thread], dict[str, Any]]]:
    """Parse batch action words into a label and a per-thread change function."""
    if not words:
        raise ValidationError(f"No action given. Use: {_BATCH_USAGE}")
    verb, rest = words[0].lower(), words[1:]

    if verb == "tag":
        if len(rest) < 2 or rest[0] not in ("add", "remove"):
            raise ValidationError("Tag action needs: tag add|remove <tags>")
        tags = parse_tags(rest[1:])
        if rest[0] == "add":
            return f"tag add {', '.join(tags)}", lambda t: {"tags": list(dict.fromkeys([*t.tags, *tags]))}
        return f"tag remove {', '.join(tags)}", lambda t: {"tags": [x for x in t.tags if x not in tags]}

    if verb == "set":
        if len(rest) != 2:
            raise ValidationError("Set action needs: set <property> <value>")
        prop = _PROPERTY_ALIASES.get(rest[0].lower(), rest[0].lower())
        value = rest[1]
        if prop == "importance":
            changes: dict[str, Any] = {"importance": _check_importance(value)}
        elif prop in _BATCH_SETTABLE:
            changes = {prop: _check_choice(prop, value, _BATCH_SETTABLE[prop])}
        else:
            raise ValidationError(
                f"Batch set supports status, temperature, size and importance, not {rest[0]!r}"
            )
        return f"set {prop} {value}", lambda t: changes

    if verb == "archive":
        if rest:
            raise ValidationError("Archive action takes no arguments")
        return "archive", lambda t: dict(ARCHIVED_STATE)

    if verb == "progress":
        note = " ".join(rest).strip()
        if not note:
            raise ValidationError("Progress action needs: progress <note>")
        timestamp = now_iso()
        return f'progress "{note}"', lambda t: {
            "progress": [*t.progress, ProgressEntry.create(note, timestamp)]
        }

    raise ValidationError(f"Unknown batch action {verb!r}. Use: {_BATCH_USAGE}")


class Threadline:
    """Command surface over one dataset."""

    def __init__(self, repo: EntityRepository) -> None:
        self.repo = repo
        self.resolver = IdentifierResolver(repo)
        self.hierarchy = HierarchyOperations(repo)

    @classmethod
    def from_config(cls, config: ThreadlineConfig) -> Threadline:
        storage = config.storage
        return cls(
            EntityRepository.open(storage.data_dir, storage.data_file_name, storage.backup_file_name)
        )

    # ── Resolution ────────────────────────────────────────────

    def resolve(self, kind: ResolveKind, query: str) -> Resolution:
        return self.resolver.resolve(kind, query)

    def _lookup(self, kind: ResolveKind, query: str) -> Any:
        """The resolved record, or the NotFound/Ambiguous value itself."""
        result = self.resolver.resolve(kind, query)
        if isinstance(result, Found):
            return result.record
        return result

    def _lookup_optional(self, kind: ResolveKind, query: str | None) -> Any:
        """Like ``_lookup`` but ``None``/``"none"`` mean "no record"."""
        if query is None or query.strip().lower() in _CLEAR_WORDS:
            return None
        return self._lookup(kind, query)

    def _check_unique(self, kind: str, name: str, exclude_id: str | None = None) -> None:
        getter = {
            "thread": self.repo.get_thread_by_name,
            "container": self.repo.get_container_by_name,
            "group": self.repo.get_group_by_name,
        }[kind]
        existing = getter(name)
        if existing is not None and existing.id != exclude_id:
            raise ValidationError(f'A {kind} named "{existing.name}" already exists')

    # ── Creation ──────────────────────────────────────────────

    def new_thread(
        self,
        name: str,
        *,
        description: str = "",
        status: str = "active",
        temperature: str = "warm",
        size: str = "medium",
        importance: int | str = 3,
        parent: str | None = None,
        group: str | None = None,
        tags: list[str] | None = None,
    ) -> Thread | Miss:
        name = _check_name(name)
        _check_choice("status", status, STATUSES)
        _check_choice("temperature", temperature, TEMPERATURES)
        _check_choice("size", size, SIZES)
        importance = _check_importance(importance)
        self._check_unique("thread", name)

        parent_entity = self._lookup_optional("entity", parent)
        if isinstance(parent_entity, _MISSES):
            return parent_entity
        group_record = self._lookup_optional("group", group)
        if isinstance(group_record, _MISSES):
            return group_record

        group_id = group_record.id if group_record else None
        if group_id is None and parent_entity is not None:
            group_id = parent_entity.group_id
        thread = Thread.create(
            name,
            description=description,
            status=status,
            temperature=temperature,
            size=size,
            importance=importance,
            parent_id=parent_entity.id if parent_entity else None,
            group_id=group_id,
            tags=parse_tags(tags or []),
        )
        return self.repo.add_thread(thread)

    def spawn(
        self,
        parent: str,
        name: str,
        *,
        description: str = "",
        size: str = "small",
        importance: int | str | None = None,
        tags: list[str] | None = None,
    ) -> Thread | Miss:
        """Create a sub-thread under thread ``parent``.

        Starts warm, inherits the parent's importance (unless given) and group.
        """
        name = _check_name(name)
        _check_choice("size", size, SIZES)
        parent_thread = self._lookup("thread", parent)
        if isinstance(parent_thread, _MISSES):
            return parent_thread
        self._check_unique("thread", name)
        thread = Thread.create(
            name,
            description=description,
            temperature="warm",
            size=size,
            importance=_check_importance(
                parent_thread.importance if importance is None else importance
            ),
            parent_id=parent_thread.id,
            group_id=parent_thread.group_id,
            tags=parse_tags(tags or []),
        )
        return self.repo.add_thread(thread)

    def new_container(
        self,
        name: str,
        *,
        description: str = "",
        parent: str | None = None,
        group: str | None = None,
        tags: list[str] | None = None,
    ) -> Container | Miss:
        name = _check_name(name)
        self._check_unique("container", name)
        parent_entity = self._lookup_optional("entity", parent)
        if isinstance(parent_entity, _MISSES):
            return parent_entity
        group_record = self._lookup_optional("group", group)
        if isinstance(group_record, _MISSES):
            return group_record

        group_id = group_record.id if group_record else None
        if group_id is None and parent_entity is not None:
            group_id = parent_entity.group_id
        container = Container.create(
            name,
            description=description,
            parent_id=parent_entity.id if parent_entity else None,
            group_id=group_id,
            tags=parse_tags(tags or []),
        )
        return self.repo.add_container(container)

    def new_group(self, name: str, description: str = "") -> Group:
        name = _check_name(name)
        self._check_unique("group", name)
        return self.repo.add_group(Group.create(name, description))

    # ── Properties ────────────────────────────────────────────

    def set_property(self, identifier: str, prop: str, value: str) -> Entity | Miss | CycleDetected:
        """Set one property from its string form, as typed on the command line.

        ``parent`` goes through the cycle-safe reparent; ``none`` detaches.
        """
        entity = self._lookup("entity", identifier)
        if isinstance(entity, _MISSES):
            return entity
        prop = _PROPERTY_ALIASES.get(prop.lower(), prop.lower())
        if prop not in _SETTABLE:
            raise ValidationError(f"Unknown property {prop!r}. Valid: {', '.join(sorted(_SETTABLE))}")
        if isinstance(entity, Container) and prop in _THREAD_ONLY:
            raise ValidationError(f"Containers have no {prop}")

        if prop == "parent":
            parent = self._lookup_optional("entity", value)
            if isinstance(parent, _MISSES):
                return parent
            result = self.hierarchy.reparent(entity.id, parent.id if parent else None)
            return NotFound(identifier) if result is None else result

        changes: dict[str, Any]
        if prop == "name":
            name = _check_name(value)
            self._check_unique(entity.kind, name, exclude_id=entity.id)
            changes = {"name": name}
        elif prop == "description":
            changes = {"description": value}
        elif prop == "importance":
            changes = {"importance": _check_importance(value)}
        elif prop == "status":
            _check_choice("status", value, STATUSES)
            if not can_transition(entity.status, value):
                logger.warning("Status %s -> %s is outside the usual lifecycle", entity.status, value)
            changes = {"status": value}
        elif prop == "temperature":
            changes = {"temperature": _check_choice("temperature", value, TEMPERATURES)}
        else:
            changes = {"size": _check_choice("size", value, SIZES)}
        updated = self.repo.update_entity(entity.id, **changes)
        return NotFound(identifier) if updated is None else updated

    def set_group(self, identifier: str, group: str | None) -> Entity | Miss:
        """Put an entity in ``group``; None or ``"none"`` removes it from its group."""
        entity = self._lookup("entity", identifier)
        if isinstance(entity, _MISSES):
            return entity
        group_record = self._lookup_optional("group", group)
        if isinstance(group_record, _MISSES):
            return group_record
        updated = self.repo.update_entity(entity.id, group_id=group_record.id if group_record else None)
        return NotFound(identifier) if updated is None else updated

    # ── Logs ──────────────────────────────────────────────────

    def add_progress(
        self,
        identifier: str,
        note: str,
        *,
        at: str | datetime | None = None,
        temperature: str | None = None,
    ) -> Thread | Miss:
        """Append a progress note, optionally back-dated and with a temperature bump."""
        if not note.strip():
            raise ValidationError("Progress note must not be empty")
        if temperature is not None:
            _check_choice("temperature", temperature, TEMPERATURES)
        timestamp = parse_when(at) if at is not None else now_iso()
        thread = self._lookup("thread", identifier)
        if isinstance(thread, _MISSES):
            return thread

        changes: dict[str, Any] = {"progress": [*thread.progress, ProgressEntry.create(note, timestamp)]}
        if temperature is not None:
            changes["temperature"] = temperature
        updated = self.repo.update_thread(thread.id, **changes)
        return NotFound(identifier) if updated is None else updated

    def edit_progress(
        self,
        identifier: str,
        index: int | str,
        *,
        note: str | None = None,
        at: str | datetime | None = None,
        delete: bool = False,
    ) -> ProgressEditResult | Miss:
        """Rewrite the note or timestamp of one progress entry, or delete it.

        ``index`` is 1-based or ``"last"``. With no edit and no ``delete`` the
        entry is returned as it is and nothing is written.
        """
        if delete and (note is not None or at is not None):
            raise ValidationError("Delete cannot be combined with a new note or time")
        if note is not None and not note.strip():
            raise ValidationError("Progress note must not be empty")
        timestamp = parse_when(at) if at is not None else None
        thread = self._lookup("thread", identifier)
        if isinstance(thread, _MISSES):
            return thread
        if not thread.progress:
            raise ValidationError(f'"{thread.name}" has no progress entries')

        position = _progress_position(index, len(thread.progress))
        entry = thread.progress[position]
        progress = list(thread.progress)
        if delete:
            del progress[position]
            action = "delete"
        elif note is None and timestamp is None:
            return ProgressEditResult(thread, entry, position + 1, "show")
        else:
            entry = replace(entry, note=note or entry.note, timestamp=timestamp or entry.timestamp)
            progress[position] = entry
            action = "edit"

        updated = self.repo.update_thread(thread.id, progress=progress)
        if updated is None:
            return NotFound(identifier)
        return ProgressEditResult(updated, entry, position + 1, action)

    def add_details(self, identifier: str, content: str) -> Entity | Miss:
        """Append a details snapshot; the newest one is the current description."""
        if not content.strip():
            raise ValidationError("Details must not be empty")
        entity = self._lookup("entity", identifier)
        if isinstance(entity, _MISSES):
            return entity
        updated = self.repo.update_entity(entity.id, details=[*entity.details, DetailsEntry.create(content)])
        return NotFound(identifier) if updated is None else updated

    # ── Tags ──────────────────────────────────────────────────

    def tag(self, identifier: str, tags: list[str]) -> Entity | Miss:
        entity = self._lookup("entity", identifier)
        if isinstance(entity, _MISSES):
            return entity
        merged = list(dict.fromkeys([*entity.tags, *parse_tags(tags)]))
        if merged == entity.tags:
            return entity
        updated = self.repo.update_entity(entity.id, tags=merged)
        return NotFound(identifier) if updated is None else updated

    def untag(self, identifier: str, tags: list[str] | None = None) -> Entity | Miss:
        """Remove ``tags``; with None, clear every tag."""
        entity = self._lookup("entity", identifier)
        if isinstance(entity, _MISSES):
            return entity
        drop = set(parse_tags(tags)) if tags is not None else set(entity.tags)
        remaining = [t for t in entity.tags if t not in drop]
        if remaining == entity.tags:
            return entity
        updated = self.repo.update_entity(entity.id, tags=remaining)
        return NotFound(identifier) if updated is None else updated

    # ── Dependencies ──────────────────────────────────────────

    def add_dependency(
        self,
        identifier: str,
        on: str,
        *,
        why: str | None = None,
        what: str | None = None,
        how: str | None = None,
        when: str | None = None,
    ) -> Thread | Miss:
        """Record that ``identifier`` depends on ``on``.

        An existing entry for the same thread is updated field by field;
        fields not given keep their old text.
        """
        thread = self._lookup("thread", identifier)
        if isinstance(thread, _MISSES):
            return thread
        target = self._lookup("thread", on)
        if isinstance(target, _MISSES):
            return target
        if thread.id == target.id:
            raise ValidationError("A thread cannot depend on itself")

        given = {"why": why, "what": what, "how": how, "when": when}
        deps = list(thread.dependencies)
        for i, dep in enumerate(deps):
            if dep.thread_id == target.id:
                deps[i] = Dependency(
                    thread_id=target.id,
                    **{k: v if v is not None else getattr(dep, k) for k, v in given.items()},
                )
                break
        else:
            deps.append(Dependency(thread_id=target.id, **{k: v or "" for k, v in given.items()}))
        updated = self.repo.update_thread(thread.id, dependencies=deps)
        return NotFound(identifier) if updated is None else updated

    def remove_dependency(self, identifier: str, on: str) -> Thread | Miss:
        thread = self._lookup("thread", identifier)
        if isinstance(thread, _MISSES):
            return thread
        target = self._lookup("thread", on)
        if isinstance(target, _MISSES):
            return target
        deps = [d for d in thread.dependencies if d.thread_id != target.id]
        if len(deps) == len(thread.dependencies):
            raise ValidationError(f'"{thread.name}" does not depend on "{target.name}"')
        updated = self.repo.update_thread(thread.id, dependencies=deps)
        return NotFound(identifier) if updated is None else updated

    # ── Links ─────────────────────────────────────────────────

    def add_link(
        self,
        identifier: str,
        uri: str,
        *,
        type: str = "web",
        label: str | None = None,
        description: str | None = None,
    ) -> Thread | Miss:
        _check_choice("link type", type, LINK_TYPES)
        if not uri.strip():
            raise ValidationError("Link URI must not be empty")
        thread = self._lookup("thread", identifier)
        if isinstance(thread, _MISSES):
            return thread
        if any(link.uri == uri for link in thread.links):
            raise ValidationError(f'"{thread.name}" already links to {uri}')
        link = Link.create(uri, type, label=label, description=description)  # type: ignore[arg-type]
        updated = self.repo.update_thread(thread.id, links=[*thread.links, link])
        return NotFound(identifier) if updated is None else updated

    def remove_link(self, identifier: str, uri_or_id: str) -> Thread | Miss:
        """Remove a link by exact URI, exact id or id prefix."""
        thread = self._lookup("thread", identifier)
        if isinstance(thread, _MISSES):
            return thread
        index = next(
            (
                i
                for i, link in enumerate(thread.links)
                if link.uri == uri_or_id or link.id == uri_or_id or link.id.startswith(uri_or_id)
            ),
            None,
        )
        if index is None:
            raise ValidationError(f'"{thread.name}" has no link {uri_or_id}')
        links = [link for i, link in enumerate(thread.links) if i != index]
        updated = self.repo.update_thread(thread.id, links=links)
        return NotFound(identifier) if updated is None else updated

    # ── Hierarchy pass-throughs ───────────────────────────────

    def archive(self, identifier: str, *, cascade: bool = False, dry_run: bool = False) -> ArchiveResult | Miss:
        entity = self._lookup("entity", identifier)
        if isinstance(entity, _MISSES):
            return entity
        result = self.hierarchy.archive(entity.id, cascade=cascade, dry_run=dry_run)
        return NotFound(identifier) if result is None else result

    def restore(self, identifier: str, *, cascade: bool = False, dry_run: bool = False) -> ArchiveResult | Miss:
        entity = self._lookup("entity", identifier)
        if isinstance(entity, _MISSES):
            return entity
        result = self.hierarchy.restore(entity.id, cascade=cascade, dry_run=dry_run)
        return NotFound(identifier) if result is None else result

    def clone(
        self,
        identifier: str,
        new_name: str | None = None,
        *,
        parent: Any = UNSET,
        group: Any = UNSET,
        with_children: bool = False,
    ) -> list[Entity] | Miss:
        """Clone an entity. ``parent``/``group`` left unset keep the source's."""
        source = self._lookup("entity", identifier)
        if isinstance(source, _MISSES):
            return source
        name = _check_name(new_name) if new_name is not None else None
        if name is not None:
            self._check_unique(source.kind, name)

        parent_id = UNSET
        if parent is not UNSET:
            parent_entity = self._lookup_optional("entity", parent)
            if isinstance(parent_entity, _MISSES):
                return parent_entity
            parent_id = parent_entity.id if parent_entity else None
        group_id = UNSET
        if group is not UNSET:
            group_record = self._lookup_optional("group", group)
            if isinstance(group_record, _MISSES):
                return group_record
            group_id = group_record.id if group_record else None

        clones = self.hierarchy.clone(
            source.id, name, parent_id=parent_id, group_id=group_id, with_children=with_children
        )
        return NotFound(identifier) if clones is None else clones

    def merge(
        self,
        source: str,
        target: str,
        *,
        keep_source: bool = False,
        dry_run: bool = False,
    ) -> MergePlan | Miss:
        source_thread = self._lookup("thread", source)
        if isinstance(source_thread, _MISSES):
            return source_thread
        target_thread = self._lookup("thread", target)
        if isinstance(target_thread, _MISSES):
            return target_thread
        plan = self.hierarchy.merge(
            source_thread.id, target_thread.id, keep_source=keep_source, dry_run=dry_run
        )
        return NotFound(source) if plan is None else plan

    def move(self, identifier: str, new_parent: str | None) -> Entity | Miss | CycleDetected:
        """Reparent an entity; ``None``/``"none"`` moves it to the root."""
        return self.set_property(identifier, "parent", new_parent or "none")

    def move_progress(self, source: str, destination: str, count: int | None = 1) -> MoveResult | Miss:
        from_thread = self._lookup("thread", source)
        if isinstance(from_thread, _MISSES):
            return from_thread
        to_thread = self._lookup("thread", destination)
        if isinstance(to_thread, _MISSES):
            return to_thread
        result = self.hierarchy.move_progress(from_thread.id, to_thread.id, count)
        return NotFound(source) if result is None else result

    def delete(
        self,
        identifier: str,
        *,
        strategy: str = "refuse",
        move_to: str | None = None,
        dry_run: bool = False,
    ) -> DeleteResult | CycleDetected | Miss:
        _check_choice("delete strategy", strategy, DELETE_STRATEGIES)
        entity = self._lookup("entity", identifier)
        if isinstance(entity, _MISSES):
            return entity
        move_to_id = None
        if move_to is not None:
            destination = self._lookup("entity", move_to)
            if isinstance(destination, _MISSES):
                return destination
            move_to_id = destination.id
        result = self.hierarchy.delete_entity(
            entity.id, strategy, move_to=move_to_id, dry_run=dry_run  # type: ignore[arg-type]
        )
        return NotFound(identifier) if result is None else result

    def delete_group(self, identifier: str) -> GroupDeleteResult | Miss:
        group = self._lookup("group", identifier)
        if isinstance(group, _MISSES):
            return group
        result = self.hierarchy.delete_group(group.id)
        return NotFound(identifier) if result is None else result

    # ── Bulk ──────────────────────────────────────────────────

    def batch(
        self,
        action: list[str] | None = None,
        *,
        under: str | None = None,
        children: str | None = None,
        group: str | None = None,
        status: str | None = None,
        temperature: str | None = None,
        tag: str | None = None,
        importance: str | None = None,
        size: str | None = None,
        dry_run: bool = False,
    ) -> BatchResult | Miss:
        """Apply one action to every thread matching the filters.

        ``under`` and ``children`` name an entity (thread or container) and
        select its whole subtree or its direct children. A dry run may omit
        the action and just lists the matches.
        """
        if status is not None:
            _check_choice("status", status, STATUSES)
        if temperature is not None:
            _check_choice("temperature", temperature, TEMPERATURES)
        if size is not None:
            _check_choice("size", size, SIZES)
        if action or not dry_run:
            label, changes_for = _batch_action(action or [])
        else:
            label, changes_for = "", lambda t: {}

        criteria = BatchCriteria(
            status=status, temperature=temperature, tag=tag, importance=importance, size=size
        )
        for field_name, kind, query in (
            ("under_id", "entity", under),
            ("children_of_id", "entity", children),
            ("group_id", "group", group),
        ):
            if query is None:
                continue
            record = self._lookup(kind, query)
            if isinstance(record, _MISSES):
                return record
            setattr(criteria, field_name, record.id)
        if criteria.is_empty:
            raise ValidationError(
                "No match criteria given. Use under, children, group, status, "
                "temperature, tag, importance or size"
            )
        return self.hierarchy.bulk_update(criteria, changes_for, action=label, dry_run=dry_run)

    # ── Undo ──────────────────────────────────────────────────

    def undo_info(self) -> BackupInfo:
        return self.repo.get_backup_info()

    def undo_preview(self) -> RestorePreview | None:
        return self.repo.preview_restore()

    def undo(self) -> bool:
        """Swap in the backup. A second undo redoes."""
        return self.repo.restore_from_backup()

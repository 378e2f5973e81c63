"""Tree operations over the polymorphic thread/container hierarchy.

Every public method runs inside one ``EntityRepository.batch()``: a single
load, all mutations in memory, a single save. A cascading operation therefore
leaves exactly one backup generation behind and ``undo`` reverts it whole.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, fields
from datetime import datetime, timezone
from typing import Any, Literal

from threadline.errors import ValidationError
from threadline.models import (
    IMPORTANCE_RANGE,
    UNSET,
    Container,
    Dataset,
    Dependency,
    Entity,
    Thread,
    parse_timestamp,
)
from threadline.results import (
    ArchiveResult,
    BatchResult,
    CycleDetected,
    DeleteResult,
    Descendant,
    GroupDeleteResult,
    MergePlan,
    MoveResult,
)
from threadline.store.repository import EntityRepository

logger = logging.getLogger(__name__)

DeleteStrategy = Literal["refuse", "cascade", "orphan", "move"]
DELETE_STRATEGIES: tuple[str, ...] = ("refuse", "cascade", "orphan", "move")

ARCHIVED_STATE = {"status": "archived", "temperature": "frozen"}
RESTORED_STATE = {"status": "active", "temperature": "tepid"}
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


# ── Pure helpers ──────────────────────────────────────────


def _children_index(data: Dataset) -> dict[str, list[Entity]]:
    """parent id -> direct children, threads first then containers."""
    index: dict[str, list[Entity]] = {}
    for entity in data.entities:
        if entity.parent_id is not None:
            index.setdefault(entity.parent_id, []).append(entity)
    return index


def collect_descendants(data: Dataset, root_id: str) -> list[Descendant]:
    """Depth-first flattening of everything under ``root_id``.

    Depth 0 is a direct child. Records reachable twice (only possible in a
    corrupted, cyclic document) are reported once.
    """
    children = _children_index(data)
    visited = {root_id}
    found: list[Descendant] = []
    stack = [(child, 0) for child in reversed(children.get(root_id, []))]
    while stack:
        entity, depth = stack.pop()
        if entity.id in visited:
            continue
        visited.add(entity.id)
        found.append(Descendant(entity, depth))
        stack.extend((child, depth + 1) for child in reversed(children.get(entity.id, [])))
    return found


def ancestor_chain(data: Dataset, start_id: str) -> list[str]:
    """``start_id`` followed by each ancestor id up to the root."""
    chain: list[str] = []
    current: str | None = start_id
    while current is not None and current not in chain:
        chain.append(current)
        entity = data.find_entity(current)
        current = entity.parent_id if entity is not None else None
    return chain


def _timestamp_key(entry: Any) -> datetime:
    try:
        return parse_timestamp(entry.timestamp)
    except ValueError:
        return _EPOCH


def merge_logs(target: list, source: list) -> list:
    """Concatenate two append-only logs, stably ordered by timestamp."""
    return sorted([*target, *source], key=_timestamp_key)


def merge_tags(target: list[str], source: list[str]) -> list[str]:
    return list(dict.fromkeys([*target, *source]))


def merge_dependencies(
    target: list[Dependency],
    source: list[Dependency],
    exclude: set[str],
) -> list[Dependency]:
    """Key by thread id; the target's entry replaces the source's on conflict."""
    by_thread: dict[str, Dependency] = {}
    for dep in source:
        by_thread[dep.thread_id] = dep
    for dep in target:
        by_thread[dep.thread_id] = dep
    return [dep for thread_id, dep in by_thread.items() if thread_id not in exclude]


def _copy_entity(source: Entity, name: str, parent_id: str | None, group_id: str | None) -> Entity:
    if isinstance(source, Thread):
        return Thread.create(
            name,
            description=source.description,
            status=source.status,
            temperature=source.temperature,
            size=source.size,
            importance=source.importance,
            parent_id=parent_id,
            group_id=group_id,
            tags=list(source.tags),
        )
    return Container.create(
        name,
        description=source.description,
        parent_id=parent_id,
        group_id=group_id,
        tags=list(source.tags),
    )


# ── Bulk selection ────────────────────────────────────────


@dataclass
class BatchCriteria:
    """Which threads a bulk update touches. Every criterion given must hold.

    ``under_id`` selects all descendants of an entity, ``children_of_id`` only
    its direct children. ``importance`` is ``"4"``, ``"4+"`` (at least) or
    ``"3-"`` (at most).
    """

    under_id: str | None = None
    children_of_id: str | None = None
    group_id: str | None = None
    status: str | None = None
    temperature: str | None = None
    tag: str | None = None
    importance: str | None = None
    size: str | None = None

    @property
    def is_empty(self) -> bool:
        return all(getattr(self, f.name) is None for f in fields(self))


def importance_predicate(text: str) -> Callable[[int], bool]:
    body, op = (text[:-1], text[-1]) if text.endswith(("+", "-")) else (text, "")
    try:
        value = int(body)
    except ValueError:
        raise ValidationError(f"Invalid importance filter {text!r}. Use e.g. 4, 4+ or 3-") from None
    if value not in IMPORTANCE_RANGE:
        raise ValidationError(f"Importance must be between 1 and 5, got {value}")
    if op == "+":
        return lambda importance: importance >= value
    if op == "-":
        return lambda importance: importance <= value
    return lambda importance: importance == value


def select_threads(data: Dataset, criteria: BatchCriteria) -> list[Thread]:
    """Threads matching ``criteria``, in stored order.

    Structural criteria (under, children, group) intersect; an empty
    intersection matches nothing.
    """
    scope: set[str] | None = None
    if criteria.under_id is not None:
        scope = {d.entity.id for d in collect_descendants(data, criteria.under_id)}
    if criteria.children_of_id is not None:
        children = {e.id for e in data.children_of(criteria.children_of_id)}
        scope = children if scope is None else scope & children
    if criteria.group_id is not None:
        members = {t.id for t in data.threads if t.group_id == criteria.group_id}
        scope = members if scope is None else scope & members
    importance_ok = importance_predicate(criteria.importance) if criteria.importance else None

    def keep(t: Thread) -> bool:
        if scope is not None and t.id not in scope:
            return False
        if criteria.status is not None and t.status != criteria.status:
            return False
        if criteria.temperature is not None and t.temperature != criteria.temperature:
            return False
        if criteria.size is not None and t.size != criteria.size:
            return False
        if criteria.tag is not None and criteria.tag not in t.tags:
            return False
        return importance_ok is None or importance_ok(t.importance)

    return [t for t in data.threads if keep(t)]


# ── Operations ────────────────────────────────────────────


class HierarchyOperations:
    """Archive, clone, merge, reparent and delete across the entity tree."""

    def __init__(self, repo: EntityRepository) -> None:
        self.repo = repo

    def descendants(self, root_id: str) -> list[Descendant]:
        return collect_descendants(self.repo.load(), root_id)

    # ── Archive / restore ─────────────────────────────────────

    def archive(self, root_id: str, cascade: bool = False, dry_run: bool = False) -> ArchiveResult | None:
        return self._transition(root_id, "archive", cascade, dry_run)

    def restore(self, root_id: str, cascade: bool = False, dry_run: bool = False) -> ArchiveResult | None:
        return self._transition(root_id, "restore", cascade, dry_run)

    def _transition(self, root_id: str, action: str, cascade: bool, dry_run: bool) -> ArchiveResult | None:
        with self.repo.batch() as batch:
            root = batch.dataset.find_entity(root_id)
            if root is None:
                return None
            descendants = collect_descendants(batch.dataset, root_id)
            if descendants and not cascade:
                logger.info(
                    "Refusing to %s %s: %d descendant(s) and no cascade",
                    action, root.name, len(descendants),
                )
                return ArchiveResult(root, action, descendants, refused=True, dry_run=dry_run)

            scope = [root, *(d.entity for d in descendants)]
            if action == "archive":
                targets = [e for e in scope if isinstance(e, Thread) and e.status != "archived"]
                changes = ARCHIVED_STATE
            else:
                targets = [e for e in scope if isinstance(e, Thread) and e.status == "archived"]
                changes = RESTORED_STATE

            if dry_run:
                return ArchiveResult(root, action, descendants, changed=targets, dry_run=True)

            changed = [batch.update_thread(t.id, **changes) for t in targets]
        logger.info("%s %s: %d thread(s) changed", action.capitalize(), root.name, len(changed))
        return ArchiveResult(root, action, descendants, changed=changed)

    # ── Clone ─────────────────────────────────────────────────

    def clone(
        self,
        source_id: str,
        new_name: str | None = None,
        parent_id: Any = UNSET,
        group_id: Any = UNSET,
        with_children: bool = False,
    ) -> list[Entity] | None:
        """Copy ``source_id`` (and optionally its subtree) under fresh ids.

        Progress, details, dependencies and links are not copied. Returns the
        clones root-first, or None if the source does not exist. ``parent_id``
        and ``group_id`` default to the source's own; pass None to clear.
        """
        with self.repo.batch() as batch:
            data = batch.dataset
            source = data.find_entity(source_id)
            if source is None:
                return None
            parent = source.parent_id if parent_id is UNSET else parent_id
            group = source.group_id if group_id is UNSET else group_id
            if parent is not None and data.find_entity(parent) is None:
                raise ValidationError(f"Parent {parent} does not exist")
            if group is not None and data.find_group(group) is None:
                raise ValidationError(f"Group {group} does not exist")

            root = _copy_entity(source, new_name or f"{source.name} (copy)", parent, group)
            clones = [root]
            if with_children:
                children = _children_index(data)
                visited = {source.id}
                stack = [(child, root.id) for child in reversed(children.get(source.id, []))]
                while stack:
                    original, new_parent = stack.pop()
                    if original.id in visited:
                        continue
                    visited.add(original.id)
                    copy = _copy_entity(original, original.name, new_parent, group)
                    clones.append(copy)
                    stack.extend((child, copy.id) for child in reversed(children.get(original.id, [])))

            for copy in clones:
                batch.add(copy)
        logger.info("Cloned %s into %d record(s)", source.name, len(clones))
        return clones

    # ── Merge ─────────────────────────────────────────────────

    def merge(
        self,
        source_id: str,
        target_id: str,
        keep_source: bool = False,
        dry_run: bool = False,
    ) -> MergePlan | None:
        """Fold thread ``source_id`` into ``target_id``.

        Raises ValidationError for a self-merge; returns None if either
        thread is missing.
        """
        if source_id == target_id:
            raise ValidationError("Cannot merge a thread into itself")

        with self.repo.batch() as batch:
            data = batch.dataset
            source = next((t for t in data.threads if t.id == source_id), None)
            target = next((t for t in data.threads if t.id == target_id), None)
            if source is None or target is None:
                return None

            lift_target = source.id in ancestor_chain(data, target.id)[1:]
            plan = MergePlan(
                source=source,
                target=target,
                progress=merge_logs(target.progress, source.progress),
                details=merge_logs(target.details, source.details),
                tags=merge_tags(target.tags, source.tags),
                dependencies=merge_dependencies(
                    target.dependencies, source.dependencies, {source.id, target.id}
                ),
                reparented=[e for e in data.children_of(source.id) if e.id != target.id],
                lift_target=lift_target,
                keep_source=keep_source,
                dry_run=dry_run,
            )
            if dry_run:
                return plan

            target_changes: dict[str, Any] = {
                "progress": plan.progress,
                "details": plan.details,
                "tags": plan.tags,
                "dependencies": plan.dependencies,
            }
            if lift_target:
                target_changes["parent_id"] = source.parent_id
            batch.update_thread(target.id, **target_changes)
            for child in plan.reparented:
                batch.update_entity(child.id, parent_id=target.id)
            if not keep_source:
                batch.update_thread(source.id, **ARCHIVED_STATE)
        logger.info(
            "Merged %s into %s (%d progress, %d child(ren) moved)",
            source.name, target.name, len(plan.progress), len(plan.reparented),
        )
        return plan

    # ── Reparent ──────────────────────────────────────────────

    def reparent(
        self,
        entity_id: str,
        new_parent_id: str | None,
        inherit_group: bool = True,
    ) -> Entity | CycleDetected | None:
        """Move ``entity_id`` under ``new_parent_id`` (None detaches it)."""
        with self.repo.batch() as batch:
            data = batch.dataset
            if data.find_entity(entity_id) is None:
                return None
            changes: dict[str, Any] = {"parent_id": new_parent_id}
            if new_parent_id is not None:
                parent = data.find_entity(new_parent_id)
                if parent is None:
                    return None
                chain = ancestor_chain(data, new_parent_id)
                if entity_id in chain:
                    logger.warning("Refusing to parent %s under %s: cycle", entity_id, new_parent_id)
                    return CycleDetected(entity_id, new_parent_id, chain)
                if inherit_group and parent.group_id:
                    changes["group_id"] = parent.group_id
            return batch.update_entity(entity_id, **changes)

    # ── Delete ────────────────────────────────────────────────

    def delete_entity(
        self,
        entity_id: str,
        strategy: DeleteStrategy = "refuse",
        move_to: str | None = None,
        dry_run: bool = False,
    ) -> DeleteResult | CycleDetected | None:
        """Delete a thread or container, deciding what happens to its subtree.

        ``refuse`` reports the subtree and deletes nothing; ``cascade`` removes
        everything deepest-first; ``orphan`` hands direct children to the
        entity's own parent; ``move`` hands them to ``move_to``.
        """
        if strategy not in DELETE_STRATEGIES:
            raise ValueError(f"Unknown delete strategy: {strategy!r}")
        if strategy == "move" and move_to is None:
            raise ValidationError("The move strategy needs a destination")

        with self.repo.batch() as batch:
            data = batch.dataset
            entity = data.find_entity(entity_id)
            if entity is None:
                return None
            descendants = collect_descendants(data, entity_id)

            if not descendants:
                if not dry_run:
                    batch.remove_entity(entity_id)
                return DeleteResult(entity, strategy, deleted=[entity], dry_run=dry_run)

            if strategy == "refuse":
                return DeleteResult(entity, strategy, descendants, refused=True, dry_run=dry_run)

            if strategy == "cascade":
                doomed = [d.entity for d in sorted(descendants, key=lambda d: d.depth, reverse=True)]
                doomed.append(entity)
                if not dry_run:
                    for victim in doomed:
                        batch.remove_entity(victim.id)
                return DeleteResult(entity, strategy, descendants, deleted=doomed, dry_run=dry_run)

            direct = [d.entity for d in descendants if d.depth == 0]
            if strategy == "orphan":
                parent = data.find_entity(entity.parent_id) if entity.parent_id else None
                new_parent_id = parent.id if parent is not None else None
                new_group_id = parent.group_id if parent is not None else None
            else:
                destination = data.find_entity(move_to)
                if destination is None:
                    return None
                subtree = {entity_id, *(d.entity.id for d in descendants)}
                if destination.id in subtree:
                    return CycleDetected(entity_id, destination.id, ancestor_chain(data, destination.id))
                new_parent_id = destination.id
                new_group_id = destination.group_id

            if not dry_run:
                for child in direct:
                    batch.update_entity(child.id, parent_id=new_parent_id, group_id=new_group_id)
                batch.remove_entity(entity_id)
                logger.info(
                    "Deleted %s (%s): %d child(ren) moved to %s",
                    entity.name, strategy, len(direct), new_parent_id or "root",
                )
        return DeleteResult(
            entity,
            strategy,
            descendants,
            deleted=[entity],
            moved=direct,
            new_parent_id=new_parent_id,
            dry_run=dry_run,
        )

    def delete_group(self, group_id: str) -> GroupDeleteResult | None:
        """Ungroup every member, then delete the group. One save."""
        with self.repo.batch() as batch:
            group = batch.dataset.find_group(group_id)
            if group is None:
                return None
            members = [e for e in batch.dataset.entities if e.group_id == group_id]
            ungrouped = [batch.update_entity(e.id, group_id=None) for e in members]
            batch.remove_group(group_id)
        logger.info("Deleted group %s, ungrouped %d record(s)", group.name, len(ungrouped))
        return GroupDeleteResult(group, ungrouped)

    # ── Bulk update ───────────────────────────────────────────

    def bulk_update(
        self,
        criteria: BatchCriteria,
        changes_for: Callable[[Thread], dict[str, Any]],
        action: str = "",
        dry_run: bool = False,
    ) -> BatchResult:
        """Apply ``changes_for(thread)`` to every matching thread in one save.

        Threads the changes would leave as they are are skipped.
        """
        with self.repo.batch() as batch:
            matched = select_threads(batch.dataset, criteria)
            if dry_run:
                return BatchResult(action, matched, dry_run=True)
            changed: list[Thread] = []
            for thread in matched:
                changes = changes_for(thread)
                if all(getattr(thread, key) == value for key, value in changes.items()):
                    continue
                changed.append(batch.update_thread(thread.id, **changes))
        logger.info("Batch %s: %d matched, %d changed", action or "update", len(matched), len(changed))
        return BatchResult(action, matched, changed)

    # ── Progress ──────────────────────────────────────────────

    def move_progress(self, from_id: str, to_id: str, count: int | None = 1) -> MoveResult | None:
        """Move the latest ``count`` progress entries (all if None) between threads.

        A count larger than the source log moves the whole log.
        """
        if from_id == to_id:
            raise ValidationError("Source and destination are the same thread")
        if count is not None and count < 1:
            raise ValidationError("Count must be at least 1")

        with self.repo.batch() as batch:
            data = batch.dataset
            source = next((t for t in data.threads if t.id == from_id), None)
            destination = next((t for t in data.threads if t.id == to_id), None)
            if source is None or destination is None:
                return None
            if not source.progress:
                raise ValidationError(f"{source.name} has no progress to move")

            ordered = sorted(source.progress, key=_timestamp_key)
            n = len(ordered) if count is None else min(count, len(ordered))
            moved, remaining = ordered[-n:], ordered[:-n]
            source = batch.update_thread(source.id, progress=remaining)
            destination = batch.update_thread(
                destination.id, progress=merge_logs(destination.progress, moved)
            )
        logger.info("Moved %d progress entr(ies) from %s to %s", n, source.name, destination.name)
        return MoveResult(source, destination, moved)

"""Result values returned by resolution and hierarchy operations.

Call sites branch on these with ``isinstance`` (or ``match``); none of them
are exceptions.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from threadline.models import (
    Dependency,
    DetailsEntry,
    Entity,
    Group,
    ProgressEntry,
    Record,
    Thread,
)


# ── Resolution ────────────────────────────────────────────


@dataclass
class Found:
    record: Record


@dataclass
class NotFound:
    query: str


@dataclass
class Ambiguous:
    query: str
    candidates: list[Record] = field(default_factory=list)


Resolution = Found | NotFound | Ambiguous


@dataclass
class CycleDetected:
    """Assigning ``parent_id`` to ``entity_id`` would make it its own ancestor."""

    entity_id: str
    parent_id: str
    chain: list[str] = field(default_factory=list)


# ── Hierarchy ─────────────────────────────────────────────


@dataclass
class Descendant:
    entity: Entity
    depth: int


@dataclass
class ArchiveResult:
    """Outcome of a (possibly cascading) archive or restore.

    ``refused`` is set when the root has descendants and cascade was not
    requested; nothing is written in that case and ``descendants`` is the preview.
    """

    root: Entity
    action: str
    descendants: list[Descendant] = field(default_factory=list)
    changed: list[Thread] = field(default_factory=list)
    refused: bool = False
    dry_run: bool = False


@dataclass
class MergePlan:
    """Everything a merge does, computed before (or instead of) persisting it.

    ``lift_target`` is set when the target sits somewhere under the source;
    the target then takes the source's place in the tree before the source's
    children are moved onto it.
    """

    source: Thread
    target: Thread
    progress: list[ProgressEntry]
    details: list[DetailsEntry]
    tags: list[str]
    dependencies: list[Dependency]
    reparented: list[Entity] = field(default_factory=list)
    lift_target: bool = False
    keep_source: bool = False
    dry_run: bool = False


@dataclass
class DeleteResult:
    root: Entity
    strategy: str
    descendants: list[Descendant] = field(default_factory=list)
    deleted: list[Entity] = field(default_factory=list)
    moved: list[Entity] = field(default_factory=list)
    new_parent_id: str | None = None
    refused: bool = False
    dry_run: bool = False


@dataclass
class MoveResult:
    source: Thread
    destination: Thread
    moved: list[ProgressEntry] = field(default_factory=list)


@dataclass
class GroupDeleteResult:
    group: Group
    ungrouped: list[Entity] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.ungrouped)


@dataclass
class BatchResult:
    """Threads a bulk update matched and the ones it actually changed."""

    action: str
    matched: list[Thread] = field(default_factory=list)
    changed: list[Thread] = field(default_factory=list)
    dry_run: bool = False


# ── Progress ──────────────────────────────────────────────


@dataclass
class ProgressEditResult:
    """One progress entry after ``edit_progress``.

    ``action`` is ``"show"`` (nothing written), ``"edit"`` or ``"delete"``;
    ``position`` is 1-based.
    """

    thread: Thread
    entry: ProgressEntry
    position: int
    action: str

"""Data model — threads, containers, groups and the persisted dataset.

Threads and containers share one id space and one ``parent_id`` field, so
together they form a single polymorphic tree. ``Entity`` is the tagged union
of the two; the ``kind`` class attribute is the discriminant and is persisted
as ``"type"``.

On disk every record uses camelCase keys (``parentId``, ``updatedAt`` ...);
in Python the same fields are snake_case.
"""

from __future__ import annotations

import uuid
from dataclasses import MISSING, dataclass, field, fields
from datetime import datetime, timedelta, timezone
from typing import Any, ClassVar, Literal, Union

ThreadStatus = Literal["active", "paused", "stopped", "completed", "archived"]
Temperature = Literal["hot", "warm", "tepid", "cold", "freezing", "frozen"]
ThreadSize = Literal["tiny", "small", "medium", "large", "huge"]
LinkType = Literal["web", "file", "thread", "custom"]
EntityKind = Literal["thread", "container"]

STATUSES: tuple[str, ...] = ("active", "paused", "stopped", "completed", "archived")
# Hottest first.
TEMPERATURES: tuple[str, ...] = ("hot", "warm", "tepid", "cold", "freezing", "frozen")
SIZES: tuple[str, ...] = ("tiny", "small", "medium", "large", "huge")
LINK_TYPES: tuple[str, ...] = ("web", "file", "thread", "custom")
IMPORTANCE_RANGE = range(1, 6)

SCHEMA_VERSION = "1.0.0"

# Thread status lifecycle. Transitions outside this table are allowed but
# reported by the command layer.
STATUS_TRANSITIONS: dict[str, frozenset[str]] = {
    "active": frozenset({"paused", "stopped", "completed", "archived"}),
    "paused": frozenset({"active", "stopped", "completed", "archived"}),
    "stopped": frozenset({"active", "paused", "completed", "archived"}),
    "completed": frozenset({"archived"}),
    "archived": frozenset({"active"}),
}


def can_transition(current: str, new: str) -> bool:
    """Return True if ``current -> new`` follows the status lifecycle."""
    return current == new or new in STATUS_TRANSITIONS.get(current, frozenset())


# ── Timestamps & ids ──────────────────────────────────────


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO timestamp; accepts a trailing ``Z`` and naive values (UTC)."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def next_timestamp(previous: str | None) -> str:
    """Return now(), nudged forward so it is strictly later than ``previous``."""
    stamp = datetime.now(timezone.utc)
    if previous:
        try:
            floor = parse_timestamp(previous)
        except ValueError:
            floor = None
        if floor is not None and stamp <= floor:
            stamp = floor + timedelta(microseconds=1)
    return stamp.isoformat(timespec="microseconds")


def new_id() -> str:
    return str(uuid.uuid4())


class _Unset:
    """Marker for "argument not given", distinct from an explicit ``None``."""

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


# Annotations whose values are persisted as plain strings.
_STRING_TYPES = frozenset({"str", "ThreadStatus", "Temperature", "ThreadSize", "LinkType"})


def _check_value(owner: str, key: str, annotation: str, value: Any) -> None:
    """Raise ValueError if a decoded ``value`` does not fit its field annotation."""
    if annotation.endswith(" | None"):
        if value is None:
            return
        annotation = annotation[: -len(" | None")]
    if annotation in _STRING_TYPES:
        ok = isinstance(value, str)
    elif annotation == "int":
        ok = isinstance(value, int) and not isinstance(value, bool)
    elif annotation == "list[str]":
        ok = isinstance(value, list) and all(isinstance(item, str) for item in value)
    elif annotation.startswith("list["):
        ok = isinstance(value, list)
    else:
        ok = True
    if not ok:
        raise ValueError(f"{owner}.{key} must be {annotation}, got {type(value).__name__}")


# ── Serialization base ────────────────────────────────────


class _Record:
    """Mixin giving dataclasses a camelCase dict round-trip.

    ``_nested`` maps list-valued fields to the record type of their items.
    Unknown keys are ignored on load. Missing keys, and nulls in fields that
    have a default, fall back to that default; any other value of the wrong
    type raises ValueError.
    """

    _nested: ClassVar[dict[str, type]] = {}

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        kind = getattr(type(self), "kind", None)
        if kind is not None:
            out["type"] = kind
        for f in fields(self):  # type: ignore[arg-type]
            value = getattr(self, f.name)
            if f.name in self._nested:
                value = [item.to_dict() for item in value]
            elif isinstance(value, list):
                value = list(value)
            out[_camel(f.name)] = value
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]):
        if not isinstance(data, dict):
            raise ValueError(f"{cls.__name__} record must be an object, got {type(data).__name__}")
        kwargs: dict[str, Any] = {}
        for f in fields(cls):  # type: ignore[arg-type]
            key = _camel(f.name)
            if key not in data:
                continue
            value = data[key]
            has_default = f.default is not MISSING or f.default_factory is not MISSING
            if value is None and has_default:
                continue
            _check_value(cls.__name__, key, str(f.type), value)
            item_type = cls._nested.get(f.name)
            if item_type is not None:
                value = [item_type.from_dict(item) for item in value]
            kwargs[f.name] = value
        return cls(**kwargs)


# ── Log entries & references ──────────────────────────────


@dataclass
class ProgressEntry(_Record):
    """User-reported progress note. Append-only."""

    id: str
    timestamp: str
    note: str

    @classmethod
    def create(cls, note: str, timestamp: str | None = None) -> ProgressEntry:
        return cls(id=new_id(), timestamp=timestamp or now_iso(), note=note)


@dataclass
class DetailsEntry(_Record):
    """Versioned snapshot of an entity's current state; the latest wins."""

    id: str
    timestamp: str
    content: str

    @classmethod
    def create(cls, content: str) -> DetailsEntry:
        return cls(id=new_id(), timestamp=now_iso(), content=content)


@dataclass
class Dependency(_Record):
    thread_id: str
    why: str = ""
    what: str = ""
    how: str = ""
    when: str = ""


@dataclass
class Link(_Record):
    id: str
    uri: str
    type: LinkType = "web"
    label: str | None = None
    description: str | None = None
    added_at: str = field(default_factory=now_iso)

    @classmethod
    def create(
        cls,
        uri: str,
        type: LinkType,
        label: str | None = None,
        description: str | None = None,
    ) -> Link:
        return cls(id=new_id(), uri=uri, type=type, label=label, description=description)


# ── Entities ──────────────────────────────────────────────


@dataclass
class Thread(_Record):
    """Tracked activity stream."""

    kind: ClassVar[EntityKind] = "thread"
    _nested: ClassVar[dict[str, type]] = {
        "dependencies": Dependency,
        "progress": ProgressEntry,
        "details": DetailsEntry,
        "links": Link,
    }

    id: str
    name: str
    description: str = ""
    status: ThreadStatus = "active"
    temperature: Temperature = "warm"
    size: ThreadSize = "medium"
    importance: int = 3
    parent_id: str | None = None
    group_id: str | None = None
    tags: list[str] = field(default_factory=list)
    dependencies: list[Dependency] = field(default_factory=list)
    progress: list[ProgressEntry] = field(default_factory=list)
    details: list[DetailsEntry] = field(default_factory=list)
    links: list[Link] = field(default_factory=list)
    created_at: str = field(default_factory=now_iso)
    updated_at: str = ""

    def __post_init__(self) -> None:
        if not self.updated_at:
            self.updated_at = self.created_at

    @classmethod
    def create(cls, name: str, **fields_: Any) -> Thread:
        return cls(id=new_id(), name=name, **fields_)


@dataclass
class Container(_Record):
    """Pure grouping node in the same tree as threads."""

    kind: ClassVar[EntityKind] = "container"
    _nested: ClassVar[dict[str, type]] = {"details": DetailsEntry}

    id: str
    name: str
    description: str = ""
    parent_id: str | None = None
    group_id: str | None = None
    tags: list[str] = field(default_factory=list)
    details: list[DetailsEntry] = field(default_factory=list)
    created_at: str = field(default_factory=now_iso)
    updated_at: str = ""

    def __post_init__(self) -> None:
        if not self.updated_at:
            self.updated_at = self.created_at

    @classmethod
    def create(cls, name: str, **fields_: Any) -> Container:
        return cls(id=new_id(), name=name, **fields_)


@dataclass
class Group(_Record):
    """Flat, non-nesting named collection."""

    id: str
    name: str
    description: str = ""
    created_at: str = field(default_factory=now_iso)
    updated_at: str = ""

    def __post_init__(self) -> None:
        if not self.updated_at:
            self.updated_at = self.created_at

    @classmethod
    def create(cls, name: str, description: str = "") -> Group:
        return cls(id=new_id(), name=name, description=description)


Entity = Union[Thread, Container]
Record = Union[Thread, Container, Group]


def entity_from_dict(data: dict[str, Any], default: EntityKind = "thread") -> Entity:
    """Decode a tree record using its ``type`` discriminant.

    Records written before the discriminant existed take ``default``.
    """
    kind = data.get("type", default) if isinstance(data, dict) else None
    if kind == "container":
        return Container.from_dict(data)
    if kind == "thread":
        return Thread.from_dict(data)
    raise ValueError(f"Unknown entity type: {kind!r}")


# ── Dataset ───────────────────────────────────────────────


@dataclass
class Dataset:
    """Root aggregate and unit of persistence."""

    threads: list[Thread] = field(default_factory=list)
    containers: list[Container] = field(default_factory=list)
    groups: list[Group] = field(default_factory=list)
    schema_version: str = SCHEMA_VERSION

    @property
    def entities(self) -> list[Entity]:
        return [*self.threads, *self.containers]

    def find_entity(self, entity_id: str) -> Entity | None:
        for entity in self.entities:
            if entity.id == entity_id:
                return entity
        return None

    def find_group(self, group_id: str) -> Group | None:
        for group in self.groups:
            if group.id == group_id:
                return group
        return None

    def children_of(self, parent_id: str) -> list[Entity]:
        """Direct children, threads first then containers, in stored order."""
        return [e for e in self.entities if e.parent_id == parent_id]

    def to_dict(self) -> dict[str, Any]:
        return {
            "threads": [t.to_dict() for t in self.threads],
            "containers": [c.to_dict() for c in self.containers],
            "groups": [g.to_dict() for g in self.groups],
            "schemaVersion": self.schema_version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Dataset:
        """Decode a persisted document, applying the forward migration.

        Documents written before containers existed have no ``containers``
        key; older ones also name the version field ``version``. Tree records
        are sorted by their ``type``, so a container filed under ``threads``
        (or the reverse) lands in the right list.
        """
        if not isinstance(data, dict):
            raise ValueError("Dataset document must be a JSON object")
        threads = data.get("threads")
        groups = data.get("groups")
        containers = data.get("containers") or []
        if not isinstance(threads, list) or not isinstance(groups, list):
            raise ValueError("Dataset document is missing 'threads' or 'groups'")
        if not isinstance(containers, list):
            raise ValueError("Dataset 'containers' must be a list")
        entities = [
            *(entity_from_dict(t) for t in threads),
            *(entity_from_dict(c, default="container") for c in containers),
        ]
        return cls(
            threads=[e for e in entities if isinstance(e, Thread)],
            containers=[e for e in entities if isinstance(e, Container)],
            groups=[Group.from_dict(g) for g in groups],
            schema_version=str(data.get("schemaVersion", data.get("version", SCHEMA_VERSION))),
        )

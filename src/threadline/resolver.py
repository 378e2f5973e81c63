"""Identifier resolution — turn a user string into a record.

Stages, first hit wins:

1. exact id
2. exact name (case-insensitive)
3. id prefix (case-insensitive)
4. name substring (case-insensitive)

A stage that matches more than one record stops the cascade with
``Ambiguous``; candidates are reported, never picked.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Literal

from threadline.models import Record
from threadline.results import Ambiguous, Found, NotFound, Resolution

if TYPE_CHECKING:
    from threadline.store.repository import EntityRepository

logger = logging.getLogger(__name__)

ResolveKind = Literal["thread", "container", "group", "entity"]


def _settle(query: str, matches: list[Record]) -> Resolution | None:
    if len(matches) == 1:
        return Found(matches[0])
    if len(matches) > 1:
        return Ambiguous(query, matches)
    return None


def match_identifier(records: Sequence[Record], query: str) -> Resolution:
    """Run the resolution cascade over an already-loaded list of records."""
    query = query.strip()
    if not query:
        return NotFound(query)

    for record in records:
        if record.id == query:
            return Found(record)

    lower = query.lower()
    stages = (
        lambda r: r.name.lower() == lower,
        lambda r: r.id.lower().startswith(lower),
        lambda r: lower in r.name.lower(),
    )
    for predicate in stages:
        result = _settle(query, [r for r in records if predicate(r)])
        if result is not None:
            return result
    return NotFound(query)


class IdentifierResolver:
    """Resolves names/ids against the repository's current dataset."""

    def __init__(self, repo: EntityRepository) -> None:
        self._repo = repo

    def candidates(self, kind: ResolveKind) -> list[Record]:
        data = self._repo.load()
        if kind == "thread":
            return list(data.threads)
        if kind == "container":
            return list(data.containers)
        if kind == "group":
            return list(data.groups)
        if kind == "entity":
            return list(data.entities)
        raise ValueError(f"Unknown kind: {kind!r}")

    def resolve(self, kind: ResolveKind, query: str) -> Resolution:
        result = match_identifier(self.candidates(kind), query)
        if isinstance(result, Ambiguous):
            logger.debug("%s %r is ambiguous (%d candidates)", kind, query, len(result.candidates))
        return result

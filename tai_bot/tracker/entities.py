"""Short-lived entity cache and fuzzy name resolution for tracker entities."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum

import cachetools

from tai_bot.errors import RemoteFailure
from tai_bot.tracker.models import TrackerClient, TrackerEntity, TrackerResult

DEFAULT_TTL_S = 300
DEFAULT_MAXSIZE = 256


class EntityKind(str, Enum):
    MEMBER = "member"
    LABEL = "label"
    PROJECT = "project"


class ResolutionStatus(str, Enum):
    RESOLVED = "resolved"
    AMBIGUOUS = "ambiguous"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class ResolutionOutcome:
    status: ResolutionStatus
    kind: EntityKind
    query: str
    entity: TrackerEntity | None = None
    candidates: tuple[str, ...] = ()

    @property
    def resolved(self) -> bool:
        return self.status == ResolutionStatus.RESOLVED

    def describe(self) -> str:
        if self.status == ResolutionStatus.RESOLVED and self.entity is not None:
            return f"{self.kind.value} {self.query!r} resolved to {self.entity.label}"
        if self.status == ResolutionStatus.AMBIGUOUS:
            names = ", ".join(self.candidates)
            return f"{self.kind.value} {self.query!r} is ambiguous; did you mean one of: {names}?"
        return f"no {self.kind.value} matching {self.query!r}"


def resolve_by_name(
    kind: EntityKind, entities: Iterable[TrackerEntity], query: str
) -> ResolutionOutcome:
    """Exact case-insensitive match first, then substring containment."""

    needle = query.strip().casefold()
    pool = list(entities)
    if not needle:
        return ResolutionOutcome(ResolutionStatus.NOT_FOUND, kind, query)

    matches = [entity for entity in pool if needle in _match_fields(entity)]
    if not matches:
        matches = [
            entity
            for entity in pool
            if any(needle in field for field in _match_fields(entity))
        ]

    distinct = list({entity.id: entity for entity in matches}.values())
    if not distinct:
        return ResolutionOutcome(ResolutionStatus.NOT_FOUND, kind, query)
    if len(distinct) == 1:
        return ResolutionOutcome(ResolutionStatus.RESOLVED, kind, query, entity=distinct[0])
    return ResolutionOutcome(
        ResolutionStatus.AMBIGUOUS,
        kind,
        query,
        candidates=tuple(entity.label for entity in distinct),
    )


def _match_fields(entity: TrackerEntity) -> tuple[str, ...]:
    return tuple(
        value.casefold() for value in (entity.name, entity.display_name, entity.email) if value
    )


class EntityCache:
    """TTL cache keyed by ``(kind, scope)``.

    Concurrent misses may both fetch; the last write wins.
    """

    def __init__(
        self,
        ttl_s: float = DEFAULT_TTL_S,
        clock: Callable[[], float] = time.monotonic,
        maxsize: int = DEFAULT_MAXSIZE,
    ):
        self.ttl_s = ttl_s
        self._entries: cachetools.TTLCache[tuple[EntityKind, str], list[TrackerEntity]] = (
            cachetools.TTLCache(maxsize=maxsize, ttl=ttl_s, timer=clock)
        )
        self._lock = threading.Lock()

    def get(self, kind: EntityKind, scope: str) -> list[TrackerEntity] | None:
        with self._lock:
            cached = self._entries.get((kind, scope))
        return list(cached) if cached is not None else None

    def put(self, kind: EntityKind, scope: str, entities: list[TrackerEntity]) -> None:
        with self._lock:
            self._entries[(kind, scope)] = list(entities)

    def invalidate(self, kind: EntityKind | None = None, scope: str | None = None) -> None:
        with self._lock:
            for key in list(self._entries):
                if (kind is None or key[0] == kind) and (scope is None or key[1] == scope):
                    self._entries.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class EntityResolver:
    def __init__(self, tracker: TrackerClient, cache: EntityCache | None = None) -> None:
        self.tracker = tracker
        self.cache = cache or EntityCache()
        self._fetchers: dict[EntityKind, Callable[[], TrackerResult]] = {
            EntityKind.MEMBER: tracker.list_members,
            EntityKind.LABEL: tracker.list_labels,
            EntityKind.PROJECT: tracker.list_projects,
        }

    def list_members(self, scope: str) -> list[TrackerEntity]:
        return self.list_entities(EntityKind.MEMBER, scope)

    def list_labels(self, scope: str) -> list[TrackerEntity]:
        return self.list_entities(EntityKind.LABEL, scope)

    def list_projects(self, scope: str) -> list[TrackerEntity]:
        return self.list_entities(EntityKind.PROJECT, scope)

    def list_entities(self, kind: EntityKind, scope: str) -> list[TrackerEntity]:
        cached = self.cache.get(kind, scope)
        if cached is not None:
            return cached
        result = self._fetchers[kind]()
        if not result.success:
            raise RemoteFailure(result.reason_code or "entity_fetch_failed", result.error)
        entities = list(result.value or [])
        self.cache.put(kind, scope, entities)
        return entities

    def resolve(self, kind: EntityKind, scope: str, query: str) -> ResolutionOutcome:
        return resolve_by_name(kind, self.list_entities(kind, scope), query)

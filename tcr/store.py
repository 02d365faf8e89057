"""Resource store capability interface and the in-memory implementation.

The reconciler only talks to a ``Store``: get/list/create/update/delete keyed by
(kind, namespace, name), plus the two facilities a controller needs from its
cache layer:

 - secondary indexes (``index_field``), maintained on every write
 - change notification (``watch``), delivered after the write is applied

Deleting an object also deletes its dependents (objects whose owner references
carry the deleted uid). That cascade belongs to the store, not the reconciler.
"""
from __future__ import annotations

import copy
import logging
import time
import uuid
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Event, Lock, RLock
from typing import Any, Callable

from .models import RESOURCE_TYPES

logger = logging.getLogger(__name__)


IndexFunc = Callable[[Any], list[str]]
WatchHandler = Callable[["StoreEvent"], None]

ADDED = "ADDED"
MODIFIED = "MODIFIED"
DELETED = "DELETED"


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class StoreError(Exception):
    """Base class for every failure surfaced by a store."""


class NotFound(StoreError):
    def __init__(self, kind: str, namespace: str, name: str):
        super().__init__(f"{kind} {namespace}/{name} not found")
        self.kind = kind
        self.namespace = namespace
        self.name = name


class AlreadyExists(StoreError):
    pass


class Conflict(StoreError):
    """Write rejected because the object changed since it was read."""


class StoreUnavailable(StoreError):
    pass


class Cancelled(StoreError):
    pass


class IndexerConflict(ValueError):
    pass


@dataclass
class CallContext:
    """Cancellation/timeout scope for one reconcile invocation.

    Every store operation checks it on entry and raises ``Cancelled`` once the
    deadline has passed or ``cancel()`` was called.
    """

    timeout_s: float | None = None
    started_at: float = field(default_factory=time.monotonic)
    _cancelled: Event = field(default_factory=Event, repr=False)

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def deadline(self) -> float | None:
        if not self.timeout_s:
            return None
        return self.started_at + self.timeout_s

    def check(self) -> None:
        if self._cancelled.is_set():
            raise Cancelled("operation cancelled")
        deadline = self.deadline
        if deadline is not None and time.monotonic() >= deadline:
            raise Cancelled(f"deadline of {self.timeout_s}s exceeded")


@dataclass(frozen=True)
class StoreEvent:
    type: str  # ADDED|MODIFIED|DELETED
    obj: Any


def _check(ctx: CallContext | None) -> None:
    if ctx is not None:
        ctx.check()


class Store(ABC):
    """Storage-agnostic resource access shared by every backend."""

    def __init__(self) -> None:
        self._registry_lock = Lock()
        self._indexers: dict[str, dict[str, IndexFunc]] = defaultdict(dict)
        self._watchers: dict[str, list[WatchHandler]] = defaultdict(list)

    # --- backend hooks ---

    @abstractmethod
    def _get(self, kind: str, namespace: str, name: str) -> Any:
        ...

    @abstractmethod
    def _list(self, kind: str, namespace: str | None, index: tuple[str, str] | None) -> list[Any]:
        ...

    @abstractmethod
    def _create(self, obj: Any) -> Any:
        ...

    @abstractmethod
    def _update(self, obj: Any) -> Any:
        ...

    @abstractmethod
    def _delete(self, kind: str, namespace: str, name: str) -> Any:
        ...

    @abstractmethod
    def _reindex(self, kind: str, key: str) -> None:
        """Populate a newly registered index from the objects already stored."""

    # --- public API ---

    def get(self, kind: str, namespace: str, name: str, ctx: CallContext | None = None) -> Any:
        _check(ctx)
        return self._get(kind, namespace, name)

    def list(
        self,
        kind: str,
        namespace: str | None = None,
        index: tuple[str, str] | None = None,
        ctx: CallContext | None = None,
    ) -> list[Any]:
        """List objects of a kind, optionally restricted to a namespace and an index value."""
        _check(ctx)
        if index is not None and not self.has_index(kind, index[0]):
            raise StoreError(f"index '{index[0]}' is not registered for {kind}")
        return self._list(kind, namespace, index)

    def create(self, obj: Any, ctx: CallContext | None = None) -> Any:
        _check(ctx)
        stored = self._create(obj)
        self._notify(StoreEvent(ADDED, stored))
        return stored

    def update(self, obj: Any, ctx: CallContext | None = None) -> Any:
        _check(ctx)
        stored = self._update(obj)
        self._notify(StoreEvent(MODIFIED, stored))
        return stored

    def delete(self, obj: Any, ctx: CallContext | None = None) -> None:
        _check(ctx)
        removed = self._delete(obj.kind, obj.metadata.namespace, obj.metadata.name)
        self._notify(StoreEvent(DELETED, removed))
        self._collect_dependents(removed)

    def index_field(self, kind: str, key: str, fn: IndexFunc) -> None:
        with self._registry_lock:
            if key in self._indexers[kind]:
                raise IndexerConflict(f"indexer conflict: '{key}' already registered for {kind}")
            self._indexers[kind][key] = fn
        self._reindex(kind, key)

    def has_index(self, kind: str, key: str) -> bool:
        with self._registry_lock:
            return key in self._indexers[kind]

    def watch(self, kind: str, handler: WatchHandler) -> None:
        with self._registry_lock:
            self._watchers[kind].append(handler)

    # --- helpers for backends ---

    def _index_values(self, obj: Any) -> list[tuple[str, str]]:
        with self._registry_lock:
            indexers = list(self._indexers[obj.kind].items())
        out: list[tuple[str, str]] = []
        for key, fn in indexers:
            for value in fn(obj) or []:
                out.append((key, value))
        return out

    def _indexer(self, kind: str, key: str) -> IndexFunc:
        with self._registry_lock:
            return self._indexers[kind][key]

    def _notify(self, event: StoreEvent) -> None:
        with self._registry_lock:
            handlers = list(self._watchers[event.obj.kind])
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("Watch handler failed for %s %s", event.type, event.obj.kind)

    def _collect_dependents(self, owner: Any) -> None:
        uid = owner.metadata.uid
        if not uid:
            return
        for kind in RESOURCE_TYPES:
            for obj in self._list(kind, owner.metadata.namespace, None):
                if not any(ref.uid == uid for ref in obj.metadata.owner_references):
                    continue
                try:
                    self.delete(obj)
                except NotFound:
                    continue
                logger.info("Garbage collected %s %s/%s", kind, obj.metadata.namespace, obj.metadata.name)


class InMemoryStore(Store):
    """Dict-backed store. Used by tests and for single-process experiments."""

    def __init__(self) -> None:
        super().__init__()
        self._lock = RLock()
        self._objects: dict[tuple[str, str, str], Any] = {}
        # (kind, index key) -> index value -> {(namespace, name)}
        self._indices: dict[tuple[str, str], dict[str, set[tuple[str, str]]]] = defaultdict(lambda: defaultdict(set))

    def _get(self, kind: str, namespace: str, name: str) -> Any:
        with self._lock:
            obj = self._objects.get((kind, namespace, name))
            if obj is None:
                raise NotFound(kind, namespace, name)
            return copy.deepcopy(obj)

    def _list(self, kind: str, namespace: str | None, index: tuple[str, str] | None) -> list[Any]:
        with self._lock:
            if index is not None:
                key, value = index
                names = self._indices[(kind, key)].get(value, set())
                candidates = [self._objects[(kind, ns, n)] for ns, n in names]
            else:
                candidates = [o for (k, _, _), o in self._objects.items() if k == kind]
            out = [copy.deepcopy(o) for o in candidates if namespace is None or o.metadata.namespace == namespace]
        out.sort(key=lambda o: (o.metadata.namespace, o.metadata.name))
        return out

    def _create(self, obj: Any) -> Any:
        meta = obj.metadata
        with self._lock:
            ident = (obj.kind, meta.namespace, meta.name)
            if ident in self._objects:
                raise AlreadyExists(f"{obj.kind} {meta.namespace}/{meta.name} already exists")
            stored = copy.deepcopy(obj)
            stored.metadata.uid = str(uuid.uuid4())
            stored.metadata.resource_version = 1
            stored.metadata.created_at = utc_now()
            self._objects[ident] = stored
            self._add_to_indices(stored)
            return copy.deepcopy(stored)

    def _update(self, obj: Any) -> Any:
        meta = obj.metadata
        with self._lock:
            ident = (obj.kind, meta.namespace, meta.name)
            current = self._objects.get(ident)
            if current is None:
                raise NotFound(*ident)
            # resource_version 0 means an unconditional write
            if meta.resource_version and meta.resource_version != current.metadata.resource_version:
                raise Conflict(
                    f"{obj.kind} {meta.namespace}/{meta.name} was modified "
                    f"(have {meta.resource_version}, store has {current.metadata.resource_version})"
                )
            stored = copy.deepcopy(obj)
            stored.metadata.uid = current.metadata.uid
            stored.metadata.created_at = current.metadata.created_at
            stored.metadata.resource_version = current.metadata.resource_version + 1
            self._remove_from_indices(current)
            self._objects[ident] = stored
            self._add_to_indices(stored)
            return copy.deepcopy(stored)

    def _delete(self, kind: str, namespace: str, name: str) -> Any:
        with self._lock:
            current = self._objects.pop((kind, namespace, name), None)
            if current is None:
                raise NotFound(kind, namespace, name)
            self._remove_from_indices(current)
            return current

    def _reindex(self, kind: str, key: str) -> None:
        fn = self._indexer(kind, key)
        with self._lock:
            for (k, ns, name), obj in self._objects.items():
                if k != kind:
                    continue
                for value in fn(obj) or []:
                    self._indices[(kind, key)][value].add((ns, name))

    def _add_to_indices(self, obj: Any) -> None:
        for key, value in self._index_values(obj):
            self._indices[(obj.kind, key)][value].add((obj.metadata.namespace, obj.metadata.name))

    def _remove_from_indices(self, obj: Any) -> None:
        for key, value in self._index_values(obj):
            bucket = self._indices[(obj.kind, key)]
            bucket[value].discard((obj.metadata.namespace, obj.metadata.name))
            if not bucket[value]:
                del bucket[value]

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from threading import Condition, Lock

from .models import Request
from .store import utc_now


@dataclass
class ReconcileStatus:
    namespace: str
    name: str
    state: str  # done|aborted|gone
    message: str
    writes: int = 0
    updated_at: str = field(default_factory=utc_now)


class WorkQueue:
    """Deduplicating queue of parent requests.

    A request is handed to at most one worker at a time. If it is added again
    while being processed, it is queued once more when the worker calls
    ``done()``.
    """

    def __init__(self) -> None:
        self._cond = Condition()
        self._queue: deque[Request] = deque()
        self._dirty: set[Request] = set()  # waiting to be processed
        self._processing: set[Request] = set()
        self._shutdown = False

    def add(self, request: Request) -> None:
        with self._cond:
            if self._shutdown or request in self._dirty:
                return
            self._dirty.add(request)
            if request in self._processing:
                return
            self._queue.append(request)
            self._cond.notify()

    def get(self, timeout: float | None = None) -> Request | None:
        """Next request to process, or None on timeout/shutdown."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while not self._queue and not self._shutdown:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return None
                self._cond.wait(remaining)
            if self._shutdown:
                return None
            request = self._queue.popleft()
            self._processing.add(request)
            self._dirty.discard(request)
            return request

    def done(self, request: Request) -> None:
        with self._cond:
            self._processing.discard(request)
            if request in self._dirty:
                self._queue.append(request)
                self._cond.notify()

    def shutdown(self) -> None:
        with self._cond:
            self._shutdown = True
            self._cond.notify_all()

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)


class RuntimeState:
    """In-memory reconcile status per parent."""

    def __init__(self) -> None:
        self.lock = Lock()
        self.statuses: dict[Request, ReconcileStatus] = {}

    def record(self, request: Request, state: str, message: str, writes: int = 0) -> ReconcileStatus:
        st = ReconcileStatus(namespace=request.namespace, name=request.name, state=state, message=message, writes=writes)
        with self.lock:
            self.statuses[request] = st
        return st

    def get_status(self, request: Request) -> ReconcileStatus | None:
        with self.lock:
            return self.statuses.get(request)

    def list_statuses(self) -> list[ReconcileStatus]:
        with self.lock:
            return sorted(self.statuses.values(), key=lambda s: (s.namespace, s.name))

from __future__ import annotations

import logging
import time
from threading import Event, Thread

from . import db
from .index import register_owner_index
from .models import CONFIG_MAP, TENANT_INFO, Request
from .reconciler import EventRecorder, ReconcileResult, TenantInfoReconciler
from .runtime import RuntimeState, WorkQueue
from .settings import settings
from .store import CallContext, Store, StoreEvent

logger = logging.getLogger(__name__)


def request_for_parent(event: StoreEvent) -> list[Request]:
    meta = event.obj.metadata
    return [Request(meta.namespace, meta.name)]


def request_for_owner(event: StoreEvent) -> list[Request]:
    """Map a ConfigMap change to the TenantInfo controlling it, if any."""
    meta = event.obj.metadata
    for ref in meta.owner_references:
        if ref.controller and ref.kind == TENANT_INFO:
            return [Request(meta.namespace, ref.name)]
    return []


class Controller:
    """Runs the TenantInfo reconciler against store change notifications.

    Parents are reconciled when they change, when a ConfigMap they control
    changes, and on every resync tick. A failed pass is recorded and picked up
    again by the next resync.
    """

    def __init__(
        self,
        store: Store,
        reconciler: TenantInfoReconciler | None = None,
        runtime: RuntimeState | None = None,
        workers: int | None = None,
        resync_interval_s: int | None = None,
        reconcile_timeout_s: int | None = None,
        record_event: EventRecorder | None = None,
    ):
        self.store = store
        self.record_event = record_event or db.event_recorder(store)
        self.reconciler = reconciler or TenantInfoReconciler(store, record_event=self.record_event)
        self.runtime = runtime or RuntimeState()
        self.queue = WorkQueue()
        self.workers = max(1, int(workers if workers is not None else settings.workers))
        self.resync_interval_s = max(1, int(resync_interval_s if resync_interval_s is not None else settings.resync_interval_s))
        self.reconcile_timeout_s = settings.reconcile_timeout_s if reconcile_timeout_s is None else reconcile_timeout_s
        self._stop = Event()
        self._threads: list[Thread] = []
        self._is_setup = False

    def setup(self) -> None:
        """Register the ownership index, then the watches. Runs once."""
        if self._is_setup:
            return
        register_owner_index(self.store)
        self.store.watch(TENANT_INFO, self._enqueue(request_for_parent))
        self.store.watch(CONFIG_MAP, self._enqueue(request_for_owner))
        self._is_setup = True

    def _enqueue(self, mapper):
        def handler(event: StoreEvent) -> None:
            for request in mapper(event):
                self.queue.add(request)

        return handler

    def start(self) -> None:
        if any(t.is_alive() for t in self._threads):
            return
        self.setup()
        self._stop.clear()
        self._record("INFO", f"Controller started with {self.workers} worker(s)")
        self._threads = [Thread(target=self._worker, daemon=True) for _ in range(self.workers)]
        self._threads.append(Thread(target=self._resync_loop, daemon=True))
        for t in self._threads:
            t.start()

    def stop(self) -> None:
        self._stop.set()
        self.queue.shutdown()

    def enqueue_all(self) -> int:
        parents = self.store.list(TENANT_INFO)
        for p in parents:
            self.queue.add(Request(p.metadata.namespace, p.metadata.name))
        return len(parents)

    def _resync_loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.enqueue_all()
            except Exception as e:
                logger.error("Resync failed: %s: %s", type(e).__name__, e)
                self._record("ERROR", f"Resync failed: {type(e).__name__}: {e}")
            self._stop.wait(self.resync_interval_s)

    def _record(self, level: str, message: str) -> None:
        try:
            self.record_event(level, message)
        except Exception:
            logger.exception("Failed to record controller event: %s", message)

    def _worker(self) -> None:
        while not self._stop.is_set():
            self.process_next(timeout=1.0)

    def process_next(self, timeout: float | None = None) -> bool:
        """Reconcile one queued request. Returns False if nothing was queued."""
        request = self.queue.get(timeout=timeout)
        if request is None:
            return False
        try:
            self.run_once(request)
        except Exception as e:
            # the reconciler logged it at the failing step; the next resync retries
            logger.debug("Reconcile of %s failed, waiting for resync: %s", request, e)
        finally:
            self.queue.done(request)
        return True

    def run_once(self, request: Request) -> ReconcileResult:
        """One reconcile pass with status bookkeeping. Errors are re-raised."""
        ctx = CallContext(timeout_s=self.reconcile_timeout_s or None)
        start = time.monotonic()
        try:
            result = self.reconciler.reconcile(request, ctx=ctx)
        except Exception as e:
            self.runtime.record(request, "aborted", f"{type(e).__name__}: {e}")
            raise
        elapsed_ms = round((time.monotonic() - start) * 1000.0, 2)
        if not result.parent_found:
            self.runtime.record(request, "gone", "TenantInfo not found")
            return result
        self.runtime.record(
            request,
            "done",
            f"created={len(result.created)} updated={len(result.updated)} deleted={len(result.deleted)} in {elapsed_ms}ms",
            writes=result.writes,
        )
        return result

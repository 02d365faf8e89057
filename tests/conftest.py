import dataclasses
import sys

import pytest

# Ensure project root is importable when the package is not installed
import os as _os
_project_root = _os.path.dirname(_os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from tcr import db
from tcr.index import register_owner_index
from tcr.models import CONFIG_MAP, ObjectMeta, Request, TenantInfo, TenantSpec
from tcr.store import InMemoryStore


class RecordingMixin:
    """Store mixin that records writes and raises queued failures.

    ``fail(op, name, exc)`` makes the next ``op`` on an object called ``name``
    raise ``exc`` once.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.writes = []
        self._failures = {}

    def fail(self, op, name, exc):
        self._failures[(op, name)] = exc

    def _maybe_fail(self, op, name):
        exc = self._failures.pop((op, name), None)
        if exc is not None:
            raise exc

    def get(self, kind, namespace, name, ctx=None):
        self._maybe_fail("get", name)
        return super().get(kind, namespace, name, ctx=ctx)

    def list(self, kind, namespace=None, index=None, ctx=None):
        self._maybe_fail("list", kind)
        return super().list(kind, namespace, index=index, ctx=ctx)

    def create(self, obj, ctx=None):
        self._maybe_fail("create", obj.metadata.name)
        stored = super().create(obj, ctx=ctx)
        self.writes.append(("create", obj.kind, obj.metadata.name))
        return stored

    def update(self, obj, ctx=None):
        self._maybe_fail("update", obj.metadata.name)
        stored = super().update(obj, ctx=ctx)
        self.writes.append(("update", obj.kind, obj.metadata.name))
        return stored

    def delete(self, obj, ctx=None):
        self._maybe_fail("delete", obj.metadata.name)
        super().delete(obj, ctx=ctx)
        self.writes.append(("delete", obj.kind, obj.metadata.name))

    def config_map_writes(self):
        return [(op, name) for op, kind, name in self.writes if kind == CONFIG_MAP]


class RecordingStore(RecordingMixin, InMemoryStore):
    pass


class RecordingSqliteStore(RecordingMixin, db.SqliteStore):
    pass


@pytest.fixture(autouse=True)
def tmp_db(tmp_path, monkeypatch):
    """Point the event log (and the default SqliteStore) at a throwaway database."""
    path = str(tmp_path / "test.db")
    monkeypatch.setattr(db, "settings", dataclasses.replace(db.settings, db_path=path))
    db.init_db()
    return path


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_db):
    # the sqlite variant shares its file with the event log
    s = RecordingStore() if request.param == "memory" else RecordingSqliteStore(tmp_db)
    register_owner_index(s)
    return s


@pytest.fixture
def events():
    recorded = []

    def record(level, message, namespace=None, name=None):
        recorded.append((level, message, namespace, name))

    return recorded, record


def make_tenant_info(store, namespace, name, tenants):
    """Create a TenantInfo from (tenant_id, url) pairs and return the stored copy."""
    ti = TenantInfo(
        metadata=ObjectMeta(name=name, namespace=namespace),
        tenants=[TenantSpec(tenant_id=t, webservice_url=u) for t, u in tenants],
    )
    return store.create(ti)


def set_tenants(store, namespace, name, tenants):
    from tcr.models import TENANT_INFO

    ti = store.get(TENANT_INFO, namespace, name)
    ti.tenants = [TenantSpec(tenant_id=t, webservice_url=u) for t, u in tenants]
    return store.update(ti)


def req(namespace, name):
    return Request(namespace, name)

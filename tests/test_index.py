import pytest

from conftest import make_tenant_info
from tcr.index import OWNER_UID_INDEX, owned_children, owner_uid_indexer, register_owner_index
from tcr.models import CONFIG_MAP, ConfigMap, ObjectMeta, OwnerReference
from tcr.store import IndexerConflict, InMemoryStore


def _ref(uid):
    return OwnerReference(api_version="v1", kind="TenantInfo", name="p", uid=uid, controller=True)


def _cm(name, *uids, namespace="ns"):
    return ConfigMap(metadata=ObjectMeta(name=name, namespace=namespace, owner_references=[_ref(u) for u in uids]))


def test_indexer_uses_first_owner_only():
    assert owner_uid_indexer(_cm("c", "u1", "u2")) == ["u1"]
    assert owner_uid_indexer(_cm("c")) == []


@pytest.mark.parametrize("indexed", [True, False])
def test_owned_children_with_and_without_index(indexed):
    store = InMemoryStore()
    if indexed:
        register_owner_index(store)
    store.create(_cm("a", "u1"))
    store.create(_cm("b", "u2", "u1"))  # u1 is not the first owner
    store.create(_cm("c", "u1", namespace="other"))
    store.create(_cm("d"))

    assert [c.metadata.name for c in owned_children(store, "ns", "u1")] == ["a"]
    assert [c.metadata.name for c in owned_children(store, "ns", "u2")] == ["b"]


def test_register_twice_conflicts():
    store = InMemoryStore()
    register_owner_index(store)
    assert store.has_index(CONFIG_MAP, OWNER_UID_INDEX)
    with pytest.raises(IndexerConflict):
        register_owner_index(store)


def test_reconciled_children_are_indexed_under_parent_uid(store):
    from tcr.reconciler import TenantInfoReconciler
    from tcr.models import Request

    parent = make_tenant_info(store, "ns", "p", [("a", "1"), ("b", "2")])
    TenantInfoReconciler(store, record_event=lambda *a, **k: None).reconcile(Request("ns", "p"))

    names = [c.metadata.name for c in store.list(CONFIG_MAP, "ns", index=(OWNER_UID_INDEX, parent.metadata.uid))]
    assert names == ["tenant-a-config", "tenant-b-config"]

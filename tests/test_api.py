import pytest
from fastapi.testclient import TestClient

from tcr.api import create_app
from tcr.store import InMemoryStore


@pytest.fixture
def client():
    app = create_app(store=InMemoryStore(), start_controller=False)
    with TestClient(app) as c:
        yield c


def _apply(client, name, tenants, namespace="ns", **extra):
    body = {"tenants": [{"tenantID": t, "webserviceURL": u} for t, u in tenants], **extra}
    return client.put(f"/namespaces/{namespace}/tenantinfos/{name}", json=body)


def test_apply_reconcile_and_list_config_maps(client):
    r = _apply(client, "p", [("a", "http://a")])
    assert r.status_code == 200
    assert r.json()["spec"]["tenants"] == [{"tenantID": "a", "webserviceURL": "http://a"}]

    r = client.post("/namespaces/ns/tenantinfos/p/reconcile")
    assert r.status_code == 200
    body = r.json()
    assert body["phase"] == "Done"
    assert body["created"] == ["tenant-a-config"]

    cms = client.get("/namespaces/ns/configmaps").json()
    assert [c["metadata"]["name"] for c in cms] == ["tenant-a-config"]
    assert cms[0]["data"] == {"tenantID": "a", "webserviceURL": "http://a"}
    assert cms[0]["metadata"]["ownerReferences"][0]["kind"] == "TenantInfo"

    r = client.post("/namespaces/ns/tenantinfos/p/reconcile")
    assert r.json()["created"] == [] and r.json()["updated"] == []


def test_reapply_replaces_tenants_and_removes_orphans(client):
    _apply(client, "p", [("a", "1"), ("b", "2")])
    client.post("/namespaces/ns/tenantinfos/p/reconcile")

    r = _apply(client, "p", [("b", "2")])
    assert r.json()["metadata"]["resourceVersion"] == 2

    r = client.post("/namespaces/ns/tenantinfos/p/reconcile")
    assert r.json()["deleted"] == ["tenant-a-config"]


def test_stale_resource_version_conflicts(client):
    _apply(client, "p", [("a", "1")])
    _apply(client, "p", [("a", "2")])

    r = _apply(client, "p", [("a", "3")], resource_version=1)
    assert r.status_code == 409


def test_get_missing_is_404(client):
    assert client.get("/namespaces/ns/tenantinfos/nope").status_code == 404
    assert client.delete("/namespaces/ns/tenantinfos/nope").status_code == 404


def test_reconcile_missing_parent_is_no_op(client):
    r = client.post("/namespaces/ns/tenantinfos/ghost/reconcile")
    assert r.status_code == 200
    assert r.json()["parent_found"] is False


def test_delete_parent_collects_children(client):
    _apply(client, "p", [("a", "1")])
    client.post("/namespaces/ns/tenantinfos/p/reconcile")

    r = client.delete("/namespaces/ns/tenantinfos/p")
    assert r.status_code == 200
    assert client.get("/namespaces/ns/configmaps").json() == []


def test_list_tenant_infos_by_namespace(client):
    _apply(client, "p", [], namespace="ns")
    _apply(client, "q", [], namespace="other")

    assert [t["metadata"]["name"] for t in client.get("/tenantinfos", params={"namespace": "ns"}).json()] == ["p"]
    assert len(client.get("/tenantinfos").json()) == 2


def test_events_and_status(client):
    _apply(client, "p", [("a", "1")])
    client.post("/namespaces/ns/tenantinfos/p/reconcile")

    messages = [e["message"] for e in client.get("/events", params={"limit": 10}).json()]
    assert "Created ConfigMap tenant-a-config for tenant a" in messages

    status = client.get("/status").json()
    assert status[0]["name"] == "p"
    assert status[0]["state"] == "done"


def test_invalid_body_is_rejected(client):
    r = client.put("/namespaces/ns/tenantinfos/p", json={"tenants": [{"tenantID": "a"}]})
    assert r.status_code == 422

from __future__ import annotations

import argparse
import json
import sys

import requests


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def _parse_tenant(raw: str) -> dict[str, str]:
    tenant_id, sep, url = raw.partition("=")
    if not sep or not tenant_id:
        raise argparse.ArgumentTypeError(f"expected ID=URL, got {raw!r}")
    return {"tenantID": tenant_id, "webserviceURL": url}


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Tenant Config Reconciler CLI")
    p.add_argument("--api", default="http://localhost:8000", help="API base URL")
    p.add_argument("-n", "--namespace", default="default")
    sub = p.add_subparsers(dest="cmd", required=True)

    s_list = sub.add_parser("list", help="List TenantInfo resources")
    s_list.add_argument("--all-namespaces", "-A", action="store_true")

    s_get = sub.add_parser("get", help="Show a TenantInfo")
    s_get.add_argument("name")

    s_apply = sub.add_parser("apply", help="Create or replace the tenant list of a TenantInfo")
    s_apply.add_argument("name")
    s_apply.add_argument("--tenant", action="append", type=_parse_tenant, default=[], metavar="ID=URL")
    s_apply.add_argument("--resource-version", type=int, default=0)

    s_del = sub.add_parser("delete", help="Delete a TenantInfo (its ConfigMaps are garbage collected)")
    s_del.add_argument("name")

    sub.add_parser("configmaps", help="List ConfigMaps in the namespace")

    s_rec = sub.add_parser("reconcile", help="Run one reconcile pass now")
    s_rec.add_argument("name")

    s_ev = sub.add_parser("events", help="Show events")
    s_ev.add_argument("--limit", type=int, default=20)

    sub.add_parser("status", help="Show last reconcile status per TenantInfo")

    args = p.parse_args(argv)

    base = args.api.rstrip("/")
    ns = args.namespace

    if args.cmd == "list":
        params = {} if args.all_namespaces else {"namespace": ns}
        r = requests.get(f"{base}/tenantinfos", params=params, timeout=10)
    elif args.cmd == "get":
        r = requests.get(f"{base}/namespaces/{ns}/tenantinfos/{args.name}", timeout=10)
    elif args.cmd == "apply":
        payload = {"tenants": args.tenant, "resource_version": args.resource_version}
        r = requests.put(f"{base}/namespaces/{ns}/tenantinfos/{args.name}", json=payload, timeout=30)
    elif args.cmd == "delete":
        r = requests.delete(f"{base}/namespaces/{ns}/tenantinfos/{args.name}", timeout=30)
    elif args.cmd == "configmaps":
        r = requests.get(f"{base}/namespaces/{ns}/configmaps", timeout=10)
    elif args.cmd == "reconcile":
        r = requests.post(f"{base}/namespaces/{ns}/tenantinfos/{args.name}/reconcile", timeout=60)
    elif args.cmd == "events":
        r = requests.get(f"{base}/events", params={"limit": args.limit}, timeout=10)
    elif args.cmd == "status":
        r = requests.get(f"{base}/status", timeout=10)
    else:
        return 2

    _print(r.json())
    return 0 if r.ok else 1


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))

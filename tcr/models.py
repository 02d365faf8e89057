from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar


TENANT_INFO = "TenantInfo"
CONFIG_MAP = "ConfigMap"

TENANT_INFO_API_VERSION = "multitenancy-management.example.com/v1"
CONFIG_MAP_API_VERSION = "v1"


@dataclass(frozen=True)
class Request:
    """Identity of a parent to reconcile."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass
class OwnerReference:
    api_version: str
    kind: str
    name: str
    uid: str
    controller: bool = False
    block_owner_deletion: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "name": self.name,
            "uid": self.uid,
            "controller": self.controller,
            "blockOwnerDeletion": self.block_owner_deletion,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> OwnerReference:
        return cls(
            api_version=raw.get("apiVersion", ""),
            kind=raw.get("kind", ""),
            name=raw.get("name", ""),
            uid=raw.get("uid", ""),
            controller=bool(raw.get("controller", False)),
            block_owner_deletion=bool(raw.get("blockOwnerDeletion", False)),
        )


@dataclass
class ObjectMeta:
    name: str
    namespace: str
    uid: str = ""  # assigned by the store on create
    resource_version: int = 0
    created_at: str | None = None
    owner_references: list[OwnerReference] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "namespace": self.namespace,
            "uid": self.uid,
            "resourceVersion": self.resource_version,
            "creationTimestamp": self.created_at,
            "ownerReferences": [r.to_dict() for r in self.owner_references],
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ObjectMeta:
        return cls(
            name=raw["name"],
            namespace=raw["namespace"],
            uid=raw.get("uid", ""),
            resource_version=int(raw.get("resourceVersion", 0)),
            created_at=raw.get("creationTimestamp"),
            owner_references=[OwnerReference.from_dict(r) for r in raw.get("ownerReferences", [])],
        )


@dataclass
class TenantSpec:
    tenant_id: str
    webservice_url: str

    def to_dict(self) -> dict[str, str]:
        return {"tenantID": self.tenant_id, "webserviceURL": self.webservice_url}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> TenantSpec:
        return cls(tenant_id=raw["tenantID"], webservice_url=raw["webserviceURL"])


@dataclass
class TenantInfo:
    """Parent resource: the desired set of tenants for a namespace."""

    kind: ClassVar[str] = TENANT_INFO
    api_version: ClassVar[str] = TENANT_INFO_API_VERSION

    metadata: ObjectMeta
    tenants: list[TenantSpec] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "metadata": self.metadata.to_dict(),
            "spec": {"tenants": [t.to_dict() for t in self.tenants]},
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> TenantInfo:
        spec = raw.get("spec") or {}
        return cls(
            metadata=ObjectMeta.from_dict(raw["metadata"]),
            tenants=[TenantSpec.from_dict(t) for t in spec.get("tenants") or []],
        )


@dataclass
class ConfigMap:
    """Child resource: one tenant's configuration as string key/value data."""

    kind: ClassVar[str] = CONFIG_MAP
    api_version: ClassVar[str] = CONFIG_MAP_API_VERSION

    metadata: ObjectMeta
    data: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "metadata": self.metadata.to_dict(),
            "data": dict(self.data),
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ConfigMap:
        return cls(metadata=ObjectMeta.from_dict(raw["metadata"]), data=dict(raw.get("data") or {}))


RESOURCE_TYPES: dict[str, type] = {
    TENANT_INFO: TenantInfo,
    CONFIG_MAP: ConfigMap,
}


def resource_from_dict(raw: dict[str, Any]) -> Any:
    try:
        cls = RESOURCE_TYPES[raw["kind"]]
    except KeyError as e:
        raise ValueError(f"Unknown resource kind: {raw.get('kind')!r}") from e
    return cls.from_dict(raw)

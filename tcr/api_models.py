from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from .models import ObjectMeta, TenantInfo, TenantSpec


class TenantModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tenant_id: str = Field(..., alias="tenantID", description="Tenant identifier, unique within the list")
    webservice_url: str = Field(..., alias="webserviceURL", description="Tenant service endpoint")


class TenantInfoSpecRequest(BaseModel):
    tenants: list[TenantModel] = Field(default_factory=list)
    resource_version: int = Field(0, ge=0, description="Expected resource version; 0 writes unconditionally")

    def to_resource(self, namespace: str, name: str) -> TenantInfo:
        return TenantInfo(
            metadata=ObjectMeta(name=name, namespace=namespace, resource_version=self.resource_version),
            tenants=[TenantSpec(tenant_id=t.tenant_id, webservice_url=t.webservice_url) for t in self.tenants],
        )


class ReconcileResponse(BaseModel):
    namespace: str
    name: str
    phase: str
    parent_found: bool
    created: list[str]
    updated: list[str]
    deleted: list[str]

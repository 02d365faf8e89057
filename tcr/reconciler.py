from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from . import db
from .index import owned_children
from .models import CONFIG_MAP, TENANT_INFO, ConfigMap, ObjectMeta, OwnerReference, Request, TenantInfo
from .store import CallContext, NotFound, Store

logger = logging.getLogger(__name__)


CONFIG_NAME_PREFIX = "tenant-"
CONFIG_NAME_SUFFIX = "-config"

EventRecorder = Callable[..., None]


def config_map_name(tenant_id: str) -> str:
    return f"{CONFIG_NAME_PREFIX}{tenant_id}{CONFIG_NAME_SUFFIX}"


def tenant_id_from_name(name: str) -> str:
    # Ambiguous for ids that themselves end in "-config" or start with "tenant-".
    return name.removeprefix(CONFIG_NAME_PREFIX).removesuffix(CONFIG_NAME_SUFFIX)


class OwnerReferenceError(Exception):
    """The owner reference for a child could not be built or attached."""


def set_controller_reference(owner: TenantInfo, obj: ConfigMap) -> None:
    """Mark ``owner`` as the managing controller of ``obj``.

    Fails if the owner has not been persisted yet (no uid), lives in another
    namespace, or ``obj`` is already controlled by a different owner.
    """
    meta = owner.metadata
    if not meta.uid:
        raise OwnerReferenceError(f"{owner.kind} {meta.namespace}/{meta.name} has no uid")
    if meta.namespace != obj.metadata.namespace:
        raise OwnerReferenceError(
            f"cross-namespace owner references are disallowed: owner in '{meta.namespace}', "
            f"object in '{obj.metadata.namespace}'"
        )
    for ref in obj.metadata.owner_references:
        if ref.controller and ref.uid != meta.uid:
            raise OwnerReferenceError(
                f"{obj.kind} {obj.metadata.name} is already controlled by {ref.kind} {ref.name}"
            )

    new_ref = OwnerReference(
        api_version=owner.api_version,
        kind=owner.kind,
        name=meta.name,
        uid=meta.uid,
        controller=True,
        block_owner_deletion=True,
    )
    refs = [r for r in obj.metadata.owner_references if r.uid != meta.uid]
    obj.metadata.owner_references = [new_ref] + refs


@dataclass
class DesiredState:
    config_maps: dict[str, dict[str, str]]  # name -> data, in spec order
    tenant_ids: set[str]


def desired_config_maps(tenant_info: TenantInfo) -> DesiredState:
    """Children that should exist for a parent.

    A tenant id listed more than once keeps its last entry.
    """
    config_maps: dict[str, dict[str, str]] = {}
    tenant_ids: set[str] = set()
    for tenant in tenant_info.tenants:
        tenant_ids.add(tenant.tenant_id)
        config_maps[config_map_name(tenant.tenant_id)] = {
            "tenantID": tenant.tenant_id,
            "webserviceURL": tenant.webservice_url,
        }
    return DesiredState(config_maps=config_maps, tenant_ids=tenant_ids)


class Phase(str, Enum):
    START = "Start"
    DESIRED_COMPUTED = "DesiredComputed"
    CHILDREN_RECONCILED = "ChildrenReconciled"
    ORPHANS_COLLECTED = "OrphansCollected"
    DONE = "Done"
    ABORTED = "Aborted"


@dataclass
class ReconcileResult:
    request: Request
    phase: Phase = Phase.START
    parent_found: bool = True
    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)

    @property
    def writes(self) -> int:
        return len(self.created) + len(self.updated) + len(self.deleted)


class TenantInfoReconciler:
    """Converges the ConfigMaps of one TenantInfo to its tenant list.

    A pass is: fetch parent, compute desired children, create/update each one,
    delete owned children that are no longer desired. Any store failure other
    than a missing parent aborts the pass and is raised to the caller, who is
    expected to invoke the whole pass again later.
    """

    def __init__(self, store: Store, record_event: EventRecorder | None = None):
        self.store = store
        self.record_event = record_event or db.event_recorder(store)

    def reconcile(self, request: Request, ctx: CallContext | None = None) -> ReconcileResult:
        result = ReconcileResult(request=request)
        try:
            tenant_info = self._fetch_parent(request, ctx)
            if tenant_info is None:
                result.parent_found = False
                result.phase = Phase.DONE
                return result

            desired = desired_config_maps(tenant_info)
            result.phase = Phase.DESIRED_COMPUTED

            for name, data in desired.config_maps.items():
                self._reconcile_child(tenant_info, name, data, result, ctx)
            result.phase = Phase.CHILDREN_RECONCILED

            self._collect_orphans(tenant_info, desired, result, ctx)
            result.phase = Phase.ORPHANS_COLLECTED
        except Exception:
            logger.debug("Reconcile of %s aborted after phase %s", request, result.phase.value)
            result.phase = Phase.ABORTED
            raise

        result.phase = Phase.DONE
        return result

    def _fetch_parent(self, request: Request, ctx: CallContext | None) -> TenantInfo | None:
        try:
            return self.store.get(TENANT_INFO, request.namespace, request.name, ctx=ctx)
        except NotFound:
            # Children are removed by the store's owner-reference garbage collection.
            logger.info("TenantInfo %s not found. Assuming it was deleted.", request)
            return None
        except Exception as e:
            self._error(request, f"Failed to get TenantInfo: {e}")
            raise

    def _reconcile_child(
        self,
        tenant_info: TenantInfo,
        name: str,
        data: dict[str, str],
        result: ReconcileResult,
        ctx: CallContext | None,
    ) -> None:
        """Create the child if absent, overwrite its data if it drifted, else leave it alone."""
        request = result.request
        namespace = tenant_info.metadata.namespace
        tenant_id = data["tenantID"]

        try:
            found = self.store.get(CONFIG_MAP, namespace, name, ctx=ctx)
        except NotFound:
            found = None
        except Exception as e:
            self._error(request, f"Failed to get ConfigMap {name}: {e}")
            raise

        if found is None:
            cm = ConfigMap(metadata=ObjectMeta(name=name, namespace=namespace), data=dict(data))
            try:
                set_controller_reference(tenant_info, cm)
            except OwnerReferenceError as e:
                self._error(request, f"Failed to set controller reference on ConfigMap {name}: {e}")
                raise
            try:
                self.store.create(cm, ctx=ctx)
            except Exception as e:
                self._error(request, f"Failed to create ConfigMap for tenant {tenant_id}: {e}")
                raise
            self._info(request, f"Created ConfigMap {name} for tenant {tenant_id}")
            result.created.append(name)
            return

        if found.data == data:
            return

        found.data = dict(data)
        try:
            self.store.update(found, ctx=ctx)
        except Exception as e:
            self._error(request, f"Failed to update ConfigMap for tenant {tenant_id}: {e}")
            raise
        self._info(request, f"Updated ConfigMap {name} for tenant {tenant_id}")
        result.updated.append(name)

    def _collect_orphans(
        self,
        tenant_info: TenantInfo,
        desired: DesiredState,
        result: ReconcileResult,
        ctx: CallContext | None,
    ) -> None:
        """Delete owned children whose tenant is no longer in the spec."""
        request = result.request
        meta = tenant_info.metadata
        try:
            children = owned_children(self.store, meta.namespace, meta.uid, ctx=ctx)
        except Exception as e:
            self._error(request, f"Failed to list child ConfigMaps: {e}")
            raise

        for cm in children:
            if tenant_id_from_name(cm.metadata.name) in desired.tenant_ids:
                continue
            try:
                self.store.delete(cm, ctx=ctx)
            except NotFound:
                logger.debug("Orphaned ConfigMap %s already gone", cm.metadata.name)
                result.deleted.append(cm.metadata.name)
                continue
            except Exception as e:
                self._error(request, f"Failed to delete ConfigMap {cm.metadata.name}: {e}")
                raise
            self._info(request, f"Deleted orphaned ConfigMap {cm.metadata.name}")
            result.deleted.append(cm.metadata.name)

    def _info(self, request: Request, message: str) -> None:
        logger.info("%s: %s", request, message)
        self._record("INFO", request, message)

    def _error(self, request: Request, message: str) -> None:
        logger.error("%s: %s", request, message)
        self._record("ERROR", request, message)

    def _record(self, level: str, request: Request, message: str) -> None:
        # The event log is best-effort; it must not replace or cause a pass outcome.
        try:
            self.record_event(level, message, namespace=request.namespace, name=request.name)
        except Exception:
            logger.exception("%s: failed to record %s event", request, level)

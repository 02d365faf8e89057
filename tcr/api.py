from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse

from . import db
from .api_models import ReconcileResponse, TenantInfoSpecRequest
from .controller import Controller
from .models import CONFIG_MAP, TENANT_INFO, Request
from .reconciler import OwnerReferenceError
from .settings import settings
from .store import AlreadyExists, Conflict, NotFound, Store, StoreError


def _status_for(exc: StoreError) -> int:
    if isinstance(exc, NotFound):
        return 404
    if isinstance(exc, (AlreadyExists, Conflict)):
        return 409
    return 503


def create_app(store: Store | None = None, start_controller: bool | None = None) -> FastAPI:
    """Build the API.

    Without an explicit store, a ``SqliteStore`` on ``TCR_DB_PATH`` is opened at
    startup. The controller loop runs unless ``start_controller`` (or
    ``TCR_START_CONTROLLER``) is false; the reconcile endpoint works either way.
    """
    app = FastAPI(title="Tenant Config Reconciler")
    app.state.store = store
    app.state.controller = None
    app.state.record_event = db.log_event
    run_loop = settings.start_controller if start_controller is None else start_controller

    def _controller() -> Controller:
        if app.state.controller is None:
            raise HTTPException(status_code=503, detail="controller not initialized")
        return app.state.controller

    @app.on_event("startup")
    def startup() -> None:
        logging.basicConfig(level=settings.log_level.upper())
        db.init_db()
        if app.state.store is None:
            app.state.store = db.SqliteStore()
        app.state.record_event = db.event_recorder(app.state.store)
        controller = Controller(app.state.store, record_event=app.state.record_event)
        controller.setup()
        app.state.controller = controller
        if run_loop:
            controller.start()

    @app.on_event("shutdown")
    def shutdown() -> None:
        if app.state.controller is not None:
            app.state.controller.stop()

    @app.exception_handler(StoreError)
    def store_error_handler(_request, exc: StoreError) -> JSONResponse:
        return JSONResponse(status_code=_status_for(exc), content={"detail": str(exc)})

    @app.exception_handler(OwnerReferenceError)
    def owner_reference_error_handler(_request, exc: OwnerReferenceError) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.get("/tenantinfos")
    def list_tenant_infos(namespace: str | None = None) -> list[dict]:
        return [t.to_dict() for t in app.state.store.list(TENANT_INFO, namespace)]

    @app.get("/namespaces/{namespace}/tenantinfos/{name}")
    def get_tenant_info(namespace: str, name: str) -> dict:
        return app.state.store.get(TENANT_INFO, namespace, name).to_dict()

    @app.put("/namespaces/{namespace}/tenantinfos/{name}")
    def apply_tenant_info(namespace: str, name: str, body: TenantInfoSpecRequest) -> dict:
        store: Store = app.state.store
        desired = body.to_resource(namespace, name)
        try:
            current = store.get(TENANT_INFO, namespace, name)
        except NotFound:
            created = store.create(desired)
            app.state.record_event("INFO", f"Created TenantInfo with {len(desired.tenants)} tenant(s)", namespace, name)
            return created.to_dict()
        current.tenants = desired.tenants
        if body.resource_version:
            current.metadata.resource_version = body.resource_version
        updated = store.update(current)
        app.state.record_event("INFO", f"Updated TenantInfo to {len(desired.tenants)} tenant(s)", namespace, name)
        return updated.to_dict()

    @app.delete("/namespaces/{namespace}/tenantinfos/{name}")
    def delete_tenant_info(namespace: str, name: str) -> dict:
        store: Store = app.state.store
        current = store.get(TENANT_INFO, namespace, name)
        store.delete(current)
        app.state.record_event("INFO", "Deleted TenantInfo", namespace, name)
        return {"deleted": f"{namespace}/{name}"}

    @app.get("/namespaces/{namespace}/configmaps")
    def list_config_maps(namespace: str) -> list[dict]:
        return [cm.to_dict() for cm in app.state.store.list(CONFIG_MAP, namespace)]

    @app.post("/namespaces/{namespace}/tenantinfos/{name}/reconcile", response_model=ReconcileResponse)
    def reconcile(namespace: str, name: str) -> ReconcileResponse:
        result = _controller().run_once(Request(namespace, name))
        return ReconcileResponse(
            namespace=namespace,
            name=name,
            phase=result.phase.value,
            parent_found=result.parent_found,
            created=result.created,
            updated=result.updated,
            deleted=result.deleted,
        )

    @app.get("/events")
    def events(limit: int = Query(100, ge=1, le=1000)) -> list[dict]:
        store = app.state.store
        if isinstance(store, db.SqliteStore):
            return store.latest_events(limit)
        return db.latest_events(limit)

    @app.get("/status")
    def status() -> list[dict]:
        return [vars(st) for st in _controller().runtime.list_statuses()]

    return app


app = create_app()

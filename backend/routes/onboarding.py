"""
SOLAR CRM - Routes Onboarding
Imports de planilhas (consolidation) + dashboard du pipeline.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from models.onboarding import VALID_SOURCE_TYPES, ImportRequest, SourceType
from services.consolidation_engine import (
    ChunkCommitError,
    RunInProgressError,
    TenantIndexError,
    run_consolidation,
)
from services.document_store import DocumentStore, get_store
from services.onboarding_aggregations import DashboardRegistry, dashboards
from services.permissions import (
    get_tenant_scope_from_request,
    require_permission,
    validate_tenant_access,
)

router = APIRouter(prefix="/onboarding", tags=["Onboarding"])
logger = logging.getLogger("onboarding_routes")


def get_dashboards() -> DashboardRegistry:
    """Registre des dashboards du process (dépendance FastAPI)."""
    return dashboards


def _resolve_tenant(user: dict, request: Request, tenant: Optional[str]) -> str:
    if not tenant:
        tenant = get_tenant_scope_from_request(user, request)
    if not tenant:
        raise HTTPException(status_code=400, detail="Tenant requis")
    return validate_tenant_access(user, tenant)


# ==================== IMPORTS ====================

@router.post("/imports/{source_type}")
async def import_rows(
    source_type: str,
    data: ImportRequest,
    user: dict = Depends(require_permission("onboarding.import")),
    store: DocumentStore = Depends(get_store),
    registry: DashboardRegistry = Depends(get_dashboards),
):
    """
    Consolide les lignes d'une planilha déjà parsée.
    source_type: clients | apportionment | invoicing
    """
    if source_type not in VALID_SOURCE_TYPES:
        raise HTTPException(
            status_code=400,
            detail=f"Source invalide: {source_type}. Valides: {VALID_SOURCE_TYPES}"
        )
    tenant = validate_tenant_access(user, data.tenant)

    try:
        stats = await run_consolidation(
            data.rows,
            tenant,
            SourceType(source_type),
            store=store,
            executed_by=user.get("email", "system"),
        )
    except RunInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except TenantIndexError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except ChunkCommitError as e:
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "status": "partial",
                "tenant": tenant,
                "source_type": source_type,
                "failed_chunk": e.failed_chunk,
                "detail": str(e),
                "stats": e.stats.model_dump(mode="json"),
            },
        )

    # Un dashboard déjà ouvert reflète tout de suite le nouvel état
    if tenant in registry.tenants():
        await registry.get(tenant).refresh()

    return {
        "success": True,
        "status": "completed",
        "tenant": tenant,
        "source_type": source_type,
        "stats": stats.model_dump(mode="json"),
    }


@router.get("/imports")
async def list_imports(
    request: Request,
    tenant: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    skip: int = Query(0, ge=0),
    user: dict = Depends(require_permission("import_logs.view")),
    store: DocumentStore = Depends(get_store),
):
    """Historique des imports d'une base (plus récent d'abord)"""
    tenant = _resolve_tenant(user, request, tenant)
    result = await store.list_import_logs(tenant, limit=limit, skip=skip)
    return {"tenant": tenant, **result}


# ==================== DASHBOARD ====================

@router.get("/dashboard")
async def get_dashboard(
    request: Request,
    tenant: Optional[str] = None,
    user: dict = Depends(require_permission("onboarding.view")),
    registry: DashboardRegistry = Depends(get_dashboards),
):
    """
    Dashboard du pipeline. Calculé au premier accès puis servi depuis
    l'état courant. status="error" => retry_url + _errors.
    """
    tenant = _resolve_tenant(user, request, tenant)
    state = await registry.get(tenant).get()
    return state.model_dump(mode="json", by_alias=True)


@router.post("/dashboard/refresh")
async def refresh_dashboard(
    request: Request,
    tenant: Optional[str] = None,
    user: dict = Depends(require_permission("onboarding.view")),
    registry: DashboardRegistry = Depends(get_dashboards),
):
    """Refresh manuel"""
    tenant = _resolve_tenant(user, request, tenant)
    state = await registry.get(tenant).refresh()
    logger.info(f"[DASHBOARD] manual refresh tenant={tenant} by={user.get('email')} status={state.status}")
    return state.model_dump(mode="json", by_alias=True)

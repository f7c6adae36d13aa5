"""API routes for sync status, sync-run history and the manual trigger."""

from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List
from uuid import UUID
import logging

from portal_sync.auth import require_admin_token
from portal_sync.database import get_db
from portal_sync.exceptions import SyncConfigurationError, TenantNotEligible, TenantNotFound
from portal_sync.repositories import Repositories
from portal_sync.schemas.sync import SyncRunResponse, SyncStatusResponse, TriggerResponse
from portal_sync.services.sync_orchestrator import SyncOrchestrator
from portal_sync.services.sync_status import get_sync_status

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/sync", tags=["sync"])


async def get_repositories(db: AsyncSession = Depends(get_db)) -> Repositories:
    return Repositories.for_session(db)


def get_orchestrator() -> SyncOrchestrator:
    return SyncOrchestrator()


async def _require_tenant(repos: Repositories, tenant_id: UUID):
    tenant = await repos.tenants.get(tenant_id)
    if tenant is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tenant not found")
    return tenant


@router.get("/status/{tenant_id}", response_model=SyncStatusResponse)
async def sync_status(
    tenant_id: UUID,
    repos: Repositories = Depends(get_repositories),
):
    """Last sync time and whether the tenant's data is stale."""
    await _require_tenant(repos, tenant_id)
    return await get_sync_status(repos.sync_runs, tenant_id)


@router.get("/runs/{tenant_id}", response_model=List[SyncRunResponse])
async def sync_runs(
    tenant_id: UUID,
    limit: int = Query(20, ge=1, le=200),
    repos: Repositories = Depends(get_repositories),
):
    """Most recent sync runs for a tenant, newest first."""
    await _require_tenant(repos, tenant_id)
    return await repos.sync_runs.recent(tenant_id, limit=limit)


@router.post(
    "/trigger/{tenant_id}",
    response_model=TriggerResponse,
    dependencies=[Depends(require_admin_token)],
)
async def trigger_sync(
    tenant_id: UUID,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """
    Sync one tenant now and return the run outcome.

    **Requires:** admin bearer token
    """
    logger.info(f"Manual sync requested for tenant {tenant_id}")
    try:
        return await orchestrator.sync_tenant_by_id(tenant_id)
    except TenantNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tenant not found")
    except TenantNotEligible as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.reason)
    except SyncConfigurationError as e:
        logger.error(f"Manual sync for tenant {tenant_id} could not run: {e}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

"""Sync freshness read model behind the "last sync / stale data" banner."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

from portal_sync.config import settings
from portal_sync.models import SyncRun, SyncStatus
from portal_sync.repositories import SyncRunStore
from portal_sync.services.sync_tracker import Clock, utcnow


@dataclass
class TenantSyncStatus:
    tenant_id: UUID
    status: Optional[str]
    last_sync_at: Optional[datetime]
    is_stale: bool
    records_updated: Optional[int] = None
    error_message: Optional[str] = None


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def describe_run(
    tenant_id: UUID,
    run: Optional[SyncRun],
    now: datetime,
    stale_after: Optional[timedelta] = None,
) -> TenantSyncStatus:
    """
    Staleness of a tenant given its latest SyncRun.

    Stale when there is no run, the last run failed, or the last activity
    is older than ``stale_after`` (SYNC_STALE_AFTER_HOURS by default).
    """
    if stale_after is None:
        stale_after = timedelta(hours=settings.SYNC_STALE_AFTER_HOURS)

    if run is None:
        return TenantSyncStatus(tenant_id=tenant_id, status=None, last_sync_at=None, is_stale=True)

    last_sync_at = _as_utc(run.finished_at) or _as_utc(run.started_at)
    is_stale = (
        run.status == SyncStatus.FAILED
        or last_sync_at is None
        or now - last_sync_at > stale_after
    )
    return TenantSyncStatus(
        tenant_id=tenant_id,
        status=run.status,
        last_sync_at=last_sync_at,
        is_stale=is_stale,
        records_updated=run.records_updated,
        error_message=run.error_message,
    )


async def get_sync_status(
    store: SyncRunStore,
    tenant_id: UUID,
    clock: Clock = utcnow,
) -> TenantSyncStatus:
    run = await store.latest(tenant_id)
    return describe_run(tenant_id, run, clock())

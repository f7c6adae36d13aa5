# backend/portal_sync/services/sync_orchestrator.py
"""
Sync Orchestrator - one pass over every eligible tenant.

Per tenant:
1. Start a SyncRun
2. For leads, opportunities, notes, activities (in that order):
   fetch (with retry) -> store raw snapshot -> normalize
3. Finish the SyncRun as success (with record count) or failed (with message)
4. On the snapshot weekday, resolve the report week and freeze live rollups

A failing tenant never stops the pass; only a process-fatal error (tenants
cannot be loaded, sync runs cannot be recorded) aborts it.
"""

import asyncio
import logging
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, List, Optional
from uuid import UUID

from portal_sync.config import settings
from portal_sync.exceptions import (
    SyncConfigurationError,
    SyncError,
    TenantNotEligible,
    TenantNotFound,
    TenantSyncTimeout,
)
from portal_sync.models import Endpoint, SyncStatus, Tenant
from portal_sync.repositories import Repositories, open_repositories
from portal_sync.services.clienttether_service import ApiResponse, create_clienttether_service
from portal_sync.services.normalizers import (
    as_records,
    normalize_activities,
    normalize_hot_list,
    normalize_lead_metrics,
    normalize_notes,
    normalize_pipeline_stages,
)
from portal_sync.services.report_weeks import (
    create_weekly_snapshot,
    find_or_create_report_week,
    is_snapshot_day,
    tenant_today,
)
from portal_sync.services.retry import Sleep, fetch_endpoint
from portal_sync.services.snapshot_store import store_raw_snapshot
from portal_sync.services.sync_tracker import Clock, SyncRunTracker, utcnow
from portal_sync.services.tenant_selector import ineligibility_reason, select_tenants

logger = logging.getLogger(__name__)

UnitOfWork = Callable[[], AbstractAsyncContextManager]


@dataclass
class TenantSyncResult:
    tenant_id: UUID
    tenant_name: str
    status: str
    run_id: Optional[UUID] = None
    records_updated: int = 0
    error_message: Optional[str] = None
    snapshot_rows: Optional[int] = None
    snapshot_error: Optional[str] = None


@dataclass
class SyncSummary:
    started_at: datetime
    finished_at: Optional[datetime] = None
    results: List[TenantSyncResult] = field(default_factory=list)

    @property
    def tenants(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.status == SyncStatus.SUCCESS)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.status == SyncStatus.FAILED)

    @property
    def records_updated(self) -> int:
        return sum(r.records_updated for r in self.results)

    @property
    def snapshots(self) -> int:
        return sum(1 for r in self.results if r.snapshot_rows is not None)

    def to_dict(self) -> dict:
        return {
            "tenants": self.tenants,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "records_updated": self.records_updated,
            "snapshots": self.snapshots,
        }


class SyncOrchestrator:
    """
    Runs the tenant sync pipeline.

    Every collaborator with side effects is injected: ``unit_of_work`` opens
    the stores, ``client_factory`` builds a ClientTether client for a tenant,
    ``clock`` decides "now" (and so the snapshot day), ``sleep`` is used
    between retries.
    """

    def __init__(
        self,
        unit_of_work: UnitOfWork = open_repositories,
        client_factory: Callable[[Tenant], Any] = create_clienttether_service,
        clock: Clock = utcnow,
        sleep: Sleep = asyncio.sleep,
        concurrency: Optional[int] = None,
        tenant_timeout: Optional[float] = None,
        retry_attempts: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
        snapshot_weekday: Optional[int] = None,
    ):
        self.unit_of_work = unit_of_work
        self.client_factory = client_factory
        self.clock = clock
        self.sleep = sleep
        self.concurrency = concurrency or settings.SYNC_CONCURRENCY
        self.tenant_timeout = tenant_timeout if tenant_timeout is not None else settings.SYNC_TENANT_TIMEOUT_SECONDS
        self.retry_attempts = retry_attempts or settings.SYNC_RETRY_ATTEMPTS
        self.retry_base_delay = (
            retry_base_delay if retry_base_delay is not None else settings.SYNC_RETRY_BASE_DELAY_SECONDS
        )
        self.snapshot_weekday = snapshot_weekday if snapshot_weekday is not None else settings.SNAPSHOT_WEEKDAY

    # ------------------------------------------------------------------
    # Pass
    # ------------------------------------------------------------------

    async def run_sync(self) -> SyncSummary:
        """Sync every eligible tenant once. Raises SyncConfigurationError when fatal."""
        summary = SyncSummary(started_at=self.clock())
        logger.info(f"Starting sync pass at {summary.started_at.isoformat()}")

        try:
            async with self.unit_of_work() as repos:
                tenants = await select_tenants(repos.tenants)
        except SyncError:
            raise
        except Exception as e:
            raise SyncConfigurationError(f"Could not load tenants: {e}") from e

        if not tenants:
            logger.info("No tenants to sync")
        elif self.concurrency <= 1:
            for tenant in tenants:
                summary.results.append(await self.sync_tenant(tenant))
        else:
            semaphore = asyncio.Semaphore(self.concurrency)

            async def bounded(tenant: Tenant) -> TenantSyncResult:
                async with semaphore:
                    return await self.sync_tenant(tenant)

            tasks = [asyncio.create_task(bounded(t)) for t in tenants]
            try:
                summary.results.extend(await asyncio.gather(*tasks))
            except BaseException:
                # A fatal error (or cancellation) aborts the pass: no tenant keeps syncing past it
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise

        summary.finished_at = self.clock()
        logger.info(
            f"Sync pass finished: {summary.succeeded}/{summary.tenants} succeeded, "
            f"{summary.failed} failed, {summary.records_updated} records updated, "
            f"{summary.snapshots} weekly snapshot(s)"
        )
        return summary

    # ------------------------------------------------------------------
    # Single tenant
    # ------------------------------------------------------------------

    async def sync_tenant_by_id(self, tenant_id: UUID) -> TenantSyncResult:
        """Manual trigger: load one tenant, check eligibility, sync it."""
        async with self.unit_of_work() as repos:
            tenant = await repos.tenants.get(tenant_id)

        if tenant is None:
            raise TenantNotFound(tenant_id)
        reason = ineligibility_reason(tenant)
        if reason:
            raise TenantNotEligible(tenant_id, reason)

        return await self.sync_tenant(tenant)

    async def sync_tenant(self, tenant: Tenant) -> TenantSyncResult:
        """
        Sync one tenant inside its own SyncRun.

        Per-tenant errors are recorded on the run and returned in the result.
        Cancellation marks the run failed and propagates.
        """
        logger.info(f"Syncing tenant: {tenant.name} ({tenant.id})")
        result = TenantSyncResult(tenant_id=tenant.id, tenant_name=tenant.name, status=SyncStatus.RUNNING)

        async with self.unit_of_work() as repos:
            tracker = SyncRunTracker(repos.sync_runs, self.clock)
            try:
                result.run_id = await tracker.start(tenant.id)
            except Exception as e:
                raise SyncConfigurationError(f"Could not record sync run for tenant {tenant.id}: {e}") from e

            try:
                result.records_updated = await self._run_with_timeout(repos, tenant)
            except asyncio.CancelledError:
                logger.warning(f"Sync cancelled for tenant {tenant.name}")
                await tracker.fail(result.run_id, "cancelled")
                raise
            except Exception as e:
                result.status = SyncStatus.FAILED
                result.error_message = str(e) or e.__class__.__name__
                result.records_updated = 0
                logger.error(f"ERROR syncing tenant {tenant.name}: {result.error_message}")
                await tracker.fail(result.run_id, result.error_message)
                return result

            await tracker.succeed(result.run_id, result.records_updated)
            result.status = SyncStatus.SUCCESS
            logger.info(f"Completed tenant {tenant.name}: {result.records_updated} records updated")

            try:
                result.snapshot_rows = await self._maybe_snapshot(repos, tenant)
            except Exception as e:
                result.snapshot_error = str(e) or e.__class__.__name__
                logger.error(f"Weekly snapshot failed for tenant {tenant.name}: {result.snapshot_error}")

        return result

    async def _run_with_timeout(self, repos: Repositories, tenant: Tenant) -> int:
        if not self.tenant_timeout:
            return await self._sync_entities(repos, tenant)
        try:
            return await asyncio.wait_for(self._sync_entities(repos, tenant), timeout=self.tenant_timeout)
        except asyncio.TimeoutError as e:
            raise TenantSyncTimeout(tenant.id, self.tenant_timeout) from e

    async def _fetch(
        self,
        repos: Repositories,
        tenant: Tenant,
        endpoint: str,
        call: Callable[[], Awaitable[ApiResponse]],
    ) -> list:
        """Fetch with retry and store the raw payload. Returns the records (may be empty)."""
        logger.info(f"Fetching {endpoint} for tenant {tenant.name}")
        payload = await fetch_endpoint(
            call,
            endpoint,
            max_attempts=self.retry_attempts,
            base_delay=self.retry_base_delay,
            sleep=self.sleep,
        )
        await store_raw_snapshot(repos.raw_snapshots, tenant.id, endpoint, payload, self.clock())

        records = as_records(payload)
        if not records:
            logger.info(f"No data from {endpoint} for tenant {tenant.name}, keeping previous rows")
        else:
            logger.info(f"Fetched {len(records)} record(s) from {endpoint}")
        return records

    async def _sync_entities(self, repos: Repositories, tenant: Tenant) -> int:
        client = self.client_factory(tenant)
        total = 0

        leads = await self._fetch(repos, tenant, Endpoint.LEADS, client.get_leads)
        if leads:
            total += await normalize_lead_metrics(repos.lead_metrics, tenant.id, leads)

        opportunities = await self._fetch(repos, tenant, Endpoint.OPPORTUNITIES, client.get_opportunities)
        if opportunities:
            total += await normalize_pipeline_stages(repos.pipeline_stages, tenant.id, opportunities)
            total += await normalize_hot_list(repos.hot_list, tenant.id, opportunities)

        notes = await self._fetch(repos, tenant, Endpoint.NOTES, client.get_notes)
        if notes:
            total += await normalize_notes(repos.notes, tenant.id, notes)

        activities = await self._fetch(repos, tenant, Endpoint.ACTIVITIES, client.get_scheduled_activities)
        if activities:
            total += await normalize_activities(repos.activities, tenant.id, activities)

        return total

    # ------------------------------------------------------------------
    # Weekly snapshot
    # ------------------------------------------------------------------

    async def _maybe_snapshot(self, repos: Repositories, tenant: Tenant) -> Optional[int]:
        """Freeze live rollups on the snapshot weekday. Returns rows written, or None."""
        today = tenant_today(self.clock(), tenant.timezone)
        if not is_snapshot_day(today, self.snapshot_weekday):
            return None

        logger.info(f"Week boundary {today.isoformat()} - creating weekly snapshot for {tenant.name}")
        report_week = await find_or_create_report_week(
            repos.report_weeks, tenant.id, today, tenant.timezone
        )
        rows = await create_weekly_snapshot(
            repos.lead_metrics, repos.pipeline_stages, tenant.id, report_week.id
        )

        logger.info(f"Weekly snapshot created for {tenant.name}: {rows} rows")
        return rows

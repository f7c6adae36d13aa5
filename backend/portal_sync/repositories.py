# backend/portal_sync/repositories.py
"""
Narrow storage interfaces used by the sync engine, plus their SQLAlchemy
implementations.

Each normalizer and service depends only on the store it needs, so the
whole pipeline runs against in-memory fakes in tests and against an
AsyncSession in production. Replace-set writes (delete + insert) always run
inside one transaction via ``atomic()``.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Sequence
from uuid import UUID

from sqlalchemy import delete, desc, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from portal_sync.database import AsyncSessionLocal, atomic
from portal_sync.models import (
    HotListItem,
    LeadMetric,
    Note,
    PipelineStageCount,
    RawSnapshot,
    ReportWeek,
    ScheduledActivity,
    SyncRun,
    SyncStatus,
    Tenant,
)

logger = logging.getLogger(__name__)

Row = Dict[str, Any]


# ============================================================================
# INTERFACES
# ============================================================================

class TenantStore(Protocol):
    async def list_tenants(self) -> List[Tenant]: ...

    async def get(self, tenant_id: UUID) -> Optional[Tenant]: ...


class SyncRunStore(Protocol):
    async def start(self, tenant_id: UUID, started_at: datetime) -> UUID: ...

    async def finish(
        self,
        run_id: UUID,
        status: str,
        finished_at: datetime,
        records_updated: int = 0,
        error_message: Optional[str] = None,
    ) -> None: ...

    async def latest(self, tenant_id: UUID) -> Optional[SyncRun]: ...

    async def recent(self, tenant_id: UUID, limit: int = 20) -> List[SyncRun]: ...


class RawSnapshotStore(Protocol):
    async def append(self, tenant_id: UUID, endpoint: str, payload: Any, fetched_at: datetime) -> None: ...


class RollupStore(Protocol):
    """Live/historical rollup table (lead metrics, pipeline stages)."""

    async def replace_live(self, tenant_id: UUID, rows: Sequence[Row]) -> int: ...

    async def list_live(self, tenant_id: UUID) -> List[Row]: ...

    async def replace_for_week(self, tenant_id: UUID, report_week_id: UUID, rows: Sequence[Row]) -> int: ...


class LeadMetricStore(RollupStore, Protocol):
    pass


class PipelineStageStore(RollupStore, Protocol):
    pass


class HotListStore(Protocol):
    async def replace_live(self, tenant_id: UUID, rows: Sequence[Row]) -> int: ...


class NoteStore(Protocol):
    async def insert_missing(self, tenant_id: UUID, rows: Sequence[Row]) -> int: ...


class ActivityStore(Protocol):
    async def replace(self, tenant_id: UUID, rows: Sequence[Row]) -> int: ...


class ReportWeekStore(Protocol):
    async def get_or_create(
        self,
        tenant_id: UUID,
        week_ending_date: date,
        period_start_at: datetime,
        period_end_at: datetime,
    ) -> ReportWeek: ...


# ============================================================================
# SQLALCHEMY IMPLEMENTATIONS
# ============================================================================

def _dialect_name(session: AsyncSession) -> str:
    bind = session.get_bind()
    return getattr(getattr(bind, "dialect", None), "name", "")


class SqlTenantStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_tenants(self) -> List[Tenant]:
        result = await self.session.execute(select(Tenant).order_by(Tenant.created_at, Tenant.name))
        return list(result.scalars().all())

    async def get(self, tenant_id: UUID) -> Optional[Tenant]:
        return await self.session.get(Tenant, tenant_id)


class SqlSyncRunStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def start(self, tenant_id: UUID, started_at: datetime) -> UUID:
        run = SyncRun(tenant_id=tenant_id, status=SyncStatus.RUNNING, started_at=started_at)
        async with atomic(self.session):
            self.session.add(run)
            await self.session.flush()
        return run.id

    async def finish(
        self,
        run_id: UUID,
        status: str,
        finished_at: datetime,
        records_updated: int = 0,
        error_message: Optional[str] = None,
    ) -> None:
        # A failed sync step may have left the session inside an aborted transaction
        await self.session.rollback()
        async with atomic(self.session):
            run = await self.session.get(SyncRun, run_id)
            if run is None:
                logger.warning(f"SyncRun {run_id} disappeared before it could be finalized")
                return
            run.status = status
            run.finished_at = finished_at
            run.records_updated = records_updated
            run.error_message = error_message

    async def latest(self, tenant_id: UUID) -> Optional[SyncRun]:
        runs = await self.recent(tenant_id, limit=1)
        return runs[0] if runs else None

    async def recent(self, tenant_id: UUID, limit: int = 20) -> List[SyncRun]:
        result = await self.session.execute(
            select(SyncRun)
            .where(SyncRun.tenant_id == tenant_id)
            .order_by(desc(SyncRun.started_at))
            .limit(limit)
        )
        return list(result.scalars().all())


class SqlRawSnapshotStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(self, tenant_id: UUID, endpoint: str, payload: Any, fetched_at: datetime) -> None:
        async with atomic(self.session):
            self.session.add(
                RawSnapshot(
                    tenant_id=tenant_id,
                    endpoint=endpoint,
                    payload_json=payload,
                    fetched_at=fetched_at,
                )
            )


class _SqlRollupStore:
    """Shared replace-set logic for tables split into live and historical rows."""

    model: Any = None
    columns: Sequence[str] = ()

    def __init__(self, session: AsyncSession):
        self.session = session

    def _build(self, tenant_id: UUID, report_week_id: Optional[UUID], row: Row):
        values = {column: row.get(column) for column in self.columns if column in row}
        return self.model(tenant_id=tenant_id, report_week_id=report_week_id, **values)

    async def _replace(self, tenant_id: UUID, report_week_id: Optional[UUID], rows: Sequence[Row]) -> int:
        if report_week_id is None:
            scope = self.model.report_week_id.is_(None)
        else:
            scope = self.model.report_week_id == report_week_id

        async with atomic(self.session):
            await self.session.execute(
                delete(self.model).where(self.model.tenant_id == tenant_id, scope)
            )
            self.session.add_all([self._build(tenant_id, report_week_id, row) for row in rows])
        return len(rows)

    async def replace_live(self, tenant_id: UUID, rows: Sequence[Row]) -> int:
        return await self._replace(tenant_id, None, rows)

    async def replace_for_week(self, tenant_id: UUID, report_week_id: UUID, rows: Sequence[Row]) -> int:
        return await self._replace(tenant_id, report_week_id, rows)

    async def list_live(self, tenant_id: UUID) -> List[Row]:
        result = await self.session.execute(
            select(self.model).where(
                self.model.tenant_id == tenant_id,
                self.model.report_week_id.is_(None),
            )
        )
        return [
            {column: getattr(item, column) for column in self.columns}
            for item in result.scalars().all()
        ]


class SqlLeadMetricStore(_SqlRollupStore):
    model = LeadMetric
    columns = ("dimension_type", "dimension_value", "leads", "source_created_at")


class SqlPipelineStageStore(_SqlRollupStore):
    model = PipelineStageCount
    columns = ("stage", "count", "dollar_value", "source_created_at")


class SqlHotListStore(_SqlRollupStore):
    model = HotListItem
    columns = (
        "candidate_name", "stage", "likely_pct", "iff", "weighted_iff",
        "raw_json", "source_created_at",
    )


class SqlNoteStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def _exists(self, tenant_id: UUID, contact_id: str) -> bool:
        result = await self.session.execute(
            select(Note.id)
            .where(Note.tenant_id == tenant_id, Note.contact_id == contact_id)
            .limit(1)
        )
        return result.first() is not None

    async def insert_missing(self, tenant_id: UUID, rows: Sequence[Row]) -> int:
        """Insert notes whose (tenant, contact) pair is not stored yet."""
        inserted = 0
        async with atomic(self.session):
            for row in rows:
                if await self._exists(tenant_id, row["contact_id"]):
                    continue
                self.session.add(Note(tenant_id=tenant_id, **row))
                await self.session.flush()
                inserted += 1
        return inserted


class SqlActivityStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def replace(self, tenant_id: UUID, rows: Sequence[Row]) -> int:
        async with atomic(self.session):
            await self.session.execute(
                delete(ScheduledActivity).where(ScheduledActivity.tenant_id == tenant_id)
            )
            self.session.add_all([ScheduledActivity(tenant_id=tenant_id, **row) for row in rows])
        return len(rows)


class SqlReportWeekStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def _insert_if_absent(self, values: Row) -> None:
        if "postgresql" in _dialect_name(self.session):
            stmt = pg_insert(ReportWeek).values(**values).on_conflict_do_nothing(
                constraint="uq_report_weeks_tenant_week"
            )
        else:
            stmt = sqlite_insert(ReportWeek).values(**values).on_conflict_do_nothing(
                index_elements=["tenant_id", "week_ending_date"]
            )
        await self.session.execute(stmt)

    async def get_or_create(
        self,
        tenant_id: UUID,
        week_ending_date: date,
        period_start_at: datetime,
        period_end_at: datetime,
    ) -> ReportWeek:
        """
        Resolve the report week for (tenant, week ending date).

        Concurrent callers race on the unique constraint, not on a
        read-then-write check: the loser's insert is a no-op and both read
        back the same row.
        """
        async with atomic(self.session):
            await self._insert_if_absent(
                {
                    "tenant_id": tenant_id,
                    "week_ending_date": week_ending_date,
                    "period_start_at": period_start_at,
                    "period_end_at": period_end_at,
                    "status": "draft",
                }
            )
        result = await self.session.execute(
            select(ReportWeek).where(
                ReportWeek.tenant_id == tenant_id,
                ReportWeek.week_ending_date == week_ending_date,
            )
        )
        return result.scalar_one()


# ============================================================================
# BUNDLE
# ============================================================================

@dataclass
class Repositories:
    """Every store the sync engine needs, sharing one unit of work."""

    tenants: TenantStore
    sync_runs: SyncRunStore
    raw_snapshots: RawSnapshotStore
    lead_metrics: LeadMetricStore
    pipeline_stages: PipelineStageStore
    hot_list: HotListStore
    notes: NoteStore
    activities: ActivityStore
    report_weeks: ReportWeekStore

    @classmethod
    def for_session(cls, session: AsyncSession) -> "Repositories":
        return cls(
            tenants=SqlTenantStore(session),
            sync_runs=SqlSyncRunStore(session),
            raw_snapshots=SqlRawSnapshotStore(session),
            lead_metrics=SqlLeadMetricStore(session),
            pipeline_stages=SqlPipelineStageStore(session),
            hot_list=SqlHotListStore(session),
            notes=SqlNoteStore(session),
            activities=SqlActivityStore(session),
            report_weeks=SqlReportWeekStore(session),
        )


@asynccontextmanager
async def open_repositories(session_factory=None) -> AsyncIterator[Repositories]:
    """Open a session and yield the SQL-backed stores bound to it."""
    factory = session_factory or AsyncSessionLocal
    async with factory() as session:
        yield Repositories.for_session(session)

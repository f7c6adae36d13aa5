# tests/conftest.py
"""
Shared fixtures: in-memory stores, a scripted ClientTether client and a
fixed clock, so the whole sync pipeline runs without a database or network.
"""

import pytest
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from portal_sync.models import ReportWeek, SyncRun, SyncStatus, Tenant, TenantStatus
from portal_sync.repositories import Repositories
from portal_sync.services.clienttether_service import ApiResponse


# ============================================================================
# IN-MEMORY STORES
# ============================================================================

class FakeTenantStore:
    def __init__(self, tenants=None):
        self.tenants: List[Tenant] = list(tenants or [])

    async def list_tenants(self):
        return list(self.tenants)

    async def get(self, tenant_id):
        return next((t for t in self.tenants if t.id == tenant_id), None)


class FakeSyncRunStore:
    def __init__(self):
        self.runs: Dict[Any, SyncRun] = {}
        self.finish_calls: List[Any] = []

    async def start(self, tenant_id, started_at):
        run = SyncRun(
            id=uuid4(),
            tenant_id=tenant_id,
            status=SyncStatus.RUNNING,
            started_at=started_at,
            records_updated=0,
        )
        self.runs[run.id] = run
        return run.id

    async def finish(self, run_id, status, finished_at, records_updated=0, error_message=None):
        self.finish_calls.append(run_id)
        run = self.runs[run_id]
        run.status = status
        run.finished_at = finished_at
        run.records_updated = records_updated
        run.error_message = error_message

    async def latest(self, tenant_id):
        runs = await self.recent(tenant_id, limit=1)
        return runs[0] if runs else None

    async def recent(self, tenant_id, limit=20):
        runs = [r for r in self.runs.values() if r.tenant_id == tenant_id]
        runs.sort(key=lambda r: r.started_at, reverse=True)
        return runs[:limit]

    def for_tenant(self, tenant_id) -> List[SyncRun]:
        return [r for r in self.runs.values() if r.tenant_id == tenant_id]


class FakeRawSnapshotStore:
    def __init__(self):
        self.snapshots: List[Dict[str, Any]] = []

    async def append(self, tenant_id, endpoint, payload, fetched_at):
        self.snapshots.append(
            {"tenant_id": tenant_id, "endpoint": endpoint, "payload": payload, "fetched_at": fetched_at}
        )


class FakeRollupStore:
    """Live rows have report_week_id None; historical rows carry a week id."""

    def __init__(self):
        self.rows: List[Dict[str, Any]] = []
        self.replace_calls = 0

    def _replace(self, tenant_id, report_week_id, rows):
        self.rows = [
            r for r in self.rows
            if not (r["tenant_id"] == tenant_id and r["report_week_id"] == report_week_id)
        ]
        self.rows.extend(
            {**row, "tenant_id": tenant_id, "report_week_id": report_week_id} for row in rows
        )
        return len(rows)

    async def replace_live(self, tenant_id, rows):
        self.replace_calls += 1
        return self._replace(tenant_id, None, rows)

    async def replace_for_week(self, tenant_id, report_week_id, rows):
        return self._replace(tenant_id, report_week_id, rows)

    async def list_live(self, tenant_id):
        return [
            {k: v for k, v in r.items() if k not in ("tenant_id", "report_week_id")}
            for r in self.live(tenant_id)
        ]

    def live(self, tenant_id):
        return [r for r in self.rows if r["tenant_id"] == tenant_id and r["report_week_id"] is None]

    def for_week(self, tenant_id, report_week_id):
        return [r for r in self.rows if r["tenant_id"] == tenant_id and r["report_week_id"] == report_week_id]


class FakeNoteStore:
    def __init__(self):
        self.notes: List[Dict[str, Any]] = []

    async def insert_missing(self, tenant_id, rows):
        inserted = 0
        for row in rows:
            if any(n["tenant_id"] == tenant_id and n["contact_id"] == row["contact_id"] for n in self.notes):
                continue
            self.notes.append({**row, "tenant_id": tenant_id})
            inserted += 1
        return inserted


class FakeActivityStore:
    def __init__(self):
        self.activities: List[Dict[str, Any]] = []

    async def replace(self, tenant_id, rows):
        self.activities = [a for a in self.activities if a["tenant_id"] != tenant_id]
        self.activities.extend({**row, "tenant_id": tenant_id} for row in rows)
        return len(rows)


class FakeReportWeekStore:
    def __init__(self):
        self.weeks: Dict[Any, ReportWeek] = {}

    async def get_or_create(self, tenant_id, week_ending_date, period_start_at, period_end_at):
        key = (tenant_id, week_ending_date)
        if key not in self.weeks:
            self.weeks[key] = ReportWeek(
                id=uuid4(),
                tenant_id=tenant_id,
                week_ending_date=week_ending_date,
                period_start_at=period_start_at,
                period_end_at=period_end_at,
                status="draft",
            )
        return self.weeks[key]


def make_repositories(tenants=None) -> Repositories:
    return Repositories(
        tenants=FakeTenantStore(tenants),
        sync_runs=FakeSyncRunStore(),
        raw_snapshots=FakeRawSnapshotStore(),
        lead_metrics=FakeRollupStore(),
        pipeline_stages=FakeRollupStore(),
        hot_list=FakeRollupStore(),
        notes=FakeNoteStore(),
        activities=FakeActivityStore(),
        report_weeks=FakeReportWeekStore(),
    )


# ============================================================================
# SCRIPTED CLIENTTETHER CLIENT
# ============================================================================

class FakeClientTether:
    """
    Answers each endpoint from a script.

    A script entry is either an ApiResponse, an exception to raise, or raw
    data (wrapped in a successful ApiResponse). A list of entries is consumed
    one per call, the last entry repeating.
    """

    def __init__(self, script: Optional[Dict[str, Any]] = None):
        self.script = script or {}
        self.calls: List[str] = []

    def _respond(self, endpoint):
        self.calls.append(endpoint)
        entry = self.script.get(endpoint, [])
        if isinstance(entry, list) and entry and isinstance(entry[0], (ApiResponse, BaseException)):
            entry = entry.pop(0) if len(entry) > 1 else entry[0]
        if isinstance(entry, BaseException):
            raise entry
        if isinstance(entry, ApiResponse):
            return entry
        return ApiResponse(data=entry, status_code=200)

    async def get_leads(self, modified_since=None):
        return self._respond("/leads")

    async def get_opportunities(self, modified_since=None):
        return self._respond("/opportunities")

    async def get_notes(self, contact_id=None, since=None):
        return self._respond("/notes")

    async def get_scheduled_activities(self, start_date=None, end_date=None):
        return self._respond("/activities")


class FakeClientRegistry:
    """client_factory stand-in: one scripted client per tenant id."""

    def __init__(self):
        self.clients: Dict[Any, FakeClientTether] = {}

    def script(self, tenant, **endpoints) -> FakeClientTether:
        script = {f"/{name}": value for name, value in endpoints.items()}
        client = FakeClientTether(script)
        self.clients[tenant.id] = client
        return client

    def __call__(self, tenant):
        return self.clients.setdefault(tenant.id, FakeClientTether())


# ============================================================================
# FIXTURES
# ============================================================================

# Wednesday and Sunday, midday UTC (still the same date in New York)
WEDNESDAY = datetime(2024, 6, 12, 16, 0, tzinfo=timezone.utc)
SUNDAY = datetime(2024, 6, 16, 16, 0, tzinfo=timezone.utc)


def make_tenant(name="Test Co", status=TenantStatus.ACTIVE, web_key="wk_test",
                access_token="at_test", tz="America/New_York") -> Tenant:
    return Tenant(
        id=uuid4(),
        name=name,
        timezone=tz,
        status=status,
        clienttether_web_key=web_key,
        clienttether_access_token=access_token,
    )


@pytest.fixture
def tenant_factory():
    """Build tenants: tenant_factory(name="B", web_key=None)"""
    return make_tenant


@pytest.fixture
def tenant():
    """One active tenant with credentials"""
    return make_tenant()


@pytest.fixture
def repos(tenant):
    """In-memory repositories seeded with the tenant"""
    return make_repositories([tenant])


@pytest.fixture
def unit_of_work(repos):
    """unit_of_work stand-in that always yields the same in-memory repositories"""

    @asynccontextmanager
    async def _open():
        yield repos

    return _open


@pytest.fixture
def clients():
    return FakeClientRegistry()


@pytest.fixture
def recorded_sleeps():
    return []


@pytest.fixture
def fake_sleep(recorded_sleeps):
    """Records backoff delays instead of waiting"""

    async def _sleep(delay):
        recorded_sleeps.append(delay)

    return _sleep


@pytest.fixture
def sample_leads():
    """Leads as ClientTether returns them"""
    return [
        {"clients_lead_source": "Website", "clients_sales_cycle": "New", "contact_type": "1",
         "created": "2024-06-01 10:00:00"},
        {"clients_lead_source": "Website", "clients_sales_cycle": "Contacted", "contact_type": 1,
         "created": "2024-05-20 09:00:00"},
        {"lead_source": "Referral", "status": "New", "contact_type": "1", "created": "not a date"},
        {"clients_lead_source": "Website", "clients_sales_cycle": "New", "contact_type": "2",
         "created": "2024-01-01 00:00:00"},
    ]


@pytest.fixture
def sample_opportunities():
    return [
        {"title": "Jane Franchisee", "contact_sales_cycle": "Discovery Day", "deal_size": "45000",
         "probability": 60, "created": "2024-06-02"},
        {"first_name": "Sam", "last_name": "Buyer", "stage": "Awarded", "value": 50000,
         "probability": 90, "created": "2024-05-01"},
        {"title": "Early Lead", "stage": "Initial Contact", "value": 10000, "probability": 80},
    ]


@pytest.fixture
def sample_notes():
    return [
        {"contact_id": "c-1", "date": "2024-06-10 12:00:00", "author": "Ann", "content": "Called"},
        {"contact_id": "c-2", "date": "2024-06-11", "author": "Bob", "content": "Emailed"},
    ]


@pytest.fixture
def sample_activities():
    return [
        {"type": "call", "scheduled_at": "2024-06-20 15:00:00", "contact_name": "Jane",
         "description": "Follow-up", "status": "open"},
        {"type": "meeting", "scheduled_at": "2024-06-21T10:00:00Z", "contact_name": "Sam",
         "description": "Discovery Day", "status": "open"},
    ]

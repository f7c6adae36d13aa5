# tests/test_worker.py
"""
Tests for the worker entry point and the APScheduler job

Coverage:
- run_once exit status (0 on a completed pass, 1 on a process-fatal error)
- Engine disposed after every pass
- CLI parsing and dispatch
- Scheduled job: fatal errors logged, scheduler keeps running
- Job registration (cron, single instance, coalesced)

Run with: pytest tests/test_worker.py -v
"""

import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

from portal_sync import scheduler as scheduler_module
from portal_sync import worker
from portal_sync.exceptions import SyncConfigurationError
from portal_sync.services.sync_orchestrator import SyncSummary


class StubOrchestrator:
    def __init__(self, error=None):
        self.error = error
        self.calls = 0

    async def run_sync(self):
        self.calls += 1
        if self.error:
            raise self.error
        now = datetime(2024, 6, 12, 16, 0, tzinfo=timezone.utc)
        return SyncSummary(started_at=now, finished_at=now)


@pytest.fixture
def engine(monkeypatch):
    fake = MagicMock()
    fake.dispose = AsyncMock()
    monkeypatch.setattr(worker, "engine", fake)
    return fake


# ============================================================================
# SINGLE PASS
# ============================================================================

class TestRunOnce:

    @pytest.mark.asyncio
    async def test_completed_pass_exits_zero(self, engine):
        orchestrator = StubOrchestrator()

        assert await worker.run_once(orchestrator) == 0
        assert orchestrator.calls == 1
        engine.dispose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_fatal_error_exits_one(self, engine):
        orchestrator = StubOrchestrator(SyncConfigurationError("Could not load tenants: refused"))

        assert await worker.run_once(orchestrator) == 1
        engine.dispose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unexpected_error_propagates(self, engine):
        with pytest.raises(KeyError):
            await worker.run_once(StubOrchestrator(KeyError("bug")))

        engine.dispose.assert_awaited_once()


# ============================================================================
# CLI
# ============================================================================

class TestCli:

    def test_defaults(self):
        args = worker.build_parser().parse_args([])

        assert args.scheduled is False
        assert args.log_level is None

    def test_flags(self):
        args = worker.build_parser().parse_args(["--scheduled", "--log-level", "debug"])

        assert args.scheduled is True
        assert args.log_level == "debug"

    def test_main_runs_single_pass(self, monkeypatch):
        run_once = AsyncMock(return_value=1)
        run_scheduled = AsyncMock(return_value=0)
        monkeypatch.setattr(worker, "run_once", run_once)
        monkeypatch.setattr(worker, "run_scheduled", run_scheduled)

        assert worker.main([]) == 1
        run_once.assert_awaited_once()
        run_scheduled.assert_not_called()

    def test_main_scheduled(self, monkeypatch):
        run_once = AsyncMock(return_value=0)
        run_scheduled = AsyncMock(return_value=0)
        monkeypatch.setattr(worker, "run_once", run_once)
        monkeypatch.setattr(worker, "run_scheduled", run_scheduled)

        assert worker.main(["--scheduled"]) == 0
        run_scheduled.assert_awaited_once()
        run_once.assert_not_called()


# ============================================================================
# SCHEDULER
# ============================================================================

class TestScheduledSync:

    @pytest.mark.asyncio
    async def test_returns_summary(self):
        summary = await scheduler_module.run_scheduled_sync(StubOrchestrator())

        assert summary.tenants == 0

    @pytest.mark.asyncio
    async def test_fatal_error_is_logged_not_raised(self, caplog):
        result = await scheduler_module.run_scheduled_sync(
            StubOrchestrator(SyncConfigurationError("database unreachable"))
        )

        assert result is None
        assert "database unreachable" in caplog.text

    @pytest.mark.asyncio
    async def test_job_registration(self):
        orchestrator = StubOrchestrator()
        sched = scheduler_module.start_scheduler(
            cron="*/15 * * * *", run_immediately=False, orchestrator=orchestrator
        )
        try:
            job = sched.get_job(scheduler_module.SYNC_JOB_ID)

            assert sched.running
            assert job.max_instances == 1
            assert job.coalesce is True
            assert job.kwargs == {"orchestrator": orchestrator}
            assert "*/15" in str(job.trigger)
        finally:
            await scheduler_module.stop_scheduler(wait=False)

        assert not scheduler_module.scheduler.running

    @pytest.mark.asyncio
    async def test_stop_when_not_running_is_noop(self):
        assert not scheduler_module.scheduler.running

        await scheduler_module.stop_scheduler(wait=False)

        assert not scheduler_module.scheduler.running

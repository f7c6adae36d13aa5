"""Sync-run audit: one row per tenant per invocation."""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional
from uuid import UUID

from portal_sync.models import SyncStatus
from portal_sync.repositories import SyncRunStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncRunTracker:
    """
    Records start and terminal state of every tenant sync.

    ``finish`` is idempotent per run: a second call for an already finished
    run is ignored, so a run can never flip between terminal states.
    """

    def __init__(self, store: SyncRunStore, clock: Clock = utcnow):
        self.store = store
        self.clock = clock
        self._finished = set()

    async def start(self, tenant_id: UUID) -> UUID:
        run_id = await self.store.start(tenant_id, self.clock())
        logger.debug(f"SyncRun {run_id} started for tenant {tenant_id}")
        return run_id

    async def finish(
        self,
        run_id: UUID,
        status: str,
        records_updated: int = 0,
        error_message: Optional[str] = None,
    ) -> None:
        if status not in (SyncStatus.SUCCESS, SyncStatus.FAILED):
            raise ValueError(f"Terminal status must be success or failed, got {status!r}")
        if run_id in self._finished:
            logger.warning(f"SyncRun {run_id} already finalized, ignoring {status}")
            return

        await self.store.finish(
            run_id,
            status,
            self.clock(),
            records_updated=records_updated,
            error_message=error_message,
        )
        self._finished.add(run_id)

    async def succeed(self, run_id: UUID, records_updated: int) -> None:
        await self.finish(run_id, SyncStatus.SUCCESS, records_updated=records_updated)

    async def fail(self, run_id: UUID, error_message: str) -> None:
        await self.finish(run_id, SyncStatus.FAILED, error_message=error_message or "unknown error")

"""Raw payload audit trail - written before any transformation."""

import logging
from datetime import datetime
from typing import Any
from uuid import UUID

from portal_sync.repositories import RawSnapshotStore

logger = logging.getLogger(__name__)


async def store_raw_snapshot(
    store: RawSnapshotStore,
    tenant_id: UUID,
    endpoint: str,
    payload: Any,
    fetched_at: datetime,
) -> None:
    """
    Append one verbatim snapshot for (tenant, endpoint, fetch time).

    Append-only: nothing here deduplicates, updates or prunes older rows.
    """
    await store.append(tenant_id, endpoint, payload, fetched_at)
    size = len(payload) if isinstance(payload, (list, dict)) else 0
    logger.debug(f"Stored raw snapshot {endpoint} for tenant {tenant_id} ({size} items)")

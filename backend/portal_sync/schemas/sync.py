"""
Pydantic schemas for the sync admin API.
These are for API responses, NOT database models
"""

from pydantic import BaseModel
from typing import Optional
from uuid import UUID
from datetime import datetime


class SyncRunResponse(BaseModel):
    """One audited sync run"""
    id: UUID
    tenant_id: UUID
    status: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    records_updated: Optional[int] = 0
    error_message: Optional[str] = None

    class Config:
        from_attributes = True


class SyncStatusResponse(BaseModel):
    """Freshness of a tenant's data"""
    tenant_id: UUID
    status: Optional[str] = None
    last_sync_at: Optional[datetime] = None
    is_stale: bool
    records_updated: Optional[int] = None
    error_message: Optional[str] = None

    class Config:
        from_attributes = True


class TriggerResponse(BaseModel):
    """Outcome of a manual single-tenant sync"""
    tenant_id: UUID
    tenant_name: str
    run_id: Optional[UUID] = None
    status: str
    records_updated: int = 0
    error_message: Optional[str] = None
    snapshot_rows: Optional[int] = None
    snapshot_error: Optional[str] = None

    class Config:
        from_attributes = True

# backend/portal_sync/models.py
"""
SQLAlchemy ORM models for the tenant data-sync engine.

Rollup tables (lead_metrics, pipeline_stage_counts, hot_list_items) hold two
kinds of rows:
1. Live rows (report_week_id IS NULL) - current state, replaced every sync
2. Historical rows (report_week_id set) - frozen weekly copies, never mutated

Column types are portable (Uuid, JSON with a JSONB variant) so the same
models run on PostgreSQL in production and SQLite in the integration tests.
"""

from sqlalchemy import (
    Column, String, Integer, Numeric, Text, DateTime, Date, JSON, Index,
    ForeignKey, CheckConstraint, UniqueConstraint, Uuid
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from portal_sync.database import Base
import uuid


JSONType = JSON().with_variant(JSONB(), "postgresql")


class TenantStatus:
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class SyncStatus:
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class Endpoint:
    LEADS = "/leads"
    OPPORTUNITIES = "/opportunities"
    NOTES = "/notes"
    ACTIVITIES = "/activities"


class DimensionType:
    SOURCE = "source"
    STATUS = "status"


# ============================================================================
# TENANT
# ============================================================================

class Tenant(Base):
    """Tenant/customer account. Read-only to the sync engine."""
    __tablename__ = "tenants"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    timezone = Column(String(100), nullable=False, default="America/New_York")
    status = Column(String(20), nullable=False, default=TenantStatus.ACTIVE)
    clienttether_web_key = Column(Text)
    clienttether_access_token = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("status IN ('active', 'inactive', 'suspended')", name="chk_tenant_status"),
    )

    def __repr__(self):
        return f"<Tenant(id={self.id}, name='{self.name}', status='{self.status}')>"


# ============================================================================
# SYNC AUDIT
# ============================================================================

class SyncRun(Base):
    """One audited sync execution for a tenant."""
    __tablename__ = "sync_runs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    status = Column(String(20), nullable=False, default=SyncStatus.RUNNING)
    started_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    finished_at = Column(DateTime(timezone=True))
    records_updated = Column(Integer, default=0)
    error_message = Column(Text)

    __table_args__ = (
        CheckConstraint("status IN ('running', 'success', 'failed')", name="chk_sync_run_status"),
        Index("idx_sync_runs_tenant_started", "tenant_id", "started_at"),
    )

    def __repr__(self):
        return f"<SyncRun {self.id} - {self.status}>"


class RawSnapshot(Base):
    """Verbatim remote payload, appended once per successful fetch."""
    __tablename__ = "ct_raw_snapshots"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    endpoint = Column(String(255), nullable=False)
    fetched_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    payload_json = Column(JSONType)

    __table_args__ = (
        Index("idx_ct_raw_snapshots_tenant_endpoint", "tenant_id", "endpoint", "fetched_at"),
    )


# ============================================================================
# REPORT WEEKS
# ============================================================================

class ReportWeek(Base):
    """Reporting period identified by (tenant, week ending date)."""
    __tablename__ = "report_weeks"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    week_ending_date = Column(Date, nullable=False)
    period_start_at = Column(DateTime(timezone=True), nullable=False)
    period_end_at = Column(DateTime(timezone=True), nullable=False)
    status = Column(String(20), nullable=False, default="draft")
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("tenant_id", "week_ending_date", name="uq_report_weeks_tenant_week"),
    )

    def __repr__(self):
        return f"<ReportWeek(tenant_id={self.tenant_id}, week_ending_date={self.week_ending_date})>"


# ============================================================================
# ROLLUPS
# ============================================================================

class LeadMetric(Base):
    """Lead count per (dimension type, dimension value)."""
    __tablename__ = "lead_metrics"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    report_week_id = Column(Uuid, ForeignKey("report_weeks.id", ondelete="CASCADE"), nullable=True)
    dimension_type = Column(String(100), nullable=False)
    dimension_value = Column(String(255), nullable=False)
    leads = Column(Integer, default=0)
    source_created_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_lead_metrics_tenant_week", "tenant_id", "report_week_id"),
    )


class PipelineStageCount(Base):
    """Opportunity count and dollar total per pipeline stage."""
    __tablename__ = "pipeline_stage_counts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    report_week_id = Column(Uuid, ForeignKey("report_weeks.id", ondelete="CASCADE"), nullable=True)
    stage = Column(String(100), nullable=False)
    count = Column(Integer, default=0)
    dollar_value = Column(Numeric(14, 2), default=0)
    source_created_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_pipeline_stage_counts_tenant_week", "tenant_id", "report_week_id"),
    )


class HotListItem(Base):
    """Late-funnel opportunity surfaced as a high-priority candidate."""
    __tablename__ = "hot_list_items"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    report_week_id = Column(Uuid, ForeignKey("report_weeks.id", ondelete="CASCADE"), nullable=True)
    candidate_name = Column(String(255), nullable=False)
    stage = Column(String(100))
    likely_pct = Column(Integer, default=0)
    iff = Column(Numeric(14, 2), default=0)
    weighted_iff = Column(Numeric(14, 2), default=0)
    raw_json = Column(JSONType)
    source_created_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_hot_list_items_tenant_week", "tenant_id", "report_week_id"),
    )


# ============================================================================
# CRM MIRRORS
# ============================================================================

class Note(Base):
    """Tenant-scoped mirror of a CRM note. Accumulates across syncs."""
    __tablename__ = "ct_notes"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    contact_id = Column(String(255))
    note_date = Column(DateTime(timezone=True), nullable=False)
    author = Column(String(255))
    content = Column(Text)
    raw_json = Column(JSONType)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_ct_notes_tenant_contact", "tenant_id", "contact_id"),
    )


class ScheduledActivity(Base):
    """Tenant-scoped mirror of a CRM scheduled activity. Replaced every sync."""
    __tablename__ = "ct_scheduled_activities"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    activity_type = Column(String(100))
    scheduled_at = Column(DateTime(timezone=True), nullable=False)
    contact_name = Column(String(255))
    description = Column(Text)
    status = Column(String(100))
    raw_json = Column(JSONType)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_ct_scheduled_activities_tenant", "tenant_id", "scheduled_at"),
    )

"""
Report weeks and weekly historical snapshots.

A report week is identified by (tenant, week ending date). On the snapshot
weekday the orchestrator resolves that week and freezes the tenant's live
lead metrics and pipeline stage counts into rows stamped with its id.
"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Optional, Tuple
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from portal_sync.config import settings
from portal_sync.models import ReportWeek
from portal_sync.repositories import LeadMetricStore, PipelineStageStore, ReportWeekStore

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "America/New_York"


def tenant_zone(tz_name: Optional[str]) -> ZoneInfo:
    """ZoneInfo for a tenant, falling back to UTC for unknown names."""
    try:
        return ZoneInfo(tz_name or DEFAULT_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone {tz_name!r}, using UTC")
        return ZoneInfo("UTC")


def tenant_today(now: datetime, tz_name: Optional[str]) -> date:
    """Calendar date of an aware instant in the tenant's timezone."""
    return now.astimezone(tenant_zone(tz_name)).date()


def is_snapshot_day(today: date, weekday: Optional[int] = None) -> bool:
    """True when ``today`` is the week boundary (Sunday by default)."""
    if weekday is None:
        weekday = settings.SNAPSHOT_WEEKDAY
    return today.weekday() == weekday


def week_period(week_ending_date: date, tz_name: Optional[str] = "UTC") -> Tuple[datetime, datetime]:
    """
    Period covered by a report week.

    Starts six days before the ending date at 00:00 and ends on the ending
    date at 23:59:59.999, both in the tenant's timezone.
    """
    zone = tenant_zone(tz_name)
    start = datetime.combine(week_ending_date - timedelta(days=6), time.min, tzinfo=zone)
    end = datetime.combine(week_ending_date, time(23, 59, 59, 999000), tzinfo=zone)
    return start, end


async def find_or_create_report_week(
    store: ReportWeekStore,
    tenant_id: UUID,
    week_ending_date: date,
    tz_name: Optional[str] = "UTC",
) -> ReportWeek:
    """Return the report week for (tenant, date), creating it at most once."""
    period_start_at, period_end_at = week_period(week_ending_date, tz_name)
    return await store.get_or_create(tenant_id, week_ending_date, period_start_at, period_end_at)


async def create_weekly_snapshot(
    lead_metrics: LeadMetricStore,
    pipeline_stages: PipelineStageStore,
    tenant_id: UUID,
    report_week_id: UUID,
) -> int:
    """
    Copy the tenant's live lead metrics and pipeline stages into the week.

    Rows already stamped with ``report_week_id`` are replaced, so calling
    this twice for the same week leaves the same row count. Live rows are
    only read. Returns the number of historical rows written.
    """
    live_metrics = await lead_metrics.list_live(tenant_id)
    live_stages = await pipeline_stages.list_live(tenant_id)

    written = await lead_metrics.replace_for_week(tenant_id, report_week_id, live_metrics)
    written += await pipeline_stages.replace_for_week(tenant_id, report_week_id, live_stages)
    return written

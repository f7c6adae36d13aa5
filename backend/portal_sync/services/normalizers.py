# backend/portal_sync/services/normalizers.py
"""
Normalizers: turn fetched ClientTether records into rollup and mirror rows.

Each entity has a pure ``aggregate_*``/``map_*`` step (no I/O, easy to test)
and an async ``normalize_*`` step that hands the rows to its store. Rollups
(lead metrics, pipeline stages, hot list) and activities are replace-sets;
notes accumulate and are only inserted when their contact is new.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from portal_sync.config import settings
from portal_sync.models import DimensionType
from portal_sync.repositories import (
    ActivityStore,
    HotListStore,
    LeadMetricStore,
    NoteStore,
    PipelineStageStore,
)
from portal_sync.services.field_mapper import (
    ACTIVITY_FIELDS,
    LEAD_FIELDS,
    NOTE_FIELDS,
    OPPORTUNITY_FIELDS,
    earliest,
    format_money,
    opportunity_name,
    parse_money,
    parse_probability,
    parse_source_date,
)

logger = logging.getLogger(__name__)

Record = Dict[str, Any]
Row = Dict[str, Any]

CENT = Decimal("0.01")


def as_records(payload: Any) -> List[Record]:
    """
    Records contained in an API payload.

    Endpoints answer with a JSON array; some accounts wrap it as
    ``{"data": [...]}``. Anything that is not a dict record is dropped.
    """
    if isinstance(payload, dict):
        payload = payload.get("data")
    if not isinstance(payload, list):
        return []
    return [item for item in payload if isinstance(item, dict)]


# ============================================================================
# LEADS
# ============================================================================

def is_prospect(lead: Record, prospect_contact_type: Optional[str]) -> bool:
    if not prospect_contact_type:
        return True
    contact_type = LEAD_FIELDS.resolve(lead, "contact_type")
    return contact_type is not None and str(contact_type).strip() == prospect_contact_type


def aggregate_lead_metrics(
    leads: Sequence[Record],
    prospect_contact_type: Optional[str] = None,
) -> List[Row]:
    """
    Count prospect leads per source and per status.

    Returns source rows first, then status rows, each in first-seen order,
    with the earliest parseable creation date of the bucket.
    """
    buckets: Dict[Tuple[str, str], Dict[str, Any]] = {}

    for lead in leads:
        if not is_prospect(lead, prospect_contact_type):
            continue

        fields = LEAD_FIELDS.map_fields(lead)
        source_date = parse_source_date(fields["source_date"])

        for dimension_type, value in (
            (DimensionType.SOURCE, fields["source"]),
            (DimensionType.STATUS, fields["status"]),
        ):
            bucket = buckets.setdefault(
                (dimension_type, str(value)),
                {"leads": 0, "dates": []},
            )
            bucket["leads"] += 1
            bucket["dates"].append(source_date)

    rows = [
        {
            "dimension_type": dimension_type,
            "dimension_value": dimension_value,
            "leads": bucket["leads"],
            "source_created_at": earliest(bucket["dates"]),
        }
        for (dimension_type, dimension_value), bucket in buckets.items()
    ]
    rows.sort(key=lambda row: row["dimension_type"] != DimensionType.SOURCE)
    return rows


async def normalize_lead_metrics(
    store: LeadMetricStore,
    tenant_id: UUID,
    leads: Sequence[Record],
    prospect_contact_type: Optional[str] = None,
) -> int:
    if prospect_contact_type is None:
        prospect_contact_type = settings.LEAD_PROSPECT_CONTACT_TYPE

    rows = aggregate_lead_metrics(leads, prospect_contact_type)
    skipped = len(leads) - sum(row["leads"] for row in rows if row["dimension_type"] == DimensionType.SOURCE)
    if skipped:
        logger.info(f"Tenant {tenant_id}: {skipped} non-prospect lead(s) excluded from metrics")
    return await store.replace_live(tenant_id, rows)


# ============================================================================
# PIPELINE STAGES
# ============================================================================

def aggregate_pipeline_stages(opportunities: Sequence[Record]) -> List[Row]:
    """
    Count opportunities and total their dollar value per stage.

    Every opportunity is counted. Missing, zero or unparseable amounts add 0.
    """
    stages: Dict[str, Dict[str, Any]] = {}

    for opportunity in opportunities:
        stage = str(OPPORTUNITY_FIELDS.resolve(opportunity, "stage"))
        bucket = stages.setdefault(stage, {"count": 0, "total": Decimal("0"), "dates": []})
        bucket["count"] += 1
        bucket["total"] += parse_money(opportunity)
        bucket["dates"].append(
            parse_source_date(OPPORTUNITY_FIELDS.resolve(opportunity, "source_date"))
        )

    return [
        {
            "stage": stage,
            "count": bucket["count"],
            "dollar_value": bucket["total"].quantize(CENT),
            "source_created_at": earliest(bucket["dates"]),
        }
        for stage, bucket in stages.items()
    ]


async def normalize_pipeline_stages(
    store: PipelineStageStore,
    tenant_id: UUID,
    opportunities: Sequence[Record],
) -> int:
    rows = aggregate_pipeline_stages(opportunities)
    for row in rows:
        logger.debug(
            f"Tenant {tenant_id}: stage {row['stage']!r} count={row['count']} "
            f"value={format_money(row['dollar_value'])}"
        )
    return await store.replace_live(tenant_id, rows)


# ============================================================================
# HOT LIST
# ============================================================================

def is_hot(
    opportunity: Record,
    rule: str,
    stages: Sequence[str],
    min_probability: int,
) -> bool:
    """Hot-list membership under exactly one rule: 'stage' or 'probability'."""
    if rule == "probability":
        return parse_probability(OPPORTUNITY_FIELDS.resolve(opportunity, "probability")) >= min_probability

    stage = str(OPPORTUNITY_FIELDS.resolve(opportunity, "stage")).strip().casefold()
    return stage in {s.strip().casefold() for s in stages}


def select_hot_list(
    opportunities: Sequence[Record],
    rule: Optional[str] = None,
    stages: Optional[Sequence[str]] = None,
    min_probability: Optional[int] = None,
) -> List[Row]:
    rule = rule or settings.HOT_LIST_RULE
    stages = settings.HOT_LIST_STAGES if stages is None else stages
    min_probability = settings.HOT_LIST_MIN_PROBABILITY if min_probability is None else min_probability

    rows = []
    for opportunity in opportunities:
        if not is_hot(opportunity, rule, stages, min_probability):
            continue

        likely_pct = parse_probability(OPPORTUNITY_FIELDS.resolve(opportunity, "probability"))
        value = parse_money(opportunity)
        rows.append(
            {
                "candidate_name": opportunity_name(opportunity),
                "stage": str(OPPORTUNITY_FIELDS.resolve(opportunity, "stage")),
                "likely_pct": likely_pct,
                "iff": value.quantize(CENT),
                "weighted_iff": (value * likely_pct / 100).quantize(CENT),
                "raw_json": opportunity,
                "source_created_at": parse_source_date(
                    OPPORTUNITY_FIELDS.resolve(opportunity, "source_date")
                ),
            }
        )
    return rows


async def normalize_hot_list(
    store: HotListStore,
    tenant_id: UUID,
    opportunities: Sequence[Record],
    rule: Optional[str] = None,
) -> int:
    rows = select_hot_list(opportunities, rule=rule)
    return await store.replace_live(tenant_id, rows)


# ============================================================================
# NOTES & ACTIVITIES
# ============================================================================

def map_notes(notes: Sequence[Record]) -> Tuple[List[Row], int]:
    """Map notes to rows; returns (rows, skipped) where skipped lack a contact or date."""
    rows = []
    skipped = 0
    for note in notes:
        fields = NOTE_FIELDS.map_fields(note)
        note_date = parse_source_date(fields["note_date"])
        if not fields["contact_id"] or note_date is None:
            skipped += 1
            continue
        rows.append(
            {
                "contact_id": str(fields["contact_id"]),
                "note_date": note_date,
                "author": fields["author"],
                "content": fields["content"],
                "raw_json": note,
            }
        )
    return rows, skipped


async def normalize_notes(store: NoteStore, tenant_id: UUID, notes: Sequence[Record]) -> int:
    rows, skipped = map_notes(notes)
    if skipped:
        logger.warning(f"Tenant {tenant_id}: skipped {skipped} note(s) without contact id or date")
    return await store.insert_missing(tenant_id, rows)


def map_activities(activities: Sequence[Record]) -> Tuple[List[Row], int]:
    rows = []
    skipped = 0
    for activity in activities:
        fields = ACTIVITY_FIELDS.map_fields(activity)
        scheduled_at = parse_source_date(fields["scheduled_at"])
        if scheduled_at is None:
            skipped += 1
            continue
        rows.append(
            {
                "activity_type": fields["activity_type"],
                "scheduled_at": scheduled_at,
                "contact_name": fields["contact_name"],
                "description": fields["description"],
                "status": fields["status"],
                "raw_json": activity,
            }
        )
    return rows, skipped


async def normalize_activities(store: ActivityStore, tenant_id: UUID, activities: Sequence[Record]) -> int:
    rows, skipped = map_activities(activities)
    if skipped:
        logger.warning(f"Tenant {tenant_id}: skipped {skipped} activities without a schedule date")
    return await store.replace(tenant_id, rows)

"""
Field mapper for ClientTether records.

ClientTether responses are duck-typed: the same concept shows up under
different keys depending on account configuration and API version
("stage" vs "contact_sales_cycle", "source" vs "clients_lead_source").
FieldMapper resolves each logical field from an ordered fallback list.
"""
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterable, Optional, Sequence, Union
import logging


logger = logging.getLogger(__name__)


Paths = Union[str, Sequence[str]]


class FieldMapper:
    """
    Maps source fields to logical fields using ordered fallbacks.

    Supports:
    - Fallback lists: {"stage": ["contact_sales_cycle", "stage"]}
    - Nested paths: {"owner": "assigned_to.name"}
    - Transformations: {"source": "clients_lead_source|trim"}

    The first path that yields a non-empty value wins. Empty strings and
    whitespace count as missing.
    """

    def __init__(self, field_mappings: Dict[str, Paths], defaults: Optional[Dict[str, Any]] = None):
        """
        Initialize field mapper.

        Args:
            field_mappings: Dict mapping logical field -> source path(s)
            defaults: Value used when no path yields anything
        """
        self.field_mappings = {
            field: [paths] if isinstance(paths, str) else list(paths)
            for field, paths in field_mappings.items()
        }
        self.defaults = defaults or {}
        self.transformers: Dict[str, Callable[[Any], Any]] = {}
        self._register_default_transformers()

    def _register_default_transformers(self):
        """Register built-in transformation functions."""
        self.transformers["trim"] = lambda x: str(x).strip() if x is not None else None
        self.transformers["str"] = lambda x: str(x) if x is not None else None

    @staticmethod
    def _extract_value(data: Dict[str, Any], path: str) -> Any:
        """Extract value from nested dict using dot notation."""
        value: Any = data
        for key in path.split("."):
            if isinstance(value, dict):
                value = value.get(key)
            else:
                return None
        return value

    def _apply_transformations(self, value: Any, transformations: str) -> Any:
        for name in transformations.split("|"):
            transformer = self.transformers.get(name.strip())
            if transformer:
                value = transformer(value)
        return value

    @staticmethod
    def _is_missing(value: Any) -> bool:
        if value is None:
            return True
        if isinstance(value, str) and not value.strip():
            return True
        return False

    def resolve(self, record: Dict[str, Any], field: str) -> Any:
        """Return the first non-empty value for a logical field."""
        for mapping in self.field_mappings.get(field, []):
            if "|" in mapping:
                path, transformations = mapping.split("|", 1)
            else:
                path, transformations = mapping, None

            value = self._extract_value(record, path.strip())
            if transformations:
                value = self._apply_transformations(value, transformations)

            if not self._is_missing(value):
                return value

        return self.defaults.get(field)

    def map_fields(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """Map one record to all logical fields."""
        return {field: self.resolve(record, field) for field in self.field_mappings}


# ============================================================================
# CANONICAL CLIENTTETHER MAPPINGS
# ============================================================================

SOURCE_DATE_PATHS = ["created", "created_at", "last_modified_date", "modified_at"]

LEAD_FIELDS = FieldMapper(
    {
        "source": ["clients_lead_source|trim", "lead_source|trim", "source|trim"],
        "status": ["clients_sales_cycle|trim", "sales_cycle|trim", "status|trim"],
        "contact_type": ["contact_type|str", "clients_contact_type|str"],
        "source_date": SOURCE_DATE_PATHS,
    },
    defaults={"source": "unknown", "status": "unknown"},
)

OPPORTUNITY_FIELDS = FieldMapper(
    {
        "stage": ["contact_sales_cycle|trim", "stage|trim"],
        "name": ["title", "name", "full_name"],
        "first_name": ["first_name"],
        "last_name": ["last_name"],
        "probability": ["probability", "likely_pct"],
        "source_date": SOURCE_DATE_PATHS,
    },
    defaults={"stage": "unknown"},
)

NOTE_FIELDS = FieldMapper(
    {
        "contact_id": ["contact_id|str", "client_id|str"],
        "note_date": ["date", "note_date", "created"],
        "author": ["author", "user_name"],
        "content": ["content", "note", "body"],
    }
)

ACTIVITY_FIELDS = FieldMapper(
    {
        "activity_type": ["type", "activity_type"],
        "scheduled_at": ["scheduled_at", "start_date", "date"],
        "contact_name": ["contact_name", "client_name"],
        "description": ["description", "title"],
        "status": ["status"],
    }
)

MONEY_PATHS = ["deal_size", "value"]


# ============================================================================
# VALUE PARSERS
# ============================================================================

_DATE_FORMATS = ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d", "%m/%d/%Y %H:%M:%S", "%m/%d/%Y")


def parse_source_date(value: Any) -> Optional[datetime]:
    """
    Parse a ClientTether timestamp into an aware UTC datetime.

    Missing or unparseable values return None; callers must never substitute
    "now" for them.
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if not text:
            return None

        parsed = None
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            for fmt in _DATE_FORMATS:
                try:
                    parsed = datetime.strptime(text, fmt)
                    break
                except ValueError:
                    continue

        if parsed is None:
            logger.debug(f"Unparseable source date: {text!r}")
            return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def earliest(dates: Iterable[Optional[datetime]]) -> Optional[datetime]:
    """Earliest non-null date, or None when there is none."""
    valid = [d for d in dates if d is not None]
    return min(valid) if valid else None


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, Decimal)):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(str(value))
    else:
        text = str(value).strip().replace(",", "").replace("$", "")
        if not text:
            return None
        try:
            result = Decimal(text)
        except InvalidOperation:
            return None
    if not result.is_finite():
        return None
    return result


def parse_money(record: Dict[str, Any], paths: Sequence[str] = MONEY_PATHS) -> Decimal:
    """
    Monetary value of a record.

    Tries each path in order and takes the first non-zero parseable amount.
    Missing, zero or unparseable values on every path contribute 0.
    """
    for path in paths:
        amount = _to_decimal(FieldMapper._extract_value(record, path))
        if amount is not None and amount != 0:
            return amount
    return Decimal("0")


def parse_probability(value: Any) -> int:
    """Probability as an int percentage clamped to 0..100."""
    amount = _to_decimal(value)
    if amount is None:
        return 0
    return max(0, min(100, int(amount)))


def format_money(amount: Decimal) -> str:
    """Fixed-point string without float drift: Decimal('50000.00') -> '50000'."""
    quantized = amount.quantize(Decimal("0.01"))
    if quantized == 0:
        return "0"
    return format(quantized.normalize(), "f")


def opportunity_name(record: Dict[str, Any]) -> str:
    """Display name for an opportunity, falling back to the contact's name."""
    mapped = OPPORTUNITY_FIELDS.map_fields(record)
    if mapped["name"]:
        return str(mapped["name"])
    full_name = " ".join(
        str(part).strip() for part in (mapped["first_name"], mapped["last_name"]) if part
    ).strip()
    return full_name or "Unknown"

"""Record normalization and deterministic ID generation.

Warehouse drivers hand back timestamps in several shapes (``datetime``, ``date``,
ISO strings, BigQuery's ``"YYYY-MM-DD HH:MM:SS UTC"`` strings, wrapper objects with a
``.value`` attribute). Everything here reduces them to timezone-aware UTC datetimes so
the partition predicate, the checkpoint and the record ID all see the same instant.
"""

from __future__ import annotations

import hashlib
import json
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional, Sequence

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# Reserved target fields
ID_FIELD = "id"
SYNCED_AT_FIELD = "_syncedAt"
# A source column named "id" is carried under this name on the target record
SOURCE_ID_FIELD = "_sourceId"

RECORD_SAMPLE_LENGTH = 500


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a warehouse timestamp into an aware UTC datetime, or None if unusable."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        # Epoch seconds
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if text.endswith(" UTC"):
            text = text[: -len(" UTC")] + "+00:00"
        text = text.replace("Z", "+00:00")
        try:
            return parse_timestamp(datetime.fromisoformat(text))
        except ValueError:
            return None
    inner = getattr(value, "value", None)
    if inner is not None and inner is not value:
        return parse_timestamp(inner)
    return None


def format_timestamp(value: datetime) -> str:
    """Canonical ISO-8601 form used for checkpoints and record IDs."""
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


def convert_value(value: Any) -> Any:
    """Convert a single driver value into a plain Python value."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return parse_timestamp(value)
    if isinstance(value, date):
        return parse_timestamp(value)
    if isinstance(value, Decimal):
        if value == value.to_integral_value():
            return int(value)
        return float(value)
    if isinstance(value, (str, int, float, bool, list, dict)):
        return value
    inner = getattr(value, "value", None)
    if inner is not None:
        # Wrapper objects (e.g. BigQueryTimestamp-style) carry an ISO string in .value
        return parse_timestamp(inner) or inner
    return value


def normalize_record(record: Dict[str, Any]) -> Dict[str, Any]:
    return {key: convert_value(value) for key, value in record.items()}


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, bytes):
        return value.hex()
    return str(value)


def to_jsonable(record: Dict[str, Any]) -> Dict[str, Any]:
    """Round-trip through JSON so the payload holds primitives only."""
    return json.loads(json.dumps(record, default=_json_default))


def record_sample(record: Dict[str, Any]) -> str:
    return json.dumps(record, default=_json_default)[:RECORD_SAMPLE_LENGTH]


def natural_key_values(
    record: Dict[str, Any],
    natural_key: Optional[Sequence[str]],
    *,
    from_target: bool = False,
) -> Dict[str, Any]:
    """Pull natural-key values out of a source row (or a synced target row)."""
    values: Dict[str, Any] = {}
    for column in natural_key or []:
        if from_target and column == ID_FIELD:
            values[column] = record.get(SOURCE_ID_FIELD)
        else:
            values[column] = record.get(column)
    return values


def _record_key(record: Dict[str, Any], natural_key: Optional[Sequence[str]]) -> str:
    if natural_key:
        return "|".join("" if v is None else str(v) for v in natural_key_values(record, natural_key).values())
    # No natural key: hash the full content
    return json.dumps(record, sort_keys=True, separators=(",", ":"), default=_json_default)


def generate_record_id(
    record: Dict[str, Any],
    timestamp_column: str,
    natural_key: Optional[Sequence[str]] = None,
) -> str:
    """Deterministic 16-hex-char ID from the record timestamp plus its natural key.

    Identical input always yields the identical ID, so a retried batch upserts the
    same rows instead of duplicating them.
    """
    timestamp = parse_timestamp(record.get(timestamp_column))
    if timestamp is None:
        raise ValueError(f"Record has no parseable '{timestamp_column}'")
    material = f"{format_timestamp(timestamp)}-{_record_key(record, natural_key)}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()[:16]


def to_target_record(record: Dict[str, Any], record_id: str, synced_at: datetime) -> Dict[str, Any]:
    """Flatten a normalized source row into a target row."""
    target = {key: value for key, value in record.items() if key not in (ID_FIELD, SYNCED_AT_FIELD)}
    if ID_FIELD in record:
        target[SOURCE_ID_FIELD] = record[ID_FIELD]
    target[ID_FIELD] = record_id
    target[SYNCED_AT_FIELD] = synced_at
    return target


def last_parseable_timestamp(records: Iterable[Dict[str, Any]], timestamp_column: str) -> Optional[datetime]:
    """Timestamp of the last record (in pull order) whose timestamp parses."""
    last: Optional[datetime] = None
    for record in records:
        parsed = parse_timestamp(record.get(timestamp_column))
        if parsed is not None:
            last = parsed
    return last

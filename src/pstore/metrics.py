"""
Core record types for pstore.

ApplianceMetric mirrors one row of the PowerStore
`space_metrics_by_appliance` report; Measurement is what we hand to a sink.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

from pstore.errors import DecodeError, TimestampParseError

MEASUREMENT_NAME = "PowerStoreAppliance"
APPLIANCE_ID_TAG = "Appliance_ID"

# YYYY-MM-DDTHH:MM:SS[.fraction](Z|+HH:MM|-HH:MM)
_RFC3339_RE = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:\d{2})",
    re.ASCII,
)


@dataclass
class ApplianceMetric:
    """A single row of the space-metrics report."""

    timestamp: str = ""
    appliance_id: str = ""
    physical_total: int = 0     # bytes
    physical_used: int = 0      # bytes

    @classmethod
    def from_json(cls, item: Any) -> ApplianceMetric:
        if not isinstance(item, dict):
            raise DecodeError(f"expected a JSON object, got {type(item).__name__}")

        return cls(
            timestamp=_get_typed(item, "timestamp", str, ""),
            appliance_id=_get_typed(item, "appliance_id", str, ""),
            physical_total=_get_typed(item, "physical_total", int, 0),
            physical_used=_get_typed(item, "physical_used", int, 0),
        )


@dataclass
class Measurement:
    """One data point as seen by a sink."""

    name: str
    tags: Dict[str, str]
    fields: Dict[str, Any]
    timestamp: datetime

    def to_dict(self) -> dict:
        """Return a plain dict for display or storage."""
        return {
            "name": self.name,
            "tags": dict(self.tags),
            "fields": dict(self.fields),
            "timestamp": self.timestamp.isoformat(),
        }


def _get_typed(item: dict, key: str, kind: type, default):
    # Missing or null keys fall back to the zero value, wrong types don't.
    value = item.get(key)
    if value is None:
        return default
    # bool is an int subclass but never a valid byte count
    if not isinstance(value, kind) or isinstance(value, bool):
        raise DecodeError(
            f"field {key!r}: expected {kind.__name__}, got {type(value).__name__}"
        )
    return value


def decode_appliance_metrics(payload: Any) -> List[ApplianceMetric]:
    """Turn the decoded metrics/generate body into ApplianceMetric rows.

    The body must be a JSON array; an empty array is fine.
    """
    if not isinstance(payload, list):
        raise DecodeError(
            f"expected a JSON array of metrics, got {type(payload).__name__}"
        )
    return [ApplianceMetric.from_json(item) for item in payload]


def parse_rfc3339(value: str) -> datetime:
    """Parse a strict RFC3339 timestamp into an aware datetime.

    Fractional seconds of any precision are accepted and truncated to
    microseconds. Anything else (date-only, space separator, missing
    offset, out-of-range fields) raises TimestampParseError.
    """
    match = _RFC3339_RE.fullmatch(value)
    if not match:
        raise TimestampParseError(f"not an RFC3339 timestamp: {value!r}")

    year, month, day, hour, minute, second, fraction, offset = match.groups()

    micros = int((fraction or "0")[:6].ljust(6, "0"))

    if offset == "Z":
        tz = timezone.utc
    else:
        sign = 1 if offset[0] == "+" else -1
        off_h, off_m = int(offset[1:3]), int(offset[4:6])
        if off_h > 23 or off_m > 59:
            raise TimestampParseError(f"bad UTC offset in {value!r}")
        tz = timezone(sign * timedelta(hours=off_h, minutes=off_m))

    try:
        return datetime(
            int(year), int(month), int(day),
            int(hour), int(minute), int(second),
            micros, tzinfo=tz,
        )
    except ValueError as exc:
        raise TimestampParseError(f"{value!r}: {exc}") from exc


def build_measurement(metric: ApplianceMetric, timestamp: datetime) -> Measurement:
    # New dicts every time -- sinks may hold on to what we give them.
    return Measurement(
        name=MEASUREMENT_NAME,
        tags={APPLIANCE_ID_TAG: metric.appliance_id},
        fields={
            "physical_total": metric.physical_total,
            "physical_used": metric.physical_used,
        },
        timestamp=timestamp,
    )

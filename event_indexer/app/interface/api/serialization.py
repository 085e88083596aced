from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
from typing import Any

from event_indexer.app.domain.models import IndexerStats, StoredEvent


# Largest integer a JSON consumer using IEEE-754 doubles holds exactly (2**53 - 1).
MAX_SAFE_INTEGER = 9_007_199_254_740_991


def json_safe(value: Any) -> Any:
    """
    Recursively convert a payload into JSON-safe values.

    Integers outside the double-precision safe range become decimal strings,
    datetimes become ISO-8601 strings, bytes become 0x hex.
    """
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, int):
        return str(value) if abs(value) > MAX_SAFE_INTEGER else value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if isinstance(value, dict):
        return {str(k): json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [json_safe(v) for v in value]
    return value


def serialize_event(event: StoredEvent) -> dict[str, Any]:
    data = asdict(event)
    ordered = {"id": data.pop("id"), **data}
    return json_safe(ordered)


def serialize_stats(stats: IndexerStats) -> dict[str, Any]:
    return json_safe(
        {
            "totalEvents": stats.total_events,
            "eventsByContract": [{"name": c.name, "count": c.count} for c in stats.events_by_contract],
            "eventsByType": [{"name": t.name, "count": t.count} for t in stats.events_by_type],
            "lastProcessedBlock": stats.last_processed_block,
        }
    )

"""Ingestion boundary — turns a loosely typed payload into an Event.

Nothing downstream of ``normalize_event`` ever sees an untyped payload.
Body-level problems (size, JSON syntax, non-object bodies) raise
MalformedInput; field-level problems fall back to defaults.
"""

from __future__ import annotations

import json
import math
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from shared.enums import (
    DEFAULT_AGENT_ID,
    DEFAULT_EVENT,
    MAX_BODY_BYTES,
    EventStatus,
)
from shared.errors import MalformedInput
from shared.models import Event


def parse_body(raw: bytes) -> dict[str, Any]:
    """Decode a POST body into a payload object."""
    if len(raw) > MAX_BODY_BYTES:
        raise MalformedInput("Payload too large")
    if not raw.strip():
        return {}
    try:
        payload = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise MalformedInput("Invalid JSON") from None
    if not isinstance(payload, dict):
        raise MalformedInput("Event payload must be a JSON object")
    return payload


def normalize_event(
    payload: dict[str, Any],
    received_at: datetime,
    event_id: str | None = None,
) -> Event:
    """Build the fixed Event shape from a payload, applying defaults."""
    if not isinstance(payload, dict):
        raise MalformedInput("Event payload must be a JSON object")

    metadata = payload.get("metadata")
    return Event(
        id=event_id or str(uuid4()),
        agent_id=_text(payload.get("agentId")) or DEFAULT_AGENT_ID,
        event=_text(payload.get("event")) or DEFAULT_EVENT,
        status=_status(payload.get("status")),
        latency_ms=_latency(payload.get("latencyMs")),
        message=_text(payload.get("message"), strip=False),
        metadata=metadata if isinstance(metadata, dict) else {},
        timestamp=parse_timestamp(payload.get("timestamp")) or received_at,
        received_at=received_at,
    )


def parse_timestamp(value: Any) -> datetime | None:
    """ISO 8601 strings or epoch milliseconds; None when unusable."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        try:
            if not math.isfinite(value):
                return None
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    try:
        return dt.astimezone(timezone.utc)
    except (OverflowError, ValueError):
        # Offset pushes the instant outside the datetime range
        return None


def _text(value: Any, strip: bool = True) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip() if strip else value
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def _status(value: Any) -> EventStatus:
    if not isinstance(value, str):
        return EventStatus.OK
    lowered = value.strip().lower()
    if lowered == EventStatus.ERROR:
        return EventStatus.ERROR
    if lowered == EventStatus.WARNING:
        return EventStatus.WARNING
    return EventStatus.OK


def _latency(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        num = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    if not math.isfinite(num) or num < 0:
        return None
    return num

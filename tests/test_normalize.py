"""Ingestion boundary tests — body parsing and field normalization."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from backend.normalize import normalize_event, parse_body, parse_timestamp
from shared.enums import MAX_BODY_BYTES, EventStatus
from shared.errors import MalformedInput

RECEIVED = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestParseBody:
    def test_object(self):
        assert parse_body(b'{"agentId": "a"}') == {"agentId": "a"}

    def test_empty_body_is_empty_payload(self):
        assert parse_body(b"") == {}
        assert parse_body(b"  \n") == {}

    @pytest.mark.parametrize("raw", [b"{not json", b"[1,2]", b'"text"', b"\xff\xfe"])
    def test_rejected(self, raw: bytes):
        with pytest.raises(MalformedInput) as info:
            parse_body(raw)
        assert info.value.status == 400

    def test_too_large(self):
        raw = json.dumps({"message": "x" * MAX_BODY_BYTES}).encode()
        with pytest.raises(MalformedInput, match="Payload too large"):
            parse_body(raw)


class TestNormalizeEvent:
    def test_defaults(self):
        evt = normalize_event({}, RECEIVED)
        assert evt.agent_id == "unknown-agent"
        assert evt.event == "heartbeat"
        assert evt.status == EventStatus.OK
        assert evt.latency_ms is None
        assert evt.message == ""
        assert evt.metadata == {}
        assert evt.timestamp == RECEIVED
        assert evt.received_at == RECEIVED
        assert evt.source == "manual"
        assert evt.id

    def test_blank_strings_fall_back(self):
        evt = normalize_event({"agentId": "   ", "event": ""}, RECEIVED)
        assert evt.agent_id == "unknown-agent"
        assert evt.event == "heartbeat"

    @pytest.mark.parametrize("raw,expected", [
        ("ERROR", EventStatus.ERROR),
        (" Warning ", EventStatus.WARNING),
        ("ok", EventStatus.OK),
        ("fatal", EventStatus.OK),
        (3, EventStatus.OK),
        (None, EventStatus.OK),
    ])
    def test_status(self, raw, expected):
        assert normalize_event({"status": raw}, RECEIVED).status == expected

    @pytest.mark.parametrize("raw,expected", [
        (12.5, 12.5),
        ("40", 40.0),
        (0, 0.0),
        (-1, None),
        ("soon", None),
        (True, None),
        (float("inf"), None),
        (10**400, None),
    ])
    def test_latency(self, raw, expected):
        assert normalize_event({"latencyMs": raw}, RECEIVED).latency_ms == expected

    def test_non_object_metadata_dropped(self):
        assert normalize_event({"metadata": [1, 2]}, RECEIVED).metadata == {}
        evt = normalize_event({"metadata": {"source": "codex_log"}}, RECEIVED)
        assert evt.source == "codex_log"

    def test_non_string_fields_stringified(self):
        evt = normalize_event({"agentId": 7, "message": {"k": 1}}, RECEIVED)
        assert evt.agent_id == "7"
        assert evt.message == '{"k": 1}'

    def test_invalid_timestamp_uses_receipt_time(self):
        evt = normalize_event({"timestamp": "yesterday-ish"}, RECEIVED)
        assert evt.timestamp == RECEIVED

    def test_explicit_id(self):
        assert normalize_event({}, RECEIVED, event_id="e-1").id == "e-1"

    def test_non_object_payload(self):
        with pytest.raises(MalformedInput):
            normalize_event(["x"], RECEIVED)  # type: ignore[arg-type]


class TestParseTimestamp:
    def test_iso_with_z(self):
        assert parse_timestamp("2026-01-01T00:00:00Z") == datetime(2026, 1, 1, tzinfo=timezone.utc)

    def test_naive_iso_is_utc(self):
        assert parse_timestamp("2026-01-01T05:00:00") == datetime(2026, 1, 1, 5, tzinfo=timezone.utc)

    def test_offset_converted_to_utc(self):
        assert parse_timestamp("2026-01-01T09:00:00+09:00") == datetime(2026, 1, 1, tzinfo=timezone.utc)

    def test_epoch_millis(self):
        assert parse_timestamp(1767225600000) == datetime(2026, 1, 1, tzinfo=timezone.utc)

    @pytest.mark.parametrize("raw", [
        None, True, "", "garbage", float("nan"), {},
        10**400, 1e300,
        "0001-01-01T00:00:00+01:00", "9999-12-31T23:59:59-01:00",
    ])
    def test_unusable(self, raw):
        assert parse_timestamp(raw) is None

    def test_out_of_range_values_fall_back(self):
        evt = normalize_event(
            {"latencyMs": 10**400, "timestamp": "0001-01-01T00:00:00+01:00"}, RECEIVED,
        )
        assert evt.latency_ms is None
        assert evt.timestamp == RECEIVED

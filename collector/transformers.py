"""Line transformers — one raw log line in, zero or more event payloads out.

Transformers are pure: no clock, no I/O. A payload without ``timestamp``
gets the receipt time at the ingestion boundary. Unrecognized or empty
content yields ``[]``; only a bug inside a transformer surfaces, through
``transform_lines``, as a TransformFailure for that one line.
"""

from __future__ import annotations

import json
import logging
import math
import re
from datetime import datetime, timezone
from typing import Any, Callable, Iterable

from shared.enums import (
    COST_UPDATE_EVENT,
    MAX_MESSAGE_CHARS,
    MAX_TOOL_ARGS_CHARS,
    MAX_TOOL_INPUT_CHARS,
)
from shared.errors import TransformFailure

from .tailer import is_gap_marker

logger = logging.getLogger("pulse.collector.transform")

Payload = dict[str, Any]
Transform = Callable[[str], list[Payload]]

LEAD_AGENT = "lead"

SOURCE_CLAUDE_HISTORY = "claude_history"
SOURCE_CLAUDE_SESSION = "claude_session"
SOURCE_CODEX_HISTORY = "codex_history"
SOURCE_CODEX_LOG = "codex_log"
SOURCE_STATS_CACHE = "stats_cache"
SOURCE_COLLECTOR = "collector"

TRUNCATED_MARKER: dict[str, Any] = {"_truncated": True}


def transform_lines(transform: Transform, lines: Iterable[str]) -> list[Payload]:
    """Run ``transform`` over a batch; a failing line is logged and skipped."""
    payloads: list[Payload] = []
    for line in lines:
        try:
            payloads.extend(transform(line))
        except Exception as exc:
            failure = TransformFailure(line, f"{type(exc).__name__}: {exc}")
            logger.warning(
                "Skipping line in %s: %s (%.80r)",
                getattr(transform, "__name__", "transform"), failure.reason, line,
            )
    return payloads


# ═══════════════════════════════════════════════════════════════════════════
#  HELPERS
# ═══════════════════════════════════════════════════════════════════════════

def _load_object(line: str) -> dict[str, Any] | None:
    try:
        parsed = json.loads(line)
    except (json.JSONDecodeError, TypeError):
        return None
    return parsed if isinstance(parsed, dict) else None


def _clip(text: Any, limit: int = MAX_MESSAGE_CHARS) -> str:
    return str(text)[:limit]


def gap_warning(record: dict[str, Any], source: str, agent_id: str = LEAD_AGENT) -> Payload:
    """The warning event surfaced for a tailer gap marker."""
    return {
        "agentId": agent_id,
        "event": "collector_warning",
        "status": "warning",
        "message": _clip(record.get("message") or "collector skipped old bytes"),
        "metadata": {
            "source": source,
            "kind": record.get("kind"),
            "skippedBytes": record.get("skippedBytes"),
        },
    }


def bounded_tool_input(value: Any) -> Any:
    """Tool inputs larger than the cap are replaced by a redaction marker."""
    tool_input = value if value is not None else {}
    try:
        encoded = json.dumps(tool_input)
    except (TypeError, ValueError):
        return dict(TRUNCATED_MARKER)
    if len(encoded) > MAX_TOOL_INPUT_CHARS:
        return dict(TRUNCATED_MARKER)
    return tool_input


def _count(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    if not math.isfinite(value) or value < 0:
        return 0
    return int(value)


# ═══════════════════════════════════════════════════════════════════════════
#  CLAUDE
# ═══════════════════════════════════════════════════════════════════════════

def claude_history_to_events(line: str) -> list[Payload]:
    """~/.claude/history.jsonl: one prompt per line, text under ``display``."""
    record = _load_object(line)
    if record is None:
        return []
    if is_gap_marker(record):
        return [gap_warning(record, SOURCE_CLAUDE_HISTORY)]
    display = record.get("display")
    if not display:
        return []

    text = str(display)
    payload: Payload = {
        "agentId": LEAD_AGENT,
        "event": "user_request",
        "status": "ok",
        "message": _clip(text),
        "metadata": {
            "source": SOURCE_CLAUDE_HISTORY,
            "sessionId": record.get("sessionId") or None,
            "textLength": len(text),
        },
    }
    if record.get("timestamp") is not None:
        payload["timestamp"] = record["timestamp"]
    return [payload]


def claude_session_to_events(line: str) -> list[Payload]:
    """~/.claude/projects/<project>/<session>.jsonl transcript entries."""
    record = _load_object(line)
    if record is None:
        return []
    if is_gap_marker(record):
        return [gap_warning(record, SOURCE_CLAUDE_SESSION)]

    kind = record.get("type") or ""
    session_id = record.get("sessionId") or ""
    base: Payload = {"agentId": LEAD_AGENT, "status": "ok"}
    if record.get("timestamp") is not None:
        base["timestamp"] = record["timestamp"]

    message = record.get("message")
    if not isinstance(message, dict):
        message = {}

    if kind == "user":
        raw = message.get("content")
        if not raw:
            return []
        if isinstance(raw, list):
            parts = [
                str(c.get("text") or c.get("content") or "")
                for c in raw if isinstance(c, dict)
            ]
            content = " ".join(parts).strip()
        else:
            content = str(raw)
        if not content:
            return []
        return [{
            **base,
            "event": "user_message",
            "message": _clip(content),
            "metadata": {"source": SOURCE_CLAUDE_SESSION, "sessionId": session_id},
        }]

    if kind != "assistant":
        return []

    model = message.get("model") or ""
    items = message.get("content")
    events: list[Payload] = []

    for item in items if isinstance(items, list) else []:
        if not isinstance(item, dict):
            continue
        item_type = item.get("type") or ""
        if item_type == "text" and item.get("text"):
            events.append({
                **base,
                "event": "assistant_message",
                "message": _clip(item["text"]),
                "metadata": {
                    "source": SOURCE_CLAUDE_SESSION,
                    "sessionId": session_id,
                    "model": model,
                },
            })
        elif item_type == "tool_use":
            events.append({
                **base,
                "event": "tool_call",
                "message": _clip(item.get("name") or "unknown_tool"),
                "metadata": {
                    "source": SOURCE_CLAUDE_SESSION,
                    "sessionId": session_id,
                    "model": model,
                    "toolInput": bounded_tool_input(item.get("input")),
                },
            })
        elif item_type and item_type not in ("text", "tool_result"):
            logger.debug("Unhandled assistant content type: %s", item_type)

    usage = message.get("usage")
    if isinstance(usage, dict):
        input_tokens = _count(usage.get("input_tokens"))
        output_tokens = _count(usage.get("output_tokens"))
        total = input_tokens + output_tokens
        if total > 0:
            events.append({
                **base,
                "event": "token_usage",
                "message": f"tokens +{total}",
                "metadata": {
                    "source": SOURCE_CLAUDE_SESSION,
                    "sessionId": session_id,
                    "model": model,
                    "tokenUsage": {
                        "inputTokens": input_tokens,
                        "outputTokens": output_tokens,
                        "cacheReadInputTokens": _count(usage.get("cache_read_input_tokens")),
                        "totalTokens": total,
                    },
                },
            })

    return events


def stats_cost_total(stats: Any) -> float:
    """Sum of ``modelUsage.*.costUSD`` in ~/.claude/stats-cache.json."""
    if not isinstance(stats, dict):
        return 0.0
    usage = stats.get("modelUsage")
    if not isinstance(usage, dict):
        return 0.0
    total = 0.0
    for model in usage.values():
        if not isinstance(model, dict):
            continue
        cost = model.get("costUSD")
        if isinstance(cost, (int, float)) and not isinstance(cost, bool) and math.isfinite(cost):
            total += float(cost)
    return total


def cost_update(delta: float, total: float, baseline: bool = False) -> Payload:
    """A cost_update payload. The baseline one carries the whole spend so far."""
    metadata: dict[str, Any] = {
        "source": SOURCE_STATS_CACHE,
        "costDelta": delta,
        "costTotalUsd": total,
    }
    if baseline:
        metadata["costBaseline"] = True
    return {
        "agentId": LEAD_AGENT,
        "event": COST_UPDATE_EVENT,
        "status": "ok",
        "message": f"cost ${total:.6f} so far" if baseline else f"cost +${delta:.6f}",
        "metadata": metadata,
    }


# ═══════════════════════════════════════════════════════════════════════════
#  CODEX
# ═══════════════════════════════════════════════════════════════════════════

_ROLE_KEYWORDS: list[tuple[str, tuple[str, ...]]] = [
    ("designer", ("design", "디자인", "ui")),
    ("frontend", ("front", "프론트", "css", "component")),
    ("backend", ("api", "backend", "백엔드", "database", "기능")),
]

_LOG_TIMESTAMP = re.compile(r"^(\d{4}-\d{2}-\d{2}T\S+)")
_TOOL_CALL = re.compile(r"ToolCall:\s+(\S+)\s+(\{.*\})")


def detect_role(text: Any) -> str:
    normalized = str(text or "").lower()
    for role, keywords in _ROLE_KEYWORDS:
        if any(k in normalized for k in keywords):
            return role
    return LEAD_AGENT


def _unix_seconds_iso(value: Any) -> str | None:
    if isinstance(value, bool):
        return None
    try:
        seconds = float(value)
        return datetime.fromtimestamp(seconds, tz=timezone.utc).isoformat()
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def _log_timestamp(line: str) -> str | None:
    match = _LOG_TIMESTAMP.match(line)
    if not match:
        return None
    try:
        dt = datetime.fromisoformat(match.group(1).replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def codex_history_to_events(line: str) -> list[Payload]:
    """~/.codex/history.jsonl: ``{"session_id", "ts", "text"}`` per line."""
    record = _load_object(line)
    if record is None:
        return []
    if is_gap_marker(record):
        return [gap_warning(record, SOURCE_CODEX_HISTORY)]
    if not record.get("text"):
        return []

    text = str(record["text"])
    payload: Payload = {
        "agentId": detect_role(text),
        "event": "user_request",
        "status": "ok",
        "message": _clip(text),
        "metadata": {
            "source": SOURCE_CODEX_HISTORY,
            "sessionId": record.get("session_id") or None,
            "textLength": len(text),
        },
    }
    ts = _unix_seconds_iso(record.get("ts"))
    if ts:
        payload["timestamp"] = ts
    return [payload]


def codex_log_to_events(line: str) -> list[Payload]:
    """~/.codex/log/codex-tui.log: plain text, matched by marker substrings."""
    if line.lstrip().startswith("{"):
        record = _load_object(line)
        if is_gap_marker(record):
            return [gap_warning(record, SOURCE_CODEX_LOG)]

    ts = _log_timestamp(line)

    def emit(agent_id: str, event: str, status: str, message: str, **meta: Any) -> list[Payload]:
        payload: Payload = {
            "agentId": agent_id,
            "event": event,
            "status": status,
            "message": _clip(message),
            "metadata": {"source": SOURCE_CODEX_LOG, **meta},
        }
        if ts:
            payload["timestamp"] = ts
        return [payload]

    if "task_started" in line:
        return emit(LEAD_AGENT, "task_started", "ok", "Codex task started")
    if "task_complete" in line:
        return emit(LEAD_AGENT, "task_complete", "ok", "Codex task completed")
    if "ToolCall:" in line:
        match = _TOOL_CALL.search(line)
        tool = match.group(1) if match else "unknown_tool"
        args = ""
        if match:
            try:
                args = json.dumps(json.loads(match.group(2)))
            except json.JSONDecodeError:
                args = match.group(2)
        return emit(detect_role(args), "tool_call", "ok", tool, args=args[:MAX_TOOL_ARGS_CHARS])
    if "needs_follow_up=true" in line:
        return emit(LEAD_AGENT, "follow_up_required", "warning", "needs_follow_up=true")
    if " ERROR " in line or "error=" in line:
        return emit("backend", "runtime_error", "error", line)
    return []

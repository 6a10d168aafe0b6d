"""Agent Pulse enumerations and constants.

Single source of truth for the status vocabulary, buffer capacities and the
size limits applied at the ingestion and collection boundaries.
"""

from enum import StrEnum


# ---------------------------------------------------------------------------
# Event status — what a submitter reports
# ---------------------------------------------------------------------------

class EventStatus(StrEnum):
    OK = "ok"
    WARNING = "warning"
    ERROR = "error"


ALERT_STATUSES = {EventStatus.WARNING, EventStatus.ERROR}


# ---------------------------------------------------------------------------
# Derived status — computed from a rollup, never submitted
# ---------------------------------------------------------------------------

class DerivedStatus(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    AT_RISK = "at-risk"
    BLOCKED = "blocked"


# ---------------------------------------------------------------------------
# Stream message types — /api/stream
# ---------------------------------------------------------------------------

class MessageType(StrEnum):
    SNAPSHOT = "snapshot"
    EVENT = "event"
    KEEPALIVE = "keepalive"
    PONG = "pong"


class ViewerState(StrEnum):
    CONNECTING = "connecting"
    STREAMING = "streaming"
    CLOSED = "closed"


# ---------------------------------------------------------------------------
# Defaults applied by normalization
# ---------------------------------------------------------------------------

DEFAULT_AGENT_ID = "unknown-agent"
DEFAULT_EVENT = "heartbeat"
DEFAULT_SOURCE = "manual"
NO_MESSAGE = "No message"
COST_UPDATE_EVENT = "cost_update"


# ---------------------------------------------------------------------------
# Store capacities
# ---------------------------------------------------------------------------

RECENT_CAPACITY = 200
ALERT_CAPACITY = 120
SNAPSHOT_RECENT_LIMIT = 50
SNAPSHOT_ALERT_LIMIT = 20
ALERTS_ENDPOINT_LIMIT = 50


# ---------------------------------------------------------------------------
# Field limits
# ---------------------------------------------------------------------------

MAX_BODY_BYTES = 1024 * 1024        # 1 MiB per POST /api/events
MAX_READ_BYTES = 512 * 1024         # tailer cap per read
MAX_STATS_CACHE_BYTES = 512 * 1024
MAX_MESSAGE_CHARS = 120
MAX_TOOL_INPUT_CHARS = 512
MAX_TOOL_ARGS_CHARS = 180


# ---------------------------------------------------------------------------
# Live distribution
# ---------------------------------------------------------------------------

VIEWER_QUEUE_SIZE = 1000
KEEPALIVE_SECONDS = 15

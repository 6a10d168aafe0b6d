"""Agent Pulse Pydantic models — the contract between server, collectors and viewers.

Python attributes are snake_case; the wire format (REST bodies and stream
messages) is camelCase through aliases. Always serialize with
``to_wire()`` so the aliases are applied.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .enums import DEFAULT_SOURCE, DerivedStatus, EventStatus, MessageType


class WireModel(BaseModel):
    """Base for every model that crosses the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def to_wire(model: BaseModel) -> dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True)


# ═══════════════════════════════════════════════════════════════════════════
#  EVENTS
# ═══════════════════════════════════════════════════════════════════════════

class Event(WireModel):
    """A normalized activity record. Immutable once created."""
    model_config = ConfigDict(frozen=True)

    id: str
    agent_id: str
    event: str
    status: EventStatus = EventStatus.OK
    latency_ms: float | None = None
    message: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime                         # origin time
    received_at: datetime                       # ingestion time

    @property
    def source(self) -> str:
        src = self.metadata.get("source")
        return str(src) if src else DEFAULT_SOURCE


class Alert(WireModel):
    id: str
    severity: EventStatus
    agent_id: str
    event: str
    message: str
    created_at: datetime


# ═══════════════════════════════════════════════════════════════════════════
#  ROLLUPS
# ═══════════════════════════════════════════════════════════════════════════

class Rollup(WireModel):
    """Cumulative counters for one key. total == ok + warning + error."""
    total: int = 0
    ok: int = 0
    warning: int = 0
    error: int = 0
    last_seen: datetime | None = None
    last_event: str = "-"
    last_latency_ms: float | None = None
    token_total: int = 0
    cost_usd: float = 0.0


class AgentRollup(Rollup):
    agent_id: str


class SourceRollup(Rollup):
    source: str


class StatusRow(WireModel):
    """Derived per-agent status, one row per known agent."""
    role_id: str
    active: bool
    status: DerivedStatus
    total: int = 0
    last_event: str = "-"
    last_seen: datetime | None = None


# ═══════════════════════════════════════════════════════════════════════════
#  SNAPSHOT
# ═══════════════════════════════════════════════════════════════════════════

class Totals(WireModel):
    agents: int = 0
    total: int = 0
    ok: int = 0
    warning: int = 0
    error: int = 0
    token_total: int = 0
    cost_total_usd: float = 0.0


class Snapshot(WireModel):
    """A self-consistent point-in-time view of the aggregated state."""
    generated_at: datetime
    totals: Totals = Field(default_factory=Totals)
    agents: list[AgentRollup] = Field(default_factory=list)
    sources: list[SourceRollup] = Field(default_factory=list)
    recent: list[Event] = Field(default_factory=list)
    alerts: list[Alert] = Field(default_factory=list)
    workflow_progress: list[StatusRow] = Field(default_factory=list)


# ═══════════════════════════════════════════════════════════════════════════
#  REST + STREAM SHAPES
# ═══════════════════════════════════════════════════════════════════════════

class IngestAck(WireModel):
    """POST /api/events response."""
    accepted: bool = True
    id: str


class ErrorResponse(BaseModel):
    """Standard error shape."""
    error: str
    message: str
    status: int
    details: dict[str, Any] | None = None


def snapshot_message(snapshot: Snapshot) -> dict[str, Any]:
    return {"type": MessageType.SNAPSHOT.value, "payload": to_wire(snapshot)}


def event_message(event: Event) -> dict[str, Any]:
    return {"type": MessageType.EVENT.value, "payload": to_wire(event)}


KEEPALIVE_MESSAGE: dict[str, Any] = {"type": MessageType.KEEPALIVE.value}
PONG_MESSAGE: dict[str, Any] = {"type": MessageType.PONG.value}

"""Rollup bookkeeping and derived status.

Single implementation, used by the store when it accepts an event, by the
snapshot builder, and by LiveView when a viewer replays events onto its own
copy of the rollups. Two copies of the same cascade drift apart; this is
the one source of truth.
"""

from __future__ import annotations

import math
from typing import Iterable

from .enums import COST_UPDATE_EVENT, DerivedStatus, EventStatus
from .models import AgentRollup, Event, Rollup, StatusRow, Totals


def token_delta(event: Event) -> int:
    """Tokens carried by ``metadata.tokenUsage.totalTokens``, 0 if absent or invalid."""
    usage = event.metadata.get("tokenUsage")
    if not isinstance(usage, dict):
        return 0
    value = usage.get("totalTokens")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    if not math.isfinite(value) or value <= 0:
        return 0
    return int(value)


def cost_delta(event: Event) -> float:
    """USD added by a ``cost_update`` event's ``metadata.costDelta``."""
    if event.event != COST_UPDATE_EVENT:
        return 0.0
    value = event.metadata.get("costDelta")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    if not math.isfinite(value) or value <= 0:
        return 0.0
    return float(value)


def record_event(rollup: Rollup, event: Event) -> None:
    """Fold one event into a rollup in place."""
    rollup.total += 1
    if event.status == EventStatus.ERROR:
        rollup.error += 1
    elif event.status == EventStatus.WARNING:
        rollup.warning += 1
    else:
        rollup.ok += 1
    rollup.last_seen = event.received_at
    rollup.last_event = event.event
    rollup.last_latency_ms = event.latency_ms
    rollup.token_total += token_delta(event)
    rollup.cost_usd += cost_delta(event)


def derive_status(role_id: str, rollup: Rollup | None) -> StatusRow:
    """Derive a status row using the priority cascade.

    1. blocked:  any error recorded
    2. at-risk:  any warning recorded
    3. running:  any event recorded
    4. idle:     nothing recorded, or no rollup at all
    """
    if rollup is None:
        return StatusRow(role_id=role_id, active=False, status=DerivedStatus.IDLE)

    if rollup.error > 0:
        status = DerivedStatus.BLOCKED
    elif rollup.warning > 0:
        status = DerivedStatus.AT_RISK
    elif rollup.total > 0:
        status = DerivedStatus.RUNNING
    else:
        status = DerivedStatus.IDLE

    return StatusRow(
        role_id=role_id,
        active=True,
        status=status,
        total=rollup.total,
        last_event=rollup.last_event,
        last_seen=rollup.last_seen,
    )


def compute_totals(agents: Iterable[AgentRollup]) -> Totals:
    totals = Totals()
    for row in agents:
        totals.agents += 1
        totals.total += row.total
        totals.ok += row.ok
        totals.warning += row.warning
        totals.error += row.error
        totals.token_total += row.token_total
        totals.cost_total_usd += row.cost_usd
    return totals

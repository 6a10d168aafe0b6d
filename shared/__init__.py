"""Agent Pulse shared types — the contract between server, collectors and viewers.

This package is the single source of truth for:
- Enumerations and constants (enums.py)
- Pydantic data models (models.py)
- Rollup bookkeeping and derived status (rollups.py)
- The error taxonomy (errors.py)
- Client-side incremental replay (liveview.py)
"""

from .enums import (
    DerivedStatus,
    EventStatus,
    MessageType,
    ViewerState,
)
from .errors import (
    MalformedInput,
    PulseError,
    ReadFailure,
    SubmissionFailure,
    TransformFailure,
)
from .models import (
    AgentRollup,
    Alert,
    ErrorResponse,
    Event,
    IngestAck,
    Snapshot,
    SourceRollup,
    StatusRow,
    Totals,
    to_wire,
)
from .rollups import derive_status, record_event
from .liveview import LiveView

"""Configuration loader for Agent Pulse.

Reads from config.json in the project root. Falls back to environment
variables (PULSE_{KEY}), then to defaults.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path

from shared.enums import (
    ALERT_CAPACITY,
    KEEPALIVE_SECONDS,
    RECENT_CAPACITY,
    VIEWER_QUEUE_SIZE,
)

_CONFIG: dict | None = None

CONFIG_PATH = Path(__file__).resolve().parent.parent / "config.json"


def _load() -> dict:
    global _CONFIG
    if _CONFIG is not None:
        return _CONFIG

    if CONFIG_PATH.exists():
        with open(CONFIG_PATH) as f:
            _CONFIG = json.load(f)
    else:
        _CONFIG = {}
    return _CONFIG


def get(key: str, default=None):
    """Get a config value. Checks config.json first, then env var PULSE_{KEY}, then default."""
    cfg = _load()
    if key in cfg:
        return cfg[key]
    env_key = f"PULSE_{key.upper()}"
    env_val = os.environ.get(env_key)
    if env_val is not None:
        return env_val
    return default


def get_int(key: str, default: int, minimum: int | None = None) -> int:
    raw = get(key, default)
    try:
        value = int(raw)
    except (TypeError, ValueError):
        value = default
    if minimum is not None:
        value = max(minimum, value)
    return value


def get_list(key: str, default: str = "") -> list[str]:
    raw = get(key, default)
    if isinstance(raw, list):
        return [str(v).strip() for v in raw if str(v).strip()]
    return [v.strip() for v in str(raw or "").split(",") if v.strip()]


def reload():
    """Force reload config from disk (useful for tests)."""
    global _CONFIG
    _CONFIG = None


@dataclass
class Settings:
    host: str = "127.0.0.1"
    port: int = 5050
    api_key: str = ""
    recent_capacity: int = RECENT_CAPACITY
    alert_capacity: int = ALERT_CAPACITY
    viewer_queue_size: int = VIEWER_QUEUE_SIZE
    keepalive_seconds: int = KEEPALIVE_SECONDS
    collectors: list[str] = field(default_factory=list)
    poll_ms: int = 2500
    backfill_lines: int = 25
    start_at_end: bool = True
    claude_home: Path = field(default_factory=lambda: Path.home() / ".claude")
    codex_home: Path = field(default_factory=lambda: Path.home() / ".codex")


def load_settings() -> Settings:
    """Resolve every setting through ``get``."""
    return Settings(
        host=str(get("host", "127.0.0.1")),
        port=get_int("port", 5050),
        api_key=str(get("api_key", "") or ""),
        recent_capacity=get_int("recent_capacity", RECENT_CAPACITY, RECENT_CAPACITY),
        alert_capacity=get_int("alert_capacity", ALERT_CAPACITY, ALERT_CAPACITY),
        viewer_queue_size=get_int("viewer_queue_size", VIEWER_QUEUE_SIZE, 1),
        keepalive_seconds=get_int("keepalive_seconds", KEEPALIVE_SECONDS, 1),
        collectors=get_list("collectors"),
        poll_ms=get_int("poll_ms", 2500, 100),
        backfill_lines=get_int("backfill_lines", 25, 0),
        start_at_end=_truthy(get("start_at_end", True)),
        claude_home=Path(get("claude_home", Path.home() / ".claude")).expanduser(),
        codex_home=Path(get("codex_home", Path.home() / ".codex")).expanduser(),
    )


def _truthy(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() not in ("0", "false", "no", "off", "")

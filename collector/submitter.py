"""Submitters — where a collector's payloads go.

``HttpSubmitter`` posts each payload to a running monitor's
``POST /api/events``. ``StoreSubmitter`` hands payloads straight to an
in-process AggregationStore. Both raise SubmissionFailure; the caller logs
it and drops the payload. There is no retry and no local buffering.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import requests

from shared.errors import MalformedInput, SubmissionFailure

logger = logging.getLogger("pulse.collector.submit")

DEFAULT_MONITOR_URL = "http://localhost:5050/api/events"
USER_AGENT = "pulse-collector/0.1.0"


class Submitter(Protocol):
    def submit(self, payload: dict[str, Any]) -> None: ...

    def close(self) -> None: ...


class HttpSubmitter:
    """One POST per payload with a bounded timeout."""

    def __init__(
        self,
        url: str = DEFAULT_MONITOR_URL,
        api_key: str = "",
        timeout: float = 5.0,
    ):
        self.url = url
        self.timeout = timeout
        self._session = requests.Session()
        self._session.headers.update({
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
        })
        if api_key:
            self._session.headers["X-API-Key"] = api_key

    def submit(self, payload: dict[str, Any]) -> None:
        try:
            resp = self._session.post(self.url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise SubmissionFailure(f"POST {self.url} failed: {e}") from e

        if not 200 <= resp.status_code < 300:
            raise SubmissionFailure(
                f"POST {self.url} returned {resp.status_code}: {resp.text[:200]}"
            )

    def close(self) -> None:
        self._session.close()


class StoreSubmitter:
    """Deliver into an AggregationStore living in the same process."""

    def __init__(self, store):
        self._store = store

    def submit(self, payload: dict[str, Any]) -> None:
        try:
            self._store.accept(payload)
        except MalformedInput as e:
            raise SubmissionFailure(f"rejected by store: {e.message}") from e

    def close(self) -> None:
        pass

"""Error taxonomy shared by the server and the collector."""

from __future__ import annotations


class PulseError(Exception):
    """Base class for every error raised by Agent Pulse."""


class MalformedInput(PulseError):
    """An ingestion payload was rejected before reaching the store."""

    def __init__(self, message: str, status: int = 400) -> None:
        super().__init__(message)
        self.message = message
        self.status = status


class ReadFailure(PulseError):
    """The tailer could not stat or read a file. The cursor is untouched."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class TransformFailure(PulseError):
    """A single raw line could not be turned into events."""

    def __init__(self, line: str, reason: str) -> None:
        super().__init__(reason)
        self.line = line
        self.reason = reason


class SubmissionFailure(PulseError):
    """Pushing a payload downstream failed. The payload is dropped."""

"""
Archiver error types.

All errors inherit from ArchiverError so the pipeline can catch a
per-file failure at one boundary and move on to the next event.
"""

from __future__ import annotations

from pathlib import Path


class ArchiverError(Exception):
    """Base exception for all per-file archiving failures."""

    stage = "unknown"

    def __init__(self, message: str, path: Path | str | None = None):
        self.path = str(path) if path is not None else None
        super().__init__(message)


class SkippableInput(ArchiverError):
    """Raised when an event does not need processing (not an error)."""

    stage = "received"


class FormatError(ArchiverError):
    """Raised when a filename does not carry a capture timestamp."""

    stage = "naming"


class ArchiveIOError(ArchiverError):
    """Raised on stat, read, write or directory-creation failures."""

    stage = "io"

    def __init__(
        self,
        message: str,
        path: Path | str | None = None,
        stage: str | None = None,
    ):
        super().__init__(message, path)
        if stage:
            self.stage = stage


class StabilityTimeoutError(ArchiverError):
    """Raised when a file never stops changing within the wait window."""

    stage = "stabilizing"

    def __init__(self, path: Path | str, waited_seconds: float):
        self.waited_seconds = waited_seconds
        super().__init__(
            f"File did not stabilise within {waited_seconds:.0f}s: {path}", path
        )


class TranscodeError(ArchiverError):
    """Raised when the encoder is missing or exits with a failure status."""

    stage = "transcoding"

    def __init__(self, message: str, path: Path | str | None = None, returncode: int | None = None):
        self.returncode = returncode
        super().__init__(message, path)

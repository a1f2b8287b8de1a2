"""
Per-recording archive pipeline.

Sequences one source file through
dedup -> stability wait -> date extraction -> naming -> transcode ->
sidecar -> ledger update.  Every failure for one file is logged and
recorded; nothing here is allowed to take the process down.  The
source recording is never modified or deleted.
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Protocol

from livestream_archiver.errors import (
    ArchiveIOError,
    ArchiverError,
    SkippableInput,
)
from livestream_archiver.ledger import DedupLedger, canonicalize
from livestream_archiver.metadata import write_sidecar
from livestream_archiver.naming import (
    DEFAULT_EXTENSION,
    OutputSlot,
    extract_capture_time,
    resolve_slot,
)
from livestream_archiver.stability import StabilityDetector

logger = logging.getLogger(__name__)


class EventKind(enum.Enum):
    CREATED = "created"
    MODIFIED = "modified"
    OTHER = "other"


@dataclass(frozen=True)
class FileEvent:
    """A filesystem notification for one path."""

    path: Path
    kind: EventKind


class RunState(enum.Enum):
    RECEIVED = "received"
    DEDUPED = "deduped"
    STABILIZING = "stabilizing"
    STABLE = "stable"
    NAMED = "named"
    TRANSCODED = "transcoded"
    METADATA_WRITTEN = "metadata_written"
    DONE = "done"
    SKIPPED = "skipped"
    FAILED = "failed"


class Transcoder(Protocol):
    def transcode(self, source: Path, target: Path) -> None: ...


@dataclass
class RunRecord:
    """Outcome of one pass of a source file through the pipeline."""

    source: str
    destination: str = ""
    state: RunState = RunState.RECEIVED
    error: str = ""
    failed_stage: str = ""
    started: float = 0.0
    finished: float = 0.0

    @property
    def duration(self) -> float:
        if self.finished and self.started:
            return self.finished - self.started
        return 0.0


@dataclass
class RunStats:
    """Aggregated pipeline statistics."""

    total_done: int = 0
    total_failed: int = 0
    total_skipped: int = 0
    history: list[RunRecord] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def record(self, rec: RunRecord) -> None:
        with self._lock:
            self.history.append(rec)
            if rec.state is RunState.SKIPPED:
                self.total_skipped += 1
            elif rec.state is RunState.DONE:
                self.total_done += 1
            else:
                self.total_failed += 1
            # Keep last 1000 records
            if len(self.history) > 1000:
                self.history = self.history[-1000:]

    def summary(self) -> str:
        with self._lock:
            return (
                f"{self.total_done} archived, {self.total_failed} failed, "
                f"{self.total_skipped} skipped"
            )


class Archiver:
    """
    Single-threaded orchestrator for the archive pipeline.

    Parameters
    ----------
    output_root : Path
        Root of the dated archive tree.
    transcoder : Transcoder
        Anything with ``transcode(source, target)`` raising TranscodeError.
    detector : StabilityDetector, optional
        Write-completion detector (defaults to production timings).
    ledger : DedupLedger, optional
        Already-archived paths.  Owned by this archiver.
    extension : str
        Accepted source extension, also used for outputs.
    on_run_complete : callable, optional
        Invoked with the RunRecord after every event that reached the
        pipeline.
    """

    def __init__(
        self,
        output_root: Path | str,
        transcoder: Transcoder,
        detector: StabilityDetector | None = None,
        ledger: DedupLedger | None = None,
        extension: str = DEFAULT_EXTENSION,
        on_run_complete: Callable[[RunRecord], None] | None = None,
    ):
        self.output_root = Path(output_root)
        self.transcoder = transcoder
        self.detector = detector or StabilityDetector()
        self.ledger = ledger if ledger is not None else DedupLedger()
        self.extension = extension.lower().lstrip(".")
        self._on_run_complete = on_run_complete
        self.stats = RunStats()

    def accepts(self, path: Path) -> bool:
        """Return True if *path* has the accepted recording extension."""
        return path.suffix.lower().lstrip(".") == self.extension

    def handle_event(self, event: FileEvent) -> RunRecord | None:
        """Route one filesystem event; only created/modified events run."""
        if event.kind is EventKind.OTHER:
            logger.debug("Ignoring event: %s %s", event.kind.value, event.path)
            return None
        return self.process_file(event.path)

    def process_file(self, path: Path | str) -> RunRecord:
        """Run *path* through the whole pipeline and return the outcome."""
        path = Path(path)
        rec = RunRecord(source=str(path), started=time.time())
        try:
            self._check_received(path, rec)
            slot = self._run(path, rec)
            rec.destination = str(slot.video_path)
            self.ledger.mark(path)
            rec.state = RunState.DONE
        except SkippableInput as exc:
            rec.state = RunState.SKIPPED
            rec.error = str(exc)
            logger.info("Skipping %s: %s", path, exc)
        except ArchiverError as exc:
            rec.failed_stage = rec.state.value
            rec.state = RunState.FAILED
            rec.error = str(exc)
            logger.error(
                "Failed to archive %s at stage '%s': %s", path, rec.failed_stage, exc
            )
        except Exception as exc:
            rec.failed_stage = rec.state.value
            rec.state = RunState.FAILED
            rec.error = str(exc)
            logger.exception(
                "Unexpected error archiving %s at stage '%s'", path, rec.failed_stage
            )
        finally:
            rec.finished = time.time()
            if rec.state is RunState.DONE:
                logger.info(
                    "Archived %s -> %s in %.1fs (original preserved)",
                    path, rec.destination, rec.duration,
                )
            self.stats.record(rec)
            if self._on_run_complete:
                try:
                    self._on_run_complete(rec)
                except Exception:
                    logger.exception("Error in on_run_complete callback")
        return rec

    # ---- stages ----

    def _check_received(self, path: Path, rec: RunRecord) -> None:
        if not self.accepts(path):
            raise SkippableInput(f"not a .{self.extension} file", path)
        if self.ledger.seen(path):
            raise SkippableInput(f"already processed ({canonicalize(path)})", path)
        if not path.is_file():
            raise SkippableInput("file no longer exists", path)
        rec.state = RunState.DEDUPED

    def _run(self, path: Path, rec: RunRecord) -> OutputSlot:
        logger.info("Processing livestream recording: %s", path)

        rec.state = RunState.STABILIZING
        self.detector.wait_until_stable(path)
        rec.state = RunState.STABLE

        captured = extract_capture_time(path.name, self.extension)
        slot = self._name(captured)
        rec.state = RunState.NAMED
        rec.destination = str(slot.video_path)
        logger.info(
            "Assigned %s as %s: %s", path.name, slot.category.tag, slot.video_path
        )

        self._transcode(path, slot)
        rec.state = RunState.TRANSCODED

        write_sidecar(slot)
        rec.state = RunState.METADATA_WRITTEN
        return slot

    def _name(self, captured: datetime) -> OutputSlot:
        slot = resolve_slot(captured, self.output_root, self.extension)
        try:
            slot.directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ArchiveIOError(
                f"Could not create {slot.directory}: {exc}", slot.directory, stage="naming"
            ) from exc
        return slot

    def _transcode(self, source: Path, slot: OutputSlot) -> None:
        target = slot.video_path
        # ffmpeg runs with -n, so a file already here is not ours to remove
        preexisting = target.exists()
        try:
            self.transcoder.transcode(source, target)
        except ArchiverError:
            if not preexisting and target.exists():
                try:
                    target.unlink()
                    logger.warning("Removed partial output %s", target)
                except OSError as exc:
                    logger.error("Could not remove partial output %s: %s", target, exc)
            raise
        if not target.is_file():
            raise ArchiveIOError(
                "Encoder reported success but produced no output", target, stage="transcoding"
            )

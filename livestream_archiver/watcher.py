"""File system watcher for Livestream Archiver.

Uses the watchdog library to monitor the ingest folder for new or
modified recordings.  Events cross from watchdog's notification thread
to a single archive worker through a bounded queue; a full queue blocks
the notifier instead of dropping events.
"""

from __future__ import annotations

import logging
import os
import queue
import threading
from pathlib import Path
from typing import Any

from watchdog.events import (
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from livestream_archiver.errors import FormatError
from livestream_archiver.naming import (
    DEFAULT_EXTENSION,
    extract_capture_time,
    has_dated_output,
)
from livestream_archiver.pipeline import Archiver, EventKind, FileEvent

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 100

# Queue sentinel telling the worker to exit
_STOP = None


def startup_scan(
    watch_folder: Path | str,
    output_root: Path | str,
    extension: str = DEFAULT_EXTENSION,
) -> list[Path]:
    """
    List recordings in *watch_folder* that have not been archived yet.

    A recording counts as archived when either program output already
    exists for its capture date.  Names that are not capture timestamps
    are logged and left alone.
    """
    folder = Path(watch_folder)
    root = Path(output_root)
    pending: list[Path] = []
    for item in sorted(folder.iterdir()):
        if not item.is_file() or item.suffix.lower().lstrip(".") != extension:
            continue
        try:
            captured = extract_capture_time(item.name, extension)
        except FormatError as exc:
            logger.warning("Skipping unrecognised file during scan: %s", exc)
            continue
        if has_dated_output(root, captured, extension):
            logger.info("Skipping already processed file: %s", item)
            continue
        logger.info("Found unprocessed file: %s", item)
        pending.append(item)
    return pending


class EventQueueHandler(FileSystemEventHandler):
    """Watchdog handler that forwards file events into the archive queue."""

    def __init__(
        self,
        events: "queue.Queue[FileEvent | None]",
        watch_folder: str | Path | None = None,
    ):
        super().__init__()
        self._events = events
        self._watch_folder = (
            os.path.realpath(watch_folder) if watch_folder is not None else None
        )

    def _in_watch_folder(self, path: Path) -> bool:
        if self._watch_folder is None:
            return True
        return os.path.realpath(path.parent) == self._watch_folder

    def _put(self, event: FileSystemEvent, kind: EventKind) -> None:
        if event.is_directory:
            return
        self._put_path(Path(os.fsdecode(event.src_path)), kind)

    def _put_path(self, path: Path, kind: EventKind) -> None:
        logger.debug("Received event: %s %s", kind.value, path)
        # Blocks when the queue is full (backpressure)
        self._events.put(FileEvent(path, kind))

    def on_created(self, event: FileCreatedEvent) -> None:  # type: ignore[override]
        """Handle a new file creation event."""
        self._put(event, EventKind.CREATED)

    def on_modified(self, event: FileModifiedEvent) -> None:  # type: ignore[override]
        """Handle a file modification event."""
        self._put(event, EventKind.MODIFIED)

    def on_deleted(self, event: FileDeletedEvent) -> None:  # type: ignore[override]
        self._put(event, EventKind.OTHER)

    def on_moved(self, event: FileMovedEvent) -> None:  # type: ignore[override]
        """Handle a rename; sync clients move finished files into place."""
        self._put(event, EventKind.OTHER)
        if event.is_directory:
            return
        dest = Path(os.fsdecode(event.dest_path))
        if self._in_watch_folder(dest):
            self._put_path(dest, EventKind.MODIFIED)


class ArchiveWorker:
    """Drains the event queue into the archiver, one file at a time."""

    def __init__(self, archiver: Archiver, events: "queue.Queue[FileEvent | None]"):
        self._archiver = archiver
        self._events = events
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, daemon=True, name="ArchiveWorker"
        )
        self._thread.start()

    def stop(self, timeout: float | None = None) -> bool:
        """
        Ask the worker to exit once the current file is finished.

        Queued events that have not started are abandoned.  Returns True
        if the worker has exited within *timeout*.
        """
        self._stop.set()
        try:
            # Wakes an idle worker; a busy one sees the flag after its file
            self._events.put_nowait(_STOP)
        except queue.Full:
            pass
        if self._thread is None:
            return True
        self._thread.join(timeout=timeout)
        return not self._thread.is_alive()

    def _run(self) -> None:
        while not self._stop.is_set():
            event = self._events.get()
            try:
                if event is _STOP or self._stop.is_set():
                    return
                self._archiver.handle_event(event)
            except Exception:
                logger.exception("Error handling event %s", event)
            finally:
                self._events.task_done()


class FolderWatcher:
    """High-level watcher: startup scan + watchdog + archive worker.

    Usage:
        watcher = FolderWatcher(watch_folder, archiver)
        watcher.start()
        ...
        watcher.stop()
    """

    def __init__(
        self,
        watch_folder: str | Path,
        archiver: Archiver,
        queue_size: int = DEFAULT_QUEUE_SIZE,
    ):
        """Create a new folder watcher."""
        self.watch_folder = str(watch_folder)
        self.archiver = archiver
        self.events: "queue.Queue[FileEvent | None]" = queue.Queue(
            maxsize=max(1, queue_size)
        )
        self._handler = EventQueueHandler(self.events, self.watch_folder)
        self._worker = ArchiveWorker(archiver, self.events)
        self._observer: Any | None = None

    # ---- lifecycle ----

    def start(self) -> None:
        """Queue the startup backlog, then start watching the folder."""
        if not os.path.isdir(self.watch_folder):
            logger.error("Watch folder does not exist: %s", self.watch_folder)
            raise FileNotFoundError(
                f"Watch folder does not exist: {self.watch_folder}"
            )

        self._worker.start()

        logger.info("Checking for existing files...")
        for path in startup_scan(
            self.watch_folder, self.archiver.output_root, self.archiver.extension
        ):
            self.events.put(FileEvent(path, EventKind.CREATED))

        observer = Observer()
        observer.schedule(self._handler, self.watch_folder, recursive=False)
        observer.start()
        self._observer = observer
        logger.info("Watching directory: %s", self.watch_folder)

    def stop(self, timeout: float | None = None) -> bool:
        """
        Stop watching and let the worker finish its current file.

        With the default ``timeout=None`` this waits for an in-flight
        stability wait or encode to complete.  Returns False if the worker
        was still busy when *timeout* ran out.
        """
        if self._observer:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None
        logger.info("Waiting for the current file to finish...")
        finished = self._worker.stop(timeout=timeout)
        if finished:
            logger.info("Watcher stopped.")
        else:
            logger.warning("Archive worker still busy after %ss; leaving it.", timeout)
        return finished

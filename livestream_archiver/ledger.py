"""In-memory record of recordings that have already been archived."""

from __future__ import annotations

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 1000


def canonicalize(path: Path | str) -> str:
    """Absolute path with symlinks and ``..`` segments resolved."""
    return os.path.realpath(os.fspath(path))


class DedupLedger:
    """
    Set of canonical source paths that finished processing.

    Watchdog typically fires several created/modified events for one
    recording; the ledger makes the later ones no-ops.  Size is bounded:
    when a ``mark`` pushes it past *capacity* the whole set is dropped.

    Not thread-safe.  Only the archive worker touches it.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        self._capacity = max(1, capacity)
        self._paths: set[str] = set()

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return len(self._paths)

    def seen(self, path: Path | str) -> bool:
        """Return True if *path* has already been archived."""
        return canonicalize(path) in self._paths

    def mark(self, path: Path | str) -> None:
        """Record *path* as archived."""
        self._paths.add(canonicalize(path))
        if len(self._paths) > self._capacity:
            logger.info(
                "Processed-file ledger exceeded %d entries; clearing.", self._capacity
            )
            self._paths.clear()

"""
Write-completion detection for Livestream Archiver.

OBS (or a sync client) keeps appending to a recording for hours, so a
file is only handed on once its size *and* modification time have
stopped changing for a sustained window.
"""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from livestream_archiver.errors import ArchiveIOError, StabilityTimeoutError

logger = logging.getLogger(__name__)

# Minimum quiet window (poll interval x required checks) in seconds
MIN_QUIET_SECONDS = 30.0


@dataclass
class StabilityState:
    """Consecutive-stability counter over (size, mtime) observations."""

    last_size: int = 0
    last_mtime: int | None = None
    stable_count: int = 0
    checks: int = 0

    def observe(self, size: int, mtime: int) -> int:
        """Fold one observation in and return the updated counter."""
        self.checks += 1
        if size > 0 and size == self.last_size and mtime == self.last_mtime:
            self.stable_count += 1
        else:
            self.stable_count = 0
        self.last_size = size
        self.last_mtime = mtime
        return self.stable_count


def _stat(path: Path) -> tuple[int, int]:
    st = os.stat(path)
    return st.st_size, st.st_mtime_ns


class StabilityDetector:
    """
    Poll a file until it has been quiet long enough to be safe to read.

    Parameters
    ----------
    initial_delay : float
        Grace period before the first check, so the producer has time to
        open the file.
    poll_interval : float
        Seconds between checks.
    required_checks : int
        Consecutive unchanged checks needed.  ``poll_interval *
        required_checks`` must be at least 30 seconds.
    settle_time : float
        Extra wait after stability is reached.
    max_wait : float
        Give up after this many seconds worth of checks.
    sleep, stat :
        Injection points for tests.  ``stat`` returns ``(size, mtime)``.
    """

    def __init__(
        self,
        initial_delay: float = 10.0,
        poll_interval: float = 2.0,
        required_checks: int = 15,
        settle_time: float = 30.0,
        max_wait: float = 4 * 60 * 60,
        sleep: Callable[[float], None] = time.sleep,
        stat: Callable[[Path], tuple[int, int]] = _stat,
    ):
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        if poll_interval * required_checks < MIN_QUIET_SECONDS:
            raise ValueError(
                f"poll_interval x required_checks must cover at least "
                f"{MIN_QUIET_SECONDS:.0f}s (got {poll_interval * required_checks:.0f}s)"
            )
        self.initial_delay = initial_delay
        self.poll_interval = poll_interval
        self.required_checks = required_checks
        self.settle_time = settle_time
        self.max_wait = max_wait
        self._sleep = sleep
        self._stat = stat

    @property
    def max_checks(self) -> int:
        return max(1, int(self.max_wait / self.poll_interval))

    def wait_until_stable(self, path: Path) -> int:
        """
        Block until *path* is stable.

        Returns the number of checks it took.  Raises ArchiveIOError if
        the file cannot be stat'ed and StabilityTimeoutError if it never
        settles.
        """
        logger.info("Waiting for file to be ready: %s", path)
        self._sleep(self.initial_delay)

        state = StabilityState()
        for _ in range(self.max_checks):
            try:
                size, mtime = self._stat(path)
            except OSError as exc:
                raise ArchiveIOError(
                    f"Failed to check file metadata: {exc}", path, stage="stabilizing"
                ) from exc

            previous = state.last_size
            count = state.observe(size, mtime)
            logger.debug(
                "Check %d: size=%d bytes, stable for %d/%d checks",
                state.checks, size, count, self.required_checks,
            )
            if count == 0 and size != previous:
                logger.debug("Size changed: %d -> %d", previous, size)

            if count >= self.required_checks:
                logger.info(
                    "File appears complete after %d checks; settling %.0fs: %s",
                    state.checks, self.settle_time, path,
                )
                self._sleep(self.settle_time)
                return state.checks

            self._sleep(self.poll_interval)

        logger.error("Timed out waiting for %s to stabilise.", path)
        raise StabilityTimeoutError(path, self.max_wait)

"""Configuration management for Livestream Archiver.

Stores and retrieves settings from a JSON config file in the
platform-appropriate application data directory.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any

from livestream_archiver.platform_utils import (
    get_config_dir as _platform_config_dir,
)
from livestream_archiver.platform_utils import (
    get_log_path as _platform_log_path,
)

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "LIVESTREAM_ARCHIVER_CONFIG"

DEFAULT_CONFIG: dict[str, Any] = {
    "watch_folder": "/home/rockvilleav/Sync/Livestreams",
    "output_folder": "/media/archive/jellyfin/livestreams",
    "file_extension": "mp4",
    # ---- write-completion detection ----
    "initial_delay_seconds": 10,
    "poll_interval_seconds": 2,
    "required_stable_checks": 15,  # 15 x 2 s = 30 s of quiet
    "settle_seconds": 30,
    "max_wait_seconds": 4 * 60 * 60,
    # ---- pipeline ----
    "ledger_capacity": 1000,
    "queue_size": 100,
    # ---- encoder ----
    "ffmpeg_path": "ffmpeg",
    "video_bitrate": "6M",
    "max_bitrate": "12M",
    "buffer_size": "24M",
    "encoder_preset": "4",
    # ---- logging ----
    "log_level": "INFO",
    "log_to_file": False,
    "max_log_size_mb": 10,  # rotate log when it exceeds this size
    "log_backup_count": 3,  # number of rotated log files to keep
}


def get_config_dir() -> Path:
    """Return the platform-appropriate application config directory."""
    return _platform_config_dir()


def get_config_path() -> Path:
    """Return the path to the configuration file."""
    override = os.environ.get(CONFIG_ENV_VAR)
    if override:
        return Path(override)
    return get_config_dir() / "config.json"


def get_log_path() -> Path:
    """Return the path to the log file."""
    return _platform_log_path()


class Config:
    """Configuration manager backed by a JSON file."""

    def __init__(self, path: Path | None = None):
        """Load config from *path*, falling back to the platform default."""
        self._path = path or get_config_path()
        self._data: dict[str, Any] = dict(DEFAULT_CONFIG)
        self.load()

    @property
    def path(self) -> Path:
        return self._path

    # ---- persistence ----

    def load(self) -> None:
        """Load configuration from disk, applying defaults for missing keys."""
        if self._path.exists():
            try:
                with open(self._path, encoding="utf-8") as fh:
                    stored = json.load(fh)
                if not isinstance(stored, dict):
                    raise ValueError("top-level JSON value is not an object")
                # Merge stored values over defaults so new keys get defaults
                self._data = {**DEFAULT_CONFIG, **stored}
                logger.info("Configuration loaded from %s", self._path)
            except (json.JSONDecodeError, ValueError, OSError) as exc:
                logger.warning("Could not read config (%s); using defaults.", exc)
                self._data = dict(DEFAULT_CONFIG)
        else:
            self._data = dict(DEFAULT_CONFIG)
            self.save()
            logger.info("Created default configuration at %s", self._path)

    def save(self) -> None:
        """Persist the current configuration to disk."""
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._path, "w", encoding="utf-8") as fh:
                json.dump(self._data, fh, indent=2)
            logger.info("Configuration saved.")
        except OSError as exc:
            logger.error("Failed to save configuration: %s", exc)

    # ---- folders ----

    @property
    def watch_folder(self) -> str:
        """Return the watched ingest folder path."""
        return self._data["watch_folder"]

    @watch_folder.setter
    def watch_folder(self, value: str) -> None:
        self._data["watch_folder"] = value

    @property
    def output_folder(self) -> str:
        """Return the archive root folder path."""
        return self._data["output_folder"]

    @output_folder.setter
    def output_folder(self, value: str) -> None:
        self._data["output_folder"] = value

    @property
    def file_extension(self) -> str:
        """Return the accepted recording extension, lowercase, no dot."""
        return str(self._data.get("file_extension", "mp4")).lower().strip().lstrip(".")

    @file_extension.setter
    def file_extension(self, value: str) -> None:
        self._data["file_extension"] = value.lower().strip().lstrip(".") or "mp4"

    # ---- write-completion detection ----

    @property
    def initial_delay(self) -> float:
        """Return the grace delay before the first stability check."""
        return float(self._data.get("initial_delay_seconds", 10))

    @initial_delay.setter
    def initial_delay(self, value: float) -> None:
        self._data["initial_delay_seconds"] = max(0.0, float(value))

    @property
    def poll_interval(self) -> float:
        """Return seconds between stability checks."""
        return float(self._data.get("poll_interval_seconds", 2))

    @poll_interval.setter
    def poll_interval(self, value: float) -> None:
        """Set the poll interval (minimum 0.5 s)."""
        self._data["poll_interval_seconds"] = max(0.5, float(value))

    @property
    def required_stable_checks(self) -> int:
        """Return the consecutive unchanged checks needed."""
        return int(self._data.get("required_stable_checks", 15))

    @required_stable_checks.setter
    def required_stable_checks(self, value: int) -> None:
        self._data["required_stable_checks"] = max(1, int(value))

    @property
    def settle_time(self) -> float:
        """Return the extra wait after a file is judged stable."""
        return float(self._data.get("settle_seconds", 30))

    @settle_time.setter
    def settle_time(self, value: float) -> None:
        self._data["settle_seconds"] = max(0.0, float(value))

    @property
    def max_wait(self) -> float:
        """Return the maximum stability wait in seconds."""
        return float(self._data.get("max_wait_seconds", 4 * 60 * 60))

    @max_wait.setter
    def max_wait(self, value: float) -> None:
        self._data["max_wait_seconds"] = max(60.0, float(value))

    # ---- pipeline ----

    @property
    def ledger_capacity(self) -> int:
        """Return the processed-file ledger cap."""
        return int(self._data.get("ledger_capacity", 1000))

    @ledger_capacity.setter
    def ledger_capacity(self, value: int) -> None:
        self._data["ledger_capacity"] = max(1, int(value))

    @property
    def queue_size(self) -> int:
        """Return the event queue capacity."""
        return max(1, int(self._data.get("queue_size", 100)))

    @queue_size.setter
    def queue_size(self, value: int) -> None:
        self._data["queue_size"] = max(1, int(value))

    # ---- encoder ----

    @property
    def ffmpeg_path(self) -> str:
        return self._data.get("ffmpeg_path", "ffmpeg") or "ffmpeg"

    @ffmpeg_path.setter
    def ffmpeg_path(self, value: str) -> None:
        self._data["ffmpeg_path"] = value.strip() or "ffmpeg"

    @property
    def video_bitrate(self) -> str:
        return str(self._data.get("video_bitrate", "6M"))

    @property
    def max_bitrate(self) -> str:
        return str(self._data.get("max_bitrate", "12M"))

    @property
    def buffer_size(self) -> str:
        return str(self._data.get("buffer_size", "24M"))

    @property
    def encoder_preset(self) -> str:
        return str(self._data.get("encoder_preset", "4"))

    # ---- logging ----

    @property
    def log_level(self) -> str:
        """Return the current logging level name."""
        return self._data.get("log_level", "INFO")

    @log_level.setter
    def log_level(self, value: str) -> None:
        self._data["log_level"] = value

    @property
    def log_to_file(self) -> bool:
        """Return whether a rotating log file is written besides stdout."""
        return bool(self._data.get("log_to_file", False))

    @log_to_file.setter
    def log_to_file(self, value: bool) -> None:
        self._data["log_to_file"] = value

    @property
    def max_log_size_mb(self) -> int:
        """Return the maximum log file size in MB before rotation."""
        return int(self._data.get("max_log_size_mb", 10))

    @max_log_size_mb.setter
    def max_log_size_mb(self, value: int) -> None:
        """Set the maximum log file size in MB (minimum 1)."""
        self._data["max_log_size_mb"] = max(1, int(value))

    @property
    def log_backup_count(self) -> int:
        """Return the number of rotated log backups to keep."""
        return int(self._data.get("log_backup_count", 3))

    @log_backup_count.setter
    def log_backup_count(self, value: int) -> None:
        """Set the number of rotated log backups to keep."""
        self._data["log_backup_count"] = max(0, int(value))

    # ---- convenience ----

    def is_configured(self) -> bool:
        """Return True when both watch and output folders are set."""
        return bool(self.watch_folder) and bool(self.output_folder)

"""
Capture-date parsing and output naming for Livestream Archiver.

Recordings arrive named after the moment capture started
(``2024-12-27_18-42-36.mp4``).  Each one is filed under
``<root>/<YYYY>/<MM>-<MonthName>/`` and named after the program it
belongs to.  The first recording of a day is the worship service, the
second is the afternoon program, and anything after that is another
afternoon program with a ``(N)`` collision counter.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from livestream_archiver.errors import FormatError

logger = logging.getLogger(__name__)

CAPTURE_FORMAT = "%Y-%m-%d_%H-%M-%S"
DEFAULT_EXTENSION = "mp4"
SIDECAR_EXTENSION = "nfo"


class Category(enum.Enum):
    """Program categories, each with a fixed title and metadata tag."""

    PRIMARY = ("Divine Worship Service - RTSDA", "Divine Worship Service")
    SECONDARY = ("Afternoon Program - RTSDA", "Afternoon Program")

    def __init__(self, title: str, tag: str):
        self.title = title
        self.tag = tag


def extract_capture_time(filename: str, extension: str = DEFAULT_EXTENSION) -> datetime:
    """Parse the capture timestamp out of *filename*.

    Raises FormatError if the name does not end in ``.<extension>`` or the
    rest is not exactly ``YYYY-MM-DD_HH-MM-SS``.
    """
    suffix = f".{extension}"
    if not filename.endswith(suffix):
        raise FormatError(f"Expected a .{extension} file: {filename}", filename)
    stamp = filename[: -len(suffix)]
    try:
        return datetime.strptime(stamp, CAPTURE_FORMAT)
    except ValueError as exc:
        raise FormatError(
            f"Filename is not a capture timestamp ({CAPTURE_FORMAT}): {filename}",
            filename,
        ) from exc


def file_date(captured: datetime) -> str:
    """Date as used in filenames: ``December 07 2024``."""
    return captured.strftime("%B %d %Y")


def display_date(captured: datetime) -> str:
    """Date as shown in titles: ``December 7 2024``."""
    return f"{captured:%B} {captured.day} {captured:%Y}"


def month_directory(output_root: Path, captured: datetime) -> Path:
    """Return ``<root>/<YYYY>/<MM>-<MonthName>`` for *captured*."""
    return output_root / captured.strftime("%Y") / captured.strftime("%m-%B")


def _base_name(category: Category, date_text: str, suffix: int | None) -> str:
    name = f"{category.title} | {date_text}"
    if suffix is not None:
        name += f" ({suffix})"
    return name


@dataclass(frozen=True)
class OutputSlot:
    """Resolved destination for one recording."""

    category: Category
    captured: datetime
    directory: Path
    suffix: int | None = None
    extension: str = DEFAULT_EXTENSION

    @property
    def base_name(self) -> str:
        """Filename without extension, zero-padded day."""
        return _base_name(self.category, file_date(self.captured), self.suffix)

    @property
    def display_title(self) -> str:
        """Human title, unpadded day."""
        return _base_name(self.category, display_date(self.captured), self.suffix)

    @property
    def video_path(self) -> Path:
        return self.directory / f"{self.base_name}.{self.extension}"

    @property
    def sidecar_path(self) -> Path:
        return self.directory / f"{self.base_name}.{SIDECAR_EXTENSION}"


def candidate_path(
    directory: Path,
    category: Category,
    captured: datetime,
    suffix: int | None = None,
    extension: str = DEFAULT_EXTENSION,
) -> Path:
    """Return the video path a slot with these fields would occupy."""
    return OutputSlot(category, captured, directory, suffix, extension).video_path


def has_dated_output(
    output_root: Path, captured: datetime, extension: str = DEFAULT_EXTENSION
) -> bool:
    """Return True if either category already has an output for this date."""
    directory = month_directory(output_root, captured)
    return any(
        candidate_path(directory, category, captured, extension=extension).exists()
        for category in Category
    )


def resolve_slot(
    captured: datetime,
    output_root: Path,
    extension: str = DEFAULT_EXTENSION,
) -> OutputSlot:
    """
    Decide the category and literal output name for a recording.

    First match wins:
      1. no primary output for the date   -> primary
      2. no secondary output for the date -> secondary
      3. otherwise secondary with the smallest free ``(N)``, N = 1, 2, ...

    The returned slot's video path did not exist when it was checked.
    Only safe with a single writer.
    """
    directory = month_directory(output_root, captured)

    for category in (Category.PRIMARY, Category.SECONDARY):
        slot = OutputSlot(category, captured, directory, None, extension)
        if not slot.video_path.exists():
            return slot

    suffix = 1
    while True:
        slot = OutputSlot(Category.SECONDARY, captured, directory, suffix, extension)
        if not slot.video_path.exists():
            logger.debug("Both programs exist for %s; using suffix %d", file_date(captured), suffix)
            return slot
        suffix += 1

"""
Episode sidecar writer.

Jellyfin/Kodi read ``<name>.nfo`` next to a video as episode details.
Recordings are filed as season = year, episode = MMDD so a year's
services sort in air order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from xml.sax.saxutils import escape

from livestream_archiver.errors import ArchiveIOError
from livestream_archiver.naming import OutputSlot

logger = logging.getLogger(__name__)

SHOW_TITLE = "LiveStreams"


@dataclass(frozen=True)
class ArchiveRecord:
    """Fixed-schema episode details for one archived recording."""

    title: str
    show_title: str
    season: str
    episode: str
    aired: str
    display_season: str
    display_episode: str
    tag: str

    @classmethod
    def from_slot(cls, slot: OutputSlot) -> "ArchiveRecord":
        captured = slot.captured
        season = captured.strftime("%Y")
        episode = captured.strftime("%m%d")
        return cls(
            title=slot.display_title,
            show_title=SHOW_TITLE,
            season=season,
            episode=episode,
            aired=captured.strftime("%Y-%m-%d"),
            display_season=season,
            display_episode=episode,
            tag=slot.category.tag,
        )


def render_nfo(record: ArchiveRecord) -> str:
    """Render *record* as an ``episodedetails`` XML document."""
    fields = (
        ("title", record.title),
        ("showtitle", record.show_title),
        ("season", record.season),
        ("episode", record.episode),
        ("aired", record.aired),
        ("displayseason", record.display_season),
        ("displayepisode", record.display_episode),
        ("tag", record.tag),
    )
    body = "\n".join(f"    <{name}>{escape(value)}</{name}>" for name, value in fields)
    return (
        '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>\n'
        "<episodedetails>\n"
        f"{body}\n"
        "</episodedetails>\n"
    )


def write_sidecar(slot: OutputSlot) -> ArchiveRecord:
    """Write the ``.nfo`` for *slot* and return the record written."""
    record = ArchiveRecord.from_slot(slot)
    try:
        slot.sidecar_path.write_text(render_nfo(record), encoding="utf-8")
    except OSError as exc:
        raise ArchiveIOError(
            f"Failed to write sidecar: {exc}", slot.sidecar_path, stage="metadata"
        ) from exc
    logger.info("Wrote sidecar %s", slot.sidecar_path)
    return record

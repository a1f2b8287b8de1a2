"""
FFmpeg invocation for Livestream Archiver.

Re-encodes recordings to AV1 on the Intel QSV hardware encoder.  Only
one encode runs at a time since the encoder is a shared device.
"""

from __future__ import annotations

import logging
import subprocess
import time
from pathlib import Path

from livestream_archiver.errors import TranscodeError

logger = logging.getLogger(__name__)


class FfmpegTranscoder:
    """Blocking AV1 (QSV) transcode via the ffmpeg CLI."""

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        video_bitrate: str = "6M",
        max_bitrate: str = "12M",
        buffer_size: str = "24M",
        preset: str = "4",
    ):
        self.ffmpeg_path = ffmpeg_path
        self.video_bitrate = video_bitrate
        self.max_bitrate = max_bitrate
        self.buffer_size = buffer_size
        self.preset = preset

    def build_command(self, source: Path, target: Path) -> list[str]:
        """Return the ffmpeg argv for *source* -> *target*."""
        return [
            self.ffmpeg_path,
            "-hide_banner",
            "-loglevel", "error",
            "-init_hw_device", "qsv=hw",
            "-filter_hw_device", "hw",
            "-hwaccel", "qsv",
            "-hwaccel_output_format", "qsv",
            "-i", str(source),
            "-c:v", "av1_qsv",
            "-preset", self.preset,
            "-b:v", self.video_bitrate,
            "-maxrate", self.max_bitrate,
            "-bufsize", self.buffer_size,
            "-c:a", "copy",
            "-n",  # never overwrite
            str(target),
        ]

    def transcode(self, source: Path, target: Path) -> None:
        """Encode *source* to *target*, raising TranscodeError on failure."""
        cmd = self.build_command(source, target)
        logger.info("Converting to AV1 and saving to: %s", target)
        logger.debug("Running: %s", " ".join(cmd))
        started = time.time()
        try:
            result = subprocess.run(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                check=False,
            )
        except OSError as exc:
            raise TranscodeError(f"Could not run {self.ffmpeg_path}: {exc}", source) from exc

        if result.returncode != 0:
            tail = (result.stderr or b"").decode("utf-8", errors="replace").strip()
            tail = tail.splitlines()[-1] if tail else "no output"
            raise TranscodeError(
                f"FFmpeg conversion failed (exit {result.returncode}): {tail}",
                source,
                returncode=result.returncode,
            )
        logger.info("Encode finished in %.1fs: %s", time.time() - started, target)

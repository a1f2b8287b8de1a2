"""Shared fixtures for the archiver tests."""

from pathlib import Path

import pytest

from livestream_archiver.stability import StabilityDetector


class FakeTranscoder:
    """Stands in for ffmpeg: copies a marker into the target."""

    def __init__(self, fail_with: Exception | None = None, partial: bool = False):
        self.calls: list[tuple[Path, Path]] = []
        self._fail_with = fail_with
        self._partial = partial

    def transcode(self, source: Path, target: Path) -> None:
        self.calls.append((source, target))
        if self._partial or self._fail_with is None:
            target.write_bytes(b"av1:" + source.read_bytes()[:16])
        if self._fail_with is not None:
            raise self._fail_with


@pytest.fixture
def instant_detector() -> StabilityDetector:
    """Production thresholds, but without any real sleeping."""
    return StabilityDetector(
        initial_delay=0,
        poll_interval=2,
        required_checks=15,
        settle_time=0,
        sleep=lambda seconds: None,
    )


@pytest.fixture
def watch_dir(tmp_path: Path) -> Path:
    path = tmp_path / "Livestreams"
    path.mkdir()
    return path


@pytest.fixture
def output_root(tmp_path: Path) -> Path:
    path = tmp_path / "archive"
    path.mkdir()
    return path


def _write_recording(folder: Path, name: str = "2024-12-27_18-42-36.mp4") -> Path:
    path = folder / name
    path.write_bytes(b"\x00\x00\x00\x18ftypmp42" + b"x" * 64)
    return path


@pytest.fixture
def make_recording():
    """Factory writing a small fake recording into a folder."""
    return _write_recording


@pytest.fixture
def transcoder() -> FakeTranscoder:
    return FakeTranscoder()


@pytest.fixture
def make_transcoder():
    """Factory for transcoders that fail (optionally leaving a partial file)."""
    return FakeTranscoder

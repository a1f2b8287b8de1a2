"""Tests for the per-recording archive pipeline."""

import os
import xml.etree.ElementTree as ET
from pathlib import Path

import pytest

from livestream_archiver import pipeline as pipeline_mod
from livestream_archiver.errors import ArchiveIOError, TranscodeError
from livestream_archiver.ledger import DedupLedger
from livestream_archiver.naming import Category
from livestream_archiver.pipeline import (
    Archiver,
    EventKind,
    FileEvent,
    RunRecord,
    RunState,
)
from livestream_archiver.stability import StabilityDetector


@pytest.fixture
def archiver(output_root, transcoder, instant_detector) -> Archiver:
    return Archiver(output_root, transcoder, detector=instant_detector)


def _expected_primary(output_root: Path) -> Path:
    return (
        output_root / "2024" / "12-December"
        / f"{Category.PRIMARY.title} | December 27 2024.mp4"
    )


class TestEndToEnd:

    def test_first_recording_of_the_day(self, archiver, watch_dir, output_root, make_recording):
        source = make_recording(watch_dir)
        original = source.read_bytes()

        rec = archiver.process_file(source)

        assert rec.state is RunState.DONE
        video = _expected_primary(output_root)
        assert rec.destination == str(video)
        assert video.is_file()

        nfo = ET.parse(video.with_suffix(".nfo")).getroot()
        assert nfo.findtext("season") == "2024"
        assert nfo.findtext("episode") == "1227"
        assert nfo.findtext("aired") == "2024-12-27"
        assert nfo.findtext("tag") == Category.PRIMARY.tag

        assert source.read_bytes() == original
        assert archiver.ledger.seen(source)

    def test_same_day_recordings_fill_categories(
        self, archiver, watch_dir, output_root, make_recording
    ):
        names = [
            "2024-12-27_09-30-00.mp4",
            "2024-12-27_15-00-00.mp4",
            "2024-12-27_18-42-36.mp4",
            "2024-12-27_20-10-05.mp4",
        ]
        results = [archiver.process_file(make_recording(watch_dir, n)) for n in names]

        month = output_root / "2024" / "12-December"
        assert [Path(r.destination).name for r in results] == [
            f"{Category.PRIMARY.title} | December 27 2024.mp4",
            f"{Category.SECONDARY.title} | December 27 2024.mp4",
            f"{Category.SECONDARY.title} | December 27 2024 (1).mp4",
            f"{Category.SECONDARY.title} | December 27 2024 (2).mp4",
        ]
        assert all(Path(r.destination).parent == month for r in results)


class TestReceived:

    def test_duplicate_event_is_skipped(self, archiver, transcoder, watch_dir, make_recording):
        source = make_recording(watch_dir)
        first = archiver.process_file(source)
        second = archiver.process_file(source)

        assert first.state is RunState.DONE
        assert second.state is RunState.SKIPPED
        assert len(transcoder.calls) == 1
        assert archiver.stats.total_done == 1
        assert archiver.stats.total_skipped == 1

    def test_duplicate_via_other_spelling(self, archiver, transcoder, watch_dir, make_recording):
        source = make_recording(watch_dir)
        (watch_dir / "sub").mkdir()
        archiver.process_file(source)
        again = archiver.process_file(watch_dir / "sub" / ".." / source.name)
        assert again.state is RunState.SKIPPED
        assert len(transcoder.calls) == 1

    @pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unavailable")
    def test_duplicate_via_symlink(self, archiver, transcoder, tmp_path, watch_dir, make_recording):
        source = make_recording(watch_dir)
        link_dir = tmp_path / "linked"
        link_dir.symlink_to(watch_dir, target_is_directory=True)
        archiver.process_file(link_dir / source.name)
        assert archiver.process_file(source).state is RunState.SKIPPED
        assert len(transcoder.calls) == 1

    def test_wrong_extension_never_waits(self, output_root, transcoder, watch_dir):
        def no_sleep(seconds):
            raise AssertionError("stability wait should not start")

        detector = StabilityDetector(sleep=no_sleep)
        archiver = Archiver(output_root, transcoder, detector=detector)
        notes = watch_dir / "notes.txt"
        notes.write_text("hello")

        rec = archiver.process_file(notes)
        assert rec.state is RunState.SKIPPED
        assert transcoder.calls == []

    def test_vanished_file_is_skipped(self, archiver, watch_dir):
        rec = archiver.process_file(watch_dir / "2024-12-27_18-42-36.mp4")
        assert rec.state is RunState.SKIPPED

    def test_other_events_are_ignored(self, archiver, watch_dir, make_recording):
        source = make_recording(watch_dir)
        assert archiver.handle_event(FileEvent(source, EventKind.OTHER)) is None
        assert archiver.stats.history == []

    @pytest.mark.parametrize("kind", [EventKind.CREATED, EventKind.MODIFIED])
    def test_created_and_modified_events_run(self, archiver, watch_dir, make_recording, kind):
        source = make_recording(watch_dir)
        rec = archiver.handle_event(FileEvent(source, kind))
        assert rec.state is RunState.DONE


class TestFailures:

    def test_bad_filename(self, archiver, transcoder, watch_dir, make_recording):
        source = make_recording(watch_dir, "Sabbath service.mp4")
        rec = archiver.process_file(source)

        assert rec.state is RunState.FAILED
        assert rec.failed_stage == RunState.STABLE.value
        assert transcoder.calls == []
        assert not archiver.ledger.seen(source)

    def test_stability_failure(self, output_root, transcoder, watch_dir, make_recording):
        def broken_stat(path):
            raise PermissionError(13, "Permission denied", str(path))

        detector = StabilityDetector(
            initial_delay=0, settle_time=0, sleep=lambda s: None, stat=broken_stat
        )
        archiver = Archiver(output_root, transcoder, detector=detector)
        rec = archiver.process_file(make_recording(watch_dir))

        assert rec.state is RunState.FAILED
        assert rec.failed_stage == RunState.STABILIZING.value
        assert transcoder.calls == []

    def test_transcode_failure_frees_slot(
        self, output_root, instant_detector, watch_dir, make_recording, make_transcoder
    ):
        failing = make_transcoder(TranscodeError("FFmpeg conversion failed", returncode=1), partial=True)
        archiver = Archiver(output_root, failing, detector=instant_detector)
        source = make_recording(watch_dir)
        original = source.read_bytes()

        rec = archiver.process_file(source)

        assert rec.state is RunState.FAILED
        assert rec.failed_stage == RunState.NAMED.value
        assert not _expected_primary(output_root).exists()
        assert not _expected_primary(output_root).with_suffix(".nfo").exists()
        assert source.read_bytes() == original
        assert not archiver.ledger.seen(source)

    def test_failed_file_can_be_retried(
        self, output_root, instant_detector, watch_dir, make_recording, make_transcoder
    ):
        failing = make_transcoder(TranscodeError("busy"))
        archiver = Archiver(output_root, failing, detector=instant_detector)
        source = make_recording(watch_dir)
        assert archiver.process_file(source).state is RunState.FAILED

        archiver.transcoder = make_transcoder()
        assert archiver.process_file(source).state is RunState.DONE
        assert _expected_primary(output_root).is_file()

    def test_sidecar_failure(self, archiver, watch_dir, output_root, make_recording, monkeypatch):
        def broken_sidecar(slot):
            raise ArchiveIOError("disk full", slot.sidecar_path, stage="metadata")

        monkeypatch.setattr(pipeline_mod, "write_sidecar", broken_sidecar)
        source = make_recording(watch_dir)
        rec = archiver.process_file(source)

        assert rec.state is RunState.FAILED
        assert rec.failed_stage == RunState.TRANSCODED.value
        assert _expected_primary(output_root).is_file()
        assert not archiver.ledger.seen(source)

    def test_unexpected_error_is_contained(
        self, output_root, instant_detector, watch_dir, make_recording, make_transcoder
    ):
        archiver = Archiver(
            output_root, make_transcoder(RuntimeError("boom")), detector=instant_detector
        )
        rec = archiver.process_file(make_recording(watch_dir))
        assert rec.state is RunState.FAILED
        assert "boom" in rec.error
        assert archiver.stats.total_failed == 1


def test_run_complete_callback(output_root, transcoder, instant_detector, watch_dir, make_recording):
    seen: list[RunRecord] = []
    archiver = Archiver(
        output_root, transcoder, detector=instant_detector, on_run_complete=seen.append
    )
    archiver.process_file(make_recording(watch_dir))
    assert [r.state for r in seen] == [RunState.DONE]
    assert seen[0].duration >= 0


def test_ledger_is_owned_per_archiver(output_root, transcoder, instant_detector):
    ledger = DedupLedger(capacity=5)
    archiver = Archiver(output_root, transcoder, detector=instant_detector, ledger=ledger)
    assert archiver.ledger is ledger
    assert Archiver(output_root, transcoder).ledger is not ledger


def test_failed_encode_keeps_file_it_did_not_create(
    output_root, instant_detector, watch_dir, make_recording, make_transcoder, monkeypatch
):
    real_resolve = pipeline_mod.resolve_slot

    def resolve_then_race(captured, root, extension):
        slot = real_resolve(captured, root, extension)
        # another writer claims the slot before the encode starts
        slot.directory.mkdir(parents=True, exist_ok=True)
        slot.video_path.write_bytes(b"someone else's file")
        return slot

    monkeypatch.setattr(pipeline_mod, "resolve_slot", resolve_then_race)
    failing = make_transcoder(TranscodeError("Output file exists", returncode=1))
    archiver = Archiver(output_root, failing, detector=instant_detector)

    rec = archiver.process_file(make_recording(watch_dir))

    assert rec.state is RunState.FAILED
    assert _expected_primary(output_root).read_bytes() == b"someone else's file"

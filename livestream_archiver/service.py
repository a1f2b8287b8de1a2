"""
Headless service runner for Livestream Archiver.

    python -m livestream_archiver run    Watch and archive until Ctrl-C / SIGTERM
    python -m livestream_archiver scan   Archive the current backlog, then exit
"""

import logging
import logging.handlers
import signal
import sys
import threading
from pathlib import Path

from livestream_archiver import __app_name__, __version__
from livestream_archiver.config import Config, get_log_path
from livestream_archiver.ledger import DedupLedger
from livestream_archiver.pipeline import Archiver
from livestream_archiver.stability import StabilityDetector
from livestream_archiver.transcoder import FfmpegTranscoder
from livestream_archiver.watcher import FolderWatcher, startup_scan

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(config: Config) -> None:
    """Configure the stdout handler and, optionally, a rotating log file."""
    level = getattr(logging, config.log_level.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    fmt = logging.Formatter(LOG_FORMAT)

    sh = logging.StreamHandler(sys.stdout)
    sh.setLevel(level)
    sh.setFormatter(fmt)
    root_logger.addHandler(sh)

    if config.log_to_file:
        max_bytes = config.max_log_size_mb * 1024 * 1024
        fh = logging.handlers.RotatingFileHandler(
            str(get_log_path()),
            maxBytes=max_bytes,
            backupCount=config.log_backup_count,
            encoding="utf-8",
        )
        fh.setLevel(level)
        fh.setFormatter(fmt)
        root_logger.addHandler(fh)


def prepare_folders(config: Config) -> tuple[Path, Path]:
    """Create the watch and output folders.  Failure here is fatal."""
    watch = Path(config.watch_folder)
    output = Path(config.output_folder)
    for folder in (watch, output):
        folder.mkdir(parents=True, exist_ok=True)
    return watch, output


def build_archiver(config: Config, output_root: Path) -> Archiver:
    """Wire the pipeline collaborators from *config*."""
    detector = StabilityDetector(
        initial_delay=config.initial_delay,
        poll_interval=config.poll_interval,
        required_checks=config.required_stable_checks,
        settle_time=config.settle_time,
        max_wait=config.max_wait,
    )
    transcoder = FfmpegTranscoder(
        ffmpeg_path=config.ffmpeg_path,
        video_bitrate=config.video_bitrate,
        max_bitrate=config.max_bitrate,
        buffer_size=config.buffer_size,
        preset=config.encoder_preset,
    )
    return Archiver(
        output_root=output_root,
        transcoder=transcoder,
        detector=detector,
        ledger=DedupLedger(config.ledger_capacity),
        extension=config.file_extension,
    )


def _start(config: Config) -> tuple[Path, Archiver]:
    try:
        watch, output = prepare_folders(config)
    except OSError as exc:
        logger.error("Cannot create working folders: %s", exc)
        raise
    logger.info("Ingest directory: %s", watch)
    logger.info("Output directory: %s", output)
    return watch, build_archiver(config, output)


def run_foreground(config: Config) -> int:
    """Watch and archive until SIGINT/SIGTERM.  Returns the exit status."""
    try:
        watch, archiver = _start(config)
        watcher = FolderWatcher(watch, archiver, queue_size=config.queue_size)
        watcher.start()
    except (OSError, ValueError) as exc:
        logger.error("Service cannot start: %s", exc)
        return 1

    stop = threading.Event()

    def _handler(sig, frame):
        logger.info("Received signal %d; shutting down...", sig)
        stop.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)

    while not stop.wait(timeout=1):
        pass
    watcher.stop()
    logger.info("%s stopped (%s).", __app_name__, archiver.stats.summary())
    return 0


def run_scan(config: Config) -> int:
    """Archive everything the startup scan finds, then return."""
    try:
        watch, archiver = _start(config)
    except (OSError, ValueError) as exc:
        logger.error("Scan cannot start: %s", exc)
        return 1

    for path in startup_scan(watch, archiver.output_root, archiver.extension):
        archiver.process_file(path)
    logger.info("Scan complete (%s).", archiver.stats.summary())
    return 1 if archiver.stats.total_failed else 0


def _show_help() -> None:
    print(f"{__app_name__} {__version__}")
    print()
    print("Usage:")
    print("  livestream-archiver [run]   Watch and archive until Ctrl-C")
    print("  livestream-archiver scan    Archive the current backlog, then exit")
    print("  livestream-archiver help    Show this message")
    print()
    print("Settings are read from the JSON file named by LIVESTREAM_ARCHIVER_CONFIG,")
    print("or from the platform config directory.")


def main(argv: list[str] | None = None) -> int:
    """Entry point for the service CLI."""
    args = sys.argv[1:] if argv is None else argv
    cmd = args[0] if args else "run"

    if cmd not in ("run", "scan"):
        _show_help()
        return 0 if cmd in ("help", "-h", "--help") else 2

    config = Config()
    setup_logging(config)
    logger.info("%s %s starting.", __app_name__, __version__)
    if not config.is_configured():
        logger.error("Watch and output folders must be set in %s", config.path)
        return 1

    if cmd == "scan":
        return run_scan(config)
    return run_foreground(config)


if __name__ == "__main__":
    sys.exit(main())

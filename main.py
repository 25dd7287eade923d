#!/usr/bin/env python3
"""
ClipDownloader v1.0.0: main entry point.
Cuts one clip out of a YouTube video from the command line.
"""

import sys
import os
import json
import argparse
import logging
import threading
import traceback
from pathlib import Path
from datetime import datetime

# ── Ensure Homebrew paths are in PATH ────────────────────────────────
# When launched outside a login shell, macOS does NOT source ~/.zshrc or
# ~/.bash_profile, so Homebrew's bin directories are missing from PATH.
# We add all common Homebrew locations so yt-dlp and ffmpeg are found.
HOMEBREW_PATHS = [
    "/opt/homebrew/bin",          # Apple Silicon default
    "/opt/homebrew/sbin",
    "/usr/local/bin",             # Intel Mac default
    "/usr/local/sbin",
    os.path.expanduser("~/Library/Python/3.12/bin"),
    os.path.expanduser("~/Library/Python/3.11/bin"),
    os.path.expanduser("~/Library/Python/3.13/bin"),
]

current_path = os.environ.get("PATH", "")
for p in HOMEBREW_PATHS:
    if os.path.isdir(p) and p not in current_path.split(os.pathsep):
        current_path = p + os.pathsep + current_path
os.environ["PATH"] = current_path

# ── Determine project root ────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from clipdownloader.core.constants import (
    APP_NAME, APP_DISPLAY_NAME, APP_VERSION, LOG_DIR, STAGE_DISPLAY_NAMES,
    JobStage, LogLevel, Quality, Container, Accuracy, QUALITY_FORMATS, ALL_CONTAINERS,
    YTDLP_NAME, FFMPEG_NAME,
)
from clipdownloader.core.config import AppConfig
from clipdownloader.core.models import ClipRequest, JobSnapshot
from clipdownloader.core.job_orchestrator import ClipJobOrchestrator
from clipdownloader.core.toolchain import resolve_tool, get_diagnostics

logger = logging.getLogger(APP_NAME)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELED = 130


def setup_logging(verbose: bool = False) -> Path:
    """File logging under ~/Library/Logs/ClipDownloader/."""
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    log_file = LOG_DIR / "app.log"
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(log_file, encoding="utf-8"),
        ],
    )
    return log_file


def check_prerequisites(config: AppConfig) -> list[str]:
    """Return install hints for any missing tool."""
    missing = []
    ytdlp = resolve_tool(YTDLP_NAME, config.get('ytdlp_path'))
    ffmpeg = resolve_tool(FFMPEG_NAME, config.get('ffmpeg_path'))
    if not ytdlp:
        missing.append("yt-dlp (install with: brew install yt-dlp)")
    if not ffmpeg:
        missing.append("ffmpeg (install with: brew install ffmpeg)")

    if missing:
        logger.error("Missing tools. PATH = %s", os.environ.get("PATH", ""))
    else:
        # Log found paths for debugging
        logger.info("yt-dlp found at: %s", ytdlp)
        logger.info("ffmpeg found at: %s", ffmpeg)
    return missing


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="clipdownloader",
        description=f"{APP_DISPLAY_NAME}: download a clip from a YouTube video.",
    )
    parser.add_argument("url", nargs="?", help="YouTube video URL")
    parser.add_argument("start", nargs="?", help="Clip start (SS, MM:SS or HH:MM:SS)")
    parser.add_argument("end", nargs="?", help="Clip end (SS, MM:SS or HH:MM:SS)")
    parser.add_argument("-q", "--quality", default=Quality.AUTO,
                        choices=list(QUALITY_FORMATS))
    parser.add_argument("-c", "--container", default=Container.MP4,
                        choices=sorted(ALL_CONTAINERS))
    parser.add_argument("--keyframe", action="store_true",
                        help="Cut on keyframes with a stream copy (fast, lossless)")
    parser.add_argument("--sections", action="store_true",
                        help="Download only the requested section")
    parser.add_argument("--video-bitrate", type=float, default=None, metavar="MBPS")
    parser.add_argument("--audio-bitrate", type=int, default=None, metavar="KBPS")
    parser.add_argument("-o", "--output", type=Path, default=None,
                        help="Output folder (default from config)")
    parser.add_argument("-t", "--template", default=None, help="Filename template")
    parser.add_argument("--config", type=Path, default=None, help="Config file path")
    parser.add_argument("--diagnostics", action="store_true",
                        help="Print tool versions and exit")
    parser.add_argument("-v", "--verbose", action="store_true")
    parser.add_argument("--version", action="version", version=f"%(prog)s {APP_VERSION}")
    return parser


def build_request(args: argparse.Namespace, config: AppConfig) -> ClipRequest:
    output_folder = args.output or Path(config.output_root).expanduser()
    output_folder.mkdir(parents=True, exist_ok=True)

    extra = {}
    if args.video_bitrate is not None:
        extra['video_bitrate_mbps'] = args.video_bitrate
    if args.audio_bitrate is not None:
        extra['audio_bitrate_kbps'] = args.audio_bitrate

    return ClipRequest(
        url=args.url,
        start_time=args.start,
        end_time=args.end,
        quality=args.quality,
        container=args.container,
        accuracy=Accuracy.KEYFRAME if args.keyframe else Accuracy.FRAME,
        use_download_sections=args.sections,
        output_folder=output_folder,
        filename_template=args.template or config.filename_template,
        **extra,
    )


class ProgressPrinter:
    """Prints stage changes, new log entries and a progress line to stderr."""

    def __init__(self, stream=None):
        self.stream = stream or sys.stderr
        self._stage = None
        self._last_entry = None
        self._lock = threading.Lock()

    def _new_entries(self, log: tuple) -> tuple:
        # The log is bounded, so find the last printed entry rather than counting
        for index in range(len(log) - 1, -1, -1):
            if log[index] is self._last_entry:
                return log[index + 1:]
        return log

    def __call__(self, snapshot: JobSnapshot):
        with self._lock:
            if snapshot.stage != self._stage:
                self._stage = snapshot.stage
                self.stream.write(f"\n== {STAGE_DISPLAY_NAMES[snapshot.stage]}\n")

            for entry in self._new_entries(snapshot.log):
                self._last_entry = entry
                if entry.level != LogLevel.DEBUG:
                    self.stream.write(f"\n[{entry.formatted_timestamp}] {entry.message}\n")

            if snapshot.stage in (JobStage.RETRIEVING, JobStage.TRIMMING):
                self.stream.write(f"\r{snapshot.overall_progress * 100:5.1f}%")
            self.stream.flush()


def run_diagnostics(config: AppConfig) -> int:
    info = get_diagnostics(config.get('ytdlp_path'), config.get('ffmpeg_path'))
    print(json.dumps(info, indent=2))
    return EXIT_OK


def run_clip(args: argparse.Namespace, config: AppConfig) -> int:
    missing = check_prerequisites(config)
    if missing:
        sys.stderr.write("Missing required tools:\n  " + "\n  ".join(missing) + "\n")
        return EXIT_FAILED

    orchestrator = ClipJobOrchestrator(config=config.as_dict())
    orchestrator.subscribe(ProgressPrinter())

    worker = orchestrator.start_in_background(build_request(args, config))
    try:
        while worker.is_alive():
            worker.join(timeout=0.2)
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelling...\n")
        orchestrator.cancel()
        worker.join()

    snapshot = orchestrator.snapshot()
    sys.stderr.write("\n")
    if snapshot.stage == JobStage.FINISHED:
        print(snapshot.result.output_path)
        return EXIT_OK
    if snapshot.stage == JobStage.CANCELED:
        sys.stderr.write("Canceled\n")
        return EXIT_CANCELED

    error = snapshot.error
    if error is not None:
        sys.stderr.write(f"Error: {error.message}\n{error.suggestion}\n")
    return EXIT_FAILED


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    log_file = setup_logging(args.verbose)

    logger.info("=" * 60)
    logger.info("%s v%s starting at %s", APP_NAME, APP_VERSION, datetime.now().isoformat())
    logger.info("Python: %s", sys.executable)
    logger.info("Project root: %s", PROJECT_ROOT)
    logger.info("PATH: %s", os.environ.get("PATH", ""))
    logger.info("=" * 60)

    config = AppConfig(args.config) if args.config else AppConfig()

    if args.diagnostics:
        return run_diagnostics(config)
    if not (args.url and args.start and args.end):
        parser.error("url, start and end are required")

    try:
        return run_clip(args, config)
    except Exception as e:
        error_msg = f"{type(e).__name__}: {e}"
        logger.critical("Fatal error: %s\n%s", error_msg, traceback.format_exc())
        sys.stderr.write(f"{error_msg}\n\nCheck logs at:\n{log_file}\n")
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())

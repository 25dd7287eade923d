"""
Source download via yt-dlp.
"""

import logging
from pathlib import Path

from clipdownloader.core.constants import (
    QUALITY_FORMATS, AUDIO_ONLY_CONTAINERS, DOWNLOAD_BASENAME,
    SOCKET_TIMEOUT_SEC, DOWNLOAD_RETRIES,
)
from clipdownloader.core.models import ClipRequest
from clipdownloader.core.validation import clip_bounds, format_timestamp

logger = logging.getLogger(__name__)

# Suffixes yt-dlp leaves behind for unfinished or bookkeeping files
_PARTIAL_SUFFIXES = (".part", ".ytdl", ".temp")


def build_download_args(request: ClipRequest, output_dir: Path,
                        socket_timeout: int = SOCKET_TIMEOUT_SEC,
                        retries: int = DOWNLOAD_RETRIES) -> list[str]:
    """Build yt-dlp arguments for downloading the source of request."""
    output_template = str(output_dir / f"{DOWNLOAD_BASENAME}.%(ext)s")

    args = [
        "--no-playlist",
        "--newline",
        "-f", QUALITY_FORMATS[request.quality],
        "-o", output_template,
    ]

    if request.container in AUDIO_ONLY_CONTAINERS:
        args.extend(["-x", "--audio-format", request.container])
    else:
        args.extend(["--merge-output-format", request.container])

    if request.use_download_sections:
        start, end = clip_bounds(request)
        args.extend([
            "--download-sections",
            f"*{format_timestamp(start)}-{format_timestamp(end)}",
        ])

    args.extend([
        "--no-check-certificates",
        "--socket-timeout", str(socket_timeout),
        "--retries", str(retries),
    ])

    args.append(request.url)
    return args


def find_downloaded_file(output_dir: Path, basename: str = DOWNLOAD_BASENAME) -> Path | None:
    """
    Locate the file yt-dlp produced. The extension may differ from the
    requested container after merging or audio extraction.
    """
    if not output_dir.is_dir():
        return None

    candidates = sorted(
        p for p in output_dir.iterdir()
        if p.is_file()
        and p.stem == basename
        and p.suffix not in _PARTIAL_SUFFIXES
    )
    if not candidates:
        # Intermediate format files look like input.f137.mp4
        candidates = sorted(
            p for p in output_dir.glob(f"{basename}.*")
            if p.is_file() and not any(p.name.endswith(s) for s in _PARTIAL_SUFFIXES)
        )
    if not candidates:
        return None

    downloaded = max(candidates, key=lambda p: p.stat().st_size)
    logger.info("Downloaded source: %s", downloaded)
    return downloaded

"""
YouTube metadata fetching via yt-dlp.
"""

import json
import logging

from clipdownloader.core.models import VideoMetadata
from clipdownloader.core.error_codes import ToolExitError
from clipdownloader.core.constants import YTDLP_NAME
from clipdownloader.core.process_executor import ProcessSupervisor, CancelToken

logger = logging.getLogger(__name__)


def build_probe_args(video_url: str) -> list[str]:
    return [
        "--dump-json",
        "--no-download",
        "--no-playlist",
        video_url,
    ]


def parse_metadata_json(stdout: str) -> VideoMetadata:
    """
    Parse yt-dlp --dump-json output into VideoMetadata.
    Raises ValueError when the output is not a JSON object.
    """
    # Warnings may precede the JSON document on stdout
    text = stdout.strip()
    start = text.find("{")
    if start < 0:
        raise ValueError("yt-dlp produced no JSON output")

    data = json.loads(text[start:])
    if not isinstance(data, dict):
        raise ValueError("yt-dlp JSON is not an object")

    try:
        duration = float(data.get('duration') or 0)
    except (TypeError, ValueError):
        duration = 0.0

    view_count = data.get('view_count')
    return VideoMetadata(
        id=str(data.get('id') or ""),
        title=str(data.get('title') or "Unknown"),
        duration=duration,
        uploader=data.get('uploader') or data.get('channel'),
        upload_date=data.get('upload_date'),
        description=data.get('description'),
        thumbnail_url=data.get('thumbnail'),
        view_count=view_count if isinstance(view_count, int) else None,
    )


def fetch_metadata(supervisor: ProcessSupervisor, ytdlp_path: str, video_url: str,
                   cancel_token: CancelToken | None = None) -> VideoMetadata:
    """
    Fetch video metadata using yt-dlp --dump-json.
    Raises ToolExitError on a non-zero exit and ValueError on unparsable output.
    """
    result = supervisor.run_collect(ytdlp_path, build_probe_args(video_url),
                                    cancel_token=cancel_token)
    if not result.ok:
        raise ToolExitError(YTDLP_NAME, result.exit_code, result.stderr[-2000:])

    metadata = parse_metadata_json(result.stdout)
    logger.info("Metadata: %s (%.0fs) by %s", metadata.title, metadata.duration,
                metadata.uploader or "unknown")
    return metadata

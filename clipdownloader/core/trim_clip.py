"""
Clip trimming using ffmpeg.
Keyframe mode copies streams; frame mode re-encodes for exact cut points.
"""

import math
import logging
from pathlib import Path

from clipdownloader.core.constants import (
    Accuracy, Container, AUDIO_ONLY_CONTAINERS, FASTSTART_CONTAINERS,
    DEFAULT_VIDEO_ENCODER, DEFAULT_AUDIO_ENCODER,
    WEBM_VIDEO_ENCODER, OPUS_AUDIO_ENCODER,
)
from clipdownloader.core.models import ClipRequest
from clipdownloader.core.validation import format_timestamp

logger = logging.getLogger(__name__)


def select_encoders(container: str, video_encoder: str = DEFAULT_VIDEO_ENCODER,
                    audio_encoder: str = DEFAULT_AUDIO_ENCODER) -> tuple[str | None, str]:
    """Return (video encoder or None for audio-only, audio encoder) for a container."""
    if container == Container.WEBM:
        return WEBM_VIDEO_ENCODER, OPUS_AUDIO_ENCODER
    if container == Container.OPUS:
        return None, OPUS_AUDIO_ENCODER
    if container in AUDIO_ONLY_CONTAINERS:
        return None, audio_encoder
    return video_encoder, audio_encoder


def trim_window(request: ClipRequest, start: float, end: float) -> tuple[float, float]:
    """
    Cut points inside the downloaded file. A sectioned download already
    starts at the clip start, so the window shifts to zero.
    """
    if request.use_download_sections:
        return 0.0, end - start
    return start, end


def build_trim_args(input_path: Path, output_path: Path, request: ClipRequest,
                    start: float, end: float,
                    video_encoder: str = DEFAULT_VIDEO_ENCODER,
                    audio_encoder: str = DEFAULT_AUDIO_ENCODER) -> list[str]:
    """Build ffmpeg arguments cutting [start, end] of input_path into output_path."""
    cut_start, cut_end = trim_window(request, start, end)

    args = [
        "-y",                                   # overwrite
        "-ss", format_timestamp(cut_start),
        "-to", format_timestamp(cut_end),
        "-i", str(input_path),
    ]

    if request.accuracy == Accuracy.KEYFRAME:
        args.extend(["-c", "copy"])
    else:
        video_codec, audio_codec = select_encoders(
            request.container, video_encoder, audio_encoder)

        if video_codec is None:
            args.append("-vn")
        else:
            args.extend(["-c:v", video_codec])
            rate = request.video_bitrate_mbps
            if rate:
                args.extend([
                    "-b:v", f"{_format_rate(rate)}M",
                    "-maxrate", f"{math.ceil(rate * 1.5)}M",
                    "-bufsize", f"{int(rate * 2)}M",
                ])

        args.extend(["-c:a", audio_codec])
        if request.audio_bitrate_kbps:
            args.extend(["-b:a", f"{int(request.audio_bitrate_kbps)}k"])

    if request.container in FASTSTART_CONTAINERS:
        args.extend(["-movflags", "+faststart"])

    args.extend([
        "-progress", "pipe:1",
        "-nostats",
        str(output_path),
    ])
    return args


def _format_rate(value: float) -> str:
    # 5.0 -> "5", 2.5 -> "2.5"
    return f"{value:g}"

"""
Progress extraction from yt-dlp and ffmpeg output lines.

Both parsers are total: a line they do not recognise yields None.
"""

import re

_DOWNLOAD_PERCENT = re.compile(r'\[download\]\s+(\d+(?:\.\d+)?)%')
_DOWNLOAD_DESTINATION = re.compile(r'\[download\] Destination:\s*(.+)$')
_ALREADY_DOWNLOADED = re.compile(r'\[download\]\s+(.+?) has already been downloaded')
_MERGER_TARGET = re.compile(r'\[Merger\] Merging formats into "(.+)"')
_EXTRACT_AUDIO_TARGET = re.compile(r'\[ExtractAudio\] Destination:\s*(.+)$')

# -progress emits out_time_ms in microseconds despite the name
_MICROSECOND_KEYS = ("out_time_us", "out_time_ms")


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def parse_ytdlp_line(line: str) -> tuple[float | None, dict | None]:
    """
    Parse one yt-dlp output line.
    Returns (progress fraction, metadata fragment); either may be None.
    """
    if not line:
        return None, None

    progress = None
    m = _DOWNLOAD_PERCENT.search(line)
    if m:
        try:
            progress = _clamp(float(m.group(1)) / 100.0)
        except ValueError:
            progress = None

    fragment = None
    for pattern in (_DOWNLOAD_DESTINATION, _MERGER_TARGET,
                    _EXTRACT_AUDIO_TARGET, _ALREADY_DOWNLOADED):
        m = pattern.search(line)
        if m:
            fragment = {"filename": m.group(1).strip()}
            break

    return progress, fragment


def parse_ffmpeg_time(value: str) -> float | None:
    """Parse ffmpeg's HH:MM:SS.micro time format into seconds."""
    parts = value.strip().split(":")
    if len(parts) != 3:
        return None
    try:
        hours, minutes, seconds = (float(p) for p in parts)
    except ValueError:
        return None
    if hours < 0 or minutes < 0 or seconds < 0:
        return None
    return hours * 3600 + minutes * 60 + seconds


def parse_ffmpeg_line(line: str, clip_duration: float) -> float | None:
    """
    Parse one line of `ffmpeg -progress` output into a fraction of the
    requested clip duration.
    """
    if not line or clip_duration <= 0 or "=" not in line:
        return None

    key, _, value = line.partition("=")
    key = key.strip()
    value = value.strip()

    if key == "progress":
        return 1.0 if value == "end" else None

    elapsed = None
    if key in _MICROSECOND_KEYS:
        try:
            elapsed = float(value) / 1_000_000.0
        except ValueError:
            return None
    elif key == "out_time":
        elapsed = parse_ffmpeg_time(value)

    if elapsed is None or elapsed != elapsed:    # NaN guard
        return None
    return _clamp(elapsed / clip_duration)

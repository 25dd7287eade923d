"""
Clip request validation: YouTube URL parsing and time-range checks.
"""

import re
from urllib.parse import urlparse, parse_qs

from clipdownloader.core.constants import (
    YOUTUBE_URL_PATTERNS, YOUTUBE_HOSTS, MIN_CLIP_SEC,
    QUALITY_FORMATS, ALL_CONTAINERS, Accuracy,
)


# ── Time parsing ──────────────────────────────────────────────────────

_TIME_COMPONENT = re.compile(r"[0-9]+(\.[0-9]+)?")


def parse_time(value: str) -> float | None:
    """
    Parse a time string into seconds. Accepts "SS", "MM:SS" or "HH:MM:SS";
    the last component may be fractional. Returns None when invalid.
    """
    if value is None:
        return None
    text = value.strip()
    if not text:
        return None

    parts = text.split(":")
    if len(parts) > 3:
        return None

    seconds = 0.0
    for index, part in enumerate(reversed(parts)):
        # Plain digits only: no sign, exponent, underscore, inf or nan
        if not _TIME_COMPONENT.fullmatch(part):
            return None
        number = float(part)
        # Only the leading component may exceed its unit
        if index < len(parts) - 1 and number >= 60:
            return None
        if index > 0 and not number.is_integer():
            return None
        seconds += number * (60 ** index)

    return seconds


def format_time(seconds: float) -> str:
    """Format seconds as HH:MM:SS, or MM:SS under one hour."""
    total = int(seconds)
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours > 0:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def format_timestamp(seconds: float) -> str:
    """Format seconds as HH:MM:SS.mmm for tool arguments."""
    millis = int(round(seconds * 1000))
    hours, remainder = divmod(millis, 3_600_000)
    minutes, remainder = divmod(remainder, 60_000)
    secs, millis = divmod(remainder, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}.{millis:03d}"


# ── URL parsing ───────────────────────────────────────────────────────

def extract_video_id(url: str) -> str | None:
    """
    Extract the 11-character video_id from a YouTube URL.
    Returns None if the URL is not a valid YouTube URL.
    """
    url = (url or "").strip()
    if not url:
        return None

    for pattern in YOUTUBE_URL_PATTERNS:
        m = re.search(pattern, url)
        if m:
            return m.group(1)

    # Fallback: parse query string for 'v' parameter
    parsed = urlparse(url)
    if (parsed.hostname or "").lower() in YOUTUBE_HOSTS:
        v = parse_qs(parsed.query).get('v', [None])[0]
        if v and re.match(r'^[a-zA-Z0-9_-]{11}$', v):
            return v

    return None


def is_youtube_url(url: str) -> bool:
    """Check the host is one of the YouTube domains."""
    parsed = urlparse((url or "").strip())
    if parsed.scheme not in ("http", "https"):
        return False
    return (parsed.hostname or "").lower() in YOUTUBE_HOSTS


# ── Request validation ────────────────────────────────────────────────

def validate_clip_request(request) -> list[str]:
    """
    Validate a complete clip request.
    Returns a list of human-readable problems; empty means valid.
    """
    errors: list[str] = []

    if not request.url.strip():
        errors.append("Please enter a YouTube URL")
    elif not is_youtube_url(request.url):
        errors.append("Please enter a valid YouTube URL")

    if request.quality not in QUALITY_FORMATS:
        errors.append(f"Unsupported quality: {request.quality}")
    if request.container not in ALL_CONTAINERS:
        errors.append(f"Unsupported container: {request.container}")
    if request.accuracy not in (Accuracy.FRAME, Accuracy.KEYFRAME):
        errors.append(f"Unsupported accuracy mode: {request.accuracy}")

    if request.video_bitrate_mbps is not None and request.video_bitrate_mbps <= 0:
        errors.append("Video bitrate must be positive")
    if request.audio_bitrate_kbps is not None and request.audio_bitrate_kbps <= 0:
        errors.append("Audio bitrate must be positive")

    if not request.output_folder.is_dir():
        errors.append("Output folder does not exist")

    start = parse_time(request.start_time)
    if start is None:
        errors.append("Invalid start time format. Use SS, MM:SS, or HH:MM:SS")
        return errors

    end = parse_time(request.end_time)
    if end is None:
        errors.append("Invalid end time format. Use SS, MM:SS, or HH:MM:SS")
        return errors

    if end <= start:
        errors.append("End time must be after start time")
    elif end - start < MIN_CLIP_SEC:
        errors.append("Clip must be at least 1 second long")

    return errors


def clip_bounds(request) -> tuple[float, float]:
    """Return (start, end) seconds of an already validated request."""
    start = parse_time(request.start_time)
    end = parse_time(request.end_time)
    if start is None or end is None:
        raise ValueError(f"Invalid time range: {request.start_time!r}-{request.end_time!r}")
    return start, end

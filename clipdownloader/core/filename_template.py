"""
Output file naming: template token substitution and conflict resolution.
"""

import re
import uuid
import errno
import logging
from dataclasses import dataclass
from datetime import date
from pathlib import Path

from clipdownloader.core.constants import (
    Quality, MAX_CONFLICT_PROBES, DEFAULT_FILENAME_TEMPLATE,
)
from clipdownloader.core.models import ClipRequest, VideoMetadata
from clipdownloader.core.security_utils import sanitize_filename, is_within
from clipdownloader.core.validation import parse_time, format_time, extract_video_id

logger = logging.getLogger(__name__)

_TOKEN = re.compile(r'\{[^}]*\}')
_INVALID_TEMPLATE_CHARS = re.compile(r'[/\\:*?"<>|]')

_RESOLUTION_LABELS = {
    Quality.AUTO: "auto",
    Quality.P1080: "1080p",
    Quality.P720: "720p",
    Quality.P480: "480p",
}

SAMPLE_METADATA = VideoMetadata(
    id="ABC123DEF45",
    title="Sample Video Title",
    duration=3661,
    uploader="Example Channel",
    upload_date="20240101",
    view_count=12345,
)


@dataclass(frozen=True)
class TemplatePreset:
    name: str
    template: str
    description: str


PREDEFINED_TEMPLATES = [
    TemplatePreset("Default", DEFAULT_FILENAME_TEMPLATE, "Title with time range"),
    TemplatePreset("With Uploader", "{uploader} - {title}_{start}-{end}.{container}",
                   "Channel name and title with time range"),
    TemplatePreset("Date and Time", "{date}_{title}_{start}-{end}.{container}",
                   "Upload date, title and time range"),
    TemplatePreset("Video ID", "{id}_{start}-{end}.{container}",
                   "YouTube video ID with time range"),
    TemplatePreset("Simple", "{title}.{container}", "Just the video title"),
    TemplatePreset("Descriptive", "{uploader} - {title} [{res}] ({start}-{end}).{container}",
                   "Full descriptive format"),
]


def _dashed_time(seconds: float) -> str:
    return format_time(seconds).replace(":", "-")


def render_filename(template: str, request: ClipRequest,
                    metadata: VideoMetadata | None) -> str:
    """Replace template tokens and return a sanitized base file name."""
    values = {
        "container": request.container,
        "res": _RESOLUTION_LABELS.get(request.quality, request.quality),
    }

    start = parse_time(request.start_time)
    if start is not None:
        values["start"] = _dashed_time(start)
    end = parse_time(request.end_time)
    if end is not None:
        values["end"] = _dashed_time(end)

    video_id = extract_video_id(request.url)
    if video_id:
        values["id"] = video_id

    if metadata is not None:
        values["title"] = sanitize_filename(metadata.title)
        if metadata.id and "id" not in values:
            values["id"] = metadata.id
        if metadata.uploader:
            values["uploader"] = sanitize_filename(metadata.uploader)
        if metadata.upload_date:
            values["date"] = metadata.upload_date
        values["duration"] = _dashed_time(metadata.duration)

    # Fallbacks for missing metadata
    values.setdefault("title", "Unknown_Title")
    values.setdefault("uploader", "Unknown_Uploader")
    values.setdefault("date", date.today().strftime("%Y%m%d"))
    values.setdefault("duration", "00-00")

    filename = template
    for token, value in values.items():
        filename = filename.replace("{" + token + "}", value)

    # Drop anything still unresolved, then sanitize
    filename = sanitize_filename(_TOKEN.sub("", filename))
    if not filename:
        filename = f"clip_{uuid.uuid4().hex[:8]}"
    return filename


def resolve_conflict(path: Path, max_probes: int = MAX_CONFLICT_PROBES) -> Path:
    """
    Return path, or the first free "name (n).ext" variant of it.
    Raises FileExistsError when max_probes candidates are all taken.
    """
    if not path.exists():
        return path

    stem, suffix = path.stem, path.suffix
    for counter in range(1, max_probes + 1):
        candidate = path.with_name(f"{stem} ({counter}){suffix}")
        if not candidate.exists():
            return candidate

    raise FileExistsError(
        errno.EEXIST,
        f"No free file name after {max_probes} attempts",
        str(path),
    )


def build_output_path(request: ClipRequest, metadata: VideoMetadata | None,
                      max_probes: int = MAX_CONFLICT_PROBES) -> Path:
    """Render the template into the output folder and avoid overwriting files."""
    folder = Path(request.output_folder)
    filename = render_filename(request.filename_template, request, metadata)
    extension = f".{request.container}"
    if not filename.endswith(extension):
        filename += extension

    candidate = folder / filename
    if not is_within(folder, candidate):
        candidate = folder / f"clip_{uuid.uuid4().hex[:8]}{extension}"

    return resolve_conflict(candidate, max_probes)


def preview_filename(template: str, request: ClipRequest) -> str:
    """Preview a template against sample metadata."""
    return render_filename(template, request, SAMPLE_METADATA)


def validate_template(template: str) -> list[str]:
    """Check a template for problems; returns human-readable messages."""
    if not template.strip():
        return ["Template cannot be empty"]

    problems = []
    if _INVALID_TEMPLATE_CHARS.search(_TOKEN.sub("X", template)):
        problems.append("Template contains invalid characters")
    if ".." in template:
        problems.append("Template contains path traversal patterns (..)")
    if "{title}" not in template and "{id}" not in template:
        problems.append("Template should include {title} or {id} for unique filenames")
    return problems

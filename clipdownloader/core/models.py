"""
Data models (plain dataclasses) for ClipDownloader.
"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from clipdownloader.core.constants import (
    JobStage, Quality, Container, Accuracy,
    DEFAULT_OUTPUT_ROOT, DEFAULT_FILENAME_TEMPLATE,
    DEFAULT_VIDEO_BITRATE_MBPS, DEFAULT_AUDIO_BITRATE_KBPS,
    RETRIEVE_WEIGHT, TRIM_WEIGHT,
)
from clipdownloader.core.error_codes import JobError


@dataclass(frozen=True)
class ClipRequest:
    url: str
    start_time: str                  # raw user input
    end_time: str                    # raw user input
    quality: str = Quality.AUTO
    container: str = Container.MP4
    accuracy: str = Accuracy.FRAME
    use_download_sections: bool = False
    video_bitrate_mbps: Optional[float] = DEFAULT_VIDEO_BITRATE_MBPS   # re-encode only
    audio_bitrate_kbps: Optional[int] = DEFAULT_AUDIO_BITRATE_KBPS     # re-encode only
    output_folder: Path = DEFAULT_OUTPUT_ROOT
    filename_template: str = DEFAULT_FILENAME_TEMPLATE


@dataclass(frozen=True)
class VideoMetadata:
    id: str
    title: str
    duration: float = 0.0            # seconds
    uploader: Optional[str] = None
    upload_date: Optional[str] = None
    description: Optional[str] = None
    thumbnail_url: Optional[str] = None
    view_count: Optional[int] = None


@dataclass(frozen=True)
class LogEntry:
    timestamp: datetime
    level: str
    message: str

    @property
    def formatted_timestamp(self) -> str:
        return self.timestamp.strftime("%H:%M:%S")


@dataclass(frozen=True)
class JobResult:
    output_path: Path
    file_size: int
    retrieve_progress: float
    trim_progress: float
    metadata: Optional[VideoMetadata] = None


def blend_progress(stage: str, retrieve_progress: float, trim_progress: float) -> float:
    """Overall progress: retrieval weighs 60%, trimming 40%."""
    if stage == JobStage.RETRIEVING:
        return retrieve_progress * RETRIEVE_WEIGHT
    if stage == JobStage.TRIMMING:
        return RETRIEVE_WEIGHT + trim_progress * TRIM_WEIGHT
    if stage == JobStage.FINISHED:
        return 1.0
    return 0.0


@dataclass(frozen=True)
class JobSnapshot:
    """Immutable view of the orchestrator state handed to observers."""
    stage: str = JobStage.IDLE
    retrieve_progress: float = 0.0
    trim_progress: float = 0.0
    log: tuple[LogEntry, ...] = field(default_factory=tuple)
    error: Optional[JobError] = None
    result: Optional[JobResult] = None
    metadata: Optional[VideoMetadata] = None

    @property
    def overall_progress(self) -> float:
        return blend_progress(self.stage, self.retrieve_progress, self.trim_progress)

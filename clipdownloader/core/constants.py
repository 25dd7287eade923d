"""
Shared constants for ClipDownloader.
Imported by every other module.
"""

import pathlib
import tempfile

# ── Application identity ──────────────────────────────────────────────
APP_NAME = "ClipDownloader"
APP_DISPLAY_NAME = "Clip Downloader"
APP_VERSION = "1.0.0"

# ── Filesystem paths ─────────────────────────────────────────────────
HOME = pathlib.Path.home()

DEFAULT_OUTPUT_ROOT = HOME / "Downloads" / APP_NAME
APP_SUPPORT_DIR = HOME / "Library" / "Application Support" / APP_NAME
CONFIG_PATH = APP_SUPPORT_DIR / "config.json"
LOG_DIR = HOME / "Library" / "Logs" / APP_NAME

# One directory per job, created under the system temp root
TEMP_ROOT = pathlib.Path(tempfile.gettempdir())
TEMP_DIR_PREFIX = f"{APP_NAME}_"
DOWNLOAD_BASENAME = "input"

# ── Tool names ────────────────────────────────────────────────────────
YTDLP_NAME = "yt-dlp"
FFMPEG_NAME = "ffmpeg"

# ── Job stage values ──────────────────────────────────────────────────
class JobStage:
    IDLE = "idle"
    RETRIEVING = "retrieving"
    TRIMMING = "trimming"
    FINISHED = "finished"
    FAILED = "failed"
    CANCELED = "canceled"

STARTABLE_STAGES = frozenset({
    JobStage.IDLE, JobStage.FINISHED, JobStage.FAILED, JobStage.CANCELED,
})
RUNNING_STAGES = frozenset({JobStage.RETRIEVING, JobStage.TRIMMING})

STAGE_DISPLAY_NAMES = {
    JobStage.IDLE: "Ready",
    JobStage.RETRIEVING: "Fetching & downloading source",
    JobStage.TRIMMING: "Cutting & encoding",
    JobStage.FINISHED: "Completed",
    JobStage.FAILED: "Failed",
    JobStage.CANCELED: "Canceled",
}

# ── Log levels for the in-memory job log ──────────────────────────────
class LogLevel:
    DEBUG = "debug"
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"

# ── Request selectors ─────────────────────────────────────────────────
class Quality:
    AUTO = "auto"
    P1080 = "1080p"
    P720 = "720p"
    P480 = "480p"

# yt-dlp format selectors: best video + best audio under a height ceiling,
# falling back to the best combined stream
QUALITY_FORMATS = {
    Quality.AUTO: "bv*[height<=1080]+ba/b[height<=1080]/b",
    Quality.P1080: "bv*[height<=1080]+ba/b[height<=1080]/b",
    Quality.P720: "bv*[height<=720]+ba/b[height<=720]/b",
    Quality.P480: "bv*[height<=480]+ba/b[height<=480]/b",
}

class Container:
    MP4 = "mp4"
    WEBM = "webm"
    M4A = "m4a"
    OPUS = "opus"

ALL_CONTAINERS = frozenset({Container.MP4, Container.WEBM, Container.M4A, Container.OPUS})
AUDIO_ONLY_CONTAINERS = frozenset({Container.M4A, Container.OPUS})
FASTSTART_CONTAINERS = frozenset({Container.MP4, Container.M4A})

class Accuracy:
    FRAME = "frame"          # re-encode, exact cut points
    KEYFRAME = "keyframe"    # stream copy, snaps to keyframes

# ── Pipeline tuning ───────────────────────────────────────────────────
RETRIEVE_WEIGHT = 0.6
TRIM_WEIGHT = 0.4

LOG_HISTORY = 50
GRACE_PERIOD_SEC = 2.0
MAX_CONFLICT_PROBES = 1000
MIN_CLIP_SEC = 1.0

SOCKET_TIMEOUT_SEC = 30
DOWNLOAD_RETRIES = 3

# Encoders used for frame-accurate re-encodes
DEFAULT_VIDEO_ENCODER = "h264_videotoolbox"
DEFAULT_AUDIO_ENCODER = "aac_at"
WEBM_VIDEO_ENCODER = "libvpx-vp9"
OPUS_AUDIO_ENCODER = "libopus"

DEFAULT_VIDEO_BITRATE_MBPS = 5.0
DEFAULT_AUDIO_BITRATE_KBPS = 160

DEFAULT_FILENAME_TEMPLATE = "{title}_{start}-{end}.{container}"

# ── Misc ──────────────────────────────────────────────────────────────
YOUTUBE_URL_PATTERNS = [
    r'(?:https?://)?(?:www\.)?youtube\.com/watch\?(?:.*&)?v=([a-zA-Z0-9_-]{11})',
    r'(?:https?://)?(?:www\.)?youtu\.be/([a-zA-Z0-9_-]{11})',
    r'(?:https?://)?(?:www\.)?youtube\.com/embed/([a-zA-Z0-9_-]{11})',
    r'(?:https?://)?(?:www\.)?youtube\.com/shorts/([a-zA-Z0-9_-]{11})',
    r'(?:https?://)?m\.youtube\.com/watch\?(?:.*&)?v=([a-zA-Z0-9_-]{11})',
]
YOUTUBE_HOSTS = frozenset({
    "youtube.com", "www.youtube.com", "m.youtube.com", "youtu.be", "www.youtu.be",
})

# Characters forbidden in file names (macOS + safety)
UNSAFE_FILENAME_CHARS = r'[/\\:*?"<>|\x00-\x1f]'
MAX_FILENAME_LEN = 200

"""
Toolchain: locate yt-dlp and ffmpeg, check they can run, report versions.
"""

import os
import stat
import shutil
import logging
from pathlib import Path

from clipdownloader.core.security_utils import run_subprocess_capture
from clipdownloader.core.error_codes import JobError, ErrorCode
from clipdownloader.core.constants import YTDLP_NAME, FFMPEG_NAME, APP_VERSION

logger = logging.getLogger(__name__)


def resolve_tool(name: str, configured: str | None = None) -> str | None:
    """Return the configured path if set, else the PATH lookup for name."""
    if configured:
        return str(Path(configured).expanduser())
    return shutil.which(name)


def ensure_executable(path: str | Path) -> bool:
    """Add execute bits to path if they are missing. Returns True if executable."""
    path = Path(path)
    if os.access(path, os.X_OK):
        return True
    try:
        mode = path.stat().st_mode
        path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    except OSError as e:
        logger.warning("Could not make %s executable: %s", path, e)
        return False
    return os.access(path, os.X_OK)


def _check_tool(name: str, path: str | None) -> str:
    if not path or not Path(path).is_file():
        raise JobError(ErrorCode.TOOL_MISSING, f"{name} not found")
    if not ensure_executable(path):
        raise JobError(ErrorCode.TOOL_NOT_EXECUTABLE, f"{name} is not executable: {path}")
    return path


def validate_toolchain(ytdlp_path: str | None, ffmpeg_path: str | None) -> tuple[str, str]:
    """
    Check both tools exist and are executable.
    Raises JobError(TOOL_MISSING or TOOL_NOT_EXECUTABLE).
    """
    ytdlp = _check_tool(YTDLP_NAME, ytdlp_path)
    ffmpeg = _check_tool(FFMPEG_NAME, ffmpeg_path)
    logger.debug("Toolchain: yt-dlp=%s ffmpeg=%s", ytdlp, ffmpeg)
    return ytdlp, ffmpeg


def get_ytdlp_version(ytdlp_path: str | None = None) -> str:
    """Return yt-dlp version string, or error message."""
    try:
        result = run_subprocess_capture([ytdlp_path or YTDLP_NAME, "--version"], timeout=10)
        if result.returncode == 0:
            return result.stdout.strip()
        return f"Error (rc={result.returncode})"
    except FileNotFoundError:
        return "Not installed"
    except Exception as e:
        return f"Error: {e}"


def get_ffmpeg_version(ffmpeg_path: str | None = None) -> str:
    """Return ffmpeg version string, or error message."""
    try:
        result = run_subprocess_capture([ffmpeg_path or FFMPEG_NAME, "-version"], timeout=10)
        if result.returncode == 0:
            lines = result.stdout.strip().splitlines()
            return lines[0] if lines else "Unknown"
        return f"Error (rc={result.returncode})"
    except FileNotFoundError:
        return "Not installed"
    except Exception as e:
        return f"Error: {e}"


def get_diagnostics(ytdlp_path: str | None = None, ffmpeg_path: str | None = None) -> dict:
    """Gather all diagnostic information."""
    ytdlp = resolve_tool(YTDLP_NAME, ytdlp_path)
    ffmpeg = resolve_tool(FFMPEG_NAME, ffmpeg_path)
    return {
        "app_version": APP_VERSION,
        "ytdlp_path": ytdlp,
        "ytdlp_version": get_ytdlp_version(ytdlp) if ytdlp else "Not installed",
        "ffmpeg_path": ffmpeg,
        "ffmpeg_version": get_ffmpeg_version(ffmpeg) if ffmpeg else "Not installed",
    }

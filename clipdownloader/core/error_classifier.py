"""
Map raw failures from the pipeline onto the closed JobError taxonomy.
"""

import errno
import logging

from clipdownloader.core.constants import YTDLP_NAME
from clipdownloader.core.error_codes import (
    JobError, ErrorCode, RetrievalReason, ToolExitError,
)
from clipdownloader.core.process_executor import ProcessCancelled, ProcessLaunchError

logger = logging.getLogger(__name__)

_PRIVATE_PATTERNS: tuple[str, ...] = (
    "private video",
    "this video is private",
)
_AGE_RESTRICTED_PATTERNS: tuple[str, ...] = (
    "age-restricted",
    "age restricted",
    "confirm your age",
    "inappropriate for some users",
)
_GEO_BLOCKED_PATTERNS: tuple[str, ...] = (
    "available in your country",
    "geo-restricted",
    "geo restricted",
    "geo-blocked",
    "region",
)
_NOT_FOUND_PATTERNS: tuple[str, ...] = (
    "does not exist",
    "not found",
    "404",
    "has been removed",
    "video unavailable",
)
_DISK_FULL_PATTERNS: tuple[str, ...] = (
    "no space left",
)
_PERMISSION_PATTERNS: tuple[str, ...] = (
    "permission denied",
    "operation not permitted",
)
_NETWORK_PATTERNS: tuple[str, ...] = (
    "unable to download webpage",
    "name or service not known",
    "temporary failure in name resolution",
    "nodename nor servname provided",
    "network is unreachable",
    "connection refused",
    "timed out",
    "could not resolve",
)

_NETWORK_ERRNOS = frozenset({
    errno.ENETUNREACH, errno.EHOSTUNREACH, errno.ECONNREFUSED,
    errno.ETIMEDOUT, errno.ENETDOWN,
})


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None


def _summarize(stderr: str, limit: int = 300) -> str:
    """Last meaningful stderr line, preferring yt-dlp's ERROR: lines."""
    lines = [line.strip() for line in stderr.splitlines() if line.strip()]
    if not lines:
        return ""
    errors = [line for line in lines if line.startswith("ERROR")]
    return (errors or lines)[-1][:limit]


def _classify_tool_exit(error: ToolExitError) -> JobError:
    haystack = (error.stderr or "").lower()
    detail = _summarize(error.stderr or "") or str(error)

    if error.tool == YTDLP_NAME:
        retrieval_rules = (
            (_PRIVATE_PATTERNS, RetrievalReason.PRIVATE, "Video is private"),
            (_AGE_RESTRICTED_PATTERNS, RetrievalReason.AGE_RESTRICTED, "Video is age-restricted"),
            (_GEO_BLOCKED_PATTERNS, RetrievalReason.GEO_BLOCKED,
             "Video is not available in your region"),
            (_NOT_FOUND_PATTERNS, RetrievalReason.NOT_FOUND, "Video not found"),
        )
        for patterns, reason, message in retrieval_rules:
            if _first_match(haystack, patterns) is not None:
                return JobError(ErrorCode.RETRIEVAL_FAILED, f"{message}: {detail}", reason)

    if _first_match(haystack, _DISK_FULL_PATTERNS) is not None:
        return JobError(ErrorCode.INSUFFICIENT_DISK_SPACE, f"Not enough disk space: {detail}")
    if _first_match(haystack, _PERMISSION_PATTERNS) is not None:
        return JobError(ErrorCode.PERMISSION_DENIED, f"Permission denied: {detail}")
    if _first_match(haystack, _NETWORK_PATTERNS) is not None:
        return JobError(ErrorCode.NETWORK_UNAVAILABLE, f"Network unavailable: {detail}")

    if error.tool == YTDLP_NAME:
        return JobError(ErrorCode.RETRIEVAL_FAILED,
                        f"Download failed (rc={error.exit_code}): {detail}",
                        RetrievalReason.UNAVAILABLE)
    return JobError(ErrorCode.TRIM_FAILED,
                    f"{error.tool} failed (rc={error.exit_code}): {detail}")


def _classify_os_error(error: OSError) -> JobError | None:
    if error.errno == errno.ENOSPC:
        return JobError(ErrorCode.INSUFFICIENT_DISK_SPACE, f"Not enough disk space: {error}")
    if error.errno in (errno.EACCES, errno.EPERM) or isinstance(error, PermissionError):
        return JobError(ErrorCode.PERMISSION_DENIED, f"Permission denied: {error}")
    if error.errno in _NETWORK_ERRNOS or isinstance(error, ConnectionError):
        return JobError(ErrorCode.NETWORK_UNAVAILABLE, f"Network unavailable: {error}")
    return None


def classify_failure(error: BaseException) -> JobError:
    """
    Turn any exception raised while running a job into a JobError.
    Never raises.
    """
    if isinstance(error, JobError):
        return error

    if isinstance(error, ProcessCancelled):
        return JobError(ErrorCode.CANCELLED, "Job was cancelled")

    if isinstance(error, ProcessLaunchError):
        if error.errno == errno.ENOENT:
            return JobError(ErrorCode.TOOL_MISSING, str(error))
        return JobError(ErrorCode.TOOL_NOT_EXECUTABLE, str(error))

    if isinstance(error, ToolExitError):
        return _classify_tool_exit(error)

    if isinstance(error, OSError):
        classified = _classify_os_error(error)
        if classified is not None:
            return classified

    message = str(error) or type(error).__name__
    logger.debug("Unclassified failure %s: %s", type(error).__name__, message)
    return JobError(ErrorCode.UNKNOWN, message)

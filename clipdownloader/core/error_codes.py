"""
Standardised error handling for ClipDownloader.

Every failure that leaves the orchestrator is a JobError: a closed error code,
an optional sub-reason (retrieval failures only) and a human-readable message.
"""


class ErrorCode:
    TOOL_MISSING = "ERR_TOOL_MISSING"
    TOOL_NOT_EXECUTABLE = "ERR_TOOL_NOT_EXECUTABLE"
    VALIDATION_FAILED = "ERR_VALIDATION_FAILED"
    TEMP_DIRECTORY_FAILED = "ERR_TEMP_DIRECTORY_FAILED"
    RETRIEVAL_FAILED = "ERR_RETRIEVAL_FAILED"
    OUTPUT_FILE_MISSING = "ERR_OUTPUT_FILE_MISSING"
    TRIM_FAILED = "ERR_TRIM_FAILED"
    INSUFFICIENT_DISK_SPACE = "ERR_INSUFFICIENT_DISK_SPACE"
    PERMISSION_DENIED = "ERR_PERMISSION_DENIED"
    NETWORK_UNAVAILABLE = "ERR_NETWORK_UNAVAILABLE"
    CANCELLED = "ERR_CANCELLED"
    UNKNOWN = "ERR_UNKNOWN"


ALL_ERROR_CODES = frozenset(
    value for name, value in vars(ErrorCode).items() if name.isupper()
)


class RetrievalReason:
    NOT_FOUND = "not_found"
    PRIVATE = "private"
    AGE_RESTRICTED = "age_restricted"
    GEO_BLOCKED = "geo_blocked"
    UNAVAILABLE = "unavailable"


class ErrorSeverity:
    LOW = "low"            # user can easily fix
    MEDIUM = "medium"      # may require user action
    HIGH = "high"          # requires technical intervention
    CRITICAL = "critical"  # app cannot function


_SEVERITY = {
    ErrorCode.TOOL_MISSING: ErrorSeverity.CRITICAL,
    ErrorCode.TOOL_NOT_EXECUTABLE: ErrorSeverity.HIGH,
    ErrorCode.TEMP_DIRECTORY_FAILED: ErrorSeverity.HIGH,
    ErrorCode.UNKNOWN: ErrorSeverity.HIGH,
    ErrorCode.NETWORK_UNAVAILABLE: ErrorSeverity.MEDIUM,
    ErrorCode.INSUFFICIENT_DISK_SPACE: ErrorSeverity.MEDIUM,
    ErrorCode.PERMISSION_DENIED: ErrorSeverity.MEDIUM,
}

_SUGGESTIONS = {
    ErrorCode.TOOL_MISSING: "Install yt-dlp and ffmpeg (brew install yt-dlp ffmpeg).",
    ErrorCode.TOOL_NOT_EXECUTABLE: "Check the file permissions of the configured tools.",
    ErrorCode.VALIDATION_FAILED: "Fix the highlighted fields and try again.",
    ErrorCode.TEMP_DIRECTORY_FAILED: "Check available disk space and permissions.",
    ErrorCode.NETWORK_UNAVAILABLE: "Check your internet connection and try again.",
    ErrorCode.INSUFFICIENT_DISK_SPACE: "Free up disk space and try again.",
    ErrorCode.PERMISSION_DENIED: "Choose a different output folder or grant permission.",
    ErrorCode.OUTPUT_FILE_MISSING: "Try a different quality or container.",
    ErrorCode.TRIM_FAILED: "Try keyframe mode or a different container.",
}

_REASON_SUGGESTIONS = {
    RetrievalReason.NOT_FOUND: "Verify the URL is correct.",
    RetrievalReason.PRIVATE: "Verify the video is publicly accessible.",
    RetrievalReason.AGE_RESTRICTED: "Try a different video.",
    RetrievalReason.GEO_BLOCKED: "Try a different video.",
}


class JobError(Exception):
    """Raised when a job encounters a known error condition."""

    def __init__(self, code: str, message: str, reason: str | None = None):
        self.code = code
        self.message = message
        self.reason = reason
        tag = f"{code}:{reason}" if reason else code
        super().__init__(f"[{tag}] {message}")

    @property
    def severity(self) -> str:
        return severity_for(self.code)

    @property
    def suggestion(self) -> str:
        return recovery_suggestion(self.code, self.reason)


class ToolExitError(Exception):
    """An external tool ran but exited with a non-zero status."""

    def __init__(self, tool: str, exit_code: int, stderr: str = ""):
        self.tool = tool
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(f"{tool} exited with code {exit_code}")


def severity_for(code: str) -> str:
    return _SEVERITY.get(code, ErrorSeverity.LOW)


def recovery_suggestion(code: str, reason: str | None = None) -> str:
    if reason in _REASON_SUGGESTIONS:
        return _REASON_SUGGESTIONS[reason]
    return _SUGGESTIONS.get(code, "Please try again.")

"""
Clip Job Orchestrator.
Runs one clip job at a time: retrieve the source with yt-dlp, trim it with
ffmpeg, and publish every state change to subscribers as a JobSnapshot.
"""

import logging
import threading
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from clipdownloader.core.constants import (
    JobStage, LogLevel, STARTABLE_STAGES, RUNNING_STAGES,
    YTDLP_NAME, FFMPEG_NAME,
    DEFAULT_VIDEO_ENCODER, DEFAULT_AUDIO_ENCODER,
    SOCKET_TIMEOUT_SEC, DOWNLOAD_RETRIES, GRACE_PERIOD_SEC, LOG_HISTORY,
)
from clipdownloader.core.models import (
    ClipRequest, VideoMetadata, LogEntry, JobResult, JobSnapshot,
)
from clipdownloader.core.error_codes import JobError, ErrorCode, ToolExitError
from clipdownloader.core.error_classifier import classify_failure
from clipdownloader.core.process_executor import (
    ProcessSupervisor, CancelToken, ProcessCancelled,
)
from clipdownloader.core.progress_parse import parse_ytdlp_line, parse_ffmpeg_line
from clipdownloader.core.validation import validate_clip_request, clip_bounds
from clipdownloader.core.toolchain import resolve_tool, validate_toolchain
from clipdownloader.core.yt_metadata import fetch_metadata
from clipdownloader.core.download_video import build_download_args, find_downloaded_file
from clipdownloader.core.trim_clip import build_trim_args
from clipdownloader.core.filename_template import build_output_path
from clipdownloader.core.cleanup import (
    create_workspace, cleanup_workspace, remove_partial_output,
)

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[JobSnapshot], None]

_LOG_LEVELS = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.SUCCESS: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}

_STDERR_TAIL = 50


def _format_size(size: int) -> str:
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{size} B"


class ClipJobOrchestrator:
    """
    Owns the state of the single current clip job.

    start() blocks until the job reaches a terminal stage; observers follow
    progress through subscribe(). cancel() may be called from any thread.
    """

    def __init__(self, config: dict | None = None,
                 supervisor: Optional[ProcessSupervisor] = None):
        self.config = config or {}
        self.supervisor = supervisor or ProcessSupervisor(self.grace_period)

        # State lock guards job fields; publish lock orders snapshot delivery.
        # Always take the publish lock first.
        self._state_lock = threading.Lock()
        self._publish_lock = threading.RLock()
        self._subscribers: list[SnapshotCallback] = []

        self._stage = JobStage.IDLE
        self._retrieve_progress = 0.0
        self._trim_progress = 0.0
        self._log: deque[LogEntry] = deque(maxlen=self.log_history)
        self._error: Optional[JobError] = None
        self._result: Optional[JobResult] = None
        self._metadata: Optional[VideoMetadata] = None

        self._active = False
        self._cancel_token: Optional[CancelToken] = None
        self._workspace: Optional[Path] = None
        self._output_path: Optional[Path] = None
        self._worker_thread: Optional[threading.Thread] = None

    # ── Config helpers ────────────────────────────────────────────────

    @property
    def ytdlp_path(self) -> str | None:
        return resolve_tool(YTDLP_NAME, self.config.get('ytdlp_path'))

    @property
    def ffmpeg_path(self) -> str | None:
        return resolve_tool(FFMPEG_NAME, self.config.get('ffmpeg_path'))

    @property
    def video_encoder(self) -> str:
        return self.config.get('video_encoder') or DEFAULT_VIDEO_ENCODER

    @property
    def audio_encoder(self) -> str:
        return self.config.get('audio_encoder') or DEFAULT_AUDIO_ENCODER

    @property
    def socket_timeout(self) -> int:
        return int(self.config.get('socket_timeout_sec', SOCKET_TIMEOUT_SEC))

    @property
    def retries(self) -> int:
        return int(self.config.get('retries', DOWNLOAD_RETRIES))

    @property
    def grace_period(self) -> float:
        return float(self.config.get('grace_period_sec', GRACE_PERIOD_SEC))

    @property
    def log_history(self) -> int:
        return int(self.config.get('log_history', LOG_HISTORY))

    @property
    def keep_temp_on_failure(self) -> bool:
        """
        Opt-in debugging switch, off by default. When set, a failed (not
        cancelled) job keeps its temp directory instead of removing it,
        which knowingly departs from cleanup-on-every-failure.
        """
        return bool(self.config.get('keep_temp_on_failure', False))

    # ── Observation ───────────────────────────────────────────────────

    def subscribe(self, callback: SnapshotCallback) -> Callable[[], None]:
        """Register callback for every published snapshot. Returns an unsubscribe function."""
        with self._publish_lock:
            self._subscribers.append(callback)

        def unsubscribe():
            with self._publish_lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def snapshot(self) -> JobSnapshot:
        with self._state_lock:
            return self._snapshot_locked()

    @property
    def stage(self) -> str:
        with self._state_lock:
            return self._stage

    @property
    def is_running(self) -> bool:
        with self._state_lock:
            return self._active or self._stage in RUNNING_STAGES

    @property
    def can_start(self) -> bool:
        with self._state_lock:
            return not self._active and self._stage in STARTABLE_STAGES

    def _snapshot_locked(self) -> JobSnapshot:
        return JobSnapshot(
            stage=self._stage,
            retrieve_progress=self._retrieve_progress,
            trim_progress=self._trim_progress,
            log=tuple(self._log),
            error=self._error,
            result=self._result,
            metadata=self._metadata,
        )

    def _deliver(self, snapshot: JobSnapshot):
        """Hand a snapshot to every subscriber. Caller holds the publish lock."""
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception:
                logger.exception("Snapshot subscriber failed")

    def _update(self, mutate: Callable[[], bool]) -> bool:
        """
        Apply mutate under the state lock and publish the new snapshot if
        it returned True. Returns mutate's result.
        """
        with self._publish_lock:
            with self._state_lock:
                changed = mutate()
                snapshot = self._snapshot_locked() if changed else None
            if snapshot is not None:
                self._deliver(snapshot)
        return changed

    # ── State mutation helpers ────────────────────────────────────────

    def _append_log_locked(self, level: str, message: str):
        self._log.append(LogEntry(timestamp=datetime.now(), level=level, message=message))
        logger.log(_LOG_LEVELS.get(level, logging.INFO), message)

    def _log_event(self, level: str, message: str):
        def mutate():
            self._append_log_locked(level, message)
            return True
        self._update(mutate)

    def _enter_stage(self, stage: str):
        """Move to stage unless the job was cancelled meanwhile."""
        def mutate():
            if self._stage not in RUNNING_STAGES:
                return False
            self._stage = stage
            return True

        if not self._update(mutate):
            raise ProcessCancelled()

    def _set_progress(self, stage: str, value: float):
        """Record stage progress, clamped so it never moves backwards."""
        attr = '_retrieve_progress' if stage == JobStage.RETRIEVING else '_trim_progress'

        def mutate():
            if self._stage != stage:
                return False
            current = getattr(self, attr)
            new = max(current, min(1.0, value))
            if new == current:
                return False
            setattr(self, attr, new)
            return True

        self._update(mutate)

    def _set_metadata(self, metadata: VideoMetadata):
        def mutate():
            self._metadata = metadata
            return True
        self._update(mutate)

    # ── Job control ───────────────────────────────────────────────────

    def start(self, request: ClipRequest) -> JobSnapshot:
        """
        Run one clip job to completion and return the final snapshot.
        A start while another job is active is rejected and only logged.
        """
        token = CancelToken()

        def accept():
            if self._active or self._stage not in STARTABLE_STAGES:
                self._append_log_locked(LogLevel.ERROR,
                                        "A job is already running; start request ignored")
                return False
            self._active = True
            self._stage = JobStage.RETRIEVING
            self._retrieve_progress = 0.0
            self._trim_progress = 0.0
            self._log.clear()
            self._error = None
            self._result = None
            self._metadata = None
            self._cancel_token = token
            self._workspace = None
            self._output_path = None
            self._append_log_locked(LogLevel.INFO, f"Starting clip job for {request.url}")
            return True

        with self._publish_lock:
            with self._state_lock:
                accepted = accept()
                snapshot = self._snapshot_locked()
            self._deliver(snapshot)

        if not accepted:
            logger.warning("Start rejected: job already active")
            return self.snapshot()

        try:
            self._execute(request, token)
        finally:
            with self._state_lock:
                self._active = False
                self._cancel_token = None
                self._workspace = None
                self._output_path = None

        return self.snapshot()

    def start_in_background(self, request: ClipRequest) -> threading.Thread:
        """Run start(request) on a daemon worker thread."""
        self._worker_thread = threading.Thread(
            target=self.start, args=(request,), name="clip-job", daemon=True)
        self._worker_thread.start()
        return self._worker_thread

    def cancel(self) -> bool:
        """Cancel the running job. Returns False when nothing was running."""
        state = {}

        def mutate():
            if self._stage not in RUNNING_STAGES:
                return False
            self._stage = JobStage.CANCELED
            self._append_log_locked(LogLevel.WARNING, "Job cancelled")
            state['token'] = self._cancel_token
            state['workspace'] = self._workspace
            return True

        if not self._update(mutate):
            return False

        token = state.get('token')
        if token is not None:
            token.cancel()
        cleanup_workspace(state.get('workspace'))
        return True

    # ── Job processing pipeline ───────────────────────────────────────

    def _execute(self, request: ClipRequest, token: CancelToken):
        """Run the pipeline and settle the terminal stage."""
        result: Optional[JobResult] = None
        error: Optional[JobError] = None

        try:
            result = self._run_pipeline(request, token)
        except JobError as e:
            error = e
        except (ProcessCancelled, ToolExitError, OSError) as e:
            error = classify_failure(e)
        except Exception as e:
            logger.error("Unexpected error processing clip job: %s", e, exc_info=True)
            error = classify_failure(e)
        finally:
            with self._state_lock:
                workspace = self._workspace
            if (error is not None and self.keep_temp_on_failure
                    and not token.is_cancelled() and workspace is not None):
                self._log_event(LogLevel.WARNING, f"Kept temp directory: {workspace}")
            elif not cleanup_workspace(workspace):
                self._log_event(LogLevel.WARNING, f"Could not remove temp directory {workspace}")

        if error is None:
            self._finish(result)
        else:
            self._fail(error)

    def _run_pipeline(self, request: ClipRequest, token: CancelToken) -> JobResult:
        # ── Preconditions ──
        problems = validate_clip_request(request)
        if problems:
            raise JobError(ErrorCode.VALIDATION_FAILED, "; ".join(problems))
        start, end = clip_bounds(request)

        ytdlp, ffmpeg = validate_toolchain(self.ytdlp_path, self.ffmpeg_path)

        workspace = create_workspace()
        with self._state_lock:
            self._workspace = workspace
        if token.is_cancelled():
            raise ProcessCancelled()

        # ── Stage 1: Retrieve ──
        metadata = self._probe_metadata(ytdlp, request.url, token)
        downloaded = self._retrieve(ytdlp, request, workspace, token)

        # ── Stage 2: Trim ──
        output_path = build_output_path(request, metadata)
        with self._state_lock:
            self._output_path = output_path
        self._enter_stage(JobStage.TRIMMING)
        self._log_event(LogLevel.INFO, f"Trimming {request.start_time}-{request.end_time} "
                                       f"into {output_path.name}")
        self._trim(ffmpeg, request, downloaded, output_path, start, end, workspace, token)

        # ── Finalize ──
        if not output_path.exists():
            raise JobError(ErrorCode.OUTPUT_FILE_MISSING, f"Trimmed file not created: {output_path}")
        size = output_path.stat().st_size
        self._log_event(LogLevel.INFO, f"Output size: {_format_size(size)}")

        with self._state_lock:
            return JobResult(
                output_path=output_path,
                file_size=size,
                retrieve_progress=self._retrieve_progress,
                trim_progress=self._trim_progress,
                metadata=metadata,
            )

    def _probe_metadata(self, ytdlp: str, url: str,
                        token: CancelToken) -> Optional[VideoMetadata]:
        """Best-effort metadata fetch; only cancellation is fatal here."""
        self._log_event(LogLevel.INFO, "Fetching video information...")
        try:
            metadata = fetch_metadata(self.supervisor, ytdlp, url, token)
        except ProcessCancelled:
            raise
        except Exception as e:
            self._log_event(LogLevel.WARNING, f"Could not fetch video information: "
                                              f"{classify_failure(e).message}")
            return None

        self._set_metadata(metadata)
        self._log_event(LogLevel.INFO, f"Video: {metadata.title}")
        return metadata

    def _retrieve(self, ytdlp: str, request: ClipRequest, workspace: Path,
                  token: CancelToken) -> Path:
        self._log_event(LogLevel.INFO, "Downloading source...")
        args = build_download_args(request, workspace, self.socket_timeout, self.retries)
        stderr_tail: deque[str] = deque(maxlen=_STDERR_TAIL)

        exit_code = self.supervisor.run(
            ytdlp, args,
            on_stdout=self._on_ytdlp_line,
            on_stderr=lambda line: self._on_tool_stderr(YTDLP_NAME, line, stderr_tail),
            cwd=workspace,
            cancel_token=token,
        )
        if exit_code != 0:
            raise ToolExitError(YTDLP_NAME, exit_code, "\n".join(stderr_tail))

        self._set_progress(JobStage.RETRIEVING, 1.0)
        downloaded = find_downloaded_file(workspace)
        if downloaded is None:
            raise JobError(ErrorCode.OUTPUT_FILE_MISSING,
                           "Downloaded file not found in temp directory")
        self._log_event(LogLevel.SUCCESS, f"Downloaded {downloaded.name}")
        return downloaded

    def _trim(self, ffmpeg: str, request: ClipRequest, source: Path, output_path: Path,
              start: float, end: float, workspace: Path, token: CancelToken):
        args = build_trim_args(source, output_path, request, start, end,
                               self.video_encoder, self.audio_encoder)
        clip_duration = end - start
        stderr_tail: deque[str] = deque(maxlen=_STDERR_TAIL)

        exit_code = self.supervisor.run(
            ffmpeg, args,
            on_stdout=lambda line: self._on_ffmpeg_line(line, clip_duration),
            on_stderr=lambda line: self._on_tool_stderr(FFMPEG_NAME, line, stderr_tail),
            cwd=workspace,
            cancel_token=token,
        )
        if exit_code != 0:
            raise ToolExitError(FFMPEG_NAME, exit_code, "\n".join(stderr_tail))

        self._set_progress(JobStage.TRIMMING, 1.0)

    # ── Tool output handling ──────────────────────────────────────────

    def _on_ytdlp_line(self, line: str):
        progress, fragment = parse_ytdlp_line(line)
        if progress is not None:
            self._set_progress(JobStage.RETRIEVING, progress)
        elif fragment is not None:
            self._log_event(LogLevel.DEBUG, f"Writing {Path(fragment['filename']).name}")
        elif line.strip():
            self._log_event(LogLevel.DEBUG, line.strip())

    def _on_ffmpeg_line(self, line: str, clip_duration: float):
        progress = parse_ffmpeg_line(line, clip_duration)
        if progress is not None:
            self._set_progress(JobStage.TRIMMING, progress)

    def _on_tool_stderr(self, tool: str, line: str, tail: deque):
        tail.append(line)
        logger.debug("%s: %s", tool, line)
        text = line.strip()
        if text.startswith(("ERROR", "WARNING")):
            self._log_event(LogLevel.WARNING, text)

    # ── Terminal transitions ──────────────────────────────────────────

    def _finish(self, result: JobResult):
        def mutate():
            if self._stage == JobStage.CANCELED:
                return False
            self._stage = JobStage.FINISHED
            self._result = result
            self._append_log_locked(LogLevel.SUCCESS, f"Clip saved to {result.output_path}")
            return True

        if not self._update(mutate):
            # Cancel arrived while settling; the cancel wins
            remove_partial_output(result.output_path)

    def _fail(self, error: JobError):
        with self._state_lock:
            output_path = self._output_path
        remove_partial_output(output_path)

        def mutate():
            if self._stage == JobStage.CANCELED:
                logger.debug("Ignoring failure after cancel: %s", error)
                return False
            self._stage = JobStage.FAILED
            self._error = error
            self._append_log_locked(LogLevel.ERROR, error.message)
            return True

        self._update(mutate)

"""
Process supervision for external tools.

Launches one executable, streams stdout and stderr line by line to callbacks
from two reader threads, and supports cooperative cancellation: a cancel
sends SIGTERM, and a timer scheduled for the grace period escalates to
SIGKILL if the process is still alive.
"""

import os
import signal
import logging
import threading
import subprocess
from dataclasses import dataclass
from typing import Callable, Optional

from clipdownloader.core.constants import GRACE_PERIOD_SEC

logger = logging.getLogger(__name__)

LineCallback = Callable[[str], None]


class ProcessCancelled(Exception):
    """The run was cancelled through its CancelToken."""


class ProcessLaunchError(Exception):
    """The OS refused to start the executable."""

    def __init__(self, executable: str, errno: int | None, message: str):
        self.executable = executable
        self.errno = errno
        super().__init__(f"Could not launch {executable}: {message}")


@dataclass
class ProcessOutput:
    exit_code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class CancelToken:
    """
    One-shot cancellation signal shared between the orchestrator and the
    supervisor. Callbacks registered after cancellation run immediately.
    """

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []

    def cancel(self):
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks)
        for callback in callbacks:
            callback()

    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)

    def add_callback(self, callback: Callable[[], None]):
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        callback()

    def remove_callback(self, callback: Callable[[], None]):
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)


class ProcessSupervisor:
    """Runs one external process at a time and owns its lifetime."""

    def __init__(self, grace_period: float = GRACE_PERIOD_SEC):
        self.grace_period = grace_period

    def run(self, executable: str, args: list[str],
            on_stdout: Optional[LineCallback] = None,
            on_stderr: Optional[LineCallback] = None,
            cwd: str | os.PathLike | None = None,
            env: dict[str, str] | None = None,
            cancel_token: Optional[CancelToken] = None) -> int:
        """
        Run executable with args and return its exit code.

        Raises ProcessLaunchError if the process cannot be started and
        ProcessCancelled if cancel_token fires before or during the run.
        """
        token = cancel_token or CancelToken()
        if token.is_cancelled():
            raise ProcessCancelled()

        argv = [str(executable)] + [str(a) for a in args]
        logger.debug("Launching: %s", ' '.join(argv))

        full_env = os.environ.copy()
        if env:
            full_env.update(env)

        try:
            process = subprocess.Popen(
                argv,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                stdin=subprocess.DEVNULL,
                cwd=cwd,
                env=full_env,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
                shell=False,
                start_new_session=(os.name == "posix"),
            )
        except OSError as e:
            raise ProcessLaunchError(str(executable), e.errno, e.strerror or str(e)) from e

        readers = [
            threading.Thread(target=_pump_lines, args=(process.stdout, on_stdout),
                             name="stdout-reader", daemon=True),
            threading.Thread(target=_pump_lines, args=(process.stderr, on_stderr),
                             name="stderr-reader", daemon=True),
        ]
        for reader in readers:
            reader.start()

        escalation: list[threading.Timer] = []

        def _request_stop():
            logger.info("Cancelling %s (pid %d)", executable, process.pid)
            _send_signal(process, signal.SIGTERM)
            timer = threading.Timer(self.grace_period, _force_kill, args=(process,))
            timer.daemon = True
            escalation.append(timer)
            timer.start()

        token.add_callback(_request_stop)
        try:
            exit_code = process.wait()
        finally:
            token.remove_callback(_request_stop)
            for timer in escalation:
                timer.cancel()

        for reader in readers:
            # Bounded after a cancel: a surviving grandchild may hold the pipes
            reader.join(timeout=None if not token.is_cancelled() else self.grace_period)

        if token.is_cancelled():
            raise ProcessCancelled()

        logger.debug("%s exited with code %d", executable, exit_code)
        return exit_code

    def run_collect(self, executable: str, args: list[str],
                    cancel_token: Optional[CancelToken] = None,
                    **kwargs) -> ProcessOutput:
        """Run a process and collect all output."""
        stdout_lines: list[str] = []
        stderr_lines: list[str] = []

        exit_code = self.run(
            executable, args,
            on_stdout=stdout_lines.append,
            on_stderr=stderr_lines.append,
            cancel_token=cancel_token,
            **kwargs,
        )
        return ProcessOutput(
            exit_code=exit_code,
            stdout="\n".join(stdout_lines),
            stderr="\n".join(stderr_lines),
        )


def _pump_lines(stream, callback: Optional[LineCallback]):
    """Deliver each line of stream to callback, in order, until EOF."""
    try:
        for line in stream:
            if callback is None:
                continue
            try:
                callback(line.rstrip("\r\n"))
            except Exception:
                # Keep draining so the child never blocks on a full pipe
                logger.exception("Line callback failed")
    except ValueError:
        # Stream closed underneath us after the process was reaped
        pass
    finally:
        stream.close()


def _send_signal(process: subprocess.Popen, sig: int):
    if process.poll() is not None:
        return
    try:
        if os.name == "posix":
            os.killpg(process.pid, sig)
        elif sig == signal.SIGTERM:
            process.terminate()
        else:
            process.kill()
    except (ProcessLookupError, PermissionError):
        pass
    except OSError as e:
        logger.warning("Failed to signal pid %d: %s", process.pid, e)


def _force_kill(process: subprocess.Popen):
    if process.poll() is None:
        logger.warning("pid %d ignored SIGTERM, killing", process.pid)
        _send_signal(process, getattr(signal, "SIGKILL", signal.SIGTERM))

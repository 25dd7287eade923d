#!/usr/bin/env python3
"""
Integration tests for the process supervisor and the clip job orchestrator.
Real subprocesses are used: small Python scripts stand in for yt-dlp and ffmpeg.
"""

import sys
import os
import json
import time
import threading
import tempfile
from pathlib import Path
from unittest import mock

# Add project root to path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

import unittest

from clipdownloader.core.constants import JobStage, Quality, Container, Accuracy, LogLevel
from clipdownloader.core.models import ClipRequest
from clipdownloader.core.error_codes import ErrorCode, RetrievalReason
from clipdownloader.core.process_executor import (
    ProcessSupervisor, CancelToken, ProcessCancelled, ProcessLaunchError,
)
from clipdownloader.core.job_orchestrator import ClipJobOrchestrator
from clipdownloader.core import cleanup

VIDEO_URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"

FAKE_YTDLP = r'''#!__PYTHON__
import sys, json, time

MODE = "__MODE__"
CALLS = "__CALLS__"

with open(CALLS, "a") as f:
    f.write(json.dumps(sys.argv[1:]) + "\n")

if MODE == "private":
    sys.stderr.write("ERROR: [youtube] dQw4w9WgXcQ: Private video. Sign in if you've "
                     "been granted access to this video\n")
    sys.exit(1)

if MODE == "slow":
    print("[download]   1.0% of 10.00MiB", flush=True)
    time.sleep(30)
    sys.exit(0)

if "--dump-json" in sys.argv:
    print(json.dumps({"id": "dQw4w9WgXcQ", "title": "Test Video", "duration": 212,
                      "uploader": "Tester", "upload_date": "20240101"}))
    sys.exit(0)

template = sys.argv[sys.argv.index("-o") + 1]
if "--merge-output-format" in sys.argv:
    ext = sys.argv[sys.argv.index("--merge-output-format") + 1]
else:
    ext = sys.argv[sys.argv.index("--audio-format") + 1]
path = template.replace("%(ext)s", ext)

print("[youtube] dQw4w9WgXcQ: Downloading webpage", flush=True)
print("[download] Destination: " + path, flush=True)
for pct in (0.0, 25.0, 50.0, 40.0, 100.0):
    print("[download] %5.1f%% of 10.00MiB at 1.00MiB/s ETA 00:01" % pct, flush=True)
with open(path, "wb") as f:
    f.write(b"\0" * 4096)
'''

FAKE_FFMPEG = r'''#!__PYTHON__
import sys, json, time

MODE = "__MODE__"
CALLS = "__CALLS__"

with open(CALLS, "a") as f:
    f.write(json.dumps(sys.argv[1:]) + "\n")

sys.stderr.write("ffmpeg version fake\n")
output = sys.argv[-1]

if MODE == "slow":
    with open(output, "wb") as f:
        f.write(b"\0" * 512)
    print("out_time_us=15000000", flush=True)
    print("progress=continue", flush=True)
    time.sleep(30)
    sys.exit(0)

for us in (15000000, 30000000, 20000000, 60000000):
    print("out_time_us=%d" % us, flush=True)
    print("progress=continue", flush=True)
print("progress=end", flush=True)
with open(output, "wb") as f:
    f.write(b"\0" * 1024)
'''

STUBBORN_CHILD = r'''
import signal, sys, time
signal.signal(signal.SIGTERM, signal.SIG_IGN)
print("ready", flush=True)
time.sleep(30)
'''


def write_script(path: Path, source: str, **values) -> Path:
    source = source.replace("__PYTHON__", sys.executable)
    for key, value in values.items():
        source = source.replace(f"__{key}__", value)
    path.write_text(source)
    path.chmod(0o755)
    return path


def read_calls(path: Path) -> list[list[str]]:
    if not path.exists():
        return []
    return [json.loads(line) for line in path.read_text().splitlines() if line]


@unittest.skipUnless(os.name == "posix", "process groups and signals are POSIX only")
class TestProcessSupervisor(unittest.TestCase):
    """Test subprocess supervision."""

    def test_streams_and_exit_code(self):
        stdout, stderr = [], []
        code = ProcessSupervisor().run(
            sys.executable,
            ["-c", "import sys\n"
                   "for i in range(5): print('out', i, flush=True)\n"
                   "sys.stderr.write('err\\n')\n"
                   "sys.exit(3)"],
            on_stdout=stdout.append,
            on_stderr=stderr.append,
        )
        self.assertEqual(code, 3)
        self.assertEqual(stdout, [f"out {i}" for i in range(5)])
        self.assertEqual(stderr, ["err"])

    def test_run_collect(self):
        result = ProcessSupervisor().run_collect(sys.executable, ["-c", "print('a'); print('b')"])
        self.assertTrue(result.ok)
        self.assertEqual(result.stdout, "a\nb")

    def test_env_and_cwd(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            lines = []
            ProcessSupervisor().run(
                sys.executable,
                ["-c", "import os; print(os.getcwd()); print(os.environ['CLIP_TEST'])"],
                on_stdout=lines.append,
                cwd=tmpdir,
                env={"CLIP_TEST": "yes"},
            )
            self.assertEqual(Path(lines[0]).resolve(), Path(tmpdir).resolve())
            self.assertEqual(lines[1], "yes")

    def test_launch_failure(self):
        with self.assertRaises(ProcessLaunchError) as ctx:
            ProcessSupervisor().run("/nonexistent/tool", [])
        self.assertEqual(ctx.exception.errno, 2)

    def test_cancel_before_launch(self):
        token = CancelToken()
        token.cancel()
        with self.assertRaises(ProcessCancelled):
            ProcessSupervisor().run(sys.executable, ["-c", "pass"], cancel_token=token)

    def test_cancel_terminates(self):
        token = CancelToken()
        threading.Timer(0.2, token.cancel).start()
        started = time.monotonic()
        with self.assertRaises(ProcessCancelled):
            ProcessSupervisor(grace_period=2.0).run(
                sys.executable, ["-c", "import time; time.sleep(30)"], cancel_token=token)
        self.assertLess(time.monotonic() - started, 5)

    def test_kill_escalation(self):
        token = CancelToken()

        def on_stdout(line):
            if line == "ready":
                token.cancel()

        started = time.monotonic()
        with self.assertRaises(ProcessCancelled):
            ProcessSupervisor(grace_period=0.3).run(
                sys.executable, ["-c", STUBBORN_CHILD],
                on_stdout=on_stdout, cancel_token=token)
        self.assertLess(time.monotonic() - started, 5)


@unittest.skipUnless(os.name == "posix", "fake tools are POSIX scripts")
class TestClipJobOrchestrator(unittest.TestCase):
    """Test full clip jobs against fake yt-dlp and ffmpeg."""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        root = Path(self.tmpdir.name)
        self.bin_dir = root / "bin"
        self.bin_dir.mkdir()
        self.out_dir = root / "out"
        self.out_dir.mkdir()
        self.temp_root = root / "work"
        self.temp_root.mkdir()
        self.ytdlp_calls = root / "ytdlp_calls.jsonl"
        self.ffmpeg_calls = root / "ffmpeg_calls.jsonl"

        self.ffmpeg = self.install_ffmpeg("ok")

        # Keep job workspaces inside the test directory
        real_create = cleanup.create_workspace
        patcher = mock.patch(
            "clipdownloader.core.job_orchestrator.create_workspace",
            side_effect=lambda: real_create(self.temp_root),
        )
        patcher.start()
        self.addCleanup(patcher.stop)

    def tearDown(self):
        self.tmpdir.cleanup()

    def install_ytdlp(self, mode: str) -> Path:
        return write_script(self.bin_dir / "yt-dlp", FAKE_YTDLP,
                            MODE=mode, CALLS=str(self.ytdlp_calls))

    def install_ffmpeg(self, mode: str) -> Path:
        return write_script(self.bin_dir / "ffmpeg", FAKE_FFMPEG,
                            MODE=mode, CALLS=str(self.ffmpeg_calls))

    def make_orchestrator(self, mode: str = "ok", **config) -> ClipJobOrchestrator:
        ytdlp = self.install_ytdlp(mode)
        settings = {
            'ytdlp_path': str(ytdlp),
            'ffmpeg_path': str(self.ffmpeg),
            'grace_period_sec': 0.5,
        }
        settings.update(config)
        orchestrator = ClipJobOrchestrator(config=settings)
        self.snapshots = []
        orchestrator.subscribe(self.snapshots.append)
        return orchestrator

    def make_request(self, **overrides) -> ClipRequest:
        fields = dict(url=VIDEO_URL, start_time="10", end_time="70",
                      quality=Quality.P1080, container=Container.MP4,
                      accuracy=Accuracy.FRAME, output_folder=self.out_dir)
        fields.update(overrides)
        return ClipRequest(**fields)

    def stage_sequence(self) -> list[str]:
        stages = []
        for snap in self.snapshots:
            if not stages or stages[-1] != snap.stage:
                stages.append(snap.stage)
        return stages

    def wait_for(self, predicate, timeout: float = 5.0):
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return
            time.sleep(0.01)
        self.fail("condition not reached")

    def test_finished_clip(self):
        orchestrator = self.make_orchestrator()
        final = orchestrator.start(self.make_request())

        self.assertEqual(final.stage, JobStage.FINISHED, final.error)
        self.assertEqual(final.overall_progress, 1.0)
        self.assertEqual(self.stage_sequence(),
                         [JobStage.RETRIEVING, JobStage.TRIMMING, JobStage.FINISHED])

        output = final.result.output_path
        self.assertEqual(output, self.out_dir / "Test Video_00-10-01-10.mp4")
        self.assertTrue(output.exists())
        self.assertEqual(final.result.file_size, 1024)
        self.assertEqual(final.metadata.title, "Test Video")
        self.assertEqual(list(self.temp_root.iterdir()), [])

        ffmpeg_args = read_calls(self.ffmpeg_calls)[0]
        self.assertEqual(ffmpeg_args[ffmpeg_args.index("-ss") + 1], "00:00:10.000")
        self.assertEqual(ffmpeg_args[ffmpeg_args.index("-c:v") + 1], "h264_videotoolbox")
        self.assertTrue(any(e.level == LogLevel.SUCCESS for e in final.log))

    def test_progress_is_monotonic(self):
        orchestrator = self.make_orchestrator()
        orchestrator.start(self.make_request())

        retrieve = [s.retrieve_progress for s in self.snapshots if s.stage == JobStage.RETRIEVING]
        trim = [s.trim_progress for s in self.snapshots if s.stage == JobStage.TRIMMING]
        overall = [s.overall_progress for s in self.snapshots]
        self.assertEqual(retrieve, sorted(retrieve))
        self.assertEqual(trim, sorted(trim))
        self.assertEqual(overall, sorted(overall))
        self.assertIn(0.5, retrieve)
        self.assertIn(0.25, trim)
        for snap in self.snapshots:
            if snap.stage == JobStage.TRIMMING:
                self.assertAlmostEqual(snap.overall_progress, 0.6 + snap.trim_progress * 0.4)

    def test_name_conflict(self):
        (self.out_dir / "Test Video_00-10-01-10.mp4").write_bytes(b"existing")
        orchestrator = self.make_orchestrator()
        final = orchestrator.start(self.make_request())

        self.assertEqual(final.stage, JobStage.FINISHED)
        self.assertEqual(final.result.output_path.name, "Test Video_00-10-01-10 (1).mp4")
        self.assertEqual((self.out_dir / "Test Video_00-10-01-10.mp4").read_bytes(), b"existing")

    def test_keyframe_audio_container(self):
        orchestrator = self.make_orchestrator()
        final = orchestrator.start(self.make_request(container=Container.M4A,
                                                     accuracy=Accuracy.KEYFRAME))
        self.assertEqual(final.stage, JobStage.FINISHED)
        self.assertEqual(final.result.output_path.suffix, ".m4a")
        ffmpeg_args = read_calls(self.ffmpeg_calls)[0]
        self.assertEqual(ffmpeg_args[ffmpeg_args.index("-c") + 1], "copy")

    def test_private_video(self):
        orchestrator = self.make_orchestrator(mode="private")
        final = orchestrator.start(self.make_request())

        self.assertEqual(final.stage, JobStage.FAILED)
        self.assertEqual(final.error.code, ErrorCode.RETRIEVAL_FAILED)
        self.assertEqual(final.error.reason, RetrievalReason.PRIVATE)
        self.assertEqual(final.overall_progress, 0.0)
        self.assertEqual(list(self.out_dir.iterdir()), [])
        self.assertEqual(list(self.temp_root.iterdir()), [])
        # Probe failure only warns; the download still ran
        self.assertEqual(len(read_calls(self.ytdlp_calls)), 2)
        self.assertTrue(any(e.level == LogLevel.WARNING for e in final.log))

    def test_validation_failure_launches_nothing(self):
        orchestrator = self.make_orchestrator()
        final = orchestrator.start(self.make_request(start_time="70", end_time="10"))

        self.assertEqual(final.stage, JobStage.FAILED)
        self.assertEqual(final.error.code, ErrorCode.VALIDATION_FAILED)
        self.assertEqual(read_calls(self.ytdlp_calls), [])
        self.assertEqual(list(self.temp_root.iterdir()), [])

    def test_infinite_end_time_launches_nothing(self):
        orchestrator = self.make_orchestrator()
        final = orchestrator.start(self.make_request(end_time="inf"))

        self.assertEqual(final.stage, JobStage.FAILED)
        self.assertEqual(final.error.code, ErrorCode.VALIDATION_FAILED)
        self.assertEqual(read_calls(self.ytdlp_calls), [])
        self.assertEqual(read_calls(self.ffmpeg_calls), [])

    def test_missing_tool(self):
        orchestrator = self.make_orchestrator(ffmpeg_path=str(self.bin_dir / "missing"))
        final = orchestrator.start(self.make_request())

        self.assertEqual(final.stage, JobStage.FAILED)
        self.assertEqual(final.error.code, ErrorCode.TOOL_MISSING)
        self.assertEqual(read_calls(self.ytdlp_calls), [])

    def test_cancel_while_retrieving(self):
        orchestrator = self.make_orchestrator(mode="slow")
        worker = orchestrator.start_in_background(self.make_request())

        time.sleep(0.05)
        self.assertEqual(orchestrator.stage, JobStage.RETRIEVING)
        started = time.monotonic()
        self.assertTrue(orchestrator.cancel())
        self.assertEqual(orchestrator.stage, JobStage.CANCELED)

        worker.join(timeout=10)
        self.assertFalse(worker.is_alive())
        self.assertLess(time.monotonic() - started, 5)

        final = orchestrator.snapshot()
        self.assertEqual(final.stage, JobStage.CANCELED)
        self.assertIsNone(final.error)
        self.assertIsNone(final.result)
        self.assertEqual(final.overall_progress, 0.0)
        self.assertEqual(list(self.temp_root.iterdir()), [])
        self.assertEqual(list(self.out_dir.iterdir()), [])
        self.assertTrue(orchestrator.can_start)

    def test_cancel_while_trimming_removes_output(self):
        self.install_ffmpeg("slow")
        orchestrator = self.make_orchestrator()
        worker = orchestrator.start_in_background(self.make_request())

        output = self.out_dir / "Test Video_00-10-01-10.mp4"
        self.wait_for(lambda: orchestrator.snapshot().trim_progress >= 0.25)
        self.assertEqual(orchestrator.stage, JobStage.TRIMMING)
        self.assertTrue(output.exists())

        self.assertTrue(orchestrator.cancel())
        worker.join(timeout=10)
        self.assertFalse(worker.is_alive())

        final = orchestrator.snapshot()
        self.assertEqual(final.stage, JobStage.CANCELED)
        self.assertIsNone(final.error)
        self.assertIsNone(final.result)
        self.assertEqual(list(self.out_dir.iterdir()), [])
        self.assertEqual(list(self.temp_root.iterdir()), [])

    def test_cancel_after_trim_succeeds(self):
        orchestrator = self.make_orchestrator()

        def cancel_when_output_ready(snapshot):
            # Logged once ffmpeg has exited cleanly and the file is in place
            if snapshot.log and snapshot.log[-1].message.startswith("Output size"):
                orchestrator.cancel()

        orchestrator.subscribe(cancel_when_output_ready)
        final = orchestrator.start(self.make_request())

        self.assertEqual(final.stage, JobStage.CANCELED)
        self.assertIsNone(final.result)
        self.assertIsNone(final.error)
        self.assertEqual(final.trim_progress, 1.0)
        self.assertFalse(any(e.level == LogLevel.SUCCESS and e.message.startswith("Clip saved")
                             for e in final.log))
        self.assertEqual(list(self.out_dir.iterdir()), [])
        self.assertEqual(list(self.temp_root.iterdir()), [])
        self.assertTrue(orchestrator.can_start)

    def test_keep_temp_on_failure(self):
        orchestrator = self.make_orchestrator(mode="private", keep_temp_on_failure=True)
        final = orchestrator.start(self.make_request())

        self.assertEqual(final.stage, JobStage.FAILED)
        kept = list(self.temp_root.iterdir())
        self.assertEqual(len(kept), 1)
        self.assertTrue(any(e.message == f"Kept temp directory: {kept[0]}" for e in final.log))

    def test_cancel_when_idle_is_noop(self):
        orchestrator = self.make_orchestrator()
        self.assertFalse(orchestrator.cancel())
        self.assertEqual(orchestrator.stage, JobStage.IDLE)
        self.assertEqual(self.snapshots, [])

    def test_start_rejected_while_running(self):
        orchestrator = self.make_orchestrator(mode="slow")
        worker = orchestrator.start_in_background(self.make_request())
        # The slow probe produces no further log entries until cancelled
        self.wait_for(lambda: any(e.message.startswith("Fetching video information")
                                  for e in orchestrator.snapshot().log))
        self.assertTrue(orchestrator.is_running)
        self.assertFalse(orchestrator.can_start)

        rejected = orchestrator.start(self.make_request())
        self.assertEqual(rejected.stage, JobStage.RETRIEVING)
        self.assertEqual(rejected.log[-1].level, LogLevel.ERROR)

        orchestrator.cancel()
        worker.join(timeout=10)
        self.assertTrue(orchestrator.can_start)

        # A fresh job may start once the previous one is terminal
        self.install_ytdlp("ok")
        final = orchestrator.start(self.make_request())
        self.assertEqual(final.stage, JobStage.FINISHED)

    def test_log_is_bounded(self):
        orchestrator = self.make_orchestrator(log_history=10)
        final = orchestrator.start(self.make_request())
        self.assertLessEqual(len(final.log), 10)
        timestamps = [e.timestamp for e in final.log]
        self.assertEqual(timestamps, sorted(timestamps))

    def test_subscriber_errors_do_not_break_job(self):
        orchestrator = self.make_orchestrator()

        def broken(snapshot):
            raise RuntimeError("observer failure")

        orchestrator.subscribe(broken)
        final = orchestrator.start(self.make_request())
        self.assertEqual(final.stage, JobStage.FINISHED)

    def test_unsubscribe(self):
        orchestrator = self.make_orchestrator()
        seen = []
        unsubscribe = orchestrator.subscribe(seen.append)
        unsubscribe()
        orchestrator.start(self.make_request())
        self.assertEqual(seen, [])


if __name__ == "__main__":
    unittest.main()

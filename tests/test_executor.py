import os
import subprocess
import threading
import time

import pytest

from linux_bash_mcp.executor import (
    ExecutionEngine,
    ExecutionRequest,
    FailureReason,
    OutputCapture,
)

posix_only = pytest.mark.skipif(os.name != "posix", reason="uses /bin/sh")


def _sh(script: str, timeout_ms: int = 5000, max_output_bytes: int = 1024 * 1024) -> ExecutionRequest:
    return ExecutionRequest(("sh", "-c", script), timeout_ms, max_output_bytes, f"sh -c {script!r}")


class RecordingPopen:
    def __init__(self):
        self.processes = []

    def __call__(self, *args, **kwargs):
        proc = subprocess.Popen(*args, **kwargs)
        self.processes.append(proc)
        return proc


def test_capture_truncates_at_ceiling():
    capture = OutputCapture(limit=5)
    assert capture.feed("stdout", b"abc")
    assert not capture.feed("stderr", b"defg")
    assert capture.overflowed.is_set()
    assert capture.text("stdout") == "abc"
    assert capture.text("stderr") == "de"


def test_capture_accepts_output_exactly_at_ceiling():
    capture = OutputCapture(limit=4)
    assert capture.feed("stdout", b"abcd")
    assert not capture.overflowed.is_set()


def test_launch_failure():
    result = ExecutionEngine().run(ExecutionRequest(("definitely-not-a-binary-4821",), 1000, 1024))

    assert not result.exited_normally
    assert result.failure_reason is FailureReason.LAUNCH_FAILED
    assert result.exit_code is None
    assert "Failed to launch" in result.error


@posix_only
def test_captures_stdout_and_stderr():
    result = ExecutionEngine().run(_sh("echo hi; echo oops >&2"))

    assert result.exited_normally
    assert result.failure_reason is None
    assert result.exit_code == 0
    assert result.stdout == "hi\n"
    assert result.stderr == "oops\n"


@posix_only
def test_non_zero_exit_keeps_streams():
    result = ExecutionEngine().run(_sh("echo partial; echo bad >&2; exit 3"))

    assert not result.exited_normally
    assert result.failure_reason is FailureReason.NON_ZERO_EXIT
    assert result.exit_code == 3
    assert result.stdout == "partial\n"
    assert result.stderr == "bad\n"


@posix_only
def test_timeout_kills_process():
    popen = RecordingPopen()
    started = time.monotonic()

    result = ExecutionEngine(popen=popen).run(_sh("sleep 30", timeout_ms=300))

    assert time.monotonic() - started < 10
    assert result.failure_reason is FailureReason.TIMEOUT
    assert not result.exited_normally
    assert "300 ms" in result.error
    assert popen.processes[0].poll() is not None


def _running(pid: int) -> bool:
    # Orphans may linger as zombies until reaped; those count as gone.
    if os.path.isdir("/proc/self"):
        try:
            with open(f"/proc/{pid}/stat") as handle:
                return handle.read().rsplit(")", 1)[1].split()[0] != "Z"
        except FileNotFoundError:
            return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    return True


@posix_only
def test_timeout_covers_background_children_holding_pipes(tmp_path):
    pid_file = tmp_path / "child.pid"

    result = ExecutionEngine().run(_sh(f"sleep 30 & echo $! > {pid_file}; echo started", timeout_ms=500))

    assert result.failure_reason is FailureReason.TIMEOUT
    assert "started" in result.stdout
    pid = int(pid_file.read_text().strip())
    deadline = time.monotonic() + 5
    while _running(pid) and time.monotonic() < deadline:
        time.sleep(0.05)
    assert not _running(pid)


@posix_only
def test_output_ceiling():
    popen = RecordingPopen()

    result = ExecutionEngine(popen=popen).run(_sh("yes", max_output_bytes=2000))

    assert result.failure_reason is FailureReason.OUTPUT_TOO_LARGE
    assert not result.exited_normally
    assert len(result.stdout.encode()) + len(result.stderr.encode()) <= 2000
    assert popen.processes[0].poll() is not None


@posix_only
def test_output_ceiling_counts_both_streams():
    result = ExecutionEngine().run(
        _sh("head -c 600 /dev/zero; head -c 600 /dev/zero >&2", max_output_bytes=1000)
    )
    assert result.failure_reason is FailureReason.OUTPUT_TOO_LARGE


@posix_only
def test_concurrency_is_bounded():
    engine = ExecutionEngine(max_concurrent=1)
    spans = []
    original_run = engine._run

    def timed_run(request):
        started = time.monotonic()
        result = original_run(request)
        spans.append((started, time.monotonic()))
        return result

    engine._run = timed_run
    threads = [threading.Thread(target=engine.run, args=(_sh("sleep 0.2"),)) for _ in range(3)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    spans.sort()
    assert len(spans) == 3
    for (_, first_end), (second_start, _) in zip(spans, spans[1:]):
        assert second_start >= first_end


def test_command_line_mode_hands_invocation_line_to_the_os():
    launched = []

    def refuse(args, **kwargs):
        launched.append(args)
        raise OSError("not launched")

    request = ExecutionRequest(("wsl", "-d", "Ubuntu", "--", "ls", "/tmp;id"), 1000, 1024,
                               "wsl -d Ubuntu -- ls '/tmp;id'")

    ExecutionEngine(popen=refuse, use_command_line=True).run(request)
    ExecutionEngine(popen=refuse, use_command_line=False).run(request)

    assert launched == ["wsl -d Ubuntu -- ls '/tmp;id'", list(request.argv)]

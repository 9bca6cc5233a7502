import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from linux_bash_mcp.config import BUFFER_SIZE, KILL_GRACE, MAX_CONCURRENT_PROCESSES
from linux_bash_mcp.utils import log_debug, log_error

POLL_INTERVAL = 0.05


class FailureReason(str, Enum):
    LAUNCH_FAILED = "LaunchFailed"
    TIMEOUT = "Timeout"
    OUTPUT_TOO_LARGE = "OutputTooLarge"
    NON_ZERO_EXIT = "NonZeroExit"


@dataclass(frozen=True)
class ExecutionRequest:
    argv: Tuple[str, ...]
    timeout_ms: int
    max_output_bytes: int
    invocation_line: str = ""

    @classmethod
    def for_invocation(cls, invocation, timeout_ms: int, max_output_bytes: int) -> "ExecutionRequest":
        return cls(
            argv=tuple(invocation.argv),
            timeout_ms=timeout_ms,
            max_output_bytes=max_output_bytes,
            invocation_line=invocation.line,
        )


@dataclass
class ExecutionResult:
    exited_normally: bool
    stdout: str = ""
    stderr: str = ""
    exit_code: Optional[int] = None
    failure_reason: Optional[FailureReason] = None
    error: str = ""
    duration_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"stdout": self.stdout, "stderr": self.stderr}
        if self.exit_code is not None:
            data["exitCode"] = self.exit_code
        if self.failure_reason is not None:
            data["failureReason"] = self.failure_reason.value
            data["error"] = self.error
        return data


@dataclass
class OutputCapture:
    """Combined stdout/stderr buffer with a hard byte ceiling."""

    limit: int
    lock: threading.Lock = field(default_factory=threading.Lock)
    overflowed: threading.Event = field(default_factory=threading.Event)
    parts: Dict[str, List[bytes]] = field(default_factory=lambda: {"stdout": [], "stderr": []})
    total_bytes: int = 0

    def feed(self, stream: str, chunk: bytes) -> bool:
        with self.lock:
            room = self.limit - self.total_bytes
            if len(chunk) > room:
                if room > 0:
                    self.parts[stream].append(chunk[:room])
                    self.total_bytes += room
                self.overflowed.set()
                return False
            self.parts[stream].append(chunk)
            self.total_bytes += len(chunk)
            return True

    def text(self, stream: str) -> str:
        with self.lock:
            return b"".join(self.parts[stream]).decode("utf-8", errors="replace")


def _spawn_kwargs() -> Dict[str, Any]:
    if os.name == "posix":
        return {"start_new_session": True}
    return {"creationflags": getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0)}


def _kill_tree(proc: subprocess.Popen) -> None:
    if os.name == "posix":
        try:
            os.killpg(proc.pid, signal.SIGKILL)
            return
        except OSError as exc:
            log_debug(f"killpg({proc.pid}) failed: {exc}")
    try:
        proc.kill()
    except OSError as exc:
        log_debug(f"kill({proc.pid}) failed: {exc}")


def _pump(stream, name: str, capture: OutputCapture) -> None:
    try:
        for chunk in iter(lambda: stream.read1(BUFFER_SIZE), b""):
            if not capture.feed(name, chunk):
                break
    except (OSError, ValueError) as exc:
        log_debug(f"{name} reader stopped: {exc}")
    finally:
        try:
            stream.close()
        except OSError as exc:
            log_debug(f"{name} close failed: {exc}")


class ExecutionEngine:
    """Run one child process per request with a wall-clock timeout and an output ceiling.

    Children are never pooled or reused. At most `max_concurrent` run at once;
    further callers block until a slot frees up.

    With `use_command_line` (the default on Windows) the request's
    invocation line is passed to the OS verbatim instead of argv.
    """

    def __init__(
        self,
        max_concurrent: int = MAX_CONCURRENT_PROCESSES,
        popen=subprocess.Popen,
        use_command_line: bool = os.name == "nt",
    ):
        self.slots = threading.BoundedSemaphore(max(1, int(max_concurrent)))
        self.popen = popen
        self.use_command_line = use_command_line

    def run(self, request: ExecutionRequest) -> ExecutionResult:
        with self.slots:
            return self._run(request)

    def _run(self, request: ExecutionRequest) -> ExecutionResult:
        started = time.monotonic()
        log_debug(f"exec: {request.invocation_line or ' '.join(request.argv)}")
        if self.use_command_line and request.invocation_line:
            args = request.invocation_line
        else:
            args = list(request.argv)
        try:
            proc = self.popen(
                args,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                **_spawn_kwargs(),
            )
        except (OSError, ValueError) as exc:
            log_error(f"failed to launch {request.argv[0] if request.argv else '<empty>'}: {exc}")
            return ExecutionResult(
                exited_normally=False,
                failure_reason=FailureReason.LAUNCH_FAILED,
                error=f"Failed to launch process: {exc}",
                duration_ms=_elapsed_ms(started),
            )

        capture = OutputCapture(limit=max(0, request.max_output_bytes))
        readers = [
            threading.Thread(target=_pump, args=(proc.stdout, "stdout", capture), daemon=True),
            threading.Thread(target=_pump, args=(proc.stderr, "stderr", capture), daemon=True),
        ]
        for reader in readers:
            reader.start()

        deadline = started + max(request.timeout_ms, 0) / 1000.0
        reason = self._wait(proc, readers, capture, deadline)

        if reason is not None:
            _kill_tree(proc)
        try:
            proc.wait(timeout=KILL_GRACE)
        except subprocess.TimeoutExpired:
            log_error(f"process {proc.pid} did not exit after kill")
        for reader in readers:
            reader.join(timeout=KILL_GRACE)

        # The ceiling can be crossed in the same instant the child exits.
        if reason is None and capture.overflowed.is_set():
            reason = FailureReason.OUTPUT_TOO_LARGE

        exit_code = proc.returncode
        result = ExecutionResult(
            exited_normally=False,
            stdout=capture.text("stdout"),
            stderr=capture.text("stderr"),
            exit_code=exit_code if reason is None else None,
            duration_ms=_elapsed_ms(started),
        )
        if reason is FailureReason.TIMEOUT:
            result.failure_reason = reason
            result.error = f"Command timed out after {request.timeout_ms} ms"
        elif reason is FailureReason.OUTPUT_TOO_LARGE:
            result.failure_reason = reason
            result.error = f"Output exceeded {request.max_output_bytes} bytes"
        elif exit_code != 0:
            result.failure_reason = FailureReason.NON_ZERO_EXIT
            result.error = f"Command failed with exit code {exit_code}"
        else:
            result.exited_normally = True
        outcome = result.failure_reason.value if result.failure_reason else "ok"
        log_debug(f"exec finished in {result.duration_ms} ms: {outcome}")
        return result

    def _wait(self, proc, readers, capture: OutputCapture, deadline: float) -> Optional[FailureReason]:
        while proc.poll() is None:
            if capture.overflowed.is_set():
                return FailureReason.OUTPUT_TOO_LARGE
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return FailureReason.TIMEOUT
            capture.overflowed.wait(min(remaining, POLL_INTERVAL))

        # Child exited; a backgrounded grandchild may still hold the pipes open.
        for reader in readers:
            reader.join(timeout=max(0.0, deadline - time.monotonic()))
            if reader.is_alive():
                return FailureReason.TIMEOUT
        return None


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)

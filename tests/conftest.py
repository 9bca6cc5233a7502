from typing import Callable, List, Optional

import pytest

from linux_bash_mcp.config import RuntimeConfig
from linux_bash_mcp.executor import ExecutionRequest, ExecutionResult

# `wsl -l -v` as the Windows console emits it: UTF-16-LE with a BOM.
LISTING_TEXT = (
    "  NAME            STATE           VERSION\r\n"
    "* Ubuntu-22.04    Running         2\r\n"
    "  Debian          Stopped         2\r\n"
    "  kali-linux      Stopped         1\r\n"
)
LISTING_BYTES = "\ufeff".encode("utf-16-le") + LISTING_TEXT.encode("utf-16-le")


class FakeRunner:
    """Stands in for the process runner used by DistributionDetector."""

    def __init__(self, output: bytes = LISTING_BYTES, error: Optional[Exception] = None):
        self.output = output
        self.error = error
        self.calls: List[List[str]] = []

    def __call__(self, argv, timeout):
        self.calls.append(list(argv))
        if self.error is not None:
            raise self.error
        return self.output


class FakeEngine:
    """Records ExecutionRequests; answers from `responder` or with a canned success."""

    def __init__(self, responder: Optional[Callable[[ExecutionRequest], ExecutionResult]] = None):
        self.responder = responder
        self.requests: List[ExecutionRequest] = []

    def run(self, request: ExecutionRequest) -> ExecutionResult:
        self.requests.append(request)
        if self.responder is not None:
            return self.responder(request)
        return ExecutionResult(exited_normally=True, stdout="ok\n", exit_code=0)


@pytest.fixture
def runtime() -> RuntimeConfig:
    return RuntimeConfig(target_environment="Ubuntu-22.04", environment_source="file")


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()

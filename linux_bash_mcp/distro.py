import subprocess
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Union

from linux_bash_mcp.config import BRIDGE_EXECUTABLE, DETECT_TIMEOUT
from linux_bash_mcp.errors import NoEnvironmentsFound
from linux_bash_mcp.utils import decode_output, log_debug, strip_noise

# (argv, timeout seconds) -> raw stdout. Raises on launch failure or non-zero exit.
ProcessRunner = Callable[[Sequence[str], float], bytes]

HEADER_MARKERS = (
    "Windows Subsystem for Linux",
    "----",
    "The following",
    "distributions",
)
DEFAULT_SUFFIX = "(Default)"


@dataclass(frozen=True)
class EnvironmentInfo:
    name: str
    running: bool
    api_version: int
    is_default: bool
    state: str = ""

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "state": self.state or ("Running" if self.running else "Stopped"),
            "version": self.api_version,
            "isDefault": self.is_default,
        }


def _is_header(line: str) -> bool:
    if any(marker in line for marker in HEADER_MARKERS):
        return True
    tokens = line.upper().split()
    return tokens[:2] == ["NAME", "STATE"]


def parse_environment_listing(raw: Union[bytes, str]) -> List[EnvironmentInfo]:
    """Turn `wsl -l -v` (or `wsl -l`) output into EnvironmentInfo records.

    Tolerates UTF-16 output, stray NULs, BOMs and other bytes outside printable
    ASCII, which are stripped before tokenizing. Header and separator lines are
    skipped. A leading `*` or a trailing `(Default)` marks the default entry.
    """
    environments: List[EnvironmentInfo] = []
    for raw_line in decode_output(raw).splitlines():
        line = strip_noise(raw_line)
        if not line or _is_header(line):
            continue

        is_default = line.startswith("*")
        if is_default:
            line = line[1:].strip()
        if line.endswith(DEFAULT_SUFFIX):
            is_default = True
            line = line[: -len(DEFAULT_SUFFIX)].strip()

        tokens = line.split()
        if not tokens:
            continue
        name = tokens[0]
        state = tokens[1] if len(tokens) > 1 else ""
        try:
            version = int(tokens[2]) if len(tokens) > 2 else 0
        except ValueError:
            version = 0

        environments.append(
            EnvironmentInfo(
                name=name,
                running=state.lower() == "running",
                api_version=version,
                is_default=is_default,
                state=state,
            )
        )
    return environments


def pick_default(environments: Sequence[EnvironmentInfo]) -> str:
    if not environments:
        raise NoEnvironmentsFound("No valid WSL distributions found in output")
    for env in environments:
        if env.is_default:
            return env.name
    return environments[0].name


def listing_text(raw: Union[bytes, str]) -> str:
    lines = (strip_noise(line) for line in decode_output(raw).splitlines())
    return "\n".join(line for line in lines if line)


def subprocess_runner(argv: Sequence[str], timeout: float) -> bytes:
    completed = subprocess.run(
        list(argv),
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        timeout=timeout,
        check=True,
    )
    return completed.stdout


class DistributionDetector:
    def __init__(
        self,
        runner: Optional[ProcessRunner] = None,
        bridge_executable: str = BRIDGE_EXECUTABLE,
        timeout: float = DETECT_TIMEOUT,
    ):
        self.runner = runner or subprocess_runner
        self.bridge_executable = bridge_executable
        self.timeout = timeout

    def listing_argv(self) -> List[str]:
        return [self.bridge_executable, "-l", "-v"]

    def fetch_listing(self) -> bytes:
        try:
            return self.runner(self.listing_argv(), self.timeout)
        except (OSError, subprocess.SubprocessError) as exc:
            raise NoEnvironmentsFound(f"Could not list WSL distributions: {exc}") from exc

    def list_environments(self) -> List[EnvironmentInfo]:
        environments = parse_environment_listing(self.fetch_listing())
        log_debug(f"parsed distributions: {[env.name for env in environments]}")
        return environments

    def detect_default(self) -> str:
        name = pick_default(self.list_environments())
        log_debug(f"auto-detected WSL distribution: {name}")
        return name

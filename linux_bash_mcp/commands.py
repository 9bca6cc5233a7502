"""Invocation construction for the WSL bridge.

Every invocation is `wsl -d <env> -- <words...>`. The bridge hands the text
after `--` to the distribution's login shell, which parses it again, so each
invocation carries both its argv and the exact command line handed to the
bridge. The prefix is quoted with Windows argv rules and every word after
`--` with the single-quote policy, where each embedded `'` becomes `'\\''`.

LegacyQuoting only quotes. That is enough for accidental quote characters but
the command text itself is shell source, so a caller can still chain extra
operators there. StrictQuoting additionally refuses path-like values and
script arguments that carry shell metacharacters.
"""

import re
import subprocess
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from linux_bash_mcp.config import BRIDGE_EXECUTABLE
from linux_bash_mcp.errors import InvalidArguments

SAFE_TOKEN = re.compile(r"^[A-Za-z0-9_./:=+,@%-]+$")
STRICT_FORBIDDEN = frozenset(";&|$`<>()'\"\\\n\r")

CONNECTION_TEST_MESSAGE = "WSL connection test successful"

SYSTEM_PROBES: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("System information", ("uname", "-a")),
    ("OS release information", ("cat", "/etc/os-release")),
    ("Current user", ("whoami",)),
    ("Current directory", ("pwd",)),
    ("Disk usage", ("df", "-h")),
    ("Memory usage", ("free", "-h")),
    ("System uptime", ("uptime",)),
    ("Kernel version", ("cat", "/proc/version")),
)


class Operation(str, Enum):
    RUN_COMMAND = "run-command"
    RUN_SCRIPT = "run-script"
    CREATE_SCRIPT = "create-script"
    LIST_DIRECTORY = "list-directory"


def escape_single_quotes(value: str) -> str:
    return value.replace("'", "'\\''")


class LegacyQuoting:
    def quote(self, value: str) -> str:
        return f"'{escape_single_quotes(value)}'"

    def check_path(self, value: str, field: str) -> None:
        _reject_nul(value, field)

    def check_text(self, value: str, field: str) -> None:
        _reject_nul(value, field)


class StrictQuoting(LegacyQuoting):
    def check_path(self, value: str, field: str) -> None:
        _reject_nul(value, field)
        bad = sorted(set(value) & STRICT_FORBIDDEN)
        if bad:
            raise InvalidArguments(
                f"{field} contains shell metacharacters not allowed in strict mode: {''.join(bad)!r}"
            )


def _reject_nul(value: str, field: str) -> None:
    if "\x00" in value:
        raise InvalidArguments(f"{field} must not contain NUL bytes")


@dataclass(frozen=True)
class Invocation:
    """argv for direct execution plus `line`, the command line the bridge receives.

    `shell_command` is the part of `line` after `--`; the distribution shell
    parses it back into `argv[4:]`.
    """

    argv: Tuple[str, ...]
    line: str
    shell_command: str = ""


class CommandBuilder:
    def __init__(self, policy: Optional[LegacyQuoting] = None, bridge_executable: str = BRIDGE_EXECUTABLE):
        self.policy = policy or LegacyQuoting()
        self.bridge_executable = bridge_executable

    def serialize(self, argv: Sequence[str]) -> str:
        return " ".join(arg if SAFE_TOKEN.match(arg) else self.policy.quote(arg) for arg in argv)

    def _in_environment(self, environment: str, argv: Sequence[str]) -> Invocation:
        if not environment:
            raise InvalidArguments("WSL distribution not configured")
        prefix = (self.bridge_executable, "-d", environment, "--")
        shell_command = self.serialize(argv)
        return Invocation(
            argv=prefix + tuple(argv),
            line=f"{subprocess.list2cmdline(prefix)} {shell_command}",
            shell_command=shell_command,
        )

    def _bash(self, environment: str, script: str) -> Invocation:
        return self._in_environment(environment, ["bash", "-c", script])

    def run_command(self, environment: str, command: str, working_directory: str = ".") -> Invocation:
        self.policy.check_text(command, "command")
        self.policy.check_path(working_directory, "workingDirectory")
        q = self.policy.quote
        return self._bash(environment, f"cd {q(working_directory)} && {command}")

    def run_script(
        self,
        environment: str,
        script_path: str,
        args: Sequence[str] = (),
        working_directory: str = ".",
    ) -> Invocation:
        self.policy.check_path(script_path, "scriptPath")
        self.policy.check_path(working_directory, "workingDirectory")
        for arg in args:
            self.policy.check_path(arg, "args")
        q = self.policy.quote
        quoted_args = "".join(f" {q(arg)}" for arg in args)
        return self._bash(environment, f"cd {q(working_directory)} && bash {q(script_path)}{quoted_args}")

    def create_script(
        self,
        environment: str,
        script_path: str,
        content: str,
        executable: bool = True,
    ) -> List[Invocation]:
        self.policy.check_path(script_path, "scriptPath")
        self.policy.check_text(content, "content")
        q = self.policy.quote
        invocations = [self._bash(environment, f"printf '%s\\n' {q(content)} > {q(script_path)}")]
        if executable:
            invocations.append(self._in_environment(environment, ["chmod", "+x", script_path]))
        return invocations

    def list_directory(self, environment: str, path: str = ".", detailed: bool = False) -> Invocation:
        self.policy.check_path(path, "path")
        argv = ["ls", "-la", path] if detailed else ["ls", path]
        return self._in_environment(environment, argv)

    def probe(self, environment: str, argv: Sequence[str]) -> Invocation:
        return self._in_environment(environment, argv)

    def connection_test(self, environment: str) -> Invocation:
        return self._in_environment(environment, ["echo", CONNECTION_TEST_MESSAGE])

    def build(self, operation: Operation, arguments: Dict[str, Any], environment: str) -> List[Invocation]:
        operation = Operation(operation)
        if operation is Operation.RUN_COMMAND:
            return [self.run_command(
                environment, arguments["command"], arguments.get("workingDirectory", "."),
            )]
        if operation is Operation.RUN_SCRIPT:
            return [self.run_script(
                environment, arguments["scriptPath"], arguments.get("args", ()),
                arguments.get("workingDirectory", "."),
            )]
        if operation is Operation.CREATE_SCRIPT:
            return self.create_script(
                environment, arguments["scriptPath"], arguments["content"],
                arguments.get("executable", True),
            )
        return [self.list_directory(
            environment, arguments.get("path", "."), arguments.get("detailed", False),
        )]


def builder_for(strict: bool, bridge_executable: str = BRIDGE_EXECUTABLE) -> CommandBuilder:
    policy = StrictQuoting() if strict else LegacyQuoting()
    return CommandBuilder(policy=policy, bridge_executable=bridge_executable)

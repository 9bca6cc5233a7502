from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from linux_bash_mcp.commands import SYSTEM_PROBES, CommandBuilder, Operation, builder_for
from linux_bash_mcp.config import MAX_TIMEOUT_MS, MIN_TIMEOUT_MS, RuntimeConfig
from linux_bash_mcp.distro import DistributionDetector, listing_text, parse_environment_listing
from linux_bash_mcp.errors import InvalidArguments, NoEnvironmentsFound, UnknownTool
from linux_bash_mcp.executor import ExecutionEngine, ExecutionRequest, ExecutionResult
from linux_bash_mcp.utils import clamp_int, iso_now, log_debug, log_error

STRING = "string"
NUMBER = "number"
BOOLEAN = "boolean"
STRING_LIST = "string[]"

DEFAULT_TIMEOUT = "default"
SCRIPT_TIMEOUT = "script"


@dataclass(frozen=True)
class ToolContract:
    name: str
    required: Tuple[Tuple[str, str], ...] = ()
    optional: Tuple[Tuple[str, str, Any], ...] = ()
    timeout_source: Optional[str] = None


CONTRACTS: Dict[str, ToolContract] = {
    contract.name: contract
    for contract in (
        ToolContract(
            "execute_bash_command",
            required=(("command", STRING),),
            optional=(("workingDirectory", STRING, "."), ("timeout", NUMBER, None)),
            timeout_source=DEFAULT_TIMEOUT,
        ),
        ToolContract(
            "execute_bash_script",
            required=(("scriptPath", STRING),),
            optional=(("args", STRING_LIST, ()), ("workingDirectory", STRING, "."), ("timeout", NUMBER, None)),
            timeout_source=SCRIPT_TIMEOUT,
        ),
        ToolContract(
            "create_bash_script",
            required=(("scriptPath", STRING), ("content", STRING)),
            optional=(("executable", BOOLEAN, True),),
        ),
        ToolContract(
            "list_directory",
            optional=(("path", STRING, "."), ("detailed", BOOLEAN, False)),
        ),
        ToolContract("get_system_info"),
        ToolContract("check_wsl_status"),
    )
}


@dataclass
class ToolResponseEnvelope:
    success: bool
    target_environment: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    fields: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=iso_now)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"success": self.success}
        data.update(self.arguments)
        data["targetEnvironment"] = self.target_environment
        data.update(self.fields)
        data["timestamp"] = self.timestamp
        return data


def _type_ok(value: Any, kind: str) -> bool:
    if kind == STRING:
        return isinstance(value, str)
    if kind == NUMBER:
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if kind == BOOLEAN:
        return isinstance(value, bool)
    if kind == STRING_LIST:
        return isinstance(value, (list, tuple)) and all(isinstance(item, str) for item in value)
    return False


def validate_arguments(contract: ToolContract, arguments: Any) -> Dict[str, Any]:
    """Check required fields and types, then fill in defaults."""
    if arguments is None:
        arguments = {}
    if not isinstance(arguments, dict):
        raise InvalidArguments(f"{contract.name}: arguments must be an object")

    values: Dict[str, Any] = {}
    for name, kind in contract.required:
        value = arguments.get(name)
        if value is None or (kind == STRING and value == ""):
            raise InvalidArguments(f"{contract.name}: '{name}' is required and must be a {kind}")
        if not _type_ok(value, kind):
            raise InvalidArguments(f"{contract.name}: '{name}' must be a {kind}")
        values[name] = value
    for name, kind, default in contract.optional:
        value = arguments.get(name)
        if value is None:
            values[name] = default
            continue
        if not _type_ok(value, kind):
            raise InvalidArguments(f"{contract.name}: '{name}' must be a {kind}")
        values[name] = list(value) if kind == STRING_LIST else value
    return values


class ToolDispatcher:
    def __init__(
        self,
        config: RuntimeConfig,
        engine: Optional[ExecutionEngine] = None,
        builder: Optional[CommandBuilder] = None,
        detector: Optional[DistributionDetector] = None,
    ):
        self.config = config
        self.engine = engine or ExecutionEngine(max_concurrent=config.max_concurrent_processes)
        self.builder = builder or builder_for(config.strict_quoting, config.bridge_executable)
        self.detector = detector or DistributionDetector(bridge_executable=config.bridge_executable)
        self.handlers: Dict[str, Callable[[Dict[str, Any]], ToolResponseEnvelope]] = {
            "execute_bash_command": self.execute_bash_command,
            "execute_bash_script": self.execute_bash_script,
            "create_bash_script": self.create_bash_script,
            "list_directory": self.list_directory,
            "get_system_info": self.get_system_info,
            "check_wsl_status": self.check_wsl_status,
        }

    @property
    def environment(self) -> str:
        return self.config.target_environment

    def tool_names(self) -> List[str]:
        return list(self.handlers)

    def dispatch(self, name: str, arguments: Any = None) -> ToolResponseEnvelope:
        log_debug(f"Tool request: {name} {arguments}")
        contract = CONTRACTS.get(name)
        handler = self.handlers.get(name)
        if contract is None or handler is None:
            raise UnknownTool(name)
        values = validate_arguments(contract, arguments)
        if name != "check_wsl_status" and not self.environment:
            raise NoEnvironmentsFound("WSL distribution not configured")
        if contract.timeout_source is not None:
            values["timeout"] = self._timeout(values.get("timeout"), contract.timeout_source)
        return handler(values)

    def _timeout(self, requested: Any, source: str) -> int:
        default = self.config.script_timeout_ms if source == SCRIPT_TIMEOUT else self.config.default_timeout_ms
        if requested is None:
            return default
        return clamp_int(requested, default, MIN_TIMEOUT_MS, MAX_TIMEOUT_MS)

    def _execute(self, invocation, timeout_ms: Optional[int] = None) -> ExecutionResult:
        request = ExecutionRequest.for_invocation(
            invocation,
            timeout_ms=timeout_ms or self.config.default_timeout_ms,
            max_output_bytes=self.config.max_output_bytes,
        )
        result = self.engine.run(request)
        if not result.exited_normally:
            log_error(f"execution failed ({result.failure_reason.value}): {invocation.line}")
        return result

    def _envelope(self, result: ExecutionResult, arguments: Dict[str, Any], **extra: Any) -> ToolResponseEnvelope:
        fields = dict(extra)
        fields.update(result.to_dict())
        return ToolResponseEnvelope(
            success=result.exited_normally,
            target_environment=self.environment,
            arguments=arguments,
            fields=fields,
        )

    def execute_bash_command(self, values: Dict[str, Any]) -> ToolResponseEnvelope:
        invocation = self.builder.build(Operation.RUN_COMMAND, values, self.environment)[0]
        result = self._execute(invocation, values["timeout"])
        echoed = {"command": values["command"], "workingDirectory": values["workingDirectory"]}
        return self._envelope(result, echoed)

    def execute_bash_script(self, values: Dict[str, Any]) -> ToolResponseEnvelope:
        invocation = self.builder.build(Operation.RUN_SCRIPT, values, self.environment)[0]
        result = self._execute(invocation, values["timeout"])
        echoed = {
            "scriptPath": values["scriptPath"],
            "args": list(values["args"]),
            "workingDirectory": values["workingDirectory"],
        }
        return self._envelope(result, echoed)

    def create_bash_script(self, values: Dict[str, Any]) -> ToolResponseEnvelope:
        echoed = {"scriptPath": values["scriptPath"], "executable": values["executable"]}
        result = None
        for invocation in self.builder.build(Operation.CREATE_SCRIPT, values, self.environment):
            result = self._execute(invocation)
            if not result.exited_normally:
                return self._envelope(result, echoed)
        return self._envelope(result, echoed, message="Script created successfully")

    def list_directory(self, values: Dict[str, Any]) -> ToolResponseEnvelope:
        invocation = self.builder.build(Operation.LIST_DIRECTORY, values, self.environment)[0]
        result = self._execute(invocation)
        envelope = self._envelope(result, {"path": values["path"], "detailed": values["detailed"]})
        envelope.fields["listing"] = envelope.fields.pop("stdout")
        return envelope

    def get_system_info(self, values: Dict[str, Any]) -> ToolResponseEnvelope:
        info: Dict[str, Dict[str, Any]] = {}
        for description, argv in SYSTEM_PROBES:
            invocation = self.builder.probe(self.environment, argv)
            result = self._execute(invocation)
            entry: Dict[str, Any] = {"command": " ".join(argv)}
            if result.exited_normally:
                entry["output"] = result.stdout.strip()
            else:
                entry["error"] = result.error
                if result.stderr.strip():
                    entry["stderr"] = result.stderr.strip()
            info[description] = entry
        return ToolResponseEnvelope(
            success=True,
            target_environment=self.environment,
            fields={"systemInfo": info},
        )

    def check_wsl_status(self, values: Dict[str, Any]) -> ToolResponseEnvelope:
        selected = self.environment or "Not configured"
        try:
            raw = self.detector.fetch_listing()
        except NoEnvironmentsFound as exc:
            return ToolResponseEnvelope(
                success=False,
                target_environment=selected,
                fields={"wslStatus": "Error", "error": str(exc)},
            )

        test_output = "Not tested"
        os_info = "Not available"
        if self.environment:
            test = self._execute(self.builder.connection_test(self.environment))
            test_output = test.stdout.strip() if test.exited_normally else f"Test failed: {test.error}"
            release = self._execute(self.builder.probe(self.environment, ("cat", "/etc/os-release")))
            if release.exited_normally:
                os_info = release.stdout.strip()
            else:
                os_info = f"OS info not available: {release.error}"

        return ToolResponseEnvelope(
            success=True,
            target_environment=selected,
            fields={
                "wslStatus": "Running",
                "allDistributions": listing_text(raw),
                "distributions": [env.to_dict() for env in parse_environment_listing(raw)],
                "testOutput": test_output,
                "osInfo": os_info,
                "serverConfig": self.config.summary(),
            },
        )

import json
import os
from typing import Any, Dict, Mapping, Optional, Tuple

from linux_bash_mcp.config import (
    AUTO_DETECT_VALUES, BRIDGE_EXECUTABLE, CONFIG_KEYS, DEFAULT_CONFIG_FILE,
    DEFAULT_TIMEOUT_MS, ENV_CONFIG_PATH, ENV_DISTRIBUTION, FALLBACK_ENVIRONMENT,
    MAX_CONCURRENT_PROCESSES, MAX_OUTPUT_BYTES, SCRIPT_TIMEOUT_MS, RuntimeConfig,
)
from linux_bash_mcp.distro import DistributionDetector
from linux_bash_mcp.errors import ConfigUnreadable, NoEnvironmentsFound
from linux_bash_mcp.utils import log_debug, log_error, log_info, log_warn

LEGACY_KEYS = ("wslDistribution", "defaultTimeout", "scriptTimeout", "maxBufferSize")

NUMERIC_DEFAULTS = {
    "default_timeout_ms": DEFAULT_TIMEOUT_MS,
    "script_timeout_ms": SCRIPT_TIMEOUT_MS,
    "max_output_bytes": MAX_OUTPUT_BYTES,
    "max_concurrent_processes": MAX_CONCURRENT_PROCESSES,
}


def default_config_path(environ: Optional[Mapping[str, str]] = None) -> str:
    environ = os.environ if environ is None else environ
    return os.path.abspath(environ.get(ENV_CONFIG_PATH) or DEFAULT_CONFIG_FILE)


def load_config_file(path: str) -> Dict[str, Any]:
    """Read the JSON config and map its keys onto RuntimeConfig field names.

    Raises ConfigUnreadable when the file is missing, unreadable or not a JSON
    object.
    """
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
    except (OSError, ValueError) as exc:
        raise ConfigUnreadable(f"Could not read config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigUnreadable(f"Config file {path} does not contain a JSON object")

    values: Dict[str, Any] = {}
    # Current key names win over the legacy aliases when both are present.
    for key in sorted(data, key=lambda k: k in LEGACY_KEYS):
        field_name = CONFIG_KEYS.get(key)
        if field_name and field_name not in values:
            values[field_name] = data[key]
    return values


def _positive_int(value: Any, default: int) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return int(value) if value > 0 else default


def _as_bool(value: Any, default: bool) -> bool:
    return value if isinstance(value, bool) else default


class ConfigResolver:
    """Produce the RuntimeConfig for this process.

    Target environment: explicit override, then config file, then
    auto-detection, then the hardcoded fallback name.
    """

    def __init__(
        self,
        config_path: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None,
        override: Optional[str] = None,
        detector: Optional[DistributionDetector] = None,
        fallback_name: Optional[str] = FALLBACK_ENVIRONMENT,
        debug: Optional[bool] = None,
        strict_quoting: Optional[bool] = None,
    ):
        self.environ = os.environ if environ is None else environ
        self.config_path = config_path or default_config_path(self.environ)
        self.override = override
        self.detector = detector
        self.fallback_name = fallback_name
        self.debug = debug
        self.strict_quoting = strict_quoting

    def _file_values(self) -> Tuple[Dict[str, Any], bool]:
        try:
            values = load_config_file(self.config_path)
            log_debug(f"config parsed from {self.config_path}: {values}")
            return values, True
        except ConfigUnreadable as exc:
            log_warn(str(exc))
            log_info("Using default configuration")
            return {}, False

    def _resolve_target(self, file_value: Any, bridge: str) -> Tuple[str, str]:
        override = self.override or self.environ.get(ENV_DISTRIBUTION)
        if override:
            return override, "env"

        if isinstance(file_value, str) and file_value.strip().lower() not in AUTO_DETECT_VALUES:
            return file_value.strip(), "file"

        detector = self.detector or DistributionDetector(bridge_executable=bridge)
        try:
            return detector.detect_default(), "auto-detect"
        except NoEnvironmentsFound as exc:
            log_error(f"Failed to detect WSL distribution: {exc}")
            if not self.fallback_name:
                raise NoEnvironmentsFound(
                    "No WSL distribution configured. Please run setup or set "
                    f"{ENV_DISTRIBUTION} environment variable."
                ) from exc
            log_warn(f"Using default distribution name: {self.fallback_name}")
            return self.fallback_name, "fallback"

    def resolve(self) -> RuntimeConfig:
        values, file_ok = self._file_values()

        bridge = values.get("bridge_executable")
        if not isinstance(bridge, str) or not bridge.strip():
            bridge = BRIDGE_EXECUTABLE

        target, source = self._resolve_target(values.get("target_environment"), bridge)

        # Debug is forced on when the config file could not be used.
        debug = _as_bool(values.get("debug_mode"), not file_ok)
        if self.debug is not None:
            debug = self.debug or debug
        strict = _as_bool(values.get("strict_quoting"), False)
        if self.strict_quoting is not None:
            strict = self.strict_quoting

        configured = values.get("target_environment")
        numeric = {name: _positive_int(values.get(name), default) for name, default in NUMERIC_DEFAULTS.items()}

        runtime = RuntimeConfig(
            target_environment=target,
            debug_mode=debug,
            strict_quoting=strict,
            bridge_executable=bridge,
            configured_environment=configured if isinstance(configured, str) else None,
            environment_source=source,
            config_path=self.config_path,
            **numeric,
        )
        log_info(f"Using WSL distribution: {runtime.target_environment} (source: {source})")
        return runtime

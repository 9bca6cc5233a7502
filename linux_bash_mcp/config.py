import os
import re
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional

# ========= Static config =========
DEFAULT_TIMEOUT_MS = 30000
SCRIPT_TIMEOUT_MS = 60000
MAX_OUTPUT_BYTES = 10 * 1024 * 1024
MIN_TIMEOUT_MS = 1
MAX_TIMEOUT_MS = 600000
MAX_CONCURRENT_PROCESSES = 8
DETECT_TIMEOUT = 15.0
KILL_GRACE = 2.0
BUFFER_SIZE = 4096

BRIDGE_EXECUTABLE = "wsl"
FALLBACK_ENVIRONMENT = "Ubuntu"
AUTO_DETECT_VALUES = ("", "auto", "auto-detect")

ENV_DISTRIBUTION = "WSL_DISTRIBUTION"
ENV_CONFIG_PATH = "LINUX_BASH_MCP_CONFIG"
# The project directory, next to the launcher and the shipped config.json.
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
DEFAULT_CONFIG_FILE = os.path.join(PROJECT_ROOT, "config.json")

SERVER_NAME = "linux-bash-mcp-server"
SERVER_VERSION = "1.0.0"
PROTOCOL_VERSION = "2024-11-05"
LOG_PREFIX = "[LINUX-BASH-MCP]"

# ========= Output cleanup =========
ANSI_ESCAPE = re.compile(r"\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])")
NON_PRINTABLE = re.compile(r"[^\x20-\x7e]")

# File keys, including the names written by the original setup tool.
CONFIG_KEYS = {
    "targetEnvironment": "target_environment",
    "wslDistribution": "target_environment",
    "defaultTimeoutMs": "default_timeout_ms",
    "defaultTimeout": "default_timeout_ms",
    "scriptTimeoutMs": "script_timeout_ms",
    "scriptTimeout": "script_timeout_ms",
    "maxOutputBytes": "max_output_bytes",
    "maxBufferSize": "max_output_bytes",
    "debugMode": "debug_mode",
    "strictQuoting": "strict_quoting",
    "maxConcurrentProcesses": "max_concurrent_processes",
    "wslExecutable": "bridge_executable",
}


# ========= Runtime Configuration =========
@dataclass(frozen=True)
class RuntimeConfig:
    target_environment: str
    default_timeout_ms: int = DEFAULT_TIMEOUT_MS
    script_timeout_ms: int = SCRIPT_TIMEOUT_MS
    max_output_bytes: int = MAX_OUTPUT_BYTES
    debug_mode: bool = False
    strict_quoting: bool = False
    max_concurrent_processes: int = MAX_CONCURRENT_PROCESSES
    bridge_executable: str = BRIDGE_EXECUTABLE
    configured_environment: Optional[str] = None
    environment_source: str = "file"
    config_path: str = ""

    def summary(self) -> Dict[str, Any]:
        """Server settings as reported by the status tool."""
        data = asdict(self)
        return {
            "configuredDistribution": data["configured_environment"],
            "environmentSource": data["environment_source"],
            "defaultTimeout": data["default_timeout_ms"],
            "scriptTimeout": data["script_timeout_ms"],
            "maxOutputBytes": data["max_output_bytes"],
            "strictQuoting": data["strict_quoting"],
            "debugMode": data["debug_mode"],
        }

import sys
from datetime import datetime, timezone
from typing import Any, Union
from linux_bash_mcp.config import ANSI_ESCAPE, NON_PRINTABLE, LOG_PREFIX

_debug_enabled = False


def set_debug(enabled: bool) -> None:
    global _debug_enabled
    _debug_enabled = bool(enabled)


def log_error(message: str) -> None:
    print(f"{LOG_PREFIX} [ERROR] {message}", file=sys.stderr, flush=True)


def log_warn(message: str) -> None:
    print(f"{LOG_PREFIX} [WARN] {message}", file=sys.stderr, flush=True)


def log_info(message: str) -> None:
    print(f"{LOG_PREFIX} [INFO] {message}", file=sys.stderr, flush=True)


def log_debug(message: str) -> None:
    if _debug_enabled:
        print(f"{LOG_PREFIX} [DEBUG] {message}", file=sys.stderr, flush=True)


def clamp_int(value: Any, default: int, min_value: int, max_value: int) -> int:
    try:
        numeric = int(value)
    except Exception:
        numeric = default
    if numeric < min_value:
        return min_value
    if numeric > max_value:
        return max_value
    return numeric


def iso_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def decode_output(data: Union[bytes, str]) -> str:
    """Decode bridge output. Listings arrive as UTF-16-LE, everything else as UTF-8."""
    if isinstance(data, str):
        return data
    if not data:
        return ""
    if b"\x00" in data:
        text = data.decode("utf-16-le", errors="ignore")
        return text.lstrip("\ufeff")
    return data.decode("utf-8", errors="replace")


def strip_noise(line: str) -> str:
    line = ANSI_ESCAPE.sub("", line).replace("\t", " ")
    return NON_PRINTABLE.sub("", line).strip()

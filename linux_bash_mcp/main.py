import sys
import io
import json
import argparse
from linux_bash_mcp.config import SERVER_NAME
from linux_bash_mcp.dispatcher import ToolDispatcher
from linux_bash_mcp.errors import NoEnvironmentsFound
from linux_bash_mcp.resolver import ConfigResolver
from linux_bash_mcp.server import handle_request, make_error
from linux_bash_mcp.utils import log_debug, log_error, log_info, set_debug


def _write_response(stream, response: dict) -> None:
    """Write JSON-RPC response to stdout as UTF-8."""
    try:
        stream.write(json.dumps(response, ensure_ascii=False) + "\n")
        stream.flush()
    except (OSError, UnicodeError) as exc:
        log_error(f"response write error: {exc}")
        stream.write(json.dumps(response, ensure_ascii=True) + "\n")
        stream.flush()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="linux-bash-mcp",
        description="MCP server executing bash commands and scripts in a WSL2 Linux distribution",
    )
    parser.add_argument("--distribution", help="WSL distribution name (overrides WSL_DISTRIBUTION env)")
    parser.add_argument("--config", help="Path to config.json (overrides LINUX_BASH_MCP_CONFIG env)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging on stderr")
    parser.add_argument(
        "--strict-quoting", action="store_true", default=None,
        help="Reject path and argument values containing shell metacharacters",
    )
    return parser


def serve(dispatcher: ToolDispatcher, stdin, stdout) -> None:
    for line in stdin:
        line = line.strip()
        if not line:
            continue
        try:
            request = json.loads(line)
        except json.JSONDecodeError as exc:
            log_error(f"invalid json: {exc}")
            _write_response(stdout, make_error(None, -32700, f"Parse error: {exc}"))
            continue
        if not isinstance(request, dict):
            _write_response(stdout, make_error(None, -32600, "Invalid request"))
            continue
        try:
            response = handle_request(request, dispatcher)
        except Exception as exc:
            # Answer anyway so the client doesn't hang.
            log_error(f"unexpected error: {exc}")
            response = make_error(request.get("id"), -32603, f"Internal error: {exc}")
        if response is not None:
            _write_response(stdout, response)


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    if args.debug:
        set_debug(True)

    log_info(f"Starting {SERVER_NAME}...")
    resolver = ConfigResolver(
        config_path=args.config,
        override=args.distribution,
        debug=True if args.debug else None,
        strict_quoting=args.strict_quoting,
    )
    try:
        runtime = resolver.resolve()
    except NoEnvironmentsFound as exc:
        log_error(f"Failed to start MCP server: {exc}")
        return 1
    set_debug(runtime.debug_mode)
    log_debug(f"runtime config: {runtime}")

    dispatcher = ToolDispatcher(runtime)

    # Force UTF-8 I/O to avoid charmap encoding errors on Windows consoles.
    stdin = io.TextIOWrapper(sys.stdin.buffer, encoding="utf-8", errors="replace")
    stdout = io.TextIOWrapper(sys.stdout.buffer, encoding="utf-8", line_buffering=True)
    log_info(f"{SERVER_NAME} running on stdio with {runtime.target_environment}")
    try:
        serve(dispatcher, stdin, stdout)
    except KeyboardInterrupt:
        pass
    log_info("Shutting down MCP server...")
    return 0


if __name__ == "__main__":
    sys.exit(main())

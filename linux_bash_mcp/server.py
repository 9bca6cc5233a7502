import json
from typing import Any, Dict, Optional
from linux_bash_mcp.config import PROTOCOL_VERSION, SERVER_NAME, SERVER_VERSION
from linux_bash_mcp.dispatcher import ToolDispatcher
from linux_bash_mcp.errors import GatewayError
from linux_bash_mcp.utils import log_error


def format_tool_result(result: Dict[str, Any], is_error: bool = False) -> Dict[str, Any]:
    text = json.dumps(result, ensure_ascii=False, indent=2)
    if not is_error:
        return {"content": [{"type": "text", "text": text}]}
    return {"content": [{"type": "text", "text": text}], "isError": True}


def make_response(req_id: Any, result: Dict[str, Any], is_error: bool = False) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": req_id, "result": format_tool_result(result, is_error)}


def make_error(req_id: Any, code: int, message: str) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": req_id, "error": {"code": code, "message": message}}


def tools_list() -> Dict[str, Any]:
    timeout_param = {
        "type": "number",
        "description": "Timeout in milliseconds (optional, uses config default)",
    }
    working_directory_param = {
        "type": "string",
        "description": "Working directory (optional, defaults to current directory)",
    }
    tools = [
        {
            "name": "execute_bash_command",
            "description": "Execute a bash command in WSL2 Linux environment",
            "inputSchema": {
                "type": "object",
                "properties": {
                    "command": {"type": "string", "description": "The bash command to execute"},
                    "workingDirectory": working_directory_param,
                    "timeout": timeout_param,
                },
                "required": ["command"],
            },
        },
        {
            "name": "execute_bash_script",
            "description": "Execute a bash script file in WSL2 Linux environment",
            "inputSchema": {
                "type": "object",
                "properties": {
                    "scriptPath": {"type": "string", "description": "Path to the bash script file"},
                    "args": {
                        "type": "array",
                        "items": {"type": "string"},
                        "description": "Arguments to pass to the script (optional)",
                    },
                    "workingDirectory": working_directory_param,
                    "timeout": timeout_param,
                },
                "required": ["scriptPath"],
            },
        },
        {
            "name": "create_bash_script",
            "description": "Create a bash script file with specified content",
            "inputSchema": {
                "type": "object",
                "properties": {
                    "scriptPath": {"type": "string", "description": "Path where to create the script file"},
                    "content": {"type": "string", "description": "Content of the bash script"},
                    "executable": {
                        "type": "boolean",
                        "description": "Make the script executable (optional, defaults to true)",
                        "default": True,
                    },
                },
                "required": ["scriptPath", "content"],
            },
        },
        {
            "name": "list_directory",
            "description": "List contents of a directory in WSL2 Linux environment",
            "inputSchema": {
                "type": "object",
                "properties": {
                    "path": {
                        "type": "string",
                        "description": "Directory path to list (optional, defaults to current directory)",
                        "default": ".",
                    },
                    "detailed": {
                        "type": "boolean",
                        "description": "Show detailed information (ls -la) (optional, defaults to false)",
                        "default": False,
                    },
                },
            },
        },
        {
            "name": "get_system_info",
            "description": "Get system information about the WSL2 Linux environment",
            "inputSchema": {"type": "object", "properties": {}},
        },
        {
            "name": "check_wsl_status",
            "description": "Check WSL2 status and get distribution information",
            "inputSchema": {"type": "object", "properties": {}},
        },
    ]
    return {"jsonrpc": "2.0", "id": 1, "result": {"tools": tools}}


def handle_request(request: Dict[str, Any], dispatcher: ToolDispatcher) -> Optional[Dict[str, Any]]:
    method = request.get("method")
    params = request.get("params") or {}
    req_id = request.get("id", 1)

    if method == "initialize":
        return {
            "jsonrpc": "2.0", "id": req_id,
            "result": {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {"tools": {}},
                "serverInfo": {
                    "name": SERVER_NAME,
                    "version": SERVER_VERSION,
                    "description": "MCP server for executing bash commands and scripts via WSL2 on any Linux distribution",
                },
            },
        }

    if method == "notifications/initialized": return None
    if method == "ping":
        return {"jsonrpc": "2.0", "id": req_id, "result": {}}
    if method == "tools/list":
        response = tools_list()
        response["id"] = req_id
        return response

    if method == "tools/call":
        tool_name = params.get("name")
        args = params.get("arguments") or {}
        try:
            envelope = dispatcher.dispatch(tool_name, args)
        except GatewayError as exc:
            log_error(f"tool rejected ({tool_name}): {exc}")
            return make_error(req_id, exc.rpc_code, str(exc))
        except Exception as exc:
            log_error(f"tool execution error ({tool_name}): {exc}")
            return make_error(req_id, -32603, f"Tool execution failed: {exc}")
        return make_response(req_id, envelope.to_dict(), is_error=not envelope.success)

    if method is not None and method.startswith("notifications/"):
        return None
    return make_error(req_id, -32601, f"Unknown method: {method}")

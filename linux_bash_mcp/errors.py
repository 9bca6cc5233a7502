"""Exceptions raised at the gateway boundary.

Per-call execution failures are not exceptions: they travel inside
ExecutionResult / ToolResponseEnvelope as a FailureReason.
"""


class GatewayError(Exception):
    """Base class for conditions surfaced to the protocol layer."""

    rpc_code = -32603


class ConfigUnreadable(GatewayError):
    """Config file missing or not valid JSON. Always recovered with defaults."""


class NoEnvironmentsFound(GatewayError):
    """No target environment could be listed, detected or configured."""


class InvalidArguments(GatewayError):
    rpc_code = -32602


class UnknownTool(GatewayError):
    rpc_code = -32601

    def __init__(self, name):
        super().__init__(f"Unknown tool: {name}")
        self.name = name

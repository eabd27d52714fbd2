"""Error taxonomy for the Metabase MCP server.

Two tiers:
  * Pre-flight failures (bad configuration, failed login, missing arguments)
    fail the call itself. ``AuthenticationError`` and ``InvalidParams`` are
    ``McpError`` subclasses so the protocol layer reports them as JSON-RPC
    errors.
  * Backend failures during a tool run (``BackendCommunicationError``) are
    turned into an error-flagged tool result by the dispatcher.
"""

from typing import Optional

from mcp.shared.exceptions import McpError
from mcp.types import INTERNAL_ERROR, INVALID_PARAMS, ErrorData


class ConfigurationError(ValueError):
    """Missing or unusable configuration. Fatal at startup."""


class AuthenticationError(McpError):
    """The username/password session exchange failed."""

    def __init__(self, message: str = "Failed to authenticate with Metabase"):
        super().__init__(ErrorData(code=INTERNAL_ERROR, message=message))


class InvalidParams(McpError):
    """A tool was called with missing or malformed arguments."""

    def __init__(self, message: str):
        super().__init__(ErrorData(code=INVALID_PARAMS, message=message))


class BackendCommunicationError(Exception):
    """Non-2xx response, timeout or network failure talking to Metabase."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

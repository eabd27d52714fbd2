"""Builders for the tool result envelope."""

import json
from typing import Any

from mcp.types import CallToolResult, TextContent


def to_text(data: Any) -> str:
    """Render a handler payload as tool text."""
    if isinstance(data, str):
        return data
    return json.dumps(data, indent=2, default=str)


def text_result(data: Any) -> CallToolResult:
    return CallToolResult(content=[TextContent(type="text", text=to_text(data))], isError=False)


def error_result(message: str) -> CallToolResult:
    return CallToolResult(content=[TextContent(type="text", text=message)], isError=True)

"""Routes tool invocations to handlers and builds the result envelope."""

import logging
from typing import Any, Dict, List, Optional

from mcp.types import CallToolResult, Tool
from pydantic import ValidationError

from metabase_mcp.client import MetabaseClient
from metabase_mcp.errors import BackendCommunicationError, InvalidParams
from metabase_mcp.registry import ToolRegistry
from metabase_mcp.results import error_result, text_result

logger = logging.getLogger(__name__)


def missing_arguments(required: List[str], arguments: Dict[str, Any]) -> List[str]:
    """Required argument names that are absent or null."""
    return [name for name in required if arguments.get(name) is None]


def describe_validation_error(error: ValidationError) -> str:
    """One line per problem, prefixed with the argument it concerns."""
    problems = []
    for err in error.errors():
        location = ".".join(str(part) for part in err["loc"])
        problems.append(f"{location}: {err['msg']}" if location else err["msg"])
    return "; ".join(problems)


class Dispatcher:
    """Entry point for every ``tools/call`` request.

    Failures before a handler runs (login, missing or invalid arguments) are
    raised so the call itself fails. Backend failures while a handler runs
    come back as a normal result with ``isError`` set, so the agent can see
    them and react.
    """

    def __init__(self, client: MetabaseClient, registry: ToolRegistry):
        self.client = client
        self.registry = registry

    def list_tools(self) -> List[Tool]:
        return self.registry.list()

    async def call(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> CallToolResult:
        args = dict(arguments or {})
        logger.info("Calling tool %s", name)

        if self.client.uses_password:
            await self.client.ensure_session()

        tool = self.registry.get(name)
        if tool is None:
            logger.warning("Unknown tool requested: %s", name)
            return error_result(f"Unknown tool: {name}")

        missing = missing_arguments(list(tool.required), args)
        if missing:
            raise InvalidParams(f"Missing required argument(s) for {name}: {', '.join(missing)}")

        try:
            params = tool.input_model.model_validate(args)
        except ValidationError as e:
            raise InvalidParams(f"Invalid arguments for {name}: {describe_validation_error(e)}") from e

        try:
            result = await tool.handler(self.client, params)
        except BackendCommunicationError as e:
            logger.warning("Tool %s failed: %s", name, e.message)
            return error_result(f"Metabase API error: {e.message}")

        if isinstance(result, CallToolResult):
            return result
        return text_result(result)

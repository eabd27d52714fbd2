"""Read-only MCP resources: ``metabase://{dashboard,card,database}/{id}``."""

import logging
import re
from typing import List, Tuple

from mcp.shared.exceptions import McpError
from mcp.types import INTERNAL_ERROR, INVALID_REQUEST, ErrorData, Resource, ResourceTemplate

from metabase_mcp.client import MetabaseClient
from metabase_mcp.errors import BackendCommunicationError
from metabase_mcp.results import to_text

logger = logging.getLogger(__name__)

SCHEME = "metabase"
RESOURCE_KINDS = ("dashboard", "card", "database")
MIME_TYPE = "application/json"

_URI_RE = re.compile(rf"^{SCHEME}://({'|'.join(RESOURCE_KINDS)})/(\d+)$")

RESOURCE_TEMPLATES = [
    ResourceTemplate(
        uriTemplate="metabase://dashboard/{id}",
        name="Dashboard by ID",
        mimeType=MIME_TYPE,
        description="Get a Metabase dashboard by its ID",
    ),
    ResourceTemplate(
        uriTemplate="metabase://card/{id}",
        name="Card by ID",
        mimeType=MIME_TYPE,
        description="Get a Metabase question/card by its ID",
    ),
    ResourceTemplate(
        uriTemplate="metabase://database/{id}",
        name="Database by ID",
        mimeType=MIME_TYPE,
        description="Get a Metabase database by its ID",
    ),
]


def parse_resource_uri(uri: str) -> Tuple[str, str]:
    """Split ``metabase://<kind>/<id>`` into ``(kind, id)``.

    Raises:
        McpError: INVALID_REQUEST for anything else.
    """
    match = _URI_RE.match(uri)
    if not match:
        raise McpError(ErrorData(code=INVALID_REQUEST, message=f"Invalid URI format: {uri}"))
    return match.group(1), match.group(2)


async def list_dashboard_resources(client: MetabaseClient) -> List[Resource]:
    """Every dashboard, exposed as a resource."""
    try:
        dashboards = await client.get("/api/dashboard") or []
    except BackendCommunicationError as e:
        logger.error("Failed to list resources: %s", e.message)
        raise McpError(ErrorData(code=INTERNAL_ERROR, message="Failed to list Metabase resources")) from e

    logger.info("Successfully listed resources (%d dashboards)", len(dashboards))
    return [
        Resource(
            uri=f"{SCHEME}://dashboard/{dashboard['id']}",
            mimeType=MIME_TYPE,
            name=dashboard.get("name") or f"Dashboard {dashboard['id']}",
            description=f"Metabase dashboard: {dashboard.get('name', '')}",
        )
        for dashboard in dashboards
    ]


async def read_resource_text(client: MetabaseClient, uri: str) -> str:
    """Fetch the object a resource URI points at, as pretty JSON."""
    kind, object_id = parse_resource_uri(uri)
    try:
        data = await client.get(f"/api/{kind}/{object_id}")
    except BackendCommunicationError as e:
        raise McpError(ErrorData(code=INTERNAL_ERROR, message=f"Metabase API error: {e.message}")) from e
    return to_text(data)

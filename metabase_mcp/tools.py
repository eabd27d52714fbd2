"""Metabase tools.

Each tool is one coroutine registered on ``registry`` together with its
input model. Handlers receive the shared :class:`MetabaseClient` and the
validated input. A handler returns a JSON-serializable payload, a plain
message string, or a ready-made ``CallToolResult`` for soft failures.
"""

from typing import Any, Dict, List

from pydantic import BaseModel, ValidationError

from metabase_mcp.client import MetabaseClient
from metabase_mcp.errors import BackendCommunicationError
from metabase_mcp.inputs import (
    AddCardToDashboardInput,
    AddDashboardFilterInput,
    CardIdInput,
    CreateCardInput,
    CreateCardMbqlInput,
    CreateCollectionInput,
    CreateDashboardInput,
    CreateUserInput,
    DashboardIdInput,
    DatabaseMetadataInput,
    DeleteCardInput,
    DeleteDashboardInput,
    ExecuteCardInput,
    ExecuteMbqlQueryInput,
    ExecuteQueryInput,
    GroupMembershipInput,
    ListCardsInput,
    ListCollectionsInput,
    MembershipIdInput,
    NoInput,
    PermissionGroupIdInput,
    PermissionGroupNameInput,
    RemoveCardFromDashboardInput,
    TableIdInput,
    UpdateCardInput,
    UpdateCollectionInput,
    UpdateCollectionPermissionsInput,
    UpdateDashboardCardsInput,
    UpdateDashboardInput,
    UpdateUserInput,
    UserIdInput,
)
from metabase_mcp.mutators import (
    NewDashcard,
    PermissionGraph,
    append_dashcard,
    dashcards_of,
    remove_dashcard,
    set_collection_permission,
)
from metabase_mcp.registry import ToolRegistry
from metabase_mcp.results import error_result, to_text

registry = ToolRegistry()

# ─── Helpers ─────────────────────────────────────────────────────────────────


def _optional(params: BaseModel, *keys: str) -> Dict[str, Any]:
    """Subset of ``params`` limited to ``keys`` that were actually given."""
    return {k: getattr(params, k) for k in keys if getattr(params, k) is not None}


def normalize_card_parameters(raw: Any) -> List[Any]:
    """Metabase wants a list of parameters; accept a single object too.

    A list passes through, an empty object or nothing becomes ``[]``, and any
    other value is wrapped in a one-element list.
    """
    if isinstance(raw, list):
        return raw
    if raw is None or raw == {}:
        return []
    return [raw]


async def _get_dashcards(client: MetabaseClient, path: str) -> List[Dict[str, Any]]:
    """Fetch a dashboard and return its dashcards.

    Raises:
        BackendCommunicationError: if the body is not a dashboard.
    """
    dashboard = await client.get(path)
    try:
        return dashcards_of({} if dashboard is None else dashboard)
    except ValueError as e:
        raise BackendCommunicationError(f"Unexpected response shape from GET {path}: {e}") from e


async def _get_permission_graph(client: MetabaseClient) -> PermissionGraph:
    path = "/api/collection/graph"
    try:
        return PermissionGraph.model_validate(await client.get(path))
    except ValidationError as e:
        problems = ", ".join(err["msg"] for err in e.errors())
        raise BackendCommunicationError(f"Unexpected response shape from GET {path}: {problems}") from e


# ─── Dashboards, Cards & Databases: Read ─────────────────────────────────────


@registry.tool(
    "list_dashboards",
    "List all dashboards in Metabase",
    NoInput,
    title="List Dashboards",
    read_only=True,
    idempotent=True,
)
async def list_dashboards(client: MetabaseClient, params: NoInput) -> Any:
    return await client.get("/api/dashboard")


@registry.tool(
    "list_cards",
    "List all questions/cards in Metabase",
    ListCardsInput,
    title="List Cards",
    read_only=True,
    idempotent=True,
)
async def list_cards(client: MetabaseClient, params: ListCardsInput) -> Any:
    """List saved questions, filtered by Metabase's ``f`` selector (default ``all``)."""
    return await client.get("/api/card", params={"f": params.f or "all"})


@registry.tool(
    "list_databases",
    "List all databases in Metabase",
    NoInput,
    title="List Databases",
    read_only=True,
    idempotent=True,
)
async def list_databases(client: MetabaseClient, params: NoInput) -> Any:
    return await client.get("/api/database")


@registry.tool(
    "get_card",
    "Get a single Metabase question/card by ID with full details including dataset_query with "
    "template-tags configuration for variables/filters. Use this to inspect a card before updating it.",
    CardIdInput,
    title="Get Card",
    read_only=True,
    idempotent=True,
)
async def get_card(client: MetabaseClient, params: CardIdInput) -> Any:
    return await client.get(f"/api/card/{params.card_id}")


@registry.tool(
    "execute_card",
    "Execute a Metabase question/card and get results",
    ExecuteCardInput,
    title="Execute Card",
    read_only=True,
)
async def execute_card(client: MetabaseClient, params: ExecuteCardInput) -> Any:
    """Run a saved question.

    Args:
        params: ``card_id`` plus optional ``parameters`` (list or single object).

    Returns:
        The query result payload from ``POST /api/card/:id/query``.
    """
    parameters = normalize_card_parameters(params.parameters)
    return await client.post(f"/api/card/{params.card_id}/query", {"parameters": parameters})


@registry.tool(
    "get_dashboard_cards",
    "Get all cards in a dashboard",
    DashboardIdInput,
    title="Get Dashboard Cards",
    read_only=True,
    idempotent=True,
)
async def get_dashboard_cards(client: MetabaseClient, params: DashboardIdInput) -> Any:
    return await _get_dashcards(client, f"/api/dashboard/{params.dashboard_id}")


@registry.tool(
    "execute_query",
    "Execute a SQL query against a Metabase database",
    ExecuteQueryInput,
    title="Execute SQL Query",
    read_only=True,
)
async def execute_query(client: MetabaseClient, params: ExecuteQueryInput) -> Any:
    """Run an ad-hoc native query through ``/api/dataset``.

    The SQL text is passed through untouched.
    """
    query_data = {
        "type": "native",
        "native": {
            "query": params.query,
            "template_tags": {},
        },
        "parameters": params.native_parameters or [],
        "database": params.database_id,
    }
    return await client.post("/api/dataset", query_data)


# ─── Cards: Write ────────────────────────────────────────────────────────────


@registry.tool(
    "create_card",
    "Create a new Metabase question (card).",
    CreateCardInput,
    title="Create Card",
)
async def create_card(client: MetabaseClient, params: CreateCardInput) -> Any:
    body = {
        "name": params.name,
        "dataset_query": params.dataset_query,
        "display": params.display,
        "visualization_settings": params.visualization_settings,
    }
    body.update(_optional(params, "collection_id", "description"))
    return await client.post("/api/card", body)


@registry.tool(
    "update_card",
    "Update an existing Metabase question (card). For native SQL queries with template variables "
    "(like dropdown filters), use dataset_query.native.template-tags to configure each variable. "
    "Each template-tag can have: name, display-name, type (text/number/dimension), dimension "
    "(for field filters), widget-type (category, string/=, number/=, etc.), and default value.",
    UpdateCardInput,
    title="Update Card",
    idempotent=True,
)
async def update_card(client: MetabaseClient, params: UpdateCardInput) -> Any:
    return await client.put(f"/api/card/{params.card_id}", params.changed_fields())


@registry.tool(
    "delete_card",
    "Delete a Metabase question (card).",
    DeleteCardInput,
    title="Delete Card",
    destructive=True,
)
async def delete_card(client: MetabaseClient, params: DeleteCardInput) -> Any:
    """Archive a card, or delete it permanently with ``hard_delete``."""
    card_id = params.card_id
    if params.hard_delete:
        await client.delete(f"/api/card/{card_id}")
        return f"Card {card_id} permanently deleted."

    data = await client.put(f"/api/card/{card_id}", {"archived": True})
    if data:
        return f"Card {card_id} archived. Details: {to_text(data)}"
    return f"Card {card_id} archived."


# ─── Dashboards: Write ───────────────────────────────────────────────────────


@registry.tool(
    "create_dashboard",
    "Create a new Metabase dashboard.",
    CreateDashboardInput,
    title="Create Dashboard",
)
async def create_dashboard(client: MetabaseClient, params: CreateDashboardInput) -> Any:
    body = {"name": params.name}
    body.update(_optional(params, "description", "parameters", "collection_id"))
    return await client.post("/api/dashboard", body)


@registry.tool(
    "update_dashboard",
    "Update an existing Metabase dashboard.",
    UpdateDashboardInput,
    title="Update Dashboard",
    idempotent=True,
)
async def update_dashboard(client: MetabaseClient, params: UpdateDashboardInput) -> Any:
    return await client.put(f"/api/dashboard/{params.dashboard_id}", params.changed_fields())


@registry.tool(
    "delete_dashboard",
    "Delete a Metabase dashboard.",
    DeleteDashboardInput,
    title="Delete Dashboard",
    destructive=True,
)
async def delete_dashboard(client: MetabaseClient, params: DeleteDashboardInput) -> Any:
    dashboard_id = params.dashboard_id
    if params.hard_delete:
        await client.delete(f"/api/dashboard/{dashboard_id}")
        return f"Dashboard {dashboard_id} permanently deleted."

    data = await client.put(f"/api/dashboard/{dashboard_id}", {"archived": True})
    if data:
        return f"Dashboard {dashboard_id} archived. Details: {to_text(data)}"
    return f"Dashboard {dashboard_id} archived."


@registry.tool(
    "add_card_to_dashboard",
    "Add a card/question to a dashboard.",
    AddCardToDashboardInput,
    title="Add Card to Dashboard",
)
async def add_card_to_dashboard(client: MetabaseClient, params: AddCardToDashboardInput) -> Any:
    """Place a card on a dashboard.

    Metabase 0.47+ dropped ``POST /dashboard/:id/cards``, so the whole
    dashcard list is read, extended with a negative-id entry and PUT back.
    Overlapping placements are left for Metabase to resolve.

    Returns:
        The updated dashboard, including the id Metabase gave the new dashcard.
    """
    new = NewDashcard(
        card_id=params.card_id,
        row=params.row,
        col=params.col,
        size_x=params.size_x,
        size_y=params.size_y,
    )
    path = f"/api/dashboard/{params.dashboard_id}"
    dashcards = append_dashcard(await _get_dashcards(client, path), new)
    return await client.put(path, {"dashcards": dashcards})


# ─── Collections ─────────────────────────────────────────────────────────────


@registry.tool(
    "list_collections",
    "List all collections in Metabase.",
    ListCollectionsInput,
    title="List Collections",
    read_only=True,
    idempotent=True,
)
async def list_collections(client: MetabaseClient, params: ListCollectionsInput) -> Any:
    return await client.get("/api/collection", params=_optional(params, "namespace") or None)


@registry.tool(
    "create_collection",
    "Create a new collection in Metabase.",
    CreateCollectionInput,
    title="Create Collection",
)
async def create_collection(client: MetabaseClient, params: CreateCollectionInput) -> Any:
    body = {"name": params.name}
    body.update(_optional(params, "description", "color", "parent_id"))
    return await client.post("/api/collection", body)


@registry.tool(
    "update_collection",
    "Update a collection in Metabase.",
    UpdateCollectionInput,
    title="Update Collection",
    idempotent=True,
)
async def update_collection(client: MetabaseClient, params: UpdateCollectionInput) -> Any:
    return await client.put(f"/api/collection/{params.collection_id}", params.changed_fields())


# ─── Permissions ─────────────────────────────────────────────────────────────


@registry.tool(
    "list_permission_groups",
    "List all permission groups in Metabase.",
    NoInput,
    title="List Permission Groups",
    read_only=True,
    idempotent=True,
)
async def list_permission_groups(client: MetabaseClient, params: NoInput) -> Any:
    return await client.get("/api/permissions/group") or []


@registry.tool(
    "create_permission_group",
    "Create a new permission group in Metabase.",
    PermissionGroupNameInput,
    title="Create Permission Group",
)
async def create_permission_group(client: MetabaseClient, params: PermissionGroupNameInput) -> Any:
    return await client.post("/api/permissions/group", {"name": params.name})


@registry.tool(
    "delete_permission_group",
    "Delete a permission group in Metabase.",
    PermissionGroupIdInput,
    title="Delete Permission Group",
    destructive=True,
)
async def delete_permission_group(client: MetabaseClient, params: PermissionGroupIdInput) -> Any:
    await client.delete(f"/api/permissions/group/{params.group_id}")
    return f"Permission group {params.group_id} deleted successfully."


@registry.tool(
    "get_collection_permissions",
    "Get the collection permissions graph showing which groups have access to which collections.",
    NoInput,
    title="Get Collection Permissions",
    read_only=True,
    idempotent=True,
)
async def get_collection_permissions(client: MetabaseClient, params: NoInput) -> Any:
    return await client.get("/api/collection/graph")


@registry.tool(
    "update_collection_permissions",
    "Update collection permissions for a group. Sets the permission level for a group on a collection.",
    UpdateCollectionPermissionsInput,
    title="Update Collection Permissions",
    idempotent=True,
)
async def update_collection_permissions(
    client: MetabaseClient, params: UpdateCollectionPermissionsInput
) -> Any:
    """Grant one group one access level on one collection.

    The graph endpoint only accepts the whole graph, so it is read, patched at
    a single (group, collection) key and written back with its revision.
    Grants for every other group and collection are sent back unchanged.
    """
    graph = await _get_permission_graph(client)
    updated = set_collection_permission(graph, params.group_id, params.collection_id, params.permission)
    return await client.put("/api/collection/graph", updated.model_dump())


# ─── Users & Memberships ─────────────────────────────────────────────────────


@registry.tool(
    "add_user_to_group",
    "Add a user to a permission group.",
    GroupMembershipInput,
    title="Add User to Group",
)
async def add_user_to_group(client: MetabaseClient, params: GroupMembershipInput) -> Any:
    return await client.post(
        "/api/permissions/membership",
        {"group_id": params.group_id, "user_id": params.user_id},
    )


@registry.tool(
    "list_users",
    "List all users in Metabase.",
    NoInput,
    title="List Users",
    read_only=True,
    idempotent=True,
)
async def list_users(client: MetabaseClient, params: NoInput) -> Any:
    return await client.get("/api/user")


@registry.tool(
    "create_user",
    "Create a new user in Metabase.",
    CreateUserInput,
    title="Create User",
)
async def create_user(client: MetabaseClient, params: CreateUserInput) -> Any:
    body = {
        "first_name": params.first_name,
        "last_name": params.last_name,
        "email": params.email,
    }
    body.update(_optional(params, "password", "group_ids"))
    return await client.post("/api/user", body)


@registry.tool(
    "update_user",
    "Update an existing user in Metabase.",
    UpdateUserInput,
    title="Update User",
    idempotent=True,
)
async def update_user(client: MetabaseClient, params: UpdateUserInput) -> Any:
    return await client.put(f"/api/user/{params.user_id}", params.changed_fields())


@registry.tool(
    "disable_user",
    "Disable (deactivate) a user in Metabase. This prevents them from logging in but preserves their data.",
    UserIdInput,
    title="Disable User",
    destructive=True,
    idempotent=True,
)
async def disable_user(client: MetabaseClient, params: UserIdInput) -> Any:
    # DELETE /api/user/:id deactivates; it does not remove the account.
    await client.delete(f"/api/user/{params.user_id}")
    return f"User {params.user_id} has been disabled/deactivated."


@registry.tool(
    "remove_user_from_group",
    "Remove a user from a permission group.",
    MembershipIdInput,
    title="Remove User from Group",
    destructive=True,
)
async def remove_user_from_group(client: MetabaseClient, params: MembershipIdInput) -> Any:
    await client.delete(f"/api/permissions/membership/{params.membership_id}")
    return f"Membership {params.membership_id} removed successfully."


@registry.tool(
    "get_user",
    "Get details about a specific user including their group memberships.",
    UserIdInput,
    title="Get User",
    read_only=True,
    idempotent=True,
)
async def get_user(client: MetabaseClient, params: UserIdInput) -> Any:
    return await client.get(f"/api/user/{params.user_id}")


# ─── Dashboard Layout & Filters ──────────────────────────────────────────────


@registry.tool(
    "get_dashboard",
    "Get full dashboard details including cards and parameters.",
    DashboardIdInput,
    title="Get Dashboard",
    read_only=True,
    idempotent=True,
)
async def get_dashboard(client: MetabaseClient, params: DashboardIdInput) -> Any:
    return await client.get(f"/api/dashboard/{params.dashboard_id}")


@registry.tool(
    "update_dashboard_cards",
    "Update dashboard cards including their parameter mappings. Use this to connect dashboard "
    "filters to card variables.",
    UpdateDashboardCardsInput,
    title="Update Dashboard Cards",
    destructive=True,
    idempotent=True,
)
async def update_dashboard_cards(client: MetabaseClient, params: UpdateDashboardCardsInput) -> Any:
    """Replace the dashboard's dashcards with ``cards``.

    This is a full replacement: dashcards left out of ``cards`` are deleted.
    """
    return await client.put(f"/api/dashboard/{params.dashboard_id}", {"dashcards": params.cards})


@registry.tool(
    "remove_card_from_dashboard",
    "Remove a card from a dashboard.",
    RemoveCardFromDashboardInput,
    title="Remove Card from Dashboard",
    destructive=True,
)
async def remove_card_from_dashboard(client: MetabaseClient, params: RemoveCardFromDashboardInput) -> Any:
    """Remove one dashcard by its dashcard id.

    A dashcard id that is not on the dashboard is reported as an error and
    nothing is written.
    """
    dashboard_id = params.dashboard_id
    dashcard_id = params.dashcard_id
    path = f"/api/dashboard/{dashboard_id}"

    existing = await _get_dashcards(client, path)
    remaining = remove_dashcard(existing, dashcard_id)
    if len(remaining) == len(existing):
        return error_result(f"Dashcard {dashcard_id} not found on dashboard {dashboard_id}")

    await client.put(path, {"dashcards": remaining})
    return f"Dashcard {dashcard_id} removed from dashboard {dashboard_id}"


@registry.tool(
    "add_dashboard_filter",
    "Add or update a filter parameter on a dashboard.",
    AddDashboardFilterInput,
    title="Add Dashboard Filter",
    idempotent=True,
)
async def add_dashboard_filter(client: MetabaseClient, params: AddDashboardFilterInput) -> Any:
    return await client.put(f"/api/dashboard/{params.dashboard_id}", {"parameters": params.parameters})


# ─── Metadata & MBQL ─────────────────────────────────────────────────────────


@registry.tool(
    "get_database_metadata",
    "Get full metadata for a database including all tables and fields with their IDs. "
    "Essential for building MBQL queries.",
    DatabaseMetadataInput,
    title="Get Database Metadata",
    read_only=True,
    idempotent=True,
)
async def get_database_metadata(client: MetabaseClient, params: DatabaseMetadataInput) -> Any:
    query = {"include_hidden": "true"} if params.include_hidden else None
    return await client.get(f"/api/database/{params.database_id}/metadata", params=query)


@registry.tool(
    "get_table_metadata",
    "Get detailed metadata for a specific table including all fields with IDs, types, and foreign keys. "
    "Use this for precise field references in MBQL.",
    TableIdInput,
    title="Get Table Metadata",
    read_only=True,
    idempotent=True,
)
async def get_table_metadata(client: MetabaseClient, params: TableIdInput) -> Any:
    return await client.get(f"/api/table/{params.table_id}/query_metadata")


@registry.tool(
    "create_card_mbql",
    "Create a Metabase question using MBQL (Metabase Query Language). Unlike native SQL, "
    "MBQL queries are editable in the visual query builder.",
    CreateCardMbqlInput,
    title="Create MBQL Card",
)
async def create_card_mbql(client: MetabaseClient, params: CreateCardMbqlInput) -> Any:
    body = {
        "name": params.name,
        "dataset_query": {
            "type": "query",
            "database": params.database_id,
            "query": params.query,
        },
        "display": params.display or "table",
        "visualization_settings": params.visualization_settings or {},
    }
    body.update(_optional(params, "collection_id", "description"))
    return await client.post("/api/card", body)


@registry.tool(
    "execute_mbql_query",
    "Execute an MBQL query without creating a card. Useful for testing queries before saving.",
    ExecuteMbqlQueryInput,
    title="Execute MBQL Query",
    read_only=True,
)
async def execute_mbql_query(client: MetabaseClient, params: ExecuteMbqlQueryInput) -> Any:
    return await client.post(
        "/api/dataset",
        {"type": "query", "database": params.database_id, "query": params.query},
    )

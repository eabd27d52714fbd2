"""Input models for the Metabase tools.

Each tool's ``inputSchema`` is generated from its model, and the dispatcher
validates arguments against the model before the handler runs. Query payloads
(native SQL, MBQL, ``dataset_query``) stay plain dicts and are passed through.
"""

from typing import Any, ClassVar, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from metabase_mcp.mutators import PermissionLevel


class ToolInput(BaseModel):
    """Base for tool inputs. Unknown arguments are rejected."""
    model_config = ConfigDict(extra="forbid")


class UpdateInput(ToolInput):
    """Partial update of one object. Fields not declared here are forwarded too.

    Subclasses name the id field; every other argument given is sent to
    Metabase. Unless ``requires_fields`` is off, at least one must be given.
    """
    model_config = ConfigDict(extra="allow")

    id_field: ClassVar[str]
    tool_name: ClassVar[str]
    requires_fields: ClassVar[bool] = True

    @model_validator(mode="before")
    @classmethod
    def at_least_one_field(cls, data: Any) -> Any:
        if cls.requires_fields and isinstance(data, dict) and not set(data) - {cls.id_field}:
            raise ValueError(f"No fields provided for {cls.tool_name}")
        return data

    def changed_fields(self) -> Dict[str, Any]:
        """The arguments actually given, minus the id."""
        given = self.model_fields_set | set(self.model_extra or {})
        return {k: v for k, v in self.model_dump().items() if k in given and k != self.id_field}


# ─── Schema Fragments ────────────────────────────────────────────────────────

MBQL_QUERY_PROPERTIES = {
    "source-table": {"type": "number", "description": "Table ID"},
    "aggregation": {"type": "array", "description": "Aggregations"},
    "breakout": {"type": "array", "description": "Group by fields"},
    "filter": {"description": "Filter clause"},
    "order-by": {"type": "array", "description": "Order by"},
    "limit": {"type": "number", "description": "Limit"},
}

CREATE_MBQL_QUERY_PROPERTIES = {
    "source-table": {"type": "number", "description": "Table ID to query from"},
    "aggregation": {
        "type": "array",
        "description": "Aggregations like [['count'], ['sum', ['field', 123, null]]]",
    },
    "breakout": {"type": "array", "description": "Group by fields like [['field', 123, null]]"},
    "filter": {"description": "Filter clause like ['=', ['field', 123, null], 'value']"},
    "order-by": {"type": "array", "description": "Order by like [['asc', ['field', 123, null]]]"},
    "limit": {"type": "number", "description": "Limit number of results"},
    "joins": {"type": "array", "description": "Join clauses for multi-table queries"},
}

DASHCARD_ITEM = {
    "type": "object",
    "properties": {
        "id": {"type": "number", "description": "Dashcard ID (not card_id)"},
        "card_id": {"type": "number", "description": "Card/Question ID"},
        "row": {"type": "number", "description": "Row position"},
        "col": {"type": "number", "description": "Column position"},
        "size_x": {"type": "number", "description": "Width"},
        "size_y": {"type": "number", "description": "Height"},
        "parameter_mappings": {
            "type": "array",
            "description": "Parameter mappings connecting dashboard filters to card variables",
            "items": {
                "type": "object",
                "properties": {
                    "parameter_id": {"type": "string", "description": "Dashboard parameter ID"},
                    "card_id": {"type": "number", "description": "Card ID"},
                    "target": {
                        "type": "array",
                        "description": "Target specification, e.g. ['variable', ['template-tag', 'semester']]",
                    },
                },
            },
        },
    },
}

DASHBOARD_PARAMETER_ITEM = {
    "type": "object",
    "properties": {
        "id": {"type": "string", "description": "Unique parameter ID"},
        "name": {"type": "string", "description": "Display name for the filter"},
        "slug": {"type": "string", "description": "URL slug for the parameter"},
        "type": {"type": "string", "description": "Parameter type, e.g. 'number/=', 'string/=', 'category'"},
        "values_source_type": {
            "type": "string",
            "description": "Source for dropdown values: 'static-list', 'card', or null",
        },
        "values_source_config": {
            "type": "object",
            "description": "Configuration for value source. For 'card': {card_id, value_field, label_field}. "
            "For 'static-list': {values: [[value, label], ...]}",
        },
    },
}

NATIVE_DATASET_QUERY = {
    "properties": {
        "type": {"type": "string", "description": "'native' for SQL queries, 'query' for MBQL"},
        "database": {"type": "number", "description": "Database ID"},
        "native": {
            "type": "object",
            "description": "Native SQL query configuration",
            "properties": {
                "query": {"type": "string", "description": "SQL query with {{variable}} placeholders"},
                "template-tags": {
                    "type": "object",
                    "description": "Variable configurations keyed by variable name. Each has: id, name, "
                    "display-name, type (text/number/dimension), dimension (for field filters as "
                    "['field', field_id, null]), widget-type (category/string/=/number/=)",
                },
            },
        },
    },
}


def _check_mbql(query: Dict[str, Any]) -> Dict[str, Any]:
    if not query.get("source-table"):
        raise ValueError("MBQL query with source-table is required")
    return query


# ─── Dashboards, Cards & Databases: Read ─────────────────────────────────────


class NoInput(ToolInput):
    """Tools that take no arguments."""


class ListCardsInput(ToolInput):
    f: Optional[str] = Field(
        default=None,
        description="Optional filter function, possible values: archived, table, database, "
        "using_model, bookmarked, using_segment, all, mine",
    )


class CardIdInput(ToolInput):
    card_id: int = Field(..., description="ID of the card/question to retrieve")


class ExecuteCardInput(ToolInput):
    card_id: int = Field(..., description="ID of the card/question to execute")
    parameters: Union[List[Dict[str, Any]], Dict[str, Any], None] = Field(
        default=None,
        description="Optional parameters for the query. Metabase expects an array; "
        "a single object will be wrapped.",
    )


class DashboardIdInput(ToolInput):
    dashboard_id: int = Field(..., description="ID of the dashboard")


class ExecuteQueryInput(ToolInput):
    database_id: int = Field(..., description="ID of the database to query")
    query: str = Field(..., description="SQL query to execute")
    native_parameters: Optional[List[Dict[str, Any]]] = Field(
        default=None, description="Optional parameters for the query"
    )


# ─── Cards: Write ────────────────────────────────────────────────────────────


class CreateCardInput(ToolInput):
    name: str = Field(..., description="Name of the card")
    dataset_query: Dict[str, Any] = Field(
        ..., description="The query for the card (e.g., MBQL or native query)"
    )
    display: str = Field(..., description="Display type (e.g., 'table', 'line', 'bar')")
    visualization_settings: Dict[str, Any] = Field(..., description="Settings for the visualization")
    collection_id: Optional[int] = Field(
        default=None, description="Optional ID of the collection to save the card in"
    )
    description: Optional[str] = Field(default=None, description="Optional description for the card")


class UpdateCardInput(UpdateInput):
    id_field: ClassVar[str] = "card_id"
    tool_name: ClassVar[str] = "update_card"

    card_id: int = Field(..., description="ID of the card to update")
    name: Optional[str] = Field(default=None, description="New name for the card")
    dataset_query: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Query configuration. For native SQL: {type: 'native', database: <id>, "
        "native: {query: 'SELECT...', template-tags: {...}}}. Template-tags example: "
        "{'semester': {id: 'uuid', name: 'semester', display-name: 'Semester', type: 'dimension', "
        "dimension: ['field', <field_id>, null], widget-type: 'category'}}",
        json_schema_extra=NATIVE_DATASET_QUERY,
    )
    display: Optional[str] = Field(default=None, description="New display type")
    visualization_settings: Optional[Dict[str, Any]] = Field(
        default=None, description="New visualization settings"
    )
    collection_id: Optional[int] = Field(default=None, description="New collection ID")
    description: Optional[str] = Field(default=None, description="New description")
    archived: Optional[bool] = Field(default=None, description="Set to true to archive the card")
    type: Optional[str] = Field(default=None, description="Card type: 'question' or 'model'")


class DeleteCardInput(ToolInput):
    card_id: int = Field(..., description="ID of the card to delete")
    hard_delete: bool = Field(
        default=False, description="Set to true for hard delete, false (default) for archive"
    )


# ─── Dashboards: Write ───────────────────────────────────────────────────────


class CreateDashboardInput(ToolInput):
    name: str = Field(..., description="Name of the dashboard")
    description: Optional[str] = Field(default=None, description="Optional description for the dashboard")
    parameters: Optional[List[Dict[str, Any]]] = Field(
        default=None, description="Optional parameters for the dashboard"
    )
    collection_id: Optional[int] = Field(
        default=None, description="Optional ID of the collection to save the dashboard in"
    )


class UpdateDashboardInput(UpdateInput):
    id_field: ClassVar[str] = "dashboard_id"
    tool_name: ClassVar[str] = "update_dashboard"

    dashboard_id: int = Field(..., description="ID of the dashboard to update")
    name: Optional[str] = Field(default=None, description="New name for the dashboard")
    description: Optional[str] = Field(default=None, description="New description for the dashboard")
    parameters: Optional[List[Dict[str, Any]]] = Field(
        default=None, description="New parameters for the dashboard"
    )
    collection_id: Optional[int] = Field(default=None, description="New collection ID")
    archived: Optional[bool] = Field(default=None, description="Set to true to archive the dashboard")


class DeleteDashboardInput(ToolInput):
    dashboard_id: int = Field(..., description="ID of the dashboard to delete")
    hard_delete: bool = Field(
        default=False, description="Set to true for hard delete, false (default) for archive"
    )


class AddCardToDashboardInput(ToolInput):
    dashboard_id: int = Field(..., description="ID of the dashboard")
    card_id: int = Field(..., description="ID of the card to add")
    size_x: int = Field(default=4, description="Width of the card (default: 4)", ge=1)
    size_y: int = Field(default=3, description="Height of the card (default: 3)", ge=1)
    row: int = Field(default=0, description="Row position (default: 0)", ge=0)
    col: int = Field(default=0, description="Column position (default: 0)", ge=0)


# ─── Collections ─────────────────────────────────────────────────────────────


class ListCollectionsInput(ToolInput):
    namespace: Optional[str] = Field(default=None, description="Optional namespace filter")


class CreateCollectionInput(ToolInput):
    name: str = Field(..., description="Name of the collection")
    description: Optional[str] = Field(default=None, description="Optional description")
    color: Optional[str] = Field(default=None, description="Optional color (hex code like #509EE3)")
    parent_id: Optional[int] = Field(default=None, description="Optional parent collection ID for nesting")


class UpdateCollectionInput(UpdateInput):
    id_field: ClassVar[str] = "collection_id"
    tool_name: ClassVar[str] = "update_collection"
    requires_fields: ClassVar[bool] = False

    collection_id: int = Field(..., description="ID of the collection to update")
    name: Optional[str] = Field(default=None, description="New name for the collection")
    description: Optional[str] = Field(default=None, description="New description")
    color: Optional[str] = Field(default=None, description="New color (hex code)")
    archived: Optional[bool] = Field(default=None, description="Set to true to archive")


# ─── Permissions ─────────────────────────────────────────────────────────────


class PermissionGroupNameInput(ToolInput):
    name: str = Field(..., description="Name of the permission group")


class PermissionGroupIdInput(ToolInput):
    group_id: int = Field(..., description="ID of the group to delete")


class UpdateCollectionPermissionsInput(ToolInput):
    group_id: int = Field(..., description="ID of the permission group")
    collection_id: int = Field(
        ..., description="ID of the collection (use 0 for the root collection)", ge=0
    )
    permission: PermissionLevel = Field(..., description="Permission level: 'read', 'write', or 'none'")


# ─── Users & Memberships ─────────────────────────────────────────────────────


class GroupMembershipInput(ToolInput):
    group_id: int = Field(..., description="ID of the permission group")
    user_id: int = Field(..., description="ID of the user to add")


class CreateUserInput(ToolInput):
    first_name: str = Field(..., description="User's first name")
    last_name: str = Field(..., description="User's last name")
    email: str = Field(..., description="User's email address (used as login)")
    password: Optional[str] = Field(
        default=None,
        description="User's password (optional - if not provided, user will need to reset)",
    )
    group_ids: Optional[List[int]] = Field(
        default=None, description="Optional array of permission group IDs to add the user to"
    )


class UpdateUserInput(UpdateInput):
    id_field: ClassVar[str] = "user_id"
    tool_name: ClassVar[str] = "update_user"

    user_id: int = Field(..., description="ID of the user to update")
    first_name: Optional[str] = Field(default=None, description="New first name")
    last_name: Optional[str] = Field(default=None, description="New last name")
    email: Optional[str] = Field(default=None, description="New email address")
    is_superuser: Optional[bool] = Field(default=None, description="Whether the user should be an admin")
    login_attributes: Optional[Dict[str, Any]] = Field(
        default=None, description="Custom login attributes for the user"
    )


class UserIdInput(ToolInput):
    user_id: int = Field(..., description="ID of the user")


class MembershipIdInput(ToolInput):
    membership_id: int = Field(
        ...,
        description="ID of the membership to remove (get this from the user's group_ids "
        "or list_permission_groups)",
    )


# ─── Dashboard Layout & Filters ──────────────────────────────────────────────


class UpdateDashboardCardsInput(ToolInput):
    dashboard_id: int = Field(..., description="ID of the dashboard")
    cards: List[Dict[str, Any]] = Field(
        ...,
        description="Array of card configurations with parameter_mappings",
        json_schema_extra={"items": DASHCARD_ITEM},
    )


class RemoveCardFromDashboardInput(ToolInput):
    dashboard_id: int = Field(..., description="ID of the dashboard")
    dashcard_id: int = Field(..., description="ID of the dashcard (not the card_id)")


class AddDashboardFilterInput(ToolInput):
    dashboard_id: int = Field(..., description="ID of the dashboard")
    parameters: List[Dict[str, Any]] = Field(
        ...,
        description="Array of dashboard parameters/filters",
        json_schema_extra={"items": DASHBOARD_PARAMETER_ITEM},
    )


# ─── Metadata & MBQL ─────────────────────────────────────────────────────────


class DatabaseMetadataInput(ToolInput):
    database_id: int = Field(..., description="ID of the database")
    include_hidden: bool = Field(default=False, description="Include hidden tables/fields (default: false)")


class TableIdInput(ToolInput):
    table_id: int = Field(..., description="ID of the table")


class CreateCardMbqlInput(ToolInput):
    name: str = Field(..., description="Name of the card")
    database_id: int = Field(..., description="ID of the database")
    query: Dict[str, Any] = Field(
        ...,
        description="MBQL query object. Example: {source-table: 123, aggregation: [['count']], "
        "breakout: [['field', 456, null]], filter: ['=', ['field', 789, null], 'value']}",
        json_schema_extra={"properties": CREATE_MBQL_QUERY_PROPERTIES, "required": ["source-table"]},
    )
    display: Optional[str] = Field(default="table", description="Display type (table, line, bar, pie, etc.)")
    visualization_settings: Optional[Dict[str, Any]] = Field(
        default_factory=dict, description="Visualization settings"
    )
    collection_id: Optional[int] = Field(default=None, description="Collection to save the card in")
    description: Optional[str] = Field(default=None, description="Card description")

    @field_validator("query")
    @classmethod
    def query_has_source_table(cls, query: Dict[str, Any]) -> Dict[str, Any]:
        return _check_mbql(query)


class ExecuteMbqlQueryInput(ToolInput):
    database_id: int = Field(..., description="ID of the database")
    query: Dict[str, Any] = Field(
        ...,
        description="MBQL query object with source-table, aggregation, breakout, filter, etc.",
        json_schema_extra={"properties": MBQL_QUERY_PROPERTIES, "required": ["source-table"]},
    )

    @field_validator("query")
    @classmethod
    def query_has_source_table(cls, query: Dict[str, Any]) -> Dict[str, Any]:
        return _check_mbql(query)

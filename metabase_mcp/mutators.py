"""Local transforms for Metabase's read-modify-write endpoints.

Metabase has no endpoint for adding or removing a single dashcard, nor for
changing one collection grant. The handlers fetch the whole resource, apply
one of these pure functions, and write the whole resource back. Nothing here
does I/O or mutates its inputs.
"""

from typing import Any, Dict, List, Literal, Union, get_args

from pydantic import BaseModel, ConfigDict, Field

NEW_DASHCARD_ID = -1
ROOT_COLLECTION = "root"

PermissionLevel = Literal["read", "write", "none"]
PERMISSION_LEVELS = get_args(PermissionLevel)


class NewDashcard(BaseModel):
    """Placement record for a card being added to a dashboard."""
    model_config = ConfigDict(extra="forbid")

    id: int = Field(default=NEW_DASHCARD_ID, lt=0, description="Negative id tells Metabase to insert")
    card_id: int
    row: int = Field(default=0, ge=0)
    col: int = Field(default=0, ge=0)
    size_x: int = Field(default=4, ge=1)
    size_y: int = Field(default=3, ge=1)
    parameter_mappings: List[Dict[str, Any]] = Field(default_factory=list)


class PermissionGraph(BaseModel):
    """Collection permission graph as returned by /api/collection/graph."""
    model_config = ConfigDict(extra="allow")

    groups: Dict[str, Dict[str, Any]]
    revision: int


def dashcards_of(dashboard: Any) -> List[Dict[str, Any]]:
    """Return a dashboard's dashcards across Metabase versions.

    Raises:
        ValueError: if ``dashboard`` is not an object or its dashcards are
            not a list of objects.
    """
    if not isinstance(dashboard, dict):
        raise ValueError(f"expected a dashboard object, got {type(dashboard).__name__}")
    for key in ("ordered_cards", "dashcards", "cards"):
        cards = dashboard.get(key)
        if cards is None:
            continue
        if not isinstance(cards, list) or not all(isinstance(dc, dict) for dc in cards):
            raise ValueError(f"'{key}' is not a list of dashcard objects")
        return list(cards)
    return []


def append_dashcard(dashcards: List[Dict[str, Any]], new: NewDashcard) -> List[Dict[str, Any]]:
    """Existing dashcards, untouched and in order, followed by ``new``."""
    return [*dashcards, new.model_dump()]


def remove_dashcard(dashcards: List[Dict[str, Any]], dashcard_id: Any) -> List[Dict[str, Any]]:
    """Drop the dashcard whose own id (not its card_id) is ``dashcard_id``.

    Callers compare lengths to tell whether anything was removed.
    """
    return [dc for dc in dashcards if dc.get("id") != dashcard_id]


def collection_key(collection_id: Union[int, str]) -> str:
    """Graph key for a collection. Id 0 is the root collection."""
    if collection_id == 0 or collection_id == ROOT_COLLECTION:
        return ROOT_COLLECTION
    if isinstance(collection_id, float) and collection_id.is_integer():
        collection_id = int(collection_id)
    return str(collection_id)


def group_key(group_id: Union[int, str]) -> str:
    if isinstance(group_id, float) and group_id.is_integer():
        group_id = int(group_id)
    return str(group_id)


def set_collection_permission(
    graph: PermissionGraph,
    group_id: Union[int, str],
    collection_id: Union[int, str],
    permission: PermissionLevel,
) -> PermissionGraph:
    """Copy of ``graph`` with exactly one (group, collection) grant changed.

    Every other group, grant, the revision and any extra top-level keys are
    carried over unchanged.
    """
    if permission not in PERMISSION_LEVELS:
        raise ValueError(f"permission must be one of {', '.join(PERMISSION_LEVELS)}")

    updated = graph.model_copy(deep=True)
    updated.groups.setdefault(group_key(group_id), {})[collection_key(collection_id)] = permission
    return updated

import copy

import pytest
from pydantic import ValidationError

from metabase_mcp.mutators import (
    NewDashcard,
    PermissionGraph,
    append_dashcard,
    collection_key,
    dashcards_of,
    remove_dashcard,
    set_collection_permission,
)

DASHCARDS = [
    {"id": 1, "card_id": 5, "row": 0, "col": 0, "size_x": 4, "size_y": 3, "parameter_mappings": []},
    {"id": 2, "card_id": 5, "row": 3, "col": 0, "size_x": 4, "size_y": 3, "parameter_mappings": []},
]


def test_append_dashcard_uses_negative_id_and_keeps_existing_order():
    before = copy.deepcopy(DASHCARDS)

    result = append_dashcard(DASHCARDS, NewDashcard(card_id=42, row=2, col=6, size_x=6, size_y=4))

    assert DASHCARDS == before
    assert result[:2] == before
    assert result[2] == {
        "id": -1,
        "card_id": 42,
        "row": 2,
        "col": 6,
        "size_x": 6,
        "size_y": 4,
        "parameter_mappings": [],
    }


def test_new_dashcard_defaults():
    card = NewDashcard(card_id=9)
    assert (card.row, card.col, card.size_x, card.size_y) == (0, 0, 4, 3)


def test_new_dashcard_rejects_bad_size():
    with pytest.raises(ValidationError):
        NewDashcard(card_id=9, size_x=0)


def test_remove_dashcard_matches_dashcard_id_not_card_id():
    assert remove_dashcard(DASHCARDS, 2) == [DASHCARDS[0]]
    assert remove_dashcard(DASHCARDS, 5) == DASHCARDS


def test_dashcards_of_handles_older_response_shapes():
    assert dashcards_of({"ordered_cards": DASHCARDS}) == DASHCARDS
    assert dashcards_of({"cards": DASHCARDS}) == DASHCARDS
    assert dashcards_of({"name": "empty"}) == []


def test_dashcards_of_prefers_ordered_cards():
    assert dashcards_of({"ordered_cards": DASHCARDS[:1], "dashcards": DASHCARDS}) == DASHCARDS[:1]


@pytest.mark.parametrize("dashboard", [["unexpected"], None, {"dashcards": {"id": 1}}, {"ordered_cards": ["x"]}])
def test_dashcards_of_rejects_other_shapes(dashboard):
    with pytest.raises(ValueError):
        dashcards_of(dashboard)


@pytest.mark.parametrize("collection_id, key", [(0, "root"), ("root", "root"), (7, "7"), (7.0, "7"), ("12", "12")])
def test_collection_key(collection_id, key):
    assert collection_key(collection_id) == key


class TestSetCollectionPermission:
    GRAPH = {
        "revision": 12,
        "groups": {
            "1": {"root": "write", "7": "write"},
            "3": {"root": "none", "7": "read", "9": "none"},
        },
    }

    def test_changes_exactly_one_entry(self):
        graph = PermissionGraph.model_validate(copy.deepcopy(self.GRAPH))

        updated = set_collection_permission(graph, 3, 7, "write").model_dump()

        expected = copy.deepcopy(self.GRAPH)
        expected["groups"]["3"]["7"] = "write"
        assert updated == expected
        assert graph.model_dump() == self.GRAPH

    def test_creates_missing_group(self):
        graph = PermissionGraph.model_validate(copy.deepcopy(self.GRAPH))

        updated = set_collection_permission(graph, 4, 0, "read")

        assert updated.groups["4"] == {"root": "read"}
        assert updated.groups["1"] == self.GRAPH["groups"]["1"]
        assert updated.revision == 12

    def test_extra_top_level_keys_survive(self):
        graph = PermissionGraph.model_validate({**self.GRAPH, "namespace": None})

        assert set_collection_permission(graph, 1, 7, "none").model_dump()["namespace"] is None

    def test_revision_and_groups_are_required(self):
        with pytest.raises(ValidationError):
            PermissionGraph.model_validate({"groups": {"1": {"root": "write"}}})
        with pytest.raises(ValidationError):
            PermissionGraph.model_validate({"revision": 3})

    def test_dump_adds_nothing(self):
        graph = PermissionGraph.model_validate(copy.deepcopy(self.GRAPH))

        assert set(set_collection_permission(graph, 1, 7, "read").model_dump()) == {"revision", "groups"}

    def test_rejects_unknown_level(self):
        graph = PermissionGraph.model_validate(self.GRAPH)
        with pytest.raises(ValueError):
            set_collection_permission(graph, 1, 7, "admin")

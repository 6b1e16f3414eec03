# lifecycle_core/tests/test_stage_registry.py

import logging

import pytest

from lifecycle_core.workflows import (
    COMPLETED_STAGE,
    DELETING_ITEM,
    LIFECYCLE_TYPES,
    NEW_ITEM,
    NEW_ITEM_STAGES,
    TRANSITIONING_ITEM,
    is_terminal_order,
    stage_at,
    stages_for,
    terminal_stage,
    workflow_definition,
)


@pytest.mark.parametrize(
    "lifecycle_type, expected_len",
    [(NEW_ITEM, 8), (TRANSITIONING_ITEM, 9), (DELETING_ITEM, 6)],
)
def test_stage_orders_are_contiguous_and_end_in_completed(lifecycle_type, expected_len):
    stages = stages_for(lifecycle_type)

    assert len(stages) == expected_len
    assert [s.order for s in stages] == list(range(1, expected_len + 1))

    last = stages[-1]
    assert last.name == COMPLETED_STAGE
    assert last.required_role is None
    assert all(s.required_role for s in stages[:-1])


def test_new_item_sequence():
    assert [s.name for s in stages_for(NEW_ITEM)] == [
        "Draft",
        "Freight Strategy",
        "Supplier Pricing",
        "KINEXO Pricing",
        "CM Approval",
        "SSM Approval",
        "In Transition",
        "Completed",
    ]


def test_transitioning_item_inserts_comparison_and_dc_transition():
    names = [s.name for s in stages_for(TRANSITIONING_ITEM)]

    assert names[1] == "Item Comparison"
    assert stage_at(TRANSITIONING_ITEM, 2).required_role == "Category Manager"
    assert "DC Transition" in names
    assert "In Transition" not in names


def test_deleting_item_archive_is_owned_by_admin():
    archive = stage_at(DELETING_ITEM, 5)
    assert archive.name == "Archive"
    assert archive.required_role == "Admin"


def test_unknown_lifecycle_type_falls_back_to_new_item(caplog):
    with caplog.at_level(logging.WARNING, logger="lifecycle_core.workflows"):
        stages = stages_for("SOMETHING_ELSE")

    assert stages == NEW_ITEM_STAGES
    assert "Unknown lifecycle type" in caplog.text


def test_lifecycle_type_lookup_is_case_insensitive():
    assert stages_for(" deleting_item ") == stages_for(DELETING_ITEM)


def test_terminal_helpers():
    assert terminal_stage(DELETING_ITEM).order == 6
    assert is_terminal_order(DELETING_ITEM, 6) is True
    assert is_terminal_order(DELETING_ITEM, 5) is False
    assert stage_at(NEW_ITEM, 99) is None


def test_workflow_definition_is_json_shaped():
    one = workflow_definition("new_item")
    assert one["lifecycle_type"] == NEW_ITEM
    assert one["terminal_stage"] == COMPLETED_STAGE
    assert one["stages"][0] == {
        "name": "Draft",
        "order": 1,
        "required_role": "Category Manager",
        "description": "Initial project creation",
    }

    everything = workflow_definition()
    assert set(everything) == set(LIFECYCLE_TYPES)


def test_workflow_definition_rejects_unknown_type():
    with pytest.raises(ValueError):
        workflow_definition("NOPE")

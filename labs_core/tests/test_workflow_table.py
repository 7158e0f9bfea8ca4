# labs_core/tests/test_workflow_table.py

from collections import deque

import pytest

from labs_core.models import LabOrderStatus, SpecimenStatus
from labs_core.workflows import (
    ORDER_STATUSES,
    ORDER_TRANSITIONS,
    SPECIMEN_TRANSITIONS,
    allowed_next_states,
    can_transition,
    is_terminal,
    validate_transition,
    workflow_definition,
)
from labs_core.workflows.errors import InvalidTransition


def test_order_statuses_match_model_choices():
    assert ORDER_STATUSES == set(LabOrderStatus.values)
    assert set(ORDER_TRANSITIONS) == ORDER_STATUSES


def test_specimen_statuses_match_model_choices():
    assert set(SPECIMEN_TRANSITIONS) == set(SpecimenStatus.values)


def test_every_order_status_reachable_from_pending_payment():
    seen = {"pending_payment"}
    queue = deque(["pending_payment"])
    while queue:
        current = queue.popleft()
        for nxt in ORDER_TRANSITIONS[current]:
            if nxt not in seen:
                seen.add(nxt)
                queue.append(nxt)
    assert seen == ORDER_STATUSES


@pytest.mark.parametrize(
    "current,expected",
    [
        ("pending_payment", ["cancelled", "paid"]),
        ("paid", ["cancelled", "collecting"]),
        ("collecting", ["cancelled", "collected"]),
        ("collected", ["cancelled", "processing"]),
        ("processing", ["cancelled", "completed"]),
        ("completed", ["cancelled", "released", "verified"]),
        ("verified", ["cancelled", "released"]),
        ("released", []),
        ("cancelled", []),
    ],
)
def test_allowed_next_states_table(current, expected):
    assert allowed_next_states("order", current) == expected


def test_validate_transition_returns_allowed_on_success():
    assert validate_transition("order", "completed", "released") == [
        "cancelled",
        "released",
        "verified",
    ]


def test_invalid_transition_carries_allowed_states():
    with pytest.raises(InvalidTransition) as exc:
        validate_transition("order", "pending_payment", "processing")

    err = exc.value
    assert err.allowed == ["cancelled", "paid"]
    assert err.extra["current"] == "pending_payment"
    assert err.extra["target"] == "processing"
    assert err.status_code == 409


def test_terminal_states_refuse_everything():
    for terminal in ("released", "cancelled"):
        assert is_terminal("order", terminal)
        with pytest.raises(InvalidTransition) as exc:
            validate_transition("order", terminal, "paid")
        assert "terminal" in exc.value.message
        assert exc.value.allowed == []


def test_unknown_status_is_invalid_transition():
    with pytest.raises(InvalidTransition):
        validate_transition("order", "paid", "archived")
    with pytest.raises(InvalidTransition):
        validate_transition("order", "bogus", "paid")


def test_status_values_are_case_insensitive():
    assert can_transition("order", "PAID", "Collecting")


def test_unknown_kind_raises_value_error():
    with pytest.raises(ValueError):
        allowed_next_states("invoice", "paid")


def test_specimen_lifecycle_edges():
    assert allowed_next_states("specimen", "pending") == ["collected", "rejected"]
    assert allowed_next_states("specimen", "received") == ["processing", "rejected"]
    assert is_terminal("specimen", "completed")
    assert is_terminal("specimen", "rejected")
    assert not can_transition("specimen", "rejected", "collected")


def test_workflow_definition_shape():
    data = workflow_definition("order")
    assert data["kind"] == "order"
    assert data["terminal_states"] == ["cancelled", "released"]
    assert data["transitions"]["completed"] == ["cancelled", "released", "verified"]
    assert len(data["statuses"]) == 9

# labs_core/workflows/__init__.py
"""
Authoritative workflow rules for lab entities.

Defines:
- Status universes for orders and specimens
- Allowed transitions
- Introspection helpers used by the API

Do not bypass these rules at model or view level.
"""

from __future__ import annotations

from typing import Any, Dict, List, Set

from labs_core.workflows.errors import InvalidTransition


# ===============================================================
# ORDER WORKFLOW
# ===============================================================

ORDER_STATUSES: Set[str] = {
    "pending_payment",
    "paid",
    "collecting",
    "collected",
    "processing",
    "completed",
    "verified",
    "released",
    "cancelled",
}

ORDER_TRANSITIONS: Dict[str, Set[str]] = {
    "pending_payment": {"paid", "cancelled"},
    "paid": {"collecting", "cancelled"},
    "collecting": {"collected", "cancelled"},
    "collected": {"processing", "cancelled"},
    "processing": {"completed", "cancelled"},
    "completed": {"verified", "released", "cancelled"},
    "verified": {"released", "cancelled"},
    "released": set(),  # terminal
    "cancelled": set(),  # terminal
}

# Orders in these states have lab work in flight; a bare cancel is refused.
MANUAL_CANCEL_STATUSES: Set[str] = {"processing", "completed", "verified"}

# Items may only be added or removed before specimen collection starts.
MODIFIABLE_STATUSES: Set[str] = {"pending_payment", "paid"}

RESULT_ENTRY_STATUSES: Set[str] = {"collected", "processing", "completed", "verified"}

# An order may only hold these once every item has a verified result.
RESULT_GATED_STATUSES: Set[str] = {"verified", "released"}


# ===============================================================
# SPECIMEN WORKFLOW
# ===============================================================

SPECIMEN_STATUSES: Set[str] = {
    "pending",
    "collected",
    "received",
    "processing",
    "completed",
    "rejected",
}

SPECIMEN_TRANSITIONS: Dict[str, Set[str]] = {
    "pending": {"collected", "rejected"},
    "collected": {"received", "rejected"},
    "received": {"processing", "rejected"},
    "processing": {"completed", "rejected"},
    "completed": set(),  # terminal
    "rejected": set(),  # terminal
}

# A specimen at or beyond "collected" counts towards the order collection cascade.
SPECIMEN_COLLECTED_OR_LATER: Set[str] = {"collected", "received", "processing", "completed"}


# ===============================================================
# VALIDATION
# ===============================================================

def normalize_status(value: Any) -> str:
    return str(value or "").strip().lower()


def _universe_and_transitions(kind: str):
    kind = (kind or "").strip().lower()
    if kind == "order":
        return ORDER_STATUSES, ORDER_TRANSITIONS
    if kind == "specimen":
        return SPECIMEN_STATUSES, SPECIMEN_TRANSITIONS
    raise ValueError(f"Unknown workflow kind: {kind}")


def allowed_next_states(kind: str, current: str) -> List[str]:
    _universe, transitions = _universe_and_transitions(kind)
    return sorted(transitions.get(normalize_status(current), set()))


def is_terminal(kind: str, current: str) -> bool:
    universe, _transitions = _universe_and_transitions(kind)
    current = normalize_status(current)
    return current in universe and not allowed_next_states(kind, current)


def can_transition(kind: str, current: str, target: str) -> bool:
    return normalize_status(target) in allowed_next_states(kind, current)


def validate_transition(kind: str, current: str, target: str) -> List[str]:
    """
    Raises InvalidTransition unless current -> target is an edge of the
    workflow for `kind`. The error carries the legal next states.

    Returns the allowed set on success so callers can report it.
    """
    universe, _transitions = _universe_and_transitions(kind)
    cur = normalize_status(current)
    tgt = normalize_status(target)
    allowed = allowed_next_states(kind, cur)

    if cur not in universe:
        raise InvalidTransition(
            f"Unknown {kind} status: '{cur}'",
            current=cur,
            target=tgt,
            allowed=[],
        )

    if tgt not in universe:
        raise InvalidTransition(
            f"Unknown {kind} status: '{tgt}'",
            current=cur,
            target=tgt,
            allowed=allowed,
        )

    if tgt not in allowed:
        if not allowed:
            msg = f"{kind.capitalize()} is in terminal state '{cur}' and cannot be modified."
        else:
            msg = f"Invalid {kind} status transition from '{cur}' to '{tgt}'"
        raise InvalidTransition(msg, current=cur, target=tgt, allowed=allowed)

    return allowed


# ===============================================================
# INTROSPECTION
# ===============================================================

def workflow_definition(kind: str) -> Dict[str, Any]:
    """
    Stable JSON-serializable definition for UI.
    """
    kind = (kind or "").strip().lower()
    universe, transitions = _universe_and_transitions(kind)
    return {
        "kind": kind,
        "statuses": sorted(universe),
        "transitions": {k: sorted(v) for k, v in transitions.items()},
        "terminal_states": sorted(
            state for state, nexts in transitions.items() if not nexts
        ),
    }


__all__ = [
    "ORDER_STATUSES",
    "ORDER_TRANSITIONS",
    "SPECIMEN_STATUSES",
    "SPECIMEN_TRANSITIONS",
    "MANUAL_CANCEL_STATUSES",
    "MODIFIABLE_STATUSES",
    "RESULT_ENTRY_STATUSES",
    "RESULT_GATED_STATUSES",
    "SPECIMEN_COLLECTED_OR_LATER",
    "normalize_status",
    "allowed_next_states",
    "is_terminal",
    "can_transition",
    "validate_transition",
    "workflow_definition",
]

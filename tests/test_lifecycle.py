from datetime import datetime, timezone

import pytest

from conftest import make_order_doc
from errors import IllegalTransitionError, InvalidInputError, MissingReasonError
from lifecycle import TERMINAL_STATES, apply_transition, can_transition
from schemas import Order, OrderStatus

NOW = datetime(2026, 3, 1, 13, 30, tzinfo=timezone.utc)


def order_in(status):
    return Order.from_document(make_order_doc(status=status))


@pytest.mark.parametrize("current,target", [
    ("pending", "confirmed"),
    ("confirmed", "preparing"),
    ("preparing", "ready"),
    ("ready", "completed"),
    ("pending", "cancelled"),
    ("confirmed", "cancelled"),
    ("preparing", "cancelled"),
])
def test_allowed_transitions(current, target):
    assert can_transition(current, target)


@pytest.mark.parametrize("current,target", [
    ("pending", "ready"),
    ("pending", "completed"),
    ("confirmed", "ready"),
    ("ready", "cancelled"),
    ("ready", "preparing"),
    ("preparing", "confirmed"),
])
def test_disallowed_transitions(current, target):
    assert not can_transition(current, target)


@pytest.mark.parametrize("status", [s for s in OrderStatus if s not in TERMINAL_STATES])
def test_self_transition_allowed_for_open_states(status):
    assert can_transition(status, status)


@pytest.mark.parametrize("terminal", sorted(TERMINAL_STATES, key=lambda s: s.value))
@pytest.mark.parametrize("target", list(OrderStatus))
def test_nothing_leaves_a_terminal_state(terminal, target):
    assert not can_transition(terminal, target)


def test_unknown_status_is_invalid_input():
    with pytest.raises(InvalidInputError):
        can_transition("pending", "delivered")


def test_skipping_states_is_illegal():
    with pytest.raises(IllegalTransitionError) as exc:
        apply_transition(order_in("pending"), "ready", actor="manager-1")
    assert exc.value.status_code == 400
    assert exc.value.current == "pending"


def test_cancel_requires_reason():
    with pytest.raises(MissingReasonError):
        apply_transition(order_in("preparing"), OrderStatus.CANCELLED, actor="manager-1")
    with pytest.raises(MissingReasonError):
        apply_transition(order_in("preparing"), OrderStatus.CANCELLED, actor="manager-1", reason="   ")


def test_cancel_with_reason_stamps_cancelled_at():
    result = apply_transition(order_in("confirmed"), "cancelled", actor="manager-1", reason="Out of stock", now=NOW)
    assert result.changed
    assert result.timestamp_field == "cancelled_at"
    assert result.timestamp == NOW
    assert result.reason == "Out of stock"
    assert not result.side_effects.deduct_inventory
    assert result.side_effects.send_notification


def test_confirm_asks_for_revenue_recompute():
    result = apply_transition(order_in("pending"), "confirmed", actor="manager-1", now=NOW)
    assert result.side_effects.recompute_revenue
    assert not result.side_effects.deduct_inventory
    assert result.timestamp_field is None
    assert result.timestamp is None


def test_complete_asks_for_inventory_deduction():
    result = apply_transition(order_in("ready"), "completed", actor="manager-1", now=NOW)
    assert result.side_effects.deduct_inventory
    assert not result.side_effects.recompute_revenue
    assert result.timestamp_field == "completed_at"


def test_preparing_and_ready_get_their_timestamps():
    assert apply_transition(order_in("confirmed"), "preparing", actor="m", now=NOW).timestamp_field == "preparation_started_at"
    assert apply_transition(order_in("preparing"), "ready", actor="m", now=NOW).timestamp_field == "ready_at"


@pytest.mark.parametrize("status", list(OrderStatus))
def test_repeating_current_status_is_a_noop(status):
    result = apply_transition(order_in(status.value), status, actor="manager-1")
    assert not result.changed
    assert result.timestamp is None
    assert result.side_effects.model_dump() == {
        "deduct_inventory": False, "send_notification": False, "recompute_revenue": False,
    }

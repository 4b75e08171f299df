"""
Order status lifecycle.

    pending -> confirmed -> preparing -> ready -> completed
    pending | confirmed | preparing -> cancelled

completed and cancelled are terminal. This module only decides; writing the
new status and running side effects belongs to the service layer.
"""

from datetime import datetime, timezone
from typing import Dict, FrozenSet, Optional, Union

from errors import IllegalTransitionError, InvalidInputError, MissingReasonError
from schemas import Order, OrderStatus, SideEffects, TransitionResult

TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PREPARING, OrderStatus.CANCELLED}),
    OrderStatus.PREPARING: frozenset({OrderStatus.READY, OrderStatus.CANCELLED}),
    OrderStatus.READY: frozenset({OrderStatus.COMPLETED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

TERMINAL_STATES = frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED})

TIMESTAMP_FIELDS: Dict[OrderStatus, str] = {
    OrderStatus.PREPARING: "preparation_started_at",
    OrderStatus.READY: "ready_at",
    OrderStatus.COMPLETED: "completed_at",
    OrderStatus.CANCELLED: "cancelled_at",
}


def _status(value: Union[OrderStatus, str]) -> OrderStatus:
    if isinstance(value, OrderStatus):
        return value
    try:
        return OrderStatus(value)
    except ValueError:
        raise InvalidInputError(f"Unknown order status: {value}", field="status")


def is_terminal(status: Union[OrderStatus, str]) -> bool:
    return _status(status) in TERMINAL_STATES


def can_transition(current: Union[OrderStatus, str], target: Union[OrderStatus, str]) -> bool:
    current, target = _status(current), _status(target)
    if current in TERMINAL_STATES:
        return False
    return current == target or target in TRANSITIONS[current]


def apply_transition(
    order: Order,
    target: Union[OrderStatus, str],
    actor: str,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> TransitionResult:
    target = _status(target)
    current = order.status

    # Retried requests land here; answer success without asking for writes.
    if current == target:
        return TransitionResult(
            order_id=order.id,
            previous_status=current,
            new_status=target,
            changed=False,
            actor=actor,
            reason=reason,
        )

    if not can_transition(current, target):
        raise IllegalTransitionError(current.value, target.value)

    if target == OrderStatus.CANCELLED and not (reason and reason.strip()):
        raise MissingReasonError()

    field = TIMESTAMP_FIELDS.get(target)
    return TransitionResult(
        order_id=order.id,
        previous_status=current,
        new_status=target,
        changed=True,
        timestamp_field=field,
        timestamp=(now or datetime.now(timezone.utc)) if field else None,
        side_effects=SideEffects(
            deduct_inventory=target == OrderStatus.COMPLETED,
            send_notification=True,
            recompute_revenue=current == OrderStatus.PENDING and target == OrderStatus.CONFIRMED,
        ),
        actor=actor,
        reason=reason.strip() if reason else None,
    )

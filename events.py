"""
Order events and the in-process bus that fans them out.

Handlers are best-effort: a failing handler is logged and reported back as a
SideEffectWarning, the remaining handlers still run and nothing is rolled back.
"""

import logging
from collections import defaultdict
from datetime import datetime
from typing import Callable, DefaultDict, List, Optional, Type

from pydantic import BaseModel

from schemas import OrderItem, OrderStatus, SideEffectWarning

logger = logging.getLogger(__name__)


class OrderEvent(BaseModel):
    order_id: str
    timestamp: datetime


class OrderStatusChanged(OrderEvent):
    """Order moved from one status to another"""
    previous_status: OrderStatus
    new_status: OrderStatus
    actor: str
    reason: Optional[str] = None


class InventoryDeductionRequested(OrderEvent):
    """Order completed, stock for its line items should be taken out"""
    line_items: List[OrderItem]


class NotificationRequested(OrderEvent):
    """Student should hear about the new status"""
    new_status: OrderStatus
    phone: Optional[str] = None


EFFECT_NAMES = {
    InventoryDeductionRequested: "inventory",
    NotificationRequested: "notification",
}

Handler = Callable[[OrderEvent], None]


class EventBus:
    def __init__(self) -> None:
        self._handlers: DefaultDict[Type[OrderEvent], List[Handler]] = defaultdict(list)

    def subscribe(self, event_type: Type[OrderEvent], handler: Handler) -> None:
        self._handlers[event_type].append(handler)

    def publish(self, event: OrderEvent) -> List[SideEffectWarning]:
        warnings: List[SideEffectWarning] = []
        for handler in self._handlers.get(type(event), []):
            try:
                handler(event)
            except Exception as e:
                effect = EFFECT_NAMES.get(type(event), type(event).__name__)
                logger.warning("%s handler failed for order %s: %s", effect, event.order_id, e, exc_info=True)
                warnings.append(SideEffectWarning(effect=effect, order_id=event.order_id, detail=str(e)))
        return warnings

"""
Stock deduction for completed orders.
"""

import logging
from typing import List

from events import InventoryDeductionRequested
from store import OrderStore

logger = logging.getLogger(__name__)


class InventoryDeductionError(Exception):
    def __init__(self, order_id: str, failures: List[str]) -> None:
        super().__init__(f"Inventory deduction incomplete for order {order_id}: " + "; ".join(failures))
        self.order_id = order_id
        self.failures = failures


class InventoryDeductor:
    def __init__(self, store: OrderStore) -> None:
        self.store = store

    def __call__(self, event: InventoryDeductionRequested) -> None:
        # Deduct what we can, then report every line that could not be taken out.
        failures: List[str] = []
        for line in event.line_items:
            try:
                remaining = self.store.adjust_stock(line.menu_item_id, -line.quantity)
            except (LookupError, ValueError) as e:
                failures.append(str(e))
                continue
            if remaining is None:
                continue
            logger.info("Order %s: %s -%d (left %d)", event.order_id, line.name, line.quantity, remaining)
            if remaining == 0:
                logger.warning("%s is out of stock and now unavailable", line.name)
        if failures:
            raise InventoryDeductionError(event.order_id, failures)

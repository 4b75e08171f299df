"""
Order service: the seam between HTTP handlers and the store.

Each call works on one request's worth of data. Status writes go through a
single compare-and-set per transition; side effects are published on the
event bus after the write and come back as warnings, never as failures.
"""

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from errors import ConflictError, InvalidInputError, NotFoundError
from events import (
    EventBus,
    InventoryDeductionRequested,
    NotificationRequested,
    OrderStatusChanged,
)
from lifecycle import apply_transition, is_terminal
from revenue import DERIVED_FIELDS, OrderRevenueCalculator, round2
from schemas import (
    CreateOrderRequest,
    FeeBreakdown,
    MenuItem,
    Order,
    OrderItem,
    OrderStatus,
    RepairReport,
    RevenueSummary,
    SideEffectWarning,
    TransitionOutcome,
)
from store import OrderStore

logger = logging.getLogger(__name__)

REVENUE_FIELDS = DERIVED_FIELDS + ("service_fee_rate", "commission_rate")


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class OrderService:
    def __init__(
        self,
        store: OrderStore,
        calculator: Optional[OrderRevenueCalculator] = None,
        bus: Optional[EventBus] = None,
    ) -> None:
        self.store = store
        self.calculator = calculator or OrderRevenueCalculator()
        self.bus = bus or EventBus()

    # -------------------- orders --------------------

    def _menu_item(self, item_id: str) -> MenuItem:
        doc = self.store.get_menu_item(item_id)
        if doc is None:
            raise InvalidInputError(f"Unknown menu item: {item_id}", field="items")
        data = dict(doc)
        data["id"] = str(data.pop("_id", data.get("id")))
        return MenuItem.model_validate(data)

    def create_order(self, payload: CreateOrderRequest) -> Order:
        # Prices always come from the menu, never from the client.
        lines: List[OrderItem] = []
        subtotal = Decimal("0")
        for raw in payload.items:
            item = self._menu_item(raw.menu_item_id)
            if item.cafeteria_id and item.cafeteria_id != payload.cafeteria_id:
                raise InvalidInputError(f"{item.name} is not sold by this cafeteria", field="items")
            if not item.is_available:
                raise InvalidInputError(f"{item.name} is currently unavailable", field="items")
            line_total = round2(Decimal(str(item.price)) * raw.quantity)
            subtotal += line_total
            lines.append(OrderItem(
                menu_item_id=item.id,
                name=item.name,
                unit_price=item.price,
                quantity=raw.quantity,
                subtotal=float(line_total),
            ))

        fees = self.calculator.compute_fees(float(subtotal))
        now = datetime.now(timezone.utc)
        order = Order(
            id=uuid.uuid4().hex,
            user_id=payload.user_id,
            cafeteria_id=payload.cafeteria_id,
            phone=payload.phone,
            items=lines,
            status=OrderStatus.PENDING,
            pickup_time=payload.pickup_time,
            payment_method=payload.payment_method,
            created_at=now,
            updated_at=now,
            **self._fee_fields(fees),
        )
        self.store.insert(order.to_document())
        logger.info("Order %s created: subtotal %.2f, total %.2f", order.id, fees.subtotal, fees.total_amount)
        return order

    def get_order(self, order_id: str) -> Order:
        doc = self.store.get(order_id)
        if doc is None:
            raise NotFoundError(f"Order {order_id} not found", field="order_id")
        return Order.from_document(doc)

    def list_orders(
        self,
        status: Optional[OrderStatus] = None,
        cafeteria_id: Optional[str] = None,
        limit: Optional[int] = 50,
    ) -> List[Order]:
        filters: Dict[str, Any] = {}
        if status is not None:
            filters["status"] = status.value
        if cafeteria_id:
            filters["cafeteria_id"] = cafeteria_id
        return [Order.from_document(d) for d in self.store.list_by_filter(filters, limit)]

    # -------------------- status --------------------

    def transition(
        self,
        order_id: str,
        target: OrderStatus,
        actor: str,
        reason: Optional[str] = None,
    ) -> TransitionOutcome:
        order = self.get_order(order_id)
        result = apply_transition(order, target, actor, reason)
        if not result.changed:
            logger.info("Order %s already %s, nothing to do", order.id, target.value)
            return TransitionOutcome(order=order, transition=result)

        now = datetime.now(timezone.utc)
        fields: Dict[str, Any] = {
            "status": result.new_status.value,
            "updated_at": now,
            "updated_by": actor,
        }
        if result.timestamp_field:
            fields[result.timestamp_field] = result.timestamp
        if result.new_status == OrderStatus.CANCELLED:
            fields["cancellation_reason"] = result.reason
            fields["cancelled_by"] = actor
        if result.side_effects.recompute_revenue:
            fields.update(self._fee_fields(self.calculator.compute_fees(order.subtotal)))

        if self.store.update(order.id, fields, expected_status=order.status.value) == 0:
            raise ConflictError(
                f"Order {order.id} is no longer {order.status.value}, reload and try again",
                field="status",
            )
        logger.info("Order %s: %s -> %s by %s", order.id, result.previous_status.value, result.new_status.value, actor)

        updated = Order.model_validate({**order.model_dump(), **fields})
        warnings: List[SideEffectWarning] = []
        warnings += self.bus.publish(OrderStatusChanged(
            order_id=order.id,
            timestamp=now,
            previous_status=result.previous_status,
            new_status=result.new_status,
            actor=actor,
            reason=result.reason,
        ))
        if result.side_effects.deduct_inventory:
            warnings += self.bus.publish(InventoryDeductionRequested(
                order_id=order.id, timestamp=now, line_items=order.items,
            ))
        if result.side_effects.send_notification:
            warnings += self.bus.publish(NotificationRequested(
                order_id=order.id, timestamp=now, new_status=result.new_status, phone=order.phone,
            ))
        return TransitionOutcome(order=updated, transition=result, warnings=warnings)

    # -------------------- revenue --------------------

    @staticmethod
    def _fee_fields(fees: FeeBreakdown) -> Dict[str, Any]:
        return {f: getattr(fees, f) for f in ("subtotal",) + REVENUE_FIELDS}

    def fee_preview(self, subtotal: Any) -> FeeBreakdown:
        return self.calculator.compute_fees(subtotal)

    def _repair(self, order: Order, force: bool) -> Tuple[Order, str]:
        if not self.calculator.needs_repair(order):
            return order, "current"
        missing = any(getattr(order, f) is None for f in DERIVED_FIELDS)
        if is_terminal(order.status) and not missing and not force:
            return order, "skipped"
        repaired = self.calculator.recompute_for_existing_order(order)
        fields = {f: getattr(repaired, f) for f in REVENUE_FIELDS}
        fields["updated_at"] = datetime.now(timezone.utc)
        if self.store.update(order.id, fields, expected_status=order.status.value) == 0:
            raise ConflictError(f"Order {order.id} changed during repair", field="status")
        return repaired, "updated"

    def repair_revenue(self, order_id: str, force: bool = False) -> Tuple[Order, str]:
        """Re-derive one order's fees. Returns the order and one of
        "updated", "current" or "skipped" (stale fees on a closed order)."""
        return self._repair(self.get_order(order_id), force)

    def repair_all_revenue(self, force: bool = False) -> RepairReport:
        report = RepairReport()
        for doc in self.store.iter_by_filter():
            order_id = str(doc.get("_id", doc.get("id")))
            try:
                order = Order.from_document(doc)
                if not self.calculator.needs_repair(order):
                    continue
                _, outcome = self._repair(order, force)
            except (InvalidInputError, ConflictError) as e:
                report.total_orders += 1
                report.error_count += 1
                report.errors.append({"order_id": order_id, "error": e.message})
                logger.error("Failed to repair revenue for order %s: %s", order_id, e.message)
                continue
            report.total_orders += 1
            if outcome == "updated":
                report.updated_count += 1
            else:
                report.skipped_count += 1
        logger.info(
            "Revenue repair done: %d candidates, %d updated, %d skipped, %d errors",
            report.total_orders, report.updated_count, report.skipped_count, report.error_count,
        )
        return report

    def revenue_summary(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        cafeteria_id: Optional[str] = None,
    ) -> RevenueSummary:
        """Streamed from the store; the date range and the cancelled filter
        run in the query, not over a loaded collection."""
        filters: Dict[str, Any] = {"status": {"$ne": OrderStatus.CANCELLED.value}}
        if cafeteria_id:
            filters["cafeteria_id"] = cafeteria_id
        created: Dict[str, datetime] = {}
        if start:
            created["$gte"] = _aware(start)
        if end:
            created["$lte"] = _aware(end)
        if created:
            filters["created_at"] = created

        docs = self.store.iter_by_filter(filters)
        return self.calculator.summarize(Order.from_document(d) for d in docs)

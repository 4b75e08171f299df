"""
Order revenue attribution.

Revenue model: the student pays subtotal + service fee (a share of the
subtotal, capped), the platform keeps service fee + commission, and the
cafeteria receives subtotal - commission. Money is computed in Decimal and
rounded half-up to cents so admin_revenue + cafeteria_revenue always equals
total_amount.
"""

import logging
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable, Optional

from errors import InvalidInputError
from schemas import FeeBreakdown, FeeRates, Order, OrderStatus, RevenueSummary
from settings import DEFAULT_RATES, RateSource, resolve_rates

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

DERIVED_FIELDS = ("service_fee", "commission", "admin_revenue", "cafeteria_revenue", "total_amount")


def round2(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def _money(value: Any, field: str = "subtotal") -> Decimal:
    if value is None:
        raise InvalidInputError(f"{field} is missing", field=field)
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        raise InvalidInputError(f"{field} must be a number, got {type(value).__name__}", field=field)
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        raise InvalidInputError(f"{field} is not a valid amount", field=field)
    if not amount.is_finite():
        raise InvalidInputError(f"{field} must be finite", field=field)
    if amount < 0:
        raise InvalidInputError(f"{field} cannot be negative", field=field)
    return amount


def compute_fees(subtotal: Any, rates: Optional[FeeRates] = None) -> FeeBreakdown:
    rates = rates or DEFAULT_RATES
    amount = _money(subtotal)
    fee_rate = Decimal(str(rates.service_fee_rate))
    fee_cap = Decimal(str(rates.service_fee_cap))
    commission_rate = Decimal(str(rates.commission_rate))

    # A sub-cent cap must not be rounded up past itself.
    service_fee = min(round2(min(amount * fee_rate, fee_cap)), fee_cap.quantize(CENT, rounding=ROUND_DOWN))
    commission = round2(amount * commission_rate)

    return FeeBreakdown(
        subtotal=float(amount),
        service_fee=float(service_fee),
        commission=float(commission),
        admin_revenue=float(service_fee + commission),
        cafeteria_revenue=float(amount - commission),
        total_amount=float(amount + service_fee),
        service_fee_rate=rates.service_fee_rate,
        service_fee_cap=rates.service_fee_cap,
        commission_rate=rates.commission_rate,
    )


def recompute_for_existing_order(order: Order, rates: Optional[FeeRates] = None) -> Order:
    """Return a copy of ``order`` with every derived money field re-derived from
    its subtotal. Nothing is written; persisting the copy is up to the caller."""
    fees = compute_fees(order.subtotal, rates)
    return order.model_copy(update={
        "service_fee": fees.service_fee,
        "commission": fees.commission,
        "admin_revenue": fees.admin_revenue,
        "cafeteria_revenue": fees.cafeteria_revenue,
        "total_amount": fees.total_amount,
        "service_fee_rate": fees.service_fee_rate,
        "commission_rate": fees.commission_rate,
    })


def has_all_revenue_fields(order: Order) -> bool:
    return order.subtotal is not None and all(getattr(order, f) is not None for f in DERIVED_FIELDS)


def needs_revenue_repair(order: Order, rates: Optional[FeeRates] = None) -> bool:
    if not has_all_revenue_fields(order):
        return True
    fresh = compute_fees(order.subtotal, rates)
    return any(round(abs(getattr(order, f) - getattr(fresh, f)), 2) >= 0.01 for f in DERIVED_FIELDS)


def summarize(orders: Iterable[Order], rates: Optional[FeeRates] = None) -> RevenueSummary:
    """Aggregate revenue over ``orders`` in a single pass, skipping cancelled ones.

    Stored amounts are trusted when complete; rows written before the fee
    fields existed are derived from their subtotal at ``rates``. A row
    without a subtotal raises InvalidInputError rather than counting as zero.
    """
    count = 0
    subtotal = service_fees = commission = admin = cafeteria = order_value = Decimal("0")

    for order in orders:
        if order.status == OrderStatus.CANCELLED:
            continue
        if has_all_revenue_fields(order):
            row = order
        else:
            logger.debug("Order %s has no stored fees, deriving from subtotal", order.id)
            row = compute_fees(order.subtotal, rates)
        count += 1
        subtotal += Decimal(str(row.subtotal))
        service_fees += Decimal(str(row.service_fee))
        commission += Decimal(str(row.commission))
        admin += Decimal(str(row.admin_revenue))
        cafeteria += Decimal(str(row.cafeteria_revenue))
        order_value += Decimal(str(row.total_amount))

    return RevenueSummary(
        total_revenue=float(round2(admin)),
        total_commission=float(round2(commission)),
        total_service_fees=float(round2(service_fees)),
        total_orders=count,
        total_subtotal=float(round2(subtotal)),
        total_cafeteria_revenue=float(round2(cafeteria)),
        total_order_value=float(round2(order_value)),
    )


class OrderRevenueCalculator:
    """Fee calculation bound to a rate source, re-read on every call so rate
    changes apply without a restart."""

    def __init__(self, rate_source: Optional[RateSource] = None) -> None:
        self.rate_source = rate_source

    def rates(self) -> FeeRates:
        return resolve_rates(self.rate_source)

    def compute_fees(self, subtotal: Any) -> FeeBreakdown:
        return compute_fees(subtotal, self.rates())

    def recompute_for_existing_order(self, order: Order) -> Order:
        return recompute_for_existing_order(order, self.rates())

    def needs_repair(self, order: Order) -> bool:
        return needs_revenue_repair(order, self.rates())

    def summarize(self, orders: Iterable[Order]) -> RevenueSummary:
        return summarize(orders, self.rates())

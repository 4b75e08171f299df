"""
Database Schemas for UniEats

Each Pydantic model represents a document shape in the database or a payload
crossing the API boundary:
- Order -> "orders" collection
- MenuItem -> "menu_items" collection (price source of truth, stock tracking)
- FeeRates -> "settings" collection, document "financial"
"""

from datetime import date, datetime, time
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from errors import InvalidInputError


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class MenuItem(BaseModel):
    id: str
    name: str = Field(..., description="Item name")
    category: str = Field("other", description="Breakfast | Lunch | Beverages | ...")
    price: float = Field(..., ge=0, description="Price in EGP")
    cafeteria_id: Optional[str] = None
    stock: Optional[int] = Field(None, description="Units on hand, None when not tracked")
    is_available: bool = True


class OrderItem(BaseModel):
    menu_item_id: str
    name: str
    unit_price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    subtotal: float = Field(..., ge=0)


class FeeRates(BaseModel):
    service_fee_rate: float = Field(0.04, ge=0, le=1, description="Share of subtotal charged to the student")
    service_fee_cap: float = Field(20.0, ge=0, description="Service fee ceiling in EGP")
    commission_rate: float = Field(0.10, ge=0, le=1, description="Share of subtotal kept from the cafeteria")


class FeeBreakdown(BaseModel):
    subtotal: float
    service_fee: float
    commission: float
    admin_revenue: float
    cafeteria_revenue: float
    total_amount: float
    service_fee_rate: float
    service_fee_cap: float
    commission_rate: float


class Order(BaseModel):
    id: str
    user_id: Optional[str] = None
    cafeteria_id: Optional[str] = None
    phone: Optional[str] = None
    items: List[OrderItem] = []
    subtotal: Optional[float] = None
    service_fee: Optional[float] = None
    commission: Optional[float] = None
    admin_revenue: Optional[float] = None
    cafeteria_revenue: Optional[float] = None
    total_amount: Optional[float] = None
    service_fee_rate: Optional[float] = None
    commission_rate: Optional[float] = None
    status: OrderStatus = OrderStatus.PENDING
    pickup_time: Optional[str] = None
    payment_method: str = "card"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    preparation_started_at: Optional[datetime] = None
    ready_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    cancelled_by: Optional[str] = None
    updated_by: Optional[str] = None

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Order":
        """Validate a raw datastore row. Unknown keys are dropped, a missing id or
        an unknown status is rejected instead of being patched over."""
        data = dict(doc)
        if "_id" in data:
            data["id"] = str(data.pop("_id"))
        if not data.get("id"):
            raise InvalidInputError("Order document has no id", field="id")
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(p) for p in first.get("loc", ())) or None
            raise InvalidInputError(f"Malformed order {data['id']}: {first.get('msg')}", field=field)

    def to_document(self) -> Dict[str, Any]:
        doc = self.model_dump(mode="python", exclude={"id"})
        doc["_id"] = self.id
        doc["status"] = self.status.value
        return doc


class SideEffects(BaseModel):
    deduct_inventory: bool = False
    send_notification: bool = False
    recompute_revenue: bool = False


class TransitionResult(BaseModel):
    order_id: str
    previous_status: OrderStatus
    new_status: OrderStatus
    changed: bool
    timestamp_field: Optional[str] = None
    timestamp: Optional[datetime] = None
    side_effects: SideEffects = SideEffects()
    actor: str
    reason: Optional[str] = None


class SideEffectWarning(BaseModel):
    effect: str = Field(..., description="inventory | notification")
    order_id: str
    detail: str


class TransitionOutcome(BaseModel):
    order: Order
    transition: TransitionResult
    warnings: List[SideEffectWarning] = []


class RevenueSummary(BaseModel):
    total_revenue: float = 0.0
    total_commission: float = 0.0
    total_service_fees: float = 0.0
    total_orders: int = 0
    total_subtotal: float = 0.0
    total_cafeteria_revenue: float = 0.0
    total_order_value: float = 0.0


class RepairReport(BaseModel):
    total_orders: int = 0
    updated_count: int = 0
    skipped_count: int = 0
    error_count: int = 0
    errors: List[Dict[str, str]] = []


# --- Request bodies ---

class CreateOrderLine(BaseModel):
    menu_item_id: str
    quantity: int = Field(..., ge=1)
    notes: Optional[str] = None


class CreateOrderRequest(BaseModel):
    user_id: str
    cafeteria_id: str
    items: List[CreateOrderLine] = Field(..., min_length=1)
    phone: Optional[str] = None
    pickup_time: Optional[str] = None
    payment_method: str = "card"


class StatusChangeRequest(BaseModel):
    status: OrderStatus
    actor: str
    reason: Optional[str] = None


class CancelRequest(BaseModel):
    actor: str
    reason: Optional[str] = None


class FeePreviewRequest(BaseModel):
    subtotal: float


class DateRange(BaseModel):
    """Inclusive created_at bounds. A bare date as end_date covers that whole day."""

    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    @field_validator("end_date", mode="before")
    @classmethod
    def _end_of_day(cls, value: Any) -> Any:
        if isinstance(value, str) and len(value.strip()) == 10:
            value = date.fromisoformat(value.strip())
        if isinstance(value, date) and not isinstance(value, datetime):
            return datetime.combine(value, time.max)
        return value

    @classmethod
    def from_query(cls, start_date: Optional[str], end_date: Optional[str]) -> "DateRange":
        try:
            return cls(start_date=start_date, end_date=end_date)
        except ValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(p) for p in first.get("loc", ())) or None
            raise InvalidInputError(f"Invalid date: {first.get('msg')}", field=field)


class RevenueFixRequest(DateRange):
    action: str
    order_id: Optional[str] = None
    force: bool = False

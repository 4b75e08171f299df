import logging
import os
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from pymongo.errors import PyMongoError

from database import get_database
from errors import UniEatsError
from events import EventBus, InventoryDeductionRequested, NotificationRequested, OrderStatusChanged
from inventory import InventoryDeductor
from notifications import SmsNotifier
from revenue import OrderRevenueCalculator
from schemas import (
    CancelRequest,
    CreateOrderRequest,
    DateRange,
    FeeBreakdown,
    FeePreviewRequest,
    FeeRates,
    Order,
    OrderStatus,
    RevenueFixRequest,
    RevenueSummary,
    StatusChangeRequest,
    TransitionOutcome,
)
from service import OrderService
from settings import log_level, rate_source_from_env
from store import InMemoryOrderStore, MongoOrderStore

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("unieats.audit")


def _audit_status_change(event: OrderStatusChanged) -> None:
    audit_logger.info(
        "order=%s %s->%s actor=%s reason=%s",
        event.order_id, event.previous_status.value, event.new_status.value, event.actor, event.reason or "-",
    )


def build_service() -> OrderService:
    db = get_database()
    if db is None:
        logger.warning("DATABASE_URL not set, orders are kept in memory only")
        store = InMemoryOrderStore()
    else:
        store = MongoOrderStore(db)

    bus = EventBus()
    bus.subscribe(OrderStatusChanged, _audit_status_change)
    bus.subscribe(InventoryDeductionRequested, InventoryDeductor(store))
    bus.subscribe(NotificationRequested, SmsNotifier())
    return OrderService(store, OrderRevenueCalculator(rate_source_from_env(db)), bus)


def get_service(request: Request) -> OrderService:
    return request.app.state.service


class RatesResponse(BaseModel):
    rates: FeeRates
    revenue_model: Dict[str, str]


class OrderListResponse(BaseModel):
    orders: List[Order]


def create_app(service: Optional[OrderService] = None) -> FastAPI:
    app = FastAPI(title="UniEats Orders API", version="1.0.0")
    app.state.service = service or build_service()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(UniEatsError)
    def handle_unieats_error(request: Request, exc: UniEatsError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.get("/")
    def root():
        return {"service": "UniEats Orders API", "status": "ok"}

    @app.get("/health")
    def health(svc: OrderService = Depends(get_service)):
        connected = svc.store.ping()
        return {
            "backend": "✅ Running",
            "store": svc.store.backend,
            "database": "✅ Connected" if connected else "❌ Not reachable",
        }

    @app.get("/api/rates", response_model=RatesResponse)
    def get_rates(svc: OrderService = Depends(get_service)):
        rates = svc.calculator.rates()
        return RatesResponse(
            rates=rates,
            revenue_model={
                "service_fee": f"{rates.service_fee_rate * 100:g}% of subtotal (capped at {rates.service_fee_cap:g} EGP)",
                "commission": f"{rates.commission_rate * 100:g}% of subtotal",
                "admin_revenue": "Service fee + Commission",
                "total_amount": "Subtotal + Service fee",
            },
        )

    @app.post("/api/fees/preview", response_model=FeeBreakdown)
    def preview_fees(payload: FeePreviewRequest, svc: OrderService = Depends(get_service)):
        return svc.fee_preview(payload.subtotal)

    @app.post("/api/orders", response_model=Order, status_code=201)
    def create_order(payload: CreateOrderRequest, svc: OrderService = Depends(get_service)):
        try:
            return svc.create_order(payload)
        except PyMongoError as e:
            raise HTTPException(status_code=500, detail=f"Database error: {str(e)}")

    @app.get("/api/orders", response_model=OrderListResponse)
    def list_orders(
        status: Optional[OrderStatus] = None,
        cafeteria_id: Optional[str] = None,
        limit: int = Query(default=50, ge=1, le=500),
        svc: OrderService = Depends(get_service),
    ):
        return OrderListResponse(orders=svc.list_orders(status, cafeteria_id, limit))

    @app.get("/api/orders/{order_id}", response_model=Order)
    def get_order(order_id: str, svc: OrderService = Depends(get_service)):
        return svc.get_order(order_id)

    @app.post("/api/orders/{order_id}/status", response_model=TransitionOutcome)
    def change_status(order_id: str, payload: StatusChangeRequest, svc: OrderService = Depends(get_service)):
        return svc.transition(order_id, payload.status, payload.actor, payload.reason)

    @app.post("/api/orders/{order_id}/cancel", response_model=TransitionOutcome)
    def cancel_order(order_id: str, payload: CancelRequest, svc: OrderService = Depends(get_service)):
        return svc.transition(order_id, OrderStatus.CANCELLED, payload.actor, payload.reason)

    @app.post("/api/admin/fix-order-revenue")
    def fix_order_revenue(payload: RevenueFixRequest, svc: OrderService = Depends(get_service)):
        if payload.action == "fix_all_orders":
            report = svc.repair_all_revenue(force=payload.force)
            return {
                "success": True,
                "message": f"Successfully updated revenue calculations for {report.updated_count} orders",
                "details": report,
            }

        if payload.action == "fix_single_order":
            if not payload.order_id:
                raise HTTPException(status_code=400, detail="order_id is required")
            order, outcome = svc.repair_revenue(payload.order_id, force=payload.force)
            return {"success": True, "result": outcome, "order": order}

        if payload.action == "get_revenue_summary":
            summary = svc.revenue_summary(payload.start_date, payload.end_date)
            return {"success": True, "summary": summary}

        raise HTTPException(
            status_code=400,
            detail="Invalid action. Use: fix_all_orders, fix_single_order, or get_revenue_summary",
        )

    @app.get("/api/admin/revenue-summary", response_model=RevenueSummary)
    def revenue_summary(
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        cafeteria_id: Optional[str] = None,
        svc: OrderService = Depends(get_service),
    ):
        bounds = DateRange.from_query(start_date, end_date)
        return svc.revenue_summary(bounds.start_date, bounds.end_date, cafeteria_id)

    return app


logging.basicConfig(level=log_level(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

app = create_app()


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)

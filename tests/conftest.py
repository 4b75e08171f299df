from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from events import EventBus, InventoryDeductionRequested, NotificationRequested
from inventory import InventoryDeductor
from main import create_app
from revenue import OrderRevenueCalculator
from service import OrderService
from settings import StaticRateSource
from store import InMemoryOrderStore

MENU = [
    {"id": "koshari", "name": "Koshari", "category": "Lunch", "price": 45.0, "cafeteria_id": "caf-1", "stock": 10},
    {"id": "tea", "name": "Tea", "category": "Beverages", "price": 10.0, "cafeteria_id": "caf-1", "stock": None},
    {"id": "falafel", "name": "Falafel Sandwich", "category": "Breakfast", "price": 12.5, "cafeteria_id": "caf-1", "stock": 1},
    {"id": "shawarma", "name": "Shawarma", "category": "Dinner", "price": 80.0, "cafeteria_id": "caf-2", "stock": 5},
]


def make_order_doc(order_id="ord-1", status="pending", subtotal=100.0, **extra):
    doc = {
        "_id": order_id,
        "user_id": "student-1",
        "cafeteria_id": "caf-1",
        "items": [{"menu_item_id": "koshari", "name": "Koshari", "unit_price": 50.0, "quantity": 2, "subtotal": 100.0}],
        "subtotal": subtotal,
        "service_fee": 4.0,
        "commission": 10.0,
        "admin_revenue": 14.0,
        "cafeteria_revenue": 90.0,
        "total_amount": 104.0,
        "status": status,
        "created_at": datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc),
    }
    doc.update(extra)
    return doc


class RecordingNotifier:
    def __init__(self, fail=False):
        self.events = []
        self.fail = fail

    def __call__(self, event):
        self.events.append(event)
        if self.fail:
            raise RuntimeError("sms gateway down")


@pytest.fixture
def store():
    return InMemoryOrderStore(menu_items=MENU)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def service(store, notifier):
    bus = EventBus()
    bus.subscribe(InventoryDeductionRequested, InventoryDeductor(store))
    bus.subscribe(NotificationRequested, notifier)
    return OrderService(store, OrderRevenueCalculator(StaticRateSource()), bus)


@pytest.fixture
def client(service):
    return TestClient(create_app(service))

from datetime import datetime, timezone

import pytest

from conftest import make_order_doc
from errors import ConflictError
from schemas import OrderStatus
from service import OrderService
from store import InsufficientStockError, MongoOrderStore, matches


class FakeUpdateResult:
    def __init__(self, matched_count):
        self.matched_count = matched_count


class FakeCollection:
    """Just enough of a pymongo collection for the store's queries."""

    def __init__(self, docs=()):
        self.docs = {d["_id"]: dict(d) for d in docs}
        self.queries = []

    def _hits(self, query):
        return [d for d in self.docs.values() if matches(d, query)]

    def find_one(self, query):
        hits = self._hits(query)
        return dict(hits[0]) if hits else None

    def find(self, query):
        self.queries.append(query)
        return iter([dict(d) for d in self._hits(query)])

    def update_one(self, query, update):
        hits = self._hits(query)[:1]
        for doc in hits:
            doc.update(update["$set"])
        return FakeUpdateResult(len(hits))

    def find_one_and_update(self, query, update, return_document=None):
        hits = self._hits(query)
        if not hits:
            return None
        for key, delta in update["$inc"].items():
            hits[0][key] += delta
        return dict(hits[0])


class FakeDb:
    def __init__(self, orders=(), menu_items=(), reachable=True):
        self.collections = {"orders": FakeCollection(orders), "menu_items": FakeCollection(menu_items)}
        self.reachable = reachable

    def __getitem__(self, name):
        return self.collections[name]

    def command(self, name):
        if not self.reachable:
            raise ConnectionError("no primary")
        return {"ok": 1}


@pytest.fixture
def db():
    return FakeDb(
        orders=[make_order_doc("o1")],
        menu_items=[
            {"_id": "koshari", "name": "Koshari", "price": 50.0, "stock": 3, "is_available": True},
            {"_id": "tea", "name": "Tea", "price": 10.0, "stock": None, "is_available": True},
        ],
    )


def test_update_is_compare_and_set(db):
    store = MongoOrderStore(db)
    assert store.update("o1", {"status": "confirmed"}, expected_status="pending") == 1
    assert store.update("o1", {"status": "cancelled"}, expected_status="pending") == 0
    assert store.get("o1")["status"] == "confirmed"

    assert store.update("o1", {"updated_by": "admin"}, expected_status=None) == 1
    assert store.update("missing", {"status": "confirmed"}, expected_status="pending") == 0


def test_lost_race_is_a_conflict_over_mongo(db, monkeypatch):
    service = OrderService(MongoOrderStore(db))
    real_get = service.store.get

    def stale_get(order_id):
        doc = real_get(order_id)
        db["orders"].docs[order_id]["status"] = "cancelled"
        return doc

    monkeypatch.setattr(service.store, "get", stale_get)
    with pytest.raises(ConflictError):
        service.transition("o1", OrderStatus.CONFIRMED, actor="staff")
    assert db["orders"].docs["o1"]["status"] == "cancelled"


def test_adjust_stock_decrements_conditionally(db):
    store = MongoOrderStore(db)
    assert store.adjust_stock("koshari", -2) == 1

    with pytest.raises(InsufficientStockError):
        store.adjust_stock("koshari", -2)
    assert store.get_menu_item("koshari")["stock"] == 1

    assert store.adjust_stock("koshari", -1) == 0
    assert store.get_menu_item("koshari")["is_available"] is False


def test_adjust_stock_untracked_and_unknown(db):
    store = MongoOrderStore(db)
    assert store.adjust_stock("tea", -5) is None
    assert store.get_menu_item("tea")["stock"] is None
    with pytest.raises(LookupError):
        store.adjust_stock("falafel", -1)


def test_summary_filters_in_the_query():
    orders = [
        make_order_doc("jan", created_at=datetime(2026, 1, 15, tzinfo=timezone.utc)),
        make_order_doc("feb", created_at=datetime(2026, 2, 15, tzinfo=timezone.utc)),
        make_order_doc("feb-x", status="cancelled", created_at=datetime(2026, 2, 16, tzinfo=timezone.utc)),
    ]
    db = FakeDb(orders=orders)
    service = OrderService(MongoOrderStore(db))

    summary = service.revenue_summary(start=datetime(2026, 2, 1), end=datetime(2026, 2, 28, 23, 59, 59))
    assert summary.total_orders == 1
    assert db["orders"].queries[-1] == {
        "status": {"$ne": "cancelled"},
        "created_at": {
            "$gte": datetime(2026, 2, 1, tzinfo=timezone.utc),
            "$lte": datetime(2026, 2, 28, 23, 59, 59, tzinfo=timezone.utc),
        },
    }

    service.revenue_summary(cafeteria_id="caf-1")
    assert db["orders"].queries[-1] == {"status": {"$ne": "cancelled"}, "cafeteria_id": "caf-1"}


def test_ping():
    assert MongoOrderStore(FakeDb()).ping() is True
    assert MongoOrderStore(FakeDb(reachable=False)).ping() is False

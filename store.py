"""
Order store backends.

The store is the only shared mutable state. Status writes are compare-and-set
on the current status and report how many rows matched, zero meaning someone
else moved the order first.
"""

import copy
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Protocol

from pymongo import ReturnDocument
from pymongo.database import Database

from database import create_document, get_documents

logger = logging.getLogger(__name__)

ORDERS = "orders"
MENU_ITEMS = "menu_items"


class InsufficientStockError(ValueError):
    pass


# The subset of Mongo query operators the service issues.
_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "$ne": lambda value, operand: value != operand,
    "$gte": lambda value, operand: value is not None and value >= operand,
    "$lte": lambda value, operand: value is not None and value <= operand,
}


def matches(doc: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    for key, cond in filters.items():
        value = doc.get(key)
        if isinstance(cond, dict):
            for op, operand in cond.items():
                if op not in _OPERATORS:
                    raise ValueError(f"Unsupported query operator {op}")
                if not _OPERATORS[op](value, operand):
                    return False
        elif value != cond:
            return False
    return True


class OrderStore(Protocol):
    backend: str

    def get(self, order_id: str) -> Optional[Dict[str, Any]]: ...

    def insert(self, doc: Dict[str, Any]) -> str: ...

    def list_by_filter(self, filters: Optional[Dict[str, Any]] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]: ...

    def iter_by_filter(self, filters: Optional[Dict[str, Any]] = None) -> Iterable[Dict[str, Any]]: ...

    def update(self, order_id: str, fields: Dict[str, Any], expected_status: Optional[str]) -> int: ...

    def get_menu_item(self, item_id: str) -> Optional[Dict[str, Any]]: ...

    def adjust_stock(self, item_id: str, delta: int) -> Optional[int]: ...

    def ping(self) -> bool: ...


class MongoOrderStore:
    backend = "mongodb"

    def __init__(self, db: Database) -> None:
        self.db = db

    def get(self, order_id: str) -> Optional[Dict[str, Any]]:
        return self.db[ORDERS].find_one({"_id": order_id})

    def insert(self, doc: Dict[str, Any]) -> str:
        return create_document(self.db, ORDERS, doc)

    def list_by_filter(self, filters: Optional[Dict[str, Any]] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        return get_documents(self.db, ORDERS, filters, limit)

    def iter_by_filter(self, filters: Optional[Dict[str, Any]] = None) -> Iterable[Dict[str, Any]]:
        # A cursor: documents arrive in batches, never all at once.
        return self.db[ORDERS].find(filters or {})

    def update(self, order_id: str, fields: Dict[str, Any], expected_status: Optional[str]) -> int:
        query: Dict[str, Any] = {"_id": order_id}
        if expected_status is not None:
            query["status"] = expected_status
        result = self.db[ORDERS].update_one(query, {"$set": fields})
        return result.matched_count

    def get_menu_item(self, item_id: str) -> Optional[Dict[str, Any]]:
        return self.db[MENU_ITEMS].find_one({"_id": item_id})

    def adjust_stock(self, item_id: str, delta: int) -> Optional[int]:
        query: Dict[str, Any] = {"_id": item_id, "stock": {"$ne": None}}
        if delta < 0:
            query["stock"] = {"$ne": None, "$gte": -delta}
        doc = self.db[MENU_ITEMS].find_one_and_update(
            query, {"$inc": {"stock": delta}}, return_document=ReturnDocument.AFTER
        )
        if doc is None:
            current = self.get_menu_item(item_id)
            if current is None:
                raise LookupError(f"Menu item {item_id} not found")
            if current.get("stock") is None:
                return None
            raise InsufficientStockError(f"Not enough stock for {current.get('name', item_id)}: have {current['stock']}, need {-delta}")
        if doc["stock"] <= 0:
            self.db[MENU_ITEMS].update_one({"_id": item_id}, {"$set": {"is_available": False}})
        return doc["stock"]

    def ping(self) -> bool:
        try:
            self.db.command("ping")
            return True
        except Exception as e:
            logger.warning("MongoDB ping failed: %s", e)
            return False


class InMemoryOrderStore:
    """Dict-backed store for local runs without DATABASE_URL, and for tests."""

    backend = "memory"

    def __init__(self, menu_items: Optional[List[Dict[str, Any]]] = None) -> None:
        self.orders: Dict[str, Dict[str, Any]] = {}
        self.menu_items: Dict[str, Dict[str, Any]] = {}
        for item in menu_items or []:
            self.add_menu_item(item)

    def add_menu_item(self, item: Dict[str, Any]) -> None:
        item = dict(item)
        item_id = str(item.pop("id", None) or item["_id"])
        item["_id"] = item_id
        self.menu_items[item_id] = item

    def get(self, order_id: str) -> Optional[Dict[str, Any]]:
        doc = self.orders.get(order_id)
        return copy.deepcopy(doc) if doc is not None else None

    def insert(self, doc: Dict[str, Any]) -> str:
        doc = copy.deepcopy(doc)
        now = datetime.now(timezone.utc)
        doc.setdefault("created_at", now)
        doc["updated_at"] = now
        self.orders[str(doc["_id"])] = doc
        return str(doc["_id"])

    def list_by_filter(self, filters: Optional[Dict[str, Any]] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        filters = filters or {}
        rows = [d for d in self.orders.values() if matches(d, filters)]
        rows.sort(key=lambda d: d.get("created_at") or datetime.min.replace(tzinfo=timezone.utc), reverse=True)
        if limit:
            rows = rows[:limit]
        return copy.deepcopy(rows)

    def iter_by_filter(self, filters: Optional[Dict[str, Any]] = None) -> Iterator[Dict[str, Any]]:
        filters = filters or {}
        for doc in list(self.orders.values()):
            if matches(doc, filters):
                yield copy.deepcopy(doc)

    def update(self, order_id: str, fields: Dict[str, Any], expected_status: Optional[str]) -> int:
        doc = self.orders.get(order_id)
        if doc is None:
            return 0
        if expected_status is not None and doc.get("status") != expected_status:
            return 0
        doc.update(copy.deepcopy(fields))
        return 1

    def get_menu_item(self, item_id: str) -> Optional[Dict[str, Any]]:
        item = self.menu_items.get(item_id)
        return dict(item) if item is not None else None

    def adjust_stock(self, item_id: str, delta: int) -> Optional[int]:
        item = self.menu_items.get(item_id)
        if item is None:
            raise LookupError(f"Menu item {item_id} not found")
        if item.get("stock") is None:
            return None
        if item["stock"] + delta < 0:
            raise InsufficientStockError(f"Not enough stock for {item.get('name', item_id)}: have {item['stock']}, need {-delta}")
        item["stock"] += delta
        if item["stock"] <= 0:
            item["is_available"] = False
        return item["stock"]

    def ping(self) -> bool:
        return True

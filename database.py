"""
MongoDB helpers for UniEats.

DATABASE_URL and DATABASE_NAME come from the environment. When DATABASE_URL
is not set get_database() returns None and callers pick an in-memory store.
"""

import os
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.database import Database


@lru_cache(maxsize=1)
def get_database() -> Optional[Database]:
    url = os.getenv("DATABASE_URL")
    if not url:
        return None
    client: MongoClient = MongoClient(url, tz_aware=True)
    return client[os.getenv("DATABASE_NAME", "unieats")]


def create_document(db: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a document with created_at/updated_at stamps and return its id."""
    doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    now = datetime.now(timezone.utc)
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    result = db[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(
    db: Database,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    cursor = db[collection_name].find(filter_dict or {}).sort("created_at", -1)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)

"""
MongoDB access helpers.

The client is created once by the application (see main.create_app) and the
Database handle is passed to every service; nothing here holds global state.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

import structlog
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

logger = structlog.get_logger()


def now() -> datetime:
    return datetime.now(timezone.utc)


def connect(url: str, name: str, client: Optional[MongoClient] = None) -> Tuple[MongoClient, Database]:
    client = client or MongoClient(url, tz_aware=True)
    return client, client[name]


def ensure_indexes(db: Database) -> None:
    db.user.create_index("email", unique=True)
    db.category.create_index("slug", unique=True)
    db.collection.create_index("slug", unique=True)
    db.product.create_index("slug", unique=True)
    db.product.create_index([("created_at", DESCENDING)])
    db.product.create_index("category_id")
    db.product.create_index("collection_id")
    db.article.create_index("slug", unique=True)
    db.seosetting.create_index("page_id", unique=True)
    db.faq.create_index([("order", ASCENDING)])
    # price_variant_id is always written, null when absent, so it takes part in the key
    db.cartline.create_index(
        [("user_id", ASCENDING), ("product_id", ASCENDING), ("price_variant_id", ASCENDING)],
        unique=True,
    )
    logger.info("indexes_ensured", database=db.name)


def create_document(db: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    if isinstance(data, BaseModel):
        doc = data.model_dump()
    else:
        doc = dict(data)
    stamp = now()
    doc.setdefault("created_at", stamp)
    doc["updated_at"] = stamp
    result = db[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(
    db: Database,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    sort: Optional[List[Tuple[str, int]]] = None,
) -> List[Dict[str, Any]]:
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)

"""
MongoDB access helpers.

The database handle lives on ``app.state.db`` and reaches handlers through the
``get_db`` dependency; nothing here keeps a module-level connection.
"""
import math
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Union

from bson.objectid import ObjectId
from fastapi import Request
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.database import Database

from config import Settings
from errors import NotFoundError

USERS = "users"
ADDRESSES = "addresses"
PRODUCTS = "products"
CATEGORIES = "categories"
ORDERS = "orders"
TRANSACTIONS = "transactions"
NOTIFICATIONS = "notifications"
COUNTERS = "counters"


def connect(settings: Settings) -> Database:
    client = MongoClient(settings.database_url, tz_aware=True)
    return client[settings.database_name]


def get_db(request: Request) -> Database:
    return request.app.state.db


def ensure_indexes(db: Database) -> None:
    db[USERS].create_index("email", unique=True)
    db[USERS].create_index("phone", unique=True)
    db[USERS].create_index("isActive")
    db[ADDRESSES].create_index("userId")
    db[ADDRESSES].create_index("pincode")
    db[CATEGORIES].create_index("name", unique=True)
    db[CATEGORIES].create_index([("isActive", ASCENDING), ("sortOrder", ASCENDING)])
    db[PRODUCTS].create_index(
        [("category", ASCENDING), ("inStock", ASCENDING), ("isActive", ASCENDING)]
    )
    db[PRODUCTS].create_index([("isFlashSale", ASCENDING), ("isActive", ASCENDING)])
    db[PRODUCTS].create_index([("isOrganic", ASCENDING), ("isActive", ASCENDING)])
    db[PRODUCTS].create_index([("rating", DESCENDING)])
    db[PRODUCTS].create_index([("createdAt", DESCENDING)])
    db[ORDERS].create_index("orderNumber", unique=True)
    db[ORDERS].create_index([("userId", ASCENDING), ("createdAt", DESCENDING)])
    db[ORDERS].create_index([("status", ASCENDING), ("createdAt", DESCENDING)])
    db[TRANSACTIONS].create_index("transactionId", unique=True)
    db[TRANSACTIONS].create_index([("userId", ASCENDING), ("timestamp", DESCENDING)])
    db[TRANSACTIONS].create_index("orderId")
    db[NOTIFICATIONS].create_index([("userId", ASCENDING), ("createdAt", DESCENDING)])


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_document(db: Database, collection_name: str, data: Union[BaseModel, dict]) -> ObjectId:
    """Insert a document, stamping createdAt/updatedAt. Returns the new _id."""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump(by_alias=True)
    else:
        data_dict = dict(data)
    now = utcnow()
    data_dict["createdAt"] = now
    data_dict["updatedAt"] = now
    result = db[collection_name].insert_one(data_dict)
    return result.inserted_id


def object_id(value: Any, resource: str) -> ObjectId:
    """Parse a path id; anything that is not an ObjectId cannot exist."""
    if isinstance(value, ObjectId):
        return value
    if not ObjectId.is_valid(value):
        raise NotFoundError(resource)
    return ObjectId(value)


def find_owned(db: Database, collection_name: str, doc_id: Any, user_id: ObjectId, resource: str) -> dict:
    doc = db[collection_name].find_one({"_id": object_id(doc_id, resource), "userId": user_id})
    if not doc:
        raise NotFoundError(resource)
    return doc


def next_sequence(db: Database, name: str) -> int:
    seq = db[COUNTERS].find_one_and_update(
        {"_id": name},
        {"$inc": {"value": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return seq["value"]


def serialize_doc(doc):
    if doc is None:
        return doc
    if isinstance(doc, list):
        return [serialize_doc(d) for d in doc]
    if isinstance(doc, ObjectId):
        return str(doc)
    if isinstance(doc, datetime):
        return doc.isoformat()
    if not isinstance(doc, dict):
        return doc
    out = {}
    for k, v in doc.items():
        if k == "_id":
            out["id"] = serialize_doc(v)
        elif k == "passwordHash":
            continue
        else:
            out[k] = serialize_doc(v)
    return out


def populate(
    db: Database,
    docs: Iterable[dict],
    field: str,
    collection_name: str,
    projection: Iterable[str],
) -> List[dict]:
    """Replace ObjectId references in ``field`` with the referenced documents.

    Works for scalar and list references. Dangling references become None
    (scalar) or are dropped (list).
    """
    docs = list(docs)
    ids = set()
    for d in docs:
        ref = d.get(field)
        if isinstance(ref, list):
            ids.update(r for r in ref if isinstance(r, ObjectId))
        elif isinstance(ref, ObjectId):
            ids.add(ref)
    if not ids:
        return docs
    found = {
        r["_id"]: r
        for r in db[collection_name].find({"_id": {"$in": list(ids)}}, {p: 1 for p in projection})
    }
    for d in docs:
        ref = d.get(field)
        if isinstance(ref, list):
            d[field] = [found[r] for r in ref if r in found]
        elif isinstance(ref, ObjectId):
            d[field] = found.get(ref)
    return docs


def paginate(page: int, limit: int, max_limit: int):
    """Returns (page, limit, skip) clamped to sane bounds."""
    page = max(page, 1)
    limit = min(max(limit, 1), max_limit)
    return page, limit, (page - 1) * limit


def page_envelope(items: List[Any], total: int, page: int, limit: int) -> Dict[str, Any]:
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        "count": len(items),
        "total": total,
        "totalPages": total_pages,
        "currentPage": page,
        "hasNextPage": page < total_pages,
        "hasPrevPage": page > 1,
    }

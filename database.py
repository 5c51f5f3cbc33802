"""
MongoDB access helpers.

Collections are named after the lower-cased schema class (Auction -> "auction").
Timestamps are stored and compared as naive UTC, which is what pymongo hands
back with its default codec options.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from config import settings
from errors import NotFound
from logger import logger

_client: Optional[MongoClient] = None
db: Optional[Database] = None

if settings.DATABASE_URL and settings.DATABASE_NAME:
    _client = MongoClient(settings.DATABASE_URL)
    db = _client[settings.DATABASE_NAME]
else:
    logger.warning("DATABASE_URL / DATABASE_NAME not set; database is unavailable")


def get_db() -> Database:
    """FastAPI dependency returning the configured database"""
    if db is None:
        raise RuntimeError("Database is not configured (set DATABASE_URL and DATABASE_NAME)")
    return db


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a datetime to naive UTC"""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def to_object_id(value: Union[str, ObjectId], label: str = "Document") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise NotFound(f"{label} with ID:{value} not found")


def serialize(value: Any) -> Any:
    """Make a pymongo document JSON friendly (ObjectId -> str, _id -> id)"""
    if isinstance(value, list):
        return [serialize(v) for v in value]
    if isinstance(value, dict):
        out = {}
        for key, item in value.items():
            if key == "_id":
                out["id"] = str(item)
            else:
                out[key] = serialize(item)
        return out
    if isinstance(value, ObjectId):
        return str(value)
    return value


def _as_dict(data: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
    if isinstance(data, BaseModel):
        return data.model_dump(by_alias=True)
    return dict(data)


def create_document(database: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a document stamped with createdAt/updatedAt and return its id"""
    doc = _as_dict(data)
    now = utcnow()
    doc.setdefault("createdAt", now)
    doc["updatedAt"] = now
    inserted_id = database[collection_name].insert_one(doc).inserted_id
    return str(inserted_id)


def get_documents(
    database: Database,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    sort: Optional[List[tuple]] = None,
) -> List[Dict[str, Any]]:
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def get_document(database: Database, collection_name: str, doc_id: Union[str, ObjectId], label: str = "Document") -> Dict[str, Any]:
    doc = database[collection_name].find_one({"_id": to_object_id(doc_id, label)})
    if not doc:
        raise NotFound(f"{label} with ID:{doc_id} not found")
    return doc


def update_document(
    database: Database,
    collection_name: str,
    doc_id: Union[str, ObjectId],
    changes: Dict[str, Any],
    label: str = "Document",
) -> Dict[str, Any]:
    oid = to_object_id(doc_id, label)
    result = database[collection_name].update_one(
        {"_id": oid}, {"$set": {**changes, "updatedAt": utcnow()}}
    )
    if result.matched_count == 0:
        raise NotFound(f"{label} with ID:{doc_id} not found")
    return database[collection_name].find_one({"_id": oid})


def delete_document(database: Database, collection_name: str, doc_id: Union[str, ObjectId], label: str = "Document") -> None:
    result = database[collection_name].delete_one({"_id": to_object_id(doc_id, label)})
    if result.deleted_count == 0:
        raise NotFound(f"{label} with ID:{doc_id} not found")


def populate(
    database: Database,
    docs: List[Dict[str, Any]],
    field: str,
    collection_name: str = "user",
    fields: tuple = ("userName", "email", "avatarUrl"),
) -> List[Dict[str, Any]]:
    """Replace a reference id in each doc with a projection of the referenced document.

    References that no longer resolve are left as the raw id.
    """
    ids = {doc.get(field) for doc in docs if doc.get(field) and ObjectId.is_valid(doc.get(field))}
    if not ids:
        return docs
    projection = {name: 1 for name in fields}
    found = {
        str(ref["_id"]): ref
        for ref in database[collection_name].find({"_id": {"$in": [ObjectId(i) for i in ids]}}, projection)
    }
    for doc in docs:
        ref = found.get(str(doc.get(field)))
        if ref is not None:
            doc[field] = ref
    return docs


def ref_id(value: Any) -> str:
    """Id string of a reference field, whether populated or not"""
    if isinstance(value, dict):
        return str(value.get("_id", value.get("id")))
    return str(value)


def ensure_indexes(database: Database) -> None:
    database["user"].create_index("email", unique=True)
    database["user"].create_index("userName", unique=True)
    database["offer"].create_index([("artworkId", ASCENDING), ("userId", ASCENDING)], unique=True)
    database["offer"].create_index([("userId", ASCENDING), ("createdAt", DESCENDING)])
    database["artwork"].create_index([("auctionId", ASCENDING), ("endDate", ASCENDING)])
    database["artwork"].create_index([("status", ASCENDING), ("endDate", ASCENDING)])
    database["order"].create_index("artworkId")
    database["order"].create_index("sellerId")
    database["order"].create_index([("buyerId", ASCENDING), ("createdAt", DESCENDING)])
    database["payment"].create_index([("userId", ASCENDING), ("artworkId", ASCENDING)], unique=True)
    database["shippingaddress"].create_index([("userId", ASCENDING), ("artworkId", ASCENDING)], unique=True)
    database["shippingaddress"].create_index("status")
    logger.info("MongoDB indexes ensured")

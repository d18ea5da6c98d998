"""
MongoDB access for the storefront.

A single client is created at import time when DATABASE_URL is set. Routes
receive the database through the get_db dependency so tests can swap it.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.database import Database

from config import settings
from errors import PersistenceError

logger = logging.getLogger(__name__)

client: Optional[MongoClient] = None
db: Optional[Database] = None

if settings.DATABASE_URL:
    client = MongoClient(settings.DATABASE_URL, serverSelectionTimeoutMS=5000)
    db = client[settings.DATABASE_NAME]
else:
    logger.warning("DATABASE_URL not set; database is unavailable")


def get_db() -> Database:
    if db is None:
        raise PersistenceError("Database is not configured")
    return db


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """pymongo hands back naive datetimes that are in UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def object_id(value: Any) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def create_document(collection_name: str, data: Union[BaseModel, dict], database: Optional[Database] = None) -> str:
    """Insert a document, stamping created_at/updated_at, and return its id."""
    target = database if database is not None else get_db()
    if isinstance(data, BaseModel):
        doc = data.model_dump(by_alias=True)
    else:
        doc = dict(data)
    stamp = now_utc()
    doc.setdefault("createdAt", stamp)
    doc["updatedAt"] = stamp
    result = target[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None,
                  database: Optional[Database] = None) -> List[Dict[str, Any]]:
    target = database if database is not None else get_db()
    cursor = target[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def serialize(value: Any) -> Any:
    """Make a Mongo document JSON serializable (ObjectId -> str, datetime -> ISO)."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    if isinstance(value, dict):
        return {k: serialize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize(v) for v in value]
    return value


def ensure_indexes(database: Database) -> None:
    """Unique keys the documents rely on. Coupon and referral codes are sparse."""
    database["ambassador"].create_index("email", unique=True)
    database["ambassador"].create_index("referralCode", unique=True, sparse=True)
    database["ambassador"].create_index("couponCode", unique=True, sparse=True)
    database["promocode"].create_index("code", unique=True)
    database["newsletter"].create_index("email", unique=True)
    database["waitlist"].create_index("email", unique=True)
    database["order"].create_index([("inventoryProcessed", 1), ("createdAt", 1)])
    database["order"].create_index("ambassador.ambassadorId")
    database["order"].create_index("redemption.status")

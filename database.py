"""
MongoDB access helpers.

`db` is None when DATABASE_URL / DATABASE_NAME are not configured; callers
that need storage check for that and report it.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from config import settings
from errors import InternalFailure, ValidationFailed

logger = logging.getLogger(__name__)

_client: Optional[MongoClient] = None
db: Optional[Database] = None

if settings.database_url and settings.database_name:
    _client = MongoClient(settings.database_url)
    db = _client[settings.database_name]


def utcnow() -> datetime:
    # stored as naive UTC, which is what pymongo hands back
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_naive(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def to_oid(id_str: str) -> ObjectId:
    if isinstance(id_str, ObjectId):
        return id_str
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise ValidationFailed("Invalid id")


def serialize(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if doc is None:
        return None
    doc["_id"] = str(doc.get("_id"))
    return doc


def _require(database: Optional[Database]) -> Database:
    database = database if database is not None else db
    if database is None:
        raise InternalFailure("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")
    return database


def create_document(collection_name: str, data: Union[BaseModel, dict], database: Optional[Database] = None) -> str:
    """Insert a document and return its id as a string."""
    database = _require(database)
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    now = utcnow()
    data_dict["created_at"] = now
    data_dict["updated_at"] = now
    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(
    collection_name: str,
    filter_dict: Optional[dict] = None,
    limit: Optional[int] = None,
    sort: Optional[list] = None,
    database: Optional[Database] = None,
) -> List[dict]:
    database = _require(database)
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def ensure_indexes(database: Optional[Database] = None) -> None:
    database = _require(database)
    orders = database["order"]
    orders.create_index([("order_number", ASCENDING)], unique=True)
    orders.create_index([("status", ASCENDING), ("created_at", ASCENDING)])
    orders.create_index([("expires_at", ASCENDING)])
    menu = database["menuitem"]
    menu.create_index([("category", ASCENDING), ("is_available", ASCENDING)])
    menu.create_index([("stock", ASCENDING)])
    logger.info("Indexes ensured on %s", database.name)

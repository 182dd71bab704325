"""
MongoDB access for the classroom backend.

The module keeps one client per process. Routes receive the database handle
through the `get_db` dependency so tests can swap in an in-memory store.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from config import Settings
from errors import ApiError

logger = logging.getLogger(__name__)

_client: Optional[MongoClient] = None
db: Optional[Database] = None


def init_database(settings: Settings) -> Optional[Database]:
    """Connect to MongoDB if a connection string is configured."""
    global _client, db

    if db is not None:
        return db
    if not settings.database_url:
        return None

    _client = MongoClient(settings.database_url, tz_aware=True)
    db = _client[settings.database_name]
    logger.info(f"MongoDB connected: database={settings.database_name}")
    return db


def close_database() -> None:
    global _client, db
    if _client is not None:
        _client.close()
    _client = None
    db = None


def get_db() -> Database:
    if db is None:
        raise ApiError(500, "Database not configured")
    return db


def ensure_indexes(database: Database) -> None:
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["work"].create_index([("createdAt", ASCENDING)])
    database["material"].create_index([("uploadDate", ASCENDING)])
    logger.info("Database indexes ensured")


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def parse_object_id(value: str) -> Optional[ObjectId]:
    """Return an ObjectId for a valid hex id, otherwise None."""
    if not ObjectId.is_valid(value):
        return None
    return ObjectId(value)


def to_str_id(doc: Optional[Dict[str, Any]], hidden=()) -> Optional[Dict[str, Any]]:
    if doc is None:
        return None
    d = {k: v for k, v in dict(doc).items() if k not in hidden}
    if "_id" in d:
        d["_id"] = str(d["_id"])
    return d


def create_document(database: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a document and return its id as a string."""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(
    database: Database,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    projection: Optional[Dict[str, int]] = None,
    sort: Optional[List[tuple]] = None,
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    cursor = database[collection_name].find(filter_dict or {}, projection)
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)

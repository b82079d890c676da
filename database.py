"""
MongoDB access.

`db` is created from DATABASE_URL / DATABASE_NAME at import time and stays
None when no URL is configured. Routes receive it through the `get_db`
dependency so tests can swap in another database.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import HTTPException
from pymongo import MongoClient
from pymongo.database import Database

from app_logger import get_logger
from config import get_settings
from errors import NotFoundError

logger = get_logger("database")

_settings = get_settings()

client: Optional[MongoClient] = None
db: Optional[Database] = None

if _settings.database_url:
    client = MongoClient(_settings.database_url, uuidRepresentation="standard")
    db = client[_settings.database_name]
    logger.info("MongoDB client configured for database %s", _settings.database_name)
else:
    logger.warning("DATABASE_URL not set; database endpoints will return 500")


def get_db() -> Database:
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return db


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Mongo hands back naive UTC datetimes; make them comparable with aware ones."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def oid_str(oid):
    return str(oid) if isinstance(oid, ObjectId) else oid


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if doc is None:
        return None
    doc = dict(doc)
    doc["id"] = oid_str(doc.pop("_id", None))
    return doc


def create_document(db: Database, collection_name: str, data: Dict[str, Any]) -> str:
    """Insert a document stamped with created_at/updated_at and return its id."""
    doc = dict(data)
    doc_id = doc.pop("id", None) or doc.get("_id") or new_id()
    stamp = now_utc()
    doc["_id"] = doc_id
    doc.setdefault("created_at", stamp)
    doc["updated_at"] = stamp
    db[collection_name].insert_one(doc)
    return doc_id


def get_documents(
    db: Database,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    sort: Optional[List[tuple]] = None,
    limit: int = 0,
) -> List[Dict[str, Any]]:
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return [serialize_doc(d) for d in cursor]


def get_document(db: Database, collection_name: str, doc_id: str) -> Optional[Dict[str, Any]]:
    return serialize_doc(db[collection_name].find_one({"_id": doc_id}))


def require_document(db: Database, collection_name: str, doc_id: str, label: str) -> Dict[str, Any]:
    doc = get_document(db, collection_name, doc_id)
    if doc is None:
        raise NotFoundError(f"{label} with ID {doc_id} not found")
    return doc


def update_document(db: Database, collection_name: str, doc_id: str, fields: Dict[str, Any]) -> bool:
    """$set the given fields plus updated_at. Returns False when nothing matched."""
    result = db[collection_name].update_one(
        {"_id": doc_id},
        {"$set": {**fields, "updated_at": now_utc()}},
    )
    return result.matched_count > 0

"""
MongoDB access for the storefront.

A single pymongo client is created at import time from DATABASE_URL. Routes receive the
database through the `get_db` dependency so tests can swap in an in-memory one.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from fastapi import HTTPException
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database
from pydantic import BaseModel

from config import DATABASE_NAME, DATABASE_URL
from logger import get_logger

logger = get_logger("database")

client = MongoClient(DATABASE_URL) if DATABASE_URL else None
db = client[DATABASE_NAME] if client is not None else None


def get_db() -> Database:
    if db is None:
        raise HTTPException(500, "Database not configured")
    return db


def ensure_indexes(database: Database) -> None:
    """Create the unique indexes the write paths rely on."""
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["cartitem"].create_index([("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
    database["review"].create_index([("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
    database["order"].create_index([("stripe_session_id", ASCENDING)], unique=True, sparse=True)
    database["order"].create_index([("payment_intent_id", ASCENDING)], unique=True, sparse=True)
    database["order"].create_index([("user_id", ASCENDING)])
    logger.info("Indexes ensured on %s", database.name)


def now() -> datetime:
    return datetime.now(timezone.utc)


def to_object_id(id_str: str) -> Optional[ObjectId]:
    # Malformed ids can't match anything; callers treat them as missing.
    if not ObjectId.is_valid(id_str):
        return None
    return ObjectId(id_str)


def sanitize(doc: Optional[Dict]) -> Optional[Dict]:
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d


def create_document(database: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a document stamped with created_at/updated_at and return its id as a string."""
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json")
    stamp = now()
    doc = {**data, "created_at": stamp, "updated_at": stamp}
    result = database[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(
    database: Database,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    sort: Optional[List] = None,
) -> List[Dict[str, Any]]:
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    return [sanitize(doc) for doc in cursor]

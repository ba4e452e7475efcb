"""
MongoDB access helpers

The client is created once per application by `connect` and handed to the
request handlers through `get_db`; collections are addressed by the lowercase
schema name ("user", "product", "order", ...).
"""

from typing import Any, Dict, List, Optional, Union

import structlog
from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Request
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from config import Settings
from errors import NotFound
from schemas import utcnow

logger = structlog.get_logger(__name__)


def connect(settings: Settings) -> Database:
    client = MongoClient(settings.database_url, serverSelectionTimeoutMS=5000, tz_aware=True)
    logger.info("MongoDB client created", database=settings.database_name)
    return client[settings.database_name]


def get_db(request: Request) -> Database:
    return request.app.state.db


def ensure_indexes(db: Database) -> None:
    db["user"].create_index([("email", ASCENDING)], unique=True)
    db["category"].create_index([("name", ASCENDING)], unique=True)
    db["category"].create_index([("slug", ASCENDING)], unique=True)
    db["cart"].create_index([("user_id", ASCENDING)], unique=True)
    db["wishlist"].create_index([("user_id", ASCENDING)], unique=True)
    db["review"].create_index([("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
    db["order"].create_index([("user_id", ASCENDING), ("created_at", ASCENDING)])
    db["notification"].create_index([("user_id", ASCENDING), ("created_at", ASCENDING)])


def oid(id_str: str, what: str = "Resource") -> ObjectId:
    """Parse a path id; a malformed id is reported as a missing entity."""
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise NotFound(f"{what} not found")


def oid_str(value) -> str:
    return str(value) if isinstance(value, ObjectId) else value


def doc_to_public(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    doc = dict(doc)
    if "_id" in doc:
        doc["id"] = oid_str(doc.pop("_id"))
    # hide sensitive fields
    doc.pop("password_hash", None)
    return doc


def create_document(db: Database, collection: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    payload = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    now = utcnow()
    payload["created_at"] = now
    payload["updated_at"] = now
    return str(db[collection].insert_one(payload).inserted_id)


def get_documents(
    db: Database,
    collection: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    sort: Optional[List] = None,
    skip: int = 0,
) -> List[Dict[str, Any]]:
    cursor = db[collection].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if skip:
        cursor = cursor.skip(skip)
    if limit:
        cursor = cursor.limit(limit)
    return [doc_to_public(d) for d in cursor]

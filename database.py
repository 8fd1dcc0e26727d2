"""
MongoDB access for TourVista.

Collections are named after the lowercased schema class (User -> "user"),
see schemas.py. `db` is bound once by `init_db` when the app starts.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

logger = logging.getLogger(__name__)

db: Optional[Database] = None


def init_db(uri: str, name: str) -> Database:
    global db
    client = MongoClient(uri, serverSelectionTimeoutMS=5000)
    db = client[name]
    logger.info("MongoDB client configured for database %s", name)
    return db


def ensure_indexes(database: Database) -> None:
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["rating"].create_index([("tourId", ASCENDING), ("userId", ASCENDING)], unique=True)
    database["savedtour"].create_index([("user", ASCENDING), ("tour", ASCENDING)], unique=True)
    database["booking"].create_index([("user", ASCENDING), ("createdAt", ASCENDING)])
    database["booking"].create_index(
        [("user", ASCENDING), ("idempotencyKey", ASCENDING)],
        unique=True,
        partialFilterExpression={"idempotencyKey": {"$type": "string"}},
    )


def to_object_id(id_str: str) -> Optional[ObjectId]:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        return None


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    if db is None:
        raise RuntimeError("Database not initialized")
    if isinstance(data, BaseModel):
        doc = data.model_dump(by_alias=True)
    else:
        doc = dict(data)
    now = datetime.now(timezone.utc)
    doc.setdefault("createdAt", now)
    doc["updatedAt"] = now
    res = db[collection_name].insert_one(doc)
    return str(res.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                  sort: Optional[List] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    if db is None:
        raise RuntimeError("Database not initialized")
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)

"""
Database helpers

MongoDB access for the storefront. One MongoClient is opened when the app
starts and its database handle is injected into route handlers through the
``get_db`` dependency.
"""
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from dotenv import load_dotenv
from fastapi import HTTPException, Request
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient

load_dotenv()

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

NEWEST_FIRST = [("createdAt", DESCENDING), ("_id", DESCENDING)]


def connect():
    """Return (client, db) for the configured database, or (None, None)."""
    if not DATABASE_URL or not DATABASE_NAME:
        logger.warning("DATABASE_URL / DATABASE_NAME not set, running without a database")
        return None, None
    client = MongoClient(DATABASE_URL)
    logger.info("MongoDB client created for database %s", DATABASE_NAME)
    return client, client[DATABASE_NAME]


def get_db(request: Request):
    db = getattr(request.app.state, "db", None)
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return db


def ensure_indexes(db) -> None:
    db["user"].create_index("email", unique=True)
    db["category"].create_index("slug", unique=True)
    db["product"].create_index([("createdAt", DESCENDING)])
    db["product"].create_index([("category", ASCENDING)])
    db["order"].create_index([("createdAt", DESCENDING)])


def now() -> datetime:
    return datetime.now(timezone.utc)


def create_document(db, collection_name: str, data: Union[BaseModel, dict]) -> dict:
    """Insert a document stamped with createdAt/updatedAt and return it as stored."""
    if isinstance(data, BaseModel):
        doc = data.model_dump(by_alias=True)
    else:
        doc = dict(data)
    stamp = now()
    doc["createdAt"] = stamp
    doc["updatedAt"] = stamp
    result = db[collection_name].insert_one(doc)
    # re-read so datetimes come back the way the driver returns them
    return db[collection_name].find_one({"_id": result.inserted_id})


def get_documents(db, collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                  sort=None, limit: Optional[int] = None) -> List[dict]:
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def parse_object_id(value: str, entity: str) -> ObjectId:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise HTTPException(status_code=400, detail=f"Invalid {entity} id")


def serialize_doc(doc):
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.get("_id")
    if isinstance(_id, ObjectId):
        doc["id"] = str(_id)
        del doc["_id"]
    # convert datetimes
    for k, v in list(doc.items()):
        if isinstance(v, datetime):
            doc[k] = v.isoformat()
    return doc

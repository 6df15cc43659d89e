"""
Database helpers

MongoDB connection and small document helpers shared by the handlers.
The connection is configured from the environment:
- DATABASE_URL  -> MongoDB connection string
- DATABASE_NAME -> database name

When either is missing `db` stays None and every handler that needs the
database answers 500 "Database not configured".
"""

import os
from datetime import datetime, timezone
from typing import Optional

from bson import ObjectId
from bson.errors import InvalidId
from dotenv import load_dotenv
from fastapi import HTTPException
from pymongo import MongoClient
from pymongo.database import Database

load_dotenv()

USERS = "user"
PRODUCTS = "product"
ORDERS = "order"

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

_client = None
db: Optional[Database] = None

if DATABASE_URL and DATABASE_NAME:
    _client = MongoClient(DATABASE_URL)
    db = _client[DATABASE_NAME]


def get_db() -> Database:
    """FastAPI dependency returning the configured database."""
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return db


def now() -> datetime:
    return datetime.now(timezone.utc)


def to_object_id(value) -> Optional[ObjectId]:
    """Parse an opaque id; returns None for anything that isn't a valid ObjectId."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def serialize_document(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return doc
    doc = {**doc}
    if doc.get("_id") is not None:
        doc["id"] = str(doc.pop("_id"))
    # Convert nested ObjectIds if any
    for k, v in list(doc.items()):
        if isinstance(v, ObjectId):
            doc[k] = str(v)
        elif isinstance(v, list):
            doc[k] = [serialize_document(i) if isinstance(i, dict) else i for i in v]
    return doc


def create_document(database: Database, collection_name: str, data: dict) -> str:
    """Insert a document stamped with created_at/updated_at and return its id."""
    data_dict = dict(data)
    timestamp = now()
    data_dict.setdefault("created_at", timestamp)
    data_dict["updated_at"] = timestamp
    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(
    database: Database,
    collection_name: str,
    filter_dict: Optional[dict] = None,
    limit: Optional[int] = None,
    newest_first: bool = False,
) -> list:
    cursor = database[collection_name].find(filter_dict or {})
    if newest_first:
        cursor = cursor.sort([("created_at", -1), ("_id", -1)])
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)

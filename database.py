"""
Database helpers

Connects to MongoDB using DATABASE_URL / DATABASE_NAME from the environment.
Each collection is named after the lowercase schema class in schemas.py.

DATABASE_URL=mongomock:// selects an in-process store for local development.
"""
import os
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from bson import ObjectId
from dotenv import load_dotenv
from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.database import Database

from errors import DatabaseUnavailable

load_dotenv()

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "storefront")
DATABASE_TIMEOUT_MS = int(os.getenv("DATABASE_TIMEOUT_MS", "5000"))

_client = None
db: Optional[Database] = None


def connect(url: Optional[str] = DATABASE_URL, name: str = DATABASE_NAME) -> Optional[Database]:
    """Open the client once; a real server must answer a ping within the timeout."""
    global _client, db
    if not url:
        logger.warning("DATABASE_URL not set; database features disabled")
        return None
    if url.startswith("mongomock://"):
        import mongomock

        _client = mongomock.MongoClient()
        logger.info("Using in-process mongomock store (development only)")
    else:
        _client = MongoClient(url, serverSelectionTimeoutMS=DATABASE_TIMEOUT_MS)
        _client.admin.command("ping")
        logger.info("Connected to MongoDB database %s", name)
    db = _client[name]
    ensure_indexes(db)
    return db


def ensure_indexes(database: Database) -> None:
    database["user"].create_index("email", unique=True)
    database["category"].create_index("slug", unique=True)
    database["product_variant"].create_index("product_id")
    database["review"].create_index([("product_id", 1), ("created_at", -1)])
    database["order"].create_index([("user_id", 1), ("created_at", -1)])
    database["order_item"].create_index([("order_id", 1), ("line", 1)], unique=True)


def get_db() -> Database:
    """FastAPI dependency returning the configured database."""
    if db is None:
        raise DatabaseUnavailable("Database not configured")
    return db


def now() -> datetime:
    return datetime.now(timezone.utc)


def oid(value: Any) -> Optional[ObjectId]:
    """Parse an id string; None when it is not a valid ObjectId."""
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def to_public(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d


def create_document(database: Database, collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a document with created_at/updated_at stamps and return its id."""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    stamp = now()
    data_dict.setdefault("created_at", stamp)
    data_dict["updated_at"] = stamp
    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


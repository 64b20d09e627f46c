"""
MongoDB access helpers.

Each Pydantic model in schemas.py corresponds to a collection named after the
lowercased class name (class CartItem -> collection "cartitem"). References
between documents are stored as the string form of the target's ObjectId.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

import config
from logger import get_logger

logger = get_logger("database")


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what pymongo hands back from the server."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_oid(value: Any) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def serialize(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Copy a document for a JSON response, exposing _id as a string id."""
    if not doc:
        return None
    out = dict(doc)
    if "_id" in out:
        out["id"] = str(out.pop("_id"))
    return out


def create_document(db: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a document stamped with created_at/updated_at and return its id."""
    if isinstance(data, BaseModel):
        doc = data.model_dump()
    else:
        doc = dict(data)
    now = utcnow()
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    result = db[collection_name].insert_one(doc)
    return str(result.inserted_id)


def find_by_id(db: Database, collection_name: str, doc_id: Any, **extra_filter: Any) -> Optional[Dict[str, Any]]:
    oid = parse_oid(doc_id)
    if oid is None:
        return None
    return db[collection_name].find_one({"_id": oid, **extra_filter})


def ensure_indexes(db: Database) -> None:
    """Create the unique keys the collections rely on."""
    db["user"].create_index("email", unique=True)
    db["category"].create_index("name", unique=True)
    db["category"].create_index("slug", unique=True)
    db["product"].create_index("slug", unique=True)
    db["product"].create_index("sku", unique=True)
    db["product"].create_index("category_id")
    db["inventory"].create_index("product_id", unique=True)
    db["cartitem"].create_index([("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
    db["wishlistitem"].create_index([("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
    db["coupon"].create_index("code", unique=True)
    db["couponusage"].create_index(
        [("coupon_id", ASCENDING), ("user_id", ASCENDING), ("order_id", ASCENDING)], unique=True
    )
    db["order"].create_index("order_number", unique=True)
    db["review"].create_index([("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
    db["review"].create_index("product_id")
    db["order"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    db["ordertracking"].create_index([("order_id", ASCENDING), ("created_at", ASCENDING)])
    db["payment"].create_index("gateway_order_id")
    db["address"].create_index("user_id")


def connect(url: str = None, name: str = None):
    """Open a client for the configured server and return (client, database)."""
    client = MongoClient(url or config.DATABASE_URL)
    db = client[name or config.DATABASE_NAME]
    logger.info("Connected to MongoDB database %s", db.name)
    return client, db

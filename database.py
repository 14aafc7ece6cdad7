"""
MongoDB access for the API.

Collection names are the lowercase of the schema class names in schemas.py
(user, category, product, order).
"""
import os
from datetime import datetime, timezone
from typing import Any, Dict, Union

from bson import ObjectId
from bson.errors import InvalidId
from dotenv import load_dotenv
from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.database import Database

from errors import ValidationFailed

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "ecommerce")

client = MongoClient(DATABASE_URL, serverSelectionTimeoutMS=5000)
db = client[DATABASE_NAME]


def get_db() -> Database:
    return db


def ensure_indexes(database: Database):
    database["user"].create_index("email", unique=True)
    database["category"].create_index("slug", unique=True)
    database["product"].create_index("slug")
    database["order"].create_index([("buyer", 1), ("created_at", -1)])


def to_obj_id(id_str: Any, message: str = "Invalid id") -> ObjectId:
    if isinstance(id_str, ObjectId):
        return id_str
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise ValidationFailed(message)


def is_obj_id(value: Any) -> bool:
    return isinstance(value, ObjectId) or (isinstance(value, str) and ObjectId.is_valid(value))


def create_document(database: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
    doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    now = datetime.now(timezone.utc)
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    res = database[collection_name].insert_one(doc)
    doc["_id"] = res.inserted_id
    return doc


def serialize_doc(value: Any) -> Any:
    """Turn a Mongo document into JSON-safe data: `_id` -> `id`, ObjectId -> str, datetime -> ISO."""
    if isinstance(value, dict):
        out = {}
        for k, v in value.items():
            if k == "_id":
                out["id"] = serialize_doc(v)
            else:
                out[k] = serialize_doc(v)
        return out
    if isinstance(value, (list, tuple)):
        return [serialize_doc(v) for v in value]
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value

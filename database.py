"""
MongoDB connection for the marketplace.

``db`` is None when DATABASE_URL is not set; callers fall back to the
in-memory repositories in that case.
"""

import logging
import os
from datetime import datetime, timezone
from typing import Union

from pydantic import BaseModel
from pymongo import MongoClient

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "marketplace")

db = None
if DATABASE_URL:
    _client = MongoClient(DATABASE_URL)
    db = _client[DATABASE_NAME]
    logger.info("Using MongoDB database %s", DATABASE_NAME)


def ensure_indexes(database) -> None:
    database["user"].create_index("email", unique=True)
    database["product"].create_index("seller_id")
    database["product"].create_index("category")
    database["purchase_request"].create_index("buyer_id")
    database["purchase_request"].create_index("seller_id")
    database["purchase_request"].create_index("product_id")
    database["order"].create_index("user_id")


def create_document(collection_name: str, data: Union[BaseModel, dict], database=None) -> str:
    """Insert a document with created_at/updated_at stamps and return its id."""
    database = database if database is not None else db
    if database is None:
        raise RuntimeError("Database not configured")
    doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    now = datetime.now(timezone.utc)
    doc["created_at"] = now
    doc["updated_at"] = now
    result = database[collection_name].insert_one(doc)
    return str(result.inserted_id)

"""
Repositories for the four marketplace collections.

Handlers talk to a ``Repository`` per collection instead of to ``db``
directly. ``MongoRepository`` is backed by pymongo; ``MemoryRepository``
keeps documents in a dict and understands the subset of the Mongo query
language the handlers use (equality, $or, $regex, $in, $ne, $gte, $lte).

Documents come back with ``_id`` stringified.
"""

import copy
import logging
import re
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

import database

logger = logging.getLogger(__name__)

Sort = Sequence[Tuple[str, int]]


class Repository(ABC):
    def __init__(self, collection: str):
        self.collection = collection

    @abstractmethod
    def create(self, data: Union[BaseModel, dict]) -> str:
        ...

    @abstractmethod
    def get(self, doc_id: str) -> Optional[dict]:
        ...

    @abstractmethod
    def find(self, filter_dict: Optional[Dict[str, Any]] = None, sort: Optional[Sort] = None, limit: Optional[int] = None) -> List[dict]:
        ...

    @abstractmethod
    def update(self, doc_id: str, fields: Dict[str, Any], expected: Optional[Dict[str, Any]] = None) -> Optional[dict]:
        """Set ``fields`` and refresh updated_at.

        When ``expected`` is given the write only happens if the stored
        document still has those values. Returns the updated document, or
        None if nothing matched.
        """

    @abstractmethod
    def increment(self, doc_id: str, fields: Dict[str, int]) -> None:
        ...

    @abstractmethod
    def delete(self, doc_id: str) -> bool:
        ...

    def find_one(self, filter_dict: Dict[str, Any]) -> Optional[dict]:
        found = self.find(filter_dict, limit=1)
        return found[0] if found else None


def _stringify(doc: Optional[dict]) -> Optional[dict]:
    if doc is not None:
        doc["_id"] = str(doc["_id"])  # stringify
    return doc


class MongoRepository(Repository):
    def __init__(self, db, collection: str):
        super().__init__(collection)
        self.db = db

    @property
    def _coll(self):
        return self.db[self.collection]

    def create(self, data):
        return database.create_document(self.collection, data, database=self.db)

    def get(self, doc_id):
        if not ObjectId.is_valid(doc_id):
            return None
        return _stringify(self._coll.find_one({"_id": ObjectId(doc_id)}))

    def find(self, filter_dict=None, sort=None, limit=None):
        cursor = self._coll.find(filter_dict or {})
        if sort:
            cursor = cursor.sort(list(sort))
        if limit:
            cursor = cursor.limit(limit)
        return [_stringify(doc) for doc in cursor]

    def update(self, doc_id, fields, expected=None):
        if not ObjectId.is_valid(doc_id):
            return None
        query = {"_id": ObjectId(doc_id)}
        query.update(expected or {})
        update = dict(fields)
        update["updated_at"] = datetime.now(timezone.utc)
        doc = self._coll.find_one_and_update(query, {"$set": update}, return_document=ReturnDocument.AFTER)
        return _stringify(doc)

    def increment(self, doc_id, fields):
        if ObjectId.is_valid(doc_id):
            self._coll.update_one({"_id": ObjectId(doc_id)}, {"$inc": fields})

    def delete(self, doc_id):
        if not ObjectId.is_valid(doc_id):
            return False
        return self._coll.delete_one({"_id": ObjectId(doc_id)}).deleted_count == 1


def _match_condition(value: Any, condition: Any) -> bool:
    if not isinstance(condition, dict):
        return value == condition
    for op, operand in condition.items():
        if op == "$regex":
            flags = re.IGNORECASE if "i" in condition.get("$options", "") else 0
            if not isinstance(value, str) or not re.search(operand, value, flags):
                return False
        elif op == "$options":
            continue
        elif op == "$in":
            if value not in operand:
                return False
        elif op == "$ne":
            if value == operand:
                return False
        elif op == "$gte":
            if value is None or value < operand:
                return False
        elif op == "$lte":
            if value is None or value > operand:
                return False
        else:
            raise ValueError(f"Unsupported query operator: {op}")
    return True


def matches(doc: dict, filter_dict: Dict[str, Any]) -> bool:
    for key, condition in filter_dict.items():
        if key == "$or":
            if not any(matches(doc, sub) for sub in condition):
                return False
        elif key == "$and":
            if not all(matches(doc, sub) for sub in condition):
                return False
        elif not _match_condition(doc.get(key), condition):
            return False
    return True


class MemoryRepository(Repository):
    """Dict-backed repository; every read and write holds one lock."""

    def __init__(self, collection: str, unique: Sequence[str] = ()):
        super().__init__(collection)
        self.unique = tuple(unique)
        self._docs: Dict[str, dict] = {}
        self._lock = threading.Lock()

    def create(self, data):
        doc = data.model_dump() if isinstance(data, BaseModel) else copy.deepcopy(dict(data))
        with self._lock:
            for field in self.unique:
                if any(d.get(field) == doc.get(field) for d in self._docs.values()):
                    raise DuplicateKeyError(f"duplicate key: {self.collection}.{field}")
            now = datetime.now(timezone.utc)
            doc_id = str(ObjectId())
            doc["_id"] = doc_id
            doc["created_at"] = now
            doc["updated_at"] = now
            self._docs[doc_id] = doc
        return doc_id

    def get(self, doc_id):
        with self._lock:
            doc = self._docs.get(doc_id)
            return copy.deepcopy(doc) if doc is not None else None

    def find(self, filter_dict=None, sort=None, limit=None):
        with self._lock:
            # newest insert first, so that descending sorts keep ties newest-first
            docs = [d for d in reversed(list(self._docs.values())) if matches(d, filter_dict or {})]
            for field, direction in reversed(list(sort or [])):
                present = [d for d in docs if d.get(field) is not None]
                missing = [d for d in docs if d.get(field) is None]
                present.sort(key=lambda d: d[field], reverse=direction < 0)
                docs = present + missing
            if limit:
                docs = docs[:limit]
            return [copy.deepcopy(d) for d in docs]

    def update(self, doc_id, fields, expected=None):
        with self._lock:
            doc = self._docs.get(doc_id)
            if doc is None or not matches(doc, expected or {}):
                return None
            doc.update(copy.deepcopy(fields))
            doc["updated_at"] = datetime.now(timezone.utc)
            return copy.deepcopy(doc)

    def increment(self, doc_id, fields):
        with self._lock:
            doc = self._docs.get(doc_id)
            if doc is not None:
                for field, amount in fields.items():
                    doc[field] = doc.get(field, 0) + amount

    def delete(self, doc_id):
        with self._lock:
            return self._docs.pop(doc_id, None) is not None


@dataclass
class Repositories:
    users: Repository
    products: Repository
    purchase_requests: Repository
    orders: Repository


def mongo_repositories(db) -> Repositories:
    return Repositories(
        users=MongoRepository(db, "user"),
        products=MongoRepository(db, "product"),
        purchase_requests=MongoRepository(db, "purchase_request"),
        orders=MongoRepository(db, "order"),
    )


def memory_repositories() -> Repositories:
    return Repositories(
        users=MemoryRepository("user", unique=("email",)),
        products=MemoryRepository("product"),
        purchase_requests=MemoryRepository("purchase_request"),
        orders=MemoryRepository("order"),
    )


_default: Optional[Repositories] = None
_default_lock = threading.Lock()


def get_repositories() -> Repositories:
    """FastAPI dependency returning the process-wide repositories."""
    global _default
    if _default is None:
        with _default_lock:
            if _default is None:
                if database.db is not None:
                    database.ensure_indexes(database.db)
                    _default = mongo_repositories(database.db)
                else:
                    logger.warning("DATABASE_URL not set, using in-memory store")
                    _default = memory_repositories()
    return _default

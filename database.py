"""
MongoDB access for the e-learning portal.

The connection is opened at import time from DATABASE_URL / DATABASE_NAME. When
DATABASE_URL is not set, `db` stays None so the app can still start; routes that
need the database fail with "Database unavailable".
"""
import logging
import os
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from errors import Internal

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "elearning")

client: Optional[MongoClient] = None
db: Optional[Database] = None

if DATABASE_URL:
    try:
        client = MongoClient(DATABASE_URL, tz_aware=True, serverSelectionTimeoutMS=5000)
        db = client[DATABASE_NAME]
    except Exception:
        logger.exception("Could not create MongoDB client")
        client = None
        db = None


def get_db() -> Database:
    """FastAPI dependency returning the configured database."""
    if db is None:
        raise Internal("Database unavailable")
    return db


def ensure_indexes(database: Database) -> None:
    database["accounts"].create_index([("email", ASCENDING)], unique=True)
    database["accounts"].create_index([("username", ASCENDING)], unique=True)
    database["accounts"].create_index([("role", ASCENDING)])
    # at most one active enrollment per (course, student)
    database["enrollments"].create_index(
        [("courseId", ASCENDING), ("studentId", ASCENDING)],
        unique=True,
        partialFilterExpression={"status": "active"},
        name="one_active_enrollment",
    )
    database["enrollments"].create_index([("studentId", ASCENDING), ("status", ASCENDING)])
    database["examresults"].create_index([("examId", ASCENDING)])
    database["examresults"].create_index([("studentId", ASCENDING)])


def new_id() -> str:
    return str(uuid.uuid4())


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes coming back from the driver as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def create_document(database: Database, collection_name: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """Insert `data` with a fresh string id and timestamps, returning the stored document."""
    doc = dict(data)
    doc.setdefault("_id", new_id())
    doc.setdefault("createdAt", now_utc())
    doc.setdefault("updatedAt", doc["createdAt"])
    database[collection_name].insert_one(doc)
    return doc


def get_documents(
    database: Database,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    sort: Optional[List] = None,
    projection: Optional[Dict[str, Any]] = None,
) -> List[Dict[str, Any]]:
    cursor = database[collection_name].find(filter_dict or {}, projection)
    if sort:
        cursor = cursor.sort(sort)
    return list(cursor)


def get_by_ids(database: Database, collection_name: str, ids: List[str], projection=None) -> List[Dict[str, Any]]:
    """Fetch documents by id keeping the order of `ids`; missing ids are skipped."""
    if not ids:
        return []
    found = {d["_id"]: d for d in database[collection_name].find({"_id": {"$in": list(ids)}}, projection)}
    return [found[i] for i in ids if i in found]


def _serialize_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    if isinstance(value, dict):
        return serialize_doc(value)
    if isinstance(value, list):
        return [_serialize_value(v) for v in value]
    return value


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    d.pop("passwordHash", None)
    return {k: _serialize_value(v) for k, v in d.items()}

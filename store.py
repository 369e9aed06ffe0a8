"""
Entity store adapter.

Wraps one MongoDB collection per entity kind behind a small typed contract:
create / get_by_id / list / update / delete. Documents going in and out are
raw pymongo dicts; `serialize_doc` turns them into JSON-safe payloads.

Invariants:
    - Identifiers are store-generated ObjectIds and never reassigned
    - A malformed id used as an operation target is NotFound
    - A malformed id used as a filter value matches nothing
    - Updates only $set the fields they are given
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Iterator, List, Optional

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo import errors as mongo_errors

from errors import DuplicateKeyError, NotFound, StoreUnavailable
from schemas import EntityKind

logger = logging.getLogger(__name__)


def parse_object_id(value: Any) -> Optional[ObjectId]:
    """Return an ObjectId for `value`, or None if it isn't a valid id."""
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def utcnow() -> datetime:
    """Current time as MongoDB hands it back: naive UTC, millisecond precision."""
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def serialize_doc(doc: Optional[Dict[str, Any]], hidden: Iterable[str] = ()) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    out: Dict[str, Any] = {}
    for k, v in doc.items():
        if k in hidden:
            continue
        if k == "_id":
            out["id"] = str(v)
        elif isinstance(v, ObjectId):
            out[k] = str(v)
        elif isinstance(v, datetime):
            out[k] = v.isoformat()
        elif isinstance(v, dict):
            out[k] = serialize_doc(v)
        else:
            out[k] = v
    return out


@contextmanager
def store_errors(kind: EntityKind) -> Iterator[None]:
    """Translate pymongo failures into the error taxonomy."""
    try:
        yield
    except mongo_errors.DuplicateKeyError as e:
        details = getattr(e, "details", None) or {}
        fields = list((details.get("keyValue") or {}).keys()) or list(kind.unique)
        raise DuplicateKeyError(
            f"{kind.label} with this {', '.join(fields)} already exists"
        ) from e
    except mongo_errors.PyMongoError as e:
        logger.error(f"Datastore error on {kind.collection}: {e}")
        raise StoreUnavailable(str(e)) from e


class EntityStore:
    """CRUD access to the collection of one entity kind."""

    def __init__(self, database: Any, kind: EntityKind):
        self.database = database
        self.kind = kind

    @property
    def collection(self):
        if self.database is None:
            raise StoreUnavailable("Database not available")
        return self.database[self.kind.collection]

    def _not_found(self) -> NotFound:
        return NotFound(f"{self.kind.label} not found")

    def create(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        doc = dict(fields)
        if self.kind.timestamps:
            now = utcnow()
            doc["createdAt"] = now
            doc["updatedAt"] = now
        with store_errors(self.kind):
            inserted_id = self.collection.insert_one(doc).inserted_id
        doc["_id"] = inserted_id
        logger.debug(f"Created {self.kind.name} {inserted_id}")
        return doc

    def get_by_id(self, entity_id: Any) -> Dict[str, Any]:
        oid = parse_object_id(entity_id)
        if oid is None:
            raise self._not_found()
        with store_errors(self.kind):
            doc = self.collection.find_one({"_id": oid})
        if doc is None:
            raise self._not_found()
        return doc

    def list(self, filter: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Exact-match listing. An absent filter returns every entity."""
        query: Dict[str, Any] = {}
        for key, value in (filter or {}).items():
            if key == "_id" or key in self.kind.reference_fields:
                oid = parse_object_id(value)
                if oid is None:
                    logger.debug(f"Ignoring {self.kind.name} filter on invalid id {key}={value!r}")
                    return []
                value = oid
            query[key] = value
        with store_errors(self.kind):
            return list(self.collection.find(query).sort(list(self.kind.sort)))

    def update(self, entity_id: Any, fields: Dict[str, Any]) -> Dict[str, Any]:
        oid = parse_object_id(entity_id)
        if oid is None:
            raise self._not_found()
        if not fields:
            return self.get_by_id(oid)
        update = dict(fields)
        if self.kind.timestamps:
            update["updatedAt"] = utcnow()
        with store_errors(self.kind):
            doc = self.collection.find_one_and_update(
                {"_id": oid}, {"$set": update}, return_document=ReturnDocument.AFTER
            )
        if doc is None:
            raise self._not_found()
        return doc

    def delete(self, entity_id: Any) -> Dict[str, Any]:
        oid = parse_object_id(entity_id)
        if oid is None:
            raise self._not_found()
        with store_errors(self.kind):
            doc = self.collection.find_one_and_delete({"_id": oid})
        if doc is None:
            raise self._not_found()
        return doc

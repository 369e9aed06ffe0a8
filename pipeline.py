"""
Mutation pipeline.

One request goes Validated -> Persisted -> Resolved -> Published. Payloads
arrive already validated against the kind's input model. A failure at any
stage raises an EntityError and nothing is published; a publish failure is
logged and never fails the request.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from blobs import LocalBlobStore
from broadcaster import ChangeBroadcaster
from errors import EntityError
from resolver import ReferenceResolver
from schemas import ENTITY_KINDS, EntityInput, EntityKind
from store import EntityStore, parse_object_id, serialize_doc

logger = logging.getLogger(__name__)


class MutationPipeline:
    def __init__(
        self,
        database: Any,
        broadcaster: ChangeBroadcaster,
        blob_store: Optional[LocalBlobStore] = None,
    ):
        self.database = database
        self.broadcaster = broadcaster
        self.blob_store = blob_store
        self.resolver = ReferenceResolver(database)
        self.stores: Dict[str, EntityStore] = {
            kind.name: EntityStore(database, kind) for kind in ENTITY_KINDS
        }

    def store(self, kind: EntityKind) -> EntityStore:
        return self.stores[kind.name]

    # Read path

    def list(self, kind: EntityKind, filter: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        docs = self.store(kind).list(filter)
        docs = self.resolver.resolve_many(kind, docs)
        return [serialize_doc(d, kind.hidden) for d in docs]

    def get(self, kind: EntityKind, entity_id: str) -> Dict[str, Any]:
        doc = self.store(kind).get_by_id(entity_id)
        return serialize_doc(self.resolver.resolve(kind, doc), kind.hidden)

    # Mutations

    def create(self, kind: EntityKind, payload: EntityInput, upload: Any = None) -> Dict[str, Any]:
        fields = self._document(kind, payload, upload, partial=False)
        doc = self._persist(kind, fields, upload, self.store(kind).create)
        data = self._resolved(kind, doc)
        self._publish(kind.created_event, data)
        return data

    def update(self, kind: EntityKind, entity_id: str, payload: EntityInput, upload: Any = None) -> Dict[str, Any]:
        store = self.store(kind)
        if upload is not None:
            # Don't write a blob for a missing target.
            store.get_by_id(entity_id)
        fields = self._document(kind, payload, upload, partial=True)
        doc = self._persist(kind, fields, upload, lambda f: store.update(entity_id, f))
        data = self._resolved(kind, doc)
        self._publish(kind.updated_event, data)
        return data

    def delete(self, kind: EntityKind, entity_id: str) -> Dict[str, Any]:
        doc = self.store(kind).delete(entity_id)
        data = serialize_doc(doc, kind.hidden)
        self._publish(kind.deleted_event, data)
        return data

    def _document(self, kind: EntityKind, payload: EntityInput, upload: Any, partial: bool) -> Dict[str, Any]:
        fields = payload.to_document(partial=partial)
        for name in kind.reference_fields:
            if fields.get(name) is not None:
                fields[name] = parse_object_id(fields[name])
        if kind.image_field:
            if upload is not None and self.blob_store is not None:
                fields[kind.image_field] = self.blob_store.save(upload)
            elif not partial:
                fields[kind.image_field] = None
        return fields

    def _persist(
        self,
        kind: EntityKind,
        fields: Dict[str, Any],
        upload: Any,
        write: Callable[[Dict[str, Any]], Dict[str, Any]],
    ) -> Dict[str, Any]:
        """Run the store write; a blob stored for a failed write is removed."""
        try:
            return write(fields)
        except EntityError:
            filename = fields.get(kind.image_field) if kind.image_field else None
            if upload is not None and filename and self.blob_store is not None:
                self.blob_store.remove(filename)
            raise

    def _resolved(self, kind: EntityKind, doc: Dict[str, Any]) -> Dict[str, Any]:
        # `doc` is the committed entity; only its references are fetched.
        return serialize_doc(self.resolver.resolve(kind, doc), kind.hidden)

    def _publish(self, event: Optional[str], data: Dict[str, Any]) -> None:
        if not event:
            return
        try:
            delivered = self.broadcaster.publish(event, data)
        except Exception:
            logger.exception(f"Broadcast of {event} failed")
            return
        if not delivered:
            logger.debug(f"No observers connected for {event}")

"""
Reference resolution for the read path.

Stored reference fields always hold plain ObjectIds. On the way out they are
replaced by the referenced document (or a projection of it), or by None when
the target no longer exists.
"""

import logging
from typing import Any, Dict, List

from schemas import EntityKind
from store import parse_object_id, store_errors

logger = logging.getLogger(__name__)


class ReferenceResolver:
    def __init__(self, database: Any):
        self.database = database

    def resolve(self, kind: EntityKind, doc: Dict[str, Any]) -> Dict[str, Any]:
        return self.resolve_many(kind, [doc])[0]

    def resolve_many(self, kind: EntityKind, docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Expand every reference field of `docs`. Issues one query per field."""
        resolved = [dict(d) for d in docs]
        if not kind.references or not resolved:
            return resolved

        for ref in kind.references:
            ids = {parse_object_id(d.get(ref.field)) for d in resolved}
            ids.discard(None)
            found: Dict[Any, Dict[str, Any]] = {}
            if ids:
                projection = {name: 1 for name in ref.projection} if ref.projection else None
                with store_errors(ref.target):
                    cursor = self.database[ref.target.collection].find(
                        {"_id": {"$in": list(ids)}}, projection
                    )
                    for target in cursor:
                        found[target["_id"]] = target
            for d in resolved:
                oid = parse_object_id(d.get(ref.field))
                d[ref.field] = found.get(oid) if oid is not None else None
                if oid is not None and d[ref.field] is None:
                    logger.debug(f"Dangling {kind.name}.{ref.field} -> {oid}")
        return resolved

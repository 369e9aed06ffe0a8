"""
Unit tests for reference resolution.
"""

import pytest
from bson import ObjectId

from resolver import ReferenceResolver
from schemas import CATEGORY, FAQ, PRODUCT, SUBCATEGORY
from store import EntityStore


class TestReferenceResolver:
    """Tests for ReferenceResolver."""

    @pytest.fixture
    def resolver(self, database):
        return ReferenceResolver(database)

    @pytest.fixture
    def shoes(self, database):
        return EntityStore(database, CATEGORY).create({"name": "Shoes", "status": "Active", "image": "a.png"})

    def test_full_expansion(self, database, resolver, shoes):
        """Subcategory.categoryId expands to the whole Category."""
        sub = EntityStore(database, SUBCATEGORY).create({"name": "Sneakers", "categoryId": shoes["_id"]})

        resolved = resolver.resolve(SUBCATEGORY, sub)

        assert resolved["categoryId"] == shoes

    def test_name_projection(self, database, resolver, shoes):
        """Product references only carry the referenced name."""
        sub = EntityStore(database, SUBCATEGORY).create({"name": "Sneakers", "categoryId": shoes["_id"]})
        product = EntityStore(database, PRODUCT).create(
            {"name": "Runner", "categoryId": shoes["_id"], "subcategoryId": sub["_id"]}
        )

        resolved = resolver.resolve(PRODUCT, product)

        assert resolved["categoryId"] == {"_id": shoes["_id"], "name": "Shoes"}
        assert resolved["subcategoryId"] == {"_id": sub["_id"], "name": "Sneakers"}

    def test_dangling_reference_becomes_none(self, database, resolver):
        product = EntityStore(database, PRODUCT).create({"name": "Orphan", "categoryId": ObjectId()})

        assert resolver.resolve(PRODUCT, product)["categoryId"] is None

    def test_absent_reference_becomes_none(self, database, resolver):
        product = EntityStore(database, PRODUCT).create({"name": "Loose"})

        resolved = resolver.resolve(PRODUCT, product)

        assert resolved["categoryId"] is None
        assert resolved["subcategoryId"] is None

    def test_does_not_mutate_stored_document(self, database, resolver, shoes):
        store = EntityStore(database, SUBCATEGORY)
        sub = store.create({"name": "Sneakers", "categoryId": shoes["_id"]})

        resolver.resolve(SUBCATEGORY, sub)

        assert sub["categoryId"] == shoes["_id"]
        assert store.get_by_id(sub["_id"])["categoryId"] == shoes["_id"]

    def test_resolve_many(self, database, resolver):
        categories = EntityStore(database, CATEGORY)
        a = categories.create({"name": "A"})
        b = categories.create({"name": "B"})
        subs = EntityStore(database, SUBCATEGORY)
        docs = [
            subs.create({"name": "a1", "categoryId": a["_id"]}),
            subs.create({"name": "b1", "categoryId": b["_id"]}),
            subs.create({"name": "a2", "categoryId": a["_id"]}),
        ]

        resolved = resolver.resolve_many(SUBCATEGORY, docs)

        assert [d["categoryId"]["name"] for d in resolved] == ["A", "B", "A"]

    def test_kind_without_references_passes_through(self, resolver):
        doc = {"_id": ObjectId(), "title": "Shipping?", "description": "Yes"}

        assert resolver.resolve(FAQ, doc) == doc

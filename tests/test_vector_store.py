"""
Tests for the Qdrant service index.
"""
import unittest
import sys
import os
import logging

from qdrant_client import QdrantClient

# Add parent directory to path to allow imports
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from data.catalog import JsonCatalogStore
from models.predicates import Equals, Pattern
from models.provider import Provider
from vectordb.vector_store import QdrantServiceIndex, service_point_id

# Disable logging during tests
logging.disable(logging.CRITICAL)

DOCUMENTS = [
    {
        "_id": "free-clinic",
        "name": "Free Clinic",
        "state": "TX",
        "insurance": {"medicaid": True},
        "services": [
            {"name": "STI Testing", "is_free": True, "embedding": [1.0, 0.0, 0.0, 0.0]},
            {"name": "Flu Shot", "is_free": True, "embedding": [0.0, 1.0, 0.0, 0.0]},
        ],
    },
    {
        "_id": "paid-clinic",
        "name": "Paid Clinic",
        "state": "DC",
        "insurance": {"medicaid": False},
        "services": [
            {"name": "STI Panel", "embedding": [0.9, 0.1, 0.0, 0.0]},
            {"name": "Consult"},
        ],
    },
]


class TestQdrantServiceIndex(unittest.TestCase):
    """Tests for QdrantServiceIndex against an in-memory Qdrant."""

    def setUp(self):
        self.index = QdrantServiceIndex(
            collection_name="test_services",
            client=QdrantClient(":memory:"),
            dimension=4
        )
        self.providers = [Provider.model_validate(doc) for doc in DOCUMENTS]

    def test_only_embedded_services_are_indexed(self):
        """Services without an embedding are skipped."""
        self.assertEqual(self.index.add_providers(self.providers), 3)
        self.assertEqual(self.index.get_count(), 3)

    def test_reindexing_is_idempotent(self):
        self.index.add_providers(self.providers)
        self.index.add_providers(self.providers)
        self.assertEqual(self.index.get_count(), 3)
        self.assertEqual(service_point_id("a", 0), service_point_id("a", 0))
        self.assertNotEqual(service_point_id("a", 0), service_point_id("a", 1))

    def test_search_collapses_services_to_providers(self):
        """The best service score represents its provider."""
        self.index.add_providers(self.providers)

        results = self.index.search([1.0, 0.0, 0.0, 0.0], k=10)

        self.assertEqual([provider_id for provider_id, _ in results], ["free-clinic", "paid-clinic"])
        self.assertAlmostEqual(results[0][1], 1.0, places=4)

    def test_search_applies_payload_filters(self):
        self.index.add_providers(self.providers)

        results = self.index.search([1.0, 0.0, 0.0, 0.0], k=10, predicates=[Equals("insurance.medicaid", False)])
        self.assertEqual([provider_id for provider_id, _ in results], ["paid-clinic"])

        results = self.index.search([1.0, 0.0, 0.0, 0.0], k=10,
                                    predicates=[Equals("state", "tx", case_insensitive=True)])
        self.assertEqual([provider_id for provider_id, _ in results], ["free-clinic"])

    def test_build_filter_skips_non_equality(self):
        self.assertIsNone(QdrantServiceIndex.build_filter([Pattern(("name",), ("clinic",))]))
        self.assertIsNone(QdrantServiceIndex.build_filter([Equals("rating", 5.0)]))

        query_filter = QdrantServiceIndex.build_filter([Equals("services.is_free", True)])
        self.assertEqual(query_filter.must[0].key, "is_free")


class TestCatalogWithIndex(unittest.IsolatedAsyncioTestCase):
    """The JSON catalog delegates vector lookups to an attached index."""

    async def test_similar_services_uses_index(self):
        index = QdrantServiceIndex(collection_name="catalog_services", client=QdrantClient(":memory:"), dimension=4)
        catalog = JsonCatalogStore(documents=DOCUMENTS, vector_index=index)

        self.assertEqual(catalog.index_services(), 3)
        hits = await catalog.similar_services([0.0, 1.0, 0.0, 0.0], 5, [Equals("services.is_free", True)])

        self.assertEqual(hits[0][0], "free-clinic")
        self.assertNotIn("paid-clinic", [provider_id for provider_id, _ in hits])


if __name__ == '__main__':
    unittest.main()

"""
Tests for the HTTP API.
"""
import unittest
import sys
import os
import logging

from fastapi.testclient import TestClient

# Add parent directory to path to allow imports
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from api.main import app, get_discovery_service
from data.catalog import JsonCatalogStore
from pipeline.state_extraction import SignalExtractor
from services.conversation_service import ConversationService
from services.discovery_service import DiscoveryService
from utils.errors import CatalogQueryError
from utils.monitoring import DiscoveryMonitor

# Disable logging during tests
logging.disable(logging.CRITICAL)

DOCUMENTS = [
    {
        "_id": "main-street",
        "name": "Main Street Community Clinic",
        "city": "Austin",
        "state": "TX",
        "location": {"type": "Point", "coordinates": [-97.7431, 30.2672]},
        "insurance": {"medicaid": True, "self_pay_options": True},
        "ssn_required": False,
        "services": [
            {"name": "STI Testing", "category": "Sexual Health", "is_free": True, "embedding": [0.1, 0.2]},
        ],
    },
    {
        "_id": "capitol-dental",
        "name": "Capitol Dental Care",
        "city": "Austin",
        "state": "TX",
        "insurance": {"medicaid": False},
        "ssn_required": True,
        "services": [
            {"name": "Dental Cleaning", "category": "Dental", "price": {"min": 75, "max": 150}},
        ],
    },
]


class NoEmbedder:
    async def embed(self, text):
        return [0.0, 0.0]


class NoGeocoder:
    async def forward(self, text):
        return None


class FailingCatalog(JsonCatalogStore):

    async def find(self, predicates, limit):
        raise CatalogQueryError("catalog unavailable")


def make_service(catalog=None):
    return DiscoveryService(
        catalog=catalog or JsonCatalogStore(documents=DOCUMENTS),
        embedder=NoEmbedder(),
        geocoder=NoGeocoder(),
        extractor=SignalExtractor(use_llm=False),
        monitor=DiscoveryMonitor(),
        conversation_service=ConversationService(),
    )


class TestAPI(unittest.TestCase):
    """Tests for the discovery endpoints."""

    def setUp(self):
        self.service = make_service()
        app.dependency_overrides[get_discovery_service] = lambda: self.service
        self.client = TestClient(app)

    def tearDown(self):
        app.dependency_overrides.clear()

    def test_root_and_health(self):
        self.assertEqual(self.client.get("/").status_code, 200)

        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "healthy")
        self.assertIn("use_semantic_search", response.json()["features"])

    def test_search(self):
        """A search returns sanitized providers and the new state."""
        response = self.client.post("/copilot/search", json={"query": "free sti testing"})

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual([p["id"] for p in body["providers"]], ["main-street"])
        self.assertTrue(body["new_state"]["free_only"])
        self.assertNotIn("embedding", body["providers"][0]["services"][0])
        self.assertIsNone(body["session_id"])

    def test_search_with_state(self):
        response = self.client.post("/copilot/search", json={
            "query": "dental",
            "state": {"accepts_medicaid": True},
        })
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["providers"], [])
        self.assertTrue(response.json()["new_state"]["accepts_medicaid"])

    def test_session_round_trip(self):
        """The session-id header carries state between requests."""
        headers = {"session-id": "abc"}
        self.client.post("/copilot/search", json={"query": "free sti testing"}, headers=headers)
        response = self.client.post("/copilot/search", json={"query": "medicaid"}, headers=headers)

        body = response.json()
        self.assertEqual(body["session_id"], "abc")
        self.assertTrue(body["new_state"]["free_only"])
        self.assertTrue(body["new_state"]["accepts_medicaid"])

        self.assertEqual(self.client.delete("/copilot/session/abc").status_code, 200)
        self.assertEqual(self.client.delete("/copilot/session/abc").status_code, 404)

    def test_filter(self):
        response = self.client.post("/copilot/filter", json={"filters": {"ssn_required": False}})

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["provider_count"], 1)
        self.assertEqual(body["filters_applied"], {"ssn_required": False})

    def test_invalid_filters_are_rejected(self):
        """Malformed filters map to 422."""
        response = self.client.post("/copilot/filter", json={"filters": {"max_price": -5}})
        self.assertEqual(response.status_code, 422)

        response = self.client.post("/copilot/search", json={"query": "dental", "max_distance": -1})
        self.assertEqual(response.status_code, 422)

    def test_unknown_filter_keys_are_rejected(self):
        """A misspelled key is an error, not an unconstrained search."""
        response = self.client.post(
            "/copilot/filter",
            json={"filters": {"maxPrice": 10, "acceptsMedicaid": True}}
        )
        self.assertEqual(response.status_code, 422)

    def test_catalog_failure_maps_to_502(self):
        self.service = make_service(FailingCatalog(documents=DOCUMENTS))

        response = self.client.post("/copilot/search", json={"query": "dental"})
        self.assertEqual(response.status_code, 502)

    def test_provider_lookup(self):
        response = self.client.post("/copilot/provider", json={"name": "capitol dental"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["providers"][0]["id"], "capitol-dental")

    def test_metrics(self):
        self.client.post("/copilot/search", json={"query": "medicaid"})

        response = self.client.get("/metrics")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["requests_processed"], 1)
        self.assertEqual(response.json()["route_distribution"]["filter_only"], 1)


if __name__ == '__main__':
    unittest.main()

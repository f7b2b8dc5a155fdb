"""
Tests for the embedding provider and its cache.
"""
import asyncio
import unittest
import sys
import os
import logging

import httpx

# Add parent directory to path to allow imports
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from vectordb.embeddings import EmbeddingCache, EmbeddingProvider, cosine_similarity, is_zero_vector

# Disable logging during tests
logging.disable(logging.CRITICAL)

DIM = 8


class CountingHandler:
    """httpx MockTransport handler that records calls."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        response = self.responses[min(len(self.calls), len(self.responses)) - 1]
        if isinstance(response, Exception):
            raise response
        return response


def make_provider(handler, cache=None, **kwargs):
    return EmbeddingProvider(
        endpoint="https://embeddings.test/embed",
        api_key="test-key",
        dimension=DIM,
        timeout=1.0,
        max_retries=kwargs.pop("max_retries", 2),
        backoff_base=0.0,
        cache=cache or EmbeddingCache(capacity=10),
        transport=httpx.MockTransport(handler),
        **kwargs
    )


class TestEmbeddingCache(unittest.TestCase):
    """Tests for the LRU cache."""

    def test_lru_eviction(self):
        """The least recently used entry goes first."""
        cache = EmbeddingCache(capacity=2)
        cache.set("a", [1.0])
        cache.set("b", [2.0])
        cache.get("a")
        cache.set("c", [3.0])

        self.assertIn("a", cache)
        self.assertNotIn("b", cache)
        self.assertIn("c", cache)
        self.assertEqual(len(cache), 2)

    def test_clear(self):
        cache = EmbeddingCache(capacity=2)
        cache.set("a", [1.0])
        cache.clear()
        self.assertIsNone(cache.get("a"))


class TestEmbeddingProvider(unittest.IsolatedAsyncioTestCase):
    """Tests for EmbeddingProvider."""

    async def test_cache_hit_skips_network(self):
        """Repeated text (after normalization) triggers one request."""
        handler = CountingHandler([httpx.Response(200, json={"vector": [0.1] * DIM})])
        provider = make_provider(handler)

        first = await provider.embed("  Free STI   Testing ")
        second = await provider.embed("free sti testing")

        self.assertEqual(first, second)
        self.assertEqual(len(handler.calls), 1)
        self.assertEqual(handler.calls[0].headers["authorization"], "Bearer test-key")

    async def test_openai_style_payload(self):
        handler = CountingHandler([httpx.Response(200, json={"data": [{"embedding": [0.5] * DIM}]})])
        vector = await make_provider(handler).embed("dental")
        self.assertEqual(vector, [0.5] * DIM)

    async def test_retries_then_succeeds(self):
        """A transient failure is retried."""
        handler = CountingHandler([
            httpx.Response(503),
            httpx.Response(200, json={"vector": [0.2] * DIM}),
        ])
        vector = await make_provider(handler).embed("vision")

        self.assertEqual(vector, [0.2] * DIM)
        self.assertEqual(len(handler.calls), 2)

    async def test_all_attempts_fail_returns_zero_vector(self):
        """Network failure on every attempt yields a zero vector, never an exception."""
        handler = CountingHandler([httpx.ConnectError("boom")])
        cache = EmbeddingCache(capacity=10)
        vector = await make_provider(handler, cache=cache).embed("pharmacy")

        self.assertEqual(vector, [0.0] * DIM)
        self.assertTrue(is_zero_vector(vector))
        self.assertEqual(len(handler.calls), 3)
        self.assertEqual(len(cache), 0)

    async def test_dimension_mismatch_is_a_failure(self):
        handler = CountingHandler([httpx.Response(200, json={"vector": [0.1, 0.2]})])
        vector = await make_provider(handler, max_retries=0).embed("therapy")

        self.assertEqual(vector, [0.0] * DIM)
        self.assertEqual(len(handler.calls), 1)

    async def test_empty_text_and_missing_endpoint(self):
        """No network call without text or without an endpoint."""
        handler = CountingHandler([httpx.Response(200, json={"vector": [0.1] * DIM})])
        self.assertEqual(await make_provider(handler).embed("   "), [0.0] * DIM)

        unconfigured = EmbeddingProvider(endpoint="", dimension=DIM, cache=EmbeddingCache(capacity=2))
        self.assertEqual(await unconfigured.embed("dental"), [0.0] * DIM)
        self.assertEqual(len(handler.calls), 0)

    async def test_cancellation_propagates(self):
        """Cancelling the caller stops the request without retrying."""
        started = asyncio.Event()

        async def slow_handler(request):
            started.set()
            await asyncio.sleep(10)
            return httpx.Response(200, json={"vector": [0.1] * DIM})

        provider = EmbeddingProvider(
            endpoint="https://embeddings.test/embed",
            dimension=DIM,
            timeout=30.0,
            backoff_base=0.0,
            cache=EmbeddingCache(capacity=2),
            transport=httpx.MockTransport(slow_handler),
        )
        task = asyncio.create_task(provider.embed("dental"))
        await started.wait()
        task.cancel()

        with self.assertRaises(asyncio.CancelledError):
            await task


class TestCosineSimilarity(unittest.TestCase):

    def test_cosine(self):
        self.assertAlmostEqual(cosine_similarity([1.0, 0.0], [1.0, 0.0]), 1.0)
        self.assertAlmostEqual(cosine_similarity([1.0, 0.0], [0.0, 1.0]), 0.0)
        self.assertEqual(cosine_similarity([0.0, 0.0], [1.0, 0.0]), 0.0)
        self.assertEqual(cosine_similarity([1.0], [1.0, 0.0]), 0.0)


if __name__ == '__main__':
    unittest.main()

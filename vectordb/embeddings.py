"""
Embedding generation for search text, with an in-process LRU cache.
"""
import asyncio
import logging
import re
import threading
from collections import OrderedDict
from typing import Any, Dict, List, Optional

import httpx
import numpy as np

from config import EMBEDDING_CONFIG

logger = logging.getLogger(__name__)


def is_zero_vector(vector: Optional[List[float]]) -> bool:
    """An all-zero (or missing) vector carries no semantic signal."""
    return not vector or not any(vector)


def cosine_similarity(a: List[float], b: List[float]) -> float:
    """Cosine similarity of two vectors; 0.0 when either is empty, zero or mismatched."""
    if not a or not b or len(a) != len(b):
        return 0.0
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    norm = np.linalg.norm(va) * np.linalg.norm(vb)
    if norm == 0:
        return 0.0
    return float(np.dot(va, vb) / norm)


class EmbeddingCache:
    """
    Bounded LRU cache of normalized text -> embedding.
    Shared across requests; every access goes through a lock.
    """

    def __init__(self, capacity: Optional[int] = None):
        self.capacity = capacity or EMBEDDING_CONFIG["cache_capacity"]
        self._entries: "OrderedDict[str, List[float]]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[List[float]]:
        with self._lock:
            vector = self._entries.get(key)
            if vector is not None:
                self._entries.move_to_end(key)
            return vector

    def set(self, key: str, vector: List[float]):
        with self._lock:
            self._entries[key] = vector
            self._entries.move_to_end(key)
            while len(self._entries) > self.capacity:
                self._entries.popitem(last=False)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries


class EmbeddingProvider:
    """Client for the remote embedding endpoint."""

    def __init__(self,
                 endpoint: Optional[str] = None,
                 api_key: Optional[str] = None,
                 model: Optional[str] = None,
                 dimension: Optional[int] = None,
                 timeout: Optional[float] = None,
                 max_retries: Optional[int] = None,
                 backoff_base: Optional[float] = None,
                 cache: Optional[EmbeddingCache] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Initialize the embedding provider.

        Args:
            endpoint: URL accepting ``POST {"text": ...}``; falls back to config
            api_key: Optional key sent as a bearer token
            model: Model name forwarded to the endpoint
            dimension: Expected vector length
            timeout: Hard timeout per attempt in seconds
            max_retries: Retries after the first attempt
            backoff_base: Base delay for exponential backoff in seconds
            cache: Shared embedding cache
            transport: Optional httpx transport (tests inject a mock)
        """
        self.endpoint = endpoint if endpoint is not None else EMBEDDING_CONFIG["endpoint"]
        self.api_key = api_key if api_key is not None else EMBEDDING_CONFIG["api_key"]
        self.model = model or EMBEDDING_CONFIG["model"]
        self.dimension = dimension or EMBEDDING_CONFIG["dimension"]
        self.timeout = timeout if timeout is not None else EMBEDDING_CONFIG["timeout"]
        self.max_retries = max_retries if max_retries is not None else EMBEDDING_CONFIG["max_retries"]
        self.backoff_base = backoff_base if backoff_base is not None else EMBEDDING_CONFIG["backoff_base"]
        self.cache = cache if cache is not None else EmbeddingCache()
        self.transport = transport
        logger.info(f"Initializing embedding provider (model={self.model}, dimension={self.dimension})")

    @staticmethod
    def normalize_text(text: Optional[str]) -> str:
        """Trim, lower-case and collapse whitespace; the result is the cache key."""
        return re.sub(r"\s+", " ", (text or "").strip().lower())

    def zero_vector(self) -> List[float]:
        return [0.0] * self.dimension

    async def embed(self, text: Optional[str]) -> List[float]:
        """
        Embed a piece of text.

        Never raises on endpoint failures: after the last attempt a zero
        vector is returned. Cancellation propagates immediately.

        Args:
            text: Raw text to embed

        Returns:
            Vector of the configured dimension
        """
        key = self.normalize_text(text)
        if not key:
            return self.zero_vector()

        cached = self.cache.get(key)
        if cached is not None:
            logger.debug(f"Embedding cache hit for: '{key}'")
            return cached

        if not self.endpoint:
            logger.warning("Embedding endpoint not configured, using zero vector")
            return self.zero_vector()

        attempts = self.max_retries + 1
        async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout) as client:
            for attempt in range(attempts):
                try:
                    vector = await self._request_embedding(client, key)
                    self.cache.set(key, vector)
                    return vector
                except Exception as e:
                    if attempt + 1 >= attempts:
                        logger.error(f"Embedding failed after {attempts} attempts: {str(e)}")
                        break
                    delay = self.backoff_base * (2 ** attempt)
                    logger.warning(f"Embedding attempt {attempt + 1} failed ({str(e)}), retrying in {delay:.2f}s")
                    await asyncio.sleep(delay)

        return self.zero_vector()

    async def _request_embedding(self, client: httpx.AsyncClient, text: str) -> List[float]:
        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        response = await asyncio.wait_for(
            client.post(self.endpoint, json={"text": text, "model": self.model}, headers=headers),
            timeout=self.timeout,
        )
        response.raise_for_status()
        vector = self._parse_vector(response.json())

        if len(vector) != self.dimension:
            raise ValueError(f"Embedding dimension mismatch: expected {self.dimension}, got {len(vector)}")
        return vector

    @staticmethod
    def _parse_vector(payload: Dict[str, Any]) -> List[float]:
        """Accept ``{"vector": [...]}`` or ``{"data": [{"embedding": [...]}]}``."""
        if isinstance(payload, dict):
            if isinstance(payload.get("vector"), list):
                return [float(x) for x in payload["vector"]]
            data = payload.get("data")
            if isinstance(data, list) and data and isinstance(data[0], dict):
                embedding = data[0].get("embedding")
                if isinstance(embedding, list):
                    return [float(x) for x in embedding]
        raise ValueError("Malformed embedding payload")

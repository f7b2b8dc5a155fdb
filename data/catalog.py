"""
Provider catalog access for the discovery engine.

The engine only reads the catalog; ingestion and persistence live elsewhere.
"""
import asyncio
import json
import logging
import os
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from pydantic import ValidationError

from config import CATALOG_CONFIG
from models.predicates import Equals, matches_all
from models.provider import Provider
from utils.errors import CatalogQueryError
from vectordb.embeddings import cosine_similarity

logger = logging.getLogger(__name__)


def document_id(document: Dict[str, Any]) -> Optional[str]:
    """Catalog documents carry either ``id`` or ``_id``."""
    value = document.get("id", document.get("_id"))
    return str(value) if value is not None else None


def to_provider(document: Dict[str, Any]) -> Optional[Provider]:
    """Validate a raw document; malformed documents are skipped."""
    try:
        return Provider.model_validate(document)
    except ValidationError as e:
        logger.warning(f"Skipping malformed provider document {document_id(document)}: {e.error_count()} errors")
        return None


class CatalogStore:
    """Read interface of a provider catalog."""

    async def find(self, predicates: Sequence, limit: int) -> List[Provider]:
        """Providers satisfying every predicate, at most ``limit``."""
        raise NotImplementedError

    async def get_many(self, ids: Iterable[str]) -> List[Provider]:
        """Providers by id, in the order requested; unknown ids are skipped."""
        raise NotImplementedError

    async def similar_services(self,
                               vector: List[float],
                               k: int,
                               predicates: Sequence = ()) -> List[Tuple[str, float]]:
        """(provider_id, score) of the providers whose services are nearest the vector."""
        raise NotImplementedError


class JsonCatalogStore(CatalogStore):
    """
    Catalog backed by a JSON file (or an in-memory document list).

    Vector lookups go to a Qdrant service index when one is attached,
    otherwise service embeddings stored on the documents are scanned.
    """

    def __init__(self,
                 data_file: Optional[str] = None,
                 documents: Optional[List[Dict[str, Any]]] = None,
                 vector_index=None):
        """
        Initialize the catalog.

        Args:
            data_file: Path to the provider JSON file
            documents: Raw documents, bypassing the file
            vector_index: Optional QdrantServiceIndex
        """
        self.data_file = data_file or CATALOG_CONFIG["data_file"]
        self.vector_index = vector_index
        if documents is not None:
            self._documents = list(documents)
        else:
            self._documents = self._load_documents()
        self._by_id = {document_id(doc): doc for doc in self._documents if document_id(doc) is not None}
        logger.info(f"Provider catalog ready with {len(self._documents)} documents")

    def _load_documents(self) -> List[Dict[str, Any]]:
        """Load documents from the data file."""
        if not os.path.exists(self.data_file):
            logger.warning(f"Provider data file not found: {self.data_file}")
            return []

        try:
            with open(self.data_file, 'r') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Error loading providers: {str(e)}")
            raise CatalogQueryError(f"Could not load provider catalog from {self.data_file}") from e

        if isinstance(data, dict):
            data = data.get("providers", [])
        if not isinstance(data, list):
            raise CatalogQueryError(f"Unexpected provider catalog format in {self.data_file}")

        logger.info(f"Loaded {len(data)} providers from {self.data_file}")
        return data

    def __len__(self) -> int:
        return len(self._documents)

    def all_providers(self) -> List[Provider]:
        """Every valid provider in the catalog."""
        return [provider for provider in map(to_provider, self._documents) if provider is not None]

    async def find(self, predicates: Sequence, limit: int) -> List[Provider]:
        try:
            results = []
            for document in self._documents:
                if len(results) >= limit:
                    break
                if not matches_all(document, predicates):
                    continue
                provider = to_provider(document)
                if provider is not None:
                    results.append(provider)
        except Exception as e:
            logger.error(f"Catalog attribute query failed: {str(e)}")
            raise CatalogQueryError(f"Catalog attribute query failed: {str(e)}") from e

        logger.info(f"Attribute query matched {len(results)} providers ({len(predicates)} predicates)")
        return results

    async def get_many(self, ids: Iterable[str]) -> List[Provider]:
        results = []
        for provider_id in ids:
            document = self._by_id.get(str(provider_id))
            if document is None:
                continue
            provider = to_provider(document)
            if provider is not None:
                results.append(provider)
        return results

    async def similar_services(self,
                               vector: List[float],
                               k: int,
                               predicates: Sequence = ()) -> List[Tuple[str, float]]:
        equality = [p for p in predicates if isinstance(p, Equals)]
        if self.vector_index is not None:
            return await asyncio.to_thread(self.vector_index.search, vector, k, equality)

        scored = []
        for document in self._documents:
            if not matches_all(document, equality):
                continue
            best = None
            for service in document.get("services") or []:
                embedding = service.get("embedding") if isinstance(service, dict) else None
                if not embedding:
                    continue
                score = cosine_similarity(vector, embedding)
                if best is None or score > best:
                    best = score
            if best is not None:
                scored.append((document_id(document), best))

        scored.sort(key=lambda item: item[1], reverse=True)
        return scored[:k]

    def index_services(self) -> int:
        """Push stored service embeddings into the attached vector index."""
        if self.vector_index is None:
            logger.warning("No vector index attached; nothing to index")
            return 0
        return self.vector_index.add_providers(self.all_providers())

"""
Vector store implementation using Qdrant for service-level semantic lookup.
"""
import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
import uuid

from qdrant_client import QdrantClient
from qdrant_client.http import models as qdrant_models

from config import VECTOR_STORE_CONFIG
from models.predicates import Equals
from models.provider import Provider

logger = logging.getLogger(__name__)

# Equality predicate path -> payload key stored on every service point
PAYLOAD_KEYS = {
    "insurance.medicaid": "medicaid",
    "insurance.medicare": "medicare",
    "insurance.self_pay_options": "self_pay_options",
    "insurance.payment_plans": "payment_plans",
    "telehealth.available": "telehealth",
    "services.is_free": "is_free",
    "ssn_required": "ssn_required",
    "state": "state",
}


def service_point_id(provider_id: str, index: int) -> str:
    """Deterministic UUID for the n-th service of a provider."""
    return str(uuid.uuid5(uuid.NAMESPACE_DNS, f"{provider_id}:{index}"))


class QdrantServiceIndex:
    """
    Qdrant collection holding one point per provider service.
    """

    def __init__(self,
                 collection_name: Optional[str] = None,
                 client: Optional[QdrantClient] = None,
                 dimension: Optional[int] = None):
        """
        Initialize the Qdrant service index.

        Args:
            collection_name: Optional custom collection name
            client: Pre-built client (tests pass an in-memory one)
            dimension: Vector size of the collection
        """
        self.collection_name = collection_name or VECTOR_STORE_CONFIG["collection_name"]
        self.dimension = dimension or VECTOR_STORE_CONFIG["dimension"]
        self.client = client or QdrantClient(
            url=VECTOR_STORE_CONFIG["url"],
            api_key=VECTOR_STORE_CONFIG["api_key"] or None
        )
        self._init_collection()

    def _init_collection(self):
        """Create the collection and its payload indexes if missing."""
        try:
            collections = self.client.get_collections().collections
            if self.collection_name in [collection.name for collection in collections]:
                logger.info(f"Using existing Qdrant collection: {self.collection_name}")
                return

            logger.info(f"Creating new Qdrant collection: {self.collection_name}")
            self.client.create_collection(
                collection_name=self.collection_name,
                vectors_config=qdrant_models.VectorParams(
                    size=self.dimension,
                    distance=qdrant_models.Distance.COSINE
                )
            )
            for field_name in ("provider_id", "state"):
                self.client.create_payload_index(
                    collection_name=self.collection_name,
                    field_name=field_name,
                    field_schema=qdrant_models.PayloadSchemaType.KEYWORD
                )
            for field_name in ("is_free", "medicaid", "medicare", "telehealth", "ssn_required"):
                self.client.create_payload_index(
                    collection_name=self.collection_name,
                    field_name=field_name,
                    field_schema=qdrant_models.PayloadSchemaType.BOOL
                )
        except Exception as e:
            logger.error(f"Error initializing Qdrant collection: {str(e)}")
            raise

    @staticmethod
    def _payload(provider: Provider, service_index: int) -> Dict:
        service = provider.services[service_index]
        return {
            "provider_id": provider.id,
            "service_name": service.name,
            "category": service.category or provider.category,
            "is_free": service.is_free,
            "medicaid": provider.insurance.medicaid,
            "medicare": provider.insurance.medicare,
            "self_pay_options": provider.insurance.self_pay_options,
            "payment_plans": provider.insurance.payment_plans,
            "telehealth": provider.telehealth.available,
            "ssn_required": provider.ssn_required,
            "city": provider.city,
            "state": (provider.state or "").lower() or None,
        }

    def add_providers(self, providers: Iterable[Provider]) -> int:
        """
        Index every service that carries an embedding.

        Args:
            providers: Providers with pre-computed service embeddings

        Returns:
            Number of points written
        """
        points = []
        for provider in providers:
            for index, service in enumerate(provider.services):
                if not service.embedding or len(service.embedding) != self.dimension:
                    continue
                points.append(
                    qdrant_models.PointStruct(
                        id=service_point_id(provider.id, index),
                        vector=service.embedding,
                        payload=self._payload(provider, index)
                    )
                )

        if not points:
            return 0

        try:
            self.client.upsert(collection_name=self.collection_name, points=points)
            logger.info(f"Added {len(points)} service vectors to Qdrant collection")
            return len(points)
        except Exception as e:
            logger.error(f"Error adding services to Qdrant: {str(e)}")
            raise

    @staticmethod
    def build_filter(predicates: Sequence) -> Optional[qdrant_models.Filter]:
        """Translate equality predicates into a Qdrant payload filter; others are skipped."""
        conditions = []
        for predicate in predicates:
            if not isinstance(predicate, Equals) or predicate.path not in PAYLOAD_KEYS:
                continue
            value = predicate.value
            if predicate.case_insensitive and isinstance(value, str):
                value = value.lower()
            conditions.append(
                qdrant_models.FieldCondition(
                    key=PAYLOAD_KEYS[predicate.path],
                    match=qdrant_models.MatchValue(value=value)
                )
            )
        return qdrant_models.Filter(must=conditions) if conditions else None

    def search(self, vector: List[float], k: int = 120, predicates: Sequence = ()) -> List[Tuple[str, float]]:
        """
        Nearest services to a query vector, collapsed to providers.

        Args:
            vector: Query embedding
            k: Number of service points to fetch
            predicates: Equality predicates pushed down as payload filters

        Returns:
            (provider_id, best score) tuples ordered by score
        """
        response = self.client.query_points(
            collection_name=self.collection_name,
            query=vector,
            limit=k,
            query_filter=self.build_filter(predicates),
            with_payload=["provider_id"]
        )

        best: Dict[str, float] = {}
        for point in response.points:
            provider_id = (point.payload or {}).get("provider_id")
            if provider_id is None:
                continue
            if provider_id not in best or point.score > best[provider_id]:
                best[provider_id] = point.score

        results = sorted(best.items(), key=lambda item: item[1], reverse=True)
        logger.info(f"Vector lookup returned {len(results)} providers from {len(response.points)} services")
        return results

    def get_count(self) -> int:
        """Number of indexed service points."""
        try:
            return self.client.count(collection_name=self.collection_name).count
        except Exception as e:
            logger.error(f"Error getting count from Qdrant: {str(e)}")
            return 0

"""
Main discovery service wiring the catalog, collaborators and pipeline.
"""
import logging
import time
from typing import Any, Dict, List, Optional

from config import CATALOG_CONFIG, FEATURES, get_config
from data.catalog import JsonCatalogStore
from models.filters import SearchFilters
from models.provider import Coordinates, Provider
from models.requests import DiscoveryRequest, DiscoveryResult
from models.state import DiscoveryState
from pipeline.candidate_retrieval import CandidateRetriever
from pipeline.entity_resolution import resolve_from_catalog
from pipeline.graph import build_discovery_graph
from pipeline.response_assembly import assemble_response, sanitize_provider
from pipeline.results_ranking import rank_candidates
from pipeline.state_extraction import SignalExtractor
from services.conversation_service import ConversationService
from services.geocoding_service import GeocodingService
from utils.errors import DiscoveryError
from utils.monitoring import DiscoveryMonitor
from vectordb.embeddings import EmbeddingProvider

logger = logging.getLogger(__name__)


def build_catalog():
    """Catalog for the configured backend."""
    if CATALOG_CONFIG["backend"] == "json+qdrant":
        from vectordb.vector_store import QdrantServiceIndex
        return JsonCatalogStore(vector_index=QdrantServiceIndex())
    return JsonCatalogStore()


class DiscoveryService:
    """Service for handling discovery requests."""

    def __init__(self,
                 catalog=None,
                 embedder: Optional[EmbeddingProvider] = None,
                 geocoder: Optional[GeocodingService] = None,
                 extractor: Optional[SignalExtractor] = None,
                 monitor: Optional[DiscoveryMonitor] = None,
                 conversation_service: Optional[ConversationService] = None):
        """Initialize the discovery service; collaborators default to config-driven instances."""
        logger.info("Initializing discovery service")
        self.catalog = catalog if catalog is not None else build_catalog()
        self.embedder = embedder if embedder is not None else EmbeddingProvider()
        self.geocoder = geocoder if geocoder is not None else GeocodingService()
        self.extractor = extractor or SignalExtractor()
        self.retriever = CandidateRetriever(self.catalog, self.embedder)
        self.monitor = monitor or DiscoveryMonitor()
        self.conversation_service = conversation_service or ConversationService()
        self.executor = build_discovery_graph(
            self.catalog,
            embedder=self.embedder,
            geocoder=self.geocoder,
            extractor=self.extractor,
            retriever=self.retriever,
        )
        self.config = get_config()

    async def search(self, request: DiscoveryRequest) -> DiscoveryResult:
        """
        Run one conversational discovery turn.

        Args:
            request: The discovery request

        Returns:
            Sanitized providers, the updated state and debug info

        Raises:
            CatalogQueryError: The catalog could not be queried
            FilterValidationError: The request carried malformed bounds
        """
        start_time = time.time()
        initial_state = DiscoveryState(
            utterance=request.utterance.strip(),
            conversation=request.conversation,
            prior_state=request.prior_state,
            request_location=request.location,
            context_providers=request.context_providers,
            request_signals=request.signals,
            max_distance=request.max_distance,
            max_price=request.max_price,
            limit=request.limit,
            offset=request.offset,
            debug={},
        )

        try:
            logger.info(f"Starting discovery pipeline for: '{initial_state['utterance']}'")
            result = await self.executor.ainvoke(initial_state)
        except DiscoveryError as e:
            logger.error(f"Discovery failed: {str(e)}")
            self.monitor.log_discovery({}, time.time() - start_time, error=True)
            raise

        execution_time = time.time() - start_time
        debug_info: Dict[str, Any] = {
            **(result.get("debug") or {}),
            "timings": {"total_ms": round(execution_time * 1000, 2)},
        }
        self.monitor.log_discovery(debug_info, execution_time)
        logger.info(f"Discovery completed in {execution_time:.2f}s, route: {debug_info.get('route')}")

        return DiscoveryResult(
            providers=result.get("providers") or [],
            new_state=result["filter_state"],
            debug_info=debug_info,
        )

    async def search_session(self, session_id: str, request: DiscoveryRequest) -> DiscoveryResult:
        """
        Run a turn using (and updating) the server-side session memory.

        Prior state, history and context providers come from the session
        unless the request supplies them.
        """
        session = await self.conversation_service.get_session(session_id)
        fields_set = request.model_fields_set
        request = request.model_copy(update={
            "prior_state": request.prior_state if "prior_state" in fields_set else session.filter_state,
            "conversation": request.conversation if request.conversation else session.history,
            "context_providers": request.context_providers if request.context_providers else session.last_providers,
        })

        result = await self.search(request)

        shown = [Provider.model_validate(provider) for provider in result.providers]
        await self.conversation_service.update_session(session_id, request.utterance, result.new_state, shown)
        return result

    async def filter_providers(self,
                               filters: SearchFilters,
                               limit: Optional[int] = None,
                               offset: int = 0) -> List[Dict[str, Any]]:
        """
        Filter-only retrieval: attribute query and ranking, no semantics.

        Args:
            filters: Frozen search filters (origin included)
            limit: Page size
            offset: Providers to skip

        Returns:
            Sanitized providers
        """
        retrieval = await self.retriever.retrieve(filters, filters.origin, semantic_text=None)
        ranked = rank_candidates(retrieval.providers, filters, filters.origin)
        return assemble_response(ranked, limit, offset)

    async def find_by_name(self,
                           name: str,
                           origin: Optional[Coordinates] = None,
                           limit: int = 3) -> List[Dict[str, Any]]:
        """
        Look a provider up by name.

        Returns:
            Sanitized best matches (at most the resolver's cap)
        """
        matches = await resolve_from_catalog(name, self.catalog, origin, top_k=limit)
        return [sanitize_provider(provider) for provider in matches]

    def features(self) -> Dict[str, bool]:
        return dict(FEATURES)

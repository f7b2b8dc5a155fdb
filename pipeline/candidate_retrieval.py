"""
Candidate retrieval component: attribute query widened by a semantic lookup.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from config import CATALOG_CONFIG, FEATURES
from models.filters import SearchFilters
from models.predicates import matches_all
from models.provider import Coordinates, Provider
from models.state import DiscoveryState
from pipeline.query_builder import build_predicates, equality_predicates
from utils.errors import CatalogQueryError
from vectordb.embeddings import cosine_similarity, is_zero_vector

logger = logging.getLogger(__name__)


@dataclass
class RetrievalResult:
    """Candidates plus what each retrieval branch contributed."""
    providers: List[Provider]
    attribute_count: int = 0
    semantic_count: int = 0
    semantic_only_count: int = 0
    semantic_status: str = "skipped"

    def debug_info(self) -> Dict[str, object]:
        return {
            "candidate_count": len(self.providers),
            "attribute_count": self.attribute_count,
            "semantic_count": self.semantic_count,
            "semantic_only_count": self.semantic_only_count,
            "semantic_status": self.semantic_status,
        }


class CandidateRetriever:
    """
    Hybrid retriever over a CatalogStore.

    The attribute query is a hard dependency. The semantic branch is optional
    and any failure there degrades the request to attribute-only results.
    """

    def __init__(self,
                 catalog,
                 embedder=None,
                 use_semantic: Optional[bool] = None,
                 candidate_limit: Optional[int] = None,
                 vector_k: Optional[int] = None,
                 semantic_timeout: Optional[float] = None):
        self.catalog = catalog
        self.embedder = embedder
        self.use_semantic = FEATURES["use_semantic_search"] if use_semantic is None else use_semantic
        self.candidate_limit = candidate_limit or CATALOG_CONFIG["candidate_limit"]
        self.vector_k = vector_k or CATALOG_CONFIG["vector_k"]
        self.semantic_timeout = semantic_timeout if semantic_timeout is not None else CATALOG_CONFIG["semantic_timeout"]

    async def _semantic_branch(self, text: str, predicates: List) -> Tuple[List[float], List[Tuple[str, float]], str]:
        vector = await self.embedder.embed(text)
        if is_zero_vector(vector):
            logger.warning("Semantic branch degraded: zero query vector")
            return vector, [], "degraded"
        hits = await self.catalog.similar_services(vector, self.vector_k, equality_predicates(predicates))
        return vector, hits, "ok"

    async def retrieve(self,
                       filters: SearchFilters,
                       origin: Optional[Coordinates] = None,
                       candidate_limit: Optional[int] = None,
                       semantic_text: Optional[str] = None) -> RetrievalResult:
        """
        Retrieve candidate providers for ranking.

        Args:
            filters: Frozen search filters
            origin: Geographic origin (distance filtering happens in ranking)
            candidate_limit: Over-fetch cap for the attribute query
            semantic_text: Text for the vector lookup; None skips it

        Returns:
            RetrievalResult with attribute hits first, then semantic-only hits

        Raises:
            CatalogQueryError: The attribute query failed
        """
        predicates = build_predicates(filters)
        limit = candidate_limit or self.candidate_limit
        loop = asyncio.get_running_loop()
        started = loop.time()

        attribute_task = asyncio.create_task(self.catalog.find(predicates, limit))
        semantic_task = None
        if semantic_text and self.embedder is not None and self.use_semantic:
            semantic_task = asyncio.create_task(self._semantic_branch(semantic_text, predicates))

        query_vector: Optional[List[float]] = None
        hits: List[Tuple[str, float]] = []
        status = "skipped"
        try:
            try:
                attribute = await attribute_task
            except CatalogQueryError:
                raise
            except Exception as e:
                raise CatalogQueryError(f"Attribute query failed: {str(e)}") from e

            if semantic_task is not None:
                remaining = max(0.0, self.semantic_timeout - (loop.time() - started))
                try:
                    query_vector, hits, status = await asyncio.wait_for(semantic_task, timeout=remaining)
                except asyncio.TimeoutError:
                    status = "timeout"
                    logger.warning(f"Semantic branch exceeded {self.semantic_timeout}s, continuing attribute-only")
                except Exception as e:
                    status = "failed"
                    logger.warning(f"Semantic branch failed, continuing attribute-only: {str(e)}")
        finally:
            tasks = [task for task in (attribute_task, semantic_task) if task is not None]
            for task in tasks:
                if not task.done():
                    task.cancel()
            # Collect outcomes so a failed branch never goes unretrieved
            await asyncio.gather(*tasks, return_exceptions=True)

        providers = list(attribute)
        known = {provider.id for provider in providers}
        scores = dict(hits)

        semantic_only: List[Provider] = []
        missing = [provider_id for provider_id, _ in hits if provider_id not in known]
        if missing:
            try:
                fetched = await self.catalog.get_many(missing)
            except Exception as e:
                logger.warning(f"Fetching semantic-only providers failed: {str(e)}")
                fetched = []
                status = "failed"
            equality = equality_predicates(predicates)
            for provider in fetched:
                if provider.id not in known and matches_all(provider.model_dump(), equality):
                    known.add(provider.id)
                    semantic_only.append(provider)

        candidates = []
        for provider in providers + semantic_only:
            similarity = scores.get(provider.id)
            if query_vector is not None and not is_zero_vector(query_vector):
                for service in provider.services:
                    if service.embedding:
                        own = cosine_similarity(query_vector, service.embedding)
                        if similarity is None or own > similarity:
                            similarity = own
            candidates.append(provider.model_copy(update={"similarity": similarity}))

        result = RetrievalResult(
            providers=candidates,
            attribute_count=len(providers),
            semantic_count=len(hits),
            semantic_only_count=len(semantic_only),
            semantic_status=status,
        )
        logger.info(f"Retrieved {len(candidates)} candidates "
                    f"({result.attribute_count} attribute, {result.semantic_only_count} semantic-only, "
                    f"semantic={status})")
        return result


def make_retrieve_candidates_node(retriever: CandidateRetriever):
    """Build the graph node running hybrid retrieval."""

    async def retrieve_candidates(state: DiscoveryState) -> DiscoveryState:
        semantic_text = None if state.get("route") == "filter_only" else state.get("semantic_text")
        result = await retriever.retrieve(
            state["filters"],
            origin=state.get("origin"),
            semantic_text=semantic_text,
        )
        return {
            **state,
            "candidates": result.providers,
            "debug": {
                **(state.get("debug") or {}),
                "retrieval": result.debug_info(),
            }
        }

    return retrieve_candidates

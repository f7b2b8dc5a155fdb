"""
Graph structure for the LangGraph discovery pipeline.
"""
import logging
from langgraph.graph import StateGraph, END

from config import FEATURES
from models.state import DiscoveryState
from pipeline.candidate_retrieval import CandidateRetriever, make_retrieve_candidates_node
from pipeline.entity_resolution import make_resolve_entity_node
from pipeline.intent_classification import classify_route_node, route_after_classification
from pipeline.query_builder import make_prepare_filters_node
from pipeline.response_assembly import assemble_response_node
from pipeline.results_ranking import rank_candidates_node
from pipeline.state_extraction import SignalExtractor, make_extract_state_node

logger = logging.getLogger(__name__)


def route_after_resolution(state: DiscoveryState) -> str:
    """A grounded provider skips retrieval."""
    return "rank_candidates" if state.get("focus_provider_id") else "retrieve_candidates"


def build_discovery_graph(catalog,
                          embedder=None,
                          geocoder=None,
                          extractor: SignalExtractor = None,
                          retriever: CandidateRetriever = None):
    """
    Create the LangGraph for provider discovery.

    Args:
        catalog: CatalogStore used for retrieval and name lookups
        embedder: Optional EmbeddingProvider for the semantic branch
        geocoder: Optional GeocodingService for location text
        extractor: Signal extractor (heuristics-only when omitted and no LLM is configured)
        retriever: Pre-built retriever; built from catalog and embedder otherwise

    Returns:
        Compiled graph, run with ``ainvoke``
    """
    extractor = extractor or SignalExtractor()
    retriever = retriever or CandidateRetriever(catalog, embedder)

    graph = StateGraph(DiscoveryState)

    # Add all nodes
    graph.add_node("extract_state", make_extract_state_node(extractor))
    graph.add_node("prepare_filters", make_prepare_filters_node(geocoder, FEATURES["use_geocoding"]))
    graph.add_node("classify_route", classify_route_node)
    graph.add_node("resolve_entity", make_resolve_entity_node(catalog))
    graph.add_node("retrieve_candidates", make_retrieve_candidates_node(retriever))
    graph.add_node("rank_candidates", rank_candidates_node)
    graph.add_node("assemble_response", assemble_response_node)

    # Define simple edges
    graph.add_edge("extract_state", "prepare_filters")
    graph.add_edge("prepare_filters", "classify_route")
    graph.add_edge("retrieve_candidates", "rank_candidates")
    graph.add_edge("rank_candidates", "assemble_response")
    graph.add_edge("assemble_response", END)

    # Provider references are grounded before any search
    graph.add_conditional_edges(
        "classify_route",
        route_after_classification,
        {"resolve_entity": "resolve_entity", "retrieve_candidates": "retrieve_candidates"}
    )

    # Unresolved references fall back to a regular search
    graph.add_conditional_edges(
        "resolve_entity",
        route_after_resolution,
        {"rank_candidates": "rank_candidates", "retrieve_candidates": "retrieve_candidates"}
    )

    # Set entry point
    graph.set_entry_point("extract_state")

    logger.info("Discovery pipeline graph built successfully")
    return graph.compile()

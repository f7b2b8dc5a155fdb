"""
Route classification component for the discovery pipeline.
"""
import logging
import re
from typing import List, NamedTuple, Optional, Sequence

from models.provider import Provider
from models.state import ConversationFilterState, DiscoveryState, ExtractedSignals
from pipeline.entity_resolution import extract_name_hint, resolve_ordinal

logger = logging.getLogger(__name__)

VALID_ROUTES = ["provider_profile", "filter_only", "service_search", "hybrid"]

# Utterances that talk about eligibility or coverage rather than a service
FILTER_MENTION_PATTERN = re.compile(
    r"(\bssn\b|no\s*ssn|medicaid|medicare|uninsured|self\s*-?\s*pay|insurance|cigna|aetna|\buhc\b|united"
    r"|kaiser|anthem|\bbcbs\b|blue\s*(?:cross|shield)|telehealth|\bfree\b)"
)


class RouteDecision(NamedTuple):
    route: str
    semantic_text: Optional[str]
    # Search route taken when a provider reference cannot be grounded
    fallback_route: Optional[str] = None


def search_route(text: str, terms: List[str]) -> str:
    """Search route for a turn, ignoring provider references."""
    mentions_filters = bool(FILTER_MENTION_PATTERN.search(text))
    if not terms and mentions_filters:
        return "filter_only"
    if terms and mentions_filters:
        return "hybrid"
    return "service_search"


def classify_route(utterance: str,
                   state: ConversationFilterState,
                   signals: Optional[ExtractedSignals] = None,
                   context_providers: Sequence[Provider] = ()) -> RouteDecision:
    """
    Decide how this turn retrieves providers.

    Args:
        utterance: The latest user message
        state: Merged conversation state
        signals: Signals extracted from this turn
        context_providers: Providers shown on previous turns

    Returns:
        Route plus the text to embed for the semantic branch (None for filter-only)
    """
    text = (utterance or "").lower()
    terms: List[str] = state.service_terms or []
    service_text = " ".join(terms) if terms else None
    route = search_route(text, terms)

    refers_to_provider = (
        (signals is not None and signals.provider_name)
        or extract_name_hint(utterance)
        or resolve_ordinal(utterance, context_providers) is not None
    )
    if refers_to_provider:
        return RouteDecision("provider_profile", service_text or utterance, route)

    if route == "filter_only":
        return RouteDecision(route, None)
    if route == "hybrid":
        return RouteDecision(route, service_text)
    return RouteDecision(route, service_text or (utterance or "").strip() or None)


def classify_route_node(state: DiscoveryState) -> DiscoveryState:
    """Graph node wrapping classify_route."""
    decision = classify_route(
        state.get("utterance", ""),
        state["filter_state"],
        state.get("signals"),
        state.get("context_providers") or [],
    )
    logger.info(f"Classified route: {decision.route} (semantic text: {decision.semantic_text!r})")

    return {
        **state,
        "route": decision.route,
        "semantic_text": decision.semantic_text,
        "fallback_route": decision.fallback_route,
        "debug": {
            **(state.get("debug") or {}),
            "route": decision.route,
        }
    }


def route_after_classification(state: DiscoveryState) -> str:
    """Conditional edge: provider references go to the resolver first."""
    return "resolve_entity" if state.get("route") == "provider_profile" else "retrieve_candidates"

"""
Results ranking component for the discovery pipeline.

Ranking is deterministic: derived fields are computed per candidate, hard
bounds are applied, and a stable sort orders the survivors.
"""
import logging
import math
from functools import cmp_to_key
from typing import List, Optional, Sequence

from config import RANKING_CONFIG
from models.filters import SearchFilters
from models.provider import Coordinates, Provider, Service
from models.state import DiscoveryState
from utils.geo import distance_miles

logger = logging.getLogger(__name__)

# Resolution sources that point at providers from earlier results
SHOWN_SOURCES = ("ordinal", "context")


def service_price(service: Service) -> float:
    """Comparable price of a service: free is 0, unknown is 0."""
    if service.is_free:
        return 0.0
    if service.price is None:
        return 0.0
    amount = service.price.effective_min()
    return amount if amount is not None else 0.0


def precompute(provider: Provider, filters: SearchFilters, origin: Optional[Coordinates] = None) -> Provider:
    """
    Compute the per-query derived fields on a copy of the provider.

    Args:
        provider: Candidate provider
        filters: Active filters (``free_only`` and ``max_price`` gate matching services)
        origin: Optional location for the distance

    Returns:
        Copy with matching_service_count, min_service_price, has_free_services
        and distance_miles set
    """
    matching = 0
    for service in provider.services:
        if filters.free_only and not service.is_free:
            continue
        if filters.max_price is not None and service_price(service) > filters.max_price:
            continue
        matching += 1

    has_free = any(service.is_free for service in provider.services)
    if has_free:
        min_price = 0.0
    else:
        amounts = [
            service.price.effective_min()
            for service in provider.services
            if service.price is not None and service.price.effective_min() is not None
        ]
        min_price = min(amounts) if amounts else None

    distance = None
    if origin is not None and provider.location is not None:
        distance = distance_miles(origin.latitude, origin.longitude,
                                  provider.location.latitude, provider.location.longitude)

    return provider.model_copy(update={
        "matching_service_count": matching,
        "min_service_price": min_price,
        "has_free_services": has_free,
        "distance_miles": distance,
    })


def within_bounds(provider: Provider, filters: SearchFilters, origin: Optional[Coordinates] = None) -> bool:
    """Hard distance and price bounds; unknown values fail an active bound."""
    if filters.max_distance is not None and origin is not None:
        if provider.distance_miles is None or provider.distance_miles > filters.max_distance:
            return False
    if filters.max_price is not None:
        if provider.min_service_price is None or provider.min_service_price > filters.max_price:
            return False
    return True


def compute_rank_score(provider: Provider) -> float:
    """Blend similarity with affordability, proximity and rating."""
    score = 0.6 * (provider.similarity or 0.0)

    if provider.has_free_services:
        score += 0.2
    elif provider.min_service_price is not None:
        score += min(0.15, 50 / (50 + provider.min_service_price))

    if provider.distance_miles is not None:
        cutoff = RANKING_CONFIG["distance_cutoff_miles"]
        score += max(0.0, 0.15 - provider.distance_miles / cutoff * 0.15)

    if provider.rating:
        score += provider.rating / 5 * 0.1

    return score


def compare_candidates(a: Provider, b: Provider, price_threshold: Optional[float] = None) -> int:
    """
    Total order on precomputed candidates; negative means ``a`` ranks first.

    More matching services, then a materially lower price, then a shorter
    distance, then a higher rating, then a higher rank score.
    """
    if a.matching_service_count != b.matching_service_count:
        return -1 if a.matching_service_count > b.matching_service_count else 1

    threshold = RANKING_CONFIG["price_materiality_threshold"] if price_threshold is None else price_threshold
    if a.min_service_price is not None or b.min_service_price is not None:
        price_a = a.min_service_price if a.min_service_price is not None else math.inf
        price_b = b.min_service_price if b.min_service_price is not None else math.inf
        if abs(price_a - price_b) > threshold:
            return -1 if price_a < price_b else 1

    if a.distance_miles is not None and b.distance_miles is not None and a.distance_miles != b.distance_miles:
        return -1 if a.distance_miles < b.distance_miles else 1

    rating_a = a.rating or 0.0
    rating_b = b.rating or 0.0
    if rating_a != rating_b:
        return -1 if rating_a > rating_b else 1

    score_a = a.rank_score or 0.0
    score_b = b.rank_score or 0.0
    if score_a != score_b:
        return -1 if score_a > score_b else 1

    return 0


def rank_candidates(candidates: Sequence[Provider],
                    filters: SearchFilters,
                    origin: Optional[Coordinates] = None,
                    price_threshold: Optional[float] = None) -> List[Provider]:
    """
    Rank candidates for display.

    Args:
        candidates: Retrieved providers (not modified)
        filters: Active filters
        origin: Optional location for distances
        price_threshold: Price difference that counts as material

    Returns:
        New provider copies in rank order; equal candidates keep input order
    """
    prepared = []
    for provider in candidates:
        provider = precompute(provider, filters, origin)
        if not within_bounds(provider, filters, origin):
            continue
        prepared.append(provider.model_copy(update={"rank_score": compute_rank_score(provider)}))

    ranked = sorted(prepared, key=cmp_to_key(lambda a, b: compare_candidates(a, b, price_threshold)))
    logger.info(f"Ranked {len(ranked)} of {len(candidates)} candidates")
    return ranked


def rank_candidates_node(state: DiscoveryState) -> DiscoveryState:
    """
    Graph node ranking the retrieved candidates.

    A provider the user was already shown stays visible outside the distance
    or price bounds. A provider found by a catalog lookup must still fit them.
    """
    filters = state["filters"]
    if state.get("focus_provider_id") and state.get("focus_source") in SHOWN_SOURCES:
        filters = filters.model_copy(update={"max_distance": None, "max_price": None})

    candidates = state.get("candidates") or []
    ranked = rank_candidates(candidates, filters, state.get("origin"))

    return {
        **state,
        "ranked": ranked,
        "debug": {
            **(state.get("debug") or {}),
            "ranked_count": len(ranked),
            "filtered_out_count": len(candidates) - len(ranked),
        }
    }

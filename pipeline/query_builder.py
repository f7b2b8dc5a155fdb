"""
Translate search filters into catalog predicates.
"""
import logging
from typing import Iterable, List

from models.filters import SearchFilters
from models.predicates import AnyOf, Equals, Pattern
from models.state import DiscoveryState

logger = logging.getLogger(__name__)

SERVICE_PATHS = ("category", "services.name", "services.category")

# Related vocabulary searched alongside a requested service
SERVICE_TERM_EXPANSIONS = {
    "mammogram": ["mammography", "breast", "screening", "women"],
    "dental": ["dentist", "teeth", "oral", "tooth"],
    "mental health": ["psychotherapy", "counseling", "therapy", "psychiatrist", "psychologist"],
    "sti": ["std", "sexual health", "hiv", "testing"],
    "std": ["sti", "sexual health", "hiv", "testing"],
    "primary care": ["family medicine", "general practice", "internal medicine", "pcp"],
    "urgent care": ["walk-in", "immediate care", "emergency"],
    "vision": ["optometry", "eye", "glasses", "contacts", "optometrist"],
    "pharmacy": ["drug store", "medication", "prescription"],
}

# Boolean filter -> (document path, required value); applied only when the filter is True
FLAG_PREDICATES = {
    "accepts_medicaid": "insurance.medicaid",
    "accepts_medicare": "insurance.medicare",
    "accepts_uninsured": "insurance.self_pay_options",
    "payment_plans": "insurance.payment_plans",
    "telehealth_available": "telehealth.available",
    "free_only": "services.is_free",
}


def expand_service_terms(terms: Iterable[str]) -> List[str]:
    """
    Add related vocabulary to the requested service terms.

    Args:
        terms: Service terms as stated by the user

    Returns:
        De-duplicated terms, originals first
    """
    expanded = []
    seen = set()
    for term in terms:
        for candidate in [term] + SERVICE_TERM_EXPANSIONS.get(term.lower().strip(), []):
            key = candidate.lower().strip()
            if key and key not in seen:
                seen.add(key)
                expanded.append(candidate)
    return expanded


def build_predicates(filters: SearchFilters) -> List:
    """
    Map each set filter field to exactly one catalog predicate.

    Boolean flags constrain only when True, except ``ssn_required`` which
    constrains only when False (providers that do not require an SSN).
    A False insurance flag never excludes providers.

    Args:
        filters: Frozen search filters

    Returns:
        List of predicates, all of which must hold
    """
    predicates = []

    for field, path in FLAG_PREDICATES.items():
        if getattr(filters, field) is True:
            predicates.append(Equals(path, True))

    if filters.ssn_required is False:
        predicates.append(Equals("ssn_required", False))

    if filters.insurance_providers:
        predicates.append(AnyOf("insurance.major_providers", tuple(filters.insurance_providers)))

    if filters.service_terms:
        predicates.append(Pattern(SERVICE_PATHS, tuple(expand_service_terms(filters.service_terms))))

    if filters.service_categories:
        predicates.append(Pattern(SERVICE_PATHS, tuple(filters.service_categories)))

    if filters.state:
        predicates.append(Equals("state", filters.state, case_insensitive=True))

    if filters.city:
        predicates.append(Pattern(("city",), (filters.city,)))

    logger.debug(f"Built {len(predicates)} predicates from filters: {filters.applied()}")
    return predicates


def equality_predicates(predicates: Iterable) -> List[Equals]:
    """The subset that a vector index can push down as payload filters."""
    return [p for p in predicates if isinstance(p, Equals)]


def make_prepare_filters_node(geocoder=None, use_geocoding: bool = True):
    """
    Build the graph node that resolves the origin and freezes the filters.

    The request location wins; otherwise the conversation's location text is
    geocoded. A geocoding failure leaves the origin unknown.
    """

    async def prepare_filters(state: DiscoveryState) -> DiscoveryState:
        filter_state = state["filter_state"]
        origin = state.get("request_location")
        location_source = "request" if origin is not None else "none"

        if origin is None and filter_state.location_text and geocoder is not None and use_geocoding:
            origin = await geocoder.forward(filter_state.location_text)
            location_source = "geocoded" if origin is not None else "geocode_failed"
            if origin is None:
                logger.warning(f"Could not geocode '{filter_state.location_text}', continuing without origin")

        filters = SearchFilters.from_state(
            filter_state,
            origin=origin,
            max_distance=state.get("max_distance"),
            max_price=state.get("max_price"),
        )

        return {
            **state,
            "origin": origin,
            "filters": filters,
            "debug": {
                **(state.get("debug") or {}),
                "location_source": location_source,
                "filters_applied": filters.applied(),
            }
        }

    return prepare_filters

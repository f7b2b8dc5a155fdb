"""
Entity resolution component: ground a provider name or ordinal reference.
"""
import logging
import re
from typing import List, Optional, Sequence

from config import CATALOG_CONFIG, RESOLVER_CONFIG
from models.predicates import Pattern
from models.provider import Coordinates, Provider
from models.state import DiscoveryState
from utils.geo import distance_miles

logger = logging.getLogger(__name__)

# Phrasings that introduce a provider name
NAME_HINT_PATTERNS = [
    re.compile(r"tell\s+me\s+(?:more\s+)?about\s+(.+)"),
    re.compile(r"what\s+(?:services\s+)?(?:do|does)\s+(.+?)\s+(?:offer|provide|have)\b"),
    re.compile(r"info(?:rmation)?\s+(?:on|about)\s+(.+)"),
    re.compile(r"details?\s+(?:about|on)\s+(.+)"),
    re.compile(r"services\s+at\s+(.+)"),
]

ORDINAL_WORDS = {
    "first": 0, "1st": 0,
    "second": 1, "2nd": 1,
    "third": 2, "3rd": 2,
    "fourth": 3, "4th": 3,
    "fifth": 4, "5th": 4,
    "sixth": 5, "6th": 5,
    "last": -1,
}
ORDINAL_PATTERN = re.compile(
    r"\b(" + "|".join(ORDINAL_WORDS) + r")\s+(?:one|provider|clinic|option|result|place)\b"
)
NUMBERED_PATTERN = re.compile(r"(?:#\s*|\bnumber\s+|\bno\.\s*)(\d+)\b")


def normalize_name(name: Optional[str]) -> str:
    """Lower-case, strip punctuation and collapse whitespace."""
    text = re.sub(r"[^a-z0-9\s]", "", (name or "").lower())
    return re.sub(r"\s+", " ", text).strip()


def extract_name_hint(utterance: Optional[str]) -> Optional[str]:
    """
    Pull a provider name out of phrasings like "tell me more about X".

    Args:
        utterance: Raw user message

    Returns:
        Normalized name hint, or None when no phrasing matches
    """
    text = normalize_name(utterance)
    for pattern in NAME_HINT_PATTERNS:
        match = pattern.search(text)
        if match:
            hint = re.sub(r"^the\s+", "", match.group(1).strip())
            return hint or None
    return None


def resolve_ordinal(utterance: Optional[str], context_providers: Sequence[Provider]) -> Optional[Provider]:
    """Select a previously shown provider by position ("the second one", "#2")."""
    if not context_providers:
        return None

    text = (utterance or "").lower()
    index = None
    match = ORDINAL_PATTERN.search(text)
    if match:
        index = ORDINAL_WORDS[match.group(1)]
    else:
        match = NUMBERED_PATTERN.search(text)
        if match and int(match.group(1)) > 0:
            index = int(match.group(1)) - 1

    if index is None or index >= len(context_providers) or index < -1:
        return None
    logger.info(f"Resolved ordinal reference to position {index}")
    return context_providers[index]


def score_name_match(name_query: str, provider: Provider, origin: Optional[Coordinates] = None) -> float:
    """
    Name-match score: token overlap ratio, contiguous bonus and distance bonus.

    Returns 0.0 when the names share no token and the query is not a substring.
    """
    query = normalize_name(name_query)
    if not query:
        return 0.0
    name = normalize_name(provider.name)

    ratio = name_overlap(query, name)
    contiguous = RESOLVER_CONFIG["contiguous_bonus"] if query in name else 0.0
    if ratio == 0 and contiguous == 0:
        return 0.0

    bonus = 0.0
    if origin is not None and provider.location is not None:
        miles = distance_miles(origin.latitude, origin.longitude,
                               provider.location.latitude, provider.location.longitude)
        cutoff = RESOLVER_CONFIG["distance_cutoff_miles"]
        max_bonus = RESOLVER_CONFIG["distance_bonus"]
        bonus = max(0.0, max_bonus - min(miles, cutoff) / cutoff * max_bonus)

    return ratio + contiguous + bonus


def resolve_entity(name_query: Optional[str],
                   pool: Sequence[Provider],
                   origin: Optional[Coordinates] = None,
                   top_k: int = 3) -> List[Provider]:
    """
    Fuzzy-match a provider name against a candidate pool.

    Args:
        name_query: Free-text provider name
        pool: Candidate providers (prior results or a catalog subset)
        origin: Optional location for the distance bonus
        top_k: Number of matches wanted (capped server-side)

    Returns:
        Best matches first; empty when the query is empty or nothing matches
    """
    if not normalize_name(name_query):
        return []

    top_k = max(0, min(top_k, RESOLVER_CONFIG["max_top_k"]))
    scored = []
    for provider in pool:
        score = score_name_match(name_query, provider, origin)
        if score > 0:
            scored.append((score, provider))

    # sorted() is stable, so equal scores keep pool order
    scored = sorted(scored, key=lambda item: item[0], reverse=True)

    results = []
    for score, provider in scored[:top_k]:
        update = {}
        if origin is not None and provider.location is not None:
            update["distance_miles"] = distance_miles(origin.latitude, origin.longitude,
                                                      provider.location.latitude, provider.location.longitude)
        results.append(provider.model_copy(update=update))
    return results


def name_overlap(name_query: str, name: str) -> float:
    """Share of the query's tokens that appear in the name."""
    query_tokens = set(normalize_name(name_query).split())
    return len(query_tokens & set(normalize_name(name).split())) / max(1, len(query_tokens))


def is_confident_match(name_hint: str, provider: Provider) -> bool:
    """The hint is a substring of the name or enough of its tokens appear in the name."""
    query = normalize_name(name_hint)
    if not query:
        return False
    return (query in normalize_name(provider.name)
            or name_overlap(query, provider.name) >= RESOLVER_CONFIG["context_min_ratio"])


def ground_in_context(name_hint: str,
                      context_providers: Sequence[Provider],
                      origin: Optional[Coordinates] = None) -> Optional[Provider]:
    """Best context provider when the hint is a substring or overlaps enough of the name."""
    matches = resolve_entity(name_hint, context_providers, origin, top_k=1)
    if matches and is_confident_match(name_hint, matches[0]):
        return matches[0]
    return None


async def resolve_from_catalog(name_query: str,
                               catalog,
                               origin: Optional[Coordinates] = None,
                               top_k: int = 3,
                               limit: Optional[int] = None) -> List[Provider]:
    """
    Resolve a name against the catalog.

    Candidates are gathered with a permissive pattern (any query token in
    the provider name) and then scored.
    """
    tokens = normalize_name(name_query).split()
    if not tokens:
        return []
    limit = limit or CATALOG_CONFIG["name_lookup_limit"]
    candidates = await catalog.find([Pattern(("name",), tuple(tokens))], limit)
    logger.info(f"Name lookup for '{name_query}' gathered {len(candidates)} candidates")
    return resolve_entity(name_query, candidates, origin, top_k)


def make_resolve_entity_node(catalog):
    """Build the graph node that grounds a provider reference."""

    async def resolve_entity_node(state: DiscoveryState) -> DiscoveryState:
        utterance = state.get("utterance", "")
        context = state.get("context_providers") or []
        origin = state.get("origin")
        signals = state.get("signals")

        focus = resolve_ordinal(utterance, context)
        source = "ordinal" if focus is not None else None

        name_hint = (signals.provider_name if signals is not None else None) or extract_name_hint(utterance)
        if focus is None and name_hint and context:
            focus = ground_in_context(name_hint, context, origin)
            source = "context" if focus is not None else None

        if focus is None and name_hint:
            matches = await resolve_from_catalog(name_hint, catalog, origin, top_k=RESOLVER_CONFIG["max_top_k"])
            focus = next((match for match in matches if is_confident_match(name_hint, match)), None)
            source = "catalog" if focus is not None else None

        debug = {**(state.get("debug") or {})}
        if focus is None:
            route = state.get("fallback_route") or state.get("route")
            logger.info(f"Provider reference not resolved (hint={name_hint!r}); falling back to {route}")
            debug["resolution"] = {"status": "not_found", "name_hint": name_hint}
            debug["route"] = route
            return {**state, "route": route, "focus_provider_id": None, "focus_source": None, "debug": debug}

        logger.info(f"Resolved provider reference to {focus.name} via {source}")
        debug["resolution"] = {"status": "found", "source": source, "provider_id": focus.id, "name_hint": name_hint}
        return {
            **state,
            "focus_provider_id": focus.id,
            "focus_source": source,
            "candidates": [focus],
            "debug": debug
        }

    return resolve_entity_node

"""
Response assembly component: sanitize and paginate ranked providers.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence, Union

from config import RANKING_CONFIG
from models.provider import Provider
from models.state import DiscoveryState

logger = logging.getLogger(__name__)

# Never leaves the engine
INTERNAL_FIELDS = ("similarity", "embedding")


def sanitize_provider(provider: Union[Provider, Dict[str, Any]]) -> Dict[str, Any]:
    """
    JSON-ready provider without embeddings or internal fields.

    Args:
        provider: A Provider model or a raw catalog document

    Returns:
        Plain dict safe to hand to callers
    """
    if isinstance(provider, Provider):
        data = provider.model_dump(mode="json")
    else:
        data = dict(provider)

    for field in INTERNAL_FIELDS:
        data.pop(field, None)

    services = data.get("services")
    if isinstance(services, list):
        data["services"] = [
            {key: value for key, value in service.items() if key != "embedding"}
            if isinstance(service, dict) else service
            for service in services
        ]
    return data


def effective_limit(limit: Optional[int]) -> int:
    """Requested limit, defaulted and capped server-side."""
    if limit is None:
        return RANKING_CONFIG["default_limit"]
    return max(0, min(limit, RANKING_CONFIG["max_limit"]))


def assemble_response(ranked: Sequence[Provider],
                      limit: Optional[int] = None,
                      offset: int = 0) -> List[Dict[str, Any]]:
    """
    Paginate and sanitize the ranked providers.

    Args:
        ranked: Providers in rank order
        limit: Page size (defaulted and capped)
        offset: Number of ranked providers to skip

    Returns:
        Sanitized provider dicts
    """
    offset = max(0, offset or 0)
    page = ranked[offset:offset + effective_limit(limit)]
    return [sanitize_provider(provider) for provider in page]


def assemble_response_node(state: DiscoveryState) -> DiscoveryState:
    """Graph node producing the caller-facing provider list."""
    ranked = state.get("ranked") or []
    providers = assemble_response(ranked, state.get("limit"), state.get("offset", 0))
    logger.info(f"Returning {len(providers)} of {len(ranked)} ranked providers")

    return {
        **state,
        "providers": providers,
        "debug": {
            **(state.get("debug") or {}),
            "returned_count": len(providers),
            "limit": effective_limit(state.get("limit")),
            "offset": max(0, state.get("offset") or 0),
        }
    }

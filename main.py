"""
Main entry point for the provider discovery engine.
"""
import asyncio
import json
import logging
from typing import Dict, Any, List, Optional

from config import APP_CONFIG, get_config
from models.provider import Coordinates
from models.requests import DiscoveryRequest, DiscoveryResult
from models.state import ConversationFilterState
from services.discovery_service import DiscoveryService

# Configure logging
logging.basicConfig(
    level=getattr(logging, APP_CONFIG["log_level"].upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)

_discovery_service: Optional[DiscoveryService] = None


def initialize_system() -> Dict[str, Any]:
    """Initialize the discovery engine."""
    global _discovery_service
    logger.info("Initializing provider discovery engine")
    config = get_config()

    # Log configuration
    logger.info(f"System configured with: catalog={config['catalog']['backend']}, "
                f"LLM={config['llm']['model']}, Features={config['features']}")

    if _discovery_service is None:
        _discovery_service = DiscoveryService()
    return {
        "discovery_service": _discovery_service,
        "config": config
    }


async def execute_discovery(utterance: str,
                            prior_state: Optional[ConversationFilterState] = None,
                            location: Optional[Coordinates] = None,
                            conversation: Optional[List[Dict[str, str]]] = None,
                            limit: Optional[int] = None) -> DiscoveryResult:
    """
    Execute one discovery turn.

    Args:
        utterance: The user's message
        prior_state: State accumulated over previous turns
        location: Optional user location
        conversation: Optional previous messages
        limit: Optional page size

    Returns:
        The discovery result
    """
    service = initialize_system()["discovery_service"]
    request = DiscoveryRequest(
        utterance=utterance,
        prior_state=prior_state or ConversationFilterState(),
        location=location,
        conversation=conversation or [],
        limit=limit,
    )
    return await service.search(request)


async def _demo():
    turns = [
        "I need free STI testing in Austin",
        "actually I'm uninsured and don't have an SSN",
        "tell me more about Main Street Community Clinic",
    ]
    state = ConversationFilterState()
    history: List[Dict[str, str]] = []
    for utterance in turns:
        print(f"\nUSER: {utterance}")
        result = await execute_discovery(utterance, prior_state=state, conversation=history)
        state = result.new_state
        history.append({"role": "user", "content": utterance})

        print(f"State: {state.model_dump(exclude_none=True)}")
        print(f"Route: {result.debug_info.get('route')}")
        for provider in result.providers:
            print(f"  - {provider['name']} ({provider.get('city')}) min price: {provider.get('min_service_price')}")
        print("-" * 80)

    print("\n=== SYSTEM HEALTH METRICS ===")
    print(json.dumps(_discovery_service.monitor.get_system_health(), indent=2))


if __name__ == "__main__":
    asyncio.run(_demo())

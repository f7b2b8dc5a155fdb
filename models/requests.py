"""
Request and response models for the discovery engine boundary.
"""
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from models.provider import Coordinates, Provider
from models.state import ConversationFilterState, ExtractedSignals


class DiscoveryRequest(BaseModel):
    """A single conversational discovery turn."""
    utterance: str
    conversation: List[Dict[str, str]] = Field(default_factory=list)
    prior_state: ConversationFilterState = Field(default_factory=ConversationFilterState)
    location: Optional[Coordinates] = None
    context_providers: List[Provider] = Field(default_factory=list)
    # Pre-extracted signals bypass the language-understanding step
    signals: Optional[ExtractedSignals] = None
    max_distance: Optional[float] = None
    max_price: Optional[float] = None
    limit: Optional[int] = None
    offset: int = 0


class DiscoveryResult(BaseModel):
    """Ranked, sanitized providers plus the updated conversation state."""
    providers: List[Dict[str, Any]]
    new_state: ConversationFilterState
    debug_info: Dict[str, Any] = Field(default_factory=dict)

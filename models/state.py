"""
State definitions for the provider discovery engine.
"""
from typing import Any, Dict, List, Literal, Optional, TypedDict
from pydantic import BaseModel, Field

from models.filters import SearchFilters
from models.provider import Coordinates, Provider

# Fields whose values accumulate across turns
LIST_FIELDS = ("service_terms", "insurance_providers")

# Tri-state flags: None = not established, distinct from False
FLAG_FIELDS = (
    "free_only",
    "accepts_medicaid",
    "accepts_medicare",
    "accepts_uninsured",
    "telehealth_available",
    "ssn_required",
)

TEXT_FIELDS = ("location_text",)

STATE_FIELDS = LIST_FIELDS + FLAG_FIELDS + TEXT_FIELDS


class ConversationFilterState(BaseModel):
    """Everything understood about user intent across turns."""
    service_terms: Optional[List[str]] = None
    free_only: Optional[bool] = None
    accepts_medicaid: Optional[bool] = None
    accepts_medicare: Optional[bool] = None
    accepts_uninsured: Optional[bool] = None
    telehealth_available: Optional[bool] = None
    ssn_required: Optional[bool] = None
    insurance_providers: Optional[List[str]] = None
    location_text: Optional[str] = None


class Signal(BaseModel):
    """
    A single field-level statement extracted from an utterance.

    ``set`` overwrites the field, ``add`` unions into a list field and
    ``reset`` retracts the field back to "not established".
    """
    field: str
    value: Any = None
    op: Literal["set", "add", "reset"] = "set"


class ExtractedSignals(BaseModel):
    """Ordered statements extracted from one user turn."""
    signals: List[Signal] = Field(default_factory=list)
    provider_name: Optional[str] = None

    @classmethod
    def from_mapping(cls, data: Dict[str, Any]) -> "ExtractedSignals":
        """
        Build signals from a flat field -> value mapping.

        ``None`` values are treated as absent. Fields listed under
        ``reset_fields`` are retracted before any other statement.
        """
        signals = [
            Signal(field=name, op="reset")
            for name in data.get("reset_fields") or []
        ]
        for name in STATE_FIELDS:
            value = data.get(name)
            if value is None:
                continue
            if name in LIST_FIELDS:
                if isinstance(value, str):
                    value = [value]
                if not value:
                    continue
                signals.append(Signal(field=name, value=list(value), op="add"))
            else:
                signals.append(Signal(field=name, value=value))
        provider_name = data.get("provider_name")
        if not isinstance(provider_name, str) or not provider_name.strip():
            provider_name = None
        return cls(signals=signals, provider_name=provider_name)

    def extend(self, other: "ExtractedSignals") -> "ExtractedSignals":
        """Append another set of signals; the other's statements come later."""
        return ExtractedSignals(
            signals=self.signals + other.signals,
            provider_name=other.provider_name or self.provider_name,
        )


class DiscoveryState(TypedDict, total=False):
    """
    Represents the state of the discovery graph.
    Maintains all information as it flows through the pipeline.
    """
    # Request
    utterance: str
    conversation: List[Dict[str, str]]
    prior_state: ConversationFilterState
    request_location: Optional[Coordinates]
    context_providers: List[Provider]
    request_signals: Optional[ExtractedSignals]
    max_distance: Optional[float]
    max_price: Optional[float]
    limit: Optional[int]
    offset: int

    # Extraction and filters
    signals: ExtractedSignals
    filter_state: ConversationFilterState
    origin: Optional[Coordinates]
    filters: SearchFilters
    route: str
    semantic_text: Optional[str]
    fallback_route: Optional[str]

    # Results
    candidates: List[Provider]
    focus_provider_id: Optional[str]
    focus_source: Optional[str]
    ranked: List[Provider]
    providers: List[Dict[str, Any]]

    # Metadata about the discovery process
    debug: Dict[str, Any]

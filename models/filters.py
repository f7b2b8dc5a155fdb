"""
Query-ready filter models.
"""
from typing import List, Optional, TYPE_CHECKING
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from models.provider import Coordinates
from utils.errors import FilterValidationError

if TYPE_CHECKING:
    from models.state import ConversationFilterState


class SearchFilters(BaseModel):
    """
    Normalized projection of the conversation state plus numeric bounds.
    Constructed fresh per retrieval call and never mutated afterwards.
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    service_terms: Optional[List[str]] = None
    service_categories: Optional[List[str]] = None
    free_only: Optional[bool] = None
    accepts_medicaid: Optional[bool] = None
    accepts_medicare: Optional[bool] = None
    accepts_uninsured: Optional[bool] = None
    telehealth_available: Optional[bool] = None
    ssn_required: Optional[bool] = None
    payment_plans: Optional[bool] = None
    insurance_providers: Optional[List[str]] = None
    city: Optional[str] = None
    state: Optional[str] = None
    max_distance: Optional[float] = None
    max_price: Optional[float] = None
    origin: Optional[Coordinates] = None

    @field_validator('max_distance', 'max_price')
    @classmethod
    def validate_bound(cls, v):
        """Ensure numeric bounds are non-negative."""
        if v is not None and v < 0:
            raise ValueError("Bounds cannot be negative")
        return v

    @field_validator('service_terms', 'service_categories', 'insurance_providers')
    @classmethod
    def clean_terms(cls, v):
        """Strip blanks; an empty list means unconstrained."""
        if v is None:
            return None
        cleaned = [term.strip() for term in v if isinstance(term, str) and term.strip()]
        return cleaned or None

    @classmethod
    def build(cls, **values) -> "SearchFilters":
        """Construct filters, reporting malformed input as a FilterValidationError."""
        try:
            return cls(**values)
        except ValidationError as e:
            raise FilterValidationError(f"Invalid search filters: {e}") from e

    @classmethod
    def from_state(cls,
                   state: "ConversationFilterState",
                   origin: Optional[Coordinates] = None,
                   max_distance: Optional[float] = None,
                   max_price: Optional[float] = None) -> "SearchFilters":
        """
        Project the accumulated conversation state into query filters.

        Args:
            state: Current conversation filter state
            origin: Geographic origin for distance computation
            max_distance: Optional distance bound in miles
            max_price: Optional price bound

        Returns:
            Frozen search filters
        """
        return cls.build(
            service_terms=state.service_terms,
            free_only=state.free_only,
            accepts_medicaid=state.accepts_medicaid,
            accepts_medicare=state.accepts_medicare,
            accepts_uninsured=state.accepts_uninsured,
            telehealth_available=state.telehealth_available,
            ssn_required=state.ssn_required,
            insurance_providers=state.insurance_providers,
            max_distance=max_distance,
            max_price=max_price,
            origin=origin,
        )

    def applied(self) -> dict:
        """Set fields only, for debug output."""
        return self.model_dump(exclude_none=True)

"""
Provider catalog models.
"""
from typing import Any, List, Optional
from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator


class Coordinates(BaseModel):
    """A latitude/longitude pair in degrees."""
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class ServicePrice(BaseModel):
    """Cost of a service: either a flat amount or a min/max range."""
    flat: Optional[float] = None
    min: Optional[float] = None
    max: Optional[float] = None
    currency: Optional[str] = None
    raw: Optional[str] = None

    @field_validator('flat', 'min', 'max')
    @classmethod
    def validate_amount(cls, v):
        """Ensure prices are non-negative."""
        if v is not None and v < 0:
            raise ValueError("Price cannot be negative")
        return v

    @model_validator(mode='after')
    def validate_representation(self):
        """A price is either flat or a range, never both."""
        if self.flat is not None and (self.min is not None or self.max is not None):
            raise ValueError("Price must be either flat or a min/max range")
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError("Price range min exceeds max")
        return self

    def effective_min(self) -> Optional[float]:
        """Lowest known amount (range minimum, else the flat amount)."""
        return self.min if self.min is not None else self.flat


class Service(BaseModel):
    """A service offered by exactly one provider."""
    name: str
    category: str = ""
    description: Optional[str] = None
    price: Optional[ServicePrice] = None
    is_free: bool = False
    is_discounted: bool = False
    # Retrieval-only; never serialized
    embedding: Optional[List[float]] = Field(default=None, exclude=True, repr=False)


class InsuranceInfo(BaseModel):
    """Insurance capability flags."""
    medicaid: Optional[bool] = None
    medicare: Optional[bool] = None
    self_pay_options: Optional[bool] = None
    payment_plans: Optional[bool] = None
    major_providers: List[str] = Field(default_factory=list)


class TelehealthInfo(BaseModel):
    """Telehealth capability flags."""
    available: Optional[bool] = None
    services: List[str] = Field(default_factory=list)
    platforms: List[str] = Field(default_factory=list)


class Provider(BaseModel):
    """A healthcare provider and its per-query derived ranking fields."""
    id: str = Field(validation_alias=AliasChoices("id", "_id"))
    name: str
    category: str = ""

    # Contact
    phone: Optional[str] = None
    website: Optional[str] = None
    email: Optional[str] = None
    booking_url: Optional[str] = None

    # Address
    address_line: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    location: Optional[Coordinates] = None

    rating: Optional[float] = None
    total_reviews: Optional[int] = None
    services: List[Service] = Field(default_factory=list)
    insurance: InsuranceInfo = Field(default_factory=InsuranceInfo)
    telehealth: TelehealthInfo = Field(default_factory=TelehealthInfo)
    ssn_required: Optional[bool] = None

    # Derived per query, never persisted
    distance_miles: Optional[float] = None
    min_service_price: Optional[float] = None
    has_free_services: bool = False
    matching_service_count: int = 0
    rank_score: Optional[float] = None
    similarity: Optional[float] = Field(default=None, exclude=True)

    @field_validator('id', mode='before')
    @classmethod
    def coerce_id(cls, v):
        """Catalog ids may be ObjectIds or ints."""
        return str(v)

    @field_validator('location', mode='before')
    @classmethod
    def parse_location(cls, v: Any):
        """Accept GeoJSON points ([lon, lat]) as well as lat/lon pairs."""
        if isinstance(v, dict) and "coordinates" in v:
            coords = v.get("coordinates") or []
            if len(coords) != 2:
                return None
            return {"latitude": coords[1], "longitude": coords[0]}
        return v

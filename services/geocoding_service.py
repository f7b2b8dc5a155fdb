"""
Client for the external forward-geocoding collaborator.
"""
import logging
from typing import Any, Optional

import httpx

from config import GEOCODING_CONFIG
from models.provider import Coordinates

logger = logging.getLogger(__name__)


class GeocodingService:
    """Turns free-form place text into coordinates; failures yield no location."""

    def __init__(self,
                 endpoint: Optional[str] = None,
                 api_key: Optional[str] = None,
                 country: Optional[str] = None,
                 timeout: Optional[float] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.endpoint = endpoint if endpoint is not None else GEOCODING_CONFIG["endpoint"]
        self.api_key = api_key if api_key is not None else GEOCODING_CONFIG["api_key"]
        self.country = country or GEOCODING_CONFIG["country"]
        self.timeout = timeout if timeout is not None else GEOCODING_CONFIG["timeout"]
        self.transport = transport

    async def forward(self, text: Optional[str]) -> Optional[Coordinates]:
        """
        Geocode a place name.

        Args:
            text: Place text such as "Austin" or "Washington, DC"

        Returns:
            Coordinates, or None when the place cannot be resolved
        """
        query = (text or "").strip()
        if not query:
            return None
        if not self.endpoint:
            logger.warning("Geocoding endpoint not configured")
            return None

        params = {"q": query, "country": self.country, "limit": 1}
        if self.api_key:
            params["key"] = self.api_key

        try:
            async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout) as client:
                response = await client.get(self.endpoint, params=params)
                response.raise_for_status()
                coordinates = self._parse(response.json())
        except Exception as e:
            logger.warning(f"Geocoding failed for '{query}': {str(e)}")
            return None

        if coordinates is None:
            logger.info(f"No geocoding result for '{query}'")
        return coordinates

    @staticmethod
    def _parse(payload: Any) -> Optional[Coordinates]:
        """
        Accept ``{"latitude", "longitude"}``, ``{"lat", "lon"}`` or a
        ``{"results": [...]}`` / list wrapper around either.
        """
        if isinstance(payload, dict) and isinstance(payload.get("results"), list):
            payload = payload["results"]
        if isinstance(payload, list):
            payload = payload[0] if payload else None
        if not isinstance(payload, dict):
            return None

        latitude = payload.get("latitude", payload.get("lat"))
        longitude = payload.get("longitude", payload.get("lon", payload.get("lng")))
        if latitude is None or longitude is None:
            return None
        return Coordinates(latitude=float(latitude), longitude=float(longitude))

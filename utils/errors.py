"""
Error types raised by the discovery engine.

Only hard failures are modelled as exceptions. Degradations (embedding,
geocoding, signal extraction) are logged and reported in debug info instead.
"""


class DiscoveryError(Exception):
    """Base class for discovery engine errors."""


class CatalogQueryError(DiscoveryError):
    """The provider catalog could not answer an attribute query."""


class FilterValidationError(DiscoveryError, ValueError):
    """Filter input could not be turned into a valid query."""

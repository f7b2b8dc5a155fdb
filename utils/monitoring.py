"""
Monitoring and metrics for the discovery engine.
"""
import logging
import threading
import time
from typing import Any, Dict

logger = logging.getLogger(__name__)

ROUTES = ["provider_profile", "filter_only", "service_search", "hybrid"]


class DiscoveryMonitor:
    """Track request volume, routes, degradations and latency."""

    def __init__(self):
        """Initialize the monitoring system."""
        logger.info("Initializing discovery monitor")
        self._lock = threading.Lock()
        self.requests_processed = 0
        self.error_count = 0
        self.avg_response_time = 0.0
        self.route_distribution = {route: 0 for route in ROUTES}
        self.degradations = {
            "semantic_degraded": 0,
            "semantic_timeout": 0,
            "semantic_failed": 0,
            "geocode_failed": 0,
            "llm_extraction_failed": 0,
        }
        self.hourly_request_count: Dict[str, int] = {}

    def log_discovery(self, debug_info: Dict[str, Any], execution_time: float, error: bool = False):
        """
        Record one discovery request.

        Args:
            debug_info: Debug info produced by the pipeline
            execution_time: Wall time in seconds
            error: Whether the request failed hard
        """
        with self._lock:
            self.requests_processed += 1
            if error:
                self.error_count += 1

            route = debug_info.get("route")
            if route:
                self.route_distribution[route] = self.route_distribution.get(route, 0) + 1

            semantic_status = (debug_info.get("retrieval") or {}).get("semantic_status")
            if semantic_status in ("degraded", "timeout", "failed"):
                self.degradations[f"semantic_{semantic_status}"] += 1
            if debug_info.get("location_source") == "geocode_failed":
                self.degradations["geocode_failed"] += 1
            if (debug_info.get("extraction") or {}).get("llm") == "failed":
                self.degradations["llm_extraction_failed"] += 1

            self.avg_response_time = (
                (self.avg_response_time * (self.requests_processed - 1) + execution_time) /
                self.requests_processed
            )

            current_hour = time.strftime("%Y-%m-%d-%H")
            self.hourly_request_count[current_hour] = self.hourly_request_count.get(current_hour, 0) + 1

        logger.debug(f"Logged discovery metrics: route={route}, time={execution_time:.2f}s")

    def get_system_health(self) -> Dict[str, Any]:
        """
        Get system health metrics.

        Returns:
            Dictionary of health metrics
        """
        with self._lock:
            return {
                "requests_processed": self.requests_processed,
                "error_rate": self.error_count / max(1, self.requests_processed),
                "route_distribution": dict(self.route_distribution),
                "degradations": dict(self.degradations),
                "avg_response_time": self.avg_response_time,
                "hourly_distribution": dict(self.hourly_request_count),
            }

"""
FastAPI implementation for the provider discovery engine.
"""
import logging
from typing import Dict, Any, List, Optional
from fastapi import FastAPI, HTTPException, Depends, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
import uvicorn
import time
import uuid

from config import APP_CONFIG
from models.filters import SearchFilters
from models.provider import Coordinates, Provider
from models.requests import DiscoveryRequest
from models.state import ConversationFilterState
from services.discovery_service import DiscoveryService
from utils.errors import CatalogQueryError, FilterValidationError

# Configure logging
logging.basicConfig(
    level=getattr(logging, APP_CONFIG["log_level"].upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)

# Initialize FastAPI
app = FastAPI(
    title="Provider Discovery API",
    description="API for conversational healthcare provider discovery",
    version="1.0.0"
)

_discovery_service: Optional[DiscoveryService] = None


def get_discovery_service() -> DiscoveryService:
    """Shared service instance, created on first use."""
    global _discovery_service
    if _discovery_service is None:
        _discovery_service = DiscoveryService()
    return _discovery_service


# API Models
class SearchRequest(BaseModel):
    """Conversational search request."""
    query: str
    state: Optional[ConversationFilterState] = None
    conversation: List[Dict[str, str]] = Field(default_factory=list)
    location: Optional[Coordinates] = None
    context_providers: List[Provider] = Field(default_factory=list)
    max_distance: Optional[float] = None
    max_price: Optional[float] = None
    limit: Optional[int] = None
    offset: int = 0


class SearchResponse(BaseModel):
    """Conversational search response."""
    providers: List[Dict[str, Any]]
    new_state: ConversationFilterState
    debug_info: Dict[str, Any]
    session_id: Optional[str] = None
    request_id: str


class FilterRequest(BaseModel):
    """Filter-only request."""
    filters: Dict[str, Any] = Field(default_factory=dict)
    location: Optional[Coordinates] = None
    limit: Optional[int] = None
    offset: int = 0


class ProviderLookupRequest(BaseModel):
    """Provider-by-name request."""
    name: str
    location: Optional[Coordinates] = None
    limit: int = 3


# Hard failures
@app.exception_handler(CatalogQueryError)
async def catalog_error_handler(request: Request, exc: CatalogQueryError):
    logger.error(f"Catalog error on {request.url.path}: {str(exc)}")
    return JSONResponse(status_code=502, content={"detail": str(exc)})


@app.exception_handler(FilterValidationError)
async def filter_error_handler(request: Request, exc: FilterValidationError):
    logger.warning(f"Invalid filters on {request.url.path}: {str(exc)}")
    return JSONResponse(status_code=422, content={"detail": str(exc)})


# API Routes
@app.get("/")
async def root():
    """Root endpoint."""
    return {"message": "Provider Discovery API"}


@app.post("/copilot/search", response_model=SearchResponse)
async def search(
    request: SearchRequest,
    session_id: Optional[str] = Header(None, description="Session ID for conversation tracking"),
    service: DiscoveryService = Depends(get_discovery_service)
):
    """
    Run one conversational discovery turn.

    With a ``session-id`` header the prior state, history and last shown
    providers are taken from server-side session memory.
    """
    request_id = str(uuid.uuid4())
    logger.info(f"Search request: ID={request_id}, Query='{request.query}'")
    start_time = time.time()

    payload = {
        "utterance": request.query,
        "conversation": request.conversation,
        "location": request.location,
        "context_providers": request.context_providers,
        "max_distance": request.max_distance,
        "max_price": request.max_price,
        "limit": request.limit,
        "offset": request.offset,
    }
    if request.state is not None:
        payload["prior_state"] = request.state
    discovery_request = DiscoveryRequest(**payload)

    if session_id:
        result = await service.search_session(session_id, discovery_request)
    else:
        result = await service.search(discovery_request)

    logger.info(f"Search completed: ID={request_id}, Time={time.time() - start_time:.2f}s")
    return SearchResponse(
        providers=result.providers,
        new_state=result.new_state,
        debug_info=result.debug_info,
        session_id=session_id,
        request_id=request_id,
    )


@app.post("/copilot/filter")
async def filter_providers(
    request: FilterRequest,
    service: DiscoveryService = Depends(get_discovery_service)
):
    """Filter-only retrieval without semantic search."""
    filters = SearchFilters.build(**{**request.filters, "origin": request.location})
    providers = await service.filter_providers(filters, request.limit, request.offset)
    return {"providers": providers, "provider_count": len(providers), "filters_applied": filters.applied()}


@app.post("/copilot/provider")
async def provider_by_name(
    request: ProviderLookupRequest,
    service: DiscoveryService = Depends(get_discovery_service)
):
    """Look a provider up by name."""
    providers = await service.find_by_name(request.name, request.location, request.limit)
    return {"providers": providers}


@app.delete("/copilot/session/{session_id}")
async def clear_session(
    session_id: str,
    service: DiscoveryService = Depends(get_discovery_service)
):
    """Clear a conversation session."""
    existed = await service.conversation_service.clear_session(session_id)
    if not existed:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    return {"message": f"Session {session_id} cleared successfully"}


@app.get("/health")
async def health_check(service: DiscoveryService = Depends(get_discovery_service)):
    """Health check endpoint."""
    return {
        "status": "healthy",
        "features": service.features(),
        "timestamp": time.time()
    }


@app.get("/metrics")
async def get_metrics(service: DiscoveryService = Depends(get_discovery_service)):
    """Request, route and degradation metrics."""
    return service.monitor.get_system_health()


if __name__ == "__main__":
    # Run the API using Uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)

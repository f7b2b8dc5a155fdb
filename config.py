"""
Configuration settings for the provider discovery engine.
"""
import os
from typing import Dict, Any
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Embedding endpoint configuration
EMBEDDING_CONFIG = {
    "endpoint": os.environ.get("EMBEDDING_ENDPOINT", ""),
    "api_key": os.environ.get("EMBEDDING_API_KEY", ""),
    "model": os.environ.get("EMBEDDING_MODEL", "text-embedding-3-small"),
    "dimension": int(os.environ.get("EMBEDDING_DIMENSION", "1536")),
    "timeout": float(os.environ.get("EMBEDDING_TIMEOUT", "5.0")),  # in seconds, per attempt
    "max_retries": int(os.environ.get("EMBEDDING_RETRIES", "2")),
    "backoff_base": float(os.environ.get("EMBEDDING_BACKOFF", "0.3")),  # in seconds
    "cache_capacity": int(os.environ.get("EMBEDDING_CACHE_CAPACITY", "500")),
}

# Vector store config (service-level embeddings)
VECTOR_STORE_CONFIG = {
    "url": os.environ.get("QDRANT_URL", "http://localhost:6333"),
    "api_key": os.environ.get("QDRANT_API_KEY", ""),
    "collection_name": os.environ.get("QDRANT_COLLECTION", "provider_services"),
    "dimension": EMBEDDING_CONFIG["dimension"],
}

# Provider catalog configuration
CATALOG_CONFIG = {
    "backend": os.environ.get("CATALOG_BACKEND", "json"),  # json | json+qdrant
    "data_file": os.environ.get(
        "CATALOG_DATA_FILE",
        os.path.join(os.path.dirname(os.path.abspath(__file__)), "data", "providers.json")
    ),
    "candidate_limit": int(os.environ.get("CATALOG_CANDIDATE_LIMIT", "500")),
    "vector_k": int(os.environ.get("CATALOG_VECTOR_K", "120")),
    "semantic_timeout": float(os.environ.get("CATALOG_SEMANTIC_TIMEOUT", "6.0")),  # in seconds
    "name_lookup_limit": int(os.environ.get("CATALOG_NAME_LOOKUP_LIMIT", "200")),
}

# Ranking configuration
RANKING_CONFIG = {
    # Tunable heuristic, not derived from data
    "price_materiality_threshold": float(os.environ.get("RANKING_PRICE_THRESHOLD", "10")),
    "default_limit": int(os.environ.get("RESULT_LIMIT", "6")),
    "max_limit": int(os.environ.get("RESULT_MAX_LIMIT", "20")),
    # Proximity contribution to the rank score reaches zero here
    "distance_cutoff_miles": float(os.environ.get("RANKING_DISTANCE_CUTOFF", "50")),
}

# Entity resolver configuration
RESOLVER_CONFIG = {
    "max_top_k": int(os.environ.get("RESOLVER_MAX_TOP_K", "5")),
    "contiguous_bonus": float(os.environ.get("RESOLVER_CONTIGUOUS_BONUS", "0.5")),
    "distance_bonus": float(os.environ.get("RESOLVER_DISTANCE_BONUS", "0.15")),
    # Tunable heuristic, not derived from data
    "distance_cutoff_miles": float(os.environ.get("RESOLVER_DISTANCE_CUTOFF", "50")),
    "context_min_ratio": float(os.environ.get("RESOLVER_CONTEXT_MIN_RATIO", "0.5")),
}

# Geocoding collaborator configuration
GEOCODING_CONFIG = {
    "endpoint": os.environ.get("GEOCODING_ENDPOINT", ""),
    "api_key": os.environ.get("GEOCODING_API_KEY", ""),
    "country": os.environ.get("GEOCODING_COUNTRY", "us"),
    "timeout": float(os.environ.get("GEOCODING_TIMEOUT", "4.0")),
}

# LLM configuration (signal extraction)
LLM_CONFIG = {
    "model": os.environ.get("LLM_MODEL", "gemini-2.0-flash-lite"),
    "temperature": float(os.environ.get("LLM_TEMPERATURE", "0.0")),
    "api_key": os.environ.get("LLM_API_KEY", ""),
    "timeout": float(os.environ.get("LLM_TIMEOUT", "10.0")),
    "max_retries": int(os.environ.get("LLM_RETRIES", "1")),
}

# Application configuration
APP_CONFIG = {
    "debug": os.environ.get("DEBUG", "False").lower() == "true",
    "log_level": os.environ.get("LOG_LEVEL", "INFO"),
    "session_ttl": int(os.environ.get("SESSION_TTL", "3600")),  # in seconds
    "session_history": int(os.environ.get("SESSION_HISTORY", "10")),
}

# Feature flags
FEATURES = {
    "use_llm_extraction": os.environ.get("USE_LLM_EXTRACTION", "True").lower() == "true",
    "use_semantic_search": os.environ.get("USE_SEMANTIC_SEARCH", "True").lower() == "true",
    "use_geocoding": os.environ.get("USE_GEOCODING", "True").lower() == "true",
}

def get_config() -> Dict[str, Any]:
    """Return the complete configuration dictionary."""
    return {
        "embedding": EMBEDDING_CONFIG,
        "vector_store": VECTOR_STORE_CONFIG,
        "catalog": CATALOG_CONFIG,
        "ranking": RANKING_CONFIG,
        "resolver": RESOLVER_CONFIG,
        "geocoding": GEOCODING_CONFIG,
        "llm": LLM_CONFIG,
        "app": APP_CONFIG,
        "features": FEATURES
    }

"""API module - Matomo reporting API integration components.

This module provides:
- Request/response models
- Failure classification and backoff helpers
- Batch fetch transport and response caches
- The batch request dispatcher and the typed reporting client
"""

from matomo_connector.api.resilience import (
    extract_basic_auth_from_url,
    is_api_error_non_random,
    is_probably_temporary,
    is_quota_error,
)

__all__ = [
    "BatchDispatcher",
    "FetchOptions",
    "FileCache",
    "InMemoryCache",
    "ReportingClient",
    "Request",
    "RequestsBatchFetcher",
    "RetryState",
    "create_cache",
    "extract_basic_auth_from_url",
    "is_api_error_non_random",
    "is_probably_temporary",
    "is_quota_error",
]


from matomo_connector.core.lazy import lazy_exports

__getattr__, __dir__ = lazy_exports(
    __name__,
    {
        "FetchOptions": "matomo_connector.api.models",
        "Request": "matomo_connector.api.models",
        "BatchDispatcher": "matomo_connector.api.dispatcher",
        "RetryState": "matomo_connector.api.dispatcher",
        "ReportingClient": "matomo_connector.api.reporting",
        "RequestsBatchFetcher": "matomo_connector.api.transport",
        "FileCache": "matomo_connector.api.cache",
        "InMemoryCache": "matomo_connector.api.cache",
        "create_cache": "matomo_connector.api.cache",
    },
)

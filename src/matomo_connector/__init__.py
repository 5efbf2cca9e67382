"""
Matomo Connector - Matomo reporting API bridge for Looker Studio

Translates Matomo metric formulas into Looker Studio calculated field
syntax, and fetches report data from the Matomo HTTP API with batching,
retries and response caching.
"""

from __future__ import annotations

from matomo_connector.core.lazy import lazy_exports
from matomo_connector.core.version import __version__

__all__ = [
    "__version__",
    "BatchDispatcher",
    "FetchOptions",
    "ReportingClient",
    "Request",
    "TranslationResult",
    "translate",
]

__getattr__, __dir__ = lazy_exports(
    __name__,
    {
        "BatchDispatcher": "matomo_connector.api.dispatcher",
        "FetchOptions": "matomo_connector.api.models",
        "ReportingClient": "matomo_connector.api.reporting",
        "Request": "matomo_connector.api.models",
        "TranslationResult": "matomo_connector.formula.translator",
        "translate": "matomo_connector.formula.translator",
    },
)

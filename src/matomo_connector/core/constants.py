"""Constants and default values for the Matomo connector.

This module centralizes magic numbers, default configuration instances and
the fixed pattern lists the API client uses to classify failures.
"""

import re

from matomo_connector.core.config import (
    CacheConfig,
    FetchConfig,
    LogConfig,
    RetryConfig,
    RuntimeConfig,
)

# ==================== DISPLAY CONSTANTS ====================

# Width of banner separator lines (used across CLI output)
BANNER_WIDTH: int = 60

# ==================== DEFAULT CONFIG INSTANCES ====================

DEFAULT_RETRY = RetryConfig()
DEFAULT_RUNTIME = RuntimeConfig()
DEFAULT_FETCH = FetchConfig()
DEFAULT_CACHE = CacheConfig()
DEFAULT_LOG = LogConfig()

# ==================== REPORTING API ====================

API_MODULE: str = "API"
API_RESPONSE_FORMAT: str = "JSON"
API_ENDPOINT_SUFFIX: str = "/index.php?"
AUTH_TOKEN_FIELD: str = "token_auth"

# Characters of the response body kept in synthesized error entries
ERROR_BODY_EXCERPT_LENGTH: int = 100

# Oldest server version the connector fully supports (major, minor)
MIN_SUPPORTED_VERSION: tuple[int, int] = (4, 14)

# ==================== RETRYABLE ERRORS ====================

# HTTP status codes that leave a request pending for the next round
RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({420, 502, 503, 504})

# Application error messages that will recur on retry. Matched case-insensitively
# anywhere in the server message; anything else is assumed to be transient.
# These track server wording and will need revisiting when messages change.
NON_RANDOM_ERROR_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"Requested report.*not found in the list of available reports", re.IGNORECASE),
    re.compile(r"does not support multiple", re.IGNORECASE),  # VisitTime.getByDayOfWeek
    re.compile(r"The plugin \w+ is not enabled", re.IGNORECASE),
    re.compile(r"does not exist", re.IGNORECASE),
    re.compile(r"You can't access this resource", re.IGNORECASE),
    re.compile(r"An unexpected website was found", re.IGNORECASE),
    re.compile(r"Referrers\.getAll with multiple sites or dates is not supported", re.IGNORECASE),
)

# Lower-cased substrings of whole-batch transport failures worth retrying
TRANSIENT_FETCH_ERROR_SIGNATURES: tuple[str, ...] = (
    "address unavailable",
    "cannot assign requested address",
    "dns error",
    "temporary failure in name resolution",
    "property fetchall on object urlfetchapp",
)

# Lower-cased substring of the transport failure raised once the daily fetch quota is used
FETCH_QUOTA_ERROR_SIGNATURE: str = "service invoked too many times for one day: urlfetch"

QUOTA_EXCEEDED_MESSAGE: str = (
    'The "urlfetch" daily quota for your account has been reached, further requests for today may not work. '
    "See https://developers.google.com/apps-script/guides/services/quotas for more information."
)

DEFAULT_RUNTIME_ABORT_MESSAGE: str = "This request is taking too long, aborting."

# ==================== CACHE KEYS ====================

SITES_CACHE_KEY: str = "getConfig.SitesManager.getSitesWithAtLeastViewAccess"
REPORT_METADATA_CACHE_KEY_PREFIX: str = "getConfig.API.getReportMetadata."
SEGMENTS_CACHE_KEY_PREFIX: str = "getConfig.SegmentEditor.getAll."

# TTL for memoized report metadata listings
REPORT_METADATA_CACHE_TTL: int = 600

# ==================== ENVIRONMENT VARIABLE MAPPING ====================

# Maps credential field names to environment variable names
ENV_VAR_MAPPING: dict[str, str] = {
    "instance_url": "MATOMO_URL",
    "token_auth": "MATOMO_TOKEN",
}

CREDENTIAL_FIELDS: dict[str, list[str]] = {
    "required": ["instance_url", "token_auth"],
    "all": ["instance_url", "token_auth"],
}

DEFAULT_CONFIG_FILE: str = "matomo.json"

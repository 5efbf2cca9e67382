"""Core module - Foundation components with no internal dependencies.

This module provides the basic building blocks used throughout the connector:
- Version information
- Custom exceptions
- Configuration dataclasses
- Constants and defaults
"""

from matomo_connector.core.version import __version__

from matomo_connector.core.exceptions import (
    MatomoConnectorError,
    FormulaError,
    FormulaParseError,
    UnsupportedFormulaError,
    ConfigurationError,
    CredentialSourceError,
    UserFacingError,
    QuotaExceededError,
    UnexpectedError,
    RuntimeLimitExceeded,
    APIError,
)

from matomo_connector.core.config import (
    RetryConfig,
    RuntimeConfig,
    FetchConfig,
    CacheConfig,
    LogConfig,
    ConnectorConfig,
)

from matomo_connector.core.constants import (
    BANNER_WIDTH,
    DEFAULT_RETRY,
    DEFAULT_RUNTIME,
    DEFAULT_FETCH,
    DEFAULT_CACHE,
    DEFAULT_LOG,
    RETRYABLE_STATUS_CODES,
    NON_RANDOM_ERROR_PATTERNS,
    TRANSIENT_FETCH_ERROR_SIGNATURES,
    ENV_VAR_MAPPING,
    CREDENTIAL_FIELDS,
)

__all__ = [
    # Version
    '__version__',
    # Exceptions
    'MatomoConnectorError',
    'FormulaError',
    'FormulaParseError',
    'UnsupportedFormulaError',
    'ConfigurationError',
    'CredentialSourceError',
    'UserFacingError',
    'QuotaExceededError',
    'UnexpectedError',
    'RuntimeLimitExceeded',
    'APIError',
    # Config dataclasses
    'RetryConfig',
    'RuntimeConfig',
    'FetchConfig',
    'CacheConfig',
    'LogConfig',
    'ConnectorConfig',
    # Constants
    'BANNER_WIDTH',
    'DEFAULT_RETRY',
    'DEFAULT_RUNTIME',
    'DEFAULT_FETCH',
    'DEFAULT_CACHE',
    'DEFAULT_LOG',
    'RETRYABLE_STATUS_CODES',
    'NON_RANDOM_ERROR_PATTERNS',
    'TRANSIENT_FETCH_ERROR_SIGNATURES',
    'ENV_VAR_MAPPING',
    'CREDENTIAL_FIELDS',
]

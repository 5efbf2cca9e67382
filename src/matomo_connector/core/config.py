"""Configuration dataclasses for the Matomo connector.

These dataclasses centralize every tunable the connector reads at process
start: retry ceilings, the host runtime budget, request headers and cache
settings. They can be built from environment variables (``from_env``), from
parsed command-line arguments (``from_args``), or directly in code and tests.
"""

from __future__ import annotations

import argparse
import json
import logging
import math
import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "Mozilla/5.0 (X11; Ubuntu; Linux x86_64; rv:130.0) Gecko/20100101 Firefox/130.0"


def _parse_env_numeric(value: str | None, cast: Callable[[str], Any]) -> Any | None:
    """Parse an environment value, returning None when invalid."""
    if value is None:
        return None
    try:
        parsed = cast(value.strip())
    except (TypeError, ValueError):
        return None
    if isinstance(parsed, float) and not math.isfinite(parsed):
        return None
    return parsed


def _env_number(env: Mapping[str, str], name: str, cast: Callable[[str], Any], default: Any) -> Any:
    """Read a non-negative number from ``env``, warning and falling back on bad input."""
    if name not in env:
        return default
    parsed = _parse_env_numeric(env.get(name), cast)
    if parsed is None or parsed < 0:
        logger.warning(f"Ignoring invalid {name}={env.get(name)!r}; using default {default}")
        return default
    return parsed


def _env_headers(env: Mapping[str, str], name: str) -> dict[str, str]:
    raw = env.get(name)
    if not raw:
        return {}
    try:
        headers = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"Ignoring {name}: value is not valid JSON")
        return {}
    if not isinstance(headers, dict):
        logger.warning(f"Ignoring {name}: expected a JSON object")
        return {}
    return {str(k): str(v) for k, v in headers.items()}


@dataclass
class RetryConfig:
    """Configuration for the batch dispatcher's retry rounds.

    Attributes:
        retry_limit_seconds: Retry ceiling; no new round starts once this much
            wall-clock time has passed since the first round (default: 60)
        initial_wait_seconds: Backoff interval before the second round (default: 1.0)
        max_wait_seconds: Cap for the doubling backoff interval (default: 32.0)
    """

    retry_limit_seconds: float = 60.0
    initial_wait_seconds: float = 1.0
    max_wait_seconds: float = 32.0


@dataclass
class RuntimeConfig:
    """Configuration for the host runtime budget.

    Attributes:
        script_runtime_limit_seconds: Hard ceiling on elapsed execution time of the
            whole host invocation; 0 disables the check (default: 0)
    """

    script_runtime_limit_seconds: float = 0.0


@dataclass
class FetchConfig:
    """Configuration shared by every outbound reporting API request.

    Attributes:
        user_agent: User-Agent header sent with each request
        extra_headers: Static headers added to each request
        source_identifier: Query field set to ``1`` so the server can tell
            connector traffic apart from other API clients
        timeout_seconds: Per-request socket timeout for the HTTP transport
    """

    user_agent: str = DEFAULT_USER_AGENT
    extra_headers: dict[str, str] = field(default_factory=dict)
    source_identifier: str = "trigger"
    timeout_seconds: float = 60.0


@dataclass
class CacheConfig:
    """Configuration for cached API responses.

    Attributes:
        config_request_ttl_seconds: TTL for configuration-flow lookups (sites,
            segments); 0 disables caching them (default: 0)
        directory: Directory for the on-disk cache; None keeps entries in memory
        max_size: Maximum entries held by the in-memory cache (default: 1000)
    """

    config_request_ttl_seconds: int = 0
    directory: str | None = None
    max_size: int = 1000


@dataclass
class LogConfig:
    """Configuration for logging behavior.

    Attributes:
        level: Logging level string (default: "INFO")
        format: "text" or "json" (default: "text")
        file: Optional log file path
        file_max_bytes: Maximum size per log file (default: 10MB)
        file_backup_count: Number of backup log files (default: 5)
    """

    level: str = "INFO"
    format: str = "text"
    file: str | None = None
    file_max_bytes: int = 10 * 1024 * 1024  # 10MB
    file_backup_count: int = 5


@dataclass
class ConnectorConfig:
    """Master configuration for the connector.

    Attributes:
        retry: Retry round configuration
        runtime: Host runtime budget
        fetch: Request header/identifier configuration
        cache: Response cache configuration
        log: Logging configuration
        quiet: Suppress progress output
    """

    retry: RetryConfig = field(default_factory=RetryConfig)
    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    log: LogConfig = field(default_factory=LogConfig)
    quiet: bool = False

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> ConnectorConfig:
        """Create configuration from environment variables.

        Invalid numeric values are logged and replaced by their defaults.
        """
        env = os.environ if env is None else env
        defaults = cls()
        return cls(
            retry=replace(
                defaults.retry,
                retry_limit_seconds=_env_number(
                    env, "API_REQUEST_RETRY_LIMIT_IN_SECS", float, defaults.retry.retry_limit_seconds
                ),
            ),
            runtime=RuntimeConfig(
                script_runtime_limit_seconds=_env_number(
                    env, "SCRIPT_RUNTIME_LIMIT", float, defaults.runtime.script_runtime_limit_seconds
                ),
            ),
            fetch=replace(
                defaults.fetch,
                user_agent=env.get("API_REQUEST_USER_AGENT") or defaults.fetch.user_agent,
                extra_headers=_env_headers(env, "API_REQUEST_EXTRA_HEADERS"),
                source_identifier=env.get("API_REQUEST_SOURCE_IDENTIFIER") or defaults.fetch.source_identifier,
            ),
            cache=replace(
                defaults.cache,
                config_request_ttl_seconds=_env_number(
                    env, "CONFIG_REQUEST_CACHE_TTL_SECS", int, defaults.cache.config_request_ttl_seconds
                ),
                directory=env.get("MATOMO_CONNECTOR_CACHE_DIR") or None,
            ),
            log=replace(defaults.log, level=env.get("LOG_LEVEL", defaults.log.level)),
        )

    @classmethod
    def from_args(cls, args: argparse.Namespace, env: Mapping[str, str] | None = None) -> ConnectorConfig:
        """Create configuration from parsed command-line arguments.

        Arguments that were not given keep the environment-derived values.
        """
        config = cls.from_env(env)
        retry_limit = getattr(args, "retry_limit", None)
        if retry_limit is not None:
            config.retry.retry_limit_seconds = retry_limit
        runtime_limit = getattr(args, "runtime_limit", None)
        if runtime_limit is not None:
            config.runtime.script_runtime_limit_seconds = runtime_limit
        cache_dir = getattr(args, "cache_dir", None)
        if cache_dir:
            config.cache.directory = cache_dir
        if getattr(args, "log_level", None):
            config.log.level = args.log_level
        config.log.format = getattr(args, "log_format", None) or config.log.format
        config.log.file = getattr(args, "log_file", None) or config.log.file
        config.quiet = bool(getattr(args, "quiet", False))
        return config

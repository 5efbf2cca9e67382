"""Key/value caches for API responses.

The dispatcher and reporting client only need ``get(key)`` and
``put(key, value, ttl_seconds)`` with string values; anything implementing
:class:`KeyValueCache` can be injected. Two implementations are provided: a
thread-safe in-memory LRU cache and a JSON file cache that survives between
command line runs.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import threading
import time
import uuid
from collections.abc import Callable
from pathlib import Path
from typing import Any, Protocol


class KeyValueCache(Protocol):
    """String cache with per-entry TTL. Missing or expired keys return None."""

    def get(self, key: str) -> str | None: ...

    def put(self, key: str, value: str, ttl_seconds: int) -> None: ...


class InMemoryCache:
    """
    Thread-safe LRU cache with per-entry TTL

    Uses LRU eviction policy to prevent unbounded memory growth.

    Thread Safety:
    - Uses threading.Lock for all cache operations
    """

    def __init__(
        self,
        max_size: int = 1000,
        logger: logging.Logger | None = None,
        time_func: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the cache

        Args:
            max_size: Maximum number of cached entries, >= 1 (default: 1000)
            logger: Logger instance for cache statistics (default: module logger)
            time_func: Clock used for expiry and LRU tracking
        """
        self.max_size = max_size
        self.logger = logger or logging.getLogger(__name__)
        self._time = time_func

        # Cache storage: key -> (value, expires_at)
        self._cache: dict[str, tuple[str, float]] = {}

        # LRU tracking: key -> last_access_time
        self._access_times: dict[str, float] = {}

        self._lock = threading.Lock()

        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self._misses += 1
                return None
            value, expires_at = entry
            now = self._time()
            if now >= expires_at:
                self.logger.debug(f"Cache EXPIRED: {key}")
                del self._cache[key]
                del self._access_times[key]
                self._misses += 1
                return None
            self._access_times[key] = now
            self._hits += 1
            return value

    def put(self, key: str, value: str, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            return
        with self._lock:
            if len(self._cache) >= self.max_size and key not in self._cache:
                self._evict_lru()
            now = self._time()
            self._cache[key] = (value, now + ttl_seconds)
            self._access_times[key] = now
            self.logger.debug(f"Cache STORE: {key} (ttl {ttl_seconds}s)")

    def _evict_lru(self) -> None:
        """Evict least recently used cache entry."""
        if not self._access_times:
            return
        lru_key = min(self._access_times.items(), key=lambda x: x[1])[0]
        del self._cache[lru_key]
        del self._access_times[lru_key]
        self._evictions += 1
        self.logger.debug(f"Cache EVICT: LRU entry removed (total evictions: {self._evictions})")

    def get_statistics(self) -> dict[str, Any]:
        """
        Get cache performance statistics

        Returns:
            Dict with hits, misses, hit_rate, size, evictions
        """
        with self._lock:
            total_requests = self._hits + self._misses
            hit_rate = (self._hits / total_requests * 100) if total_requests > 0 else 0
            return {
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": hit_rate,
                "size": len(self._cache),
                "max_size": self.max_size,
                "evictions": self._evictions,
                "total_requests": total_requests,
            }

    def clear(self):
        """Clear all cache entries (useful for testing)"""
        with self._lock:
            self._cache.clear()
            self._access_times.clear()


class FileCache:
    """Cache persisted as one JSON file, shared by successive command line runs.

    Entries are stored as ``{key: {"value": ..., "expires_at": <unix time>}}``.
    The file is re-read on every access so concurrent processes see each
    other's writes; the last writer wins.
    """

    def __init__(
        self,
        cache_dir: Path | str | None = None,
        logger: logging.Logger | None = None,
        time_func: Callable[[], float] = time.time,
    ):
        """Initialize the cache.

        Args:
            cache_dir: Directory for the cache file. Defaults to ~/.matomo_connector/cache/
            logger: Optional logger for cache load warnings
            time_func: Wall clock used for expiry
        """
        if cache_dir is None:
            cache_dir = Path.home() / ".matomo_connector" / "cache"
        self.cache_dir = Path(cache_dir)
        self.cache_file = self.cache_dir / "api_responses.json"
        self.logger = logger or logging.getLogger(__name__)
        self._time = time_func

    def _load(self) -> dict[str, dict[str, Any]]:
        """Load cache from disk; an unreadable file counts as empty."""
        if not self.cache_file.exists():
            return {}
        try:
            with open(self.cache_file, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            self.logger.warning(f"Failed to load API cache from {self.cache_file}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: dict[str, dict[str, Any]]) -> None:
        """Save cache to disk via atomic write-then-rename.

        Raises:
            OSError: If the cache file cannot be written
        """
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        tmp_path = self.cache_file.with_name(f".{self.cache_file.name}.{uuid.uuid4().hex}.tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f)
            os.replace(tmp_path, self.cache_file)
        except OSError:
            with contextlib.suppress(OSError):
                tmp_path.unlink()
            raise

    def get(self, key: str) -> str | None:
        entry = self._load().get(key)
        if not isinstance(entry, dict):
            return None
        expires_at = entry.get("expires_at")
        if not isinstance(expires_at, (int, float)) or self._time() >= expires_at:
            return None
        value = entry.get("value")
        return value if isinstance(value, str) else None

    def put(self, key: str, value: str, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            return
        now = self._time()
        data = {
            k: v
            for k, v in self._load().items()
            if isinstance(v, dict) and isinstance(v.get("expires_at"), (int, float)) and v["expires_at"] > now
        }
        data[key] = {"value": value, "expires_at": now + ttl_seconds}
        self._save(data)

    def clear(self) -> None:
        with contextlib.suppress(FileNotFoundError):
            self.cache_file.unlink()


def create_cache(directory: str | Path | None = None, max_size: int = 1000) -> KeyValueCache:
    """Return a :class:`FileCache` when a directory is configured, else an :class:`InMemoryCache`."""
    if directory:
        return FileCache(directory)
    return InMemoryCache(max_size=max_size)

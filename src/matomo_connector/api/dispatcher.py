"""Batch request dispatcher for the Matomo reporting API.

:class:`BatchDispatcher` sends many API calls as one outbound batch, keeps
the ones that failed for a possibly transient reason pending, and retries
only those with exponential backoff until everything is resolved or the
retry ceiling is reached. One dispatch call returns one response entry per
input request, in input order.

Each call runs a small state machine:

1. cache read (when a cache key and positive TTL are given)
2. build one canonical query string per request; identical requests share one
3. rounds: runtime budget check, batch fetch, classify each response, back off
4. strict-mode check, cache write
"""

from __future__ import annotations

import json
import logging
import re
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, replace
from urllib.parse import quote

from matomo_connector.api.cache import KeyValueCache
from matomo_connector.api.models import FetchOptions, Request, ResponseEntry, error_entry, is_error_entry
from matomo_connector.api.resilience import (
    extract_basic_auth_from_url,
    is_api_error_non_random,
    is_probably_temporary,
    is_quota_error,
    is_retryable_status,
    is_success_status,
    next_wait,
)
from matomo_connector.api.transport import BatchFetcher, FetchRequest, FetchResponse
from matomo_connector.core.config import ConnectorConfig
from matomo_connector.core.constants import (
    API_ENDPOINT_SUFFIX,
    API_MODULE,
    API_RESPONSE_FORMAT,
    AUTH_TOKEN_FIELD,
    DEFAULT_RUNTIME_ABORT_MESSAGE,
    ERROR_BODY_EXCERPT_LENGTH,
    QUOTA_EXCEEDED_MESSAGE,
)
from matomo_connector.core.credentials import CredentialStore
from matomo_connector.core.exceptions import APIError, ConfigurationError, QuotaExceededError, RuntimeLimitExceeded
from matomo_connector.core.perf import ScriptClock

# Characters encodeURIComponent leaves alone
_URI_COMPONENT_SAFE = "-_.!~*'()"

_TRAILING_INDEX_PATTERN = re.compile(r"/+(index\.php\??)?$")

# Token sent when no token is configured; Matomo treats it as an anonymous request
ANONYMOUS_TOKEN = "anonymous"


@dataclass
class RetryState:
    """Mutable state of one dispatch call, advanced once per round.

    Attributes:
        pending: Unresolved canonical queries mapped to every input index that asked for them
        wait_seconds: Backoff interval to sleep after the current round
        start_time: Clock reading when the first round started
        rounds: Number of rounds issued so far
        last_status: Last HTTP status seen for each canonical query
    """

    pending: dict[str, list[int]]
    wait_seconds: float
    start_time: float
    rounds: int = 0
    last_status: dict[str, int] = field(default_factory=dict)

    @property
    def done(self) -> bool:
        return not self.pending

    def resolve(self, query: str) -> None:
        self.pending.pop(query, None)


@dataclass
class _Endpoint:
    url: str
    headers: dict[str, str]
    token: str


class BatchDispatcher:
    """Send reporting API requests in batches with retries.

    Args:
        fetcher: Outbound batch fetch capability
        cache: Key/value cache for whole response lists (optional)
        credentials: Supplies the base URL and token when options do not
        config: Connector configuration (default: built from the environment)
        clock: Tracks elapsed time of the host invocation for the runtime budget
        sleep: Function used for backoff sleeps
        time_func: Clock used for the retry ceiling
        logger: Logger instance (default: module logger)
    """

    def __init__(
        self,
        fetcher: BatchFetcher,
        cache: KeyValueCache | None = None,
        credentials: CredentialStore | None = None,
        config: ConnectorConfig | None = None,
        clock: ScriptClock | None = None,
        sleep: Callable[[float], None] = time.sleep,
        time_func: Callable[[], float] = time.monotonic,
        logger: logging.Logger | None = None,
    ):
        self.fetcher = fetcher
        self.cache = cache
        self.credentials = credentials
        self.config = config or ConnectorConfig.from_env()
        self.clock = clock or ScriptClock()
        self._sleep = sleep
        self._time = time_func
        self.logger = logger or logging.getLogger(__name__)

    # ==================== PUBLIC API ====================

    def fetch(self, method: str, params: dict[str, str] | None = None, options: FetchOptions | None = None):
        """Send a single request and return its decoded response.

        Raises:
            APIError: If the request ended in an error
        """
        options = replace(options or FetchOptions(), throw_on_failed_request=True)
        return self.fetch_all([Request(method, params or {})], options)[0]

    def fetch_all(self, requests: Sequence[Request], options: FetchOptions | None = None) -> list[ResponseEntry]:
        """Send ``requests`` and return one response entry per request, in order.

        Args:
            requests: API calls to make
            options: Per-call options (credentials override, cache, runtime budget, strict mode)

        Returns:
            Decoded payloads, or ``{"result": "error", "message": ...}`` entries for
            requests that failed

        Raises:
            ConfigurationError: If no Matomo base URL is configured
            QuotaExceededError: If the outbound fetch quota is used up
            RuntimeLimitExceeded: If the runtime budget ran out with requests still pending
            APIError: In strict mode, if any entry is an error
        """
        options = options or FetchOptions()

        if options.uses_cache:
            cached = self._read_cache(options.cache_key)
            if cached is not None:
                return cached

        endpoint = self._resolve_endpoint(options)
        queries = [self.build_query(request) for request in requests]
        self.logger.debug(f"making requests to matomo: {queries}")

        pending: dict[str, list[int]] = {}
        for index, query in enumerate(queries):
            pending.setdefault(query, []).append(index)

        state = RetryState(
            pending=pending,
            wait_seconds=self.config.retry.initial_wait_seconds,
            start_time=self._time(),
        )
        responses: list[ResponseEntry] = [None] * len(requests)

        while not state.done and (state.rounds == 0 or not self._retry_ceiling_reached(state)):
            self._run_round(state, endpoint, responses, options)

        self._finalize_unresolved(state, responses)

        if options.throw_on_failed_request:
            self._raise_on_failures(requests, responses)

        if options.uses_cache:
            self._write_cache(options.cache_key, responses, options.cache_ttl)

        return responses

    def build_query(self, request: Request) -> str:
        """Return the canonical query string for ``request`` (without the auth token)."""
        params = {
            "module": API_MODULE,
            "method": request.method,
            "format": API_RESPONSE_FORMAT,
            **request.params,
            self.config.fetch.source_identifier: "1",
        }
        return "&".join(
            f"{name}={quote(str(value), safe=_URI_COMPONENT_SAFE)}" for name, value in params.items() if value is not None
        )

    # ==================== ROUNDS ====================

    def _retry_ceiling_reached(self, state: RetryState) -> bool:
        return self._time() >= state.start_time + self.config.retry.retry_limit_seconds

    def _check_runtime_limit(self, state: RetryState, options: FetchOptions) -> None:
        if not options.check_runtime_limit:
            return
        if not self.clock.exceeds(self.config.runtime.script_runtime_limit_seconds):
            return
        pending = list(state.pending)
        message = options.runtime_limit_abort_message or DEFAULT_RUNTIME_ABORT_MESSAGE
        raise RuntimeLimitExceeded(f"{message} (Requests being sent: {', '.join(pending)}).", pending_requests=pending)

    def _run_round(
        self, state: RetryState, endpoint: _Endpoint, responses: list[ResponseEntry], options: FetchOptions
    ) -> None:
        self._check_runtime_limit(state, options)

        batch = [
            FetchRequest(
                url=endpoint.url,
                headers=dict(endpoint.headers),
                method="post",
                payload=f"{query}&{AUTH_TOKEN_FIELD}={quote(endpoint.token, safe='')}",
                mute_http_exceptions=True,
                query=query,
            )
            for query in state.pending
        ]

        failed_count = 0
        try:
            fetched = self.fetcher.fetch_all(batch)
        except Exception as e:
            if is_quota_error(e):
                raise QuotaExceededError(QUOTA_EXCEEDED_MESSAGE) from e
            if not is_probably_temporary(e):
                raise
            self.logger.warning(f"Temporary fetch failure, retrying batch: {e}")
            fetched = []
            failed_count = len(batch)

        for fetch_request, response in zip(batch, fetched, strict=False):
            if not self._handle_response(state, fetch_request.query, response, responses):
                failed_count += 1

        state.rounds += 1

        if not state.done and not self._retry_ceiling_reached(state):
            self.logger.info(f"{failed_count} request(s) failed, retrying after {state.wait_seconds:g} seconds.")
            self._sleep(state.wait_seconds)
            state.wait_seconds = next_wait(state.wait_seconds, self.config.retry.max_wait_seconds)

    def _handle_response(
        self, state: RetryState, query: str, response: FetchResponse, responses: list[ResponseEntry]
    ) -> bool:
        """Record one response; return False if the request stays pending."""
        indices = state.pending[query]
        code = response.status_code
        state.last_status[query] = code

        if not is_success_status(code):
            self.logger.info(f"Matomo API request failed with code {code}.")
            if is_retryable_status(code):
                return False
            excerpt = (response.text or "")[:ERROR_BODY_EXCERPT_LENGTH]
            self._store(
                responses,
                indices,
                error_entry(f"Matomo server failed with code {code}. Truncated response: {excerpt}"),
            )
            state.resolve(query)
            return True

        # Keep the payload even if it is an error so the server message is available
        try:
            payload = json.loads(response.text or "{}")
        except json.JSONDecodeError:
            excerpt = (response.text or "")[:ERROR_BODY_EXCERPT_LENGTH]
            payload = error_entry(f"Matomo server returned invalid JSON (code {code}). Truncated response: {excerpt}")
            self._store(responses, indices, payload)
            state.resolve(query)
            return True

        self._store(responses, indices, payload)
        if is_error_entry(payload) and not is_api_error_non_random(payload.get("message")):
            self.logger.error(f"Matomo returned an error for request {query}: {payload.get('message')}")
            return False

        state.resolve(query)
        return True

    @staticmethod
    def _store(responses: list[ResponseEntry], indices: list[int], payload: ResponseEntry) -> None:
        for index in indices:
            responses[index] = payload

    def _finalize_unresolved(self, state: RetryState, responses: list[ResponseEntry]) -> None:
        """Give requests still pending after the last round an error entry if they have none."""
        if state.done:
            return
        limit = self.config.retry.retry_limit_seconds
        self.logger.warning(f"{len(state.pending)} request(s) still failing after {state.rounds} round(s)")
        for query, indices in state.pending.items():
            if is_error_entry(responses[indices[0]]):
                continue
            status = state.last_status.get(query, "none")
            self._store(
                responses,
                indices,
                error_entry(f"Matomo request did not complete within {limit:g} seconds (last status: {status})"),
            )

    @staticmethod
    def _raise_on_failures(requests: Sequence[Request], responses: list[ResponseEntry]) -> None:
        failures = [(i, entry) for i, entry in enumerate(responses) if is_error_entry(entry)]
        if len(failures) == 1:
            index, entry = failures[0]
            request = requests[index]
            params = dict(request.params)
            raise APIError(
                f'API method {request.method} failed (params = {json.dumps(params)}): "{entry.get("message")}".',
                method=request.method,
                params=params,
            )
        if len(failures) > 1:
            raise APIError(f"{len(failures)} API methods failed.", failed_count=len(failures))

    # ==================== ENDPOINT & CACHE ====================

    def _resolve_endpoint(self, options: FetchOptions) -> _Endpoint:
        instance_url = options.instance_url
        token = options.token
        if self.credentials is not None:
            instance_url = instance_url or self.credentials.get_instance_url()
            token = token or self.credentials.get_token()
        if not instance_url:
            raise ConfigurationError("Unexpected: no matomo base URL configured", field="instance_url")

        base_url = _TRAILING_INDEX_PATTERN.sub("", instance_url) + API_ENDPOINT_SUFFIX
        auth_headers, base_url = extract_basic_auth_from_url(base_url)
        headers = {
            "User-Agent": self.config.fetch.user_agent,
            **self.config.fetch.extra_headers,
            **auth_headers,
        }
        return _Endpoint(url=base_url, headers=headers, token=token or ANONYMOUS_TOKEN)

    def _read_cache(self, key: str) -> list[ResponseEntry] | None:
        if self.cache is None:
            return None
        entry = self.cache.get(key)
        if entry is None:
            return None
        try:
            cached = json.loads(entry)
        except json.JSONDecodeError:
            cached = None
        if not isinstance(cached, list):
            self.logger.error(f"failed to parse cache data for {key}")
            return None
        self.logger.debug(f"Using cached responses for {key}")
        return cached

    def _write_cache(self, key: str, responses: list[ResponseEntry], ttl: int) -> None:
        if self.cache is None:
            return
        try:
            self.cache.put(key, json.dumps(responses), ttl)
        except (OSError, TypeError, ValueError) as e:
            self.logger.error(f"failed to save cache data for {key}: {e}")

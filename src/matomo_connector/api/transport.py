"""Outbound batch fetching for the Matomo connector.

The dispatcher hands a list of :class:`FetchRequest` descriptors to a
:class:`BatchFetcher` and gets one response per descriptor back, in the same
order. A failure of the batch as a whole (DNS, connection refused...) is
raised as an exception; per-request HTTP errors come back as responses.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Protocol

import requests
from tqdm import tqdm

from matomo_connector.core.constants import DEFAULT_FETCH

TQDM_BAR_FORMAT = "{l_bar}{bar}| {n_fmt}/{total_fmt} [{elapsed}]"


@dataclass
class FetchRequest:
    """One outbound HTTP request.

    Attributes:
        url: Endpoint URL, without credentials
        headers: Request headers
        method: HTTP method, lower case
        payload: URL-encoded form body
        mute_http_exceptions: Return non-2xx responses instead of raising
        query: Canonical query string this request was built from (no token)
    """

    url: str
    headers: dict[str, str] = field(default_factory=dict)
    method: str = "post"
    payload: str = ""
    mute_http_exceptions: bool = True
    query: str = ""


class FetchResponse(Protocol):
    """Minimal response interface the dispatcher needs."""

    @property
    def status_code(self) -> int: ...

    @property
    def text(self) -> str: ...


class BatchFetcher(Protocol):
    """Issues many requests at once and returns their responses in order."""

    def fetch_all(self, batch: list[FetchRequest]) -> list[FetchResponse]: ...


class RequestsBatchFetcher:
    """BatchFetcher issuing requests concurrently with a shared ``requests.Session``.

    Args:
        max_workers: Maximum parallel requests (default: 4)
        timeout: Per-request timeout in seconds
        quiet: Suppress the progress bar (default: False)
        session: Session to use; a new one is created when omitted
        logger: Logger instance (default: module logger)
    """

    def __init__(
        self,
        max_workers: int = 4,
        timeout: float = DEFAULT_FETCH.timeout_seconds,
        quiet: bool = False,
        session: requests.Session | None = None,
        logger: logging.Logger | None = None,
    ):
        self.max_workers = max_workers
        self.timeout = timeout
        self.quiet = quiet
        self.session = session or requests.Session()
        self.logger = logger or logging.getLogger(__name__)

    def _send(self, request: FetchRequest) -> requests.Response:
        response = self.session.request(
            request.method.upper(),
            request.url,
            data=request.payload,
            headers={"Content-Type": "application/x-www-form-urlencoded", **request.headers},
            timeout=self.timeout,
        )
        response.encoding = "utf-8"
        if not request.mute_http_exceptions:
            response.raise_for_status()
        return response

    def fetch_all(self, batch: list[FetchRequest]) -> list[requests.Response]:
        """Send every request and return responses in input order.

        Raises:
            requests.RequestException: The first transport failure; the batch fails as a whole
        """
        if not batch:
            return []
        self.logger.debug(f"Sending {len(batch)} request(s)")

        responses: list[requests.Response | None] = [None] * len(batch)
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(batch))) as executor:
            futures = [executor.submit(self._send, request) for request in batch]
            with tqdm(
                total=len(futures),
                desc="Fetching Matomo API",
                unit="req",
                bar_format=TQDM_BAR_FORMAT,
                leave=False,
                disable=self.quiet,
            ) as pbar:
                for i, future in enumerate(futures):
                    responses[i] = future.result()
                    pbar.update(1)
        return responses

"""Pytest configuration and fixtures for Matomo connector tests"""

import json
from urllib.parse import parse_qsl

import pytest

from matomo_connector.api.dispatcher import BatchDispatcher
from matomo_connector.core.config import ConnectorConfig
from matomo_connector.core.credentials import StaticCredentialStore
from matomo_connector.core.perf import ScriptClock

INSTANCE_URL = "https://matomo.example.com"
TOKEN = "0123456789abcdef0123456789abcdef"


class FakeResponse:
    """Stand-in for an HTTP response: status code plus body text"""

    def __init__(self, status_code=200, body=None, text=None):
        self.status_code = status_code
        if text is None:
            text = json.dumps(body if body is not None else {})
        self.text = text


class FakeFetcher:
    """Scripted BatchFetcher.

    ``handler(request, round_number)`` returns a FakeResponse for each request,
    or raises to fail the whole batch. Round numbers start at 1.
    """

    def __init__(self, handler):
        self.handler = handler
        self.calls = []

    def fetch_all(self, batch):
        self.calls.append(list(batch))
        round_number = len(self.calls)
        return [self.handler(request, round_number) for request in batch]

    @property
    def queries(self):
        return [[request.query for request in batch] for batch in self.calls]


class FakeTime:
    """Controllable clock; ``sleep`` records the delay and advances the clock"""

    def __init__(self, start=1000.0):
        self.now = start
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def query_params(request):
    """Decode the canonical query of a FetchRequest into a dict"""
    return dict(parse_qsl(request.query))


def ok(body):
    return FakeResponse(200, body)


@pytest.fixture
def fake_time():
    return FakeTime()


@pytest.fixture
def connector_config():
    """Default configuration, independent of the environment"""
    return ConnectorConfig()


@pytest.fixture
def make_dispatcher(fake_time, connector_config):
    """Factory building a BatchDispatcher around a FakeFetcher"""

    def _make(handler, cache=None, config=None, credentials=None, clock=None):
        fetcher = FakeFetcher(handler)
        dispatcher = BatchDispatcher(
            fetcher,
            cache=cache,
            credentials=credentials or StaticCredentialStore(INSTANCE_URL, TOKEN),
            config=config or connector_config,
            clock=clock or ScriptClock(fake_time),
            sleep=fake_time.sleep,
            time_func=fake_time,
        )
        return dispatcher, fetcher

    return _make


@pytest.fixture
def clean_env(monkeypatch):
    """Remove connector environment variables for the duration of a test"""
    for name in (
        "MATOMO_URL",
        "MATOMO_TOKEN",
        "LOG_LEVEL",
        "API_REQUEST_RETRY_LIMIT_IN_SECS",
        "SCRIPT_RUNTIME_LIMIT",
        "API_REQUEST_EXTRA_HEADERS",
        "API_REQUEST_SOURCE_IDENTIFIER",
        "API_REQUEST_USER_AGENT",
        "CONFIG_REQUEST_CACHE_TTL_SECS",
        "MATOMO_CONNECTOR_CACHE_DIR",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch

"""Shared fixtures: a fake HTTP session that routes request paths to canned JSON."""

import logging
from collections import namedtuple
from urllib.parse import parse_qs, urlparse

import pytest

from ensembl_seqproxy.config import Config
from ensembl_seqproxy.rate_limiter import RetryPolicy
from ensembl_seqproxy.rest_client import ResilientRestClient

DOMAIN = "https://rest.example.org"

FakeRequest = namedtuple('FakeRequest', ['method', 'url', 'path', 'params', 'body'])

INVALID_JSON = object()


class FakeResponse:
    """Just enough of ``requests.Response`` for the client."""

    def __init__(self, status_code=200, payload=None, headers=None):
        self.status_code = status_code
        self._payload = payload
        self.headers = headers or {}

    def json(self):
        if self._payload is INVALID_JSON:
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        return self._payload


def healthy_routes(rest_release="15.2", data_release=110):
    return {
        'info/ping': {'ping': 1},
        'info/rest': {'release': rest_release},
        'info/data': {'releases': [data_release]},
    }


class FakeSession:
    """
    Stands in for ``requests.Session``.

    Routes are keyed by URL path without the leading slash. A key ending in
    ``/`` matches any path it prefixes. A route value is the JSON payload, a
    :class:`FakeResponse`, or a callable taking a :class:`FakeRequest` and
    returning either. Unrouted paths answer 404.
    """

    def __init__(self, routes=None):
        self.routes = healthy_routes()
        self.routes.update(routes or {})
        self.calls = []
        self.closed = False

    def request(self, method, url, headers=None, json=None, timeout=None):
        parsed = urlparse(url)
        call = FakeRequest(method, url, parsed.path.lstrip('/'), parse_qs(parsed.query), json)
        self.calls.append(call)

        handler = self._route(call.path)
        if handler is None:
            return FakeResponse(404, {'error': f'not found: {call.path}'})
        if callable(handler):
            handler = handler(call)
        if isinstance(handler, FakeResponse):
            return handler
        return FakeResponse(200, handler)

    def _route(self, path):
        if path in self.routes:
            return self.routes[path]
        prefixes = [key for key in self.routes if key.endswith('/') and path.startswith(key)]
        if prefixes:
            return self.routes[max(prefixes, key=len)]
        return None

    def calls_to(self, prefix):
        return [c for c in self.calls if c.path.startswith(prefix)]

    def close(self):
        self.closed = True


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def config():
    """Configuration pointing at the fake domain with no client-side throttle."""
    cfg = Config.default()
    cfg.rest.domain = DOMAIN
    cfg.rest.requests_per_second = 0
    return cfg


@pytest.fixture
def sleeps():
    """Delays requested by the retry policy."""
    return []


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_client(config, sleeps, clock):
    """Factory for a client backed by a :class:`FakeSession` with the given routes."""
    def _make(routes=None, **config_changes):
        for key, value in config_changes.items():
            section, name = key.split('__')
            setattr(getattr(config, section), name, value)
        session = FakeSession(routes)
        policy = RetryPolicy(max_attempts=config.retry.max_attempts,
                             max_retry_after=config.retry.max_retry_after_seconds,
                             sleep=sleeps.append)
        return ResilientRestClient(config, retry_policy=policy, session=session, clock=clock)
    return _make


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Undo ``setup_logging`` so caplog sees package records in every test."""
    yield
    package_logger = logging.getLogger('ensembl_seqproxy')
    for handler in package_logger.handlers[:]:
        package_logger.removeHandler(handler)
    package_logger.setLevel(logging.NOTSET)
    package_logger.propagate = True

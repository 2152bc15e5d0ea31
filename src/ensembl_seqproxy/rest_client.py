"""Resilient JSON client for the Ensembl REST service.

Every request goes through one :class:`ResilientRestClient`, which owns the
HTTP session, the client-side rate limiter, the 429 retry policy and a
:class:`DomainHealthCache` recording whether each REST domain is up and
which REST/data release it serves.
"""

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import urlencode

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import Config
from .error_handler import (ErrorHandler, NetworkError, ParseError, RateLimited,
                            SeqProxyError, ServiceUnavailable)
from .logging_config import LogTimer, get_logger, log_api_call
from .rate_limiter import RateLimiter, RetryPolicy

logger = get_logger('rest')

JSON_MIME_TYPE = "application/json"


def make_url(domain: str, path: str, params: Optional[Dict[str, Any]] = None) -> str:
    """Join a domain, an endpoint path and query parameters."""
    url = f"{domain.rstrip('/')}/{path.lstrip('/')}"
    if params:
        url += "?" + urlencode(params, safe=";,")
    return url


class Deadline:
    """Wall-clock budget threaded through a multi-request operation."""

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self.expires_at = clock() + seconds

    def remaining(self) -> float:
        return max(0.0, self.expires_at - self._clock())

    def expired(self) -> bool:
        return self._clock() >= self.expires_at

    def clamp(self, timeout: float) -> float:
        """Shorten ``timeout`` so that it ends no later than the deadline."""
        return min(timeout, self.remaining())


@dataclass
class DomainHealth:
    """Cached availability and version state of one REST domain."""
    domain: str
    available: bool = False
    last_available_check: Optional[float] = None
    last_version_check: Optional[float] = None
    rest_version: Optional[str] = None
    data_version: Optional[str] = None
    rest_major_version_mismatch: bool = False
    retry_after_until: Optional[float] = None
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)


class DomainHealthCache:
    """Lazily created :class:`DomainHealth` records, one per domain."""

    def __init__(self):
        self._entries: Dict[str, DomainHealth] = {}
        self._lock = threading.Lock()

    def get(self, domain: str) -> DomainHealth:
        with self._lock:
            health = self._entries.get(domain)
            if health is None:
                health = DomainHealth(domain)
                self._entries[domain] = health
            return health

    def domains(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def clear(self):
        with self._lock:
            self._entries.clear()


class ResilientRestClient:
    """Executes JSON requests against Ensembl REST with retry and health checks."""

    def __init__(self,
                 config: Optional[Config] = None,
                 health_cache: Optional[DomainHealthCache] = None,
                 retry_policy: Optional[RetryPolicy] = None,
                 rate_limiter: Optional[RateLimiter] = None,
                 error_handler: Optional[ErrorHandler] = None,
                 session: Optional[requests.Session] = None,
                 clock: Callable[[], float] = time.monotonic):
        """
        Initialize the client.

        Args:
            config: Configuration; defaults to ``Config.default()``
            health_cache: Shared domain health state
            retry_policy: 429 retry policy
            rate_limiter: Client-side throttle
            error_handler: Receives every error demoted to ``None``
            session: HTTP session; one with connection retries is created if omitted
            clock: Monotonic time source used for cache intervals
        """
        self.config = config or Config.default()
        self.health_cache = health_cache or DomainHealthCache()
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=self.config.retry.max_attempts,
            max_retry_after=self.config.retry.max_retry_after_seconds
        )
        self.rate_limiter = rate_limiter or RateLimiter(self.config.rest.requests_per_second)
        self.error_handler = error_handler or ErrorHandler()
        self.session = session or self._create_session()
        self._clock = clock

    def _create_session(self) -> requests.Session:
        """Create a session that retries failed connections, never statuses."""
        session = requests.Session()

        # 429 is handled by request_json so Retry-After is honoured exactly
        retry_strategy = Retry(
            total=self.config.retry.connect_retries,
            connect=self.config.retry.connect_retries,
            read=0,
            status=0,
            backoff_factor=self.config.retry.backoff_factor,
            allowed_methods=["GET", "POST"],
            raise_on_status=False
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        return session

    @property
    def domain(self) -> str:
        return self.config.rest.domain

    @property
    def genomes_domain(self) -> str:
        return self.config.rest.effective_genomes_domain

    def request_mime_type(self) -> str:
        """Content-Type sent with each request."""
        return JSON_MIME_TYPE

    def response_mime_type(self) -> str:
        """Accept header sent with each request."""
        return JSON_MIME_TYPE

    def expected_rest_version(self, domain: str) -> str:
        if domain == self.genomes_domain and domain != self.domain:
            return self.config.rest.expected_genomes_rest_version
        return self.config.rest.expected_rest_version

    @staticmethod
    def _domain_of(url: str) -> str:
        scheme, _, rest = url.partition("://")
        return f"{scheme}://{rest.split('/', 1)[0]}"

    def _timeout(self, read_timeout: Optional[float], deadline: Optional[Deadline]) -> Tuple[float, float]:
        connect = self.config.rest.connect_timeout
        read = read_timeout if read_timeout is not None else self.config.rest.read_timeout
        if deadline is not None:
            connect = deadline.clamp(connect)
            read = deadline.clamp(read)
        return connect, read

    def request_json(self,
                     url: str,
                     ids: Optional[List[str]] = None,
                     read_timeout: Optional[float] = None,
                     deadline: Optional[Deadline] = None) -> Any:
        """
        Execute one logical request and decode its JSON body.

        A single id (or none) is sent as GET of ``url``; several ids as POST
        of ``{"ids": [...]}`` to ``url``. A 429 answer with a usable
        ``Retry-After`` is retried after sleeping, up to the policy's
        attempt limit.

        Args:
            url: Full request URL
            ids: Identifiers to POST when there is more than one
            read_timeout: Read timeout in seconds, defaults to the configured one
            deadline: Optional budget for the whole call

        Returns:
            The decoded JSON document

        Raises:
            RateLimited: 429 persisted or its delay could not be honoured
            NetworkError: connection failure, timeout, or non-200 status
            ParseError: the body was not JSON
        """
        domain = self._domain_of(url)
        health = self.health_cache.get(domain)
        method = "POST" if ids and len(ids) > 1 else "GET"
        headers = {"Content-Type": self.request_mime_type(), "Accept": self.response_mime_type()}
        body = {"ids": list(ids)} if method == "POST" else None

        attempt = 0
        while True:
            attempt += 1
            if deadline is not None and deadline.expired():
                raise NetworkError(f"Deadline expired before {method} {url}")

            blocked_until = health.retry_after_until
            if blocked_until is not None and self._clock() < blocked_until:
                raise RateLimited(f"{domain} asked to back off", retry_after=blocked_until - self._clock())

            self.rate_limiter.acquire(domain)
            try:
                with LogTimer(f"{method} {url}", logger) as timer:
                    response = self.session.request(method, url, headers=headers, json=body,
                                                    timeout=self._timeout(read_timeout, deadline))
            except requests.RequestException as e:
                log_api_call(url, {"ids": ids}, timer.elapsed, False)
                raise NetworkError(f"{method} {url} failed: {e}") from e

            status = response.status_code
            log_api_call(url, {"ids": ids}, timer.elapsed, status == 200, status)

            if status == 429:
                header = response.headers.get("Retry-After")
                wait = self.retry_policy.parse_retry_after(header)
                if wait is None:
                    self._note_long_backoff(health, header)
                elif deadline is not None and deadline.remaining() < wait:
                    wait = None
                if wait is not None and self.retry_policy.should_retry(attempt):
                    self.retry_policy.wait(wait)
                    continue
                raise RateLimited(f"{method} {url} rate limited after {attempt} attempt(s)", retry_after=wait)

            if status != 200:
                raise NetworkError(f"{method} {url} returned HTTP {status}", status=status)

            try:
                return response.json()
            except ValueError as e:
                raise ParseError(f"Invalid JSON from {url}: {e}") from e

    def _note_long_backoff(self, health: DomainHealth, header: Optional[str]):
        try:
            seconds = float(header) if header is not None else 0.0
        except ValueError:
            return
        if seconds > self.retry_policy.max_retry_after:
            health.retry_after_until = self._clock() + seconds
            logger.warning(f"{health.domain} asked for a {seconds:.0f}s back-off; failing fast until then")

    def fetch_json(self,
                   url: str,
                   ids: Optional[List[str]] = None,
                   read_timeout: Optional[float] = None,
                   deadline: Optional[Deadline] = None) -> Optional[Any]:
        """
        Like :meth:`request_json` but network, rate-limit and parse failures
        are logged and returned as None.
        """
        try:
            return self.request_json(url, ids=ids, read_timeout=read_timeout, deadline=deadline)
        except SeqProxyError as e:
            item = ids[0] if ids and len(ids) == 1 else None
            self.error_handler.handle_error(e, operation="fetch_json", item_id=item, url=url)
            return None

    def is_available(self, domain: Optional[str] = None) -> bool:
        """
        Whether ``domain`` answers its ping.

        The ping is repeated when the last one is older than the
        availability interval or the domain was down. While the domain is up,
        REST and data versions are refreshed on the longer version interval.
        """
        domain = domain or self.domain
        health = self.health_cache.get(domain)
        rest = self.config.rest

        with health.lock:
            now = self._clock()
            if not health.available or health.last_available_check is None \
                    or now - health.last_available_check > rest.availability_retest_seconds:
                health.available = self._ping(domain)
                health.last_available_check = now

            if health.available and (health.last_version_check is None
                                     or now - health.last_version_check > rest.version_retest_seconds):
                self._check_rest_version(domain, health)
                self._check_data_version(domain, health)
                health.last_version_check = now

            return health.available

    def ensure_available(self, domain: Optional[str] = None):
        """Raise ServiceUnavailable unless ``domain`` is up."""
        domain = domain or self.domain
        if not self.is_available(domain):
            raise ServiceUnavailable(domain)

    def _get_info(self, domain: str, path: str, timeout: Tuple[float, float]) -> Optional[Dict[str, Any]]:
        url = make_url(domain, path, {"content-type": JSON_MIME_TYPE})
        self.rate_limiter.acquire(domain)
        try:
            response = self.session.request("GET", url, headers={"Accept": JSON_MIME_TYPE}, timeout=timeout)
        except requests.RequestException as e:
            logger.warning(f"{url} failed: {e}")
            return None
        if response.status_code != 200:
            logger.warning(f"{url} returned HTTP {response.status_code}")
            return None
        try:
            data = response.json()
        except ValueError:
            logger.warning(f"{url} did not return JSON")
            return None
        return data if isinstance(data, dict) else None

    def _ping(self, domain: str) -> bool:
        data = self._get_info(domain, "info/ping",
                              (self.config.rest.connect_timeout, self.config.rest.ping_timeout))
        available = bool(data) and data.get("ping") == 1
        if not available:
            logger.warning(f"Ensembl domain {domain} is not responding")
        return available

    def _check_rest_version(self, domain: str, health: DomainHealth):
        """Record the served REST release and flag a major-version change."""
        data = self._get_info(domain, "info/rest",
                              (self.config.rest.connect_timeout, self.config.rest.read_timeout))
        if not data or "release" not in data:
            return

        version = str(data["release"])
        expected = self.expected_rest_version(domain)
        health.rest_version = version
        try:
            live_major = float(version.split(".")[0])
            expected_major = float(expected.split(".")[0])
        except ValueError:
            logger.warning(f"Unrecognised REST version {version!r} from {domain}")
            return

        health.rest_major_version_mismatch = live_major > expected_major
        if health.rest_major_version_mismatch:
            logger.warning(f"{domain} serves REST {version}, expected {expected}: responses may not parse")
        elif _version_key(version) > _version_key(expected):
            logger.info(f"{domain} serves REST {version}, later than expected {expected}")

    def _check_data_version(self, domain: str, health: DomainHealth):
        data = self._get_info(domain, "info/data",
                              (self.config.rest.connect_timeout, self.config.rest.read_timeout))
        releases = data.get("releases") if data else None
        if releases:
            health.data_version = str(releases[0])

    def is_rest_major_version_mismatch(self, domain: Optional[str] = None) -> bool:
        return self.health_cache.get(domain or self.domain).rest_major_version_mismatch

    def rest_version(self, domain: Optional[str] = None) -> Optional[str]:
        return self.health_cache.get(domain or self.domain).rest_version

    def data_version(self, domain: Optional[str] = None) -> Optional[str]:
        """Data release of ``domain``, checking availability first if never seen."""
        domain = domain or self.domain
        health = self.health_cache.get(domain)
        if health.last_version_check is None:
            self.is_available(domain)
        return health.data_version

    def close(self):
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def _version_key(version: str) -> Tuple[int, ...]:
    parts = []
    for part in version.split("."):
        try:
            parts.append(int(part))
        except ValueError:
            break
    return tuple(parts)

# Standard library imports and third-party dependencies
# asyncio drives the probe rounds, aiohttp performs the non-blocking HTTP requests
import os
import re
import sys
import time
import asyncio
import logging
import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional
from urllib.parse import urlparse

import aiohttp
import yaml
from yarl import URL

logger = logging.getLogger("availability_monitor")

CHECK_INTERVAL_SECONDS = 15.0
REQUEST_TIMEOUT_MS = 500
LOG_LEVEL_ENV = "MONITOR_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"

# RFC 7230 token
_METHOD_RE = re.compile(r"[!#$%&'*+\-.^_`|~0-9A-Za-z]+")


class MonitorError(Exception):
    """Base class for every error raised by the monitor."""


class ConfigError(MonitorError):
    pass


class ConfigIOError(ConfigError):
    """The configuration file could not be read."""


class ConfigParseError(ConfigError):
    """The configuration file is not a list of endpoint descriptors."""


class RequestConstructionError(MonitorError):
    """An endpoint cannot be turned into an HTTP request."""


@dataclass(frozen=True)
class EndpointConfig:
    """
    Configuration for a single HTTP endpoint, read-only once loaded.

    ``name`` is a label for log lines only; the report groups endpoints
    by the hostname of ``url``.
    """
    name: str
    url: str
    method: str = "GET"
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "headers", MappingProxyType(dict(self.headers)))

    def get_domain(self) -> str:
        return extract_domain(self.url)


def extract_domain(raw_url: str) -> str:
    """
    Returns the hostname of a URL, without scheme, port, path or query.

    Example: https://api.example.com:8443/v1 -> api.example.com

    When the URL cannot be parsed, or has no host part at all, the raw
    string is returned so a misconfigured endpoint still shows up in the
    report under its literal text.
    """
    try:
        hostname = urlparse(raw_url).hostname
    except ValueError:
        return raw_url
    return hostname or raw_url


def _scalar(value, field_name: str, index: int, default: str = "") -> str:
    if value is None:
        return default
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        return str(value)
    raise ConfigParseError(
        f"Endpoint #{index}: field '{field_name}' must be a string, "
        f"got {type(value).__name__}"
    )


class ConfigurationParser:
    """
    Turns a YAML configuration file into a list of EndpointConfig objects.

    The file holds a top-level list; every item is a mapping with ``url``
    and ``method`` plus the optional ``name``, ``headers`` and ``body``.
    URLs are not validated here: a broken URL is only noticed when it is
    probed.
    """
    def __init__(self, config_path: str):
        self.config_path = config_path

    def read_config(self) -> str:
        try:
            with open(self.config_path, "r", encoding="utf-8") as file:
                return file.read()
        except (OSError, UnicodeDecodeError) as e:
            raise ConfigIOError(
                f"Cannot read configuration file {self.config_path}: {e}"
            ) from e

    def parse_config(self) -> List[EndpointConfig]:
        text = self.read_config()
        try:
            config_data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ConfigParseError(f"Error parsing YAML file: {e}") from e

        # An empty document is an empty endpoint list
        if config_data is None:
            return []
        if not isinstance(config_data, list):
            raise ConfigParseError(
                f"Configuration must be a YAML list, got {type(config_data).__name__}"
            )

        return [self.parse_endpoint(item, index) for index, item in enumerate(config_data)]

    def parse_endpoint(self, item, index: int) -> EndpointConfig:
        if not isinstance(item, dict):
            raise ConfigParseError(
                f"Endpoint #{index} must be a mapping, got {type(item).__name__}"
            )

        headers = item.get("headers")
        if headers is None:
            headers = {}
        elif not isinstance(headers, dict):
            raise ConfigParseError(f"Endpoint #{index}: 'headers' must be a mapping")

        body = item.get("body")
        return EndpointConfig(
            name=_scalar(item.get("name"), "name", index),
            url=_scalar(item.get("url"), "url", index),
            # An empty method means GET to the HTTP client
            method=_scalar(item.get("method"), "method", index) or "GET",
            headers={
                _scalar(key, "headers", index): _scalar(value, "headers", index)
                for key, value in headers.items()
            },
            body=None if body is None else _scalar(body, "body", index),
        )


def load_endpoints(config_path: str) -> List[EndpointConfig]:
    return ConfigurationParser(config_path).parse_config()


def classify(status_code: Optional[int], duration_ms: float) -> bool:
    """
    UP when the status is 2xx and the round trip took at most 500ms.

    ``status_code`` is None when no response arrived at all.
    """
    if status_code is None:
        return False
    return 200 <= status_code < 300 and duration_ms <= REQUEST_TIMEOUT_MS


@dataclass
class HealthCheckResult:
    """Outcome of one probe of one endpoint."""
    endpoint_name: str
    domain: str
    status_code: Optional[int]
    response_time_ms: float
    error: Optional[str] = None

    @property
    def is_up(self) -> bool:
        return classify(self.status_code, self.response_time_ms)


@dataclass
class DomainStats:
    success: int = 0
    total: int = 0

    @property
    def availability(self) -> int:
        # floor(100 * success / total) without going through floats
        return self.success * 100 // self.total


class DomainStatsStore:
    """
    Cumulative success/total counters per domain, shared by every probe.

    A single lock guards the whole mapping. Records are created the first
    time a domain is recorded and live for the rest of the process, so a
    domain without any completed probe never appears in a report.
    """
    def __init__(self):
        self._lock = threading.Lock()
        self._stats: Dict[str, DomainStats] = {}

    def record(self, domain: str, healthy: bool) -> None:
        with self._lock:
            stats = self._stats.get(domain)
            if stats is None:
                stats = self._stats[domain] = DomainStats()
            stats.total += 1
            if healthy:
                stats.success += 1

    def snapshot(self) -> Dict[str, DomainStats]:
        with self._lock:
            return {
                domain: DomainStats(stats.success, stats.total)
                for domain, stats in self._stats.items()
            }

    def availability_report(self) -> Dict[str, int]:
        """Integer availability percentage per domain, in first-seen order."""
        return {
            domain: stats.availability
            for domain, stats in self.snapshot().items()
            if stats.total > 0
        }


def build_request(endpoint: EndpointConfig) -> dict:
    """
    Builds the keyword arguments for ``ClientSession.request``.

    Raises RequestConstructionError when the method is not an HTTP token,
    the URL cannot be parsed or the body cannot be encoded. Relative or
    non-HTTP URLs and malformed headers are left to the transport, which
    fails them like any other unreachable endpoint.
    """
    if not _METHOD_RE.fullmatch(endpoint.method):
        raise RequestConstructionError(f"invalid method {endpoint.method!r}")

    try:
        url = URL(endpoint.url)
    except (ValueError, TypeError) as e:
        raise RequestConstructionError(f"invalid URL {endpoint.url!r}: {e}") from e

    try:
        data = endpoint.body.encode("utf-8") if endpoint.body else b""
    except UnicodeEncodeError as e:
        raise RequestConstructionError(f"body cannot be encoded as UTF-8: {e}") from e

    return {
        "method": endpoint.method,
        "url": url,
        "headers": dict(endpoint.headers),
        "data": data,
    }


class HealthChecker:
    """
    Probes endpoints over a shared aiohttp session and records every
    classified outcome in a DomainStatsStore.
    """
    def __init__(self, endpoints: List[EndpointConfig],
                 stats: Optional[DomainStatsStore] = None,
                 timeout_ms: float = REQUEST_TIMEOUT_MS):
        self.endpoints = endpoints
        self.stats = stats if stats is not None else DomainStatsStore()
        # Covers connect and body transfer together
        self.timeout = aiohttp.ClientTimeout(total=timeout_ms / 1000)

    async def check_endpoint(self, session: aiohttp.ClientSession,
                             endpoint: EndpointConfig) -> Optional[HealthCheckResult]:
        """
        Checks a single endpoint's health.

        Returns None, without touching the stats, when no request could be
        built for the endpoint. Network errors and timeouts are DOWN results.
        """
        try:
            request = build_request(endpoint)
        except RequestConstructionError as e:
            logger.error("Error creating request for %s: %s", endpoint.name or endpoint.url, e)
            return None

        status_code = None
        error = None
        start_time = time.monotonic()
        try:
            async with session.request(timeout=self.timeout, **request) as response:
                await response.read()
                status_code = response.status
        # aiohttp raises ValueError for headers it refuses to serialize
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            error = str(e) or type(e).__name__
            logger.debug("Probe of %s failed: %s", endpoint.url, error)
        response_time = (time.monotonic() - start_time) * 1000

        result = HealthCheckResult(
            endpoint_name=endpoint.name,
            domain=endpoint.get_domain(),
            status_code=status_code,
            response_time_ms=response_time,
            error=error,
        )
        self.stats.record(result.domain, result.is_up)
        return result

    async def check_all_endpoints(self, session: aiohttp.ClientSession) -> List[HealthCheckResult]:
        """Runs one probe per endpoint concurrently and waits for all of them."""
        tasks = [
            asyncio.create_task(self.check_endpoint(session, endpoint))
            for endpoint in self.endpoints
        ]
        results = await asyncio.gather(*tasks)
        return [result for result in results if result is not None]


def format_report(report: Dict[str, int]) -> List[str]:
    return [f"{domain} has {availability}% availability" for domain, availability in report.items()]


class MonitoringService:
    """
    Runs probe rounds forever: probe every endpoint, print the cumulative
    report, then wait out the rest of the interval. A round that overruns
    the interval is followed immediately by the next one.
    """
    def __init__(self, endpoints: List[EndpointConfig],
                 interval: float = CHECK_INTERVAL_SECONDS,
                 timeout_ms: float = REQUEST_TIMEOUT_MS):
        self.endpoints = endpoints
        self.interval = interval
        self.stats = DomainStatsStore()
        self.health_checker = HealthChecker(endpoints, self.stats, timeout_ms)
        self.running = False

    @classmethod
    def from_config(cls, config_path: str) -> "MonitoringService":
        return cls(load_endpoints(config_path))

    async def run_check_cycle(self, session: aiohttp.ClientSession) -> List[str]:
        await self.health_checker.check_all_endpoints(session)
        lines = format_report(self.stats.availability_report())
        for line in lines:
            print(line, flush=True)
        return lines

    async def run(self, rounds: Optional[int] = None):
        """
        Probes immediately, then once per interval. ``rounds`` limits the
        number of rounds; None runs until stop() is called.
        """
        self.running = True
        completed = 0
        logger.info("Monitoring %d endpoint(s) every %gs", len(self.endpoints), self.interval)
        async with aiohttp.ClientSession() as session:
            while self.running:
                round_start = time.monotonic()
                await self.run_check_cycle(session)
                completed += 1
                if rounds is not None and completed >= rounds:
                    break
                elapsed = time.monotonic() - round_start
                await asyncio.sleep(max(0.0, self.interval - elapsed))
        self.running = False

    def stop(self):
        self.running = False


def configure_logging(level_name: Optional[str] = None):
    level_name = (level_name or os.environ.get(LOG_LEVEL_ENV) or "INFO").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)


def main(argv: Optional[List[str]] = None) -> int:
    """
    Application entry point with argument validation.
    """
    argv = sys.argv[1:] if argv is None else argv
    configure_logging()

    if len(argv) != 1:
        print("Usage: availability-monitor <config_file_path>", file=sys.stderr)
        return 1

    try:
        service = MonitoringService.from_config(argv[0])
    except ConfigError as e:
        logger.critical("%s", e)
        return 1

    try:
        asyncio.run(service.run())
    except KeyboardInterrupt:
        print("\nStopping monitoring service...", file=sys.stderr)
        service.stop()
    return 0


def cli():
    sys.exit(main())


if __name__ == "__main__":
    cli()

from __future__ import annotations

import asyncio
import logging
import socket
import ssl
from collections.abc import Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

import httpx

from promoscan.telemetry import TelemetryClient

LOGGER = logging.getLogger("promoscan.links")

DEFAULT_CONCURRENCY = 5
DEFAULT_TIMEOUT_SECONDS = 8.0
DEFAULT_MAX_PROBES = 100
MAX_GENERIC_ERROR_LENGTH = 100
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
PROBE_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
}
# Statuses meaning "this server does not support HEAD".
_METHOD_UNSUPPORTED_STATUSES: frozenset[int] = frozenset({405, 501})

_DNS_FAILURE_MARKERS: tuple[str, ...] = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo",
    "temporary failure in name resolution",
    "no address associated",
    "enotfound",
)
_REFUSED_MARKERS: tuple[str, ...] = ("connection refused", "econnrefused", "errno 111")
_TLS_MARKERS: tuple[str, ...] = (
    "certificate verify failed",
    "ssl:",
    "tlsv1 alert",
    "wrong version number",
)


class ProbeError(StrEnum):
    TIMEOUT = "Timeout"
    DOMAIN_NOT_FOUND = "DomainNotFound"
    CONNECTION_REFUSED = "ConnectionRefused"
    TLS_ERROR = "TLSError"


@dataclass(frozen=True)
class LinkProbeResult:
    url: str
    working: bool | None
    status: int | None = None
    error: str | None = None
    redirect_url: str | None = None

    @property
    def unchecked(self) -> bool:
        return self.working is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "working": self.working,
            "status": self.status,
            "error": self.error,
            "redirect_url": self.redirect_url,
        }


class LinkProber:
    """Liveness checks for externally linked URLs.

    Each URL gets a HEAD request, falling back once to GET when the server
    rejects HEAD. Every attempt runs under its own timeout and is cancelled
    when it fires. URLs go out in fixed-size concurrent batches; a failure
    is recorded on that URL's result and never aborts its siblings.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        concurrency: int = DEFAULT_CONCURRENCY,
        max_probes: int = DEFAULT_MAX_PROBES,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._http_client = http_client
        self._timeout_seconds = max(0.001, timeout_seconds)
        self._concurrency = max(1, concurrency)
        self._max_probes = max(0, max_probes)
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()

    @property
    def max_probes(self) -> int:
        return self._max_probes

    async def probe_all(
        self,
        urls: Sequence[str],
        *,
        concurrency: int | None = None,
        timeout_seconds: float | None = None,
        max_probes: int | None = None,
    ) -> list[LinkProbeResult]:
        batch_size = max(1, concurrency if concurrency is not None else self._concurrency)
        timeout = timeout_seconds if timeout_seconds is not None else self._timeout_seconds
        cap = max(0, max_probes if max_probes is not None else self._max_probes)

        to_probe = list(urls[:cap])
        results: list[LinkProbeResult] = []
        for start in range(0, len(to_probe), batch_size):
            batch = to_probe[start : start + batch_size]
            outcomes = await asyncio.gather(
                *(self.probe(url, timeout_seconds=timeout) for url in batch),
                return_exceptions=True,
            )
            for url, outcome in zip(batch, outcomes, strict=True):
                if isinstance(outcome, LinkProbeResult):
                    results.append(outcome)
                    continue
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                LOGGER.warning(
                    "link probe crashed url=%s error_type=%s",
                    url,
                    type(outcome).__name__,
                )
                results.append(
                    LinkProbeResult(url=url, working=False, error=_truncate(str(outcome)))
                )
            self._telemetry.emit(
                "links.probe.batch",
                batch_start=start,
                batch_size=len(batch),
                broken=sum(1 for result in results[start:] if result.working is False),
            )

        results.extend(LinkProbeResult(url=url, working=None) for url in urls[cap:])
        return results

    async def probe(self, url: str, *, timeout_seconds: float | None = None) -> LinkProbeResult:
        timeout = timeout_seconds if timeout_seconds is not None else self._timeout_seconds
        try:
            status, final_url = await self._request_status("HEAD", url, timeout)
            if status in _METHOD_UNSUPPORTED_STATUSES:
                LOGGER.debug("HEAD rejected; retrying with GET url=%s status=%s", url, status)
                status, final_url = await self._request_status("GET", url, timeout)
        except (TimeoutError, httpx.TimeoutException):
            return LinkProbeResult(url=url, working=False, error=ProbeError.TIMEOUT.value)
        except httpx.HTTPError as exc:
            return LinkProbeResult(url=url, working=False, error=classify_probe_failure(exc))

        redirect_url = str(final_url) if final_url != url else None
        return LinkProbeResult(
            url=url,
            working=200 <= status < 400,
            status=status,
            redirect_url=redirect_url,
        )

    async def _request_status(
        self,
        method: str,
        url: str,
        timeout_seconds: float,
    ) -> tuple[int, httpx.URL]:
        async with asyncio.timeout(timeout_seconds):
            async with self._http_client.stream(
                method,
                url,
                headers=PROBE_HEADERS,
                follow_redirects=True,
            ) as response:
                return response.status_code, response.url


def classify_probe_failure(exc: BaseException) -> str:
    """Map a network failure onto the probe error taxonomy.

    Falls back to the exception message truncated to 100 characters.
    """
    if isinstance(exc, TimeoutError | httpx.TimeoutException):
        return ProbeError.TIMEOUT.value

    for link in _exception_chain(exc):
        if isinstance(link, socket.gaierror):
            return ProbeError.DOMAIN_NOT_FOUND.value
        if isinstance(link, ConnectionRefusedError):
            return ProbeError.CONNECTION_REFUSED.value
        if isinstance(link, ssl.SSLError):
            return ProbeError.TLS_ERROR.value

    message = " ".join(str(link) for link in _exception_chain(exc)).lower()
    if any(marker in message for marker in _DNS_FAILURE_MARKERS):
        return ProbeError.DOMAIN_NOT_FOUND.value
    if any(marker in message for marker in _REFUSED_MARKERS):
        return ProbeError.CONNECTION_REFUSED.value
    if any(marker in message for marker in _TLS_MARKERS):
        return ProbeError.TLS_ERROR.value
    return _truncate(str(exc) or type(exc).__name__)


def build_probe_http_client(
    *,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    user_agent: str = DEFAULT_USER_AGENT,
    max_connections: int = 20,
) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=httpx.Timeout(timeout_seconds),
        headers={"User-Agent": user_agent},
        limits=httpx.Limits(max_connections=max_connections),
    )


def _exception_chain(exc: BaseException) -> list[BaseException]:
    chain: list[BaseException] = []
    current: BaseException | None = exc
    while current is not None and current not in chain:
        chain.append(current)
        current = current.__cause__ or current.__context__
    return chain


def _truncate(message: str) -> str:
    compact = " ".join(message.split()) or "Unknown error"
    return compact[:MAX_GENERIC_ERROR_LENGTH]

"""Rate-limited, retrying HTTP client shared by every pipeline stage."""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import requests

from safari_epub.core.errors import MetadataError, NetworkError
from safari_epub.core.scheduler import FORBIDDEN_STATUSES, RequestScheduler
from safari_epub.models.config import DownloaderConfig

log = logging.getLogger(__name__)

ACCEPT_DOCUMENT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
ACCEPT_JSON = "application/json, text/plain, */*"
ACCEPT_CSS = "text/css,*/*;q=0.1"
ACCEPT_FONT = "font/woff2,application/font-woff,application/octet-stream,*/*"
ACCEPT_IMAGE = "image/avif,image/webp,image/apng,image/svg+xml,image/*,*/*;q=0.8"

USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)


@dataclass
class FetchResponse:
    """Transport-neutral HTTP response."""

    status: int
    content: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)
    url: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return json.loads(self.text)


class Transport(Protocol):
    """Raw HTTP capability supplied by the host."""

    def request(
        self,
        url: str,
        method: str,
        headers: dict[str, str],
        include_credentials: bool,
    ) -> FetchResponse:
        """Perform one request; raise ``NetworkError`` if no response."""
        ...


class CredentialProvider(Protocol):
    """Ensures valid session credentials are attached to later requests."""

    def refresh(self) -> None: ...


class RequestsTransport:
    """Transport backed by a shared ``requests.Session``."""

    def __init__(self, session: requests.Session | None = None, timeout: float = 60.0):
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", USER_AGENT)
        self.timeout = timeout

    def request(
        self,
        url: str,
        method: str = "GET",
        headers: dict[str, str] | None = None,
        include_credentials: bool = True,
    ) -> FetchResponse:
        send = self.session.request if include_credentials else requests.request
        try:
            response = send(method, url, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise NetworkError(f"Request to {url} failed: {e}", url=url) from e
        return FetchResponse(
            status=response.status_code,
            content=response.content,
            headers=dict(response.headers),
            url=response.url,
        )


class FetchClient:
    """Wrap a transport with pacing, retry/backoff and credential refresh."""

    def __init__(
        self,
        transport: Transport,
        scheduler: RequestScheduler | None = None,
        credentials: CredentialProvider | None = None,
        config: DownloaderConfig | None = None,
    ):
        self.config = config or (scheduler.config if scheduler else DownloaderConfig())
        self.transport = transport
        self.scheduler = scheduler or RequestScheduler(self.config)
        self.credentials = credentials
        self.referrer_url = self.config.base_url
        self.request_count = 0

    def reset(self) -> None:
        self.scheduler.reset()
        self.referrer_url = self.config.base_url
        self.request_count = 0

    def update_referrer(self, url: str | None) -> None:
        if isinstance(url, str) and url.startswith("http"):
            self.referrer_url = url

    def ensure_session_refreshed(self, force: bool = False) -> None:
        """Refresh credentials unless a refresh happened within the cooldown."""
        if self.credentials is None:
            return
        if not self.scheduler.session_refresh_due(force):
            log.debug("Skipping session refresh (cooldown active)")
            return
        try:
            self.credentials.refresh()
            self.scheduler.mark_session_refreshed()
        except Exception as e:
            log.warning("Unable to refresh session cookies (%s).", e)

    def build_headers(
        self,
        headers: dict[str, str] | None = None,
        require_document: bool = False,
    ) -> dict[str, str]:
        merged = dict(headers or {})
        lowered = {k.lower() for k in merged}
        if "x-requested-with" not in lowered:
            merged["X-Requested-With"] = "XMLHttpRequest"
        if require_document and "accept" not in lowered:
            merged["Accept"] = ACCEPT_DOCUMENT
        if "accept-language" not in lowered:
            merged["Accept-Language"] = "en-US,en;q=0.9"
        if "referer" not in lowered:
            merged["Referer"] = self.referrer_url
        return merged

    def fetch(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        *,
        method: str = "GET",
        require_document: bool = False,
        max_attempts: int | None = None,
        retry_on_forbidden: bool = True,
        base_retry_delay_ms: int | None = None,
        max_retry_delay_ms: int | None = None,
    ) -> FetchResponse:
        """Fetch ``url``, retrying transient failures.

        Returns the last response once retries are exhausted or the status
        is not retryable. Raises ``NetworkError`` if the final attempt got no
        response at all.
        """
        attempts = max(1, max_attempts or self.config.max_attempts)
        request_headers = self.build_headers(headers, require_document)
        sched = self.scheduler

        for attempt in range(attempts):
            sched.wait()
            self.request_count += 1
            try:
                response = self.transport.request(url, method, request_headers, True)
            except NetworkError as e:
                sched.record_outcome(0)
                if attempt >= attempts - 1:
                    raise
                delay = sched.retry_delay_ms(
                    attempt, 0, base_retry_delay_ms, max_retry_delay_ms
                )
                log.debug("Network error on %s (%s); retrying in %.0fms", url, e, delay)
                sched.defer(delay)
                continue

            sched.record_outcome(response.status)
            if response.ok:
                return response
            if not sched.should_retry(response.status, attempt, attempts, retry_on_forbidden):
                return response

            if response.status in FORBIDDEN_STATUSES and retry_on_forbidden:
                self.ensure_session_refreshed()

            delay = sched.retry_delay_ms(
                attempt, response.status, base_retry_delay_ms, max_retry_delay_ms
            )
            log.debug(
                "Status %d from %s; retry %d/%d in %.0fms",
                response.status,
                url,
                attempt + 1,
                attempts - 1,
                delay,
            )
            sched.defer(delay)

        raise NetworkError(f"Request to {url} failed without a response.", url=url)

    def fetch_json(self, url: str) -> Any:
        """GET a JSON document; non-2xx statuses raise ``NetworkError``."""
        response = self.fetch(url, {"Accept": ACCEPT_JSON})
        if not response.ok:
            raise NetworkError(
                f"Request to {url} failed with status {response.status}",
                url=url,
                status=response.status,
            )
        try:
            return response.json()
        except ValueError as e:
            raise MetadataError(f"Response from {url} is not valid JSON.") from e

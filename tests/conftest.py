from __future__ import annotations

import json
import random
from typing import Any

import pytest

from safari_epub.core.http_client import FetchClient, FetchResponse
from safari_epub.core.scheduler import RequestScheduler
from safari_epub.models.assets import AssetRegistry
from safari_epub.models.book import BookMetadata
from safari_epub.models.config import DownloaderConfig

BASE = "https://learning.oreilly.com"
BOOK_ID = "9781098100001"
API_URL = f"{BASE}/api/v2/epubs/urn:orm:book:{BOOK_ID}/"
FILES_URL = f"{API_URL}files/"
WEB_URL = f"{BASE}/library/view/test-book/{BOOK_ID}/"


class FakeClock:
    """Clock whose ``sleep`` advances time instantly."""

    def __init__(self, start: float = 1000.0):
        self.t = start
        self.sleeps: list[float] = []

    def now(self) -> float:
        return self.t

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.t += seconds

    def advance(self, seconds: float) -> None:
        self.t += seconds


class ScriptedTransport:
    """Serve canned responses per URL and record every request.

    A route holds a list of outcomes consumed in order; the last one repeats.
    Outcomes are ``FetchResponse`` objects or exceptions to raise. Unknown
    URLs answer 404.
    """

    def __init__(self, routes: dict[str, Any] | None = None, clock: FakeClock | None = None):
        self.routes: dict[str, list[Any]] = {}
        self.requests: list[tuple[str, dict[str, str]]] = []
        self.request_times: list[float] = []
        self.clock = clock
        for url, outcome in (routes or {}).items():
            self.add(url, outcome)

    def add(self, url: str, outcome: Any) -> None:
        outcomes = outcome if isinstance(outcome, list) else [outcome]
        self.routes[url] = [to_response(o) for o in outcomes]

    def request(
        self,
        url: str,
        method: str = "GET",
        headers: dict[str, str] | None = None,
        include_credentials: bool = True,
    ) -> FetchResponse:
        self.requests.append((url, dict(headers or {})))
        if self.clock is not None:
            self.request_times.append(self.clock.now())
        outcomes = self.routes.get(url)
        if not outcomes:
            return FetchResponse(status=404, url=url)
        outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def urls(self) -> list[str]:
        return [url for url, _ in self.requests]

    def count(self, url: str) -> int:
        return self.urls().count(url)


class RecordingCredentials:
    def __init__(self, error: Exception | None = None):
        self.calls = 0
        self.error = error

    def refresh(self) -> None:
        self.calls += 1
        if self.error is not None:
            raise self.error


def to_response(outcome: Any) -> Any:
    """Shorthand: ints are bare statuses, dicts/lists are JSON, str/bytes are bodies."""
    if isinstance(outcome, (FetchResponse, Exception)):
        return outcome
    if isinstance(outcome, int):
        return FetchResponse(status=outcome)
    if isinstance(outcome, (dict, list)):
        return FetchResponse(status=200, content=json.dumps(outcome).encode())
    if isinstance(outcome, str):
        return FetchResponse(status=200, content=outcome.encode())
    return FetchResponse(status=200, content=outcome)


def chapter_page(body: str, head: str = "") -> str:
    return (
        f"<html><head>{head}</head><body>"
        f'<div id="sbo-rt-content">{body}</div>'
        "</body></html>"
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> DownloaderConfig:
    return DownloaderConfig()


@pytest.fixture
def transport(clock: FakeClock) -> ScriptedTransport:
    return ScriptedTransport(clock=clock)


@pytest.fixture
def credentials() -> RecordingCredentials:
    return RecordingCredentials()


@pytest.fixture
def scheduler(config: DownloaderConfig, clock: FakeClock) -> RequestScheduler:
    return RequestScheduler(config, clock=clock, rng=random.Random(7))


@pytest.fixture
def client(
    transport: ScriptedTransport,
    scheduler: RequestScheduler,
    credentials: RecordingCredentials,
    config: DownloaderConfig,
) -> FetchClient:
    return FetchClient(transport, scheduler=scheduler, credentials=credentials, config=config)


@pytest.fixture
def registry() -> AssetRegistry:
    return AssetRegistry()


@pytest.fixture
def metadata() -> BookMetadata:
    return BookMetadata(
        title="Test Book",
        authors=["Ada Lovelace"],
        publishers=["O'Reilly Media, Inc."],
        isbn=BOOK_ID,
        url=API_URL,
        web_url=WEB_URL,
        chapters=f"{API_URL}chapters/",
    )

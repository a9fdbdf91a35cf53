"""Download stylesheets, fonts and images referenced by the book."""

import logging
import re
from typing import Callable
from urllib.parse import urlparse

from safari_epub.core.errors import AssetFetchWarning, NetworkError
from safari_epub.core.http_client import (
    ACCEPT_CSS,
    ACCEPT_FONT,
    ACCEPT_IMAGE,
    FetchClient,
    FetchResponse,
)
from safari_epub.core.naming import (
    is_absolute_url,
    is_font_url,
    is_likely_image_asset,
    resolve_styles_relative_path,
    to_absolute_url,
)
from safari_epub.models.assets import AssetEntry, AssetRegistry
from safari_epub.models.book import BookMetadata

log = logging.getLogger(__name__)

CSS_URL_RE = re.compile(r"url\(([^)]+)\)", re.IGNORECASE)
DISPLAY_NONE_RE = re.compile(r"display\s*:\s*none", re.IGNORECASE)
ISBN_IMAGE_RE = re.compile(r"Images/(\d{10,13})\.(jpg|jpeg|png|gif)$", re.IGNORECASE)
COVER_GUESSES = ("cover.jpg", "cover.jpeg", "cover.png", "cover-large.jpg")


def neutralize_hidden_rules(css: str) -> str:
    """Turn ``display:none`` into ``visibility: hidden`` so assets still load."""
    return DISPLAY_NONE_RE.sub("visibility: hidden", css)


def css_base_url(source_url: str) -> str:
    parsed = urlparse(source_url)
    directory = parsed.path[: parsed.path.rfind("/") + 1]
    return f"{parsed.scheme}://{parsed.netloc}{directory}"


class AssetCollector:
    """Fetch every registered asset in dependency order.

    Font and CSS image URLs are only known once stylesheets are fetched, so
    stages run as CSS, fonts, page images, then CSS images.
    """

    def __init__(
        self,
        client: FetchClient,
        registry: AssetRegistry,
        metadata: BookMetadata,
    ):
        self.client = client
        self.registry = registry
        self.metadata = metadata
        self.warnings: list[AssetFetchWarning] = []

    def _warn(self, message: str) -> None:
        log.warning(message)
        self.warnings.append(AssetFetchWarning(message))

    def _get(self, url: str, accept: str) -> FetchResponse | None:
        """Fetch an optional asset; failures become warnings."""
        try:
            response = self.client.fetch(url, {"Accept": accept})
        except NetworkError as e:
            self._warn(f"Unable to retrieve {url} ({e})")
            return None
        if not response.ok:
            self._warn(f"Unable to retrieve {url} (status {response.status})")
            return None
        return response

    # CSS -----------------------------------------------------------------

    def fetch_css_sources(self) -> None:
        for source in list(self.registry.css_sources):
            if source in self.registry.css_content:
                continue
            response = self._get(source, ACCEPT_CSS)
            if response is None:
                continue
            css = neutralize_hidden_rules(response.text)
            self.registry.css_content[source] = css
            self.register_fonts_and_css_images(source, css)

    def register_fonts_and_css_images(self, source_url: str, css: str) -> None:
        """Scan ``url(...)`` references and register fonts and images."""
        base = css_base_url(source_url)
        for match in CSS_URL_RE.finditer(css):
            raw = match.group(1).strip().strip("'\"")
            if not raw or raw.startswith(("data:", "about:")):
                continue
            if is_absolute_url(raw):
                log.debug("Leaving absolute CSS reference %s in place", raw)
                continue
            absolute = to_absolute_url(raw, base)
            local_path = resolve_styles_relative_path(raw.split("?")[0].split("#")[0])
            if is_font_url(raw):
                self.registry.register_font(local_path, absolute)
            elif is_likely_image_asset(raw):
                self.registry.register_css_asset(local_path, absolute)

    # Fonts ---------------------------------------------------------------

    def fetch_fonts(self) -> None:
        for local_path, url in self.registry.fonts.items():
            # An image already claimed this path
            if local_path in self.registry.css_assets:
                continue
            response = self._get(url, ACCEPT_FONT)
            if response is None:
                continue
            self.registry.css_assets[local_path] = AssetEntry(
                source_url=url, data=response.content
            )

    # Page images -----------------------------------------------------------

    def build_image_fallback_urls(self, relative: str, url: str) -> list[str]:
        candidates: list[str] = []

        def add(candidate: str | None) -> None:
            if candidate and candidate not in candidates:
                candidates.append(candidate)

        if "/Images/" in url:
            add(url.replace("/Images/", "/images/"))
        if "/images/" in url:
            add(url.replace("/images/", "/Images/"))

        if "/files/Images/" in url:
            base = re.sub(r"Images/[^/]*$", "Images/", url, flags=re.IGNORECASE)
            for name in COVER_GUESSES:
                add(f"{base}{name}")

        isbn_match = ISBN_IMAGE_RE.search(url)
        if isbn_match:
            isbn = isbn_match.group(1)
            for size in self.client.config.cover_cdn_sizes:
                add(self.client.config.cover_cdn_url(isbn, size))

        if self.metadata.cover and url != self.metadata.cover:
            add(self.metadata.cover)
        if relative and self.metadata.cover_url:
            add(self.metadata.cover_url)
        return candidates

    def fetch_image_with_fallback(self, relative: str, primary_url: str) -> AssetEntry | None:
        """Try the primary URL, then each fallback candidate once."""
        attempts: list[str] = []
        tried: set[str] = set()
        for candidate in [primary_url, *self.build_image_fallback_urls(relative, primary_url)]:
            if not candidate or candidate in tried:
                continue
            tried.add(candidate)
            try:
                response = self.client.fetch(candidate, {"Accept": ACCEPT_IMAGE})
            except NetworkError as e:
                attempts.append(f"{candidate} ({e})")
                continue
            if not response.ok:
                attempts.append(f"{candidate} (status {response.status})")
                continue
            if candidate != primary_url:
                log.info("Fetched image %s via fallback %s", relative, candidate)
            return AssetEntry(source_url=primary_url, data=response.content, fetched_from=candidate)

        self._warn(f"Unable to fetch image {primary_url}. Attempts: {'; '.join(attempts)}")
        return None

    def fetch_images(
        self,
        on_progress: Callable[[int, int, float], None] | None = None,
    ) -> int:
        """Fetch page images; returns the number fetched successfully."""
        clock = self.client.scheduler.clock
        started = clock.now()
        items = list(self.registry.images.items())
        total = len(items)
        fetched = 0
        for completed, (relative, entry) in enumerate(items, start=1):
            if not entry.fetched:
                result = self.fetch_image_with_fallback(relative, entry.source_url)
                if result is not None:
                    self.registry.images[relative] = result
            if self.registry.images[relative].fetched:
                fetched += 1
            if on_progress:
                on_progress(completed, total, clock.now() - started)
        return fetched

    # CSS images ------------------------------------------------------------

    def pending_css_assets(self) -> list[str]:
        return [path for path, entry in self.registry.css_assets.items() if not entry.fetched]

    def fetch_css_images(self) -> None:
        for path in self.pending_css_assets():
            entry = self.registry.css_assets[path]
            response = self._get(entry.source_url, ACCEPT_IMAGE)
            if response is None:
                continue
            entry.data = response.content

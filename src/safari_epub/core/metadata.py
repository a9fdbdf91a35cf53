"""Session check, book metadata and chapter list resolution."""

import logging
from typing import Any

from pydantic import ValidationError

from safari_epub.core.errors import AuthenticationError, MetadataError, NetworkError
from safari_epub.core.http_client import FetchClient
from safari_epub.models.book import BookMetadata, Chapter, TOCEntry

log = logging.getLogger(__name__)

# Fields the v1 API reports more completely than v2
SECONDARY_OVERRIDE_KEYS = ("authors", "subjects", "topics", "rights", "publishers", "web_url")
EXPIRED_MARKER = 'user_type":"Expired"'


def merge_book_info(primary: dict[str, Any], secondary: dict[str, Any]) -> dict[str, Any]:
    """Overlay the secondary API's identity fields on the primary payload."""
    merged = dict(primary)
    for key in SECONDARY_OVERRIDE_KEYS:
        if secondary.get(key):
            merged[key] = secondary[key]
    if not merged.get("url") and merged.get("web_url"):
        merged["url"] = merged["web_url"]
    return merged


class MetadataResolver:
    """Resolve everything needed before chapters can be transformed."""

    def __init__(self, client: FetchClient):
        self.client = client
        self.config = client.config

    def check_login(self) -> None:
        """Verify the session against the profile page."""
        url = self.config.profile_url
        response = self.client.fetch(url, require_document=True)
        if not response.ok:
            raise AuthenticationError(
                f"Authentication failed (status {response.status}) when accessing {url}"
            )
        if EXPIRED_MARKER in response.text:
            raise AuthenticationError("Authentication issue: account subscription expired.")

    def _fetch_object(self, url: str) -> dict[str, Any]:
        data = self.client.fetch_json(url)
        if not isinstance(data, dict):
            raise MetadataError(f"Unexpected metadata payload from {url}")
        return data

    def fetch_book_info(self, book_id: str) -> BookMetadata:
        primary = self._fetch_object(f"{self.config.api_v2_template}{book_id}/")
        secondary = self._fetch_object(f"{self.config.api_v1_template}{book_id}/")
        try:
            return BookMetadata.from_api(merge_book_info(primary, secondary))
        except ValidationError as e:
            raise MetadataError(f"Malformed metadata for book {book_id}: {e}") from e

    def fetch_chapters(self, initial_url: str | None) -> list[Chapter]:
        """Follow the ``next`` cursor and concatenate every page in order."""
        if not initial_url:
            raise MetadataError("Missing chapter list URL in book metadata.")
        chapters: list[Chapter] = []
        next_url: str | None = initial_url
        while next_url:
            data = self.client.fetch_json(next_url)
            results = data.get("results") if isinstance(data, dict) else None
            if not isinstance(results, list):
                raise MetadataError("Chapter response missing results array.")
            try:
                chapters.extend(Chapter.model_validate(item) for item in results)
            except ValidationError as e:
                raise MetadataError(f"Malformed chapter entry at {next_url}: {e}") from e
            next_url = data.get("next")
        return chapters

    def fetch_table_of_contents(self, metadata: BookMetadata) -> list[TOCEntry]:
        """Return the nested TOC, fetching it when the metadata only links it.

        A missing or unreachable TOC yields an empty list; callers derive a
        flat one from the chapter documents instead.
        """
        toc = metadata.table_of_contents
        if isinstance(toc, list):
            return toc
        if not toc:
            return []
        try:
            data = self.client.fetch_json(toc)
        except (NetworkError, MetadataError) as e:
            log.warning("Unable to retrieve table of contents from %s (%s)", toc, e)
            return []
        if isinstance(data, dict):
            data = data.get("results") or []
        if not isinstance(data, list):
            return []
        try:
            return [TOCEntry.model_validate(item) for item in data]
        except ValidationError as e:
            log.warning("Ignoring malformed table of contents (%s)", e)
            return []

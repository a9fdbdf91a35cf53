"""Data models for book structure as returned by the library API."""

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _names(value: Any) -> list[str]:
    """Normalize ``[{"name": ...}]`` / ``["..."]`` / ``"..."`` to names."""
    if value is None:
        return []
    if isinstance(value, (str, dict)):
        value = [value]
    names = []
    for item in value:
        name = item.get("name") if isinstance(item, dict) else item
        if name:
            names.append(str(name))
    return names


class TOCEntry(BaseModel):
    """Single entry in the remote table of contents."""

    model_config = ConfigDict(extra="ignore")

    title: str | None = None
    label: str | None = None
    href: str | None = None
    ourn: str | None = None
    fragment: str | None = None
    reference_id: str | None = None
    depth: int | None = None
    children: list["TOCEntry"] = Field(default_factory=list)

    @property
    def display_title(self) -> str:
        return self.title or self.label or "Chapter"


class RelatedAssets(BaseModel):
    """Assets the API lists alongside a chapter."""

    model_config = ConfigDict(extra="ignore")

    images: list[str] = Field(default_factory=list)
    stylesheets: list[str] = Field(default_factory=list)
    site_styles: list[str] = Field(default_factory=list)

    @field_validator("images", "stylesheets", "site_styles", mode="before")
    @classmethod
    def _urls(cls, value: Any) -> list[str]:
        # Stylesheets sometimes come back as {"url": ...} objects
        if not value:
            return []
        urls = []
        for item in value:
            url = item.get("url") if isinstance(item, dict) else item
            if url:
                urls.append(str(url))
        return urls


class Chapter(BaseModel):
    """Chapter entry from the paginated chapter list."""

    model_config = ConfigDict(extra="ignore")

    title: str | None = None
    content_url: str | None = None
    ourn: str | None = None
    filename: str | None = None
    related_assets: RelatedAssets = Field(default_factory=RelatedAssets)

    @field_validator("related_assets", mode="before")
    @classmethod
    def _assets(cls, value: Any) -> Any:
        return value or {}

    def xhtml_filename(self) -> str:
        """Filename of the packaged document, always with an XHTML extension."""
        if self.ourn:
            name = self.ourn.split("chapter:")[-1].split("%2f")[-1]
        else:
            name = self.filename or f"{self.title or 'chapter'}.xhtml"
        name = name.replace(".html", ".xhtml")
        if not name.lower().endswith(".xhtml"):
            name = f"{name}.xhtml"
        return name


class BookMetadata(BaseModel):
    """Book-level metadata merged from both API versions."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    title: str = "Unknown Title"
    authors: list[str] = Field(default_factory=list)
    subjects: list[str] = Field(default_factory=list)
    topics: list[str] = Field(default_factory=list)
    publishers: list[str] = Field(default_factory=list)
    rights: str | None = None
    isbn: str | None = None
    identifier: str | None = None
    publication_date: str | None = None
    issued: str | None = None
    description: str | None = None
    cover: str | None = None
    cover_url: str | None = None
    url: str | None = None
    web_url: str | None = None
    chapters: str | None = None
    table_of_contents: list[TOCEntry] | str | None = None

    @field_validator("authors", "subjects", "topics", "publishers", mode="before")
    @classmethod
    def _to_names(cls, value: Any) -> list[str]:
        return _names(value)

    @field_validator("rights", "isbn", "identifier", mode="before")
    @classmethod
    def _to_str(cls, value: Any) -> str | None:
        return None if value in (None, "") else str(value)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "BookMetadata":
        """Build from a merged API payload."""
        payload = dict(data)
        descriptions = payload.get("descriptions")
        if isinstance(descriptions, dict):
            payload["description"] = descriptions.get("text/plain") or None
        elif not isinstance(payload.get("description"), str):
            payload["description"] = None
        if not payload.get("publication_date") and payload.get("issued"):
            payload["publication_date"] = payload["issued"]
        if not payload.get("url") and payload.get("web_url"):
            payload["url"] = payload["web_url"]
        if not payload.get("title"):
            payload.pop("title", None)
        return cls.model_validate(payload)

    @property
    def base_url(self) -> str:
        """Canonical page URL used as the referrer and stylesheet base."""
        return self.web_url or self.url or ""

    @property
    def files_url(self) -> str:
        """Root under which the book's packaged files are served."""
        return f"{(self.url or '').rstrip('/')}/files/"


@dataclass
class ChapterDocument:
    """A rendered chapter ready for packaging."""

    title: str
    filename: str
    css_markup: str
    xhtml: str

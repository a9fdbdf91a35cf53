"""Rewrite chapter HTML into packaged XHTML documents."""

import logging
import warnings
from dataclasses import dataclass, field
from typing import Callable

from bs4 import BeautifulSoup, Tag, XMLParsedAsHTMLWarning

from safari_epub.core.errors import MetadataError, NetworkError, TransformError
from safari_epub.core.http_client import ACCEPT_DOCUMENT, FetchClient
from safari_epub.core.naming import (
    escape_xml,
    is_absolute_url,
    is_doc_link,
    is_image_link,
    is_likely_image_asset,
    to_absolute_url,
)
from safari_epub.models.assets import AssetRegistry
from safari_epub.models.book import BookMetadata, Chapter, ChapterDocument
from safari_epub.models.config import DownloadOptions

# Chapter pages are XHTML served as HTML
warnings.filterwarnings("ignore", category=XMLParsedAsHTMLWarning)

log = logging.getLogger(__name__)

CONTENT_ROOT_ID = "sbo-rt-content"
IMAGES_BASE = "Images/"
IMAGE_DIRS = ("images/", "graphics/", "assets/")
COVER_ATTRIBUTES = ("id", "class", "name", "src", "alt")
COVER_FILENAME = "default_cover.xhtml"

SVG_NS = "http://www.w3.org/2000/svg"
XLINK_NS = "http://www.w3.org/1999/xlink"
# The HTML parser lowercases attribute names; SVG needs these back
SVG_ATTRIBUTE_CASE = {
    "viewbox": "viewBox",
    "preserveaspectratio": "preserveAspectRatio",
}

THEME_CSS = {
    "white": ".ucvMode-white{background:#ffffff;color:#101010;}",
    "sepia": ".ucvMode-sepia{background:#f4ecd8;color:#523f2a;} .ucvMode-sepia a{color:#274060;}",
    "black": ".ucvMode-black{background:#070707;color:#f4f4f5;} .ucvMode-black a{color:#60a5fa;}",
}

KINDLE_CSS = (
    "#sbo-rt-content *{word-wrap:break-word!important;word-break:break-word!important;}"
    "#sbo-rt-content table,#sbo-rt-content pre{overflow-x:unset!important;overflow:unset!important;"
    "overflow-y:unset!important;white-space:pre-wrap!important;}"
)

XHTML_TEMPLATE = """<!DOCTYPE html>
<html lang="en" xml:lang="en" xmlns="http://www.w3.org/1999/xhtml" xmlns:epub="http://www.idpf.org/2007/ops">
<head>
<meta charset="utf-8"/>
<title>{title}</title>
{page_css}
<style type="text/css">
body{{margin:1em;background-color:transparent!important;}}
#sbo-rt-content *{{text-indent:0pt!important;}}
#sbo-rt-content .bq{{margin-right:1em!important;}}
img{{height:auto;max-width:100%;}}
pre {{background-color:#EEF2F6!important;padding:0.75em 1.5em!important;}}
{kindle_css}
{theme_css}
</style>
</head>
<body><div class="ucvMode-{theme_mode}"><div id="book-content">{content}</div></div></body>
</html>"""


def build_xhtml(
    page_css: str,
    inner_html: str,
    options: DownloadOptions,
    title: str = "",
) -> str:
    """Wrap serialized content in the themed document shell."""
    return XHTML_TEMPLATE.format(
        title=escape_xml(title),
        page_css=page_css,
        kindle_css=KINDLE_CSS if options.kindle else "",
        theme_css=THEME_CSS.get(options.theme.value, ""),
        theme_mode=options.theme_mode,
        content=inner_html,
    )


def stylesheet_link(filename: str) -> str:
    return f'<link href="Styles/{filename}" rel="stylesheet" type="text/css" />'


@dataclass
class ParsedChapter:
    """Output of rendering one chapter page."""

    css_markup: str
    xhtml: str
    detected_cover: str | None = None


@dataclass
class TransformResult:
    """All chapter documents in spine order plus the resolved cover."""

    documents: list[ChapterDocument] = field(default_factory=list)
    cover_path: str | None = None
    cover_from_chapter: bool = False


class ChapterTransformer:
    """Turn chapter pages into XHTML while registering their assets."""

    def __init__(
        self,
        client: FetchClient,
        metadata: BookMetadata,
        registry: AssetRegistry,
        options: DownloadOptions | None = None,
    ):
        self.client = client
        self.metadata = metadata
        self.registry = registry
        self.options = options or DownloadOptions()

    # ------------------------------------------------------------------
    # Image registration and link rewriting
    # ------------------------------------------------------------------

    def local_image_path(self, url: str) -> tuple[str, str]:
        """Split an image URL into (folder, filename) below ``Images/``."""
        normalized = url.split("?")[0]
        if not self.metadata.url:
            return "", normalized.split("/")[-1]
        book_segment = self.metadata.url.rstrip("/").split("/")[-1]
        base = f"{book_segment}/files/"
        if base in normalized:
            candidate = normalized.split(base)[-1]
        else:
            candidate = normalized.split("/")[-1]
        trimmed = candidate.lstrip("/")
        for prefix in IMAGE_DIRS:
            if trimmed.startswith(prefix):
                trimmed = trimmed[len(prefix):]
                break
        parts = trimmed.split("/")
        file_name = parts.pop()
        return "/".join(parts), file_name

    def register_image(self, full_url: str | None) -> str | None:
        """Register an image and return its virtual ``Images/`` path."""
        if not full_url:
            return None
        if is_absolute_url(full_url):
            absolute = full_url
        else:
            absolute = to_absolute_url(full_url, self.metadata.files_url)
        folder, file_name = self.local_image_path(absolute)
        if not file_name:
            return None
        relative = f"{folder}/{file_name}" if folder else file_name
        self.registry.register_image(relative, absolute)
        return f"{IMAGES_BASE}{relative}"

    def _strip_book_prefix(self, link: str) -> str | None:
        for prefix in (self.metadata.url, self.metadata.web_url):
            if prefix and prefix.rstrip("/") in link:
                partial = link.replace(prefix.rstrip("/"), "", 1).lstrip("/")
                if partial.startswith("files/"):
                    partial = partial[len("files/"):]
                return partial
        return None

    def rewrite_link(self, link: str | None) -> str | None:
        if not link or link.startswith(("mailto", "#")):
            return link
        if not is_absolute_url(link):
            path = link.split("#", 1)[0]
            if not is_doc_link(path) and is_image_link(path):
                updated = self.register_image(
                    to_absolute_url(path, self.metadata.files_url)
                )
                if updated:
                    return updated
            return link.split("/")[-1].replace(".html", ".xhtml")
        partial = self._strip_book_prefix(link)
        if partial is not None:
            return self.rewrite_link(partial)
        if not is_doc_link(link) and is_likely_image_asset(link):
            updated = self.register_image(link)
            if updated:
                return updated
        return link

    def rewrite_links_in_node(self, node: Tag) -> None:
        for el in node.find_all(True):
            for name, value in list(el.attrs.items()):
                if name in ("href", "src") or name.endswith(":href"):
                    if not isinstance(value, str):
                        continue
                    rewritten = self.rewrite_link(value)
                    if rewritten:
                        el[name] = rewritten

    # ------------------------------------------------------------------
    # Markup repair
    # ------------------------------------------------------------------

    def fix_overconstrained_images(self, soup: BeautifulSoup, node: Tag) -> None:
        for img in node.find_all("img"):
            style = img.get("style") or ""
            if "width" in style or "height" in style:
                img.attrs.pop("width", None)
                img.attrs.pop("height", None)

        for image in node.select("svg image"):
            href = next(
                (v for k, v in image.attrs.items() if k.endswith("href") and v),
                None,
            )
            svg = image.find_parent("svg")
            if href and svg is not None:
                # Links were already rewritten; reuse the packaged path
                svg.insert_after(soup.new_tag("img", attrs={"src": href, "alt": ""}))

    def fix_svg_namespaces(self, node: Tag) -> None:
        for svg in node.find_all("svg"):
            svg.attrs.setdefault("xmlns", SVG_NS)
            elements = [svg, *svg.find_all(True)]
            for el in elements:
                for lower, proper in SVG_ATTRIBUTE_CASE.items():
                    if lower in el.attrs:
                        el[proper] = el.attrs.pop(lower)
            uses_xlink = any(
                name.startswith("xlink:") for el in elements for name in el.attrs
            )
            if uses_xlink:
                svg.attrs.setdefault("xmlns:xlink", XLINK_NS)

    def detect_cover_image(self, node: Tag) -> str | None:
        """First image that looks like a cover, else the first image."""
        images = node.find_all("img")
        for img in images:
            for attr in COVER_ATTRIBUTES:
                value = img.get(attr)
                if isinstance(value, list):
                    value = " ".join(value)
                if value and "cover" in value.lower():
                    return img.get("src")
        return images[0].get("src") if images else None

    # ------------------------------------------------------------------
    # Chapter rendering
    # ------------------------------------------------------------------

    def chapter_stylesheets(self, chapter: Chapter) -> list[str]:
        assets = chapter.related_assets
        base = self.metadata.base_url
        return [
            url if is_absolute_url(url) else to_absolute_url(url, base)
            for url in [*assets.stylesheets, *assets.site_styles]
        ]

    def parse_html(
        self,
        html_text: str,
        chapter_stylesheets: list[str],
        first_page: bool = False,
        title: str = "",
    ) -> ParsedChapter:
        soup = BeautifulSoup(html_text, "lxml")
        book_content = soup.find(id=CONTENT_ROOT_ID)
        if book_content is None:
            raise TransformError(f"Chapter markup missing #{CONTENT_ROOT_ID} node.")

        css_urls = list(chapter_stylesheets)
        for link in soup.find_all("link", rel="stylesheet"):
            href = link.get("href")
            if not href:
                continue
            if href.startswith("//"):
                css_urls.append(f"https:{href}")
            else:
                css_urls.append(to_absolute_url(href, self.metadata.base_url))

        page_css_blocks: list[str] = []
        for css_url in css_urls:
            markup = stylesheet_link(self.registry.register_css_source(css_url))
            if markup not in page_css_blocks:
                page_css_blocks.append(markup)

        for style in soup.find_all("style"):
            template = style.get("data-template")
            if template is not None:
                style.string = template
                del style["data-template"]
            page_css_blocks.append(str(style))

        self.rewrite_links_in_node(book_content)
        self.fix_overconstrained_images(soup, book_content)
        self.fix_svg_namespaces(book_content)

        detected_cover = self.detect_cover_image(book_content) if first_page else None

        css_markup = "\n".join(page_css_blocks)
        xhtml = build_xhtml(css_markup, str(book_content), self.options, title)
        return ParsedChapter(css_markup=css_markup, xhtml=xhtml, detected_cover=detected_cover)

    def load_chapter_document(self, url: str) -> str:
        response = self.client.fetch(url, {"Accept": ACCEPT_DOCUMENT}, require_document=True)
        if not response.ok:
            raise NetworkError(
                f"Failed to download chapter at {url} (status {response.status})",
                url=url,
                status=response.status,
            )
        return response.text

    def _resolve_cover(self, src: str) -> str | None:
        # Detected sources were already rewritten to packaged paths
        if src.startswith(IMAGES_BASE) and src[len(IMAGES_BASE):] in self.registry.images:
            return src
        return self.register_image(src)

    def cover_document(self, cover_path: str) -> ChapterDocument:
        markup = f'<div id="Cover"><img src="{escape_xml(cover_path)}" alt="Book cover"/></div>'
        return ChapterDocument(
            title="Cover",
            filename=COVER_FILENAME,
            css_markup="",
            xhtml=build_xhtml("", markup, self.options, "Cover"),
        )

    def process_chapters(
        self,
        chapters: list[Chapter],
        on_chapter: Callable[[int, int, str], None] | None = None,
    ) -> TransformResult:
        """Render every chapter in order and settle the cover page."""
        result = TransformResult()
        total = len(chapters)

        for index, chapter in enumerate(chapters):
            title = chapter.title or f"Chapter {index + 1}"
            if on_chapter:
                on_chapter(index, total, title)
            if not chapter.content_url:
                raise MetadataError(f"Chapter '{title}' has no content URL.")

            for img in chapter.related_assets.images:
                self.register_image(
                    img if is_absolute_url(img) else f"{self.metadata.files_url}{img}"
                )

            html_text = self.load_chapter_document(chapter.content_url)
            parsed = self.parse_html(
                html_text,
                self.chapter_stylesheets(chapter),
                first_page=index == 0,
                title=title,
            )
            if parsed.detected_cover and not result.cover_path:
                result.cover_path = self._resolve_cover(parsed.detected_cover)
                result.cover_from_chapter = result.cover_path is not None

            result.documents.append(
                ChapterDocument(
                    title=title,
                    filename=chapter.xhtml_filename(),
                    css_markup=parsed.css_markup,
                    xhtml=parsed.xhtml,
                )
            )

        if not result.cover_path and self.metadata.cover:
            log.info("Falling back to book metadata cover image.")
            result.cover_path = self.register_image(self.metadata.cover)

        has_cover_chapter = any(
            "cover" in doc.filename.lower() or "cover" in doc.title.lower()
            for doc in result.documents
        )
        if result.cover_path and not has_cover_chapter and not result.cover_from_chapter:
            result.documents.insert(0, self.cover_document(result.cover_path))

        return result

"""Build content.opf, toc.ncx and the final EPUB archive."""

from dataclasses import dataclass

from safari_epub.core.naming import (
    escape_xml,
    is_font_url,
    is_likely_image_asset,
    make_valid_id,
    media_type_for,
)
from safari_epub.core.transformer import IMAGES_BASE
from safari_epub.core.zip_writer import StoreZipWriter
from safari_epub.models.assets import AssetRegistry
from safari_epub.models.book import BookMetadata, ChapterDocument, TOCEntry

MIMETYPE = "application/epub+zip"

CONTAINER_XML = (
    '<?xml version="1.0"?>'
    '<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">'
    "<rootfiles>"
    '<rootfile full-path="OEBPS/content.opf" media-type="application/oebps-package+xml" />'
    "</rootfiles>"
    "</container>"
)

CONTENT_OPF_TEMPLATE = """<?xml version="1.0" encoding="utf-8"?>
<package xmlns="http://www.idpf.org/2007/opf" unique-identifier="bookid" version="2.0">
<metadata xmlns:dc="http://purl.org/dc/elements/1.1/" xmlns:opf="http://www.idpf.org/2007/opf">
<dc:title>{title}</dc:title>
{authors}
<dc:description>{description}</dc:description>
{subjects}
<dc:publisher>{publishers}</dc:publisher>
<dc:rights>{rights}</dc:rights>
<dc:language>en-US</dc:language>
<dc:date>{date}</dc:date>
<dc:identifier id="bookid">{identifier}</dc:identifier>
{cover_meta}
</metadata>
<manifest>
<item id="ncx" href="toc.ncx" media-type="application/x-dtbncx+xml" />
{manifest}
</manifest>
<spine toc="ncx">
{spine}
</spine>
<guide><reference href="{guide_href}" title="Cover" type="cover" /></guide>
</package>"""

TOC_NCX_TEMPLATE = """<?xml version="1.0" encoding="utf-8" standalone="no" ?>
<!DOCTYPE ncx PUBLIC "-//NISO//DTD ncx 2005-1//EN" "http://www.daisy.org/z3986/2005/ncx-2005-1.dtd">
<ncx xmlns="http://www.daisy.org/z3986/2005/ncx/" version="2005-1">
<head>
<meta content="ID:ISBN:{uid}" name="dtb:uid"/>
<meta content="{depth}" name="dtb:depth"/>
<meta content="0" name="dtb:totalPageCount"/>
<meta content="0" name="dtb:maxPageNumber"/>
</head>
<docTitle><text>{title}</text></docTitle>
<docAuthor><text>{authors}</text></docAuthor>
<navMap>{nav_map}</navMap>
</ncx>"""


@dataclass
class NavMap:
    markup: str
    max_depth: int
    count: int


def _stem(path: str) -> str:
    return path.rsplit(".", 1)[0] if "." in path else path


def chapter_href(filename: str) -> str:
    """Packaged documents live flat in OEBPS; keep only the file part."""
    return filename.split("/")[-1].replace(".html", ".xhtml")


class EpubPackager:
    """Assemble one book's rendered documents and assets into an EPUB."""

    def __init__(
        self,
        metadata: BookMetadata,
        book_id: str,
        registry: AssetRegistry,
        documents: list[ChapterDocument],
        toc: list[TOCEntry] | None = None,
        cover_path: str | None = None,
    ):
        self.metadata = metadata
        self.book_id = book_id
        self.registry = registry
        self.documents = documents
        self.toc = toc or []
        self.cover_path = cover_path
        self._ids: set[str] = {"ncx"}
        self.image_ids: dict[str, str] = {}

    def _unique_id(self, base: str) -> str:
        candidate = make_valid_id(base)
        item_id = candidate
        n = 2
        while item_id in self._ids:
            item_id = f"{candidate}_{n}"
            n += 1
        self._ids.add(item_id)
        return item_id

    @property
    def identifier(self) -> str:
        return self.metadata.isbn or self.book_id

    @property
    def first_document(self) -> str:
        return self.documents[0].filename if self.documents else "chapter.xhtml"

    # Manifest ------------------------------------------------------------

    def create_manifest_and_spine(self) -> tuple[str, str]:
        self._ids = {"ncx"}
        self.image_ids = {}
        manifest: list[str] = []
        spine: list[str] = []

        for doc in self.documents:
            item_id = self._unique_id(_stem(doc.filename))
            manifest.append(
                f'<item id="{item_id}" href="{escape_xml(doc.filename)}" '
                'media-type="application/xhtml+xml" />'
            )
            spine.append(f'<itemref idref="{item_id}" />')

        for relative, entry in self.registry.images.items():
            if not entry.fetched:
                continue
            item_id = self._unique_id(f"img_{_stem(relative).replace('/', '_')}")
            self.image_ids[relative] = item_id
            manifest.append(
                f'<item id="{item_id}" href="{IMAGES_BASE}{escape_xml(relative)}" '
                f'media-type="{media_type_for(relative)}" />'
            )

        for source, filename in self.registry.css_sources.items():
            if not self.registry.css_content.get(source):
                continue
            item_id = self._unique_id(filename)
            manifest.append(
                f'<item id="{item_id}" href="Styles/{escape_xml(filename)}" media-type="text/css" />'
            )

        for path, entry in self.registry.css_assets.items():
            if not entry.fetched:
                continue
            if not (is_font_url(path) or is_likely_image_asset(path)):
                continue
            item_id = self._unique_id(path.replace("/", "_"))
            manifest.append(
                f'<item id="{item_id}" href="{escape_xml(path)}" media-type="{media_type_for(path)}" />'
            )

        return "\n".join(manifest), "\n".join(spine)

    def cover_id(self) -> str | None:
        """Manifest id of the cover image, if it made it into the package."""
        if not self.cover_path or not self.cover_path.startswith(IMAGES_BASE):
            return None
        return self.image_ids.get(self.cover_path[len(IMAGES_BASE):])

    def create_content_opf(self, manifest: str, spine: str) -> str:
        md = self.metadata
        authors = "\n".join(
            f'<dc:creator opf:file-as="{escape_xml(name)}" opf:role="aut">{escape_xml(name)}</dc:creator>'
            for name in md.authors
        )
        subjects = "\n".join(f"<dc:subject>{escape_xml(s)}</dc:subject>" for s in md.subjects)
        cover_id = self.cover_id()
        cover_meta = f'<meta name="cover" content="{escape_xml(cover_id)}"/>' if cover_id else ""
        return CONTENT_OPF_TEMPLATE.format(
            title=escape_xml(md.title),
            authors=authors,
            description=escape_xml(md.description or ""),
            subjects=subjects,
            publishers=", ".join(escape_xml(p) for p in md.publishers),
            rights=escape_xml(md.rights or ""),
            date=escape_xml(md.publication_date or ""),
            identifier=escape_xml(self.identifier),
            cover_meta=cover_meta,
            manifest=manifest,
            spine=spine,
            guide_href=escape_xml(self.first_document),
        )

    # Navigation ------------------------------------------------------------

    def entry_href(self, entry: TOCEntry) -> str:
        if entry.href:
            return escape_xml(chapter_href(entry.href))
        if entry.ourn:
            filename = entry.ourn.split("chapter:")[-1].split("%2f")[-1]
            return escape_xml(chapter_href(filename))
        return escape_xml(self.first_document)

    def create_nav_map(self, entries: list[TOCEntry]) -> NavMap:
        """Pre-order walk assigning play order and tracking depth."""
        seen_ids: set[str] = set()
        count = 0
        max_depth = 0

        def walk(items: list[TOCEntry], level: int) -> str:
            nonlocal count, max_depth
            markup = []
            for entry in items:
                count += 1
                play_order = count
                depth = entry.depth or level
                max_depth = max(max_depth, depth)

                raw_id = entry.fragment or entry.reference_id
                nav_id = make_valid_id(raw_id) if raw_id else f"navPoint-{play_order}"
                if nav_id in seen_ids:
                    nav_id = f"{nav_id}_{play_order}"
                seen_ids.add(nav_id)

                href = self.entry_href(entry)
                children = walk(entry.children, level + 1) if entry.children else ""
                markup.append(
                    f'<navPoint id="{escape_xml(nav_id)}" playOrder="{play_order}">'
                    f"<navLabel><text>{escape_xml(entry.display_title)}</text></navLabel>"
                    f'<content src="{href}"/>{children}</navPoint>'
                )
            return "".join(markup)

        markup = walk(entries, 1)
        return NavMap(markup=markup, max_depth=max_depth, count=count)

    def fallback_toc(self) -> list[TOCEntry]:
        return [
            TOCEntry(title=doc.title, href=doc.filename, depth=1) for doc in self.documents
        ]

    def create_toc(self) -> str:
        nav = self.create_nav_map(self.toc or self.fallback_toc())
        return TOC_NCX_TEMPLATE.format(
            uid=escape_xml(self.identifier),
            depth=nav.max_depth,
            title=escape_xml(self.metadata.title),
            authors=escape_xml(", ".join(self.metadata.authors)),
            nav_map=nav.markup,
        )

    # Archive ---------------------------------------------------------------

    def assemble(self) -> StoreZipWriter:
        zip_writer = StoreZipWriter()
        zip_writer.add_file("mimetype", MIMETYPE)
        zip_writer.add_file("META-INF/container.xml", CONTAINER_XML)

        manifest, spine = self.create_manifest_and_spine()
        zip_writer.add_file("OEBPS/content.opf", self.create_content_opf(manifest, spine))
        zip_writer.add_file("OEBPS/toc.ncx", self.create_toc())

        for doc in self.documents:
            zip_writer.add_file(f"OEBPS/{doc.filename}", doc.xhtml)

        for source, filename in self.registry.css_sources.items():
            content = self.registry.css_content.get(source)
            if content:
                zip_writer.add_file(f"OEBPS/Styles/{filename}", content)

        for path, entry in self.registry.css_assets.items():
            if entry.fetched:
                zip_writer.add_file(f"OEBPS/{path}", entry.data)

        for relative, entry in self.registry.images.items():
            if entry.fetched:
                zip_writer.add_file(f"OEBPS/{IMAGES_BASE}{relative}", entry.data)

        return zip_writer

    def build(self) -> bytes:
        return self.assemble().generate()

from __future__ import annotations

import io
import xml.etree.ElementTree as ET
import zipfile

import pytest

from safari_epub.core.packager import EpubPackager, chapter_href
from safari_epub.models.assets import AssetEntry, AssetRegistry
from safari_epub.models.book import BookMetadata, ChapterDocument, TOCEntry

from conftest import BOOK_ID, FILES_URL

NCX = "{http://www.daisy.org/z3986/2005/ncx/}"
OPF = "{http://www.idpf.org/2007/opf}"


def _document(title: str, filename: str) -> ChapterDocument:
    return ChapterDocument(title=title, filename=filename, css_markup="", xhtml=f"<html>{title}</html>")


@pytest.fixture
def populated_registry() -> AssetRegistry:
    registry = AssetRegistry()
    registry.register_image("fig1.png", f"{FILES_URL}images/fig1.png")
    registry.images["fig1.png"].data = b"PNG"
    registry.register_image("missing.png", f"{FILES_URL}images/missing.png")
    registry.register_css_source(f"{FILES_URL}epub.css")
    registry.css_content[f"{FILES_URL}epub.css"] = "body{}"
    registry.register_css_source(f"{FILES_URL}gone.css")
    registry.css_assets["Styles/fonts/a.woff2"] = AssetEntry(source_url="f", data=b"wOF2")
    registry.register_css_asset("Styles/img/b.png", f"{FILES_URL}img/b.png")
    return registry


@pytest.fixture
def toc() -> list[TOCEntry]:
    return [
        TOCEntry(
            title="One",
            href="ch01.html",
            children=[TOCEntry(title="Section", href="ch01.html#s1", fragment="s1")],
        ),
        TOCEntry(label="Two", href="ch02.html", reference_id="ref-2"),
    ]


def _packager(metadata, registry, toc=None, cover_path="Images/fig1.png") -> EpubPackager:
    documents = [_document("One", "ch01.xhtml"), _document("Two", "ch02.xhtml")]
    return EpubPackager(metadata, BOOK_ID, registry, documents, toc=toc, cover_path=cover_path)


def test_chapter_href() -> None:
    assert chapter_href("ch01.html#s1") == "ch01.xhtml#s1"
    assert chapter_href("text/part/ch02.xhtml") == "ch02.xhtml"


def test_manifest_lists_only_packaged_files(
    metadata: BookMetadata, populated_registry: AssetRegistry
) -> None:
    packager = _packager(metadata, populated_registry)
    manifest, spine = packager.create_manifest_and_spine()
    assert 'href="Images/fig1.png" media-type="image/png"' in manifest
    assert "missing.png" not in manifest
    assert 'href="Styles/Style00.css" media-type="text/css"' in manifest
    assert "Style01.css" not in manifest
    assert 'href="Styles/fonts/a.woff2" media-type="font/woff2"' in manifest
    assert "Styles/img/b.png" not in manifest
    assert spine == '<itemref idref="ch01" />\n<itemref idref="ch02" />'


def test_content_opf(metadata: BookMetadata, populated_registry: AssetRegistry) -> None:
    packager = _packager(metadata, populated_registry)
    opf = packager.create_content_opf(*packager.create_manifest_and_spine())
    root = ET.fromstring(opf)
    assert root.get("version") == "2.0"
    dc = "{http://purl.org/dc/elements/1.1/}"
    assert root.find(f"{OPF}metadata/{dc}title").text == "Test Book"
    assert root.find(f"{OPF}metadata/{dc}identifier").text == BOOK_ID
    assert root.find(f"{OPF}metadata/{dc}publisher").text == "O'Reilly Media, Inc."
    cover = root.find(f"{OPF}metadata/{OPF}meta[@name='cover']")
    assert cover.get("content") == packager.image_ids["fig1.png"]
    assert root.find(f"{OPF}guide/{OPF}reference").get("href") == "ch01.xhtml"


def test_cover_meta_omitted_without_cover_image(
    metadata: BookMetadata, populated_registry: AssetRegistry
) -> None:
    packager = _packager(metadata, populated_registry, cover_path="Images/missing.png")
    opf = packager.create_content_opf(*packager.create_manifest_and_spine())
    assert 'name="cover"' not in opf


def test_manifest_ids_are_unique(metadata: BookMetadata) -> None:
    documents = [_document("A", "1.xhtml"), _document("B", "1.html")]
    packager = EpubPackager(metadata, BOOK_ID, AssetRegistry(), documents)
    manifest, _ = packager.create_manifest_and_spine()
    assert 'id="_1"' in manifest
    assert 'id="_1_2"' in manifest


def test_nav_map_play_order_and_depth(metadata: BookMetadata, toc: list[TOCEntry]) -> None:
    packager = _packager(metadata, AssetRegistry(), toc=toc)
    nav = packager.create_nav_map(toc)
    assert nav.count == 3
    assert nav.max_depth == 2

    ncx = ET.fromstring(packager.create_toc())
    assert ncx.find(f"{NCX}head/{NCX}meta[@name='dtb:depth']").get("content") == "2"
    points = list(ncx.iter(f"{NCX}navPoint"))
    assert [p.get("playOrder") for p in points] == ["1", "2", "3"]
    assert [p.get("id") for p in points] == ["navPoint-1", "s1", "ref_2"]
    assert [p.find(f"{NCX}content").get("src") for p in points] == [
        "ch01.xhtml",
        "ch01.xhtml#s1",
        "ch02.xhtml",
    ]
    assert points[1] in list(points[0])


def test_toc_falls_back_to_documents(metadata: BookMetadata) -> None:
    packager = _packager(metadata, AssetRegistry())
    ncx = ET.fromstring(packager.create_toc())
    labels = [t.text for t in ncx.iter(f"{NCX}text")]
    assert labels == ["Test Book", "Ada Lovelace", "One", "Two"]


def test_archive_layout(metadata: BookMetadata, populated_registry: AssetRegistry, toc) -> None:
    data = _packager(metadata, populated_registry, toc=toc).build()
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        assert zf.testzip() is None
        assert zf.namelist() == [
            "mimetype",
            "META-INF/container.xml",
            "OEBPS/content.opf",
            "OEBPS/toc.ncx",
            "OEBPS/ch01.xhtml",
            "OEBPS/ch02.xhtml",
            "OEBPS/Styles/Style00.css",
            "OEBPS/Styles/fonts/a.woff2",
            "OEBPS/Images/fig1.png",
        ]
        assert zf.read("mimetype") == b"application/epub+zip"
        assert zf.read("OEBPS/Images/fig1.png") == b"PNG"

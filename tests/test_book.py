import io
import random
import xml.etree.ElementTree as ET
import zipfile
from datetime import datetime, timezone

import pytest

from quire import rendition
from quire.book import Book
from quire.constants import BookVersion
from quire.errors import ErrorCode, UniquenessError, ValidationError
from quire.utils import new_uuid

OPF = "{http://www.idpf.org/2007/opf}"
DC = "{http://purl.org/dc/elements/1.1/}"
NCX = "{http://www.daisy.org/z3986/2005/ncx/}"
XHTML = "{http://www.w3.org/1999/xhtml}"

PARAGRAPH = "<p>" + "lorem ipsum dolor " * 50 + "</p>"


def _doc(title, body="<p>text</p>"):
    return f"<html><head><title>{title}</title></head><body><h1>{title}</h1>{body}</body></html>"


def _read(book, name):
    with zipfile.ZipFile(io.BytesIO(book.get_book())) as zf:
        return zf.read(name)


def _xml(book, name):
    return ET.fromstring(_read(book, name))


def _book(version=BookVersion.EPUB2, **kwargs):
    book = Book(version, **kwargs)
    book.set_title("Test Book")
    return book


def test_two_chapter_book(tmp_path):
    book = _book()
    book.set_author("Jane Doe", "Doe, Jane")
    book.add_chapter("Chapter 1", "Chapter001.xhtml", _doc("Chapter 1"))
    book.add_chapter("Chapter 2", "Chapter002.xhtml", _doc("Chapter 2"))
    assert book.get_chapter_count() == 2

    path = book.save_book("test", tmp_path)
    assert path == tmp_path / "test.epub"
    with zipfile.ZipFile(path) as zf:
        names = zf.namelist()
        assert names[0] == "mimetype"
        assert "META-INF/container.xml" in names
        assert b'full-path="OEBPS/book.opf"' in zf.read("META-INF/container.xml")
        opf = ET.fromstring(zf.read("OEBPS/book.opf"))
        ncx = ET.fromstring(zf.read("OEBPS/book.ncx"))

    xhtml_items = [item for item in opf.iter(f"{OPF}item") if item.get("media-type") == "application/xhtml+xml"]
    assert [item.get("href") for item in xhtml_items] == ["Chapter001.xhtml", "Chapter002.xhtml"]
    assert [ref.get("idref") for ref in opf.iter(f"{OPF}itemref")] == ["chapter1", "chapter2"]

    points = list(ncx.iter(f"{NCX}navPoint"))
    assert [p.get("playOrder") for p in points] == ["1", "2"]
    assert [p.find(f"{NCX}content").get("src") for p in points] == ["Chapter001.xhtml", "Chapter002.xhtml"]
    assert ncx.find(f"{NCX}docAuthor/{NCX}text").text == "Jane Doe"


def test_finalize_fills_in_identifier_date_and_source(monkeypatch):
    monkeypatch.setenv("QUIRE_SOURCE_URL", "https://example.com/source")
    fixed = datetime(2024, 5, 6, 7, 8, 9, tzinfo=timezone.utc)
    book = _book(rng=random.Random(7), clock=lambda: fixed)
    book.add_chapter("One", "one.xhtml", _doc("One"))
    assert book.finalize()

    metadata = _xml(book, "OEBPS/book.opf").find(f"{OPF}metadata")
    identifier = metadata.find(f"{DC}identifier")
    assert identifier.text == new_uuid(random.Random(7))
    assert identifier.get("id") == "BookId"
    assert identifier.get(f"{OPF}scheme") == "UUID"

    date = metadata.find(f"{DC}date")
    assert date.text == "2024-05-06T07:08:09.000000+00:00"
    assert date.get(f"{OPF}event") == "publication"
    assert metadata.find(f"{DC}source").text == "https://example.com/source"
    assert metadata.find(f"{DC}language").text == "en"

    ncx = _xml(book, "OEBPS/book.ncx")
    uid = [m for m in ncx.iter(f"{NCX}meta") if m.get("name") == "dtb:uid"][0]
    assert uid.get("content") == identifier.text


def test_short_date_format_and_explicit_identifier():
    book = _book()
    book.set_identifier("978-3-16-148410-0", "ISBN")
    book.set_date(datetime(2020, 2, 29, tzinfo=timezone.utc))
    book.set_short_date_format()
    book.add_chapter("One", "one.xhtml", _doc("One"))

    metadata = _xml(book, "OEBPS/book.opf").find(f"{OPF}metadata")
    assert metadata.find(f"{DC}date").text == "2020-02-29"
    assert metadata.find(f"{DC}identifier").get(f"{OPF}scheme") == "ISBN"


def test_finalize_requires_chapters_and_title():
    book = Book()
    book.set_title("No chapters")
    assert book.finalize() is False
    assert not book.is_finalized
    assert book.archive.names() == ["mimetype"]

    untitled = Book()
    untitled.add_chapter("One", "one.xhtml", _doc("One"))
    assert untitled.finalize() is False
    assert untitled.get_book() is None

    with pytest.raises(ValidationError):
        Book(strict=True).finalize()


def test_finalized_book_is_read_only():
    book = _book()
    book.add_chapter("One", "one.xhtml", _doc("One"))
    assert book.finalize()
    names = book.archive.names()

    assert book.add_chapter("Two", "two.xhtml", _doc("Two")) is None
    assert book.add_file("x.txt", "x", b"x", "text/plain") is False
    assert book.set_title("Changed") is False
    assert book.finalize() is False
    assert book.get_chapter_count() == 1
    assert book.get_title() == "Test Book"
    assert book.archive.names() == names


def test_chapter_count_only_counts_successful_adds():
    book = _book()
    assert book.add_chapter("One", "one.xhtml", _doc("One")) is not None
    assert book.add_chapter("Again", "one.xhtml", _doc("Again")) is None
    assert book.add_chapter("Empty", "empty.xhtml") is None
    assert book.get_chapter_count() == 1

    with pytest.raises(UniquenessError):
        strict = Book(strict=True)
        strict.add_chapter("One", "one.xhtml", _doc("One"))
        strict.add_chapter("Again", "one.xhtml", _doc("Again"))


def test_fragments_are_wrapped_into_documents():
    book = _book(BookVersion.EPUB3)
    book.add_chapter("Frag &amp; Co", "frag.xhtml", "<p>Just text</p>")
    page = _read(book, "OEBPS/frag.xhtml").decode("utf-8")
    assert page.startswith('<?xml version="1.0" encoding="utf-8"?>')
    assert 'xmlns:epub="http://www.idpf.org/2007/ops"' in page
    assert "<!DOCTYPE" not in page
    assert "<title>Frag &amp; Co</title>" in page
    assert "<p>Just text</p>" in page


def test_labels_are_decoded():
    book = _book()
    book.add_chapter("Tom &amp; Jerry<br/>Part 2", "tj.xhtml", _doc("TJ"))
    label = _xml(book, "OEBPS/book.ncx").find(f"{NCX}navMap/{NCX}navPoint/{NCX}navLabel/{NCX}text")
    assert label.text == "Tom & Jerry\nPart 2"


def test_auto_split_creates_parts_with_a_single_toc_entry():
    book = _book()
    big = _doc("Big", "\n".join(PARAGRAPH for _ in range(670)))
    assert len(big.encode("utf-8")) > 600000

    point = book.add_chapter("Big", "big.xhtml", big, auto_split=True)
    assert point.content_src == "big_1.xhtml"
    assert book.get_chapter_count() == 1

    parts = [name for name in book.get_file_list() if name.startswith("big_")]
    assert len(parts) >= 3
    assert all(len(_read(book, f"OEBPS/{name}")) <= book.get_split_size() for name in parts)

    opf = _xml(book, "OEBPS/book.opf")
    assert [ref.get("idref") for ref in opf.iter(f"{OPF}itemref")] == [f"big_{k}" for k in range(1, len(parts) + 1)]
    ncx = _xml(book, "OEBPS/book.ncx")
    assert [p.find(f"{NCX}content").get("src") for p in ncx.iter(f"{NCX}navPoint")] == ["big_1.xhtml"]


def test_anchor_entries_resolve_to_the_part_holding_the_anchor():
    book = _book()
    book.add_chapter("Long", "long.xhtml", [_doc("Part A", '<p id="a">a</p>'), _doc("Part B", '<p id="sec2">b</p>')])
    point = book.add_chapter("Section 2", "long.xhtml#sec2")
    assert point.content_src == "long_2.xhtml#sec2"
    assert book.get_chapter_count() == 2
    assert book.package.get_item_by_href("long_2.xhtml").has_index_point("sec2")


def test_navigation_levels():
    book = _book()
    book.add_chapter("Part 1", "p1.xhtml", _doc("Part 1"))
    book.sub_level()
    assert book.get_current_level() == 2
    book.add_chapter("Chapter 1.1", "c11.xhtml", _doc("Chapter 1.1"))
    book.back_level()
    book.add_chapter("Part 2", "p2.xhtml", _doc("Part 2"))

    ncx = _xml(book, "OEBPS/book.ncx")
    top = ncx.find(f"{NCX}navMap").findall(f"{NCX}navPoint")
    assert len(top) == 2
    assert len(top[0].findall(f"{NCX}navPoint")) == 1
    depth = [m for m in ncx.iter(f"{NCX}meta") if m.get("name") == "dtb:depth"][0]
    assert depth.get("content") == "2"


def test_cover_can_only_be_set_once():
    book = _book(BookVersion.EPUB3)
    assert book.set_cover_image("art/cover.jpg", b"\xff\xd8\xff\xe0fake", "image/jpeg")
    assert book.set_cover_image("other.jpg", b"\xff\xd8\xff\xe0fake", "image/jpeg") is False
    book.add_chapter("One", "one.xhtml", _doc("One"))

    opf = _xml(book, "OEBPS/book.opf")
    items = {item.get("id"): item for item in opf.iter(f"{OPF}item")}
    assert items["CoverImage"].get("href") == "images/cover.jpg"
    assert items["CoverImage"].get("properties") == "cover-image"
    assert items["css_CoverPageCss"].get("href") == "Styles/CoverPage.css"
    assert items["ref_cover"].get("href") == "CoverPage.xhtml"
    assert [i for i in items if i.startswith("CoverImage")] == ["CoverImage"]

    cover_meta = [m for m in opf.iter(f"{OPF}meta") if m.get("name") == "cover"]
    assert cover_meta[0].get("content") == "CoverImage"
    assert [r.get("type") for r in opf.iter(f"{OPF}reference")][0] == "cover"

    page = _read(book, "OEBPS/CoverPage.xhtml").decode("utf-8")
    assert '<section epub:type="cover">' in page
    assert 'alt="Cover image"' in page


def test_table_of_contents_page():
    book = _book()
    assert book.build_toc()
    book.add_chapter("One", "ch1.xhtml", _doc("One"))
    book.add_chapter("Two", "ch2.xhtml", _doc("Two"))

    opf = _xml(book, "OEBPS/book.opf")
    itemrefs = list(opf.iter(f"{OPF}itemref"))
    assert itemrefs[0].get("idref") == "ref_toc"
    assert itemrefs[0].get("linear") == "no"
    assert "toc" in [r.get("type") for r in opf.iter(f"{OPF}reference")]

    page = _read(book, "OEBPS/TOC.xhtml").decode("utf-8")
    assert '<a href="ch1.xhtml">One</a>' in page
    assert '<a href="ch2.xhtml">Two</a>' in page
    assert ".toc .level2 {text-indent: 2em;}" in page

    ncx = _xml(book, "OEBPS/book.ncx")
    sources = [p.find(f"{NCX}content").get("src") for p in ncx.iter(f"{NCX}navPoint")]
    assert sources == ["ch1.xhtml", "ch2.xhtml", "TOC.xhtml"]


def test_reference_pages():
    book = _book()
    book.add_chapter("One", "one.xhtml", _doc("One"))
    assert book.add_reference_page("Colophon", "colophon.xhtml", _doc("Colophon"), "colophon")
    assert book.add_reference_page("Bogus", "bogus.xhtml", _doc("Bogus"), "bogus") is False

    opf = _xml(book, "OEBPS/book.opf")
    assert "ref_colophon" in [ref.get("idref") for ref in opf.iter(f"{OPF}itemref")]
    assert "colophon" in [r.get("type") for r in opf.iter(f"{OPF}reference")]
    guide = _xml(book, "OEBPS/book.ncx").find(f"{NCX}navMap/{NCX}navPoint[@id='ref-1']")
    assert guide.find(f"{NCX}content").get("src") == "colophon.xhtml"


def test_epub3_book_gets_a_navigation_document():
    book = _book(BookVersion.EPUB3)
    book.add_chapter("One", "one.xhtml", _doc("One"))

    opf = _xml(book, "OEBPS/book.opf")
    assert opf.get("version") == "3.0"
    nav = [item for item in opf.iter(f"{OPF}item") if item.get("properties") == "nav"]
    assert nav[0].get("href") == "epub3toc.xhtml"
    modified = [m for m in opf.iter(f"{OPF}meta") if m.get("property") == "dcterms:modified"]
    assert len(modified) == 1

    doc = _xml(book, "OEBPS/epub3toc.xhtml")
    assert [a.get("href") for a in doc.iter(f"{XHTML}a")] == ["one.xhtml"]


def test_rendition_properties_need_epub3():
    book = _book(BookVersion.EPUB3)
    assert rendition.set_layout(book, rendition.LAYOUT_PRE_PAGINATED)
    assert not rendition.set_layout(book, "sideways")
    book.add_chapter("One", "one.xhtml", _doc("One"))
    opf = _xml(book, "OEBPS/book.opf")
    assert opf.get("prefix") == "rendition: http://www.idpf.org/vocab/rendition/#"
    layout = [m for m in opf.iter(f"{OPF}meta") if m.get("property") == "rendition:layout"]
    assert layout[0].text == "pre-paginated"

    assert not rendition.set_layout(_book(), rendition.LAYOUT_PRE_PAGINATED)


def test_language_and_identifier_validation():
    book = _book()
    assert book.set_language("en-GB")
    assert book.set_language("zh-yue-HK")
    assert book.set_language("not a language!") is False
    assert book.get_language() == "zh-yue-HK"
    assert book.set_identifier("doi:10.1000/182", "DOI") is False

    with pytest.raises(ValidationError) as excinfo:
        Book(strict=True).set_language("x y")
    assert excinfo.value.code == ErrorCode.E_INVALID_LANGUAGE


def test_book_root_is_fixed_by_the_first_file():
    book = _book()
    assert book.set_book_root("content")
    book.add_chapter("One", "one.xhtml", _doc("One"))
    assert book.set_book_root("elsewhere") is False
    assert b'full-path="content/book.opf"' in _read(book, "META-INF/container.xml")
    assert _read(book, "content/one.xhtml")


def test_manifest_ids_are_sanitized_and_unique():
    book = _book()
    assert book.add_file("Styles/a.css", "my style", "body {}", "text/css")
    assert book.add_file("Styles/b.css", "my style", "p {}", "text/css")
    assert book.add_file("Styles/a.css", "again", "p {}", "text/css") is False
    assert [item.id for item in book.package.items if item.media_type == "text/css"] == ["my_style", "my_style_2"]


def test_viewport():
    book = _book()
    assert book.get_viewport_meta_line() == ""
    assert book.set_viewport("ipad")
    assert book.get_viewport_meta_line() == '<meta name="viewport" content="width=768, height=1024"/>'
    assert book.set_viewport(600, 800)
    assert book.get_viewport_meta_line() == '<meta name="viewport" content="width=600, height=800"/>'
    assert book.set_viewport("toaster") is False
    assert book.set_viewport()
    assert book.get_viewport_meta_line() == ""


def test_large_files_and_meta_inf(tmp_path):
    clip = tmp_path / "clip.mp3"
    clip.write_bytes(b"ID3" + b"\x00" * 256)
    book = _book()
    assert book.add_large_file("media/clip.mp3", "clip", clip, "audio/mpeg")
    assert book.add_large_file("media/none.mp3", "none", tmp_path / "none.mp3", "audio/mpeg") is False
    assert book.add_file_to_meta_inf("com.apple.ibooks.display-options.xml", "<display_options/>")
    book.add_chapter("One", "one.xhtml", _doc("One"))

    assert _read(book, "OEBPS/media/clip.mp3") == clip.read_bytes()
    assert _read(book, "META-INF/com.apple.ibooks.display-options.xml") == b"<display_options/>"


def test_send_book_streams_the_archive():
    book = _book()
    book.add_chapter("One", "one.xhtml", _doc("One"))
    sink = io.BytesIO()
    assert book.send_book("test.epub", sink)
    assert sink.getvalue().startswith(b"PK")
    assert book.get_book_size() == len(sink.getvalue())


def test_custom_metadata_and_orientation():
    book = _book(BookVersion.EPUB3)
    assert rendition.set_orientation(book, rendition.ORIENTATION_PORTRAIT)
    assert rendition.set_spread(book, rendition.SPREAD_NONE)
    assert book.add_dublin_core_metadata("publisher", "Small Press")
    assert book.add_dublin_core_metadata("rights", "  ") is False
    assert book.add_custom_metadata("calibre:series", "Examples")
    book.set_subject("Fiction")
    book.set_subject("Fiction")
    book.set_generator("make_epub")
    book.set_references_title("Extras", "extras", "extras")
    book.add_chapter("One", "one.xhtml", _doc("One"))
    book.add_reference_page("Index", "index.xhtml", _doc("Index"), "index")

    metadata = _xml(book, "OEBPS/book.opf").find(f"{OPF}metadata")
    properties = {m.get("property"): m.text for m in metadata.findall(f"{OPF}meta") if m.get("property")}
    assert properties["rendition:orientation"] == "portrait"
    assert properties["rendition:spread"] == "none"
    assert metadata.find(f"{DC}publisher").text == "Small Press"
    assert [s.text for s in metadata.findall(f"{DC}subject")] == ["Fiction"]
    generators = [m.get("content") for m in metadata.findall(f"{OPF}meta") if m.get("name") == "generator"]
    assert generators[0] == "make_epub"

    nav = _xml(book, "OEBPS/epub3toc.xhtml")
    spans = [span.text for span in nav.iter(f"{XHTML}span")]
    assert spans == ["Extras"]


def test_anchor_resolution_ignores_chapters_sharing_a_prefix():
    book = _book()
    book.add_chapter("Longer", "longer.xhtml", [_doc("A", '<p id="x">a</p>'), _doc("B", '<p id="sec2">b</p>')])
    book.add_chapter("Long", "long.xhtml", [_doc("C", '<p id="y">c</p>'), _doc("D", '<p id="sec2">d</p>')])
    point = book.add_chapter("Section 2", "long.xhtml#sec2")
    assert point.content_src == "long_2.xhtml#sec2"

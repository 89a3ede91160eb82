import io
import zipfile

import pytest
import requests
from bs4 import BeautifulSoup

pytest.importorskip("PIL")
from PIL import Image

from quire.book import Book
from quire.config import BookSettings
from quire.constants import BookVersion, ExternalReferences
from quire.errors import UniquenessError
from quire.fetch import ResourceFetcher


class FakeResponse:
    def __init__(self, content=None):
        self.content = content

    def raise_for_status(self):
        if self.content is None:
            raise requests.HTTPError("404 Not Found")

    def iter_content(self, chunk_size=1):
        yield self.content

    def close(self):
        pass


class FakeSession:
    """Serves a fixed set of URLs; everything else is a 404"""

    def __init__(self, pages=None):
        self.pages = pages or {}
        self.requested = []

    def get(self, url, timeout=None, stream=False):
        self.requested.append(url)
        return FakeResponse(self.pages.get(url))


def _png(size=(16, 16)):
    out = io.BytesIO()
    Image.new("RGB", size, (10, 120, 200)).save(out, format="PNG")
    return out.getvalue()


def _book(session=None, version=BookVersion.EPUB2, **settings):
    fetcher = ResourceFetcher(session=session or FakeSession())
    return Book(version, settings=BookSettings(**settings), fetcher=fetcher, strict=True)


def _chapter(body, head=""):
    return f"<html><head><title>T</title>{head}</head><body>{body}</body></html>"


def _stored(book, name):
    if not book.is_finalized:
        book.set_title("Rewritten")
        book.finalize()
    with zipfile.ZipFile(io.BytesIO(book.get_book())) as zf:
        return zf.read(book.settings.book_root + name).decode("utf-8")


@pytest.fixture
def site(tmp_path):
    (tmp_path / "pics").mkdir()
    (tmp_path / "pics" / "a.png").write_bytes(_png())
    (tmp_path / "bg.png").write_bytes(_png((8, 8)))
    (tmp_path / "style.css").write_text("body { background: url(bg.png); }\n", encoding="utf-8")
    (tmp_path / "clip.mp3").write_bytes(b"ID3" + b"\x00" * 128)
    return tmp_path


def test_local_images_and_stylesheets_are_imported(site):
    book = _book()
    markup = _chapter('<p><img src="pics/a.png" alt="A"/></p>',
                      '<link rel="stylesheet" type="text/css" href="style.css"/>')
    assert book.add_chapter("One", "Text/ch1.xhtml", markup, external_references=ExternalReferences.ADD,
                            base_dir=str(site))

    files = book.get_file_list()
    assert "images/Text/pics/a.png" in files
    assert "style.css" in files
    assert "images/bg.png" in files

    soup = BeautifulSoup(_stored(book, "Text/ch1.xhtml"), "lxml")
    assert soup.img["src"] == "../images/Text/pics/a.png"
    assert soup.link["href"] == "../style.css"
    assert "url('images/bg.png')" in _stored(book, "style.css")
    assert book.package.get_item_by_href("style.css").media_type == "text/css"


def test_resources_are_imported_once(site):
    book = _book()
    for n in (1, 2):
        book.add_chapter(f"C{n}", f"ch{n}.xhtml", _chapter('<img src="pics/a.png"/>'),
                         external_references=ExternalReferences.ADD, base_dir=str(site))
    images = [item for item in book.package.items if item.media_type == "image/png"]
    assert [item.href for item in images] == ["images/pics/a.png"]
    assert len(book.registry) == 1


def test_remove_and_replace_images(site):
    book = _book()
    markup = _chapter('<p><img src="pics/a.png" alt="Map"/><img src="pics/a.png"/></p>')
    book.add_chapter("R", "r.xhtml", markup, external_references=ExternalReferences.REMOVE_IMAGES,
                     base_dir=str(site))
    book.add_chapter("P", "p.xhtml", markup, external_references=ExternalReferences.REPLACE_IMAGES,
                     base_dir=str(site))

    assert BeautifulSoup(_stored(book, "r.xhtml"), "lxml").find("img") is None
    replaced = BeautifulSoup(_stored(book, "p.xhtml"), "lxml")
    assert [em.get_text() for em in replaced.find_all("em")] == ["[Map]", "[image]"]
    assert not any(item.media_type.startswith("image/") for item in book.package.items)


def test_remote_images_use_scheme_and_host_directories():
    session = FakeSession({"https://example.com/img/a.png": _png()})
    book = _book(session)
    markup = _chapter('<img src="https://example.com/img/a.png"/><img src="https://example.com/gone.png"/>')
    book.add_chapter("Web", "web.xhtml", markup, external_references=ExternalReferences.ADD)

    soup = BeautifulSoup(_stored(book, "web.xhtml"), "lxml")
    assert [img["src"] for img in soup.find_all("img")] == ["images/https/example.com/img/a.png"]


def test_missing_local_images_are_kept_unless_strict(site):
    markup = _chapter('<img src="later.png"/>')

    lenient = _book()
    lenient.add_chapter("L", "l.xhtml", markup, external_references=ExternalReferences.ADD, base_dir=str(site))
    assert BeautifulSoup(_stored(lenient, "l.xhtml"), "lxml").img["src"] == "later.png"

    strict = _book(strict_resources=True)
    strict.add_chapter("S", "s.xhtml", markup, external_references=ExternalReferences.ADD, base_dir=str(site))
    assert BeautifulSoup(_stored(strict, "s.xhtml"), "lxml").find("img") is None


def test_media_sources_need_epub3(site):
    markup = _chapter('<audio controls="controls"><source src="clip.mp3" type="audio/mpeg"/></audio>')

    epub2 = _book()
    epub2.add_chapter("A", "a.xhtml", markup, external_references=ExternalReferences.ADD, base_dir=str(site))
    assert BeautifulSoup(_stored(epub2, "a.xhtml"), "lxml").find("source") is None

    epub3 = _book(version=BookVersion.EPUB3)
    epub3.add_chapter("A", "a.xhtml", markup, external_references=ExternalReferences.ADD, base_dir=str(site))
    assert BeautifulSoup(_stored(epub3, "a.xhtml"), "lxml").source["src"] == "media/clip.mp3"
    assert epub3.package.get_item_by_href("media/clip.mp3").media_type == "audio/mpeg"


def test_inline_sources_are_left_alone():
    book = _book()
    markup = _chapter('<img src="data:image/png;base64,AAAA"/><a href="#top">top</a>')
    book.add_chapter("I", "i.xhtml", markup, external_references=ExternalReferences.ADD)
    assert BeautifulSoup(_stored(book, "i.xhtml"), "lxml").img["src"].startswith("data:")


def test_comments_are_removed_when_rewriting():
    book = _book()
    book.add_chapter("C", "c.xhtml", _chapter("<!-- note --><p>x</p>"), external_references=ExternalReferences.ADD)
    assert "note" not in _stored(book, "c.xhtml")


def test_files_added_by_the_caller_are_reused(site):
    book = _book()
    assert book.add_file("images/pics/a.png", "pic", _png((4, 4)), "image/png")
    assert book.add_css_file("style.css", "main", "p { margin: 0; }")
    markup = _chapter('<img src="pics/a.png"/>', '<link rel="stylesheet" type="text/css" href="style.css"/>')

    point = book.add_chapter("One", "ch1.xhtml", markup, external_references=ExternalReferences.ADD,
                             base_dir=str(site))
    assert point.content_src == "ch1.xhtml"

    soup = BeautifulSoup(_stored(book, "ch1.xhtml"), "lxml")
    assert soup.img["src"] == "images/pics/a.png"
    assert soup.link["href"] == "style.css"
    assert _stored(book, "style.css") == "p { margin: 0; }"
    assert len(book.registry) == 0


def test_taken_chapter_name_imports_nothing(site):
    book = _book()
    book.add_chapter("One", "ch1.xhtml", _chapter("<p>first</p>"))
    markup = _chapter("<style>p { background: url(bg.png); }</style><img src=\"pics/a.png\"/>",
                      '<link rel="stylesheet" type="text/css" href="style.css"/>')

    with pytest.raises(UniquenessError):
        book.add_chapter("Again", "ch1.xhtml", markup, external_references=ExternalReferences.ADD,
                         base_dir=str(site))

    assert sorted(book.get_file_list()) == ["ch1.xhtml"]
    assert len(book.registry) == 0
    assert book.get_chapter_count() == 1


def test_links_to_the_document_being_added_are_not_imported(site):
    (site / "ch1.xhtml").write_text(_chapter("<p>old</p>"), encoding="utf-8")
    book = _book()
    markup = _chapter("<p>new</p>", '<link rel="alternate" type="application/xhtml+xml" href="ch1.xhtml"/>')
    book.add_chapter("One", "ch1.xhtml", markup, external_references=ExternalReferences.ADD, base_dir=str(site))

    assert list(book.get_file_list()) == ["ch1.xhtml"]
    assert "new" in _stored(book, "ch1.xhtml")

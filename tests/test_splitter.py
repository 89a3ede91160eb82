import re

from bs4 import BeautifulSoup

from quire.config import MIN_SPLIT_SIZE
from quire.constants import BookVersion
from quire.splitter import ChapterSplitter

PARAGRAPH = "<p>" + "lorem ipsum dolor " * 50 + "</p>"


def _chapter(body: str) -> str:
    return ("<html><head><title>Long</title>"
            "<link rel=\"stylesheet\" href=\"style.css\" type=\"text/css\"/></head>"
            f"<body>{body}</body></html>")


def _words(markup: str):
    return BeautifulSoup(markup, "lxml").body.get_text(" ").split()


def test_small_chapter_is_returned_unchanged():
    chapter = _chapter(PARAGRAPH)
    parts = ChapterSplitter().split(chapter)
    assert len(parts) == 1
    assert parts[0].html == chapter
    assert parts[0].title is None


def test_split_parts_respect_the_size_limit_and_keep_all_text():
    chapter = _chapter("\n".join(PARAGRAPH for _ in range(60)))
    splitter = ChapterSplitter(split_size=MIN_SPLIT_SIZE)
    parts = splitter.split(chapter)

    assert len(parts) > 1
    for part in parts:
        assert len(part.html.encode("utf-8")) <= MIN_SPLIT_SIZE
        soup = BeautifulSoup(part.html, "lxml")
        assert soup.head.title.string == "Long"
        assert soup.head.link["href"] == "style.css"

    words = [word for part in parts for word in _words(part.html)]
    assert words == _words(chapter)


def test_oversized_containers_are_rebuilt_in_every_part():
    body = '<div class="wrapper">' + "".join(PARAGRAPH for _ in range(40)) + "</div>"
    chapter = _chapter(body)
    parts = ChapterSplitter(split_size=MIN_SPLIT_SIZE).split(chapter)

    assert len(parts) > 1
    for part in parts:
        assert len(part.html.encode("utf-8")) <= MIN_SPLIT_SIZE
        wrapper = BeautifulSoup(part.html, "lxml").body.find("div")
        assert wrapper["class"] == ["wrapper"]
        assert wrapper.find("p") is not None


def test_split_at_boundary_headings():
    body = ("<h2>Chapter One</h2><p>first</p>"
            "<h2>Chapter Two</h2><p>second</p>"
            "<h2>Epilogue</h2><p>third</p>")
    parts = ChapterSplitter().split(_chapter(body), split_on_search_string=True)

    assert [part.title for part in parts] == ["Chapter One", "Chapter Two"]
    assert _words(parts[1].html) == ["Chapter", "Two", "second", "Epilogue", "third"]


def test_boundary_accepts_plain_strings_and_patterns():
    body = "<h2>Part I</h2><p>a</p><h2>Part II</h2><p>b</p>"
    splitter = ChapterSplitter()
    assert len(splitter.split(_chapter(body), True, "Part ")) == 2
    assert len(splitter.split(_chapter(body), True, re.compile(r"part i{2}", re.I))) == 2


def test_parts_are_xhtml_documents():
    chapter = _chapter("\n".join(PARAGRAPH for _ in range(30)))
    parts = ChapterSplitter(book_version=BookVersion.EPUB3, split_size=MIN_SPLIT_SIZE).split(chapter)
    for part in parts:
        assert part.html.startswith('<?xml version="1.0" encoding="utf-8"?>')
        assert 'xmlns:epub="http://www.idpf.org/2007/ops"' in part.html
        assert "<!DOCTYPE" not in part.html


def test_no_part_ends_with_an_empty_container():
    body = ("\n".join(PARAGRAPH for _ in range(9))
            + '<div class="wrapper">' + "".join(PARAGRAPH for _ in range(30)) + "</div>")
    chapter = _chapter(body)
    parts = ChapterSplitter(split_size=MIN_SPLIT_SIZE).split(chapter)

    assert len(parts) > 2
    for part in parts:
        body = BeautifulSoup(part.html, "lxml").body
        for wrapper in body.find_all("div"):
            assert wrapper.find("p") is not None
    words = [word for part in parts for word in _words(part.html)]
    assert words == _words(chapter)

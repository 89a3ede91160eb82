"""
HTML parsing and XHTML serialisation for chapter documents
"""

import html
from typing import List, Union

from bs4 import BeautifulSoup, Comment, Tag
from bs4.element import Declaration, Doctype, ProcessingInstruction

from .constants import OPS_NS, XHTML11_DOCTYPE, XHTML_NS, BookVersion, HtmlFormat

XML_DECLARATION = '<?xml version="1.0" encoding="utf-8"?>'

_SKIPPED_HTML_ATTRS = {"xmlns", "xmlns:epub"}
_PROLOG_TYPES = (Doctype, Declaration, ProcessingInstruction)


def parser_for(html_format: Union[HtmlFormat, str]) -> str:
    if HtmlFormat(html_format) == HtmlFormat.HTML5:
        return "html.parser"
    return "lxml"


def parse_html(markup: str, html_format: Union[HtmlFormat, str] = HtmlFormat.XHTML) -> BeautifulSoup:
    """Parse a chapter and make sure it has html, head and body elements."""
    soup = BeautifulSoup(markup, parser_for(html_format))

    if soup.html is None:
        root = soup.new_tag("html")
        for node in list(soup.contents):
            if isinstance(node, _PROLOG_TYPES):
                continue
            root.append(node.extract())
        soup.append(root)

    root = soup.html
    if soup.body is None:
        body = soup.new_tag("body")
        for node in list(root.contents):
            if isinstance(node, Tag) and node.name == "head":
                continue
            body.append(node.extract())
        root.append(body)

    if soup.head is None:
        head = soup.new_tag("head")
        head.append(soup.new_tag("title"))
        root.insert(0, head)

    return soup


def _html_attributes(root: Tag) -> str:
    parts = []
    for name, value in root.attrs.items():
        if name in _SKIPPED_HTML_ATTRS:
            continue
        if isinstance(value, list):
            value = " ".join(value)
        parts.append(f' {name}="{html.escape(str(value), quote=True)}"')
    return "".join(parts)


def serialize_document(soup: BeautifulSoup, book_version: Union[BookVersion, str]) -> str:
    """Render a parsed chapter as a standalone XHTML document."""
    epub2 = BookVersion(book_version) == BookVersion.EPUB2
    root = soup.html

    namespaces = f' xmlns="{XHTML_NS}"'
    if not epub2:
        namespaces += f' xmlns:epub="{OPS_NS}"'

    lines = [XML_DECLARATION]
    if epub2:
        lines.append(XHTML11_DOCTYPE)
    lines.append(f"<html{namespaces}{_html_attributes(root)}>")
    lines.append(str(soup.head))
    lines.append(str(soup.body))
    lines.append("</html>")
    return "\n".join(lines) + "\n"


def find_id_attributes(markup: str) -> List[str]:
    """Every id attribute value in document order."""
    soup = BeautifulSoup(markup, "lxml")
    return [tag["id"] for tag in soup.find_all(id=True)]


def remove_comments(soup: BeautifulSoup) -> int:
    comments = soup.find_all(string=lambda text: isinstance(text, Comment))
    for comment in comments:
        comment.extract()
    return len(comments)

"""
Chapter splitter

Splits an oversized chapter into several complete XHTML documents that
share the original <head>, either by size or at boundary headings.
"""

import copy
import logging
import math
import re
from dataclasses import dataclass
from typing import List, Optional, Pattern, Union

from bs4 import BeautifulSoup, NavigableString, Tag

from .config import DEFAULT_SPLIT_SIZE, clamp_split_size
from .constants import BookVersion, HtmlFormat
from .markup import parse_html, serialize_document

DEFAULT_BOUNDARY = re.compile(r"^Chapter ", re.IGNORECASE)


@dataclass
class ChapterPart:
    title: Optional[str]
    html: str


def _byte_length(node) -> int:
    return len(str(node).encode("utf-8"))


class ChapterSplitter:
    """Splits chapters into well-formed parts below a target size"""

    def __init__(self, html_format: HtmlFormat = HtmlFormat.XHTML,
                 book_version: BookVersion = BookVersion.EPUB2,
                 split_size: int = DEFAULT_SPLIT_SIZE):
        self.logger = logging.getLogger(__name__)
        self.html_format = HtmlFormat(html_format)
        self.book_version = BookVersion(book_version)
        self.split_size = clamp_split_size(split_size)

    def set_split_size(self, size: int):
        self.split_size = clamp_split_size(size)

    def split(self, chapter: str, split_on_search_string: bool = False,
              search_string: Union[str, Pattern] = DEFAULT_BOUNDARY) -> List[ChapterPart]:
        """Split `chapter` into parts.

        In size mode a chapter at or below the split size comes back
        unchanged as a single part. In boundary mode a new part starts at
        every element whose text matches `search_string` (a plain string is
        a text prefix, a compiled pattern is matched from the start) and
        each part is titled with the matched text.
        """
        if not split_on_search_string and len(chapter.encode("utf-8")) <= self.split_size:
            return [ChapterPart(None, chapter)]

        soup = parse_html(chapter, self.html_format)
        head = soup.head
        body = soup.body

        shell_len = len(self._render(soup, soup.new_tag("body")).encode("utf-8"))
        budget = self.split_size - shell_len
        if budget <= 0:
            self.logger.warning(f"Chapter head ({shell_len} bytes) exceeds split size {self.split_size}")
            budget = self.split_size
        body_len = _byte_length(body)
        if body_len > budget:
            parts = math.ceil(body_len / budget)
            budget = body_len / parts

        run = _SplitRun(soup, budget, split_on_search_string, search_string)
        run.walk(body.contents)

        result = [ChapterPart(title, self._render(soup, fragment)) for title, fragment in run.fragments]
        self.logger.debug(f"Split chapter of {body_len} bytes into {len(result)} parts (head {len(str(head))} bytes)")
        return result

    def _render(self, source: BeautifulSoup, fragment_body: Tag) -> str:
        doc = BeautifulSoup("<html><head></head><body></body></html>", "html.parser")
        doc.html.attrs = dict(source.html.attrs)
        doc.head.replace_with(copy.copy(source.head))
        doc.body.replace_with(fragment_body)
        return serialize_document(doc, self.book_version)


class _SplitRun:
    """State of one split: the fragments so far and the open ancestor clones.

    Ancestors are cloned into a fragment only when their first child is
    placed there, so no part ends with an empty container.
    """

    def __init__(self, soup: BeautifulSoup, budget: float, boundary_mode: bool,
                 search_string: Union[str, Pattern]):
        self.soup = soup
        self.budget = budget
        self.boundary_mode = boundary_mode
        self.search_string = search_string
        self.fragments: List[list] = []
        self.ancestors: List[Tag] = []
        self._start_fragment(None)

    def _start_fragment(self, title: Optional[str]):
        fragment_body = self.soup.new_tag("body")
        self.fragments.append([title, fragment_body])
        self.parent = fragment_body
        self.opened = 0
        self.size = 0
        self.content_nodes = 0

    def _shallow_clone(self, tag: Tag) -> Tag:
        return self.soup.new_tag(tag.name, attrs=dict(tag.attrs))

    def _pending_size(self) -> int:
        return sum(_byte_length(self._shallow_clone(tag)) for tag in self.ancestors[self.opened:])

    def _open_ancestors(self):
        for ancestor in self.ancestors[self.opened:]:
            clone = self._shallow_clone(ancestor)
            self.parent.append(clone)
            self.parent = clone
            self.size += _byte_length(clone)
        self.opened = len(self.ancestors)

    def _close_ancestor(self):
        self.ancestors.pop()
        if self.opened > len(self.ancestors):
            self.parent = self.parent.parent
            self.opened -= 1

    def _boundary_title(self, node) -> Optional[str]:
        if not self.boundary_mode or not isinstance(node, Tag):
            return None
        text = node.get_text().strip()
        if isinstance(self.search_string, str):
            matched = text.startswith(self.search_string)
        else:
            matched = self.search_string.match(text) is not None
        return text if matched else None

    def walk(self, nodes):
        for node in list(nodes):
            node_len = _byte_length(node)

            if node_len > self.budget and isinstance(node, Tag) and node.contents:
                self.ancestors.append(node)
                self.walk(node.contents)
                self._close_ancestor()
                continue

            is_content = not isinstance(node, NavigableString) or bool(node.strip())
            if not is_content and self.opened < len(self.ancestors):
                # whitespace alone does not open a container
                continue

            title = self._boundary_title(node)
            if title is not None and self.content_nodes == 0 and self.fragments[-1][0] is None:
                self.fragments[-1][0] = title
            elif self.content_nodes > 0 and (
                title is not None
                or (not self.boundary_mode
                    and self.size + self._pending_size() + node_len > self.budget)
            ):
                self._start_fragment(title)

            self._open_ancestors()
            self.parent.append(copy.copy(node))
            self.size += node_len
            if is_content:
                self.content_nodes += 1

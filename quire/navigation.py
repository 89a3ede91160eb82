"""
Navigation tree and the documents built from it: the EPUB 2 NCX and the
EPUB 3 navigation document

Nodes live in an arena list and refer to each other by index. Index 0 is
the synthetic navMap root (level 1); chapters added at the root are level 2.
"""

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .constants import NCX_DOCTYPE, NCX_NS, OPS_NS, XHTML_NS, BookVersion, Direction
from .package import DEFAULT_REFERENCE_ORDER

XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>'

ROOT = 0


@dataclass
class NavPoint:
    index: int
    label: str
    content_src: Optional[str] = None
    nav_id: Optional[str] = None
    nav_class: Optional[str] = None
    hidden: bool = False
    writing_direction: Optional[str] = None
    parent: Optional[int] = None
    children: List[int] = field(default_factory=list)


class NavigationTree:
    """Table of contents tree with an insertion cursor"""

    def __init__(self, writing_direction: Optional[str] = None):
        self.logger = logging.getLogger(__name__)
        self.writing_direction = writing_direction
        self.nodes: List[NavPoint] = [NavPoint(ROOT, "", writing_direction=writing_direction)]
        self.cursor = ROOT
        self._last = ROOT

    @property
    def root(self) -> NavPoint:
        return self.nodes[ROOT]

    def node(self, index: int) -> NavPoint:
        return self.nodes[index]

    def level_of(self, index: int) -> int:
        level = 1
        node = self.nodes[index]
        while node.parent is not None:
            level += 1
            node = self.nodes[node.parent]
        return level

    def parent_of(self, index: int) -> Optional[NavPoint]:
        parent = self.nodes[index].parent
        return None if parent is None else self.nodes[parent]

    def children_of(self, index: int) -> List[NavPoint]:
        return [self.nodes[child] for child in self.nodes[index].children]

    def current_level(self) -> int:
        return self.level_of(self.cursor)

    def add_nav_point(self, label: str, content_src: Optional[str] = None, nav_id: Optional[str] = None,
                      nav_class: Optional[str] = None, hidden: bool = False,
                      writing_direction: Optional[str] = None) -> NavPoint:
        """Attach a new point as the last child of the cursor"""
        parent = self.nodes[self.cursor]
        point = NavPoint(
            index=len(self.nodes),
            label=(label or "").strip(),
            content_src=content_src.strip() if content_src else None,
            nav_id=nav_id.strip() if nav_id else None,
            nav_class=nav_class.strip() if nav_class else None,
            hidden=hidden is True,
            writing_direction=writing_direction or parent.writing_direction,
            parent=parent.index,
        )
        self.nodes.append(point)
        parent.children.append(point.index)
        self._last = point.index
        return point

    def sub_level(self, label: Optional[str] = None, nav_id: Optional[str] = None,
                  nav_class: Optional[str] = None, hidden: bool = False,
                  writing_direction: Optional[str] = None) -> Optional[NavPoint]:
        """Descend one level.

        With a label a container point without content is created and
        becomes the cursor. Without one the most recently added point
        becomes the cursor, so following points nest under it.
        """
        point = None
        if label is not None:
            point = self.add_nav_point(label, None, nav_id, nav_class, hidden, writing_direction)
        self.cursor = self._last
        return point

    def back_level(self):
        self._last = self.cursor
        parent = self.nodes[self.cursor].parent
        self.cursor = ROOT if parent is None else parent

    def root_level(self):
        self._last = self.cursor
        self.cursor = ROOT

    def set_current_level(self, level: int):
        if level <= 1:
            self.root_level()
            return
        while self.current_level() > level:
            self.back_level()

    def __len__(self) -> int:
        return len(self.nodes) - 1


class Ncx:
    """NCX document plus the reference-page bookkeeping shared with the nav document"""

    def __init__(self, uid: Optional[str] = None, doc_title: Optional[str] = None,
                 doc_author: Optional[str] = None, language_code: str = "en",
                 writing_direction: str = Direction.LEFT_TO_RIGHT.value,
                 book_version: BookVersion = BookVersion.EPUB2):
        self.logger = logging.getLogger(__name__)
        self.uid = uid
        self.doc_title = doc_title
        self.doc_author = doc_author
        self.language_code = language_code
        self.writing_direction = writing_direction
        self.book_version = BookVersion(book_version)
        self.tree = NavigationTree(writing_direction)
        self.meta: List[tuple] = []
        self.nav_levels = 0

        self.chapter_list: Dict[str, int] = {}
        self.references_title = "Guide"
        self.references_class = "references"
        self.references_id = "references"
        self.references_list: Dict[str, str] = {}
        self.references_name: Dict[str, str] = {}
        self.references_order: Dict[str, str] = dict(DEFAULT_REFERENCE_ORDER)

    def add_meta_entry(self, name: str, content: str):
        name = name.strip() if name else None
        content = content.strip() if content else None
        if name and content:
            self.meta.append((name, content))

    def reference_label(self, ref_type: str) -> str:
        return self.references_name.get(ref_type) or self.references_order.get(ref_type, ref_type)

    def ordered_references(self):
        """(type, href, label) for each reference page, in reading order"""
        for ref_type in self.references_order:
            if ref_type in self.references_list:
                yield ref_type, self.references_list[ref_type], self.reference_label(ref_type)

    def finalize_references(self):
        """Merge the reference pages into the tree under a 'Guide' container"""
        if not self.references_list:
            return
        self.tree.root_level()
        self.tree.sub_level(self.references_title, self.references_id, self.references_class)
        for ref_id, (_, href, label) in enumerate(self.ordered_references(), start=1):
            self.tree.add_nav_point(label, href, f"ref-{ref_id}")

    # NCX

    def _ncx_points(self, index: int, parent_elem: ET.Element, depth: int) -> int:
        node = self.tree.node(index)
        if node.hidden:
            return 0

        max_depth = 0
        target = parent_elem
        child_depth = depth
        if node.content_src is not None:
            self._play_order += 1
            elem = ET.SubElement(parent_elem, 'navPoint')
            elem.set('id', node.nav_id or f"navpoint-{self._play_order}")
            elem.set('playOrder', str(self._play_order))
            if node.nav_class:
                elem.set('class', node.nav_class)
            label = ET.SubElement(elem, 'navLabel')
            ET.SubElement(label, 'text').text = node.label
            ET.SubElement(elem, 'content').set('src', node.content_src)
            target = elem
            max_depth = depth
            child_depth = depth + 1

        for child in node.children:
            max_depth = max(max_depth, self._ncx_points(child, target, child_depth))
        return max_depth

    def finalize(self) -> str:
        """Render book.ncx"""
        self._play_order = 0
        nav_map = ET.Element('navMap')
        self.nav_levels = 0
        for child in self.tree.root.children:
            self.nav_levels = max(self.nav_levels, self._ncx_points(child, nav_map, 1))

        root = ET.Element('ncx')
        root.set('xmlns', NCX_NS)
        root.set('version', '2005-1')
        root.set('xml:lang', self.language_code)
        root.set('dir', self.writing_direction)

        head = ET.SubElement(root, 'head')
        metas = [
            ("dtb:uid", self.uid or ""),
            ("dtb:depth", str(max(1, self.nav_levels))),
            ("dtb:totalPageCount", "0"),
            ("dtb:maxPageNumber", "0"),
        ] + self.meta
        for name, content in metas:
            meta = ET.SubElement(head, 'meta')
            meta.set('name', name)
            meta.set('content', content)

        doc_title = ET.SubElement(root, 'docTitle')
        ET.SubElement(doc_title, 'text').text = self.doc_title or ""
        doc_author = ET.SubElement(root, 'docAuthor')
        ET.SubElement(doc_author, 'text').text = self.doc_author or ""
        root.append(nav_map)

        ET.indent(root, space="  ", level=0)
        prolog = XML_DECLARATION + "\n"
        if self.book_version == BookVersion.EPUB2:
            prolog += NCX_DOCTYPE + "\n"
        self.logger.debug(f"NCX rendered with {self._play_order} navPoints, depth {self.nav_levels}")
        return prolog + ET.tostring(root, encoding='unicode') + "\n"

    # EPUB 3 navigation document

    def _nav_children(self, index: int) -> List[int]:
        """Children worth listing: entries with content, or containers that hold some"""
        return [child for child in self.tree.node(index).children
                if self.tree.node(child).content_src is not None or self._nav_children(child)]

    def _nav_items(self, index: int, parent_ol: ET.Element):
        node = self.tree.node(index)
        self._nav_sequence += 1
        li = ET.SubElement(parent_ol, 'li')
        li.set('id', node.nav_id or f"navpoint-{self._nav_sequence}")
        if node.writing_direction:
            li.set('dir', node.writing_direction)
        if node.hidden:
            li.set('hidden', 'hidden')

        if node.content_src is not None:
            entry = ET.SubElement(li, 'a')
            entry.set('href', node.content_src)
        else:
            entry = ET.SubElement(li, 'span')
        entry.text = node.label

        children = self._nav_children(index)
        if children:
            ol = ET.SubElement(li, 'ol')
            if node.nav_class:
                ol.set('class', node.nav_class)
            for child in children:
                self._nav_items(child, ol)

    def _landmarks(self, body: ET.Element):
        references = list(self.ordered_references())
        if not references:
            return
        nav = ET.SubElement(body, 'nav')
        nav.set('epub:type', 'landmarks')
        nav.set('id', 'landmarks')
        heading = ET.SubElement(nav, 'h2')
        if self.writing_direction == Direction.RIGHT_TO_LEFT.value:
            heading.set('dir', 'rtl')
        heading.text = self.references_title
        ol = ET.SubElement(nav, 'ol')
        for ref_type, href, label in references:
            link = ET.SubElement(ET.SubElement(ol, 'li'), 'a')
            link.set('epub:type', ref_type)
            link.set('href', href)
            link.text = label

    def finalize_epub3(self, title: str = "Table of Contents", css_file: Optional[str] = None,
                       viewport: Optional[str] = None) -> str:
        """Render the EPUB 3 navigation document with toc and landmarks"""
        root = ET.Element('html')
        root.set('xmlns', XHTML_NS)
        root.set('xmlns:epub', OPS_NS)
        root.set('xml:lang', self.language_code)
        root.set('lang', self.language_code)
        root.set('dir', self.writing_direction)

        head = ET.SubElement(root, 'head')
        ET.SubElement(head, 'title').text = self.doc_title or title
        ET.SubElement(head, 'meta').set('charset', 'utf-8')
        if viewport:
            meta = ET.SubElement(head, 'meta')
            meta.set('name', 'viewport')
            meta.set('content', viewport)
        if css_file:
            link = ET.SubElement(head, 'link')
            link.set('rel', 'stylesheet')
            link.set('href', css_file)
            link.set('type', 'text/css')

        body = ET.SubElement(root, 'body')
        body.set('epub:type', 'frontmatter toc')
        header = ET.SubElement(body, 'header')
        ET.SubElement(header, 'h1').text = title

        nav = ET.SubElement(body, 'nav')
        nav.set('epub:type', 'toc')
        nav.set('id', 'toc')
        self._nav_sequence = 0
        children = self._nav_children(self.tree.root.index)
        if children:
            ol = ET.SubElement(nav, 'ol')
            for child in children:
                self._nav_items(child, ol)

        self._landmarks(body)

        ET.indent(root, space="  ", level=0)
        return XML_DECLARATION + "\n" + ET.tostring(root, encoding='unicode', short_empty_elements=True) + "\n"

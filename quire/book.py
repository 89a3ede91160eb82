"""
Book assembly

The Book collects chapters, resources and metadata, writes every file into
the archive as it is added and renders book.opf, book.ncx and the
navigation pages when it is finalized. After that it is read-only.
"""

import functools
import html
import logging
import random
import re
import sys
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, Callable, Dict, Iterable, List, Optional, Set, Union

from .archive import ZipArchive
from .config import VIEWPORT_MAP, BookSettings, normalize_book_root
from .constants import (CSS_MIMETYPE, EPUB_MIMETYPE, GENERATOR_MARK, NCX_MIMETYPE, OPS_NS,
                        XHTML11_DOCTYPE, XHTML_MIMETYPE, XHTML_NS, BookVersion, Direction,
                        ExternalReferences, HtmlFormat, IdentifierType)
from .errors import (BookError, ErrorCode, ResourceNotFoundError, StateError, UniquenessError,
                     ValidationError)
from .fetch import ResourceFetcher
from .images import ImageLoader
from .markup import find_id_attributes, parse_html, serialize_document
from .mime import mime_from_url
from .navigation import Ncx, NavPoint
from .package import DublinCore, MarcCode, MetaValue, PackageDocument, ReferenceType
from .paths import back_path, basename, directory_of, normalize_file_name, relativize
from .resources import ResourceRegistry
from .rewriter import ReferenceRewriter
from .splitter import DEFAULT_BOUNDARY, ChapterSplitter
from .utils import decode_html_entities, default_source_url, encode_html, new_uuid

LANGUAGE_PATTERN = re.compile(
    r"^((?P<language>([A-Za-z]{2,3}(-(?P<extlang>[A-Za-z]{3}(-[A-Za-z]{3}){0,2}))?)"
    r"|[A-Za-z]{4}|[A-Za-z]{5,8})(-(?P<region>[A-Za-z]{2}|\d{3}))?)$"
)
_HTML_ROOT = re.compile(r"<html[\s>]", re.IGNORECASE)
_ID_INVALID = re.compile(r"[^A-Za-z0-9_.-]")
_ID_START = re.compile(r"^[A-Za-z_]")

DATE_FORMAT = "%Y-%m-%dT%H:%M:%S.000000+00:00"
SHORT_DATE_FORMAT = "%Y-%m-%d"

CONTAINER_TEMPLATE = '''<?xml version="1.0" encoding="UTF-8"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
    <rootfiles>
        <rootfile full-path="{book_root}book.opf" media-type="application/oebps-package+xml"/>
    </rootfiles>
</container>
'''

COVER_PAGE = "CoverPage.xhtml"
COVER_CSS = "Styles/CoverPage.css"
COVER_CSS_DATA = "@page, body, div, img {\n\tpadding: 0pt;\n\tmargin:0pt;\n}\n\nbody {\n\ttext-align: center;\n}\n"
COVER_IMAGE_ID = "CoverImage"

EPUB3_TOC_FILE = "epub3toc.xhtml"
EPUB3_TOC_ID = "toc"
TOC_ID = "ref_toc"

TOC_LEVELS = 7


def lenient(failure=False):
    """Report BookErrors as a warning and a falsy return value unless the book is strict"""
    def decorator(method):
        @functools.wraps(method)
        def wrapper(self, *args, **kwargs):
            try:
                return method(self, *args, **kwargs)
            except BookError as e:
                if self.strict:
                    raise
                self.logger.warning(f"{method.__name__} failed: {e}")
                return failure
        return wrapper
    return decorator


class Book:
    """An EPUB book under construction"""

    def __init__(self, book_version: Union[BookVersion, str] = BookVersion.EPUB2,
                 language_code: str = "en",
                 writing_direction: Union[Direction, str] = Direction.LEFT_TO_RIGHT,
                 html_format: Union[HtmlFormat, str] = HtmlFormat.XHTML,
                 settings: Optional[BookSettings] = None,
                 archive: Optional[ZipArchive] = None,
                 image_loader: Optional[ImageLoader] = None,
                 fetcher: Optional[ResourceFetcher] = None,
                 uuid_factory: Optional[Callable[[], str]] = None,
                 clock: Optional[Callable[[], datetime]] = None,
                 rng: Optional[random.Random] = None,
                 strict: bool = False):
        self.logger = logging.getLogger(__name__)
        self.book_version = BookVersion(book_version)
        self.language_code = language_code
        self.writing_direction = Direction(writing_direction).value
        self.html_format = HtmlFormat(html_format)
        self.settings = settings or BookSettings()
        self.strict = strict

        self.archive = archive or ZipArchive()
        self.fetcher = fetcher or ResourceFetcher(timeout=self.settings.fetch_timeout)
        self.image_loader = image_loader or ImageLoader(
            self.fetcher, self.settings.max_image_width, self.settings.max_image_height,
            self.settings.gif_images_enabled)
        self.uuid_factory = uuid_factory or functools.partial(new_uuid, rng)
        self.clock = clock or (lambda: datetime.now(timezone.utc))

        self.registry = ResourceRegistry()
        self.rewriter = ReferenceRewriter(self)
        self.splitter = ChapterSplitter(self.html_format, self.book_version, self.settings.split_size)
        self.package = PackageDocument("BookId", self.book_version)
        self.ncx = Ncx(language_code=language_code, writing_direction=self.writing_direction,
                       book_version=self.book_version)

        self.file_list: Dict[str, str] = {}
        self.reserved_names: Set[str] = set()
        self.chapter_count = 0
        self.initialized = False
        self.finalized = False
        self.cover_image_set = False
        self.toc_nav_added = False
        self.toc_settings: Optional[Dict] = None
        self.epub3_toc_added = False

        # Metadata
        self.title = ""
        self.language = language_code
        self.identifier = ""
        self.identifier_type: Optional[IdentifierType] = None
        self.description = ""
        self.author = ""
        self.author_sort_key = ""
        self.publisher_name = ""
        self.publisher_url = ""
        self.date: Optional[datetime] = None
        self.rights = ""
        self.subjects: List[str] = []
        self.source_url = ""
        self.coverage = ""
        self.relation = ""
        self.generator = ""
        self.date_format = DATE_FORMAT

    @property
    def is_epub2(self) -> bool:
        return self.book_version == BookVersion.EPUB2

    @property
    def is_finalized(self) -> bool:
        return self.finalized

    def _check_open(self):
        if self.finalized:
            raise StateError("Book is already finalized")

    # Archive and manifest

    def _initialize(self):
        """Write the container and register the NCX on the first added file"""
        if self.initialized:
            return
        book_root = self.settings.book_root
        self.archive.add_entry("META-INF/container.xml",
                               CONTAINER_TEMPLATE.format(book_root=book_root), compress=False)
        self.package.add_item("ncx", "book.ncx", NCX_MIMETYPE)
        self.initialized = True
        self.logger.info(f"Book initialized with root {book_root or '/'}")

    def _unique_id(self, base: str) -> str:
        """Turn `base` into a valid manifest id no other item uses"""
        item_id = _ID_INVALID.sub("_", (base or "").strip()) or "item"
        if not _ID_START.match(item_id):
            item_id = f"_{item_id}"
        candidate = item_id
        counter = 1
        while self.package.get_item_by_id(candidate) is not None:
            counter += 1
            candidate = f"{item_id}_{counter}"
        return candidate

    def _claim_file_name(self, file_name: str) -> str:
        file_name = normalize_file_name(file_name)
        if not file_name:
            raise ValidationError("File name is empty", ErrorCode.E_INVALID_CONTENT)
        if file_name in self.file_list:
            raise UniquenessError(f"File already added: {file_name}")
        return file_name

    def is_stored(self, file_name: str) -> bool:
        """Whether a file exists in the book or is held for a document being added"""
        return file_name in self.file_list or file_name in self.reserved_names

    @contextmanager
    def _reserving(self, file_names: Iterable[str]):
        """Hold document names while the resources they reference are imported"""
        names = [self._claim_file_name(name) for name in file_names]
        self.reserved_names.update(names)
        try:
            yield names
        finally:
            self.reserved_names.difference_update(names)

    def _add_file_strict(self, file_name: str, file_id: str, data: Union[bytes, str],
                         mime_type: str):
        self._check_open()
        file_name = self._claim_file_name(file_name)
        self._initialize()
        compress = not mime_type.startswith("image/")
        self.archive.add_entry(self.settings.book_root + file_name, data, compress)
        self.file_list[file_name] = file_name
        item = self.package.add_item(self._unique_id(file_id), file_name, mime_type)
        self.logger.debug(f"Added {file_name} as {item.id} ({mime_type})")
        return item

    def _add_large_file_strict(self, file_name: str, file_id: str, file_path, mime_type: str):
        self._check_open()
        file_name = self._claim_file_name(file_name)
        self._initialize()
        compress = not mime_type.startswith("image/")
        if not self.archive.add_entry_from_file(file_path, self.settings.book_root + file_name, compress):
            raise ResourceNotFoundError(str(file_path))
        self.file_list[file_name] = file_name
        item = self.package.add_item(self._unique_id(file_id), file_name, mime_type)
        self.logger.debug(f"Added {file_name} from {file_path} as {item.id}")
        return item

    def _add_css_file_strict(self, file_name: str, file_id: str, css: str):
        return self._add_file_strict(file_name, f"css_{file_id}", css, CSS_MIMETYPE)

    @lenient(False)
    def add_file(self, file_name: str, file_id: str, file_data: Union[bytes, str],
                 mime_type: str) -> bool:
        self._add_file_strict(file_name, file_id, file_data, mime_type)
        return True

    @lenient(False)
    def add_large_file(self, file_name: str, file_id: str, file_path: Union[str, Path],
                       mime_type: str) -> bool:
        """Stream a file from disk into the book without loading it in memory"""
        self._add_large_file_strict(file_name, file_id, file_path, mime_type)
        return True

    @lenient(False)
    def add_css_file(self, file_name: str, file_id: str, file_data: str,
                     external_references: ExternalReferences = ExternalReferences.IGNORE,
                     base_dir: str = "") -> bool:
        """Add a stylesheet, importing the resources its url() references point at"""
        self._check_open()
        if external_references != ExternalReferences.IGNORE:
            file_data = self.rewriter.rewrite_css(file_data, external_references, base_dir,
                                                  directory_of(normalize_file_name(file_name)))
        self._add_css_file_strict(file_name, file_id, file_data)
        return True

    @lenient(False)
    def add_file_to_meta_inf(self, file_name: str, file_data: Union[bytes, str]) -> bool:
        """Store a file under META-INF/, outside the manifest"""
        self._check_open()
        file_name = normalize_file_name(file_name)
        if not file_name:
            raise ValidationError("File name is empty", ErrorCode.E_INVALID_CONTENT)
        self._initialize()
        self.archive.add_entry(f"META-INF/{file_name}", file_data)
        return True

    def get_file_list(self) -> Dict[str, str]:
        return dict(self.file_list)

    # Content

    def _wrap_fragment(self, content: str, title: str) -> str:
        soup = parse_html(content, self.html_format)
        if not soup.head.title.string and title:
            soup.head.title.string = decode_html_entities(title)
        return serialize_document(soup, self.book_version)

    def _prepare_content(self, content: str, title: str, external_references, base_dir: str,
                         html_dir: str) -> str:
        if external_references != ExternalReferences.IGNORE:
            content = self.rewriter.rewrite_document(content, external_references, base_dir, html_dir)
        elif not _HTML_ROOT.search(content):
            content = self._wrap_fragment(content, title)
        if self.settings.encode_html:
            content = encode_html(content)
        return content

    def _add_document(self, file_name: str, file_id: str, content: str):
        item = self._add_file_strict(file_name, file_id, content, XHTML_MIMETYPE)
        for anchor in find_id_attributes(content):
            item.add_index_point(anchor)
        return item

    @lenient(None)
    def add_chapter(self, chapter_name: str, file_name: str,
                    chapter_data: Union[str, List[str], None] = None, auto_split: bool = False,
                    external_references: ExternalReferences = ExternalReferences.IGNORE,
                    base_dir: str = "") -> Optional[NavPoint]:
        """Add a chapter and its table of contents entry.

        `chapter_data` is a document, a list of documents stored as numbered
        parts, or None for an entry that points at content added elsewhere
        (`file#anchor`, or the generated table of contents page).
        """
        self._check_open()
        file_name = relativize(file_name.strip())
        label = decode_html_entities(chapter_name)
        chapter = chapter_data

        if auto_split and isinstance(chapter, str) and len(chapter.encode("utf-8")) > self.settings.split_size:
            parts = self.splitter.split(chapter)
            if len(parts) > 1:
                self.logger.info(f"Split chapter '{label}' into {len(parts)} parts")
                chapter = [part.html for part in parts]

        if isinstance(chapter, str) and chapter:
            with self._reserving([file_name]):
                content = self._prepare_content(chapter, chapter_name, external_references, base_dir,
                                                directory_of(file_name))
            item = self._add_document(file_name, f"chapter{self.chapter_count + 1}", content)
            self.package.add_item_ref(item.id)
            self.chapter_count += 1
            point = self.ncx.tree.add_nav_point(label, file_name, item.id)

        elif isinstance(chapter, (list, tuple)) and chapter:
            point = self._add_chapter_parts(label, chapter_name, file_name, chapter,
                                            external_references, base_dir)

        elif chapter is None and "#" in file_name:
            self.chapter_count += 1
            point = self.ncx.tree.add_nav_point(label, self._resolve_anchor(file_name),
                                                f"chapter{self.chapter_count}")

        elif chapter is None and file_name == self._toc_file_name():
            self.chapter_count += 1
            self.package.add_item_ref(TOC_ID)
            self.toc_nav_added = True
            point = self.ncx.tree.add_nav_point(label, file_name, TOC_ID)

        else:
            raise ValidationError(f"Chapter '{label}' has no content", ErrorCode.E_INVALID_CONTENT)

        self.ncx.chapter_list[chapter_name] = point.index
        self.logger.info(f"Added chapter '{label}' -> {point.content_src}")
        return point

    def _toc_file_name(self) -> str:
        return self.toc_settings["file_name"] if self.toc_settings else "TOC.xhtml"

    def _add_chapter_parts(self, label, chapter_name, file_name, parts, external_references, base_dir):
        stem, dot, ext = file_name.rpartition(".")
        if not dot or "/" in ext:
            stem, ext = file_name, "xhtml"
        part_names = [f"{stem}_{k}.{ext}" for k in range(1, len(parts) + 1)]

        html_dir = directory_of(file_name)
        with self._reserving(part_names) as part_names:
            contents = [self._prepare_content(part, chapter_name, external_references, base_dir, html_dir)
                        for part in parts]

        first_item = None
        for k, (part_name, content) in enumerate(zip(part_names, contents), start=1):
            item = self._add_document(part_name, f"{basename(stem)}_{k}", content)
            self.package.add_item_ref(item.id)
            first_item = first_item or item
        self.chapter_count += 1
        return self.ncx.tree.add_nav_point(label, part_names[0], first_item.id)

    def _resolve_anchor(self, file_name: str) -> str:
        """Point `file#anchor` at the split part that holds the anchor"""
        path, _, anchor = file_name.partition("#")
        if self.package.get_item_by_href(path) is not None:
            return file_name
        stem = path.rpartition(".")[0] or path
        part = re.compile(re.escape(stem) + r"_\d+(\.[^/]*)?$")
        for item in self.package.get_item_by_href(f"{stem}_", starts_with=True):
            if part.match(item.href) and item.has_index_point(anchor):
                return f"{item.href}#{anchor}"
        return file_name

    def get_chapter_count(self) -> int:
        return self.chapter_count

    # Reference pages and cover

    def _reference_type(self, reference) -> ReferenceType:
        try:
            return ReferenceType(reference)
        except ValueError:
            raise ValidationError(f"Unknown reference type: {reference}", ErrorCode.E_INVALID_CONTENT)

    def _add_reference_page_strict(self, page_name: str, file_name: str, page_data: str,
                                   reference: ReferenceType,
                                   external_references=ExternalReferences.IGNORE, base_dir: str = ""):
        self._check_open()
        file_name = relativize(file_name.strip())
        if not page_data:
            raise ValidationError(f"Reference page '{page_name}' has no content", ErrorCode.E_INVALID_CONTENT)
        with self._reserving([file_name]):
            content = self._prepare_content(page_data, page_name, external_references, base_dir,
                                            directory_of(file_name))
        item = self._add_document(file_name, f"ref_{reference.value}", content)

        if reference != ReferenceType.TABLE_OF_CONTENTS or reference.value not in self.ncx.references_list:
            self.package.add_item_ref(item.id)
            self.ncx.references_list[reference.value] = file_name
            self.ncx.references_name[reference.value] = page_name
        if not any(ref.type_name == reference.value and ref.href == file_name for ref in self.package.guide):
            self.package.add_reference(reference, page_name, file_name)
        return item

    @lenient(False)
    def add_reference_page(self, page_name: str, file_name: str, page_data: str,
                           reference: Union[ReferenceType, str],
                           external_references: ExternalReferences = ExternalReferences.IGNORE,
                           base_dir: str = "") -> bool:
        """Add a guide page (cover, colophon, index...) outside the chapter list"""
        self._add_reference_page_strict(page_name, file_name, page_data, self._reference_type(reference),
                                        external_references, base_dir)
        return True

    @lenient(False)
    def set_cover_image(self, file_name: str, image_data: Optional[bytes] = None,
                        mime_type: Optional[str] = None) -> bool:
        """Add the cover image and the page showing it; only one cover per book"""
        self._check_open()
        if self.cover_image_set or COVER_PAGE in self.file_list:
            raise StateError("Cover image already set", ErrorCode.E_COVER_ALREADY_SET)

        if image_data is None:
            image = self.image_loader.load(file_name)
            if image is None:
                raise ResourceNotFoundError(file_name)
            image_data, mime_type = image.data, image.mime
            stem, dot, ext = file_name.rpartition(".")
            if image.ext and (not dot or ext.lower() != image.ext):
                file_name = f"{stem if dot else file_name}.{image.ext}"
        elif not mime_type:
            image = self.image_loader.load_bytes(file_name, image_data)
            mime_type = image.mime if image is not None else mime_from_url(file_name)

        image_path = f"images/{basename(file_name)}"
        for name in (COVER_CSS, image_path, COVER_PAGE):
            if normalize_file_name(name) in self.file_list:
                raise UniquenessError(f"File already added: {name}")

        self._add_css_file_strict(COVER_CSS, "CoverPageCss", COVER_CSS_DATA)
        item = self._add_file_strict(image_path, COVER_IMAGE_ID, image_data, mime_type)
        if not self.is_epub2:
            item.properties = "cover-image"
        self._add_reference_page_strict("CoverPage", COVER_PAGE, self._cover_page(image_path),
                                        ReferenceType.COVER)
        self.cover_image_set = True
        self.logger.info(f"Cover image set: {image_path}")
        return True

    def _document_head(self, title: str, css_file: Optional[str] = None) -> List[str]:
        """Opening lines shared by the generated pages"""
        lines = ['<?xml version="1.0" encoding="utf-8"?>']
        if self.is_epub2:
            lines.append(XHTML11_DOCTYPE)
            lines.append(f'<html xmlns="{XHTML_NS}">')
            lines.append('<head>')
            lines.append('\t<meta http-equiv="Content-Type" content="text/html; charset=utf-8"/>')
        else:
            lines.append(f'<html xmlns="{XHTML_NS}" xmlns:epub="{OPS_NS}">')
            lines.append('<head>')
            lines.append('\t<meta charset="utf-8"/>')
        viewport = self.get_viewport_meta_line()
        if viewport:
            lines.append(f'\t{viewport}')
        if css_file:
            lines.append(f'\t<link rel="stylesheet" type="text/css" href="{html.escape(css_file)}"/>')
        lines.append(f'\t<title>{html.escape(title)}</title>')
        return lines

    def _cover_page(self, image_path: str) -> str:
        lines = self._document_head("Cover Image", COVER_CSS)
        lines.append('</head>')
        lines.append('<body>')
        if self.is_epub2:
            lines.append('\t<div>')
        else:
            lines.append('\t<section epub:type="cover">')
        lines.append(f'\t\t<img src="{html.escape(image_path)}" alt="Cover image" style="height: 100%"/>')
        lines.append('\t</div>' if self.is_epub2 else '\t</section>')
        lines.append('</body>')
        lines.append('</html>')
        return "\n".join(lines) + "\n"

    # Table of contents

    @lenient(False)
    def build_toc(self, css_file_name: Optional[str] = None, toc_css_class: str = "toc",
                  title: str = "Table of Contents", add_references: bool = True,
                  add_to_index: bool = False, toc_file_name: str = "TOC.xhtml") -> bool:
        """Have finalize generate a table of contents page"""
        self._check_open()
        toc_file_name = relativize(toc_file_name.strip())
        self.toc_settings = {
            "css_file_name": css_file_name,
            "css_class": toc_css_class,
            "title": title,
            "add_references": add_references,
            "file_name": toc_file_name,
        }
        if not self.toc_nav_added:
            self.package.add_item_ref(TOC_ID, linear=False)
            if add_to_index:
                self.ncx.tree.add_nav_point(decode_html_entities(title), toc_file_name, TOC_ID)
            else:
                self.ncx.references_list[ReferenceType.TABLE_OF_CONTENTS.value] = toc_file_name
                self.ncx.references_name[ReferenceType.TABLE_OF_CONTENTS.value] = title
            self.toc_nav_added = True
        return True

    def _toc_entries(self, back: str, add_references: bool) -> List[str]:
        lines = []
        for ref_type in self.ncx.references_order:
            if ref_type == ReferenceType.TEXT.value:
                for index in self.ncx.chapter_list.values():
                    point = self.ncx.tree.node(index)
                    if point.content_src is None or point.content_src == self.toc_settings["file_name"]:
                        continue
                    level = min(max(self.ncx.tree.level_of(index) - 1, 1), TOC_LEVELS)
                    lines.append(f'\t\t<p class="level{level}"><a href="{html.escape(back + point.content_src)}">'
                                 f'{html.escape(point.label)}</a></p>')
            elif add_references and ref_type in self.ncx.references_list:
                href = self.ncx.references_list[ref_type]
                if href == self.toc_settings["file_name"]:
                    continue
                label = self.ncx.references_order[ref_type]
                lines.append(f'\t\t<p class="level1 reference"><a href="{html.escape(back + href)}">'
                             f'{html.escape(label)}</a></p>')
        return lines

    def _finalize_toc(self):
        """Render and add the table of contents page requested with build_toc"""
        if self.toc_settings is None:
            return
        toc = self.toc_settings
        title = toc["title"]
        css_class = toc["css_class"]
        back = back_path(directory_of(toc["file_name"]))

        lines = self._document_head(decode_html_entities(title), toc["css_file_name"])
        lines.append('\t<style type="text/css">')
        for level in range(1, TOC_LEVELS + 1):
            lines.append(f'\t\t.{css_class} .level{level} {{text-indent: {(level - 1) * 2}em;}}')
        lines.append(f'\t\t.{css_class} .reference {{}}')
        lines.append('\t</style>')
        lines.append('</head>')
        lines.append('<body>')
        lines.append(f'\t<h3>{html.escape(decode_html_entities(title))}</h3>')
        lines.append(f'\t<div class="{html.escape(css_class)}">')
        lines.extend(self._toc_entries(back, toc["add_references"]))
        lines.append('\t</div>')
        lines.append('</body>')
        lines.append('</html>')

        self._add_reference_page_strict(title, toc["file_name"], "\n".join(lines) + "\n",
                                        ReferenceType.TABLE_OF_CONTENTS)

    def build_epub3_toc(self, css_file_name: Optional[str] = None, title: str = "Table of Contents") -> str:
        """Render the EPUB 3 navigation document"""
        if self.title and not self.ncx.doc_title:
            self.ncx.doc_title = decode_html_entities(self.title)
        return self.ncx.finalize_epub3(decode_html_entities(title), css_file_name, self._viewport_content())

    def _add_epub3_toc_strict(self, file_name: str, toc_data: str):
        if self.is_epub2:
            raise ValidationError("Navigation documents need EPUB 3", ErrorCode.E_INVALID_CONTENT)
        item = self._add_file_strict(file_name, EPUB3_TOC_ID, toc_data, XHTML_MIMETYPE)
        item.properties = "nav"
        self.epub3_toc_added = True
        return item

    @lenient(False)
    def add_epub3_toc(self, file_name: str = EPUB3_TOC_FILE, toc_data: Optional[str] = None) -> bool:
        """Add a navigation document; the generated one is used when none is given"""
        self._check_open()
        self._add_epub3_toc_strict(file_name, toc_data or self.build_epub3_toc())
        return True

    # Navigation levels

    def sub_level(self, nav_title: Optional[str] = None, nav_id: Optional[str] = None,
                  nav_class: Optional[str] = None, is_nav_hidden: bool = False,
                  writing_direction: Optional[str] = None) -> Optional[NavPoint]:
        if self.finalized:
            return None
        label = decode_html_entities(nav_title) if nav_title is not None else None
        return self.ncx.tree.sub_level(label, nav_id, nav_class, is_nav_hidden, writing_direction)

    def back_level(self):
        if not self.finalized:
            self.ncx.tree.back_level()

    def root_level(self):
        if not self.finalized:
            self.ncx.tree.root_level()

    def set_current_level(self, level: int):
        if not self.finalized:
            self.ncx.tree.set_current_level(level)

    def get_current_level(self) -> int:
        return self.ncx.tree.current_level()

    # Settings

    @lenient(False)
    def set_book_root(self, book_root: str) -> bool:
        """Directory inside the archive holding the book; fixed once a file is added"""
        if self.initialized:
            raise StateError("Book root can't change after the first file is added",
                             ErrorCode.E_ALREADY_INITIALIZED)
        self.settings.book_root = normalize_book_root(book_root)
        return True

    def set_split_size(self, size: int):
        self.splitter.set_split_size(size)
        self.settings.split_size = self.splitter.split_size

    def get_split_size(self) -> int:
        return self.settings.split_size

    def split_chapter(self, chapter: str, split_on_search_string: bool = False,
                      search_string=DEFAULT_BOUNDARY):
        return self.splitter.split(chapter, split_on_search_string, search_string)

    @lenient(False)
    def set_viewport(self, width: Union[str, int, None] = None, height: Optional[int] = None) -> bool:
        """Fixed viewport size, or a preset name from VIEWPORT_MAP; no width clears it"""
        self._check_open()
        if width is None:
            self.settings.viewport = None
        elif isinstance(width, str) and not width.isdigit():
            if width not in VIEWPORT_MAP:
                raise ValidationError(f"Unknown viewport preset: {width}", ErrorCode.E_INVALID_CONTENT)
            self.settings.viewport = dict(VIEWPORT_MAP[width])
        else:
            if height is None:
                raise ValidationError("Viewport height missing", ErrorCode.E_MISSING_FIELD)
            self.settings.viewport = {"width": int(width), "height": int(height)}
        return True

    def _viewport_content(self) -> Optional[str]:
        viewport = self.settings.viewport
        if not viewport:
            return None
        return f"width={viewport['width']}, height={viewport['height']}"

    def get_viewport_meta_line(self) -> str:
        content = self._viewport_content()
        return f'<meta name="viewport" content="{content}"/>' if content else ""

    def set_references_title(self, references_title: str = "Guide", references_id: str = "references",
                             references_class: str = "references"):
        if self.finalized:
            return
        self.ncx.references_title = references_title.strip() if references_title else "Guide"
        self.ncx.references_id = references_id.strip() if references_id else "references"
        self.ncx.references_class = references_class.strip() if references_class else "references"

    def set_references_added_to_toc(self, added: bool = True):
        if not self.finalized:
            self.settings.references_added_to_toc = added is True

    # Metadata

    @lenient(False)
    def _set_field(self, name: str, value) -> bool:
        self._check_open()
        setattr(self, name, value.strip() if isinstance(value, str) else value)
        return True

    def set_title(self, title: str) -> bool:
        return self._set_field("title", title)

    def get_title(self) -> str:
        return self.title

    @lenient(False)
    def set_language(self, language: str) -> bool:
        """BCP 47 style language tag (en, en-GB, zh-yue-HK...)"""
        self._check_open()
        language = (language or "").strip()
        if not LANGUAGE_PATTERN.match(language):
            raise ValidationError(f"Invalid language: {language!r}", ErrorCode.E_INVALID_LANGUAGE)
        self.language = language
        return True

    def get_language(self) -> str:
        return self.language

    @lenient(False)
    def set_identifier(self, identifier: str, identifier_type: Union[IdentifierType, str]) -> bool:
        self._check_open()
        try:
            identifier_type = IdentifierType(identifier_type)
        except ValueError:
            raise ValidationError(f"Invalid identifier type: {identifier_type}",
                                  ErrorCode.E_INVALID_IDENTIFIER_TYPE)
        self.identifier = identifier.strip()
        self.identifier_type = identifier_type
        return True

    def get_identifier(self) -> str:
        return self.identifier

    def get_identifier_type(self) -> Optional[IdentifierType]:
        return self.identifier_type

    def set_description(self, description: str) -> bool:
        return self._set_field("description", description)

    def get_description(self) -> str:
        return self.description

    @lenient(False)
    def set_author(self, author: str, author_sort_key: str = "") -> bool:
        self._check_open()
        self.author = author.strip()
        self.author_sort_key = author_sort_key.strip()
        return True

    def get_author(self) -> str:
        return self.author

    def get_author_sort_key(self) -> str:
        return self.author_sort_key

    @lenient(False)
    def set_publisher(self, publisher_name: str, publisher_url: str = "") -> bool:
        self._check_open()
        self.publisher_name = publisher_name.strip()
        self.publisher_url = publisher_url.strip()
        return True

    def get_publisher_name(self) -> str:
        return self.publisher_name

    def get_publisher_url(self) -> str:
        return self.publisher_url

    @lenient(False)
    def set_date(self, date: Union[datetime, int, float]) -> bool:
        """Publication date, as a datetime or a unix timestamp"""
        self._check_open()
        if not isinstance(date, datetime):
            date = datetime.fromtimestamp(date, timezone.utc)
        elif date.tzinfo is None:
            date = date.replace(tzinfo=timezone.utc)
        self.date = date
        return True

    def get_date(self) -> Optional[datetime]:
        return self.date

    def set_short_date_format(self, short: bool = True):
        self.date_format = SHORT_DATE_FORMAT if short else DATE_FORMAT

    def set_rights(self, rights: str) -> bool:
        return self._set_field("rights", rights)

    def get_rights(self) -> str:
        return self.rights

    @lenient(False)
    def set_subject(self, subject: str) -> bool:
        """Add a subject; each call adds another"""
        self._check_open()
        subject = subject.strip()
        if subject and subject not in self.subjects:
            self.subjects.append(subject)
        return True

    def get_subjects(self) -> List[str]:
        return list(self.subjects)

    def set_source_url(self, source_url: str) -> bool:
        return self._set_field("source_url", source_url)

    def get_source_url(self) -> str:
        return self.source_url

    def set_coverage(self, coverage: str) -> bool:
        return self._set_field("coverage", coverage)

    def get_coverage(self) -> str:
        return self.coverage

    def set_relation(self, relation: str) -> bool:
        return self._set_field("relation", relation)

    def get_relation(self) -> str:
        return self.relation

    def set_generator(self, generator: str) -> bool:
        return self._set_field("generator", generator)

    def get_generator(self) -> str:
        return self.generator

    # Custom metadata

    @lenient(False)
    def add_custom_namespace(self, name: str, uri: str) -> bool:
        self._check_open()
        self.package.add_namespace(name, uri)
        return True

    @lenient(False)
    def add_custom_prefix(self, name: str, uri: str) -> bool:
        """Declare a metadata vocabulary prefix (EPUB 3)"""
        self._check_open()
        self.package.add_prefix(name, uri)
        return True

    @lenient(False)
    def add_custom_meta_value(self, value: MetaValue) -> bool:
        self._check_open()
        self.package.add_meta_value(value)
        return True

    @lenient(False)
    def add_custom_meta_property(self, name: str, content: str) -> bool:
        self._check_open()
        self.package.add_meta_property(name, content)
        return True

    @lenient(False)
    def add_custom_metadata(self, name: str, content: str) -> bool:
        """Add a <meta name content> entry"""
        self._check_open()
        self.package.add_meta(name, content)
        return True

    @lenient(False)
    def add_dublin_core_metadata(self, name: str, value: str) -> bool:
        self._check_open()
        if not value or not value.strip():
            raise ValidationError(f"Empty value for dc:{name}", ErrorCode.E_MISSING_FIELD)
        self.package.add_dc_meta(name, value.strip())
        return True

    # Finalize

    def _validate(self):
        if self.chapter_count == 0:
            raise ValidationError("Book has no chapters")
        if not self.title:
            raise ValidationError("Book title is missing")
        if not self.language:
            raise ValidationError("Book language is missing")
        reserved = []
        if self.toc_settings is not None:
            reserved.append(self.toc_settings["file_name"])
        if not self.is_epub2 and not self.epub3_toc_added:
            reserved.append(EPUB3_TOC_FILE)
        for name in reserved:
            if normalize_file_name(name) in self.file_list:
                raise UniquenessError(f"File already added: {name}")

    def _finalize_metadata(self, date: datetime):
        package = self.package
        package.initialize(decode_html_entities(self.title), self.language, self.identifier,
                           self.identifier_type.value)

        dc_date = DublinCore(DublinCore.DATE, date.astimezone(timezone.utc).strftime(self.date_format))
        dc_date.add_opf_attr("event", "publication")
        package.add_meta_value(dc_date)

        if self.description:
            package.add_dc_meta(DublinCore.DESCRIPTION, decode_html_entities(self.description))
        if self.publisher_name:
            package.add_dc_meta(DublinCore.PUBLISHER, decode_html_entities(self.publisher_name))
        if self.publisher_url:
            package.add_dc_meta(DublinCore.RELATION, self.publisher_url)
        if self.author:
            author = decode_html_entities(self.author)
            package.add_creator(author, self.author_sort_key or None, MarcCode.AUTHOR)
            self.ncx.doc_author = author
        if self.rights:
            package.add_dc_meta(DublinCore.RIGHTS, decode_html_entities(self.rights))
        if self.coverage:
            package.add_dc_meta(DublinCore.COVERAGE, decode_html_entities(self.coverage))
        package.add_dc_meta(DublinCore.SOURCE, self.source_url)
        if self.relation:
            package.add_dc_meta(DublinCore.RELATION, decode_html_entities(self.relation))
        for subject in self.subjects:
            package.add_dc_meta(DublinCore.SUBJECT, decode_html_entities(subject))

        if self.cover_image_set:
            package.add_meta("cover", COVER_IMAGE_ID)
        if self.generator:
            generator = decode_html_entities(self.generator)
            package.add_meta("generator", generator)
            self.ncx.add_meta_entry("dtb:generator", generator)
        if self.settings.epub_mark:
            package.add_meta("generator", GENERATOR_MARK)

    @lenient(False)
    def finalize(self) -> bool:
        """Render the package files; the book can't be changed afterwards"""
        self._check_open()
        self._validate()

        if not self.identifier or self.identifier_type is None:
            self.identifier = self.uuid_factory()
            self.identifier_type = IdentifierType.UUID
        if self.date is None:
            self.date = self.clock()
        if not self.source_url:
            self.source_url = default_source_url()
        self._initialize()

        self._finalize_metadata(self.date)

        if self.ncx.chapter_list:
            first = self.ncx.tree.node(next(iter(self.ncx.chapter_list.values())))
            if first.content_src:
                self.package.add_reference(ReferenceType.TEXT, first.label, first.content_src)

        self.ncx.uid = self.identifier
        self.ncx.doc_title = decode_html_entities(self.title)

        if self.settings.references_added_to_toc:
            self.ncx.finalize_references()
        self._finalize_toc()
        if not self.is_epub2 and not self.epub3_toc_added:
            self._add_epub3_toc_strict(EPUB3_TOC_FILE, self.build_epub3_toc())

        self.package.date = self.date
        self.package.prune_spine()

        book_root = self.settings.book_root
        self.archive.add_entry(f"{book_root}book.opf", self.package.finalize(self.date))
        self.archive.add_entry(f"{book_root}book.ncx", self.ncx.finalize())
        self.finalized = True
        self.logger.info(f"Finalized '{self.ncx.doc_title}': {self.chapter_count} chapters, "
                         f"{len(self.file_list)} files")
        return True

    def _ensure_finalized(self) -> bool:
        return self.finalized or self.finalize()

    def save_book(self, file_name: str, base_dir: Union[str, Path] = ".") -> Optional[Path]:
        """Write the book to `base_dir`; '.epub' is appended when missing"""
        if not self._ensure_finalized():
            return None
        if not file_name.lower().endswith(".epub"):
            file_name += ".epub"
        path = Path(base_dir) / file_name
        path.write_bytes(self.archive.get_bytes())
        self.logger.info(f"EPUB saved: {path}")
        return path

    def get_book(self) -> Optional[bytes]:
        if not self._ensure_finalized():
            return None
        return self.archive.get_bytes()

    def get_book_size(self) -> Optional[int]:
        if not self._ensure_finalized():
            return None
        return self.archive.get_size()

    def send_book(self, file_name: str, sink: Optional[BinaryIO] = None) -> bool:
        """Stream the book with download headers, to stdout by default"""
        if not self._ensure_finalized():
            return False
        if sink is None:
            sink = sys.stdout.buffer
        return self.archive.stream_to(sink, file_name, EPUB_MIMETYPE)

"""
External reference rewriting

Makes chapter documents and CSS self-contained: referenced images, media,
stylesheets and linked files are imported into the book and the references
are pointed at their new location inside the archive.
"""

import logging
import os
import re
from typing import Tuple
from urllib.parse import unquote, urljoin, urlparse

from bs4 import BeautifulSoup, NavigableString

from .constants import CSS_MIMETYPE, BookVersion, ExternalReferences
from .errors import ResourceNotFoundError
from .markup import parse_html, remove_comments, serialize_document
from .mime import mime_from_url
from .paths import (Absolute, Remote, back_path, basename, classify, directory_of,
                    dirname, get_relative_path, is_remote, strip_leading)
from .utils import sanitize_filename

CSS_URL = re.compile(r"""url\s*\(['"\s]*(.+?)['"\s]*\)""", re.IGNORECASE | re.MULTILINE)
CDATA_OPEN = re.compile(r"[/*\s]*<!\[CDATA\[[\s*/]*", re.IGNORECASE | re.MULTILINE)
CDATA_CLOSE = re.compile(r"[/*\s]*\]\]>[\s*/]*", re.IGNORECASE | re.MULTILINE)

DEFAULT_ALT = "image"


def _inline_source(source: str) -> bool:
    return not source or source.startswith(("data:", "#", "about:"))


def _alt_text(tag) -> str:
    alt = tag.get("alt")
    return alt if alt else DEFAULT_ALT


class ReferenceRewriter:
    """Imports the resources a document points at and rewrites its references"""

    def __init__(self, book):
        self.logger = logging.getLogger(__name__)
        self.book = book

    @property
    def strict(self) -> bool:
        return self.book.settings.strict_resources

    # Documents

    def rewrite_document(self, markup: str, policy: ExternalReferences, base_dir: str = "",
                         html_dir: str = "") -> str:
        """Return the document rebuilt as XHTML with its references rewritten"""
        soup = parse_html(markup, self.book.html_format)
        remove_comments(soup)
        self.rewrite_soup(soup, policy, base_dir, html_dir)
        return serialize_document(soup, self.book.book_version)

    def rewrite_soup(self, soup: BeautifulSoup, policy: ExternalReferences, base_dir: str = "",
                     html_dir: str = ""):
        """Rewrite a parsed document in place: styles, links, images, then sources"""
        policy = ExternalReferences(policy)
        if policy == ExternalReferences.IGNORE:
            return
        back = back_path(html_dir)
        self._rewrite_styles(soup, policy, base_dir, html_dir)
        self._rewrite_links(soup, policy, base_dir, back)
        self._rewrite_images(soup, policy, base_dir, html_dir, back)
        self._rewrite_sources(soup, policy, base_dir, html_dir, back)

    def _rewrite_styles(self, soup, policy, base_dir, html_dir):
        for style in soup.find_all("style"):
            css = style.string or ""
            css = CDATA_OPEN.sub("", css)
            css = CDATA_CLOSE.sub("", css)
            css = self.rewrite_css(css, policy, base_dir, html_dir)
            style.string = "\n" + css.strip() + "\n"

    def _rewrite_links(self, soup, policy, base_dir, back):
        for link in soup.find_all("link"):
            href = link.get("href")
            if _inline_source(href):
                continue

            location, _, _ = self._locate(href, base_dir, "")
            internal_src = sanitize_filename(unquote(basename(urlparse(href).path)))
            if not internal_src:
                continue

            rel = link.get("rel") or []
            if isinstance(rel, str):
                rel = rel.split()
            mime = link.get("type") or mime_from_url(href)
            if "stylesheet" in rel:
                mime = CSS_MIMETYPE

            if not self._stored(internal_src):
                data = self.book.fetcher.get(location)
                if not data:
                    self.logger.warning(f"Linked file not found, leaving reference: {href}")
                    continue
                if mime == CSS_MIMETYPE:
                    css_base = dirname(location) if not is_remote(location) else location
                    css = self.rewrite_css(data.decode("utf-8", errors="replace"), policy,
                                           css_base, directory_of(internal_src))
                    self.book._add_css_file_strict(internal_src, internal_src, css)
                else:
                    self.book._add_file_strict(internal_src, internal_src, data, mime)
                self.book.registry.register(internal_src, location)

            link["href"] = back + internal_src

    def _rewrite_images(self, soup, policy, base_dir, html_dir, back):
        for img in soup.find_all("img"):
            if policy == ExternalReferences.REMOVE_IMAGES:
                img.decompose()
                continue
            if policy == ExternalReferences.REPLACE_IMAGES:
                placeholder = soup.new_tag("em")
                placeholder.string = f"[{_alt_text(img)}]"
                img.replace_with(placeholder)
                continue

            source = img.get("src")
            if _inline_source(source):
                continue
            try:
                internal_path = self.resolve_image(source, base_dir, html_dir)
            except ResourceNotFoundError as e:
                if e.external or self.strict:
                    self.logger.warning(f"Removing image, {e.message}")
                    img.decompose()
                continue
            img["src"] = back + internal_path

    def _rewrite_sources(self, soup, policy, base_dir, html_dir, back):
        if self.book.book_version != BookVersion.EPUB3:
            policy = ExternalReferences.REMOVE_IMAGES

        for source_tag in soup.find_all("source"):
            if policy == ExternalReferences.REMOVE_IMAGES:
                source_tag.decompose()
                continue
            if policy == ExternalReferences.REPLACE_IMAGES:
                source_tag.replace_with(NavigableString(f"[{_alt_text(source_tag)}]"))
                continue

            source = source_tag.get("src")
            if _inline_source(source):
                continue
            try:
                internal_path = self.resolve_media(source, base_dir, html_dir)
            except ResourceNotFoundError as e:
                if e.external or self.strict:
                    self.logger.warning(f"Removing media source, {e.message}")
                    source_tag.decompose()
                continue
            source_tag["src"] = back + internal_path

    # CSS

    def rewrite_css(self, css: str, policy: ExternalReferences, base_dir: str = "",
                    css_dir: str = "") -> str:
        """Rewrite url() references of a stylesheet located in `css_dir` inside the book"""
        policy = ExternalReferences(policy)
        if policy == ExternalReferences.IGNORE:
            return css
        back = back_path(css_dir)

        def _replace(match):
            if policy in (ExternalReferences.REMOVE_IMAGES, ExternalReferences.REPLACE_IMAGES):
                return ""
            source = match.group(1)
            if _inline_source(source):
                return match.group(0)
            try:
                internal_path = self.resolve_image(source, base_dir, css_dir)
            except ResourceNotFoundError as e:
                if e.external or self.strict:
                    self.logger.warning(f"Removing url(), {e.message}")
                    return ""
                return match.group(0)
            return f"url('{back}{internal_path}')"

        return CSS_URL.sub(_replace, css)

    # Resolution

    def _stored(self, internal_path: str) -> bool:
        """Whether the path is already taken by an imported or caller-added file"""
        return self.book.registry.contains(internal_path) or self.book.is_stored(internal_path)

    def _local_path(self, path: str, base_dir: str = "") -> str:
        if base_dir:
            path = f"{base_dir.rstrip('/')}/{path}"
        doc_root = self.book.settings.doc_root
        if not self.book.fetcher.exists(path) and doc_root:
            path = os.path.join(doc_root, path.lstrip("/"))
        return path

    def _locate(self, source: str, base_dir: str, ref_dir: str) -> Tuple[str, str, bool]:
        """(fetch location, internal directory, is external) for a reference"""
        if is_remote(base_dir) and not is_remote(source) and not source.startswith("/"):
            source = urljoin(base_dir.rstrip("/") + "/", source)

        kind = classify(source, base_dir)
        if isinstance(kind, Remote):
            return source, f"{kind.scheme}/{kind.host}/{dirname(kind.path)}", True
        if isinstance(kind, Absolute):
            location = kind.path
            if not self.book.fetcher.exists(location):
                location = self._local_path(location)
            return location, dirname(kind.path), False
        internal_dir = f"{ref_dir}/{strip_leading(dirname(kind.path))}"
        return self._local_path(kind.path, kind.base_dir), internal_dir, False

    def resolve_image(self, source: str, base_dir: str = "", ref_dir: str = "") -> str:
        """Import an image once and return its path inside the book"""
        location, internal_dir, external = self._locate(source, base_dir, ref_dir)
        known = self.book.registry.path_for_origin(location)
        if known is not None:
            self.logger.debug(f"Image {source} already imported as {known}")
            return known

        image = self.book.image_loader.load(location)
        if image is None:
            raise ResourceNotFoundError(source, external=external)

        name = sanitize_filename(unquote(basename(urlparse(source).path))) or "image"
        stem, dot, ext = name.rpartition(".")
        if image.ext and (not dot or ext != image.ext):
            name = f"{stem if dot else name}.{image.ext}"

        internal_path = get_relative_path(f"images/{internal_dir}/{name}")
        if self._stored(internal_path):
            self.logger.debug(f"Image {source} maps to existing file {internal_path}")
            return internal_path
        self.book._add_file_strict(internal_path, f"i_{name}", image.data, image.mime)
        self.book.registry.register(internal_path, location)
        return internal_path

    def resolve_media(self, source: str, base_dir: str = "", ref_dir: str = "") -> str:
        """Import an audio or video file once and return its path inside the book"""
        location, internal_dir, external = self._locate(source, base_dir, ref_dir)
        known = self.book.registry.path_for_origin(location)
        if known is not None:
            return known

        name = sanitize_filename(unquote(basename(urlparse(source).path)))
        if not name:
            raise ResourceNotFoundError(source, external=external)
        internal_path = get_relative_path(f"media/{internal_dir}/{name}")
        if self._stored(internal_path):
            return internal_path
        mime = mime_from_url(source)

        if external:
            temp_path = self.book.fetcher.download(location)
            if temp_path is None:
                raise ResourceNotFoundError(source, external=True)
            try:
                self._import_media(internal_path, name, temp_path, mime, location)
            finally:
                temp_path.unlink(missing_ok=True)
        else:
            if not self.book.fetcher.exists(location):
                raise ResourceNotFoundError(source, external=False)
            self._import_media(internal_path, name, location, mime, location)
        return internal_path

    def _import_media(self, internal_path, name, path, mime, origin):
        self.book._add_large_file_strict(internal_path, f"m_{name}", path, mime)
        self.book.registry.register(internal_path, origin)

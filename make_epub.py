#!/usr/bin/env python3
"""
make_epub - Assemble an EPUB from a directory of HTML chapters

Every .html/.xhtml file in the source directory becomes a chapter, in file
name order. Chapter titles come from the document <title> or its first
heading. Referenced images, stylesheets and media are imported into the book.
"""

import argparse
import logging
import sys
from pathlib import Path

from bs4 import BeautifulSoup

from quire.book import Book
from quire.config import BookSettings
from quire.constants import BookVersion, ExternalReferences, HtmlFormat
from quire.utils import setup_logging

CHAPTER_SUFFIXES = {".html", ".htm", ".xhtml"}

EXTERNAL_POLICIES = {
    "ignore": ExternalReferences.IGNORE,
    "add": ExternalReferences.ADD,
    "remove": ExternalReferences.REMOVE_IMAGES,
    "replace": ExternalReferences.REPLACE_IMAGES,
}


def chapter_title(markup: str, fallback: str) -> str:
    """Document title, else the first heading, else `fallback`"""
    soup = BeautifulSoup(markup, "html.parser")
    if soup.title and soup.title.get_text(strip=True):
        return soup.title.get_text(strip=True)
    heading = soup.find(["h1", "h2", "h3"])
    if heading and heading.get_text(strip=True):
        return heading.get_text(strip=True)
    return fallback


def find_chapters(source_dir: Path):
    return sorted(p for p in source_dir.iterdir() if p.is_file() and p.suffix.lower() in CHAPTER_SUFFIXES)


def main():
    parser = argparse.ArgumentParser(description="make_epub - Assemble an EPUB from a directory of HTML chapters")
    parser.add_argument("source_dir", help="Directory holding the chapter files")
    parser.add_argument("-o", "--output", help="Output EPUB filename", default="book.epub")
    parser.add_argument("--title", help="Book title (defaults to the directory name)")
    parser.add_argument("--author", help="Book author")
    parser.add_argument("--language", help="Book language", default="en")
    parser.add_argument("--epub-version", choices=["2", "3"], default="2", help="EPUB version")
    parser.add_argument("--html5", action="store_true", help="Parse chapters as HTML5 instead of XHTML")
    parser.add_argument("--split-size", type=int, help="Split chapters larger than this many bytes")
    parser.add_argument("--cover", help="Cover image file")
    parser.add_argument("--toc", action="store_true", help="Add a table of contents page")
    parser.add_argument("--external", choices=sorted(EXTERNAL_POLICIES), default="add",
                        help="How referenced images, stylesheets and media are handled")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    parser.add_argument("--debug", action="store_true", help="Maximum debug output")

    args = parser.parse_args()

    debug_mode = args.debug or args.verbose
    setup_logging(verbose=debug_mode, debug=args.debug)
    logger = logging.getLogger(__name__)

    try:
        source_dir = Path(args.source_dir)
        if not source_dir.is_dir():
            logger.error(f"Source directory not found: {source_dir}")
            sys.exit(1)

        chapters = find_chapters(source_dir)
        if not chapters:
            logger.error(f"No chapter files found in {source_dir}")
            sys.exit(1)
        logger.info(f"Found {len(chapters)} chapters in {source_dir}")

        settings = BookSettings.from_env()
        if args.split_size:
            settings.split_size = args.split_size
            settings.__post_init__()

        book = Book(
            book_version=BookVersion.EPUB3 if args.epub_version == "3" else BookVersion.EPUB2,
            language_code=args.language,
            html_format=HtmlFormat.HTML5 if args.html5 else HtmlFormat.XHTML,
            settings=settings,
            strict=True,
        )
        book.set_title(args.title or source_dir.name)
        book.set_language(args.language)
        if args.author:
            book.set_author(args.author)

        if args.cover:
            book.set_cover_image(args.cover)
        if args.toc:
            book.build_toc()

        policy = EXTERNAL_POLICIES[args.external]
        for path in chapters:
            markup = path.read_text(encoding="utf-8")
            title = chapter_title(markup, path.stem)
            logger.debug(f"Adding chapter '{title}' from {path.name}")
            book.add_chapter(title, f"{path.stem}.xhtml", markup, auto_split=bool(args.split_size),
                             external_references=policy, base_dir=str(source_dir))

        output_path = Path(args.output)
        epub_path = book.save_book(output_path.name, output_path.parent)
        logger.info(f"EPUB created successfully: {epub_path} ({len(book.get_file_list())} files)")

    except Exception as e:
        logger.error(f"Error: {e}")
        if args.verbose:
            logger.exception("Full traceback:")
        sys.exit(1)


if __name__ == "__main__":
    main()

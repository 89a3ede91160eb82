"""
Utility functions for EPUB assembly
"""

import html
import logging
import os
import random
import re
import uuid
from html.entities import html5 as HTML5_ENTITIES
from pathlib import Path
from typing import Optional

_BREAK_TAG = re.compile(r"\s*<br\s*/*\s*>\s*", re.IGNORECASE)
_BLOCK_END = re.compile(r"\s*</(p|div)\s*>\s*", re.IGNORECASE)
_ANY_TAG = re.compile(r"<[^>]*>")
_NAMED_ENTITY = re.compile(r"&([A-Za-z][A-Za-z0-9]*);")
_XML_ENTITIES = {"amp", "lt", "gt", "quot", "apos"}


def setup_logging(verbose=False, debug=False):
    """Setup logging configuration"""
    if debug:
        level = logging.DEBUG
        format_str = '%(asctime)s - %(name)s:%(lineno)d - %(levelname)s - %(message)s'
    elif verbose:
        level = logging.DEBUG
        format_str = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    else:
        level = logging.INFO
        format_str = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

    logging.basicConfig(
        level=level,
        format=format_str,
        datefmt='%H:%M:%S'
    )


def sanitize_filename(filename):
    """Sanitize a file name for use inside the archive and in URLs"""
    forbidden_chars = '<>:"\\|?* '
    for char in forbidden_chars:
        filename = filename.replace(char, '_')

    while '__' in filename:
        filename = filename.replace('__', '_')

    filename = filename.strip('_')

    if len(filename) > 200:
        filename = filename[:200]

    return filename


def html_to_text(text: str) -> str:
    return _ANY_TAG.sub("", text)


def decode_html_entities(text: Optional[str]) -> str:
    """Turn an HTML snippet into plain label text.

    Line breaks and paragraph ends become newlines, remaining tags are
    dropped and entities decoded. Escaping is left to the XML writer.
    """
    if text is None:
        return ""
    text = _BREAK_TAG.sub("\n", str(text))
    text = _BLOCK_END.sub("\n\n", text)
    text = html_to_text(text)
    return html.unescape(text).strip()


def encode_html(markup: str) -> str:
    """Replace HTML-only named entities with the characters they stand for.

    XHTML parsers only know the five XML entities, so `&eacute;` and friends
    must be spelled out before the chapter goes into the archive.
    """
    def _replace(match):
        name = match.group(1)
        if name in _XML_ENTITIES:
            return match.group(0)
        char = HTML5_ENTITIES.get(name + ";")
        return char if char is not None else match.group(0)

    return _NAMED_ENTITY.sub(_replace, markup)


def new_uuid(rng: Optional[random.Random] = None) -> str:
    """Version 4 UUID drawn from `rng`, or from the OS when none is given."""
    if rng is None:
        return str(uuid.uuid4())
    return str(uuid.UUID(int=rng.getrandbits(128), version=4))


def default_source_url() -> str:
    """Source URL used when the caller never set one."""
    configured = os.environ.get("QUIRE_SOURCE_URL")
    if configured:
        return configured
    return Path.cwd().as_uri()

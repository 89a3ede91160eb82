"""
EPUB 3 rendition vocabulary (layout, orientation, spread)
"""

import logging

RENDITION_PREFIX_NAME = "rendition"
RENDITION_PREFIX_URI = "http://www.idpf.org/vocab/rendition/#"

RENDITION_LAYOUT = "rendition:layout"
RENDITION_ORIENTATION = "rendition:orientation"
RENDITION_SPREAD = "rendition:spread"

LAYOUT_REFLOWABLE = "reflowable"
LAYOUT_PRE_PAGINATED = "pre-paginated"

ORIENTATION_LANDSCAPE = "landscape"
ORIENTATION_PORTRAIT = "portrait"
ORIENTATION_AUTO = "auto"

SPREAD_NONE = "none"
SPREAD_LANDSCAPE = "landscape"
SPREAD_PORTRAIT = "portrait"
SPREAD_BOTH = "both"
SPREAD_AUTO = "auto"

LAYOUTS = {LAYOUT_REFLOWABLE, LAYOUT_PRE_PAGINATED}
ORIENTATIONS = {ORIENTATION_LANDSCAPE, ORIENTATION_PORTRAIT, ORIENTATION_AUTO}
SPREADS = {SPREAD_NONE, SPREAD_LANDSCAPE, SPREAD_PORTRAIT, SPREAD_BOTH, SPREAD_AUTO}

logger = logging.getLogger(__name__)


def add_prefix(book) -> bool:
    if book.is_epub2:
        return False
    return book.add_custom_prefix(RENDITION_PREFIX_NAME, RENDITION_PREFIX_URI)


def _set_property(book, prop: str, value: str, allowed) -> bool:
    if book.is_epub2:
        logger.debug(f"Ignoring {prop} for an EPUB 2 book")
        return False
    if value not in allowed:
        logger.warning(f"Ignoring unknown {prop} value: {value!r}")
        return False
    add_prefix(book)
    return book.add_custom_meta_property(prop, value)


def set_layout(book, value: str) -> bool:
    return _set_property(book, RENDITION_LAYOUT, value, LAYOUTS)


def set_orientation(book, value: str) -> bool:
    return _set_property(book, RENDITION_ORIENTATION, value, ORIENTATIONS)


def set_spread(book, value: str) -> bool:
    return _set_property(book, RENDITION_SPREAD, value, SPREADS)

"""
Shared enumerations and fixed strings for EPUB assembly
"""

from enum import Enum, IntEnum

EPUB_MIMETYPE = "application/epub+zip"
XHTML_MIMETYPE = "application/xhtml+xml"
CSS_MIMETYPE = "text/css"
NCX_MIMETYPE = "application/x-dtbncx+xml"

XHTML_NS = "http://www.w3.org/1999/xhtml"
OPS_NS = "http://www.idpf.org/2007/ops"
OPF_NS = "http://www.idpf.org/2007/opf"
NCX_NS = "http://www.daisy.org/z3986/2005/ncx/"

NAMESPACES = {
    "xsi": "http://www.w3.org/2001/XMLSchema-instance",
    "opf": OPF_NS,
    "dc": "http://purl.org/dc/elements/1.1/",
    "dcterms": "http://purl.org/dc/terms/",
}

XHTML11_DOCTYPE = (
    '<!DOCTYPE html PUBLIC "-//W3C//DTD XHTML 1.1//EN"\n'
    '    "http://www.w3.org/TR/xhtml11/DTD/xhtml11.dtd">'
)
NCX_DOCTYPE = (
    '<!DOCTYPE ncx PUBLIC "-//NISO//DTD ncx 2005-1//EN"\n'
    '  "http://www.daisy.org/z3986/2005/ncx-2005-1.dtd">'
)

GENERATOR_MARK = "quire EPUB assembler"


class BookVersion(str, Enum):
    EPUB2 = "2.0"
    EPUB3 = "3.0"


class HtmlFormat(str, Enum):
    XHTML = "xhtml"
    HTML5 = "html5"


class Direction(str, Enum):
    LEFT_TO_RIGHT = "ltr"
    RIGHT_TO_LEFT = "rtl"


class IdentifierType(str, Enum):
    UUID = "UUID"
    URI = "URI"
    ISBN = "ISBN"


class ExternalReferences(IntEnum):
    """How chapter content referencing outside resources is handled."""

    IGNORE = 0
    ADD = 1
    REMOVE_IMAGES = 2
    REPLACE_IMAGES = 3

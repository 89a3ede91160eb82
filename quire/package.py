"""
OPF package document: metadata, manifest, spine and guide
"""

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Union

from .constants import NAMESPACES, OPF_NS, BookVersion
from .errors import ErrorCode, UniquenessError

XML_DECLARATION = '<?xml version="1.0" encoding="utf-8"?>'
MODIFIED_FORMAT = '%Y-%m-%dT%H:%M:%SZ'


class ReferenceType(str, Enum):
    """Guide reference types, after the Chicago Manual of Style"""

    ACKNOWLEDGEMENTS = "acknowledgements"
    BIBLIOGRAPHY = "bibliography"
    COLOPHON = "colophon"
    COPYRIGHT_PAGE = "copyright-page"
    DEDICATION = "dedication"
    EPIGRAPH = "epigraph"
    FOREWORD = "foreword"
    GLOSSARY = "glossary"
    INDEX = "index"
    LIST_OF_ILLUSTRATIONS = "loi"
    LIST_OF_TABLES = "lot"
    NOTES = "notes"
    PREFACE = "preface"
    TABLE_OF_CONTENTS = "toc"
    TITLE_PAGE = "titlepage"
    TEXT = "text"
    COVER = "cover"
    FRONTMATTER = "frontmatter"
    BODYMATTER = "bodymatter"
    BACKMATTER = "backmatter"


# Reading order of reference pages and their default labels
DEFAULT_REFERENCE_ORDER: Dict[str, str] = {
    ReferenceType.COVER.value: "Cover Page",
    ReferenceType.TITLE_PAGE.value: "Title Page",
    ReferenceType.ACKNOWLEDGEMENTS.value: "Acknowledgements",
    ReferenceType.BIBLIOGRAPHY.value: "Bibliography",
    ReferenceType.COLOPHON.value: "Colophon",
    ReferenceType.COPYRIGHT_PAGE.value: "Copyright",
    ReferenceType.DEDICATION.value: "Dedication",
    ReferenceType.EPIGRAPH.value: "Epigraph",
    ReferenceType.FOREWORD.value: "Foreword",
    ReferenceType.TABLE_OF_CONTENTS.value: "Table of Contents",
    ReferenceType.NOTES.value: "Notes",
    ReferenceType.PREFACE.value: "Preface",
    ReferenceType.TEXT.value: "First Page",
    ReferenceType.LIST_OF_ILLUSTRATIONS.value: "List of Illustrations",
    ReferenceType.LIST_OF_TABLES.value: "List of Tables",
    ReferenceType.GLOSSARY.value: "Glossary",
    ReferenceType.INDEX.value: "Index",
}


class MarcCode(str, Enum):
    """MARC relator codes for creator and contributor roles"""

    ADAPTER = "adp"
    ANNOTATOR = "ann"
    ARRANGER = "arr"
    ARTIST = "art"
    ASSOCIATED_NAME = "asn"
    AUTHOR = "aut"
    AUTHOR_IN_QUOTES = "aqt"
    AUTHOR_OF_AFTERWORD = "aft"
    AUTHOR_OF_INTRO = "aui"
    BIB_ANTECEDENT = "ant"
    BOOK_PRODUCER = "bkp"
    COLLABORATOR = "clb"
    COMMENTATOR = "cmm"
    DESIGNER = "dsr"
    EDITOR = "edt"
    ILLUSTRATOR = "ill"
    LYRICIST = "lyr"
    METADATA_CONTACT = "mdc"
    MUSICIAN = "mus"
    NARRATOR = "nrt"
    OTHER = "oth"
    PHOTOGRAPHER = "pht"
    PRINTER = "prt"
    REDACTOR = "red"
    REVIEWER = "rev"
    SPONSOR = "spn"
    THESIS_ADVISOR = "ths"
    TRANSCRIBER = "trc"
    TRANSLATOR = "trl"


def _clean(value) -> Optional[str]:
    if value is None:
        return None
    return str(value).strip()


class MetaValue:
    """A metadata element with plain and opf: attributes"""

    def __init__(self, name: str, value):
        self.name = name.strip()
        self.value = None if value is None else str(value)
        self.attrs: Dict[str, str] = {}
        self.opf_attrs: Dict[str, str] = {}

    def add_attr(self, name: str, value):
        value = _clean(value)
        if value is not None:
            self.attrs[name.strip()] = value

    def add_opf_attr(self, name: str, value):
        value = _clean(value)
        if value is not None:
            self.opf_attrs[name.strip()] = value


class DublinCore(MetaValue):
    """Dublin Core element (dc:*)"""

    CONTRIBUTOR = "contributor"
    COVERAGE = "coverage"
    CREATOR = "creator"
    DATE = "date"
    DESCRIPTION = "description"
    FORMAT = "format"
    IDENTIFIER = "identifier"
    LANGUAGE = "language"
    PUBLISHER = "publisher"
    RELATION = "relation"
    RIGHTS = "rights"
    SOURCE = "source"
    SUBJECT = "subject"
    TITLE = "title"
    TYPE = "type"

    def __init__(self, name: str, value):
        super().__init__(f"dc:{name.strip()}", value)


@dataclass
class ManifestItem:
    id: str
    href: str
    media_type: str
    properties: Optional[str] = None
    required_namespace: Optional[str] = None
    required_modules: Optional[str] = None
    fallback: Optional[str] = None
    fallback_style: Optional[str] = None
    index_points: List[str] = field(default_factory=list)

    def add_index_point(self, anchor: str):
        self.index_points.append(anchor)

    def has_index_point(self, anchor: str) -> bool:
        return anchor in self.index_points


@dataclass
class SpineItemRef:
    idref: str
    linear: bool = True


@dataclass
class Reference:
    type: Union[ReferenceType, str]
    title: str
    href: str

    @property
    def type_name(self) -> str:
        return self.type.value if isinstance(self.type, ReferenceType) else str(self.type)


class PackageDocument:
    """Collects package metadata and file lists and renders book.opf"""

    def __init__(self, ident: str = "BookId", book_version: BookVersion = BookVersion.EPUB2):
        self.logger = logging.getLogger(__name__)
        self.ident = ident.strip() if ident else "BookId"
        self.book_version = BookVersion(book_version)
        self.date: Optional[datetime] = None

        self.namespaces: Dict[str, str] = {"xsi": NAMESPACES["xsi"]}
        self.prefixes: Dict[str, str] = {}

        self.dc: List[MetaValue] = []
        self.meta: List[tuple] = []
        self.meta_properties: List[tuple] = []

        self.items: List[ManifestItem] = []
        self._items_by_id: Dict[str, ManifestItem] = {}
        self._items_by_href: Dict[str, ManifestItem] = {}

        self.spine: Dict[str, SpineItemRef] = {}
        self.spine_toc = "ncx"
        self.guide: List[Reference] = []

    @property
    def is_epub2(self) -> bool:
        return self.book_version == BookVersion.EPUB2

    # Manifest and spine

    def add_item(self, item_id: str, href: str, media_type: str, properties: Optional[str] = None) -> ManifestItem:
        if item_id in self._items_by_id:
            raise UniquenessError(f"Manifest id already used: {item_id}", ErrorCode.E_DUPLICATE_ID)
        if href in self._items_by_href:
            raise UniquenessError(f"Manifest href already used: {href}")
        item = ManifestItem(item_id.strip(), href.strip(), media_type.strip(), _clean(properties))
        self.items.append(item)
        self._items_by_id[item.id] = item
        self._items_by_href[item.href] = item
        return item

    def get_item_by_id(self, item_id: str) -> Optional[ManifestItem]:
        return self._items_by_id.get(item_id)

    def get_item_by_href(self, href: str, starts_with: bool = False):
        """Item with exactly this href, or every item whose href starts with it"""
        if not starts_with:
            return self._items_by_href.get(href)
        return [item for item in self.items if item.href.startswith(href)]

    def add_item_ref(self, idref: str, linear: bool = True):
        """Append to the spine; an idref that is already present is ignored"""
        idref = idref.strip()
        if idref in self.spine:
            return
        self.spine[idref] = SpineItemRef(idref, linear is True)

    def prune_spine(self) -> List[str]:
        """Drop spine entries without a manifest item"""
        dangling = [idref for idref in self.spine if idref not in self._items_by_id]
        for idref in dangling:
            self.logger.warning(f"Dropping spine entry without manifest item: {idref}")
            del self.spine[idref]
        return dangling

    def add_reference(self, ref_type: Union[ReferenceType, str], title: str, href: str):
        self.guide.append(Reference(ref_type, title.strip(), href.strip()))

    # Metadata

    def add_dc_meta(self, name: str, value):
        self.add_meta_value(DublinCore(name, value))

    def add_meta_value(self, value: MetaValue):
        if value is None or value.value is None:
            return
        self.dc.append(value)

    def add_meta(self, name: str, content):
        name, content = _clean(name), _clean(content)
        if name and content is not None:
            self.meta.append((name, content))

    def add_meta_property(self, name: str, content):
        name, content = _clean(name), _clean(content)
        if name and content is not None:
            self.meta_properties.append((name, content))

    def add_namespace(self, name: str, uri: str):
        if name not in self.namespaces:
            self.namespaces[name] = uri

    def add_prefix(self, name: str, uri: str):
        if name not in self.prefixes:
            self.prefixes[name] = uri

    def _add_person(self, element: str, name: str, file_as: Optional[str], role: Optional[str]):
        dc = DublinCore(element, name.strip())
        if file_as is not None:
            dc.add_opf_attr("file-as", file_as)
        if role is not None:
            dc.add_opf_attr("role", role.value if isinstance(role, MarcCode) else role)
        self.add_meta_value(dc)

    def add_creator(self, name: str, file_as: Optional[str] = None, role: Optional[str] = None):
        self._add_person(DublinCore.CREATOR, name, file_as, role)

    def add_contributor(self, name: str, file_as: Optional[str] = None, role: Optional[str] = None):
        self._add_person(DublinCore.CONTRIBUTOR, name, file_as, role)

    def initialize(self, title: str, language: str, identifier: str, scheme: str):
        """Add the three mandatory Dublin Core entries"""
        self.add_dc_meta(DublinCore.TITLE, title)
        self.add_dc_meta(DublinCore.LANGUAGE, language)
        dc = DublinCore(DublinCore.IDENTIFIER, identifier)
        dc.add_attr("id", self.ident)
        dc.add_opf_attr("scheme", scheme)
        self.add_meta_value(dc)

    # Rendering

    def _metadata_element(self, date: Optional[datetime]) -> ET.Element:
        meta_properties = list(self.meta_properties)
        if self.is_epub2:
            self.add_namespace("opf", OPF_NS)
        else:
            self.add_namespace("dcterms", NAMESPACES["dcterms"])
            if not any(name == "dcterms:modified" for name, _ in meta_properties):
                stamp = (date or datetime.now(timezone.utc)).astimezone(timezone.utc)
                meta_properties.append(("dcterms:modified", stamp.strftime(MODIFIED_FORMAT)))
        if self.dc:
            self.add_namespace("dc", NAMESPACES["dc"])

        metadata = ET.Element('metadata')
        refined = 0
        for value in self.dc:
            elem = ET.SubElement(metadata, value.name)
            for name, content in value.attrs.items():
                elem.set(name, content)
            if self.is_epub2:
                for name, content in value.opf_attrs.items():
                    elem.set(f'opf:{name}', content)
            elem.text = value.value

            if self.is_epub2:
                continue
            refinements = {k: v for k, v in value.opf_attrs.items() if k in ("file-as", "role")}
            if not refinements:
                continue
            element_id = value.attrs.get("id")
            if element_id is None:
                refined += 1
                element_id = f"{value.name.split(':')[-1]}-{refined}"
                elem.set("id", element_id)
            for prop, content in refinements.items():
                meta = ET.SubElement(metadata, 'meta')
                meta.set('refines', f'#{element_id}')
                meta.set('property', prop)
                if prop == "role":
                    meta.set('scheme', 'marc:relators')
                meta.text = content

        for name, content in meta_properties:
            meta = ET.SubElement(metadata, 'meta')
            meta.set('property', name)
            meta.text = content

        for name, content in self.meta:
            meta = ET.SubElement(metadata, 'meta')
            meta.set('name', name)
            meta.set('content', content)

        return metadata

    def finalize(self, date: Optional[datetime] = None) -> str:
        """Render the package document in its fixed element order"""
        metadata = self._metadata_element(date or self.date)

        root = ET.Element('package')
        root.set('xmlns', OPF_NS)
        for name, uri in self.namespaces.items():
            root.set(f'xmlns:{name}', uri)
        if not self.is_epub2 and self.prefixes:
            root.set('prefix', " ".join(f"{name}: {uri}" for name, uri in self.prefixes.items()))
        root.set('unique-identifier', self.ident)
        root.set('version', self.book_version.value)

        root.append(metadata)

        manifest = ET.SubElement(root, 'manifest')
        for item in self.items:
            elem = ET.SubElement(manifest, 'item')
            elem.set('id', item.id)
            elem.set('href', item.href)
            elem.set('media-type', item.media_type)
            if not self.is_epub2 and item.properties:
                elem.set('properties', item.properties)
            if item.required_namespace is not None:
                elem.set('required-namespace', item.required_namespace)
                if item.required_modules is not None:
                    elem.set('required-modules', item.required_modules)
            if item.fallback is not None:
                elem.set('fallback', item.fallback)
            if item.fallback_style is not None:
                elem.set('fallback-style', item.fallback_style)

        spine = ET.SubElement(root, 'spine')
        spine.set('toc', self.spine_toc)
        for itemref in self.spine.values():
            elem = ET.SubElement(spine, 'itemref')
            elem.set('idref', itemref.idref)
            if not itemref.linear:
                elem.set('linear', 'no')

        if self.guide:
            guide = ET.SubElement(root, 'guide')
            for reference in self.guide:
                elem = ET.SubElement(guide, 'reference')
                elem.set('type', reference.type_name)
                elem.set('title', reference.title)
                elem.set('href', reference.href)

        ET.indent(root, space="  ", level=0)
        return XML_DECLARATION + "\n" + ET.tostring(root, encoding='unicode') + "\n"

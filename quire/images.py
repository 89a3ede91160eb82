"""
Image loading and downscaling for book resources

Raster images go through Pillow, SVG documents are scaled by rewriting
the width/height attributes of their root element.
"""

import io
import logging
import re
from dataclasses import dataclass
from typing import Dict, Optional

from lxml import etree
from PIL import Image, UnidentifiedImageError

from .fetch import ResourceFetcher
from .mime import OCTET_STREAM, extension_for_mime, mime_from_url

SVG_MIME = "image/svg+xml"

SVG_UNIT_LENGTH: Dict[str, float] = {
    "px": 1.0,
    "pt": 1.25,
    "pc": 15.0,
    "mm": 3.543307,
    "cm": 35.43307,
    "in": 90.0,
    "em": 16.0,
    "ex": 12.0,
    "": 1.0,
}

_SVG_LENGTH = re.compile(r"^\s*(\d+(?:\.\d+)?)(em|ex|px|pt|pc|cm|mm|in|%|)\s*$")
_LIST_SEPARATOR = re.compile(r"\s*[,;]\s*|\s+")


@dataclass
class LoadedImage:
    width: int
    height: int
    mime: str
    data: bytes
    ext: str


def image_scale(width: float, height: float, max_width: int, max_height: int) -> float:
    """Ratio that fits the image inside the caps, never above 1"""
    ratio = 1.0
    if width > max_width:
        ratio = max_width / width
    if height > max_height:
        ratio = min(ratio, max_height / height)
    return ratio


def scale_svg_unit(length, port_size: float = 512) -> float:
    """Convert an SVG length such as '2in' or '50%' to pixels"""
    match = _SVG_LENGTH.match(str(length))
    if match is None:
        try:
            return float(length)
        except (TypeError, ValueError):
            return 0.0
    value = float(match.group(1))
    unit = match.group(2)
    if unit == "%":
        return value * 0.01 * port_size
    return value * SVG_UNIT_LENGTH[unit]


def svg_dimensions(root) -> Dict[str, float]:
    """Width, height and aspect of an SVG root element"""
    view_width = 0.0
    view_height = 0.0
    aspect = 1.0

    view_box = root.get("viewBox")
    if view_box is not None:
        parts = _LIST_SEPARATOR.split(view_box.strip())
        if len(parts) == 4:
            view_width = scale_svg_unit(parts[2])
            view_height = scale_svg_unit(parts[3])
            if view_width > 0 and view_height > 0:
                aspect = view_width / view_height

    width = root.get("width")
    height = root.get("height")
    width = scale_svg_unit(width, view_width) if width is not None else None
    height = scale_svg_unit(height, view_height) if height is not None else None

    if width is None and height is None:
        width = 512.0
        height = width / aspect
    elif height is None:
        height = width / aspect
    elif width is None:
        width = height * aspect

    return {"width": width, "height": height, "aspect": aspect}


def looks_like_svg(data: bytes) -> bool:
    head = data[:1024].lstrip()
    return head.startswith(b"<svg") or head.startswith(b"<?xml") or b"<svg" in head


class ImageLoader:
    """Loads images and caps them to the configured dimensions"""

    def __init__(self, fetcher: Optional[ResourceFetcher] = None, max_width: int = 768,
                 max_height: int = 1024, gif_enabled: bool = False):
        self.logger = logging.getLogger(__name__)
        self.fetcher = fetcher or ResourceFetcher()
        self.max_width = max_width
        self.max_height = max_height
        self.gif_enabled = gif_enabled

    def load(self, source: str) -> Optional[LoadedImage]:
        """Fetch and decode an image, or None when it is unusable"""
        return self.load_bytes(source, self.fetcher.get(source))

    def load_bytes(self, source: str, data: bytes) -> Optional[LoadedImage]:
        if not data:
            return None
        if looks_like_svg(data):
            return self._load_svg(source, data)
        return self._load_raster(source, data)

    def _load_svg(self, source: str, data: bytes) -> Optional[LoadedImage]:
        parser = etree.XMLParser(resolve_entities=False, no_network=True)
        try:
            root = etree.fromstring(data, parser=parser)
        except etree.XMLSyntaxError as e:
            self.logger.warning(f"Unreadable SVG {source}: {e}")
            return None

        dims = svg_dimensions(root)
        width, height = dims["width"], dims["height"]
        if width <= 0 or height <= 0:
            return None

        ratio = image_scale(width, height, self.max_width, self.max_height)
        if ratio < 1:
            width *= ratio
            height *= ratio
            root.set("width", f"{width:g}")
            root.set("height", f"{height:g}")
            data = etree.tostring(root, xml_declaration=True, encoding="utf-8")
            self.logger.debug(f"Scaled SVG {source} by {ratio:.3f}")

        return LoadedImage(int(round(width)), int(round(height)), SVG_MIME, data, "svg")

    def _load_raster(self, source: str, data: bytes) -> Optional[LoadedImage]:
        try:
            with Image.open(io.BytesIO(data)) as img:
                img.load()
                width, height = img.size
                mime = Image.MIME.get(img.format or "", OCTET_STREAM)
                if mime == OCTET_STREAM:
                    mime = mime_from_url(source)
                if width <= 0 or height <= 0:
                    return None

                ratio = image_scale(width, height, self.max_width, self.max_height)
                if ratio < 1:
                    width = max(1, int(width * ratio))
                    height = max(1, int(height * ratio))
                    data, mime = self._resize(img, mime, (width, height))
                    self.logger.debug(f"Resized {source} to {width}x{height} ({mime})")
        except (UnidentifiedImageError, OSError) as e:
            self.logger.warning(f"Unreadable image {source}: {e}")
            return None

        return LoadedImage(width, height, mime, data, extension_for_mime(mime))

    def _resize(self, img, mime: str, size) -> tuple:
        out = io.BytesIO()
        if mime == "image/gif" and self.gif_enabled:
            frame = img.convert("RGBA").resize(size, Image.Resampling.LANCZOS)
            frame.save(out, format="GIF")
            return out.getvalue(), "image/gif"

        if mime == "image/png" or mime == "image/gif":
            frame = img.convert("RGBA").resize(size, Image.Resampling.LANCZOS)
            frame.save(out, format="PNG", optimize=True)
            return out.getvalue(), "image/png"

        frame = img.convert("RGB").resize(size, Image.Resampling.LANCZOS)
        frame.save(out, format="JPEG", quality=80)
        return out.getvalue(), "image/jpeg"

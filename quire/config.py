"""
Book assembly settings

Settings are plain dataclass fields; `from_env` fills them from QUIRE_*
environment variables:
    QUIRE_SPLIT_SIZE: target chapter part size in bytes (min 10240)
    QUIRE_MAX_IMAGE_WIDTH / QUIRE_MAX_IMAGE_HEIGHT: image downscale caps
    QUIRE_BOOK_ROOT: directory inside the archive holding the book files
    QUIRE_DOC_ROOT: fallback directory for resolving local resources
    QUIRE_STRICT_RESOURCES: treat missing local resources as missing
    QUIRE_FETCH_TIMEOUT: seconds to wait for remote resources
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Optional

MIN_SPLIT_SIZE = 10240
DEFAULT_SPLIT_SIZE = 250000

VIEWPORT_MAP: Dict[str, Dict[str, int]] = {
    "small": {"width": 600, "height": 800},
    "medium": {"width": 720, "height": 1280},
    "720p": {"width": 720, "height": 1280},
    "ipad": {"width": 768, "height": 1024},
    "large": {"width": 1080, "height": 1920},
    "2k": {"width": 1080, "height": 1920},
    "1080p": {"width": 1080, "height": 1920},
    "ipad3": {"width": 1536, "height": 2048},
    "4k": {"width": 2160, "height": 3840},
}

_TRUE_VALUES = {"1", "true", "yes", "on"}


def clamp_split_size(size: int) -> int:
    """Chapter parts smaller than 10k are not worth the extra files."""
    size = int(size)
    return MIN_SPLIT_SIZE if size < MIN_SPLIT_SIZE else size


def normalize_book_root(book_root: str) -> str:
    book_root = book_root.strip()
    if len(book_root) <= 1 or book_root == "/":
        return ""
    if not book_root.endswith("/"):
        book_root += "/"
    return book_root


@dataclass
class BookSettings:
    split_size: int = DEFAULT_SPLIT_SIZE
    max_image_width: int = 768
    max_image_height: int = 1024
    gif_images_enabled: bool = False
    references_added_to_toc: bool = True
    encode_html: bool = False
    book_root: str = "OEBPS/"
    doc_root: str = ""
    epub_mark: bool = True
    strict_resources: bool = False
    fetch_timeout: float = 60.0
    viewport: Optional[Dict[str, int]] = field(default=None)

    def __post_init__(self):
        self.split_size = clamp_split_size(self.split_size)
        self.book_root = normalize_book_root(self.book_root)

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "BookSettings":
        env = os.environ if environ is None else environ
        logger = logging.getLogger(__name__)
        settings = cls()

        int_fields = {
            "QUIRE_SPLIT_SIZE": "split_size",
            "QUIRE_MAX_IMAGE_WIDTH": "max_image_width",
            "QUIRE_MAX_IMAGE_HEIGHT": "max_image_height",
        }
        for var, name in int_fields.items():
            raw = env.get(var)
            if raw is None:
                continue
            try:
                setattr(settings, name, int(raw))
            except ValueError:
                logger.warning(f"Ignoring non-integer {var}={raw!r}")

        if "QUIRE_FETCH_TIMEOUT" in env:
            try:
                settings.fetch_timeout = float(env["QUIRE_FETCH_TIMEOUT"])
            except ValueError:
                logger.warning(f"Ignoring non-numeric QUIRE_FETCH_TIMEOUT={env['QUIRE_FETCH_TIMEOUT']!r}")
        if "QUIRE_BOOK_ROOT" in env:
            settings.book_root = env["QUIRE_BOOK_ROOT"]
        if "QUIRE_DOC_ROOT" in env:
            settings.doc_root = env["QUIRE_DOC_ROOT"]
        if "QUIRE_STRICT_RESOURCES" in env:
            settings.strict_resources = env["QUIRE_STRICT_RESOURCES"].strip().lower() in _TRUE_VALUES

        settings.__post_init__()
        return settings

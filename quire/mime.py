"""
MIME type lookups for book resources
"""

import mimetypes
from urllib.parse import urlparse

OCTET_STREAM = "application/octet-stream"

EXTENSION_MIME = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "svg": "image/svg+xml",
    "webp": "image/webp",
    "bmp": "image/x-windows-bmp",
    "tif": "image/tiff",
    "tiff": "image/tiff",
    "css": "text/css",
    "txt": "text/plain",
    "js": "text/javascript",
    "xhtml": "application/xhtml+xml",
    "html": "application/xhtml+xml",
    "htm": "application/xhtml+xml",
    "xml": "application/xml",
    "ncx": "application/x-dtbncx+xml",
    "opf": "application/oebps-package+xml",
    "smil": "application/smil+xml",
    "mp3": "audio/mpeg",
    "m4a": "audio/mp4",
    "aac": "audio/aac",
    "ogg": "audio/ogg",
    "oga": "audio/ogg",
    "wav": "audio/wav",
    "mp4": "video/mp4",
    "m4v": "video/mp4",
    "webm": "video/webm",
    "ogv": "video/ogg",
    "ttf": "font/ttf",
    "otf": "font/otf",
    "woff": "font/woff",
    "woff2": "font/woff2",
    "pdf": "application/pdf",
}

IMAGE_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/gif": "gif",
    "image/png": "png",
    "image/svg+xml": "svg",
}


def mime_from_extension(ext: str) -> str:
    ext = ext.lower().lstrip(".")
    if ext in EXTENSION_MIME:
        return EXTENSION_MIME[ext]
    guessed, _ = mimetypes.guess_type(f"file.{ext}")
    return guessed or OCTET_STREAM


def mime_from_url(url: str) -> str:
    path = urlparse(url).path
    name = path.rpartition("/")[2]
    if "." not in name:
        return OCTET_STREAM
    return mime_from_extension(name.rpartition(".")[2])


def extension_for_mime(mime: str) -> str:
    return IMAGE_EXTENSIONS.get(mime, "")

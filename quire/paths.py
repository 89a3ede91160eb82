"""
Archive path helpers: normalising, back paths and source classification
"""

import re
from dataclasses import dataclass
from typing import Union
from urllib.parse import urlparse

REMOTE_PATTERN = re.compile(r"^(http|ftp)s?://", re.IGNORECASE)
LEADING_DOTS = re.compile(r"^[/.]+")
DIR_SEGMENT = re.compile(r"[^/]+/")


@dataclass(frozen=True)
class Remote:
    scheme: str
    host: str
    path: str


@dataclass(frozen=True)
class Absolute:
    path: str


@dataclass(frozen=True)
class Relative:
    path: str
    base_dir: str = ""


Source = Union[Remote, Absolute, Relative]


def get_relative_path(path: str) -> str:
    """Collapse '.' and '..' segments and doubled slashes.

    '..' segments that would climb above the root are dropped, so the
    result never leaves the archive.
    """
    leading = path.startswith("/")
    parts = []
    for segment in path.split("/"):
        if segment in ("", "."):
            continue
        if segment == "..":
            if parts:
                parts.pop()
            continue
        parts.append(segment)
    result = "/".join(parts)
    if leading:
        result = "/" + result
    if path.endswith("/") and result and not result.endswith("/"):
        result += "/"
    return result


def relativize(path: str) -> str:
    """Archive-safe relative path: resolved, without leading './', '../' or '/'."""
    return LEADING_DOTS.sub("", get_relative_path(path))


def strip_leading(path: str) -> str:
    return LEADING_DOTS.sub("", path)


def normalize_file_name(file_name: str) -> str:
    return relativize(file_name.replace("\\", "/"))


def back_path(from_dir: str) -> str:
    """'../' once per directory in `from_dir` ("Text/sub/" -> "../../")."""
    return DIR_SEGMENT.sub("../", from_dir)


def directory_of(file_name: str) -> str:
    """Archive directory of `file_name` with trailing slash, "" at the root."""
    head, sep, _ = file_name.rpartition("/")
    if not sep:
        return ""
    return strip_leading(head + "/")


def dirname(path: str) -> str:
    head, sep, _ = path.rpartition("/")
    if not sep:
        return "."
    return head or "/"


def basename(path: str) -> str:
    return path.rpartition("/")[2]


def is_remote(source: str) -> bool:
    return REMOTE_PATTERN.match(source) is not None


def classify(source: str, base_dir: str = "") -> Source:
    if is_remote(source):
        parsed = urlparse(source)
        return Remote(parsed.scheme, parsed.netloc, parsed.path)
    if source.startswith("/"):
        return Absolute(source)
    return Relative(source, base_dir)

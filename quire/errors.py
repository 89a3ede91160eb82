"""
Error definitions for book assembly

Public Book methods report these as falsy return values; they only
propagate when the book is built in strict mode.
"""

from enum import Enum


class ErrorCode(str, Enum):
    """Reason codes carried by every BookError."""

    E_FINALIZED = "E_FINALIZED"
    E_COVER_ALREADY_SET = "E_COVER_ALREADY_SET"
    E_ALREADY_INITIALIZED = "E_ALREADY_INITIALIZED"
    E_DUPLICATE_FILE = "E_DUPLICATE_FILE"
    E_DUPLICATE_ID = "E_DUPLICATE_ID"
    E_RESOURCE_NOT_FOUND = "E_RESOURCE_NOT_FOUND"
    E_INVALID_LANGUAGE = "E_INVALID_LANGUAGE"
    E_INVALID_IDENTIFIER_TYPE = "E_INVALID_IDENTIFIER_TYPE"
    E_MISSING_FIELD = "E_MISSING_FIELD"
    E_INVALID_CONTENT = "E_INVALID_CONTENT"


class BookError(Exception):
    """Base exception for book assembly errors.

    Attributes:
        code: The error code enum value
        message: Human-readable error message
    """

    default_code = ErrorCode.E_INVALID_CONTENT

    def __init__(self, message: str, code: ErrorCode = None):
        self.code = code or self.default_code
        self.message = message
        super().__init__(message)

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class StateError(BookError):
    """Operation not allowed in the book's current state (e.g. after finalize)."""

    default_code = ErrorCode.E_FINALIZED


class UniquenessError(BookError):
    """A file name or manifest id is already taken."""

    default_code = ErrorCode.E_DUPLICATE_FILE


class ResourceNotFoundError(BookError):
    """An external reference could not be resolved.

    `external` is True when the source was a remote URL, which removes the
    reference; local misses are assumed to be generated later.
    """

    default_code = ErrorCode.E_RESOURCE_NOT_FOUND

    def __init__(self, source: str, external: bool = False):
        self.source = source
        self.external = external
        kind = "external" if external else "local"
        super().__init__(f"{kind} resource not found: {source}")


class ValidationError(BookError):
    """Malformed metadata, or a mandatory field missing at finalize time."""

    default_code = ErrorCode.E_MISSING_FIELD

from __future__ import annotations

from contextlib import contextmanager
from enum import Enum
from typing import ClassVar, Iterator


class ErrorKind(str, Enum):
    """Category of an [`S3BinError`][s3bin.errors.S3BinError]."""

    READ = "read"
    WRITE = "write"
    NAMING = "naming"
    FORMAT = "format"
    UNSUPPORTED_VERSION = "unsupported_version"
    STORE = "store"


class S3BinError(Exception):
    """Base error raised by `s3bin` operations.

    Every error carries a `kind` and a context chain, outermost first, naming
    the operation and path or key involved. `str()` renders the chain followed
    by the message, e.g. `get-dir assets: get assets/a.bin.sha1: ...`.

    Attributes:
        kind: The error category
        message: Description of the immediate failure
        context: Operations the error propagated through, outermost first
    """

    kind: ClassVar[ErrorKind]

    def __init__(self, message: str, *context: str) -> None:
        super().__init__(message)
        self.message = message
        self.context = list(context)

    def add_context(self, context: str) -> S3BinError:
        self.context.insert(0, context)
        return self

    def __str__(self) -> str:
        return ": ".join([*self.context, self.message])


class ReadError(S3BinError):
    kind = ErrorKind.READ


class WriteError(S3BinError):
    kind = ErrorKind.WRITE


class NamingError(S3BinError):
    kind = ErrorKind.NAMING


class FormatError(S3BinError):
    kind = ErrorKind.FORMAT


class UnsupportedVersionError(S3BinError):
    kind = ErrorKind.UNSUPPORTED_VERSION

    def __init__(self, version: object, *context: str) -> None:
        super().__init__(f"unsupported envelope version {version!r}", *context)
        self.version = version


class StoreError(S3BinError):
    """Object store request failed.

    Attributes:
        not_found: `True` if the requested key does not exist in the store
    """

    kind = ErrorKind.STORE

    def __init__(self, message: str, *context: str, not_found: bool = False) -> None:
        super().__init__(message, *context)
        self.not_found = not_found


@contextmanager
def error_context(context: str) -> Iterator[None]:
    """Prepend `context` to any `S3BinError` raised inside the block."""
    try:
        yield
    except S3BinError as exc:
        exc.add_context(context)
        raise

"""Envelope codec.

An envelope is the blob stored in the object store for a single file. It is a
gzip-compressed tar archive holding exactly two entries, in order:

1. `header`: compact JSON `{"version":1}`
2. `data`: the raw file bytes, its tar mode set to the file's permission bits

Readers must validate the header before touching the data entry, and reject
any version other than [`ENVELOPE_VERSION`][s3bin.envelope.ENVELOPE_VERSION].
"""

from __future__ import annotations

import gzip
import io
import json
import stat
import tarfile
import zlib
from dataclasses import dataclass
from typing import IO

from s3bin.errors import FormatError, UnsupportedVersionError

ENVELOPE_VERSION = 1

HEADER_ENTRY = "header"
DATA_ENTRY = "data"
HEADER_MODE = 0o600

_ARCHIVE_ERRORS = (tarfile.TarError, OSError, EOFError, zlib.error)


@dataclass(frozen=True)
class Header:
    version: int = ENVELOPE_VERSION

    def to_json(self) -> bytes:
        return json.dumps({"version": self.version}, separators=(",", ":")).encode()

    @classmethod
    def from_json(cls, raw: bytes) -> Header:
        """Parse and validate a serialized header.

        Raises:
            FormatError: If `raw` is not a JSON object.
            UnsupportedVersionError: If the version is not `ENVELOPE_VERSION`.
        """
        try:
            fields = json.loads(raw)
        except ValueError as exc:
            raise FormatError("envelope header is not valid JSON") from exc

        if not isinstance(fields, dict):
            raise FormatError("envelope header is not a JSON object")

        version = fields.get("version")
        # bool is an int subclass, and True == 1
        if type(version) is not int or version != ENVELOPE_VERSION:
            raise UnsupportedVersionError(version)

        return cls(version)


@dataclass(frozen=True)
class Envelope:
    """Decoded envelope contents.

    Attributes:
        header: The validated envelope header
        payload: Raw file bytes
        mode: Permission bits to restore on the file
    """

    header: Header
    payload: bytes
    mode: int


def pack(
    header: Header,
    payload: bytes | IO[bytes],
    mode: int,
    size: int | None = None,
) -> bytes:
    """Frame a file's content and permission bits into an envelope blob.

    Identical arguments always produce byte-identical blobs, the gzip stream
    carries no timestamp or file name.

    Parameters:
        header: Envelope header to write first
        payload: File content, either as bytes or a binary file object
        mode: Permission bits of the file, only the `S_IMODE` part is kept
        size: Exact number of bytes to stream from `payload`. Required when
            `payload` is a file object, ignored for bytes.

    Returns:
        The compressed envelope blob

    Raises:
        OSError: If `payload` is a file object with fewer than `size` bytes.
    """
    if isinstance(payload, bytes):
        size = len(payload)
        payload = io.BytesIO(payload)
    elif size is None:
        raise ValueError("size is required when payload is a file object")

    header_bytes = header.to_json()

    buffer = io.BytesIO()
    with gzip.GzipFile(fileobj=buffer, mode="wb", mtime=0) as gzip_file:
        with tarfile.open(
            fileobj=gzip_file, mode="w", format=tarfile.PAX_FORMAT
        ) as tar:
            header_info = tarfile.TarInfo(HEADER_ENTRY)
            header_info.mode = HEADER_MODE
            header_info.size = len(header_bytes)
            tar.addfile(header_info, io.BytesIO(header_bytes))

            data_info = tarfile.TarInfo(DATA_ENTRY)
            data_info.mode = stat.S_IMODE(mode)
            data_info.size = size
            tar.addfile(data_info, payload)

    return buffer.getvalue()


def unpack(blob: bytes) -> Envelope:
    """Decode an envelope blob.

    Raises:
        FormatError: If the blob is not a compressed tar archive, or its
            first two entries are not `header` then `data`.
        UnsupportedVersionError: If the header version is not supported.
    """
    try:
        tar = tarfile.open(fileobj=io.BytesIO(blob), mode="r:gz")
    except _ARCHIVE_ERRORS as exc:
        raise FormatError("envelope is not a gzip-compressed tar archive") from exc

    with tar:
        header_info = _next_entry(tar, HEADER_ENTRY)
        header = Header.from_json(_read_entry(tar, header_info))

        data_info = _next_entry(tar, DATA_ENTRY)
        payload = _read_entry(tar, data_info)

    return Envelope(header, payload, stat.S_IMODE(data_info.mode))


def _next_entry(tar: tarfile.TarFile, name: str) -> tarfile.TarInfo:
    try:
        info = tar.next()
    except _ARCHIVE_ERRORS as exc:
        raise FormatError(f"failed to read envelope entry {name!r}") from exc

    if info is None:
        raise FormatError(f"envelope does not have {name!r}")
    if info.name != name:
        raise FormatError(f"expected envelope entry {name!r}, found {info.name!r}")

    return info


def _read_entry(tar: tarfile.TarFile, info: tarfile.TarInfo) -> bytes:
    try:
        entry = tar.extractfile(info)
        if entry is None:
            raise FormatError(f"envelope entry {info.name!r} is not a regular file")
        with entry:
            return entry.read()
    except _ARCHIVE_ERRORS as exc:
        raise FormatError(f"failed to read envelope entry {info.name!r}") from exc

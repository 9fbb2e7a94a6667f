# -*- coding: utf-8 -*-
"""s3bin keeps large binaries out of a source tree. What does that mean?
Simply, that a binary is uploaded to an S3 bucket under a key derived from its
SHA-1 hash, and only a small `<file>.sha1` pointer file is committed next to
where the binary used to be.

Typical use cases for this kind of system are ones where:

- Build inputs are too large to commit (e.g. toolchains, test fixtures).
- Files rarely change and are identified by content (e.g. firmware images).
- A checkout should fetch only what it is missing or what changed.
"""

from .errors import (
    FormatError,
    NamingError,
    ReadError,
    S3BinError,
    StoreError,
    UnsupportedVersionError,
    WriteError,
)
from .object_store import MemoryObjectStore, ObjectStore, S3ObjectStore
from .pointer import PointerFile
from .s3bin import BinCache, GetResult

__all__ = (
    "BinCache",
    "GetResult",
    "PointerFile",
    "ObjectStore",
    "S3ObjectStore",
    "MemoryObjectStore",
    "S3BinError",
    "ReadError",
    "WriteError",
    "NamingError",
    "FormatError",
    "UnsupportedVersionError",
    "StoreError",
)

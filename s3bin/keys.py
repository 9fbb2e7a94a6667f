from __future__ import annotations

import string

from s3bin.errors import FormatError

from ._utils import shard

CHECKSUM_LENGTH = 40

# Part of the addressing contract with the object store. Changing these
# orphans every object already uploaded.
PREFIX_DEPTH = 5
PREFIX_WIDTH = 4
KEY_SEPARATOR = "/"

_HEXDIGITS = frozenset(string.hexdigits)


def normalize_checksum(text: str) -> str:
    """Strip surrounding whitespace and lowercase a hex digest."""
    return text.strip().lower()


def is_checksum(text: str) -> bool:
    """Return `True` if `text` is exactly 40 hex characters."""
    return len(text) == CHECKSUM_LENGTH and all(c in _HEXDIGITS for c in text)


def derive_key(checksum: str) -> str:
    """Build the object store key for a given checksum.

    The first 20 hex characters are split into 5 segments of 4, e.g.
    `aaf4c61ddcc5e8a2dabede0f3b482cd9aea9434d` becomes
    `aaf4/c61d/dcc5/e8a2/dabe`. No normalization is performed, callers are
    expected to pass a normalized checksum.

    Raises:
        FormatError: If `checksum` is not exactly 40 hex characters.
    """
    if not is_checksum(checksum):
        raise FormatError(f"malformed checksum {checksum!r}")

    return KEY_SEPARATOR.join(shard(checksum, PREFIX_DEPTH, PREFIX_WIDTH))

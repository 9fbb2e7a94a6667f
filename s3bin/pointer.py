from __future__ import annotations

import os
from dataclasses import dataclass

import anyio

from s3bin.errors import FormatError, NamingError, ReadError, WriteError
from s3bin.keys import is_checksum, normalize_checksum

POINTER_SUFFIX = ".sha1"


@dataclass(frozen=True)
class PointerFile:
    """Side-car file recording the checksum of the file it sits next to.

    Attributes:
        path: Path of the pointer file itself, always ending in `.sha1`
        checksum: Lowercase hexdigest of the target file's intended contents
    """

    path: str
    checksum: str

    def __post_init__(self):
        if not self.path.endswith(POINTER_SUFFIX):
            raise NamingError(f"{self.path!r} does not have {POINTER_SUFFIX} extension")
        if not is_checksum(self.checksum) or self.checksum != self.checksum.lower():
            raise FormatError(f"invalid checksum {self.checksum!r}")

    @property
    def target_path(self) -> str:
        """Path of the file this pointer resolves to."""
        return target_path_for(self.path)

    @classmethod
    def for_target(cls, target: str | os.PathLike[str], checksum: str) -> PointerFile:
        return cls(os.fspath(target) + POINTER_SUFFIX, checksum)

    async def write(self) -> None:
        """Create or overwrite the pointer file on disk.

        Raises:
            WriteError: If the file cannot be written.
        """
        try:
            await anyio.Path(self.path).write_text(self.checksum, encoding="utf-8")
        except OSError as exc:
            raise WriteError(f"failed to create pointer file {self.path!r}") from exc


def target_path_for(pointer_path: str | os.PathLike[str]) -> str:
    """Strip the pointer suffix from `pointer_path`.

    Raises:
        NamingError: If `pointer_path` does not end in `.sha1`.
    """
    path = os.fspath(pointer_path)
    if not path.endswith(POINTER_SUFFIX):
        raise NamingError(f"{path!r} does not have {POINTER_SUFFIX} extension")
    return path[: -len(POINTER_SUFFIX)]


async def read_pointer(pointer_path: str | os.PathLike[str]) -> PointerFile:
    """Read and parse a pointer file.

    Surrounding whitespace is ignored and the checksum is lowercased.

    Raises:
        NamingError: If `pointer_path` does not end in `.sha1`.
        ReadError: If the file cannot be read.
        FormatError: If the content is not a 40 character hex checksum.
    """
    path = os.fspath(pointer_path)
    target_path_for(path)

    try:
        raw = await anyio.Path(path).read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        raise FormatError(f"pointer file {path!r} is not valid UTF-8") from exc
    except OSError as exc:
        raise ReadError(f"failed to read pointer file {path!r}") from exc

    checksum = normalize_checksum(raw)
    if not is_checksum(checksum):
        raise FormatError(f"pointer file {path!r} is invalid")

    return PointerFile(path, checksum)

from __future__ import annotations

import hashlib
import logging
import os
import stat
from enum import Enum
from typing import AsyncGenerator

import anyio

from s3bin import envelope
from s3bin.errors import FormatError, ReadError, WriteError, error_context
from s3bin.keys import derive_key
from s3bin.object_store import ObjectStore
from s3bin.pointer import POINTER_SUFFIX, PointerFile, read_pointer, target_path_for

from ._utils import (
    AsyncFileReader,
    ProgressAsyncFileReader,
    ProgressCallback,
    find_files_with_suffix,
)

PathLikeArg = str | os.PathLike[str]

logger = logging.getLogger(__name__)


class GetResult(str, Enum):
    """Outcome of [`BinCache.get()`][s3bin.s3bin.BinCache.get]"""

    UP_TO_DATE = "UP_TO_DATE"
    UPDATED = "UPDATED"
    DOWNLOADED = "DOWNLOADED"


class BinCache:
    """Uploads files to, and restores files from, a content-addressed object store.

    `put()` stores a file under a key derived from its SHA-1 and leaves a
    `<file>.sha1` pointer file next to it. `get()` turns a pointer file back
    into the file, and only contacts the store when the local copy is missing
    or out of date.

    Operations run their steps strictly in sequence. Two concurrent `put()`
    calls on the same path are not guarded against.

    All errors raised are subclasses of [`S3BinError`][s3bin.errors.S3BinError]
    carrying the operation and path they came from.

    Parameters:
        store: The object store holding the envelopes
    """

    def __init__(self, store: ObjectStore):
        self._store = store

    @property
    def store(self) -> ObjectStore:
        return self._store

    async def put(
        self,
        pathlike: PathLikeArg,
        progress_callback: ProgressCallback | None = None,
    ) -> PointerFile:
        """Upload the file at `pathlike` and write its pointer file.

        Repeating a put of unchanged content uploads identical bytes to the
        same key and rewrites an identical pointer file.

        Parameters:
            pathlike: Path to the file to upload
            progress_callback: optional callback to receive checksum progress

        Returns:
            PointerFile: The pointer file written next to `pathlike`.
        """
        source_path = anyio.Path(pathlike)

        with error_context(f"put {source_path}"):
            try:
                checksum = await self.compute_checksum(
                    ProgressAsyncFileReader(source_path, progress_callback)
                )
                blob = await anyio.to_thread.run_sync(_pack_file, str(source_path))
            except OSError as exc:
                raise ReadError(f"failed to read {str(source_path)!r}") from exc

            key = derive_key(checksum)
            logger.info("Uploading %s to %s", source_path, key)
            await self._store.put(key, blob)

            pointer = PointerFile.for_target(str(source_path), checksum)
            await pointer.write()

        return pointer

    async def get(self, pathlike: PathLikeArg, dry_run: bool = False) -> GetResult:
        """Restore the file referenced by the pointer file at `pathlike`.

        The file is fetched only if it is missing or its checksum differs from
        the pointer's. A fetched file is written in place and its permission
        bits restored. Content whose checksum does not match the pointer's is
        rejected before anything is written. If writing succeeds but restoring
        the mode fails, the file is left with default permissions.

        Parameters:
            pathlike: Path to a pointer file, must end in `.sha1`
            dry_run: Return what would be done without fetching or writing

        Returns:
            GetResult: Whether the file was already up to date, updated or
            downloaded.
        """
        pointer_path = os.fspath(pathlike)

        with error_context(f"get {pointer_path}"):
            target_path = anyio.Path(target_path_for(pointer_path))
            pointer = await read_pointer(pointer_path)

            result = await self._local_state(target_path, pointer.checksum)
            if result is GetResult.UP_TO_DATE:
                logger.info("%s exists and is up-to-date", target_path)
                return result

            if result is GetResult.UPDATED:
                logger.info("Updating %s", target_path)
            else:
                logger.info("Downloading %s", target_path)

            if dry_run:
                return result

            blob = await self._store.get(derive_key(pointer.checksum))
            unpacked = envelope.unpack(blob)
            _verify_payload(unpacked.payload, pointer.checksum)
            await _restore_file(target_path, unpacked)

        return result

    async def get_dir(
        self, pathlike: PathLikeArg, dry_run: bool = False
    ) -> AsyncGenerator[tuple[str, GetResult], None]:
        """Get every pointer file found under a directory tree.

        Pointer files are processed one at a time. The first error, whether
        from the directory walk or from a single `get()`, stops the traversal
        and propagates. Files without the `.sha1` extension are skipped.

        Parameters:
            pathlike: Root of the directory tree
            dry_run: Passed on to each `get()`

        Yields:
            (pointer_path, GetResult): For each pointer file
        """
        root = anyio.Path(pathlike)

        with error_context(f"get-dir {root}"):
            try:
                async for pointer_path in find_files_with_suffix(root, POINTER_SUFFIX):
                    result = await self.get(pointer_path, dry_run=dry_run)
                    yield (str(pointer_path), result)
            except OSError as exc:
                # get() never leaks OSError, so this is the walk failing
                raise ReadError(f"failed to walk {str(root)!r}") from exc

    async def compute_checksum(
        self, file: AsyncFileReader | PathLikeArg | anyio.Path
    ) -> str:
        """Compute the lowercase SHA-1 hexdigest of a file.

        file: File to checksum
        """

        if not isinstance(file, AsyncFileReader):
            file = AsyncFileReader(anyio.Path(file))

        blksize = 4096
        try:
            blksize = (await file.source_path.stat()).st_blksize or blksize
        except OSError:
            # the read below reports the real error, if any
            pass

        # block-aligned size closest to 1MiB
        chunk_size = max(1024 * 1024 // blksize, 1) * blksize

        hasher = hashlib.sha1(usedforsecurity=False)
        async for data in file.read(chunk_size):
            hasher.update(data)

        return hasher.hexdigest()

    async def _local_state(self, target_path: anyio.Path, checksum: str) -> GetResult:
        try:
            existing = await self.compute_checksum(target_path)
        except FileNotFoundError:
            return GetResult.DOWNLOADED
        except OSError as exc:
            raise ReadError(f"failed to read {str(target_path)!r}") from exc

        if existing == checksum:
            return GetResult.UP_TO_DATE
        return GetResult.UPDATED


def _pack_file(path: str) -> bytes:
    # mode and size come from the open descriptor so they describe the bytes read
    with open(path, "rb") as file:
        file_stat = os.fstat(file.fileno())
        return envelope.pack(
            envelope.Header(),
            file,
            stat.S_IMODE(file_stat.st_mode),
            file_stat.st_size,
        )


def _verify_payload(payload: bytes, checksum: str) -> None:
    actual = hashlib.sha1(payload, usedforsecurity=False).hexdigest()
    if actual != checksum:
        raise FormatError(f"downloaded content has checksum {actual}, expected {checksum}")


async def _restore_file(target_path: anyio.Path, unpacked: envelope.Envelope) -> None:
    try:
        await target_path.write_bytes(unpacked.payload)
    except OSError as exc:
        raise WriteError(f"failed to create target file {str(target_path)!r}") from exc

    try:
        await target_path.chmod(unpacked.mode)
    except OSError as exc:
        raise WriteError(f"failed to set mode of {str(target_path)!r}") from exc

from __future__ import annotations

from typing import Any, AsyncGenerator, Callable

import anyio


def shard(checksum: str, prefix_depth: int, prefix_width: int) -> list[str]:
    # This creates a list of `prefix_depth` number of tokens with width
    # `prefix_width` from the first part of the checksum. The remainder is
    # dropped.
    if len(checksum) < prefix_depth * prefix_width:
        raise ValueError("checksum must be at least prefix_depth * prefix_width")

    return [
        checksum[i * prefix_width : prefix_width * (i + 1)]
        for i in range(prefix_depth)
    ]


async def find_files_with_suffix(
    root: anyio.Path, suffix: str
) -> AsyncGenerator[anyio.Path, None]:
    """Yield every file under `root` whose name ends in `suffix`.

    Walks with an explicit worklist of directories rather than recursion.
    Entries of a directory are visited in sorted order and its files are
    yielded before any of its subdirectories are entered. Symbolic links to
    directories are not followed.
    """
    pending = [root]
    while pending:
        directory = pending.pop()
        subdirs = []
        entries = sorted(
            [entry async for entry in directory.iterdir()], key=lambda e: e.name
        )
        for entry in entries:
            if await entry.is_dir():
                if not await entry.is_symlink():
                    subdirs.append(entry)
            elif entry.name.endswith(suffix) and await entry.is_file():
                yield entry
        # reversed so that pop() visits subdirectories in sorted order
        pending.extend(reversed(subdirs))


class AsyncFileReader:
    def __init__(self, source: anyio.Path | AsyncFileReader) -> None:
        self._source = source

    @property
    def source_path(self) -> anyio.Path:
        if isinstance(self._source, anyio.Path):
            return self._source
        return self._source.source_path

    async def read(self, size: int = -1) -> AsyncGenerator[bytes, None]:
        if isinstance(self._source, anyio.Path):
            async with await self.source_path.open("rb") as file:
                while True:
                    data = await file.read(size)
                    if not data:
                        break
                    yield data
        else:
            async for data in self._source.read(size):
                yield data


ProgressCallback = Callable[[str, tuple[int, int | None]], Any]


class ProgressAsyncFileReader(AsyncFileReader):
    def __init__(
        self,
        source: anyio.Path | AsyncFileReader,
        progress_callback: ProgressCallback | None,
    ):
        super().__init__(source)
        self._progress_callback = progress_callback

    async def read(self, size: int = -1) -> AsyncGenerator[bytes, None]:
        total_bytes = None

        if self._progress_callback is not None:
            try:
                stat = await self.source_path.stat()
                total_bytes = stat.st_size
            except OSError:
                # progress reporting must not fail the read itself
                pass

        curr_bytes = 0
        async for data in super().read(size):
            if self._progress_callback is not None:
                curr_bytes += len(data)
                self._progress_callback(
                    str(self.source_path), (curr_bytes, total_bytes)
                )
            yield data

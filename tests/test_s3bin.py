"""Tests for BinCache.put/get (s3bin/s3bin.py)."""
from __future__ import annotations

import os
import stat
from pathlib import Path
from unittest.mock import AsyncMock, patch

import anyio
import pytest

from s3bin import BinCache, GetResult, MemoryObjectStore
from s3bin.envelope import Envelope, Header, pack, unpack
from s3bin.errors import (
    ErrorKind,
    FormatError,
    NamingError,
    ReadError,
    StoreError,
    UnsupportedVersionError,
    WriteError,
)
from s3bin.keys import derive_key

HELLO_SHA1 = "c65f99f8c5376adadddc46d5cbcf5762f9e55eb7"
HELLO_KEY = "c65f/99f8/c537/6ada/dddc"
EMPTY_SHA1 = "da39a3ee5e6b4b0d3255bfef95601890afd80709"


def _mode(path: Path) -> int:
    return stat.S_IMODE(path.stat().st_mode)


@pytest.fixture
def app_bin(tmp_path: Path) -> Path:
    path = tmp_path / "app.bin"
    path.write_bytes(b"HELLO")
    path.chmod(0o755)
    return path


class TestComputeChecksum:
    @pytest.mark.anyio
    async def test_sha1_of_file(self, cache: BinCache, app_bin: Path) -> None:
        assert await cache.compute_checksum(app_bin) == HELLO_SHA1

    @pytest.mark.anyio
    async def test_empty_file(self, cache: BinCache, tmp_path: Path) -> None:
        empty = tmp_path / "empty"
        empty.write_bytes(b"")
        assert await cache.compute_checksum(str(empty)) == EMPTY_SHA1

    @pytest.mark.anyio
    async def test_large_file_is_fully_read(self, cache: BinCache, tmp_path: Path) -> None:
        import hashlib

        content = os.urandom(3 * 1024 * 1024 + 17)
        big = tmp_path / "big"
        big.write_bytes(content)
        assert await cache.compute_checksum(big) == hashlib.sha1(content).hexdigest()

    @pytest.mark.anyio
    async def test_missing_file(self, cache: BinCache, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            await cache.compute_checksum(tmp_path / "missing")


class TestPut:
    @pytest.mark.anyio
    async def test_uploads_envelope_and_writes_pointer(
        self, cache: BinCache, store: MemoryObjectStore, app_bin: Path
    ) -> None:
        pointer = await cache.put(app_bin)

        assert pointer.path == f"{app_bin}.sha1"
        assert pointer.checksum == HELLO_SHA1
        assert pointer.target_path == str(app_bin)
        assert Path(pointer.path).read_text() == HELLO_SHA1

        assert store.puts == [HELLO_KEY]
        assert unpack(store.objects[HELLO_KEY]) == Envelope(Header(1), b"HELLO", 0o755)

    @pytest.mark.anyio
    async def test_leaves_original_untouched(
        self, cache: BinCache, app_bin: Path
    ) -> None:
        await cache.put(app_bin)
        assert app_bin.read_bytes() == b"HELLO"
        assert _mode(app_bin) == 0o755

    @pytest.mark.anyio
    async def test_is_idempotent(
        self, cache: BinCache, store: MemoryObjectStore, app_bin: Path
    ) -> None:
        await cache.put(app_bin)
        first_blob = store.objects[HELLO_KEY]
        await cache.put(app_bin)

        assert store.puts == [HELLO_KEY, HELLO_KEY]
        assert store.objects[HELLO_KEY] == first_blob
        assert Path(f"{app_bin}.sha1").read_text() == HELLO_SHA1

    @pytest.mark.anyio
    async def test_overwrites_stale_pointer(
        self, cache: BinCache, app_bin: Path
    ) -> None:
        Path(f"{app_bin}.sha1").write_text("0" * 40 + "\n")
        await cache.put(app_bin)
        assert Path(f"{app_bin}.sha1").read_text() == HELLO_SHA1

    @pytest.mark.anyio
    async def test_empty_file(
        self, cache: BinCache, store: MemoryObjectStore, tmp_path: Path
    ) -> None:
        empty = tmp_path / "empty"
        empty.write_bytes(b"")
        empty.chmod(0o600)

        pointer = await cache.put(empty)

        assert pointer.checksum == EMPTY_SHA1
        assert unpack(store.objects[derive_key(EMPTY_SHA1)]).payload == b""

    @pytest.mark.anyio
    async def test_reports_progress(self, cache: BinCache, app_bin: Path) -> None:
        progress: list[tuple[str, tuple[int, int | None]]] = []
        await cache.put(app_bin, progress_callback=lambda p, c: progress.append((p, c)))
        assert progress[-1] == (str(app_bin), (5, 5))

    @pytest.mark.anyio
    async def test_missing_file(
        self, cache: BinCache, store: MemoryObjectStore, tmp_path: Path
    ) -> None:
        missing = tmp_path / "missing.bin"
        with pytest.raises(ReadError) as exc_info:
            await cache.put(missing)

        assert exc_info.value.kind is ErrorKind.READ
        assert exc_info.value.context == [f"put {missing}"]
        assert isinstance(exc_info.value.__cause__, FileNotFoundError)
        assert store.puts == []
        assert not Path(f"{missing}.sha1").exists()

    @pytest.mark.anyio
    async def test_directory_is_not_a_file(self, cache: BinCache, tmp_path: Path) -> None:
        with pytest.raises(ReadError):
            await cache.put(tmp_path)

    @pytest.mark.anyio
    async def test_store_failure_writes_no_pointer(self, app_bin: Path) -> None:
        class FailingStore(MemoryObjectStore):
            async def put(self, key: str, body: bytes) -> None:
                raise StoreError("access denied")

        with pytest.raises(StoreError) as exc_info:
            await BinCache(FailingStore()).put(app_bin)

        assert str(exc_info.value) == f"put {app_bin}: access denied"
        assert not Path(f"{app_bin}.sha1").exists()


class TestGet:
    @pytest.mark.anyio
    async def test_restores_deleted_file(
        self, cache: BinCache, store: MemoryObjectStore, app_bin: Path
    ) -> None:
        pointer = await cache.put(app_bin)
        app_bin.unlink()

        assert await cache.get(pointer.path) is GetResult.DOWNLOADED

        assert app_bin.read_bytes() == b"HELLO"
        assert _mode(app_bin) == 0o755
        assert store.gets == [HELLO_KEY]

    @pytest.mark.anyio
    async def test_up_to_date_never_contacts_store(
        self, cache: BinCache, store: MemoryObjectStore, app_bin: Path
    ) -> None:
        pointer = await cache.put(app_bin)

        assert await cache.get(pointer.path) is GetResult.UP_TO_DATE
        assert store.gets == []

    @pytest.mark.anyio
    async def test_up_to_date_with_empty_store(
        self, cache: BinCache, store: MemoryObjectStore, app_bin: Path
    ) -> None:
        Path(f"{app_bin}.sha1").write_text(f"  {HELLO_SHA1.upper()}\n")

        assert await cache.get(Path(f"{app_bin}.sha1")) is GetResult.UP_TO_DATE
        assert store.gets == []

    @pytest.mark.anyio
    async def test_overwrites_drifted_file(
        self, cache: BinCache, store: MemoryObjectStore, app_bin: Path
    ) -> None:
        pointer = await cache.put(app_bin)
        app_bin.write_bytes(b"WORLD, longer than before")
        app_bin.chmod(0o600)

        assert await cache.get(pointer.path) is GetResult.UPDATED

        assert app_bin.read_bytes() == b"HELLO"
        assert _mode(app_bin) == 0o755
        assert store.gets == [HELLO_KEY]

    @pytest.mark.anyio
    async def test_fresh_checkout(self, tmp_path: Path, app_bin: Path) -> None:
        store = MemoryObjectStore()
        await BinCache(store).put(app_bin)

        checkout = tmp_path / "checkout"
        checkout.mkdir()
        (checkout / "app.bin.sha1").write_text(HELLO_SHA1)

        other_machine = BinCache(MemoryObjectStore(store.objects))
        assert await other_machine.get(checkout / "app.bin.sha1") is GetResult.DOWNLOADED
        assert (checkout / "app.bin").read_bytes() == b"HELLO"
        assert _mode(checkout / "app.bin") == 0o755

    @pytest.mark.anyio
    async def test_empty_payload(self, cache: BinCache, tmp_path: Path) -> None:
        empty = tmp_path / "empty"
        empty.write_bytes(b"")
        empty.chmod(0o640)
        pointer = await cache.put(empty)
        empty.unlink()

        assert await cache.get(pointer.path) is GetResult.DOWNLOADED
        assert empty.read_bytes() == b""
        assert _mode(empty) == 0o640

    @pytest.mark.anyio
    async def test_dry_run_does_not_fetch(
        self, cache: BinCache, store: MemoryObjectStore, app_bin: Path
    ) -> None:
        pointer = await cache.put(app_bin)
        app_bin.unlink()

        assert await cache.get(pointer.path, dry_run=True) is GetResult.DOWNLOADED
        assert store.gets == []
        assert not app_bin.exists()

    @pytest.mark.anyio
    async def test_requires_pointer_suffix(
        self, cache: BinCache, store: MemoryObjectStore, tmp_path: Path
    ) -> None:
        # the path does not exist, so any filesystem access would fail differently
        with pytest.raises(NamingError):
            await cache.get(tmp_path / "missing" / "app.bin")

        assert store.gets == []

    @pytest.mark.anyio
    async def test_missing_pointer_file(self, cache: BinCache, tmp_path: Path) -> None:
        with pytest.raises(ReadError):
            await cache.get(tmp_path / "app.bin.sha1")

    @pytest.mark.parametrize(
        "content", ["", "not a hash", HELLO_SHA1[:-1], HELLO_SHA1 + "00", "z" * 40]
    )
    @pytest.mark.anyio
    async def test_malformed_pointer(
        self, cache: BinCache, store: MemoryObjectStore, tmp_path: Path, content: str
    ) -> None:
        pointer_path = tmp_path / "app.bin.sha1"
        pointer_path.write_text(content)

        with pytest.raises(FormatError) as exc_info:
            await cache.get(pointer_path)

        assert exc_info.value.context == [f"get {pointer_path}"]
        assert store.gets == []

    @pytest.mark.anyio
    async def test_object_not_found(
        self, cache: BinCache, tmp_path: Path
    ) -> None:
        (tmp_path / "app.bin.sha1").write_text(HELLO_SHA1)

        with pytest.raises(StoreError) as exc_info:
            await cache.get(tmp_path / "app.bin.sha1")

        assert exc_info.value.not_found
        assert not (tmp_path / "app.bin").exists()

    @pytest.mark.anyio
    async def test_unsupported_envelope_version(self, tmp_path: Path) -> None:
        blob = pack(Header(version=2), b"HELLO", 0o755)
        cache = BinCache(MemoryObjectStore({HELLO_KEY: blob}))
        (tmp_path / "app.bin.sha1").write_text(HELLO_SHA1)

        with pytest.raises(UnsupportedVersionError):
            await cache.get(tmp_path / "app.bin.sha1")

        assert not (tmp_path / "app.bin").exists()

    @pytest.mark.anyio
    async def test_corrupt_envelope(self, tmp_path: Path) -> None:
        cache = BinCache(MemoryObjectStore({HELLO_KEY: b"garbage"}))
        (tmp_path / "app.bin.sha1").write_text(HELLO_SHA1)

        with pytest.raises(FormatError):
            await cache.get(tmp_path / "app.bin.sha1")

    @pytest.mark.anyio
    async def test_target_is_directory(self, cache: BinCache, tmp_path: Path) -> None:
        (tmp_path / "app.bin").mkdir()
        (tmp_path / "app.bin.sha1").write_text(HELLO_SHA1)

        with pytest.raises(ReadError):
            await cache.get(tmp_path / "app.bin.sha1")

    @pytest.mark.anyio
    async def test_rejects_content_not_matching_pointer(self, tmp_path: Path) -> None:
        cache = BinCache(MemoryObjectStore({HELLO_KEY: pack(Header(), b"EVIL!", 0o755)}))
        (tmp_path / "app.bin.sha1").write_text(HELLO_SHA1)

        with pytest.raises(FormatError, match="checksum"):
            await cache.get(tmp_path / "app.bin.sha1")

        assert not (tmp_path / "app.bin").exists()

    @pytest.mark.anyio
    async def test_mismatching_content_leaves_drifted_file(self, tmp_path: Path) -> None:
        cache = BinCache(MemoryObjectStore({HELLO_KEY: pack(Header(), b"EVIL!", 0o755)}))
        (tmp_path / "app.bin.sha1").write_text(HELLO_SHA1)
        (tmp_path / "app.bin").write_bytes(b"local edits")

        with pytest.raises(FormatError):
            await cache.get(tmp_path / "app.bin.sha1")

        assert (tmp_path / "app.bin").read_bytes() == b"local edits"


class TestWriteFailures:
    @pytest.mark.anyio
    async def test_get_write_failure(
        self, cache: BinCache, app_bin: Path
    ) -> None:
        pointer = await cache.put(app_bin)
        app_bin.unlink()

        with patch.object(
            anyio.Path, "write_bytes", new=AsyncMock(side_effect=OSError("disk full"))
        ):
            with pytest.raises(WriteError) as exc_info:
                await cache.get(pointer.path)

        assert exc_info.value.context == [f"get {pointer.path}"]
        assert isinstance(exc_info.value.__cause__, OSError)
        assert not app_bin.exists()

    @pytest.mark.anyio
    async def test_get_chmod_failure_leaves_payload_with_default_mode(
        self, cache: BinCache, app_bin: Path
    ) -> None:
        pointer = await cache.put(app_bin)
        app_bin.unlink()

        with patch.object(
            anyio.Path, "chmod", new=AsyncMock(side_effect=PermissionError("denied"))
        ):
            with pytest.raises(WriteError, match="failed to set mode") as exc_info:
                await cache.get(pointer.path)

        assert exc_info.value.context == [f"get {pointer.path}"]
        assert app_bin.read_bytes() == b"HELLO"
        # newly created files never get execute bits by default
        assert _mode(app_bin) != 0o755

    @pytest.mark.anyio
    async def test_put_pointer_write_failure(
        self, cache: BinCache, store: MemoryObjectStore, app_bin: Path
    ) -> None:
        with patch.object(
            anyio.Path, "write_text", new=AsyncMock(side_effect=OSError("read-only fs"))
        ):
            with pytest.raises(WriteError) as exc_info:
                await cache.put(app_bin)

        assert exc_info.value.context == [f"put {app_bin}"]
        assert store.puts == [HELLO_KEY]
        assert not Path(f"{app_bin}.sha1").exists()

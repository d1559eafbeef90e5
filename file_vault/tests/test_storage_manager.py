import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from file_vault.app.exceptions import BlobStorageError, MalformedRequest, NotFound, PersistenceFailed, QuotaExceeded
from file_vault.app.services.storage_manager import StorageManager, accounted_size, file_type


def stored_blobs(manager):
    return sorted(path.name for path in manager.blob_store.upload_path.iterdir())


async def read_all(download):
    return b"".join([chunk async for chunk in download.chunks])


@pytest.mark.parametrize("name, expected", [
    ("x.bin", "bin"),
    ("archive.tar.gz", "gz"),
    ("README", "unknown"),
    ("trailing.", "unknown"),
    ("", "unknown"),
])
def test_file_type(name, expected):
    assert file_type(name) == expected


@pytest.mark.asyncio
async def test_upload_creates_record_and_blob(storage_manager, multipart):
    record = await storage_manager.upload(*multipart("x.bin", b"0123456789"))

    assert record.name == "x.bin"
    assert record.type == "bin"
    assert record.size == "10 Bytes"
    assert record.path.startswith("uploads/")
    assert record.path.endswith("-x.bin")
    assert storage_manager.blob_store.full_path(record.path).read_bytes() == b"0123456789"
    assert await storage_manager.list_files() == [record]


@pytest.mark.asyncio
async def test_malformed_upload_writes_nothing(storage_manager):
    with pytest.raises(MalformedRequest):
        await storage_manager.upload(b"garbage", "text/plain")

    assert stored_blobs(storage_manager) == []
    assert await storage_manager.list_files() == []


@pytest.mark.asyncio
async def test_quota_rejection_leaves_no_record_and_no_blob(vault_dir, multipart):
    manager = StorageManager(vault_dir, capacity_bytes=15)
    await manager.initialize()

    first = await manager.upload(*multipart("a.txt", b"x" * 10))
    blobs_before = stored_blobs(manager)

    with pytest.raises(QuotaExceeded) as exc_info:
        await manager.upload(*multipart("b.txt", b"y" * 6))

    assert exc_info.value.used_bytes == 10
    assert exc_info.value.required_bytes == 6
    assert await manager.list_files() == [first]
    assert stored_blobs(manager) == blobs_before


@pytest.mark.asyncio
async def test_upload_filling_capacity_exactly_is_accepted(vault_dir, multipart):
    manager = StorageManager(vault_dir, capacity_bytes=10)
    await manager.initialize()

    await manager.upload(*multipart("a.txt", b"x" * 10))

    assert await manager.get_total_usage() == 10


@pytest.mark.asyncio
async def test_quota_counts_existing_records(storage_manager, seed_records, multipart):
    seed_records({
        "id": 1, "name": "big.iso", "type": "iso", "size": "25 GB",
        "date": "2024-01-01", "path": "uploads/big.iso",
    })

    with pytest.raises(QuotaExceeded):
        await storage_manager.upload(*multipart("one.txt", b"1"))

    assert stored_blobs(storage_manager) == []


@pytest.mark.asyncio
async def test_upload_persistence_failure_removes_blob(storage_manager, multipart, monkeypatch):
    monkeypatch.setattr(storage_manager.metadata_store, "save", AsyncMock(return_value=False))

    with pytest.raises(PersistenceFailed):
        await storage_manager.upload(*multipart("a.txt", b"data"))

    assert stored_blobs(storage_manager) == []
    assert await storage_manager.list_files() == []


@pytest.mark.asyncio
async def test_concurrent_uploads_are_all_recorded(storage_manager, multipart):
    records = await asyncio.gather(*[
        storage_manager.upload(*multipart(f"file{i}.txt", bytes([i]) * (i + 1)))
        for i in range(8)
    ])

    stored = await storage_manager.list_files()
    assert len(stored) == 8
    assert len({record.id for record in stored}) == 8
    assert {record.id for record in records} == {record.id for record in stored}
    assert len(stored_blobs(storage_manager)) == 8


@pytest.mark.asyncio
async def test_download_is_idempotent(storage_manager, multipart):
    record = await storage_manager.upload(*multipart("data.bin", b"\x00\x01payload\xff"))

    first = await storage_manager.download(record.id)
    second = await storage_manager.download(record.id)

    assert first.length == second.length == 10
    assert await read_all(first) == await read_all(second) == b"\x00\x01payload\xff"
    assert first.record == record


@pytest.mark.asyncio
async def test_download_unknown_id(storage_manager):
    with pytest.raises(NotFound, match="database"):
        await storage_manager.download(12345)


@pytest.mark.asyncio
async def test_download_missing_blob(storage_manager, multipart):
    record = await storage_manager.upload(*multipart("gone.txt", b"bye"))
    storage_manager.blob_store.full_path(record.path).unlink()

    with pytest.raises(NotFound, match="disk"):
        await storage_manager.download(record.id)


@pytest.mark.asyncio
async def test_delete_removes_record_then_blob(storage_manager, multipart):
    record = await storage_manager.upload(*multipart("x.bin", b"0123456789"))

    deleted = await storage_manager.delete(record.id)

    assert deleted == record
    assert await storage_manager.list_files() == []
    assert not storage_manager.blob_store.full_path(record.path).exists()


@pytest.mark.asyncio
async def test_delete_unknown_id(storage_manager):
    with pytest.raises(NotFound):
        await storage_manager.delete(42)


@pytest.mark.asyncio
async def test_delete_persistence_failure_keeps_record_and_blob(storage_manager, multipart, monkeypatch):
    record = await storage_manager.upload(*multipart("keep.txt", b"keep me"))
    monkeypatch.setattr(storage_manager.metadata_store, "save", AsyncMock(return_value=False))

    with pytest.raises(PersistenceFailed):
        await storage_manager.delete(record.id)

    monkeypatch.undo()
    download = await storage_manager.download(record.id)
    assert await read_all(download) == b"keep me"
    assert storage_manager.blob_store.full_path(record.path).exists()


@pytest.mark.asyncio
async def test_delete_succeeds_when_blob_already_gone(storage_manager, multipart):
    record = await storage_manager.upload(*multipart("orphan.txt", b"x"))
    storage_manager.blob_store.full_path(record.path).unlink()

    await storage_manager.delete(record.id)

    assert await storage_manager.list_files() == []


@pytest.mark.asyncio
async def test_storage_info(storage_manager, seed_records):
    seed_records({
        "id": 1, "name": "half.iso", "type": "iso", "size": "12.5 GB",
        "date": "2024-01-01", "path": "uploads/half.iso",
    })

    info = await storage_manager.storage_info()

    assert info.used == "12.50 GB"
    assert info.total == "25 GB"
    assert info.percentage == 50.0


@pytest.mark.asyncio
async def test_initialize_clears_temp_files(vault_dir):
    temp_dir = vault_dir / "temp"
    temp_dir.mkdir(parents=True)
    (temp_dir / "leftover.part").write_bytes(b"partial")

    await StorageManager(vault_dir).initialize()

    assert list(temp_dir.iterdir()) == []


def test_accounted_size_matches_parsed_record_size():
    assert accounted_size(10) == 10
    assert accounted_size(1048575) == 1048576
    assert accounted_size(25 * 1024 ** 3 - 512) == 25 * 1024 ** 3


def test_rounded_up_size_cannot_overflow_real_capacity(tmp_path):
    manager = StorageManager(tmp_path, capacity_bytes=25 * 1024 ** 3)
    assert not manager.check_quota(512, accounted_size(25 * 1024 ** 3 - 512))


@pytest.mark.asyncio
async def test_upload_rounded_up_past_capacity_is_rejected(vault_dir, multipart):
    manager = StorageManager(vault_dir, capacity_bytes=1048576)
    await manager.initialize()
    await manager.upload(*multipart("one.bin", b"x"))

    with pytest.raises(QuotaExceeded) as exc_info:
        await manager.upload(*multipart("almost.bin", b"y" * 1048575))

    assert exc_info.value.required_bytes == 1048576
    assert len(await manager.list_files()) == 1
    assert await manager.get_total_usage() <= manager.capacity_bytes


@pytest.mark.asyncio
async def test_blob_write_failure_cleans_up(storage_manager, multipart, monkeypatch):
    monkeypatch.setattr("aiofiles.os.rename", AsyncMock(side_effect=OSError("disk full")))

    with pytest.raises(BlobStorageError, match="disk full"):
        await storage_manager.upload(*multipart("a.txt", b"data"))

    assert list(storage_manager.blob_store.temp_path.iterdir()) == []
    assert stored_blobs(storage_manager) == []
    assert await storage_manager.list_files() == []


@pytest.mark.asyncio
async def test_upload_retries_taken_storage_name(storage_manager, multipart, monkeypatch):
    (storage_manager.blob_store.upload_path / "taken-a.txt").write_bytes(b"old")
    monkeypatch.setattr(
        "file_vault.app.services.blob_store.storage_filename",
        Mock(side_effect=["taken-a.txt", "fresh-a.txt"]),
    )

    record = await storage_manager.upload(*multipart("a.txt", b"new"))

    assert record.path == "uploads/fresh-a.txt"
    assert (storage_manager.blob_store.upload_path / "taken-a.txt").read_bytes() == b"old"


@pytest.mark.asyncio
async def test_upload_gives_up_when_no_free_storage_name(storage_manager, multipart, monkeypatch):
    (storage_manager.blob_store.upload_path / "taken-a.txt").write_bytes(b"old")
    monkeypatch.setattr(
        "file_vault.app.services.blob_store.storage_filename",
        Mock(return_value="taken-a.txt"),
    )

    with pytest.raises(BlobStorageError, match="unique storage name"):
        await storage_manager.upload(*multipart("a.txt", b"new"))

    assert stored_blobs(storage_manager) == ["taken-a.txt"]
    assert await storage_manager.list_files() == []

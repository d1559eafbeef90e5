import asyncio
import shutil
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, Optional

from file_vault import config
from file_vault.app.exceptions import BlobStorageError, NotFound, PersistenceFailed, QuotaExceeded
from file_vault.app.models import FileRecord, StorageInfo, VaultSnapshot
from file_vault.app.services.blob_store import BlobStore
from file_vault.app.services.metadata_store import MetadataStore
from file_vault.app.services.multipart_decoder import decode_multipart
from file_vault.app.services.size_codec import UNIT_FACTORS, bytes_to_gb, format_size, parse_size
from file_vault.logger_config import setup_logger

logger = setup_logger()


@dataclass
class BlobDownload:
    record: FileRecord
    length: int
    chunks: AsyncIterator[bytes]


def accounted_size(num_bytes: int) -> int:
    """Bytes a record of this size will count for once its size string is parsed back."""
    return max(num_bytes, parse_size(format_size(num_bytes)))


def file_type(name: str) -> str:
    """Extension of ``name`` without the dot, or ``"unknown"``."""
    _, dot, suffix = name.rpartition(".")
    return suffix if dot and suffix else "unknown"


class StorageManager:
    """Upload, listing, download and deletion on top of the blob and metadata stores.

    All read-modify-write sequences on the snapshot run under ``snapshot_lock``,
    so concurrent requests in this process cannot overwrite each other's changes.
    """

    def __init__(self, base_dir: Path, capacity_bytes: int = config.CAPACITY_BYTES,
                 blob_store: Optional[BlobStore] = None,
                 metadata_store: Optional[MetadataStore] = None):
        self.base_dir = base_dir
        self.capacity_bytes = capacity_bytes
        self.blob_store = blob_store or BlobStore(base_dir)
        self.metadata_store = metadata_store or MetadataStore(base_dir / config.DATA_FILE)
        self.snapshot_lock = asyncio.Lock()

    async def initialize(self):
        """Prepare directories and the data file, and report current usage."""
        logger.info("Initializing storage manager...")
        self.base_dir.mkdir(exist_ok=True, parents=True)
        await self.blob_store.initialize()
        await self.metadata_store.initialize()

        used_bytes = await self.get_total_usage()
        logger.info(f"Current storage usage: {format_size(used_bytes)} of {format_size(self.capacity_bytes)}")

        _, _, free = shutil.disk_usage(str(self.base_dir))
        if free < self.capacity_bytes - used_bytes:
            logger.warning(
                f"Only {format_size(free)} free on disk, less than the remaining vault capacity"
            )

    @staticmethod
    def calculate_usage(snapshot: VaultSnapshot) -> int:
        return sum(parse_size(record.size) for record in snapshot.files)

    def check_quota(self, used_bytes: int, additional_size: int) -> bool:
        """Check if storing additional data would exceed the vault capacity.

        Args:
            used_bytes: Bytes currently accounted to stored records
            additional_size: Size in bytes of new data to be stored

        Returns:
            bool: True if adding the data won't exceed capacity, False otherwise
        """
        return used_bytes + additional_size <= self.capacity_bytes

    async def get_total_usage(self) -> int:
        return self.calculate_usage(await self.metadata_store.load())

    async def list_files(self):
        snapshot = await self.metadata_store.load()
        return snapshot.files

    async def storage_info(self) -> StorageInfo:
        used_bytes = await self.get_total_usage()
        return StorageInfo(
            used=f"{bytes_to_gb(used_bytes)} GB",
            total=f"{self.capacity_bytes // UNIT_FACTORS['GB']} GB",
            percentage=round(used_bytes / self.capacity_bytes * 100, 2),
        )

    async def upload(self, body: bytes, content_type: str) -> FileRecord:
        """Store an uploaded file and record it in the snapshot.

        The blob is written first. If the quota check or the metadata save
        fails afterwards, the blob is removed again and no record remains.

        Raises:
            MalformedRequest: If the body cannot be decoded
            BlobStorageError: If the blob could not be written
            QuotaExceeded: If the file does not fit into the remaining capacity
            PersistenceFailed: If the snapshot could not be saved
        """
        upload = decode_multipart(body, content_type)
        blob = await self.blob_store.store_upload(upload)
        logger.debug(f"Stored blob {blob.storage_path} ({blob.byte_length} bytes)")

        async with self.snapshot_lock:
            snapshot = await self.metadata_store.load()
            used_bytes = self.calculate_usage(snapshot)

            size_text = format_size(blob.byte_length)
            required_bytes = accounted_size(blob.byte_length)

            if not self.check_quota(used_bytes, required_bytes):
                logger.warning(
                    f"Rejecting {blob.original_name!r}: {required_bytes} bytes on top of "
                    f"{used_bytes} used exceeds capacity {self.capacity_bytes}"
                )
                await self.blob_store.delete(blob.storage_path)
                raise QuotaExceeded(self.capacity_bytes, used_bytes, required_bytes)

            record = FileRecord(
                id=self._next_id(snapshot),
                name=blob.original_name,
                type=file_type(blob.original_name),
                size=size_text,
                date=datetime.now(timezone.utc).date().isoformat(),
                path=blob.storage_path,
            )
            snapshot.files.append(record)

            if not await self.metadata_store.save(snapshot):
                await self.blob_store.delete(blob.storage_path)
                raise PersistenceFailed("Failed to save file info")

        logger.info(f"Uploaded file {record.id}: {record.name} ({record.size})")
        return record

    async def download(self, file_id: int) -> BlobDownload:
        snapshot = await self.metadata_store.load()
        index = self._find_index(snapshot, file_id)
        if index is None:
            raise NotFound("File not found in database")

        record = snapshot.files[index]
        if not await self.blob_store.exists(record.path):
            logger.warning(f"Blob for file {file_id} missing at {record.path}")
            raise NotFound("File not found on disk")

        try:
            length = await self.blob_store.size(record.path)
        except OSError as e:
            raise BlobStorageError("Error accessing file") from e

        return BlobDownload(record=record, length=length, chunks=self.blob_store.iter_chunks(record.path))

    async def delete(self, file_id: int) -> FileRecord:
        """Remove a record, then its blob.

        The blob is only touched once the snapshot without the record has been
        saved; failing to remove it is logged and otherwise ignored.
        """
        async with self.snapshot_lock:
            snapshot = await self.metadata_store.load()
            index = self._find_index(snapshot, file_id)
            if index is None:
                raise NotFound("File not found")

            record = snapshot.files.pop(index)
            if not await self.metadata_store.save(snapshot):
                snapshot.files.insert(index, record)
                raise PersistenceFailed("Failed to update database")

        if not await self.blob_store.delete(record.path):
            logger.warning(f"Record {file_id} removed but blob {record.path} was not deleted")

        logger.info(f"Deleted file {record.id}: {record.name}")
        return record

    @staticmethod
    def _find_index(snapshot: VaultSnapshot, file_id: int) -> Optional[int]:
        for index, record in enumerate(snapshot.files):
            if record.id == file_id:
                return index
        return None

    @staticmethod
    def _next_id(snapshot: VaultSnapshot) -> int:
        # Millisecond clock, bumped past every existing id
        highest = max((record.id for record in snapshot.files), default=0)
        return max(int(time.time() * 1000), highest + 1)

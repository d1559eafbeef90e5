from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator

import aiofiles
import aiofiles.os

from file_vault import config
from file_vault.app.exceptions import BlobStorageError
from file_vault.app.services.multipart_decoder import DecodedUpload, storage_filename
from file_vault.logger_config import setup_logger

logger = setup_logger()

MAX_NAME_ATTEMPTS = 5


@dataclass(frozen=True)
class UploadedBlob:
    original_name: str
    storage_path: str
    byte_length: int


class BlobStore:
    """Raw file bytes on disk, addressed by paths relative to ``base_dir``."""

    def __init__(self, base_dir: Path, upload_dir: str = config.UPLOAD_DIR,
                 temp_dir: str = config.TEMP_DIR, chunk_size: int = config.CHUNK_SIZE):
        self.base_dir = base_dir
        self.upload_dir = upload_dir
        self.upload_path = base_dir / upload_dir
        self.temp_path = base_dir / temp_dir
        self.chunk_size = chunk_size

    async def initialize(self):
        """Create storage directories and clear leftovers of interrupted writes."""
        self.upload_path.mkdir(exist_ok=True, parents=True)
        self.temp_path.mkdir(exist_ok=True, parents=True)
        logger.debug(f"Storage directories created/verified: {self.upload_path}, {self.temp_path}")

        files_removed = 0
        for file in self.temp_path.glob("*"):
            if file.is_file():
                await aiofiles.os.unlink(file)
                files_removed += 1
        logger.info(f"Cleaned temporary directory, removed {files_removed} files")

    def full_path(self, relative_path: str) -> Path:
        return self.base_dir / relative_path

    async def store_upload(self, upload: DecodedUpload) -> UploadedBlob:
        """Write a decoded upload under a fresh unique name."""
        for _ in range(MAX_NAME_ATTEMPTS):
            relative_path = f"{self.upload_dir}/{storage_filename(upload.original_name)}"
            if not await self.exists(relative_path):
                break
        else:
            raise BlobStorageError("Could not allocate a unique storage name")

        await self.write(relative_path, upload.payload)
        return UploadedBlob(
            original_name=upload.original_name,
            storage_path=relative_path,
            byte_length=upload.byte_length,
        )

    async def write(self, relative_path: str, payload: bytes):
        """Write bytes to a temp file, then move it into place."""
        final_path = self.full_path(relative_path)
        temp_path = self.temp_path / f"{final_path.name}.part"
        try:
            async with aiofiles.open(temp_path, 'wb') as f:
                await f.write(payload)
            await aiofiles.os.rename(temp_path, final_path)
        except OSError as e:
            logger.error(f"Error writing blob {relative_path}: {str(e)}", exc_info=True)
            await self._remove_quietly(temp_path)
            raise BlobStorageError(f"Upload failed: {str(e)}") from e

        logger.debug(f"Wrote {len(payload)} bytes to {relative_path}")

    async def exists(self, relative_path: str) -> bool:
        return await aiofiles.os.path.isfile(self.full_path(relative_path))

    async def size(self, relative_path: str) -> int:
        stat = await aiofiles.os.stat(self.full_path(relative_path))
        return stat.st_size

    async def iter_chunks(self, relative_path: str) -> AsyncIterator[bytes]:
        async with aiofiles.open(self.full_path(relative_path), 'rb') as f:
            while chunk := await f.read(self.chunk_size):
                yield chunk

    async def delete(self, relative_path: str) -> bool:
        """Remove a blob. Failures are logged, never raised.

        Returns:
            bool: True if a file was removed
        """
        return await self._remove_quietly(self.full_path(relative_path))

    async def _remove_quietly(self, path: Path) -> bool:
        try:
            await aiofiles.os.unlink(path)
        except FileNotFoundError:
            logger.debug(f"Nothing to remove at {path}")
            return False
        except OSError as e:
            logger.error(f"Error deleting file from disk {path}: {str(e)}")
            return False
        return True

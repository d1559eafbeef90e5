from pathlib import Path

import aiofiles
import aiofiles.os

from file_vault.app.models import VaultSnapshot
from file_vault.logger_config import setup_logger

logger = setup_logger()


class MetadataStore:
    """Flat JSON file holding the full snapshot of file records.

    Every mutation rewrites the whole file. The store does no locking of its
    own; callers serialize load/save pairs.
    """

    def __init__(self, data_file: Path):
        self.data_file = data_file
        self.temp_file = data_file.with_name(f"{data_file.name}.tmp")

    async def initialize(self):
        """Create an empty data file if none exists yet."""
        if await aiofiles.os.path.exists(self.data_file):
            logger.debug(f"Using existing data file: {self.data_file}")
            return
        if await self.save(VaultSnapshot()):
            logger.info(f"Created empty data file: {self.data_file}")

    async def load(self) -> VaultSnapshot:
        """Read the snapshot; an unreadable or invalid file yields an empty one."""
        try:
            async with aiofiles.open(self.data_file, 'r', encoding='utf-8') as f:
                content = await f.read()
            return VaultSnapshot.model_validate_json(content)
        except (OSError, ValueError) as e:
            logger.error(f"Error reading data file {self.data_file}: {str(e)}")
            return VaultSnapshot()

    async def save(self, snapshot: VaultSnapshot) -> bool:
        """Write the snapshot to a temp file and move it over the data file.

        Returns:
            bool: True if the snapshot was persisted, False otherwise
        """
        try:
            async with aiofiles.open(self.temp_file, 'w', encoding='utf-8') as f:
                await f.write(snapshot.model_dump_json(indent=2))
            await aiofiles.os.replace(self.temp_file, self.data_file)
        except OSError as e:
            logger.error(f"Error saving data file {self.data_file}: {str(e)}", exc_info=True)
            await self._discard_temp_file()
            return False

        logger.debug(f"Saved snapshot with {len(snapshot.files)} records")
        return True

    async def _discard_temp_file(self):
        try:
            if await aiofiles.os.path.exists(self.temp_file):
                await aiofiles.os.unlink(self.temp_file)
        except OSError as e:
            logger.warning(f"Could not remove temp data file {self.temp_file}: {str(e)}")

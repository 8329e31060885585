import re
from pathlib import PurePosixPath
from typing import Callable, Optional

import config
from app.services.errors import InvalidFileIdError, MalformedUploadError
from app.services.id_generator import generate_file_id
from app.services.storage_manager import StorageManager, StoredObject
from logger_config import setup_logger

logger = setup_logger()

FILE_ID_PATTERN = re.compile(r'^[a-zA-Z0-9]+$')


def is_valid_file_id(file_id: str) -> bool:
    """Check whether file_id could have been issued by the ID generator."""
    if not file_id or len(file_id) > config.MAX_ID_LENGTH:
        return False
    return bool(FILE_ID_PATTERN.match(file_id))


def clean_filename(filename: Optional[str]) -> str:
    """Strip directory components from a client-supplied filename."""
    if not filename:
        raise MalformedUploadError("No file provided")

    name = PurePosixPath(filename.replace("\\", "/")).name
    if not name or name in (".", "..") or "\x00" in name:
        raise MalformedUploadError(f"Invalid filename: {filename!r}")
    return name


class TransferService:
    """Upload and download operations on top of a StorageManager."""

    def __init__(self, storage_manager: StorageManager, id_generator: Callable[[], str] = generate_file_id):
        self.storage_manager = storage_manager
        self.id_generator = id_generator

    async def upload(self, reader, filename: Optional[str], size_limit: Optional[int] = None) -> StoredObject:
        original_name = clean_filename(filename)
        file_id = self.id_generator()
        logger.debug(f"Assigned file ID {file_id} to {original_name}")
        return await self.storage_manager.put(file_id, original_name, reader, size_limit)

    async def download(self, file_id: str) -> Optional[StoredObject]:
        if not is_valid_file_id(file_id):
            raise InvalidFileIdError(f"Invalid file ID format: {file_id!r}")
        return await self.storage_manager.get(file_id)

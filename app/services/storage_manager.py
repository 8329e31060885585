import asyncio
import bisect
import os
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional, Tuple

import aiofiles
import aiofiles.os

import config
from app.services.errors import FileTooLargeError, StorageFaultError
from logger_config import setup_logger

logger = setup_logger()


@dataclass(frozen=True)
class StoredObject:
    file_id: str
    original_name: str
    size: int
    path: Path


def composite_name(file_id: str, original_name: str) -> str:
    """Build the on-disk name of a stored file: ``<file_id>_<original_name>``."""
    return f"{file_id}{config.ID_SEPARATOR}{original_name}"


def split_composite_name(name: str) -> Optional[Tuple[str, str]]:
    """Split an on-disk name into (file_id, original_name).

    Only the first separator counts, so original names containing the
    separator come back unchanged. Returns None for names that were not
    written by the store.
    """
    file_id, separator, original_name = name.partition(config.ID_SEPARATOR)
    if not file_id or not separator:
        return None
    return file_id, original_name


class StorageManager:
    def __init__(self, upload_dir: Path, temp_dir: Path):
        self.upload_dir = upload_dir
        self.temp_dir = temp_dir
        # file_id -> on-disk names, kept sorted so the first one matches directory order
        self._index: Dict[str, List[str]] = {}

    async def initialize(self):
        """Create the storage directories and index the files already stored."""
        logger.info("Initializing storage manager...")

        self.upload_dir.mkdir(exist_ok=True, parents=True)
        self.temp_dir.mkdir(exist_ok=True, parents=True)
        logger.debug(f"Storage directories created/verified: {self.upload_dir}, {self.temp_dir}")

        # Partial files left behind by interrupted uploads
        files_removed = 0
        for file in self.temp_dir.glob("*.part"):
            if file.is_file():
                await aiofiles.os.unlink(file)
                files_removed += 1
        logger.info(f"Cleaned temporary directory, removed {files_removed} files")

        self._index = {}
        for name in await self._scan_stored_names():
            self._add_to_index(name)
        logger.info(f"Indexed {len(self._index)} stored files in {self.upload_dir}")

    def _list_stored_names(self) -> List[str]:
        """List regular files directly under the upload directory, sorted by name."""
        with os.scandir(self.upload_dir) as entries:
            return sorted(entry.name for entry in entries if entry.is_file())

    async def _scan_stored_names(self) -> List[str]:
        # scandir blocks; run it in the default executor
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._list_stored_names)

    def _add_to_index(self, name: str) -> None:
        parts = split_composite_name(name)
        if parts is None:
            logger.debug(f"Skipping unrecognized file in upload directory: {name}")
            return
        names = self._index.setdefault(parts[0], [])
        if name not in names:
            bisect.insort(names, name)

    def _drop_from_index(self, file_id: str, name: str) -> None:
        names = self._index.get(file_id, [])
        if name in names:
            names.remove(name)
        if not names:
            self._index.pop(file_id, None)

    async def _rescan(self, file_id: str) -> None:
        """Pick up files for file_id that were stored by another process."""
        prefix = file_id + config.ID_SEPARATOR
        for name in await self._scan_stored_names():
            if name.startswith(prefix):
                self._add_to_index(name)

    async def put(self, file_id: str, original_name: str, reader, size_limit: Optional[int] = None) -> StoredObject:
        """Stream an upload into the store under a new on-disk name.

        Args:
            file_id: A freshly generated file ID
            original_name: The client's filename, recovered again on download
            reader: Any object with an awaitable ``read(size)``, e.g. an UploadFile
            size_limit: Maximum number of bytes accepted, ``config.MAX_FILE_SIZE`` by default

        Returns:
            StoredObject: The stored file, with ``size`` set to the bytes written

        Raises:
            FileTooLargeError: The stream is longer than ``size_limit``
            StorageFaultError: The file could not be written
        """
        if config.ID_SEPARATOR in file_id:
            raise ValueError(f"File ID must not contain {config.ID_SEPARATOR!r}: {file_id}")
        if size_limit is None:
            size_limit = config.MAX_FILE_SIZE

        name = composite_name(file_id, original_name)
        final_path = self.upload_dir / name
        temp_path = self.temp_dir / f"{file_id}.{uuid.uuid4().hex}.part"

        size = 0
        try:
            async with aiofiles.open(temp_path, 'wb') as f:
                while chunk := await reader.read(config.CHUNK_SIZE):
                    size += len(chunk)
                    if size > size_limit:
                        raise FileTooLargeError(size_limit)
                    await f.write(chunk)
            await aiofiles.os.rename(temp_path, final_path)
        except FileTooLargeError:
            logger.info(f"Rejected upload {name}: more than {size_limit} bytes")
            await self._discard(temp_path)
            raise
        except (OSError, ValueError) as e:
            # ValueError covers names the OS cannot represent, e.g. embedded NUL
            logger.error(f"Error saving file {name!r}: {e}", exc_info=True)
            await self._discard(temp_path)
            raise StorageFaultError(f"Failed to save file {name!r}") from e
        except BaseException:
            await self._discard(temp_path)
            raise

        self._add_to_index(name)
        logger.debug(f"Stored {name} ({size} bytes)")
        return StoredObject(file_id=file_id, original_name=original_name, size=size, path=final_path)

    async def _discard(self, path: Path) -> None:
        try:
            await aiofiles.os.unlink(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove partial file {path}: {e}")

    async def get(self, file_id: str) -> Optional[StoredObject]:
        """Look up a stored file by its ID.

        When several files share the ID, the first in directory order wins.
        Returns None if nothing is stored under the ID.
        """
        try:
            if file_id not in self._index:
                await self._rescan(file_id)

            while self._index.get(file_id):
                name = self._index[file_id][0]
                path = self.upload_dir / name
                try:
                    stat = await aiofiles.os.stat(path)
                except FileNotFoundError:
                    logger.warning(f"Indexed file disappeared from disk: {name}")
                    self._drop_from_index(file_id, name)
                    continue

                original_name = name[len(file_id) + len(config.ID_SEPARATOR):]
                return StoredObject(file_id=file_id, original_name=original_name, size=stat.st_size, path=path)
        except OSError as e:
            logger.error(f"Error looking up file {file_id}: {e}", exc_info=True)
            raise StorageFaultError("Failed to read upload directory") from e

        return None

    async def stream(self, stored: StoredObject, chunk_size: Optional[int] = None) -> AsyncIterator[bytes]:
        """Yield the content of a stored file in chunks.

        The file is closed however iteration ends, including when the
        consumer stops early because the client went away.
        """
        chunk_size = chunk_size or config.CHUNK_SIZE
        async with aiofiles.open(stored.path, 'rb') as f:
            while chunk := await f.read(chunk_size):
                yield chunk

"""
Local filesystem storage backend for sdweb

The backend only ever receives absolute paths that the router has already
passed through the path resolver. Mutating operations report OS failures
as ``BackendError``; the raw ``open_*`` helpers leave ``OSError`` to the
caller, which knows whether a failure means "not found" or "I/O error".
"""

from __future__ import annotations

import errno
import logging
import os
import stat
from typing import AsyncIterator, List

import aiofiles
import aiofiles.os

from .errors import BackendError, ClientError
from .models import DirectoryEntry

logger = logging.getLogger(__name__)

COPY_CHUNK_SIZE = 64 * 1024


class LocalStorage:
    """Storage operations on a locally mounted volume (SD card, disk, ...)"""

    def __init__(self, chunk_size: int = COPY_CHUNK_SIZE):
        self.chunk_size = chunk_size

    async def exists(self, path: str) -> bool:
        return await aiofiles.os.path.exists(path)

    async def is_directory(self, path: str) -> bool:
        return await aiofiles.os.path.isdir(path)

    async def file_size(self, path: str) -> int:
        """Size in bytes; ``OSError`` is left to the caller"""
        st = await aiofiles.os.stat(path)
        return st.st_size

    async def list_directory(self, path: str) -> AsyncIterator[DirectoryEntry]:
        """
        Enumerate a directory

        The directory is read immediately, so an unreadable or vanished
        directory fails here rather than halfway through a response. Entries
        are then produced lazily, in the order the OS returned them; entries
        that disappear before they are examined are skipped.

        Raises:
            BackendError: If the directory cannot be enumerated
        """
        try:
            names = await aiofiles.os.listdir(path)
        except OSError as e:
            logger.error(f"Failed to list directory {path}: {e}")
            raise BackendError("Failed to list directory") from e

        return self._entries(path, names)

    async def _entries(self, path: str, names: List[str]) -> AsyncIterator[DirectoryEntry]:
        for name in names:
            entry_path = os.path.join(path, name)
            try:
                st = await aiofiles.os.stat(entry_path)
            except OSError as e:
                logger.warning(f"Failed to stat {entry_path}: {e}")
                continue

            is_dir = stat.S_ISDIR(st.st_mode)
            yield DirectoryEntry(
                name=name,
                is_directory=is_dir,
                size=0 if is_dir else st.st_size,
            )

    async def delete_file(self, path: str) -> None:
        try:
            await aiofiles.os.remove(path)
            logger.info(f"Deleted: {path}")
        except OSError as e:
            logger.error(f"Failed to delete {path}: {e}")
            raise BackendError("Failed to delete file") from e

    async def create_directory(self, path: str) -> None:
        """Create a directory, including missing parents"""
        try:
            await aiofiles.os.makedirs(path, exist_ok=False)
            logger.info(f"Created directory: {path}")
        except FileExistsError as e:
            raise ClientError("Directory already exists") from e
        except NotADirectoryError as e:
            raise ClientError("Parent path is not a directory") from e
        except OSError as e:
            logger.error(f"Failed to create directory {path}: {e}")
            raise BackendError("Failed to create directory") from e

    async def rename_file(self, old_path: str, new_path: str) -> None:
        """
        Rename an entry, copying across devices when a plain rename is impossible

        The copy fallback only deletes the source once the destination has been
        completely written; a failed copy leaves the source untouched.
        """
        try:
            await aiofiles.os.rename(old_path, new_path)
            logger.info(f"Renamed: {old_path} -> {new_path}")
            return
        except OSError as e:
            if e.errno != errno.EXDEV or await self.is_directory(old_path):
                logger.error(f"Failed to rename {old_path} -> {new_path}: {e}")
                raise BackendError("Failed to rename") from e

        logger.info(f"Cross-device rename, copying {old_path} -> {new_path}")
        await self.copy_file(old_path, new_path)
        await self.delete_file(old_path)

    async def copy_file(self, source: str, destination: str) -> int:
        """Copy a file chunk by chunk; removes the partial copy on failure"""
        copied = 0
        created = False
        try:
            async with aiofiles.open(source, 'rb') as src:
                async with aiofiles.open(destination, 'xb') as dst:
                    created = True
                    while True:
                        chunk = await src.read(self.chunk_size)
                        if not chunk:
                            break
                        await dst.write(chunk)
                        copied += len(chunk)
                    await dst.flush()
        except FileExistsError as e:
            raise ClientError("Destination already exists") from e
        except OSError as e:
            logger.error(f"Failed to copy {source} -> {destination}: {e}")
            if created:
                await self.remove_partial(destination)
            raise BackendError("Failed to copy file") from e

        return copied

    async def open_read(self, path: str):
        """Open a file for binary reading; caller must close the handle"""
        return await aiofiles.open(path, 'rb')

    async def open_write(self, path: str):
        """Create a new file for binary writing; fails if it already exists"""
        return await aiofiles.open(path, 'xb')

    async def remove_partial(self, path: str) -> None:
        """Best-effort removal of an incomplete file"""
        try:
            if await aiofiles.os.path.exists(path):
                await aiofiles.os.remove(path)
                logger.info(f"Removed partial file: {path}")
        except OSError as e:
            logger.warning(f"Failed to remove partial file {path}: {e}")


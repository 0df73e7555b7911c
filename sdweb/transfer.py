"""
Chunked file transfer for sdweb

Downloads and uploads move file content in fixed-size chunks so that no
file is ever held in memory as a whole.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from .errors import BackendError, ClientError, NotFoundError, PayloadTooLarge
from .paths import file_name
from .storage import LocalStorage
from .utils import get_mime_type

logger = logging.getLogger(__name__)

CHUNK_SIZE = 4096


@dataclass
class Download:
    """An opened file ready to be streamed to a client"""
    mime_type: str
    filename: str
    chunks: AsyncIterator[bytes]


async def open_download(
    storage: LocalStorage,
    absolute_path: str,
    chunk_size: int = CHUNK_SIZE,
) -> Download:
    """
    Open a file for streaming

    The file is opened before any response is produced so that a missing
    file can still be reported as 404. The returned iterator owns the file
    handle and releases it when exhausted, on error and when closed early
    (client disconnect).

    Raises:
        NotFoundError: If the file cannot be opened
    """
    try:
        handle = await storage.open_read(absolute_path)
    except OSError as e:
        logger.info(f"Cannot open {absolute_path} for reading: {e}")
        raise NotFoundError("File not found") from e

    async def file_generator():
        try:
            while True:
                chunk = await handle.read(chunk_size)
                if not chunk:
                    break
                yield chunk
        except OSError as e:
            logger.error(f"Read failed mid-stream for {absolute_path}: {e}")
            raise
        finally:
            await handle.close()

    return Download(
        mime_type=get_mime_type(absolute_path),
        filename=file_name(absolute_path),
        chunks=file_generator(),
    )


async def receive_upload(
    storage: LocalStorage,
    absolute_path: str,
    chunks: AsyncIterator[bytes],
    chunk_size: int = CHUNK_SIZE,
    max_size: Optional[int] = None,
) -> int:
    """
    Write an incoming byte stream to a new file

    Args:
        storage: Storage backend
        absolute_path: Target file, must not exist yet
        chunks: Incoming body data, in whatever sizes the transport delivers
        chunk_size: Size of each write to the storage device
        max_size: Optional maximum file size in bytes

    Returns:
        Number of bytes written

    Raises:
        ClientError: If the target already exists
        PayloadTooLarge: If more than ``max_size`` bytes arrive
        BackendError: If the file cannot be created or written

    Any failure after the file was created removes the partial file before
    the error propagates, including errors raised while receiving.
    """
    try:
        handle = await storage.open_write(absolute_path)
    except FileExistsError as e:
        raise ClientError("File already exists") from e
    except OSError as e:
        logger.error(f"Failed to create {absolute_path}: {e}")
        raise BackendError("Failed to create file") from e

    bytes_written = 0
    try:
        try:
            async for data in chunks:
                for start in range(0, len(data), chunk_size):
                    piece = data[start:start + chunk_size]
                    bytes_written += len(piece)
                    if max_size is not None and bytes_written > max_size:
                        raise PayloadTooLarge(f"File too large (max: {max_size} bytes)")
                    await handle.write(piece)
            await handle.flush()
        finally:
            await handle.close()
    except OSError as e:
        logger.error(f"Failed to write {absolute_path}: {e}")
        await storage.remove_partial(absolute_path)
        raise BackendError("Failed to save file") from e
    except Exception:
        await storage.remove_partial(absolute_path)
        raise

    logger.info(f"Uploaded file: {absolute_path} ({bytes_written} bytes)")
    return bytes_written

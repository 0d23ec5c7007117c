import io
import os
import enum
import base64
import asyncio
import inspect
from dataclasses import dataclass, field
from typing import Any, List, Optional

import aiofiles

from config import config
from drivers.driver_base_drv import BLOCK_UNCOMMITTED, BlobObject, BlobServiceClient, Block, CommitOptions
from utils import logging_ut
from utils.errors_ut import NotFoundError

logger = logging_ut.get_logger("uploader_srv")

BLOCK_ID_WIDTH = 6


def make_block_id(counter: int) -> str:
    """Sequence marker for the n-th block: base64 of the zero-padded counter."""
    return base64.b64encode(str(counter).zfill(BLOCK_ID_WIDTH).encode("ascii")).decode("ascii")


class DeleteStatus(enum.Enum):
    DELETED = "deleted"
    NOT_FOUND = "not_found"
    FAILED = "failed"


@dataclass
class DeleteResult:
    status: DeleteStatus
    error: Optional[BaseException] = None


@dataclass
class UploadSession:
    object_key: str
    chunk_size: int
    block_list: List[Block] = field(default_factory=list)
    bytes_uploaded: int = 0


class ContentReader:
    """
    Sequential async reads over whatever the caller handed to write():
    bytes/str, a filesystem path, a sync binary file or an async one
    (aiofiles handle, anything with `async def read(n)`).
    The reader owns the stream and closes it.
    """

    def __init__(self, content: Any):
        self._opened_here = False
        self._path = None

        if isinstance(content, str):
            content = content.encode("utf-8")
        if isinstance(content, (bytes, bytearray, memoryview)):
            self._stream = io.BytesIO(bytes(content))
        elif isinstance(content, os.PathLike):
            self._stream = None
            self._path = os.fspath(content)
        elif hasattr(content, "read"):
            self._stream = content
        else:
            raise TypeError(f"Unsupported content type: {type(content).__name__}")

    async def __aenter__(self) -> "ContentReader":
        if self._path is not None:
            self._stream = await aiofiles.open(self._path, mode='rb')
            self._opened_here = True
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def read(self, size: int) -> bytes:
        if isinstance(self._stream, io.BytesIO):
            return self._stream.read(size)
        if inspect.iscoroutinefunction(self._stream.read):
            data = await self._stream.read(size)
        else:
            data = await asyncio.to_thread(self._stream.read, size)
        if isinstance(data, str):
            raise TypeError("Content stream must be opened in binary mode")
        return data

    async def close(self) -> None:
        stream = self._stream
        if stream is None:
            return
        self._stream = None
        close = getattr(stream, "close", None)
        if close is None:
            return
        if inspect.iscoroutinefunction(close):
            await close()
        else:
            close()


class ChunkedUploader:
    """
    Writes one object as a sequence of blocks: put_block per chunk, then a
    single commit_block_list. Nothing is visible at the key until the commit.

    No resumption: block ids are sequence markers, a failed upload starts
    over from block 1. A failed upload asks the driver to discard the blocks
    it staged.
    """

    def __init__(self, client: BlobServiceClient, container: str, chunk_size: Optional[int] = None):
        self.client = client
        self.container = container
        self.chunk_size = config.STORAGE_CHUNK_SIZE if chunk_size is None else chunk_size
        if self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")

    async def _delete_if_exists(self, key: str) -> DeleteResult:
        try:
            await self.client.delete_object(self.container, key)
        except NotFoundError:
            return DeleteResult(DeleteStatus.NOT_FOUND)
        except Exception as e:
            return DeleteResult(DeleteStatus.FAILED, e)
        return DeleteResult(DeleteStatus.DELETED)

    async def _discard_blocks(self, key: str) -> None:
        try:
            await self.client.discard_blocks(self.container, key)
        except Exception as e:
            # the upload error is the one the caller sees
            logger.warning(f"Could not discard staged blocks of {key}: {e}")

    async def upload(self, content: Any, key: str, options: Optional[CommitOptions] = None) -> BlobObject:
        """
        Replace the object at key with content.

        Args:
            content: bytes, str, path or readable (sync or async) binary stream.
            key: resolved object key.
            options: content type / ACL applied at commit.

        Returns:
            The commit result.

        Raises:
            Any service error from pre-delete (other than not found),
            put_block or commit. The content stream is closed either way.
        """
        session = UploadSession(object_key=key, chunk_size=self.chunk_size)

        async with ContentReader(content) as reader:
            deleted = await self._delete_if_exists(key)
            if deleted.status is DeleteStatus.FAILED:
                logger.warning(f"Pre-upload delete failed for {key}: {deleted.error}")
                raise deleted.error
            if deleted.status is DeleteStatus.DELETED:
                logger.debug(f"Replaced existing object: {key}")

            counter = 1
            try:
                while True:
                    data = await reader.read(session.chunk_size)
                    if not data:
                        break

                    block = Block(id=make_block_id(counter), status=BLOCK_UNCOMMITTED)
                    await self.client.put_block(self.container, key, block.id, data)
                    session.block_list.append(block)
                    session.bytes_uploaded += len(data)
                    counter += 1
            except BaseException:
                await self._discard_blocks(key)
                raise

        try:
            result = await self.client.commit_block_list(self.container, key, session.block_list, options)
        except BaseException:
            await self._discard_blocks(key)
            raise
        logger.info(f"Committed {key}: {len(session.block_list)} blocks, {session.bytes_uploaded} bytes")

        if result.properties.content_length is None:
            result.properties.content_length = session.bytes_uploaded
        return result

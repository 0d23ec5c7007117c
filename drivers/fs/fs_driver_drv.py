import os
import json
import shutil
import asyncio
import hashlib
from datetime import datetime, timezone
from typing import List, Optional

import aiofiles
from aiofiles.os import stat as aio_stat

from drivers.driver_base_drv import (
    ACL_PRIVATE, ACL_PUBLIC_READ, ALL_USERS_URI, BLOCK_COMMITTED, PERMISSION_FULL_CONTROL, PERMISSION_READ,
    BlobObject, BlobProperties, BlobServiceClient, Block, CommitOptions, Grant,
)
from config import fs_cfg
from utils.errors_ut import NotFoundError, PartialOperationError
from utils.path_ut import safe_join
from utils import logging_ut

logger = logging_ut.get_logger("fs_driver")

class FSDriver(BlobServiceClient):
    """
    Block-blob store emulated on the local filesystem.

    Layout per container:
        objects/<key>           committed content
        meta/<key>.json         content type and canned ACL
        blocks/<sha1(key)>/     staged (uncommitted) blocks, one file per block id
    """

    def __init__(self, root: Optional[str] = None):
        self.root = root or fs_cfg.FS_ROOT

    def _objects_dir(self, container: str) -> str:
        return safe_join(self.root, os.path.join(container, "objects"))

    def _object_path(self, container: str, key: str) -> str:
        """Safely get abs path."""
        return safe_join(self._objects_dir(container), key)

    def _meta_path(self, container: str, key: str) -> str:
        return safe_join(safe_join(self.root, os.path.join(container, "meta")), key + ".json")

    def _blocks_dir(self, container: str, key: str) -> str:
        digest = hashlib.sha1(key.encode("utf-8")).hexdigest()
        return safe_join(self.root, os.path.join(container, "blocks", digest))

    async def _read_meta(self, container: str, key: str) -> dict:
        meta_path = self._meta_path(container, key)
        try:
            async with aiofiles.open(meta_path, mode='r') as f:
                return json.loads(await f.read())
        except FileNotFoundError:
            return {}

    async def _write_meta(self, container: str, key: str, meta: dict) -> None:
        meta_path = self._meta_path(container, key)
        await asyncio.to_thread(os.makedirs, os.path.dirname(meta_path), exist_ok=True)
        async with aiofiles.open(meta_path, mode='w') as f:
            await f.write(json.dumps(meta))

    async def _properties(self, container: str, key: str) -> BlobProperties:
        full_path = self._object_path(container, key)
        try:
            st = await aio_stat(full_path)
        except FileNotFoundError:
            raise NotFoundError(f"Object not found: {key}")
        if os.path.isdir(full_path):
            raise NotFoundError(f"Object not found: {key}")

        meta = await self._read_meta(container, key)
        return BlobProperties(
            content_length=st.st_size,
            content_type=meta.get("content_type"),
            last_modified=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
        )

    def _prune_empty_dirs(self, start: str, stop: str) -> None:
        # Flat key space: leftover empty dirs would block a later object with the same name
        current = os.path.dirname(start)
        while current != stop and current.startswith(stop):
            try:
                os.rmdir(current)
            except OSError:
                break
            current = os.path.dirname(current)

    async def init(self, container: str) -> None:
        """Create container dirs if not exist."""
        objects_dir = self._objects_dir(container)
        if not os.path.exists(objects_dir):
            logger.info(f"Creating container: {objects_dir}")
            await asyncio.to_thread(os.makedirs, objects_dir, exist_ok=True)
        else:
            logger.info(f"Container exists: {objects_dir}")

    async def exists(self, container: str, key: str) -> bool:
        full_path = self._object_path(container, key)
        return await asyncio.to_thread(os.path.isfile, full_path)

    async def head_object(self, container: str, key: str) -> BlobObject:
        props = await self._properties(container, key)
        return BlobObject(name=key, properties=props)

    async def get_object(self, container: str, key: str) -> BlobObject:
        props = await self._properties(container, key)
        full_path = self._object_path(container, key)

        body = bytearray()
        async with aiofiles.open(full_path, mode='rb') as f:
            while True:
                chunk = await f.read(fs_cfg.CHUNK_SIZE)
                if not chunk:
                    break
                body.extend(chunk)

        return BlobObject(name=key, properties=props, body=bytes(body))

    async def delete_object(self, container: str, key: str) -> None:
        full_path = self._object_path(container, key)
        if not await asyncio.to_thread(os.path.isfile, full_path):
            raise NotFoundError(f"Object not found: {key}")

        await asyncio.to_thread(os.remove, full_path)
        await asyncio.to_thread(self._prune_empty_dirs, full_path, self._objects_dir(container))

        meta_path = self._meta_path(container, key)
        if await asyncio.to_thread(os.path.exists, meta_path):
            await asyncio.to_thread(os.remove, meta_path)

    async def delete_objects_by_prefix(self, container: str, key_prefix: str) -> List[str]:
        deleted, failed = [], []
        last_error = None
        for obj in await self.list_objects(container):
            if not obj.name.startswith(key_prefix):
                continue
            try:
                await self.delete_object(container, obj.name)
                deleted.append(obj.name)
            except OSError as e:
                logger.warning(f"Bulk delete: failed to remove {obj.name}: {e}")
                failed.append(obj.name)
                last_error = e

        if failed:
            raise PartialOperationError(
                f"Deleted {len(deleted)} of {len(deleted) + len(failed)} objects under {key_prefix}",
                completed=deleted, failed=failed, cause=last_error,
            )
        return deleted

    async def list_objects(self, container: str) -> List[BlobObject]:
        objects_dir = self._objects_dir(container)
        if not await asyncio.to_thread(os.path.isdir, objects_dir):
            return []

        def _walk() -> List[str]:
            keys = []
            for dirpath, _dirnames, filenames in os.walk(objects_dir):
                for name in filenames:
                    rel = os.path.relpath(os.path.join(dirpath, name), objects_dir)
                    keys.append(rel.replace(os.sep, "/"))
            return sorted(keys)

        results = []
        for key in await asyncio.to_thread(_walk):
            # Removed by a concurrent delete between walk and stat
            try:
                results.append(await self.head_object(container, key))
            except NotFoundError:
                continue
        return results

    async def put_block(self, container: str, key: str, block_id: str, data: bytes) -> None:
        blocks_dir = self._blocks_dir(container, key)
        await asyncio.to_thread(os.makedirs, blocks_dir, exist_ok=True)

        block_path = os.path.join(blocks_dir, block_id.encode("ascii").hex())
        async with aiofiles.open(block_path, mode='wb') as f:
            await f.write(data)

    async def commit_block_list(self, container: str, key: str, blocks: List[Block],
                                options: Optional[CommitOptions] = None) -> BlobObject:
        blocks_dir = self._blocks_dir(container, key)
        full_path = self._object_path(container, key)
        await asyncio.to_thread(os.makedirs, os.path.dirname(full_path), exist_ok=True)

        # Assemble next to the target, then swap in atomically
        tmp_path = full_path + ".committing"
        try:
            async with aiofiles.open(tmp_path, mode='wb') as out:
                for block in blocks:
                    block_path = os.path.join(blocks_dir, block.id.encode("ascii").hex())
                    try:
                        async with aiofiles.open(block_path, mode='rb') as f:
                            await out.write(await f.read())
                    except FileNotFoundError:
                        raise ValueError(f"Invalid block list for {key}: block {block.id} was never staged")
            await asyncio.to_thread(os.replace, tmp_path, full_path)
        except BaseException:
            if await asyncio.to_thread(os.path.exists, tmp_path):
                await asyncio.to_thread(os.remove, tmp_path)
            raise

        # Committing discards every uncommitted block of the object
        if await asyncio.to_thread(os.path.isdir, blocks_dir):
            await asyncio.to_thread(shutil.rmtree, blocks_dir)

        options = options or CommitOptions()
        await self._write_meta(container, key, {
            "content_type": options.content_type,
            "acl": options.acl or ACL_PRIVATE,
        })

        for block in blocks:
            block.status = BLOCK_COMMITTED

        return await self.head_object(container, key)

    async def discard_blocks(self, container: str, key: str) -> None:
        blocks_dir = self._blocks_dir(container, key)
        if await asyncio.to_thread(os.path.isdir, blocks_dir):
            await asyncio.to_thread(shutil.rmtree, blocks_dir)

    async def copy_object(self, container: str, source_key: str, dest_key: str) -> BlobObject:
        src_path = self._object_path(container, source_key)
        dst_path = self._object_path(container, dest_key)
        if not await asyncio.to_thread(os.path.isfile, src_path):
            raise NotFoundError(f"Object not found: {source_key}")

        await asyncio.to_thread(os.makedirs, os.path.dirname(dst_path), exist_ok=True)
        await asyncio.to_thread(shutil.copyfile, src_path, dst_path)
        await self._write_meta(container, dest_key, await self._read_meta(container, source_key))

        return await self.head_object(container, dest_key)

    async def get_object_acl(self, container: str, key: str) -> List[Grant]:
        if not await self.exists(container, key):
            raise NotFoundError(f"Object not found: {key}")

        meta = await self._read_meta(container, key)
        grants = [Grant(grantee_uri=None, permission=PERMISSION_FULL_CONTROL)]
        if meta.get("acl") == ACL_PUBLIC_READ:
            grants.append(Grant(grantee_uri=ALL_USERS_URI, permission=PERMISSION_READ))
        return grants

    async def put_object_acl(self, container: str, key: str, acl: str) -> None:
        if not await self.exists(container, key):
            raise NotFoundError(f"Object not found: {key}")

        meta = await self._read_meta(container, key)
        meta["acl"] = acl
        await self._write_meta(container, key, meta)

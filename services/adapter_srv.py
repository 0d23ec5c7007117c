import mimetypes
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

from config import config
from drivers.driver_base_drv import (
    ACL_PRIVATE, ACL_PUBLIC_READ, ALL_USERS_URI, PERMISSION_READ, BlobServiceClient, CommitOptions,
)
from drivers.driver_factory_drv import get_driver
from services.uploader_srv import ChunkedUploader
from utils import logging_ut
from utils.errors_ut import NotFoundError, PartialOperationError, translate_exception
from utils.metadata_ut import (
    TYPE_DIR, VISIBILITY_PRIVATE, VISIBILITY_PUBLIC, StorageRecord, emulate_directories, normalize_object,
)
from utils.path_ut import normalize_path, resolve_key, slugify

logger = logging_ut.get_logger("adapter_srv")

DEFAULT_MIMETYPE = "application/octet-stream"


class BlobStorageAdapter:
    """
    Filesystem-style operations over a flat block-blob container.

    Every logical path goes through object_key(), so a file written as
    "Folder/My File.TXT" is read, stat'ed and deleted by that same path
    even though it is stored as "<prefix>/folder/my_file.txt".

    No operation is transactional across calls. rename and delete_dir are
    multi-step; a failure halfway raises PartialOperationError describing
    what was left behind.
    """

    def __init__(self, client: BlobServiceClient, container: str, prefix: str = "",
                 chunk_size: Optional[int] = None, slug_keys: bool = True, slug_separator: str = "_"):
        self.client = client
        self.container = container
        self.prefix = (prefix or "").strip("/")
        self.slug_keys = slug_keys
        self.slug_separator = slug_separator
        self.uploader = ChunkedUploader(client, container, chunk_size)

    def object_key(self, path: str) -> str:
        clean = normalize_path(path)
        if self.slug_keys:
            clean = slugify(clean, self.slug_separator)
        return resolve_key(self.prefix, clean)

    @contextmanager
    def _translate(self, op: str, path: str):
        """Attach the logical path to not-found errors, log the rest."""
        try:
            yield
        except NotFoundError as e:
            logger.debug(f"{op}: not found: {path}")
            if e.path is None:
                raise NotFoundError(f"{op}: {path} not found ({e})", path=path) from e
            raise
        except Exception as e:
            _kind, msg = translate_exception(e)
            logger.warning(f"{op} failed for {path}: {msg}")
            raise

    @staticmethod
    def _acl_for(visibility: str) -> str:
        if visibility == VISIBILITY_PUBLIC:
            return ACL_PUBLIC_READ
        if visibility == VISIBILITY_PRIVATE:
            return ACL_PRIVATE
        raise ValueError(f"Invalid visibility: {visibility!r} (expected 'public' or 'private')")

    async def init(self) -> None:
        await self.client.init(self.container)

    async def has(self, path: str) -> bool:
        try:
            return await self.client.exists(self.container, self.object_key(path))
        except Exception as e:
            # Existence checks answer, they don't raise
            _kind, msg = translate_exception(e)
            logger.warning(f"Exists check failed for {path}, reporting missing: {msg}")
            return False

    async def write(self, path: str, contents: Any, visibility: str) -> StorageRecord:
        acl = self._acl_for(visibility)
        key = self.object_key(path)
        mimetype = mimetypes.guess_type(path)[0] or DEFAULT_MIMETYPE

        logger.info(f"Write: {path} -> {key} ({visibility})")
        with self._translate("write", path):
            result = await self.uploader.upload(contents, key, CommitOptions(content_type=mimetype, acl=acl))

        record = normalize_object(result, path)
        if record.mimetype is None:
            record.mimetype = mimetype
        record.visibility = visibility
        return record

    async def update(self, path: str, contents: Any, visibility: Optional[str] = None) -> StorageRecord:
        """
        Overwrite path. Without an explicit visibility the current one is
        kept (a path that does not exist yet becomes private).
        """
        if visibility is None:
            try:
                visibility = (await self.get_visibility(path))["visibility"]
            except NotFoundError:
                visibility = VISIBILITY_PRIVATE
        return await self.write(path, contents, visibility)

    async def read(self, path: str) -> StorageRecord:
        logger.debug(f"Read: {path}")
        with self._translate("read", path):
            obj = await self.client.get_object(self.container, self.object_key(path))

        record = normalize_object(obj, path)
        record.contents = obj.body
        return record

    async def rename(self, path: str, newpath: str) -> StorageRecord:
        """
        Copy to newpath, then delete path. If the delete fails the object
        exists under both keys and PartialOperationError is raised.
        """
        src_key = self.object_key(path)
        dst_key = self.object_key(newpath)
        logger.info(f"Rename: {path} -> {newpath}")

        with self._translate("rename", path):
            result = await self.client.copy_object(self.container, src_key, dst_key)
        record = normalize_object(result, newpath)

        try:
            await self.client.delete_object(self.container, src_key)
        except Exception as e:
            logger.warning(f"Rename {path} -> {newpath}: copied but original not deleted: {e}")
            raise PartialOperationError(
                f"Renamed {path} -> {newpath} but could not delete the original",
                path=path, completed=[dst_key], failed=[src_key], cause=e,
            ) from e

        return record

    async def delete(self, path: str) -> bool:
        logger.info(f"Delete: {path}")
        with self._translate("delete", path):
            await self.client.delete_object(self.container, self.object_key(path))
        return True

    async def delete_dir(self, path: str) -> List[str]:
        """
        Delete every object under path. Best effort: partial failures raise
        PartialOperationError with the keys removed and those left behind.
        """
        key = self.object_key(path).rstrip("/")
        # Root of an unprefixed adapter: everything in the container
        key_prefix = key + "/" if key else ""
        logger.info(f"Delete dir: {path} ({key_prefix}*)")
        with self._translate("delete_dir", path):
            deleted = await self.client.delete_objects_by_prefix(self.container, key_prefix)
        logger.info(f"Deleted {len(deleted)} objects under {key_prefix}")
        return deleted

    async def create_dir(self, path: str) -> StorageRecord:
        # No directories in a blob store, nothing to create remotely
        return StorageRecord(path=path, type=TYPE_DIR)

    async def get_metadata(self, path: str) -> StorageRecord:
        with self._translate("get_metadata", path):
            obj = await self.client.head_object(self.container, self.object_key(path))
        return normalize_object(obj, path)

    async def get_mimetype(self, path: str) -> StorageRecord:
        return await self.get_metadata(path)

    async def get_size(self, path: str) -> StorageRecord:
        return await self.get_metadata(path)

    async def get_timestamp(self, path: str) -> StorageRecord:
        return await self.get_metadata(path)

    async def get_visibility(self, path: str) -> Dict[str, str]:
        with self._translate("get_visibility", path):
            grants = await self.client.get_object_acl(self.container, self.object_key(path))

        # The first AllUsers grant decides
        for grant in grants:
            if grant.grantee_uri == ALL_USERS_URI:
                if grant.permission != PERMISSION_READ:
                    break
                return {"visibility": VISIBILITY_PUBLIC}

        return {"visibility": VISIBILITY_PRIVATE}

    async def set_visibility(self, path: str, visibility: str) -> Dict[str, str]:
        acl = self._acl_for(visibility)
        logger.info(f"Set visibility: {path} -> {visibility}")
        with self._translate("set_visibility", path):
            await self.client.put_object_acl(self.container, self.object_key(path), acl)
        return {"visibility": visibility}

    async def list_contents(self) -> List[StorageRecord]:
        with self._translate("list_contents", self.container):
            objects = await self.client.list_objects(self.container)

        if not objects:
            return []

        return emulate_directories([normalize_object(obj) for obj in objects])


def build_adapter(client: Optional[BlobServiceClient] = None) -> BlobStorageAdapter:
    """Adapter wired from config; the driver comes from DRIVER_KIND unless given."""
    return BlobStorageAdapter(
        client=client or get_driver(),
        container=config.STORAGE_CONTAINER,
        prefix=config.STORAGE_PREFIX,
        chunk_size=config.STORAGE_CHUNK_SIZE,
        slug_keys=config.STORAGE_SLUG_KEYS,
        slug_separator=config.STORAGE_SLUG_SEPARATOR,
    )

import time
import asyncio
from typing import List, Optional
from contextlib import asynccontextmanager

from azure.core.exceptions import ResourceExistsError, ResourceNotFoundError
from azure.storage.blob import BlobBlock, ContentSettings
from azure.storage.blob.aio import BlobServiceClient as AzureServiceClient

from drivers.driver_base_drv import (
    ACL_PRIVATE, ACL_PUBLIC_READ, ALL_USERS_URI, BLOCK_COMMITTED, PERMISSION_FULL_CONTROL, PERMISSION_READ,
    BlobObject, BlobProperties, BlobServiceClient, Block, CommitOptions, Grant,
)
from config import azure_cfg
from utils import logging_ut
from utils.errors_ut import NotFoundError, PartialOperationError

logger = logging_ut.get_logger("azure_driver")

# Azure has no per-blob ACL; the canned ACL lives in blob metadata
ACL_METADATA_KEY = "acl"


def _to_properties(props) -> BlobProperties:
    content_settings = getattr(props, "content_settings", None)
    return BlobProperties(
        content_length=props.size,
        content_type=content_settings.content_type if content_settings else None,
        last_modified=props.last_modified,
    )


class AzureDriver(BlobServiceClient):
    """
    Azure Blob Storage driver, block blobs (stage_block / commit_block_list).
    """

    def __init__(self, connection_string: Optional[str] = None):
        self.connection_string = connection_string or azure_cfg.AZURE_STORAGE_CONNECTION_STRING
        if not self.connection_string:
            raise ValueError("AZURE_STORAGE_CONNECTION_STRING is required for the azure driver")

    @asynccontextmanager
    async def _container(self, container: str):
        """Context manager for a container client."""
        async with AzureServiceClient.from_connection_string(self.connection_string) as service:
            yield service.get_container_client(container)

    async def init(self, container: str) -> None:
        """Check connection and container existence."""
        logger.info(f"Initializing Azure Driver: {container}")
        async with self._container(container) as cc:
            try:
                await cc.create_container()
                logger.info("Container created successfully.")
            except ResourceExistsError:
                logger.info("Azure container exists.")

    async def exists(self, container: str, key: str) -> bool:
        async with self._container(container) as cc:
            return await cc.get_blob_client(key).exists()

    async def head_object(self, container: str, key: str) -> BlobObject:
        async with self._container(container) as cc:
            try:
                props = await cc.get_blob_client(key).get_blob_properties()
            except ResourceNotFoundError:
                raise NotFoundError(f"Blob not found: {key}")
        return BlobObject(name=key, properties=_to_properties(props))

    async def get_object(self, container: str, key: str) -> BlobObject:
        async with self._container(container) as cc:
            try:
                downloader = await cc.get_blob_client(key).download_blob()
                body = await downloader.readall()
            except ResourceNotFoundError:
                raise NotFoundError(f"Blob not found: {key}")
        return BlobObject(name=key, properties=_to_properties(downloader.properties), body=body)

    async def delete_object(self, container: str, key: str) -> None:
        async with self._container(container) as cc:
            try:
                await cc.get_blob_client(key).delete_blob()
            except ResourceNotFoundError:
                raise NotFoundError(f"Blob not found: {key}")

    async def delete_objects_by_prefix(self, container: str, key_prefix: str) -> List[str]:
        deleted, failed = [], []
        last_error = None
        async with self._container(container) as cc:
            async for blob in cc.list_blobs(name_starts_with=key_prefix):
                try:
                    await cc.get_blob_client(blob.name).delete_blob()
                    deleted.append(blob.name)
                except ResourceNotFoundError:
                    # Gone between listing and delete
                    continue
                except Exception as e:
                    logger.warning(f"Bulk delete: failed to remove {blob.name}: {e}")
                    failed.append(blob.name)
                    last_error = e

        if failed:
            raise PartialOperationError(
                f"Deleted {len(deleted)} of {len(deleted) + len(failed)} blobs under {key_prefix}",
                completed=deleted, failed=failed, cause=last_error,
            )
        return deleted

    async def list_objects(self, container: str) -> List[BlobObject]:
        results = []
        async with self._container(container) as cc:
            async for blob in cc.list_blobs():
                results.append(BlobObject(name=blob.name, properties=_to_properties(blob)))
        return results

    async def put_block(self, container: str, key: str, block_id: str, data: bytes) -> None:
        async with self._container(container) as cc:
            await cc.get_blob_client(key).stage_block(block_id=block_id, data=data, length=len(data))

    async def commit_block_list(self, container: str, key: str, blocks: List[Block],
                                options: Optional[CommitOptions] = None) -> BlobObject:
        options = options or CommitOptions()
        kwargs = {"metadata": {ACL_METADATA_KEY: options.acl or ACL_PRIVATE}}
        if options.content_type:
            kwargs["content_settings"] = ContentSettings(content_type=options.content_type)

        async with self._container(container) as cc:
            await cc.get_blob_client(key).commit_block_list(
                [BlobBlock(block_id=b.id) for b in blocks], **kwargs
            )

        for block in blocks:
            block.status = BLOCK_COMMITTED

        return await self.head_object(container, key)

    async def copy_object(self, container: str, source_key: str, dest_key: str) -> BlobObject:
        async with self._container(container) as cc:
            source = cc.get_blob_client(source_key)
            dest = cc.get_blob_client(dest_key)
            try:
                await dest.start_copy_from_url(source.url)
            except ResourceNotFoundError:
                raise NotFoundError(f"Blob not found: {source_key}")

            # Copy is asynchronous on the service side
            deadline = time.monotonic() + azure_cfg.AZURE_COPY_TIMEOUT
            props = await dest.get_blob_properties()
            while props.copy.status == "pending":
                if time.monotonic() > deadline:
                    await dest.abort_copy(props.copy.id)
                    raise TimeoutError(f"Copy {source_key} -> {dest_key} did not finish in time")
                await asyncio.sleep(azure_cfg.AZURE_COPY_POLL_INTERVAL)
                props = await dest.get_blob_properties()

            if props.copy.status not in (None, "success"):
                raise RuntimeError(f"Copy {source_key} -> {dest_key} ended with {props.copy.status}: "
                                   f"{props.copy.status_description}")

        return BlobObject(name=dest_key, properties=_to_properties(props))

    async def get_object_acl(self, container: str, key: str) -> List[Grant]:
        async with self._container(container) as cc:
            try:
                props = await cc.get_blob_client(key).get_blob_properties()
            except ResourceNotFoundError:
                raise NotFoundError(f"Blob not found: {key}")

        grants = [Grant(grantee_uri=None, permission=PERMISSION_FULL_CONTROL)]
        if (props.metadata or {}).get(ACL_METADATA_KEY) == ACL_PUBLIC_READ:
            grants.append(Grant(grantee_uri=ALL_USERS_URI, permission=PERMISSION_READ))
        return grants

    async def put_object_acl(self, container: str, key: str, acl: str) -> None:
        async with self._container(container) as cc:
            blob = cc.get_blob_client(key)
            try:
                props = await blob.get_blob_properties()
                # set_blob_metadata replaces the whole set
                metadata = dict(props.metadata or {})
                metadata[ACL_METADATA_KEY] = acl
                await blob.set_blob_metadata(metadata)
            except ResourceNotFoundError:
                raise NotFoundError(f"Blob not found: {key}")

import base64
import asyncio
import binascii
from typing import Any, Dict, List, Optional, Tuple
from contextlib import asynccontextmanager

from aiobotocore.session import get_session
from botocore.exceptions import ClientError

from drivers.driver_base_drv import (
    ACL_PRIVATE, ACL_PUBLIC_READ, ALL_USERS_URI, BLOCK_COMMITTED, PERMISSION_READ,
    BlobObject, BlobProperties, BlobServiceClient, Block, CommitOptions, Grant,
)
from config import s3_cfg
from utils import logging_ut
from utils.errors_ut import NotFoundError, PartialOperationError

logger = logging_ut.get_logger("s3_driver")

_NOT_FOUND_CODES = ("404", "NoSuchKey", "NotFound")


def _error_code(e: ClientError) -> Optional[str]:
    return e.response.get("Error", {}).get("Code")


def _part_number(block_id: str) -> int:
    """Block ids are base64 of the block counter; the counter is the part number."""
    try:
        number = int(base64.b64decode(block_id, validate=True))
    except (binascii.Error, ValueError):
        raise ValueError(f"Block id {block_id!r} does not encode a block counter")
    if not 1 <= number <= 10000:
        raise ValueError(f"Block counter {number} outside S3 part range 1..10000")
    return number


class S3Driver(BlobServiceClient):
    """
    S3-compatible driver (Ceph, MinIO, AWS).

    Blocks are multipart-upload parts: block n is part n. Staging block 1
    opens a fresh multipart upload for the key (aborting a leftover one),
    commit completes it. All blocks but the last must be >= 5MB (S3 minimum
    part size).
    """

    def __init__(self):
        self.endpoint = s3_cfg.S3_ENDPOINT_URL
        self.access_key = s3_cfg.S3_ACCESS_KEY_ID
        self.secret_key = s3_cfg.S3_SECRET_ACCESS_KEY
        self.region = s3_cfg.S3_REGION_NAME
        self.session = get_session()
        # (bucket, key, writing task) -> {"upload_id": str, "parts": {block_id: {"PartNumber", "ETag"}}}
        self._uploads: Dict[Tuple[str, str, Any], dict] = {}

    @asynccontextmanager
    async def _client(self):
        """Context manager for S3 client."""
        async with self.session.create_client(
            's3',
            region_name=self.region,
            endpoint_url=self.endpoint,
            aws_access_key_id=self.access_key,
            aws_secret_access_key=self.secret_key
        ) as client:
            yield client

    async def init(self, container: str) -> None:
        """Check connection and bucket existence."""
        logger.info(f"Initializing S3 Driver: {self.endpoint} / {container}")
        try:
            async with self._client() as client:
                # Check if bucket exists via HeadBucket
                await client.head_bucket(Bucket=container)
                logger.info("S3 Bucket exists.")
        except ClientError as e:
            error_code = _error_code(e)
            if error_code == "404":
                logger.warning(f"Bucket {container} not found. Trying to create...")
                try:
                    async with self._client() as client:
                        await client.create_bucket(Bucket=container)
                        logger.info("Bucket created successfully.")
                except ClientError as create_err:
                    raise ConnectionError(f"Failed to create bucket: {create_err}")
            elif error_code == "403":
                raise PermissionError(f"Access denied to bucket {container}")
            else:
                raise ConnectionError(f"S3 Connection failed: {e}")

    async def exists(self, container: str, key: str) -> bool:
        try:
            await self.head_object(container, key)
            return True
        except NotFoundError:
            return False

    async def head_object(self, container: str, key: str) -> BlobObject:
        try:
            async with self._client() as client:
                response = await client.head_object(Bucket=container, Key=key)
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                raise NotFoundError(f"S3 Object not found: {key}")
            raise e

        return BlobObject(
            name=key,
            properties=BlobProperties(
                content_length=response.get('ContentLength'),
                content_type=response.get('ContentType'),
                last_modified=response.get('LastModified'),
            ),
        )

    async def get_object(self, container: str, key: str) -> BlobObject:
        async with self._client() as client:
            try:
                response = await client.get_object(Bucket=container, Key=key)
                body = bytearray()
                async for chunk in response['Body'].iter_chunks(chunk_size=s3_cfg.CHUNK_SIZE):
                    body.extend(chunk)
            except ClientError as e:
                if _error_code(e) in _NOT_FOUND_CODES:
                    raise NotFoundError(f"S3 key not found: {key}")
                raise e

        return BlobObject(
            name=key,
            properties=BlobProperties(
                content_length=response.get('ContentLength'),
                content_type=response.get('ContentType'),
                last_modified=response.get('LastModified'),
            ),
            body=bytes(body),
        )

    async def delete_object(self, container: str, key: str) -> None:
        # DeleteObject succeeds on missing keys, so check first
        async with self._client() as client:
            try:
                await client.head_object(Bucket=container, Key=key)
            except ClientError as e:
                if _error_code(e) in _NOT_FOUND_CODES:
                    raise NotFoundError(f"S3 Object not found: {key}")
                raise e

            await client.delete_object(Bucket=container, Key=key)

    async def delete_objects_by_prefix(self, container: str, key_prefix: str) -> List[str]:
        deleted, failed = [], []
        async with self._client() as client:
            try:
                # Batch delete
                paginator = client.get_paginator('list_objects_v2')
                async for page in paginator.paginate(Bucket=container, Prefix=key_prefix):
                    if 'Contents' not in page:
                        continue
                    objects = [{'Key': obj['Key']} for obj in page['Contents']]
                    res = await client.delete_objects(Bucket=container, Delete={'Objects': objects})
                    deleted.extend(d['Key'] for d in res.get('Deleted', []))
                    for err in res.get('Errors', []):
                        logger.warning(f"Bulk delete: failed to remove {err['Key']}: {err.get('Message')}")
                        failed.append(err['Key'])
            except ClientError as e:
                if not deleted:
                    raise e
                raise PartialOperationError(
                    f"Bulk delete under {key_prefix} stopped after {len(deleted)} objects",
                    completed=deleted, failed=failed, cause=e,
                ) from e

        if failed:
            raise PartialOperationError(
                f"Deleted {len(deleted)} of {len(deleted) + len(failed)} objects under {key_prefix}",
                completed=deleted, failed=failed,
            )
        return deleted

    async def list_objects(self, container: str) -> List[BlobObject]:
        results = []
        async with self._client() as client:
            paginator = client.get_paginator('list_objects_v2')
            async for page in paginator.paginate(Bucket=container):
                for c in page.get('Contents', []):
                    # ListObjectsV2 carries no content type
                    results.append(BlobObject(
                        name=c['Key'],
                        properties=BlobProperties(
                            content_length=c.get('Size'),
                            last_modified=c.get('LastModified'),
                        ),
                    ))
        return results

    def _session(self, container: str, key: str) -> Tuple[str, str, Any]:
        # multipart state is per writing task
        return (container, key, asyncio.current_task())

    async def _abort_upload(self, client, container: str, key: str, upload: dict) -> None:
        try:
            await client.abort_multipart_upload(Bucket=container, Key=key, UploadId=upload['upload_id'])
        except ClientError as e:
            # already completed or aborted server-side
            logger.warning(f"Abort of multipart upload {upload['upload_id']} for {key} failed: {e}")

    async def put_block(self, container: str, key: str, block_id: str, data: bytes) -> None:
        part_number = _part_number(block_id)
        session = self._session(container, key)
        async with self._client() as client:
            upload = self._uploads.get(session)
            if upload is not None and part_number == 1:
                # Block 1 starts a new upload; a leftover one from this writer is stale
                del self._uploads[session]
                await self._abort_upload(client, container, key, upload)
                upload = None
            if upload is None:
                mp = await client.create_multipart_upload(Bucket=container, Key=key)
                upload = {'upload_id': mp['UploadId'], 'parts': {}}
                self._uploads[session] = upload

            try:
                part = await client.upload_part(
                    Bucket=container, Key=key, PartNumber=part_number,
                    UploadId=upload['upload_id'], Body=data
                )
            except Exception:
                if self._uploads.get(session) is upload:
                    del self._uploads[session]
                await self._abort_upload(client, container, key, upload)
                raise
            upload['parts'][block_id] = {'PartNumber': part_number, 'ETag': part['ETag']}

    async def discard_blocks(self, container: str, key: str) -> None:
        upload = self._uploads.pop(self._session(container, key), None)
        if upload is None:
            return
        async with self._client() as client:
            await self._abort_upload(client, container, key, upload)

    async def commit_block_list(self, container: str, key: str, blocks: List[Block],
                                options: Optional[CommitOptions] = None) -> BlobObject:
        options = options or CommitOptions()
        upload = self._uploads.pop(self._session(container, key), None)

        async with self._client() as client:
            if not blocks:
                # S3 refuses an empty multipart upload
                if upload:
                    await self._abort_upload(client, container, key, upload)
                kwargs = {'Bucket': container, 'Key': key, 'Body': b""}
                if options.content_type:
                    kwargs['ContentType'] = options.content_type
                if options.acl:
                    kwargs['ACL'] = options.acl
                await client.put_object(**kwargs)
            else:
                if upload is None:
                    raise ValueError(f"Invalid block list for {key}: no blocks were staged")
                try:
                    try:
                        parts = [upload['parts'][b.id] for b in blocks]
                    except KeyError as e:
                        raise ValueError(f"Invalid block list for {key}: block {e.args[0]} was never staged")

                    await client.complete_multipart_upload(
                        Bucket=container, Key=key, UploadId=upload['upload_id'],
                        MultipartUpload={'Parts': parts}
                    )
                except Exception as e:
                    await self._abort_upload(client, container, key, upload)
                    raise e

                # Multipart upload was opened before the options were known:
                # rewrite headers in place (server-side copy, objects up to 5GB)
                if options.content_type:
                    kwargs = {
                        'Bucket': container, 'Key': key,
                        'CopySource': {'Bucket': container, 'Key': key},
                        'MetadataDirective': 'REPLACE',
                        'ContentType': options.content_type,
                    }
                    if options.acl:
                        kwargs['ACL'] = options.acl
                    await client.copy_object(**kwargs)
                elif options.acl:
                    await client.put_object_acl(Bucket=container, Key=key, ACL=options.acl)

        for block in blocks:
            block.status = BLOCK_COMMITTED

        return await self.head_object(container, key)

    async def copy_object(self, container: str, source_key: str, dest_key: str) -> BlobObject:
        # CopyObject resets the ACL, carry the source's public-read over
        grants = await self.get_object_acl(container, source_key)
        public = any(g.grantee_uri == ALL_USERS_URI and g.permission == PERMISSION_READ for g in grants)

        copy_source = {'Bucket': container, 'Key': source_key}
        try:
            async with self._client() as client:
                res = await client.copy_object(
                    Bucket=container, Key=dest_key, CopySource=copy_source,
                    ACL=ACL_PUBLIC_READ if public else ACL_PRIVATE,
                )
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                raise NotFoundError(f"S3 Object not found: {source_key}")
            raise e

        return BlobObject(
            name=dest_key,
            properties=BlobProperties(last_modified=res.get('CopyObjectResult', {}).get('LastModified')),
        )

    async def get_object_acl(self, container: str, key: str) -> List[Grant]:
        try:
            async with self._client() as client:
                res = await client.get_object_acl(Bucket=container, Key=key)
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                raise NotFoundError(f"S3 Object not found: {key}")
            raise e

        return [
            Grant(grantee_uri=g.get('Grantee', {}).get('URI'), permission=g.get('Permission'))
            for g in res.get('Grants', [])
        ]

    async def put_object_acl(self, container: str, key: str, acl: str) -> None:
        try:
            async with self._client() as client:
                await client.put_object_acl(Bucket=container, Key=key, ACL=acl)
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                raise NotFoundError(f"S3 Object not found: {key}")
            raise e

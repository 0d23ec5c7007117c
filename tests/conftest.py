from datetime import datetime, timezone
from typing import Dict, List, Optional

import pytest

from drivers.driver_base_drv import (
    ACL_PRIVATE, ACL_PUBLIC_READ, ALL_USERS_URI, BLOCK_COMMITTED, PERMISSION_FULL_CONTROL, PERMISSION_READ,
    BlobObject, BlobProperties, BlobServiceClient, Block, CommitOptions, Grant,
)
from services.adapter_srv import BlobStorageAdapter
from utils.errors_ut import NotFoundError

FIXED_MTIME = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


class InMemoryBlobClient(BlobServiceClient):
    """Dict-backed block-blob store that records every call."""

    def __init__(self):
        self.objects: Dict[str, dict] = {}
        self.staged: Dict[str, Dict[str, bytes]] = {}
        self.calls: List[tuple] = []
        # method name -> exception raised on the next call(s) to it
        self.fail_on: Dict[str, Exception] = {}
        # key -> grants returned instead of the ones derived from the ACL
        self.grants: Dict[str, List[Grant]] = {}
        self.commits: List[List[Block]] = []

    def _call(self, name: str, *args) -> None:
        self.calls.append((name,) + args)
        if name in self.fail_on:
            raise self.fail_on[name]

    def call_names(self) -> List[str]:
        return [c[0] for c in self.calls]

    def _obj(self, key: str, with_body: bool = False) -> BlobObject:
        if key not in self.objects:
            raise NotFoundError(f"missing: {key}")
        entry = self.objects[key]
        return BlobObject(
            name=key,
            properties=BlobProperties(
                content_length=len(entry["body"]),
                content_type=entry["content_type"],
                last_modified=FIXED_MTIME,
            ),
            body=entry["body"] if with_body else None,
        )

    def put(self, key: str, body: bytes, content_type: Optional[str] = None, acl: str = ACL_PRIVATE) -> None:
        self.objects[key] = {"body": body, "content_type": content_type, "acl": acl}

    async def init(self, container: str) -> None:
        self._call("init", container)

    async def exists(self, container: str, key: str) -> bool:
        self._call("exists", container, key)
        return key in self.objects

    async def get_object(self, container: str, key: str) -> BlobObject:
        self._call("get_object", container, key)
        return self._obj(key, with_body=True)

    async def head_object(self, container: str, key: str) -> BlobObject:
        self._call("head_object", container, key)
        return self._obj(key)

    async def delete_object(self, container: str, key: str) -> None:
        self._call("delete_object", container, key)
        if key not in self.objects:
            raise NotFoundError(f"missing: {key}")
        del self.objects[key]

    async def delete_objects_by_prefix(self, container: str, key_prefix: str) -> List[str]:
        self._call("delete_objects_by_prefix", container, key_prefix)
        deleted = [k for k in sorted(self.objects) if k.startswith(key_prefix)]
        for k in deleted:
            del self.objects[k]
        return deleted

    async def list_objects(self, container: str) -> List[BlobObject]:
        self._call("list_objects", container)
        return [self._obj(k) for k in sorted(self.objects)]

    async def put_block(self, container: str, key: str, block_id: str, data: bytes) -> None:
        self._call("put_block", container, key, block_id, data)
        self.staged.setdefault(key, {})[block_id] = data

    async def commit_block_list(self, container: str, key: str, blocks: List[Block],
                                options: Optional[CommitOptions] = None) -> BlobObject:
        self._call("commit_block_list", container, key, list(blocks), options)
        staged = self.staged.pop(key, {})
        options = options or CommitOptions()
        self.put(key, b"".join(staged[b.id] for b in blocks), options.content_type, options.acl or ACL_PRIVATE)
        for b in blocks:
            b.status = BLOCK_COMMITTED
        self.commits.append(list(blocks))
        return self._obj(key)

    async def discard_blocks(self, container: str, key: str) -> None:
        self._call("discard_blocks", container, key)
        self.staged.pop(key, None)

    async def copy_object(self, container: str, source_key: str, dest_key: str) -> BlobObject:
        self._call("copy_object", container, source_key, dest_key)
        if source_key not in self.objects:
            raise NotFoundError(f"missing: {source_key}")
        self.objects[dest_key] = dict(self.objects[source_key])
        return self._obj(dest_key)

    async def get_object_acl(self, container: str, key: str) -> List[Grant]:
        self._call("get_object_acl", container, key)
        if key in self.grants:
            return self.grants[key]
        if key not in self.objects:
            raise NotFoundError(f"missing: {key}")
        grants = [Grant(grantee_uri=None, permission=PERMISSION_FULL_CONTROL)]
        if self.objects[key]["acl"] == ACL_PUBLIC_READ:
            grants.append(Grant(grantee_uri=ALL_USERS_URI, permission=PERMISSION_READ))
        return grants

    async def put_object_acl(self, container: str, key: str, acl: str) -> None:
        self._call("put_object_acl", container, key, acl)
        if key not in self.objects:
            raise NotFoundError(f"missing: {key}")
        self.objects[key]["acl"] = acl


class ServiceDown(Exception):
    """Stand-in for a transport/auth error from an SDK."""


@pytest.fixture
def client() -> InMemoryBlobClient:
    return InMemoryBlobClient()


@pytest.fixture
def adapter(client: InMemoryBlobClient) -> BlobStorageAdapter:
    return BlobStorageAdapter(client, "container", prefix="prefix", chunk_size=2000)

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

# Canned ACLs accepted by put_object_acl / CommitOptions.acl
ACL_PUBLIC_READ = "public-read"
ACL_PRIVATE = "private"

# Grantee URI of the "everyone" group and the permission that makes an object public
ALL_USERS_URI = "http://acs.amazonaws.com/groups/global/AllUsers"
PERMISSION_READ = "READ"
PERMISSION_FULL_CONTROL = "FULL_CONTROL"

BLOCK_UNCOMMITTED = "uncommitted"
BLOCK_COMMITTED = "committed"


@dataclass
class BlobProperties:
    content_length: Optional[int] = None
    content_type: Optional[str] = None
    last_modified: Optional[datetime] = None


@dataclass
class BlobObject:
    name: str
    properties: BlobProperties = field(default_factory=BlobProperties)
    body: Optional[bytes] = None


@dataclass
class Block:
    id: str  # base64 of the zero-padded counter
    status: str = BLOCK_UNCOMMITTED


@dataclass
class Grant:
    grantee_uri: Optional[str]
    permission: str


@dataclass
class CommitOptions:
    content_type: Optional[str] = None
    acl: Optional[str] = None


class BlobServiceClient(ABC):
    """
    Primitive operations of a block-blob store (Azure, S3, local emulation).

    Every method raises utils.errors_ut.NotFoundError when the addressed
    object does not exist; other SDK errors are propagated unchanged.
    """

    @abstractmethod
    async def init(self, container: str) -> None:
        """Check connection, create the container if missing."""
        pass

    @abstractmethod
    async def exists(self, container: str, key: str) -> bool:
        pass

    @abstractmethod
    async def get_object(self, container: str, key: str) -> BlobObject:
        """Properties and full body."""
        pass

    @abstractmethod
    async def head_object(self, container: str, key: str) -> BlobObject:
        """Properties only, body is None."""
        pass

    @abstractmethod
    async def delete_object(self, container: str, key: str) -> None:
        pass

    @abstractmethod
    async def delete_objects_by_prefix(self, container: str, key_prefix: str) -> List[str]:
        """
        Delete every object whose key starts with key_prefix.
        Best effort: keeps going past individual failures, then raises
        PartialOperationError if any delete failed.
        Returns deleted keys.
        """
        pass

    @abstractmethod
    async def list_objects(self, container: str) -> List[BlobObject]:
        pass

    @abstractmethod
    async def put_block(self, container: str, key: str, block_id: str, data: bytes) -> None:
        """Stage one uncommitted block. Invisible until committed."""
        pass

    @abstractmethod
    async def commit_block_list(self, container: str, key: str, blocks: List[Block],
                                options: Optional[CommitOptions] = None) -> BlobObject:
        """
        Make the ordered block list the content of key, replacing any
        previous content. Zero blocks -> empty object.
        """
        pass

    async def discard_blocks(self, container: str, key: str) -> None:
        """
        Drop the uncommitted blocks staged for key. Called after a failed
        upload; stores that garbage-collect uncommitted blocks keep the default.
        """
        pass

    @abstractmethod
    async def copy_object(self, container: str, source_key: str, dest_key: str) -> BlobObject:
        pass

    @abstractmethod
    async def get_object_acl(self, container: str, key: str) -> List[Grant]:
        pass

    @abstractmethod
    async def put_object_acl(self, container: str, key: str, acl: str) -> None:
        pass

import posixpath
from dataclasses import dataclass, fields
from typing import Any, Dict, List, Optional

from drivers.driver_base_drv import BlobObject

TYPE_FILE = "file"
TYPE_DIR = "dir"

VISIBILITY_PUBLIC = "public"
VISIBILITY_PRIVATE = "private"

# Service property -> record field. Anything else reported by the service is dropped.
RESULT_MAP = {
    "content_length": "size",
    "content_type": "mimetype",
}


@dataclass
class StorageRecord:
    path: str
    type: str = TYPE_FILE
    size: Optional[int] = None
    mimetype: Optional[str] = None
    timestamp: Optional[int] = None  # seconds since epoch
    visibility: Optional[str] = None
    contents: Optional[bytes] = None  # only set by read

    def as_dict(self) -> Dict[str, Any]:
        """Record as a dict, absent fields left out."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None
        }


def normalize_object(obj: BlobObject, path: Optional[str] = None) -> StorageRecord:
    """
    Build a file record from a service object.

    Args:
        obj: object as returned by the blob client.
        path: logical path to report; defaults to the object's own name.

    Returns:
        StorageRecord of type "file".
    """
    record = StorageRecord(path=path or obj.name, type=TYPE_FILE)

    props = obj.properties
    if props.last_modified is not None:
        record.timestamp = int(props.last_modified.timestamp())

    for source, target in RESULT_MAP.items():
        value = getattr(props, source, None)
        if value is not None:
            setattr(record, target, value)

    return record


def emulate_directories(records: List[StorageRecord]) -> List[StorageRecord]:
    """
    Add a "dir" record for every parent prefix implied by the keys.
    The store is flat, "a/b/c.txt" alone yields dirs "a" and "a/b".
    """
    known_dirs = {r.path for r in records if r.type == TYPE_DIR}
    implied: List[str] = []

    for record in records:
        parent = posixpath.dirname(record.path.rstrip("/"))
        chain = []
        while parent:
            if parent not in known_dirs:
                chain.append(parent)
                known_dirs.add(parent)
            parent = posixpath.dirname(parent)
        # Outermost first
        implied.extend(reversed(chain))

    return records + [StorageRecord(path=d, type=TYPE_DIR) for d in implied]

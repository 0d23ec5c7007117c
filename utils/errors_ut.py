import enum
import logging
from typing import List, Optional, Tuple

logger = logging.getLogger("errors_ut")


class StorageError(Exception):
    """Base for errors raised by the adapter. `path` is the logical path, when known."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class NotFoundError(StorageError, FileNotFoundError):
    """Object absent for read/metadata/delete."""


class PartialOperationError(StorageError):
    """
    A multi-step operation (rename, delete_dir) failed partway.
    The store is left in the state described by `completed` / `failed`,
    nothing is rolled back.
    """

    def __init__(self, message: str, path: Optional[str] = None,
                 completed: Optional[List[str]] = None,
                 failed: Optional[List[str]] = None,
                 cause: Optional[BaseException] = None):
        super().__init__(message, path)
        self.completed = completed or []
        self.failed = failed or []
        self.cause = cause


class ErrorKind(enum.Enum):
    NOT_FOUND = "not_found"
    PERMISSION_DENIED = "permission_denied"
    PARTIAL = "partial"
    SERVICE = "service"


def translate_exception(e: Exception) -> Tuple[ErrorKind, str]:
    """
    Map exceptions to an error kind and a message for logs.
    Does NOT log anticipated errors (Not Found, Partial, etc).
    Logs unexpected service failures with traceback.

    Args:
        e: The caught exception.

    Returns:
        tuple: (ErrorKind, str_message)
    """
    msg = str(e)

    # 1. Not Found
    if isinstance(e, FileNotFoundError):
        return ErrorKind.NOT_FOUND, f"Resource not found: {msg}"

    # 2. Permission / Access
    if isinstance(e, PermissionError):
        return ErrorKind.PERMISSION_DENIED, f"Permission denied: {msg}"

    # 3. Saga stopped halfway, state is inconsistent but known
    if isinstance(e, PartialOperationError):
        return ErrorKind.PARTIAL, f"Partial failure: {msg} (done={e.completed}, failed={e.failed})"

    # 4. Transport / auth / quota / anything the SDK raised
    logger.error(f"Service error: {e}", exc_info=True)
    return ErrorKind.SERVICE, f"Storage service error: {msg}"

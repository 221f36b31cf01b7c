"""Error taxonomy shared by the synchronization engine."""

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Why an engine operation failed."""

    NETWORK_UNAVAILABLE = "network_unavailable"
    NOT_FOUND = "not_found"
    HTTP_STATUS = "http_status"
    ARCHIVE_CORRUPT = "archive_corrupt"
    METADATA_CORRUPT = "metadata_corrupt"
    FILESYSTEM_FAILURE = "filesystem_failure"

    @property
    def is_recoverable(self) -> bool:
        """True for kinds the engine handles internally by falling back."""
        return self in (ErrorKind.NETWORK_UNAVAILABLE, ErrorKind.METADATA_CORRUPT)


class SyncError(Exception):
    """Base class for engine failures; always carries an ``ErrorKind``."""

    def __init__(self, kind: ErrorKind, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.status = status

    def __str__(self) -> str:
        base = super().__str__()
        if self.status is not None:
            return f"[{self.kind.value}] {base} (HTTP {self.status})"
        return f"[{self.kind.value}] {base}"


class NotFoundError(SyncError):
    """Identity absent from memory, local store and network."""

    def __init__(self, message: str) -> None:
        super().__init__(ErrorKind.NOT_FOUND, message)


class DownloadError(SyncError):
    """A download or extraction failed; nothing was marked downloaded."""


class DeleteError(SyncError):
    """Local content could not be removed."""


class StorageError(SyncError):
    """The content store failed to write."""

    def __init__(self, message: str) -> None:
        super().__init__(ErrorKind.FILESYSTEM_FAILURE, message)

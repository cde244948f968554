"""Custom exception classes for the stash service."""


class StashException(Exception):
    """
    Base exception class for all stash errors.
    """
    pass


class TransferIOError(StashException):
    """
    Raised when a backend call fails while moving chunk data.
    Fatal to the transfer it happens in.
    """
    pass


class MissingChunkError(StashException):
    """
    Raised when a file's chunk records are not contiguous from index 0
    or do not add up to the declared file size.
    """
    pass


class BackendUnavailableError(StashException):
    """
    Raised when the storage backend is not connected or not reachable.
    """
    pass


class ConfigurationError(StashException):
    """
    Raised for invalid chunk sizing values.
    """
    pass


class FileNotFoundError(StashException):
    """
    Raised when a requested file does not exist or is not owned by the caller.
    """
    pass


class FolderNotFoundError(StashException):
    """
    Raised when a target folder does not exist or is not owned by the caller.
    """
    pass


class PendingUploadNotFoundError(StashException):
    """
    Raised when a conflict resolution refers to an unknown or expired pending upload.
    """
    pass


class InvalidConflictActionError(StashException):
    """
    Raised when a conflict resolution action is not keep, replace or rename.
    """
    pass


class TransferStateError(StashException):
    """
    Raised on an illegal transfer state transition (e.g. out of a terminal state).
    """
    pass


class TransferCancelledError(StashException):
    """
    Raised inside a chunk loop when the transfer was cancelled between chunks.
    """
    pass
